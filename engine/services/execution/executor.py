"""Mission runner: validates, orders and executes one mission graph.

Implements:
- Whole-run timeout via asyncio.wait_for
- Mission-level schedule gate for scheduler runs
- BFS reachability from trigger nodes plus Kahn topological ordering
- Branch pruning from node ports and failures (error-port routing)
- Fallback delivery when no output node delivered anything

Nodes inside one run execute sequentially. Every run builds its own
ExecutionContext, so concurrent runs never share mutable state.
"""

import asyncio
import time
import uuid
from collections import defaultdict, deque
from datetime import datetime
from typing import Any, Dict, List, Optional, Set, Tuple

from constants import DEFAULT_CHANNEL, ERROR_PORT, is_output_node, is_trigger_node
from core.config import Settings
from core.logging import get_logger, run_log_context
from models.mission import Mission, MissionConnection
from models.nodes import BaseNode
from services.collaborators import Dispatcher, NullDispatcher
from services.node_executor import NodeExecutor
from services.output.dispatch import build_dispatch_meta, build_legacy_schedule
from services.output.formatters import humanize_output_text
from services.output.quality import apply_output_quality_guardrails
from services.scheduling import check_schedule_gate
from .models import (
    ExecutionContext,
    NodeOutput,
    NodeTrace,
    OutputSummary,
    RunResult,
    RunSource,
    TraceCallback,
    TraceStatus,
    iso_now,
    utc_now,
)

logger = get_logger(__name__)

FALLBACK_NODE_ID = "fallback-output"
TRACE_DETAIL_CHARS = 200


def validate_mission_graph(mission: Mission) -> List[str]:
    """Structural problems that make a graph unrunnable."""
    issues = []
    seen: Set[str] = set()
    for node in mission.nodes:
        if node.id in seen:
            issues.append(f"Duplicate node id: {node.id}")
        seen.add(node.id)
    for conn in mission.connections:
        if conn.source_node_id not in seen:
            issues.append(f"Connection {conn.id} references unknown source node {conn.source_node_id}")
        if conn.target_node_id not in seen:
            issues.append(f"Connection {conn.id} references unknown target node {conn.target_node_id}")
    return issues


def compute_execution_order(mission: Mission) -> Tuple[List[BaseNode], List[str]]:
    """Order the nodes reachable from the start nodes.

    Start nodes are the triggers, else the first node. Returns the ordered
    nodes and the labels of any reachable nodes left over by a cycle.
    """
    triggers = mission.trigger_nodes()
    start_ids = [n.id for n in triggers] if triggers else [mission.nodes[0].id]

    adjacency: Dict[str, List[str]] = defaultdict(list)
    for conn in mission.connections:
        adjacency[conn.source_node_id].append(conn.target_node_id)

    reachable: Set[str] = set()
    queue = deque(start_ids)
    while queue:
        node_id = queue.popleft()
        if node_id in reachable:
            continue
        reachable.add(node_id)
        queue.extend(adjacency.get(node_id, []))

    in_degree: Dict[str, int] = {node_id: 0 for node_id in reachable}
    for conn in mission.connections:
        if conn.source_node_id in reachable and conn.target_node_id in reachable:
            in_degree[conn.target_node_id] += 1

    # Kahn's algorithm, ties broken by the mission's node order
    position = {node.id: index for index, node in enumerate(mission.nodes)}
    ready = deque(sorted((n for n, d in in_degree.items() if d == 0), key=position.get))
    ordered_ids: List[str] = []
    while ready:
        node_id = ready.popleft()
        ordered_ids.append(node_id)
        released = []
        for target in adjacency.get(node_id, []):
            if target not in in_degree:
                continue
            in_degree[target] -= 1
            if in_degree[target] == 0:
                released.append(target)
        ready.extend(sorted(released, key=position.get))

    leftover = [node.label or node.id for node in mission.nodes
                if node.id in reachable and node.id not in ordered_ids]
    ordered = [mission.node_by_id(node_id) for node_id in ordered_ids]
    return ordered, leftover


class _RunState:
    """Per-run bookkeeping for branch pruning."""

    def __init__(self, mission: Mission):
        self.incoming: Dict[str, List[MissionConnection]] = defaultdict(list)
        for conn in mission.connections:
            self.incoming[conn.target_node_id].append(conn)
        self.status: Dict[str, TraceStatus] = {}
        self.disabled: Set[str] = set()

    def edge_is_live(self, conn: MissionConnection, outputs: Dict[str, NodeOutput]) -> bool:
        if conn.source_node_id in self.disabled:
            return conn.source_port != ERROR_PORT
        status = self.status.get(conn.source_node_id)
        if status is None or status == TraceStatus.SKIPPED:
            return False
        output = outputs.get(conn.source_node_id)
        if status == TraceStatus.FAILED or output is None or not output.ok:
            return conn.source_port == ERROR_PORT
        if conn.source_port == ERROR_PORT:
            return False
        if output.port is not None and conn.source_port != output.port:
            return False
        return True

    def should_skip(self, node: BaseNode, outputs: Dict[str, NodeOutput]) -> bool:
        """A node is pruned when it has incoming edges and all of them are dead."""
        incoming = self.incoming.get(node.id, [])
        if not incoming:
            return False
        return not any(self.edge_is_live(conn, outputs) for conn in incoming)


class MissionRunner:
    """Executes missions node by node with branch pruning and fallback delivery."""

    def __init__(self, node_executor: NodeExecutor, settings: Settings,
                 dispatcher: Optional[Dispatcher] = None):
        self.node_executor = node_executor
        self.settings = settings
        self.dispatcher = dispatcher or NullDispatcher()

    # =========================================================================
    # EXECUTION ENTRY POINT
    # =========================================================================

    async def run(
        self,
        mission: Mission,
        source: RunSource = RunSource.MANUAL,
        now: Optional[datetime] = None,
        run_id: Optional[str] = None,
        run_key: Optional[str] = None,
        attempt: int = 1,
        scope: Optional[Dict[str, Any]] = None,
        trigger_payload: Optional[Dict[str, Any]] = None,
        on_node_trace: Optional[TraceCallback] = None,
    ) -> RunResult:
        """Run ``mission`` once. Never raises for node or graph problems."""
        run_id = run_id or str(uuid.uuid4())
        traces: List[NodeTrace] = []
        timeout_seconds = self.settings.mission_max_duration_ms / 1000
        start_time = time.time()

        try:
            with run_log_context(mission.id, run_id):
                result = await asyncio.wait_for(
                    self._run(mission, RunSource(source), now or utc_now(), run_id, run_key, attempt,
                              scope, trigger_payload, on_node_trace, traces),
                    timeout=timeout_seconds,
                )
        except asyncio.TimeoutError:
            logger.error("Mission execution timed out", mission_id=mission.id, run_id=run_id,
                         timeout_seconds=timeout_seconds)
            return RunResult(ok=False, run_id=run_id, node_traces=traces,
                             reason=f"Mission execution timed out after {timeout_seconds:g}s.")

        logger.info("Mission execution finished", mission_id=mission.id, run_id=run_id,
                    ok=result.ok, skipped=result.skipped, outputs=len(result.outputs),
                    execution_time=round(time.time() - start_time, 3))
        return result

    async def _run(
        self,
        mission: Mission,
        source: RunSource,
        now: datetime,
        run_id: str,
        run_key: Optional[str],
        attempt: int,
        scope: Optional[Dict[str, Any]],
        trigger_payload: Optional[Dict[str, Any]],
        on_node_trace: Optional[TraceCallback],
        traces: List[NodeTrace],
    ) -> RunResult:
        day_stamp = None
        if source == RunSource.SCHEDULER:
            gate = check_schedule_gate(mission, now, self.settings)
            day_stamp = gate.day_stamp or None
            if not gate.triggered:
                logger.info("Mission gate skipped run", mission_id=mission.id, reason=gate.reason)
                return RunResult(ok=True, skipped=True, reason=gate.reason, run_id=run_id, day_stamp=day_stamp)

        def failed(reason: str) -> RunResult:
            logger.warning("Mission run failed", mission_id=mission.id, run_id=run_id, reason=reason)
            return RunResult(ok=False, reason=reason, run_id=run_id, day_stamp=day_stamp)

        if not mission.nodes:
            return failed("Mission has no nodes.")
        issues = validate_mission_graph(mission)
        if issues:
            logger.warning("Mission graph issues", mission_id=mission.id, issues=issues)
            return failed(f"Mission graph validation failed ({len(issues)} issue(s)).")

        ctx = ExecutionContext.create(
            mission, self.settings,
            run_source=source, now=now, run_id=run_id, run_key=run_key,
            attempt=attempt, scope=scope, trigger_payload=trigger_payload,
        )

        ordered, cycle_labels = compute_execution_order(mission)
        if cycle_labels:
            return failed(f"Mission graph has cyclic dependencies: {', '.join(cycle_labels)}")
        if not ordered:
            return failed("Mission graph has no reachable executable nodes.")

        logger.info("Starting mission execution", mission_id=mission.id, run_id=run_id,
                    source=source.value, node_count=len(ordered))

        state = _RunState(mission)
        outputs: List[OutputSummary] = []

        for node in ordered:
            started_at = iso_now()

            if node.disabled:
                state.disabled.add(node.id)
                await self._emit(on_node_trace, traces, NodeTrace(
                    node.id, node.type, node.label, TraceStatus.SKIPPED, started_at,
                    ended_at=iso_now(), detail="Node is disabled."))
                continue

            if state.should_skip(node, ctx.node_outputs):
                state.status[node.id] = TraceStatus.SKIPPED
                await self._emit(on_node_trace, traces, NodeTrace(
                    node.id, node.type, node.label, TraceStatus.SKIPPED, started_at,
                    ended_at=iso_now(), detail="No live upstream branch."))
                continue

            await self._emit(on_node_trace, None, NodeTrace(
                node.id, node.type, node.label, TraceStatus.RUNNING, started_at))

            output = await self.node_executor.execute(node, ctx)
            ctx.record_output(node.id, output)

            if (is_trigger_node(node.type) and output.ok
                    and output.get("triggered") is False and output.get("skipped") is True):
                reason = output.text or "Not yet due."
                state.status[node.id] = TraceStatus.SKIPPED
                await self._emit(on_node_trace, traces, NodeTrace(
                    node.id, node.type, node.label, TraceStatus.SKIPPED, started_at,
                    ended_at=iso_now(), detail=reason))
                logger.info("Trigger not fired", mission_id=mission.id, node_id=node.id, reason=reason)
                return RunResult(ok=True, skipped=True, reason=reason, run_id=run_id,
                                 node_traces=traces, node_outputs=dict(ctx.node_outputs),
                                 day_stamp=day_stamp)

            if is_output_node(node.type):
                outputs.append(OutputSummary(ok=output.ok, error=output.error, status=_first_status(output)))

            if not output.ok:
                state.status[node.id] = TraceStatus.FAILED
                logger.warning("Node failed", mission_id=mission.id, node_id=node.id,
                               node_type=node.type, error=output.error, error_code=output.error_code)
                await self._emit(on_node_trace, traces, NodeTrace(
                    node.id, node.type, node.label, TraceStatus.FAILED, started_at,
                    ended_at=iso_now(), detail=output.error or "Node execution failed.",
                    error_code=output.error_code))
                continue

            state.status[node.id] = TraceStatus.COMPLETED
            await self._emit(on_node_trace, traces, NodeTrace(
                node.id, node.type, node.label, TraceStatus.COMPLETED, started_at,
                ended_at=iso_now(), detail=(output.text or "")[:TRACE_DETAIL_CHARS] or None))

        if not outputs or not any(o.ok for o in outputs):
            outputs.extend(await self._fallback_dispatch(ctx, had_outputs=bool(outputs)))

        ok = not outputs or any(o.ok for o in outputs)
        return RunResult(ok=ok, run_id=run_id, outputs=outputs, node_traces=traces,
                         node_outputs=dict(ctx.node_outputs), day_stamp=day_stamp)

    # =========================================================================
    # FALLBACK DELIVERY
    # =========================================================================

    async def _fallback_dispatch(self, ctx: ExecutionContext, had_outputs: bool) -> List[OutputSummary]:
        """Deliver the last upstream text when no output node succeeded."""
        mission = ctx.mission
        text = ctx.last_text().strip() or (
            f'Mission "{mission.label}" completed with upstream errors and no user-ready summary.'
        )
        primary = str(mission.integration or DEFAULT_CHANNEL).strip() or DEFAULT_CHANNEL
        if had_outputs:
            channels = [DEFAULT_CHANNEL] + ([] if primary == DEFAULT_CHANNEL else [primary])
        else:
            channels = [primary] + ([] if primary == DEFAULT_CHANNEL else [DEFAULT_CHANNEL])

        humanized = humanize_output_text(text, include_sources=True, detail_level="standard")
        guarded = apply_output_quality_guardrails(humanized, None, self.settings).text
        recipients = list(mission.chat_ids or [])

        summaries: List[OutputSummary] = []
        for channel in channels:
            schedule = build_legacy_schedule(ctx, channel, recipients)
            schedule.update(runCount=mission.run_count, successCount=mission.success_count,
                            failureCount=mission.failure_count)
            meta = build_dispatch_meta(ctx, FALLBACK_NODE_ID)
            try:
                results = await self.dispatcher.dispatch(channel, guarded, recipients, schedule, ctx.scope, meta)
            except Exception as e:
                logger.error("Fallback output failed", mission_id=mission.id, channel=channel, error=str(e))
                summaries.append(OutputSummary(ok=False, error=str(e)))
                continue
            first = results[0] if results else None
            summary = (OutputSummary(ok=first.ok, error=first.error, status=first.status) if first
                       else OutputSummary(ok=False, error="No result"))
            summaries.append(summary)
            logger.info("Fallback output dispatched", mission_id=mission.id, channel=channel, ok=summary.ok)
            if summary.ok:
                break
        return summaries

    async def _emit(self, callback: Optional[TraceCallback], traces: Optional[List[NodeTrace]],
                    trace: NodeTrace) -> None:
        if traces is not None:
            traces.append(trace)
        if callback is None:
            return
        try:
            await callback(trace)
        except Exception as e:
            logger.warning("Trace callback failed", node_id=trace.node_id, error=str(e))


def _first_status(output: NodeOutput) -> Optional[int]:
    if isinstance(output.data, list) and output.data and isinstance(output.data[0], dict):
        return output.data[0].get("status")
    return None
