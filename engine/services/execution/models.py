"""Execution engine state models.

NodeOutput is produced exactly once per node per run and never mutated.
ExecutionContext is run-scoped: a fresh one is built for every run and
discarded when the run ends, so concurrent runs never share state.
"""

import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Any, List, Optional, Callable, Awaitable

from constants import BLOCKED_PROPERTY_NAMES
from core.config import Settings
from core.logging import get_logger
from models.mission import Mission
from services.parameter_resolver import ExpressionResolver

logger = get_logger(__name__)

VARIABLE_NAME_PATTERN = re.compile(r'^[a-zA-Z_$][a-zA-Z0-9_$]*$')


class ExecutionContextError(RuntimeError):
    """Raised when the run-scoped context contract is violated."""


class RunSource(str, Enum):
    """What started a mission run."""
    SCHEDULER = "scheduler"
    MANUAL = "manual"
    TRIGGER = "trigger"


class TraceStatus(str, Enum):
    """Node trace lifecycle.

    State transitions:
        RUNNING -> COMPLETED
                -> FAILED
        SKIPPED (disabled node or every incoming edge dead)
    """
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def iso_now() -> str:
    return utc_now().isoformat()


@dataclass(frozen=True)
class NodeOutput:
    """Result of executing one node.

    ``ok=False`` is a node-scoped failure; it does not by itself abort the run.
    ``port`` is set by branching nodes to select live outgoing edges.
    """
    ok: bool
    text: Optional[str] = None
    data: Any = None
    items: Optional[List[Any]] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    port: Optional[str] = None

    def get(self, key: str, default: Any = None) -> Any:
        """Read a key from ``data`` when it is a dict."""
        if isinstance(self.data, dict):
            return self.data.get(key, default)
        return default

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {"ok": self.ok}
        if self.text is not None:
            d["text"] = self.text
        if self.data is not None:
            d["data"] = self.data
        if self.items is not None:
            d["items"] = self.items
        if self.error is not None:
            d["error"] = self.error
        if self.error_code is not None:
            d["errorCode"] = self.error_code
        if self.port is not None:
            d["port"] = self.port
        return d

    @classmethod
    def failure(cls, error: str, error_code: Optional[str] = None) -> "NodeOutput":
        return cls(ok=False, error=error, error_code=error_code)


@dataclass
class NodeTrace:
    """Per-node execution trace streamed to the host."""
    node_id: str
    node_type: str
    label: str
    status: TraceStatus
    started_at: str
    ended_at: Optional[str] = None
    detail: Optional[str] = None
    error_code: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        d = {
            "nodeId": self.node_id,
            "nodeType": self.node_type,
            "label": self.label,
            "status": self.status.value,
            "startedAt": self.started_at,
        }
        if self.ended_at:
            d["endedAt"] = self.ended_at
        if self.detail:
            d["detail"] = self.detail
        if self.error_code:
            d["errorCode"] = self.error_code
        return d


@dataclass
class OutputSummary:
    ok: bool
    error: Optional[str] = None
    status: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"ok": self.ok, "error": self.error, "status": self.status}


@dataclass
class RunResult:
    """Outcome of one mission run."""
    ok: bool
    skipped: bool = False
    reason: Optional[str] = None
    run_id: str = ""
    outputs: List[OutputSummary] = field(default_factory=list)
    node_traces: List[NodeTrace] = field(default_factory=list)
    node_outputs: Dict[str, NodeOutput] = field(default_factory=dict)
    day_stamp: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ok": self.ok,
            "skipped": self.skipped,
            "reason": self.reason,
            "runId": self.run_id,
            "outputs": [o.to_dict() for o in self.outputs],
            "nodeTraces": [t.to_dict() for t in self.node_traces],
        }


TraceCallback = Callable[[NodeTrace], Awaitable[None]]


def _is_present(item: Any) -> bool:
    """Falsy scalars (None, False, 0, NaN, "") are dropped; empty containers are kept."""
    if item is None or isinstance(item, bool):
        return bool(item)
    if isinstance(item, (int, float)):
        return item == item and item != 0
    if isinstance(item, str):
        return item != ""
    return True


@dataclass
class ExecutionContext:
    """Per-run mutable state and expression resolution for executors."""
    mission: Mission
    settings: Settings
    run_id: str
    run_source: RunSource
    now: datetime
    run_key: Optional[str] = None
    attempt: int = 1
    last_run_at: Optional[str] = None
    scope: Dict[str, Any] = field(default_factory=dict)
    trigger_payload: Dict[str, Any] = field(default_factory=dict)
    variables: Dict[str, str] = field(default_factory=dict)
    node_outputs: Dict[str, NodeOutput] = field(default_factory=dict)

    def __post_init__(self):
        self._resolver = ExpressionResolver(
            node_outputs=self.node_outputs,
            nodes_by_label=self.mission.nodes_by_label(),
            variables=self.variables,
        )

    @classmethod
    def create(
        cls,
        mission: Mission,
        settings: Settings,
        run_source: RunSource = RunSource.MANUAL,
        now: Optional[datetime] = None,
        run_id: Optional[str] = None,
        run_key: Optional[str] = None,
        attempt: int = 1,
        scope: Optional[Dict[str, Any]] = None,
        trigger_payload: Optional[Dict[str, Any]] = None,
        variables: Optional[Dict[str, Any]] = None,
    ) -> "ExecutionContext":
        """Build a fresh context seeded with the mission's variables."""
        ctx = cls(
            mission=mission,
            settings=settings,
            run_id=run_id or str(uuid.uuid4()),
            run_source=RunSource(run_source),
            now=now or utc_now(),
            run_key=run_key,
            attempt=attempt,
            last_run_at=mission.last_run_at,
            scope=dict(scope or {}),
            trigger_payload=dict(trigger_payload or {}),
        )
        for var in mission.variables:
            ctx.set_variable(var.name, var.value)
        for name, value in (variables or {}).items():
            ctx.set_variable(name, value)
        return ctx

    @property
    def mission_id(self) -> str:
        return self.mission.id

    @property
    def mission_label(self) -> str:
        return self.mission.label

    @property
    def user_id(self) -> str:
        return str(self.scope.get("userId") or self.scope.get("user_id") or self.mission.user_id or "")

    def resolve_expr(self, template: Optional[str]) -> str:
        return self._resolver.resolve(template or "")

    def set_variable(self, name: str, value: Any) -> bool:
        """Assign a variable. Refuses blocked and non-identifier names."""
        if not name or name in BLOCKED_PROPERTY_NAMES or not VARIABLE_NAME_PATTERN.match(name):
            logger.debug("Variable assignment refused", name=name)
            return False
        self.variables[name] = "" if value is None else str(value)
        return True

    def record_output(self, node_id: str, output: NodeOutput) -> None:
        if node_id in self.node_outputs:
            raise ExecutionContextError(f"Output for node {node_id!r} already recorded")
        self.node_outputs[node_id] = output

    def last_text(self) -> str:
        """Text of the most recent output that has any."""
        last = ""
        for output in self.node_outputs.values():
            if output.text:
                last = output.text
        return last

    def upstream_items(self) -> List[Any]:
        """All ``items`` arrays recorded so far, flattened in execution order."""
        items: List[Any] = []
        for output in self.node_outputs.values():
            items.extend(item for item in (output.items or []) if _is_present(item))
        return items
