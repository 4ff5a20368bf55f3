"""Channel delivery for output nodes and the runner's fallback send.

Text is humanized, passed through the quality guardrail with upstream
fetch/search rows as evidence, then handed to the ``Dispatcher``
collaborator together with a legacy schedule record.
"""

from typing import Any, Dict, List, Optional

from constants import DEFAULT_TIMEZONE
from core.config import Settings
from core.logging import get_logger
from services.collaborators import Dispatcher
from services.execution.models import ExecutionContext, NodeOutput, RunSource, iso_now
from services.output.formatters import humanize_output_text
from services.output.quality import apply_output_quality_guardrails

logger = get_logger(__name__)

EVIDENCE_KEYS = ("items", "results")


def collect_fetch_results(ctx: ExecutionContext) -> List[Any]:
    """Rows from every upstream ``data.items`` / ``data.results`` array."""
    rows: List[Any] = []
    for output in ctx.node_outputs.values():
        if not isinstance(output.data, dict):
            continue
        for key in EVIDENCE_KEYS:
            value = output.data.get(key)
            if isinstance(value, list) and value:
                rows.extend(value)
    return rows


def build_legacy_schedule(ctx: ExecutionContext, channel: str, recipients: List[str]) -> Dict[str, Any]:
    now = iso_now()
    return {
        "id": ctx.mission_id or "",
        "userId": ctx.user_id,
        "label": ctx.mission_label,
        "integration": channel,
        "chatIds": list(recipients),
        "timezone": ctx.mission.settings.timezone or DEFAULT_TIMEZONE,
        "message": "",
        "time": "09:00",
        "enabled": True,
        "createdAt": now,
        "updatedAt": now,
        "runCount": 0,
        "successCount": 0,
        "failureCount": 0,
    }


def build_dispatch_meta(ctx: ExecutionContext, node_id: Optional[str], output_index: int = 0) -> Dict[str, Any]:
    return {
        "missionRunId": ctx.run_id,
        "runKey": ctx.run_key,
        "attempt": ctx.attempt,
        "source": "scheduler" if ctx.run_source == RunSource.SCHEDULER else "trigger",
        "nodeId": node_id,
        "outputIndex": output_index,
    }


async def dispatch_to_channel(
    channel: str,
    text: str,
    recipients: List[str],
    ctx: ExecutionContext,
    dispatcher: Dispatcher,
    settings: Settings,
    node_id: Optional[str] = None,
    output_index: int = 0,
) -> NodeOutput:
    """Guard and deliver ``text``; the first per-recipient result decides ``ok``."""
    if not str(text or "").strip():
        return NodeOutput.failure("No output text to send.")

    humanized = humanize_output_text(text, include_sources=True, detail_level="standard")
    fetch_results = collect_fetch_results(ctx)
    evidence = {"fetchResults": fetch_results} if fetch_results else None
    guarded = apply_output_quality_guardrails(humanized, evidence, settings).text

    schedule = build_legacy_schedule(ctx, channel, recipients)
    meta = build_dispatch_meta(ctx, node_id, output_index)
    try:
        results = await dispatcher.dispatch(channel, guarded, list(recipients), schedule, ctx.scope, meta)
    except Exception as e:
        logger.error("Output dispatch failed", channel=channel, mission_id=ctx.mission_id,
                     node_id=node_id, error=str(e))
        return NodeOutput.failure(str(e))

    results = list(results or [])
    data = [r.to_dict() for r in results]
    if not results:
        return NodeOutput(ok=False, text=guarded, data=data, error="No result returned")

    first = results[0]
    logger.info("Output dispatched", channel=channel, mission_id=ctx.mission_id, node_id=node_id,
                ok=first.ok, recipients=len(recipients))
    if first.ok:
        return NodeOutput(ok=True, text=guarded, data=data)
    return NodeOutput(
        ok=False,
        text=guarded,
        data=data,
        error=first.error,
        error_code=f"HTTP_{first.status}" if first.status else None,
    )
