"""Trigger node handlers.

Triggers never fail a run for being "not due": they return ``ok=True`` with
``data.triggered=False`` and a reason. Only bad schedule configuration
(unknown timezone, malformed ``HH:MM``) yields ``ok=False``.
"""

from core.logging import get_logger
from models.nodes import BaseNode
from services.execution.models import ExecutionContext, NodeOutput, RunSource
from services.scheduling import evaluate_schedule_trigger

logger = get_logger(__name__)


def _fired(text: str, **extra) -> NodeOutput:
    return NodeOutput(ok=True, text=text, data={"triggered": True, **extra})


def _not_fired(text: str, **extra) -> NodeOutput:
    return NodeOutput(ok=True, text=text, data={"triggered": False, "skipped": True, **extra})


async def handle_schedule_trigger(node: BaseNode, ctx: ExecutionContext) -> NodeOutput:
    if ctx.run_source == RunSource.MANUAL:
        return _fired("Triggered manually.", source=ctx.run_source.value)
    if ctx.run_source == RunSource.TRIGGER:
        return _fired("Triggered by event.", source=ctx.run_source.value)

    decision = evaluate_schedule_trigger(node, ctx.mission.settings.timezone, ctx.now,
                                         ctx.settings, ctx.last_run_at)
    if not decision.ok:
        logger.warning("Schedule trigger misconfigured", mission_id=ctx.mission_id,
                       node_id=node.id, error=decision.error)
        return NodeOutput(ok=False, error=decision.error, data=decision.to_data())

    logger.debug("Schedule trigger evaluated", mission_id=ctx.mission_id, node_id=node.id,
                 state=decision.state.value, triggered=decision.triggered)
    return NodeOutput(ok=True, text=decision.reason, data=decision.to_data())


async def handle_manual_trigger(node: BaseNode, ctx: ExecutionContext) -> NodeOutput:
    return _fired("Triggered manually.", source=ctx.run_source.value)


async def handle_webhook_trigger(node: BaseNode, ctx: ExecutionContext) -> NodeOutput:
    """Webhook triggers fire only for host-delivered (trigger/manual) runs."""
    if ctx.run_source == RunSource.SCHEDULER:
        return _not_fired("Webhook trigger waits for an inbound request.")
    return _fired("Triggered by webhook.", source=ctx.run_source.value,
                  payload=dict(ctx.trigger_payload))


async def handle_event_trigger(node: BaseNode, ctx: ExecutionContext) -> NodeOutput:
    if ctx.run_source == RunSource.SCHEDULER:
        return _not_fired("Event trigger waits for an event.")

    expected = str(getattr(node, "event_name", "") or "").strip()
    received = str(ctx.trigger_payload.get("event") or "").strip()
    if expected and received and expected != received:
        return _not_fired(f"Event {received!r} does not match {expected!r}.")
    return _fired("Triggered by event.", source=ctx.run_source.value,
                  event=received or expected, payload=dict(ctx.trigger_payload))
