"""Output node handlers - NovaChat, Telegram, Discord, Email, Webhook, Slack."""

from typing import List

from constants import is_ai_node
from core.config import Settings
from core.logging import get_logger
from models.nodes import BaseNode
from services.collaborators import Dispatcher
from services.execution.models import ExecutionContext, NodeOutput
from services.output.briefing import aggregate_upstream_node_text, build_morning_briefing
from services.output.dispatch import dispatch_to_channel

logger = get_logger(__name__)

OUTPUT_AGGREGATE_MAX_CHARS = 2200
OUTPUT_AGGREGATE_PER_NODE_CHARS = 360


def resolve_output_text(node: BaseNode, ctx: ExecutionContext) -> str:
    """Pick the text to deliver; the first non-empty candidate wins.

    1. ``inputExpression``
    2. ``messageTemplate``
    3. The deterministic morning briefing, when the mission has that shape
    4. The latest successful AI node, scanning the node list backwards
    5. Aggregated upstream text
    6. The last recorded text, successful or not
    """
    for template in (getattr(node, "input_expression", None), getattr(node, "message_template", None)):
        if template:
            resolved = ctx.resolve_expr(template)
            if resolved.strip():
                return resolved

    briefing = build_morning_briefing(ctx.mission, ctx.node_outputs)
    if briefing:
        return briefing

    for mission_node in reversed(ctx.mission.nodes):
        if not is_ai_node(mission_node.type):
            continue
        output = ctx.node_outputs.get(mission_node.id)
        text = str(output.text or "").strip() if output else ""
        if output is not None and output.ok and text:
            return text

    aggregated = aggregate_upstream_node_text(
        ctx.mission, ctx.node_outputs,
        max_chars=OUTPUT_AGGREGATE_MAX_CHARS,
        per_node_max_chars=OUTPUT_AGGREGATE_PER_NODE_CHARS,
    )
    if aggregated.strip():
        return aggregated

    return ctx.last_text()


def _recipients_or_mission(values, ctx: ExecutionContext) -> List[str]:
    return list(values or ctx.mission.chat_ids or [])


async def _send(channel: str, node: BaseNode, ctx: ExecutionContext, recipients: List[str],
                dispatcher: Dispatcher, settings: Settings) -> NodeOutput:
    text = resolve_output_text(node, ctx)
    return await dispatch_to_channel(channel, text, recipients, ctx, dispatcher, settings, node_id=node.id)


async def handle_novachat_output(node: BaseNode, ctx: ExecutionContext, *,
                                 dispatcher: Dispatcher, settings: Settings) -> NodeOutput:
    return await _send("novachat", node, ctx, list(ctx.mission.chat_ids or []), dispatcher, settings)


async def handle_telegram_output(node: BaseNode, ctx: ExecutionContext, *,
                                 dispatcher: Dispatcher, settings: Settings) -> NodeOutput:
    recipients = _recipients_or_mission(getattr(node, "chat_ids", None), ctx)
    return await _send("telegram", node, ctx, recipients, dispatcher, settings)


async def handle_discord_output(node: BaseNode, ctx: ExecutionContext, *,
                                dispatcher: Dispatcher, settings: Settings) -> NodeOutput:
    recipients = _recipients_or_mission(getattr(node, "webhook_urls", None), ctx)
    return await _send("discord", node, ctx, recipients, dispatcher, settings)


async def handle_email_output(node: BaseNode, ctx: ExecutionContext, *,
                              dispatcher: Dispatcher, settings: Settings) -> NodeOutput:
    recipients = _recipients_or_mission(getattr(node, "recipients", None), ctx)
    return await _send("email", node, ctx, recipients, dispatcher, settings)


async def handle_webhook_output(node: BaseNode, ctx: ExecutionContext, *,
                                dispatcher: Dispatcher, settings: Settings) -> NodeOutput:
    url = ctx.resolve_expr(getattr(node, "url", ""))
    if not url.strip():
        return NodeOutput.failure("Webhook output URL is empty.")
    return await _send("webhook", node, ctx, [url], dispatcher, settings)


async def handle_slack_output(node: BaseNode, ctx: ExecutionContext, *,
                              dispatcher: Dispatcher, settings: Settings) -> NodeOutput:
    webhook_url = getattr(node, "webhook_url", None)
    if webhook_url:
        target = ctx.resolve_expr(webhook_url)
    else:
        target = (ctx.mission.chat_ids or [""])[0]
    return await _send("slack", node, ctx, [target] if target else [], dispatcher, settings)
