"""Coinbase (exchange price feed) node handler."""

import json
from typing import Any, Optional

from core.logging import get_logger
from models.nodes import BaseNode
from services.collaborators import PriceFeed
from services.execution.models import ExecutionContext, NodeOutput
from services.output.briefing import format_usd
from services.output.formatters import format_structured_output

logger = get_logger(__name__)


def _looks_like_raw_json(text: str) -> bool:
    stripped = text.strip()
    return stripped[:1] in ("{", "[") and stripped[-1:] in ("}", "]")


def format_coinbase_price_text(output: Any) -> Optional[str]:
    """Readable price lines from a structured price payload, or None."""
    if not isinstance(output, dict):
        return None
    formatted = format_structured_output(json.dumps(output, default=str))
    if formatted and not _looks_like_raw_json(formatted):
        return formatted

    lines = []
    for row in output.get("prices") or []:
        if not isinstance(row, dict):
            continue
        asset = str(row.get("baseAsset") or row.get("asset") or row.get("symbol") or "").strip().upper()
        if asset:
            lines.append(f"{asset}: {format_usd(row.get('price'))}")
    return "\n".join(lines) or None


def build_price_request(node: BaseNode, ctx: ExecutionContext) -> dict:
    fmt = getattr(node, "format", None)
    return {
        "nodeId": node.id,
        "title": node.label,
        "intent": getattr(node, "intent", "price"),
        "params": {
            "assets": list(getattr(node, "assets", None) or []),
            "quoteCurrency": getattr(node, "quote_currency", None) or "USD",
            "thresholdPct": getattr(node, "threshold_pct", None),
            "cadence": getattr(node, "cadence", None),
            "transactionLimit": getattr(node, "transaction_limit", None),
            "includePreviousArtifactContext": getattr(node, "include_previous_artifact_context", True),
        },
        "format": {
            "style": fmt.style if fmt else "standard",
            "includeRawMetadata": fmt.include_raw_metadata if fmt else True,
        },
        "missionId": ctx.mission_id,
        "missionRunId": ctx.run_id,
        "userContextId": ctx.user_id[:96],
        "nowIso": ctx.now.isoformat(),
    }


async def handle_coinbase(node: BaseNode, ctx: ExecutionContext, *, price_feed: PriceFeed) -> NodeOutput:
    try:
        result = await price_feed.execute(build_price_request(node, ctx), ctx.scope)
    except Exception as e:
        logger.warning("Price feed failed", node_id=node.id, error=str(e))
        return NodeOutput.failure(str(e))

    if not result.ok:
        return NodeOutput(ok=False, error=result.error_code or "Coinbase step failed",
                          error_code=result.error_code)

    if isinstance(result.output, str):
        text = result.output
    else:
        text = format_coinbase_price_text(result.output) or "Coinbase update ready."
    return NodeOutput(ok=True, text=text, data=result.output)
