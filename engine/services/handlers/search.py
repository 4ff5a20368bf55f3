"""Web search node handler."""

from core.logging import get_logger
from models.nodes import BaseNode
from services.collaborators import SearchProvider
from services.execution.models import ExecutionContext, NodeOutput

logger = get_logger(__name__)


async def handle_web_search(node: BaseNode, ctx: ExecutionContext, *, search: SearchProvider) -> NodeOutput:
    query = ctx.resolve_expr(getattr(node, "query", ""))
    if not query.strip():
        return NodeOutput.failure("Web search query is empty.")

    options = {
        "provider": getattr(node, "provider", None),
        "maxResults": getattr(node, "max_results", None),
        "fetchContent": getattr(node, "fetch_content", False),
    }
    try:
        result = await search.search(query, {k: v for k, v in options.items() if v is not None}, ctx.scope)
    except Exception as e:
        logger.warning("Web search failed", node_id=node.id, query=query, error=str(e))
        return NodeOutput.failure(str(e))

    result = result or {}
    results = result.get("results") or []
    text = result.get("searchText") or "\n".join(
        f"{row.get('title')}: {row.get('snippet')}" for row in results if isinstance(row, dict)
    )
    return NodeOutput(ok=True, text=text, data=result, items=results)
