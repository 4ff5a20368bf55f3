"""Transform node handlers - Set Variables, Format, Sort, Dedupe."""

import json
from functools import cmp_to_key
from typing import Any

from core.logging import get_logger
from models.nodes import BaseNode
from services.execution.models import ExecutionContext, NodeOutput
from services.parameter_resolver import to_text

logger = get_logger(__name__)


def _as_json(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, default=str)


def get_field(item: Any, field: str) -> Any:
    if not isinstance(item, dict):
        return None
    return item.get(field)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def compare_values(a: Any, b: Any) -> int:
    """Numbers compare numerically, everything else by its text."""
    if _is_number(a) and _is_number(b):
        return (a > b) - (a < b)
    a_text, b_text = to_text(a), to_text(b)
    return (a_text > b_text) - (a_text < b_text)


async def handle_set_variables(node: BaseNode, ctx: ExecutionContext) -> NodeOutput:
    assignments = getattr(node, "assignments", None) or []
    for assignment in assignments:
        if not ctx.set_variable(assignment.name, ctx.resolve_expr(assignment.value)):
            logger.debug("Skipped variable assignment", node_id=node.id, name=assignment.name)
    return NodeOutput(ok=True, text=ctx.last_text(),
                      data={"assigned": [a.name for a in assignments]})


async def handle_format(node: BaseNode, ctx: ExecutionContext) -> NodeOutput:
    rendered = ctx.resolve_expr(getattr(node, "template", None) or "")
    return NodeOutput(ok=True, text=rendered,
                      data={"text": rendered, "format": getattr(node, "output_format", None) or "text"})


async def handle_sort(node: BaseNode, ctx: ExecutionContext) -> NodeOutput:
    items = ctx.upstream_items()
    if not items:
        return NodeOutput(ok=True, text=ctx.last_text(), data={"sorted": False})

    field = getattr(node, "field", "")
    descending = getattr(node, "direction", "asc") == "desc"
    ordered = sorted(
        items,
        key=cmp_to_key(lambda a, b: compare_values(get_field(a, field), get_field(b, field))),
        reverse=descending,
    )
    return NodeOutput(ok=True, text=_as_json(ordered), data=ordered, items=ordered)


async def handle_dedupe(node: BaseNode, ctx: ExecutionContext) -> NodeOutput:
    items = ctx.upstream_items()
    if not items:
        return NodeOutput(ok=True, text=ctx.last_text(), data={"deduped": False})

    field = getattr(node, "field", "")
    seen = set()
    unique = []
    for item in items:
        value = get_field(item, field)
        key = to_text(value) if value is not None else _as_json(item)
        if key in seen:
            continue
        seen.add(key)
        unique.append(item)
    return NodeOutput(ok=True, text=_as_json(unique), data=unique, items=unique)
