"""Code execution node handlers - Code and Filter.

User scripts run through ``SandboxRunner`` in a child process with a
host-enforced wall-clock budget.
"""

import json
from typing import Any

from core.logging import get_logger
from models.nodes import BaseNode
from services.execution.models import ExecutionContext, NodeOutput
from services.sandbox import SandboxRunner, json_safe

logger = get_logger(__name__)


def _result_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    return json.dumps(value, ensure_ascii=False, default=str)


async def handle_code(node: BaseNode, ctx: ExecutionContext, *, sandbox: SandboxRunner) -> NodeOutput:
    """Run a Python script body. ``$input``, ``$vars`` and ``$nodes`` are in scope."""
    expression = getattr(node, "input_expression", None)
    input_text = ctx.resolve_expr(expression) if expression else ctx.last_text()
    nodes = {node_id: {"output": output.to_dict()} for node_id, output in ctx.node_outputs.items()}

    result = await sandbox.run_code(getattr(node, "code", ""), input_text, ctx.variables, nodes)
    if not result.ok:
        logger.warning("Code node failed", node_id=node.id, timed_out=result.timed_out, error=result.error)
        return NodeOutput.failure(f"Code execution error: {result.error}")

    return NodeOutput(ok=True, text=_result_text(result.value), data=json_safe(result.value))


async def handle_filter(node: BaseNode, ctx: ExecutionContext, *, sandbox: SandboxRunner) -> NodeOutput:
    """Keep or drop upstream items by a per-item boolean expression over ``$item``.

    An item whose evaluation fails is treated as untrusted: dropped in keep
    mode, kept in exclude/remove mode.
    """
    items = ctx.upstream_items()
    if not items:
        return NodeOutput(ok=True, text=ctx.last_text(),
                          data={"filtered": False, "reason": "no items array"})

    keep_mode = (getattr(node, "mode", None) or "keep") == "keep"
    outcome = await sandbox.run_filter(getattr(node, "expression", ""), items, ctx.variables)
    if outcome.error_count:
        logger.warning("Filter evaluation errors", node_id=node.id,
                       failed=outcome.error_count, total=len(items), error=outcome.error)

    filtered = []
    for item, verdict in zip(items, outcome.verdicts):
        if verdict is None:
            keep = not keep_mode
        else:
            keep = verdict if keep_mode else not verdict
        if keep:
            filtered.append(item)

    return NodeOutput(ok=True, text=json.dumps(filtered, ensure_ascii=False, default=str),
                      data=filtered, items=filtered)
