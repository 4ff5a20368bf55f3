"""Logic node handlers - Condition, Switch, Loop, Merge, Split, Wait.

Branching nodes select their live outgoing edges through ``NodeOutput.port``.
"""

import asyncio
import json
from typing import Any, List

from core.logging import get_logger
from models.nodes import BaseNode
from services.execution.conditions import evaluate_conditions
from services.execution.models import ExecutionContext, NodeOutput

logger = get_logger(__name__)

DEFAULT_MAX_ITERATIONS = 100
MAX_WAIT_MS = 5 * 60 * 1000


async def handle_condition(node: BaseNode, ctx: ExecutionContext) -> NodeOutput:
    logic = getattr(node, "logic", None) or "all"
    results = evaluate_conditions(getattr(node, "rules", None) or [], ctx.resolve_expr)
    passed = any(results) if logic == "any" else all(results)
    port = "true" if passed else "false"
    return NodeOutput(
        ok=True,
        port=port,
        text=f"Condition evaluated: {port} (logic: {logic})",
        data={"passed": passed, "ruleResults": results},
    )


async def handle_switch(node: BaseNode, ctx: ExecutionContext) -> NodeOutput:
    value = ctx.resolve_expr(getattr(node, "expression", ""))
    for case in getattr(node, "cases", None) or []:
        if case.value == value:
            return NodeOutput(
                ok=True,
                port=case.port,
                text=f"Switch matched case: {value} -> {case.port}",
                data={"value": value, "matchedPort": case.port},
            )
    return NodeOutput(
        ok=True,
        port="default",
        text=f'Switch: no case matched for value "{value}", using default.',
        data={"value": value, "matchedPort": "default"},
    )


def _loop_items(raw: str) -> List[Any]:
    try:
        parsed = json.loads(raw)
    except ValueError:
        return [line for line in raw.split("\n") if line]
    return parsed if isinstance(parsed, list) else []


async def handle_loop(node: BaseNode, ctx: ExecutionContext) -> NodeOutput:
    items = _loop_items(ctx.resolve_expr(getattr(node, "input_expression", "")))
    max_iterations = getattr(node, "max_iterations", None)
    items = items[:DEFAULT_MAX_ITERATIONS if max_iterations is None else max_iterations]

    if not items:
        return NodeOutput(ok=True, port="done", text="Loop: no items to iterate.",
                          data={"items": [], "count": 0})
    return NodeOutput(ok=True, port="item", items=items,
                      text=f"Loop: {len(items)} items to iterate.",
                      data={"items": items, "count": len(items)})


async def handle_merge(node: BaseNode, ctx: ExecutionContext) -> NodeOutput:
    """Combine everything recorded so far; the runner orders merges after their inputs."""
    mode = getattr(node, "mode", None) or "wait-all"
    texts = [o.text for o in ctx.node_outputs.values() if o.text]
    inputs = [o.data for o in ctx.node_outputs.values() if o.data is not None]
    return NodeOutput(
        ok=True,
        text="\n\n---\n\n".join(texts),
        data={"mode": mode, "inputs": inputs, "count": len(inputs)},
        items=inputs,
    )


async def handle_split(node: BaseNode, ctx: ExecutionContext) -> NodeOutput:
    return NodeOutput(ok=True, text=ctx.last_text(), data={"split": True})


async def handle_wait(node: BaseNode, ctx: ExecutionContext) -> NodeOutput:
    wait_mode = getattr(node, "wait_mode", None)
    duration_ms = getattr(node, "duration_ms", None)
    if wait_mode == "duration" and duration_ms:
        waited = min(duration_ms, MAX_WAIT_MS)
        logger.debug("Wait node sleeping", node_id=node.id, duration_ms=waited)
        await asyncio.sleep(waited / 1000)
        return NodeOutput(ok=True, text=f"Waited {waited}ms.", data={"waited": waited})
    return NodeOutput(ok=True, text="Wait node processed.", data={"waitMode": wait_mode})
