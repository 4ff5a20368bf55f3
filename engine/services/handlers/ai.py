"""AI node handlers - Summarize, Classify, Extract, Generate, Chat.

Each handler resolves its input text, builds a prompt and makes a single
call to the LLM collaborator. Provider errors never escape: they become
``ok=False`` outputs carrying ``str(err)``.
"""

import json
from typing import Any, Dict, Optional

from core.logging import get_logger
from models.nodes import BaseNode
from services.collaborators import LLMCompletion
from services.execution.models import ExecutionContext, NodeOutput
from services.output.briefing import aggregate_upstream_node_text
from services.text import truncate_for_model

logger = get_logger(__name__)

MAX_INPUT_CHARS = 12000
MAX_PROMPT_CHARS = 11000
PER_NODE_CONTEXT_CHARS = 1600
DEFAULT_MAX_TOKENS = 2200
CLASSIFY_MAX_TOKENS = 500


def resolve_ai_input(node: BaseNode, ctx: ExecutionContext, fallback: str) -> str:
    """``inputExpression`` when it resolves to something, else ``fallback``."""
    expression = getattr(node, "input_expression", None)
    if expression:
        resolved = ctx.resolve_expr(expression)
        if resolved.strip():
            return truncate_for_model(resolved, MAX_INPUT_CHARS)
    return truncate_for_model(fallback, MAX_INPUT_CHARS)


def upstream_context_text(ctx: ExecutionContext) -> str:
    aggregated = aggregate_upstream_node_text(
        ctx.mission, ctx.node_outputs,
        max_chars=MAX_INPUT_CHARS,
        per_node_max_chars=PER_NODE_CONTEXT_CHARS,
    ).strip()
    if aggregated:
        return aggregated
    return truncate_for_model(ctx.last_text(), MAX_INPUT_CHARS)


def provider_override(node: BaseNode) -> Optional[Dict[str, Any]]:
    integration = getattr(node, "integration", None)
    model = getattr(node, "model", None)
    if not (integration or model):
        return None
    return {"provider": integration or None, "model": model or None}


async def _complete(node: BaseNode, ctx: ExecutionContext, llm: LLMCompletion,
                    system: str, prompt: str, max_tokens: int):
    logger.info("AI completion", node_id=node.id, node_type=node.type,
                prompt_chars=len(prompt), max_tokens=max_tokens)
    return await llm.complete(system, truncate_for_model(prompt, MAX_PROMPT_CHARS), max_tokens,
                              ctx.scope, provider_override(node))


async def handle_ai_summarize(node: BaseNode, ctx: ExecutionContext, *, llm: LLMCompletion) -> NodeOutput:
    input_text = resolve_ai_input(node, ctx, upstream_context_text(ctx))
    if not input_text.strip():
        return NodeOutput.failure("No input text available for AI summarization.")

    prompt = f"{ctx.resolve_expr(getattr(node, 'prompt', ''))}\n\n---INPUT---\n{input_text}"
    try:
        result = await _complete(node, ctx, llm, getattr(node, "system_prompt", None) or "",
                                 prompt, DEFAULT_MAX_TOKENS)
    except Exception as e:
        logger.warning("AI summarize failed", node_id=node.id, error=str(e))
        return NodeOutput.failure(str(e))
    return NodeOutput(ok=True, text=result.text,
                      data={"text": result.text, "provider": result.provider, "model": result.model})


async def handle_ai_classify(node: BaseNode, ctx: ExecutionContext, *, llm: LLMCompletion) -> NodeOutput:
    input_text = resolve_ai_input(node, ctx, upstream_context_text(ctx))
    categories = list(getattr(node, "categories", None) or [])
    prompt = (
        f"{ctx.resolve_expr(getattr(node, 'prompt', ''))}\n\n"
        f"Categories: {', '.join(categories)}\n\n"
        f"Classify the following:\n{input_text}\n\n"
        "Respond with ONLY the category name."
    )
    try:
        result = await _complete(node, ctx, llm, "", prompt, CLASSIFY_MAX_TOKENS)
    except Exception as e:
        logger.warning("AI classify failed", node_id=node.id, error=str(e))
        return NodeOutput.failure(str(e))
    classification = result.text.strip()
    return NodeOutput(ok=True, text=classification,
                      data={"classification": classification, "categories": categories,
                            "provider": result.provider})


async def handle_ai_extract(node: BaseNode, ctx: ExecutionContext, *, llm: LLMCompletion) -> NodeOutput:
    input_text = resolve_ai_input(node, ctx, upstream_context_text(ctx))
    schema = getattr(node, "output_schema", None)
    schema_hint = f"\n\nOutput as JSON matching this schema:\n{schema}" if schema else "\n\nOutput as JSON."
    prompt = f"{ctx.resolve_expr(getattr(node, 'prompt', ''))}{schema_hint}\n\n---INPUT---\n{input_text}"
    try:
        result = await _complete(node, ctx, llm, "", prompt, DEFAULT_MAX_TOKENS)
    except Exception as e:
        logger.warning("AI extract failed", node_id=node.id, error=str(e))
        return NodeOutput.failure(str(e))

    data: Any = result.text
    try:
        data = json.loads(result.text)
    except ValueError:
        pass
    return NodeOutput(ok=True, text=result.text, data=data)


async def handle_ai_generate(node: BaseNode, ctx: ExecutionContext, *, llm: LLMCompletion) -> NodeOutput:
    context_text = upstream_context_text(ctx)
    prompt = ctx.resolve_expr(getattr(node, "prompt", ""))
    if context_text:
        prompt = f"{prompt}\n\n---CONTEXT---\n{context_text}"
    try:
        result = await _complete(node, ctx, llm, getattr(node, "system_prompt", None) or "",
                                 prompt, DEFAULT_MAX_TOKENS)
    except Exception as e:
        logger.warning("AI generate failed", node_id=node.id, error=str(e))
        return NodeOutput.failure(str(e))
    return NodeOutput(ok=True, text=result.text,
                      data={"text": result.text, "provider": result.provider, "model": result.model})


async def handle_ai_chat(node: BaseNode, ctx: ExecutionContext, *, llm: LLMCompletion) -> NodeOutput:
    messages = [(m.role, ctx.resolve_expr(m.content)) for m in (getattr(node, "messages", None) or [])]
    transcript = "\n\n".join(
        f"{'User' if role == 'user' else 'Assistant'}: {content}"
        for role, content in messages if role != "system"
    )
    system = next((content for role, content in messages if role == "system"), "")
    try:
        result = await _complete(node, ctx, llm, system, transcript, DEFAULT_MAX_TOKENS)
    except Exception as e:
        logger.warning("AI chat failed", node_id=node.id, error=str(e))
        return NodeOutput.failure(str(e))
    return NodeOutput(ok=True, text=result.text, data={"text": result.text, "provider": result.provider})
