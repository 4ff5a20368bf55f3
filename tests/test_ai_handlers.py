import pytest

from models.nodes import parse_node
from services.collaborators import NullLLMCompletion
from services.execution.models import ExecutionContext, NodeOutput
from services.handlers.ai import (
    CLASSIFY_MAX_TOKENS,
    DEFAULT_MAX_TOKENS,
    MAX_PROMPT_CHARS,
    handle_ai_chat,
    handle_ai_classify,
    handle_ai_extract,
    handle_ai_generate,
    handle_ai_summarize,
)
from helpers import FakeLLM, make_mission, node


@pytest.fixture
def ctx(settings):
    mission = make_mission([
        node("t", "manual-trigger", "Start"),
        node("s", "web-search", "Headlines"),
        node("a", "ai-summarize", "Digest"),
    ], variables=[{"name": "tone", "value": "upbeat"}])
    context = ExecutionContext.create(mission, settings, scope={"userId": "u-9"})
    context.record_output("t", NodeOutput(ok=True, text="Triggered manually."))
    context.record_output("s", NodeOutput(ok=True, text="Markets rallied on Monday."))
    return context


@pytest.mark.asyncio
async def test_summarize_uses_upstream_context(ctx):
    llm = FakeLLM(text="Short digest.")
    summary = parse_node(node("a", "ai-summarize", "Digest", prompt="Summarize in an {{$vars.tone}} tone",
                              systemPrompt="Be brief."))
    output = await handle_ai_summarize(summary, ctx, llm=llm)
    assert output.ok
    assert output.text == "Short digest."
    assert output.data == {"text": "Short digest.", "provider": "fake", "model": "fake-1"}

    call = llm.calls[0]
    assert call["system"] == "Be brief."
    assert call["max_tokens"] == DEFAULT_MAX_TOKENS
    assert call["scope"] == {"userId": "u-9"}
    # prompts are whitespace-normalized before they reach the provider
    assert call["prompt"].startswith("Summarize in an upbeat tone ---INPUT--- ")
    # trigger output is not upstream context
    assert "[Headlines] Markets rallied on Monday." in call["prompt"]
    assert "Triggered manually." not in call["prompt"]


@pytest.mark.asyncio
async def test_summarize_prefers_input_expression(ctx):
    llm = FakeLLM()
    summary = parse_node(node("a", "ai-summarize", inputExpression="Only this: {{$vars.tone}}"))
    await handle_ai_summarize(summary, ctx, llm=llm)
    assert llm.calls[0]["prompt"].endswith("---INPUT--- Only this: upbeat")


@pytest.mark.asyncio
async def test_summarize_without_input_fails(settings):
    empty = ExecutionContext.create(make_mission([node("a", "ai-summarize")]), settings)
    output = await handle_ai_summarize(parse_node(node("a", "ai-summarize")), empty, llm=FakeLLM())
    assert output.error == "No input text available for AI summarization."


@pytest.mark.asyncio
async def test_provider_override_is_forwarded(ctx):
    llm = FakeLLM()
    await handle_ai_generate(parse_node(node("g", "ai-generate", prompt="Write", integration="claude",
                                             model="small")), ctx, llm=llm)
    assert llm.calls[0]["override"] == {"provider": "claude", "model": "small"}


@pytest.mark.asyncio
async def test_prompt_is_truncated(ctx):
    llm = FakeLLM()
    await handle_ai_generate(parse_node(node("g", "ai-generate", prompt="x" * 20000)), ctx, llm=llm)
    assert len(llm.calls[0]["prompt"]) == MAX_PROMPT_CHARS + len("...")


@pytest.mark.asyncio
async def test_classify_returns_trimmed_label(ctx):
    llm = FakeLLM(text="  finance \n")
    output = await handle_ai_classify(parse_node(node("c", "ai-classify", categories=["finance", "sports"])),
                                      ctx, llm=llm)
    assert output.text == "finance"
    assert output.data["classification"] == "finance"
    assert llm.calls[0]["max_tokens"] == CLASSIFY_MAX_TOKENS
    assert "Categories: finance, sports" in llm.calls[0]["prompt"]


@pytest.mark.asyncio
async def test_extract_parses_json_when_possible(ctx):
    output = await handle_ai_extract(parse_node(node("e", "ai-extract", outputSchema='{"ticker": "string"}')),
                                     ctx, llm=FakeLLM(text='{"ticker": "ETH"}'))
    assert output.data == {"ticker": "ETH"}

    loose = await handle_ai_extract(parse_node(node("e", "ai-extract")), ctx, llm=FakeLLM(text="not json"))
    assert loose.ok and loose.data == "not json"


@pytest.mark.asyncio
async def test_chat_builds_transcript(ctx):
    llm = FakeLLM()
    chat = parse_node(node("c", "ai-chat", messages=[
        {"role": "system", "content": "You are {{$vars.tone}}."},
        {"role": "user", "content": "Hi"},
        {"role": "assistant", "content": "Hello"},
    ]))
    await handle_ai_chat(chat, ctx, llm=llm)
    assert llm.calls[0]["system"] == "You are upbeat."
    assert llm.calls[0]["prompt"] == "User: Hi Assistant: Hello"


@pytest.mark.asyncio
async def test_provider_errors_become_node_failures(ctx):
    output = await handle_ai_generate(parse_node(node("g", "ai-generate", prompt="x")), ctx,
                                      llm=FakeLLM(error=RuntimeError("rate limited")))
    assert output.ok is False
    assert output.error == "rate limited"

    unconfigured = await handle_ai_generate(parse_node(node("g", "ai-generate", prompt="x")), ctx,
                                            llm=NullLLMCompletion())
    assert unconfigured.error == "No LLM provider configured."
