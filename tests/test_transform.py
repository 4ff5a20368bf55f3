import pytest

from models.nodes import parse_node
from services.execution.models import ExecutionContext, NodeOutput
from services.handlers.transform import (
    compare_values,
    handle_dedupe,
    handle_format,
    handle_set_variables,
    handle_sort,
)
from helpers import make_mission, node

STORIES = [
    {"title": "b", "score": 10, "url": "https://a.example/1"},
    {"title": "a", "score": 2, "url": "https://a.example/2"},
    {"title": "c", "score": 33, "url": "https://a.example/1"},
]


@pytest.fixture
def ctx(settings):
    context = ExecutionContext.create(make_mission([node("src", "web-search", "Search")]), settings)
    context.record_output("src", NodeOutput(ok=True, text="three stories", items=list(STORIES)))
    return context


def test_compare_values_numeric_then_text():
    assert compare_values(2, 10) < 0
    assert compare_values("2", "10") > 0
    assert compare_values(None, "a") < 0
    assert compare_values(1.5, 1.5) == 0


@pytest.mark.asyncio
async def test_sort_numeric_descending(ctx):
    output = await handle_sort(parse_node(node("s", "sort", field="score", direction="desc")), ctx)
    assert [row["score"] for row in output.items] == [33, 10, 2]
    assert output.data == output.items


@pytest.mark.asyncio
async def test_sort_text_ascending(ctx):
    output = await handle_sort(parse_node(node("s", "sort", field="title")), ctx)
    assert [row["title"] for row in output.items] == ["a", "b", "c"]


@pytest.mark.asyncio
async def test_sort_without_items_passes_text_through(settings):
    context = ExecutionContext.create(make_mission([node("a", "format")]), settings)
    context.record_output("a", NodeOutput(ok=True, text="plain"))
    output = await handle_sort(parse_node(node("s", "sort", field="x")), context)
    assert output.text == "plain"
    assert output.data == {"sorted": False}


@pytest.mark.asyncio
async def test_dedupe_keeps_first_by_field(ctx):
    output = await handle_dedupe(parse_node(node("d", "dedupe", field="url")), ctx)
    assert [row["title"] for row in output.items] == ["b", "a"]


@pytest.mark.asyncio
async def test_dedupe_without_items(settings):
    context = ExecutionContext.create(make_mission([node("a", "format")]), settings)
    output = await handle_dedupe(parse_node(node("d", "dedupe", field="url")), context)
    assert output.data == {"deduped": False}


@pytest.mark.asyncio
async def test_set_variables_then_format(ctx):
    assign = parse_node(node("v", "set-variables", assignments=[
        {"name": "headline", "value": "{{$nodes.Search.output}}"},
        {"name": "__proto__", "value": "nope"},
    ]))
    output = await handle_set_variables(assign, ctx)
    assert output.data == {"assigned": ["headline", "__proto__"]}
    assert ctx.variables == {"headline": "three stories"}

    formatted = await handle_format(parse_node(node("f", "format", template="Top: {{$vars.headline}}",
                                                    outputFormat="markdown")), ctx)
    assert formatted.text == "Top: three stories"
    assert formatted.data == {"text": "Top: three stories", "format": "markdown"}
