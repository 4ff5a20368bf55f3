import httpx
import pytest

from core.cache import CacheService
from models.nodes import parse_node
from services.collaborators import NullPriceFeed, PriceFeedResult
from services.execution.models import ExecutionContext
from services.fetchers import HttpFetcher, ResponseTooLargeError, UnsafeURLError, is_private_address
from services.handlers.http import handle_http_request, handle_rss_feed, parse_rss_items
from services.handlers.prices import handle_coinbase
from services.handlers.search import handle_web_search
from helpers import FakePriceFeed, FakeSearch, make_mission, node

FEED = """<?xml version="1.0"?>
<rss><channel>
  <item><title>AI chips get faster</title><description><![CDATA[New <b>silicon</b> ships.]]></description>
        <link>https://news.example/chips</link><pubDate>Mon, 02 Mar 2026 08:00:00 GMT</pubDate></item>
  <item><title>Local weather</title><description>Cloudy later.</description><link>https://news.example/rain</link></item>
  <item><title>AI policy update</title><description>Regulators meet.</description></item>
</channel></rss>"""


@pytest.fixture
def ctx(settings):
    return ExecutionContext.create(make_mission([node("t", "manual-trigger")],
                                                variables=[{"name": "token", "value": "s3cret"}]), settings)


@pytest.mark.parametrize("address,expected", [
    ("127.0.0.1", True),
    ("10.1.2.3", True),
    ("172.16.0.9", True),
    ("192.168.1.1", True),
    ("169.254.169.254", True),
    ("100.64.0.1", True),
    ("::1", True),
    ("fd00::1", True),
    ("::ffff:127.0.0.1", True),
    ("0.0.0.0", True),
    ("93.184.216.34", False),
    ("2606:2800:220:1:248:1893:25c8:1946", False),
])
def test_private_address_ranges(address, expected):
    assert is_private_address(address) is expected


@pytest.mark.asyncio
@pytest.mark.parametrize("url", [
    "ftp://files.example/data",
    "http://localhost:8080/",
    "http://printer.local/status",
    "http://10.0.0.5/admin",
    "http://[::ffff:127.0.0.1]/",
    "http://169.254.169.254/latest/meta-data",
])
async def test_unsafe_urls_are_rejected(fetcher, url):
    with pytest.raises(UnsafeURLError):
        await fetcher.assert_safe_url(url)


@pytest.mark.asyncio
async def test_private_dns_resolution_is_rejected(settings):
    async def internal_resolver(hostname):
        return ["93.184.216.34", "192.168.0.12"]

    guarded = HttpFetcher(settings, CacheService(settings), resolver=internal_resolver)
    with pytest.raises(UnsafeURLError, match="private DNS"):
        await guarded.assert_safe_url("https://sneaky.example/")


@pytest.mark.asyncio
async def test_redirect_to_private_address_is_rejected(fetcher, http_handler, ctx):
    http_handler["https://public.example/start"] = httpx.Response(302, headers={"location": "http://127.0.0.1/admin"})
    output = await handle_http_request(parse_node(node("h", "http-request", url="https://public.example/start")),
                                       ctx, fetcher=fetcher)
    assert output.ok is False
    assert output.error_code == "FETCH_ERROR"
    assert "127.0.0.1" in output.error


@pytest.mark.asyncio
async def test_redirects_are_followed_when_public(fetcher, http_handler):
    http_handler["https://public.example/old"] = httpx.Response(301, headers={"location": "/new"})
    http_handler["https://public.example/new"] = httpx.Response(200, text="moved here")
    response = await fetcher.fetch("https://public.example/old")
    assert response.text == "moved here"
    assert response.final_url == "https://public.example/new"


@pytest.mark.asyncio
async def test_body_size_is_capped(fetcher, http_handler):
    http_handler["https://big.example/"] = httpx.Response(200, text="x" * 10_000)
    with pytest.raises(ResponseTooLargeError):
        await fetcher.fetch("https://big.example/", max_bytes=4096)


@pytest.mark.asyncio
async def test_http_request_parses_json(fetcher, http_handler, ctx):
    http_handler["https://api.example.com/price"] = httpx.Response(200, json={"price": 3})
    output = await handle_http_request(
        parse_node(node("h", "http-request", url="https://api.example.com/price", responseFormat="json")),
        ctx, fetcher=fetcher)
    assert output.ok
    assert output.data == {"price": 3}
    assert output.text == '{"price": 3}'


@pytest.mark.asyncio
async def test_http_error_body_does_not_flow_downstream(fetcher, http_handler, ctx):
    http_handler["https://api.example.com/missing"] = httpx.Response(500, text="stack trace here")
    output = await handle_http_request(parse_node(node("h", "http-request", url="https://api.example.com/missing")),
                                       ctx, fetcher=fetcher)
    assert output.ok is False
    assert output.error == "HTTP 500"
    assert output.error_code == "HTTP_500"
    assert output.text == ""


@pytest.mark.asyncio
async def test_http_request_empty_url(fetcher, ctx):
    output = await handle_http_request(parse_node(node("h", "http-request", url="{{$vars.nothing}}")),
                                       ctx, fetcher=fetcher)
    assert output.error == "HTTP request URL is empty."


@pytest.mark.asyncio
async def test_get_responses_are_cached_but_not_authenticated_ones(fetcher, http_handler, ctx):
    seen = []

    def respond(request):
        seen.append(request.headers.get("Authorization"))
        return httpx.Response(200, text="payload")

    http_handler["https://api.example.com/feed"] = respond
    await fetcher.cache.startup()
    plain = parse_node(node("h", "http-request", url="https://api.example.com/feed"))
    await handle_http_request(plain, ctx, fetcher=fetcher)
    await handle_http_request(plain, ctx, fetcher=fetcher)
    assert seen == [None]

    authed = parse_node(node("h", "http-request", url="https://api.example.com/feed",
                             authentication="bearer", authToken="{{$vars.token}}"))
    await handle_http_request(authed, ctx, fetcher=fetcher)
    await handle_http_request(authed, ctx, fetcher=fetcher)
    assert seen == [None, "Bearer s3cret", "Bearer s3cret"]


def test_parse_rss_items_handles_cdata_and_limits():
    items = parse_rss_items(FEED, 2)
    assert len(items) == 2
    assert items[0]["title"] == "AI chips get faster"
    assert items[0]["description"] == "New silicon ships."
    assert items[0]["link"] == "https://news.example/chips"
    assert items[0]["pubDate"] == "Mon, 02 Mar 2026 08:00:00 GMT"
    assert items[1]["pubDate"] is None


def test_parse_rss_items_decodes_entities():
    xml = ("<item><title>AT&amp;T &amp; Verizon &#8217;beat&#8217;</title>"
           "<description>&lt;p&gt;Shares rose&lt;/p&gt;</description>"
           "<link>https://x.example/a?b=1&amp;c=2</link></item>"
           "<item><title><![CDATA[Q&A: R&D spend]]></title><description><![CDATA[Fish &amp; chips]]></description></item>")
    items = parse_rss_items(xml, 5)
    assert items[0] == {
        "title": "AT&T & Verizon \u2019beat\u2019",
        "description": "Shares rose",
        "link": "https://x.example/a?b=1&c=2",
        "pubDate": None,
    }
    assert items[1]["title"] == "Q&A: R&D spend"
    assert items[1]["link"] is None


def test_parse_rss_items_without_budget():
    assert parse_rss_items(FEED, 0) == []


@pytest.mark.asyncio
async def test_rss_feed_keyword_filter(fetcher, http_handler, ctx):
    http_handler["https://news.example/rss"] = httpx.Response(200, text=FEED)
    output = await handle_rss_feed(
        parse_node(node("r", "rss-feed", url="https://news.example/rss", filterKeywords=["ai"])),
        ctx, fetcher=fetcher)
    assert output.ok
    assert [item["title"] for item in output.items] == ["AI chips get faster", "AI policy update"]
    assert output.data == {"items": output.items}
    assert output.text.startswith("AI chips get faster\nNew silicon ships.")


@pytest.mark.asyncio
async def test_rss_feed_http_error(fetcher, ctx):
    output = await handle_rss_feed(parse_node(node("r", "rss-feed", url="https://news.example/gone")),
                                   ctx, fetcher=fetcher)
    assert output.ok is False
    assert output.error == "HTTP 404"


@pytest.mark.asyncio
async def test_web_search_uses_provider(ctx):
    search = FakeSearch(results=[{"title": "Result", "url": "https://r.example", "snippet": "Snippet."}])
    output = await handle_web_search(
        parse_node(node("s", "web-search", query="weather {{$vars.token}}", maxResults=3)), ctx, search=search)
    assert output.ok
    assert search.calls == [{"query": "weather s3cret", "options": {"maxResults": 3, "fetchContent": False}}]
    assert output.text == "Result: Snippet."
    assert output.items[0]["url"] == "https://r.example"


@pytest.mark.asyncio
async def test_web_search_empty_query(ctx):
    output = await handle_web_search(parse_node(node("s", "web-search", query="  ")), ctx, search=FakeSearch())
    assert output.error == "Web search query is empty."


@pytest.mark.asyncio
async def test_coinbase_formats_prices(ctx):
    feed = FakePriceFeed()
    output = await handle_coinbase(parse_node(node("c", "coinbase", assets=["ETH", "SUI"])), ctx, price_feed=feed)
    assert output.ok
    assert "ETH:" in output.text and "SUI:" in output.text
    request = feed.requests[0]
    assert request["params"]["assets"] == ["ETH", "SUI"]
    assert request["params"]["quoteCurrency"] == "USD"
    assert request["missionRunId"] == ctx.run_id


@pytest.mark.asyncio
async def test_coinbase_failure_carries_error_code(ctx):
    output = await handle_coinbase(parse_node(node("c", "coinbase")), ctx, price_feed=NullPriceFeed())
    assert output.ok is False
    assert output.error_code == "PRICE_FEED_UNAVAILABLE"


@pytest.mark.asyncio
async def test_coinbase_string_output_passes_through(ctx):
    feed = FakePriceFeed(PriceFeedResult(ok=True, output="ETH is flat today."))
    output = await handle_coinbase(parse_node(node("c", "coinbase")), ctx, price_feed=feed)
    assert output.text == "ETH is flat today."
