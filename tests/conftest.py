import httpx
import pytest
import pytest_asyncio

from core.cache import CacheService
from core.config import Settings
from services.execution.executor import MissionRunner
from services.fetchers import HttpFetcher
from services.node_executor import NodeExecutor
from services.sandbox import SandboxRunner
from helpers import FakeDispatcher, FakeLLM, FakePriceFeed, FakeSearch


def _not_found(request: httpx.Request) -> httpx.Response:
    return httpx.Response(404, text="not found")


async def public_resolver(hostname: str):
    return ["93.184.216.34"]


@pytest.fixture
def settings():
    return Settings(_env_file=None, log_level="WARNING", mission_max_duration_ms=20_000)


@pytest.fixture
def llm():
    return FakeLLM()


@pytest.fixture
def search():
    return FakeSearch()


@pytest.fixture
def price_feed():
    return FakePriceFeed()


@pytest.fixture
def dispatcher():
    return FakeDispatcher()


@pytest.fixture
def http_handler():
    """Route table for the mock transport: ``{url: httpx.Response}``."""
    return {}


@pytest.fixture
def cache(settings):
    return CacheService(settings)


@pytest_asyncio.fixture
async def fetcher(settings, cache, http_handler):
    def handle(request: httpx.Request) -> httpx.Response:
        route = http_handler.get(str(request.url))
        if route is None:
            return _not_found(request)
        return route(request) if callable(route) else route

    instance = HttpFetcher(settings, cache, transport=httpx.MockTransport(handle), resolver=public_resolver)
    await instance.startup()
    yield instance
    await instance.shutdown()


@pytest.fixture
def sandbox(settings):
    return SandboxRunner(settings)


@pytest.fixture
def node_executor(settings, fetcher, sandbox, llm, search, price_feed, dispatcher):
    return NodeExecutor(settings, fetcher, sandbox, llm=llm, search=search,
                        price_feed=price_feed, dispatcher=dispatcher)


@pytest.fixture
def runner(node_executor, settings, dispatcher):
    return MissionRunner(node_executor, settings, dispatcher=dispatcher)
