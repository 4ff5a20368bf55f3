import pytest

from core.cache import CacheService
from core.config import Settings


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.mark.asyncio
async def test_set_requires_running_cache(settings):
    cache = CacheService(settings)
    assert await cache.set("k", "v") is False
    await cache.startup()
    assert await cache.set("k", "v") is True
    assert await cache.get("k") == "v"


@pytest.mark.asyncio
async def test_entries_expire(settings, clock):
    cache = CacheService(settings, clock=clock)
    await cache.startup()
    await cache.set("k", "v", ttl=10)
    clock.now += 9
    assert await cache.get("k") == "v"
    clock.now += 2
    assert await cache.get("k", "gone") == "gone"
    assert cache.stats()["misses"] == 1


@pytest.mark.asyncio
async def test_least_recently_used_is_evicted(clock):
    cache = CacheService(Settings(_env_file=None, cache_max_entries=2), clock=clock)
    await cache.startup()
    await cache.set("a", 1)
    await cache.set("b", 2)
    await cache.get("a")
    await cache.set("c", 3)
    assert await cache.get("b") is None
    assert await cache.get("a") == 1
    assert await cache.get("c") == 3


@pytest.mark.asyncio
async def test_shutdown_clears(settings):
    cache = CacheService(settings)
    await cache.startup()
    await cache.set("k", "v")
    await cache.shutdown()
    assert cache.running is False
    assert await cache.get("k") is None


def test_numeric_settings_are_clamped():
    settings = Settings(_env_file=None, scheduler_window_minutes=500, code_timeout_ms="fast",
                        mission_quality_min_score=-3)
    assert settings.scheduler_window_minutes == 120
    assert settings.code_timeout_ms == 500
    assert settings.mission_quality_min_score == 0


def test_settings_read_prefixed_environment(monkeypatch):
    monkeypatch.setenv("NOVA_SCHEDULER_TICK_SECONDS", "30")
    monkeypatch.setenv("NOVA_LOG_FORMAT", "JSON")
    settings = Settings(_env_file=None)
    assert settings.scheduler_tick_seconds == 30
    assert settings.log_format == "json"
