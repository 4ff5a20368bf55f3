import asyncio
from datetime import datetime, timezone

import pytest
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from services.execution.models import RunResult, RunSource
from services.scheduler import TICK_JOB_ID, MissionScheduler, apply_run_result
from helpers import chain, make_mission, node

NOW = datetime(2026, 3, 2, 14, 5, tzinfo=timezone.utc)


class ScriptedRunner:
    """Answers every run with ``result``; optionally blocks until released."""

    def __init__(self, result=None, gate=None):
        self.result = result or RunResult(ok=True, run_id="run-1", day_stamp="2026-03-02")
        self.gate = gate
        self.calls = []

    async def run(self, mission, source=RunSource.MANUAL, now=None, **kwargs):
        self.calls.append({"mission_id": mission.id, "source": source, "now": now})
        if self.gate is not None:
            await self.gate.wait()
        return self.result


def _mission(mission_id="mission-1", **fields):
    return make_mission([node("t", "schedule-trigger", triggerTime="09:00")], id=mission_id, **fields)


# =============================================================================
# RUN HISTORY
# =============================================================================

def test_apply_run_result_counts_success():
    mission = _mission(runCount=2, successCount=1, failureCount=1)
    updated = apply_run_result(mission, RunResult(ok=True, day_stamp="2026-03-02"), NOW)

    assert (updated.run_count, updated.success_count, updated.failure_count) == (3, 2, 1)
    assert updated.last_sent_local_date == "2026-03-02"
    assert updated.last_run_at == NOW.isoformat()
    # input mission is unchanged
    assert mission.run_count == 2


def test_apply_run_result_counts_failure_without_day_stamp():
    mission = _mission(lastSentLocalDate="2026-03-01")
    updated = apply_run_result(mission, RunResult(ok=False, day_stamp="2026-03-02"), NOW)

    assert (updated.run_count, updated.success_count, updated.failure_count) == (1, 0, 1)
    assert updated.last_sent_local_date == "2026-03-01"


# =============================================================================
# REGISTRY
# =============================================================================

def test_register_and_unregister(settings):
    scheduler = MissionScheduler(ScriptedRunner(), settings)
    scheduler.register(_mission("a"))
    scheduler.register(_mission("b"))

    assert [m.id for m in scheduler.missions()] == ["a", "b"]
    assert scheduler.unregister("a") is True
    assert scheduler.unregister("a") is False
    assert scheduler.get_mission("a") is None


# =============================================================================
# TICKS
# =============================================================================

@pytest.mark.asyncio
async def test_tick_runs_every_mission_as_scheduler(settings):
    runner = ScriptedRunner()
    scheduler = MissionScheduler(runner, settings)
    scheduler.register(_mission("a"))
    scheduler.register(_mission("b"))

    results = await scheduler.tick(NOW)

    assert sorted(results) == ["a", "b"]
    assert {call["source"] for call in runner.calls} == {RunSource.SCHEDULER}
    assert all(call["now"] == NOW for call in runner.calls)
    assert scheduler.get_mission("a").run_count == 1
    assert scheduler.get_mission("a").last_sent_local_date == "2026-03-02"


@pytest.mark.asyncio
async def test_skipped_runs_leave_history_alone(settings):
    runner = ScriptedRunner(RunResult(ok=True, skipped=True, reason="Not yet time."))
    scheduler = MissionScheduler(runner, settings)
    scheduler.register(_mission("a"))

    await scheduler.tick(NOW)

    assert scheduler.get_mission("a").run_count == 0
    assert scheduler.get_mission("a").last_run_at is None


@pytest.mark.asyncio
async def test_mission_in_flight_is_not_started_twice(settings):
    gate = asyncio.Event()
    runner = ScriptedRunner(gate=gate)
    scheduler = MissionScheduler(runner, settings)
    scheduler.register(_mission("a"))

    first = asyncio.create_task(scheduler.run_mission("a", NOW))
    await asyncio.sleep(0)
    assert scheduler.is_running("a")

    assert await scheduler.run_mission("a", NOW) is None
    assert await scheduler.tick(NOW) == {}

    gate.set()
    result = await first
    assert result.ok is True
    assert len(runner.calls) == 1
    assert scheduler.is_running("a") is False


@pytest.mark.asyncio
async def test_unknown_mission_returns_none(settings):
    scheduler = MissionScheduler(ScriptedRunner(), settings)
    assert await scheduler.run_mission("missing", NOW) is None


@pytest.mark.asyncio
async def test_completion_callback_receives_updated_mission(settings):
    seen = []

    async def on_complete(mission, result):
        seen.append((mission.run_count, result.ok))

    scheduler = MissionScheduler(ScriptedRunner(), settings, on_run_complete=on_complete)
    scheduler.register(_mission("a"))
    await scheduler.run_mission("a", NOW)

    assert seen == [(1, True)]


@pytest.mark.asyncio
async def test_runner_crash_releases_the_mission(settings):
    class CrashingRunner:
        async def run(self, mission, **kwargs):
            raise RuntimeError("boom")

    scheduler = MissionScheduler(CrashingRunner(), settings)
    scheduler.register(_mission("a"))

    with pytest.raises(RuntimeError):
        await scheduler.run_mission("a", NOW)
    assert scheduler.is_running("a") is False


@pytest.mark.asyncio
async def test_daily_mission_runs_once_per_local_day(runner, settings, dispatcher):
    t = node("t", "schedule-trigger", triggerTime="09:00")
    fmt = node("fmt", "format", template="Good morning")
    scheduler = MissionScheduler(runner, settings)
    scheduler.register(make_mission([t, fmt], chain(t, fmt), id="daily"))

    first = await scheduler.tick(NOW)
    second = await scheduler.tick(NOW.replace(minute=10))

    assert first["daily"].ok is True and first["daily"].skipped is False
    assert second["daily"].skipped is True
    assert second["daily"].reason == "Already ran today (2026-03-02)."
    assert scheduler.get_mission("daily").run_count == 1
    assert len(dispatcher.calls) == 1


# =============================================================================
# LIFECYCLE
# =============================================================================

@pytest.mark.asyncio
async def test_start_and_shutdown(settings):
    scheduler = MissionScheduler(ScriptedRunner(), settings, scheduler=AsyncIOScheduler(timezone="UTC"))

    scheduler.start()
    assert scheduler.running is True
    job = scheduler._scheduler.get_job(TICK_JOB_ID)
    assert job is not None
    assert job.trigger.interval.total_seconds() == settings.scheduler_tick_seconds

    scheduler.start()
    assert len(scheduler._scheduler.get_jobs()) == 1

    scheduler.shutdown()
    assert scheduler.running is False
    scheduler.shutdown()
