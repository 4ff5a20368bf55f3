"""
Mission Scheduler Service using APScheduler.
Ticks on an interval and runs every registered mission through its schedule gate.
"""
import asyncio
from datetime import datetime
from typing import Awaitable, Callable, Dict, List, Optional, Set

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from core.config import Settings
from core.logging import get_logger
from models.mission import Mission
from services.execution.executor import MissionRunner
from services.execution.models import RunResult, RunSource, utc_now

logger = get_logger(__name__)

TICK_JOB_ID = "mission-scheduler-tick"

RunCallback = Callable[[Mission, RunResult], Awaitable[None]]


def apply_run_result(mission: Mission, result: RunResult, now: datetime) -> Mission:
    """Return a copy of ``mission`` with run history updated from ``result``."""
    update = {
        "last_run_at": now.isoformat(),
        "run_count": mission.run_count + 1,
        "success_count": mission.success_count + (1 if result.ok else 0),
        "failure_count": mission.failure_count + (0 if result.ok else 1),
    }
    if result.ok and result.day_stamp:
        update["last_sent_local_date"] = result.day_stamp
    return mission.model_copy(update=update)


class MissionScheduler:
    """Periodic driver for scheduler-sourced mission runs.

    Missions are held in memory and replaced (never mutated) after each run.
    A mission still running from a previous tick is skipped.
    """

    def __init__(
        self,
        runner: MissionRunner,
        settings: Settings,
        scheduler: Optional[AsyncIOScheduler] = None,
        on_run_complete: Optional[RunCallback] = None,
    ):
        self.runner = runner
        self.settings = settings
        self.on_run_complete = on_run_complete
        self._scheduler = scheduler or AsyncIOScheduler(timezone="UTC")
        self._missions: Dict[str, Mission] = {}
        self._running: Set[str] = set()

    @property
    def running(self) -> bool:
        return self._scheduler.running

    def start(self):
        """Start the interval tick if not already running."""
        if self._scheduler.running:
            return
        self._scheduler.add_job(
            self.tick,
            trigger=IntervalTrigger(seconds=self.settings.scheduler_tick_seconds),
            id=TICK_JOB_ID,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self._scheduler.start()
        logger.info("[Scheduler] Started", tick_seconds=self.settings.scheduler_tick_seconds)

    def shutdown(self):
        """Shutdown the scheduler gracefully."""
        if not self._scheduler.running:
            return
        try:
            self._scheduler.remove_job(TICK_JOB_ID)
        except JobLookupError:
            logger.warning("[Scheduler] Tick job not found", job_id=TICK_JOB_ID)
        self._scheduler.shutdown(wait=False)
        logger.info("[Scheduler] Shutdown")

    # =========================================================================
    # REGISTRY
    # =========================================================================

    def register(self, mission: Mission) -> str:
        self._missions[mission.id] = mission
        logger.info("[Scheduler] Registered mission", mission_id=mission.id, label=mission.label)
        return mission.id

    def unregister(self, mission_id: str) -> bool:
        removed = self._missions.pop(mission_id, None)
        if removed is None:
            logger.warning("[Scheduler] Mission not found", mission_id=mission_id)
            return False
        logger.info("[Scheduler] Removed mission", mission_id=mission_id)
        return True

    def get_mission(self, mission_id: str) -> Optional[Mission]:
        return self._missions.get(mission_id)

    def missions(self) -> List[Mission]:
        return list(self._missions.values())

    def is_running(self, mission_id: str) -> bool:
        return mission_id in self._running

    # =========================================================================
    # EXECUTION
    # =========================================================================

    async def tick(self, now: Optional[datetime] = None) -> Dict[str, RunResult]:
        """Run every registered mission that is not already in flight."""
        now = now or utc_now()
        due = [m for m in self._missions.values() if m.id not in self._running]
        for mission_id in self._missions.keys() - {m.id for m in due}:
            logger.info("[Scheduler] Mission still running, skipping tick", mission_id=mission_id)

        results = await asyncio.gather(*(self.run_mission(m.id, now) for m in due))
        return {mission.id: result for mission, result in zip(due, results) if result is not None}

    async def run_mission(self, mission_id: str, now: Optional[datetime] = None) -> Optional[RunResult]:
        """Run one mission under overlap protection. Returns None when it was already running."""
        mission = self._missions.get(mission_id)
        if mission is None or mission_id in self._running:
            return None

        now = now or utc_now()
        self._running.add(mission_id)
        try:
            result = await self.runner.run(mission, source=RunSource.SCHEDULER, now=now)
            if not result.skipped:
                updated = apply_run_result(mission, result, now)
                if mission_id in self._missions:
                    self._missions[mission_id] = updated
                mission = updated
                logger.info("[Scheduler] Mission run recorded", mission_id=mission_id,
                            ok=result.ok, run_count=updated.run_count)
            if self.on_run_complete is not None:
                await self.on_run_complete(mission, result)
            return result
        except Exception as e:
            logger.error("[Scheduler] Mission run crashed", mission_id=mission_id, error=str(e))
            raise
        finally:
            self._running.discard(mission_id)
