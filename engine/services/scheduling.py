"""Schedule gate evaluation.

Decides whether a mission is due right now. Gate states are computed from the
trigger configuration, the wall clock and the mission's run history; nothing
here is stored.

Modes:
- daily / weekly / once: due when the local time is within ``window`` minutes
  after the target ``HH:MM`` (weekly and once also gate on ``triggerDays``).
- interval: due on the first run, or once ``intervalMinutes`` have elapsed.
"""

import re
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from constants import WEEKDAYS
from core.config import Settings
from core.logging import get_logger

logger = get_logger(__name__)

DEFAULT_WINDOW_MINUTES = 10
DEFAULT_TRIGGER_TIME = "09:00"
DEFAULT_INTERVAL_MINUTES = 30

TIME_PATTERN = re.compile(r'^(\d{2}):(\d{2})$')


class ScheduleState(str, Enum):
    NOT_DUE = "NOT_DUE"
    DUE_WITHIN_WINDOW = "DUE_WITHIN_WINDOW"
    MISSED_WINDOW = "MISSED_WINDOW"
    ALREADY_RAN = "ALREADY_RAN"


@dataclass(frozen=True)
class LocalParts:
    hour: int
    minute: int
    day_stamp: str
    weekday: str

    @property
    def minute_of_day(self) -> int:
        return self.hour * 60 + self.minute


@dataclass
class GateDecision:
    """Outcome of one gate evaluation. ``error`` is set only for bad configuration."""
    triggered: bool
    state: ScheduleState
    reason: str
    mode: str = "daily"
    timezone: str = ""
    day_stamp: str = ""
    lag_minutes: Optional[int] = None
    window_minutes: Optional[int] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_data(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "triggered": self.triggered,
            "state": self.state.value,
            "reason": self.reason,
            "mode": self.mode,
            "timezone": self.timezone,
            "dayStamp": self.day_stamp,
        }
        if self.lag_minutes is not None:
            data["lagMinutes"] = self.lag_minutes
        if self.window_minutes is not None:
            data["windowMinutes"] = self.window_minutes
        if not self.triggered:
            data["skipped"] = True
        return data


def parse_time(value: Optional[str]) -> Optional[Tuple[int, int]]:
    """Parse ``HH:MM`` (24h). Returns None when malformed or out of range."""
    match = TIME_PATTERN.match(str(value or "").strip())
    if not match:
        return None
    hour, minute = int(match.group(1)), int(match.group(2))
    if not (0 <= hour <= 23 and 0 <= minute <= 59):
        return None
    return hour, minute


def resolve_zone(name: str) -> Optional[ZoneInfo]:
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError, OSError):
        return None


def ensure_aware(moment: datetime) -> datetime:
    return moment if moment.tzinfo else moment.replace(tzinfo=timezone.utc)


def get_local_parts(now: datetime, zone: ZoneInfo) -> LocalParts:
    local = ensure_aware(now).astimezone(zone)
    return LocalParts(
        hour=local.hour,
        minute=local.minute,
        day_stamp=local.strftime("%Y-%m-%d"),
        weekday=WEEKDAYS[local.weekday()],
    )


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp; naive values are taken as UTC."""
    text = str(value or "").strip()
    if not text:
        return None
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return ensure_aware(datetime.fromisoformat(text))
    except ValueError:
        return None


def resolve_window_minutes(trigger_value: Any, settings: Settings) -> int:
    """Trigger's own window, else the configured default, clamped to [0, 120]."""
    raw: float = DEFAULT_WINDOW_MINUTES
    for candidate in (trigger_value, settings.scheduler_window_minutes):
        try:
            parsed = float(candidate)
        except (TypeError, ValueError):
            continue
        if parsed == parsed and parsed not in (float("inf"), float("-inf")):
            raw = parsed
            break
    return max(0, min(120, int(raw // 1)))


def resolve_timezone_name(trigger_timezone: Optional[str], mission_timezone: Optional[str], settings: Settings) -> str:
    for candidate in (trigger_timezone, mission_timezone, settings.default_timezone):
        text = str(candidate or "").strip()
        if text:
            return text
    return settings.default_timezone


def _format_minutes(value: float) -> str:
    return f"{value:g}"


def evaluate_interval(every_raw: Any, last_run_at: Optional[str], now: datetime) -> Tuple[bool, str]:
    try:
        every = max(1.0, float(every_raw or DEFAULT_INTERVAL_MINUTES))
    except (TypeError, ValueError):
        every = float(DEFAULT_INTERVAL_MINUTES)
    last_run = parse_timestamp(last_run_at)
    if last_run is None:
        return True, "Interval first run."
    minutes_since = (ensure_aware(now) - last_run).total_seconds() / 60
    if minutes_since >= every:
        return True, f"Interval: {minutes_since:.1f}m elapsed."
    return False, f"Interval: only {minutes_since:.1f}m of {_format_minutes(every)}m elapsed."


def evaluate_schedule_trigger(
    trigger: Any,
    mission_timezone: Optional[str],
    now: datetime,
    settings: Settings,
    last_run_at: Optional[str] = None,
) -> GateDecision:
    """Evaluate a schedule trigger node against the wall clock."""
    mode = str(getattr(trigger, "trigger_mode", None) or "daily").lower()
    tz_name = resolve_timezone_name(getattr(trigger, "trigger_timezone", None), mission_timezone, settings)
    zone = resolve_zone(tz_name)
    if zone is None:
        return GateDecision(False, ScheduleState.NOT_DUE, f"Invalid timezone: {tz_name}",
                            mode=mode, timezone=tz_name, error=f"Invalid timezone: {tz_name}")
    local = get_local_parts(now, zone)

    if mode == "interval":
        due, reason = evaluate_interval(getattr(trigger, "trigger_interval_minutes", None), last_run_at, now)
        state = ScheduleState.DUE_WITHIN_WINDOW if due else ScheduleState.NOT_DUE
        return GateDecision(due, state, reason, mode=mode, timezone=tz_name, day_stamp=local.day_stamp)

    time_text = str(getattr(trigger, "trigger_time", None) or DEFAULT_TRIGGER_TIME).strip()
    target = parse_time(time_text)
    if target is None:
        message = f"Invalid trigger time: {time_text!r} (expected HH:MM)."
        return GateDecision(False, ScheduleState.NOT_DUE, message, mode=mode,
                            timezone=tz_name, day_stamp=local.day_stamp, error=message)

    if mode in ("weekly", "once"):
        days = [str(d).strip().lower() for d in (getattr(trigger, "trigger_days", None) or []) if str(d).strip()]
        if days and local.weekday not in days:
            return GateDecision(False, ScheduleState.NOT_DUE, f"Not scheduled on {local.weekday}.",
                                mode=mode, timezone=tz_name, day_stamp=local.day_stamp)

    window = resolve_window_minutes(getattr(trigger, "trigger_window_minutes", None), settings)
    lag = local.minute_of_day - (target[0] * 60 + target[1])
    common = dict(mode=mode, timezone=tz_name, day_stamp=local.day_stamp,
                  lag_minutes=lag, window_minutes=window)

    if lag < 0:
        return GateDecision(False, ScheduleState.NOT_DUE,
                            f"Not yet time: {time_text} {tz_name} is {-lag}m away.", **common)
    if lag > window:
        return GateDecision(False, ScheduleState.MISSED_WINDOW,
                            f"Missed window: {lag}m after {time_text} exceeds the {window}m window.", **common)
    return GateDecision(True, ScheduleState.DUE_WITHIN_WINDOW,
                        f"Due: {lag}m after {time_text} {tz_name}, within the {window}m window.", **common)


def check_schedule_gate(mission: Any, now: datetime, settings: Settings) -> GateDecision:
    """Mission-level gate applied before any node runs on scheduler ticks.

    Enforces run history: once-missions never repeat, daily/weekly missions run
    at most once per local day, interval missions respect their spacing.
    """
    trigger = mission.schedule_trigger()
    if trigger is None:
        return GateDecision(True, ScheduleState.DUE_WITHIN_WINDOW,
                            "No schedule trigger; assuming manual or webhook.")

    mode = str(getattr(trigger, "trigger_mode", None) or "daily").lower()
    tz_name = resolve_timezone_name(getattr(trigger, "trigger_timezone", None), mission.settings.timezone, settings)
    zone = resolve_zone(tz_name)
    if zone is None:
        return GateDecision(False, ScheduleState.NOT_DUE, "Could not determine local time.",
                            mode=mode, timezone=tz_name)
    local = get_local_parts(now, zone)
    common = dict(mode=mode, timezone=tz_name, day_stamp=local.day_stamp)

    if mode == "interval":
        due, reason = evaluate_interval(getattr(trigger, "trigger_interval_minutes", None), mission.last_run_at, now)
        state = ScheduleState.DUE_WITHIN_WINDOW if due else ScheduleState.ALREADY_RAN
        return GateDecision(due, state, reason, **common)

    if mode == "once" and mission.last_sent_local_date:
        return GateDecision(False, ScheduleState.ALREADY_RAN,
                            f"Already ran once (on {mission.last_sent_local_date}).", **common)

    if mode in ("daily", "weekly") and mission.last_sent_local_date == local.day_stamp:
        return GateDecision(False, ScheduleState.ALREADY_RAN,
                            f"Already ran today ({local.day_stamp}).", **common)

    return GateDecision(True, ScheduleState.DUE_WITHIN_WINDOW, f"Schedule gate passed ({mode}).", **common)
