from datetime import datetime, timedelta, timezone

import pytest

from models.nodes import parse_node
from services.scheduling import (
    ScheduleState,
    check_schedule_gate,
    evaluate_schedule_trigger,
    parse_time,
    resolve_window_minutes,
)
from helpers import make_mission, node

# 2026-03-02 is a Monday; New York is on EST (UTC-5) until March 8.
MONDAY_0905_NY = datetime(2026, 3, 2, 14, 5, tzinfo=timezone.utc)


def _trigger(**fields):
    return parse_node(node("t1", "schedule-trigger", **fields))


def test_parse_time_accepts_only_24h_hh_mm():
    assert parse_time("07:30") == (7, 30)
    assert parse_time("23:59") == (23, 59)
    assert parse_time("24:00") is None
    assert parse_time("7:30") is None
    assert parse_time("") is None


def test_window_minutes_clamped_and_defaulted(settings):
    assert resolve_window_minutes(500, settings) == 120
    assert resolve_window_minutes(-5, settings) == 0
    assert resolve_window_minutes("abc", settings) == settings.scheduler_window_minutes
    assert resolve_window_minutes(None, settings) == settings.scheduler_window_minutes
    assert resolve_window_minutes(7.9, settings) == 7


def test_daily_due_within_window(settings):
    decision = evaluate_schedule_trigger(_trigger(triggerMode="daily", triggerTime="09:00"),
                                         "America/New_York", MONDAY_0905_NY, settings)
    assert decision.triggered is True
    assert decision.state == ScheduleState.DUE_WITHIN_WINDOW
    assert decision.lag_minutes == 5
    assert decision.day_stamp == "2026-03-02"


def test_daily_not_yet_due(settings):
    now = MONDAY_0905_NY - timedelta(minutes=6)
    decision = evaluate_schedule_trigger(_trigger(triggerTime="09:00"), "America/New_York", now, settings)
    assert decision.triggered is False
    assert decision.state == ScheduleState.NOT_DUE
    assert decision.ok


def test_daily_missed_window(settings):
    now = MONDAY_0905_NY + timedelta(minutes=25)
    decision = evaluate_schedule_trigger(_trigger(triggerTime="09:00"), "America/New_York", now, settings)
    assert decision.triggered is False
    assert decision.state == ScheduleState.MISSED_WINDOW
    assert decision.to_data()["skipped"] is True


def test_trigger_timezone_overrides_mission_timezone(settings):
    # 14:05 UTC is 14:05 in London in early March
    trigger = _trigger(triggerTime="14:00", triggerTimezone="Europe/London")
    decision = evaluate_schedule_trigger(trigger, "America/New_York", MONDAY_0905_NY, settings)
    assert decision.triggered is True
    assert decision.timezone == "Europe/London"


def test_invalid_timezone_is_a_configuration_error(settings):
    decision = evaluate_schedule_trigger(_trigger(triggerTimezone="Mars/Base"), None, MONDAY_0905_NY, settings)
    assert decision.ok is False
    assert decision.error == "Invalid timezone: Mars/Base"


def test_malformed_time_is_a_configuration_error(settings):
    decision = evaluate_schedule_trigger(_trigger(triggerTime="9am"), None, MONDAY_0905_NY, settings)
    assert decision.ok is False
    assert "expected HH:MM" in decision.error


def test_weekly_skips_other_days(settings):
    decision = evaluate_schedule_trigger(
        _trigger(triggerMode="weekly", triggerTime="09:00", triggerDays=["tue", "thu"]),
        "America/New_York", MONDAY_0905_NY, settings)
    assert decision.triggered is False
    assert decision.reason == "Not scheduled on mon."


def test_weekly_runs_on_listed_day(settings):
    decision = evaluate_schedule_trigger(
        _trigger(triggerMode="weekly", triggerTime="09:00", triggerDays=["MON"]),
        "America/New_York", MONDAY_0905_NY, settings)
    assert decision.triggered is True


@pytest.mark.parametrize("minutes_ago,expected", [(None, True), (10, False), (45, True)])
def test_interval_spacing(settings, minutes_ago, expected):
    last_run = None if minutes_ago is None else (MONDAY_0905_NY - timedelta(minutes=minutes_ago)).isoformat()
    decision = evaluate_schedule_trigger(
        _trigger(triggerMode="interval", triggerIntervalMinutes=30),
        None, MONDAY_0905_NY, settings, last_run)
    assert decision.triggered is expected


def test_gate_passes_missions_without_schedule_trigger(settings):
    mission = make_mission([node("m", "manual-trigger")])
    assert check_schedule_gate(mission, MONDAY_0905_NY, settings).triggered is True


def test_gate_blocks_second_daily_run_same_local_day(settings):
    mission = make_mission([node("t1", "schedule-trigger", triggerTime="09:00")],
                           lastSentLocalDate="2026-03-02")
    decision = check_schedule_gate(mission, MONDAY_0905_NY, settings)
    assert decision.triggered is False
    assert decision.state == ScheduleState.ALREADY_RAN


def test_gate_allows_daily_run_on_new_local_day(settings):
    mission = make_mission([node("t1", "schedule-trigger", triggerTime="09:00")],
                           lastSentLocalDate="2026-03-01")
    decision = check_schedule_gate(mission, MONDAY_0905_NY, settings)
    assert decision.triggered is True
    assert decision.day_stamp == "2026-03-02"


def test_gate_once_mission_never_repeats(settings):
    mission = make_mission([node("t1", "schedule-trigger", triggerMode="once")],
                           lastSentLocalDate="2025-12-24")
    assert check_schedule_gate(mission, MONDAY_0905_NY, settings).state == ScheduleState.ALREADY_RAN
