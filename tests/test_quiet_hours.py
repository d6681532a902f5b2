"""Tests for quiet hours window arithmetic and the user-backed gate."""

from datetime import datetime

import pytest

from restock_alerts.alerts.quiet_hours import (
    UserQuietHoursGate,
    check_quiet_hours,
    validate_quiet_hours,
)

# 2024-01-15 is a Monday
MONDAY = datetime(2024, 1, 15)


def _window(start, end, **extra):
    return {"enabled": True, "start_time": start, "end_time": end, **extra}


def test_same_day_window_is_inclusive():
    config = _window("09:00", "17:00")

    inside = check_quiet_hours(config, MONDAY.replace(hour=12))
    at_end = check_quiet_hours(config, MONDAY.replace(hour=17, minute=0, second=30))
    after = check_quiet_hours(config, MONDAY.replace(hour=17, minute=1))

    assert inside.is_quiet_time is True
    assert inside.next_active_time == MONDAY.replace(hour=17, minute=1)
    assert at_end.is_quiet_time is True
    assert after.is_quiet_time is False


def test_overnight_window_wraps_midnight():
    config = _window("22:00", "07:00")

    late = check_quiet_hours(config, MONDAY.replace(hour=23, minute=30))
    early = check_quiet_hours(config, MONDAY.replace(hour=3))
    midday = check_quiet_hours(config, MONDAY.replace(hour=12))

    assert late.is_quiet_time is True
    assert late.next_active_time == datetime(2024, 1, 16, 7, 1)
    assert "overnight" in late.reason
    assert early.is_quiet_time is True
    assert early.next_active_time == MONDAY.replace(hour=7, minute=1)
    assert midday.is_quiet_time is False


def test_days_restrict_active_weekdays():
    weekend_only = _window("00:00", "23:59", days=[0, 6])
    mondays = _window("00:00", "23:59", days=[1])

    assert check_quiet_hours(weekend_only, MONDAY.replace(hour=10)).is_quiet_time is False
    assert check_quiet_hours(mondays, MONDAY.replace(hour=10)).is_quiet_time is True


def test_window_evaluated_in_user_timezone():
    config = _window("22:00", "07:00")
    # 04:00 UTC on Jan 16 is 23:00 on Jan 15 in New York
    check = check_quiet_hours(config, datetime(2024, 1, 16, 4, 0), "America/New_York")

    assert check.is_quiet_time is True
    assert check.next_active_time == datetime(2024, 1, 16, 12, 1)


def test_disabled_or_malformed_config_is_not_quiet():
    assert check_quiet_hours({}, MONDAY).is_quiet_time is False
    assert check_quiet_hours({"enabled": False, "start_time": "00:00", "end_time": "23:59"}, MONDAY).is_quiet_time is False
    assert check_quiet_hours(_window("25:00", "07:00"), MONDAY).is_quiet_time is False


def test_validate_quiet_hours():
    assert validate_quiet_hours(_window("22:00", "07:00", timezone="Europe/London")) == []

    errors = validate_quiet_hours(_window("7pm", "07:00", timezone="Mars/Olympus", days=[1, 1, 9]))

    assert "Start time must be in HH:MM format (24-hour)" in errors
    assert "Invalid timezone provided" in errors
    assert "Days array cannot contain duplicates" in errors
    assert "Days must be integers between 0 and 6 (Sunday = 0)" in errors


@pytest.mark.asyncio
async def test_gate_reads_user_configuration(session_factory, make_user):
    user = await make_user(
        quiet_hours=_window("22:00", "07:00", timezone="UTC"),
    )
    gate = UserQuietHoursGate(session_factory)

    quiet = await gate.is_quiet_time(user.id, now=MONDAY.replace(hour=23))
    awake = await gate.is_quiet_time(user.id, now=MONDAY.replace(hour=12))

    assert quiet.is_quiet_time is True
    assert quiet.next_active_time == datetime(2024, 1, 16, 7, 1)
    assert awake.is_quiet_time is False


@pytest.mark.asyncio
async def test_gate_fails_open(session_factory, make_user):
    gate = UserQuietHoursGate(session_factory)
    bad_zone = await make_user(quiet_hours=_window("00:00", "23:59", timezone="Not/AZone"))

    missing = await gate.is_quiet_time("no-such-user")
    invalid = await gate.is_quiet_time(bad_zone.id)

    assert missing.is_quiet_time is False
    assert missing.reason == "User not found"
    assert invalid.is_quiet_time is False
    assert invalid.reason == "Invalid timezone configuration"
