"""Quiet hours gate.

The orchestrator only consumes ``is_quiet_time(user_id)``; timezone and
day-of-week handling stay in here.
"""

import logging
import re
from datetime import datetime, time, timedelta, timezone
from typing import Optional, Protocol
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from restock_alerts.alerts.schemas import QuietHoursCheck
from restock_alerts.db.models import User

logger = logging.getLogger(__name__)

_TIME_RE = re.compile(r"^([01]?[0-9]|2[0-3]):[0-5][0-9]$")


class QuietHoursGate(Protocol):
    """Decides whether a user is inside their do-not-disturb window."""

    async def is_quiet_time(self, user_id: str) -> QuietHoursCheck:
        ...


def _parse_hhmm(value: str) -> time:
    hour, minute = value.split(":")
    return time(int(hour), int(minute))


def _sunday_based_weekday(moment: datetime) -> int:
    """0 = Sunday ... 6 = Saturday."""
    return (moment.weekday() + 1) % 7


def check_quiet_hours(
    quiet_hours: dict,
    check_time: datetime,
    tz_name: str = "UTC",
) -> QuietHoursCheck:
    """
    Check whether a UTC instant falls inside a quiet-hours window.

    Same-day windows (start <= end) are inclusive at both ends. Overnight
    windows (start > end) wrap midnight. A non-empty ``days`` list limits
    the window to those weekdays, judged in the user's zone.

    Args:
        quiet_hours: Config with enabled, start_time, end_time, days
        check_time: Naive UTC instant to check
        tz_name: IANA zone the window is expressed in

    Returns:
        QuietHoursCheck with next_active_time as naive UTC when quiet
    """
    if not quiet_hours or not quiet_hours.get("enabled"):
        return QuietHoursCheck(is_quiet_time=False, reason="Quiet hours disabled")

    start_str = quiet_hours.get("start_time") or ""
    end_str = quiet_hours.get("end_time") or ""
    if not _TIME_RE.match(start_str) or not _TIME_RE.match(end_str):
        return QuietHoursCheck(is_quiet_time=False, reason="Invalid quiet hours configuration")

    zone = ZoneInfo(tz_name)
    local_now = check_time.replace(tzinfo=timezone.utc).astimezone(zone)

    days = quiet_hours.get("days") or []
    if days and _sunday_based_weekday(local_now) not in days:
        return QuietHoursCheck(is_quiet_time=False, reason="Not a quiet day")

    start = _parse_hhmm(start_str)
    end = _parse_hhmm(end_str)
    current = local_now.time().replace(second=0, microsecond=0)

    if start <= end:
        is_quiet = start <= current <= end
        label = f"Quiet hours: {start_str} - {end_str}"
    else:
        is_quiet = current >= start or current <= end
        label = f"Quiet hours: {start_str} - {end_str} (overnight)"

    if not is_quiet:
        return QuietHoursCheck(is_quiet_time=False)

    return QuietHoursCheck(
        is_quiet_time=True,
        next_active_time=_next_active_time(local_now, current, start, end, zone),
        reason=label,
    )


def _next_active_time(
    local_now: datetime, current: time, start: time, end: time, zone: ZoneInfo
) -> datetime:
    """First instant after the current window closes, as naive UTC."""
    end_date = local_now.date()
    # Evening part of an overnight window ends tomorrow morning
    if start > end and current > end:
        end_date += timedelta(days=1)

    # End time is inclusive, delivery resumes on the following minute
    candidate = datetime.combine(end_date, end, tzinfo=zone) + timedelta(minutes=1)
    return candidate.astimezone(timezone.utc).replace(tzinfo=None)


def validate_quiet_hours(quiet_hours: dict) -> list[str]:
    """
    Validate a quiet-hours configuration.

    Returns:
        List of problems; empty when the config is usable
    """
    errors: list[str] = []
    if not isinstance(quiet_hours, dict):
        return ["Quiet hours configuration must be an object"]

    if not quiet_hours.get("enabled"):
        return errors

    start = quiet_hours.get("start_time")
    end = quiet_hours.get("end_time")
    if not isinstance(start, str) or not _TIME_RE.match(start):
        errors.append("Start time must be in HH:MM format (24-hour)")
    if not isinstance(end, str) or not _TIME_RE.match(end):
        errors.append("End time must be in HH:MM format (24-hour)")
    if start and start == end:
        errors.append("Start time and end time cannot be the same")

    tz_name = quiet_hours.get("timezone")
    if not tz_name or not isinstance(tz_name, str) or not tz_name.strip():
        errors.append("Timezone is required when quiet hours are enabled")
    else:
        try:
            ZoneInfo(tz_name)
        except (ZoneInfoNotFoundError, ValueError):
            errors.append("Invalid timezone provided")

    days = quiet_hours.get("days")
    if days is not None:
        if not isinstance(days, list):
            errors.append("Days must be an array")
        else:
            if len(set(days)) != len(days):
                errors.append("Days array cannot contain duplicates")
            if any(not isinstance(d, int) or d < 0 or d > 6 for d in days):
                errors.append("Days must be integers between 0 and 6 (Sunday = 0)")

    return errors


class UserQuietHoursGate:
    """
    Quiet-hours gate backed by the user's stored configuration.

    Fails open: a missing user, disabled config, bad timezone or lookup error
    all answer "not quiet" so alerts are never silently held.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def is_quiet_time(
        self, user_id: str, now: Optional[datetime] = None
    ) -> QuietHoursCheck:
        if not user_id:
            logger.warning("Invalid user id provided to quiet hours check")
            return QuietHoursCheck(is_quiet_time=False, reason="Invalid user ID")

        try:
            async with self.session_factory() as db:
                user = await db.get(User, user_id)
        except Exception as e:
            logger.error(f"Failed to load user {user_id} for quiet hours check: {e}")
            return QuietHoursCheck(is_quiet_time=False, reason="Error checking quiet hours")

        if user is None:
            logger.warning(f"User not found for quiet hours check: {user_id}")
            return QuietHoursCheck(is_quiet_time=False, reason="User not found")

        quiet_hours = user.quiet_hours or {}
        if not quiet_hours.get("enabled"):
            return QuietHoursCheck(is_quiet_time=False, reason="Quiet hours disabled")

        tz_name = quiet_hours.get("timezone") or user.timezone or "UTC"
        try:
            ZoneInfo(tz_name)
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning(f"Invalid timezone {tz_name!r} for user {user_id}")
            return QuietHoursCheck(is_quiet_time=False, reason="Invalid timezone configuration")

        return check_quiet_hours(quiet_hours, now or datetime.utcnow(), tz_name)
