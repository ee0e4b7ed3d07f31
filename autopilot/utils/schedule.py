"""
Schedule utilities

Converts a wall-clock daily time plus an IANA timezone into a recurrence rule
and the next instant at which it fires. All arithmetic goes through zoneinfo
so daylight-saving transitions are handled by the tz database.
"""

import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from autopilot.exceptions import InvalidTimeFormatError, InvalidTimezoneError

TIME_PATTERN = re.compile(r"^(\d{2}):(\d{2})$")


@dataclass(frozen=True)
class RecurrenceRule:
    """Fire once daily at hour:minute local time in the given timezone."""

    hour: int
    minute: int
    timezone: str

    @property
    def expression(self) -> str:
        """Cron-style expression: minute hour day month weekday."""
        return f"{self.minute} {self.hour} * * *"

    def next_fire(self, now: Optional[datetime] = None) -> datetime:
        return next_fire_instant(self.hour, self.minute, self.timezone, now)


def parse_time(value: str) -> Tuple[int, int]:
    """
    Parse an "HH:MM" 24-hour time string.

    Raises:
        InvalidTimeFormatError: Unless value is HH:MM with 0<=HH<=23, 0<=MM<=59
    """
    match = TIME_PATTERN.match(value or "")
    if not match:
        raise InvalidTimeFormatError(
            f"Invalid time format '{value}'. Use HH:MM (24-hour format)"
        )

    hour, minute = int(match.group(1)), int(match.group(2))
    if hour > 23 or minute > 59:
        raise InvalidTimeFormatError(
            f"Invalid time '{value}'. Hour must be 00-23 and minute 00-59"
        )

    return hour, minute


def is_valid_timezone(name: str) -> bool:
    """Check a timezone name against the IANA database."""
    if not name:
        return False
    try:
        ZoneInfo(name)
        return True
    except (ZoneInfoNotFoundError, ValueError):
        return False


def get_timezone(name: str) -> ZoneInfo:
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise InvalidTimezoneError(f"Invalid timezone: {name}") from e


def to_recurrence_rule(hour: int, minute: int, tz: str = "UTC") -> RecurrenceRule:
    return RecurrenceRule(hour=hour, minute=minute, timezone=tz)


def build_recurrence_rule(time_str: str, tz: str) -> RecurrenceRule:
    """Validate a (time, timezone) pair and derive its recurrence rule."""
    hour, minute = parse_time(time_str)
    if not is_valid_timezone(tz):
        raise InvalidTimezoneError(f"Invalid timezone: {tz}")
    return to_recurrence_rule(hour, minute, tz)


def next_fire_instant(
    hour: int, minute: int, tz: str, now: Optional[datetime] = None
) -> datetime:
    """
    Return the next instant (UTC) at which hour:minute occurs in tz.

    Today's occurrence is used if it is strictly after now, otherwise the
    same wall-clock time tomorrow. Naive datetimes are taken as UTC.
    """
    zone = get_timezone(tz)

    if now is None:
        now = datetime.now(timezone.utc)
    elif now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)

    # Compare in UTC: aware datetimes sharing a tzinfo compare by wall clock
    now_utc = now.astimezone(timezone.utc)
    local_date = now.astimezone(zone).date()

    candidate = datetime(
        local_date.year, local_date.month, local_date.day, hour, minute, tzinfo=zone
    ).astimezone(timezone.utc)

    if candidate <= now_utc:
        tomorrow = local_date + timedelta(days=1)
        candidate = datetime(
            tomorrow.year, tomorrow.month, tomorrow.day, hour, minute, tzinfo=zone
        ).astimezone(timezone.utc)

    return candidate


COMMON_TIMEZONES = [
    {"value": "UTC", "label": "UTC"},
    {"value": "America/New_York", "label": "Eastern Time (US & Canada)"},
    {"value": "America/Chicago", "label": "Central Time (US & Canada)"},
    {"value": "America/Denver", "label": "Mountain Time (US & Canada)"},
    {"value": "America/Los_Angeles", "label": "Pacific Time (US & Canada)"},
    {"value": "Europe/London", "label": "London"},
    {"value": "Europe/Paris", "label": "Paris"},
    {"value": "Europe/Berlin", "label": "Berlin"},
    {"value": "Asia/Dubai", "label": "Dubai"},
    {"value": "Asia/Kolkata", "label": "India Standard Time"},
    {"value": "Asia/Shanghai", "label": "Beijing/Shanghai"},
    {"value": "Asia/Tokyo", "label": "Tokyo"},
    {"value": "Australia/Sydney", "label": "Sydney"},
]
