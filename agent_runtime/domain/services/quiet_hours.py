"""
Quiet Hours
Do-not-contact windows evaluated in the lead's local timezone.
"""
import logging
from datetime import datetime, timedelta
from typing import Optional

import pytz
from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)


def _parse_hhmm(value: str) -> int:
    """Minutes since midnight for an 'HH:MM' string."""
    hour, minute = map(int, value.split(":"))
    if not (0 <= hour <= 23 and 0 <= minute <= 59):
        raise ValueError(f"Invalid time of day: {value}")
    return hour * 60 + minute


def _resolve_timezone(name: str):
    try:
        return pytz.timezone(name)
    except pytz.exceptions.UnknownTimeZoneError:
        logger.warning(f"Unknown timezone '{name}', falling back to UTC")
        return pytz.UTC


def _localize(at: Optional[datetime], tz) -> datetime:
    if at is None:
        return datetime.now(tz)
    if at.tzinfo is None:
        return tz.localize(at)
    return at.astimezone(tz)


def is_quiet_hours(
    at: Optional[datetime],
    start: str,
    end: str,
    timezone: str = "UTC"
) -> bool:
    """
    Check whether a timestamp falls inside a quiet-hours window.

    A window whose start is later than its end spans midnight
    (e.g. 21:00-09:00). Naive timestamps are taken as local time in
    `timezone`. An empty window (start == end) is never quiet.

    Args:
        at: Timestamp to check (default: now)
        start: Window start, HH:MM
        end: Window end, HH:MM (exclusive)
        timezone: IANA timezone name

    Returns:
        True if outbound contact must not happen at `at`
    """
    tz = _resolve_timezone(timezone)
    local = _localize(at, tz)

    current = local.hour * 60 + local.minute
    start_min = _parse_hhmm(start)
    end_min = _parse_hhmm(end)

    if start_min == end_min:
        return False
    if start_min > end_min:
        return current >= start_min or current < end_min
    return start_min <= current < end_min


class QuietHours(BaseModel):
    """Configured do-not-contact window"""
    start: str = Field(default="21:00", description="Quiet hours start (HH:MM)")
    end: str = Field(default="09:00", description="Quiet hours end (HH:MM)")
    timezone: str = Field(default="America/New_York", description="Timezone for the window")

    @field_validator("start", "end")
    @classmethod
    def validate_hhmm(cls, value: str) -> str:
        _parse_hhmm(value)
        return value

    def is_active(self, at: Optional[datetime] = None) -> bool:
        return is_quiet_hours(at, self.start, self.end, self.timezone)

    def next_window_end(self, from_time: Optional[datetime] = None) -> datetime:
        """
        When contact becomes allowed again.

        Returns `from_time` itself (in the window's timezone) if quiet
        hours are not active.
        """
        tz = _resolve_timezone(self.timezone)
        local = _localize(from_time, tz)
        if not self.is_active(local):
            return local

        end_min = _parse_hhmm(self.end)
        candidate = local.replace(hour=end_min // 60, minute=end_min % 60, second=0, microsecond=0)
        if candidate <= local:
            candidate = candidate + timedelta(days=1)
        # Re-localize so DST shifts on the target day are respected
        return tz.localize(candidate.replace(tzinfo=None))
