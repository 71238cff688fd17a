"""
Time utilities for the follow-up core

All instants are stored and compared in UTC. Local wall-clock reasoning
(business hours, weekends) goes through pytz so DST transitions are handled
by the library rather than by hand.
"""
from datetime import datetime, date, time, timezone
from typing import Optional, Union
import pytz
import logging

from storage.errors import ValidationError

logger = logging.getLogger("time-utils")

# Default timezone for the system (UTC)
SYSTEM_TIMEZONE = timezone.utc


def now_utc() -> datetime:
    """
    Get current time in UTC

    Returns:
        Current datetime in UTC timezone
    """
    return datetime.now(SYSTEM_TIMEZONE)


def get_timezone(name: str) -> pytz.BaseTzInfo:
    """
    Look up an IANA timezone

    Raises:
        ValidationError: If the zone is unknown
    """
    try:
        return pytz.timezone(name)
    except pytz.UnknownTimeZoneError:
        raise ValidationError(f"Unknown timezone '{name}'")


def parse_iso_to_utc(iso_string: str) -> datetime:
    """
    Parse ISO datetime string to UTC datetime

    Args:
        iso_string: ISO format datetime string

    Returns:
        datetime object in UTC timezone

    Raises:
        ValidationError: If the ISO string is invalid
    """
    try:
        dt = datetime.fromisoformat(iso_string.replace("Z", "+00:00"))
    except (ValueError, AttributeError) as e:
        logger.error(f"Failed to parse ISO datetime string '{iso_string}': {e}")
        raise ValidationError(f"Invalid ISO datetime: {iso_string!r}")

    if dt.tzinfo is None:
        logger.warning(f"Naive datetime {iso_string} assumed to be UTC")
        return dt.replace(tzinfo=SYSTEM_TIMEZONE)
    return dt.astimezone(SYSTEM_TIMEZONE)


def ensure_utc(dt: Union[datetime, str]) -> datetime:
    """Accept an aware datetime, a naive UTC datetime or an ISO string"""
    if isinstance(dt, str):
        return parse_iso_to_utc(dt)
    if dt.tzinfo is None:
        return dt.replace(tzinfo=SYSTEM_TIMEZONE)
    return dt.astimezone(SYSTEM_TIMEZONE)


def to_utc(local_wall_clock: datetime, zone: str) -> datetime:
    """
    Convert a naive local wall-clock time in ``zone`` to UTC

    Aware datetimes are simply converted.
    """
    if local_wall_clock.tzinfo is not None:
        return local_wall_clock.astimezone(SYSTEM_TIMEZONE)
    tz = get_timezone(zone)
    return tz.normalize(tz.localize(local_wall_clock)).astimezone(SYSTEM_TIMEZONE)


def to_local(instant: datetime, zone: str) -> datetime:
    """Convert an instant to an aware datetime in ``zone``"""
    return ensure_utc(instant).astimezone(get_timezone(zone))


def local_day_start(day: date, hour: int, zone: str) -> datetime:
    """UTC instant of ``hour``:00 local time on ``day`` in ``zone``"""
    return to_utc(datetime.combine(day, time(hour=hour)), zone)


def to_iso(dt: Optional[datetime]) -> Optional[str]:
    """Serialize a datetime as a UTC ISO string (None passes through)"""
    if dt is None:
        return None
    return ensure_utc(dt).isoformat()


def from_iso(value: Optional[str]) -> Optional[datetime]:
    """Inverse of ``to_iso``"""
    if not value:
        return None
    return parse_iso_to_utc(value)
