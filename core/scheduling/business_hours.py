"""
Business-hours window calculations

Two shapes of configuration exist:

- ``WindowConfig``: one start/end hour for every day plus a weekend switch,
  used when computing the next legal send time.
- a daily config ``{weekday: DayWindow}`` with per-day open/close times,
  stored on clinics and used to check whether an instant is allowed.

Weekdays follow ``datetime.weekday()``: 0 is Monday, 6 is Sunday.
"""
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Mapping, Optional

from storage.errors import ValidationError
from utils.time_utils import ensure_utc, get_timezone, local_day_start, to_local

logger = logging.getLogger("business-hours")

MAX_ITERATIONS = 14
SATURDAY = 5

_HHMM = re.compile(r"^(\d{1,2}):(\d{2})$")


def parse_hhmm(value: str) -> int:
    """
    Parse ``"HH:MM"`` into minutes after midnight. ``"24:00"`` is allowed.

    Raises:
        ValidationError: On any malformed value
    """
    match = _HHMM.match((value or "").strip()) if isinstance(value, str) else None
    if not match:
        raise ValidationError(f"Invalid time of day {value!r}, expected HH:MM")
    hours, minutes = int(match.group(1)), int(match.group(2))
    if minutes > 59 or hours > 24 or (hours == 24 and minutes != 0):
        raise ValidationError(f"Invalid time of day {value!r}")
    return hours * 60 + minutes


def format_hhmm(minutes: int) -> str:
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


@dataclass(frozen=True)
class WindowConfig:
    """Uniform daily window used to compute the next allowed instant"""
    start_hour: int = 9
    end_hour: int = 17
    exclude_weekends: bool = True

    def __post_init__(self):
        if not (0 <= self.start_hour <= 24 and 0 <= self.end_hour <= 24):
            raise ValidationError(f"Business hours must be within 0-24, got {self.start_hour}-{self.end_hour}")
        if self.start_hour >= self.end_hour:
            raise ValidationError(f"start_hour ({self.start_hour}) must be before end_hour ({self.end_hour})")

    @classmethod
    def from_settings(cls) -> "WindowConfig":
        from config.settings import BUSINESS_START_HOUR, BUSINESS_END_HOUR, EXCLUDE_WEEKENDS
        return cls(start_hour=BUSINESS_START_HOUR, end_hour=BUSINESS_END_HOUR, exclude_weekends=EXCLUDE_WEEKENDS)


@dataclass(frozen=True)
class DayWindow:
    """Open interval ``[open_minutes, close_minutes)`` for one weekday"""
    enabled: bool = True
    open_minutes: int = 9 * 60
    close_minutes: int = 17 * 60

    def contains(self, minutes_of_day: int) -> bool:
        return self.enabled and self.open_minutes <= minutes_of_day < self.close_minutes

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "DayWindow":
        enabled = bool(data.get("enabled", True))
        open_minutes = parse_hhmm(data.get("open", data.get("start", "09:00")))
        close_minutes = parse_hhmm(data.get("close", data.get("end", "17:00")))
        if enabled and open_minutes >= close_minutes:
            raise ValidationError(f"Opening time must be before closing time: {dict(data)}")
        return cls(enabled=enabled, open_minutes=open_minutes, close_minutes=close_minutes)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "enabled": self.enabled,
            "open": format_hhmm(self.open_minutes),
            "close": format_hhmm(self.close_minutes),
        }


DailyConfig = Dict[int, DayWindow]


def parse_daily_config(raw: Optional[Mapping[Any, Any]]) -> DailyConfig:
    """
    Turn a stored business-hours map into typed day windows

    Keys may be ints or the strings ``"0"``..``"6"``; values may be
    ``DayWindow`` instances or dicts with ``enabled``/``open``/``close``.
    """
    config: DailyConfig = {}
    for key, value in (raw or {}).items():
        try:
            weekday = int(key)
        except (TypeError, ValueError):
            raise ValidationError(f"Invalid weekday key {key!r}")
        if not 0 <= weekday <= 6:
            raise ValidationError(f"Weekday out of range: {weekday}")
        config[weekday] = value if isinstance(value, DayWindow) else DayWindow.from_dict(value)
    return config


def daily_config_from_window(config: WindowConfig) -> DailyConfig:
    """Per-day map equivalent to a uniform WindowConfig"""
    return {
        weekday: DayWindow(
            enabled=not (config.exclude_weekends and weekday >= SATURDAY),
            open_minutes=config.start_hour * 60,
            close_minutes=config.end_hour * 60,
        )
        for weekday in range(7)
    }


class BusinessHoursScheduler:
    """Answers "may we contact now?" and "when may we next contact?" for a timezone"""

    def __init__(self, max_iterations: int = MAX_ITERATIONS):
        self.max_iterations = max_iterations

    def is_within_window(self, instant: datetime, timezone: str, daily_config: Mapping[Any, Any]) -> bool:
        """
        Check an instant against a per-day config

        Args:
            instant: Instant to check (naive values are taken as UTC)
            timezone: IANA zone the config is expressed in
            daily_config: ``{weekday: DayWindow | dict}``

        Returns:
            False if the weekday is missing or disabled, or the local time is
            outside ``[open, close)``
        """
        local = to_local(instant, timezone)
        config = parse_daily_config(daily_config)
        window = config.get(local.weekday())
        if window is None:
            return False
        return window.contains(local.hour * 60 + local.minute)

    def next_allowed_instant(self, from_instant: datetime, timezone: str,
                             config: Optional[WindowConfig] = None) -> datetime:
        """
        Earliest instant at or after ``from_instant`` inside the window

        Returns ``from_instant`` unchanged when it is already allowed. Each
        adjustment is made on the local calendar and converted back to UTC
        through pytz, so DST changes are accounted for.

        Args:
            from_instant: Starting instant
            timezone: IANA zone of the recipient/clinic
            config: Window settings (defaults from settings)

        Returns:
            UTC datetime
        """
        config = config or WindowConfig.from_settings()
        get_timezone(timezone)
        candidate = ensure_utc(from_instant)

        for _ in range(self.max_iterations):
            local = to_local(candidate, timezone)
            weekday = local.weekday()

            if config.exclude_weekends and weekday >= SATURDAY:
                monday = local.date() + timedelta(days=7 - weekday)
                candidate = local_day_start(monday, config.start_hour, timezone)
                continue

            if local.hour < config.start_hour:
                candidate = local_day_start(local.date(), config.start_hour, timezone)
                continue

            if local.hour >= config.end_hour:
                candidate = local_day_start(local.date() + timedelta(days=1), config.start_hour, timezone)
                continue

            return candidate

        logger.warning(
            f"Could not find an allowed instant from {from_instant.isoformat()} in {timezone} "
            f"after {self.max_iterations} iterations; using {candidate.isoformat()}"
        )
        return candidate
