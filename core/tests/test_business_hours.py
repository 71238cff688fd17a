"""
Tests for business-hours windows and next-allowed-instant calculation
"""
from datetime import datetime, timedelta, timezone

import pytest

from scheduling.business_hours import (
    BusinessHoursScheduler,
    DayWindow,
    WindowConfig,
    daily_config_from_window,
    format_hhmm,
    parse_daily_config,
    parse_hhmm,
)
from storage.errors import ValidationError

LA = "America/Los_Angeles"


def utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


class TestTimeOfDay:
    """Test HH:MM parsing"""

    @pytest.mark.parametrize("value,minutes", [("09:00", 540), ("9:30", 570), ("17:00", 1020), ("24:00", 1440)])
    def test_parse_hhmm(self, value, minutes):
        assert parse_hhmm(value) == minutes

    @pytest.mark.parametrize("value", ["9", "25:00", "24:30", "12:60", "noon", "", None])
    def test_parse_hhmm_invalid(self, value):
        with pytest.raises(ValidationError):
            parse_hhmm(value)

    def test_format_hhmm(self):
        assert format_hhmm(545) == "09:05"


class TestWindowConfig:
    """Test window validation"""

    def test_defaults(self):
        config = WindowConfig()
        assert (config.start_hour, config.end_hour, config.exclude_weekends) == (9, 17, True)

    @pytest.mark.parametrize("start,end", [(17, 9), (9, 9), (-1, 17), (9, 25)])
    def test_invalid_hours(self, start, end):
        """Test inverted or out-of-range hours are rejected"""
        with pytest.raises(ValidationError):
            WindowConfig(start_hour=start, end_hour=end)

    def test_day_window_rejects_inverted_times(self):
        with pytest.raises(ValidationError):
            DayWindow.from_dict({"enabled": True, "open": "17:00", "close": "09:00"})


class TestIsWithinWindow:
    """Test per-day window checks"""

    def setup_method(self):
        self.scheduler = BusinessHoursScheduler()
        self.config = {
            0: {"enabled": True, "open": "09:00", "close": "17:00"},
            1: {"enabled": False, "open": "09:00", "close": "17:00"},
        }

    def test_inside_window(self):
        """Test Monday 09:00 local is allowed"""
        assert self.scheduler.is_within_window(utc(2025, 1, 20, 17, 0), LA, self.config)

    def test_open_is_inclusive_close_is_exclusive(self):
        """Test the window is [open, close)"""
        assert not self.scheduler.is_within_window(utc(2025, 1, 20, 16, 59), LA, self.config)
        assert self.scheduler.is_within_window(utc(2025, 1, 21, 0, 59), LA, self.config)
        assert not self.scheduler.is_within_window(utc(2025, 1, 21, 1, 0), LA, self.config)

    def test_disabled_day(self):
        """Test a disabled weekday is never allowed"""
        assert not self.scheduler.is_within_window(utc(2025, 1, 21, 18, 0), LA, self.config)

    def test_missing_day(self):
        """Test a weekday absent from the config is never allowed"""
        assert not self.scheduler.is_within_window(utc(2025, 1, 22, 18, 0), LA, self.config)

    def test_string_weekday_keys(self):
        """Test stored configs with string keys are accepted"""
        config = {"0": {"enabled": True, "open": "09:00", "close": "17:00"}}
        assert self.scheduler.is_within_window(utc(2025, 1, 20, 18, 0), LA, config)

    def test_invalid_weekday_key(self):
        with pytest.raises(ValidationError):
            parse_daily_config({"7": {"open": "09:00", "close": "17:00"}})


class TestNextAllowedInstant:
    """Test the next legal send time"""

    def setup_method(self):
        self.scheduler = BusinessHoursScheduler()
        self.config = WindowConfig(start_hour=9, end_hour=17, exclude_weekends=True)

    def next(self, instant, zone=LA):
        return self.scheduler.next_allowed_instant(instant, zone, self.config)

    def test_inside_window_unchanged(self):
        """Test Wednesday 10:30 local is returned as is"""
        instant = utc(2025, 1, 15, 18, 30)
        assert self.next(instant) == instant

    def test_before_start_moves_to_start(self):
        """Test Wednesday 07:00 local moves to 09:00 the same day"""
        assert self.next(utc(2025, 1, 15, 15, 0)) == utc(2025, 1, 15, 17, 0)

    def test_after_end_moves_to_next_day(self):
        """Test Wednesday 18:00 local moves to Thursday 09:00"""
        assert self.next(utc(2025, 1, 16, 2, 0)) == utc(2025, 1, 16, 17, 0)

    def test_end_hour_is_exclusive(self):
        """Test exactly 17:00 local is already outside"""
        assert self.next(utc(2025, 1, 16, 1, 0)) == utc(2025, 1, 16, 17, 0)

    def test_saturday_moves_to_monday(self):
        """Test Saturday 10:00 local moves to Monday 09:00"""
        assert self.next(utc(2025, 1, 18, 18, 0)) == utc(2025, 1, 20, 17, 0)

    def test_friday_evening_skips_weekend(self):
        """Test Friday after hours rolls over the weekend"""
        assert self.next(utc(2025, 1, 18, 1, 30)) == utc(2025, 1, 20, 17, 0)

    def test_weekends_allowed(self):
        """Test Saturday is allowed when weekends are not excluded"""
        config = WindowConfig(start_hour=9, end_hour=17, exclude_weekends=False)
        instant = utc(2025, 1, 18, 18, 0)
        assert self.scheduler.next_allowed_instant(instant, LA, config) == instant

    def test_spring_forward(self):
        """Test Monday 09:00 after the DST change uses the daylight offset"""
        assert self.next(utc(2025, 3, 8, 20, 0)) == utc(2025, 3, 10, 16, 0)

    def test_fall_back(self):
        """Test Monday 09:00 after the DST change uses the standard offset"""
        assert self.next(utc(2025, 11, 1, 19, 0)) == utc(2025, 11, 3, 17, 0)

    def test_result_is_monotonic_and_allowed(self):
        """Test results never go backwards and always fall inside the window"""
        daily = daily_config_from_window(self.config)
        start = utc(2025, 1, 13, 0, 0)
        for step in range(0, 24 * 14, 5):
            instant = start + timedelta(hours=step, minutes=17)
            result = self.next(instant)
            assert result >= instant
            assert self.scheduler.is_within_window(result, LA, daily)
            assert self.next(result) == result

    def test_other_timezone(self):
        """Test a New York clinic gets 09:00 Eastern"""
        assert self.next(utc(2025, 1, 15, 12, 0), "America/New_York") == utc(2025, 1, 15, 14, 0)

    def test_unknown_timezone(self):
        with pytest.raises(ValidationError):
            self.next(utc(2025, 1, 15, 12, 0), "Nowhere/Special")

    def test_iteration_cap_returns_last_candidate(self):
        """Test the loop gives up after max_iterations"""
        scheduler = BusinessHoursScheduler(max_iterations=1)
        result = scheduler.next_allowed_instant(utc(2025, 1, 18, 18, 0), LA, self.config)
        assert result == utc(2025, 1, 20, 17, 0)
