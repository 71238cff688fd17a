"""
Tests for timezone helpers
"""
from datetime import date, datetime, timezone

import pytest
from freezegun import freeze_time

from storage.errors import ValidationError
from utils.time_utils import (
    ensure_utc,
    from_iso,
    get_timezone,
    local_day_start,
    now_utc,
    parse_iso_to_utc,
    to_iso,
    to_local,
    to_utc,
)


class TestParsing:
    """Test ISO parsing into UTC"""

    def test_parse_zulu(self):
        """Test the Z suffix is accepted"""
        assert parse_iso_to_utc("2025-01-15T14:30:00Z") == datetime(2025, 1, 15, 14, 30, tzinfo=timezone.utc)

    def test_parse_offset_converts_to_utc(self):
        """Test offsets are converted"""
        parsed = parse_iso_to_utc("2025-01-15T09:30:00-05:00")
        assert parsed == datetime(2025, 1, 15, 14, 30, tzinfo=timezone.utc)
        assert parsed.tzinfo == timezone.utc

    def test_parse_naive_assumes_utc(self):
        """Test naive strings are taken as UTC"""
        assert parse_iso_to_utc("2025-01-15T14:30:00") == datetime(2025, 1, 15, 14, 30, tzinfo=timezone.utc)

    @pytest.mark.parametrize("value", ["not-a-date", "", None])
    def test_parse_invalid(self, value):
        """Test invalid input raises ValidationError"""
        with pytest.raises(ValidationError):
            parse_iso_to_utc(value)

    def test_iso_round_trip(self):
        """Test to_iso and from_iso agree"""
        instant = datetime(2025, 3, 9, 10, 0, tzinfo=timezone.utc)
        assert from_iso(to_iso(instant)) == instant
        assert to_iso(None) is None
        assert from_iso(None) is None


class TestConversions:
    """Test local wall-clock conversions"""

    @freeze_time("2025-01-15 14:30:00")
    def test_now_utc_is_aware(self):
        """Test now_utc returns an aware UTC datetime"""
        assert now_utc() == datetime(2025, 1, 15, 14, 30, tzinfo=timezone.utc)

    def test_ensure_utc_naive(self):
        """Test naive datetimes get UTC attached"""
        assert ensure_utc(datetime(2025, 1, 15, 9, 0)).tzinfo == timezone.utc

    def test_to_utc_standard_time(self):
        """Test a winter wall-clock time in Los Angeles is UTC-8"""
        assert to_utc(datetime(2025, 1, 15, 9, 0), "America/Los_Angeles") == \
            datetime(2025, 1, 15, 17, 0, tzinfo=timezone.utc)

    def test_to_utc_daylight_time(self):
        """Test a summer wall-clock time in Los Angeles is UTC-7"""
        assert to_utc(datetime(2025, 7, 15, 9, 0), "America/Los_Angeles") == \
            datetime(2025, 7, 15, 16, 0, tzinfo=timezone.utc)

    def test_to_local(self):
        """Test conversion into a zone keeps the instant"""
        local = to_local(datetime(2025, 1, 15, 17, 0, tzinfo=timezone.utc), "America/New_York")
        assert (local.hour, local.minute) == (12, 0)

    def test_local_day_start_across_dst(self):
        """Test 9am local on the day after spring-forward uses the new offset"""
        assert local_day_start(date(2025, 3, 10), 9, "America/Los_Angeles") == \
            datetime(2025, 3, 10, 16, 0, tzinfo=timezone.utc)

    def test_unknown_timezone(self):
        """Test unknown zones raise ValidationError"""
        with pytest.raises(ValidationError):
            get_timezone("Mars/Olympus_Mons")
