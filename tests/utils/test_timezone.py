"""Tests for utils/timezone.py - UTC-everywhere time handling."""

from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo

import pytest

from utils.timezone import (
    now_utc, to_utc, to_local, local_date, from_unix, parse_iso,
)


class TestNowUtc:
    """Tests for now_utc()."""

    def test_returns_timezone_aware(self):
        """Result must have tzinfo set (not naive)."""
        result = now_utc()
        assert result.tzinfo is not None

    def test_is_utc(self):
        """Result timezone must be specifically UTC."""
        result = now_utc()
        assert result.tzinfo == timezone.utc


class TestToUtc:
    """Tests for to_utc()."""

    def test_raises_on_naive(self):
        """Naive datetime must raise ValueError."""
        naive = datetime(2024, 1, 1, 12, 0, 0)
        with pytest.raises(ValueError, match="naive"):
            to_utc(naive)

    def test_converts_kolkata(self):
        """Kolkata 12:00 should become UTC 06:30."""
        kolkata = datetime(2024, 1, 1, 12, 0, 0, tzinfo=ZoneInfo("Asia/Kolkata"))
        result = to_utc(kolkata)
        assert result.tzinfo == timezone.utc
        assert (result.hour, result.minute) == (6, 30)


class TestToLocal:
    """Tests for to_local()."""

    def test_converts_correctly(self):
        """UTC 18:00 should become Kolkata 23:30."""
        utc_time = datetime(2024, 1, 1, 18, 0, 0, tzinfo=timezone.utc)
        result = to_local(utc_time, "Asia/Kolkata")
        assert (result.hour, result.minute) == (23, 30)

    def test_raises_on_invalid_timezone(self):
        """Invalid timezone name must raise ValueError."""
        with pytest.raises(ValueError, match="Unknown timezone"):
            to_local(now_utc(), "Not/A/Timezone")


class TestLocalDate:
    """Tests for local_date()."""

    def test_rolls_over_before_utc(self):
        """19:00 UTC is already the next day in India."""
        utc_time = datetime(2024, 3, 10, 19, 0, 0, tzinfo=timezone.utc)
        assert local_date(utc_time, "Asia/Kolkata") == date(2024, 3, 11)


class TestFromUnix:
    """Tests for from_unix()."""

    def test_none_passes_through(self):
        assert from_unix(None) is None

    def test_epoch_seconds(self):
        result = from_unix(0)
        assert result == datetime(1970, 1, 1, tzinfo=timezone.utc)


class TestParseIso:
    """Tests for parse_iso()."""

    def test_handles_zulu(self):
        """ISO string with Z suffix should parse to UTC."""
        result = parse_iso("2024-01-01T12:00:00Z")
        assert result.tzinfo == timezone.utc
        assert result.hour == 12

    def test_raises_on_naive_string(self):
        """Strings without offset are rejected."""
        with pytest.raises(ValueError, match="naive"):
            parse_iso("2024-01-01T12:00:00")
