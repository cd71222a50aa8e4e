"""
Tests for time helpers.
"""

import datetime

from league.timeutils import format_remaining, from_timestamp, hours_since, hours_until, to_timestamp

from factories import NOW


class TestTimeUtils:
    """Test conversions and durations."""

    def test_timestamp_round_trip(self):
        """Epoch seconds convert back to the same instant."""
        assert from_timestamp(to_timestamp(NOW)) == NOW
        assert to_timestamp(None) is None and from_timestamp(None) is None

    def test_hours_until_clamped(self):
        """Time until a past moment is zero."""
        assert hours_until(NOW + datetime.timedelta(hours=3), NOW) == 3.0
        assert hours_until(NOW - datetime.timedelta(hours=3), NOW) == 0.0

    def test_hours_since(self):
        """Time since a moment can be negative for future moments."""
        assert hours_since(NOW - datetime.timedelta(hours=2), NOW) == 2.0
        assert hours_since(NOW + datetime.timedelta(hours=2), NOW) == -2.0

    def test_format_remaining(self):
        """Durations render as hours and minutes."""
        assert format_remaining(datetime.timedelta(hours=5, minutes=3, seconds=20)) == "5h 3m"
        assert format_remaining(datetime.timedelta(minutes=42)) == "42m"
        assert format_remaining(datetime.timedelta(seconds=-5)) == "0m"
