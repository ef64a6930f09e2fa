#!/usr/bin/env python3
"""
Unit tests for the time-of-day helpers.
"""

import os
import sys
import unittest
from datetime import datetime, timezone

# Add parent directory to path for imports
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from wellness_engine.exceptions import InvalidInputError
from wellness_engine.utils import (ManualClock, format_hhmm, is_in_quiet_hours, is_weekend,
                                   magnitude_of, minute_of_day, parse_hhmm)


class TestQuietHours(unittest.TestCase):
    """Tests for the quiet-hours window check."""

    def test_overnight_window(self):
        """A 22:00-07:00 window wraps past midnight."""
        start, end = parse_hhmm("22:00"), parse_hhmm("07:00")
        self.assertTrue(is_in_quiet_hours(parse_hhmm("23:00"), start, end))
        self.assertTrue(is_in_quiet_hours(parse_hhmm("06:00"), start, end))
        self.assertFalse(is_in_quiet_hours(parse_hhmm("12:00"), start, end))

    def test_daytime_window(self):
        """An 08:00-18:00 window does not wrap."""
        start, end = parse_hhmm("08:00"), parse_hhmm("18:00")
        self.assertTrue(is_in_quiet_hours(parse_hhmm("12:00"), start, end))
        self.assertFalse(is_in_quiet_hours(parse_hhmm("20:00"), start, end))

    def test_boundaries_are_inclusive(self):
        start, end = parse_hhmm("22:00"), parse_hhmm("07:00")
        self.assertTrue(is_in_quiet_hours(start, start, end))
        self.assertTrue(is_in_quiet_hours(end, start, end))
        self.assertFalse(is_in_quiet_hours(end + 1, start, end))


class TestParsing(unittest.TestCase):
    """Tests for HH:MM parsing."""

    def test_parse_and_format(self):
        self.assertEqual(parse_hhmm("07:30"), 450)
        self.assertEqual(format_hhmm(450), "07:30")

    def test_invalid_values(self):
        for value in ("25:00", "7", "ab:cd", "", None):
            with self.assertRaises(InvalidInputError):
                parse_hhmm(value)


class TestHelpers(unittest.TestCase):
    """Tests for miscellaneous helpers."""

    def test_minute_of_day_and_weekend(self):
        saturday = datetime(2024, 1, 13, 9, 15, tzinfo=timezone.utc)
        self.assertEqual(minute_of_day(saturday), 555)
        self.assertTrue(is_weekend(saturday))
        self.assertFalse(is_weekend(datetime(2024, 1, 15, 9, 15)))

    def test_magnitude_at_rest_is_one_g(self):
        self.assertAlmostEqual(magnitude_of(0.0, 0.0, -1.0), 1.0)
        self.assertAlmostEqual(magnitude_of(0.6, 0.8, 0.0), 1.0)

    def test_manual_clock(self):
        clock = ManualClock(100.0, tz=timezone.utc)
        clock.advance(50)
        self.assertEqual(clock.now(), 150.0)
        self.assertEqual(clock.local().tzinfo, timezone.utc)


if __name__ == "__main__":
    unittest.main()
