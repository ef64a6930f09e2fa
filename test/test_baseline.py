#!/usr/bin/env python3
"""
Unit tests for the baseline pattern learner.
"""

import os
import sys
import unittest

# Add parent directory to path for imports
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from wellness_engine.baseline import BaselineLearner
from wellness_engine.exceptions import InvalidInputError
from wellness_engine.models import DailySummary

DAY = 86400.0
INSTALL = 1_700_000_000.0
MATURE = INSTALL + 15 * DAY


def fill(learner, hour, weekend, activity, events, count):
    for _ in range(count):
        learner.observe_hour(hour, weekend, activity, events)


class TestExpectations(unittest.TestCase):
    """Tests for expected values and sample guards."""

    def setUp(self):
        """Set up test fixtures."""
        self.learner = BaselineLearner(install_date=INSTALL)

    def test_expected_needs_three_samples(self):
        fill(self.learner, 10, False, 400, 6, 2)
        self.assertIsNone(self.learner.expected_for(10, False))

        self.learner.observe_hour(10, False, 700, 9)
        activity, events = self.learner.expected_for(10, False)
        self.assertAlmostEqual(activity, 500.0)
        self.assertAlmostEqual(events, 7.0)

    def test_weekend_and_weekday_buckets_are_separate(self):
        fill(self.learner, 10, False, 400, 6, 3)
        self.assertIsNone(self.learner.expected_for(10, True))

    def test_buckets_are_fifo_capped(self):
        fill(self.learner, 9, False, 100, 1, 10)
        fill(self.learner, 9, False, 1000, 10, 30)

        self.assertEqual(self.learner.sample_count(9, False), 30)
        activity, events = self.learner.expected_for(9, False)
        self.assertAlmostEqual(activity, 1000.0)
        self.assertAlmostEqual(events, 10.0)

    def test_invalid_observations_are_rejected(self):
        with self.assertRaises(InvalidInputError):
            self.learner.observe_hour(24, False, 10, 1)
        with self.assertRaises(InvalidInputError):
            self.learner.observe_hour(10, False, -1, 1)
        self.assertEqual(self.learner.buckets, {})


class TestDeviation(unittest.TestCase):
    """Tests for deviation verdicts."""

    def setUp(self):
        """Set up test fixtures."""
        self.learner = BaselineLearner(install_date=INSTALL)

    def test_never_deviant_below_seven_samples(self):
        fill(self.learner, 10, False, 5000, 50, 6)
        self.assertFalse(self.learner.is_deviant(10, False, 0, 0))

    def test_deviant_with_seven_samples(self):
        fill(self.learner, 10, False, 500, 8, 7)
        self.assertTrue(self.learner.is_deviant(10, False, 0, 0))
        self.assertFalse(self.learner.is_deviant(10, False, 400, 8))

    def test_noise_floor(self):
        fill(self.learner, 14, False, 80, 8, 10)
        self.assertFalse(self.learner.is_deviant(14, False, 0, 0))

    def test_event_deviation(self):
        fill(self.learner, 11, False, 500, 10, 10)
        self.assertTrue(self.learner.is_deviant(11, False, 450, 1))

    def test_event_floor(self):
        fill(self.learner, 11, False, 500, 2, 10)
        self.assertFalse(self.learner.is_deviant(11, False, 450, 0))

    def test_night_hours_are_suppressed(self):
        for hour in range(0, 6):
            fill(self.learner, hour, False, 1000, 10, 10)
            self.assertFalse(self.learner.is_deviant(hour, False, 0, 0))

    def test_relaxed_night_mode(self):
        learner = BaselineLearner(install_date=INSTALL, relaxed_night=True)
        fill(learner, 3, False, 1000, 10, 10)
        self.assertTrue(learner.is_deviant(3, False, 0, 0))

    def test_adaptive_night_window(self):
        learner = BaselineLearner(install_date=INSTALL, adaptive_night=True)
        for day in range(1, 4):
            learner.record_daily_summary(
                DailySummary(date=f"2024-01-0{day}", is_weekend=False, total_activity=5000, first_active_hour=8)
            )
        fill(learner, 7, False, 1000, 10, 10)
        self.assertFalse(learner.is_deviant(7, False, 0, 0))
        fill(learner, 9, False, 1000, 10, 10)
        self.assertTrue(learner.is_deviant(9, False, 0, 0))


class TestRecordHour(unittest.TestCase):
    """Tests for the learning period and record_hour."""

    def setUp(self):
        """Set up test fixtures."""
        self.learner = BaselineLearner(install_date=INSTALL)
        fill(self.learner, 10, False, 600, 12, 10)

    def test_learning_period(self):
        self.assertTrue(self.learner.is_learning(INSTALL + 13 * DAY))
        self.assertFalse(self.learner.is_learning(INSTALL + 14 * DAY))
        self.assertEqual(self.learner.learning_day(INSTALL + 2.5 * DAY), 3)
        self.assertEqual(self.learner.learning_day(INSTALL + 40 * DAY), 14)

    def test_no_deviation_while_learning(self):
        self.assertIsNone(self.learner.record_hour(10, False, 0, 0, INSTALL + DAY))
        self.assertEqual(self.learner.sample_count(10, False), 11)

    def test_deviation_when_mature(self):
        deviation = self.learner.record_hour(10, False, 0, 0, MATURE)

        self.assertIsNotNone(deviation)
        self.assertEqual(deviation.description, "Activity is unusually low for this time of day")
        self.assertAlmostEqual(deviation.expected_activity, 600.0)
        self.assertTrue(self.learner.deviation_detected)

    def test_descriptions(self):
        steps_only = self.learner.record_hour(10, False, 0, 12, MATURE)
        self.assertEqual(steps_only.description, "Step count is much lower than usual")

        learner = BaselineLearner(install_date=INSTALL)
        fill(learner, 10, False, 600, 12, 10)
        events_only = learner.record_hour(10, False, 600, 0, MATURE)
        self.assertEqual(events_only.description, "Phone activity is less than usual")

    def test_normal_hour_clears_flag(self):
        self.learner.record_hour(10, False, 0, 0, MATURE)
        self.learner.record_hour(10, False, 600, 12, MATURE)
        self.assertFalse(self.learner.deviation_detected)


class TestDailySummaries(unittest.TestCase):
    """Tests for daily summaries and descriptive statistics."""

    def setUp(self):
        """Set up test fixtures."""
        self.learner = BaselineLearner(install_date=INSTALL)

    def test_typical_values_need_three_days(self):
        self.learner.record_daily_summary(
            DailySummary(date="2024-01-06", is_weekend=True, total_activity=3000, first_active_hour=9)
        )
        self.learner.record_daily_summary(
            DailySummary(date="2024-01-07", is_weekend=True, total_activity=4000, first_active_hour=10)
        )
        self.assertIsNone(self.learner.typical_wake_hour(True))

        self.learner.record_daily_summary(
            DailySummary(date="2024-01-13", is_weekend=True, total_activity=5000, first_active_hour=10)
        )
        self.assertEqual(self.learner.typical_wake_hour(True), 9)
        self.assertEqual(self.learner.typical_daily_total(True), 4000)
        self.assertIsNone(self.learner.typical_daily_total(False))

    def test_one_summary_per_day_and_cap(self):
        self.learner.record_daily_summary(DailySummary(date="2024-01-01", is_weekend=False, total_activity=1))
        self.learner.record_daily_summary(DailySummary(date="2024-01-01", is_weekend=False, total_activity=2))
        self.assertEqual(len(self.learner.daily_summaries), 1)
        self.assertEqual(self.learner.daily_summaries[0].total_activity, 2)

        for day in range(100):
            self.learner.record_daily_summary(
                DailySummary(date=f"2023-{1 + day // 28:02d}-{1 + day % 28:02d}", is_weekend=False)
            )
        self.assertEqual(len(self.learner.daily_summaries), 60)

    def test_state_round_trip(self):
        fill(self.learner, 10, False, 600, 12, 4)
        self.learner.record_daily_summary(DailySummary(date="2024-01-01", is_weekend=False, total_activity=7))

        restored = BaselineLearner(install_date=0.0)
        restored.load_state(self.learner.to_state())

        self.assertEqual(restored.install_date, INSTALL)
        self.assertEqual(restored.expected_for(10, False), self.learner.expected_for(10, False))
        self.assertEqual(restored.daily_summaries, self.learner.daily_summaries)


if __name__ == "__main__":
    unittest.main()
