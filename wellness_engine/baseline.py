#!/usr/bin/env python3
"""
Baseline pattern learner.

Builds a per-hour expectation of activity, bucketed by hour of day and
weekday/weekend, and flags hours whose activity falls far below it.

The learner has two phases. During the learning period samples are collected
but no deviation is reported; once mature, each completed hour is compared to
its bucket before being added to it.
"""

import logging
from collections import deque
from typing import Any, Deque, Dict, List, Optional, Tuple

import numpy as np

from wellness_engine.exceptions import InvalidInputError
from wellness_engine.models import DailySummary, PatternDeviation
from wellness_engine.utils import hour_bucket_key

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86400.0
NIGHT_HOURS = range(0, 6)

BucketKey = Tuple[int, bool]


class HourlyBucket:
    """Rolling window of (activity, events) samples for one hour/day-type."""

    def __init__(self, max_samples: int):
        self.samples: Deque[Tuple[int, int]] = deque(maxlen=max_samples)

    @property
    def sample_count(self) -> int:
        return len(self.samples)

    def add(self, activity: int, events: int) -> None:
        self.samples.append((activity, events))

    def means(self) -> Tuple[float, float]:
        data = np.asarray(self.samples, dtype=float)
        return float(data[:, 0].mean()), float(data[:, 1].mean())


class BaselineLearner:
    """Learns typical hourly activity and reports deviations from it."""

    def __init__(
        self,
        install_date: float,
        learning_period_days: int = 14,
        max_samples: int = 30,
        min_expected_samples: int = 3,
        min_deviation_samples: int = 7,
        noise_floor: float = 100.0,
        event_floor: float = 2.0,
        deviation_ratio: float = 0.25,
        relaxed_night: bool = False,
        adaptive_night: bool = False,
        max_daily_summaries: int = 60,
    ):
        """
        Initialize the learner.

        Args:
            install_date: Epoch seconds when monitoring was first installed
            learning_period_days: Days before deviations are reported
            max_samples: Samples kept per bucket (FIFO)
            min_expected_samples: Samples needed to report an expectation
            min_deviation_samples: Samples needed to flag a deviation
            noise_floor: Expected activity mean required before flagging
            event_floor: Expected event mean required to flag on events
            deviation_ratio: Fraction of the expectation considered deviant
            relaxed_night: Allow deviations during night hours
            adaptive_night: Derive night hours from the learned wake hour
            max_daily_summaries: Days of summaries kept
        """
        self.install_date = install_date
        self.learning_period_days = learning_period_days
        self.max_samples = max_samples
        self.min_expected_samples = min_expected_samples
        self.min_deviation_samples = min_deviation_samples
        self.noise_floor = noise_floor
        self.event_floor = event_floor
        self.deviation_ratio = deviation_ratio
        self.relaxed_night = relaxed_night
        self.adaptive_night = adaptive_night
        self.max_daily_summaries = max_daily_summaries

        self.buckets: Dict[BucketKey, HourlyBucket] = {}
        self.daily_summaries: List[DailySummary] = []
        self.deviation_detected = False
        self.deviation_description: Optional[str] = None

    # Learning phase

    def is_learning(self, now: float) -> bool:
        return now < self.install_date + self.learning_period_days * SECONDS_PER_DAY

    def learning_day(self, now: float) -> int:
        """Current day of the learning period, starting at 1."""
        elapsed_days = int(max(0.0, now - self.install_date) // SECONDS_PER_DAY)
        return min(elapsed_days + 1, self.learning_period_days)

    def learning_progress(self, now: float) -> float:
        if self.learning_period_days <= 0:
            return 1.0
        elapsed = max(0.0, now - self.install_date) / SECONDS_PER_DAY
        return min(1.0, elapsed / self.learning_period_days)

    # Hourly buckets

    def observe_hour(self, hour: int, is_weekend: bool, activity_count: int, event_count: int) -> None:
        """
        Add one completed hour to its bucket.

        Args:
            hour: Hour of day (0-23)
            is_weekend: Whether the hour fell on a weekend
            activity_count: Activity units (steps) in the hour
            event_count: Discrete phone events in the hour

        Raises:
            InvalidInputError: If the hour or counts are out of range
        """
        key = hour_bucket_key(hour, is_weekend)
        if activity_count < 0 or event_count < 0:
            raise InvalidInputError(f"Negative counts for hour {hour}: {activity_count}, {event_count}")

        bucket = self.buckets.get(key)
        if bucket is None:
            bucket = self.buckets[key] = HourlyBucket(self.max_samples)
        bucket.add(int(activity_count), int(event_count))

    def sample_count(self, hour: int, is_weekend: bool) -> int:
        bucket = self.buckets.get(hour_bucket_key(hour, is_weekend))
        return bucket.sample_count if bucket else 0

    def expected_for(self, hour: int, is_weekend: bool) -> Optional[Tuple[float, float]]:
        """
        Expected (activity, events) for an hour.

        Returns:
            Mean activity and mean events, or None with fewer than
            min_expected_samples samples
        """
        bucket = self.buckets.get(hour_bucket_key(hour, is_weekend))
        if bucket is None or bucket.sample_count < self.min_expected_samples:
            return None
        return bucket.means()

    def night_hours(self, is_weekend: bool) -> range:
        """Hours treated as night for deviation suppression."""
        if self.adaptive_night:
            wake_hour = self.typical_wake_hour(is_weekend)
            if wake_hour is not None and 0 < wake_hour <= 12:
                return range(0, wake_hour)
        return NIGHT_HOURS

    def _check(
        self, hour: int, is_weekend: bool, current_activity: int, current_events: int
    ) -> Optional[Tuple[bool, bool, float, float]]:
        if not self.relaxed_night and hour in self.night_hours(is_weekend):
            return None

        bucket = self.buckets.get(hour_bucket_key(hour, is_weekend))
        if bucket is None or bucket.sample_count < self.min_deviation_samples:
            return None

        mean_activity, mean_events = bucket.means()
        if mean_activity <= self.noise_floor:
            return None

        low_activity = current_activity < mean_activity * self.deviation_ratio
        low_events = mean_events > self.event_floor and current_events < mean_events * self.deviation_ratio
        return low_activity, low_events, mean_activity, mean_events

    def is_deviant(self, hour: int, is_weekend: bool, current_activity: int, current_events: int) -> bool:
        """
        Whether an hour is far below its learned expectation.

        Args:
            hour: Hour of day (0-23)
            is_weekend: Whether the hour fell on a weekend
            current_activity: Activity units observed
            current_events: Phone events observed

        Returns:
            True if activity or events fell below the deviation ratio
        """
        verdict = self._check(hour, is_weekend, current_activity, current_events)
        return verdict is not None and (verdict[0] or verdict[1])

    def record_hour(
        self, hour: int, is_weekend: bool, activity_count: int, event_count: int, now: float
    ) -> Optional[PatternDeviation]:
        """
        Compare a completed hour to the baseline, then learn from it.

        Args:
            hour: Hour of day (0-23)
            is_weekend: Whether the hour fell on a weekend
            activity_count: Activity units in the hour
            event_count: Phone events in the hour
            now: Current epoch seconds

        Returns:
            The deviation found, or None
        """
        deviation = None
        if not self.is_learning(now):
            verdict = self._check(hour, is_weekend, activity_count, event_count)
            if verdict is not None and (verdict[0] or verdict[1]):
                low_activity, low_events, mean_activity, mean_events = verdict
                deviation = PatternDeviation(
                    hour=hour,
                    is_weekend=is_weekend,
                    expected_activity=mean_activity,
                    actual_activity=activity_count,
                    expected_events=mean_events,
                    actual_events=event_count,
                    description=self._describe(low_activity, low_events),
                )

        self.observe_hour(hour, is_weekend, activity_count, event_count)

        if deviation is not None:
            self.deviation_detected = True
            self.deviation_description = deviation.description
            logger.warning(f"Pattern deviation at hour {hour}: {deviation.description}")
        else:
            self.clear_deviation()

        return deviation

    @staticmethod
    def _describe(low_activity: bool, low_events: bool) -> str:
        if low_activity and low_events:
            return "Activity is unusually low for this time of day"
        if low_activity:
            return "Step count is much lower than usual"
        return "Phone activity is less than usual"

    def clear_deviation(self) -> None:
        self.deviation_detected = False
        self.deviation_description = None

    # Daily summaries

    def record_daily_summary(self, summary: DailySummary) -> None:
        """Store a day's summary, replacing an earlier one for the same date."""
        self.daily_summaries = [s for s in self.daily_summaries if s.date != summary.date]
        self.daily_summaries.append(summary)
        self.daily_summaries.sort(key=lambda s: s.date)
        if len(self.daily_summaries) > self.max_daily_summaries:
            self.daily_summaries = self.daily_summaries[-self.max_daily_summaries:]

    def typical_wake_hour(self, is_weekend: bool) -> Optional[int]:
        hours = [
            s.first_active_hour
            for s in self.daily_summaries
            if s.is_weekend == is_weekend and s.first_active_hour is not None
        ]
        if len(hours) < 3:
            return None
        return int(np.mean(hours))

    def typical_daily_total(self, is_weekend: bool) -> Optional[int]:
        totals = [s.total_activity for s in self.daily_summaries if s.is_weekend == is_weekend]
        if len(totals) < 3:
            return None
        return int(np.mean(totals))

    # Persistence

    def to_state(self) -> Dict[str, Any]:
        return {
            "install_date": self.install_date,
            "buckets": [
                {"hour": hour, "is_weekend": weekend, "samples": [list(s) for s in bucket.samples]}
                for (hour, weekend), bucket in sorted(self.buckets.items())
            ],
            "daily_summaries": [s.model_dump(mode="json") for s in self.daily_summaries],
        }

    def load_state(self, state: Optional[Dict[str, Any]]) -> None:
        if not state:
            return
        self.install_date = state.get("install_date", self.install_date)
        self.buckets = {}
        for raw in state.get("buckets", []):
            bucket = HourlyBucket(self.max_samples)
            for activity, events in raw.get("samples", []):
                bucket.add(int(activity), int(events))
            self.buckets[hour_bucket_key(raw["hour"], raw["is_weekend"])] = bucket
        self.daily_summaries = []
        for raw in state.get("daily_summaries", []):
            self.record_daily_summary(DailySummary(**raw))
        logger.info(f"Restored baseline with {len(self.buckets)} hourly buckets")
