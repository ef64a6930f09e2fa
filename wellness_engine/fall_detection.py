#!/usr/bin/env python3
"""
Fall detection state machine.

Turns a stream of gravity-inclusive acceleration magnitudes into confirmed
fall events. A fall is an impact above the impact threshold followed by a
period of stillness close to 1 g. Impacts that are not followed by stillness
within the timeout are treated as false alarms (a dropped phone, a jump).

The machine is synchronous and driven only by sample timestamps, so it must be
owned by a single consumer that feeds it one sample at a time.
"""

import logging
import math
from collections import deque
from typing import Deque, Optional, Tuple

import numpy as np

from wellness_engine.models import FallEvent, FallState
from wellness_engine.utils import is_valid_sample

logger = logging.getLogger(__name__)

TEST_PEAK_MAGNITUDE = 3.2
TEST_STILLNESS_DURATION = 3.5


class FallDetector:
    """Impact-then-stillness fall detector."""

    def __init__(
        self,
        impact_threshold: float = 2.5,
        stillness_threshold: float = 0.2,
        stillness_duration: float = 3.0,
        impact_timeout: float = 5.0,
        peak_window: float = 0.5,
        buffer_seconds: float = 5.0,
        cooldown: float = 2.0,
    ):
        """
        Initialize the detector in the Disabled state.

        Args:
            impact_threshold: Magnitude in g that counts as an impact
            stillness_threshold: Max mean deviation from 1 g for stillness
            stillness_duration: Seconds of stillness needed after impact
            impact_timeout: Seconds after impact before giving up
            peak_window: Seconds around the impact searched for the peak
            buffer_seconds: Seconds of samples kept
            cooldown: Seconds before monitoring resumes after cancel/alert
        """
        self.impact_threshold = impact_threshold
        self.stillness_threshold = stillness_threshold
        self.stillness_duration = stillness_duration
        self.impact_timeout = impact_timeout
        self.peak_window = peak_window
        self.buffer_seconds = buffer_seconds
        self.cooldown = cooldown

        self.state = FallState.DISABLED
        self.last_event: Optional[FallEvent] = None
        self._buffer: Deque[Tuple[float, float]] = deque()
        self._impact_time: Optional[float] = None
        self._peak: float = 0.0
        self._last_timestamp: Optional[float] = None
        self._cooldown_until: Optional[float] = None

    @property
    def is_enabled(self) -> bool:
        return self.state != FallState.DISABLED

    def enable(self) -> None:
        if self.state == FallState.DISABLED:
            self._reset()
            self._transition(FallState.MONITORING)

    def disable(self) -> None:
        self._reset()
        self._cooldown_until = None
        self._transition(FallState.DISABLED)

    def _reset(self) -> None:
        self._buffer.clear()
        self._impact_time = None
        self._peak = 0.0
        self._last_timestamp = None

    def _transition(self, new_state: FallState) -> None:
        if new_state != self.state:
            logger.info(f"Fall detection: {self.state.value} -> {new_state.value}")
            self.state = new_state

    def process_sample(self, timestamp: float, magnitude: float) -> Optional[FallEvent]:
        """
        Consume one magnitude sample.

        Args:
            timestamp: Sample time in epoch seconds
            magnitude: Acceleration norm in g (gravity included)

        Returns:
            A FallEvent when this sample confirms a fall, otherwise None
        """
        if self.state == FallState.DISABLED:
            return None

        if not is_valid_sample(magnitude) or not math.isfinite(timestamp):
            logger.warning(f"Discarding invalid motion sample ({timestamp!r}, {magnitude!r})")
            return None
        if self._last_timestamp is not None and timestamp < self._last_timestamp:
            logger.warning(f"Discarding out-of-order motion sample at {timestamp}")
            return None
        self._last_timestamp = timestamp

        self.tick(timestamp)

        self._buffer.append((timestamp, magnitude))
        while self._buffer and self._buffer[0][0] < timestamp - self.buffer_seconds:
            self._buffer.popleft()

        if self.state == FallState.MONITORING:
            if magnitude > self.impact_threshold:
                self._start_impact(timestamp)
            return None

        if self.state == FallState.IMPACT_DETECTED:
            return self._evaluate_impact(timestamp, magnitude)

        return None

    def _start_impact(self, timestamp: float) -> None:
        self._impact_time = timestamp
        self._peak = max(
            m for t, m in self._buffer if t >= timestamp - self.peak_window
        )
        logger.info(f"Impact detected: {self._peak:.2f}g")
        self._transition(FallState.IMPACT_DETECTED)

    def _evaluate_impact(self, timestamp: float, magnitude: float) -> Optional[FallEvent]:
        elapsed = timestamp - self._impact_time
        if elapsed <= self.peak_window:
            self._peak = max(self._peak, magnitude)

        if elapsed >= self.stillness_duration:
            post_impact = [m for t, m in self._buffer if t > self._impact_time]
            if post_impact:
                deviation = float(np.mean(np.abs(np.asarray(post_impact) - 1.0)))
                if deviation < self.stillness_threshold:
                    return self._confirm(elapsed)

        if elapsed > self.impact_timeout:
            logger.info("Impact not followed by stillness, resuming monitoring")
            self._impact_time = None
            self._peak = 0.0
            self._transition(FallState.MONITORING)

        return None

    def _confirm(self, stillness: float) -> FallEvent:
        event = FallEvent(
            timestamp=self._impact_time,
            peak_magnitude=self._peak or self.impact_threshold,
            stillness_duration=stillness,
        )
        self._impact_time = None
        self.last_event = event
        logger.warning(
            f"Fall confirmed: peak={event.peak_magnitude:.2f}g stillness={event.stillness_duration:.1f}s"
        )
        self._transition(FallState.FALL_CONFIRMED)
        return event

    def countdown_expired(self) -> bool:
        """Move FallConfirmed to Alerting once the response window lapses."""
        if self.state != FallState.FALL_CONFIRMED:
            return False
        self._transition(FallState.ALERTING)
        return True

    def cancel(self, now: float) -> bool:
        """
        User reported they are OK.

        Args:
            now: Current epoch seconds

        Returns:
            True if a confirmed or alerting fall was cancelled
        """
        if self.state not in (FallState.FALL_CONFIRMED, FallState.ALERTING):
            return False
        self._cooldown_until = now + self.cooldown
        self._transition(FallState.CANCELLED)
        return True

    def resolve_alert(self, now: float) -> None:
        """Dispatch finished; return to monitoring after the cooldown."""
        if self.state == FallState.ALERTING:
            self._cooldown_until = now + self.cooldown

    def tick(self, now: float) -> None:
        """Leave Cancelled or a resolved Alerting once the cooldown has passed."""
        if self._cooldown_until is None or now < self._cooldown_until:
            return
        if self.state in (FallState.CANCELLED, FallState.ALERTING):
            self._cooldown_until = None
            self._buffer.clear()
            self._transition(FallState.MONITORING)

    def trigger_manual_test(self, now: float) -> Optional[FallEvent]:
        """
        Synthesize a fall without sensor input.

        Thresholds are left untouched. Returns None if a fall is already
        being handled.
        """
        if self.state in (FallState.FALL_CONFIRMED, FallState.ALERTING):
            return None

        event = FallEvent(
            timestamp=now,
            peak_magnitude=TEST_PEAK_MAGNITUDE,
            stillness_duration=TEST_STILLNESS_DURATION,
            synthetic=True,
        )
        self._impact_time = None
        self._cooldown_until = None
        self.last_event = event
        logger.info("Test fall triggered")
        self._transition(FallState.FALL_CONFIRMED)
        return event
