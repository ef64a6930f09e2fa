#!/usr/bin/env python3
"""
Utility functions for the WellnessGuard engine.

Time-of-day helpers, quiet-hours arithmetic and the injectable clock used by
the state machines.
"""

import math
import time
from datetime import datetime, tzinfo
from typing import Callable, Optional, Tuple

from wellness_engine.exceptions import InvalidInputError

MINUTES_PER_DAY = 24 * 60


class Clock:
    """Wall clock with an optional time zone; tests replace ``now``."""

    def __init__(self, now: Optional[Callable[[], float]] = None, tz: Optional[tzinfo] = None):
        """
        Initialize the clock.

        Args:
            now: Callable returning epoch seconds (defaults to time.time)
            tz: Time zone used for hour and weekday arithmetic (local if None)
        """
        self._now = now or time.time
        self.tz = tz

    def now(self) -> float:
        return self._now()

    def local(self, timestamp: Optional[float] = None) -> datetime:
        """
        Convert a timestamp to a datetime in the clock's zone.

        Args:
            timestamp: Epoch seconds (defaults to now)

        Returns:
            Aware datetime if a zone is set, naive local datetime otherwise
        """
        if timestamp is None:
            timestamp = self.now()
        return datetime.fromtimestamp(timestamp, tz=self.tz)


class ManualClock(Clock):
    """Clock that only moves when told to."""

    def __init__(self, start: float = 0.0, tz: Optional[tzinfo] = None):
        super().__init__(now=self._read, tz=tz)
        self.current = float(start)

    def _read(self) -> float:
        return self.current

    def advance(self, seconds: float) -> float:
        self.current += seconds
        return self.current

    def set(self, timestamp: float) -> None:
        self.current = float(timestamp)


def parse_hhmm(value: str) -> int:
    """
    Parse an ``HH:MM`` string into minute-of-day.

    Args:
        value: Time of day such as "22:00"

    Returns:
        Minutes since midnight

    Raises:
        InvalidInputError: If the value is not a valid time of day
    """
    try:
        hours_text, minutes_text = value.strip().split(":")
        hours, minutes = int(hours_text), int(minutes_text)
    except (AttributeError, ValueError) as e:
        raise InvalidInputError(f"Invalid time of day: {value!r}") from e

    if not (0 <= hours < 24 and 0 <= minutes < 60):
        raise InvalidInputError(f"Time of day out of range: {value!r}")

    return hours * 60 + minutes


def format_hhmm(minute_of_day: int) -> str:
    return f"{minute_of_day // 60:02d}:{minute_of_day % 60:02d}"


def minute_of_day(moment: datetime) -> int:
    return moment.hour * 60 + moment.minute


def is_weekend(moment: datetime) -> bool:
    return moment.weekday() >= 5


def is_in_quiet_hours(current: int, start: int, end: int) -> bool:
    """
    Check whether a minute-of-day falls inside a quiet-hours window.

    Both ends are inclusive. When start is after end the window wraps past
    midnight (e.g. 22:00-07:00). An empty window (start == end) matches only
    that single minute.

    Args:
        current: Minute of day to test
        start: Window start (minute of day)
        end: Window end (minute of day)

    Returns:
        True if current is inside the window
    """
    if start <= end:
        return start <= current <= end
    return current >= start or current <= end


def magnitude_of(x: float, y: float, z: float) -> float:
    """Gravity-inclusive acceleration norm in g."""
    return math.sqrt(x * x + y * y + z * z)


def is_valid_sample(value: float) -> bool:
    return isinstance(value, (int, float)) and math.isfinite(value) and value >= 0


def hour_bucket_key(hour: int, weekend: bool) -> Tuple[int, bool]:
    if not 0 <= hour <= 23:
        raise InvalidInputError(f"Hour out of range: {hour}")
    return (hour, bool(weekend))
