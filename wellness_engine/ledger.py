#!/usr/bin/env python3
"""
Activity ledger.

Append-only, time-ordered store of discrete activity events. The ledger is
shared between producers and the inactivity evaluator, so every read and write
is serialized by one lock.
"""

import bisect
import logging
import threading
from typing import Any, Dict, List, Optional

from wellness_engine.models import ActivityEvent

logger = logging.getLogger(__name__)

DEFAULT_MAX_ENTRIES = 1000


class ActivityLedger:
    """Bounded, time-ordered history of activity events."""

    def __init__(self, max_entries: int = DEFAULT_MAX_ENTRIES):
        """
        Initialize the ledger.

        Args:
            max_entries: Number of events kept; the oldest are dropped first
        """
        self.max_entries = max(1, max_entries)
        self._events: List[ActivityEvent] = []
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)

    def record(self, event: ActivityEvent) -> None:
        """
        Append an event, keeping time order, and trim to the window.

        Args:
            event: Activity event to record
        """
        with self._lock:
            if not self._events or event.timestamp >= self._events[-1].timestamp:
                self._events.append(event)
            else:
                timestamps = [e.timestamp for e in self._events]
                index = bisect.bisect_right(timestamps, event.timestamp)
                self._events.insert(index, event)
                logger.debug(f"Late event {event.signal.value} inserted at position {index}")

            self._trim_locked(self.max_entries)

    def time_since_last(self, now: float) -> Optional[float]:
        """
        Seconds elapsed since the most recent event.

        Args:
            now: Current epoch seconds

        Returns:
            Elapsed seconds (never negative), or None if there is no history
        """
        with self._lock:
            if not self._events:
                return None
            return max(0.0, now - self._events[-1].timestamp)

    @property
    def last_event(self) -> Optional[ActivityEvent]:
        with self._lock:
            return self._events[-1] if self._events else None

    def events(self) -> List[ActivityEvent]:
        with self._lock:
            return list(self._events)

    def trim(self, max_entries: Optional[int] = None) -> int:
        """
        Drop the oldest events beyond max_entries.

        Args:
            max_entries: Limit to apply (defaults to the ledger's own)

        Returns:
            Number of events removed
        """
        with self._lock:
            return self._trim_locked(max_entries if max_entries is not None else self.max_entries)

    def _trim_locked(self, max_entries: int) -> int:
        excess = len(self._events) - max_entries
        if excess > 0:
            del self._events[:excess]
            return excess
        return 0

    def clear(self) -> None:
        with self._lock:
            self._events.clear()

    def to_state(self) -> Dict[str, Any]:
        with self._lock:
            return {"events": [e.model_dump(mode="json") for e in self._events]}

    def load_state(self, state: Optional[Dict[str, Any]]) -> None:
        if not state:
            return
        events = sorted(
            (ActivityEvent(**raw) for raw in state.get("events", [])),
            key=lambda e: e.timestamp,
        )
        with self._lock:
            self._events = events
            self._trim_locked(self.max_entries)
        logger.info(f"Restored {len(events)} activity events")
