#!/usr/bin/env python3
"""
Battery context gate.

Keeps a bounded history of power snapshots and answers whether the device was
plausibly dead when a silence began. With no evidence the gate fails open, so
unexplained silence still escalates.
"""

import logging
import threading
from typing import Any, Dict, List, Optional, Union

from wellness_engine.models import BatterySnapshot, ChargeState

logger = logging.getLogger(__name__)

MAX_SNAPSHOTS = 100
SIGNIFICANT_LEVEL_CHANGE = 5
DEAD_LEVEL = 5
CRITICAL_LEVEL = 10
DEFAULT_DRAIN_WINDOW = 3600.0


class BatteryGate:
    """Bounded history of battery snapshots guarded by a writer lock."""

    def __init__(self, max_snapshots: int = MAX_SNAPSHOTS):
        self.max_snapshots = max_snapshots
        self._snapshots: List[BatterySnapshot] = []
        self._lock = threading.Lock()

    @property
    def snapshots(self) -> List[BatterySnapshot]:
        with self._lock:
            return list(self._snapshots)

    @property
    def latest(self) -> Optional[BatterySnapshot]:
        with self._lock:
            return self._snapshots[-1] if self._snapshots else None

    def record_snapshot(
        self,
        level: Optional[int],
        state: Union[ChargeState, str],
        power_save: bool,
        timestamp: float,
    ) -> bool:
        """
        Record a snapshot if it differs significantly from the last one.

        Args:
            level: Battery level 0-100, or None when unknown
            state: Charging state
            power_save: Whether low power mode is on
            timestamp: Epoch seconds of the reading

        Returns:
            True if the snapshot was recorded
        """
        if level is not None and (isinstance(level, bool) or not 0 <= level <= 100):
            logger.warning(f"Discarding battery reading with invalid level {level!r}")
            return False

        try:
            state = ChargeState(state)
        except ValueError:
            logger.warning(f"Discarding battery reading with invalid state {state!r}")
            return False

        snapshot = BatterySnapshot(
            timestamp=timestamp,
            level=int(level) if level is not None else None,
            state=state,
            power_save=bool(power_save),
        )

        with self._lock:
            if self._snapshots and not self._is_significant(self._snapshots[-1], snapshot):
                return False

            self._snapshots.append(snapshot)
            if len(self._snapshots) > self.max_snapshots:
                del self._snapshots[: len(self._snapshots) - self.max_snapshots]

        logger.info(f"Battery snapshot: level={snapshot.level} state={snapshot.state.value}")
        return True

    @staticmethod
    def _is_significant(previous: BatterySnapshot, current: BatterySnapshot) -> bool:
        if previous.state != current.state:
            return True
        if (previous.level is None) != (current.level is None):
            return True
        if previous.level is None:
            return False
        return abs(current.level - previous.level) >= SIGNIFICANT_LEVEL_CHANGE

    def last_known_before(self, timestamp: float) -> Optional[BatterySnapshot]:
        """Latest snapshot taken strictly before the given time."""
        with self._lock:
            for snapshot in reversed(self._snapshots):
                if snapshot.timestamp < timestamp:
                    return snapshot
        return None

    def likely_dead_at(self, gap_start: float) -> bool:
        """
        Decide whether a dead battery explains a silence.

        Args:
            gap_start: Time the silence began (last known activity)

        Returns:
            True only when the last snapshot before the gap shows a nearly
            empty, unplugged device
        """
        snapshot = self.last_known_before(gap_start)
        if snapshot is None or snapshot.level is None:
            return False
        return snapshot.level <= DEAD_LEVEL and snapshot.state == ChargeState.UNPLUGGED

    def drain_rate(self, now: float, window: float = DEFAULT_DRAIN_WINDOW) -> Optional[float]:
        """
        Discharge rate over a recent unplugged window.

        Args:
            now: Current epoch seconds
            window: Look-back window in seconds

        Returns:
            Percent per hour, or None without two unplugged readings
        """
        cutoff = now - window
        with self._lock:
            recent = [s for s in self._snapshots if s.timestamp >= cutoff]

        if len(recent) < 2:
            return None
        if any(s.state != ChargeState.UNPLUGGED or s.level is None for s in recent):
            return None

        oldest, newest = recent[0], recent[-1]
        hours = (newest.timestamp - oldest.timestamp) / 3600.0
        if hours <= 0:
            return None
        return (oldest.level - newest.level) / hours

    @property
    def is_critically_low(self) -> bool:
        snapshot = self.latest
        return (
            snapshot is not None
            and snapshot.level is not None
            and snapshot.level < CRITICAL_LEVEL
            and snapshot.state == ChargeState.UNPLUGGED
        )

    def to_state(self) -> Dict[str, Any]:
        with self._lock:
            return {"snapshots": [s.model_dump(mode="json") for s in self._snapshots]}

    def load_state(self, state: Optional[Dict[str, Any]]) -> None:
        if not state:
            return
        snapshots = [BatterySnapshot(**raw) for raw in state.get("snapshots", [])]
        snapshots.sort(key=lambda s: s.timestamp)
        with self._lock:
            self._snapshots = snapshots[-self.max_snapshots:]
