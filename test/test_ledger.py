#!/usr/bin/env python3
"""
Unit tests for the activity ledger.
"""

import os
import sys
import threading
import unittest

# Add parent directory to path for imports
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from wellness_engine.ledger import ActivityLedger
from wellness_engine.models import ActivityEvent, ActivitySignal


class TestActivityLedger(unittest.TestCase):
    """Tests for the ActivityLedger class."""

    def setUp(self):
        """Set up test fixtures."""
        self.ledger = ActivityLedger(max_entries=5)

    def tearDown(self):
        """Clean up after tests."""
        del self.ledger

    def test_empty_ledger_has_no_elapsed_time(self):
        self.assertIsNone(self.ledger.time_since_last(1000.0))
        self.assertIsNone(self.ledger.last_event)

    def test_elapsed_is_zero_right_after_record(self):
        """time_since_last immediately after record is within epsilon of zero."""
        for t in (10.0, 250.5, 9999.0):
            self.ledger.record(ActivityEvent(timestamp=t, signal=ActivitySignal.STEPS))
            self.assertAlmostEqual(self.ledger.time_since_last(t), 0.0, places=6)

    def test_elapsed_time(self):
        self.ledger.record(ActivityEvent(timestamp=100.0, signal=ActivitySignal.PICKUP))
        self.assertEqual(self.ledger.time_since_last(160.0), 60.0)

    def test_trims_oldest_first(self):
        for t in range(8):
            self.ledger.record(ActivityEvent(timestamp=float(t), signal=ActivitySignal.MOVEMENT))

        events = self.ledger.events()
        self.assertEqual(len(events), 5)
        self.assertEqual([e.timestamp for e in events], [3.0, 4.0, 5.0, 6.0, 7.0])

    def test_late_event_is_inserted_in_order(self):
        self.ledger.record(ActivityEvent(timestamp=10.0, signal=ActivitySignal.STEPS))
        self.ledger.record(ActivityEvent(timestamp=30.0, signal=ActivitySignal.STEPS))
        self.ledger.record(ActivityEvent(timestamp=20.0, signal=ActivitySignal.APP_OPEN))

        self.assertEqual([e.timestamp for e in self.ledger.events()], [10.0, 20.0, 30.0])
        self.assertEqual(self.ledger.last_event.timestamp, 30.0)

    def test_explicit_trim(self):
        for t in range(4):
            self.ledger.record(ActivityEvent(timestamp=float(t), signal=ActivitySignal.STEPS))
        self.assertEqual(self.ledger.trim(2), 2)
        self.assertEqual(len(self.ledger), 2)

    def test_state_round_trip(self):
        self.ledger.record(ActivityEvent(timestamp=5.0, signal=ActivitySignal.USER_CHECK_IN, metadata="ok"))
        restored = ActivityLedger(max_entries=5)
        restored.load_state(self.ledger.to_state())

        self.assertEqual(restored.events(), self.ledger.events())

    def test_concurrent_writers(self):
        ledger = ActivityLedger(max_entries=10000)

        def writer(offset):
            for i in range(500):
                ledger.record(ActivityEvent(timestamp=float(offset + i), signal=ActivitySignal.STEPS))

        threads = [threading.Thread(target=writer, args=(n * 1000,)) for n in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        timestamps = [e.timestamp for e in ledger.events()]
        self.assertEqual(len(timestamps), 2000)
        self.assertEqual(timestamps, sorted(timestamps))


if __name__ == "__main__":
    unittest.main()
