#!/usr/bin/env python3
"""
Unit tests for the negative-space (inactivity) state machine.
"""

import os
import sys
import unittest
from datetime import datetime, timezone
from unittest.mock import MagicMock

# Add parent directory to path for imports
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from wellness_engine.battery import BatteryGate
from wellness_engine.config import MonitoringSettings
from wellness_engine.ledger import ActivityLedger
from wellness_engine.models import ActivityEvent, ActivitySignal, ChargeState, MonitoringState
from wellness_engine.negative_space import EvaluationOutcome, NegativeSpaceMonitor
from wellness_engine.utils import ManualClock

HOUR = 3600.0
# Wednesday 2024-01-10 12:00 UTC
T = datetime(2024, 1, 10, 12, 0, tzinfo=timezone.utc).timestamp()


class NegativeSpaceTestCase(unittest.TestCase):
    """Shared fixtures for inactivity tests."""

    def make_monitor(self, **overrides):
        values = {"learning_period_days": 0, "silence_threshold_hours": 4}
        values.update(overrides)
        self.settings = MonitoringSettings(**values)
        self.clock = ManualClock(T, tz=timezone.utc)
        self.ledger = ActivityLedger()
        self.battery = BatteryGate()
        self.prompts = MagicMock()
        return NegativeSpaceMonitor(
            ledger=self.ledger,
            battery=self.battery,
            settings=self.settings,
            prompts=self.prompts,
            clock=self.clock,
            install_date=T - 30 * 86400,
        )

    def categories(self):
        return [c.args[0].category for c in self.prompts.send_prompt.call_args_list]


class TestEvaluation(NegativeSpaceTestCase):
    """Tests for the periodic evaluation."""

    def setUp(self):
        """Set up test fixtures."""
        self.monitor = self.make_monitor()
        self.monitor.record_activity(ActivityEvent(timestamp=T, signal=ActivitySignal.STEPS))

    def test_nudge_sent_once(self):
        self.assertEqual(self.monitor.evaluate(T + 2 * HOUR), EvaluationOutcome.OK)
        self.assertEqual(self.monitor.evaluate(T + 3 * HOUR), EvaluationOutcome.NUDGE)
        self.assertEqual(self.monitor.evaluate(T + 3.5 * HOUR), EvaluationOutcome.OK)
        self.assertEqual(self.categories(), ["CHECK_IN"])

    def test_threshold_enters_alert_pending(self):
        self.monitor.evaluate(T + 3 * HOUR)
        self.assertEqual(self.monitor.evaluate(T + 4 * HOUR), EvaluationOutcome.ALERT)

        self.assertEqual(self.monitor.state, MonitoringState.ALERT_PENDING)
        self.assertEqual(self.categories(), ["CHECK_IN", "URGENT_CHECK_IN"])
        self.assertEqual(self.monitor.evaluate(T + 5 * HOUR), EvaluationOutcome.SKIPPED)

    def test_activity_stands_down_pending_alert(self):
        self.monitor.evaluate(T + 4 * HOUR)
        stood_down = self.monitor.record_activity(
            ActivityEvent(timestamp=T + 4 * HOUR + 60, signal=ActivitySignal.PICKUP)
        )

        self.assertTrue(stood_down)
        self.assertEqual(self.monitor.state, MonitoringState.ACTIVE)
        self.assertFalse(self.monitor.nudge_sent)

    def test_alert_sent_waits_for_activity(self):
        self.monitor.evaluate(T + 4 * HOUR)
        self.assertTrue(self.monitor.mark_alert_sent())
        self.assertEqual(self.monitor.state, MonitoringState.ALERT_SENT)
        self.assertEqual(self.monitor.evaluate(T + 8 * HOUR), EvaluationOutcome.SKIPPED)

        self.monitor.user_checked_in(T + 9 * HOUR)
        self.assertEqual(self.monitor.state, MonitoringState.ACTIVE)
        self.assertEqual(self.ledger.last_event.signal, ActivitySignal.USER_CHECK_IN)

    def test_dead_battery_suppresses_alert(self):
        self.battery.record_snapshot(3, ChargeState.UNPLUGGED, False, T - 600)

        self.assertEqual(self.monitor.evaluate(T + 5 * HOUR), EvaluationOutcome.SUPPRESSED)
        self.assertEqual(self.monitor.state, MonitoringState.ACTIVE)
        self.prompts.send_prompt.assert_not_called()

    def test_healthy_battery_does_not_suppress(self):
        self.battery.record_snapshot(80, ChargeState.UNPLUGGED, False, T - 600)
        self.assertEqual(self.monitor.evaluate(T + 5 * HOUR), EvaluationOutcome.ALERT)

    def test_check_in_twice_is_idempotent(self):
        self.monitor.user_checked_in(T + HOUR)
        self.monitor.user_checked_in(T + HOUR)

        self.assertFalse(self.monitor.nudge_sent)
        self.assertEqual(self.monitor.state, MonitoringState.ACTIVE)
        self.prompts.send_prompt.assert_not_called()

    def test_activity_resets_nudge(self):
        self.monitor.evaluate(T + 3 * HOUR)
        self.monitor.record_activity(ActivityEvent(timestamp=T + 3 * HOUR, signal=ActivitySignal.STEPS))
        self.assertEqual(self.monitor.evaluate(T + 6 * HOUR), EvaluationOutcome.NUDGE)

    def test_prompt_failure_does_not_break_evaluation(self):
        self.prompts.send_prompt.side_effect = RuntimeError("offline")
        self.assertEqual(self.monitor.evaluate(T + 4 * HOUR), EvaluationOutcome.ALERT)
        self.assertEqual(self.monitor.state, MonitoringState.ALERT_PENDING)


class TestLifecycle(NegativeSpaceTestCase):
    """Tests for learning, pausing, quiet hours and bootstrap."""

    def test_bootstrap_records_initial_launch(self):
        monitor = self.make_monitor()
        self.assertEqual(monitor.evaluate(T), EvaluationOutcome.OK)
        self.assertEqual(self.ledger.last_event.metadata, "Initial launch")
        self.assertEqual(self.ledger.last_event.signal, ActivitySignal.APP_OPEN)

    def test_learning_skips(self):
        monitor = self.make_monitor(learning_period_days=14)
        monitor.install_date = T
        monitor.state = MonitoringState.LEARNING

        self.assertEqual(monitor.evaluate(T + 5 * HOUR), EvaluationOutcome.SKIPPED)
        monitor.evaluate(T + 15 * 86400)
        self.assertEqual(monitor.state, MonitoringState.ACTIVE)

    def test_pause_and_resume(self):
        monitor = self.make_monitor()
        monitor.pause()
        self.assertEqual(monitor.evaluate(T + 10 * HOUR), EvaluationOutcome.SKIPPED)
        monitor.resume(T + 10 * HOUR)
        self.assertEqual(monitor.state, MonitoringState.ACTIVE)

    def test_quiet_hours(self):
        monitor = self.make_monitor(quiet_hours_enabled=True, quiet_hours_start="22:00", quiet_hours_end="07:00")
        monitor.record_activity(ActivityEvent(timestamp=T, signal=ActivitySignal.STEPS))

        night = datetime(2024, 1, 10, 23, 0, tzinfo=timezone.utc).timestamp()
        self.assertEqual(monitor.evaluate(night), EvaluationOutcome.QUIET_HOURS)
        self.assertEqual(monitor.state, MonitoringState.QUIET_HOURS)

        morning = datetime(2024, 1, 11, 8, 0, tzinfo=timezone.utc).timestamp()
        self.assertEqual(monitor.evaluate(morning), EvaluationOutcome.ALERT)

    def test_disabled_monitoring_skips(self):
        monitor = self.make_monitor(inactivity_alerts_enabled=False)
        self.assertEqual(monitor.evaluate(T + 10 * HOUR), EvaluationOutcome.SKIPPED)

    def test_invalid_threshold_uses_default(self):
        monitor = self.make_monitor(silence_threshold_hours=-2)
        self.assertEqual(self.settings.silence_threshold_hours, 4.0)
        monitor.record_activity(ActivityEvent(timestamp=T, signal=ActivitySignal.STEPS))
        self.assertEqual(monitor.evaluate(T + 3 * HOUR), EvaluationOutcome.NUDGE)

    def test_state_round_trip(self):
        monitor = self.make_monitor()
        monitor.record_activity(ActivityEvent(timestamp=T, signal=ActivitySignal.STEPS))
        monitor.evaluate(T + 3 * HOUR)

        restored = self.make_monitor()
        restored.load_state(monitor.to_state())
        self.assertTrue(restored.nudge_sent)
        self.assertEqual(restored.install_date, monitor.install_date)

    def test_restored_pending_alert_is_reevaluated(self):
        monitor = self.make_monitor()
        monitor.record_activity(ActivityEvent(timestamp=T, signal=ActivitySignal.STEPS))
        self.assertEqual(monitor.evaluate(T + 4 * HOUR), EvaluationOutcome.ALERT)
        self.assertEqual(monitor.state, MonitoringState.ALERT_PENDING)

        restored = self.make_monitor()
        restored.ledger.load_state(monitor.ledger.to_state())
        restored.load_state(monitor.to_state())
        self.assertEqual(restored.state, MonitoringState.ACTIVE)
        self.assertEqual(restored.evaluate(T + 5 * HOUR), EvaluationOutcome.ALERT)

    def test_restored_alert_sent_is_kept(self):
        monitor = self.make_monitor()
        monitor.record_activity(ActivityEvent(timestamp=T, signal=ActivitySignal.STEPS))
        monitor.evaluate(T + 4 * HOUR)
        monitor.mark_alert_sent()

        restored = self.make_monitor()
        restored.load_state(monitor.to_state())
        self.assertEqual(restored.state, MonitoringState.ALERT_SENT)


if __name__ == "__main__":
    unittest.main()
