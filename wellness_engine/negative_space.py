#!/usr/bin/env python3
"""
Negative-space (inactivity) state machine.

Watches the time elapsed since the last recorded activity and decides when to
nudge the person, when to escalate and when to stand down. Evaluation is
periodic and always recomputes from the ledger, so missed ticks only delay a
decision, they never corrupt it.
"""

import logging
from enum import Enum
from typing import Any, Dict, Optional

from wellness_engine.battery import BatteryGate
from wellness_engine.config import MonitoringSettings
from wellness_engine.interfaces import LocalPromptDispatcher
from wellness_engine.ledger import ActivityLedger
from wellness_engine.models import ActivityEvent, ActivitySignal, MonitoringState, PromptRequest
from wellness_engine.utils import Clock, is_in_quiet_hours, minute_of_day

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86400.0
NUDGE_FRACTION = 0.75

CHECK_IN_PROMPT = PromptRequest(
    title="Are you okay?",
    body="We haven't seen any activity in a while. Tap to let us know you're fine.",
    category="CHECK_IN",
    identifier="inactivity_check_in",
)

URGENT_PROMPT = PromptRequest(
    title="Urgent: Please respond",
    body="We're about to notify your Care Circle. Open the app if you're okay.",
    category="URGENT_CHECK_IN",
    identifier="inactivity_urgent",
)


class EvaluationOutcome(str, Enum):
    """Result of one periodic evaluation."""

    SKIPPED = "skipped"
    QUIET_HOURS = "quiet_hours"
    OK = "ok"
    NUDGE = "nudge"
    SUPPRESSED = "suppressed"
    ALERT = "alert"


class NegativeSpaceMonitor:
    """Inactivity state machine."""

    def __init__(
        self,
        ledger: ActivityLedger,
        battery: BatteryGate,
        settings: MonitoringSettings,
        prompts: LocalPromptDispatcher,
        clock: Optional[Clock] = None,
        install_date: Optional[float] = None,
    ):
        """
        Initialize the monitor.

        Args:
            ledger: Shared activity ledger
            battery: Shared battery gate
            settings: Thresholds, quiet hours and learning period
            prompts: Dispatcher for local prompts
            clock: Clock used for time-of-day checks
            install_date: Start of the learning period (defaults to now)
        """
        self.ledger = ledger
        self.battery = battery
        self.settings = settings
        self.prompts = prompts
        self.clock = clock or Clock(tz=settings.tzinfo)
        self.install_date = install_date if install_date is not None else self.clock.now()

        self.nudge_sent = False
        self.state = MonitoringState.LEARNING if self.is_learning(self.clock.now()) else MonitoringState.ACTIVE

    def is_learning(self, now: float) -> bool:
        return now < self.install_date + self.settings.learning_period_days * SECONDS_PER_DAY

    def _transition(self, new_state: MonitoringState) -> None:
        if new_state != self.state:
            logger.info(f"Monitoring state: {self.state.value} -> {new_state.value}")
            self.state = new_state
        if new_state == MonitoringState.ACTIVE:
            self.nudge_sent = False

    def _send_prompt(self, prompt: PromptRequest) -> None:
        try:
            self.prompts.send_prompt(prompt)
        except Exception as e:
            logger.error(f"Failed to deliver local prompt {prompt.category}: {e}")

    def refresh_learning(self, now: float) -> None:
        if self.state == MonitoringState.LEARNING and not self.is_learning(now):
            logger.info("Learning period complete, inactivity monitoring is active")
            self._transition(MonitoringState.ACTIVE)

    def evaluate(self, now: Optional[float] = None) -> EvaluationOutcome:
        """
        Run one inactivity evaluation.

        Args:
            now: Current epoch seconds (defaults to the clock)

        Returns:
            What the evaluation decided
        """
        if now is None:
            now = self.clock.now()

        self.refresh_learning(now)

        if not self.settings.inactivity_alerts_enabled or self.state in (
            MonitoringState.LEARNING,
            MonitoringState.PAUSED,
            MonitoringState.ALERT_PENDING,
            MonitoringState.ALERT_SENT,
        ):
            return EvaluationOutcome.SKIPPED

        if self.settings.quiet_hours_enabled:
            current = minute_of_day(self.clock.local(now))
            if is_in_quiet_hours(current, self.settings.quiet_start_minute, self.settings.quiet_end_minute):
                self._transition(MonitoringState.QUIET_HOURS)
                return EvaluationOutcome.QUIET_HOURS

        if self.state == MonitoringState.QUIET_HOURS:
            self._transition(MonitoringState.ACTIVE)

        elapsed = self.ledger.time_since_last(now)
        if elapsed is None:
            self.ledger.record(ActivityEvent(timestamp=now, signal=ActivitySignal.APP_OPEN, metadata="Initial launch"))
            elapsed = 0.0

        threshold = self.settings.silence_threshold_seconds

        if elapsed >= threshold:
            gap_start = self.ledger.last_event.timestamp
            if self.battery.likely_dead_at(gap_start):
                logger.info(
                    f"Inactivity of {elapsed / 3600:.1f}h explained by a dead battery, not alerting"
                )
                return EvaluationOutcome.SUPPRESSED

            logger.warning(f"Inactivity threshold exceeded: {elapsed / 3600:.1f}h without activity")
            self._transition(MonitoringState.ALERT_PENDING)
            self._send_prompt(URGENT_PROMPT)
            return EvaluationOutcome.ALERT

        if elapsed >= threshold * NUDGE_FRACTION and not self.nudge_sent:
            logger.info(f"No activity for {elapsed / 3600:.1f}h, sending check-in prompt")
            self.nudge_sent = True
            self._send_prompt(CHECK_IN_PROMPT)
            return EvaluationOutcome.NUDGE

        return EvaluationOutcome.OK

    def record_activity(self, event: ActivityEvent) -> bool:
        """
        Record activity and stand down any pending inactivity alert.

        Args:
            event: Activity event to record

        Returns:
            True if an AlertPending or AlertSent state was cleared
        """
        self.ledger.record(event)
        self.nudge_sent = False

        if self.state in (MonitoringState.ALERT_PENDING, MonitoringState.ALERT_SENT):
            logger.info(f"Activity ({event.signal.value}) received, standing down inactivity alert")
            self._transition(MonitoringState.ACTIVE)
            return True
        return False

    def user_checked_in(self, now: Optional[float] = None) -> bool:
        """The person answered a check-in prompt."""
        if now is None:
            now = self.clock.now()
        return self.record_activity(
            ActivityEvent(timestamp=now, signal=ActivitySignal.USER_CHECK_IN, metadata="User confirmed OK")
        )

    def mark_alert_sent(self) -> bool:
        """The coordinator finished its dispatch attempt."""
        if self.state != MonitoringState.ALERT_PENDING:
            return False
        self._transition(MonitoringState.ALERT_SENT)
        return True

    def pause(self) -> None:
        if self.state != MonitoringState.PAUSED:
            logger.info("Inactivity monitoring paused")
            self._transition(MonitoringState.PAUSED)

    def resume(self, now: Optional[float] = None) -> None:
        if self.state != MonitoringState.PAUSED:
            return
        if now is None:
            now = self.clock.now()
        logger.info("Inactivity monitoring resumed")
        self._transition(MonitoringState.LEARNING if self.is_learning(now) else MonitoringState.ACTIVE)

    def to_state(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "nudge_sent": self.nudge_sent,
            "install_date": self.install_date,
        }

    def load_state(self, state: Optional[Dict[str, Any]]) -> None:
        if not state:
            return
        self.install_date = state.get("install_date", self.install_date)
        self.state = MonitoringState(state.get("state", self.state.value))
        self.nudge_sent = bool(state.get("nudge_sent", False))
        if self.state == MonitoringState.ALERT_PENDING:
            # The countdown died with the previous process; the next evaluation escalates again.
            logger.info("Restored a pending alert without its countdown, re-evaluating")
            self._transition(MonitoringState.ACTIVE)
        self.refresh_learning(self.clock.now())
