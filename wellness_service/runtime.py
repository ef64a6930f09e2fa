#!/usr/bin/env python3
"""
Monitoring runtime for WellnessGuard.

MonitoringService owns the fall detector, the inactivity monitor and the
baseline learner. Every producer (motion stream, activity sources, battery
callbacks, the periodic evaluator, the HTTP API, MQTT and the escalation
coordinator's callbacks) talks to them only by posting messages to a single
asyncio queue, which one actor task consumes in order.
"""

import asyncio
import logging
from typing import Any, Callable, Dict, Optional, Tuple, Union

from wellness_engine.baseline import BaselineLearner
from wellness_engine.battery import BatteryGate
from wellness_engine.config import MonitoringSettings
from wellness_engine.escalation import EscalationCoordinator
from wellness_engine.exceptions import InvalidInputError, StorageError
from wellness_engine.fall_detection import FallDetector
from wellness_engine.interfaces import (
    BatterySource,
    LocalPromptDispatcher,
    RemoteAlertDispatcher,
    RosterProvider,
    StateRepository,
)
from wellness_engine.ledger import ActivityLedger
from wellness_engine.models import (
    ActivityEvent,
    ActivitySignal,
    AlertKind,
    AlertLocation,
    ChargeState,
    DailySummary,
    DispatchResult,
    FallEvent,
    PatternDeviation,
    PromptRequest,
)
from wellness_engine.negative_space import EvaluationOutcome, NegativeSpaceMonitor
from wellness_engine.utils import Clock
from wellness_service import metrics

logger = logging.getLogger(__name__)

Message = Tuple[str, Tuple[Any, ...], Optional[asyncio.Future]]

# Device timestamps further ahead of the service clock are discarded
MAX_CLOCK_SKEW_SECONDS = 300.0


class MonitoringService:
    """Single-owner actor hosting the detection engine."""

    def __init__(
        self,
        settings: MonitoringSettings,
        dispatcher: RemoteAlertDispatcher,
        roster: RosterProvider,
        prompts: LocalPromptDispatcher,
        repository: Optional[StateRepository] = None,
        battery_source: Optional[BatterySource] = None,
        clock: Optional[Clock] = None,
        location: Optional[AlertLocation] = None,
    ):
        """
        Initialize the service and restore persisted state.

        Args:
            settings: Monitoring settings
            dispatcher: Remote alert dispatcher
            roster: Care circle roster
            prompts: Local prompt dispatcher
            repository: State repository (state is not persisted if None)
            battery_source: Polled once at start to seed the battery gate
            clock: Clock (defaults to wall time in the configured zone)
            location: Location context attached to alerts
        """
        self.settings = settings
        self.prompts = prompts
        self.repository = repository
        self.battery_source = battery_source
        self.clock = clock or Clock(tz=settings.tzinfo)
        self.location = location

        saved = self._load_all()
        install_date = (saved.get("negative_space") or {}).get("install_date", self.clock.now())

        self.ledger = ActivityLedger()
        self.battery = BatteryGate()
        self.baseline = BaselineLearner(
            install_date=install_date,
            learning_period_days=settings.learning_period_days,
            relaxed_night=settings.relaxed_night_mode,
            adaptive_night=settings.adaptive_night_window,
        )
        self.negative_space = NegativeSpaceMonitor(
            ledger=self.ledger,
            battery=self.battery,
            settings=settings,
            prompts=prompts,
            clock=self.clock,
            install_date=install_date,
        )
        self.fall_detector = FallDetector()
        self.coordinator = EscalationCoordinator(dispatcher, roster, settings.display_name, clock=self.clock)

        self.ledger.load_state(saved.get("ledger"))
        self.battery.load_state(saved.get("battery"))
        self.baseline.load_state(saved.get("baseline"))
        self.negative_space.load_state(saved.get("negative_space"))

        if settings.fall_detection_enabled:
            self.fall_detector.enable()

        self._handlers: Dict[str, Callable[..., Any]] = {
            "motion": self._handle_motion,
            "activity": self._handle_activity,
            "battery": self._handle_battery,
            "hour": self._handle_hour,
            "daily": self._handle_daily,
            "fall_ok": self._handle_fall_ok,
            "check_in": self._handle_check_in,
            "pause": self._handle_pause,
            "resume": self._handle_resume,
            "test_fall": self._handle_test_fall,
            "tick": self._handle_tick,
            "fall_handoff": self._handle_fall_handoff,
            "dispatch_complete": self._handle_dispatch_complete,
        }
        self._queue: Optional[asyncio.Queue] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._actor_task: Optional[asyncio.Task] = None
        self._evaluator_task: Optional[asyncio.Task] = None

        self._publish_state_metrics()

    # Lifecycle

    @property
    def running(self) -> bool:
        return self._actor_task is not None and not self._actor_task.done()

    async def start(self, run_evaluator: bool = True) -> None:
        """
        Start the actor and, optionally, the periodic evaluator.

        Args:
            run_evaluator: Schedule inactivity evaluation every check interval
        """
        if self.running:
            return

        self._loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue()
        self._actor_task = self._loop.create_task(self._actor())
        if run_evaluator:
            self._evaluator_task = self._loop.create_task(self._evaluator())

        self._seed_battery()
        logger.info(
            f"Monitoring started: state={self.negative_space.state.value}, "
            f"fall detection={self.fall_detector.state.value}"
        )

    async def stop(self) -> None:
        """Stop the evaluator, cancel pending countdowns and persist state."""
        if self._evaluator_task is not None:
            self._evaluator_task.cancel()
            await asyncio.gather(self._evaluator_task, return_exceptions=True)
            self._evaluator_task = None

        if self.running:
            await self._queue.join()
            self._actor_task.cancel()
            await asyncio.gather(self._actor_task, return_exceptions=True)
        self._actor_task = None

        await self.coordinator.shutdown()
        self._persist()
        logger.info("Monitoring stopped")

    async def drain(self) -> None:
        """Wait until every queued message has been handled."""
        if self._queue is not None:
            await self._queue.join()

    def _seed_battery(self) -> None:
        if self.battery_source is None:
            return
        try:
            level, state, power_save = self.battery_source.read()
        except Exception as e:
            logger.error(f"Could not read battery source: {e}")
            return
        self.post("battery", level, state, power_save, self.clock.now())

    # Messaging

    def post(self, name: str, *args: Any) -> None:
        """Queue a message from the event loop thread without waiting."""
        if self._queue is None:
            raise RuntimeError("MonitoringService is not started")
        self._queue.put_nowait((name, args, None))

    def submit_threadsafe(self, name: str, *args: Any) -> None:
        """Queue a message from any thread."""
        if self._loop is None or self._queue is None:
            raise RuntimeError("MonitoringService is not started")
        self._loop.call_soon_threadsafe(self._queue.put_nowait, (name, args, None))

    async def call(self, name: str, *args: Any) -> Any:
        """Queue a message and wait for the actor's result."""
        if self._queue is None:
            raise RuntimeError("MonitoringService is not started")
        future = asyncio.get_running_loop().create_future()
        self._queue.put_nowait((name, args, future))
        return await future

    async def _actor(self) -> None:
        while True:
            name, args, future = await self._queue.get()
            try:
                result = self._handlers[name](*args)
                if future is not None and not future.done():
                    future.set_result(result)
            except Exception as e:
                logger.exception(f"Error handling {name} message: {e}")
                if future is not None and not future.done():
                    future.set_exception(e)
            finally:
                self._queue.task_done()

    async def _evaluator(self) -> None:
        while True:
            await asyncio.sleep(self.settings.check_interval_seconds)
            self.post("tick")

    # Public API

    async def record_motion(self, timestamp: float, magnitude: float) -> Optional[FallEvent]:
        return await self.call("motion", timestamp, magnitude)

    async def record_activity(
        self,
        signal: Union[ActivitySignal, str],
        timestamp: Optional[float] = None,
        metadata: Optional[str] = None,
    ) -> bool:
        """
        Record a discrete activity signal.

        Args:
            signal: Kind of activity
            timestamp: Epoch seconds (defaults to now)
            metadata: Optional detail

        Returns:
            True if a pending inactivity alert was stood down
        """
        return await self.call("activity", signal, timestamp, metadata)

    async def record_battery(
        self,
        level: Optional[int],
        state: Union[ChargeState, str],
        power_save: bool = False,
        timestamp: Optional[float] = None,
    ) -> bool:
        return await self.call("battery", level, state, power_save, timestamp)

    async def observe_hour(
        self, hour: int, is_weekend: bool, activity_count: int, event_count: int
    ) -> Optional[PatternDeviation]:
        return await self.call("hour", hour, is_weekend, activity_count, event_count)

    async def record_daily_summary(self, summary: DailySummary) -> None:
        await self.call("daily", summary)

    async def cancel_fall(self) -> bool:
        """The person tapped "I'm OK" on a fall prompt."""
        return await self.call("fall_ok")

    async def check_in(self) -> bool:
        """The person answered a check-in prompt."""
        return await self.call("check_in")

    async def pause(self) -> None:
        await self.call("pause")

    async def resume(self) -> None:
        await self.call("resume")

    async def trigger_test_fall(self) -> Optional[FallEvent]:
        return await self.call("test_fall")

    async def evaluate_now(self) -> EvaluationOutcome:
        return await self.call("tick")

    def status(self) -> Dict[str, Any]:
        """Snapshot of the engine for the status endpoint."""
        now = self.clock.now()
        last = self.ledger.last_event
        battery = self.battery.latest
        return {
            "monitoring_state": self.negative_space.state.value,
            "fall_state": self.fall_detector.state.value,
            "learning": self.baseline.is_learning(now),
            "learning_day": self.baseline.learning_day(now),
            "learning_progress": self.baseline.learning_progress(now),
            "learning_period_days": self.settings.learning_period_days,
            "last_activity": last.timestamp if last else None,
            "seconds_since_activity": self.ledger.time_since_last(now),
            "check_in_sent": self.negative_space.nudge_sent,
            "deviation_detected": self.baseline.deviation_detected,
            "deviation_description": self.baseline.deviation_description,
            "battery_level": battery.level if battery else None,
            "battery_state": battery.state.value if battery else None,
            "active_escalations": [
                {"kind": e.kind.value, "deadline": e.deadline, "handed_off": e.handed_off}
                for e in self.coordinator.active()
            ],
            "last_results": {k.value: r.model_dump() for k, r in self.coordinator.last_results.items()},
        }

    # Handlers (run on the actor only)

    def _now(self, timestamp: Optional[float] = None) -> float:
        return self.clock.now() if timestamp is None else timestamp

    def _handle_motion(self, timestamp: float, magnitude: float) -> Optional[FallEvent]:
        before = self.fall_detector.state
        event = self.fall_detector.process_sample(timestamp, magnitude)
        if event is not None:
            self._escalate_fall(event)
        if self.fall_detector.state != before:
            self._publish_state_metrics()
        return event

    def _escalate_fall(self, event: FallEvent) -> None:
        metrics.FALLS_CONFIRMED.labels(source="test" if event.synthetic else "sensor").inc()
        self._send_prompt(
            PromptRequest(
                title="Fall detected",
                body=(
                    "It looks like you may have fallen. Tap I'm OK within "
                    f"{int(self.settings.fall_response_seconds)} seconds or your Care Circle will be notified."
                ),
                category="FALL_DETECTED",
                identifier="fall_detected",
            )
        )
        self._trigger(AlertKind.FALL, self.settings.fall_response_seconds, handoff="fall_handoff")

    def _trigger(self, kind: AlertKind, countdown: float, handoff: Optional[str] = None) -> bool:
        started = self.coordinator.trigger(
            kind,
            countdown,
            on_handoff=(lambda: self.post(handoff)) if handoff else None,
            on_complete=lambda result: self.post("dispatch_complete", kind, result),
            location=self.location,
        )
        if started:
            metrics.ALERTS_TRIGGERED.labels(kind=kind.value).inc()
        else:
            metrics.ALERTS_COALESCED.labels(kind=kind.value).inc()
        return started

    def _cancel(self, kind: AlertKind) -> bool:
        cancelled = self.coordinator.cancel(kind)
        if cancelled:
            metrics.ALERTS_CANCELLED.labels(kind=kind.value).inc()
        return cancelled

    def _send_prompt(self, prompt: PromptRequest) -> None:
        try:
            self.prompts.send_prompt(prompt)
        except Exception as e:
            logger.error(f"Failed to deliver local prompt {prompt.category}: {e}")

    def _handle_activity(
        self,
        signal: Union[ActivitySignal, str],
        timestamp: Optional[float] = None,
        metadata: Optional[str] = None,
    ) -> bool:
        now = self.clock.now()
        try:
            event = ActivityEvent(
                timestamp=now if timestamp is None else timestamp, signal=ActivitySignal(signal), metadata=metadata
            )
            if event.timestamp > now + MAX_CLOCK_SKEW_SECONDS:
                raise InvalidInputError(f"timestamp {event.timestamp} is ahead of the clock ({now})")
        except ValueError as e:
            logger.warning(f"Discarding invalid activity event {signal!r}: {e}")
            metrics.DISCARDED_INPUTS.labels(input="activity").inc()
            return False
        return self._on_activity(event)

    def _on_activity(self, event: ActivityEvent) -> bool:
        stood_down = self.negative_space.record_activity(event)
        self._cancel(AlertKind.INACTIVITY)
        self._cancel(AlertKind.MISSED_CHECKIN)
        self._publish_state_metrics()
        self._persist("ledger", "negative_space")
        return stood_down

    def _handle_battery(
        self,
        level: Optional[int],
        state: Union[ChargeState, str],
        power_save: bool,
        timestamp: Optional[float] = None,
    ) -> bool:
        recorded = self.battery.record_snapshot(level, state, power_save, self._now(timestamp))
        if recorded:
            self._persist("battery")
        return recorded

    def _handle_hour(
        self, hour: int, is_weekend: bool, activity_count: int, event_count: int
    ) -> Optional[PatternDeviation]:
        try:
            deviation = self.baseline.record_hour(hour, is_weekend, activity_count, event_count, self.clock.now())
        except InvalidInputError as e:
            logger.warning(f"Discarding hourly observation: {e}")
            metrics.DISCARDED_INPUTS.labels(input="hour").inc()
            return None

        if deviation is not None:
            metrics.PATTERN_DEVIATIONS.inc()
            self._send_prompt(
                PromptRequest(
                    title="Checking in",
                    body=f"{deviation.description}. Tap to let us know you're fine.",
                    category="CHECK_IN",
                    identifier="pattern_check_in",
                )
            )
            self._trigger(AlertKind.MISSED_CHECKIN, self.settings.pattern_response_seconds)

        self._persist("baseline")
        return deviation

    def _handle_daily(self, summary: DailySummary) -> None:
        self.baseline.record_daily_summary(summary)
        self._persist("baseline")

    def _handle_fall_ok(self) -> bool:
        cancelled = self.fall_detector.cancel(self.clock.now())
        self._cancel(AlertKind.FALL)
        self._publish_state_metrics()
        return cancelled

    def _handle_check_in(self) -> bool:
        now = self.clock.now()
        self.baseline.clear_deviation()
        stood_down = self._on_activity(
            ActivityEvent(timestamp=now, signal=ActivitySignal.USER_CHECK_IN, metadata="User confirmed OK")
        )
        self._persist("baseline")
        return stood_down

    def _handle_pause(self) -> None:
        self.negative_space.pause()
        self._cancel(AlertKind.INACTIVITY)
        self._publish_state_metrics()
        self._persist("negative_space")

    def _handle_resume(self) -> None:
        self.negative_space.resume(self.clock.now())
        self._publish_state_metrics()
        self._persist("negative_space")

    def _handle_test_fall(self) -> Optional[FallEvent]:
        event = self.fall_detector.trigger_manual_test(self.clock.now())
        if event is not None:
            self._escalate_fall(event)
            self._publish_state_metrics()
        return event

    def _handle_tick(self) -> EvaluationOutcome:
        now = self.clock.now()
        self.fall_detector.tick(now)
        outcome = self.negative_space.evaluate(now)

        if outcome == EvaluationOutcome.NUDGE:
            metrics.NUDGES_SENT.inc()
        elif outcome == EvaluationOutcome.SUPPRESSED:
            metrics.INACTIVITY_SUPPRESSED.inc()
        elif outcome == EvaluationOutcome.ALERT:
            self._trigger(AlertKind.INACTIVITY, self.settings.inactivity_response_seconds)

        self._publish_state_metrics()
        if outcome != EvaluationOutcome.SKIPPED:
            self._persist("ledger", "negative_space")
        return outcome

    def _handle_fall_handoff(self) -> None:
        self.fall_detector.countdown_expired()
        self._publish_state_metrics()

    def _handle_dispatch_complete(self, kind: AlertKind, result: DispatchResult) -> None:
        metrics.record_dispatch(kind, result)
        if kind == AlertKind.INACTIVITY:
            self.negative_space.mark_alert_sent()
        elif kind == AlertKind.FALL:
            self.fall_detector.resolve_alert(self.clock.now())
        else:
            self.baseline.clear_deviation()
        self._publish_state_metrics()
        self._persist("negative_space", "baseline")

    # State

    def _publish_state_metrics(self) -> None:
        metrics.set_monitoring_state(self.negative_space.state)
        metrics.set_fall_state(self.fall_detector.state)

    def _load_all(self) -> Dict[str, Any]:
        if self.repository is None:
            return {}
        saved: Dict[str, Any] = {}
        for key in ("ledger", "battery", "baseline", "negative_space"):
            try:
                saved[key] = self.repository.load(key)
            except StorageError as e:
                logger.error(f"Ignoring unreadable state {key!r}: {e}")
        return saved

    def _persist(self, *keys: str) -> None:
        """Save the named state documents (all of them if none are named)."""
        if self.repository is None:
            return
        sources: Dict[str, Callable[[], Dict[str, Any]]] = {
            "ledger": self.ledger.to_state,
            "battery": self.battery.to_state,
            "baseline": self.baseline.to_state,
            "negative_space": self.negative_space.to_state,
        }
        for key in keys or tuple(sources):
            try:
                self.repository.save(key, sources[key]())
            except StorageError as e:
                logger.error(f"Failed to persist {key!r}: {e}")
