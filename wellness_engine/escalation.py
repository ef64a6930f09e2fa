#!/usr/bin/env python3
"""
Escalation coordinator.

Maps fall, inactivity and pattern-deviation triggers to at most one outbound
alert each. Every escalation runs a cancellable countdown before the alert is
handed to the remote dispatcher; once handed off it can no longer be recalled.
"""

import asyncio
import logging
from typing import Callable, Dict, List, Optional

from wellness_engine.interfaces import RemoteAlertDispatcher, RosterProvider
from wellness_engine.models import AlertKind, AlertLocation, AlertRequest, DispatchResult
from wellness_engine.utils import Clock

logger = logging.getLogger(__name__)

NO_CONTACTS_ERROR = "No Care Circle members to alert"


class Escalation:
    """One in-flight escalation."""

    def __init__(self, kind: AlertKind, countdown: float, started_at: float):
        self.kind = kind
        self.countdown = countdown
        self.started_at = started_at
        self.handed_off = False
        self.cancelled = False
        self.task: Optional[asyncio.Task] = None

    @property
    def deadline(self) -> float:
        return self.started_at + self.countdown


class EscalationCoordinator:
    """Sequences countdowns, cancellation and dispatch for every alert kind."""

    def __init__(
        self,
        dispatcher: RemoteAlertDispatcher,
        roster: RosterProvider,
        display_name: str,
        clock: Optional[Clock] = None,
    ):
        """
        Initialize the coordinator.

        Args:
            dispatcher: Remote alert dispatcher
            roster: Provider of the ordered contact list
            display_name: Name of the monitored person used in alerts
            clock: Clock used for countdown deadlines
        """
        self.dispatcher = dispatcher
        self.roster = roster
        self.display_name = display_name
        self.clock = clock or Clock()
        self.last_results: Dict[AlertKind, DispatchResult] = {}
        self._escalations: Dict[AlertKind, Escalation] = {}

    def in_flight(self, kind: AlertKind) -> bool:
        return kind in self._escalations

    def is_handed_off(self, kind: AlertKind) -> bool:
        escalation = self._escalations.get(kind)
        return escalation is not None and escalation.handed_off

    def active(self) -> List[Escalation]:
        return list(self._escalations.values())

    def trigger(
        self,
        kind: AlertKind,
        countdown: float,
        on_handoff: Optional[Callable[[], None]] = None,
        on_complete: Optional[Callable[[DispatchResult], None]] = None,
        location: Optional[AlertLocation] = None,
    ) -> bool:
        """
        Start an escalation unless one of the same kind is in flight.

        Must be called from the event loop that owns the coordinator.

        Args:
            kind: Alert kind
            countdown: Seconds the person has to cancel
            on_handoff: Called when the countdown lapses, before dispatch
            on_complete: Called with the dispatch result, success or not
            location: Optional location context

        Returns:
            True if a new escalation was started, False if coalesced
        """
        if kind in self._escalations:
            logger.info(f"Escalation for {kind.value} already in flight, coalescing trigger")
            return False

        escalation = Escalation(kind, max(0.0, countdown), self.clock.now())
        self._escalations[kind] = escalation
        escalation.task = asyncio.get_running_loop().create_task(
            self._run(escalation, on_handoff, on_complete, location)
        )
        logger.warning(f"Escalation started for {kind.value}, dispatching in {escalation.countdown:.0f}s")
        return True

    def cancel(self, kind: AlertKind) -> bool:
        """
        Cancel an escalation that has not been handed off yet.

        Args:
            kind: Alert kind

        Returns:
            True if the escalation was cancelled
        """
        escalation = self._escalations.get(kind)
        if escalation is None:
            return False
        if escalation.handed_off:
            logger.info(f"Escalation for {kind.value} already handed off, cannot recall")
            return False

        escalation.cancelled = True
        if escalation.task is not None:
            escalation.task.cancel()
        self._escalations.pop(kind, None)
        logger.info(f"Escalation for {kind.value} cancelled")
        return True

    async def _run(
        self,
        escalation: Escalation,
        on_handoff: Optional[Callable[[], None]],
        on_complete: Optional[Callable[[DispatchResult], None]],
        location: Optional[AlertLocation],
    ) -> Optional[DispatchResult]:
        kind = escalation.kind
        try:
            if escalation.countdown > 0:
                await asyncio.sleep(escalation.countdown)

            # No await between this check and the hand-off.
            if escalation.cancelled:
                return None
            escalation.handed_off = True
            if on_handoff is not None:
                on_handoff()

            result = await self.dispatch(kind, location)
            self.last_results[kind] = result
            if on_complete is not None:
                on_complete(result)
            return result
        except asyncio.CancelledError:
            logger.debug(f"Countdown for {kind.value} cancelled")
            raise
        finally:
            if self._escalations.get(kind) is escalation:
                del self._escalations[kind]

    async def dispatch(self, kind: AlertKind, location: Optional[AlertLocation] = None) -> DispatchResult:
        """
        Send one alert to the care circle. Never retries.

        Args:
            kind: Alert kind
            location: Optional location context

        Returns:
            Result reported by the dispatcher, or a failure result
        """
        contacts = self.roster.current_contacts()
        if not contacts:
            logger.error(f"Cannot send {kind.value} alert: {NO_CONTACTS_ERROR}")
            return DispatchResult(success=False, sent=0, total=0, error=NO_CONTACTS_ERROR)

        request = AlertRequest(
            user_name=self.display_name,
            kind=kind,
            contacts=contacts,
            location=location,
        )

        try:
            result = await self.dispatcher.send_alert(request)
        except Exception as e:
            logger.error(f"Alert dispatch for {kind.value} failed: {e}")
            return DispatchResult(success=False, sent=0, total=len(contacts), error=str(e))

        if result.success:
            logger.warning(f"{kind.display_name} sent to {result.sent}/{result.total} contacts")
        else:
            logger.error(f"{kind.display_name} dispatch failed: {result.error}")
        return result

    async def wait_idle(self) -> None:
        """Wait until every in-flight escalation has finished."""
        tasks = [e.task for e in self._escalations.values() if e.task is not None]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def shutdown(self) -> None:
        for escalation in list(self._escalations.values()):
            escalation.cancelled = True
            if escalation.task is not None:
                escalation.task.cancel()
        await self.wait_idle()
        self._escalations.clear()
