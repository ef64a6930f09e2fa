#!/usr/bin/env python3
"""
Collaborator interfaces consumed by the engine.

The engine never talks to notification services, sensors or storage
directly; the host wires in objects satisfying these protocols.
"""

from typing import Any, Dict, List, Optional, Protocol, Tuple

from wellness_engine.models import AlertRequest, ChargeState, Contact, DispatchResult, PromptRequest


class LocalPromptDispatcher(Protocol):
    """Delivers a prompt to the monitored person. Fire-and-forget."""

    def send_prompt(self, prompt: PromptRequest) -> None:
        ...


class RemoteAlertDispatcher(Protocol):
    """Notifies the care circle. The only real-world side effect of the engine."""

    async def send_alert(self, request: AlertRequest) -> DispatchResult:
        ...


class RosterProvider(Protocol):
    """Read-only ordered list of care circle contacts."""

    def current_contacts(self) -> List[Contact]:
        ...


class BatterySource(Protocol):
    """Polled once at startup to seed the battery gate."""

    def read(self) -> Tuple[Optional[int], ChargeState, bool]:
        ...


class StateRepository(Protocol):
    """Narrow key/value store for persisted engine state."""

    def load(self, key: str) -> Optional[Dict[str, Any]]:
        ...

    def save(self, key: str, data: Dict[str, Any]) -> None:
        ...


class StaticRoster:
    """Roster backed by a fixed list, primary contacts first."""

    def __init__(self, contacts: Optional[List[Contact]] = None):
        self._contacts = list(contacts or [])

    def current_contacts(self) -> List[Contact]:
        return sorted(self._contacts, key=lambda c: not c.is_primary)

    def replace(self, contacts: List[Contact]) -> None:
        self._contacts = list(contacts)
