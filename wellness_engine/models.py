#!/usr/bin/env python3
"""
Data models for the WellnessGuard engine.

This module defines the records exchanged between the ledger, the learners,
the state machines and the escalation coordinator.
"""

import time
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class ActivitySignal(str, Enum):
    """Kinds of discrete activity signals."""

    STEPS = "steps"
    PICKUP = "pickup"
    APP_OPEN = "app_open"
    USER_CHECK_IN = "user_check_in"
    MOVEMENT = "movement"


class ChargeState(str, Enum):
    """Charging state reported by the battery source."""

    UNKNOWN = "unknown"
    UNPLUGGED = "unplugged"
    CHARGING = "charging"
    FULL = "full"


class MonitoringState(str, Enum):
    """States of the negative-space (inactivity) state machine."""

    LEARNING = "learning"
    ACTIVE = "active"
    QUIET_HOURS = "quiet_hours"
    PAUSED = "paused"
    ALERT_PENDING = "alert_pending"
    ALERT_SENT = "alert_sent"


class FallState(str, Enum):
    """States of the fall detection state machine."""

    DISABLED = "disabled"
    MONITORING = "monitoring"
    IMPACT_DETECTED = "impact_detected"
    FALL_CONFIRMED = "fall_confirmed"
    ALERTING = "alerting"
    CANCELLED = "cancelled"


class AlertKind(str, Enum):
    """Alert kinds understood by the remote dispatcher."""

    FALL = "fall"
    INACTIVITY = "inactivity"
    MISSED_CHECKIN = "missed_checkin"

    @property
    def display_name(self) -> str:
        return {
            AlertKind.FALL: "Fall Detected",
            AlertKind.INACTIVITY: "Inactivity Alert",
            AlertKind.MISSED_CHECKIN: "Missed Check-in",
        }[self]


class ActivityEvent(BaseModel):
    """A single discrete activity signal."""

    model_config = ConfigDict(frozen=True)

    timestamp: float = Field(default_factory=time.time, allow_inf_nan=False, description="Epoch seconds")
    signal: ActivitySignal = Field(..., description="Kind of activity signal")
    metadata: Optional[str] = Field(None, description="Free-form detail")


class BatterySnapshot(BaseModel):
    """Power state of the device at a point in time."""

    model_config = ConfigDict(frozen=True)

    timestamp: float = Field(..., description="Epoch seconds")
    level: Optional[int] = Field(None, description="Battery level 0-100, None if unknown")
    state: ChargeState = Field(ChargeState.UNKNOWN, description="Charging state")
    power_save: bool = Field(False, description="Low power mode enabled")


class FallEvent(BaseModel):
    """A confirmed fall: an impact followed by stillness."""

    model_config = ConfigDict(frozen=True)

    timestamp: float = Field(..., description="Time of impact")
    peak_magnitude: float = Field(..., description="Peak acceleration in g")
    stillness_duration: float = Field(..., description="Seconds of post-impact stillness")
    synthetic: bool = Field(False, description="Produced by a manual test")


class DailySummary(BaseModel):
    """Aggregate activity for one calendar day."""

    date: str = Field(..., description="ISO date (YYYY-MM-DD)")
    is_weekend: bool = Field(..., description="Saturday or Sunday")
    total_activity: int = Field(0, description="Total activity units for the day")
    first_active_hour: Optional[int] = Field(None, description="First hour with activity")
    last_active_hour: Optional[int] = Field(None, description="Last hour with activity")
    active_hour_count: int = Field(0, description="Number of hours with activity")


class Contact(BaseModel):
    """A care circle member."""

    first_name: str
    last_name: str = ""
    phone_number: str
    relationship: str = ""
    is_primary: bool = False

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class AlertLocation(BaseModel):
    """Optional location context attached to an alert."""

    address: str = Field(..., description="Human readable address")
    is_home: bool = Field(False, description="Whether the address is the user's home")


class AlertRequest(BaseModel):
    """Outbound request handed to the remote alert dispatcher."""

    user_name: str = Field(..., description="Display name of the monitored person")
    kind: AlertKind = Field(..., description="Alert kind")
    contacts: List[Contact] = Field(default_factory=list, description="Ordered roster")
    location: Optional[AlertLocation] = Field(None, description="Location context")
    created_at: float = Field(default_factory=time.time, description="Creation time")


class DispatchResult(BaseModel):
    """Outcome reported by the remote alert dispatcher."""

    success: bool
    sent: int = 0
    total: int = 0
    error: Optional[str] = None


class PromptRequest(BaseModel):
    """A local prompt shown to the monitored person."""

    title: str
    body: str
    category: str
    identifier: Optional[str] = None


class PatternDeviation(BaseModel):
    """Verdict produced when an hour deviates from the learned baseline."""

    hour: int
    is_weekend: bool
    expected_activity: float
    actual_activity: int
    expected_events: float
    actual_events: int
    description: str
