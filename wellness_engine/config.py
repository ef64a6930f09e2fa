#!/usr/bin/env python3
"""
Configuration for the WellnessGuard engine.

Values are read from the environment (optionally via a .env file) and folded
into a MonitoringSettings model. Invalid values never abort a monitoring
cycle: they are replaced with the documented defaults and a warning is logged.
"""

import logging
import os
from typing import Any, Dict, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator

from wellness_engine.exceptions import InvalidInputError
from wellness_engine.utils import parse_hhmm

# Set up logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Load environment variables
load_dotenv()

# Defaults
DEFAULT_SILENCE_THRESHOLD_HOURS = 4.0
DEFAULT_CHECK_INTERVAL_SECONDS = 300.0
DEFAULT_LEARNING_PERIOD_DAYS = 14
DEFAULT_QUIET_HOURS_START = "22:00"
DEFAULT_QUIET_HOURS_END = "07:00"
DEFAULT_FALL_RESPONSE_SECONDS = 60.0
DEFAULT_INACTIVITY_RESPONSE_SECONDS = 300.0
DEFAULT_PATTERN_RESPONSE_SECONDS = 300.0
DEFAULT_DISPLAY_NAME = "Your loved one"

# Constants
SILENCE_THRESHOLD_HOURS = os.getenv("SILENCE_THRESHOLD_HOURS", str(DEFAULT_SILENCE_THRESHOLD_HOURS))
CHECK_INTERVAL_SECONDS = os.getenv("CHECK_INTERVAL_SECONDS", str(DEFAULT_CHECK_INTERVAL_SECONDS))
LEARNING_PERIOD_DAYS = os.getenv("LEARNING_PERIOD_DAYS", str(DEFAULT_LEARNING_PERIOD_DAYS))
QUIET_HOURS_ENABLED = os.getenv("QUIET_HOURS_ENABLED", "false").lower() in ("true", "1", "yes")
QUIET_HOURS_START = os.getenv("QUIET_HOURS_START", DEFAULT_QUIET_HOURS_START)
QUIET_HOURS_END = os.getenv("QUIET_HOURS_END", DEFAULT_QUIET_HOURS_END)
RELAXED_NIGHT_MODE = os.getenv("RELAXED_NIGHT_MODE", "false").lower() in ("true", "1", "yes")
ADAPTIVE_NIGHT_WINDOW = os.getenv("ADAPTIVE_NIGHT_WINDOW", "false").lower() in ("true", "1", "yes")
FALL_DETECTION_ENABLED = os.getenv("FALL_DETECTION_ENABLED", "true").lower() in ("true", "1", "yes")
INACTIVITY_ALERTS_ENABLED = os.getenv("INACTIVITY_ALERTS_ENABLED", "true").lower() in ("true", "1", "yes")
FALL_RESPONSE_SECONDS = os.getenv("FALL_RESPONSE_SECONDS", str(DEFAULT_FALL_RESPONSE_SECONDS))
INACTIVITY_RESPONSE_SECONDS = os.getenv("INACTIVITY_RESPONSE_SECONDS", str(DEFAULT_INACTIVITY_RESPONSE_SECONDS))
PATTERN_RESPONSE_SECONDS = os.getenv("PATTERN_RESPONSE_SECONDS", str(DEFAULT_PATTERN_RESPONSE_SECONDS))
USER_DISPLAY_NAME = os.getenv("USER_DISPLAY_NAME", DEFAULT_DISPLAY_NAME)
STATE_DIR = os.getenv("STATE_DIR", "state")
TIMEZONE = os.getenv("TIMEZONE", "")


def _positive_or_default(value: Any, default: float, name: str) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        number = 0.0

    if number <= 0:
        logger.warning(f"Invalid {name}={value!r}, using default {default}")
        return default
    return number


def _hhmm_or_default(value: Any, default: str, name: str) -> str:
    try:
        parse_hhmm(value)
    except InvalidInputError:
        logger.warning(f"Invalid {name}={value!r}, using default {default}")
        return default
    return value.strip()


class MonitoringSettings(BaseModel):
    """Tunable settings shared by the state machines and the runtime."""

    silence_threshold_hours: float = Field(
        DEFAULT_SILENCE_THRESHOLD_HOURS, description="Hours of silence before an inactivity alert"
    )
    check_interval_seconds: float = Field(
        DEFAULT_CHECK_INTERVAL_SECONDS, description="Seconds between inactivity evaluations"
    )
    learning_period_days: int = Field(
        DEFAULT_LEARNING_PERIOD_DAYS, description="Days of baseline learning before alerts fire"
    )
    quiet_hours_enabled: bool = Field(False, description="Suppress inactivity alerts in quiet hours")
    quiet_hours_start: str = Field(DEFAULT_QUIET_HOURS_START, description="Quiet hours start (HH:MM)")
    quiet_hours_end: str = Field(DEFAULT_QUIET_HOURS_END, description="Quiet hours end (HH:MM)")
    relaxed_night_mode: bool = Field(False, description="Allow deviations during hours 0-5")
    adaptive_night_window: bool = Field(
        False, description="Derive the night window from the learned wake hour"
    )
    fall_detection_enabled: bool = Field(True, description="Run the fall detection state machine")
    inactivity_alerts_enabled: bool = Field(True, description="Run the inactivity state machine")
    fall_response_seconds: float = Field(
        DEFAULT_FALL_RESPONSE_SECONDS, description="Countdown before a fall alert is dispatched"
    )
    inactivity_response_seconds: float = Field(
        DEFAULT_INACTIVITY_RESPONSE_SECONDS, description="Countdown before an inactivity alert is dispatched"
    )
    pattern_response_seconds: float = Field(
        DEFAULT_PATTERN_RESPONSE_SECONDS, description="Countdown before a missed check-in alert is dispatched"
    )
    display_name: str = Field(DEFAULT_DISPLAY_NAME, description="Name used in outbound alerts")
    state_dir: str = Field("state", description="Directory for persisted state")
    timezone: Optional[str] = Field(None, description="IANA time zone for hour arithmetic")

    @field_validator("silence_threshold_hours", mode="before")
    @classmethod
    def _check_threshold(cls, value):
        return _positive_or_default(value, DEFAULT_SILENCE_THRESHOLD_HOURS, "silence_threshold_hours")

    @field_validator("check_interval_seconds", mode="before")
    @classmethod
    def _check_interval(cls, value):
        return _positive_or_default(value, DEFAULT_CHECK_INTERVAL_SECONDS, "check_interval_seconds")

    @field_validator("learning_period_days", mode="before")
    @classmethod
    def _check_learning(cls, value):
        try:
            days = int(float(value))
        except (TypeError, ValueError):
            days = -1
        if days < 0:
            logger.warning(f"Invalid learning_period_days={value!r}, using default {DEFAULT_LEARNING_PERIOD_DAYS}")
            return DEFAULT_LEARNING_PERIOD_DAYS
        return days

    @field_validator("fall_response_seconds", mode="before")
    @classmethod
    def _check_fall_response(cls, value):
        return _positive_or_default(value, DEFAULT_FALL_RESPONSE_SECONDS, "fall_response_seconds")

    @field_validator("inactivity_response_seconds", mode="before")
    @classmethod
    def _check_inactivity_response(cls, value):
        return _positive_or_default(value, DEFAULT_INACTIVITY_RESPONSE_SECONDS, "inactivity_response_seconds")

    @field_validator("pattern_response_seconds", mode="before")
    @classmethod
    def _check_pattern_response(cls, value):
        return _positive_or_default(value, DEFAULT_PATTERN_RESPONSE_SECONDS, "pattern_response_seconds")

    @field_validator("quiet_hours_start", mode="before")
    @classmethod
    def _check_quiet_start(cls, value):
        return _hhmm_or_default(value, DEFAULT_QUIET_HOURS_START, "quiet_hours_start")

    @field_validator("quiet_hours_end", mode="before")
    @classmethod
    def _check_quiet_end(cls, value):
        return _hhmm_or_default(value, DEFAULT_QUIET_HOURS_END, "quiet_hours_end")

    @field_validator("timezone", mode="before")
    @classmethod
    def _check_timezone(cls, value):
        if not value:
            return None
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning(f"Unknown timezone {value!r}, falling back to local time")
            return None
        return value

    @property
    def silence_threshold_seconds(self) -> float:
        return self.silence_threshold_hours * 3600.0

    @property
    def quiet_start_minute(self) -> int:
        return parse_hhmm(self.quiet_hours_start)

    @property
    def quiet_end_minute(self) -> int:
        return parse_hhmm(self.quiet_hours_end)

    @property
    def tzinfo(self) -> Optional[ZoneInfo]:
        return ZoneInfo(self.timezone) if self.timezone else None

    @classmethod
    def from_env(cls, **overrides: Any) -> "MonitoringSettings":
        """
        Build settings from environment variables.

        Args:
            **overrides: Values taking precedence over the environment

        Returns:
            Validated settings
        """
        values: Dict[str, Any] = {
            "silence_threshold_hours": SILENCE_THRESHOLD_HOURS,
            "check_interval_seconds": CHECK_INTERVAL_SECONDS,
            "learning_period_days": LEARNING_PERIOD_DAYS,
            "quiet_hours_enabled": QUIET_HOURS_ENABLED,
            "quiet_hours_start": QUIET_HOURS_START,
            "quiet_hours_end": QUIET_HOURS_END,
            "relaxed_night_mode": RELAXED_NIGHT_MODE,
            "adaptive_night_window": ADAPTIVE_NIGHT_WINDOW,
            "fall_detection_enabled": FALL_DETECTION_ENABLED,
            "inactivity_alerts_enabled": INACTIVITY_ALERTS_ENABLED,
            "fall_response_seconds": FALL_RESPONSE_SECONDS,
            "inactivity_response_seconds": INACTIVITY_RESPONSE_SECONDS,
            "pattern_response_seconds": PATTERN_RESPONSE_SECONDS,
            "display_name": USER_DISPLAY_NAME,
            "state_dir": STATE_DIR,
            "timezone": TIMEZONE,
        }
        values.update(overrides)
        return cls(**values)
