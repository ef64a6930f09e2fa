#!/usr/bin/env python3
"""
Exception hierarchy for the WellnessGuard engine.
"""


class WellnessGuardError(Exception):
    """Base class for all WellnessGuard errors."""


class InvalidInputError(WellnessGuardError, ValueError):
    """Raised when a sample or event is malformed and must be discarded."""


class ConfigurationError(WellnessGuardError):
    """Raised when a configuration value cannot be interpreted at all."""


class StorageError(WellnessGuardError):
    """Raised when persisted state cannot be read or written."""
