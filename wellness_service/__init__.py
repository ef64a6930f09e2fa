"""
WellnessGuard host service.

This package hosts the detection engine in a single asyncio actor and exposes
it over HTTP, MQTT and an alert webhook.
"""

__version__ = "1.0.0"
