"""
WellnessGuard - Anomaly Detection and Escalation Engine.

This package watches for the absence of expected activity ("negative space")
and for sudden impacts consistent with a fall, then escalates through a
bounded, cancellable response protocol before notifying the care circle.
"""

__version__ = "1.0.0"
