#!/usr/bin/env python3
"""
Prometheus metrics for WellnessGuard.

This module provides metrics for monitoring the WellnessGuard service.
"""

import os
import time

from dotenv import load_dotenv
from fastapi import FastAPI
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Gauge, Histogram, generate_latest
from starlette.requests import Request
from starlette.responses import Response

from wellness_engine.models import AlertKind, DispatchResult, FallState, MonitoringState

# Load environment variables
load_dotenv()

# Enable metrics
METRICS_ENABLED = os.getenv("METRICS_ENABLED", "true").lower() in ("true", "1", "yes")

# Prometheus metrics
REQUEST_COUNT = Counter(
    "wellnessguard_requests_total",
    "Total number of API requests",
    ["method", "endpoint", "status_code"]
)

REQUEST_LATENCY = Histogram(
    "wellnessguard_request_latency_seconds",
    "Histogram of API request latency in seconds",
    ["method", "endpoint"],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5]
)

FALLS_CONFIRMED = Counter(
    "wellnessguard_falls_confirmed_total",
    "Total number of confirmed falls",
    ["source"]
)

NUDGES_SENT = Counter(
    "wellnessguard_checkin_nudges_total",
    "Total number of inactivity check-in prompts sent"
)

INACTIVITY_SUPPRESSED = Counter(
    "wellnessguard_inactivity_suppressed_total",
    "Inactivity alerts suppressed because the battery was likely dead"
)

PATTERN_DEVIATIONS = Counter(
    "wellnessguard_pattern_deviations_total",
    "Total number of hourly pattern deviations"
)

ALERTS_TRIGGERED = Counter(
    "wellnessguard_alerts_triggered_total",
    "Escalations started",
    ["kind"]
)

ALERTS_COALESCED = Counter(
    "wellnessguard_alerts_coalesced_total",
    "Triggers merged into an escalation already in flight",
    ["kind"]
)

ALERTS_CANCELLED = Counter(
    "wellnessguard_alerts_cancelled_total",
    "Escalations cancelled before hand-off",
    ["kind"]
)

DISPATCH_RESULTS = Counter(
    "wellnessguard_dispatch_results_total",
    "Alert dispatch attempts by outcome",
    ["kind", "status"]
)

DISCARDED_INPUTS = Counter(
    "wellnessguard_discarded_inputs_total",
    "Malformed inputs discarded",
    ["input"]
)

MONITORING_STATE = Gauge(
    "wellnessguard_monitoring_state",
    "Current inactivity monitoring state (1 for the active state)",
    ["state"]
)

FALL_STATE = Gauge(
    "wellnessguard_fall_state",
    "Current fall detection state (1 for the active state)",
    ["state"]
)


def record_dispatch(kind: AlertKind, result: DispatchResult) -> None:
    """
    Record the outcome of an alert dispatch.

    Args:
        kind: Alert kind
        result: Result reported by the dispatcher
    """
    DISPATCH_RESULTS.labels(kind=kind.value, status="success" if result.success else "failure").inc()


def set_monitoring_state(state: MonitoringState) -> None:
    for candidate in MonitoringState:
        MONITORING_STATE.labels(state=candidate.value).set(1 if candidate == state else 0)


def set_fall_state(state: FallState) -> None:
    for candidate in FallState:
        FALL_STATE.labels(state=candidate.value).set(1 if candidate == state else 0)


def setup_metrics(app: FastAPI) -> None:
    """
    Set up metrics for the application.

    Args:
        app: FastAPI application
    """
    if not METRICS_ENABLED:
        return

    @app.middleware("http")
    async def prometheus_middleware(request: Request, call_next):
        path = request.url.path
        if path == "/metrics":
            return await call_next(request)

        start_time = time.time()
        response = await call_next(request)
        REQUEST_COUNT.labels(method=request.method, endpoint=path, status_code=response.status_code).inc()
        REQUEST_LATENCY.labels(method=request.method, endpoint=path).observe(time.time() - start_time)
        return response

    @app.get("/metrics")
    async def metrics():
        return Response(
            generate_latest(),
            media_type=CONTENT_TYPE_LATEST
        )
