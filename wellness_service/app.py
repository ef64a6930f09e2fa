#!/usr/bin/env python3
"""
FastAPI host service for WellnessGuard.

This module exposes the monitoring engine over HTTP: sensor adapters post
activity, motion and battery readings, the companion app posts user
responses, and operators read status and Prometheus metrics.
"""

import json
import logging
import os
import time
from typing import Any, Dict, List, Optional

import uvicorn
from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from wellness_engine import __version__
from wellness_engine.config import MonitoringSettings
from wellness_engine.interfaces import StaticRoster
from wellness_engine.models import ActivitySignal, ChargeState, Contact, DailySummary, PromptRequest
from wellness_engine.storage import JsonFileRepository
from wellness_service.integrations.mqtt_connector import MQTTBridge
from wellness_service.integrations.webhook_connector import create_alert_dispatcher
from wellness_service.metrics import setup_metrics
from wellness_service.runtime import MonitoringService

# Set up logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Load environment variables
load_dotenv()

# Constants
HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "8000"))
CARE_CIRCLE_FILE = os.getenv("CARE_CIRCLE_FILE", "config/care_circle.json")


# Request and response models
class ActivityRequest(BaseModel):
    """Request model for recording activity."""

    signal: ActivitySignal = Field(..., description="Kind of activity signal")
    timestamp: Optional[float] = Field(None, allow_inf_nan=False, description="Epoch seconds, defaults to now")
    metadata: Optional[str] = Field(None, description="Free-form detail")


class MotionSample(BaseModel):
    """One acceleration magnitude sample."""

    timestamp: float = Field(..., description="Epoch seconds")
    magnitude: float = Field(..., description="Acceleration norm in g")


class MotionRequest(BaseModel):
    """Request model for a batch of motion samples."""

    samples: List[MotionSample] = Field(..., description="Samples in time order")


class BatteryRequest(BaseModel):
    """Request model for a battery reading."""

    level: Optional[int] = Field(None, description="Battery level 0-100, omitted if unknown")
    state: ChargeState = Field(ChargeState.UNKNOWN, description="Charging state")
    power_save: bool = Field(False, description="Low power mode enabled")
    timestamp: Optional[float] = Field(None, description="Epoch seconds, defaults to now")


class HourlyRequest(BaseModel):
    """Request model for one completed hour of activity."""

    hour: int = Field(..., ge=0, le=23, description="Hour of day")
    is_weekend: bool = Field(..., description="Whether the hour fell on a weekend")
    activity_count: int = Field(..., ge=0, description="Activity units (steps)")
    event_count: int = Field(..., ge=0, description="Phone events")


class HealthResponse(BaseModel):
    """Response model for health check API."""

    status: str = Field(..., description="Service status")
    version: str = Field(..., description="API version")
    uptime_seconds: float = Field(..., description="Seconds since startup")


class LoggingPromptDispatcher:
    """Prompt dispatcher that only logs; used when no device bridge is connected."""

    def send_prompt(self, prompt: PromptRequest) -> None:
        logger.info(f"Prompt [{prompt.category}] {prompt.title}: {prompt.body}")


def load_roster(path: str) -> StaticRoster:
    """
    Load the care circle from a JSON file.

    Args:
        path: Path to a JSON list of contacts

    Returns:
        Roster (empty if the file does not exist)
    """
    if not os.path.exists(path):
        logger.warning(f"Care circle file not found: {path}")
        return StaticRoster()

    with open(path, "r") as f:
        data = json.load(f)

    contacts = [Contact(**raw) for raw in data]
    logger.info(f"Loaded {len(contacts)} care circle contacts")
    return StaticRoster(contacts)


def create_app(service: MonitoringService, bridge: Optional[MQTTBridge] = None, dispatcher=None) -> FastAPI:
    """
    Create the FastAPI application around a monitoring service.

    Args:
        service: Monitoring service (started on application startup)
        bridge: Optional MQTT bridge connected on startup
        dispatcher: Alert dispatcher closed on shutdown

    Returns:
        FastAPI application
    """
    app = FastAPI(
        title="WellnessGuard API",
        description="Inactivity, pattern deviation and fall escalation engine",
        version=__version__,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.service = service
    app.state.startup_time = time.time()
    setup_metrics(app)

    @app.on_event("startup")
    async def startup_event():
        await service.start()
        if bridge is not None and bridge.connect():
            bridge.attach(service)

    @app.on_event("shutdown")
    async def shutdown_event():
        if bridge is not None:
            bridge.disconnect()
        await service.stop()
        if dispatcher is not None and hasattr(dispatcher, "close"):
            await dispatcher.close()

    @app.get("/health", response_model=HealthResponse)
    async def health():
        return HealthResponse(
            status="ok" if service.running else "stopped",
            version=__version__,
            uptime_seconds=time.time() - app.state.startup_time,
        )

    @app.get("/status")
    async def status() -> Dict[str, Any]:
        return service.status()

    @app.post("/activity")
    async def record_activity(request: ActivityRequest):
        stood_down = await service.record_activity(request.signal, request.timestamp, request.metadata)
        return {"recorded": True, "alert_cleared": stood_down}

    @app.post("/motion")
    async def record_motion(request: MotionRequest):
        falls = []
        for sample in request.samples:
            event = await service.record_motion(sample.timestamp, sample.magnitude)
            if event is not None:
                falls.append(event.model_dump())
        return {"processed": len(request.samples), "falls": falls}

    @app.post("/battery")
    async def record_battery(request: BatteryRequest):
        recorded = await service.record_battery(request.level, request.state, request.power_save, request.timestamp)
        return {"recorded": recorded}

    @app.post("/hourly")
    async def observe_hour(request: HourlyRequest):
        deviation = await service.observe_hour(
            request.hour, request.is_weekend, request.activity_count, request.event_count
        )
        return {"deviation": deviation.model_dump() if deviation else None}

    @app.post("/daily")
    async def record_daily(summary: DailySummary):
        await service.record_daily_summary(summary)
        return {"recorded": True}

    @app.post("/checkin")
    async def check_in():
        stood_down = await service.check_in()
        return {"checked_in": True, "alert_cleared": stood_down}

    @app.post("/fall/ok")
    async def cancel_fall():
        cancelled = await service.cancel_fall()
        if not cancelled:
            raise HTTPException(status_code=409, detail="No fall alert to cancel")
        return {"cancelled": True}

    @app.post("/fall/test")
    async def test_fall():
        event = await service.trigger_test_fall()
        if event is None:
            raise HTTPException(status_code=409, detail="A fall alert is already in progress")
        return {"fall": event.model_dump()}

    @app.post("/pause")
    async def pause():
        await service.pause()
        return {"monitoring_state": service.negative_space.state.value}

    @app.post("/resume")
    async def resume():
        await service.resume()
        return {"monitoring_state": service.negative_space.state.value}

    return app


def build_default_app() -> FastAPI:
    """Wire the service from environment variables."""
    settings = MonitoringSettings.from_env()
    dispatcher = create_alert_dispatcher()
    bridge = MQTTBridge()
    prompts = bridge if bridge.enabled else LoggingPromptDispatcher()

    service = MonitoringService(
        settings=settings,
        dispatcher=dispatcher,
        roster=load_roster(CARE_CIRCLE_FILE),
        prompts=prompts,
        repository=JsonFileRepository(settings.state_dir),
    )
    return create_app(service, bridge=bridge if bridge.enabled else None, dispatcher=dispatcher)


def main() -> None:
    uvicorn.run(build_default_app(), host=HOST, port=PORT)


if __name__ == "__main__":
    main()
