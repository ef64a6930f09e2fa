#!/usr/bin/env python3
"""
Webhook integration for WellnessGuard.

This module delivers care circle alerts to an HTTP alert gateway (for example
a cloud function that fans the alert out over SMS). Each alert is posted once;
retrying is left to the gateway so contacts never receive duplicate
emergency messages.
"""

import hashlib
import hmac
import json
import logging
import os
import time
from typing import Any, Dict, Optional

import httpx
from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError

from wellness_engine.models import AlertRequest, DispatchResult

# Set up logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Load environment variables
load_dotenv()

# Constants
ALERT_WEBHOOK_URL = os.getenv("ALERT_WEBHOOK_URL", "")
ALERT_WEBHOOK_SECRET = os.getenv("ALERT_WEBHOOK_SECRET", "")
ALERT_WEBHOOK_TIMEOUT = float(os.getenv("ALERT_WEBHOOK_TIMEOUT", "10"))
SIGNATURE_HEADER = "X-WellnessGuard-Signature"


class WebhookConfig(BaseModel):
    """Configuration for the alert gateway endpoint."""

    url: str = Field(..., description="Alert gateway URL")
    secret: Optional[str] = Field(None, description="Webhook secret for HMAC signature")
    headers: Dict[str, str] = Field(default_factory=dict, description="Custom headers")
    timeout: float = Field(ALERT_WEBHOOK_TIMEOUT, description="Request timeout in seconds")


def build_payload(request: AlertRequest) -> Dict[str, Any]:
    """
    Build the JSON body expected by the alert gateway.

    Args:
        request: Alert request

    Returns:
        Payload dictionary
    """
    payload: Dict[str, Any] = {
        "userName": request.user_name,
        "alertType": request.kind.value,
        "members": [{"name": c.full_name, "phone": c.phone_number} for c in request.contacts],
        "timestamp": request.created_at,
    }
    if request.location is not None:
        payload["location"] = {
            "address": request.location.address,
            "isHome": request.location.is_home,
        }
    return payload


def generate_signature(payload: str, secret: str) -> str:
    """
    Generate HMAC signature for payload.

    Args:
        payload: JSON payload
        secret: Secret key

    Returns:
        HMAC signature
    """
    return hmac.new(
        secret.encode("utf-8"),
        payload.encode("utf-8"),
        hashlib.sha256
    ).hexdigest()


def parse_gateway_result(body: Any, total: int) -> DispatchResult:
    """
    Interpret a 2xx gateway response body.

    Missing, null or malformed fields fall back to "delivered to everyone",
    since the gateway already accepted the request.

    Args:
        body: Decoded JSON body (None if the body was not JSON)
        total: Number of contacts in the request

    Returns:
        Dispatch result
    """
    values: Dict[str, Any] = {"success": True, "sent": total, "total": total}
    if isinstance(body, dict):
        values.update(
            {k: body[k] for k in ("success", "sent", "total", "error") if body.get(k) is not None}
        )
    elif body is not None:
        logger.warning(f"Unexpected alert gateway response type: {type(body).__name__}")

    try:
        return DispatchResult.model_validate(values)
    except ValidationError as e:
        logger.warning(f"Could not parse alert gateway response, assuming delivery: {e}")
        return DispatchResult(success=True, sent=total, total=total)


class WebhookAlertDispatcher:
    """Remote alert dispatcher posting to an HTTP alert gateway."""

    def __init__(self, config: WebhookConfig, client: Optional[httpx.AsyncClient] = None):
        """
        Initialize the dispatcher.

        Args:
            config: Gateway configuration
            client: HTTP client (created if not provided)
        """
        self.config = config
        self.client = client or httpx.AsyncClient(timeout=config.timeout)
        logger.info(f"Alert webhook dispatcher initialized for {config.url}")

    async def send_alert(self, request: AlertRequest) -> DispatchResult:
        """
        Post an alert to the gateway once.

        Args:
            request: Alert request

        Returns:
            Dispatch result parsed from the gateway's response
        """
        total = len(request.contacts)
        payload_json = json.dumps(build_payload(request))

        headers = {"Content-Type": "application/json", "User-Agent": "WellnessGuard/1.0"}
        headers.update(self.config.headers)
        if self.config.secret:
            headers[SIGNATURE_HEADER] = f"sha256={generate_signature(payload_json, self.config.secret)}"

        start_time = time.time()
        try:
            response = await self.client.post(self.config.url, content=payload_json, headers=headers)
        except httpx.HTTPError as e:
            logger.error(f"Alert webhook request failed: {e}")
            return DispatchResult(success=False, sent=0, total=total, error=str(e))

        elapsed_ms = (time.time() - start_time) * 1000
        if response.status_code >= 400:
            logger.error(f"Alert webhook returned {response.status_code}: {response.text}")
            return DispatchResult(
                success=False, sent=0, total=total, error=f"HTTP {response.status_code}"
            )

        try:
            body = response.json()
        except ValueError:
            body = None

        result = parse_gateway_result(body, total)
        logger.info(f"Alert webhook responded in {elapsed_ms:.0f}ms: {result.sent}/{result.total} sent")
        return result

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()
        logger.info("Alert webhook dispatcher closed")


class LoggingAlertDispatcher:
    """Dispatcher used when no gateway is configured; alerts are only logged."""

    async def send_alert(self, request: AlertRequest) -> DispatchResult:
        logger.error(
            f"No alert gateway configured, {request.kind.value} alert for "
            f"{request.user_name} was not delivered"
        )
        return DispatchResult(
            success=False, sent=0, total=len(request.contacts), error="No alert gateway configured"
        )

    async def close(self) -> None:
        return None


def create_alert_dispatcher():
    """
    Create the alert dispatcher from environment variables.

    Returns:
        A WebhookAlertDispatcher if ALERT_WEBHOOK_URL is set, else a logging dispatcher
    """
    if not ALERT_WEBHOOK_URL:
        logger.warning("ALERT_WEBHOOK_URL is not set, care circle alerts will only be logged")
        return LoggingAlertDispatcher()

    return WebhookAlertDispatcher(
        WebhookConfig(url=ALERT_WEBHOOK_URL, secret=ALERT_WEBHOOK_SECRET or None)
    )
