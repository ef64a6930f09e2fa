#!/usr/bin/env python3
"""
MQTT integration for WellnessGuard.

This module connects the monitoring service to a companion device over MQTT:
sensor readings and user responses arrive on subscribed topics and are
forwarded into the service's message queue, while local prompts and status
updates are published back to the device.
"""

import json
import logging
import os
import ssl
import time
from typing import Any, Callable, Dict, List, Optional, Tuple

import paho.mqtt.client as mqtt
from dotenv import load_dotenv

from wellness_engine.models import PromptRequest
from wellness_engine.utils import magnitude_of

# Set up logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Load environment variables
load_dotenv()

# Constants
MQTT_BROKER_HOST = os.getenv("MQTT_BROKER_HOST", "localhost")
MQTT_BROKER_PORT = int(os.getenv("MQTT_BROKER_PORT", "1883"))
MQTT_CLIENT_ID = os.getenv("MQTT_CLIENT_ID", f"wellness-guard-{os.getpid()}")
MQTT_USERNAME = os.getenv("MQTT_USERNAME", "")
MQTT_PASSWORD = os.getenv("MQTT_PASSWORD", "")
MQTT_USE_TLS = os.getenv("MQTT_USE_TLS", "false").lower() in ("true", "1", "yes")
MQTT_TLS_CA_CERTS = os.getenv("MQTT_TLS_CA_CERTS", "")
MQTT_QOS = int(os.getenv("MQTT_QOS", "1"))
MQTT_ENABLED = os.getenv("MQTT_ENABLED", "false").lower() in ("true", "1", "yes")
DEVICE_ID = os.getenv("DEVICE_ID", "unknown")

# Topics
MQTT_BASE_TOPIC = os.getenv("MQTT_BASE_TOPIC", "wellnessguard/")
MQTT_ACTIVITY_TOPIC = f"{MQTT_BASE_TOPIC}activity"
MQTT_MOTION_TOPIC = f"{MQTT_BASE_TOPIC}motion"
MQTT_BATTERY_TOPIC = f"{MQTT_BASE_TOPIC}battery"
MQTT_COMMAND_TOPIC = f"{MQTT_BASE_TOPIC}commands"
MQTT_PROMPT_TOPIC = f"{MQTT_BASE_TOPIC}prompts"
MQTT_STATUS_TOPIC = f"{MQTT_BASE_TOPIC}status"

COMMANDS = {
    "check_in": "check_in",
    "fall_ok": "fall_ok",
    "pause": "pause",
    "resume": "resume",
    "test_fall": "test_fall",
    "evaluate": "tick",
}

Message = Tuple[str, Tuple[Any, ...]]


def _motion_messages(payload: Dict[str, Any]) -> List[Message]:
    samples = payload.get("samples")
    if samples is None:
        samples = [payload]

    messages = []
    for sample in samples:
        if isinstance(sample, (list, tuple)):
            timestamp, magnitude = sample
        elif "magnitude" in sample:
            timestamp, magnitude = sample.get("timestamp", time.time()), sample["magnitude"]
        else:
            timestamp = sample.get("timestamp", time.time())
            magnitude = magnitude_of(float(sample["x"]), float(sample["y"]), float(sample["z"]))
        messages.append(("motion", (float(timestamp), float(magnitude))))
    return messages


def route_message(topic: str, payload: Any) -> List[Message]:
    """
    Translate an incoming MQTT message into service messages.

    Args:
        topic: Topic the message arrived on
        payload: Decoded JSON payload

    Returns:
        (message name, args) pairs for MonitoringService.submit_threadsafe

    Raises:
        ValueError: If the payload does not match the topic's format
    """
    if not isinstance(payload, dict):
        raise ValueError(f"Expected a JSON object on {topic}")

    try:
        if topic == MQTT_ACTIVITY_TOPIC:
            return [("activity", (payload["signal"], payload.get("timestamp"), payload.get("metadata")))]

        if topic == MQTT_MOTION_TOPIC:
            return _motion_messages(payload)

        if topic == MQTT_BATTERY_TOPIC:
            return [(
                "battery",
                (
                    payload.get("level"),
                    payload.get("state", "unknown"),
                    bool(payload.get("power_save", False)),
                    payload.get("timestamp"),
                ),
            )]

        if mqtt.topic_matches_sub(f"{MQTT_COMMAND_TOPIC}/#", topic) or topic == MQTT_COMMAND_TOPIC:
            command = payload.get("command")
            if command not in COMMANDS:
                raise ValueError(f"Unknown command: {command!r}")
            return [(COMMANDS[command], ())]
    except (KeyError, TypeError) as e:
        raise ValueError(f"Malformed payload on {topic}: {e}") from e

    raise ValueError(f"No route for topic {topic}")


class MQTTBridge:
    """MQTT client bridging a companion device and the monitoring service."""

    def __init__(
        self,
        client_id: str = MQTT_CLIENT_ID,
        broker_host: str = MQTT_BROKER_HOST,
        broker_port: int = MQTT_BROKER_PORT,
        username: str = MQTT_USERNAME,
        password: str = MQTT_PASSWORD,
        use_tls: bool = MQTT_USE_TLS,
        ca_certs: str = MQTT_TLS_CA_CERTS,
        qos: int = MQTT_QOS,
        enabled: bool = MQTT_ENABLED,
    ):
        """
        Initialize the MQTT bridge.

        Args:
            client_id: MQTT client ID
            broker_host: MQTT broker hostname
            broker_port: MQTT broker port
            username: MQTT username
            password: MQTT password
            use_tls: Whether to use TLS
            ca_certs: Path to CA certificate file
            qos: MQTT QoS level (0, 1, or 2)
            enabled: Whether the bridge talks to a broker at all
        """
        self.enabled = enabled
        self.broker_host = broker_host
        self.broker_port = broker_port
        self.qos = qos
        self.connected = False
        self.connection_error: Optional[str] = None
        self.subscriptions: Dict[str, Callable[[str, Any], None]] = {}

        if not enabled:
            logger.warning("MQTT integration is disabled. Set MQTT_ENABLED=true to enable.")
            self.client = None
            return

        self.client = mqtt.Client(
            callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
            client_id=client_id,
            protocol=mqtt.MQTTv5,
        )
        self.client.on_connect = self._on_connect
        self.client.on_disconnect = self._on_disconnect
        self.client.on_message = self._on_message

        if username and password:
            self.client.username_pw_set(username, password)

        if use_tls:
            self.client.tls_set(
                ca_certs=ca_certs or None,
                cert_reqs=ssl.CERT_REQUIRED,
                tls_version=ssl.PROTOCOL_TLS_CLIENT,
            )

        logger.info(f"MQTT bridge initialized for broker {broker_host}:{broker_port}")

    def _on_connect(self, client, userdata, flags, reason_code, properties=None):
        if reason_code.is_failure:
            logger.error(f"Failed to connect to MQTT broker: {reason_code}")
            self.connected = False
            self.connection_error = str(reason_code)
            return

        logger.info(f"Connected to MQTT broker {self.broker_host}:{self.broker_port}")
        self.connected = True
        self.connection_error = None
        for topic in self.subscriptions:
            client.subscribe(topic, qos=self.qos)
        self.publish_status("online")

    def _on_disconnect(self, client, userdata, flags, reason_code, properties=None):
        if reason_code.is_failure:
            logger.warning(f"Unexpected disconnection from MQTT broker ({reason_code})")
        else:
            logger.info("Disconnected from MQTT broker")
        self.connected = False

    def _on_message(self, client, userdata, msg):
        for topic_pattern, callback in self.subscriptions.items():
            if mqtt.topic_matches_sub(topic_pattern, msg.topic):
                try:
                    payload = json.loads(msg.payload.decode("utf-8"))
                    callback(msg.topic, payload)
                except (UnicodeDecodeError, ValueError) as e:
                    logger.warning(f"Discarding MQTT message on {msg.topic}: {e}")
                break

    def connect(self, timeout: float = 5.0) -> bool:
        """
        Connect to the MQTT broker and start the network loop.

        Args:
            timeout: Seconds to wait for the connection

        Returns:
            True if connected, False otherwise
        """
        if not self.enabled:
            return False

        self.client.will_set(
            topic=MQTT_STATUS_TOPIC,
            payload=json.dumps({"status": "offline", "device_id": DEVICE_ID, "timestamp": time.time()}),
            qos=self.qos,
            retain=True,
        )
        try:
            self.client.connect(host=self.broker_host, port=self.broker_port, keepalive=60)
        except OSError as e:
            logger.error(f"Error connecting to MQTT broker: {e}")
            return False
        self.client.loop_start()

        deadline = time.time() + timeout
        while time.time() < deadline:
            if self.connected:
                return True
            if self.connection_error:
                return False
            time.sleep(0.1)

        logger.error("Connection to MQTT broker timed out")
        return False

    def disconnect(self) -> None:
        if not self.enabled:
            return
        if self.connected:
            self.publish_status("offline")
        self.client.loop_stop()
        self.client.disconnect()

    def subscribe(self, topic: str, callback: Callable[[str, Any], None]) -> None:
        self.subscriptions[topic] = callback
        if self.enabled and self.connected:
            self.client.subscribe(topic, qos=self.qos)
            logger.info(f"Subscribed to topic: {topic}")

    def publish(self, topic: str, payload: Dict[str, Any], retain: bool = False) -> bool:
        """
        Publish a JSON message.

        Args:
            topic: MQTT topic
            payload: Message payload
            retain: Whether to retain the message

        Returns:
            True if the message was queued for delivery
        """
        if not self.enabled or not self.connected:
            logger.debug(f"MQTT not connected, dropping message for {topic}")
            return False

        result = self.client.publish(topic=topic, payload=json.dumps(payload), qos=self.qos, retain=retain)
        if result.rc != mqtt.MQTT_ERR_SUCCESS:
            logger.error(f"Failed to publish message to topic: {topic}")
            return False
        return True

    def publish_status(self, status: str) -> bool:
        return self.publish(
            MQTT_STATUS_TOPIC,
            {"status": status, "device_id": DEVICE_ID, "timestamp": time.time(), "version": "1.0.0"},
            retain=True,
        )

    def send_prompt(self, prompt: PromptRequest) -> None:
        """Local prompt dispatcher: publish the prompt to the companion device."""
        payload = prompt.model_dump()
        payload["timestamp"] = time.time()
        if not self.publish(MQTT_PROMPT_TOPIC, payload):
            logger.warning(f"Prompt {prompt.category} not delivered over MQTT: {prompt.title}")

    def attach(self, service) -> None:
        """
        Forward device messages into a running MonitoringService.

        Args:
            service: MonitoringService that has been started
        """
        def forward(topic: str, payload: Any) -> None:
            for name, args in route_message(topic, payload):
                service.submit_threadsafe(name, *args)

        for topic in (MQTT_ACTIVITY_TOPIC, MQTT_MOTION_TOPIC, MQTT_BATTERY_TOPIC, f"{MQTT_COMMAND_TOPIC}/#"):
            self.subscribe(topic, forward)
