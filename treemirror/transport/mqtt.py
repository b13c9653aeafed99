"""MQTT transport: the producer publishes envelopes, the consumer subscribes."""

import asyncio
import json
import logging
from typing import Any, Callable

import paho.mqtt.client as mqtt

from ..config import MQTTConfig
from .base import SendResult, Transport

logger = logging.getLogger(__name__)

PayloadCallback = Callable[[str], None]


class _MQTTConnection:
    """Paho client wrapper shared by the publisher and the subscriber."""

    def __init__(self, config: MQTTConfig, subscribe: bool = False):
        self.config = config
        self._subscribe = subscribe

        self._client = mqtt.Client(mqtt.CallbackAPIVersion.VERSION2)
        self._client.on_connect = self._handle_connect
        self._client.on_disconnect = self._handle_disconnect

        self._connected = False

    def _handle_connect(
        self,
        client: mqtt.Client,
        userdata: Any,
        flags: Any,
        reason_code: Any,
        properties: Any = None,
    ) -> None:
        """Handle connection to broker."""
        if reason_code == 0:
            self._connected = True
            logger.info(f"Connected to MQTT broker at {self.config.broker}:{self.config.port}")

            if self._subscribe:
                client.subscribe(self.config.sync_topic, qos=1)
                logger.info(f"Subscribed to topic: {self.config.sync_topic}")
        else:
            logger.error(f"Failed to connect to MQTT broker: {reason_code}")

    def _handle_disconnect(
        self,
        client: mqtt.Client,
        userdata: Any,
        disconnect_flags: Any,
        reason_code: Any,
        properties: Any = None,
    ) -> None:
        """Handle disconnection from broker."""
        self._connected = False
        logger.warning(f"Disconnected from MQTT broker: {reason_code}")

    async def connect(self) -> bool:
        """Connect to the MQTT broker.

        Returns:
            True if connection successful.
        """
        if self.config.username and self.config.password:
            self._client.username_pw_set(self.config.username, self.config.password)

        try:
            self._client.connect(self.config.broker, self.config.port, keepalive=60)
            self._client.loop_start()

            # Wait for connection
            for _ in range(50):  # 5 second timeout
                if self._connected:
                    return True
                await asyncio.sleep(0.1)

            logger.error("Timeout waiting for MQTT connection")
            return False

        except OSError as e:
            logger.error(f"Failed to connect to MQTT broker: {e}")
            return False

    async def disconnect(self) -> None:
        """Disconnect from the MQTT broker."""
        self._client.loop_stop()
        self._client.disconnect()
        self._connected = False

    @property
    def is_connected(self) -> bool:
        return self._connected


class MQTTTransport(_MQTTConnection, Transport):
    """Publishes message envelopes on the sync topic.

    Delivery is fire-and-forget: the consumer cannot ask for a resync over
    MQTT, so SendResult.resync_required is always False.
    """

    def __init__(self, config: MQTTConfig):
        super().__init__(config, subscribe=False)

    async def send(self, message: dict[str, Any]) -> SendResult:
        if not self._connected and not await self.connect():
            return SendResult(ok=False, error="Not connected to broker")

        result = self._client.publish(
            self.config.sync_topic, json.dumps(message, separators=(",", ":")), qos=1
        )
        if result.rc != mqtt.MQTT_ERR_SUCCESS:
            return SendResult(ok=False, error=f"Publish failed: rc={result.rc}")
        return SendResult(ok=True)

    async def close(self) -> None:
        await self.disconnect()


class MQTTSubscriber(_MQTTConnection):
    """Receives envelopes from the sync topic and hands them to the event loop.

    Paho delivers messages on its own network thread; payloads are passed
    to ``on_payload`` on the asyncio loop with call_soon_threadsafe.
    """

    def __init__(self, config: MQTTConfig, on_payload: PayloadCallback):
        super().__init__(config, subscribe=True)
        self._on_payload = on_payload
        self._loop: asyncio.AbstractEventLoop | None = None
        self._client.on_message = self._handle_message

    def _handle_message(
        self,
        client: mqtt.Client,
        userdata: Any,
        msg: mqtt.MQTTMessage,
    ) -> None:
        """Handle incoming message."""
        try:
            payload = msg.payload.decode("utf-8")
        except UnicodeDecodeError:
            logger.warning(f"Discarding non-UTF-8 message on {msg.topic}")
            return

        if self._loop is None:
            logger.warning("Message received before the subscriber was started")
            return
        self._loop.call_soon_threadsafe(self._on_payload, payload)

    async def connect(self) -> bool:
        self._loop = asyncio.get_running_loop()
        return await super().connect()
