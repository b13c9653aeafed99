"""Tests for the MQTT transport and subscriber with a mocked paho client."""

import asyncio
import json
import pytest
from unittest.mock import MagicMock, patch

pytest.importorskip("paho.mqtt")

import paho.mqtt.client as mqtt

from treemirror.config import MQTTConfig
from treemirror.transport.messages import heartbeat_envelope
from treemirror.transport.mqtt import MQTTSubscriber, MQTTTransport


@pytest.fixture
def paho_client():
    with patch("treemirror.transport.mqtt.mqtt.Client") as client_cls:
        client = MagicMock()
        client_cls.return_value = client
        yield client


class TestMQTTTransport:
    """Tests for publishing envelopes."""

    @pytest.mark.asyncio
    async def test_publishes_to_sync_topic(self, paho_client):
        paho_client.publish.return_value = MagicMock(rc=mqtt.MQTT_ERR_SUCCESS)
        transport = MQTTTransport(MQTTConfig(topic_prefix="lab"))
        transport._connected = True

        result = await transport.send(heartbeat_envelope(1.0, "p1"))

        assert result.ok
        assert not result.resync_required
        topic, payload = paho_client.publish.call_args.args
        assert topic == "lab/sync"
        assert json.loads(payload)["type"] == "heartbeat"
        assert paho_client.publish.call_args.kwargs["qos"] == 1

    @pytest.mark.asyncio
    async def test_publish_failure(self, paho_client):
        paho_client.publish.return_value = MagicMock(rc=mqtt.MQTT_ERR_NO_CONN)
        transport = MQTTTransport(MQTTConfig())
        transport._connected = True

        result = await transport.send(heartbeat_envelope(1.0))

        assert not result.ok
        assert "Publish failed" in result.error

    @pytest.mark.asyncio
    async def test_unreachable_broker(self, paho_client):
        paho_client.connect.side_effect = OSError("refused")
        transport = MQTTTransport(MQTTConfig())

        result = await transport.send(heartbeat_envelope(1.0))

        assert not result.ok
        paho_client.publish.assert_not_called()

    def test_connect_callback(self, paho_client):
        transport = MQTTTransport(MQTTConfig())

        transport._handle_connect(paho_client, None, None, 0)

        assert transport.is_connected
        paho_client.subscribe.assert_not_called()


class TestMQTTSubscriber:
    """Tests for receiving envelopes."""

    def test_subscribes_on_connect(self, paho_client):
        subscriber = MQTTSubscriber(MQTTConfig(), on_payload=lambda payload: None)

        subscriber._handle_connect(paho_client, None, None, 0)

        paho_client.subscribe.assert_called_once_with("treemirror/sync", qos=1)

    @pytest.mark.asyncio
    async def test_payload_handed_to_loop(self, paho_client):
        received = []
        subscriber = MQTTSubscriber(MQTTConfig(), on_payload=received.append)
        subscriber._loop = asyncio.get_running_loop()

        message = MagicMock()
        message.topic = "treemirror/sync"
        message.payload = b'{"type": "heartbeat"}'
        subscriber._handle_message(paho_client, None, message)
        await asyncio.sleep(0)

        assert received == ['{"type": "heartbeat"}']

    def test_invalid_utf8_is_dropped(self, paho_client):
        received = []
        subscriber = MQTTSubscriber(MQTTConfig(), on_payload=received.append)
        subscriber._loop = MagicMock()

        message = MagicMock()
        message.topic = "treemirror/sync"
        message.payload = b"\xff\xfe"
        subscriber._handle_message(paho_client, None, message)

        subscriber._loop.call_soon_threadsafe.assert_not_called()
