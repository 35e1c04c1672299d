"""Unit tests for mqttsim._context and mqttsim._notify.

Test Techniques Used:
    - Specification-based Testing: payload encoding, QoS and retain flags
    - Exception Safety: publish and notify failures are logged, not raised
    - Protocol Conformance: notifier adapters satisfy DeviceNotifier
"""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime

import pytest

from mqttsim._context import SimContext, encode_payload
from mqttsim._models import Device
from mqttsim._mqtt import MockMqttClient
from mqttsim._notify import DeviceNotifier, LoggingNotifier, MockNotifier, NullNotifier
from mqttsim._store import MemoryDeviceStore


def _device() -> Device:
    return Device(id="d1", type="switch", name="Plug", slug="plug")


class TestEncodePayload:
    """Transport encoding.

    Technique: Specification-based Testing.
    """

    def test_string_passthrough(self) -> None:
        assert encode_payload("online") == "online"
        assert encode_payload("") == ""

    def test_mapping_as_json(self) -> None:
        assert json.loads(encode_payload({"state": "ON", "speed": 2})) == {"state": "ON", "speed": 2}

    def test_non_json_values_stringified(self) -> None:
        when = datetime(2026, 1, 1, tzinfo=UTC)
        assert json.loads(encode_payload({"at": when})) == {"at": str(when)}


class TestSimContextPublish:
    """Fire-and-forget publishing.

    Technique: Exception Safety.
    """

    async def test_publish_uses_context_qos(self, memory_store: MemoryDeviceStore) -> None:
        mqtt = MockMqttClient()
        ctx = SimContext(ns="sim", mqtt=mqtt, store=memory_store, qos=0)

        await ctx.publish("a/b", {"x": 1}, retain=True)

        assert mqtt.published == [("a/b", '{"x": 1}', True, 0)]

    async def test_publish_state_retained_on_state_topic(
        self,
        sim_context: SimContext,
        mock_mqtt: MockMqttClient,
    ) -> None:
        await sim_context.publish_state("light", "abc", {"state": "ON"})

        assert mock_mqtt.get_messages_for("sim/light/abc/state") == [('{"state": "ON"}', True, 1)]

    async def test_publish_failure_swallowed(
        self,
        sim_context: SimContext,
        mock_mqtt: MockMqttClient,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        mock_mqtt.fail_publish = ConnectionError("broker gone")

        await sim_context.publish("a/b", "x")

        assert "Failed to publish to a/b" in caplog.text

    async def test_notify_failure_swallowed(
        self,
        sim_context: SimContext,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        async def failing() -> None:
            msg = "socket closed"
            raise RuntimeError(msg)

        await sim_context.notify(failing())

        assert "Live-update notification failed" in caplog.text

    def test_defaults(self, memory_store: MemoryDeviceStore) -> None:
        ctx = SimContext(ns="sim", mqtt=MockMqttClient(), store=memory_store)
        assert isinstance(ctx.notifier, NullNotifier)
        assert ctx.discovery_enabled is True
        assert ctx.qos == 1


class TestNotifiers:
    """Notifier adapters.

    Technique: Protocol Conformance.
    """

    @pytest.mark.parametrize("cls", [NullNotifier, LoggingNotifier, MockNotifier])
    def test_satisfy_protocol(self, cls: type) -> None:
        assert isinstance(cls(), DeviceNotifier)

    async def test_mock_records_in_order(self) -> None:
        notifier = MockNotifier()
        device = _device()

        await notifier.notify_created(device, {"state": "OFF"})
        await notifier.notify_state_changed("d1", "switch", {"state": "ON"})
        await notifier.notify_updated(device)
        await notifier.notify_deleted("d1", "switch")

        assert [name for name, _ in notifier.events] == [
            "created",
            "state_changed",
            "updated",
            "deleted",
        ]
        assert notifier.of("created")[0]["state"] == {"state": "OFF"}
        assert notifier.of("deleted") == [{"id": "d1", "type": "switch"}]

        notifier.reset()
        assert notifier.events == []

    async def test_logging_notifier_logs_debug(self, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level(logging.DEBUG, logger="mqttsim._notify"):
            await LoggingNotifier().notify_deleted("d1", "switch")
        assert "device:deleted d1 (switch)" in caplog.text
