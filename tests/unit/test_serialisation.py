"""Tests for per-device serialisation across router, scheduler and lifecycle.

A store double parks one chosen call until the test releases it, so a
telemetry tick or a removal can be held inside its read-modify-write
while a competing operation on the same device is started.

Test Techniques Used:
    - Async Coordination: gated store calls decide the interleaving
    - State-based Testing: final stored state and publish order
    - Race Condition Testing: command vs. tick, remove vs. tick
"""

from __future__ import annotations

import asyncio
import functools
import json
from typing import Any

import pytest

from mqttsim._context import SimContext
from mqttsim._lifecycle import DeviceManager
from mqttsim._models import Device
from mqttsim._mqtt import MockMqttClient
from mqttsim._notify import MockNotifier
from mqttsim._router import CommandRouter
from mqttsim._scheduler import TelemetryScheduler, heartbeat_tick
from mqttsim._store import MemoryDeviceStore
from mqttsim.testing import ManualTicker

_STATE_TOPIC = "sim/cover/c1/state"

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class _GatedStore(MemoryDeviceStore):
    """Memory store that can hold the next call of one method."""

    def __init__(self) -> None:
        super().__init__()
        self.entered = asyncio.Event()
        self.release = asyncio.Event()
        self._gated: str | None = None

    def gate(self, method: str) -> None:
        self._gated = method

    async def _maybe_wait(self, method: str) -> None:
        if self._gated == method:
            self._gated = None
            self.entered.set()
            await self.release.wait()

    async def get(self, device_id: str) -> Device | None:
        device = await super().get(device_id)
        await self._maybe_wait("get")
        return device

    async def get_state(self, device_id: str) -> dict[str, Any] | None:
        state = await super().get_state(device_id)
        await self._maybe_wait("get_state")
        return state


async def _settle() -> None:
    for _ in range(5):
        await asyncio.sleep(0)


def _state_payloads(mqtt: MockMqttClient) -> list[str]:
    return [payload for payload, _retain, _qos in mqtt.get_messages_for(_STATE_TOPIC)]


@pytest.fixture
async def gated_store() -> _GatedStore:
    store = _GatedStore()
    await store.insert(
        Device(
            id="c1",
            type="cover",
            name="Blind",
            slug="blind",
            capabilities={"speedPerTick": 10},
        ),
        {"position": 0, "action": "OPEN", "moving": True},
    )
    return store


@pytest.fixture
def ctx(
    gated_store: _GatedStore,
    mock_mqtt: MockMqttClient,
    mock_notifier: MockNotifier,
) -> SimContext:
    return SimContext(ns="sim", mqtt=mock_mqtt, store=gated_store, notifier=mock_notifier)


@pytest.fixture
def gated_manager(ctx: SimContext, manual_ticker: ManualTicker) -> DeviceManager:
    scheduler = TelemetryScheduler(
        functools.partial(heartbeat_tick, ctx),
        sleep=manual_ticker.sleep,
    )
    return DeviceManager(ctx, scheduler)


# ---------------------------------------------------------------------------
# Command vs. tick
# ---------------------------------------------------------------------------


class TestCommandWaitsForTick:
    """A routed command never interleaves with an in-flight tick.

    Technique: Race Condition Testing with a gated ``get_state``.
    """

    async def test_command_applies_after_tick_completes(
        self,
        ctx: SimContext,
        gated_store: _GatedStore,
        mock_mqtt: MockMqttClient,
    ) -> None:
        gated_store.gate("get_state")
        tick = asyncio.create_task(heartbeat_tick(ctx, "c1"))
        await gated_store.entered.wait()

        command = asyncio.create_task(CommandRouter(ctx).send_by_id("c1", {"position": 50}))
        await _settle()

        assert not command.done()
        assert ctx.locks.locked("c1")
        assert mock_mqtt.publish_count == 0

        gated_store.release.set()
        await tick
        state = await command

        assert state == {"position": 50, "action": "STOP", "moving": False}
        assert await gated_store.get_state("c1") == state
        positions = [json.loads(p)["position"] for p in _state_payloads(mock_mqtt)]
        assert positions == [10, 50]

    async def test_routed_command_waits_too(
        self,
        ctx: SimContext,
        gated_store: _GatedStore,
        mock_mqtt: MockMqttClient,
    ) -> None:
        router = CommandRouter(ctx)
        await router.subscribe()
        gated_store.gate("get_state")
        tick = asyncio.create_task(heartbeat_tick(ctx, "c1"))
        await gated_store.entered.wait()

        delivery = asyncio.create_task(mock_mqtt.deliver("sim/cover/c1/set", '{"action": "STOP"}'))
        await _settle()
        assert not delivery.done()

        gated_store.release.set()
        await asyncio.gather(tick, delivery)

        final = json.loads(_state_payloads(mock_mqtt)[-1])
        assert final == {"position": 10, "action": "STOP", "moving": False}


# ---------------------------------------------------------------------------
# Remove vs. tick
# ---------------------------------------------------------------------------


class TestRemoveVersusTick:
    """Nothing is published for a device after its retained topics are cleared.

    Technique: Race Condition Testing with gated ``get`` / ``get_state``.
    """

    async def test_tick_queued_behind_remove_publishes_nothing(
        self,
        ctx: SimContext,
        gated_store: _GatedStore,
        gated_manager: DeviceManager,
        mock_mqtt: MockMqttClient,
        mock_notifier: MockNotifier,
    ) -> None:
        gated_store.gate("get")
        removal = asyncio.create_task(gated_manager.remove("c1"))
        await gated_store.entered.wait()

        tick = asyncio.create_task(heartbeat_tick(ctx, "c1"))
        await _settle()
        assert not tick.done()

        gated_store.release.set()
        await asyncio.gather(removal, tick)

        assert _state_payloads(mock_mqtt) == [""]
        assert not [topic for topic in mock_mqtt.retained if "/c1/" in topic]
        assert mock_notifier.of("state_changed") == []
        assert await gated_store.get("c1") is None

    async def test_remove_waits_for_inflight_tick(
        self,
        ctx: SimContext,
        gated_store: _GatedStore,
        gated_manager: DeviceManager,
        mock_mqtt: MockMqttClient,
    ) -> None:
        gated_store.gate("get_state")
        tick = asyncio.create_task(heartbeat_tick(ctx, "c1"))
        await gated_store.entered.wait()

        removal = asyncio.create_task(gated_manager.remove("c1"))
        await _settle()
        assert not removal.done()

        gated_store.release.set()
        await asyncio.gather(tick, removal)

        payloads = _state_payloads(mock_mqtt)
        assert len(payloads) == 2
        assert json.loads(payloads[0])["position"] == 10
        assert payloads[-1] == ""
        assert not [topic for topic in mock_mqtt.retained if "/c1/" in topic]
