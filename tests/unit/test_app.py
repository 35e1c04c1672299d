"""Tests for mqttsim._app — Simulator composition root.

Test Techniques Used:
    - State Transition Testing: start → started → stop lifecycle
    - Integration Testing: _run_async with injected doubles
    - Async Coordination: asyncio.Event for deterministic shutdown
    - Mock-based Isolation: MockMqttClient + FakeClock avoid real I/O
    - Spy Pattern: inspect the MqttClient built by _create_mqtt
"""

from __future__ import annotations

import asyncio
import os
import signal
from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest

from mqttsim._app import MEMORY_URL, Simulator, create_store, create_templates, package_version
from mqttsim._models import Device
from mqttsim._mqtt import MockMqttClient, MqttClient
from mqttsim._settings import MqttSettings, SimulatorSettings
from mqttsim._sqlstore import SqlDeviceStore
from mqttsim._store import MemoryDeviceStore
from mqttsim._templates import FileTemplateSource, StaticTemplateSource
from mqttsim.testing import FakeClock, ManualTicker, MockNotifier, make_settings

# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def sim() -> Simulator:
    return Simulator(name="testsim", version="1.0.0")


class _LifecycleMqtt(MockMqttClient):
    """Mock that owns a connection lifecycle, like the real client."""

    def __init__(self) -> None:
        super().__init__(connected=False)
        self.started = 0
        self.stopped = 0

    async def start(self) -> None:
        self.started += 1
        await self.connect()

    async def stop(self) -> None:
        self.stopped += 1
        self.connected = False


async def _start(
    sim: Simulator,
    mqtt: MockMqttClient,
    store: MemoryDeviceStore,
    ticker: ManualTicker,
    /,
    **settings_overrides: object,
) -> None:
    await sim.start(
        settings=make_settings(**settings_overrides),
        mqtt=mqtt,
        store=store,
        clock=FakeClock(),
        notifier=MockNotifier(),
        templates=StaticTemplateSource(),
        sleep=ticker.sleep,
    )


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------


class TestFactories:
    """Module-level builders.

    Technique: Specification-based Testing.
    """

    def test_memory_store(self) -> None:
        assert isinstance(create_store(MEMORY_URL), MemoryDeviceStore)

    def test_sql_store(self, tmp_path: Path) -> None:
        store = create_store(f"sqlite:///{tmp_path / 'sim.db'}")
        assert isinstance(store, SqlDeviceStore)
        store.dispose()

    def test_templates(self, tmp_path: Path) -> None:
        assert isinstance(create_templates(None), StaticTemplateSource)
        source = create_templates(str(tmp_path / "templates.yaml"))
        assert isinstance(source, FileTemplateSource)
        assert source.path == tmp_path / "templates.yaml"

    def test_package_version_is_string(self) -> None:
        assert isinstance(package_version(), str)
        assert package_version()


# ---------------------------------------------------------------------------
# Accessors
# ---------------------------------------------------------------------------


class TestAccessors:
    """Metadata and runtime accessors.

    Technique: State Transition Testing.
    """

    def test_metadata(self, sim: Simulator) -> None:
        assert sim.name == "testsim"
        assert sim.version == "1.0.0"
        assert sim.started is False

    def test_default_version_from_package(self) -> None:
        assert Simulator().version == package_version()

    @pytest.mark.parametrize(
        "attr",
        ["settings", "context", "manager", "router", "scheduler", "transfer", "health"],
    )
    def test_runtime_accessors_raise_before_start(self, sim: Simulator, attr: str) -> None:
        with pytest.raises(RuntimeError, match="not started"):
            getattr(sim, attr)


# ---------------------------------------------------------------------------
# Start / stop
# ---------------------------------------------------------------------------


@pytest.mark.usefixtures("_restore_root_logger")
class TestStartStop:
    """Startup wiring and graceful shutdown.

    Technique: State Transition Testing + Mock-based Isolation.
    """

    async def test_start_publishes_online_and_subscribes(
        self,
        sim: Simulator,
        mock_mqtt: MockMqttClient,
        memory_store: MemoryDeviceStore,
        manual_ticker: ManualTicker,
    ) -> None:
        await _start(sim, mock_mqtt, memory_store, manual_ticker)

        assert sim.started is True
        assert mock_mqtt.get_messages_for("sim/service/status") == [("online", True, 1)]
        assert mock_mqtt.subscriptions == ["sim/+/+/set"]
        assert sim.router.subscribed is True
        assert sim.context.service == "testsim"
        assert sim.context.version == "1.0.0"
        await sim.stop()

    async def test_namespace_from_settings(
        self,
        sim: Simulator,
        mock_mqtt: MockMqttClient,
        memory_store: MemoryDeviceStore,
        manual_ticker: ManualTicker,
    ) -> None:
        await _start(
            sim,
            mock_mqtt,
            memory_store,
            manual_ticker,
            mqtt=MqttSettings(namespace="lab"),
        )

        assert mock_mqtt.subscriptions == ["lab/+/+/set"]
        assert mock_mqtt.topics() == ["lab/service/status"]
        await sim.stop()

    async def test_stop_publishes_offline_and_is_idempotent(
        self,
        sim: Simulator,
        mock_mqtt: MockMqttClient,
        memory_store: MemoryDeviceStore,
        manual_ticker: ManualTicker,
    ) -> None:
        await _start(sim, mock_mqtt, memory_store, manual_ticker)

        await sim.stop()
        await sim.stop()

        assert sim.started is False
        assert mock_mqtt.get_messages_for("sim/service/status")[-1] == ("offline", True, 1)
        assert mock_mqtt.topics().count("sim/service/status") == 2

    async def test_double_start_raises(
        self,
        sim: Simulator,
        mock_mqtt: MockMqttClient,
        memory_store: MemoryDeviceStore,
        manual_ticker: ManualTicker,
    ) -> None:
        await _start(sim, mock_mqtt, memory_store, manual_ticker)
        with pytest.raises(RuntimeError, match="already started"):
            await _start(sim, mock_mqtt, memory_store, manual_ticker)
        await sim.stop()

    async def test_restores_telemetry_timers(
        self,
        sim: Simulator,
        mock_mqtt: MockMqttClient,
        memory_store: MemoryDeviceStore,
        manual_ticker: ManualTicker,
    ) -> None:
        await memory_store.insert(
            Device(id="t1", type="sensor.temp", name="Hall", telemetry_interval_sec=15),
            {"temperature": 21.0},
        )
        await memory_store.insert(Device(id="l1", type="light", name="Desk"), {})

        await _start(sim, mock_mqtt, memory_store, manual_ticker)

        assert sim.scheduler.armed == ["t1"]
        assert sim.scheduler.interval("t1") == 15
        await sim.stop()
        assert sim.started is False

    async def test_lifecycle_transport_started_and_stopped(
        self,
        sim: Simulator,
        memory_store: MemoryDeviceStore,
        manual_ticker: ManualTicker,
    ) -> None:
        mqtt = _LifecycleMqtt()

        await _start(sim, mqtt, memory_store, manual_ticker)
        assert mqtt.started == 1
        assert mqtt.get_messages_for("sim/service/status") == [("online", True, 1)]

        await mqtt.connect()
        assert mqtt.get_messages_for("sim/service/status")[-1] == ("online", True, 1)
        assert len(mqtt.get_messages_for("sim/service/status")) == 2

        await sim.stop()
        assert mqtt.stopped == 1

    async def test_sql_store_from_settings(
        self,
        sim: Simulator,
        mock_mqtt: MockMqttClient,
        tmp_path: Path,
    ) -> None:
        url = f"sqlite:///{tmp_path / 'sim.db'}"
        await sim.start(
            settings=make_settings(simulator=SimulatorSettings(database_url=url)),
            mqtt=mock_mqtt,
            clock=FakeClock(),
        )

        result = await sim.manager.create_device("switch", "Plug", slug="plug")
        device = await sim.context.store.get(result.id)
        assert device is not None
        assert isinstance(sim.context.store, SqlDeviceStore)
        await sim.stop()
        assert (tmp_path / "sim.db").exists()


# ---------------------------------------------------------------------------
# _run_async / run
# ---------------------------------------------------------------------------


@pytest.mark.usefixtures("_restore_root_logger")
class TestRunAsync:
    """Blocking lifecycle with injected shutdown.

    Technique: Async Coordination.
    """

    async def test_returns_after_shutdown_event(
        self,
        sim: Simulator,
        mock_mqtt: MockMqttClient,
        memory_store: MemoryDeviceStore,
    ) -> None:
        shutdown = asyncio.Event()
        shutdown.set()

        await asyncio.wait_for(
            sim._run_async(
                settings=make_settings(),
                mqtt=mock_mqtt,
                store=memory_store,
                shutdown_event=shutdown,
                clock=FakeClock(),
            ),
            timeout=5.0,
        )

        assert sim.started is False
        assert [p for p, _, _ in mock_mqtt.get_messages_for("sim/service/status")] == [
            "online",
            "offline",
        ]

    async def test_serves_commands_until_shutdown(
        self,
        sim: Simulator,
        mock_mqtt: MockMqttClient,
        memory_store: MemoryDeviceStore,
    ) -> None:
        shutdown = asyncio.Event()
        task = asyncio.create_task(
            sim._run_async(
                settings=make_settings(),
                mqtt=mock_mqtt,
                store=memory_store,
                shutdown_event=shutdown,
                clock=FakeClock(),
            ),
        )
        while not sim.started:
            await asyncio.sleep(0)

        result = await sim.manager.create_device("switch", "Plug")
        await mock_mqtt.deliver(f"sim/switch/{result.id}/set", '{"state": "ON"}')
        assert await memory_store.get_state(result.id) == {"state": "ON"}

        shutdown.set()
        await asyncio.wait_for(task, timeout=5.0)
        assert sim.started is False

    async def test_signal_handler_sets_event(self) -> None:
        event = Simulator._install_signal_handlers(None)
        loop = asyncio.get_running_loop()
        try:
            os.kill(os.getpid(), signal.SIGTERM)
            await asyncio.wait_for(event.wait(), timeout=5.0)
        finally:
            loop.remove_signal_handler(signal.SIGTERM)
            loop.remove_signal_handler(signal.SIGINT)
        assert event.is_set()

    def test_injected_event_returned_as_is(self) -> None:
        event = asyncio.Event()
        assert Simulator._install_signal_handlers(event) is event

    def test_run_suppresses_keyboard_interrupt(self, sim: Simulator) -> None:
        with patch.object(sim, "_run_async", new_callable=AsyncMock) as mock_run:
            mock_run.side_effect = KeyboardInterrupt
            sim.run()
        mock_run.assert_awaited_once()

    def test_run_forwards_injections(self, sim: Simulator) -> None:
        settings = make_settings()
        mqtt = MockMqttClient()
        with patch.object(sim, "_run_async", new_callable=AsyncMock) as mock_run:
            sim.run(settings=settings, mqtt=mqtt)
        mock_run.assert_awaited_once_with(settings=settings, mqtt=mqtt, store=None)


# ---------------------------------------------------------------------------
# _create_mqtt
# ---------------------------------------------------------------------------


class TestCreateMqtt:
    """Transport construction.

    Technique: Spy Pattern.
    """

    def test_injected_client_returned(self, sim: Simulator, mock_mqtt: MockMqttClient) -> None:
        assert sim._create_mqtt(mock_mqtt, make_settings()) is mock_mqtt

    def test_client_id_auto_generated_when_empty(self, sim: Simulator) -> None:
        settings = make_settings()
        assert settings.mqtt.client_id == ""

        client = sim._create_mqtt(None, settings)

        assert isinstance(client, MqttClient)
        cid = client.settings.client_id
        assert cid.startswith("testsim-")
        assert len(cid) == len("testsim-") + 8
        assert settings.mqtt.client_id == ""

    def test_client_id_preserved_when_configured(self, sim: Simulator) -> None:
        settings = make_settings(mqtt=MqttSettings(client_id="my-custom-id"))
        client = sim._create_mqtt(None, settings)
        assert isinstance(client, MqttClient)
        assert client.settings.client_id == "my-custom-id"

    def test_will_targets_service_status(self, sim: Simulator) -> None:
        settings = make_settings(mqtt=MqttSettings(namespace="lab", qos=0))
        client = sim._create_mqtt(None, settings)
        assert isinstance(client, MqttClient)
        assert client.will is not None
        assert client.will.topic == "lab/service/status"
        assert client.will.payload == "offline"
        assert client.will.qos == 0
