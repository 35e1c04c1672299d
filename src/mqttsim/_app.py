"""Simulator composition root and async lifecycle.

:class:`Simulator` wires every engine component (transport, store,
templates, notifier, scheduler, router, lifecycle manager, transfer,
health) from :class:`~mqttsim._settings.Settings` and runs the service
until a shutdown signal arrives.

Typical usage::

    from mqttsim import Simulator

    sim = Simulator()
    sim.run()                      # blocks until SIGTERM / SIGINT

Embedding and tests drive the lifecycle directly::

    sim = Simulator()
    await sim.start(mqtt=MockMqttClient(), store=MemoryDeviceStore())
    result = await sim.manager.create_device("light", "Kitchen")
    await sim.stop()
"""

from __future__ import annotations

import asyncio
import contextlib
import functools
import logging
import signal
import uuid
from dataclasses import dataclass
from importlib.metadata import PackageNotFoundError, version

from mqttsim._clock import ClockPort, SystemClock
from mqttsim._context import SimContext
from mqttsim._health import ServiceHealth, build_will_config
from mqttsim._lifecycle import DeviceManager
from mqttsim._logging import configure_logging
from mqttsim._mqtt import MqttClient, MqttLifecycle, MqttPort
from mqttsim._notify import DeviceNotifier, LoggingNotifier
from mqttsim._router import CommandRouter
from mqttsim._scheduler import SleepFunc, TelemetryScheduler, heartbeat_tick
from mqttsim._settings import Settings
from mqttsim._sqlstore import SqlDeviceStore
from mqttsim._store import DeviceStore, MemoryDeviceStore
from mqttsim._templates import FileTemplateSource, StaticTemplateSource, TemplateSource
from mqttsim._transfer import DeviceTransfer

logger = logging.getLogger(__name__)

MEMORY_URL = "memory://"


def package_version() -> str:
    """Installed distribution version, or a placeholder for source trees."""
    try:
        return version("mqttsim")
    except PackageNotFoundError:
        return "0.0.0+unknown"


def create_store(url: str) -> DeviceStore:
    """Build the store selected by *url* (``memory://`` or a SQLAlchemy URL)."""
    if url == MEMORY_URL:
        return MemoryDeviceStore()
    return SqlDeviceStore(url)


def create_templates(path: str | None) -> TemplateSource:
    if path:
        return FileTemplateSource(path)
    return StaticTemplateSource()


# ---------------------------------------------------------------------------
# Runtime bundle
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class _Runtime:
    """Components built by :meth:`Simulator.start`."""

    settings: Settings
    ctx: SimContext
    scheduler: TelemetryScheduler
    router: CommandRouter
    manager: DeviceManager
    transfer: DeviceTransfer
    health: ServiceHealth


# ---------------------------------------------------------------------------
# Simulator
# ---------------------------------------------------------------------------


class Simulator:
    """Composition root and service lifecycle.

    Args:
        name: Service name, used in logs, discovery metadata and the
            generated MQTT client id.
        version: Service version.  Defaults to the installed version.
        description: Short description for CLI help text.
        settings_class: Settings class instantiated at startup.
    """

    def __init__(
        self,
        name: str = "mqttsim",
        version: str | None = None,
        *,
        description: str = "MQTT smart-home device simulator",
        settings_class: type[Settings] = Settings,
    ) -> None:
        self._name = name
        self._version = version if version is not None else package_version()
        self._description = description
        self._settings_class = settings_class
        self._runtime: _Runtime | None = None
        self._mqtt: MqttPort | None = None
        self._store: DeviceStore | None = None

    # --- Accessors ---------------------------------------------------------

    @property
    def name(self) -> str:
        return self._name

    @property
    def version(self) -> str:
        return self._version

    @property
    def started(self) -> bool:
        return self._runtime is not None

    def _require_runtime(self) -> _Runtime:
        if self._runtime is None:
            msg = "Simulator is not started"
            raise RuntimeError(msg)
        return self._runtime

    @property
    def settings(self) -> Settings:
        return self._require_runtime().settings

    @property
    def context(self) -> SimContext:
        return self._require_runtime().ctx

    @property
    def manager(self) -> DeviceManager:
        return self._require_runtime().manager

    @property
    def router(self) -> CommandRouter:
        return self._require_runtime().router

    @property
    def scheduler(self) -> TelemetryScheduler:
        return self._require_runtime().scheduler

    @property
    def transfer(self) -> DeviceTransfer:
        return self._require_runtime().transfer

    @property
    def health(self) -> ServiceHealth:
        return self._require_runtime().health

    # --- Lifecycle ---------------------------------------------------------

    def run(
        self,
        *,
        settings: Settings | None = None,
        mqtt: MqttPort | None = None,
        store: DeviceStore | None = None,
    ) -> None:
        """Start the simulator (blocking, synchronous entrypoint).

        Wraps :meth:`_run_async` in :func:`asyncio.run`, handling
        ``KeyboardInterrupt`` for clean Ctrl-C shutdown.
        """
        with contextlib.suppress(KeyboardInterrupt):
            asyncio.run(self._run_async(settings=settings, mqtt=mqtt, store=store))

    def cli(self) -> None:
        """Start the simulator with CLI argument parsing."""
        from mqttsim._cli import build_cli  # noqa: PLC0415

        cli = build_cli(self)
        cli(standalone_mode=True)

    async def _run_async(
        self,
        *,
        settings: Settings | None = None,
        mqtt: MqttPort | None = None,
        store: DeviceStore | None = None,
        shutdown_event: asyncio.Event | None = None,
        clock: ClockPort | None = None,
        notifier: DeviceNotifier | None = None,
        templates: TemplateSource | None = None,
        sleep: SleepFunc | None = None,
    ) -> None:
        """Start, block until shutdown, tear down.

        Parameters are provided for testability; inject doubles and a
        manual :class:`asyncio.Event` to avoid real I/O and signals.
        """
        shutdown_event = self._install_signal_handlers(shutdown_event)
        await self.start(
            settings=settings,
            mqtt=mqtt,
            store=store,
            clock=clock,
            notifier=notifier,
            templates=templates,
            sleep=sleep,
        )
        try:
            await shutdown_event.wait()
        finally:
            await self.stop()

    async def start(
        self,
        *,
        settings: Settings | None = None,
        mqtt: MqttPort | None = None,
        store: DeviceStore | None = None,
        clock: ClockPort | None = None,
        notifier: DeviceNotifier | None = None,
        templates: TemplateSource | None = None,
        sleep: SleepFunc | None = None,
    ) -> None:
        """Build components, connect, subscribe and restore timers.

        Orchestration order:

        1. Bootstrap infrastructure (settings, logging, store, MQTT).
        2. Wire the engine components.
        3. Start the transport, subscribe to commands, restore telemetry.

        Raises:
            RuntimeError: If already started.
        """
        if self._runtime is not None:
            msg = "Simulator is already started"
            raise RuntimeError(msg)

        # --- Phase 1: Bootstrap infrastructure ---
        resolved = settings if settings is not None else self._settings_class()
        configure_logging(resolved.logging, service=self._name, version=self._version)
        logger.info("Starting %s v%s", self._name, self._version)

        resolved_store = store if store is not None else create_store(
            resolved.simulator.database_url,
        )
        if isinstance(resolved_store, SqlDeviceStore):
            await asyncio.to_thread(resolved_store.init)
        resolved_mqtt = self._create_mqtt(mqtt, resolved)
        self._store = resolved_store
        self._mqtt = resolved_mqtt

        # --- Phase 2: Wire components ---
        ctx = SimContext(
            ns=resolved.mqtt.namespace,
            mqtt=resolved_mqtt,
            store=resolved_store,
            notifier=notifier if notifier is not None else LoggingNotifier(),
            qos=resolved.mqtt.qos,
            discovery_enabled=resolved.simulator.discovery_enabled,
            service=self._name,
            version=self._version,
        )
        scheduler = TelemetryScheduler(
            functools.partial(heartbeat_tick, ctx),
            sleep=sleep if sleep is not None else asyncio.sleep,
        )
        manager = DeviceManager(
            ctx,
            scheduler,
            templates if templates is not None else create_templates(
                resolved.simulator.templates_path,
            ),
        )
        health = ServiceHealth(
            mqtt=resolved_mqtt,
            ns=ctx.ns,
            version=self._version,
            clock=clock if clock is not None else SystemClock(),
            qos=ctx.qos,
        )
        self._runtime = _Runtime(
            settings=resolved,
            ctx=ctx,
            scheduler=scheduler,
            router=CommandRouter(ctx),
            manager=manager,
            transfer=DeviceTransfer(ctx, manager),
            health=health,
        )

        # --- Phase 3: Connect ---
        on_connect = getattr(resolved_mqtt, "on_connect", None)
        if on_connect is not None:
            on_connect(health.publish_online)
        if isinstance(resolved_mqtt, MqttLifecycle):
            await resolved_mqtt.start()
        else:
            await health.publish_online()

        await self._runtime.router.subscribe()
        await manager.restore_telemetry()
        logger.info("Simulator started (namespace=%s)", ctx.ns)

    async def stop(self) -> None:
        """Cancel timers, publish offline, disconnect.  Idempotent."""
        runtime = self._runtime
        if runtime is None:
            return
        self._runtime = None
        await runtime.scheduler.stop()
        await runtime.health.shutdown()
        if isinstance(self._mqtt, MqttLifecycle):
            await self._mqtt.stop()
        if isinstance(self._store, SqlDeviceStore):
            self._store.dispose()
        logger.info("Shutdown complete")

    # --- helpers -----------------------------------------------------------

    def _create_mqtt(self, mqtt: MqttPort | None, settings: Settings) -> MqttPort:
        """Create the MQTT client, or return the injected one.

        When no explicit ``client_id`` is configured, generates one from
        the service name and a short random suffix.
        """
        if mqtt is not None:
            return mqtt
        mqtt_settings = settings.mqtt
        if not mqtt_settings.client_id:
            mqtt_settings = mqtt_settings.model_copy(
                update={"client_id": f"{self._name}-{uuid.uuid4().hex[:8]}"},
            )
        will = build_will_config(mqtt_settings.namespace, qos=mqtt_settings.qos)
        return MqttClient(settings=mqtt_settings, will=will)

    @staticmethod
    def _install_signal_handlers(
        shutdown_event: asyncio.Event | None,
    ) -> asyncio.Event:
        """Install SIGTERM/SIGINT handlers. Returns the shutdown event."""
        if shutdown_event is not None:
            return shutdown_event
        event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, event.set)
        return event
