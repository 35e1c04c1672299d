"""MQTT transport port and adapters.

The simulator reaches the broker only through :class:`MqttPort`.
Payloads cross the port as plain strings; :class:`~mqttsim._context.SimContext`
does the JSON encoding.

Adapters:

- :class:`MqttClient` — aiomqtt session with reconnection
- :class:`MockMqttClient` — records publishes and emulates the broker's
  retained store, for tests
- :class:`NullMqttClient` — discards everything

Two optional capabilities are split into their own protocols so the
composition root can probe for them: :class:`MqttMessageHandler`
(inbound fan-out) and :class:`MqttLifecycle` (explicit start/stop).

aiomqtt is imported inside :meth:`MqttClient._connection_loop` only, so
the in-memory adapters never need the broker library.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, NamedTuple, Protocol, runtime_checkable

from mqttsim._settings import MqttSettings

logger = logging.getLogger(__name__)

MessageCallback = Callable[[str, str], Awaitable[None]]
"""Async callback receiving ``(topic, payload)`` for each inbound message."""

ConnectCallback = Callable[[], Awaitable[None]]
"""Async callback run after every successful (re)connect."""

# ---------------------------------------------------------------------------
# Value objects
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class WillConfig:
    """Last Will registered with the broker on every connect.

    The defaults match the service status topic: a retained
    ``offline`` at QoS 1.
    """

    topic: str
    payload: str = "offline"
    qos: int = 1
    retain: bool = True


class PublishedMessage(NamedTuple):
    """One publish recorded by :class:`MockMqttClient`."""

    topic: str
    payload: str
    retain: bool
    qos: int


# ---------------------------------------------------------------------------
# Ports (Protocol)
# ---------------------------------------------------------------------------


@runtime_checkable
class MqttPort(Protocol):
    """Outbound side of the transport."""

    async def publish(
        self,
        topic: str,
        payload: str,
        *,
        retain: bool = False,
        qos: int = 1,
    ) -> None: ...

    async def subscribe(self, topic: str) -> None: ...


@runtime_checkable
class MqttMessageHandler(Protocol):
    """Transports that deliver inbound messages to callbacks."""

    def on_message(self, callback: MessageCallback) -> None: ...


@runtime_checkable
class MqttLifecycle(Protocol):
    """Transports the simulator must start and stop itself."""

    async def start(self) -> None: ...

    async def stop(self) -> None: ...


def _hidden(factory: Callable[[], Any]) -> Any:
    """Dataclass field for internal state: not an init arg, not in repr."""
    return field(default_factory=factory, init=False, repr=False)


# ---------------------------------------------------------------------------
# Null adapter
# ---------------------------------------------------------------------------


@dataclass
class NullMqttClient:
    """Transport that drops every publish and never delivers a message.

    Used for offline runs where only the store and the live-update
    notifier matter.  Reports itself as disconnected so readiness shows
    the service as degraded.
    """

    async def publish(
        self,
        topic: str,
        payload: str,  # noqa: ARG002
        *,
        retain: bool = False,  # noqa: ARG002
        qos: int = 1,  # noqa: ARG002
    ) -> None:
        logger.debug("NullMqttClient.publish(%s) discarded", topic)

    async def subscribe(self, topic: str) -> None:
        logger.debug("NullMqttClient.subscribe(%s) discarded", topic)

    def on_message(self, callback: MessageCallback) -> None:
        """Accept and ignore *callback*."""

    @property
    def is_connected(self) -> bool:
        return False


# ---------------------------------------------------------------------------
# Mock adapter
# ---------------------------------------------------------------------------


@dataclass
class MockMqttClient:
    """In-memory transport for tests.

    Every publish is appended to :attr:`published`; :attr:`retained`
    mirrors what a broker would hold after those publishes.  Inbound
    traffic is simulated with :meth:`deliver` and broker reconnects with
    :meth:`connect`.  Setting :attr:`fail_publish` makes every publish
    raise that exception instead.
    """

    published: list[PublishedMessage] = field(default_factory=list)
    subscriptions: list[str] = field(default_factory=list)
    fail_publish: Exception | None = None
    connected: bool = True
    _callbacks: list[MessageCallback] = _hidden(list)
    _connect_hooks: list[ConnectCallback] = _hidden(list)

    async def publish(
        self,
        topic: str,
        payload: str,
        *,
        retain: bool = False,
        qos: int = 1,
    ) -> None:
        if self.fail_publish is not None:
            raise self.fail_publish
        self.published.append(PublishedMessage(topic, payload, retain, qos))

    async def subscribe(self, topic: str) -> None:
        self.subscriptions.append(topic)

    @property
    def is_connected(self) -> bool:
        return self.connected

    def on_message(self, callback: MessageCallback) -> None:
        self._callbacks.append(callback)

    def on_connect(self, callback: ConnectCallback) -> None:
        self._connect_hooks.append(callback)

    # -- Simulation ---------------------------------------------------------

    async def deliver(self, topic: str, payload: str) -> None:
        """Hand an inbound message to every registered callback, in order."""
        for cb in self._callbacks:
            await cb(topic, payload)

    async def connect(self) -> None:
        """Mark the client connected and run the connect hooks."""
        self.connected = True
        for hook in self._connect_hooks:
            await hook()

    # -- Inspection ---------------------------------------------------------

    @property
    def publish_count(self) -> int:
        return len(self.published)

    @property
    def subscribe_count(self) -> int:
        return len(self.subscriptions)

    @property
    def retained(self) -> dict[str, str]:
        """Last retained payload per topic, as the broker would keep it.

        A retained empty payload deletes the topic, so removed devices
        leave nothing behind.
        """
        store: dict[str, str] = {}
        for msg in self.published:
            if not msg.retain:
                continue
            if msg.payload:
                store[msg.topic] = msg.payload
            else:
                store.pop(msg.topic, None)
        return store

    def get_messages_for(self, topic: str) -> list[tuple[str, bool, int]]:
        """Return ``(payload, retain, qos)`` for each publish to *topic*."""
        return [(m.payload, m.retain, m.qos) for m in self.published if m.topic == topic]

    def topics(self) -> list[str]:
        """Published topics in publish order, repeats included."""
        return [m.topic for m in self.published]

    def reset(self) -> None:
        """Forget recorded publishes and subscriptions.

        Callbacks and connect hooks stay registered, so components wired
        before the reset keep receiving deliveries.
        """
        self.published.clear()
        self.subscriptions.clear()


# ---------------------------------------------------------------------------
# aiomqtt adapter
# ---------------------------------------------------------------------------


@dataclass
class MqttClient:
    """Broker session backed by *aiomqtt*.

    :meth:`start` spawns a task that keeps one session open, sleeping
    ``settings.reconnect_interval`` between attempts.  Each new session
    re-subscribes every topic passed to :meth:`subscribe`, then runs the
    connect hooks, then dispatches inbound messages until it drops.
    """

    settings: MqttSettings
    will: WillConfig | None = None

    _callbacks: list[MessageCallback] = _hidden(list)
    _connect_hooks: list[ConnectCallback] = _hidden(list)
    _subscriptions: set[str] = _hidden(set)
    _connected: asyncio.Event = _hidden(asyncio.Event)
    _client: Any = field(default=None, init=False, repr=False)
    _listen_task: asyncio.Task[None] | None = field(default=None, init=False, repr=False)
    _stopping: bool = field(default=False, init=False, repr=False)
    # sessions established since construction
    connections: int = field(default=0, init=False)

    async def publish(
        self,
        topic: str,
        payload: str,
        *,
        retain: bool = False,
        qos: int = 1,
    ) -> None:
        """Publish on the current session.

        Raises:
            RuntimeError: If no session is open.
        """
        if self._client is None:
            msg = "MqttClient is not connected"
            raise RuntimeError(msg)
        await self._client.publish(topic, payload, retain=retain, qos=qos)
        logger.debug("Published to %s (qos=%d, retain=%s)", topic, qos, retain)

    async def subscribe(self, topic: str) -> None:
        """Subscribe now if connected, and again after every reconnect."""
        self._subscriptions.add(topic)
        if self._client is not None:
            await self._client.subscribe(topic, qos=self.settings.qos)

    def on_message(self, callback: MessageCallback) -> None:
        self._callbacks.append(callback)

    def on_connect(self, callback: ConnectCallback) -> None:
        self._connect_hooks.append(callback)

    # -- Lifecycle ----------------------------------------------------------

    async def start(self) -> None:
        """Spawn the connection task; a second call while running is ignored."""
        if self._listen_task is not None and not self._listen_task.done():
            logger.debug("MqttClient.start() called while already running")
            return
        self._stopping = False
        self._listen_task = asyncio.create_task(self._connection_loop())

    async def stop(self) -> None:
        """Cancel the connection task.  Safe to call repeatedly."""
        self._stopping = True
        if self._listen_task is not None:
            self._listen_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._listen_task
            self._listen_task = None
        self._client = None
        self._connected.clear()

    async def wait_connected(self, timeout: float | None = None) -> bool:
        """Wait for a session; ``False`` if *timeout* elapses first."""
        try:
            await asyncio.wait_for(self._connected.wait(), timeout)
        except TimeoutError:
            return False
        return True

    @property
    def is_connected(self) -> bool:
        return self._connected.is_set()

    # -- Session handling ---------------------------------------------------

    def _client_kwargs(self, aiomqtt: Any) -> dict[str, Any]:
        s = self.settings
        will = None
        if self.will is not None:
            will = aiomqtt.Will(
                topic=self.will.topic,
                payload=self.will.payload,
                qos=self.will.qos,
                retain=self.will.retain,
            )
        return {
            "hostname": s.host,
            "port": s.port,
            "username": s.username,
            "password": s.password.get_secret_value() if s.password is not None else None,
            "identifier": s.client_id or None,
            "will": will,
        }

    async def _connection_loop(self) -> None:
        import aiomqtt  # noqa: PLC0415

        while not self._stopping:
            try:
                async with aiomqtt.Client(**self._client_kwargs(aiomqtt)) as client:
                    await self._serve(client)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.warning(
                    "MQTT connection lost, reconnecting in %.1fs",
                    self.settings.reconnect_interval,
                    exc_info=True,
                )
                await asyncio.sleep(self.settings.reconnect_interval)

    async def _serve(self, client: Any) -> None:
        """Run one session: restore subscriptions, hooks, then dispatch."""
        self._client = client
        try:
            for topic in sorted(self._subscriptions):
                await client.subscribe(topic, qos=self.settings.qos)
            self._connected.set()
            self.connections += 1
            logger.info(
                "MQTT connected to %s:%d (session %d)",
                self.settings.host,
                self.settings.port,
                self.connections,
            )
            await self._run_connect_hooks()
            async for message in client.messages:
                await self._dispatch(message)
        finally:
            self._connected.clear()
            self._client = None

    async def _run_connect_hooks(self) -> None:
        for hook in self._connect_hooks:
            try:
                await hook()
            except Exception:
                logger.exception("Error in MQTT connect hook")

    async def _dispatch(self, message: Any) -> None:
        topic = str(message.topic)
        raw = message.payload
        if raw is None:
            logger.debug("Skipping message with None payload on %s", topic)
            return
        try:
            payload = raw.decode("utf-8") if isinstance(raw, (bytes, bytearray)) else str(raw)
        except UnicodeDecodeError:
            logger.warning("Skipping message with non-UTF-8 payload on %s", topic)
            return

        for cb in self._callbacks:
            try:
                await cb(topic, payload)
            except Exception:
                logger.exception("Error in message callback for %s", topic)
