"""Service liveness and readiness for the simulator.

Publishes the service status with LWT integration for crash detection,
and builds readiness reports for operators.

Topic layout::

    {ns}/service/status   ← "online" on every connect, "offline" at
                            shutdown or via LWT (retained)

LWT integration:

- The broker publishes ``"offline"`` to ``{ns}/service/status`` if the
  client disconnects unexpectedly (crash, network loss).
- :func:`build_will_config` creates a :class:`WillConfig` pre-configured
  for this topic, passed to :class:`~mqttsim._mqtt.MqttClient`.
- During graceful shutdown the service publishes ``"offline"`` itself.

Readiness payload schema::

    {
        "status": "ok",             # "degraded" when any check fails
        "uptime_s": 3600.0,
        "version": "0.1.0",
        "database": {"ok": true},
        "mqtt": {"ok": true},
        "devices": 4,
        "telemetry_timers": 1,
        "timestamp": "2026-01-01T00:00:00+00:00"
    }

Publication failures are logged, never propagated.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime

from mqttsim._clock import ClockPort
from mqttsim._mqtt import MqttPort, WillConfig
from mqttsim._store import DeviceStore
from mqttsim._topics import service_status_topic

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Value objects
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class HealthReport:
    """Immutable readiness snapshot."""

    uptime_s: float
    version: str
    database_ok: bool
    mqtt_ok: bool
    devices: int
    telemetry_timers: int
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def ok(self) -> bool:
        return self.database_ok and self.mqtt_ok

    def to_dict(self) -> dict[str, object]:
        return {
            "status": "ok" if self.ok else "degraded",
            "uptime_s": self.uptime_s,
            "version": self.version,
            "database": {"ok": self.database_ok},
            "mqtt": {"ok": self.mqtt_ok},
            "devices": self.devices,
            "telemetry_timers": self.telemetry_timers,
            "timestamp": self.timestamp.isoformat(),
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict())


# ---------------------------------------------------------------------------
# Convenience builder
# ---------------------------------------------------------------------------


def build_will_config(ns: str, *, qos: int = 1) -> WillConfig:
    """Create the LWT targeting ``{ns}/service/status``.

    Parameters
    ----------
    ns:
        Topic namespace (e.g. ``"sim"``).
    qos:
        QoS the broker uses when publishing the will.

    Returns
    -------
    WillConfig
        Retained ``"offline"`` will for the service status topic.
    """
    return WillConfig(
        topic=service_status_topic(ns),
        payload="offline",
        qos=qos,
        retain=True,
    )


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


@dataclass
class ServiceHealth:
    """Publishes service availability and answers readiness probes.

    Parameters
    ----------
    mqtt:
        MQTT port used for publishing.
    ns:
        Topic namespace.
    version:
        Simulator version reported in readiness payloads.
    clock:
        Monotonic clock for uptime measurement.
    qos:
        QoS for status publishes.
    """

    mqtt: MqttPort
    ns: str
    version: str
    clock: ClockPort
    qos: int = 1
    _start_time: float = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self._start_time = self.clock.now()

    @property
    def topic(self) -> str:
        return service_status_topic(self.ns)

    @property
    def uptime(self) -> float:
        return self.clock.now() - self._start_time

    async def publish_online(self) -> None:
        """Publish retained ``"online"``; installed as a connect hook."""
        await self._safe_publish(self.topic, "online")

    async def shutdown(self) -> None:
        """Publish retained ``"offline"`` before a graceful disconnect."""
        logger.info("Service shutting down, publishing offline")
        await self._safe_publish(self.topic, "offline")

    def liveness(self) -> dict[str, object]:
        return {"status": "ok", "uptime_s": self.uptime}

    async def readiness(
        self,
        store: DeviceStore,
        *,
        telemetry_timers: int = 0,
    ) -> HealthReport:
        """Check the store and the transport connection."""
        database_ok = await store.ping()
        devices = len(await store.find()) if database_ok else 0
        return HealthReport(
            uptime_s=self.uptime,
            version=self.version,
            database_ok=database_ok,
            mqtt_ok=bool(getattr(self.mqtt, "is_connected", False)),
            devices=devices,
            telemetry_timers=telemetry_timers,
        )

    async def _safe_publish(self, topic: str, payload: str) -> None:
        """Publish retained to MQTT, swallowing any exceptions."""
        try:
            await self.mqtt.publish(topic, payload, retain=True, qos=self.qos)
        except Exception:
            logger.exception("Failed to publish service status to %s", topic)
