"""Shared engine context for the router, scheduler and lifecycle code.

:class:`SimContext` bundles the collaborators every engine component
needs (namespace, transport, store, notifier, per-device locks) and
the fire-and-forget publishing helpers built on top of them.

Publication behaviour:

- Structured payloads are JSON-encoded here; the transport only sees
  strings.
- Every publish uses the configured QoS.
- Transport failures are logged and swallowed.  The core never learns
  whether a publish reached the broker.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Awaitable, Mapping
from dataclasses import dataclass, field
from typing import Any

from mqttsim._locks import DeviceLocks
from mqttsim._mqtt import MqttPort
from mqttsim._notify import DeviceNotifier, NullNotifier
from mqttsim._store import DeviceStore
from mqttsim._topics import state_topic

logger = logging.getLogger(__name__)


def encode_payload(payload: str | Mapping[str, Any]) -> str:
    """Return *payload* as a transport string (JSON for mappings)."""
    if isinstance(payload, str):
        return payload
    return json.dumps(payload, default=str)


@dataclass
class SimContext:
    """Collaborators and publishing helpers shared across the engine.

    Parameters
    ----------
    ns:
        Topic namespace (e.g. ``"sim"``).
    mqtt:
        Transport used for every publish.
    store:
        Device and state persistence.
    notifier:
        Live-update fan-out.  Defaults to :class:`NullNotifier`.
    qos:
        QoS applied to all publishes.
    discovery_enabled:
        Whether retained discovery payloads are published.
    service:
        Simulator name embedded in discovery metadata.
    version:
        Simulator version embedded in discovery metadata.
    """

    ns: str
    mqtt: MqttPort
    store: DeviceStore
    notifier: DeviceNotifier = field(default_factory=NullNotifier)
    locks: DeviceLocks = field(default_factory=DeviceLocks)
    qos: int = 1
    discovery_enabled: bool = True
    service: str = "mqttsim"
    version: str = "0.0.0"

    async def publish(
        self,
        topic: str,
        payload: str | Mapping[str, Any],
        *,
        retain: bool = False,
    ) -> None:
        """Publish to MQTT, swallowing any exceptions."""
        try:
            await self.mqtt.publish(
                topic,
                encode_payload(payload),
                retain=retain,
                qos=self.qos,
            )
        except Exception:
            logger.exception("Failed to publish to %s", topic)

    async def publish_state(
        self,
        type_id: str,
        device_id: str,
        state: Mapping[str, Any],
    ) -> None:
        """Publish *state* retained on the device's state topic."""
        await self.publish(state_topic(self.ns, type_id, device_id), state, retain=True)

    async def notify(self, delivery: Awaitable[None]) -> None:
        """Await a notifier call, logging instead of raising on failure.

        Usage::

            await ctx.notify(ctx.notifier.notify_updated(device))
        """
        try:
            await delivery
        except Exception:
            logger.exception("Live-update notification failed")
