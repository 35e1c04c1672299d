"""Discovery payloads: retained, self-describing device announcements.

Published retained on ``{ns}/discovery/{type}/{id}`` so that a consumer
subscribing to ``{ns}/discovery/#`` can configure every device from the
broker alone.  Payload schema::

    {
        "id": "9f0c…",
        "type": "light",
        "name": "Kitchen",
        "slug": "kitchen",
        "templateId": null,
        "capabilities": {"brightness": true, …},
        "topics": {"cmd": …, "state": …, "status": …},
        "createdAt": "2026-01-01T00:00:00+00:00",
        "meta": {"simulator": "mqttsim", "version": "0.1.0"}
    }

An empty retained payload on the same topic retracts the announcement.
"""

from __future__ import annotations

from dataclasses import dataclass

from mqttsim._models import Device
from mqttsim._topics import device_topics


@dataclass(frozen=True, slots=True)
class DiscoveryMeta:
    """Simulator identification embedded in every discovery payload."""

    simulator: str = "mqttsim"
    version: str = "0.0.0"

    def to_dict(self) -> dict[str, str]:
        return {"simulator": self.simulator, "version": self.version}


def build_discovery_payload(
    ns: str,
    device: Device,
    meta: DiscoveryMeta | None = None,
) -> dict[str, object]:
    """Build the discovery payload for *device*."""
    topics = device_topics(ns, device.type, device.id)
    return {
        "id": device.id,
        "type": device.type,
        "name": device.name,
        "slug": device.slug,
        "templateId": device.template_id,
        "capabilities": dict(device.capabilities),
        "topics": topics.as_dict(discovery=False),
        "createdAt": device.created_at.isoformat(),
        "meta": (meta or DiscoveryMeta()).to_dict(),
    }
