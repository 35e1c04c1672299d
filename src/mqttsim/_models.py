"""Device record shared by the store, router and lifecycle code."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any


def new_device_id() -> str:
    """Generate an opaque, unique device id."""
    return uuid.uuid4().hex


def utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(slots=True)
class Device:
    """Identity and configuration of one simulated device.

    ``id``, ``type`` and ``slug`` are fixed at creation; the remaining
    fields are mutable through the lifecycle manager.  The simulated
    runtime state lives separately in the store, keyed by ``id``.
    """

    id: str
    type: str
    name: str
    slug: str | None = None
    capabilities: dict[str, Any] = field(default_factory=dict)
    template_id: str | None = None
    telemetry_interval_sec: int = 0
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def key(self) -> tuple[str, str] | None:
        """``(type, slug)`` uniqueness key, or ``None`` without a slug."""
        if self.slug is None:
            return None
        return (self.type, self.slug)

    def to_dict(self) -> dict[str, object]:
        """Serialise to the JSON field names used on the wire."""
        return {
            "id": self.id,
            "type": self.type,
            "name": self.name,
            "slug": self.slug,
            "templateId": self.template_id,
            "capabilities": dict(self.capabilities),
            "telemetryIntervalSec": self.telemetry_interval_sec,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
        }
