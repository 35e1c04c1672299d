"""Live-update notifier port and adapters.

The core announces device lifecycle and state changes to an external
push channel (e.g. a websocket gateway feeding a control UI) through
:class:`DeviceNotifier`.  Delivery is best-effort: the core never waits
on it and never fails because of it.

Adapters:

- :class:`NullNotifier` — discards everything
- :class:`LoggingNotifier` — logs every event at DEBUG level
- :class:`MockNotifier` — records events for assertions
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from mqttsim._models import Device

logger = logging.getLogger(__name__)


@runtime_checkable
class DeviceNotifier(Protocol):
    """Port contract for live-update fan-out."""

    async def notify_created(self, device: Device, state: dict[str, Any]) -> None: ...

    async def notify_updated(self, device: Device) -> None: ...

    async def notify_deleted(self, device_id: str, type_id: str) -> None: ...

    async def notify_state_changed(
        self,
        device_id: str,
        type_id: str,
        state: dict[str, Any],
    ) -> None: ...


class NullNotifier:
    """Silent no-op notifier."""

    async def notify_created(self, device: Device, state: dict[str, Any]) -> None:
        pass

    async def notify_updated(self, device: Device) -> None:
        pass

    async def notify_deleted(self, device_id: str, type_id: str) -> None:
        pass

    async def notify_state_changed(
        self,
        device_id: str,
        type_id: str,
        state: dict[str, Any],
    ) -> None:
        pass


class LoggingNotifier:
    """Notifier that only logs (useful when no UI is attached)."""

    async def notify_created(self, device: Device, state: dict[str, Any]) -> None:
        logger.debug("device:created %s (%s)", device.id, device.type)

    async def notify_updated(self, device: Device) -> None:
        logger.debug("device:updated %s (%s)", device.id, device.type)

    async def notify_deleted(self, device_id: str, type_id: str) -> None:
        logger.debug("device:deleted %s (%s)", device_id, type_id)

    async def notify_state_changed(
        self,
        device_id: str,
        type_id: str,
        state: dict[str, Any],
    ) -> None:
        logger.debug("device:state:changed %s (%s): %s", device_id, type_id, state)


@dataclass
class MockNotifier:
    """Test double recording ``(event, payload)`` tuples in order."""

    events: list[tuple[str, dict[str, Any]]] = field(default_factory=list)

    async def notify_created(self, device: Device, state: dict[str, Any]) -> None:
        self.events.append(("created", {**device.to_dict(), "state": state}))

    async def notify_updated(self, device: Device) -> None:
        self.events.append(("updated", device.to_dict()))

    async def notify_deleted(self, device_id: str, type_id: str) -> None:
        self.events.append(("deleted", {"id": device_id, "type": type_id}))

    async def notify_state_changed(
        self,
        device_id: str,
        type_id: str,
        state: dict[str, Any],
    ) -> None:
        self.events.append(
            ("state_changed", {"id": device_id, "type": type_id, "state": state}),
        )

    def of(self, event: str) -> list[dict[str, Any]]:
        """Return payloads recorded for *event*."""
        return [payload for name, payload in self.events if name == event]

    def reset(self) -> None:
        self.events.clear()
