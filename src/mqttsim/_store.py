"""Device store port and in-memory adapter.

The core treats persistence as an external collaborator reached
through :class:`DeviceStore`.  Two guarantees matter to the core's
correctness and every adapter must honour them:

- ``insert(device, state)`` is **atomic**: the device and its initial
  state are both written or neither is.
- ``(type, slug)`` is **unique** when ``slug`` is set; a colliding
  insert raises :class:`UniqueViolation` and writes nothing.

``delete`` cascades to the device's state.

Adapters:

- :class:`MemoryDeviceStore` — dict-backed, for tests and ephemeral runs
- :class:`~mqttsim._sqlstore.SqlDeviceStore` — SQLModel/SQLAlchemy
"""

from __future__ import annotations

import copy
import dataclasses
from typing import Any, Protocol, runtime_checkable

from mqttsim._models import Device


class UniqueViolation(Exception):
    """Raised by a store when ``(type, slug)`` already exists."""

    def __init__(self, type_id: str, slug: str | None) -> None:
        super().__init__(f"Device with type={type_id!r} slug={slug!r} already exists")
        self.type_id = type_id
        self.slug = slug


# ---------------------------------------------------------------------------
# Port (Protocol)
# ---------------------------------------------------------------------------


@runtime_checkable
class DeviceStore(Protocol):
    """Port contract for durable device and state records."""

    async def find(
        self,
        *,
        type_id: str | None = None,
        slug: str | None = None,
    ) -> list[Device]: ...

    async def get(self, device_id: str) -> Device | None: ...

    async def get_by_slug(self, type_id: str, slug: str) -> Device | None: ...

    async def insert(self, device: Device, state: dict[str, Any]) -> None: ...

    async def save(self, device: Device) -> None: ...

    async def delete(self, device_id: str) -> bool: ...

    async def get_state(self, device_id: str) -> dict[str, Any] | None: ...

    async def set_state(self, device_id: str, data: dict[str, Any]) -> None: ...

    async def ping(self) -> bool:
        """Return ``True`` when the backing storage answers."""
        ...


# ---------------------------------------------------------------------------
# In-memory adapter
# ---------------------------------------------------------------------------


def _copy_device(device: Device) -> Device:
    return dataclasses.replace(device, capabilities=copy.deepcopy(device.capabilities))


class MemoryDeviceStore:
    """Dict-backed :class:`DeviceStore`.

    Records are copied on the way in and out so callers can never
    mutate stored rows behind the store's back.  Insertion order is
    preserved for ``find``.
    """

    def __init__(self) -> None:
        self._devices: dict[str, Device] = {}
        self._states: dict[str, dict[str, Any]] = {}

    def __len__(self) -> int:
        return len(self._devices)

    async def find(
        self,
        *,
        type_id: str | None = None,
        slug: str | None = None,
    ) -> list[Device]:
        return [
            _copy_device(d)
            for d in self._devices.values()
            if (type_id is None or d.type == type_id)
            and (slug is None or d.slug == slug)
        ]

    async def get(self, device_id: str) -> Device | None:
        device = self._devices.get(device_id)
        return _copy_device(device) if device is not None else None

    async def get_by_slug(self, type_id: str, slug: str) -> Device | None:
        for device in self._devices.values():
            if device.type == type_id and device.slug == slug:
                return _copy_device(device)
        return None

    async def insert(self, device: Device, state: dict[str, Any]) -> None:
        if device.id in self._devices:
            msg = f"Device {device.id!r} already exists"
            raise ValueError(msg)
        if device.slug is not None and any(
            d.key == device.key for d in self._devices.values()
        ):
            raise UniqueViolation(device.type, device.slug)
        self._devices[device.id] = _copy_device(device)
        self._states[device.id] = copy.deepcopy(state)

    async def save(self, device: Device) -> None:
        if device.id not in self._devices:
            msg = f"Device {device.id!r} does not exist"
            raise KeyError(msg)
        self._devices[device.id] = _copy_device(device)

    async def delete(self, device_id: str) -> bool:
        self._states.pop(device_id, None)
        return self._devices.pop(device_id, None) is not None

    async def get_state(self, device_id: str) -> dict[str, Any] | None:
        state = self._states.get(device_id)
        return copy.deepcopy(state) if state is not None else None

    async def set_state(self, device_id: str, data: dict[str, Any]) -> None:
        if device_id not in self._devices:
            msg = f"Device {device_id!r} does not exist"
            raise KeyError(msg)
        self._states[device_id] = copy.deepcopy(data)

    async def ping(self) -> bool:
        return True
