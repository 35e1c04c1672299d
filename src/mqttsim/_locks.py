"""Per-device mutual exclusion.

Commands, telemetry ticks and lifecycle mutations for the *same* device
must never interleave their read-modify-write of the device's state.
:class:`DeviceLocks` hands out one :class:`asyncio.Lock` per device id
and drops it again once nobody holds or waits for it, so the map does
not grow with deleted devices.

Usage::

    async with locks(device_id):
        state = await store.get_state(device_id)
        ...
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager


class DeviceLocks:
    """Registry of reference-counted per-device locks."""

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    def locked(self, device_id: str) -> bool:
        lock = self._locks.get(device_id)
        return lock is not None and lock.locked()

    @asynccontextmanager
    async def __call__(self, device_id: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(device_id, asyncio.Lock())
        self._users[device_id] = self._users.get(device_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[device_id] -= 1
            if self._users[device_id] == 0:
                del self._users[device_id]
                del self._locks[device_id]
