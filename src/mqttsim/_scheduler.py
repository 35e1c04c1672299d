"""Telemetry scheduling: one cancellable timer task per device.

:class:`TelemetryScheduler` owns the ``device id → asyncio.Task``
mapping.  :meth:`~TelemetryScheduler.arm` and
:meth:`~TelemetryScheduler.disarm` are its only mutating operations, and
``arm`` always cancels an existing timer first, so a device never has
more than one timer however often it is re-armed.

Each timer loops ``sleep(interval)`` → ``on_tick(device_id)``.  A failing
tick is logged; the timer keeps running.

:func:`heartbeat_tick` is the tick callback the simulator installs: it
advances a device's passive state through its kind's ``tick`` hook.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable

from mqttsim._context import SimContext
from mqttsim._kinds import get_kind

logger = logging.getLogger(__name__)

TickCallback = Callable[[str], Awaitable[None]]
"""Async callback receiving the id of the device whose timer fired."""

SleepFunc = Callable[[float], Awaitable[None]]


class TelemetryScheduler:
    """Cancellable periodic timers keyed by device id.

    Parameters
    ----------
    on_tick:
        Coroutine function called with the device id on every tick.
    sleep:
        Awaitable delay, replaceable in tests (see
        :class:`mqttsim.testing.ManualTicker`).
    """

    def __init__(
        self,
        on_tick: TickCallback,
        *,
        sleep: SleepFunc = asyncio.sleep,
    ) -> None:
        self._on_tick = on_tick
        self._sleep = sleep
        self._timers: dict[str, asyncio.Task[None]] = {}
        self._intervals: dict[str, float] = {}

    def arm(self, device_id: str, interval: float) -> bool:
        """(Re)install the timer for *device_id*.

        Any existing timer is cancelled first.  A new one is started only
        when *interval* is positive.

        Returns:
            ``True`` when a timer is running afterwards.
        """
        self.disarm(device_id)
        if interval <= 0:
            return False
        self._timers[device_id] = asyncio.create_task(
            self._run(device_id, interval),
            name=f"telemetry:{device_id}",
        )
        self._intervals[device_id] = interval
        logger.debug("Armed telemetry for %s every %ss", device_id, interval)
        return True

    def disarm(self, device_id: str) -> bool:
        """Cancel the timer for *device_id*, if any."""
        task = self._timers.pop(device_id, None)
        self._intervals.pop(device_id, None)
        if task is None:
            return False
        task.cancel()
        logger.debug("Disarmed telemetry for %s", device_id)
        return True

    def is_armed(self, device_id: str) -> bool:
        return device_id in self._timers

    def interval(self, device_id: str) -> float | None:
        return self._intervals.get(device_id)

    @property
    def armed(self) -> list[str]:
        """Ids of devices with a running timer."""
        return list(self._timers)

    def __len__(self) -> int:
        return len(self._timers)

    async def stop(self) -> None:
        """Cancel every timer and wait for the tasks to finish."""
        tasks = list(self._timers.values())
        self._timers.clear()
        self._intervals.clear()
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task

    async def _run(self, device_id: str, interval: float) -> None:
        while True:
            await self._sleep(interval)
            try:
                await self._on_tick(device_id)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Telemetry tick failed for %s", device_id)


async def heartbeat_tick(ctx: SimContext, device_id: str) -> None:
    """Advance one device's passive state and publish it.

    Runs under the device lock.  The device is re-read after the lock is
    taken, so a tick racing a removal finds nothing and returns.  State
    is persisted only when ``tick`` changed it, but published either
    way.  When the kind's ``tick`` fails the previous state is published
    unchanged.
    """
    async with ctx.locks(device_id):
        device = await ctx.store.get(device_id)
        prev = await ctx.store.get_state(device_id)
        if device is None or prev is None:
            logger.debug("Telemetry tick for vanished device %s", device_id)
            return
        kind = get_kind(device.type)
        try:
            state = kind.tick(prev, device.capabilities)
        except Exception:
            logger.exception("Kind %s tick failed for %s", device.type, device_id)
            state = prev
        if state != prev:
            await ctx.store.set_state(device_id, state)
        await ctx.publish_state(device.type, device_id, state)
    await ctx.notify(ctx.notifier.notify_state_changed(device_id, device.type, state))
