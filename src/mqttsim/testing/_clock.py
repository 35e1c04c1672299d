"""Deterministic clocks for tests: a fake monotonic clock and a manual ticker."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field


@dataclass
class FakeClock:
    """:class:`~mqttsim._clock.ClockPort` double returning a settable time.

    Example::

        clock = FakeClock(42.0)
        clock.advance(8)
        assert clock.now() == 50.0
    """

    _time: float = 0.0

    def now(self) -> float:
        return self._time

    def advance(self, seconds: float) -> None:
        self._time += seconds


@dataclass
class ManualTicker:
    """Replacement for ``asyncio.sleep`` in the telemetry scheduler.

    Every ``sleep(interval)`` call parks on a future until :meth:`fire`
    releases it, so tests decide exactly when timers elapse.  The
    requested intervals are recorded in :attr:`requests`.

    Usage::

        ticker = ManualTicker()
        scheduler = TelemetryScheduler(on_tick, sleep=ticker.sleep)
        scheduler.arm("dev1", 5)
        await ticker.fire()      # one tick for every parked timer
    """

    requests: list[float] = field(default_factory=list)
    _waiters: list[asyncio.Future[None]] = field(default_factory=list, repr=False)

    async def sleep(self, interval: float) -> None:
        self.requests.append(interval)
        waiter = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)
        try:
            await waiter
        finally:
            if waiter in self._waiters:
                self._waiters.remove(waiter)

    @property
    def pending(self) -> int:
        """Number of timers currently parked in :meth:`sleep`."""
        return sum(1 for w in self._waiters if not w.done())

    async def settle(self) -> None:
        """Yield to the loop until pending timer tasks have had a chance to run."""
        for _ in range(10):
            await asyncio.sleep(0)

    async def fire(self, times: int = 1) -> None:
        """Release every parked sleeper, *times* rounds in a row."""
        for _ in range(times):
            await self.settle()
            waiters, self._waiters = self._waiters, []
            for waiter in waiters:
                if not waiter.done():
                    waiter.set_result(None)
            await self.settle()
