"""Monotonic clock port and system adapter.

Service uptime in health reports is measured with a :class:`ClockPort`
so tests can substitute :class:`mqttsim.testing.FakeClock`.  Only
differences between two ``now()`` calls are meaningful.
"""

from __future__ import annotations

import time
from typing import Protocol, runtime_checkable


@runtime_checkable
class ClockPort(Protocol):
    """Monotonic time source, in seconds from an arbitrary epoch."""

    def now(self) -> float: ...


class SystemClock:
    """Production clock wrapping ``time.monotonic()``."""

    def now(self) -> float:
        return time.monotonic()
