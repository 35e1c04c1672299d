"""Public test-support utilities for mqttsim.

Re-exports test doubles and factories so test suites can import
everything from ``mqttsim.testing`` instead of private modules.

Provided symbols:

- :class:`SimHarness` — Simulator wired to the doubles below.
- :class:`MockMqttClient` — in-memory MQTT double that records calls.
- :class:`NullMqttClient` — silent no-op MQTT adapter.
- :class:`MockNotifier` — notifier recording live-update events.
- :class:`MemoryDeviceStore` — dict-backed device store.
- :class:`ManualTicker` — scheduler sleep released on demand.
- :class:`FakeClock` — deterministic monotonic clock.
- :func:`make_settings` — ``Settings`` without ``.env`` or environment.
"""

from mqttsim._mqtt import MockMqttClient, NullMqttClient
from mqttsim._notify import MockNotifier
from mqttsim._store import MemoryDeviceStore
from mqttsim.testing._clock import FakeClock, ManualTicker
from mqttsim.testing._harness import SimHarness
from mqttsim.testing._settings import make_settings

__all__ = [
    "FakeClock",
    "ManualTicker",
    "MemoryDeviceStore",
    "MockMqttClient",
    "MockNotifier",
    "NullMqttClient",
    "SimHarness",
    "make_settings",
]
