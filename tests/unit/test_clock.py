"""Unit tests for mqttsim._clock — clock port and system adapter.

Test Techniques Used:
    - Protocol Conformance: isinstance checks for structural
      subtyping
    - Boundary Value Analysis: Monotonic ordering guarantees
"""

from __future__ import annotations

from mqttsim._clock import ClockPort, SystemClock


class TestSystemClock:
    """Tests for SystemClock production implementation.

    Technique: Specification-based Testing — verifying public
    contract.
    """

    def test_satisfies_clock_port_protocol(self) -> None:
        assert isinstance(SystemClock(), ClockPort)

    def test_now_returns_float(self) -> None:
        assert isinstance(SystemClock().now(), float)

    def test_now_is_monotonically_non_decreasing(self) -> None:
        clock = SystemClock()
        t1 = clock.now()
        t2 = clock.now()
        assert t2 >= t1

    def test_object_without_now_is_not_a_clock(self) -> None:
        assert not isinstance(object(), ClockPort)
