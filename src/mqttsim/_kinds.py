"""Device kinds: the polymorphic per-type behaviour contract and registry.

A *kind* defines everything type-specific about a simulated device:

- ``capabilities()`` — default capability values (e.g. ``brightness``)
- ``default_state(caps)`` — initial simulated state
- ``validate(cmd, caps)`` — reject malformed or unsupported commands
- ``reduce(prev, cmd, caps)`` — pure state transition for a command
- ``tick(prev, caps)`` — passive drift per telemetry tick (identity
  by default)

Kinds form a closed set dispatched through a static registry keyed by
type id.  Adding a kind means adding one class and one registry entry;
the router and lifecycle code never branch on the type.

``reduce`` and ``tick`` never mutate their input: they return a fresh
mapping and replace (never edit) nested mappings such as ``color``.
Unknown command fields are ignored.
"""

from __future__ import annotations

import math
import random
from collections.abc import Mapping
from typing import Any, ClassVar, Protocol, runtime_checkable

from mqttsim._errors import UnsupportedType, ValidationFailed

State = dict[str, Any]
"""Free-form simulated state whose shape the owning kind defines."""

Capabilities = Mapping[str, Any]

_ON_OFF = ("ON", "OFF")

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _is_number(value: object) -> bool:
    """Finite int or float; booleans, NaN and infinities are not numbers."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return not isinstance(value, float) or math.isfinite(value)


def _clamp(value: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, value))


def _check_range(cmd: Mapping[str, Any], field: str, lo: float, hi: float) -> None:
    value = cmd[field]
    if not _is_number(value):
        msg = f"{field} must be a number"
        raise ValidationFailed(msg)
    if value < lo or value > hi:
        msg = f"{field} {lo:g}..{hi:g}"
        raise ValidationFailed(msg)


def _check_on_off(cmd: Mapping[str, Any]) -> None:
    state = cmd.get("state")
    if state and state not in _ON_OFF:
        msg = "state must be ON|OFF"
        raise ValidationFailed(msg)


# ---------------------------------------------------------------------------
# Protocol
# ---------------------------------------------------------------------------


@runtime_checkable
class DeviceKind(Protocol):
    """Behaviour contract every device kind satisfies."""

    id: str
    title: str

    def capabilities(self) -> dict[str, Any]:
        """Return a fresh copy of the kind's default capabilities."""
        ...

    def capability_keys(self) -> frozenset[str]:
        """Return every capability key this kind accepts."""
        ...

    def default_telemetry_interval(self) -> int:
        """Default telemetry interval in seconds (``0`` = disabled)."""
        ...

    def validate_capabilities(self, caps: Capabilities) -> None:
        """Raise :class:`ValidationFailed` for undeclared or mistyped capabilities."""
        ...

    def default_state(self, caps: Capabilities | None = None) -> State:
        """Build the initial state for the merged capabilities."""
        ...

    def validate(self, cmd: Mapping[str, Any], caps: Capabilities | None = None) -> None:
        """Raise :class:`ValidationFailed` when *cmd* is unacceptable."""
        ...

    def reduce(
        self,
        prev: State,
        cmd: Mapping[str, Any],
        caps: Capabilities | None = None,
    ) -> State:
        """Apply a validated command; never mutates *prev*."""
        ...

    def tick(self, prev: State, caps: Capabilities | None = None) -> State:
        """Advance passive physical state by one telemetry tick."""
        ...


# ---------------------------------------------------------------------------
# Concrete base
# ---------------------------------------------------------------------------


class _KindBase:
    """Shared defaults: no validation, identity tick, telemetry off."""

    id: ClassVar[str]
    title: ClassVar[str]
    _defaults: ClassVar[dict[str, Any]] = {}
    _optional_caps: ClassVar[frozenset[str]] = frozenset()
    _numeric_caps: ClassVar[frozenset[str]] = frozenset()
    _telemetry_interval: ClassVar[int] = 0

    def capabilities(self) -> dict[str, Any]:
        return dict(self._defaults)

    def capability_keys(self) -> frozenset[str]:
        return frozenset(self._defaults) | self._optional_caps

    def default_telemetry_interval(self) -> int:
        return self._telemetry_interval

    def validate_capabilities(self, caps: Capabilities) -> None:
        """Reject capability keys the kind does not declare.

        Numeric capabilities must hold finite numbers.
        """
        unknown = sorted(set(caps) - self.capability_keys())
        if unknown:
            msg = f"unsupported capabilities for {self.id}: {', '.join(unknown)}"
            raise ValidationFailed(msg)
        for key in sorted(self._numeric_caps & caps.keys()):
            if not _is_number(caps[key]):
                msg = f"capability {key} must be a number"
                raise ValidationFailed(msg)

    def _caps(self, caps: Capabilities | None) -> dict[str, Any]:
        return {**self._defaults, **(caps or {})}

    def validate(self, cmd: Mapping[str, Any], caps: Capabilities | None = None) -> None:
        """Accept every command."""

    def tick(self, prev: State, caps: Capabilities | None = None) -> State:
        """No passive drift."""
        return prev

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.id!r}>"


# ---------------------------------------------------------------------------
# light
# ---------------------------------------------------------------------------


def _clamp_rgb(color: Mapping[str, Any]) -> dict[str, float]:
    return {ch: _clamp(color.get(ch, 255), 0, 255) for ch in ("r", "g", "b")}


class LightKind(_KindBase):
    """On/off light with optional brightness, colour temperature and RGB.

    ``mode`` is one of ``white``/``ct``/``rgb``, limited to the modes the
    instance supports, and follows whichever colour property was written
    last unless a mode is requested explicitly.
    """

    id = "light"
    title = "Light"
    _defaults = {"brightness": True, "color_temp": False, "rgb": False}

    @staticmethod
    def _modes(c: Mapping[str, Any]) -> list[str]:
        modes = ["white"]
        if c["color_temp"]:
            modes.append("ct")
        if c["rgb"]:
            modes.append("rgb")
        return modes

    def default_state(self, caps: Capabilities | None = None) -> State:
        c = self._caps(caps)
        st: State = {"state": "OFF"}
        if c["brightness"]:
            st["brightness"] = 0
        if c["color_temp"]:
            st["colorTemp"] = 350
            st["mode"] = "ct"
        if c["rgb"]:
            st["color"] = {"r": 255, "g": 255, "b": 255}
            st["mode"] = st.get("mode", "rgb") if c["color_temp"] else "rgb"
        if not c["color_temp"] and not c["rgb"]:
            st["mode"] = "white"
        return st

    def validate(self, cmd: Mapping[str, Any], caps: Capabilities | None = None) -> None:
        c = self._caps(caps)
        _check_on_off(cmd)
        if "brightness" in cmd:
            if not c["brightness"]:
                msg = "brightness not supported"
                raise ValidationFailed(msg)
            _check_range(cmd, "brightness", 0, 255)
        if "colorTemp" in cmd:
            if not c["color_temp"]:
                msg = "color_temp not supported"
                raise ValidationFailed(msg)
            _check_range(cmd, "colorTemp", 153, 500)
        if "color" in cmd:
            if not c["rgb"]:
                msg = "rgb not supported"
                raise ValidationFailed(msg)
            color = cmd["color"]
            if not isinstance(color, Mapping):
                msg = "color must be an object with r/g/b"
                raise ValidationFailed(msg)
            for ch in ("r", "g", "b"):
                value = color.get(ch)
                if not _is_number(value) or value < 0 or value > 255:  # type: ignore[operator]
                    msg = "color r/g/b 0..255"
                    raise ValidationFailed(msg)
        if "mode" in cmd:
            allowed = self._modes(c)
            if cmd["mode"] not in allowed:
                msg = f"mode must be one of {','.join(allowed)}"
                raise ValidationFailed(msg)

    def reduce(
        self,
        prev: State,
        cmd: Mapping[str, Any],
        caps: Capabilities | None = None,
    ) -> State:
        c = self._caps(caps)
        nxt = dict(prev)

        if cmd.get("state"):
            nxt["state"] = "ON" if cmd["state"] == "ON" else "OFF"

        if c["brightness"] and _is_number(cmd.get("brightness")):
            nxt["brightness"] = _clamp(cmd["brightness"], 0, 255)

        if c["color_temp"] and _is_number(cmd.get("colorTemp")):
            nxt["colorTemp"] = _clamp(cmd["colorTemp"], 153, 500)
            nxt["mode"] = "ct"

        if c["rgb"] and isinstance(cmd.get("color"), Mapping):
            nxt["color"] = _clamp_rgb(cmd["color"])
            nxt["mode"] = "rgb"

        if cmd.get("mode") in self._modes(c):
            nxt["mode"] = cmd["mode"]

        if not nxt.get("mode"):
            nxt["mode"] = "rgb" if c["rgb"] else ("ct" if c["color_temp"] else "white")
        return nxt


# ---------------------------------------------------------------------------
# switch
# ---------------------------------------------------------------------------


class SwitchKind(_KindBase):
    """Plain on/off switch."""

    id = "switch"
    title = "Switch"

    def default_state(self, caps: Capabilities | None = None) -> State:
        return {"state": "OFF"}

    def validate(self, cmd: Mapping[str, Any], caps: Capabilities | None = None) -> None:
        _check_on_off(cmd)

    def reduce(
        self,
        prev: State,
        cmd: Mapping[str, Any],
        caps: Capabilities | None = None,
    ) -> State:
        nxt = dict(prev)
        if cmd.get("state"):
            nxt["state"] = "ON" if cmd["state"] == "ON" else "OFF"
        return nxt


# ---------------------------------------------------------------------------
# fan
# ---------------------------------------------------------------------------


class FanKind(_KindBase):
    """Fan with discrete speed steps ``0..maxSpeed`` (0 = off)."""

    id = "fan"
    title = "Fan"
    _defaults = {"maxSpeed": 3, "defaultSpeed": 1}
    _numeric_caps = frozenset({"maxSpeed", "defaultSpeed"})

    def default_state(self, caps: Capabilities | None = None) -> State:
        return {"state": "OFF", "speed": 0}

    def validate(self, cmd: Mapping[str, Any], caps: Capabilities | None = None) -> None:
        c = self._caps(caps)
        _check_on_off(cmd)
        if not _is_number(c["maxSpeed"]):
            msg = "maxSpeed capability must be a number"
            raise ValidationFailed(msg)
        if cmd.get("speed") is not None:
            _check_range(cmd, "speed", 0, c["maxSpeed"])
            if not float(cmd["speed"]).is_integer():
                msg = "speed must be an integer"
                raise ValidationFailed(msg)

    def reduce(
        self,
        prev: State,
        cmd: Mapping[str, Any],
        caps: Capabilities | None = None,
    ) -> State:
        c = self._caps(caps)
        nxt = dict(prev)
        if cmd.get("state"):
            nxt["state"] = "ON" if cmd["state"] == "ON" else "OFF"
            if nxt["state"] == "OFF":
                nxt["speed"] = 0
            if nxt["state"] == "ON" and nxt.get("speed", 0) == 0:
                nxt["speed"] = c["defaultSpeed"]
        if _is_number(cmd.get("speed")):
            nxt["speed"] = int(_clamp(cmd["speed"], 0, c["maxSpeed"]))
            nxt["state"] = "ON" if nxt["speed"] > 0 else "OFF"
        return nxt


# ---------------------------------------------------------------------------
# cover
# ---------------------------------------------------------------------------

_COVER_ACTIONS = ("OPEN", "CLOSE", "STOP")


class CoverKind(_KindBase):
    """Blind/cover with position ``0`` (closed) .. ``100`` (open).

    ``OPEN``/``CLOSE`` start a movement that :meth:`tick` advances by
    ``speedPerTick`` until the extreme is reached.
    """

    id = "cover"
    title = "Cover / Blind"
    _defaults = {"speedPerTick": 5, "invert": False}
    _numeric_caps = frozenset({"speedPerTick"})
    _telemetry_interval = 2

    def default_state(self, caps: Capabilities | None = None) -> State:
        c = self._caps(caps)
        return {"position": 100 if c["invert"] else 0, "action": "STOP", "moving": False}

    def validate(self, cmd: Mapping[str, Any], caps: Capabilities | None = None) -> None:
        if cmd.get("position") is not None:
            _check_range(cmd, "position", 0, 100)
        if cmd.get("action") and cmd["action"] not in _COVER_ACTIONS:
            msg = "action must be OPEN|CLOSE|STOP"
            raise ValidationFailed(msg)

    def reduce(
        self,
        prev: State,
        cmd: Mapping[str, Any],
        caps: Capabilities | None = None,
    ) -> State:
        c = self._caps(caps)
        nxt = dict(prev)

        if _is_number(cmd.get("position")):
            nxt["position"] = _clamp(cmd["position"], 0, 100)
            nxt["action"] = "STOP"
            nxt["moving"] = False
        if cmd.get("action"):
            nxt["action"] = cmd["action"]
            nxt["moving"] = cmd["action"] in ("OPEN", "CLOSE")

        # Stored position stays physical: the display flip is undone at once.
        if c["invert"]:
            nxt["position"] = 100 - nxt["position"]
        if c["invert"]:
            nxt["position"] = 100 - nxt["position"]
        return nxt

    def tick(self, prev: State, caps: Capabilities | None = None) -> State:
        c = self._caps(caps)
        if not prev.get("moving"):
            return prev

        action = prev.get("action")
        pos = prev.get("position", 0)
        if action == "OPEN":
            pos += c["speedPerTick"]
        if action == "CLOSE":
            pos -= c["speedPerTick"]
        pos = _clamp(pos, 0, 100)
        at_end = (action == "OPEN" and pos >= 100) or (action == "CLOSE" and pos <= 0)

        return {
            **prev,
            "position": pos,
            "action": "STOP" if at_end else action,
            "moving": not at_end,
        }


# ---------------------------------------------------------------------------
# sensor.temp
# ---------------------------------------------------------------------------


class TempSensorKind(_KindBase):
    """Read-only temperature sensor drifting toward a target.

    Each tick moves ``value`` by ``drift`` toward ``target``, adds
    uniform noise in ``[-noise, +noise]``, clamps to ``[min, max]``
    and rounds to ``decimals`` places.  A ``value`` command forces a
    reading (test override).

    Args:
        rng: Random source for noise; inject a seeded
            :class:`random.Random` for reproducible ticks.
    """

    id = "sensor.temp"
    title = "Temperature Sensor"
    _defaults = {
        "min": 0,
        "max": 40,
        "drift": 0.05,
        "noise": 0.1,
        "target": 22,
        "unit": "°C",
        "decimals": 1,
    }
    _optional_caps = frozenset({"start"})
    _numeric_caps = frozenset({"min", "max", "drift", "noise", "decimals"})
    _telemetry_interval = 10

    def __init__(self, rng: random.Random | None = None) -> None:
        self._rng = rng or random.Random()

    def default_state(self, caps: Capabilities | None = None) -> State:
        c = self._caps(caps)
        start = c.get("start")
        if not _is_number(start):
            start = c["target"] if _is_number(c.get("target")) else 22
        return {
            "value": _clamp(start, c["min"], c["max"]),
            "unit": "C" if c["unit"] == "C" else "°C",
        }

    def validate(self, cmd: Mapping[str, Any], caps: Capabilities | None = None) -> None:
        if "value" in cmd and not _is_number(cmd["value"]):
            msg = "value must be a number"
            raise ValidationFailed(msg)

    def reduce(
        self,
        prev: State,
        cmd: Mapping[str, Any],
        caps: Capabilities | None = None,
    ) -> State:
        if _is_number(cmd.get("value")):
            return {**prev, "value": cmd["value"]}
        return dict(prev)

    def tick(self, prev: State, caps: Capabilities | None = None) -> State:
        c = self._caps(caps)
        value = prev.get("value", 0)
        target = c.get("target")
        if _is_number(target):
            towards = (target > value) - (target < value)
        else:
            towards = -1 if self._rng.random() < 0.5 else 1  # noqa: PLR2004
        drift_step = abs(c.get("drift") or 0) * towards
        noise = (self._rng.random() * 2 - 1) * abs(c.get("noise") or 0)
        raw = _clamp(value + drift_step + noise, c["min"], c["max"])

        decimals = int(_clamp(int(c.get("decimals") or 0), 0, 4))
        return {**prev, "value": round(raw, decimals)}


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

_REGISTRY: dict[str, DeviceKind] = {
    kind.id: kind
    for kind in (
        LightKind(),
        SwitchKind(),
        TempSensorKind(),
        CoverKind(),
        FanKind(),
    )
}


def get_kind(type_id: str) -> DeviceKind:
    """Look up the kind registered for *type_id*.

    Raises:
        UnsupportedType: If no kind is registered under that id.
    """
    try:
        return _REGISTRY[type_id]
    except KeyError:
        raise UnsupportedType(type_id) from None


def has_kind(type_id: str) -> bool:
    return type_id in _REGISTRY


def kind_ids() -> list[str]:
    return list(_REGISTRY)


def list_kinds() -> list[dict[str, object]]:
    """Describe every registered kind with its default capabilities."""
    return [
        {"id": k.id, "title": k.title, "capabilities": k.capabilities()}
        for k in _REGISTRY.values()
    ]
