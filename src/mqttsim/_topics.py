"""MQTT topic namespace for simulated devices.

Pure functions deriving every topic the simulator publishes to or
subscribes on.  ``ns`` is the configured namespace (default ``sim``).

Topic layout::

    {ns}/{type}/{id}/set        ← command (subscribed via wildcard)
    {ns}/{type}/{id}/state      ← simulated state (retained JSON)
    {ns}/{type}/{id}/status     ← online / "" (retained)
    {ns}/discovery/{type}/{id}  ← discovery payload (retained JSON)
    {ns}/+/+/set                ← wildcard command subscription
    {ns}/service/status         ← service liveness (LWT "offline")
    {ns}/service/birth          ← device creation events (transient)
"""

from __future__ import annotations

from typing import NamedTuple


class DeviceTopics(NamedTuple):
    """The full topic set of a single device."""

    cmd: str
    state: str
    status: str
    discovery: str

    def as_dict(self, *, discovery: bool = True) -> dict[str, str]:
        """Return the topics as a JSON-ready mapping."""
        data = {"cmd": self.cmd, "state": self.state, "status": self.status}
        if discovery:
            data["discovery"] = self.discovery
        return data


def cmd_topic(ns: str, type_id: str, device_id: str) -> str:
    return f"{ns}/{type_id}/{device_id}/set"


def state_topic(ns: str, type_id: str, device_id: str) -> str:
    return f"{ns}/{type_id}/{device_id}/state"


def status_topic(ns: str, type_id: str, device_id: str) -> str:
    return f"{ns}/{type_id}/{device_id}/status"


def discovery_topic(ns: str, type_id: str, device_id: str) -> str:
    return f"{ns}/discovery/{type_id}/{device_id}"


def device_topics(ns: str, type_id: str, device_id: str) -> DeviceTopics:
    """Build all four topics for one device."""
    return DeviceTopics(
        cmd=cmd_topic(ns, type_id, device_id),
        state=state_topic(ns, type_id, device_id),
        status=status_topic(ns, type_id, device_id),
        discovery=discovery_topic(ns, type_id, device_id),
    )


def command_wildcard(ns: str) -> str:
    """Single subscription pattern covering every device command topic."""
    return f"{ns}/+/+/set"


def service_status_topic(ns: str) -> str:
    return f"{ns}/service/status"


def service_birth_topic(ns: str) -> str:
    return f"{ns}/service/birth"


def parse_command_topic(ns: str, topic: str) -> tuple[str, str] | None:
    """Split a command topic into ``(type, id)``.

    Returns:
        The pair when *topic* has exactly the shape
        ``{ns}/{type}/{id}/set`` with non-empty segments, otherwise
        ``None``.  The namespace may carry unrelated traffic, so a
        mismatch is not an error.
    """
    parts = topic.split("/")
    if len(parts) != 4:  # noqa: PLR2004
        return None
    prefix, type_id, device_id, suffix = parts
    if prefix != ns or suffix != "set" or not type_id or not device_id:
        return None
    return type_id, device_id
