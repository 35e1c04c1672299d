"""MQTT command routing for simulated devices.

One wildcard subscription covers every device's command topic::

    {ns}/+/+/set    → subscribed once, routed here
    {ns}/{type}/{id}/state  ← new state published retained after reduce

Each inbound command runs the same pipeline under the device's lock:
look up device and state, decode and coerce the JSON payload, let the
kind validate it, reduce, persist, publish, notify.

Transport-routed commands are best-effort: every failure is logged and
the message is dropped, so one bad message never stops the router.
:meth:`CommandRouter.send_by_id` is the synchronous variant that
surfaces errors to its caller.
"""

from __future__ import annotations

import json
import logging
import math
from collections.abc import Mapping
from typing import Any

from mqttsim._context import SimContext
from mqttsim._errors import NotFound, SimulatorError, ValidationFailed
from mqttsim._kinds import get_kind
from mqttsim._mqtt import MqttMessageHandler
from mqttsim._topics import command_wildcard, parse_command_topic

logger = logging.getLogger(__name__)

NUMERIC_FIELDS: frozenset[str] = frozenset(
    {
        "brightness",
        "colorTemp",
        "colorTemperature",
        "position",
        "speed",
        "temperature",
        "humidity",
        "pressure",
        "value",
    },
)
"""Command fields whose numeric-looking string values are coerced."""


def coerce_numeric(cmd: Mapping[str, Any]) -> dict[str, Any]:
    """Return a copy of *cmd* with numeric strings in known fields parsed.

    UI sliders often send ``"128"`` instead of ``128``.  Strings that do
    not parse as a finite float (including ``"nan"`` and ``"inf"``) are
    left untouched so the kind's validation can reject them with a
    readable message.
    """
    coerced = dict(cmd)
    for name in NUMERIC_FIELDS & coerced.keys():
        value = coerced[name]
        if not isinstance(value, str):
            continue
        try:
            number = float(value)
        except ValueError:
            continue
        if not math.isfinite(number):
            continue
        coerced[name] = int(number) if number.is_integer() else number
    return coerced


def decode_command(payload: str | Mapping[str, Any]) -> dict[str, Any]:
    """Decode a command payload into a mapping.

    Raises:
        ValidationFailed: If *payload* is not a JSON object.
    """
    if isinstance(payload, Mapping):
        return dict(payload)
    try:
        data = json.loads(payload)
    except json.JSONDecodeError as exc:
        msg = f"command payload is not valid JSON: {exc.msg}"
        raise ValidationFailed(msg) from exc
    if not isinstance(data, dict):
        msg = "command payload must be a JSON object"
        raise ValidationFailed(msg)
    return data


class CommandRouter:
    """Routes wildcard command messages to the owning device's kind.

    Parameters
    ----------
    ctx:
        Engine context (namespace, transport, store, notifier, locks).
    """

    def __init__(self, ctx: SimContext) -> None:
        self._ctx = ctx
        self._subscribed = False

    @property
    def subscribed(self) -> bool:
        """Whether the wildcard subscription has been made in-process."""
        return self._subscribed

    @property
    def pattern(self) -> str:
        return command_wildcard(self._ctx.ns)

    async def subscribe(self) -> None:
        """Subscribe to the command wildcard and register :meth:`route`.

        Repeated calls are no-ops.  Re-subscribing after a reconnect is
        the transport's job, not the router's.
        """
        if self._subscribed:
            logger.debug("Command wildcard already subscribed")
            return
        mqtt = self._ctx.mqtt
        if isinstance(mqtt, MqttMessageHandler):
            mqtt.on_message(self.route)
        await mqtt.subscribe(self.pattern)
        self._subscribed = True
        logger.info("Subscribed to command topics %s", self.pattern)

    async def route(self, topic: str, payload: str) -> None:
        """Handle one inbound message.  Never raises."""
        parsed = parse_command_topic(self._ctx.ns, topic)
        if parsed is None:
            logger.debug("Ignoring non-command topic %s", topic)
            return
        type_id, device_id = parsed
        try:
            await self.apply_command(device_id, type_id, payload)
        except SimulatorError as exc:
            logger.warning("Rejected command on %s: %s", topic, exc)
        except Exception:
            logger.exception("Command routing failed for %s", topic)

    async def apply_command(
        self,
        device_id: str,
        type_id: str,
        payload: str | Mapping[str, Any],
    ) -> dict[str, Any] | None:
        """Validate, reduce, persist and publish one command.

        Returns:
            The new state, or ``None`` when the device (or its state)
            does not exist or its type differs from *type_id*.

        Raises:
            UnsupportedType: If *type_id* has no registered kind.
            ValidationFailed: If the payload or the command is rejected.
        """
        ctx = self._ctx
        kind = get_kind(type_id)
        async with ctx.locks(device_id):
            device = await ctx.store.get(device_id)
            prev = await ctx.store.get_state(device_id)
            if device is None or prev is None:
                logger.debug("Dropping command for unknown device %s", device_id)
                return None
            if device.type != type_id:
                logger.debug(
                    "Dropping command for %s: topic type %s != device type %s",
                    device_id,
                    type_id,
                    device.type,
                )
                return None

            cmd = coerce_numeric(decode_command(payload))
            kind.validate(cmd, device.capabilities)
            state = kind.reduce(prev, cmd, device.capabilities)
            await ctx.store.set_state(device_id, state)
            await ctx.publish_state(type_id, device_id, state)
        await ctx.notify(ctx.notifier.notify_state_changed(device_id, type_id, state))
        logger.debug("Applied command to %s/%s: %s", type_id, device_id, cmd)
        return state

    async def send_by_id(
        self,
        device_id: str,
        cmd: str | Mapping[str, Any],
    ) -> dict[str, Any]:
        """Apply *cmd* to a device addressed by id.

        Raises:
            NotFound: If the device does not exist.
            UnsupportedType: If the stored type has no registered kind.
            ValidationFailed: If the command is rejected.
        """
        device = await self._ctx.store.get(device_id)
        if device is None:
            raise NotFound(device_id)
        state = await self.apply_command(device_id, device.type, cmd)
        if state is None:
            # Removed between the lookup and taking the lock.
            raise NotFound(device_id)
        return state
