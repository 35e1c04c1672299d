"""Device lifecycle: create, update, telemetry, removal and discovery.

:class:`DeviceManager` is the id-addressed entry point for everything
that changes a device's identity or configuration.  Its operations
surface errors synchronously:

- :class:`~mqttsim._errors.UnsupportedType` — unknown kind id
- :class:`~mqttsim._errors.ValidationFailed` — bad argument, capability
  key or template
- :class:`~mqttsim._errors.NotFound` — id has no device
- :class:`~mqttsim._errors.Conflict` — slug cannot be made unique

Create is idempotent on ``(type, slug)``: a second create with the same
caller-supplied slug returns the existing device flagged ``existed``.

Publication order on create::

    {ns}/service/birth               {"deviceId", "type"}   transient
    {ns}/{type}/{id}/status          "online"               retained
    {ns}/{type}/{id}/state           initial state          retained
    {ns}/discovery/{type}/{id}       discovery payload      retained (if enabled)

Removal publishes empty retained payloads to state, status and
discovery, clearing what the broker holds for the device.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from mqttsim._context import SimContext
from mqttsim._discovery import DiscoveryMeta, build_discovery_payload
from mqttsim._errors import Conflict, NotFound, ValidationFailed
from mqttsim._kinds import DeviceKind, get_kind
from mqttsim._models import Device, new_device_id, utcnow
from mqttsim._scheduler import TelemetryScheduler
from mqttsim._slug import suffixed, to_slug
from mqttsim._store import UniqueViolation
from mqttsim._templates import StaticTemplateSource, TemplateSource
from mqttsim._topics import (
    DeviceTopics,
    device_topics,
    discovery_topic,
    service_birth_topic,
    state_topic,
    status_topic,
)

logger = logging.getLogger(__name__)

MAX_SLUG_RETRIES = 5
"""Store-level slug collisions tolerated for an auto-derived slug."""

# ---------------------------------------------------------------------------
# Value objects
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class CreateResult:
    """Outcome of :meth:`DeviceManager.create_device`."""

    id: str
    slug: str | None
    type: str
    existed: bool
    template_id: str | None = None
    capabilities: dict[str, Any] = field(default_factory=dict)
    topics: DeviceTopics | None = None
    state: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, object]:
        """Serialise with the JSON field names used by API clients."""
        return {
            "id": self.id,
            "slug": self.slug,
            "type": self.type,
            "templateId": self.template_id,
            "capabilities": dict(self.capabilities),
            "topics": self.topics.as_dict() if self.topics is not None else None,
            "state": dict(self.state),
            "existed": self.existed,
        }


# ---------------------------------------------------------------------------
# Manager
# ---------------------------------------------------------------------------


class DeviceManager:
    """Id-addressed device lifecycle operations.

    Parameters
    ----------
    ctx:
        Engine context.
    scheduler:
        Telemetry scheduler armed and disarmed by lifecycle changes.
    templates:
        Capability template source.  Defaults to an empty static source.
    """

    def __init__(
        self,
        ctx: SimContext,
        scheduler: TelemetryScheduler,
        templates: TemplateSource | None = None,
    ) -> None:
        self._ctx = ctx
        self._scheduler = scheduler
        self._templates = templates or StaticTemplateSource()
        self._meta = DiscoveryMeta(simulator=ctx.service, version=ctx.version)

    @property
    def scheduler(self) -> TelemetryScheduler:
        return self._scheduler

    # -- create -------------------------------------------------------------

    async def create_device(
        self,
        type_id: str,
        name: str,
        slug: str | None = None,
        capabilities: Mapping[str, Any] | None = None,
        template_id: str | None = None,
        *,
        allow_unknown_template: bool = False,
    ) -> CreateResult:
        """Create a device, or return the one already holding *slug*.

        Args:
            type_id: Kind id, e.g. ``"light"``.
            name: Display name; also the base of an auto-derived slug.
            slug: Caller-chosen slug.  Derived from *name* when omitted.
            capabilities: Explicit capabilities, applied last.
            template_id: Capability template applied before *capabilities*.
            allow_unknown_template: Keep an unknown *template_id* as a bare
                reference instead of rejecting it (used by import).

        Raises:
            UnsupportedType: If *type_id* has no registered kind.
            ValidationFailed: On an empty name, unknown capability keys or
                an unusable template.
            Conflict: If the slug collides at the store and cannot be
                resolved.
        """
        kind = get_kind(type_id)
        ctx = self._ctx

        if slug:
            existing = await ctx.store.get_by_slug(type_id, slug)
            if existing is not None:
                logger.debug("Device %s/%s already exists as %s", type_id, slug, existing.id)
                return CreateResult(
                    id=existing.id,
                    slug=existing.slug,
                    type=existing.type,
                    existed=True,
                    template_id=existing.template_id,
                    capabilities=existing.capabilities,
                    topics=device_topics(ctx.ns, existing.type, existing.id),
                    state=await ctx.store.get_state(existing.id) or {},
                )

        if not isinstance(name, str) or not name.strip():
            msg = "name must not be empty"
            raise ValidationFailed(msg)

        caps = {
            **kind.capabilities(),
            **self._template_capabilities(kind, template_id, strict=not allow_unknown_template),
            **(capabilities or {}),
        }
        kind.validate_capabilities(caps)

        device, state = await self._insert(kind, name, slug or None, caps, template_id)

        topics = device_topics(ctx.ns, type_id, device.id)
        await ctx.publish(
            service_birth_topic(ctx.ns),
            {"deviceId": device.id, "type": type_id},
            retain=False,
        )
        await ctx.publish(topics.status, "online", retain=True)
        await ctx.publish(topics.state, state, retain=True)
        await self._publish_discovery(device)
        self._scheduler.arm(device.id, device.telemetry_interval_sec)
        await ctx.notify(ctx.notifier.notify_created(device, state))

        logger.info("Created %s device %s (slug=%s)", type_id, device.id, device.slug)
        return CreateResult(
            id=device.id,
            slug=device.slug,
            type=type_id,
            existed=False,
            template_id=device.template_id,
            capabilities=device.capabilities,
            topics=topics,
            state=state,
        )

    async def _insert(
        self,
        kind: DeviceKind,
        name: str,
        slug: str | None,
        caps: dict[str, Any],
        template_id: str | None,
    ) -> tuple[Device, dict[str, Any]]:
        base = to_slug(name)
        candidate = slug or await self._free_slug(kind.id, base, 1)
        attempt = 0
        while True:
            device = Device(
                id=new_device_id(),
                type=kind.id,
                name=name.strip(),
                slug=candidate,
                capabilities=caps,
                template_id=template_id,
                telemetry_interval_sec=kind.default_telemetry_interval(),
            )
            state = kind.default_state(caps)
            try:
                await self._ctx.store.insert(device, state)
            except UniqueViolation as exc:
                if slug:
                    msg = f"Slug '{slug}' is already taken for type '{kind.id}'"
                    raise Conflict(msg) from exc
                attempt += 1
                if attempt > MAX_SLUG_RETRIES:
                    msg = f"Could not allocate unique slug for base '{base}'"
                    raise Conflict(msg) from exc
                logger.debug("Slug %s collided, retrying (%d)", candidate, attempt)
                candidate = await self._free_slug(kind.id, base, attempt + 1)
                continue
            return device, state

    async def _free_slug(self, type_id: str, base: str, start: int) -> str:
        """First of ``base``, ``base-2``, … from suffix *start* not in the store."""
        n = start
        candidate = base if n <= 1 else suffixed(base, n)
        while await self._ctx.store.get_by_slug(type_id, candidate) is not None:
            n = max(n, 1) + 1
            candidate = suffixed(base, n)
        return candidate

    def _template_capabilities(
        self,
        kind: DeviceKind,
        template_id: str | None,
        *,
        strict: bool,
    ) -> Mapping[str, Any]:
        if not template_id:
            return {}
        template = self._templates.snapshot().get(template_id)
        if template is None:
            if strict:
                msg = f"Unknown template: {template_id}"
                raise ValidationFailed(msg)
            logger.warning("Unknown template %s kept as reference only", template_id)
            return {}
        if template.kind != kind.id:
            if strict:
                msg = f"Template {template_id} is for {template.kind}, not {kind.id}"
                raise ValidationFailed(msg)
            logger.warning("Template %s does not fit kind %s, ignored", template_id, kind.id)
            return {}
        return template.capabilities

    # -- update -------------------------------------------------------------

    async def update_device(
        self,
        device_id: str,
        *,
        name: str | None = None,
        capabilities: Mapping[str, Any] | None = None,
        template_id: str | None = None,
    ) -> Device:
        """Merge-patch name, capabilities and template reference.

        ``type`` and ``slug`` are never changed.  A blank *name* is
        ignored.

        Raises:
            NotFound: If the device does not exist.
            ValidationFailed: If the merged capabilities carry unknown keys.
        """
        ctx = self._ctx
        async with ctx.locks(device_id):
            device = await self._require(device_id)
            kind = get_kind(device.type)
            if isinstance(name, str) and name.strip():
                device.name = name.strip()
            if capabilities:
                merged = {**device.capabilities, **capabilities}
                kind.validate_capabilities(merged)
                device.capabilities = merged
            if template_id is not None:
                device.template_id = template_id
            device.updated_at = utcnow()
            await ctx.store.save(device)
            await self._publish_discovery(device)
        await ctx.notify(ctx.notifier.notify_updated(device))
        logger.info("Updated device %s", device_id)
        return device

    async def update_telemetry(self, device_id: str, interval_sec: int) -> dict[str, object]:
        """Persist a new telemetry interval and re-arm the timer.

        Raises:
            ValidationFailed: If *interval_sec* is negative or not an integer.
            NotFound: If the device does not exist.
        """
        if isinstance(interval_sec, bool) or not isinstance(interval_sec, int) or interval_sec < 0:
            msg = "intervalSec must be an integer >= 0"
            raise ValidationFailed(msg)
        ctx = self._ctx
        async with ctx.locks(device_id):
            device = await self._require(device_id)
            device.telemetry_interval_sec = interval_sec
            device.updated_at = utcnow()
            await ctx.store.save(device)
            self._scheduler.arm(device_id, interval_sec)
        logger.info("Telemetry for %s set to %ss", device_id, interval_sec)
        return {"id": device_id, "telemetryIntervalSec": interval_sec}

    async def replace_state(self, device_id: str, state: Mapping[str, Any]) -> None:
        """Overwrite a device's state verbatim, publish and notify it.

        Raises:
            NotFound: If the device does not exist.
        """
        ctx = self._ctx
        data = dict(state)
        async with ctx.locks(device_id):
            device = await self._require(device_id)
            await ctx.store.set_state(device_id, data)
            await ctx.publish_state(device.type, device_id, data)
        await ctx.notify(ctx.notifier.notify_state_changed(device_id, device.type, data))

    # -- remove -------------------------------------------------------------

    async def remove(self, device_id: str) -> dict[str, object]:
        """Delete a device and clear its retained topics.

        Raises:
            NotFound: If the device does not exist.
        """
        ctx = self._ctx
        async with ctx.locks(device_id):
            device = await self._require(device_id)
            self._scheduler.disarm(device_id)
            await ctx.publish(state_topic(ctx.ns, device.type, device_id), "", retain=True)
            await ctx.publish(status_topic(ctx.ns, device.type, device_id), "", retain=True)
            await ctx.publish(discovery_topic(ctx.ns, device.type, device_id), "", retain=True)
            await ctx.store.delete(device_id)
        await ctx.notify(ctx.notifier.notify_deleted(device_id, device.type))
        logger.info("Removed %s device %s", device.type, device_id)
        return {"id": device_id, "removed": True}

    # -- discovery ----------------------------------------------------------

    async def refresh_discovery(self, device_id: str) -> dict[str, object]:
        """Republish the discovery payload of one device.

        Raises:
            NotFound: If the device does not exist.
        """
        device = await self._require(device_id)
        await self._publish_discovery(device)
        return {"id": device_id, "discoveryRepublished": self._ctx.discovery_enabled}

    async def _publish_discovery(self, device: Device) -> None:
        if not self._ctx.discovery_enabled:
            return
        await self._ctx.publish(
            discovery_topic(self._ctx.ns, device.type, device.id),
            build_discovery_payload(self._ctx.ns, device, self._meta),
            retain=True,
        )

    # -- queries ------------------------------------------------------------

    async def list_devices(
        self,
        type_id: str | None = None,
        slug: str | None = None,
    ) -> list[dict[str, object]]:
        """Return devices (with their state) matching the filters."""
        devices = await self._ctx.store.find(type_id=type_id, slug=slug)
        return [await self._with_state(d) for d in devices]

    async def get_device(self, device_id: str) -> dict[str, object]:
        """Return one device with its state.

        Raises:
            NotFound: If the device does not exist.
        """
        return await self._with_state(await self._require(device_id))

    async def restore_telemetry(self) -> int:
        """Arm timers for every stored device with a positive interval.

        Retained discovery payloads are left as the broker holds them.

        Returns:
            Number of timers armed.
        """
        armed = 0
        for device in await self._ctx.store.find():
            if self._scheduler.arm(device.id, device.telemetry_interval_sec):
                armed += 1
        logger.info("Restored telemetry timers for %d devices", armed)
        return armed

    # -- helpers ------------------------------------------------------------

    async def _require(self, device_id: str) -> Device:
        device = await self._ctx.store.get(device_id)
        if device is None:
            raise NotFound(device_id)
        return device

    async def _with_state(self, device: Device) -> dict[str, object]:
        return {**device.to_dict(), "state": await self._ctx.store.get_state(device.id) or {}}
