"""Bulk export and import reconciliation.

Export produces a versioned snapshot of every device with its state and
topics.  Import reconciles such a snapshot with the store as an upsert
list:

1. Each entry is matched by ``(type, slug)`` first, then by ``id``.
2. Unmatched entries are created through the regular create path, then
   telemetry interval and state overrides are applied.
3. Matched entries are patched only where something actually differs,
   and classified ``updated`` or ``unchanged`` accordingly.
4. With ``replaceAll`` set, stored slugged devices whose ``(type, slug)``
   no incoming slugged entry carried are removed.  Devices without a
   slug and devices this import matched or created are never removed.

A failing entry is recorded in the report and the batch moves on; there
is no rollback.  Report schema::

    {
        "created": 1, "updated": 0, "unchanged": 2, "deleted": 0, "errors": 1,
        "details": [
            {"id": "9f0c…", "action": "created"},
            {"error_type": "validation_failed", "error": "type missing", "entry": {…}},
            …
        ]
    }
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Literal, TypeAlias

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from mqttsim._context import SimContext
from mqttsim._errors import NotFound, PartialImportFailure, SimulatorError, ValidationFailed
from mqttsim._kinds import get_kind
from mqttsim._lifecycle import DeviceManager
from mqttsim._models import Device
from mqttsim._topics import device_topics

logger = logging.getLogger(__name__)

EXPORT_VERSION = 1

Action: TypeAlias = Literal["created", "updated", "unchanged", "deleted"]

# ---------------------------------------------------------------------------
# Payload models
# ---------------------------------------------------------------------------


class ImportEntry(BaseModel):
    """One device entry of an import payload (export entry shape)."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str | None = None
    type: str | None = None
    name: str | None = None
    slug: str | None = None
    template_id: str | None = Field(default=None, alias="templateId")
    capabilities: dict[str, Any] | None = None
    telemetry_interval_sec: int | None = Field(
        default=None,
        ge=0,
        alias="telemetryIntervalSec",
    )
    state: dict[str, Any] | None = None


class ImportPayload(BaseModel):
    """Top-level import document.

    Entries stay raw here and are validated one by one, so a single
    malformed entry cannot reject the whole batch.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    mode: Literal["upsert"] = "upsert"
    replace_all: bool = Field(default=False, alias="replaceAll")
    devices: list[Any]


# ---------------------------------------------------------------------------
# Report
# ---------------------------------------------------------------------------


@dataclass
class ImportReport:
    """Aggregate result of :meth:`DeviceTransfer.import_all`."""

    created: int = 0
    updated: int = 0
    unchanged: int = 0
    deleted: int = 0
    errors: int = 0
    details: list[dict[str, object]] = field(default_factory=list)

    def record(self, action: Action, device_id: str) -> None:
        setattr(self, action, getattr(self, action) + 1)
        self.details.append({"id": device_id, "action": action})

    def record_error(self, failure: PartialImportFailure) -> None:
        self.errors += 1
        self.details.append(failure.to_dict())

    def to_dict(self) -> dict[str, object]:
        return {
            "created": self.created,
            "updated": self.updated,
            "unchanged": self.unchanged,
            "deleted": self.deleted,
            "errors": self.errors,
            "details": list(self.details),
        }


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


class DeviceTransfer:
    """Export and import of the whole device set.

    Parameters
    ----------
    ctx:
        Engine context (namespace and store are read from it).
    manager:
        Lifecycle manager used for every write.
    """

    def __init__(self, ctx: SimContext, manager: DeviceManager) -> None:
        self._ctx = ctx
        self._manager = manager

    # -- export -------------------------------------------------------------

    async def export_all(self) -> dict[str, object]:
        """Return a versioned snapshot of every device.  Pure read."""
        devices = [
            await self._export_entry(d) for d in await self._ctx.store.find()
        ]
        return {
            "version": EXPORT_VERSION,
            "exportedAt": datetime.now(UTC).isoformat(),
            "namespace": self._ctx.ns,
            "count": len(devices),
            "devices": devices,
        }

    async def _export_entry(self, device: Device) -> dict[str, object]:
        return {
            **device.to_dict(),
            "state": await self._ctx.store.get_state(device.id) or {},
            "topics": device_topics(self._ctx.ns, device.type, device.id).as_dict(),
        }

    # -- import -------------------------------------------------------------

    async def import_all(self, payload: Mapping[str, Any]) -> ImportReport:
        """Reconcile the store with *payload*.

        Raises:
            ValidationFailed: If *payload* has no ``devices`` list.
        """
        try:
            document = ImportPayload.model_validate(payload)
        except ValidationError as exc:
            msg = "devices array required"
            raise ValidationFailed(msg) from exc

        report = ImportReport()
        incoming_keys = {
            (raw["type"], raw["slug"])
            for raw in document.devices
            if isinstance(raw, Mapping)
            and isinstance(raw.get("type"), str)
            and isinstance(raw.get("slug"), str)
            and raw["type"]
            and raw["slug"]
        }
        touched: set[str] = set()

        for raw in document.devices:
            try:
                action, device_id = await self._import_entry(raw)
            except PartialImportFailure as failure:
                logger.warning("Import entry rejected: %s", failure)
                report.record_error(failure)
                continue
            touched.add(device_id)
            report.record(action, device_id)

        if document.replace_all:
            await self._delete_missing(incoming_keys, touched, report)

        logger.info(
            "Import finished: created=%d updated=%d unchanged=%d deleted=%d errors=%d",
            report.created,
            report.updated,
            report.unchanged,
            report.deleted,
            report.errors,
        )
        return report

    async def _import_entry(self, raw: object) -> tuple[Action, str]:
        try:
            entry = self._parse_entry(raw)
            existing = await self._match(entry)
            if existing is None:
                return "created", await self._create(entry)
            return await self._patch(existing, entry), existing.id
        except SimulatorError as exc:
            raise PartialImportFailure(str(exc), entry=raw) from exc
        except Exception as exc:
            logger.exception("Unexpected error importing entry")
            raise PartialImportFailure(str(exc) or type(exc).__name__, entry=raw) from exc

    @staticmethod
    def _parse_entry(raw: object) -> ImportEntry:
        try:
            entry = ImportEntry.model_validate(raw)
        except ValidationError as exc:
            errors = exc.errors()
            detail = errors[0]["msg"] if errors else str(exc)
            msg = f"invalid entry: {detail}"
            raise ValidationFailed(msg) from exc
        if not entry.type:
            msg = "type missing"
            raise ValidationFailed(msg)
        if not entry.slug and not entry.id:
            msg = "slug or id required"
            raise ValidationFailed(msg)
        get_kind(entry.type)
        return entry

    async def _match(self, entry: ImportEntry) -> Device | None:
        store = self._ctx.store
        type_id = entry.type or ""
        if entry.slug:
            device = await store.get_by_slug(type_id, entry.slug)
            if device is not None:
                return device
        if entry.id:
            device = await store.get(entry.id)
            if device is not None:
                if device.type != type_id:
                    msg = f"id {entry.id} belongs to a {device.type} device"
                    raise ValidationFailed(msg)
                return device
        return None

    async def _create(self, entry: ImportEntry) -> str:
        result = await self._manager.create_device(
            entry.type or "",
            entry.name or "",
            entry.slug,
            entry.capabilities,
            entry.template_id,
            allow_unknown_template=True,
        )
        if entry.telemetry_interval_sec is not None:
            await self._manager.update_telemetry(result.id, entry.telemetry_interval_sec)
        if entry.state:
            await self._manager.replace_state(result.id, entry.state)
        return result.id

    async def _patch(self, existing: Device, entry: ImportEntry) -> Action:
        manager = self._manager
        changed = False

        stripped = (entry.name or "").strip()
        name = stripped if stripped and stripped != existing.name else None
        template_id = (
            entry.template_id
            if entry.template_id is not None and entry.template_id != existing.template_id
            else None
        )
        capabilities = None
        if entry.capabilities:
            merged = {**existing.capabilities, **entry.capabilities}
            if merged != existing.capabilities:
                capabilities = entry.capabilities
        if name is not None or template_id is not None or capabilities is not None:
            await manager.update_device(
                existing.id,
                name=name,
                capabilities=capabilities,
                template_id=template_id,
            )
            changed = True

        interval = entry.telemetry_interval_sec
        if interval is not None and interval != existing.telemetry_interval_sec:
            await manager.update_telemetry(existing.id, interval)
            changed = True

        if entry.state:
            current = await self._ctx.store.get_state(existing.id)
            if entry.state != current:
                await manager.replace_state(existing.id, entry.state)
                changed = True

        return "updated" if changed else "unchanged"

    async def _delete_missing(
        self,
        incoming_keys: set[tuple[str, str]],
        touched: set[str],
        report: ImportReport,
    ) -> None:
        for device in await self._ctx.store.find():
            key = device.key
            if key is None or key in incoming_keys or device.id in touched:
                continue
            try:
                await self._manager.remove(device.id)
            except NotFound:
                logger.debug("Device %s vanished before replaceAll removal", device.id)
                continue
            report.record("deleted", device.id)
