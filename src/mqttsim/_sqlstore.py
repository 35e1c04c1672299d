"""SQL device store backed by SQLModel / SQLAlchemy.

Two tables mirror the data model::

    device        (id PK, type, name, slug, capabilities JSON, template_id,
                   telemetry_interval_sec, created_at, updated_at,
                   UNIQUE(type, slug))
    device_state  (device_id PK → device.id, data JSON)

Sessions are synchronous; every public coroutine runs its unit of work
in a worker thread via :func:`asyncio.to_thread` so the event loop is
never blocked on disk I/O.  Each unit of work is one transaction, which
gives ``insert`` (device + state) and ``delete`` (state + device) their
all-or-nothing semantics.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import JSON, Column, DateTime, UniqueConstraint, text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Field, Session, SQLModel, create_engine, select

from mqttsim._models import Device
from mqttsim._store import UniqueViolation

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Tables
# ---------------------------------------------------------------------------


class DeviceRow(SQLModel, table=True):
    __tablename__ = "device"
    __table_args__ = (UniqueConstraint("type", "slug", name="uq_device_type_slug"),)

    id: str = Field(primary_key=True)
    type: str = Field(index=True)
    name: str
    slug: str | None = Field(default=None, index=True)
    capabilities: dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
    template_id: str | None = None
    telemetry_interval_sec: int = 0
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True)))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True)))


class DeviceStateRow(SQLModel, table=True):
    __tablename__ = "device_state"

    device_id: str = Field(primary_key=True, foreign_key="device.id")
    data: dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))


# ---------------------------------------------------------------------------
# Mapping helpers
# ---------------------------------------------------------------------------


def _aware(value: datetime) -> datetime:
    # SQLite hands back naive datetimes even for timezone-aware columns.
    return value if value.tzinfo is not None else value.replace(tzinfo=UTC)


def _to_device(row: DeviceRow) -> Device:
    return Device(
        id=row.id,
        type=row.type,
        name=row.name,
        slug=row.slug,
        capabilities=dict(row.capabilities or {}),
        template_id=row.template_id,
        telemetry_interval_sec=row.telemetry_interval_sec,
        created_at=_aware(row.created_at),
        updated_at=_aware(row.updated_at),
    )


def _to_row(device: Device) -> DeviceRow:
    return DeviceRow(
        id=device.id,
        type=device.type,
        name=device.name,
        slug=device.slug,
        capabilities=dict(device.capabilities),
        template_id=device.template_id,
        telemetry_interval_sec=device.telemetry_interval_sec,
        created_at=device.created_at,
        updated_at=device.updated_at,
    )


# ---------------------------------------------------------------------------
# Adapter
# ---------------------------------------------------------------------------


class SqlDeviceStore:
    """:class:`~mqttsim._store.DeviceStore` on a SQLAlchemy engine.

    Args:
        url: SQLAlchemy database URL, e.g. ``sqlite:///mqttsim.db``.
        echo: Log emitted SQL (debugging aid).
    """

    def __init__(self, url: str, *, echo: bool = False) -> None:
        connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
        self._engine = create_engine(
            url,
            echo=echo,
            pool_pre_ping=True,
            connect_args=connect_args,
        )

    def init(self) -> None:
        """Create missing tables."""
        SQLModel.metadata.create_all(self._engine)

    def dispose(self) -> None:
        self._engine.dispose()

    def _session(self) -> Session:
        return Session(self._engine, expire_on_commit=False)

    # -- reads ----------------------------------------------------------------

    async def find(
        self,
        *,
        type_id: str | None = None,
        slug: str | None = None,
    ) -> list[Device]:
        def work() -> list[Device]:
            stmt = select(DeviceRow)
            if type_id is not None:
                stmt = stmt.where(DeviceRow.type == type_id)
            if slug is not None:
                stmt = stmt.where(DeviceRow.slug == slug)
            with self._session() as session:
                return [_to_device(r) for r in session.exec(stmt).all()]

        return await asyncio.to_thread(work)

    async def get(self, device_id: str) -> Device | None:
        def work() -> Device | None:
            with self._session() as session:
                row = session.get(DeviceRow, device_id)
                return _to_device(row) if row is not None else None

        return await asyncio.to_thread(work)

    async def get_by_slug(self, type_id: str, slug: str) -> Device | None:
        devices = await self.find(type_id=type_id, slug=slug)
        return devices[0] if devices else None

    async def get_state(self, device_id: str) -> dict[str, Any] | None:
        def work() -> dict[str, Any] | None:
            with self._session() as session:
                row = session.get(DeviceStateRow, device_id)
                return dict(row.data) if row is not None else None

        return await asyncio.to_thread(work)

    # -- writes ---------------------------------------------------------------

    async def insert(self, device: Device, state: dict[str, Any]) -> None:
        def work() -> None:
            with self._session() as session:
                session.add(_to_row(device))
                session.add(DeviceStateRow(device_id=device.id, data=dict(state)))
                try:
                    session.commit()
                except IntegrityError as exc:
                    session.rollback()
                    if device.slug is not None and self._slug_taken(
                        session, device.type, device.slug
                    ):
                        raise UniqueViolation(device.type, device.slug) from exc
                    raise

        await asyncio.to_thread(work)

    @staticmethod
    def _slug_taken(session: Session, type_id: str, slug: str) -> bool:
        stmt = select(DeviceRow.id).where(DeviceRow.type == type_id, DeviceRow.slug == slug)
        return session.exec(stmt).first() is not None

    async def save(self, device: Device) -> None:
        def work() -> None:
            with self._session() as session:
                row = session.get(DeviceRow, device.id)
                if row is None:
                    msg = f"Device {device.id!r} does not exist"
                    raise KeyError(msg)
                row.name = device.name
                row.capabilities = dict(device.capabilities)
                row.template_id = device.template_id
                row.telemetry_interval_sec = device.telemetry_interval_sec
                row.updated_at = device.updated_at
                session.add(row)
                session.commit()

        await asyncio.to_thread(work)

    async def delete(self, device_id: str) -> bool:
        def work() -> bool:
            with self._session() as session:
                state = session.get(DeviceStateRow, device_id)
                if state is not None:
                    session.delete(state)
                row = session.get(DeviceRow, device_id)
                if row is not None:
                    session.delete(row)
                session.commit()
                return row is not None

        return await asyncio.to_thread(work)

    async def set_state(self, device_id: str, data: dict[str, Any]) -> None:
        def work() -> None:
            with self._session() as session:
                row = session.get(DeviceStateRow, device_id)
                if row is None:
                    msg = f"Device {device_id!r} has no state"
                    raise KeyError(msg)
                row.data = dict(data)
                session.add(row)
                session.commit()

        await asyncio.to_thread(work)

    async def ping(self) -> bool:
        """Run ``SELECT 1``; ``False`` when the database is unreachable."""

        def work() -> None:
            with self._engine.connect() as conn:
                conn.execute(text("SELECT 1"))

        try:
            await asyncio.to_thread(work)
        except SQLAlchemyError:
            logger.warning("Database ping failed", exc_info=True)
            return False
        return True
