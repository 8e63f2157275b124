"""Wake target registry with in-memory and SQL repository adapters."""

from __future__ import annotations

import uuid
from collections.abc import Iterable
from dataclasses import dataclass, field, replace
from datetime import datetime
from functools import lru_cache
from threading import Lock
from typing import Protocol

from sqlalchemy import delete, select, update
from sqlalchemy.orm import Session, sessionmaker

from ..database import database_available, get_session_factory
from ..db_models import DeviceModel, ScheduleModel
from ..errors import ValidationError
from .config import settings
from .packet import Target, normalize_mac


def _default_port() -> int:
    return settings.default_wol_port


@dataclass(frozen=True)
class Device:
    """Represents a machine that can be woken over the network."""

    id: str
    name: str
    mac: str
    internal_host: str | None = None
    internal_port: int = field(default_factory=_default_port)
    external_host: str | None = None
    external_port: int = field(default_factory=_default_port)
    status_port: int | None = None
    last_seen_at: datetime | None = None

    @property
    def internal_target(self) -> Target | None:
        if not self.internal_host:
            return None
        return Target(self.internal_host, self.internal_port)

    @property
    def external_target(self) -> Target | None:
        if not self.external_host:
            return None
        return Target(self.external_host, self.external_port)


def _clean_host(value: str | None) -> str | None:
    if value is None:
        return None
    cleaned = value.strip()
    return cleaned or None


def _check_port(value: int | None, name: str, *, default: int | None) -> int | None:
    if value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{name} must be an integer.")
    if not 1 <= value <= 65535:
        raise ValidationError(f"{name} must be between 1 and 65535, got {value}.")
    return value


def validate_device(device: Device) -> Device:
    """Return a normalized copy of ``device`` or raise :class:`ValidationError`."""
    name = device.name.strip() if device.name else ""
    default_port = settings.default_wol_port
    if not name:
        raise ValidationError("Device name must not be empty.")
    if not device.id:
        raise ValidationError("Device id must not be empty.")
    return replace(
        device,
        name=name,
        mac=normalize_mac(device.mac),
        internal_host=_clean_host(device.internal_host),
        internal_port=_check_port(
            device.internal_port, "internal_port", default=default_port
        ),
        external_host=_clean_host(device.external_host),
        external_port=_check_port(
            device.external_port, "external_port", default=default_port
        ),
        status_port=_check_port(device.status_port, "status_port", default=None),
    )


def new_device(
    name: str,
    mac: str,
    *,
    internal_host: str | None = None,
    internal_port: int | None = None,
    external_host: str | None = None,
    external_port: int | None = None,
    status_port: int | None = None,
) -> Device:
    """Build and validate a device with a freshly generated id."""
    return validate_device(
        Device(
            id=str(uuid.uuid4()),
            name=name,
            mac=mac,
            internal_host=internal_host,
            internal_port=internal_port or settings.default_wol_port,
            external_host=external_host,
            external_port=external_port or settings.default_wol_port,
            status_port=status_port,
        )
    )


class DeviceRepository(Protocol):
    """Port defining operations for reading and writing registered devices."""

    def get(self, device_id: str) -> Device | None:
        ...

    def list_all(self) -> list[Device]:
        ...

    def register(self, device: Device) -> Device:
        ...

    def update(self, device: Device) -> Device | None:
        ...

    def update_last_seen(self, device_id: str, timestamp: datetime) -> bool:
        ...

    def delete(self, device_id: str) -> bool:
        ...


class InMemoryDeviceRepository(DeviceRepository):
    """Adapter that keeps devices in a dictionary guarded by a lock."""

    def __init__(self, devices: Iterable[Device] = ()) -> None:
        self._lock = Lock()
        self._devices: dict[str, Device] = {}
        for device in devices:
            normalized = validate_device(device)
            self._devices[normalized.id] = normalized

    def get(self, device_id: str) -> Device | None:
        with self._lock:
            return self._devices.get(device_id)

    def list_all(self) -> list[Device]:
        with self._lock:
            return sorted(self._devices.values(), key=lambda device: device.name.lower())

    def register(self, device: Device) -> Device:
        normalized = validate_device(device)
        with self._lock:
            self._devices[normalized.id] = normalized
        return normalized

    def update(self, device: Device) -> Device | None:
        normalized = validate_device(device)
        with self._lock:
            existing = self._devices.get(normalized.id)
            if existing is None:
                return None
            if normalized.last_seen_at is None:
                normalized = replace(normalized, last_seen_at=existing.last_seen_at)
            self._devices[normalized.id] = normalized
        return normalized

    def update_last_seen(self, device_id: str, timestamp: datetime) -> bool:
        with self._lock:
            existing = self._devices.get(device_id)
            if existing is None:
                return False
            self._devices[device_id] = replace(existing, last_seen_at=timestamp)
        return True

    def delete(self, device_id: str) -> bool:
        with self._lock:
            return self._devices.pop(device_id, None) is not None


def _row_to_device(row: DeviceModel) -> Device:
    return Device(
        id=row.id,
        name=row.name,
        mac=row.mac,
        internal_host=row.internal_host,
        internal_port=row.internal_port or settings.default_wol_port,
        external_host=row.external_host,
        external_port=row.external_port or settings.default_wol_port,
        status_port=row.status_port,
        last_seen_at=datetime.fromisoformat(row.last_seen_at)
        if row.last_seen_at
        else None,
    )


def _apply_device(instance: DeviceModel, device: Device) -> None:
    instance.name = device.name
    instance.mac = device.mac
    instance.internal_host = device.internal_host
    instance.internal_port = device.internal_port
    instance.external_host = device.external_host
    instance.external_port = device.external_port
    instance.status_port = device.status_port
    if device.last_seen_at is not None:
        instance.last_seen_at = device.last_seen_at.isoformat()


class SQLAlchemyDeviceRepository(DeviceRepository):
    """Adapter that serves devices from a SQL database."""

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory

    def get(self, device_id: str) -> Device | None:
        with self._session_factory() as session:
            row = session.get(DeviceModel, device_id)
            return _row_to_device(row) if row else None

    def list_all(self) -> list[Device]:
        with self._session_factory() as session:
            rows = (
                session.execute(select(DeviceModel).order_by(DeviceModel.name))
                .scalars()
                .all()
            )
            return [_row_to_device(row) for row in rows]

    def register(self, device: Device) -> Device:
        normalized = validate_device(device)
        with self._session_factory() as session:
            instance = session.get(DeviceModel, normalized.id)
            if instance is None:
                instance = DeviceModel(id=normalized.id)
                session.add(instance)
            _apply_device(instance, normalized)
            session.commit()
            return _row_to_device(instance)

    def update(self, device: Device) -> Device | None:
        normalized = validate_device(device)
        with self._session_factory() as session:
            instance = session.get(DeviceModel, normalized.id)
            if instance is None:
                return None
            _apply_device(instance, normalized)
            session.commit()
            return _row_to_device(instance)

    def update_last_seen(self, device_id: str, timestamp: datetime) -> bool:
        with self._session_factory() as session:
            result = session.execute(
                update(DeviceModel)
                .where(DeviceModel.id == device_id)
                .values(last_seen_at=timestamp.isoformat())
            )
            session.commit()
            return bool(result.rowcount)

    def delete(self, device_id: str) -> bool:
        with self._session_factory() as session:
            # SQLite only honours ON DELETE CASCADE with foreign keys enabled.
            session.execute(
                delete(ScheduleModel).where(ScheduleModel.device_id == device_id)
            )
            result = session.execute(
                delete(DeviceModel).where(DeviceModel.id == device_id)
            )
            session.commit()
            return bool(result.rowcount)


@lru_cache
def _default_device_repository() -> InMemoryDeviceRepository:
    return InMemoryDeviceRepository()


_SQL_REPOSITORY: SQLAlchemyDeviceRepository | None = None


def _get_sql_repository() -> SQLAlchemyDeviceRepository:
    global _SQL_REPOSITORY
    if _SQL_REPOSITORY is None:
        session_factory = get_session_factory()
        _SQL_REPOSITORY = SQLAlchemyDeviceRepository(session_factory)
    return _SQL_REPOSITORY


def get_device_repository() -> DeviceRepository:
    """Return the configured device repository."""
    if database_available():
        return _get_sql_repository()
    return _default_device_repository()


__all__ = [
    "Device",
    "DeviceRepository",
    "InMemoryDeviceRepository",
    "SQLAlchemyDeviceRepository",
    "get_device_repository",
    "new_device",
    "validate_device",
]
