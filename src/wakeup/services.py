"""Service helpers backing the FastAPI endpoints and the CLI."""

from __future__ import annotations

import asyncio
from collections.abc import Mapping
from dataclasses import replace
from datetime import UTC, datetime
from typing import Any, TypedDict

from .dispatch import DispatchResult, Sender, wake_device
from .errors import NotFoundError, ValidationError
from .notifications import notify_wake_sent
from .recurrence import next_fire_instant
from .schedules import (
    Schedule,
    get_schedule_repository,
    new_schedule,
    validate_schedule,
)
from .timer_store import get_timer_store
from .wol.config import settings
from .wol.devices import Device, get_device_repository, new_device, validate_device
from .wol.probe import probe_device
from .wol.utils import logger, lookup_mac_vendor

EXPORT_VERSION = 1


class DeviceRecord(TypedDict):
    id: str
    name: str
    mac: str
    vendor: str | None
    internal_host: str | None
    internal_port: int
    external_host: str | None
    external_port: int
    status_port: int | None
    last_seen_at: datetime | None


class ScheduleRecord(TypedDict):
    id: str
    device_id: str
    days_bitmap: int
    hour: int
    minute: int
    enabled: bool
    label: str
    next_fire_at: datetime | None


class StatusRecord(TypedDict):
    device_id: str
    online: bool
    checked_at: datetime


# Records ---------------------------------------------------------------------


def device_record(device: Device) -> DeviceRecord:
    return {
        "id": device.id,
        "name": device.name,
        "mac": device.mac,
        "vendor": lookup_mac_vendor(device.mac),
        "internal_host": device.internal_host,
        "internal_port": device.internal_port,
        "external_host": device.external_host,
        "external_port": device.external_port,
        "status_port": device.status_port,
        "last_seen_at": device.last_seen_at,
    }


def schedule_record(schedule: Schedule, *, now: datetime | None = None) -> ScheduleRecord:
    next_fire_at = None
    if schedule.enabled:
        next_fire_at = next_fire_instant(
            schedule.hour, schedule.minute, schedule.days_bitmap, now or settings.now()
        )
    return {
        "id": schedule.id,
        "device_id": schedule.device_id,
        "days_bitmap": schedule.days_bitmap,
        "hour": schedule.hour,
        "minute": schedule.minute,
        "enabled": schedule.enabled,
        "label": schedule.label,
        "next_fire_at": next_fire_at,
    }


def get_device_records() -> list[DeviceRecord]:
    return [device_record(device) for device in get_device_repository().list_all()]


def require_device(device_id: str) -> Device:
    device = get_device_repository().get(device_id)
    if device is None:
        raise NotFoundError(f"Device {device_id} not found.")
    return device


def require_schedule(schedule_id: str) -> Schedule:
    schedule = get_schedule_repository().get(schedule_id)
    if schedule is None:
        raise NotFoundError(f"Schedule {schedule_id} not found.")
    return schedule


# Wake ------------------------------------------------------------------------


def wake_now(device_id: str, *, sender: Sender | None = None) -> DispatchResult:
    """Dispatch a wake request immediately and record a successful send."""
    result = asyncio.run(wake_device(device_id, sender=sender))
    if result.success:
        get_device_repository().update_last_seen(device_id, settings.now())
        try:
            notify_wake_sent(result.device)
        except Exception:
            logger.bind(device_id=device_id).exception(
                "Failed to publish wake notification"
            )
    return result


def check_device_status(device_id: str) -> StatusRecord:
    device = require_device(device_id)
    online = asyncio.run(probe_device(device))
    return {
        "device_id": device.id,
        "online": online,
        "checked_at": settings.now(),
    }


# Schedules -------------------------------------------------------------------


def list_schedules(device_id: str | None = None) -> list[Schedule]:
    repo = get_schedule_repository()
    if device_id is None:
        return repo.list_all()
    require_device(device_id)
    return repo.list_for_device(device_id)


def create_schedule(
    device_id: str,
    hour: int,
    minute: int,
    days_bitmap: int,
    *,
    enabled: bool = True,
) -> Schedule:
    require_device(device_id)
    schedule = get_schedule_repository().insert(
        new_schedule(device_id, hour, minute, days_bitmap, enabled=enabled)
    )
    if schedule.enabled:
        get_timer_store().arm(
            schedule.id,
            schedule.device_id,
            schedule.hour,
            schedule.minute,
            schedule.days_bitmap,
        )
    logger.bind(schedule_id=schedule.id, device_id=device_id).info(
        "Schedule created"
    )
    return schedule


def update_schedule(
    schedule_id: str, hour: int, minute: int, days_bitmap: int
) -> Schedule:
    """Replace the time and days of a schedule; an edit always re-enables it."""
    existing = require_schedule(schedule_id)
    candidate = validate_schedule(
        replace(
            existing, hour=hour, minute=minute, days_bitmap=days_bitmap, enabled=True
        )
    )
    store = get_timer_store()
    store.cancel(schedule_id)
    store.cancel_legacy(existing.device_id, existing.hour, existing.minute)
    updated = get_schedule_repository().update(candidate)
    if updated is None:
        raise NotFoundError(f"Schedule {schedule_id} not found.")
    store.arm(
        updated.id, updated.device_id, updated.hour, updated.minute, updated.days_bitmap
    )
    logger.bind(schedule_id=schedule_id).info("Schedule updated")
    return updated


def toggle_schedule(schedule_id: str) -> Schedule:
    existing = require_schedule(schedule_id)
    updated = get_schedule_repository().update(
        replace(existing, enabled=not existing.enabled)
    )
    if updated is None:
        raise NotFoundError(f"Schedule {schedule_id} not found.")
    store = get_timer_store()
    if updated.enabled:
        store.arm(
            updated.id,
            updated.device_id,
            updated.hour,
            updated.minute,
            updated.days_bitmap,
        )
    else:
        store.cancel(updated.id)
        store.cancel_legacy(updated.device_id, updated.hour, updated.minute)
    logger.bind(schedule_id=schedule_id, enabled=updated.enabled).info(
        "Schedule toggled"
    )
    return updated


def delete_schedule(schedule_id: str) -> None:
    existing = require_schedule(schedule_id)
    store = get_timer_store()
    store.cancel(existing.id)
    store.cancel_legacy(existing.device_id, existing.hour, existing.minute)
    get_schedule_repository().delete(schedule_id)
    logger.bind(schedule_id=schedule_id).info("Schedule deleted")


def reconcile_schedules() -> int:
    """Re-arm every enabled schedule; run once at startup."""
    return get_timer_store().reconcile(
        get_schedule_repository(), get_device_repository()
    )


# Devices ---------------------------------------------------------------------


def register_device(
    name: str,
    mac: str,
    *,
    internal_host: str | None = None,
    internal_port: int | None = None,
    external_host: str | None = None,
    external_port: int | None = None,
    status_port: int | None = None,
) -> Device:
    device = new_device(
        name,
        mac,
        internal_host=internal_host,
        internal_port=internal_port,
        external_host=external_host,
        external_port=external_port,
        status_port=status_port,
    )
    stored = get_device_repository().register(device)
    logger.bind(device_id=stored.id, mac=stored.mac).info("Device registered")
    return stored


def update_device(device_id: str, **changes: Any) -> Device:
    existing = require_device(device_id)
    allowed = {
        "name",
        "mac",
        "internal_host",
        "internal_port",
        "external_host",
        "external_port",
        "status_port",
    }
    unknown = set(changes) - allowed
    if unknown:
        raise ValidationError(f"Unknown device fields: {', '.join(sorted(unknown))}.")
    updated = get_device_repository().update(replace(existing, **changes))
    if updated is None:
        raise NotFoundError(f"Device {device_id} not found.")
    logger.bind(device_id=device_id).info("Device updated")
    return updated


def delete_device(device_id: str) -> None:
    """Cancel every timer of the device, then remove its schedules and itself."""
    require_device(device_id)
    schedule_repo = get_schedule_repository()
    cancelled = get_timer_store().cancel_all(schedule_repo.list_for_device(device_id))
    removed = schedule_repo.delete_for_device(device_id)
    get_device_repository().delete(device_id)
    logger.bind(
        device_id=device_id, timers_cancelled=cancelled, schedules_removed=removed
    ).info("Device deleted")


# Export / import ---------------------------------------------------------------

_DEVICE_KEYS = {
    "id": "id",
    "name": "name",
    "mac": "mac",
    "internal_host": "internal_host",
    "internalIp": "internal_host",
    "internalHost": "internal_host",
    "internal_port": "internal_port",
    "internalPort": "internal_port",
    "external_host": "external_host",
    "externalIp": "external_host",
    "externalHost": "external_host",
    "external_port": "external_port",
    "externalPort": "external_port",
    "status_port": "status_port",
    "statusCheckPort": "status_port",
    "statusPort": "status_port",
    "last_seen_at": "last_seen_at",
    "lastSeenEpoch": "last_seen_at",
    "lastSeenAt": "last_seen_at",
}

_SCHEDULE_KEYS = {
    "id": "id",
    "device_id": "device_id",
    "pcId": "device_id",
    "deviceId": "device_id",
    "days_bitmap": "days_bitmap",
    "daysBitmap": "days_bitmap",
    "hour": "hour",
    "timeHour": "hour",
    "minute": "minute",
    "timeMinute": "minute",
    "enabled": "enabled",
}


def _parse_timestamp(value: object) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        seconds = float(value)
        if seconds > 10**11:  # epoch milliseconds
            seconds /= 1000.0
        return datetime.fromtimestamp(seconds, tz=UTC)
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value)
        except ValueError as exc:
            raise ValidationError(f"Invalid timestamp {value!r}.") from exc
    raise ValidationError(f"Invalid timestamp {value!r}.")


def _remap(entry: object, keys: Mapping[str, str], kind: str) -> dict[str, Any]:
    if not isinstance(entry, Mapping):
        raise ValidationError(f"Each {kind} entry must be an object.")
    return {keys[key]: value for key, value in entry.items() if key in keys}


def _device_from_export(entry: object) -> Device:
    fields = _remap(entry, _DEVICE_KEYS, "device")
    missing = {"id", "name", "mac"} - {key for key, value in fields.items() if value}
    if missing:
        raise ValidationError(
            f"Imported device is missing {', '.join(sorted(missing))}."
        )
    fields["last_seen_at"] = _parse_timestamp(fields.get("last_seen_at"))
    for key in ("internal_port", "external_port"):
        if fields.get(key) is None:
            fields.pop(key, None)
    return validate_device(Device(**fields))


def _schedule_from_export(entry: object) -> Schedule:
    fields = _remap(entry, _SCHEDULE_KEYS, "schedule")
    missing = {"id", "device_id", "days_bitmap", "hour", "minute"} - set(fields)
    if missing:
        raise ValidationError(
            f"Imported schedule is missing {', '.join(sorted(missing))}."
        )
    fields["enabled"] = bool(fields.get("enabled", True))
    return validate_schedule(Schedule(**fields))


def export_configuration() -> dict[str, Any]:
    devices = get_device_repository().list_all()
    schedules = get_schedule_repository().list_all()
    return {
        "version": EXPORT_VERSION,
        "exported_at": datetime.now(tz=UTC).isoformat(),
        "devices": [
            {
                "id": device.id,
                "name": device.name,
                "mac": device.mac,
                "internal_host": device.internal_host,
                "internal_port": device.internal_port,
                "external_host": device.external_host,
                "external_port": device.external_port,
                "status_port": device.status_port,
                "last_seen_at": device.last_seen_at.isoformat()
                if device.last_seen_at
                else None,
            }
            for device in devices
        ],
        "schedules": [
            {
                "id": schedule.id,
                "device_id": schedule.device_id,
                "days_bitmap": schedule.days_bitmap,
                "hour": schedule.hour,
                "minute": schedule.minute,
                "enabled": schedule.enabled,
            }
            for schedule in schedules
        ],
    }


class ImportSummary(TypedDict):
    devices: int
    schedules: int
    armed: int


def import_configuration(payload: object) -> ImportSummary:
    """Upsert devices and schedules from an export.

    Accepts the export mapping (``devices``/``schedules``, or ``pcs`` from
    older backups) and the legacy shape, a bare list of devices. Every entry
    is validated before anything is written.
    """
    if isinstance(payload, list):
        raw_devices: object = payload
        raw_schedules: object = []
    elif isinstance(payload, Mapping):
        raw_devices = payload.get("devices", payload.get("pcs"))
        raw_schedules = payload.get("schedules") or []
    else:
        raise ValidationError("Import payload must be an object or a list.")
    if not isinstance(raw_devices, list) or not isinstance(raw_schedules, list):
        raise ValidationError("Import payload has no device list.")

    devices = [_device_from_export(entry) for entry in raw_devices]
    schedules = [_schedule_from_export(entry) for entry in raw_schedules]

    device_repo = get_device_repository()
    schedule_repo = get_schedule_repository()
    known_ids = {device.id for device in devices} | {
        device.id for device in device_repo.list_all()
    }
    orphans = [schedule.id for schedule in schedules if schedule.device_id not in known_ids]
    if orphans:
        raise ValidationError(
            f"Schedules reference unknown devices: {', '.join(orphans)}."
        )

    for device in devices:
        device_repo.register(device)
    store = get_timer_store()
    for schedule in schedules:
        existing = schedule_repo.get(schedule.id)
        if existing is not None:
            store.cancel(existing.id)
            schedule_repo.update(schedule)
        else:
            schedule_repo.insert(schedule)

    armed = reconcile_schedules() if schedules else 0
    logger.bind(
        devices=len(devices), schedules=len(schedules), armed=armed
    ).info("Configuration imported")
    return {"devices": len(devices), "schedules": len(schedules), "armed": armed}


__all__ = [
    "DeviceRecord",
    "ImportSummary",
    "ScheduleRecord",
    "StatusRecord",
    "check_device_status",
    "create_schedule",
    "delete_device",
    "delete_schedule",
    "device_record",
    "export_configuration",
    "get_device_records",
    "import_configuration",
    "list_schedules",
    "reconcile_schedules",
    "register_device",
    "require_device",
    "require_schedule",
    "schedule_record",
    "toggle_schedule",
    "update_device",
    "update_schedule",
    "wake_now",
]
