"""API router exposing device, wake, and schedule endpoints."""

from __future__ import annotations

from typing import Annotated, Any

from fastapi import APIRouter, Body, HTTPException, Query, Response, status

from . import schemas, services
from .errors import NotFoundError, ValidationError
from .notifications import list_recent_notifications
from .schedules import Schedule
from .status import monitor
from .wol.devices import Device, get_device_repository

router = APIRouter(prefix="/api", tags=["devices"])

WAKE_SENT_MESSAGE = "Wake packet sent."
WAKE_FAILED_MESSAGE = "Failed to send wake packet."


def _device_to_schema(device: Device) -> schemas.DeviceInfo:
    record = services.device_record(device)
    reachability = monitor.get(device.id)
    return schemas.DeviceInfo(
        **record, online=reachability.online if reachability else None
    )


def _schedule_to_schema(schedule: Schedule) -> schemas.WakeSchedule:
    return schemas.WakeSchedule(**services.schedule_record(schedule))


def _not_found(exc: NotFoundError) -> HTTPException:
    return HTTPException(status.HTTP_404_NOT_FOUND, detail=str(exc))


def _unprocessable(exc: ValidationError) -> HTTPException:
    return HTTPException(status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc))


# Devices ---------------------------------------------------------------------


@router.get("/devices", response_model=schemas.DeviceListResponse)
def list_devices(
    search: Annotated[str | None, Query()] = None,
) -> schemas.DeviceListResponse:
    devices = get_device_repository().list_all()
    if search and search.strip():
        needle = search.strip().lower()
        devices = [
            device
            for device in devices
            if needle in device.name.lower() or needle in device.mac
        ]
    return schemas.DeviceListResponse(
        devices=[_device_to_schema(device) for device in devices]
    )


@router.post(
    "/devices",
    response_model=schemas.DeviceInfo,
    status_code=status.HTTP_201_CREATED,
)
def create_device(payload: schemas.DeviceCreateRequest) -> schemas.DeviceInfo:
    try:
        device = services.register_device(
            payload.name,
            payload.mac,
            internal_host=payload.internal_host,
            internal_port=payload.internal_port,
            external_host=payload.external_host,
            external_port=payload.external_port,
            status_port=payload.status_port,
        )
    except ValidationError as exc:
        raise _unprocessable(exc) from exc
    return _device_to_schema(device)


@router.get("/devices/{device_id}", response_model=schemas.DeviceInfo)
def get_device(device_id: str) -> schemas.DeviceInfo:
    try:
        device = services.require_device(device_id)
    except NotFoundError as exc:
        raise _not_found(exc) from exc
    return _device_to_schema(device)


@router.patch("/devices/{device_id}", response_model=schemas.DeviceInfo)
def update_device(
    device_id: str, payload: schemas.DeviceUpdateRequest
) -> schemas.DeviceInfo:
    changes = payload.model_dump(exclude_unset=True)
    if not changes:
        raise HTTPException(
            status.HTTP_400_BAD_REQUEST, detail="No fields provided for update."
        )
    try:
        device = services.update_device(device_id, **changes)
    except NotFoundError as exc:
        raise _not_found(exc) from exc
    except ValidationError as exc:
        raise _unprocessable(exc) from exc
    return _device_to_schema(device)


@router.delete("/devices/{device_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_device(device_id: str) -> Response:
    try:
        services.delete_device(device_id)
    except NotFoundError as exc:
        raise _not_found(exc) from exc
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/devices/{device_id}/wake", response_model=schemas.WakeResponse)
def wake_device(device_id: str) -> schemas.WakeResponse:
    try:
        result = services.wake_now(device_id)
    except NotFoundError as exc:
        raise _not_found(exc) from exc
    except ValidationError as exc:
        raise _unprocessable(exc) from exc
    return schemas.WakeResponse(
        device_id=device_id,
        success=result.success,
        message=WAKE_SENT_MESSAGE if result.success else WAKE_FAILED_MESSAGE,
        attempts=[
            schemas.WakeAttempt(
                target=str(attempt.target),
                success=attempt.success,
                error=str(attempt.error) if attempt.error else None,
            )
            for attempt in result.attempts
        ],
    )


@router.get(
    "/devices/{device_id}/status", response_model=schemas.DeviceStatusResponse
)
def get_device_status(device_id: str) -> schemas.DeviceStatusResponse:
    try:
        record = services.check_device_status(device_id)
    except NotFoundError as exc:
        raise _not_found(exc) from exc
    return schemas.DeviceStatusResponse(**record)


# Schedules -------------------------------------------------------------------


@router.get(
    "/devices/{device_id}/schedules",
    response_model=schemas.ScheduleListResponse,
    tags=["schedules"],
)
def list_device_schedules(device_id: str) -> schemas.ScheduleListResponse:
    try:
        schedules = services.list_schedules(device_id)
    except NotFoundError as exc:
        raise _not_found(exc) from exc
    return schemas.ScheduleListResponse(
        schedules=[_schedule_to_schema(schedule) for schedule in schedules]
    )


@router.post(
    "/devices/{device_id}/schedules",
    response_model=schemas.WakeSchedule,
    status_code=status.HTTP_201_CREATED,
    tags=["schedules"],
)
def create_schedule(
    device_id: str, payload: schemas.ScheduleCreateRequest
) -> schemas.WakeSchedule:
    try:
        schedule = services.create_schedule(
            device_id,
            payload.hour,
            payload.minute,
            payload.days_bitmap,
            enabled=payload.enabled,
        )
    except NotFoundError as exc:
        raise _not_found(exc) from exc
    except ValidationError as exc:
        raise _unprocessable(exc) from exc
    return _schedule_to_schema(schedule)


@router.get(
    "/schedules", response_model=schemas.ScheduleListResponse, tags=["schedules"]
)
def list_schedules() -> schemas.ScheduleListResponse:
    return schemas.ScheduleListResponse(
        schedules=[
            _schedule_to_schema(schedule) for schedule in services.list_schedules()
        ]
    )


@router.get(
    "/schedules/{schedule_id}",
    response_model=schemas.WakeSchedule,
    tags=["schedules"],
)
def get_schedule(schedule_id: str) -> schemas.WakeSchedule:
    try:
        schedule = services.require_schedule(schedule_id)
    except NotFoundError as exc:
        raise _not_found(exc) from exc
    return _schedule_to_schema(schedule)


@router.patch(
    "/schedules/{schedule_id}",
    response_model=schemas.WakeSchedule,
    tags=["schedules"],
)
def update_schedule(
    schedule_id: str, payload: schemas.ScheduleUpdateRequest
) -> schemas.WakeSchedule:
    try:
        schedule = services.update_schedule(
            schedule_id, payload.hour, payload.minute, payload.days_bitmap
        )
    except NotFoundError as exc:
        raise _not_found(exc) from exc
    except ValidationError as exc:
        raise _unprocessable(exc) from exc
    return _schedule_to_schema(schedule)


@router.delete(
    "/schedules/{schedule_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    tags=["schedules"],
)
def delete_schedule(schedule_id: str) -> Response:
    try:
        services.delete_schedule(schedule_id)
    except NotFoundError as exc:
        raise _not_found(exc) from exc
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/schedules/{schedule_id}/toggle",
    response_model=schemas.WakeSchedule,
    tags=["schedules"],
)
def toggle_schedule(schedule_id: str) -> schemas.WakeSchedule:
    try:
        schedule = services.toggle_schedule(schedule_id)
    except NotFoundError as exc:
        raise _not_found(exc) from exc
    return _schedule_to_schema(schedule)


# Notifications and configuration ---------------------------------------------


@router.get(
    "/notifications",
    response_model=schemas.NotificationListResponse,
    tags=["notifications"],
)
def list_notifications(
    limit: Annotated[
        int,
        Query(ge=1, le=500, description="Maximum number of notices to return."),
    ] = 50,
) -> schemas.NotificationListResponse:
    return schemas.NotificationListResponse(
        notifications=[
            schemas.NotificationInfo(
                id=notice.id,
                created_at=notice.created_at,
                title=notice.title,
                message=notice.message,
                device_id=notice.device_id,
            )
            for notice in list_recent_notifications(limit)
        ]
    )


@router.get("/configuration", tags=["configuration"])
def export_configuration() -> dict[str, Any]:
    return services.export_configuration()


@router.post(
    "/configuration",
    response_model=schemas.ImportResponse,
    tags=["configuration"],
)
def import_configuration(
    payload: Annotated[schemas.ConfigurationPayload, Body()],
) -> schemas.ImportResponse:
    try:
        summary = services.import_configuration(payload)
    except ValidationError as exc:
        raise _unprocessable(exc) from exc
    return schemas.ImportResponse(**summary)
