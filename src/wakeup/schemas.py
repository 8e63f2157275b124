"""Pydantic models for the wake scheduler HTTP API."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


def _to_camel(string: str) -> str:
    first, *rest = string.split("_")
    return first + "".join(word.capitalize() for word in rest)


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=_to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Device models


class DeviceInfo(CamelModel):
    id: str
    name: str
    mac: str
    vendor: str | None = None
    internal_host: str | None = None
    internal_port: int = 9
    external_host: str | None = None
    external_port: int = 9
    status_port: int | None = None
    last_seen_at: datetime | None = None
    online: bool | None = None


class DeviceListResponse(CamelModel):
    devices: list[DeviceInfo]


class DeviceCreateRequest(CamelModel):
    name: str = Field(..., min_length=1, max_length=255)
    mac: str = Field(..., min_length=1)
    internal_host: str | None = None
    internal_port: int | None = Field(default=None, ge=1, le=65535)
    external_host: str | None = None
    external_port: int | None = Field(default=None, ge=1, le=65535)
    status_port: int | None = Field(default=None, ge=1, le=65535)


class DeviceUpdateRequest(CamelModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    mac: str | None = None
    internal_host: str | None = None
    internal_port: int | None = Field(default=None, ge=1, le=65535)
    external_host: str | None = None
    external_port: int | None = Field(default=None, ge=1, le=65535)
    status_port: int | None = Field(default=None, ge=1, le=65535)


class WakeAttempt(CamelModel):
    target: str
    success: bool
    error: str | None = None


class WakeResponse(CamelModel):
    device_id: str
    success: bool
    message: str
    attempts: list[WakeAttempt] = Field(default_factory=list)


class DeviceStatusResponse(CamelModel):
    device_id: str
    online: bool
    checked_at: datetime


# ---------------------------------------------------------------------------
# Schedule models


class WakeSchedule(CamelModel):
    id: str
    device_id: str
    days_bitmap: int
    hour: int
    minute: int
    enabled: bool
    label: str
    next_fire_at: datetime | None = None


class ScheduleListResponse(CamelModel):
    schedules: list[WakeSchedule]


class ScheduleCreateRequest(CamelModel):
    hour: int = Field(..., ge=0, le=23)
    minute: int = Field(..., ge=0, le=59)
    days_bitmap: int = Field(default=31, ge=0, le=127)
    enabled: bool = True


class ScheduleUpdateRequest(CamelModel):
    hour: int = Field(..., ge=0, le=23)
    minute: int = Field(..., ge=0, le=59)
    days_bitmap: int = Field(..., ge=0, le=127)


# ---------------------------------------------------------------------------
# Notifications and configuration


class NotificationInfo(CamelModel):
    id: int | None = None
    created_at: datetime
    title: str
    message: str
    device_id: str | None = None


class NotificationListResponse(CamelModel):
    notifications: list[NotificationInfo] = Field(default_factory=list)


class ImportResponse(CamelModel):
    devices: int
    schedules: int
    armed: int


ConfigurationPayload = dict[str, Any] | list[dict[str, Any]]


__all__ = [
    "CamelModel",
    "ConfigurationPayload",
    "DeviceCreateRequest",
    "DeviceInfo",
    "DeviceListResponse",
    "DeviceStatusResponse",
    "DeviceUpdateRequest",
    "ImportResponse",
    "NotificationInfo",
    "NotificationListResponse",
    "ScheduleCreateRequest",
    "ScheduleListResponse",
    "ScheduleUpdateRequest",
    "WakeAttempt",
    "WakeResponse",
    "WakeSchedule",
]
