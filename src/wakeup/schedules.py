"""Repositories and helpers for managing recurring wake schedules."""

from __future__ import annotations

import uuid
from collections.abc import Iterable
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from functools import lru_cache
from threading import Lock
from typing import Protocol

from sqlalchemy import delete, select
from sqlalchemy.orm import Session, sessionmaker

from .database import database_available, get_session_factory
from .db_models import ScheduleModel
from .errors import ValidationError
from .recurrence import describe_days, normalize_days_bitmap, validate_time_of_day

# Utility ---------------------------------------------------------------------


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Schedule:
    """A weekly wake job for one device."""

    id: str
    device_id: str
    days_bitmap: int
    hour: int
    minute: int
    enabled: bool = True
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def label(self) -> str:
        return f"{describe_days(self.days_bitmap)} at {self.hour:02d}:{self.minute:02d}"

    def matches(self, hour: int, minute: int, days_bitmap: int) -> bool:
        return (
            self.hour == hour
            and self.minute == minute
            and self.days_bitmap == days_bitmap
        )


def validate_schedule(schedule: Schedule) -> Schedule:
    """Return a normalized copy of ``schedule`` or raise :class:`ValidationError`."""
    if not schedule.device_id:
        raise ValidationError("Schedule device_id must not be empty.")
    validate_time_of_day(schedule.hour, schedule.minute)
    return replace(schedule, days_bitmap=normalize_days_bitmap(schedule.days_bitmap))


def new_schedule(
    device_id: str,
    hour: int,
    minute: int,
    days_bitmap: int,
    *,
    enabled: bool = True,
) -> Schedule:
    timestamp = _now()
    return validate_schedule(
        Schedule(
            id=str(uuid.uuid4()),
            device_id=device_id,
            days_bitmap=days_bitmap,
            hour=hour,
            minute=minute,
            enabled=enabled,
            created_at=timestamp,
            updated_at=timestamp,
        )
    )


def _schedule_to_model(schedule: Schedule) -> ScheduleModel:
    return ScheduleModel(
        id=schedule.id,
        device_id=schedule.device_id,
        days_bitmap=schedule.days_bitmap,
        hour=schedule.hour,
        minute=schedule.minute,
        enabled=schedule.enabled,
        created_at=schedule.created_at.isoformat() if schedule.created_at else None,
        updated_at=schedule.updated_at.isoformat() if schedule.updated_at else None,
    )


def _model_to_schedule(model: ScheduleModel) -> Schedule:
    return Schedule(
        id=model.id,
        device_id=model.device_id,
        days_bitmap=model.days_bitmap,
        hour=model.hour,
        minute=model.minute,
        enabled=bool(model.enabled),
        created_at=datetime.fromisoformat(model.created_at)
        if model.created_at
        else None,
        updated_at=datetime.fromisoformat(model.updated_at)
        if model.updated_at
        else None,
    )


# Repository protocol ---------------------------------------------------------


class ScheduleRepository(Protocol):
    """Abstraction used by services and the fire handler to manage schedules."""

    def get(self, schedule_id: str) -> Schedule | None:
        ...

    def list_all(self) -> list[Schedule]:
        ...

    def list_for_device(self, device_id: str) -> list[Schedule]:
        ...

    def list_enabled(self) -> list[Schedule]:
        ...

    def insert(self, schedule: Schedule) -> Schedule:
        ...

    def update(self, schedule: Schedule) -> Schedule | None:
        ...

    def delete(self, schedule_id: str) -> bool:
        ...

    def delete_for_device(self, device_id: str) -> int:
        ...


# In-memory repository --------------------------------------------------------


class InMemoryScheduleRepository(ScheduleRepository):
    def __init__(self, schedules: Iterable[Schedule] = ()) -> None:
        self._lock = Lock()
        self._schedules: dict[str, Schedule] = {
            schedule.id: validate_schedule(schedule) for schedule in schedules
        }

    def get(self, schedule_id: str) -> Schedule | None:
        with self._lock:
            schedule = self._schedules.get(schedule_id)
            return replace(schedule) if schedule else None

    def list_all(self) -> list[Schedule]:
        with self._lock:
            return [replace(schedule) for schedule in self._schedules.values()]

    def list_for_device(self, device_id: str) -> list[Schedule]:
        with self._lock:
            return [
                replace(schedule)
                for schedule in self._schedules.values()
                if schedule.device_id == device_id
            ]

    def list_enabled(self) -> list[Schedule]:
        with self._lock:
            return [
                replace(schedule)
                for schedule in self._schedules.values()
                if schedule.enabled
            ]

    def insert(self, schedule: Schedule) -> Schedule:
        stored = validate_schedule(schedule)
        if stored.created_at is None:
            stored = replace(stored, created_at=_now(), updated_at=_now())
        with self._lock:
            self._schedules[stored.id] = stored
        return replace(stored)

    def update(self, schedule: Schedule) -> Schedule | None:
        stored = replace(validate_schedule(schedule), updated_at=_now())
        with self._lock:
            existing = self._schedules.get(stored.id)
            if existing is None:
                return None
            stored.created_at = existing.created_at
            self._schedules[stored.id] = stored
        return replace(stored)

    def delete(self, schedule_id: str) -> bool:
        with self._lock:
            return self._schedules.pop(schedule_id, None) is not None

    def delete_for_device(self, device_id: str) -> int:
        with self._lock:
            doomed = [
                schedule_id
                for schedule_id, schedule in self._schedules.items()
                if schedule.device_id == device_id
            ]
            for schedule_id in doomed:
                del self._schedules[schedule_id]
            return len(doomed)


# SQL repository --------------------------------------------------------------


class SQLAlchemyScheduleRepository(ScheduleRepository):
    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory

    def get(self, schedule_id: str) -> Schedule | None:
        with self._session_factory() as session:
            model = session.get(ScheduleModel, schedule_id)
            return _model_to_schedule(model) if model else None

    def _list(self, statement) -> list[Schedule]:
        with self._session_factory() as session:
            rows = session.execute(statement).scalars().all()
            return [_model_to_schedule(row) for row in rows]

    def list_all(self) -> list[Schedule]:
        return self._list(select(ScheduleModel))

    def list_for_device(self, device_id: str) -> list[Schedule]:
        return self._list(
            select(ScheduleModel).where(ScheduleModel.device_id == device_id)
        )

    def list_enabled(self) -> list[Schedule]:
        return self._list(select(ScheduleModel).where(ScheduleModel.enabled.is_(True)))

    def insert(self, schedule: Schedule) -> Schedule:
        stored = validate_schedule(schedule)
        if stored.created_at is None:
            stored = replace(stored, created_at=_now(), updated_at=_now())
        with self._session_factory() as session:
            session.merge(_schedule_to_model(stored))
            session.commit()
        return stored

    def update(self, schedule: Schedule) -> Schedule | None:
        stored = replace(validate_schedule(schedule), updated_at=_now())
        with self._session_factory() as session:
            model = session.get(ScheduleModel, stored.id)
            if model is None:
                return None
            model.device_id = stored.device_id
            model.days_bitmap = stored.days_bitmap
            model.hour = stored.hour
            model.minute = stored.minute
            model.enabled = stored.enabled
            model.updated_at = stored.updated_at.isoformat()
            session.commit()
            return _model_to_schedule(model)

    def delete(self, schedule_id: str) -> bool:
        with self._session_factory() as session:
            result = session.execute(
                delete(ScheduleModel).where(ScheduleModel.id == schedule_id)
            )
            session.commit()
            return bool(result.rowcount)

    def delete_for_device(self, device_id: str) -> int:
        with self._session_factory() as session:
            result = session.execute(
                delete(ScheduleModel).where(ScheduleModel.device_id == device_id)
            )
            session.commit()
            return int(result.rowcount or 0)


# Factory ---------------------------------------------------------------------


@lru_cache
def _default_schedule_repository() -> InMemoryScheduleRepository:
    return InMemoryScheduleRepository()


_SQL_SCHEDULE_REPOSITORY: SQLAlchemyScheduleRepository | None = None


def _get_sql_schedule_repository() -> SQLAlchemyScheduleRepository:
    global _SQL_SCHEDULE_REPOSITORY
    if _SQL_SCHEDULE_REPOSITORY is None:
        _SQL_SCHEDULE_REPOSITORY = SQLAlchemyScheduleRepository(get_session_factory())
    return _SQL_SCHEDULE_REPOSITORY


def get_schedule_repository() -> ScheduleRepository:
    """Return the configured schedule repository."""
    if database_available():
        return _get_sql_schedule_repository()
    return _default_schedule_repository()


__all__ = [
    "Schedule",
    "ScheduleRepository",
    "InMemoryScheduleRepository",
    "SQLAlchemyScheduleRepository",
    "get_schedule_repository",
    "new_schedule",
    "validate_schedule",
]
