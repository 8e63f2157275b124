"""User-visible notices raised after successful wake dispatches."""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import UTC, datetime
from threading import Lock
from typing import Protocol

from sqlalchemy import delete, select
from sqlalchemy.orm import Session, sessionmaker

from .database import database_available, get_session_factory
from .db_models import NotificationModel
from .wol.config import settings
from .wol.devices import Device
from .wol.utils import logger

WAKE_SENT_TITLE = "Wake-on-LAN sent"
NOTIFICATION_CAPACITY = 500


@dataclass(frozen=True)
class Notification:
    id: int | None
    created_at: datetime
    title: str
    message: str
    device_id: str | None = None


class NotificationRepository(Protocol):
    def add(self, notification: Notification) -> Notification:
        ...

    def list_recent(self, limit: int = 50) -> list[Notification]:
        ...


class InMemoryNotificationRepository(NotificationRepository):
    """Bounded in-memory notice feed used when no database is configured."""

    def __init__(self, *, capacity: int = NOTIFICATION_CAPACITY) -> None:
        self._items: list[Notification] = []
        self._lock = Lock()
        self._counter = 0
        self._capacity = capacity

    def add(self, notification: Notification) -> Notification:
        with self._lock:
            self._counter += 1
            stored = replace(notification, id=self._counter)
            self._items.append(stored)
            del self._items[: -self._capacity]
            return stored

    def list_recent(self, limit: int = 50) -> list[Notification]:
        with self._lock:
            return list(reversed(self._items[-limit:]))


class SQLNotificationRepository(NotificationRepository):
    def __init__(
        self,
        session_factory: sessionmaker[Session],
        *,
        capacity: int = NOTIFICATION_CAPACITY,
    ) -> None:
        self._session_factory = session_factory
        self._capacity = capacity

    @staticmethod
    def _to_notification(row: NotificationModel) -> Notification:
        return Notification(
            id=row.id,
            created_at=datetime.fromisoformat(row.created_at),
            title=row.title,
            message=row.message,
            device_id=row.device_id,
        )

    def add(self, notification: Notification) -> Notification:
        model = NotificationModel(
            created_at=notification.created_at.isoformat(),
            title=notification.title,
            message=notification.message,
            device_id=notification.device_id,
        )
        with self._session_factory() as session:
            session.add(model)
            session.commit()
            session.refresh(model)
            stored = self._to_notification(model)
            self._prune(session)
            return stored

    def _prune(self, session: Session) -> None:
        """Keep only the newest ``capacity`` rows."""
        cutoff = session.execute(
            select(NotificationModel.id)
            .order_by(NotificationModel.id.desc())
            .offset(self._capacity)
            .limit(1)
        ).scalar_one_or_none()
        if cutoff is None:
            return
        session.execute(delete(NotificationModel).where(NotificationModel.id <= cutoff))
        session.commit()

    def list_recent(self, limit: int = 50) -> list[Notification]:
        with self._session_factory() as session:
            rows = (
                session.execute(
                    select(NotificationModel)
                    .order_by(NotificationModel.id.desc())
                    .limit(limit)
                )
                .scalars()
                .all()
            )
            return [self._to_notification(row) for row in rows]


_DEFAULT_REPOSITORY = InMemoryNotificationRepository()
_SQL_REPOSITORY: SQLNotificationRepository | None = None


def get_notification_repository() -> NotificationRepository:
    """Return the configured notification repository."""
    global _SQL_REPOSITORY
    if not database_available():
        return _DEFAULT_REPOSITORY
    if _SQL_REPOSITORY is None:
        _SQL_REPOSITORY = SQLNotificationRepository(get_session_factory())
    return _SQL_REPOSITORY


def notify_wake_sent(
    device: Device, *, repository: NotificationRepository | None = None
) -> Notification | None:
    """Publish "wake packet sent to {name}"; skipped when notifications are off."""
    if not settings.notifications_enabled:
        return None
    notification = Notification(
        id=None,
        created_at=datetime.now(tz=UTC).astimezone(),
        title=WAKE_SENT_TITLE,
        message=f"Wake packet sent to {device.name}",
        device_id=device.id,
    )
    logger.bind(device_id=device.id).info(notification.message)
    return (repository or get_notification_repository()).add(notification)


def list_recent_notifications(limit: int = 50) -> list[Notification]:
    return get_notification_repository().list_recent(limit)


__all__ = [
    "Notification",
    "NotificationRepository",
    "InMemoryNotificationRepository",
    "SQLNotificationRepository",
    "get_notification_repository",
    "list_recent_notifications",
    "notify_wake_sent",
]
