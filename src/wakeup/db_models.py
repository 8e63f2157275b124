"""SQLAlchemy ORM models for persisting devices, schedules, and notifications."""

from __future__ import annotations

from sqlalchemy import Boolean, ForeignKey, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Declarative base for ORM models."""


class DeviceModel(Base):
    """ORM model representing registered wake targets."""

    __tablename__ = "devices"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    mac: Mapped[str] = mapped_column(String(17), nullable=False)
    internal_host: Mapped[str | None] = mapped_column(String(255), nullable=True)
    internal_port: Mapped[int] = mapped_column(Integer, nullable=False, default=9)
    external_host: Mapped[str | None] = mapped_column(String(255), nullable=True)
    external_port: Mapped[int] = mapped_column(Integer, nullable=False, default=9)
    status_port: Mapped[int | None] = mapped_column(Integer, nullable=True)
    last_seen_at: Mapped[str | None] = mapped_column(String(64), nullable=True)


class ScheduleModel(Base):
    """ORM model representing recurring wake schedules."""

    __tablename__ = "schedules"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    device_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("devices.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    days_bitmap: Mapped[int] = mapped_column(Integer, nullable=False)
    hour: Mapped[int] = mapped_column(Integer, nullable=False)
    minute: Mapped[int] = mapped_column(Integer, nullable=False)
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[str | None] = mapped_column(String(64), nullable=True)
    updated_at: Mapped[str | None] = mapped_column(String(64), nullable=True)


class NotificationModel(Base):
    """User-facing notices such as "wake packet sent"."""

    __tablename__ = "notifications"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    created_at: Mapped[str] = mapped_column(String(64), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    device_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
