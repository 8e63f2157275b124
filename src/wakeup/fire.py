"""Callback run when an armed wake timer fires.

The handler wakes the device, records the successful dispatch, and re-arms
the schedule for its next occurrence. Each step is isolated: a failure is
logged and the remaining steps still run.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import asdict, dataclass, fields
from datetime import datetime
from functools import lru_cache
from threading import Lock
from typing import Any

from .dispatch import Sender, wake_device
from .errors import NotFoundError
from .notifications import notify_wake_sent
from .schedules import ScheduleRepository, get_schedule_repository
from .timer_store import ArmedTimer, ScheduleTimerStore, get_timer_store
from .wakelock import WakeLock
from .wol.config import settings
from .wol.devices import Device, DeviceRepository, get_device_repository
from .wol.utils import logger


@dataclass(frozen=True)
class TimerPayload:
    """Values carried by a timer; ``schedule_id`` is absent on legacy timers."""

    device_id: str
    hour: int
    minute: int
    days_bitmap: int
    schedule_id: str | None = None
    fire_at: str | None = None

    @classmethod
    def from_kwargs(cls, **kwargs: Any) -> TimerPayload:
        known = {item.name for item in fields(cls)}
        return cls(**{key: value for key, value in kwargs.items() if key in known})

    def to_kwargs(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class FireOutcome:
    payload: TimerPayload
    dispatched: bool = False
    schedule_id: str | None = None
    rearmed: ArmedTimer | None = None
    duplicate: bool = False


class FireHandler:
    def __init__(
        self,
        *,
        devices: DeviceRepository | None = None,
        schedules: ScheduleRepository | None = None,
        timer_store: ScheduleTimerStore | None = None,
        sender: Sender | None = None,
        notifier: Callable[[Device], object] | None = None,
        clock: Callable[[], datetime] | None = None,
        wake_lock_timeout: float | None = None,
    ) -> None:
        self._devices = devices
        self._schedules = schedules
        self._timer_store = timer_store
        self._sender = sender
        self._notifier = notifier or notify_wake_sent
        self._clock = clock or settings.now
        self._wake_lock_timeout = wake_lock_timeout
        self._last_fire: dict[str, str] = {}
        self._guard = Lock()

    @property
    def devices(self) -> DeviceRepository:
        return self._devices or get_device_repository()

    @property
    def schedules(self) -> ScheduleRepository:
        return self._schedules or get_schedule_repository()

    @property
    def timer_store(self) -> ScheduleTimerStore:
        return self._timer_store or get_timer_store()

    def handle(self, payload: TimerPayload) -> FireOutcome:
        outcome = FireOutcome(payload=payload)
        log = logger.bind(
            device_id=payload.device_id,
            schedule_id=payload.schedule_id or "legacy",
        )
        lock = WakeLock(
            f"wakeup:fire:{payload.device_id}", timeout=self._wake_lock_timeout
        )
        with lock:
            if self._seen_before(payload):
                log.warning("Duplicate timer delivery ignored")
                outcome.duplicate = True
                return outcome

            log.info("Wake timer fired")
            device = self._dispatch(payload, outcome, log)

            if outcome.dispatched and device is not None:
                self._record_success(device, log)

            try:
                outcome.schedule_id = self._resolve_schedule_id(payload)
            except Exception:
                log.exception("Failed to resolve schedule for fired timer")
            if outcome.schedule_id is None:
                log.warning("No schedule matches the fired timer; not re-arming")
                return outcome

            try:
                outcome.rearmed = self._rearm(outcome.schedule_id, payload)
            except Exception:
                log.exception("Failed to re-arm schedule")
                self.timer_store.forget(outcome.schedule_id)
        return outcome

    def _seen_before(self, payload: TimerPayload) -> bool:
        if not payload.schedule_id or not payload.fire_at:
            return False
        with self._guard:
            if self._last_fire.get(payload.schedule_id) == payload.fire_at:
                return True
            self._last_fire[payload.schedule_id] = payload.fire_at
            return False

    def _dispatch(
        self, payload: TimerPayload, outcome: FireOutcome, log: Any
    ) -> Device | None:
        try:
            result = asyncio.run(
                wake_device(
                    payload.device_id, devices=self.devices, sender=self._sender
                )
            )
        except NotFoundError:
            log.warning("Device for fired timer no longer exists")
            return None
        except Exception:
            log.exception("Wake dispatch crashed")
            return None
        outcome.dispatched = result.success
        if not result.success:
            log.warning("Wake dispatch failed for every target")
        return result.device

    def _record_success(self, device: Device, log: Any) -> None:
        try:
            self.devices.update_last_seen(device.id, self._clock())
        except Exception:
            log.exception("Failed to update last seen timestamp")
        try:
            self._notifier(device)
        except Exception:
            log.exception("Failed to publish wake notification")

    def _resolve_schedule_id(self, payload: TimerPayload) -> str | None:
        if payload.schedule_id:
            return payload.schedule_id
        for schedule in self.schedules.list_for_device(payload.device_id):
            if schedule.matches(payload.hour, payload.minute, payload.days_bitmap):
                return schedule.id
        return None

    def _rearm(self, schedule_id: str, payload: TimerPayload) -> ArmedTimer | None:
        # Re-read right before arming so a concurrent delete or disable wins.
        current = self.schedules.get(schedule_id)
        if current is None or not current.enabled:
            logger.bind(schedule_id=schedule_id).debug(
                "Schedule deleted or disabled since arming; not re-arming"
            )
            self.timer_store.forget(schedule_id)
            return None
        if current.device_id != payload.device_id:
            return None
        return self.timer_store.arm(
            schedule_id,
            payload.device_id,
            payload.hour,
            payload.minute,
            payload.days_bitmap,
        )


@lru_cache
def get_fire_handler() -> FireHandler:
    return FireHandler()


def on_timer_fired(**kwargs: Any) -> None:
    """Entry point invoked by the timer backend."""
    get_fire_handler().handle(TimerPayload.from_kwargs(**kwargs))


__all__ = [
    "FireHandler",
    "FireOutcome",
    "TimerPayload",
    "get_fire_handler",
    "on_timer_fired",
]
