"""Arms, re-arms, and cancels wake timers keyed by schedule id."""

from __future__ import annotations

import hashlib
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime
from functools import lru_cache
from threading import RLock
from typing import TYPE_CHECKING

from .errors import ExactTimerDenied, SchedulingComputationError
from .recurrence import next_fire_instant
from .schedules import Schedule, ScheduleRepository
from .timers import TimerBackend, get_timer_backend
from .wol.config import settings
from .wol.devices import DeviceRepository
from .wol.utils import logger

if TYPE_CHECKING:
    from loguru import Logger

Clock = Callable[[], datetime]


def request_id_for(schedule_id: str) -> str:
    """Return the timer request id for ``schedule_id``.

    Stable across processes (unlike ``hash()``), so re-arming the same
    schedule replaces its timer instead of adding a second one.
    """
    digest = hashlib.blake2b(schedule_id.encode("utf-8"), digest_size=8).hexdigest()
    return f"wake-{digest}"


def legacy_request_id(device_id: str, hour: int, minute: int) -> str:
    """Request id used by releases that keyed timers by device and time of day."""
    slot = hour * 60 + minute
    digest = hashlib.blake2b(device_id.encode("utf-8"), digest_size=8).hexdigest()
    return f"wake-{digest}-{slot}"


@dataclass(frozen=True)
class ArmedTimer:
    """Opaque handle for the live timer of one schedule."""

    schedule_id: str
    device_id: str
    request_id: str
    fire_at: datetime
    exact: bool


class ScheduleTimerStore:
    """Owns the mapping from schedule id to its single live timer."""

    def __init__(
        self,
        backend: TimerBackend,
        *,
        clock: Clock | None = None,
    ) -> None:
        self._backend = backend
        self._clock = clock or settings.now
        self._armed: dict[str, ArmedTimer] = {}
        self._lock = RLock()

    @property
    def backend(self) -> TimerBackend:
        return self._backend

    def arm(
        self,
        schedule_id: str,
        device_id: str,
        hour: int,
        minute: int,
        days_bitmap: int,
    ) -> ArmedTimer:
        """Register the timer for the next occurrence, replacing any prior one."""
        fire_at = next_fire_instant(hour, minute, days_bitmap, self._clock())
        if fire_at is None:
            raise SchedulingComputationError(
                f"No upcoming occurrence for schedule {schedule_id} "
                f"(days_bitmap={days_bitmap})."
            )

        request_id = request_id_for(schedule_id)
        payload = {
            "device_id": device_id,
            "schedule_id": schedule_id,
            "hour": hour,
            "minute": minute,
            "days_bitmap": days_bitmap,
            "fire_at": fire_at.isoformat(),
        }
        log = logger.bind(schedule_id=schedule_id, device_id=device_id)

        with self._lock:
            self.cancel_legacy(device_id, hour, minute)
            exact = self._register(request_id, fire_at, payload, log)
            armed = ArmedTimer(
                schedule_id=schedule_id,
                device_id=device_id,
                request_id=request_id,
                fire_at=fire_at,
                exact=exact,
            )
            self._armed[schedule_id] = armed

        log.bind(fire_at=fire_at.isoformat(), exact=exact).info("Wake timer armed")
        return armed

    def _register(
        self,
        request_id: str,
        fire_at: datetime,
        payload: dict[str, object],
        log: Logger,
    ) -> bool:
        if self._backend.can_schedule_exact():
            try:
                self._backend.arm_exact_wake(request_id, fire_at, payload)
                return True
            except ExactTimerDenied as exc:
                log.warning("Exact timer denied, falling back to inexact: {}", exc)
        else:
            log.warning("Exact timers unavailable; arming with reduced precision")
        self._backend.arm_inexact_wake(request_id, fire_at, payload)
        return False

    def cancel(self, schedule_id: str) -> bool:
        """Remove the timer for ``schedule_id``; unknown ids are a no-op."""
        with self._lock:
            self._armed.pop(schedule_id, None)
            removed = self._backend.cancel(request_id_for(schedule_id))
        if removed:
            logger.bind(schedule_id=schedule_id).debug("Wake timer cancelled")
        return removed

    def cancel_legacy(self, device_id: str, hour: int, minute: int) -> bool:
        try:
            removed = self._backend.cancel(legacy_request_id(device_id, hour, minute))
        except Exception as exc:
            logger.bind(device_id=device_id).debug(
                "Legacy timer cancel failed: {}", exc
            )
            return False
        if removed:
            logger.bind(device_id=device_id, hour=hour, minute=minute).info(
                "Cancelled wake timer registered under the legacy id"
            )
        return removed

    def cancel_all(self, schedules: Iterable[Schedule]) -> int:
        """Cancel every schedule's timer independently; return how many existed."""
        removed = 0
        for schedule in schedules:
            try:
                if self.cancel(schedule.id):
                    removed += 1
            except Exception:
                logger.bind(schedule_id=schedule.id).exception(
                    "Failed to cancel wake timer"
                )
            self.cancel_legacy(schedule.device_id, schedule.hour, schedule.minute)
        return removed

    def forget(self, schedule_id: str) -> None:
        """Drop the handle of a timer that already fired and was not re-armed."""
        with self._lock:
            self._armed.pop(schedule_id, None)

    def armed(self, schedule_id: str) -> ArmedTimer | None:
        with self._lock:
            return self._armed.get(schedule_id)

    def armed_ids(self) -> set[str]:
        with self._lock:
            return set(self._armed)

    def reconcile(
        self, schedules: ScheduleRepository, devices: DeviceRepository
    ) -> int:
        """Re-arm every enabled schedule whose device still exists."""
        rearmed = 0
        enabled = schedules.list_enabled()
        logger.bind(schedule_count=len(enabled)).info("Reconciling wake timers")
        for schedule in enabled:
            log = logger.bind(schedule_id=schedule.id, device_id=schedule.device_id)
            if devices.get(schedule.device_id) is None:
                log.warning("Device missing for schedule; skipping")
                continue
            try:
                self.arm(
                    schedule.id,
                    schedule.device_id,
                    schedule.hour,
                    schedule.minute,
                    schedule.days_bitmap,
                )
            except Exception:
                log.exception("Failed to re-arm schedule during reconciliation")
                continue
            rearmed += 1
        logger.bind(rearmed=rearmed).info("Wake timer reconciliation complete")
        return rearmed


@lru_cache
def get_timer_store() -> ScheduleTimerStore:
    """Return the process-wide timer store."""
    return ScheduleTimerStore(get_timer_backend())


__all__ = [
    "ArmedTimer",
    "ScheduleTimerStore",
    "get_timer_store",
    "legacy_request_id",
    "request_id_for",
]
