"""Wake-capable timer backends used by the schedule timer store.

A backend registers one timer per request id; registering again under the same
id replaces the previous timer. When a timer fires the backend calls
``wakeup.fire.on_timer_fired`` with the payload as keyword arguments.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from threading import Lock
from typing import Any, Protocol

from apscheduler.jobstores.base import JobLookupError
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.jobstores.sqlalchemy import SQLAlchemyJobStore
from apscheduler.schedulers.base import STATE_PAUSED
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.date import DateTrigger

from .database import database_available, get_engine
from .errors import ExactTimerDenied
from .wol.config import settings
from .wol.utils import logger

FIRE_CALLBACK_REF = "wakeup.fire:on_timer_fired"

TimerPayload = dict[str, Any]


class TimerBackend(Protocol):
    """Port over the host's timer service."""

    def can_schedule_exact(self) -> bool:
        ...

    def arm_exact_wake(
        self, request_id: str, when: datetime, payload: TimerPayload
    ) -> None:
        ...

    def arm_inexact_wake(
        self, request_id: str, when: datetime, payload: TimerPayload
    ) -> None:
        ...

    def cancel(self, request_id: str) -> bool:
        ...

    def start(self) -> None:
        ...

    def shutdown(self) -> None:
        ...


@dataclass(frozen=True)
class RegisteredTimer:
    request_id: str
    when: datetime
    payload: TimerPayload
    exact: bool


class InMemoryTimerBackend(TimerBackend):
    """Timer registry that only fires when :meth:`fire_due` is called."""

    def __init__(self, *, exact_allowed: bool = True) -> None:
        self.exact_allowed = exact_allowed
        self.deny_exact_on_arm = False
        self.arm_calls: list[RegisteredTimer] = []
        self.cancel_calls: list[str] = []
        self._timers: dict[str, RegisteredTimer] = {}
        self._lock = Lock()

    def can_schedule_exact(self) -> bool:
        return self.exact_allowed

    def _register(self, timer: RegisteredTimer) -> None:
        with self._lock:
            self._timers[timer.request_id] = timer
            self.arm_calls.append(timer)

    def arm_exact_wake(
        self, request_id: str, when: datetime, payload: TimerPayload
    ) -> None:
        if not self.exact_allowed or self.deny_exact_on_arm:
            raise ExactTimerDenied("Exact timers are not permitted.")
        self._register(RegisteredTimer(request_id, when, dict(payload), True))

    def arm_inexact_wake(
        self, request_id: str, when: datetime, payload: TimerPayload
    ) -> None:
        self._register(RegisteredTimer(request_id, when, dict(payload), False))

    def cancel(self, request_id: str) -> bool:
        with self._lock:
            self.cancel_calls.append(request_id)
            return self._timers.pop(request_id, None) is not None

    def pending(self) -> dict[str, RegisteredTimer]:
        with self._lock:
            return dict(self._timers)

    def get(self, request_id: str) -> RegisteredTimer | None:
        with self._lock:
            return self._timers.get(request_id)

    def fire_due(
        self, now: datetime, callback: Callable[..., Any]
    ) -> list[RegisteredTimer]:
        """Remove every timer due at ``now`` and invoke ``callback`` for each."""
        with self._lock:
            due = sorted(
                (timer for timer in self._timers.values() if timer.when <= now),
                key=lambda timer: timer.when,
            )
            for timer in due:
                del self._timers[timer.request_id]
        for timer in due:
            callback(**timer.payload)
        return due

    def start(self) -> None:
        return None

    def shutdown(self) -> None:
        return None


class APSchedulerTimerBackend(TimerBackend):
    """Backend built on an APScheduler background scheduler.

    Jobs are stored in an ``SQLAlchemyJobStore`` when a database is configured,
    so armed timers outlive the process; otherwise they live in memory and the
    boot reconciliation pass re-creates them.

    The scheduler starts paused on first use so jobs reach the job store even
    from the CLI. Only :meth:`start` lets it run jobs.
    """

    def __init__(
        self,
        *,
        exact_allowed: bool | None = None,
        inexact_grace_seconds: int | None = None,
        scheduler: BackgroundScheduler | None = None,
    ) -> None:
        self._exact_allowed = (
            settings.exact_timers if exact_allowed is None else exact_allowed
        )
        self._inexact_grace = (
            settings.inexact_grace_seconds
            if inexact_grace_seconds is None
            else inexact_grace_seconds
        )
        self._scheduler = scheduler or BackgroundScheduler(
            jobstores={"default": self._build_jobstore()}
        )

    @staticmethod
    def _build_jobstore() -> MemoryJobStore | SQLAlchemyJobStore:
        if database_available():
            logger.info("Persisting wake timers in the configured database")
            return SQLAlchemyJobStore(engine=get_engine(), tablename="wake_timers")
        return MemoryJobStore()

    @property
    def scheduler(self) -> BackgroundScheduler:
        return self._scheduler

    def can_schedule_exact(self) -> bool:
        return self._exact_allowed

    def _ensure_started(self) -> None:
        if not self._scheduler.running:
            self._scheduler.start(paused=True)

    def _add_job(
        self,
        request_id: str,
        when: datetime,
        payload: TimerPayload,
        *,
        misfire_grace_time: int | None,
    ) -> None:
        self._ensure_started()
        self._scheduler.add_job(
            FIRE_CALLBACK_REF,
            trigger=DateTrigger(run_date=when),
            id=request_id,
            name=f"wake {payload.get('device_id')}",
            kwargs=dict(payload),
            replace_existing=True,
            coalesce=True,
            max_instances=1,
            misfire_grace_time=misfire_grace_time,
        )

    def arm_exact_wake(
        self, request_id: str, when: datetime, payload: TimerPayload
    ) -> None:
        if not self._exact_allowed:
            raise ExactTimerDenied("Exact wake timers are disabled by configuration.")
        # No grace limit: a job missed while the process was down still runs.
        self._add_job(request_id, when, payload, misfire_grace_time=None)

    def arm_inexact_wake(
        self, request_id: str, when: datetime, payload: TimerPayload
    ) -> None:
        self._add_job(
            request_id, when, payload, misfire_grace_time=self._inexact_grace
        )

    def cancel(self, request_id: str) -> bool:
        self._ensure_started()
        try:
            self._scheduler.remove_job(request_id)
        except JobLookupError:
            return False
        return True

    def next_run_time(self, request_id: str) -> datetime | None:
        self._ensure_started()
        job = self._scheduler.get_job(request_id)
        if job is None:
            return None
        return getattr(job, "next_run_time", None) or job.trigger.run_date

    def start(self) -> None:
        if not self._scheduler.running:
            self._scheduler.start()
            logger.info("Wake timer scheduler started.")
        elif self._scheduler.state == STATE_PAUSED:
            self._scheduler.resume()
            logger.info("Wake timer scheduler resumed.")

    def shutdown(self) -> None:
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
            logger.info("Wake timer scheduler stopped.")


_BACKEND: TimerBackend | None = None
_BACKEND_LOCK = Lock()


def get_timer_backend() -> TimerBackend:
    """Return the process-wide timer backend, creating it on first use."""
    global _BACKEND
    if _BACKEND is None:
        with _BACKEND_LOCK:
            if _BACKEND is None:
                _BACKEND = APSchedulerTimerBackend()
    return _BACKEND


__all__ = [
    "FIRE_CALLBACK_REF",
    "TimerBackend",
    "RegisteredTimer",
    "InMemoryTimerBackend",
    "APSchedulerTimerBackend",
    "get_timer_backend",
]
