"""Tests for the APScheduler-backed timer backend."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.jobstores.sqlalchemy import SQLAlchemyJobStore
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.schedulers.base import STATE_PAUSED, STATE_RUNNING

from wakeup import timers
from wakeup.errors import ExactTimerDenied
from wakeup.timers import FIRE_CALLBACK_REF, APSchedulerTimerBackend, get_timer_backend

PAYLOAD = {
    "device_id": "pc-1",
    "schedule_id": "s1",
    "hour": 9,
    "minute": 0,
    "days_bitmap": 1,
    "fire_at": "2099-01-05T09:00:00+00:00",
}


@pytest.fixture
def scheduler():
    scheduler = BackgroundScheduler(
        jobstores={"default": MemoryJobStore()}, timezone=timezone.utc
    )
    scheduler.start(paused=True)
    yield scheduler
    scheduler.shutdown(wait=False)


def _when() -> datetime:
    return datetime.now(timezone.utc) + timedelta(days=3)


def test_exact_arm_registers_job_without_grace_limit(scheduler):
    backend = APSchedulerTimerBackend(exact_allowed=True, scheduler=scheduler)
    when = _when()

    backend.arm_exact_wake("wake-1", when, PAYLOAD)

    job = scheduler.get_job("wake-1")
    assert job is not None
    assert job.func_ref == FIRE_CALLBACK_REF
    assert job.kwargs == PAYLOAD
    assert job.misfire_grace_time is None
    assert backend.next_run_time("wake-1") == when


def test_inexact_arm_uses_configured_grace(scheduler):
    backend = APSchedulerTimerBackend(
        exact_allowed=True, inexact_grace_seconds=120, scheduler=scheduler
    )

    backend.arm_inexact_wake("wake-1", _when(), PAYLOAD)

    assert scheduler.get_job("wake-1").misfire_grace_time == 120


def test_rearming_replaces_existing_job(scheduler):
    backend = APSchedulerTimerBackend(exact_allowed=True, scheduler=scheduler)
    later = _when() + timedelta(days=1)

    backend.arm_exact_wake("wake-1", _when(), PAYLOAD)
    backend.arm_exact_wake("wake-1", later, {**PAYLOAD, "hour": 10})

    jobs = scheduler.get_jobs()
    assert [job.id for job in jobs] == ["wake-1"]
    assert jobs[0].kwargs["hour"] == 10
    assert backend.next_run_time("wake-1") == later


def test_exact_arm_denied_when_disabled(scheduler):
    backend = APSchedulerTimerBackend(exact_allowed=False, scheduler=scheduler)

    assert backend.can_schedule_exact() is False
    with pytest.raises(ExactTimerDenied):
        backend.arm_exact_wake("wake-1", _when(), PAYLOAD)
    assert scheduler.get_jobs() == []


def test_cancel_reports_whether_a_job_existed(scheduler):
    backend = APSchedulerTimerBackend(exact_allowed=True, scheduler=scheduler)
    backend.arm_exact_wake("wake-1", _when(), PAYLOAD)

    assert backend.cancel("wake-1") is True
    assert backend.cancel("wake-1") is False
    assert backend.next_run_time("wake-1") is None


def _sqlite_scheduler(url: str) -> BackgroundScheduler:
    return BackgroundScheduler(
        jobstores={"default": SQLAlchemyJobStore(url=url, tablename="wake_timers")},
        timezone=timezone.utc,
    )


def test_arming_without_start_persists_to_database(tmp_path):
    url = f"sqlite:///{tmp_path / 'timers.db'}"
    first = _sqlite_scheduler(url)
    backend = APSchedulerTimerBackend(exact_allowed=True, scheduler=first)
    when = _when()

    backend.arm_exact_wake("wake-1", when, PAYLOAD)

    assert first.state == STATE_PAUSED
    first.shutdown(wait=False)

    second = _sqlite_scheduler(url)
    reopened = APSchedulerTimerBackend(exact_allowed=True, scheduler=second)
    try:
        assert reopened.next_run_time("wake-1") == when
        assert second.get_job("wake-1").kwargs == PAYLOAD
        assert reopened.cancel("wake-1") is True
    finally:
        second.shutdown(wait=False)

    third = _sqlite_scheduler(url)
    third.start(paused=True)
    try:
        assert third.get_job("wake-1") is None
    finally:
        third.shutdown(wait=False)


def test_start_resumes_a_paused_scheduler():
    scheduler = BackgroundScheduler(
        jobstores={"default": MemoryJobStore()}, timezone=timezone.utc
    )
    backend = APSchedulerTimerBackend(exact_allowed=True, scheduler=scheduler)
    backend.arm_inexact_wake("wake-1", _when(), PAYLOAD)
    try:
        assert scheduler.state == STATE_PAUSED
        backend.start()
        assert scheduler.state == STATE_RUNNING
        assert [job.id for job in scheduler.get_jobs()] == ["wake-1"]
    finally:
        backend.shutdown()
    assert scheduler.running is False


def test_get_timer_backend_builds_one_shared_scheduler(monkeypatch):
    monkeypatch.setattr(timers, "_BACKEND", None)

    backend = get_timer_backend()
    try:
        assert isinstance(backend, APSchedulerTimerBackend)
        assert get_timer_backend() is backend

        backend.arm_inexact_wake("wake-1", _when(), PAYLOAD)

        assert [job.id for job in backend.scheduler.get_jobs()] == ["wake-1"]
        assert backend.scheduler.state == STATE_PAUSED
    finally:
        backend.shutdown()
