"""Tests for arming, re-arming, and cancelling schedule timers."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from wakeup.errors import SchedulingComputationError
from wakeup.recurrence import MONDAY, WEEKDAYS
from wakeup.schedules import InMemoryScheduleRepository, new_schedule
from wakeup.timer_store import (
    ScheduleTimerStore,
    legacy_request_id,
    request_id_for,
)
from wakeup.timers import InMemoryTimerBackend
from wakeup.wol.devices import InMemoryDeviceRepository, new_device

NOW = datetime(2024, 1, 2, 10, 0, tzinfo=timezone.utc)  # Tuesday


def _store(backend: InMemoryTimerBackend) -> ScheduleTimerStore:
    return ScheduleTimerStore(backend, clock=lambda: NOW)


def test_request_ids_are_stable_and_distinct():
    assert request_id_for("schedule-a") == request_id_for("schedule-a")
    assert request_id_for("schedule-a") != request_id_for("schedule-b")
    assert legacy_request_id("pc", 9, 0) != legacy_request_id("pc", 9, 1)


def test_arm_registers_exact_timer_with_payload():
    backend = InMemoryTimerBackend()
    armed = _store(backend).arm("s1", "pc-1", 9, 0, MONDAY)

    assert armed.exact is True
    assert armed.fire_at == datetime(2024, 1, 8, 9, 0, tzinfo=timezone.utc)
    timer = backend.get(request_id_for("s1"))
    assert timer is not None
    assert timer.exact is True
    assert timer.payload == {
        "device_id": "pc-1",
        "schedule_id": "s1",
        "hour": 9,
        "minute": 0,
        "days_bitmap": MONDAY,
        "fire_at": "2024-01-08T09:00:00+00:00",
    }


def test_rearming_the_same_schedule_keeps_one_timer():
    backend = InMemoryTimerBackend()
    store = _store(backend)

    store.arm("s1", "pc-1", 9, 0, MONDAY)
    store.arm("s1", "pc-1", 9, 0, MONDAY)
    store.arm("s1", "pc-1", 7, 30, WEEKDAYS)

    assert list(backend.pending()) == [request_id_for("s1")]
    assert backend.get(request_id_for("s1")).payload["hour"] == 7
    assert store.armed_ids() == {"s1"}


def test_two_schedules_at_the_same_time_do_not_collide():
    backend = InMemoryTimerBackend()
    store = _store(backend)

    store.arm("s1", "pc-1", 9, 0, MONDAY)
    store.arm("s2", "pc-1", 9, 0, MONDAY)

    assert len(backend.pending()) == 2


def test_arm_cancels_timer_registered_under_legacy_id():
    backend = InMemoryTimerBackend()
    legacy_id = legacy_request_id("pc-1", 9, 0)
    backend.arm_exact_wake(legacy_id, NOW, {"device_id": "pc-1"})

    _store(backend).arm("s1", "pc-1", 9, 0, MONDAY)

    assert legacy_id not in backend.pending()
    assert request_id_for("s1") in backend.pending()


def test_arm_degrades_to_inexact_when_exact_not_permitted():
    backend = InMemoryTimerBackend(exact_allowed=False)

    armed = _store(backend).arm("s1", "pc-1", 9, 0, MONDAY)

    assert armed.exact is False
    assert backend.get(request_id_for("s1")).exact is False


def test_arm_degrades_when_backend_denies_exact_at_arm_time():
    backend = InMemoryTimerBackend()
    backend.deny_exact_on_arm = True

    armed = _store(backend).arm("s1", "pc-1", 9, 0, MONDAY)

    assert armed.exact is False
    assert backend.get(request_id_for("s1")) is not None


def test_computation_error_leaves_prior_timer_untouched():
    backend = InMemoryTimerBackend()
    store = _store(backend)
    first = store.arm("s1", "pc-1", 9, 0, MONDAY)

    with pytest.raises(SchedulingComputationError):
        store.arm("s1", "pc-1", 9, 0, 0)

    assert backend.get(request_id_for("s1")).when == first.fire_at
    assert store.armed("s1") == first


def test_cancel_unknown_schedule_is_a_noop():
    backend = InMemoryTimerBackend()
    store = _store(backend)

    assert store.cancel("missing") is False
    store.arm("s1", "pc-1", 9, 0, MONDAY)
    assert store.cancel("s1") is True
    assert backend.pending() == {}
    assert store.armed("s1") is None


def test_cancel_all_isolates_failures(monkeypatch):
    backend = InMemoryTimerBackend()
    store = _store(backend)
    first = new_schedule("pc-1", 9, 0, MONDAY)
    second = new_schedule("pc-1", 10, 0, MONDAY)
    for schedule in (first, second):
        store.arm(schedule.id, "pc-1", schedule.hour, schedule.minute, MONDAY)

    original_cancel = backend.cancel

    def flaky_cancel(request_id: str) -> bool:
        if request_id == request_id_for(first.id):
            raise RuntimeError("timer service unavailable")
        return original_cancel(request_id)

    monkeypatch.setattr(backend, "cancel", flaky_cancel)

    removed = store.cancel_all([first, second])

    assert removed == 1
    assert request_id_for(second.id) not in backend.pending()


def test_reconcile_arms_enabled_schedules_with_existing_devices():
    backend = InMemoryTimerBackend()
    device = new_device("Desktop", "00:11:22:33:44:55", internal_host="10.0.0.5")
    devices = InMemoryDeviceRepository([device])
    enabled = new_schedule(device.id, 9, 0, MONDAY)
    also_enabled = new_schedule(device.id, 18, 0, WEEKDAYS)
    disabled = new_schedule(device.id, 7, 0, MONDAY, enabled=False)
    orphan = new_schedule("deleted-device", 9, 0, MONDAY)
    schedules = InMemoryScheduleRepository([enabled, also_enabled, disabled, orphan])

    rearmed = _store(backend).reconcile(schedules, devices)

    assert rearmed == 2
    assert set(backend.pending()) == {
        request_id_for(enabled.id),
        request_id_for(also_enabled.id),
    }
