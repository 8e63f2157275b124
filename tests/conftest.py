from __future__ import annotations

import os
from collections.abc import Iterator

import pytest

# Ensure we operate against the in-memory repositories during tests.
os.environ["WAKEUP_DB_MODE"] = "memory"
os.environ["WAKEUP_DB_URL"] = ""

from wakeup import fire, notifications, schedules, timer_store, timers  # noqa: E402
from wakeup.wol import devices  # noqa: E402


@pytest.fixture(autouse=True)
def timer_backend(monkeypatch: pytest.MonkeyPatch) -> Iterator[timers.InMemoryTimerBackend]:
    """Fresh repositories and a fake timer backend for every test."""
    backend = timers.InMemoryTimerBackend()
    monkeypatch.setattr(timers, "_BACKEND", backend)
    monkeypatch.setattr(
        notifications,
        "_DEFAULT_REPOSITORY",
        notifications.InMemoryNotificationRepository(),
    )
    monkeypatch.setattr("wakeup.services.lookup_mac_vendor", lambda mac: None)
    devices._default_device_repository.cache_clear()
    schedules._default_schedule_repository.cache_clear()
    timer_store.get_timer_store.cache_clear()
    fire.get_fire_handler.cache_clear()
    yield backend
    timer_store.get_timer_store.cache_clear()
    fire.get_fire_handler.cache_clear()
