"""Time-bounded execution guard held while a fired timer is being handled."""

from __future__ import annotations

import threading
import time
from types import TracebackType

from .wol.config import settings
from .wol.utils import logger

_ACTIVE: dict[int, str] = {}
_ACTIVE_LOCK = threading.Lock()


class WakeLock:
    """Marks the process busy until released, or until ``timeout`` elapses."""

    def __init__(self, tag: str, *, timeout: float | None = None) -> None:
        self.tag = tag
        self.timeout = settings.wake_lock_seconds if timeout is None else timeout
        self._watchdog: threading.Timer | None = None
        self._acquired_at: float | None = None
        self._lock = threading.Lock()

    @property
    def held(self) -> bool:
        with self._lock:
            return self._acquired_at is not None

    def acquire(self) -> WakeLock:
        with self._lock:
            if self._acquired_at is not None:
                return self
            self._acquired_at = time.monotonic()
            watchdog = threading.Timer(self.timeout, self._expire)
            watchdog.daemon = True
            watchdog.start()
            self._watchdog = watchdog
        with _ACTIVE_LOCK:
            _ACTIVE[id(self)] = self.tag
        logger.bind(tag=self.tag, timeout=self.timeout).debug("Wake lock acquired")
        return self

    def _expire(self) -> None:
        logger.bind(tag=self.tag).warning(
            "Wake lock held past its {}s ceiling; releasing", self.timeout
        )
        self.release()

    def release(self) -> None:
        with self._lock:
            if self._acquired_at is None:
                return
            held_for = time.monotonic() - self._acquired_at
            self._acquired_at = None
            watchdog, self._watchdog = self._watchdog, None
        if watchdog is not None:
            watchdog.cancel()
        with _ACTIVE_LOCK:
            _ACTIVE.pop(id(self), None)
        logger.bind(tag=self.tag, held_for=round(held_for, 3)).debug(
            "Wake lock released"
        )

    def __enter__(self) -> WakeLock:
        return self.acquire()

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.release()


def active_wake_locks() -> list[str]:
    with _ACTIVE_LOCK:
        return list(_ACTIVE.values())
