"""Background poll that keeps a reachability snapshot for every device."""

from __future__ import annotations

import asyncio
from contextlib import suppress
from dataclasses import dataclass, field
from datetime import datetime

from .wol.config import settings
from .wol.devices import get_device_repository
from .wol.probe import probe_device
from .wol.utils import logger


@dataclass(frozen=True)
class DeviceReachability:
    online: bool
    checked_at: datetime


@dataclass
class StatusMonitor:
    interval_seconds: float = field(default_factory=lambda: settings.status_poll_seconds)
    _task: asyncio.Task[None] | None = field(default=None, init=False)
    _snapshot: dict[str, DeviceReachability] = field(default_factory=dict, init=False)
    _running: bool = field(default=False, init=False)

    async def start(self) -> None:
        if self._task:
            return
        self._running = True
        loop = asyncio.get_running_loop()
        self._task = loop.create_task(self._run())
        logger.bind(interval=self.interval_seconds).info("Status monitor started.")

    async def stop(self) -> None:
        self._running = False
        if self._task:
            self._task.cancel()
            with suppress(asyncio.CancelledError):
                await self._task
            self._task = None
        logger.info("Status monitor stopped.")

    async def _run(self) -> None:
        while self._running:
            try:
                await self.refresh_once()
            except Exception as exc:
                logger.exception("Status poll iteration failed.", error=str(exc))
            await asyncio.sleep(self.interval_seconds)

    async def refresh_once(self) -> dict[str, DeviceReachability]:
        devices = await asyncio.to_thread(lambda: get_device_repository().list_all())
        results = await asyncio.gather(*(probe_device(device) for device in devices))
        checked_at = settings.now()
        snapshot = {
            device.id: DeviceReachability(online=online, checked_at=checked_at)
            for device, online in zip(devices, results)
        }
        self._snapshot = snapshot
        logger.bind(
            devices=len(snapshot),
            online=sum(1 for entry in snapshot.values() if entry.online),
        ).debug("Device reachability refreshed")
        return dict(snapshot)

    def get(self, device_id: str) -> DeviceReachability | None:
        return self._snapshot.get(device_id)

    def snapshot(self) -> dict[str, DeviceReachability]:
        return dict(self._snapshot)


monitor = StatusMonitor()


__all__ = ["DeviceReachability", "StatusMonitor", "monitor"]
