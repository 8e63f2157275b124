"""Best-effort TCP reachability checks for registered devices."""

from __future__ import annotations

import asyncio
from contextlib import suppress

from .config import settings
from .devices import Device
from .utils import logger

FALLBACK_PROBE_PORTS: tuple[int, ...] = (80, 3389, 22, 443, 445)


def candidate_hosts(device: Device) -> list[str]:
    """Return probe-able hosts, skipping blanks and broadcast addresses."""
    hosts: list[str] = []
    for host in (device.internal_host, device.external_host):
        if not host or not host.strip():
            continue
        host = host.strip()
        if host.endswith(".255") or host in hosts:
            continue
        hosts.append(host)
    return hosts


def candidate_ports(device: Device) -> list[int]:
    if device.status_port is not None:
        return [device.status_port]
    return list(FALLBACK_PROBE_PORTS)


async def _connect(host: str, port: int, timeout: float) -> bool:
    try:
        _, writer = await asyncio.wait_for(
            asyncio.open_connection(host, port), timeout=timeout
        )
    except (TimeoutError, OSError):
        return False
    writer.close()
    with suppress(OSError):
        await writer.wait_closed()
    return True


async def probe_device(device: Device, *, timeout: float | None = None) -> bool:
    """Return True as soon as any (host, port) pair accepts a TCP connection."""
    hosts = candidate_hosts(device)
    if not hosts:
        return False
    limit = settings.probe_timeout if timeout is None else timeout
    tasks = [
        asyncio.create_task(_connect(host, port, limit))
        for host in hosts
        for port in candidate_ports(device)
    ]
    try:
        for finished in asyncio.as_completed(tasks):
            try:
                if await finished:
                    logger.bind(device_id=device.id).debug("Device reachable")
                    return True
            except Exception as exc:  # pragma: no cover - probe is best-effort
                logger.bind(device_id=device.id).debug("Probe attempt failed: {}", exc)
        return False
    finally:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)


__all__ = [
    "FALLBACK_PROBE_PORTS",
    "candidate_hosts",
    "candidate_ports",
    "probe_device",
]
