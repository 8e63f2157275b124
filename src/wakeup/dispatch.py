"""Fan-out dispatch of magic packets to every known route for a device."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

from .errors import (
    DispatchError,
    InvalidMacAddress,
    NotFoundError,
    TransientNetworkError,
)
from .wol.config import settings
from .wol.devices import Device, DeviceRepository, get_device_repository
from .wol.packet import Target, send_magic_packet
from .wol.utils import logger

Sender = Callable[[str, Target], Awaitable[bool]]


@dataclass(frozen=True)
class SendAttempt:
    target: Target
    success: bool
    error: TransientNetworkError | None = None


@dataclass
class DispatchResult:
    """Outcome of one wake request across all of its targets."""

    device: Device
    attempts: list[SendAttempt] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return any(attempt.success for attempt in self.attempts)

    @property
    def error(self) -> DispatchError | None:
        if self.success:
            return None
        failures = [
            attempt.error
            or TransientNetworkError(f"Send to {attempt.target} failed")
            for attempt in self.attempts
        ]
        return DispatchError("All wake attempts failed or timed out", failures)


def build_targets(device: Device) -> list[Target]:
    """Internal route, the global broadcast at the internal port, then external."""
    targets: list[Target] = []
    if device.internal_target is not None:
        targets.append(device.internal_target)
    targets.append(Target(settings.broadcast_address, device.internal_port))
    if device.external_target is not None:
        targets.append(device.external_target)
    return targets


def _to_attempt(target: Target, outcome: bool | BaseException) -> SendAttempt:
    if isinstance(outcome, BaseException):
        return SendAttempt(
            target=target,
            success=False,
            error=TransientNetworkError(f"Send to {target} raised {outcome!r}"),
        )
    if not outcome:
        return SendAttempt(
            target=target,
            success=False,
            error=TransientNetworkError(f"Send to {target} failed or timed out"),
        )
    return SendAttempt(target=target, success=True)


async def dispatch_to_targets(
    device: Device,
    targets: list[Target],
    *,
    sender: Sender | None = None,
) -> DispatchResult:
    """Send to every target concurrently and wait for all of them to finish."""
    send = sender or send_magic_packet
    outcomes = await asyncio.gather(
        *(send(device.mac, target) for target in targets),
        return_exceptions=True,
    )
    for outcome in outcomes:
        # A malformed MAC is a caller bug, not a network failure.
        if isinstance(outcome, InvalidMacAddress):
            raise outcome
    result = DispatchResult(
        device=device,
        attempts=[
            _to_attempt(target, outcome) for target, outcome in zip(targets, outcomes)
        ],
    )
    logger.bind(
        device_id=device.id,
        targets=len(targets),
        delivered=sum(1 for attempt in result.attempts if attempt.success),
    ).info("Wake dispatch finished")
    return result


async def wake_device(
    device_id: str,
    *,
    devices: DeviceRepository | None = None,
    sender: Sender | None = None,
) -> DispatchResult:
    """Send magic packets for ``device_id`` to all of its targets.

    Raises :class:`NotFoundError` for an unknown device. Network failures are
    folded into the returned :class:`DispatchResult`.
    """
    repo = devices or get_device_repository()
    device = repo.get(device_id)
    if device is None:
        raise NotFoundError(f"Device {device_id} not found.")
    return await dispatch_to_targets(device, build_targets(device), sender=sender)


__all__ = [
    "DispatchResult",
    "SendAttempt",
    "build_targets",
    "dispatch_to_targets",
    "wake_device",
]
