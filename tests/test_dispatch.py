from __future__ import annotations

import asyncio

import pytest

from wakeup.dispatch import build_targets, dispatch_to_targets, wake_device
from wakeup.errors import DispatchError, InvalidMacAddress, NotFoundError
from wakeup.wol.devices import Device, InMemoryDeviceRepository, new_device
from wakeup.wol.packet import Target

BROADCAST = "255.255.255.255"


class RecordingSender:
    def __init__(self, outcomes: dict[str, bool | Exception] | None = None) -> None:
        self.outcomes = outcomes or {}
        self.calls: list[tuple[str, Target]] = []

    async def __call__(self, mac: str, target: Target) -> bool:
        self.calls.append((mac, target))
        outcome = self.outcomes.get(target.host, True)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def _device(**overrides) -> Device:
    fields = {
        "internal_host": "192.168.1.20",
        "internal_port": 9,
        "external_host": "wake.example.net",
        "external_port": 4009,
    }
    fields.update(overrides)
    return new_device("Desktop", "00:11:22:33:44:55", **fields)


def test_build_targets_orders_internal_broadcast_external():
    targets = build_targets(_device(internal_port=7))

    assert targets == [
        Target("192.168.1.20", 7),
        Target(BROADCAST, 7),
        Target("wake.example.net", 4009),
    ]


def test_build_targets_always_includes_broadcast():
    targets = build_targets(_device(internal_host=None, external_host=None))
    assert targets == [Target(BROADCAST, 9)]


def test_broadcast_rescues_unreachable_internal_target():
    device = _device(external_host=None)
    sender = RecordingSender({"192.168.1.20": False})

    result = asyncio.run(dispatch_to_targets(device, build_targets(device), sender=sender))

    assert result.success is True
    assert result.error is None
    assert [attempt.success for attempt in result.attempts] == [False, True]
    assert {target.host for _, target in sender.calls} == {"192.168.1.20", BROADCAST}


def test_all_targets_failing_yields_aggregate_error():
    device = _device()
    sender = RecordingSender(
        {"192.168.1.20": False, BROADCAST: False, "wake.example.net": False}
    )

    result = asyncio.run(dispatch_to_targets(device, build_targets(device), sender=sender))

    assert result.success is False
    assert isinstance(result.error, DispatchError)
    assert len(result.error.failures) == 3


def test_sender_exception_is_isolated_to_its_target():
    device = _device()
    sender = RecordingSender({"wake.example.net": RuntimeError("resolver exploded")})

    result = asyncio.run(dispatch_to_targets(device, build_targets(device), sender=sender))

    assert result.success is True
    failed = [attempt for attempt in result.attempts if not attempt.success]
    assert len(failed) == 1
    assert failed[0].target.host == "wake.example.net"
    assert "resolver exploded" in str(failed[0].error)


def test_invalid_mac_propagates_from_dispatch():
    device = _device()
    sender = RecordingSender(
        {"192.168.1.20": InvalidMacAddress("bad"), BROADCAST: True}
    )

    with pytest.raises(InvalidMacAddress):
        asyncio.run(dispatch_to_targets(device, build_targets(device), sender=sender))


def test_wake_device_sends_stored_mac_to_every_target():
    device = _device()
    repo = InMemoryDeviceRepository([device])
    sender = RecordingSender()

    result = asyncio.run(wake_device(device.id, devices=repo, sender=sender))

    assert result.success is True
    assert result.device == device
    assert len(sender.calls) == 3
    assert all(mac == "00:11:22:33:44:55" for mac, _ in sender.calls)


def test_wake_device_unknown_id_raises_not_found():
    repo = InMemoryDeviceRepository([])
    with pytest.raises(NotFoundError):
        asyncio.run(wake_device("missing", devices=repo, sender=RecordingSender()))


def test_wake_device_does_not_touch_last_seen():
    device = _device()
    repo = InMemoryDeviceRepository([device])

    asyncio.run(wake_device(device.id, devices=repo, sender=RecordingSender()))

    assert repo.get(device.id).last_seen_at is None
