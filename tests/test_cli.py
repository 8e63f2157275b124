"""Tests for the command-line interface."""

from __future__ import annotations

import json
from datetime import datetime, timezone

import pytest

from wakeup.services import create_schedule, register_device
from wakeup.timer_store import request_id_for
from wakeup.wol import main as package_main
from wakeup.wol.cli import list_devices, show_next
from wakeup.wol.cli import main as cli_main
from wakeup.wol.packet import Target

TUESDAY_NOON = datetime(2024, 1, 2, 12, 0, tzinfo=timezone.utc)


def test_list_devices_without_devices():
    output: list[str] = []

    list_devices(print_fn=output.append)

    assert output == ["No devices registered."]


def test_list_devices_prints_each_device():
    device = register_device("Desktop", "00:11:22:33:44:55")
    output: list[str] = []

    list_devices(print_fn=output.append)

    assert output[0] == "Found 1 device(s):"
    assert device.id in output[1]
    assert "last seen: never" in output[1]


def test_show_next_defaults_to_weekdays():
    output: list[str] = []

    fire_at = show_next("07:30", now=TUESDAY_NOON, print_fn=output.append)

    assert fire_at == datetime(2024, 1, 3, 7, 30, tzinfo=timezone.utc)
    assert output == ["Weekdays at 07:30 -> 2024-01-03T07:30:00+00:00"]


def test_show_next_with_named_days():
    output: list[str] = []

    fire_at = show_next("06:00", "sat,sun", now=TUESDAY_NOON, print_fn=output.append)

    assert fire_at == datetime(2024, 1, 6, 6, 0, tzinfo=timezone.utc)
    assert output[0].startswith("Sat, Sun at 06:00 -> ")


def test_main_next_rejects_bad_input():
    with pytest.raises(SystemExit, match="Invalid input"):
        cli_main(["next", "7h30"], print_fn=lambda _: None)
    with pytest.raises(SystemExit, match="Unknown day name"):
        cli_main(["next", "07:30", "--days", "funday"], print_fn=lambda _: None)


def test_main_wake_returns_exit_code(monkeypatch):
    async def fake_send(mac: str, target: Target) -> bool:
        return True

    monkeypatch.setattr("wakeup.dispatch.send_magic_packet", fake_send)
    device = register_device("Desktop", "00:11:22:33:44:55", internal_host="10.0.0.5")
    output: list[str] = []

    exit_code = cli_main(["wake", device.id], print_fn=output.append)

    assert exit_code == 0
    assert output[-1] == "Wake packet sent to Desktop."
    assert " - 10.0.0.5:9: sent" in output


def test_main_wake_unknown_device_exits():
    with pytest.raises(SystemExit, match="missing"):
        cli_main(["wake", "missing"], print_fn=lambda _: None)


def test_main_reconcile_rearms(timer_backend):
    device = register_device("Desktop", "00:11:22:33:44:55")
    schedule = create_schedule(device.id, 7, 0, 31)
    timer_backend.cancel(request_id_for(schedule.id))
    output: list[str] = []

    assert cli_main(["reconcile"], print_fn=output.append) == 0

    assert output == ["Re-armed 1 schedule(s)."]
    assert request_id_for(schedule.id) in timer_backend.pending()


def test_export_and_import_via_files(tmp_path):
    device = register_device("Desktop", "00:11:22:33:44:55")
    create_schedule(device.id, 7, 0, 31)
    target = tmp_path / "backup.json"
    output: list[str] = []

    cli_main(["export", "-o", str(target)], print_fn=output.append)

    data = json.loads(target.read_text(encoding="utf-8"))
    assert [item["id"] for item in data["devices"]] == [device.id]
    assert output == [f"Exported 1 device(s) and 1 schedule(s) to {target}."]

    output.clear()
    cli_main(["import", str(target)], print_fn=output.append)
    assert output == ["Imported 1 device(s) and 1 schedule(s); 1 timer(s) armed."]


def test_import_unreadable_file_exits(tmp_path):
    broken = tmp_path / "broken.json"
    broken.write_text("{not json", encoding="utf-8")

    with pytest.raises(SystemExit, match="Invalid input"):
        cli_main(["import", str(broken)], print_fn=lambda _: None)


def test_init_db_requires_database_configuration():
    with pytest.raises(SystemExit, match="WAKEUP_DB_URL"):
        cli_main(["init-db"], print_fn=lambda _: None)


def test_package_entry_point_delegates_to_cli():
    output: list[str] = []

    assert package_main(["schedules"], print_fn=output.append) == 0

    assert output == ["No schedules found."]
