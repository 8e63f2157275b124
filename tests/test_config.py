"""Tests for the configuration helpers."""

from __future__ import annotations

import importlib
import os
import sys
from datetime import datetime, timedelta
from pathlib import Path
from zoneinfo import ZoneInfo

import pytest

MODULE_NAME = "wakeup.wol.config"
MANAGED_VARIABLES = (
    "WAKEUP_SEND_TIMEOUT",
    "WAKEUP_EXACT_TIMERS",
    "WAKEUP_TIMEZONE",
    "WAKEUP_NOTIFICATIONS",
    "WAKEUP_INEXACT_GRACE_SECONDS",
)


def _reload_config(
    monkeypatch: pytest.MonkeyPatch, env_file: Path, *, preserve_env: bool = False
) -> object:
    monkeypatch.setenv("WAKEUP_ENV_FILE", str(env_file))
    for name in MANAGED_VARIABLES:
        if preserve_env and name in os.environ:
            continue
        # Registers the variable so values loaded from the file are undone.
        monkeypatch.setenv(name, "")
        monkeypatch.delenv(name)
    # Also restore the package attribute that the re-import rebinds.
    monkeypatch.setattr(MODULE_NAME, sys.modules[MODULE_NAME])
    monkeypatch.delitem(sys.modules, MODULE_NAME)
    return importlib.import_module(MODULE_NAME)


def test_settings_loaded_from_env_file(tmp_path, monkeypatch):
    env_file = tmp_path / ".env"
    env_file.write_text(
        "WAKEUP_SEND_TIMEOUT=2.5\nWAKEUP_EXACT_TIMERS=false\n", encoding="utf-8"
    )

    config = _reload_config(monkeypatch, env_file)

    assert config.settings.send_timeout == 2.5
    assert config.settings.exact_timers is False
    assert config.settings.inexact_grace_seconds == 900
    assert config.settings.notifications_enabled is True


def test_environment_variable_overrides_env_file(tmp_path, monkeypatch):
    env_file = tmp_path / ".env"
    env_file.write_text(
        "WAKEUP_SEND_TIMEOUT=2.5\nWAKEUP_NOTIFICATIONS=on\n", encoding="utf-8"
    )

    monkeypatch.setenv("WAKEUP_SEND_TIMEOUT", "30")
    monkeypatch.setenv("WAKEUP_NOTIFICATIONS", "no")
    config = _reload_config(monkeypatch, env_file, preserve_env=True)

    assert config.settings.send_timeout == 30.0
    assert config.settings.notifications_enabled is False


def test_invalid_number_raises_runtime_error(tmp_path, monkeypatch):
    env_file = tmp_path / ".env"
    env_file.write_text("WAKEUP_INEXACT_GRACE_SECONDS=soon\n", encoding="utf-8")

    with pytest.raises(RuntimeError, match="WAKEUP_INEXACT_GRACE_SECONDS"):
        _reload_config(monkeypatch, env_file)


def test_defaults_without_environment(monkeypatch):
    from wakeup.wol.config import Settings

    for name in MANAGED_VARIABLES:
        monkeypatch.delenv(name, raising=False)

    settings = Settings.from_env()

    assert settings.send_timeout == 15.0
    assert settings.exact_timers is True
    assert settings.timezone is None
    assert settings.default_wol_port == 9


def test_unknown_timezone_falls_back_to_local_time():
    from wakeup.wol.config import Settings

    settings = Settings(timezone="Not/AZone")

    now = settings.now()
    assert now.tzinfo is not None
    assert now.utcoffset() is not None
    assert abs(now.utcoffset()) < timedelta(days=1)


def test_local_fallback_is_a_named_zone(monkeypatch):
    from wakeup.wol.config import Settings

    berlin = ZoneInfo("Europe/Berlin")
    monkeypatch.setattr("wakeup.wol.config.get_localzone", lambda: berlin)
    settings = Settings()

    zone = settings.tzinfo()

    assert zone is berlin
    summer = datetime(2026, 7, 1, 12, 0, tzinfo=zone)
    winter = datetime(2026, 12, 1, 12, 0, tzinfo=zone)
    assert summer.utcoffset() == timedelta(hours=2)
    assert winter.utcoffset() == timedelta(hours=1)


def test_configured_timezone_wins_over_local_zone(monkeypatch):
    from wakeup.wol.config import Settings

    monkeypatch.setattr(
        "wakeup.wol.config.get_localzone", lambda: ZoneInfo("Europe/Berlin")
    )

    assert Settings(timezone="America/New_York").tzinfo() == ZoneInfo(
        "America/New_York"
    )
