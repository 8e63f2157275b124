"""Configuration helpers for the wake scheduler and packet sender."""

from __future__ import annotations

import os
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime, tzinfo
from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from loguru import logger
from tzlocal import get_localzone

DEFAULT_BROADCAST_ADDRESS = "255.255.255.255"
DEFAULT_WOL_PORT = 9


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _candidate_env_paths(start: Path) -> Iterable[Path]:
    """Yield plausible .env locations from closest to farthest."""
    override = os.environ.get("WAKEUP_ENV_FILE")
    if override:
        yield Path(override).expanduser()

    for directory in (start, *start.parents):
        yield directory / ".env"


def _discover_env_path() -> Path | None:
    """Return the first .env path that exists, if any."""
    package_dir = Path(__file__).resolve().parent
    for candidate in _candidate_env_paths(package_dir):
        if candidate.exists():
            return candidate
    return None


def _load_env_file(path: Path | None = None) -> None:
    """Populate os.environ with values from a .env file if present."""
    env_path = path or _discover_env_path()
    if env_path is None or not env_path.exists():
        logger.debug("No .env file discovered for configuration")
        return

    logger.bind(path=str(env_path)).info("Loading environment variables from .env")
    for raw_line in env_path.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue

        key, value = line.split("=", 1)
        key = key.strip()
        value = value.strip().strip('"').strip("'")
        # Existing environment variables win over the file.
        os.environ.setdefault(key, value)


_load_env_file()


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise RuntimeError(f"{name} must be a number, got {raw!r}.") from exc


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise RuntimeError(f"{name} must be an integer, got {raw!r}.") from exc


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return _parse_bool(raw)


@dataclass(frozen=True)
class Settings:
    """Typed accessors for configuration derived from the environment."""

    send_timeout: float = 15.0
    probe_timeout: float = 0.25
    default_wol_port: int = DEFAULT_WOL_PORT
    broadcast_address: str = DEFAULT_BROADCAST_ADDRESS
    exact_timers: bool = True
    inexact_grace_seconds: int = 900
    wake_lock_seconds: int = 300
    notifications_enabled: bool = True
    status_poll_seconds: int = 60
    timezone: str | None = None

    @classmethod
    def from_env(cls) -> Settings:
        timezone = os.environ.get("WAKEUP_TIMEZONE") or None
        settings = cls(
            send_timeout=_env_float("WAKEUP_SEND_TIMEOUT", 15.0),
            probe_timeout=_env_float("WAKEUP_PROBE_TIMEOUT", 0.25),
            default_wol_port=_env_int("WAKEUP_DEFAULT_PORT", DEFAULT_WOL_PORT),
            broadcast_address=os.environ.get(
                "WAKEUP_BROADCAST_ADDRESS", DEFAULT_BROADCAST_ADDRESS
            ),
            exact_timers=_env_bool("WAKEUP_EXACT_TIMERS", True),
            inexact_grace_seconds=_env_int("WAKEUP_INEXACT_GRACE_SECONDS", 900),
            wake_lock_seconds=_env_int("WAKEUP_WAKE_LOCK_SECONDS", 300),
            notifications_enabled=_env_bool("WAKEUP_NOTIFICATIONS", True),
            status_poll_seconds=_env_int("WAKEUP_STATUS_POLL_SECONDS", 60),
            timezone=timezone,
        )

        logger.bind(
            timezone=settings.timezone or "local",
            exact_timers=settings.exact_timers,
            send_timeout=settings.send_timeout,
        ).info("Configuration loaded from environment")
        return settings

    def tzinfo(self) -> tzinfo:
        """Return the zone used for wall-clock schedule times."""
        if self.timezone:
            try:
                return ZoneInfo(self.timezone)
            except (ZoneInfoNotFoundError, ValueError):
                logger.warning(
                    "Invalid WAKEUP_TIMEZONE; falling back to system local time.",
                    timezone=self.timezone,
                )
        # IANA zone: each date resolves its own DST offset.
        return get_localzone()

    def now(self) -> datetime:
        """Return the current time in the configured zone."""
        return datetime.now(self.tzinfo())


settings = Settings.from_env()
