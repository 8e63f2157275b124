"""General utilities for the wol package."""

from __future__ import annotations

import os
import sys

from loguru import logger
from mac_vendor_lookup import (  # type: ignore[import-untyped]
    MacLookup,
    VendorNotFoundError,
)

_LOGGER_CONFIGURED = False
_MAC_LOOKUP: MacLookup | None = None


def _parse_flag(value: str | None) -> bool:
    if value is None:
        return False
    return value.strip().lower() in {"1", "true", "yes", "on"}


def configure_logging(*, force: bool = False) -> None:
    """Set up the global Loguru logger with application defaults."""
    global _LOGGER_CONFIGURED
    if _LOGGER_CONFIGURED and not force:
        return

    log_level = os.getenv("WAKEUP_LOG_LEVEL", "INFO")
    diagnose = _parse_flag(os.getenv("WAKEUP_LOG_DIAGNOSE"))

    logger.remove()
    logger.add(
        sys.stderr,
        level=log_level,
        backtrace=False,
        diagnose=diagnose,
        enqueue=False,
        colorize=True,
    )

    _LOGGER_CONFIGURED = True


def lookup_mac_vendor(mac: str | None) -> str | None:
    """Return the vendor/manufacturer name for the provided MAC address."""
    if not mac:
        return None

    global _MAC_LOOKUP
    if _MAC_LOOKUP is None:
        lookup = MacLookup()
        try:
            lookup.load_vendors()
        except FileNotFoundError:
            try:
                lookup.update_vendors()
                lookup.load_vendors()
            except Exception as exc:  # pragma: no cover - network/load failure
                logger.warning("Unable to download MAC vendor database: {}", exc)
                return None
        except Exception as exc:  # pragma: no cover - unexpected load failure
            logger.warning("Unable to load MAC vendor database: {}", exc)
            return None

        logger.bind(cache_path=str(lookup.cache_path)).debug(
            "Loaded MAC vendor database"
        )
        _MAC_LOOKUP = lookup

    try:
        return _MAC_LOOKUP.lookup(mac)
    except (KeyError, VendorNotFoundError):
        return None
    except Exception as exc:  # pragma: no cover - unexpected failure
        logger.debug("MAC vendor lookup failed for {}: {}", mac, exc)
        return None


configure_logging()

__all__ = [
    "configure_logging",
    "lookup_mac_vendor",
    "logger",
]
