"""Device registry, magic-packet codec, and reachability probing."""

from __future__ import annotations

from .config import Settings, settings
from .devices import Device, get_device_repository, new_device
from .packet import Target, build_magic_packet, normalize_mac, send_magic_packet
from .probe import probe_device

__all__ = [
    "Device",
    "Settings",
    "Target",
    "build_magic_packet",
    "get_device_repository",
    "main",
    "new_device",
    "normalize_mac",
    "probe_device",
    "send_magic_packet",
    "settings",
]


def main(argv: None | list[str] = None, *, print_fn=print) -> int:
    """Entrypoint for the command-line interface."""
    from .cli import main as _cli_main

    return _cli_main(argv, print_fn=print_fn)
