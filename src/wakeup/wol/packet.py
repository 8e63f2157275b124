"""Wake-on-LAN magic packet codec and UDP sender."""

from __future__ import annotations

import asyncio
import re
import socket
from dataclasses import dataclass, field

from ..errors import InvalidMacAddress
from .config import settings
from .utils import logger

MAC_LENGTH = 6
PACKET_LENGTH = 6 + 16 * MAC_LENGTH
SYNC_STREAM = b"\xff" * 6

_TOKEN_PATTERN = re.compile(r"^[0-9A-Fa-f]{1,2}$")
_BARE_PATTERN = re.compile(r"^[0-9A-Fa-f]{12}$")


@dataclass(frozen=True)
class Target:
    """A host (name or IP) and UDP port that receives a magic packet."""

    host: str
    port: int = field(default_factory=lambda: settings.default_wol_port)

    def __str__(self) -> str:
        return f"{self.host}:{self.port}"


def parse_mac(mac: str) -> bytes:
    """Parse a ``:`` or ``-`` delimited MAC address into exactly six bytes."""
    tokens = re.split(r"[:-]", mac.strip())
    if len(tokens) != MAC_LENGTH:
        raise InvalidMacAddress(f"Invalid MAC address: {mac!r}")
    if not all(_TOKEN_PATTERN.match(token) for token in tokens):
        raise InvalidMacAddress(f"Invalid MAC address: {mac!r}")
    return bytes(int(token, 16) for token in tokens)


def format_mac(raw: bytes, *, separator: str = ":") -> str:
    """Render six bytes as ``AA:BB:CC:DD:EE:FF``."""
    if len(raw) != MAC_LENGTH:
        raise InvalidMacAddress(f"Expected {MAC_LENGTH} bytes, got {len(raw)}")
    return separator.join(f"{byte:02X}" for byte in raw)


def normalize_mac(mac: str) -> str:
    """Return the canonical lowercase ``aa:bb:cc:dd:ee:ff`` form of ``mac``.

    Accepts delimited input as well as twelve bare hex digits.
    """
    candidate = mac.strip()
    if _BARE_PATTERN.match(candidate):
        raw = bytes.fromhex(candidate)
    else:
        raw = parse_mac(candidate)
    return format_mac(raw).lower()


def build_magic_packet(mac: str | bytes) -> bytes:
    """Return the 102-byte payload: six 0xFF bytes then the MAC sixteen times."""
    raw = mac if isinstance(mac, bytes) else parse_mac(mac)
    if len(raw) != MAC_LENGTH:
        raise InvalidMacAddress(f"Expected {MAC_LENGTH} bytes, got {len(raw)}")
    return SYNC_STREAM + raw * 16


async def _transmit(packet: bytes, target: Target) -> None:
    loop = asyncio.get_running_loop()
    infos = await loop.getaddrinfo(target.host, target.port, type=socket.SOCK_DGRAM)
    if not infos:
        raise OSError(f"Unable to resolve {target.host}")
    family, sock_type, proto, _, address = infos[0]
    with socket.socket(family, sock_type, proto) as sock:
        if family == socket.AF_INET:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_BROADCAST, 1)
        sock.setblocking(False)
        await loop.sock_sendto(sock, packet, address)


async def send_magic_packet(
    mac: str, target: Target, *, timeout: float | None = None
) -> bool:
    """Send one magic packet datagram to ``target``.

    Malformed MAC addresses raise :class:`InvalidMacAddress`; resolution and
    socket failures, including the timeout, are reported as ``False``.
    """
    packet = build_magic_packet(mac)
    limit = settings.send_timeout if timeout is None else timeout
    log = logger.bind(mac=mac, target=str(target))
    try:
        await asyncio.wait_for(_transmit(packet, target), timeout=limit)
    except TimeoutError:
        log.warning("Magic packet dispatch timed out after {}s", limit)
        return False
    except OSError as exc:
        log.warning("Magic packet dispatch failed: {}", exc)
        return False
    log.debug("Magic packet dispatched")
    return True


__all__ = [
    "MAC_LENGTH",
    "PACKET_LENGTH",
    "Target",
    "parse_mac",
    "format_mac",
    "normalize_mac",
    "build_magic_packet",
    "send_magic_packet",
]
