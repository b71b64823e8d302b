"""Best-effort LAN address lookup for display only."""

from __future__ import annotations

import logging
import socket

logger = logging.getLogger(__name__)


def get_lan_ip() -> str | None:
    """Return this machine's LAN IPv4 address, or None when it cannot be found.

    Opens a UDP socket towards a public address; no packet is sent.
    """
    try:
        s = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        try:
            s.settimeout(2)
            s.connect(("8.8.8.8", 80))
            ip = s.getsockname()[0]
        finally:
            s.close()
    except OSError as exc:
        logger.debug("LAN address lookup failed: %s", exc)
        return None
    if not ip or ip.startswith("127.") or ip == "0.0.0.0":
        return None
    return ip


def server_urls(port: int, lan_ip: str | None) -> list[str]:
    """Loopback URL always, LAN URL only when an address is known."""
    urls = [f"http://localhost:{port}"]
    if lan_ip:
        urls.append(f"http://{lan_ip}:{port}")
    return urls
