"""Liveness probing."""

from __future__ import annotations

import socket


def tcp_probe(host: str, port: int, timeout: float) -> bool:
    """Return True if a TCP connection to host:port succeeds within `timeout`."""
    try:
        with socket.create_connection((host, port), timeout=timeout):
            return True
    except OSError:
        return False
