"""Local port allocation for browser debugging interfaces."""

from __future__ import annotations

import socket
from typing import Iterable

from . import config
from .errors import PortConflictError


def find_available_port(
    reserved: Iterable[int] = (),
    start: int = config.CDP_PORT_RANGE_START,
    end: int = config.CDP_PORT_RANGE_END,
) -> int:
    """Find a free TCP port for a debugging interface.

    Scans start..end inclusive, skipping ports reserved by other sessions of
    this process. Raises PortConflictError if the range is exhausted.
    """
    taken = set(reserved)
    for port in range(start, end + 1):
        if port in taken:
            continue
        if is_port_available(port):
            return port
    raise PortConflictError(f"No available debugging port in range {start}-{end}")


def ensure_port_available(port: int, reserved: Iterable[int] = ()) -> int:
    """Validate a caller-fixed port. Raises PortConflictError if it is taken."""
    if port in set(reserved):
        raise PortConflictError(f"Port {port} is already used by another session")
    if not is_port_available(port):
        raise PortConflictError(f"Port {port} is already in use")
    return port


def is_port_available(port: int, host: str = config.CDP_HOST) -> bool:
    """Check if a TCP port is available for binding."""
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
            s.settimeout(0.1)
            s.bind((host, port))
            return True
    except OSError:
        return False
