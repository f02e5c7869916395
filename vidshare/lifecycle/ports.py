"""
Name: Port Resolution

Responsibilities:
  - Decide the listen port: the preferred one when free, otherwise an ephemeral one
  - Keep the "is the port free" check injectable so tests need no real sockets

Collaborators:
  - crosscutting/config.py: Settings.preferred_port (PORT or 5000)
  - lifecycle/runner.py: resolves before binding the listener

Notes:
  - The answer is advisory; another process may take the port before bind,
    which bind_listener() reports as PortBindError
"""

from __future__ import annotations

import asyncio
import socket
from typing import Callable

from ..crosscutting.exceptions import PortResolutionError
from ..crosscutting.logger import logger

PortPredicate = Callable[[str, int], bool]
PortFinder = Callable[[str], int]


def _family_for(host: str) -> socket.AddressFamily:
    return socket.AF_INET6 if ":" in host else socket.AF_INET


def _address(host: str, port: int) -> tuple:
    if _family_for(host) == socket.AF_INET6:
        return (host, port, 0, 0)
    return (host, port)


def port_is_free(host: str, port: int) -> bool:
    """True when a listener could bind host:port right now."""
    try:
        sock = socket.socket(_family_for(host), socket.SOCK_STREAM)
    except OSError as exc:
        raise PortResolutionError(
            f"Cannot create a socket to probe port {port}: {exc}", original_error=exc
        ) from exc
    with sock:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            sock.bind(_address(host, port))
        except OSError:
            return False
    return True


def ephemeral_port(host: str) -> int:
    """Ask the OS for an ephemeral port on host."""
    try:
        with socket.socket(_family_for(host), socket.SOCK_STREAM) as sock:
            sock.bind(_address(host, 0))
            return sock.getsockname()[1]
    except OSError as exc:
        raise PortResolutionError(
            f"No free port available on {host}: {exc}", original_error=exc
        ) from exc


async def resolve_port(
    preferred: int,
    *,
    host: str = "0.0.0.0",
    is_port_free: PortPredicate | None = None,
    find_free_port: PortFinder | None = None,
) -> int:
    """
    Return `preferred` if free, else an OS-assigned port.

    Probing is blocking socket work, so it runs in a worker thread.

    Raises:
        PortResolutionError: no socket could be created at all
    """
    check = is_port_free or port_is_free
    finder = find_free_port or ephemeral_port

    if await asyncio.to_thread(check, host, preferred):
        return preferred

    port = await asyncio.to_thread(finder, host)
    logger.warning(
        "preferred port unavailable, using fallback",
        extra={"preferred_port": preferred, "port": port},
    )
    return port
