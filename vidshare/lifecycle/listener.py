"""
Name: Listener

Responsibilities:
  - Bind and listen on host:port, handing the socket to the ASGI server
  - Report bind failures as PortBindError, telling "in use" apart from other causes
"""

from __future__ import annotations

import errno
import socket

from ..crosscutting.exceptions import PortBindError

BACKLOG = 2048


def bind_listener(host: str, port: int, *, backlog: int = BACKLOG) -> socket.socket:
    """
    Return a bound, listening, non-blocking socket.

    Raises:
        PortBindError: in_use=True when the address is taken
    """
    family = socket.AF_INET6 if ":" in host else socket.AF_INET
    address = (host, port, 0, 0) if family == socket.AF_INET6 else (host, port)

    sock = socket.socket(family, socket.SOCK_STREAM)
    try:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.bind(address)
        sock.listen(backlog)
        sock.setblocking(False)
    except OSError as exc:
        sock.close()
        raise PortBindError(
            port, in_use=exc.errno == errno.EADDRINUSE, original_error=exc
        ) from exc
    return sock
