"""Port selection for the streamable HTTP transport."""

from __future__ import annotations

import logging
import socket

from sfcontext.errors import ConfigurationError

logger = logging.getLogger(__name__)

HTTP_HOST = "127.0.0.1"
PORT_ATTEMPTS = 10


def _is_port_free(port: int, host: str = HTTP_HOST) -> bool:
    """Check whether a port is available for binding."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.settimeout(0.5)
    try:
        sock.bind((host, port))
        return True
    except OSError:
        return False
    finally:
        sock.close()


def find_available_port(start: int, max_attempts: int = PORT_ATTEMPTS, *, host: str = HTTP_HOST) -> int:
    """Return *start* if free, else the next free port within *max_attempts*.

    There is a small window between the check and uvicorn binding the port;
    uvicorn fails fast with "address in use" if another process wins it.
    """
    for offset in range(max_attempts):
        candidate = start + offset
        if candidate >= 65536:
            break
        if _is_port_free(candidate, host):
            if offset:
                logger.info("Port %d is in use, using port %d instead", start, candidate)
            return candidate
    msg = f"No free port found in range {start}-{start + max_attempts - 1}"
    raise ConfigurationError(msg)
