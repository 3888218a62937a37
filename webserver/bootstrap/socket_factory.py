"""Listening socket creation."""

import logging
import socket

from webserver.domain.errors import BindError
from webserver.telemetry.tracing import SpanLoggerAdapter

SOCKET_LOGGER = SpanLoggerAdapter(logging.getLogger("webserver.socket"), {})

ACCEPT_POLL_SECONDS = 0.5


def create_server_socket(host: str, port: int) -> socket.socket:
    """Bind a listening socket, raising BindError when the address is unusable."""
    try:
        server_socket = socket.create_server((host, port))
    except OSError as error:
        SOCKET_LOGGER.critical(
            "Failed to bind listener",
            extra={
                "event": "bind_failed",
                "host": host,
                "port": port,
                "error_type": type(error).__name__,
            },
        )
        raise BindError(host, port, error.strerror or str(error)) from error
    server_socket.settimeout(ACCEPT_POLL_SECONDS)
    return server_socket
