"""Worker thread logic for handling individual client connections."""

import logging
import select
import socket
import threading
import time
from dataclasses import dataclass
from typing import Optional

from webserver.domain.http_types import HttpRequest
from webserver.domain.response_builders import bad_request_response
from webserver.pipeline.io import MalformedRequest, receive_request, send_response
from webserver.pipeline.validation import validate_request
from webserver.telemetry.tracing import SpanLoggerAdapter, clear_span
from webserver.transport.context import WorkerContext

WORKER_LOGGER = SpanLoggerAdapter(logging.getLogger("webserver.transport.worker"), {})

IDLE_POLL_SECONDS = 0.5


def _await_request(client_socket: socket.socket, context: WorkerContext) -> bool:
    """Wait for the next request on an idle connection.

    Returns False when the connection should be closed instead: the idle
    timeout elapsed or the server started draining.
    """
    deadline_ns = time.monotonic_ns() + int(context.socket_timeout * 1_000_000_000)
    while True:
        remaining_ns = deadline_ns - time.monotonic_ns()
        if remaining_ns <= 0:
            if WORKER_LOGGER.logger.isEnabledFor(logging.DEBUG):
                WORKER_LOGGER.debug(
                    "Idle connection timed out", extra={"event": "idle_timeout"}
                )
            return False
        wait_seconds = min(IDLE_POLL_SECONDS, remaining_ns / 1_000_000_000)
        readable, _, _ = select.select([client_socket], [], [], wait_seconds)
        if readable:
            return True
        if context.lifecycle.is_draining():
            return False


def _read_request_with_validation(
    client_socket: socket.socket,
    buffer: bytes,
    client_addr_str: str,
    context: WorkerContext,
) -> tuple[Optional[HttpRequest], bytes, bool]:
    """Read a request from the socket, answering 400 when it cannot be parsed."""
    try:
        request, buffer = receive_request(client_socket, buffer)
    except MalformedRequest as error:
        WORKER_LOGGER.warning(
            "Malformed request received",
            extra={
                "event": "malformed_request",
                "client": client_addr_str,
                "error_kind": str(error),
            },
        )
        send_response(
            client_socket, bad_request_response(None, context.security_headers)
        )
        return None, b"", True

    if request is None:
        if WORKER_LOGGER.logger.isEnabledFor(logging.DEBUG):
            WORKER_LOGGER.debug(
                "Client disconnected during request",
                extra={"event": "client_disconnected", "client": client_addr_str},
            )
        return None, buffer, True
    return request, buffer, False


def _process_request(
    request: HttpRequest,
    context: WorkerContext,
    client_socket: socket.socket,
) -> bool:
    response = validate_request(
        request, context.allowed_methods, context.security_headers
    )
    if response is None:
        response = context.handler.handle(request)
    if context.lifecycle.is_draining():
        response.close_connection = True
    send_response(client_socket, response, include_body=request.method != "HEAD")
    return response.close_connection


@dataclass
class _WorkerResources:
    thread: threading.Thread
    client_socket: socket.socket
    client_addr_str: str


def _cleanup_worker(context: WorkerContext, resources: _WorkerResources) -> None:
    context.lifecycle.cleanup_worker(resources.thread)

    try:
        resources.client_socket.shutdown(socket.SHUT_WR)
    except OSError:
        pass
    resources.client_socket.close()

    if WORKER_LOGGER.logger.isEnabledFor(logging.DEBUG):
        WORKER_LOGGER.debug(
            "Socket closed",
            extra={"event": "socket_closed", "client": resources.client_addr_str},
        )
    clear_span()


def handle_client(
    client_socket: socket.socket,
    client_address: tuple[str, int],
    context: WorkerContext,
) -> None:
    """Process requests on a client socket until the connection is closed."""
    buffer = b""
    client_addr_str = f"{client_address[0]}:{client_address[1]}"
    resources = _WorkerResources(
        threading.current_thread(), client_socket, client_addr_str
    )

    try:
        while True:
            if not buffer and not _await_request(client_socket, context):
                break
            client_socket.settimeout(context.socket_timeout)

            request, buffer, should_terminate = _read_request_with_validation(
                client_socket, buffer, client_addr_str, context
            )
            if should_terminate or request is None:
                break

            if _process_request(request, context, client_socket):
                break
    except (ConnectionError, TimeoutError, OSError) as error:
        WORKER_LOGGER.error(
            "Error handling client connection",
            extra={
                "event": "connection_error",
                "client": client_addr_str,
                "listener": context.listener,
                "error_type": type(error).__name__,
            },
        )
    except Exception as error:  # pylint: disable=broad-except
        WORKER_LOGGER.error(
            "Unexpected error in worker",
            extra={
                "event": "worker_error",
                "client": client_addr_str,
                "listener": context.listener,
                "error_type": type(error).__name__,
            },
            exc_info=True,
        )
    finally:
        _cleanup_worker(context, resources)
