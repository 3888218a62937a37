"""HTTP Input/Output operations."""

import logging
import socket
import urllib.parse
from typing import Iterable, Optional, Tuple

from webserver.bootstrap.config import HEADER_DELIMITER, MAX_HEADER_BYTES
from webserver.domain.errors import ResolveError
from webserver.domain.http_types import HttpRequest, HttpResponse
from webserver.telemetry.tracing import SpanLoggerAdapter

IO_LOGGER = SpanLoggerAdapter(logging.getLogger("webserver.io"), {})

MAX_BODY_BYTES = 1024 * 1024


class MalformedRequest(ValueError):
    """Raised when the bytes on the wire are not a usable HTTP/1.x request."""


def parse_headers(lines: list[str]) -> dict[str, str]:
    """Convert raw header lines into a lowercase-keyed dictionary."""
    parsed = {}
    for line in lines:
        if ":" in line:
            name, value = line.split(":", 1)
            parsed[name.strip().lower()] = value.strip()
    return parsed


def parse_request_line(request_line: str) -> Tuple[str, str]:
    """Parse the method and the raw URL path (query and fragment stripped)."""
    try:
        method, target, version = request_line.split(" ", 2)
    except ValueError as exc:
        raise MalformedRequest("Invalid request line") from exc
    if not version.startswith("HTTP/1."):
        raise MalformedRequest("Unsupported protocol version")
    path = urllib.parse.urlsplit(target).path
    if not path.startswith("/"):
        raise MalformedRequest("Request target must be an absolute path")
    return method.upper(), path


def determine_content_length(headers: dict[str, str]) -> int:
    """Validate and return the declared Content-Length for the request."""
    header_value = headers.get("content-length")
    if header_value is None:
        return 0
    try:
        content_length = int(header_value)
    except ValueError as exc:
        raise MalformedRequest("Invalid Content-Length") from exc
    if content_length < 0:
        raise MalformedRequest("Negative Content-Length")
    if content_length > MAX_BODY_BYTES:
        raise MalformedRequest("Request body too large")
    return content_length


def receive_request(
    client_socket: socket.socket, buffer: bytes
) -> Tuple[Optional[HttpRequest], bytes]:
    """Read bytes from the socket until a complete request is available."""
    while HEADER_DELIMITER not in buffer:
        if len(buffer) > MAX_HEADER_BYTES:
            raise MalformedRequest("Header block too large")
        chunk = client_socket.recv(4096)
        if not chunk:
            return None, b""
        buffer += chunk

    header_block, remainder = buffer.split(HEADER_DELIMITER, 1)
    try:
        header_lines = header_block.decode("latin-1").split("\r\n")
    except UnicodeDecodeError as exc:
        raise MalformedRequest("Undecodable header block") from exc
    method, path = parse_request_line(header_lines[0])
    headers = parse_headers(header_lines[1:])
    content_length = determine_content_length(headers)

    while len(remainder) < content_length:
        chunk = client_socket.recv(4096)
        if not chunk:
            return None, b""
        remainder += chunk

    body = remainder[:content_length]
    leftover = remainder[content_length:]
    if IO_LOGGER.logger.isEnabledFor(logging.DEBUG):
        IO_LOGGER.debug(
            "Parsed request",
            extra={"event": "request_parsed", "method": method, "path": path},
        )
    return HttpRequest(method, path, headers, body), leftover


def send_response(
    client_socket: socket.socket, response: HttpResponse, include_body: bool = True
) -> None:
    """Serialize and send the HTTP response over the socket.

    ``include_body`` is False for HEAD requests: headers, Content-Length
    included, are sent exactly as for GET but the payload is omitted.
    A streamed body is written chunk by chunk and always released.
    """
    headers = dict(response.headers)
    headers.setdefault("Content-Length", str(len(response.body)))
    if response.close_connection:
        headers["Connection"] = "close"
    header_lines = [response.status_line]
    header_lines.extend(f"{name}: {value}" for name, value in headers.items())
    header_block = "\r\n".join(header_lines).encode("latin-1") + HEADER_DELIMITER
    payload = header_block + response.body if include_body else header_block
    bytes_out = len(payload)
    try:
        client_socket.sendall(payload)
        if include_body and response.body_iter is not None:
            bytes_out += _send_stream(
                client_socket, response.body_iter, response.content_length
            )
    finally:
        if response.body_iter is not None:
            close = getattr(response.body_iter, "close", None)
            if close is not None:
                close()
    if IO_LOGGER.logger.isEnabledFor(logging.DEBUG):
        IO_LOGGER.debug(
            "Sent response",
            extra={
                "event": "response_sent",
                "status_code": response.status.value,
                "bytes_out": bytes_out,
            },
        )


def _send_stream(
    client_socket: socket.socket, stream: Iterable[bytes], declared: int
) -> int:
    """Send at most ``declared`` bytes from ``stream``; a short body aborts.

    Once the headers are out, the only way to report a failed read is to
    drop the connection, so read errors surface as ConnectionAbortedError.
    """
    sent = 0
    try:
        for chunk in stream:
            chunk = chunk[: declared - sent]
            client_socket.sendall(chunk)
            sent += len(chunk)
            if sent >= declared:
                break
    except ResolveError as exc:
        raise ConnectionAbortedError(f"body read failed: {exc}") from exc
    if sent < declared:
        raise ConnectionAbortedError(f"body ended after {sent} of {declared} bytes")
    return sent
