"""Shared HTTP type definitions to avoid circular imports."""

import enum
from dataclasses import dataclass, field
from http import HTTPStatus
from typing import Iterable, Optional, Protocol

from webserver.domain.cancellation import CancellationToken


class Outcome(enum.Enum):
    """How the pipeline disposed of a request."""

    OK = "ok"
    TIMEOUT = "timeout"
    NOT_FOUND = "not_found"
    IO_ERROR = "io_error"
    FORBIDDEN = "forbidden"


@dataclass
class HttpRequest:
    """Represents a parsed HTTP request."""

    method: str
    path: str
    headers: dict[str, str]
    body: bytes = b""
    cancellation: CancellationToken = field(default_factory=CancellationToken)


@dataclass
class HttpResponse:
    """Represents an HTTP response to be sent to a client."""

    status: HTTPStatus
    headers: dict[str, str]
    body: bytes
    close_connection: bool
    outcome: Outcome = Outcome.OK
    error_kind: Optional[str] = None
    # Large file bodies are written by the transport after the pipeline returns.
    body_iter: Optional[Iterable[bytes]] = None

    @property
    def status_line(self) -> str:
        return f"HTTP/1.1 {self.status.value} {self.status.phrase}"

    @property
    def status_class(self) -> str:
        return f"{self.status.value // 100}xx"

    @property
    def content_length(self) -> int:
        if self.body_iter is None:
            return len(self.body)
        return int(self.headers["Content-Length"])


def should_close(headers: dict[str, str]) -> bool:
    """Determine whether the connection should be closed after responding."""
    return headers.get("connection", "").lower() == "close"


class Handler(Protocol):  # pylint: disable=too-few-public-methods
    """A pipeline stage: turns one request into one response."""

    def handle(self, request: HttpRequest) -> HttpResponse:
        ...
