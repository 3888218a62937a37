"""Per-request trace spans and span-aware logging using contextvars."""

import contextvars
import itertools
import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, MutableMapping, Optional

_current_span_var: contextvars.ContextVar[Optional["Span"]] = contextvars.ContextVar(
    "current_span", default=None
)


class RequestSequence:
    """Process-wide, monotonically increasing request counter."""

    def __init__(self, start: int = 1) -> None:
        self._counter = itertools.count(start)
        self._lock = threading.Lock()

    def next(self) -> int:
        """Return the next sequence number."""
        with self._lock:
            return next(self._counter)


@dataclass
class Span:
    """Trace context for one request, from pipeline entry to exit."""

    sequence: int
    method: str
    path: str
    started_ns: int
    status: Optional[int] = None
    outcome: Optional[str] = None
    duration_seconds: Optional[float] = None

    @classmethod
    def open(cls, sequence: int, method: str, path: str) -> "Span":
        return cls(sequence, method, path, time.monotonic_ns())

    @property
    def request_id(self) -> str:
        return str(self.sequence)

    @property
    def closed(self) -> bool:
        return self.duration_seconds is not None

    def elapsed_seconds(self) -> float:
        return (time.monotonic_ns() - self.started_ns) / 1_000_000_000

    def close(self, status: int, outcome: str) -> None:
        """Attach the final status and freeze the elapsed duration."""
        self.status = status
        self.outcome = outcome
        self.duration_seconds = self.elapsed_seconds()


def get_current_span() -> Optional[Span]:
    """Retrieve the span active in the current context."""
    return _current_span_var.get()


def activate_span(span: Span) -> contextvars.Token:
    """Make the span current, returning a token to restore the previous one."""
    return _current_span_var.set(span)


def deactivate_span(token: contextvars.Token) -> None:
    """Restore whichever span was current before ``activate_span``."""
    _current_span_var.reset(token)


def clear_span() -> None:
    """Remove any span from the current context."""
    _current_span_var.set(None)


class SpanLoggerAdapter(logging.LoggerAdapter):
    """Logger adapter that injects the active request id and component."""

    def process(
        self, msg: str, kwargs: MutableMapping[str, Any]
    ) -> tuple[str, MutableMapping[str, Any]]:
        """Add request_id and component to the extra dict."""
        if "extra" not in kwargs:
            kwargs["extra"] = {}
        else:
            kwargs["extra"] = dict(kwargs["extra"])

        span = get_current_span()
        kwargs["extra"]["request_id"] = span.request_id if span is not None else "-"

        logger_name = self.logger.name
        if logger_name.startswith("webserver."):
            component = logger_name[len("webserver.") :]
        else:
            component = logger_name
        kwargs["extra"]["component"] = component

        return msg, kwargs
