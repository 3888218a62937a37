"""Cooperative cancellation for request handlers."""

import threading


class RequestCancelled(Exception):
    """Raised at an I/O boundary once the owning request was cancelled."""


class CancellationToken:
    """One-shot flag checked by handlers between blocking operations."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        """Abort the caller when the request has been cancelled."""
        if self._event.is_set():
            raise RequestCancelled

    def wait(self, timeout: float) -> bool:
        """Sleep up to ``timeout`` seconds; returns True if cancelled meanwhile."""
        return self._event.wait(timeout)
