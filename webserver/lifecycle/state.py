"""Server lifecycle state management."""

import enum
import logging
import threading
import time
from typing import Optional

from webserver.telemetry.tracing import SpanLoggerAdapter

LIFECYCLE_LOGGER = SpanLoggerAdapter(logging.getLogger("webserver.lifecycle"), {})

JOIN_SLICE_SECONDS = 0.1


class LifecycleState(enum.Enum):
    """Process states; transitions only ever move forward."""

    STARTING = "starting"
    RUNNING = "running"
    DRAINING = "draining"
    STOPPED = "stopped"


_ORDER = list(LifecycleState)


class ServerLifecycle:
    """Manages server lifecycle state and worker thread tracking."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._stop_event = threading.Event()
        self._draining_event = threading.Event()
        self._workers: set[threading.Thread] = set()
        self._state = LifecycleState.STARTING
        self._forced_deadline: Optional[float] = None

    @property
    def state(self) -> LifecycleState:
        with self._lock:
            return self._state

    def _advance(self, target: LifecycleState) -> bool:
        with self._lock:
            if _ORDER.index(target) <= _ORDER.index(self._state):
                return False
            self._state = target
        LIFECYCLE_LOGGER.info(
            "Lifecycle state changed",
            extra={"event": "state_changed", "state": target.value},
        )
        return True

    def mark_running(self) -> None:
        """Record that every listener is bound and accepting."""
        self._advance(LifecycleState.RUNNING)

    def mark_stopped(self) -> None:
        """Record the terminal state."""
        self._stop_event.set()
        self._advance(LifecycleState.STOPPED)

    def should_stop(self) -> bool:
        """Check if the server should stop accepting new connections."""
        return self._stop_event.is_set()

    def is_draining(self) -> bool:
        """Check if the server is in draining mode."""
        return self._draining_event.is_set()

    def register_worker(self, thread: threading.Thread) -> None:
        """Register a worker thread for tracking."""
        with self._lock:
            self._workers.add(thread)

    def cleanup_worker(self, thread: threading.Thread) -> None:
        """Remove a worker thread from tracking."""
        with self._lock:
            self._workers.discard(thread)

    def has_worker(self, thread: threading.Thread) -> bool:
        """Return True when the worker is currently tracked."""
        with self._lock:
            return thread in self._workers

    def active_worker_count(self) -> int:
        """Return the number of currently tracked worker threads."""
        with self._lock:
            return len(self._workers)

    def begin_draining(self) -> bool:
        """Stop accepting work; returns False if draining had already begun."""
        with self._lock:
            if self._draining_event.is_set():
                return False
            self._draining_event.set()
            self._stop_event.set()
        self._advance(LifecycleState.DRAINING)
        LIFECYCLE_LOGGER.info(
            "Beginning graceful shutdown", extra={"event": "drain_started"}
        )
        return True

    def shorten_grace(self, seconds: float) -> None:
        """Cap whatever remains of the drain wait at ``seconds`` from now.

        Safe to call from a signal handler: it never takes ``_lock``, which the
        interrupted main thread may already hold. Only the main thread writes
        the forced deadline.
        """
        deadline = time.monotonic() + max(0.0, seconds)
        current = self._forced_deadline
        if current is None or deadline < current:
            self._forced_deadline = deadline
        LIFECYCLE_LOGGER.warning(
            "Drain grace period shortened",
            extra={"event": "drain_forced", "grace_seconds": seconds},
        )

    def wait_for_workers(self, timeout: float) -> bool:
        """Wait for all worker threads to complete within the timeout."""
        deadline = time.monotonic() + timeout
        while True:
            with self._lock:
                self._workers = {w for w in self._workers if w.is_alive()}
                active_workers = list(self._workers)
            deadline = self._effective_deadline(deadline)
            if not active_workers:
                return True
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return False
            for worker in active_workers:
                worker.join(timeout=min(JOIN_SLICE_SECONDS, remaining))
                if time.monotonic() >= self._effective_deadline(deadline):
                    break

    def _effective_deadline(self, deadline: float) -> float:
        forced = self._forced_deadline
        if forced is None:
            return deadline
        return min(deadline, forced)
