"""Signal-driven shutdown coordination."""

import logging
import signal
import threading
import time
from dataclasses import dataclass
from typing import Optional

from webserver.lifecycle.state import ServerLifecycle
from webserver.telemetry.tracing import SpanLoggerAdapter

SHUTDOWN_LOGGER = SpanLoggerAdapter(logging.getLogger("webserver.lifecycle"), {})

SIGNAL_POLL_SECONDS = 0.5
HANDLED_SIGNALS = (signal.SIGTERM, signal.SIGINT)


def _signal_name(signum: int) -> str:
    try:
        return signal.Signals(signum).name
    except ValueError:
        return str(signum)


@dataclass(frozen=True)
class ShutdownSignal:
    """The first termination signal the process received."""

    signum: int
    received_at: float

    @property
    def name(self) -> str:
        return _signal_name(self.signum)


class ShutdownCoordinator:
    """Turns termination signals into a drain of the listener manager.

    The first signal starts the drain. Any later signal, when
    ``second_signal_forces`` is set, caps the remaining grace period at
    ``force_grace_seconds``.
    """

    def __init__(
        self,
        lifecycle: ServerLifecycle,
        grace_seconds: float,
        force_grace_seconds: float = 0.0,
        second_signal_forces: bool = True,
    ) -> None:
        self._lifecycle = lifecycle
        self._grace_seconds = grace_seconds
        self._force_grace_seconds = force_grace_seconds
        self._second_signal_forces = second_signal_forces
        self._received = threading.Event()
        self._first_signal: Optional[ShutdownSignal] = None
        self._force_requested = False
        self._signal_count = 0

    @property
    def signal_count(self) -> int:
        return self._signal_count

    def install(self, signals: tuple[int, ...] = HANDLED_SIGNALS) -> None:
        """Route the given signals to this coordinator; main thread only."""
        for signum in signals:
            signal.signal(signum, self.handle_signal)

    def handle_signal(self, signum: int, _frame=None) -> None:
        self._signal_count += 1
        if self._first_signal is None:
            self._first_signal = ShutdownSignal(signum, time.monotonic())
            SHUTDOWN_LOGGER.info(
                "Received shutdown signal",
                extra={"event": "shutdown_signal", "signal": self._first_signal.name},
            )
            self._received.set()
            return

        SHUTDOWN_LOGGER.warning(
            "Received additional shutdown signal",
            extra={"event": "shutdown_signal", "signal": _signal_name(signum)},
        )
        if not self._second_signal_forces:
            return
        self._force_requested = True
        if self._lifecycle.is_draining():
            self._lifecycle.shorten_grace(self._force_grace_seconds)

    def await_signal(self, timeout: Optional[float] = None) -> Optional[ShutdownSignal]:
        """Block until a termination signal arrives; None if ``timeout`` elapses.

        Waits in short slices so the main thread keeps running Python
        signal handlers.
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        while not self._received.is_set():
            wait = SIGNAL_POLL_SECONDS
            if deadline is not None:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return None
                wait = min(wait, remaining)
            self._received.wait(wait)
        return self._first_signal

    def drive(self, manager) -> bool:
        """Drain ``manager`` and wait out the grace period.

        Returns True when every in-flight request finished in time; False when
        some were abandoned at the deadline, which is still a normal exit.
        """
        manager.drain()
        if self._force_requested:
            self._lifecycle.shorten_grace(self._force_grace_seconds)
        return manager.wait_stopped(self._grace_seconds)
