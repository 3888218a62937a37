"""Ownership of the primary and metrics listeners."""

import logging
from typing import Optional

from webserver.bootstrap.config import ServerConfig
from webserver.bootstrap.socket_factory import ACCEPT_POLL_SECONDS, create_server_socket
from webserver.domain.errors import BindError, ShutdownGraceExceeded
from webserver.domain.http_types import Handler
from webserver.lifecycle.state import ServerLifecycle
from webserver.telemetry.tracing import SpanLoggerAdapter
from webserver.transport.context import WorkerContext
from webserver.transport.listener import Listener

MANAGER_LOGGER = SpanLoggerAdapter(logging.getLogger("webserver.transport.manager"), {})

PRIMARY_LISTENER = "primary"
METRICS_LISTENER = "metrics"
METRICS_METHODS = {"GET"}


class ListenerManager:
    """Binds every configured listener up front and drains them together.

    A bind failure on any listener is fatal: sockets already bound are
    closed and the BindError propagates before anything starts accepting.
    """

    def __init__(
        self,
        config: ServerConfig,
        pipeline: Handler,
        metrics_handler: Optional[Handler] = None,
        lifecycle: Optional[ServerLifecycle] = None,
    ) -> None:
        self._config = config
        self._pipeline = pipeline
        self._metrics_handler = metrics_handler
        self.lifecycle = lifecycle if lifecycle is not None else ServerLifecycle()
        self._listeners: list[Listener] = []

    def _bind(
        self,
        name: str,
        address: tuple[str, int],
        handler: Handler,
        allowed_methods: Optional[set[str]] = None,
    ) -> Listener:
        server_socket = create_server_socket(*address)
        context = WorkerContext(
            listener=name,
            handler=handler,
            lifecycle=self.lifecycle,
            socket_timeout=self._config.socket_timeout,
        )
        if allowed_methods is not None:
            context.allowed_methods = set(allowed_methods)
        return Listener(server_socket, context)

    def start(self) -> None:
        """Bind all listeners, then start accepting on each of them."""
        bound: list[Listener] = []
        try:
            bound.append(
                self._bind(PRIMARY_LISTENER, self._config.bind_addr, self._pipeline)
            )
            metrics_addr = self._config.metrics_addr
            if metrics_addr is not None and self._metrics_handler is not None:
                bound.append(
                    self._bind(
                        METRICS_LISTENER,
                        metrics_addr,
                        self._metrics_handler,
                        METRICS_METHODS,
                    )
                )
        except BindError:
            for listener in bound:
                listener.close()
            raise

        self._listeners = bound
        for listener in self._listeners:
            listener.start()
        self.lifecycle.mark_running()

    def bound_addresses(self) -> dict[str, tuple[str, int]]:
        return {listener.name: listener.address for listener in self._listeners}

    def drain(self) -> None:
        """Stop accepting on every listener; in-flight requests keep running."""
        if not self.lifecycle.begin_draining():
            return
        for listener in self._listeners:
            listener.stop()
        for listener in self._listeners:
            listener.join(ACCEPT_POLL_SECONDS * 2)

    def wait_stopped(self, grace_seconds: float) -> bool:
        """Wait up to ``grace_seconds`` for workers, then mark the server stopped.

        Returns False when workers were abandoned at the deadline.
        """
        MANAGER_LOGGER.info(
            "Waiting for active connections to complete",
            extra={"event": "shutdown_waiting", "grace_seconds": grace_seconds},
        )
        completed = self.lifecycle.wait_for_workers(grace_seconds)
        remaining = 0 if completed else self.lifecycle.active_worker_count()
        if not completed:
            exceeded = ShutdownGraceExceeded(remaining)
            MANAGER_LOGGER.warning(
                "Shutdown grace period exceeded: %s",
                exceeded,
                extra={
                    "event": "shutdown_grace_exceeded",
                    "remaining_workers": exceeded.remaining_workers,
                    "grace_seconds": grace_seconds,
                },
            )
        self.lifecycle.mark_stopped()
        MANAGER_LOGGER.info(
            "Server shutdown complete",
            extra={"event": "server_stopped", "remaining_workers": remaining},
        )
        return completed
