"""Connection acceptance loop for one bound socket."""

import logging
import socket
import threading
from typing import Optional

from webserver.telemetry.tracing import SpanLoggerAdapter
from webserver.transport.context import WorkerContext
from webserver.transport.worker import handle_client

ACCEPT_LOGGER = SpanLoggerAdapter(logging.getLogger("webserver.transport.accept"), {})


class Listener:
    """Accepts connections on a bound socket and hands each to a worker thread."""

    def __init__(self, server_socket: socket.socket, context: WorkerContext) -> None:
        self._socket = server_socket
        self._context = context
        self._address: tuple[str, int] = server_socket.getsockname()[:2]
        self._thread: Optional[threading.Thread] = None

    @property
    def name(self) -> str:
        return self._context.listener

    @property
    def address(self) -> tuple[str, int]:
        """The actually bound address, so port 0 reports the kernel's choice."""
        return self._address

    def start(self) -> None:
        self._thread = threading.Thread(
            target=self.serve_forever, name=f"{self.name}-accept", daemon=True
        )
        self._thread.start()

    def stop(self) -> None:
        """Stop accepting; the loop closes the socket once it notices."""
        try:
            self._socket.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass

    def join(self, timeout: Optional[float] = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout)

    def close(self) -> None:
        """Release the socket of a listener that was never started."""
        self._socket.close()

    def serve_forever(self) -> None:
        lifecycle = self._context.lifecycle
        host, port = self._address
        ACCEPT_LOGGER.info(
            "Server listening for connections",
            extra={
                "event": "server_listening",
                "listener": self.name,
                "host": host,
                "port": port,
            },
        )
        try:
            while True:
                try:
                    client_socket, client_address = self._socket.accept()
                except socket.timeout:
                    if lifecycle.should_stop():
                        break
                    continue
                except OSError as error:
                    if lifecycle.should_stop():
                        break
                    ACCEPT_LOGGER.error(
                        "Socket accept failed",
                        extra={
                            "event": "accept_error",
                            "listener": self.name,
                            "error_type": type(error).__name__,
                        },
                    )
                    continue

                if lifecycle.should_stop():
                    client_socket.close()
                    break

                self._dispatch(client_socket, client_address)
        finally:
            self._socket.close()
            ACCEPT_LOGGER.info(
                "Listener closed",
                extra={"event": "listener_closed", "listener": self.name},
            )

    def _dispatch(
        self, client_socket: socket.socket, client_address: tuple[str, int]
    ) -> None:
        client_addr_str = f"{client_address[0]}:{client_address[1]}"
        if ACCEPT_LOGGER.logger.isEnabledFor(logging.DEBUG):
            ACCEPT_LOGGER.debug(
                "Client connection accepted",
                extra={
                    "event": "client_accepted",
                    "listener": self.name,
                    "client": client_addr_str,
                },
            )
        thread = threading.Thread(
            target=handle_client,
            args=(client_socket, client_address, self._context),
            name=f"{self.name}-worker",
            daemon=True,
        )
        thread.start()
        self._context.lifecycle.register_worker(thread)
