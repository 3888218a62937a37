"""Deadline enforcement around an inner request handler."""

import concurrent.futures
import contextvars
import logging
import threading
from typing import Optional

from webserver.bootstrap.config import SECURITY_HEADERS
from webserver.domain.cancellation import RequestCancelled
from webserver.domain.errors import TimeoutExceeded
from webserver.domain.http_types import Handler, HttpRequest, HttpResponse
from webserver.domain.response_builders import timeout_response
from webserver.telemetry.tracing import SpanLoggerAdapter

TIMEOUT_LOGGER = SpanLoggerAdapter(logging.getLogger("webserver.pipeline.timeout"), {})


class TimeoutMiddleware:
    """Race the inner handler against a per-request deadline.

    The inner call runs on its own daemon thread so the caller can stop
    waiting once the deadline passes. On overrun the request's cancellation
    token is set, the late result is discarded, and a fixed 503 is returned.
    """

    def __init__(
        self,
        inner: Handler,
        timeout: float,
        security_headers: Optional[dict[str, str]] = None,
    ) -> None:
        if timeout <= 0:
            raise ValueError("timeout must be positive")
        self._inner = inner
        self._timeout = timeout
        self._security_headers = (
            SECURITY_HEADERS if security_headers is None else security_headers
        )

    @property
    def timeout(self) -> float:
        return self._timeout

    def handle(self, request: HttpRequest) -> HttpResponse:
        try:
            return self._call_with_deadline(request)
        except TimeoutExceeded:
            request.cancellation.cancel()
            TIMEOUT_LOGGER.warning(
                "Request exceeded its deadline",
                extra={
                    "event": "request_timeout",
                    "method": request.method,
                    "timeout_ms": round(self._timeout * 1000),
                },
            )
            return timeout_response(request, self._security_headers)

    def _call_with_deadline(self, request: HttpRequest) -> HttpResponse:
        future: concurrent.futures.Future = concurrent.futures.Future()
        context = contextvars.copy_context()
        runner = threading.Thread(
            target=context.run,
            args=(self._run_inner, request, future),
            name="request-handler",
            daemon=True,
        )
        runner.start()
        try:
            return future.result(timeout=self._timeout)
        except concurrent.futures.TimeoutError as exc:
            raise TimeoutExceeded(f"no response within {self._timeout}s") from exc

    def _run_inner(
        self, request: HttpRequest, future: concurrent.futures.Future
    ) -> None:
        if not future.set_running_or_notify_cancel():
            return
        try:
            response = self._inner.handle(request)
        except RequestCancelled as error:
            if TIMEOUT_LOGGER.logger.isEnabledFor(logging.DEBUG):
                TIMEOUT_LOGGER.debug(
                    "Abandoned handler stopped at an I/O boundary",
                    extra={"event": "handler_cancelled"},
                )
            future.set_exception(error)
        except Exception as error:  # pylint: disable=broad-except
            future.set_exception(error)
        else:
            future.set_result(response)
