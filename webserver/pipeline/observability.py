"""Tracing and metrics capture around the timeout-bounded handler."""

import logging
from typing import Optional

from webserver.domain.http_types import Handler, HttpRequest, HttpResponse
from webserver.domain.sandbox import display_path
from webserver.telemetry.metrics import RequestMetrics
from webserver.telemetry.tracing import (
    RequestSequence,
    Span,
    SpanLoggerAdapter,
    activate_span,
    deactivate_span,
)

TRACE_LOGGER = SpanLoggerAdapter(
    logging.getLogger("webserver.pipeline.observability"), {}
)


class ObservabilityMiddleware:
    """Open a span per request and record its outcome.

    Purely observational: the inner response is returned as is, and the
    metrics aggregate is only touched when one was injected.
    """

    def __init__(
        self,
        inner: Handler,
        metrics: Optional[RequestMetrics] = None,
        sequence: Optional[RequestSequence] = None,
    ) -> None:
        self._inner = inner
        self._metrics = metrics
        self._sequence = sequence if sequence is not None else RequestSequence()

    def handle(self, request: HttpRequest) -> HttpResponse:
        span = Span.open(
            self._sequence.next(), request.method, display_path(request.path)
        )
        token = activate_span(span)
        try:
            TRACE_LOGGER.info(
                "Request started",
                extra={
                    "event": "request_started",
                    "method": span.method,
                    "path": span.path,
                },
            )
            try:
                response = self._inner.handle(request)
            except Exception as error:
                TRACE_LOGGER.error(
                    "Request failed without a response",
                    extra={
                        "event": "request_failed",
                        "method": span.method,
                        "path": span.path,
                        "error_type": type(error).__name__,
                        "duration_ms": round(span.elapsed_seconds() * 1000, 3),
                    },
                )
                raise
            self._close_span(span, request, response)
            return response
        finally:
            deactivate_span(token)

    def _close_span(
        self, span: Span, request: HttpRequest, response: HttpResponse
    ) -> None:
        span.close(response.status.value, response.outcome.value)
        duration = span.duration_seconds or 0.0
        if self._metrics is not None:
            self._metrics.record(request.method, response.status_class, duration)
        bytes_out = 0 if request.method == "HEAD" else response.content_length
        extra = {
            "event": "request_completed",
            "method": span.method,
            "path": span.path,
            "status_code": span.status,
            "outcome": span.outcome,
            "duration_ms": round(duration * 1000, 3),
            "bytes_out": bytes_out,
        }
        if response.error_kind is not None:
            extra["error_kind"] = response.error_kind
        TRACE_LOGGER.info("Request completed", extra=extra)
