"""Scrape endpoint served on the metrics listener."""

import logging
from typing import Optional

from webserver.bootstrap.config import METRICS_PATH, SECURITY_HEADERS
from webserver.domain.http_types import HttpRequest, HttpResponse
from webserver.domain.response_builders import metrics_response, not_found_response
from webserver.telemetry.metrics import RequestMetrics
from webserver.telemetry.tracing import SpanLoggerAdapter

METRICS_LOGGER = SpanLoggerAdapter(
    logging.getLogger("webserver.handlers.metrics"), {}
)


class MetricsHandler:
    """Render a point-in-time snapshot of the request metrics."""

    def __init__(
        self,
        metrics: RequestMetrics,
        path: str = METRICS_PATH,
        security_headers: Optional[dict[str, str]] = None,
    ) -> None:
        self._metrics = metrics
        self._path = path
        self._security_headers = (
            SECURITY_HEADERS if security_headers is None else security_headers
        )

    def handle(self, request: HttpRequest) -> HttpResponse:
        if request.path.rstrip("/") != self._path:
            return not_found_response(request, self._security_headers)
        payload = self._metrics.render()
        if METRICS_LOGGER.logger.isEnabledFor(logging.DEBUG):
            METRICS_LOGGER.debug(
                "Metrics snapshot rendered",
                extra={"event": "metrics_scraped", "bytes_out": len(payload)},
            )
        return metrics_response(
            request, payload, self._metrics.content_type, self._security_headers
        )
