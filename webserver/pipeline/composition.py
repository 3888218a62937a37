"""Fixed composition of the request pipeline."""

from typing import Optional

from webserver.bootstrap.config import ServerConfig
from webserver.domain.http_types import Handler, HttpRequest, HttpResponse
from webserver.domain.sandbox import StaticResolver
from webserver.handlers.file_handler import StaticFileHandler
from webserver.pipeline.observability import ObservabilityMiddleware
from webserver.pipeline.timeout import TimeoutMiddleware
from webserver.telemetry.metrics import RequestMetrics
from webserver.telemetry.tracing import RequestSequence


class RequestPipeline:
    """Observability(Timeout(StaticFile)): the single per-request entry point.

    ``inner`` replaces the static-file stage and exists for tests that need a
    slow or failing innermost handler.
    """

    def __init__(
        self,
        config: ServerConfig,
        metrics: Optional[RequestMetrics] = None,
        sequence: Optional[RequestSequence] = None,
        inner: Optional[Handler] = None,
    ) -> None:
        self.resolver = StaticResolver(config.document_root)
        if inner is None:
            inner = StaticFileHandler(
                self.resolver, not_found_page=config.not_found_page
            )
        self._handler = ObservabilityMiddleware(
            TimeoutMiddleware(inner, config.request_timeout),
            metrics=metrics,
            sequence=sequence,
        )

    def handle(self, request: HttpRequest) -> HttpResponse:
        return self._handler.handle(request)


def build_request_pipeline(
    config: ServerConfig,
    metrics: Optional[RequestMetrics] = None,
    sequence: Optional[RequestSequence] = None,
) -> RequestPipeline:
    """Compose the production pipeline for ``config``."""
    return RequestPipeline(config, metrics=metrics, sequence=sequence)
