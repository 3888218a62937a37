"""Context object shared across worker threads."""

from dataclasses import dataclass, field

from webserver.bootstrap.config import ALLOWED_METHODS, SECURITY_HEADERS
from webserver.domain.http_types import Handler
from webserver.lifecycle.state import ServerLifecycle


@dataclass
class WorkerContext:
    """Dependencies shared across handler threads of one listener."""

    listener: str
    handler: Handler
    lifecycle: ServerLifecycle
    socket_timeout: float
    allowed_methods: set[str] = field(default_factory=lambda: set(ALLOWED_METHODS))
    security_headers: dict[str, str] = field(
        default_factory=lambda: dict(SECURITY_HEADERS)
    )
