"""Error taxonomy shared across the server layers."""


class ResolveError(Exception):
    """Base class for failures translating a URL path into a file."""


class FileNotFound(ResolveError):
    """Raised when the requested path does not exist under the document root."""


class ForbiddenPath(ResolveError):
    """Raised when a requested path escapes the configured document root."""


class FileAccessError(ResolveError):
    """Raised when a file exists but cannot be read."""

    def __init__(self, kind: str) -> None:
        super().__init__(kind)
        self.kind = kind


class TimeoutExceeded(Exception):
    """Raised when a request handler overruns its deadline."""


class BindError(Exception):
    """Raised when a listener cannot bind its address."""

    def __init__(self, host: str, port: int, reason: str) -> None:
        super().__init__(f"cannot bind {host}:{port}: {reason}")
        self.host = host
        self.port = port
        self.reason = reason


class ConfigError(Exception):
    """Raised when startup configuration is invalid."""


class ShutdownGraceExceeded(Exception):
    """Signals that in-flight work outlived the drain grace period."""

    def __init__(self, remaining_workers: int) -> None:
        super().__init__(f"{remaining_workers} worker(s) abandoned")
        self.remaining_workers = remaining_workers
