"""Server configuration and CLI argument parsing.

Environment variables seed the CLI defaults and are read each time the
arguments are parsed; an unparsable value is a ConfigError.
"""

import argparse
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional, TypeVar

from webserver.domain.errors import ConfigError

T = TypeVar("T")

DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 8080
DEFAULT_DIRECTORY = "public"
DEFAULT_NOT_FOUND_PAGE = "404.html"
DEFAULT_REQUEST_TIMEOUT_MS = 30_000
DEFAULT_METRICS_HOST = "0.0.0.0"
DEFAULT_METRICS_PORT = 8081
DEFAULT_SOCKET_TIMEOUT = 60.0
DEFAULT_SHUTDOWN_GRACE_SECONDS = 30.0
DEFAULT_FORCE_GRACE_SECONDS = 0.0


def _env_str(name: str, default: str) -> str:
    value = os.getenv(name)
    return value if value else default


def _env_number(name: str, default: T, convert: Callable[[str], T]) -> T:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return convert(value)
    except ValueError as exc:
        raise ConfigError(
            f"{name}={value!r} is not a valid {convert.__name__}"
        ) from exc


def _env_int(name: str, default: int) -> int:
    return _env_number(name, default, int)


def _env_float(name: str, default: float) -> float:
    return _env_number(name, default, float)


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.lower() in {"1", "true", "yes", "on"}


HEADER_DELIMITER = b"\r\n\r\n"
MAX_HEADER_BYTES = 64 * 1024
ALLOWED_METHODS = {"GET", "HEAD"}
METRICS_PATH = "/metrics"

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
}


@dataclass(frozen=True)
class ServerConfig:
    """Validated, immutable startup configuration."""

    host: str
    port: int
    document_root: Path
    request_timeout: float
    metrics_enabled: bool = False
    metrics_host: str = DEFAULT_METRICS_HOST
    metrics_port: int = DEFAULT_METRICS_PORT
    not_found_page: Optional[str] = None
    socket_timeout: float = DEFAULT_SOCKET_TIMEOUT
    shutdown_grace_seconds: float = DEFAULT_SHUTDOWN_GRACE_SECONDS
    force_grace_seconds: float = DEFAULT_FORCE_GRACE_SECONDS
    second_signal_forces: bool = True

    @property
    def bind_addr(self) -> tuple[str, int]:
        return self.host, self.port

    @property
    def metrics_addr(self) -> Optional[tuple[str, int]]:
        if not self.metrics_enabled:
            return None
        return self.metrics_host, self.metrics_port


def parse_cli_args(argv: list[str]) -> argparse.Namespace:
    """Return parsed CLI arguments for server configuration."""
    parser = argparse.ArgumentParser(description="Static website server")
    parser.add_argument(
        "--directory",
        default=_env_str("WEBSERVER_DIR", DEFAULT_DIRECTORY),
        help="Document root to serve files from",
    )
    parser.add_argument("--host", default=_env_str("WEBSERVER_ADDR", DEFAULT_HOST))
    parser.add_argument(
        "--port", type=int, default=_env_int("WEBSERVER_PORT", DEFAULT_PORT)
    )
    parser.add_argument(
        "--not-found-page",
        default=_env_str("WEBSERVER_404", DEFAULT_NOT_FOUND_PAGE),
        help="Page under the document root used as the 404 body, if present",
    )
    parser.add_argument(
        "--request-timeout-ms",
        type=int,
        default=_env_int("WEBSERVER_TIMEOUT", DEFAULT_REQUEST_TIMEOUT_MS),
        help="Upper bound on handling time per request, in milliseconds",
    )
    parser.add_argument(
        "--metrics",
        action=argparse.BooleanOptionalAction,
        default=_env_bool("WEBSERVER_METRICS", False),
        help="Expose a metrics scrape endpoint on a second listener",
    )
    parser.add_argument(
        "--metrics-host", default=_env_str("METRICS_ADDR", DEFAULT_METRICS_HOST)
    )
    parser.add_argument(
        "--metrics-port",
        type=int,
        default=_env_int("METRICS_PORT", DEFAULT_METRICS_PORT),
    )
    default_log_level = os.getenv("WEBSERVER_LOG", "INFO").upper()
    default_destination = os.getenv("WEBSERVER_LOG_DESTINATION", "stdout")
    default_log_format = os.getenv("WEBSERVER_LOG_FORMAT", "json").lower()
    parser.add_argument(
        "--log-level",
        default=default_log_level,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        type=str.upper,
    )
    parser.add_argument(
        "--log-destination",
        default=default_destination,
        help="stdout or a file path",
    )
    parser.add_argument(
        "--log-format",
        default=default_log_format,
        choices=["json", "text"],
        type=str.lower,
    )
    parser.add_argument(
        "--socket-timeout",
        type=float,
        default=_env_float("WEBSERVER_SOCKET_TIMEOUT", DEFAULT_SOCKET_TIMEOUT),
        help="Idle keep-alive timeout in seconds",
    )
    parser.add_argument(
        "--shutdown-grace-seconds",
        type=float,
        default=_env_float(
            "WEBSERVER_SHUTDOWN_GRACE_SECONDS", DEFAULT_SHUTDOWN_GRACE_SECONDS
        ),
        help="Grace period in seconds for in-flight requests during shutdown",
    )
    parser.add_argument(
        "--force-grace-seconds",
        type=float,
        default=_env_float(
            "WEBSERVER_FORCE_GRACE_SECONDS", DEFAULT_FORCE_GRACE_SECONDS
        ),
        help="Remaining grace after a second termination signal",
    )
    parser.add_argument(
        "--second-signal-forces",
        action=argparse.BooleanOptionalAction,
        default=_env_bool("WEBSERVER_SECOND_SIGNAL_FORCES", True),
        help="Shorten the drain when a second termination signal arrives",
    )
    return parser.parse_args(argv)


def _resolve_document_root(directory: str) -> Path:
    try:
        root = Path(directory).resolve(strict=True)
    except (OSError, RuntimeError) as exc:
        raise ConfigError(f"document root {directory!r} is not accessible") from exc
    if not root.is_dir():
        raise ConfigError(f"document root {directory!r} is not a directory")
    return root


def build_server_config(args: argparse.Namespace) -> ServerConfig:
    """Validate parsed arguments and freeze them into a ServerConfig."""
    document_root = _resolve_document_root(args.directory)
    if args.request_timeout_ms <= 0:
        raise ConfigError("request timeout must be a positive number of milliseconds")
    if args.shutdown_grace_seconds < 0 or args.force_grace_seconds < 0:
        raise ConfigError("grace periods must not be negative")
    for port in (args.port, args.metrics_port):
        if not 0 <= port <= 65535:
            raise ConfigError(f"port {port} is out of range")

    return ServerConfig(
        host=args.host,
        port=args.port,
        document_root=document_root,
        request_timeout=args.request_timeout_ms / 1000,
        metrics_enabled=args.metrics,
        metrics_host=args.metrics_host,
        metrics_port=args.metrics_port,
        not_found_page=args.not_found_page or None,
        socket_timeout=args.socket_timeout,
        shutdown_grace_seconds=args.shutdown_grace_seconds,
        force_grace_seconds=args.force_grace_seconds,
        second_signal_forces=args.second_signal_forces,
    )
