"""Static website server with graceful shutdown and optional metrics."""

import logging
import sys
from typing import Optional

from webserver.bootstrap.config import build_server_config, parse_cli_args
from webserver.bootstrap.logging_setup import configure_logging
from webserver.domain.errors import BindError, ConfigError
from webserver.handlers.metrics_handler import MetricsHandler
from webserver.lifecycle.shutdown import ShutdownCoordinator
from webserver.pipeline.composition import build_request_pipeline
from webserver.telemetry.metrics import RequestMetrics
from webserver.telemetry.tracing import SpanLoggerAdapter
from webserver.transport.manager import ListenerManager

SERVER_LOGGER = SpanLoggerAdapter(logging.getLogger("webserver.server"), {})


def main(argv: Optional[list[str]] = None) -> int:
    """Serve the document root until a termination signal drains the server."""
    try:
        args = parse_cli_args(sys.argv[1:] if argv is None else argv)
    except ConfigError as error:
        configure_logging()
        SERVER_LOGGER.critical(
            "Invalid configuration: %s", error, extra={"event": "config_invalid"}
        )
        return 1
    configure_logging(
        args.log_level, args.log_destination, use_json=args.log_format == "json"
    )

    try:
        config = build_server_config(args)
    except ConfigError as error:
        SERVER_LOGGER.critical(
            "Invalid configuration: %s",
            error,
            extra={"event": "config_invalid", "directory": args.directory},
        )
        return 1

    metrics = RequestMetrics() if config.metrics_enabled else None
    pipeline = build_request_pipeline(config, metrics=metrics)
    metrics_handler = MetricsHandler(metrics) if metrics is not None else None
    manager = ListenerManager(config, pipeline, metrics_handler)

    coordinator = ShutdownCoordinator(
        manager.lifecycle,
        config.shutdown_grace_seconds,
        force_grace_seconds=config.force_grace_seconds,
        second_signal_forces=config.second_signal_forces,
    )
    coordinator.install()

    SERVER_LOGGER.info(
        "Starting HTTP server",
        extra={
            "event": "server_starting",
            "host": config.host,
            "port": config.port,
            "directory": str(config.document_root),
            "metrics_enabled": config.metrics_enabled,
            "timeout_ms": round(config.request_timeout * 1000),
            "grace_seconds": config.shutdown_grace_seconds,
        },
    )
    try:
        manager.start()
    except BindError as error:
        SERVER_LOGGER.critical(
            "Could not start listeners: %s",
            error,
            extra={"event": "startup_failed", "host": error.host, "port": error.port},
        )
        return 1

    coordinator.await_signal()
    coordinator.drive(manager)
    return 0


if __name__ == "__main__":
    sys.exit(main())
