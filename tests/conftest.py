"""Shared pytest fixtures for integration and unit tests."""

from __future__ import annotations

import subprocess
import sys
from pathlib import Path
from typing import TYPE_CHECKING, Generator, TypedDict

import pytest

from tests.utils.http import reserve_port, wait_for_port

if TYPE_CHECKING:
    from _pytest.tmpdir import TempPathFactory

PROJECT_ROOT = Path(__file__).resolve().parent.parent
SERVER_ENTRYPOINT = PROJECT_ROOT / "main.py"

INDEX_HTML = b"<!doctype html><h1>home</h1>\n"
ABOUT_HTML = b"<!doctype html><h1>about</h1>\n"
NOT_FOUND_HTML = b"<!doctype html><h1>nothing here</h1>\n"
STYLE_CSS = b"body { color: #333; }\n"


class ServerProcessInfo(TypedDict):
    """Metadata describing a running server fixture instance."""

    base_url: str
    host: str
    port: int
    metrics_port: int | None
    directory: Path
    process: subprocess.Popen[str]
    log_file: Path | None


def populate_site(directory: Path) -> Path:
    """Write the small static site the integration tests browse."""

    (directory / "index.html").write_bytes(INDEX_HTML)
    (directory / "about.html").write_bytes(ABOUT_HTML)
    (directory / "404.html").write_bytes(NOT_FOUND_HTML)
    (directory / "assets").mkdir()
    (directory / "assets" / "style.css").write_bytes(STYLE_CSS)
    return directory


def _launch_server(
    host: str,
    port: int,
    directory: Path,
    extra_args: list[str] | None = None,
    log_file: Path | None = None,
    metrics_port: int | None = None,
) -> Generator[ServerProcessInfo, None, None]:
    args = [
        sys.executable,
        str(SERVER_ENTRYPOINT),
        "--directory",
        str(directory),
        "--host",
        host,
        "--port",
        str(port),
    ]
    if log_file:
        args.extend(["--log-destination", str(log_file)])
    if metrics_port is not None:
        args.extend(
            ["--metrics", "--metrics-host", host, "--metrics-port", str(metrics_port)]
        )
    if extra_args:
        args.extend(extra_args)

    with subprocess.Popen(
        args,
        cwd=PROJECT_ROOT,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
    ) as process:
        try:
            wait_for_port(host, port)
            if metrics_port is not None:
                wait_for_port(host, metrics_port)
        except Exception:
            # If startup failed, print stdout/stderr to help debug
            process.terminate()
            stdout, stderr = process.communicate(timeout=5)
            print(f"\nServer stdout:\n{stdout}")
            print(f"\nServer stderr:\n{stderr}")
            raise

        yield {
            "base_url": f"http://{host}:{port}",
            "host": host,
            "port": port,
            "metrics_port": metrics_port,
            "directory": directory,
            "process": process,
            "log_file": log_file,
        }

        if process.poll() is None:
            process.terminate()
            try:
                process.wait(timeout=5)
            except subprocess.TimeoutExpired:
                process.kill()


@pytest.fixture(name="site_root")
def _site_root(tmp_path_factory: "TempPathFactory") -> Path:
    """Create a document root holding a few pages and an asset."""

    return populate_site(tmp_path_factory.mktemp("site"))


@pytest.fixture(name="server_process")
def _server_process(
    tmp_path_factory: "TempPathFactory", site_root: Path
) -> Generator[ServerProcessInfo, None, None]:
    """Launch the server in a background process for integration tests."""

    host = "127.0.0.1"
    port = reserve_port(host)
    log_file = tmp_path_factory.mktemp("logs") / "server.log"
    yield from _launch_server(host, port, site_root, log_file=log_file)


@pytest.fixture(name="metrics_server_process")
def _metrics_server_process(
    tmp_path_factory: "TempPathFactory", site_root: Path
) -> Generator[ServerProcessInfo, None, None]:
    """Launch the server with the metrics listener enabled."""

    host = "127.0.0.1"
    port = reserve_port(host)
    metrics_port = reserve_port(host)
    log_file = tmp_path_factory.mktemp("logs") / "server.log"
    yield from _launch_server(
        host, port, site_root, log_file=log_file, metrics_port=metrics_port
    )


@pytest.fixture()
def launch_server(
    tmp_path_factory: "TempPathFactory", site_root: Path
) -> Generator:
    """Start servers with custom CLI flags; all are stopped at teardown."""

    generators = []

    def _start(extra_args: list[str]) -> ServerProcessInfo:
        host = "127.0.0.1"
        log_file = tmp_path_factory.mktemp("logs") / "server.log"
        generator = _launch_server(
            host, reserve_port(host), site_root, extra_args, log_file=log_file
        )
        generators.append(generator)
        return next(generator)

    yield _start

    for generator in generators:
        for _ in generator:
            pass


@pytest.fixture(scope="session")
def project_root() -> Path:
    """Expose the repository root path to tests."""

    return PROJECT_ROOT


@pytest.fixture()
def base_url(server_process: ServerProcessInfo) -> str:
    """Expose the running server base URL to integration tests."""

    return server_process["base_url"]
