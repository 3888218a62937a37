"""Integration tests exercising the primary listener over HTTP."""

from __future__ import annotations

import socket
from typing import TYPE_CHECKING

import pytest
import requests

from tests.conftest import ABOUT_HTML, INDEX_HTML, NOT_FOUND_HTML, STYLE_CSS
from tests.utils.http import build_request, read_http_response

pytestmark = pytest.mark.integration

if TYPE_CHECKING:
    from tests.conftest import ServerProcessInfo


def test_root_serves_index_document(base_url: str) -> None:
    response = requests.get(f"{base_url}/", timeout=5)
    assert response.status_code == 200
    assert response.content == INDEX_HTML
    assert response.headers["Content-Type"] == "text/html"
    assert response.headers["Content-Length"] == str(len(INDEX_HTML))
    assert "Last-Modified" in response.headers


def test_named_page_and_nested_asset(base_url: str) -> None:
    about = requests.get(f"{base_url}/about.html", timeout=5)
    assert about.status_code == 200
    assert about.content == ABOUT_HTML

    style = requests.get(f"{base_url}/assets/style.css", timeout=5)
    assert style.status_code == 200
    assert style.content == STYLE_CSS
    assert style.headers["Content-Type"] == "text/css"


def test_query_string_is_ignored(base_url: str) -> None:
    response = requests.get(f"{base_url}/about.html?v=2", timeout=5)
    assert response.status_code == 200
    assert response.content == ABOUT_HTML


def test_missing_page_uses_custom_not_found_body(base_url: str) -> None:
    response = requests.get(f"{base_url}/missing", timeout=5)
    assert response.status_code == 404
    assert response.content == NOT_FOUND_HTML


def test_head_matches_get_headers(base_url: str) -> None:
    get = requests.get(f"{base_url}/about.html", timeout=5)
    head = requests.head(f"{base_url}/about.html", timeout=5)
    assert head.status_code == 200
    assert head.content == b""
    assert head.headers["Content-Length"] == get.headers["Content-Length"]
    assert head.headers["Content-Type"] == get.headers["Content-Type"]


def test_post_is_method_not_allowed(base_url: str) -> None:
    response = requests.post(f"{base_url}/", data=b"payload", timeout=5)
    assert response.status_code == 405
    assert response.headers["Allow"] == "GET, HEAD"


def test_traversal_is_forbidden(server_process: ServerProcessInfo) -> None:
    """Raw socket, because HTTP clients normalize dot segments themselves."""

    host = server_process["host"]
    port = server_process["port"]
    for path in ("/a/../../etc/passwd", "/%2e%2e/%2e%2e/etc/passwd"):
        with socket.create_connection((host, port), timeout=5) as client:
            client.sendall(build_request(path, host, port))
            response = read_http_response(client)
        assert response.status_code == 403
        assert b"root:" not in response.body


def test_request_log_records_completion(server_process: ServerProcessInfo) -> None:
    requests.get(f"{server_process['base_url']}/about.html", timeout=5)
    log_file = server_process["log_file"]
    assert log_file is not None
    text = log_file.read_text()
    assert '"event": "server_listening"' in text
    assert '"event": "request_completed"' in text
    assert '"path": "/about.html"' in text
