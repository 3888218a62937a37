"""Pure HTTP response builders."""

from email.utils import formatdate
from http import HTTPStatus
from typing import Iterable, Optional

from webserver.domain.http_types import HttpRequest, HttpResponse, Outcome, should_close
from webserver.domain.sandbox import ResolvedFile

TEXT_CONTENT_TYPE = "text/plain; charset=utf-8"


def _text_response(
    status: HTTPStatus,
    request: Optional[HttpRequest],
    security_headers: dict[str, str],
    outcome: Outcome,
    error_kind: Optional[str] = None,
) -> HttpResponse:
    body = f"{status.phrase}\n".encode()
    headers = {"Content-Type": TEXT_CONTENT_TYPE, **security_headers}
    return HttpResponse(
        status,
        headers,
        body,
        should_close(request.headers) if request is not None else True,
        outcome=outcome,
        error_kind=error_kind,
    )


def file_response(
    request: HttpRequest,
    resolved: ResolvedFile,
    body: bytes,
    security_headers: dict[str, str],
    body_iter: Optional[Iterable[bytes]] = None,
) -> HttpResponse:
    """Return a 200 response describing a resolved file.

    An empty ``body`` declares the file size, for HEAD or a streamed body.
    """
    headers = {
        "Content-Type": resolved.content_type,
        "Content-Length": str(resolved.size if not body else len(body)),
        "Last-Modified": formatdate(resolved.last_modified, usegmt=True),
        **security_headers,
    }
    return HttpResponse(
        HTTPStatus.OK,
        headers,
        body,
        should_close(request.headers),
        body_iter=body_iter,
    )


def not_found_response(
    request: HttpRequest,
    security_headers: dict[str, str],
    page: Optional[bytes] = None,
) -> HttpResponse:
    """Return a 404 response, using the custom page body when one is configured."""
    if page is None:
        return _text_response(
            HTTPStatus.NOT_FOUND, request, security_headers, Outcome.NOT_FOUND
        )
    headers = {"Content-Type": "text/html; charset=utf-8", **security_headers}
    return HttpResponse(
        HTTPStatus.NOT_FOUND,
        headers,
        page,
        should_close(request.headers),
        outcome=Outcome.NOT_FOUND,
    )


def forbidden_response(
    request: HttpRequest, security_headers: dict[str, str]
) -> HttpResponse:
    """Produce a 403 response honoring the caller's connection preference."""
    return _text_response(
        HTTPStatus.FORBIDDEN, request, security_headers, Outcome.FORBIDDEN
    )


def internal_error_response(
    request: HttpRequest, security_headers: dict[str, str], error_kind: str
) -> HttpResponse:
    """Produce a 500 response; the error kind is recorded but never sent."""
    return _text_response(
        HTTPStatus.INTERNAL_SERVER_ERROR,
        request,
        security_headers,
        Outcome.IO_ERROR,
        error_kind,
    )


def timeout_response(
    request: HttpRequest, security_headers: dict[str, str]
) -> HttpResponse:
    """Produce the fixed 503 response returned when a request overruns."""
    return _text_response(
        HTTPStatus.SERVICE_UNAVAILABLE, request, security_headers, Outcome.TIMEOUT
    )


def bad_request_response(
    request: Optional[HttpRequest], security_headers: dict[str, str]
) -> HttpResponse:
    """Produce a 400 response; without a parsed request the connection closes."""
    return _text_response(
        HTTPStatus.BAD_REQUEST, request, security_headers, Outcome.OK
    )


def method_not_allowed_response(
    request: HttpRequest,
    security_headers: dict[str, str],
    allowed_methods: Iterable[str],
) -> HttpResponse:
    """Produce a 405 response enumerating the supported HTTP methods."""
    response = _text_response(
        HTTPStatus.METHOD_NOT_ALLOWED, request, security_headers, Outcome.OK
    )
    response.headers["Allow"] = ", ".join(sorted(allowed_methods))
    return response


def metrics_response(
    request: HttpRequest,
    payload: bytes,
    content_type: str,
    security_headers: dict[str, str],
) -> HttpResponse:
    """Wrap a metrics exposition snapshot."""
    headers = {"Content-Type": content_type, **security_headers}
    return HttpResponse(
        HTTPStatus.OK, headers, payload, should_close(request.headers)
    )
