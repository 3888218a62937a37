"""File serving handlers."""

import logging
from typing import BinaryIO, Iterator, Optional

from webserver.bootstrap.config import SECURITY_HEADERS
from webserver.domain.cancellation import CancellationToken
from webserver.domain.errors import (
    FileAccessError,
    FileNotFound,
    ForbiddenPath,
    ResolveError,
)
from webserver.domain.http_types import HttpRequest, HttpResponse
from webserver.domain.response_builders import (
    file_response,
    forbidden_response,
    internal_error_response,
    not_found_response,
)
from webserver.domain.sandbox import ResolvedFile, StaticResolver, classify_os_error
from webserver.telemetry.tracing import SpanLoggerAdapter

FILE_LOGGER = SpanLoggerAdapter(logging.getLogger("webserver.handlers.file"), {})

READ_CHUNK_SIZE = 65536
STREAM_THRESHOLD_BYTES = 1024 * 1024


class FileBody:
    """Chunks of an already opened file; the handle closes once exhausted.

    Iterate at most once. ``close`` releases the handle early, for HEAD or a
    discarded response.
    """

    def __init__(
        self, file_handle: BinaryIO, token: CancellationToken, chunk_size: int
    ) -> None:
        self._file = file_handle
        self._token = token
        self._chunk_size = chunk_size

    def __iter__(self) -> Iterator[bytes]:
        try:
            while True:
                self._token.raise_if_cancelled()
                try:
                    chunk = self._file.read(self._chunk_size)
                except OSError as exc:
                    raise FileAccessError(classify_os_error(exc)) from exc
                if not chunk:
                    return
                yield chunk
        finally:
            self.close()

    def close(self) -> None:
        self._file.close()


def open_file_body(
    resolved: ResolvedFile,
    token: CancellationToken,
    chunk_size: int = READ_CHUNK_SIZE,
) -> FileBody:
    """Open ``resolved`` now so missing or unreadable files fail here."""
    try:
        # pylint: disable-next=consider-using-with
        file_handle = open(resolved.absolute_path, "rb")
    except FileNotFoundError as exc:
        raise FileNotFound(resolved.absolute_path.as_posix()) from exc
    except OSError as exc:
        raise FileAccessError(classify_os_error(exc)) from exc
    return FileBody(file_handle, token, chunk_size)


def stream_file(
    resolved: ResolvedFile,
    token: CancellationToken,
    chunk_size: int = READ_CHUNK_SIZE,
) -> Iterator[bytes]:
    """Yield file contents in fixed-size chunks, stopping once cancelled."""
    yield from open_file_body(resolved, token, chunk_size)


class StaticFileHandler:
    """Resolve a request path and turn the result into a response.

    This is the innermost pipeline stage. Resolution errors never escape it:
    each is mapped onto its fixed status code.
    """

    def __init__(
        self,
        resolver: StaticResolver,
        not_found_page: Optional[str] = None,
        security_headers: Optional[dict[str, str]] = None,
        chunk_size: int = READ_CHUNK_SIZE,
        stream_threshold: int = STREAM_THRESHOLD_BYTES,
    ) -> None:
        self._resolver = resolver
        self._not_found_page = not_found_page
        self._security_headers = (
            SECURITY_HEADERS if security_headers is None else security_headers
        )
        self._chunk_size = chunk_size
        self._stream_threshold = stream_threshold

    def handle(self, request: HttpRequest) -> HttpResponse:
        """Serve the file named by the request path.

        Files above the stream threshold are opened here but read by the
        transport while sending, so memory use stays at one chunk.
        """
        body = b""
        body_iter = None
        try:
            resolved = self._resolver.resolve(request.path)
            if request.method != "HEAD":
                if resolved.size > self._stream_threshold:
                    body_iter = open_file_body(
                        resolved, request.cancellation, self._chunk_size
                    )
                else:
                    body = b"".join(
                        stream_file(resolved, request.cancellation, self._chunk_size)
                    )
        except ForbiddenPath:
            FILE_LOGGER.warning(
                "Forbidden path access blocked",
                extra={"event": "forbidden_path", "method": request.method},
            )
            return forbidden_response(request, self._security_headers)
        except FileNotFound:
            FILE_LOGGER.info(
                "File not found",
                extra={"event": "file_not_found", "method": request.method},
            )
            page = self._not_found_body(request.cancellation)
            return not_found_response(request, self._security_headers, page)
        except FileAccessError as error:
            FILE_LOGGER.error(
                "File could not be read",
                extra={
                    "event": "file_read_failed",
                    "method": request.method,
                    "error_kind": error.kind,
                },
            )
            return internal_error_response(
                request, self._security_headers, error.kind
            )

        FILE_LOGGER.info(
            "File read operation complete",
            extra={
                "event": "file_read_complete",
                "path": resolved.absolute_path.as_posix(),
                "method": request.method,
                "bytes_out": len(body) if body_iter is None else resolved.size,
                "streamed": body_iter is not None,
            },
        )
        return file_response(
            request, resolved, body, self._security_headers, body_iter
        )

    def _not_found_body(self, token: CancellationToken) -> Optional[bytes]:
        if not self._not_found_page:
            return None
        try:
            resolved = self._resolver.resolve(self._not_found_page)
            return b"".join(stream_file(resolved, token, self._chunk_size))
        except ResolveError:
            return None
