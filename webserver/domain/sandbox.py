"""Filesystem sandbox utilities for safe path resolution."""

import errno
import logging
import mimetypes
import os
import stat
import urllib.parse
from dataclasses import dataclass
from pathlib import Path

from webserver.domain.errors import FileAccessError, FileNotFound, ForbiddenPath
from webserver.telemetry.tracing import SpanLoggerAdapter

SANDBOX_LOGGER = SpanLoggerAdapter(logging.getLogger("webserver.domain.sandbox"), {})

DEFAULT_CONTENT_TYPE = "application/octet-stream"
INDEX_DOCUMENT = "index.html"


@dataclass(frozen=True)
class ResolvedFile:
    """Metadata for a file that is safe to serve."""

    absolute_path: Path
    content_type: str
    size: int
    last_modified: float


def normalize_segments(request_path: str) -> list[str]:
    """Percent-decode a URL path and collapse its dot segments.

    Raises ForbiddenPath when the decoded path holds a NUL byte or when a
    ``..`` segment would climb above the document root.
    """
    decoded = urllib.parse.unquote(request_path)
    if "\x00" in decoded:
        raise ForbiddenPath(request_path)
    segments: list[str] = []
    for segment in decoded.split("/"):
        if segment in ("", "."):
            continue
        if segment == "..":
            if not segments:
                raise ForbiddenPath(request_path)
            segments.pop()
            continue
        segments.append(segment)
    return segments


def display_path(request_path: str) -> str:
    """Return the normalized form of a path for spans and logs."""
    try:
        return "/" + "/".join(normalize_segments(request_path))
    except ForbiddenPath:
        return urllib.parse.unquote(request_path).replace("\x00", "")


def content_type_for_path(filepath: Path) -> str:
    """Guess a Content-Type from the file extension."""
    mime_type, _ = mimetypes.guess_type(filepath.as_posix())
    return mime_type or DEFAULT_CONTENT_TYPE


def classify_os_error(error: OSError) -> str:
    """Return a short label describing why a filesystem call failed."""
    if isinstance(error, PermissionError):
        return "permission_denied"
    if error.errno is not None and error.errno in errno.errorcode:
        return errno.errorcode[error.errno].lower()
    return "io_error"


# Names that can never exist on this filesystem are misses, not I/O faults.
MISSING_ERRNOS = frozenset({errno.ENAMETOOLONG})


class StaticResolver:
    """Map request paths onto readable files beneath a canonical root."""

    def __init__(self, document_root: Path, index_name: str = INDEX_DOCUMENT) -> None:
        self._root = Path(document_root).resolve()
        self._index_name = index_name

    @property
    def document_root(self) -> Path:
        return self._root

    def resolve(self, request_path: str) -> ResolvedFile:
        """Resolve a URL path to file metadata or raise a ResolveError."""
        segments = normalize_segments(request_path)
        target = self._contain(self._root.joinpath(*segments))
        info = self._stat(target)
        if stat.S_ISDIR(info.st_mode):
            target = self._contain(target / self._index_name)
            info = self._stat(target)
            if SANDBOX_LOGGER.logger.isEnabledFor(logging.DEBUG):
                SANDBOX_LOGGER.debug(
                    "Directory resolved to index document",
                    extra={"event": "index_lookup", "path": target.as_posix()},
                )
        if not stat.S_ISREG(info.st_mode):
            raise FileNotFound(request_path)
        if not os.access(target, os.R_OK):
            raise FileAccessError("permission_denied")
        return ResolvedFile(
            absolute_path=target,
            content_type=content_type_for_path(target),
            size=info.st_size,
            last_modified=info.st_mtime,
        )

    def _contain(self, candidate: Path) -> Path:
        """Follow symlinks and reject anything that lands outside the root."""
        try:
            target = candidate.resolve()
        except RuntimeError as exc:
            raise FileAccessError("symlink_loop") from exc
        except OSError as exc:
            if exc.errno in MISSING_ERRNOS:
                raise FileNotFound(candidate.as_posix()) from exc
            raise FileAccessError(classify_os_error(exc)) from exc
        if not (target == self._root or self._root in target.parents):
            raise ForbiddenPath(candidate.as_posix())
        return target

    @staticmethod
    def _stat(target: Path) -> os.stat_result:
        try:
            return target.stat()
        except (FileNotFoundError, NotADirectoryError) as exc:
            raise FileNotFound(target.as_posix()) from exc
        except OSError as exc:
            if exc.errno in MISSING_ERRNOS:
                raise FileNotFound(target.as_posix()) from exc
            raise FileAccessError(classify_os_error(exc)) from exc
