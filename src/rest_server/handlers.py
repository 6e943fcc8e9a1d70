"""Protocol handlers for repository requests.

Each handler receives the runtime context and an already authorized
RequestPath and returns a Response for the HTTP layer to send.
"""

import json
import logging
import os
import time
from dataclasses import dataclass, field
from typing import BinaryIO, Iterable, Optional
from urllib.parse import parse_qs

from rest_server import __version__
from rest_server.context import ServerContext
from rest_server.errors import ApiError, ErrorKind
from rest_server.paths import RequestPath
from rest_server.ranges import content_range, parse_range

logger = logging.getLogger(__name__)

API_V1 = "application/vnd.x.restic.rest.v1"
API_V2 = "application/vnd.x.restic.rest.v2"
OCTET_STREAM = "application/octet-stream"
TEXT_PLAIN = "text/plain; charset=utf-8"


@dataclass
class Response:
    """Response produced by a handler.

    With stream set, length bytes are copied from the (already positioned)
    file; otherwise body is sent. For HEAD, length is the advertised size.
    """

    status: int = 200
    body: bytes = b""
    content_type: str = TEXT_PLAIN
    headers: dict[str, str] = field(default_factory=dict)
    stream: Optional[BinaryIO] = None
    length: Optional[int] = None

    @property
    def content_length(self) -> int:
        return self.length if self.length is not None else len(self.body)


def text_response(message: str, status: int = 200) -> Response:
    return Response(status=status, body=f"{message}\n".encode("utf-8"))


def json_response(data, content_type: str = "application/json") -> Response:
    return Response(body=json.dumps(data).encode("utf-8"), content_type=content_type)


# Objects and config


def file_length(ctx: ServerContext, path: RequestPath) -> Response:
    """HEAD an object: its size as Content-Length, no body."""
    size = ctx.storage.file_size(*path.parts())
    return Response(content_type=OCTET_STREAM, length=size)


def get_file(ctx: ServerContext, path: RequestPath, range_header: Optional[str] = None) -> Response:
    """GET an object, whole or a single byte range.

    Raises:
        ApiError: FileNotFound, RangeNotValid, RangeNotSatisfiable,
            MultipartRangeNotImplemented
    """
    f = ctx.storage.open_file(*path.parts())
    try:
        size = os.fstat(f.fileno()).st_size
        try:
            requested = parse_range(range_header, size)
        except ApiError as e:
            if e.kind == ErrorKind.RANGE_NOT_SATISFIABLE:
                e.headers["Content-Range"] = f"bytes */{size}"
            raise

        headers = {"Accept-Ranges": "bytes"}
        if requested is None:
            return Response(content_type=OCTET_STREAM, headers=headers, stream=f, length=size)

        start, length = requested
        f.seek(start)
        headers["Content-Range"] = content_range(start, length, size)
        return Response(status=206, content_type=OCTET_STREAM, headers=headers, stream=f, length=length)
    except BaseException:
        f.close()
        raise


def add_file(ctx: ServerContext, path: RequestPath, body: Iterable[bytes]) -> Response:
    """POST an object: stream the body into a new file.

    The file exists only once it has been completely written and synced;
    any error while streaming removes it again.

    Raises:
        ApiError: WritingToFileFailed if the object exists, ReadingFromStreamFailed
            on a short body, FinalizingFileFailed if the sync fails
    """
    written = 0
    with ctx.storage.create_file(*path.parts()) as sink:
        for chunk in body:
            sink.write(chunk)
            written += len(chunk)
        sink.finalize()
    logger.debug("Stored %s (%d bytes)", sink.path, written)

    if ctx.quota:
        _report_quota(ctx, path)
    return Response()


def _report_quota(ctx: ServerContext, path: RequestPath) -> None:
    used = ctx.storage.repository_size(path.repo)
    if used > ctx.quota:
        logger.warning(
            "Repository %s uses %d bytes, exceeding the quota of %d bytes",
            path.repo or "(default)", used, ctx.quota,
        )


def delete_file(ctx: ServerContext, path: RequestPath) -> Response:
    ctx.storage.remove_file(*path.parts())
    return Response()


# Listing


def list_files(ctx: ServerContext, path: RequestPath, accept: Optional[str] = None) -> Response:
    """List the objects of one type.

    V2 clients (Accept: application/vnd.x.restic.rest.v2) get names and
    sizes, everyone else a plain list of names.
    """
    files = ctx.storage.read_dir(path.repo, path.tpe)

    if accept and API_V2 in accept:
        entries = []
        for file in files:
            try:
                size = file.stat().st_size
            except FileNotFoundError:
                # removed since the directory was read
                continue
            except OSError as e:
                raise ApiError(ErrorKind.GETTING_FILE_METADATA_FAILED, f"{file.name}: {e}")
            entries.append({"name": file.name, "size": size})
        return json_response(entries, API_V2)

    return json_response([file.name for file in files], API_V1)


# Repository lifecycle


def create_repository(ctx: ServerContext, path: RequestPath, query: str = "") -> Response:
    """Create a repository when called with ?create=true."""
    params = parse_qs(query)
    name = path.repo or "(default)"
    if params.get("create", [""])[-1].lower() != "true":
        return text_response(f"Repository {name} not created (create=true not given)")

    ctx.storage.create_repository(path.repo)
    return text_response(f"Repository {name} created")


def delete_repository(ctx: ServerContext, path: RequestPath) -> Response:
    ctx.storage.remove_repository(path.repo)
    return Response()


# Health


def health_live(ctx: ServerContext) -> Response:
    """Liveness check, answered without authentication."""
    return json_response({
        "status": "ok",
        "version": __version__,
        "uptime": int(ctx.uptime),
        "timestamp": int(time.time()),
    })
