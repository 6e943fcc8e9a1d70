"""Request path analysis.

Turns a request URL path into one of the typed shapes the protocol knows:

    /                       default repository root
    /config                 default repository config
    /<type>/                listing in the default repository
    /<type>/<name>          object in the default repository
    /<repo>/                repository root
    /<repo>/config          repository config
    /<repo>/<type>/         listing
    /<repo>/<type>/<name>   object

The trailing slash is optional; the shape follows from the segments.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional
from urllib.parse import unquote

from rest_server.errors import ApiError, ErrorKind


class ObjectType(str, Enum):
    """Object types stored in a repository."""

    CONFIG = "config"
    DATA = "data"
    INDEX = "index"
    KEYS = "keys"
    LOCKS = "locks"
    SNAPSHOTS = "snapshots"

    @classmethod
    def parse(cls, value: str) -> Optional["ObjectType"]:
        """Return the type named by value (case-insensitive), or None."""
        try:
            return cls(value.lower())
        except ValueError:
            return None


# Directory types, created for every repository
DIR_TYPES = (
    ObjectType.DATA,
    ObjectType.KEYS,
    ObjectType.LOCKS,
    ObjectType.SNAPSHOTS,
    ObjectType.INDEX,
)

# Types whose object names are SHA-256 hex digests
HEX_TYPES = (ObjectType.DATA, ObjectType.INDEX, ObjectType.KEYS, ObjectType.SNAPSHOTS)

RESERVED_NAMES = frozenset(t.value for t in ObjectType)

_SHA256_RE = re.compile(r"^[0-9a-f]{64}$")


class Shape(str, Enum):
    """Recognized URL shapes."""

    REPOSITORY = "repository"
    CONFIG = "config"
    LISTING = "listing"
    OBJECT = "object"


@dataclass(frozen=True)
class RequestPath:
    """A parsed request path.

    repo is None for the default repository (rooted at the data root).
    """

    shape: Shape
    repo: Optional[str] = None
    tpe: Optional[ObjectType] = None
    name: Optional[str] = None

    @property
    def repo_name(self) -> str:
        """Repository name used for ACL lookups ("" for the default repo)."""
        return self.repo or ""

    def parts(self) -> tuple[Optional[str], Optional[ObjectType], Optional[str]]:
        return self.repo, self.tpe, self.name


def is_sha256(name: str) -> bool:
    """Check if name is a lowercase hex SHA-256 digest."""
    return bool(_SHA256_RE.match(name))


def check_name(tpe: ObjectType, name: str) -> None:
    """Validate an object name for its type.

    Raises:
        ApiError: FilenameNotAllowed for a bad name
    """
    if tpe in HEX_TYPES and not is_sha256(name):
        raise ApiError(ErrorKind.FILENAME_NOT_ALLOWED, f"filename {name} not allowed")


def _decode_segment(segment: str, path: str) -> str:
    try:
        decoded = unquote(segment, errors="strict")
    except UnicodeDecodeError:
        raise ApiError(ErrorKind.NON_UNICODE_PATH, f"path {path} is not valid unicode")
    if "/" in decoded or "\\" in decoded or "\x00" in decoded:
        raise ApiError(ErrorKind.PATH_NOT_ALLOWED, f"path {path} not allowed")
    return decoded


def _check_segment(segment: str, path: str) -> str:
    """Validate a repo or name segment."""
    if segment in ("", ".", "..") or segment.lower() in RESERVED_NAMES:
        raise ApiError(ErrorKind.PATH_NOT_ALLOWED, f"path {path} not allowed")
    return segment


def parse_path(path: str) -> RequestPath:
    """Parse a request path (without query string) into a RequestPath.

    Args:
        path: URL path, e.g. "/alice/data/3f91..."

    Returns:
        RequestPath describing the shape

    Raises:
        ApiError: PathNotAllowed, NonUnicodePath or FilenameNotAllowed
    """
    if not path.startswith("/"):
        raise ApiError(ErrorKind.PATH_NOT_ALLOWED, f"path {path} not allowed")

    segments = path[1:].split("/")
    if segments and segments[-1] == "":
        segments.pop()
    if any(s == "" for s in segments):
        raise ApiError(ErrorKind.PATH_NOT_ALLOWED, f"path {path} not allowed")
    segments = [_decode_segment(s, path) for s in segments]

    if not segments:
        return RequestPath(Shape.REPOSITORY)

    # Default repository: the first segment is a type
    first_type = ObjectType.parse(segments[0])
    if first_type is not None:
        return _typed(None, first_type, segments[1:], path)

    repo = _check_segment(segments[0], path)
    if len(segments) == 1:
        return RequestPath(Shape.REPOSITORY, repo=repo)

    tpe = ObjectType.parse(segments[1])
    if tpe is None:
        raise ApiError(ErrorKind.PATH_NOT_ALLOWED, f"path {path} not allowed")
    return _typed(repo, tpe, segments[2:], path)


def _typed(repo: Optional[str], tpe: ObjectType, rest: list, path: str) -> RequestPath:
    """Build a shape from the segments following the type segment."""
    if tpe == ObjectType.CONFIG:
        if rest:
            raise ApiError(ErrorKind.PATH_NOT_ALLOWED, f"path {path} not allowed")
        return RequestPath(Shape.CONFIG, repo=repo, tpe=tpe)

    if not rest:
        return RequestPath(Shape.LISTING, repo=repo, tpe=tpe)

    if len(rest) > 1:
        raise ApiError(ErrorKind.PATH_NOT_ALLOWED, f"path {path} not allowed")

    name = _check_segment(rest[0], path)
    check_name(tpe, name)
    return RequestPath(Shape.OBJECT, repo=repo, tpe=tpe, name=name)
