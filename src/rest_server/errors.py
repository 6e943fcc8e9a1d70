"""Error kinds for the REST protocol handlers.

Every failure a handler can report is an ApiError carrying one ErrorKind.
The kind alone decides the HTTP status; the request handler turns the error
into a short text body at its boundary.
"""

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    """Kinds of errors surfaced to clients."""

    INTERNAL_ERROR = "InternalError"
    BAD_REQUEST = "BadRequest"
    FILENAME_NOT_ALLOWED = "FilenameNotAllowed"
    PATH_NOT_ALLOWED = "PathNotAllowed"
    NON_UNICODE_PATH = "NonUnicodePath"
    METHOD_NOT_ALLOWED = "MethodNotAllowed"
    CREATING_DIRECTORY_FAILED = "CreatingDirectoryFailed"
    FILE_NOT_FOUND = "FileNotFound"
    GETTING_FILE_METADATA_FAILED = "GettingFileMetadataFailed"
    RANGE_NOT_VALID = "RangeNotValid"
    RANGE_NOT_SATISFIABLE = "RangeNotSatisfiable"
    MULTIPART_RANGE_NOT_IMPLEMENTED = "MultipartRangeNotImplemented"
    OPENING_FILE_FAILED = "OpeningFileFailed"
    WRITING_TO_FILE_FAILED = "WritingToFileFailed"
    FINALIZING_FILE_FAILED = "FinalizingFileFailed"
    REMOVING_FILE_FAILED = "RemovingFileFailed"
    READING_FROM_STREAM_FAILED = "ReadingFromStreamFailed"
    REMOVING_REPOSITORY_FAILED = "RemovingRepositoryFailed"
    AUTHENTICATION_HEADER_ERROR = "AuthenticationHeaderError"
    USER_AUTHENTICATION_ERROR = "UserAuthenticationError"


HTTP_STATUS = {
    ErrorKind.INTERNAL_ERROR: 500,
    ErrorKind.BAD_REQUEST: 400,
    ErrorKind.FILENAME_NOT_ALLOWED: 403,
    ErrorKind.PATH_NOT_ALLOWED: 403,
    ErrorKind.NON_UNICODE_PATH: 403,
    ErrorKind.METHOD_NOT_ALLOWED: 405,
    ErrorKind.CREATING_DIRECTORY_FAILED: 500,
    ErrorKind.FILE_NOT_FOUND: 404,
    ErrorKind.GETTING_FILE_METADATA_FAILED: 500,
    ErrorKind.RANGE_NOT_VALID: 400,
    ErrorKind.RANGE_NOT_SATISFIABLE: 416,
    ErrorKind.MULTIPART_RANGE_NOT_IMPLEMENTED: 501,
    ErrorKind.OPENING_FILE_FAILED: 500,
    ErrorKind.WRITING_TO_FILE_FAILED: 500,
    ErrorKind.FINALIZING_FILE_FAILED: 500,
    ErrorKind.REMOVING_FILE_FAILED: 500,
    ErrorKind.READING_FROM_STREAM_FAILED: 400,
    ErrorKind.REMOVING_REPOSITORY_FAILED: 500,
    ErrorKind.AUTHENTICATION_HEADER_ERROR: 403,
    ErrorKind.USER_AUTHENTICATION_ERROR: 403,
}


class ApiError(Exception):
    """Protocol error with error kind and HTTP status."""

    def __init__(self, kind: ErrorKind, message: str = "", headers: Optional[dict[str, str]] = None):
        self.kind = kind
        self.message = message
        self.http_status = HTTP_STATUS[kind]
        self.headers = headers or {}
        super().__init__(f"{kind.value}: {message}" if message else kind.value)

    def body(self) -> bytes:
        """Short text body sent to the client."""
        return f"{self}\n".encode("utf-8")


class ConfigError(Exception):
    """Configuration error."""
