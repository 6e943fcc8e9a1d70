"""Authentication and access gate for repository requests.

Provides:
- HTTP Basic credential extraction
- Password verification against the credential store
- Required access level per method and URL shape, checked against the ACL
"""

import base64
import binascii
import logging

from rest_server.acl import Acl, AccessType
from rest_server.errors import ApiError, ErrorKind
from rest_server.htpasswd import Auth
from rest_server.paths import RequestPath, Shape

logger = logging.getLogger(__name__)


def parse_basic_auth(auth_header: str) -> tuple[str, str]:
    """Extract user name and password from a Basic Authorization header.

    Args:
        auth_header: Authorization header value ("" if absent)

    Returns:
        (user, password); ("", "") when no header was sent

    Raises:
        ApiError: AuthenticationHeaderError for a malformed header
    """
    if not auth_header:
        return "", ""

    scheme, _, encoded = auth_header.strip().partition(" ")
    if scheme.lower() != "basic" or not encoded:
        raise ApiError(ErrorKind.AUTHENTICATION_HEADER_ERROR, "expected Basic authorization")

    try:
        decoded = base64.b64decode(encoded.strip(), validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        raise ApiError(ErrorKind.AUTHENTICATION_HEADER_ERROR, "malformed Basic credentials")

    user, sep, password = decoded.partition(":")
    if not sep:
        raise ApiError(ErrorKind.AUTHENTICATION_HEADER_ERROR, "malformed Basic credentials")
    return user, password


def authenticate(auth: Auth, auth_header: str) -> str:
    """Verify the request's credentials.

    Returns:
        The user name ("" for anonymous requests with auth disabled)

    Raises:
        ApiError: AuthenticationHeaderError or UserAuthenticationError
    """
    user, password = parse_basic_auth(auth_header)
    if auth.verify(user, password):
        return user

    if not auth_header:
        raise ApiError(ErrorKind.AUTHENTICATION_HEADER_ERROR, "authentication required")
    logger.info("Authentication failed for user %r", user)
    raise ApiError(ErrorKind.USER_AUTHENTICATION_ERROR, f"failed to authenticate user {user}")


def required_access(method: str, path: RequestPath) -> AccessType:
    """Access level a request needs.

    Reads need Read; uploads and object deletes need Append; deleting a
    whole repository needs Modify.
    """
    if method in ("GET", "HEAD"):
        return AccessType.READ
    if method == "DELETE" and path.shape == Shape.REPOSITORY:
        return AccessType.MODIFY
    return AccessType.APPEND


def check_access(acl: Acl, user: str, method: str, path: RequestPath) -> None:
    """Raise PathNotAllowed unless the ACL grants the request.

    Raises:
        ApiError: PathNotAllowed
    """
    access = required_access(method, path)
    if not acl.allowed(user, path.repo_name, path.tpe, access):
        logger.info(
            "Access denied: user=%r repo=%r type=%s access=%s",
            user, path.repo_name, path.tpe.value if path.tpe else "-", access,
        )
        raise ApiError(ErrorKind.PATH_NOT_ALLOWED, f"user {user} is not allowed to access this path")
