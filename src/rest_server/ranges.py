"""HTTP Range header parsing for object downloads.

Only a single byte range is supported.
"""

from typing import Optional

from rest_server.errors import ApiError, ErrorKind

IO_BUFFER_SIZE = 64 * 1024


def parse_range(header: Optional[str], size: int) -> Optional[tuple[int, int]]:
    """Parse a Range header against an object of the given size.

    Accepts "bytes=a-b", "bytes=a-" and "bytes=-n". The end is clamped to
    the last byte of the object.

    Args:
        header: Range header value (None or empty for a full download)
        size: Object size in bytes

    Returns:
        (start, length) of the requested range, or None for the full object

    Raises:
        ApiError: RangeNotValid for a malformed header,
            MultipartRangeNotImplemented for several ranges,
            RangeNotSatisfiable if the range lies outside the object
    """
    if not header:
        return None

    unit, sep, spec = header.strip().partition("=")
    if not sep or unit.strip().lower() != "bytes":
        raise ApiError(ErrorKind.RANGE_NOT_VALID, f"invalid range {header}")

    ranges = [r.strip() for r in spec.split(",") if r.strip()]
    if not ranges:
        raise ApiError(ErrorKind.RANGE_NOT_VALID, f"invalid range {header}")
    if len(ranges) > 1:
        raise ApiError(ErrorKind.MULTIPART_RANGE_NOT_IMPLEMENTED, "multipart ranges are not supported")

    first, dash, last = ranges[0].partition("-")
    first, last = first.strip(), last.strip()
    if not dash or not (first.isdigit() or first == "") or not (last.isdigit() or last == ""):
        raise ApiError(ErrorKind.RANGE_NOT_VALID, f"invalid range {header}")

    if first == "":
        # Suffix range: the last n bytes
        if last == "":
            raise ApiError(ErrorKind.RANGE_NOT_VALID, f"invalid range {header}")
        suffix = int(last)
        if suffix == 0 or size == 0:
            raise ApiError(ErrorKind.RANGE_NOT_SATISFIABLE, f"range {header} not satisfiable")
        suffix = min(suffix, size)
        return size - suffix, suffix

    start = int(first)
    if last and int(last) < start:
        raise ApiError(ErrorKind.RANGE_NOT_VALID, f"invalid range {header}")
    if start >= size:
        raise ApiError(ErrorKind.RANGE_NOT_SATISFIABLE, f"range {header} not satisfiable")
    end = min(int(last), size - 1) if last else size - 1
    return start, end - start + 1


def content_range(start: int, length: int, size: int) -> str:
    """Build a Content-Range header value for a satisfied range."""
    return f"bytes {start}-{start + length - 1}/{size}"
