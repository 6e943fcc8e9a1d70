"""Write-or-delete file sink for streaming uploads.

A partial upload never stays on disk: the file is removed on close unless
finalize() succeeded first.
"""

import logging
import os
from pathlib import Path

from rest_server.errors import ApiError, ErrorKind

logger = logging.getLogger(__name__)


class WriteOrDeleteFile:
    """Exclusively created file that is unlinked unless finalized.

    Usage:
        with WriteOrDeleteFile(path) as sink:
            sink.write(chunk)
            sink.finalize()
    """

    def __init__(self, path: Path):
        """Create the target file.

        Args:
            path: Target path; must not exist yet

        Raises:
            ApiError: WritingToFileFailed if the file exists or cannot be created
        """
        self.path = path
        self.finalized = False
        try:
            self._file = open(path, "xb")
        except FileExistsError:
            raise ApiError(ErrorKind.WRITING_TO_FILE_FAILED, f"file {path.name} already exists")
        except OSError as e:
            raise ApiError(ErrorKind.WRITING_TO_FILE_FAILED, f"could not create {path.name}: {e}")

    def write(self, chunk: bytes) -> None:
        try:
            self._file.write(chunk)
        except OSError as e:
            raise ApiError(ErrorKind.WRITING_TO_FILE_FAILED, str(e))

    def finalize(self) -> None:
        """Flush and fsync the file, marking it complete."""
        try:
            self._file.flush()
            os.fsync(self._file.fileno())
        except OSError as e:
            raise ApiError(ErrorKind.FINALIZING_FILE_FAILED, str(e))
        self.finalized = True

    def close(self) -> None:
        """Close the file, removing it if it was never finalized."""
        if self._file.closed:
            return
        self._file.close()
        if not self.finalized:
            logger.debug("Removing partial upload %s", self.path)
            try:
                self.path.unlink()
            except OSError as e:
                logger.warning("Could not remove partial upload %s: %s", self.path, e)

    def __enter__(self) -> "WriteOrDeleteFile":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
