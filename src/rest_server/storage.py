"""Filesystem storage backend.

Maps (repo, type, name) onto the on-disk layout under the data root:

    <root>/<repo>/config
    <root>/<repo>/{keys,snapshots,index,locks}/<name>
    <root>/<repo>/data/<name[0:2]>/<name>

A repo of None addresses the default repository rooted at <root> itself.
"""

import logging
import os
import shutil
from pathlib import Path
from typing import BinaryIO, Optional

from rest_server.errors import ApiError, ErrorKind
from rest_server.paths import DIR_TYPES, ObjectType
from rest_server.upload import WriteOrDeleteFile

logger = logging.getLogger(__name__)

SHARDS = [f"{i:02x}" for i in range(256)]


class Storage:
    """Local directory storage for repositories."""

    def __init__(self, root: Path):
        # Canonicalized once; every derived path is checked against it
        self.root = Path(os.path.abspath(root))

    def _check(self, path: Path) -> Path:
        """Ensure path stays within the data root."""
        normalized = Path(os.path.normpath(path))
        if normalized != self.root and not normalized.is_relative_to(self.root):
            raise ApiError(ErrorKind.PATH_NOT_ALLOWED, f"path {path} escapes the data root")
        return normalized

    def repo_path(self, repo: Optional[str]) -> Path:
        if not repo:
            return self.root
        return self._check(self.root / repo)

    def filename(self, repo: Optional[str], tpe: ObjectType, name: Optional[str] = None) -> Path:
        """Return the on-disk path for an object, type directory or config.

        Args:
            repo: Repository name, or None for the default repository
            tpe: Object type
            name: Object name (ignored for config)

        Returns:
            Path under the data root
        """
        base = self.repo_path(repo)
        if tpe == ObjectType.CONFIG:
            return self._check(base / "config")
        if name is None:
            return self._check(base / tpe.value)
        if tpe == ObjectType.DATA:
            return self._check(base / tpe.value / name[:2] / name)
        return self._check(base / tpe.value / name)

    def create_dir(self, repo: Optional[str], tpe: Optional[ObjectType] = None) -> None:
        """Ensure a repository (or one of its type directories) exists.

        For the data type all 256 shard directories are created too.

        Raises:
            ApiError: CreatingDirectoryFailed
        """
        path = self.repo_path(repo) if tpe is None else self.filename(repo, tpe)
        try:
            path.mkdir(parents=True, exist_ok=True)
            if tpe == ObjectType.DATA:
                for shard in SHARDS:
                    (path / shard).mkdir(exist_ok=True)
        except OSError as e:
            raise ApiError(ErrorKind.CREATING_DIRECTORY_FAILED, f"could not create {path}: {e}")

    def create_repository(self, repo: Optional[str]) -> None:
        """Create the repository directory with every type directory."""
        self.create_dir(repo)
        for tpe in DIR_TYPES:
            self.create_dir(repo, tpe)
        logger.info("Created repository %s", repo or "(default)")

    def read_dir(self, repo: Optional[str], tpe: ObjectType) -> list[Path]:
        """List regular files of a type directory.

        Data objects are looked up one level down, inside the shard
        directories. A missing directory yields an empty list.
        """
        base = self.filename(repo, tpe)
        if tpe == ObjectType.DATA:
            dirs = [base / shard for shard in _subdirs(base)]
        else:
            dirs = [base]

        files = []
        for d in dirs:
            try:
                with os.scandir(d) as entries:
                    files.extend(Path(e.path) for e in entries if e.is_file(follow_symlinks=False))
            except FileNotFoundError:
                continue
            except OSError as e:
                raise ApiError(ErrorKind.INTERNAL_ERROR, f"could not read {d}: {e}")
        return files

    def open_file(self, repo: Optional[str], tpe: ObjectType, name: Optional[str]) -> BinaryIO:
        """Open an object for reading.

        Raises:
            ApiError: FileNotFound or OpeningFileFailed
        """
        path = self.filename(repo, tpe, name)
        try:
            return open(path, "rb")
        except (FileNotFoundError, IsADirectoryError, NotADirectoryError):
            raise ApiError(ErrorKind.FILE_NOT_FOUND, f"file {path.name} not found")
        except OSError as e:
            raise ApiError(ErrorKind.OPENING_FILE_FAILED, f"could not open {path.name}: {e}")

    def file_size(self, repo: Optional[str], tpe: ObjectType, name: Optional[str]) -> int:
        """Return the size of an object in bytes.

        Raises:
            ApiError: FileNotFound or GettingFileMetadataFailed
        """
        path = self.filename(repo, tpe, name)
        try:
            st = path.stat()
        except (FileNotFoundError, NotADirectoryError):
            raise ApiError(ErrorKind.FILE_NOT_FOUND, f"file {path.name} not found")
        except OSError as e:
            raise ApiError(ErrorKind.GETTING_FILE_METADATA_FAILED, str(e))
        if not path.is_file():
            raise ApiError(ErrorKind.FILE_NOT_FOUND, f"file {path.name} not found")
        return st.st_size

    def create_file(self, repo: Optional[str], tpe: ObjectType, name: Optional[str]) -> WriteOrDeleteFile:
        """Create an object for writing, failing if it exists.

        Missing data shard directories are created when the repository's
        data directory exists.
        """
        path = self.filename(repo, tpe, name)
        if tpe == ObjectType.DATA and path.parent.parent.is_dir():
            try:
                path.parent.mkdir(exist_ok=True)
            except OSError as e:
                raise ApiError(ErrorKind.CREATING_DIRECTORY_FAILED, str(e))
        return WriteOrDeleteFile(path)

    def remove_file(self, repo: Optional[str], tpe: ObjectType, name: Optional[str]) -> None:
        """Delete an object.

        Raises:
            ApiError: FileNotFound or RemovingFileFailed
        """
        path = self.filename(repo, tpe, name)
        try:
            path.unlink()
        except (FileNotFoundError, NotADirectoryError):
            raise ApiError(ErrorKind.FILE_NOT_FOUND, f"file {path.name} not found")
        except OSError as e:
            raise ApiError(ErrorKind.REMOVING_FILE_FAILED, f"could not remove {path.name}: {e}")

    def remove_repository(self, repo: Optional[str]) -> None:
        """Recursively delete a repository.

        The default repository is the data root itself and is never removed.

        Raises:
            ApiError: PathNotAllowed, FileNotFound or RemovingRepositoryFailed
        """
        if not repo:
            raise ApiError(ErrorKind.PATH_NOT_ALLOWED, "the default repository cannot be removed")
        path = self.repo_path(repo)
        if not path.is_dir():
            raise ApiError(ErrorKind.FILE_NOT_FOUND, f"repository {repo} not found")
        try:
            shutil.rmtree(path)
        except OSError as e:
            raise ApiError(ErrorKind.REMOVING_REPOSITORY_FAILED, f"could not remove {repo}: {e}")
        logger.info("Removed repository %s", repo)

    def repository_size(self, repo: Optional[str]) -> int:
        """Total size in bytes of all files stored in a repository."""
        total = 0
        for dirpath, _, filenames in os.walk(self.repo_path(repo)):
            for filename in filenames:
                try:
                    total += os.lstat(os.path.join(dirpath, filename)).st_size
                except OSError:
                    continue
        return total


def _subdirs(path: Path) -> list[str]:
    try:
        with os.scandir(path) as entries:
            return sorted(e.name for e in entries if e.is_dir(follow_symlinks=False))
    except FileNotFoundError:
        return []
