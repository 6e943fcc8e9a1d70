"""Per-repository access control.

The ACL file is TOML with one table per repository mapping user names to
an access level:

    [default]
    alice = "Modify"

    [bob]
    bob = "Append"
    carol = "Read"

The "default" table also governs the default repository (the one rooted
at the data root, whose name is empty). Repositories without a table fall
back to the private-repos and append-only flags.
"""

import logging
import tomllib
from enum import IntEnum
from pathlib import Path
from typing import Optional

import tomli_w

from rest_server.errors import ConfigError
from rest_server.paths import ObjectType

logger = logging.getLogger(__name__)

DEFAULT_REPO = "default"


class AccessType(IntEnum):
    """Access levels, totally ordered."""

    NOTHING = 0
    READ = 1
    APPEND = 2
    MODIFY = 3

    @classmethod
    def parse(cls, value: str) -> "AccessType":
        """Parse "Nothing", "Read", "Append" or "Modify" (case-insensitive).

        Raises:
            ValueError: For an unknown level
        """
        try:
            return cls[value.strip().upper()]
        except KeyError:
            raise ValueError(f"unknown access type: {value}")

    def __str__(self) -> str:
        return self.name.capitalize()


class Acl:
    """Access table plus fallback flags."""

    def __init__(
        self,
        repos: Optional[dict[str, dict[str, AccessType]]] = None,
        private_repos: bool = False,
        append_only: bool = False,
    ):
        self.repos = repos if repos is not None else {}
        self.private_repos = private_repos
        self.append_only = append_only

    @classmethod
    def from_file(
        cls,
        path: Optional[Path],
        private_repos: bool = False,
        append_only: bool = False,
    ) -> "Acl":
        """Load an ACL file.

        Args:
            path: TOML file, or None for an empty table
            private_repos: Only allow users to access the repository of their own name
            append_only: Deny Modify access for repositories without a table

        Raises:
            ConfigError: If the file cannot be read or contains bad levels
        """
        acl = cls(private_repos=private_repos, append_only=append_only)
        if path is None:
            return acl

        try:
            with open(path, "rb") as f:
                data = tomllib.load(f)
        except OSError as e:
            raise ConfigError(f"Cannot read ACL file {path}: {e}")
        except tomllib.TOMLDecodeError as e:
            raise ConfigError(f"Invalid ACL file {path}: {e}")

        for repo, users in data.items():
            if not isinstance(users, dict):
                raise ConfigError(f"ACL entry {repo!r} must be a table of users")
            table = {}
            for user, level in users.items():
                if not isinstance(level, str):
                    raise ConfigError(f"ACL {repo}.{user}: access type must be a string")
                try:
                    table[user] = AccessType.parse(level)
                except ValueError as e:
                    raise ConfigError(f"ACL {repo}.{user}: {e}")
            acl.repos[repo] = table

        logger.debug("Loaded ACL for %d repositories from %s", len(acl.repos), path)
        return acl

    def _table(self, repo: str) -> Optional[dict[str, AccessType]]:
        if repo == "":
            return self.repos.get(DEFAULT_REPO)
        return self.repos.get(repo)

    def allowed(self, user: str, repo: str, tpe: Optional[ObjectType], access: AccessType) -> bool:
        """Check whether user may access repo with the given level.

        Args:
            user: Authenticated user name ("" when anonymous)
            repo: Repository name ("" for the default repository)
            tpe: Object type of the request, if any
            access: Required access level

        Returns:
            True if access is granted
        """
        # Lock files are needed even by read-only clients
        if tpe == ObjectType.LOCKS:
            access = AccessType.READ

        table = self._table(repo)
        if table is not None:
            return table.get(user, AccessType.NOTHING) >= access

        return (user == repo or not self.private_repos) and (
            access != AccessType.MODIFY or not self.append_only
        )

    def set(self, repo: str, user: str, access: AccessType) -> None:
        self.repos.setdefault(repo or DEFAULT_REPO, {})[user] = access

    def remove(self, repo: str, user: str) -> bool:
        """Remove a user from a repository table, dropping empty tables.

        Returns:
            False if there was no such entry
        """
        repo = repo or DEFAULT_REPO
        table = self.repos.get(repo)
        if table is None or user not in table:
            return False
        del table[user]
        if not table:
            del self.repos[repo]
        return True

    def to_dict(self) -> dict[str, dict[str, str]]:
        return {
            repo: {user: str(level) for user, level in users.items()}
            for repo, users in self.repos.items()
            if repo
        }

    def save(self, path: Path) -> None:
        """Write the access table as TOML."""
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "wb") as f:
            tomli_w.dump(self.to_dict(), f)
        logger.info("Saved ACL for %d repositories to %s", len(self.repos), path)
