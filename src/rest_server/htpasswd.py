"""Credential store backed by an htpasswd file.

Lines have the form `username:hash`. New hashes use the Apache MD5 (APR1)
scheme with an 8-character alphanumeric salt; `{SHA}` entries written by
other htpasswd tools are accepted for verification.
"""

import base64
import hashlib
import hmac
import logging
import secrets
import string
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from rest_server.errors import ConfigError

logger = logging.getLogger(__name__)

APR1_MAGIC = "$apr1$"
SHA_PREFIX = "{SHA}"
SALT_LENGTH = 8
SALT_CHARS = string.ascii_letters + string.digits

_ITOA64 = "./0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz"


def _to64(value: int, count: int) -> str:
    out = []
    for _ in range(count):
        out.append(_ITOA64[value & 0x3F])
        value >>= 6
    return "".join(out)


def apr1_hash(password: str, salt: str) -> str:
    """Hash a password with the Apache MD5 (APR1) algorithm.

    Args:
        password: Cleartext password
        salt: Salt, truncated to 8 characters

    Returns:
        Hash string "$apr1$<salt>$<digest>"
    """
    salt = salt[:SALT_LENGTH]
    pw = password.encode("utf-8")
    sb = salt.encode("utf-8")

    ctx = pw + APR1_MAGIC.encode() + sb
    alt = hashlib.md5(pw + sb + pw).digest()
    remaining = len(pw)
    while remaining > 0:
        ctx += alt[:min(16, remaining)]
        remaining -= 16

    bits = len(pw)
    while bits:
        ctx += b"\x00" if bits & 1 else pw[:1]
        bits >>= 1

    final = hashlib.md5(ctx).digest()

    # 1000 rounds to slow down brute force
    for i in range(1000):
        block = pw if i & 1 else final
        if i % 3:
            block += sb
        if i % 7:
            block += pw
        block += final if i & 1 else pw
        final = hashlib.md5(block).digest()

    encoded = ""
    for a, b, c in ((0, 6, 12), (1, 7, 13), (2, 8, 14), (3, 9, 15), (4, 10, 5)):
        encoded += _to64((final[a] << 16) | (final[b] << 8) | final[c], 4)
    encoded += _to64(final[11], 2)

    return f"{APR1_MAGIC}{salt}${encoded}"


def generate_salt(length: int = SALT_LENGTH) -> str:
    """Generate a random alphanumeric salt."""
    return "".join(secrets.choice(SALT_CHARS) for _ in range(length))


@dataclass
class Credential:
    """A user name and its stored password hash."""

    name: str
    hash: str

    @classmethod
    def new(cls, name: str, password: str) -> "Credential":
        """Create a credential with a freshly salted APR1 hash."""
        return cls(name=name, hash=apr1_hash(password, generate_salt()))

    def verify(self, password: str) -> bool:
        """Check a cleartext password against the stored hash."""
        if self.hash.startswith(APR1_MAGIC):
            parts = self.hash.split("$")
            if len(parts) != 4:
                return False
            expected = apr1_hash(password, parts[2])
        elif self.hash.startswith(SHA_PREFIX):
            digest = hashlib.sha1(password.encode("utf-8")).digest()
            expected = SHA_PREFIX + base64.b64encode(digest).decode("ascii")
        else:
            return False
        return hmac.compare_digest(expected.encode(), self.hash.encode())

    def __str__(self) -> str:
        return f"{self.name}:{self.hash}"


class Htpasswd:
    """In-memory view of an htpasswd file."""

    def __init__(self, path: Optional[Path] = None, credentials: Optional[dict] = None):
        self.path = path
        self.credentials: dict[str, Credential] = credentials or {}

    @classmethod
    def from_file(cls, path: Path) -> "Htpasswd":
        """Load credentials from a file.

        Blank and unparsable lines are skipped; a later entry for the same
        user replaces an earlier one. A missing file yields an empty store.

        Raises:
            ConfigError: If the file exists but cannot be read
        """
        store = cls(path=path)
        if not path.exists():
            logger.debug("Credential file %s does not exist", path)
            return store

        try:
            content = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise ConfigError(f"Cannot read credential file {path}: {e}")

        for lineno, line in enumerate(content.splitlines(), 1):
            line = line.strip()
            if not line:
                continue
            fields = line.split(":")
            if len(fields) < 2 or not fields[0] or not fields[1]:
                logger.warning("Skipping malformed line %d in %s", lineno, path)
                continue
            store.credentials[fields[0]] = Credential(fields[0], fields[1])
        return store

    def users(self) -> list[str]:
        return list(self.credentials)

    def read(self, name: str) -> Optional[Credential]:
        return self.credentials.get(name)

    def insert(self, credential: Credential) -> None:
        self.credentials[credential.name] = credential

    def create(self, name: str, password: str) -> Credential:
        """Add a new user.

        Raises:
            ValueError: If the user already exists
        """
        if name in self.credentials:
            raise ValueError(f"user {name} already exists")
        credential = Credential.new(name, password)
        self.insert(credential)
        return credential

    def update(self, name: str, password: str) -> Credential:
        """Set a user's password, adding the user if missing."""
        credential = Credential.new(name, password)
        self.insert(credential)
        return credential

    def delete(self, name: str) -> bool:
        """Remove a user. Returns False if the user was not present."""
        return self.credentials.pop(name, None) is not None

    def verify(self, name: str, password: str) -> bool:
        credential = self.credentials.get(name)
        return credential is not None and credential.verify(password)

    def to_text(self) -> str:
        return "".join(f"{c}\n" for c in self.credentials.values())

    def save(self, path: Optional[Path] = None) -> None:
        """Rewrite the whole credential file."""
        path = path or self.path
        if path is None:
            raise ConfigError("No credential file path given")
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(self.to_text(), encoding="utf-8")
        logger.info("Saved %d credentials to %s", len(self.credentials), path)


class Auth:
    """Password verification, optionally disabled."""

    def __init__(self, htpasswd: Optional[Htpasswd] = None):
        self.htpasswd = htpasswd

    @classmethod
    def disabled(cls) -> "Auth":
        return cls(None)

    @property
    def enabled(self) -> bool:
        return self.htpasswd is not None

    def verify(self, name: str, password: str) -> bool:
        """Verify credentials; always true when authentication is disabled."""
        if self.htpasswd is None:
            return True
        return self.htpasswd.verify(name, password)
