"""Server configuration.

Settings come from an optional YAML file, overridden by command-line
options. File layout:

    server:
      listen: "localhost:8000"
    storage:
      data-dir: /srv/restic
      quota: 500G
    auth:
      disable-auth: false
      htpasswd-file: /srv/restic/.htpasswd
    acl:
      acl-path: /etc/rest-server/acl.toml
      private-repos: true
      append-only: false
    tls:
      enabled: true
      cert: /etc/rest-server/server.crt
      key: /etc/rest-server/server.key
      cert-dir: /var/lib/rest-server/tls
    log:
      level: info
      access-log: /var/log/rest-server/access.log
"""

import dataclasses
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

import yaml

from rest_server.errors import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_LISTEN = "localhost:8000"
DEFAULT_DATA_DIR = Path("/tmp/restic")
HTPASSWD_FILENAME = ".htpasswd"
LOG_LEVELS = ("debug", "info", "warning", "error")

# (section, key) in the YAML file -> ServerConfig field
_FILE_KEYS = {
    ("server", "listen"): "listen",
    ("storage", "data-dir"): "data_dir",
    ("storage", "quota"): "quota",
    ("auth", "disable-auth"): "disable_auth",
    ("auth", "htpasswd-file"): "htpasswd_file",
    ("acl", "acl-path"): "acl_path",
    ("acl", "private-repos"): "private_repos",
    ("acl", "append-only"): "append_only",
    ("tls", "enabled"): "tls",
    ("tls", "cert"): "tls_cert",
    ("tls", "key"): "tls_key",
    ("tls", "cert-dir"): "cert_dir",
    ("log", "level"): "log_level",
    ("log", "access-log"): "access_log",
}

_PATH_FIELDS = ("data_dir", "htpasswd_file", "acl_path", "tls_cert", "tls_key", "cert_dir", "access_log")
_BOOL_FIELDS = ("disable_auth", "private_repos", "append_only", "tls")

_SIZE_RE = re.compile(r"^\s*(\d+)\s*([kmgt]?)i?b?\s*$", re.IGNORECASE)
_SIZE_UNITS = {"": 1, "k": 1024, "m": 1024 ** 2, "g": 1024 ** 3, "t": 1024 ** 4}


def parse_size(value: Any) -> int:
    """Parse a byte count such as 1048576, "512M" or "2GiB".

    Raises:
        ConfigError: For a malformed size
    """
    if isinstance(value, bool):
        raise ConfigError(f"Invalid size: {value!r}")
    if isinstance(value, int):
        if value < 0:
            raise ConfigError(f"Invalid size: {value!r}")
        return value
    match = _SIZE_RE.match(str(value))
    if not match:
        raise ConfigError(f"Invalid size: {value!r}")
    return int(match.group(1)) * _SIZE_UNITS[match.group(2).lower()]


def parse_listen(listen: str) -> tuple[str, int]:
    """Split a listen address into host and port.

    Accepts "host:port", ":port" (all interfaces) and "[v6addr]:port".

    Raises:
        ConfigError: For a malformed address
    """
    host, sep, port = listen.rpartition(":")
    if not sep or not port.isdigit():
        raise ConfigError(f"Invalid listen address: {listen}")
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    port_num = int(port)
    if port_num > 65535:
        raise ConfigError(f"Invalid port in listen address: {listen}")
    return host or "0.0.0.0", port_num


@dataclass
class ServerConfig:
    """Server settings."""

    listen: str = DEFAULT_LISTEN
    data_dir: Path = DEFAULT_DATA_DIR
    quota: Optional[int] = None
    disable_auth: bool = False
    htpasswd_file: Optional[Path] = None
    acl_path: Optional[Path] = None
    private_repos: bool = False
    append_only: bool = False
    tls: bool = False
    tls_cert: Optional[Path] = None
    tls_key: Optional[Path] = None
    cert_dir: Optional[Path] = None
    log_level: str = "info"
    access_log: Optional[Path] = None

    @property
    def htpasswd_path(self) -> Path:
        """Credential file, defaulting to .htpasswd in the data dir."""
        return self.htpasswd_file or self.data_dir / HTPASSWD_FILENAME

    @classmethod
    def from_dict(cls, data: dict) -> "ServerConfig":
        """Build a config from parsed YAML.

        Raises:
            ConfigError: For unknown sections/keys or bad values
        """
        values = {}
        for section, entries in data.items():
            if entries is None:
                continue
            if not isinstance(entries, dict):
                raise ConfigError(f"Config section '{section}' must be a mapping")
            for key, value in entries.items():
                field = _FILE_KEYS.get((section, key))
                if field is None:
                    raise ConfigError(f"Unknown config key: {section}.{key}")
                values[field] = value
        return cls().merge(values)

    @classmethod
    def from_file(cls, path: Path) -> "ServerConfig":
        """Load a YAML config file.

        Raises:
            ConfigError: If the file is missing or invalid
        """
        if not path.exists():
            raise ConfigError(f"Config file not found: {path}")
        try:
            with open(path, encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {path}: {e}")
        if not isinstance(data, dict):
            raise ConfigError(f"Config file {path} must contain a mapping")
        logger.debug("Loaded config from %s", path)
        return cls.from_dict(data)

    def merge(self, overrides: dict) -> "ServerConfig":
        """Return a copy with the given non-None values applied.

        Raises:
            ConfigError: For unknown fields or bad values
        """
        known = {f.name for f in dataclasses.fields(self)}
        values = {}
        for name, value in overrides.items():
            if name not in known:
                raise ConfigError(f"Unknown config option: {name}")
            if value is None:
                continue
            values[name] = _coerce(name, value)
        return dataclasses.replace(self, **values)

    def validate(self) -> None:
        """Check cross-field consistency.

        Raises:
            ConfigError: On an inconsistent configuration
        """
        parse_listen(self.listen)
        if self.log_level not in LOG_LEVELS:
            raise ConfigError(f"Invalid log level: {self.log_level}")
        if bool(self.tls_cert) != bool(self.tls_key):
            raise ConfigError("TLS certificate and key must be given together")
        if self.tls_cert and not self.tls:
            logger.debug("TLS certificate given, enabling TLS")


def _coerce(name: str, value: Any) -> Any:
    if name in _PATH_FIELDS:
        if not isinstance(value, (str, Path)):
            raise ConfigError(f"{name} must be a path, got {value!r}")
        return Path(value).expanduser()
    if name in _BOOL_FIELDS:
        if not isinstance(value, bool):
            raise ConfigError(f"{name} must be true or false, got {value!r}")
        return value
    if name == "quota":
        return parse_size(value)
    if name == "log_level":
        return str(value).lower()
    if name == "listen":
        return str(value)
    return value
