"""Runtime context shared by all request threads.

Built once at startup from a ServerConfig and never mutated afterwards;
credential and ACL edits take effect on restart.
"""

import logging
import subprocess
import time
from dataclasses import dataclass, field
from typing import Optional

from rest_server.acl import Acl
from rest_server.config import ServerConfig, parse_listen
from rest_server.errors import ConfigError
from rest_server.htpasswd import Auth, Htpasswd
from rest_server.storage import Storage
from rest_server.tls import TLSConfig, generate_self_signed_cert

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ServerContext:
    """Storage, credentials, ACL and settings for the running server."""

    storage: Storage
    auth: Auth
    acl: Acl
    host: str = "localhost"
    port: int = 8000
    tls: Optional[TLSConfig] = None
    quota: Optional[int] = None
    started_at: float = field(default_factory=time.time)

    @property
    def uptime(self) -> float:
        return time.time() - self.started_at

    @classmethod
    def from_config(cls, config: ServerConfig) -> "ServerContext":
        """Resolve paths, load credentials and ACL, set up TLS.

        Raises:
            ConfigError: If any part of the configuration is unusable
        """
        config.validate()
        host, port = parse_listen(config.listen)

        data_dir = config.data_dir.resolve()
        try:
            data_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise ConfigError(f"Cannot create data directory {data_dir}: {e}")
        logger.info("Using data directory %s", data_dir)

        if config.disable_auth:
            logger.info("Authentication is disabled.")
            auth = Auth.disabled()
        else:
            htpasswd_path = config.htpasswd_path.resolve()
            if not htpasswd_path.exists():
                raise ConfigError(
                    f"Credential file {htpasswd_path} not found "
                    "(create it with 'rest-server auth add' or disable authentication)"
                )
            htpasswd = Htpasswd.from_file(htpasswd_path)
            logger.info("Authentication enabled with %d users from %s", len(htpasswd.users()), htpasswd_path)
            auth = Auth(htpasswd)

        acl_path = config.acl_path.resolve() if config.acl_path else None
        acl = Acl.from_file(acl_path, private_repos=config.private_repos, append_only=config.append_only)
        if acl_path:
            logger.info("Using ACL file %s", acl_path)
        else:
            logger.info("No ACL file given, using flags only.")
        if config.private_repos:
            logger.info("Private repositories enabled.")
        if config.append_only:
            logger.info("Append-only mode enabled.")

        tls = None
        if config.tls or config.tls_cert:
            tls = _resolve_tls(config)
            logger.info("TLS enabled, certificate fingerprint: %s", tls.fingerprint)

        if config.quota:
            logger.info("Repository quota warning at %d bytes", config.quota)

        return cls(
            storage=Storage(data_dir),
            auth=auth,
            acl=acl,
            host=host,
            port=port,
            tls=tls,
            quota=config.quota,
        )


def _resolve_tls(config: ServerConfig) -> TLSConfig:
    if config.tls_cert and config.tls_key:
        try:
            return TLSConfig.from_paths(config.tls_cert, config.tls_key)
        except FileNotFoundError as e:
            raise ConfigError(f"TLS file not found: {e}")
        except subprocess.CalledProcessError as e:
            raise ConfigError(f"Cannot read TLS certificate {config.tls_cert}: {e.stderr or e}")
    try:
        return generate_self_signed_cert(cert_dir=config.cert_dir)
    except (OSError, subprocess.CalledProcessError) as e:
        raise ConfigError(f"Failed to generate TLS certificate: {e}")
