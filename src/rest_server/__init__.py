"""REST repository server for backup clients.

Serves any number of repositories below one data root over HTTP(S), with
htpasswd authentication and per-repository access control.
"""

__version__ = "0.3.0"

from rest_server.errors import (
    ApiError,
    ConfigError,
    ErrorKind,
)
from rest_server.config import ServerConfig
from rest_server.context import ServerContext
from rest_server.httpd import (
    Server,
    create_server,
)
from rest_server.acl import Acl, AccessType
from rest_server.htpasswd import Auth, Htpasswd
from rest_server.storage import Storage
from rest_server.tls import TLSConfig

__all__ = [
    "__version__",
    # Errors
    "ApiError",
    "ConfigError",
    "ErrorKind",
    # Configuration
    "ServerConfig",
    "ServerContext",
    # Server
    "Server",
    "create_server",
    # Stores
    "Acl",
    "AccessType",
    "Auth",
    "Htpasswd",
    "Storage",
    "TLSConfig",
]
