"""Shared pytest fixtures for rest-server tests."""

import base64
import sys
import threading
from pathlib import Path

import pytest

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

from rest_server.acl import Acl
from rest_server.context import ServerContext
from rest_server.htpasswd import Auth, Htpasswd
from rest_server.httpd import Server
from rest_server.storage import Storage

# 64-char hex object names
SHA_A = "a1" + "0" * 62
SHA_B = "b2" + "1" * 62
SHA_C = "3f" + "c" * 62


def basic_auth(user: str, password: str) -> str:
    """Build a Basic Authorization header value."""
    token = base64.b64encode(f"{user}:{password}".encode()).decode()
    return f"Basic {token}"


@pytest.fixture
def data_dir(tmp_path):
    """Empty data root."""
    path = tmp_path / "data"
    path.mkdir()
    return path


@pytest.fixture
def storage(data_dir):
    return Storage(data_dir)


@pytest.fixture
def htpasswd(tmp_path):
    """Credential store with users alice and bob, saved to disk."""
    store = Htpasswd(path=tmp_path / ".htpasswd")
    store.create("alice", "alice-secret")
    store.create("bob", "bob-secret")
    store.save()
    return store


@pytest.fixture
def make_context(storage, htpasswd):
    """Factory for runtime contexts on the test data root.

    Defaults to authentication enabled (alice, bob) and an empty ACL.
    """

    def _make(auth=None, acl=None, **kwargs):
        return ServerContext(
            storage=storage,
            auth=auth if auth is not None else Auth(htpasswd),
            acl=acl if acl is not None else Acl(),
            host="127.0.0.1",
            port=0,
            **kwargs,
        )

    return _make


@pytest.fixture
def start_server():
    """Start servers on an OS-assigned port; shut them down afterwards."""
    servers = []

    def _start(context: ServerContext) -> Server:
        server = Server(context)
        server.start(handle_signals=False)
        thread = threading.Thread(target=server.serve_forever)
        thread.daemon = True
        thread.start()
        servers.append(server)
        return server

    yield _start

    for server in servers:
        server.shutdown()
