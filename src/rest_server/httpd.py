"""Main HTTP(S) server.

Serves the repository protocol for any number of repositories below one
data root. Each request runs on its own thread and reads the shared,
immutable ServerContext from the server object.
"""

import logging
import signal
import socket
import sys
import time
from http import HTTPStatus
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Iterator, Optional
from urllib.parse import urlsplit

from rest_server import __version__, handlers
from rest_server.auth import authenticate, check_access
from rest_server.context import ServerContext
from rest_server.errors import ApiError, ErrorKind
from rest_server.handlers import Response
from rest_server.paths import RequestPath, Shape, parse_path
from rest_server.ranges import IO_BUFFER_SIZE

logger = logging.getLogger(__name__)
access_logger = logging.getLogger("rest_server.access")

HEALTH_PATH = "/health/live"

# Methods supported per URL shape
ROUTES = {
    Shape.REPOSITORY: ("POST", "DELETE"),
    Shape.CONFIG: ("HEAD", "GET", "POST", "DELETE"),
    Shape.LISTING: ("GET",),
    Shape.OBJECT: ("HEAD", "GET", "POST", "DELETE"),
}


class RepositoryHTTPServer(ThreadingHTTPServer):
    """Threading HTTP server carrying the runtime context."""

    daemon_threads = True

    def __init__(self, server_address, handler_class, context: ServerContext):
        self.context = context
        if ":" in server_address[0]:
            self.address_family = socket.AF_INET6
        super().__init__(server_address, handler_class)


class ServerHandler(BaseHTTPRequestHandler):
    """HTTP request handler for the repository protocol."""

    protocol_version = "HTTP/1.1"
    server_version = f"rest-server/{__version__}"

    server: RepositoryHTTPServer

    def log_message(self, format: str, *args):
        """Override to use Python logging."""
        logger.info("%s - %s", self.address_string(), format % args)

    def log_request(self, code="-", size="-"):
        """Write one access log line in Combined Log Format."""
        if isinstance(code, HTTPStatus):
            code = code.value
        headers = getattr(self, "headers", None) or {}
        access_logger.info(
            '%s - %s [%s] "%s" %s %s "%s" "%s"',
            self.client_address[0],
            getattr(self, "_user", "") or "-",
            time.strftime("%d/%b/%Y:%H:%M:%S %z"),
            self.requestline,
            code,
            size,
            headers.get("Referer", "-"),
            headers.get("User-Agent", "-"),
        )

    def do_HEAD(self):
        self._dispatch("HEAD")

    def do_GET(self):
        self._dispatch("GET")

    def do_POST(self):
        self._dispatch("POST")

    def do_DELETE(self):
        self._dispatch("DELETE")

    def do_PUT(self):
        self._dispatch("PUT")

    @property
    def context(self) -> ServerContext:
        return self.server.context

    def _dispatch(self, method: str):
        """Route a request and send the response or error."""
        self._user = ""
        self._body_pending = self._has_body()
        parsed = urlsplit(self.path)

        try:
            if parsed.path == HEALTH_PATH:
                if method not in ("GET", "HEAD"):
                    raise ApiError(ErrorKind.METHOD_NOT_ALLOWED, method, {"Allow": "GET, HEAD"})
                response = handlers.health_live(self.context)
            else:
                response = self._handle(method, parsed.path, parsed.query)
        except ApiError as e:
            logger.debug("%s %s failed: %s", method, self.path, e)
            response = Response(status=e.http_status, body=e.body(), headers=e.headers)
        except Exception:
            logger.exception("Unhandled error for %s %s", method, self.path)
            error = ApiError(ErrorKind.INTERNAL_ERROR, "unexpected server error")
            response = Response(status=error.http_status, body=error.body())

        # An unread body would be taken for the next request
        if self._body_pending:
            self.close_connection = True

        self._send(method, response)

    def _handle(self, method: str, url_path: str, query: str) -> Response:
        path = parse_path(url_path)

        allowed = ROUTES[path.shape]
        if method not in allowed:
            raise ApiError(
                ErrorKind.METHOD_NOT_ALLOWED,
                f"{method} not allowed on {url_path}",
                {"Allow": ", ".join(allowed)},
            )

        self._user = authenticate(self.context.auth, self.headers.get("Authorization", ""))
        check_access(self.context.acl, self._user, method, path)

        if path.shape == Shape.REPOSITORY:
            if method == "POST":
                return handlers.create_repository(self.context, path, query)
            return handlers.delete_repository(self.context, path)

        if path.shape == Shape.LISTING:
            return handlers.list_files(self.context, path, self.headers.get("Accept"))

        return self._handle_file(method, path)

    def _handle_file(self, method: str, path: RequestPath) -> Response:
        if method == "HEAD":
            return handlers.file_length(self.context, path)
        if method == "GET":
            return handlers.get_file(self.context, path, self.headers.get("Range"))
        if method == "POST":
            return handlers.add_file(self.context, path, self._read_body())
        return handlers.delete_file(self.context, path)

    def _has_body(self) -> bool:
        if "chunked" in self.headers.get("Transfer-Encoding", "").lower():
            return True
        length = self.headers.get("Content-Length", "0").strip()
        return not length.isdigit() or int(length) > 0

    def _read_body(self) -> Iterator[bytes]:
        """Yield the request body in bounded chunks.

        Raises:
            ApiError: BadRequest for a bad Content-Length,
                ReadingFromStreamFailed if the client sends less than announced
        """
        if "chunked" in self.headers.get("Transfer-Encoding", "").lower():
            yield from self._read_chunked()
        else:
            try:
                remaining = int(self.headers.get("Content-Length", "0"))
            except ValueError:
                raise ApiError(ErrorKind.BAD_REQUEST, "invalid Content-Length")
            if remaining < 0:
                raise ApiError(ErrorKind.BAD_REQUEST, "invalid Content-Length")
            while remaining > 0:
                chunk = self._read(min(IO_BUFFER_SIZE, remaining))
                remaining -= len(chunk)
                yield chunk
        self._body_pending = False

    def _read_chunked(self) -> Iterator[bytes]:
        while True:
            line = self._readline()
            try:
                size = int(line.split(b";", 1)[0].strip(), 16)
            except ValueError:
                raise ApiError(ErrorKind.READING_FROM_STREAM_FAILED, "invalid chunk size")
            if size == 0:
                # Skip trailers up to the terminating empty line
                while self._readline() not in (b"\r\n", b"\n"):
                    pass
                return
            while size > 0:
                chunk = self._read(min(IO_BUFFER_SIZE, size))
                size -= len(chunk)
                yield chunk
            self._readline()

    def _read(self, size: int) -> bytes:
        try:
            data = self.rfile.read(size)
        except OSError as e:
            raise ApiError(ErrorKind.READING_FROM_STREAM_FAILED, str(e))
        if not data:
            raise ApiError(ErrorKind.READING_FROM_STREAM_FAILED, "unexpected end of request body")
        return data

    def _readline(self) -> bytes:
        try:
            line = self.rfile.readline(IO_BUFFER_SIZE + 1)
        except OSError as e:
            raise ApiError(ErrorKind.READING_FROM_STREAM_FAILED, str(e))
        if not line:
            raise ApiError(ErrorKind.READING_FROM_STREAM_FAILED, "unexpected end of request body")
        return line

    def _send(self, method: str, response: Response):
        """Send a response, streaming file content in bounded chunks."""
        try:
            self.log_request(response.status, response.content_length)
            self.send_response_only(response.status)
            self.send_header("Server", self.version_string())
            self.send_header("Date", self.date_time_string())
            self.send_header("Content-Type", response.content_type)
            self.send_header("Content-Length", str(response.content_length))
            for name, value in response.headers.items():
                self.send_header(name, value)
            if self.close_connection:
                self.send_header("Connection", "close")
            self.end_headers()

            if method == "HEAD":
                return
            if response.stream is None:
                self.wfile.write(response.body)
                return

            remaining = response.length
            while remaining > 0:
                chunk = response.stream.read(min(IO_BUFFER_SIZE, remaining))
                if not chunk:
                    # File shrank underneath us; the client sees a short body
                    self.close_connection = True
                    break
                self.wfile.write(chunk)
                remaining -= len(chunk)
        except ConnectionError as e:
            logger.debug("Client %s went away: %s", self.address_string(), e)
            self.close_connection = True
        finally:
            if response.stream is not None:
                response.stream.close()


class Server:
    """Repository server wrapping the threading HTTP server."""

    def __init__(self, context: ServerContext):
        """Initialize server.

        Args:
            context: Runtime context (storage, auth, ACL, listen address, TLS)
        """
        self.context = context
        self.server: Optional[RepositoryHTTPServer] = None
        self._serving = False

    @property
    def address(self) -> tuple[str, int]:
        """Bound (host, port); the port is real even when 0 was requested."""
        if not self.server:
            raise RuntimeError("Server not started")
        host, port = self.server.server_address[:2]
        return host, port

    @property
    def url(self) -> str:
        scheme = "https" if self.context.tls else "http"
        host, port = self.address
        return f"{scheme}://{host}:{port}"

    def start(self, handle_signals: bool = True):
        """Bind the listening socket.

        Args:
            handle_signals: Install a SIGTERM handler (main thread only)

        Raises:
            RuntimeError: If server cannot be started
        """
        try:
            self.server = RepositoryHTTPServer(
                (self.context.host, self.context.port), ServerHandler, self.context
            )
        except OSError as e:
            logger.error("Failed to bind %s:%d: %s", self.context.host, self.context.port, e)
            raise RuntimeError(f"Cannot listen on {self.context.host}:{self.context.port}: {e}") from e

        if self.context.tls:
            self.server.socket = self.context.tls.ssl_context().wrap_socket(
                self.server.socket,
                server_side=True,
            )

        logger.info("Server starting on %s", self.url)
        if self.context.tls:
            logger.info("Certificate fingerprint: %s", self.context.tls.fingerprint)

        if handle_signals:
            self._setup_signal_handlers()

    def serve_forever(self):
        """Start serving requests."""
        if not self.server:
            raise RuntimeError("Server not started")

        server = self.server
        self._serving = True
        try:
            server.serve_forever()
        except KeyboardInterrupt:
            logger.info("Shutdown requested")
        finally:
            self.shutdown()

    def shutdown(self):
        """Stop serving and close the listening socket."""
        server, self.server = self.server, None
        if server:
            logger.info("Shutting down server")
            if self._serving:
                server.shutdown()
            server.server_close()

    def _setup_signal_handlers(self):
        """Setup signal handler for graceful shutdown."""

        def handle_sigterm(signum, frame):
            logger.info("Received SIGTERM")
            sys.exit(0)

        signal.signal(signal.SIGTERM, handle_sigterm)


def create_server(context: ServerContext) -> Server:
    """Create a server instance.

    Args:
        context: Runtime context

    Returns:
        Server instance (not yet started)
    """
    return Server(context)
