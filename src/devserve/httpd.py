"""HTTP(S) servers for static files and the API.

Both servers are http.server servers running the shared middleware
pipeline before their own handler, for every HTTP method. serve_forever()
accepts connections for any number of them on the calling thread; each
accepted connection is handled on its own daemon thread with a timeout, so
an idle client (or a stalled TLS handshake) never blocks the other listener.
"""

import functools
import io
import json
import logging
import os
import selectors
import socket
import ssl
import sys
import threading
from http.server import BaseHTTPRequestHandler, SimpleHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path
from typing import Iterable, Optional
from urllib.parse import parse_qs, urlparse

from devserve.api import Router
from devserve.livereload import LIVERELOAD_PATH, ChangeWatcher, inject_client
from devserve.middleware import JSON_CONTENT_TYPE, Pipeline, Request, Response

logger = logging.getLogger(__name__)

DEFAULT_BIND = "0.0.0.0"
POLL_INTERVAL = 0.5
CONNECTION_TIMEOUT = 30


class DevHTTPServer(ThreadingHTTPServer):
    """HTTP server carrying its pipeline, optional TLS context and collaborators."""

    daemon_threads = True

    def __init__(
        self,
        server_address,
        handler_class,
        pipeline: Pipeline,
        ssl_context: Optional[ssl.SSLContext] = None,
        router: Optional[Router] = None,
        watcher: Optional[ChangeWatcher] = None,
    ):
        self.pipeline = pipeline
        self.ssl_context = ssl_context
        self.router = router
        self.watcher = watcher
        super().__init__(server_address, handler_class)
        if ssl_context is not None:
            # Handshakes run in the connection thread, not in accept()
            self.socket = ssl_context.wrap_socket(
                self.socket,
                server_side=True,
                do_handshake_on_connect=False,
            )

    @property
    def port(self) -> int:
        return self.server_address[1]

    @property
    def scheme(self) -> str:
        return "https" if self.ssl_context is not None else "http"

    @property
    def url(self) -> str:
        return f"{self.scheme}://localhost:{self.port}"

    def handle_error(self, request, client_address):
        """Log handler errors instead of printing tracebacks to stderr."""
        error = sys.exc_info()[1]
        if isinstance(error, ssl.SSLError):
            logger.warning("TLS handshake with %s failed: %s", client_address[0], error)
        elif isinstance(error, (ConnectionError, socket.timeout)):
            logger.debug("Connection from %s dropped: %s", client_address[0], error)
        else:
            logger.exception("Error handling request from %s", client_address[0])


class _PipelineMixin:
    """Builds Request/Response objects and runs the server pipeline."""

    timeout = CONNECTION_TIMEOUT

    def setup(self):
        super().setup()
        if isinstance(self.connection, ssl.SSLSocket):
            self.connection.do_handshake()

    def log_message(self, format: str, *args):
        """Override to use Python logging (requests are logged by middleware)."""
        logger.debug("%s - %s", self.address_string(), format % args)

    def _new_exchange(self) -> tuple[Request, Response]:
        parsed = urlparse(self.path)
        request = Request(
            method=self.command,
            path=self.path,
            client_address=self.client_address[0] if self.client_address else None,
            headers=dict(self.headers.items()),
            query={k: v[-1] for k, v in parse_qs(parsed.query).items()},
        )
        return request, Response()


class StaticRequestHandler(_PipelineMixin, SimpleHTTPRequestHandler):
    """Serves files from the root directory, with optional live reload."""

    _response: Optional[Response] = None

    def end_headers(self):
        if self._response is not None:
            for name, value in self._response.headers:
                self.send_header(name, value)
        super().end_headers()

    def do_GET(self):
        """Handle GET requests."""
        self._handle(SimpleHTTPRequestHandler.do_GET)

    def do_HEAD(self):
        """Handle HEAD requests."""
        self._handle(SimpleHTTPRequestHandler.do_HEAD)

    def do_OPTIONS(self):
        """Answer OPTIONS (including CORS preflight) with the allowed methods."""
        self._handle(StaticRequestHandler._send_options)

    def do_POST(self):
        """Reject methods the file server does not support."""
        self._handle(StaticRequestHandler._send_not_allowed)

    do_PUT = do_DELETE = do_PATCH = do_POST

    def _handle(self, serve):
        request, self._response = self._new_exchange()

        def handler(request, response):
            if (
                self.server.watcher
                and self.command in ("GET", "HEAD")
                and urlparse(self.path).path == LIVERELOAD_PATH
            ):
                self._send_livereload_version()
            else:
                serve(self)

        self.server.pipeline.run(request, self._response, handler)

    def _send_options(self):
        self.send_response(204)
        self.send_header("Allow", "GET, HEAD, OPTIONS")
        self.send_header("Content-Length", "0")
        self.end_headers()

    def _send_not_allowed(self):
        self._response.set_header("Allow", "GET, HEAD, OPTIONS")
        self.send_error(405, f"Method {self.command} not allowed")

    def _send_livereload_version(self):
        body = json.dumps({"version": self.server.watcher.version()}).encode("utf-8")
        self.send_response(200)
        self.send_header("Content-Type", JSON_CONTENT_TYPE)
        self.send_header("Content-Length", str(len(body)))
        self.send_header("Cache-Control", "no-store")
        self.end_headers()
        if self.command != "HEAD":
            self.wfile.write(body)

    def send_head(self):
        """Serve HTML pages with the live reload client injected."""
        if self.server.watcher is None:
            return super().send_head()

        path = self.translate_path(self.path)
        if os.path.isdir(path):
            if not urlparse(self.path).path.endswith("/"):
                return super().send_head()  # directory redirect
            path = os.path.join(path, "index.html")
        if not path.endswith((".html", ".htm")) or not os.path.isfile(path):
            return super().send_head()

        try:
            content = inject_client(Path(path).read_bytes())
        except OSError:
            self.send_error(404, "File not found")
            return None

        self.send_response(200)
        self.send_header("Content-Type", "text/html; charset=utf-8")
        self.send_header("Content-Length", str(len(content)))
        self.send_header("Cache-Control", "no-cache")
        self.end_headers()
        return io.BytesIO(content)


class ApiRequestHandler(_PipelineMixin, BaseHTTPRequestHandler):
    """Dispatches GET requests to registered API routes.

    Every other method still runs the pipeline and gets a JSON reply.
    """

    def do_GET(self):
        """Handle requests of any method."""
        request, response = self._new_exchange()
        self.server.pipeline.run(request, response, self._dispatch)
        self._write(response)

    do_HEAD = do_OPTIONS = do_POST = do_PUT = do_DELETE = do_PATCH = do_GET

    def _dispatch(self, request: Request, response: Response):
        path = urlparse(request.path).path

        if request.method == "OPTIONS":
            response.set_header("Allow", "GET, HEAD, OPTIONS")
            response.status = 204
            return

        if request.method not in ("GET", "HEAD"):
            response.json({"error": f"Cannot {request.method} {path}"}, 404)
            return

        handler, params = self.server.router.match(path)
        if handler is None:
            response.json({"error": f"Not found: {path}"}, 404)
            return

        request.params = params
        try:
            handler(request, response)
        except Exception as e:
            logger.exception("API handler for %s failed", path)
            response.json({"error": str(e)}, 500)

    def _write(self, response: Response):
        self.send_response(response.status)
        for name, value in response.headers:
            self.send_header(name, value)
        self.send_header("Content-Length", str(len(response.body)))
        self.end_headers()
        if self.command != "HEAD":
            self.wfile.write(response.body)


def create_static_server(
    root_path: Path,
    port: int,
    pipeline: Pipeline,
    ssl_context: Optional[ssl.SSLContext] = None,
    livereload: bool = True,
    bind: str = DEFAULT_BIND,
) -> DevHTTPServer:
    """Create (bind) the static file server.

    Raises:
        OSError: If the port cannot be bound
    """
    handler_class = functools.partial(StaticRequestHandler, directory=str(root_path))
    return DevHTTPServer(
        (bind, port),
        handler_class,
        pipeline,
        ssl_context=ssl_context,
        watcher=ChangeWatcher(root_path) if livereload else None,
    )


def create_api_server(
    port: int,
    router: Router,
    pipeline: Pipeline,
    ssl_context: Optional[ssl.SSLContext] = None,
    bind: str = DEFAULT_BIND,
) -> DevHTTPServer:
    """Create (bind) the API server.

    Raises:
        OSError: If the port cannot be bound
    """
    return DevHTTPServer((bind, port), ApiRequestHandler, pipeline, ssl_context=ssl_context, router=router)


def serve_forever(
    servers: Iterable[DevHTTPServer],
    stop: Optional[threading.Event] = None,
    poll_interval: float = POLL_INTERVAL,
):
    """Accept connections for all servers on the calling thread until interrupted.

    Args:
        servers: Bound servers to multiplex
        stop: Optional event ending the loop when set
        poll_interval: Seconds between stop checks
    """
    servers = list(servers)
    try:
        with selectors.DefaultSelector() as selector:
            for server in servers:
                selector.register(server, selectors.EVENT_READ, server)
            while stop is None or not stop.is_set():
                for key, _ in selector.select(poll_interval):
                    # Ready listener: accept() returns at once, the
                    # connection itself runs on a daemon thread
                    key.data.handle_request()
    except KeyboardInterrupt:
        logger.info("Shutdown requested")
    finally:
        for server in servers:
            server.server_close()
