"""Dual-server bootstrap.

Starts the static file server and, when an API is configured, the API
server. Both share one TLS identity and the same middleware steps.

State progression per process:

    UNCONFIGURED -> RESOLVING_TLS -> STATIC_SERVER_STARTING -> STATIC_SERVER_LISTENING
        -> (API_LOADING -> API_SERVER_LISTENING | API_SKIPPED) -> READY

TLS and API failures are logged and leave the servers degraded; only a
static server bind failure propagates.
"""

import logging
import subprocess
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from colorama import Fore, Style

from devserve.api import ApiModuleLoadError, Router, load_route_table
from devserve.config import ServeConfig
from devserve.httpd import DEFAULT_BIND, DevHTTPServer, create_api_server, create_static_server
from devserve.middleware import Handler, Pipeline, api_pipeline, static_pipeline
from devserve.tls import TLSMaterial, build_ssl_context, get_cert_fingerprint

logger = logging.getLogger(__name__)


class BootstrapState(Enum):
    UNCONFIGURED = "unconfigured"
    RESOLVING_TLS = "resolving_tls"
    STATIC_SERVER_STARTING = "static_server_starting"
    STATIC_SERVER_LISTENING = "static_server_listening"
    API_LOADING = "api_loading"
    API_SERVER_LISTENING = "api_server_listening"
    API_SKIPPED = "api_skipped"
    READY = "ready"


@dataclass
class ServerHandles:
    """Listening servers returned by ServerBootstrap.start()."""
    static: DevHTTPServer
    api: Optional[DevHTTPServer] = None

    @property
    def servers(self) -> list[DevHTTPServer]:
        return [s for s in (self.static, self.api) if s is not None]


class ServerBootstrap:
    """Binds the static and API servers for a ServeConfig."""

    def __init__(
        self,
        log: Optional[logging.Logger] = None,
        bind: str = DEFAULT_BIND,
        static_steps: Optional[Pipeline] = None,
        api_steps: Optional[Pipeline] = None,
    ):
        """Initialize bootstrap.

        Args:
            log: Logger for startup messages (default: module logger)
            bind: Address both servers bind to
            static_steps: Static server pipeline (default: static_pipeline())
            api_steps: API server pipeline (default: api_pipeline())
        """
        self.log = log or logger
        self.bind = bind
        self.static_steps = static_steps if static_steps is not None else static_pipeline(self.log)
        self.api_steps = api_steps if api_steps is not None else api_pipeline(self.log)
        self.state = BootstrapState.UNCONFIGURED
        self.registered_routes: list[str] = []

    def start(
        self,
        config: ServeConfig,
        tls_material: Optional[TLSMaterial],
        route_table: Optional[dict[str, Handler]] = None,
    ) -> ServerHandles:
        """Bind the servers (they serve once serve_forever() runs).

        Args:
            config: Effective configuration (port override already applied)
            tls_material: Resolved TLS material, None for HTTP or degraded HTTPS
            route_table: Pre-loaded routes; loaded from config.api when None

        Returns:
            ServerHandles with the static server and, if started, the API server

        Raises:
            OSError: If the static server port cannot be bound
        """
        self.state = BootstrapState.RESOLVING_TLS
        ssl_context = None
        if config.https:
            ssl_context = build_ssl_context(tls_material, self.log)
            self._log_fingerprint(tls_material)

        self.state = BootstrapState.STATIC_SERVER_STARTING
        static = create_static_server(
            config.root_path,
            config.port,
            self.static_steps,
            ssl_context=ssl_context,
            livereload=config.livereload,
            bind=self.bind,
        )
        self.state = BootstrapState.STATIC_SERVER_LISTENING
        self.log.info("Serving %s on %s", config.root_path, static.url)

        handles = ServerHandles(static=static)
        if config.api is not None:
            handles.api = self._start_api(config, ssl_context, route_table)

        self.state = BootstrapState.READY
        return handles

    def _start_api(self, config: ServeConfig, ssl_context, route_table) -> Optional[DevHTTPServer]:
        self.state = BootstrapState.API_LOADING
        api = config.api

        if route_table is None:
            try:
                route_table = load_route_table(config.root_path, api.entry_path)
            except ApiModuleLoadError as e:
                self.log.error("The api entry could not be loaded: %s", api.entry_path)
                self.log.error("%s", e)
                self.state = BootstrapState.API_SKIPPED
                return None

        self.log.info("Starting api server on port %d.", api.port)
        router = Router()
        try:
            for pattern, handler in route_table.items():
                router.get(pattern, handler)
                self.log.info("Registering api: %s%s%s", Fore.GREEN, pattern, Style.RESET_ALL)
                self.registered_routes.append(pattern)
        except ApiModuleLoadError as e:
            self.log.error("The api routes could not be registered: %s", e)
            self.state = BootstrapState.API_SKIPPED
            return None

        try:
            server = create_api_server(api.port, router, self.api_steps, ssl_context=ssl_context, bind=self.bind)
        except OSError as e:
            self.log.error("Failed to start api server on port %d: %s", api.port, e)
            self.state = BootstrapState.API_SKIPPED
            return None

        self.state = BootstrapState.API_SERVER_LISTENING
        self.log.info("Api server listening on %s", server.url)
        return server

    def _log_fingerprint(self, tls_material: Optional[TLSMaterial]):
        if tls_material is None or tls_material.is_pfx:
            return
        try:
            fingerprint = get_cert_fingerprint(tls_material.certificate)
        except (subprocess.CalledProcessError, OSError) as e:
            self.log.debug("Could not compute certificate fingerprint: %s", e)
            return
        self.log.info("Certificate fingerprint (SHA256): %s", fingerprint)
