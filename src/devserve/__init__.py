"""Local development server with static files, an optional API and HTTPS.

The static server and API server share one TLS identity, resolved from a
PFX file, a PEM key/cert pair or a generated development certificate.
"""

from devserve.config import (
    ServeConfig,
    ApiConfig,
    ConfigError,
    load_serve_config,
    with_port_override,
    DEFAULT_PORT,
    DEFAULT_API_PORT,
)
from devserve.tls import (
    TLSMaterial,
    CertificateStore,
    build_ssl_context,
)
from devserve.certificates import (
    DevCertificate,
    ensure_certificate,
)
from devserve.middleware import (
    Middleware,
    Pipeline,
    Request,
    Response,
    static_pipeline,
    api_pipeline,
)
from devserve.api import (
    ApiModuleLoadError,
    Router,
    load_route_table,
)
from devserve.bootstrap import (
    BootstrapState,
    ServerBootstrap,
    ServerHandles,
)
from devserve.httpd import serve_forever

__all__ = [
    # Config
    "ServeConfig",
    "ApiConfig",
    "ConfigError",
    "load_serve_config",
    "with_port_override",
    "DEFAULT_PORT",
    "DEFAULT_API_PORT",
    # TLS
    "TLSMaterial",
    "CertificateStore",
    "build_ssl_context",
    "DevCertificate",
    "ensure_certificate",
    # Middleware
    "Middleware",
    "Pipeline",
    "Request",
    "Response",
    "static_pipeline",
    "api_pipeline",
    # API
    "ApiModuleLoadError",
    "Router",
    "load_route_table",
    # Servers
    "BootstrapState",
    "ServerBootstrap",
    "ServerHandles",
    "serve_forever",
]
