"""CLI for the serve task.

Usage: devserve [--config PATH] [--port N] [--nobrowser] [--verbose]

Loads serve.yaml, applies the --port override, resolves TLS material when
HTTPS is on, starts the servers and opens the initial page.
"""

import argparse
import logging
import sys
from pathlib import Path

import colorama

from devserve.bootstrap import ServerBootstrap
from devserve.browser import build_initial_uri, open_browser
from devserve.config import ConfigError, load_serve_config, with_port_override
from devserve.httpd import serve_forever
from devserve.tls import CertificateStore

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="devserve",
        description="Serve a web project locally over HTTP or HTTPS",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument(
        "--config", "-c",
        type=Path,
        help="Config file (default: serve.yaml in the current directory)",
    )
    parser.add_argument(
        "--port", "-p",
        type=int,
        help="Override the static server port",
    )
    parser.add_argument(
        "--nobrowser",
        action="store_true",
        help="Do not open the initial page in a browser",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose logging",
    )
    return parser


def main(argv=None):
    """CLI entry point.

    Args:
        argv: Command line arguments (default: sys.argv[1:])

    Returns:
        Exit code
    """
    args = build_parser().parse_args(argv)

    level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    colorama.just_fix_windows_console()

    try:
        config = load_serve_config(args.config)
    except ConfigError as e:
        logger.error("%s", e)
        return 1

    # Port override must land before TLS resolution and bootstrap
    config = with_port_override(config, args.port)

    tls_material = CertificateStore().resolve(config) if config.https else None

    bootstrap = ServerBootstrap()
    try:
        handles = bootstrap.start(config, tls_material)
    except OSError as e:
        logger.error("Failed to start server on port %d: %s", config.port, e)
        return 1

    if not args.nobrowser:
        open_browser(build_initial_uri(config))

    serve_forever(handles.servers)
    return 0


if __name__ == "__main__":
    sys.exit(main())
