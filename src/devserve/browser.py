"""Initial page launch."""

import logging
import re
import webbrowser

from devserve.config import ServeConfig

logger = logging.getLogger(__name__)


def build_initial_uri(config: ServeConfig) -> str:
    """Return the URI to open for config.initial_page on the static port."""
    page = config.initial_page
    if re.match(r"^https?://", page):
        return page
    if not page.startswith("/"):
        page = f"/{page}"
    return f"{config.scheme}://localhost:{config.port}{page}"


def open_browser(uri: str) -> bool:
    """Open uri in the default browser; returns False if none is available."""
    logger.info("Opening %s", uri)
    try:
        opened = webbrowser.open(uri)
    except webbrowser.Error as e:
        logger.warning("Could not open browser: %s", e)
        return False
    if not opened:
        logger.warning("No browser available to open %s", uri)
    return opened
