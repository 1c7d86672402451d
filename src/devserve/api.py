"""API route module loading and dispatch.

The API entry is a Python file exposing its routes either directly:

    routes = {"/hello": hello}

or wrapped in a `default` mapping:

    default = {"/hello": hello}

Handlers are called as handler(request, response). Route patterns may
contain `:name` segments, available to the handler as request.params.
"""

import importlib.util
import logging
import re
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

from devserve.middleware import Handler

logger = logging.getLogger(__name__)


class ApiModuleLoadError(Exception):
    """API entry module could not be loaded."""


@dataclass(frozen=True)
class FlatRoutes:
    """Module exposing a top-level `routes` mapping."""
    routes: dict


@dataclass(frozen=True)
class DefaultWrapped:
    """Module exposing its mapping as `default`."""
    routes: dict


RouteModule = Union[FlatRoutes, DefaultWrapped]


def _import_file(path: Path):
    module_name = f"devserve_api_{path.stem}"
    spec = importlib.util.spec_from_file_location(module_name, path)
    if spec is None or spec.loader is None:
        raise ApiModuleLoadError(f"Not a Python module: {path}")
    module = importlib.util.module_from_spec(spec)
    # Allow the entry to import siblings
    sys.path.insert(0, str(path.parent))
    try:
        spec.loader.exec_module(module)
    except Exception as e:
        raise ApiModuleLoadError(f"{path}: {type(e).__name__}: {e}") from e
    finally:
        sys.path.remove(str(path.parent))
    return module


def load_route_module(entry_path: Path) -> RouteModule:
    """Import the API entry file and classify its route export.

    Raises:
        ApiModuleLoadError: If the file is missing, raises on import, or
            exposes no route mapping
    """
    if not entry_path.is_file():
        raise ApiModuleLoadError(f"API entry not found: {entry_path}")

    module = _import_file(entry_path)

    default = getattr(module, "default", None)
    if isinstance(default, dict):
        return DefaultWrapped(default)

    routes = getattr(module, "routes", None)
    if isinstance(routes, dict):
        return FlatRoutes(routes)

    raise ApiModuleLoadError(f"{entry_path} exposes neither a 'routes' nor a 'default' mapping")


def normalize_routes(module: RouteModule) -> dict[str, Handler]:
    """Return the flat route mapping of a loaded module."""
    routes = dict(module.routes)
    for pattern, handler in routes.items():
        if not isinstance(pattern, str) or not callable(handler):
            raise ApiModuleLoadError(f"Invalid route entry: {pattern!r} -> {handler!r}")
        _compile(pattern)
    return routes


def load_route_table(root_path: Path, entry_path: str) -> dict[str, Handler]:
    """Load the route table for an API entry path relative to root_path."""
    return normalize_routes(load_route_module(root_path / entry_path))


_PARAM = re.compile(r":(\w+)")


def _compile_segment(segment: str) -> str:
    if segment == "*":
        return ".*"
    parts = []
    pos = 0
    # Param names end at the first non-word character: "/:id.json"
    for m in _PARAM.finditer(segment):
        parts.append(re.escape(segment[pos:m.start()]))
        parts.append(f"(?P<{m.group(1)}>[^/]+?)")
        pos = m.end()
    parts.append(re.escape(segment[pos:]))
    return "".join(parts)


def _compile(pattern: str) -> re.Pattern:
    """Compile an express-style route pattern.

    Raises:
        ApiModuleLoadError: If the pattern is invalid (e.g. a repeated param)
    """
    segments = [_compile_segment(s) for s in pattern.strip("/").split("/")]
    try:
        return re.compile("^/" + "/".join(segments) + "/?$")
    except re.error as e:
        raise ApiModuleLoadError(f"Invalid route pattern {pattern!r}: {e}") from e


class Router:
    """GET route registry; first registered matching pattern wins."""

    def __init__(self):
        self._routes: list[tuple[str, re.Pattern, Handler]] = []

    def __len__(self):
        return len(self._routes)

    @property
    def patterns(self) -> list[str]:
        return [pattern for pattern, _, _ in self._routes]

    def get(self, pattern: str, handler: Handler) -> None:
        """Register a GET handler.

        Raises:
            ApiModuleLoadError: If the pattern is invalid
        """
        self._routes.append((pattern, _compile(pattern), handler))

    def match(self, path: str) -> tuple[Optional[Handler], dict]:
        """Find the handler for path.

        Returns:
            (handler, params), or (None, {}) when nothing matches
        """
        for _, regex, handler in self._routes:
            m = regex.match(path)
            if m:
                return handler, m.groupdict()
        return None, {}
