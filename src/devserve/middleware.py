"""Request middleware shared by the static and API servers.

Every request runs through an ordered list of Middleware steps before the
underlying handler (file server or API route). Steps mutate the Response
and must call next() exactly once; none of them ends a request itself.

    static: RequestLogger -> CorsHeaders
    api:    RequestLogger -> CorsHeaders -> JsonContentType
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Callable, Iterable, Optional

from colorama import Fore, Style

logger = logging.getLogger(__name__)

JSON_CONTENT_TYPE = "application/json"


@dataclass
class Request:
    """Incoming request as seen by middleware and route handlers."""
    method: str
    path: str
    client_address: Optional[str] = None
    headers: dict = field(default_factory=dict)
    params: dict = field(default_factory=dict)
    query: dict = field(default_factory=dict)


class Response:
    """Outgoing response state, filled in by middleware and handlers."""

    def __init__(self):
        self.status = 200
        self.body = b""
        self._headers: dict[str, tuple[str, str]] = {}

    def set_header(self, name: str, value: str) -> None:
        self._headers[name.lower()] = (name, value)

    def get_header(self, name: str) -> Optional[str]:
        entry = self._headers.get(name.lower())
        return entry[1] if entry else None

    def remove_header(self, name: str) -> None:
        self._headers.pop(name.lower(), None)

    @property
    def headers(self) -> list[tuple[str, str]]:
        return list(self._headers.values())

    def send(self, body, status: Optional[int] = None) -> None:
        """Set the response body (str is encoded as UTF-8)."""
        if status is not None:
            self.status = status
        self.body = body.encode("utf-8") if isinstance(body, str) else bytes(body)

    def json(self, data, status: Optional[int] = None) -> None:
        """Serialize data as the JSON response body."""
        self.set_header("Content-Type", JSON_CONTENT_TYPE)
        self.send(json.dumps(data), status)


Next = Callable[[], None]
Handler = Callable[[Request, Response], None]


class Middleware:
    """A single step in the request pipeline."""

    def process(self, request: Request, response: Response, next: Next) -> None:
        raise NotImplementedError


class RequestLogger(Middleware):
    """Logs the caller address and path of every request.

    Bundle scripts, other scripts and all other resources are coloured
    differently.
    """

    def __init__(self, log: Optional[logging.Logger] = None):
        self.log = log or logger

    @staticmethod
    def resource_color(path: str) -> str:
        if ".bundle.js" in path:
            return Fore.GREEN
        if ".js" in path:
            return Fore.MAGENTA
        return Fore.CYAN

    def process(self, request, response, next):
        if request.path:
            address = ""
            if request.client_address:
                address = f"[{Fore.CYAN}{request.client_address}{Style.RESET_ALL}] "
            color = self.resource_color(request.path)
            self.log.info("  Request: %s'%s%s%s'", address, color, request.path, Style.RESET_ALL)
        next()


class CorsHeaders(Middleware):
    """Allows cross-origin requests from any origin."""

    def process(self, request, response, next):
        response.set_header("Access-Control-Allow-Origin", "*")
        next()


class JsonContentType(Middleware):
    """Defaults the response content type to JSON (API server only)."""

    def process(self, request, response, next):
        response.set_header("Content-Type", JSON_CONTENT_TYPE)
        next()


class Pipeline:
    """Ordered middleware chain ending in a handler."""

    def __init__(self, steps: Iterable[Middleware] = ()):
        self.steps = tuple(steps)

    def __len__(self):
        return len(self.steps)

    def extend(self, *steps: Middleware) -> "Pipeline":
        """Return a new pipeline with steps appended."""
        return Pipeline(self.steps + steps)

    def run(self, request: Request, response: Response, handler: Handler) -> None:
        """Run every step in order, then handler.

        Raises:
            RuntimeError: If a step skips or repeats its next() call
        """
        self._dispatch(0, request, response, handler)

    def _dispatch(self, index, request, response, handler):
        if index == len(self.steps):
            handler(request, response)
            return

        step = self.steps[index]
        calls = 0

        def next():
            nonlocal calls
            calls += 1
            if calls > 1:
                raise RuntimeError(f"{type(step).__name__} called next() more than once")
            self._dispatch(index + 1, request, response, handler)

        step.process(request, response, next)
        if calls == 0:
            raise RuntimeError(f"{type(step).__name__} did not call next()")


def static_pipeline(log: Optional[logging.Logger] = None) -> Pipeline:
    """Pipeline for the static file server."""
    return Pipeline([RequestLogger(log), CorsHeaders()])


def api_pipeline(log: Optional[logging.Logger] = None) -> Pipeline:
    """Pipeline for the API server: the static steps plus JSON content type."""
    return static_pipeline(log).extend(JsonContentType())
