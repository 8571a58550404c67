"""
HTTP Router: Request Routing and Handler Dispatch

Transport-agnostic request/response types plus a small regex router.
Supports:
- Path parameter extraction
- Query string parsing
- Method-based dispatch with 404 / 405 distinction
- Middleware chains
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, Sequence
from urllib.parse import parse_qs, urlparse

from countdownmesh.core.errors import (
    CountdownError,
    InternalError,
    MethodNotAllowedError,
    NotFoundError,
)

logger = logging.getLogger(__name__)


@dataclass
class Request:
    """HTTP request representation."""
    method: str
    path: str
    query_params: dict[str, list[str]] = field(default_factory=dict)
    headers: dict[str, str] = field(default_factory=dict)
    body: bytes = b""
    path_params: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_raw(
        cls,
        method: str,
        url: str,
        headers: Optional[dict[str, str]] = None,
        body: bytes = b"",
    ) -> Request:
        """Parse request from raw HTTP data."""
        parsed = urlparse(url)
        return cls(
            method=method.upper(),
            path=parsed.path or "/",
            query_params=parse_qs(parsed.query),
            headers={k.lower(): v for k, v in (headers or {}).items()},
            body=body,
        )

    @classmethod
    def build(
        cls,
        method: str,
        url: str,
        payload: Any = None,
        headers: Optional[dict[str, str]] = None,
    ) -> Request:
        """Convenience constructor with a JSON-encoded body."""
        body = b"" if payload is None else json.dumps(payload).encode("utf-8")
        return cls.from_raw(method, url, headers, body)

    def json(self) -> Any:
        """Parse body as JSON."""
        if not self.body:
            return None
        return json.loads(self.body)

    def json_object(self) -> dict[str, Any]:
        """Body as a JSON object; malformed or non-object bodies read as {}."""
        try:
            data = self.json()
        except (ValueError, UnicodeDecodeError):
            return {}
        return data if isinstance(data, dict) else {}

    def header(self, key: str, default: Optional[str] = None) -> Optional[str]:
        """Get header value (case-insensitive)."""
        return self.headers.get(key.lower(), default)

    def with_path(self, path: str) -> Request:
        """Copy addressed to a different path, e.g. after prefix stripping."""
        return Request(
            method=self.method,
            path=path or "/",
            query_params=self.query_params,
            headers=self.headers,
            body=self.body,
        )


@dataclass
class Response:
    """HTTP response representation."""
    status: int = 200
    body: bytes = b""
    headers: dict[str, str] = field(default_factory=dict)

    @classmethod
    def json(
        cls,
        data: Any,
        status: int = 200,
        headers: Optional[dict[str, str]] = None,
    ) -> Response:
        """Create JSON response."""
        body = json.dumps(data, default=str).encode()
        h = dict(headers or {})
        h["content-type"] = "application/json"
        return cls(status=status, body=body, headers=h)

    @classmethod
    def from_error(cls, error: CountdownError) -> Response:
        """Render a coded error with its HTTP status."""
        return cls.json(error.to_response_body(), status=error.http_status)

    @classmethod
    def empty(cls, status: int = 204, headers: Optional[dict[str, str]] = None) -> Response:
        return cls(status=status, headers=dict(headers or {}))

    def data(self) -> Any:
        """Decoded JSON body."""
        return json.loads(self.body) if self.body else None


# Handler function signature
Handler = Callable[[Request], Awaitable[Response]]

# Middleware function signature
Middleware = Callable[[Request, Handler], Awaitable[Response]]


@dataclass
class Route:
    """Route definition."""
    method: str
    pattern: re.Pattern
    handler: Handler
    param_names: list[str]

    @classmethod
    def create(cls, method: str, path: str, handler: Handler) -> Route:
        """Create route from path pattern."""
        param_names: list[str] = []

        def replace_param(match: re.Match) -> str:
            param_names.append(match.group(1))
            # {name:path} also matches slashes, including the empty rest
            body = ".*" if match.group(2) else "[^/]+"
            return r"(?P<" + match.group(1) + r">" + body + r")"

        pattern_str = re.sub(r"\{(\w+)(:path)?\}", replace_param, path)
        pattern_str = f"^{pattern_str}$"

        return cls(
            method=method.upper(),
            pattern=re.compile(pattern_str),
            handler=handler,
            param_names=param_names,
        )

    def match(self, method: str, path: str) -> Optional[dict[str, str]]:
        """Match request against route."""
        if method.upper() != self.method:
            return None

        match = self.pattern.match(path)
        if not match:
            return None

        return match.groupdict()


class Router:
    """
    HTTP request router.

    Usage:
        router = Router()

        @router.get("/sessions/{session_id}")
        async def get_session(request: Request) -> Response:
            session_id = request.path_params["session_id"]
            ...

        response = await router.dispatch(request)
    """

    __slots__ = ("_routes", "_middleware")

    def __init__(self) -> None:
        self._routes: list[Route] = []
        self._middleware: list[Middleware] = []

    def add(self, method: str, path: str, handler: Handler) -> None:
        """Register a handler directly, e.g. a bound method."""
        self._routes.append(Route.create(method, path, handler))

    def route(
        self,
        path: str,
        methods: Sequence[str] = ("GET",),
    ) -> Callable[[Handler], Handler]:
        """Register route decorator."""
        def decorator(handler: Handler) -> Handler:
            for method in methods:
                self.add(method, path, handler)
            return handler
        return decorator

    def get(self, path: str) -> Callable[[Handler], Handler]:
        return self.route(path, ["GET"])

    def use(self, middleware: Middleware) -> None:
        """Add middleware."""
        self._middleware.append(middleware)

    async def dispatch(self, request: Request) -> Response:
        """Route request to handler."""
        handler: Optional[Handler] = None

        for route in self._routes:
            params = route.match(request.method, request.path)
            if params is not None:
                request.path_params = params
                handler = route.handler
                break

        if handler is None:
            handler = self._fallback(request)

        final_handler = handler
        for mw in reversed(self._middleware):
            final_handler = self._wrap_middleware(mw, final_handler)

        try:
            return await final_handler(request)
        except CountdownError as e:
            return Response.from_error(e)
        except Exception as e:
            error = InternalError.unexpected(e)
            logger.exception(
                "Unhandled error while dispatching request",
                extra={"method": request.method, "path": request.path, "error_id": error.error_id},
            )
            return Response.from_error(error)

    def _fallback(self, request: Request) -> Handler:
        """Handler for unmatched requests: 405 if the path exists, else 404."""
        path_known = any(route.pattern.match(request.path) for route in self._routes)
        if path_known:
            error: CountdownError = MethodNotAllowedError.for_path(request.method, request.path)
        else:
            error = NotFoundError.route(request.method, request.path)

        async def respond(_: Request) -> Response:
            return Response.from_error(error)

        return respond

    def _wrap_middleware(
        self,
        middleware: Middleware,
        handler: Handler,
    ) -> Handler:
        """Wrap handler with middleware."""
        async def wrapped(request: Request) -> Response:
            return await middleware(request, handler)
        return wrapped
