"""
Gateway: Edge Routing to Group Coordinators

Routes:
    GET  /health                        liveness and loaded group count
    GET  /metrics                       coordinator metric snapshot
    POST /api/groups                    create a group (caller id or a fresh one)
    *    /api/groups/{group_id}/...     forwarded to that group's coordinator

Middleware:
- CorsMiddleware: permissive CORS headers and OPTIONS preflight
- AccessLogMiddleware: one structured log line per request
"""

from __future__ import annotations

import json
import time
from typing import Optional
from urllib.parse import unquote

from countdownmesh.api.router import Handler, Request, Response, Router
from countdownmesh.core.errors import ValidationError
from countdownmesh.core.types import GroupId
from countdownmesh.group.registry import CoordinatorRegistry
from countdownmesh.observability.logging import StructuredLogger

logger = StructuredLogger(__name__)

FORWARDED_METHODS = ("GET", "POST", "PATCH", "DELETE")

CORS_HEADERS = {
    "access-control-allow-origin": "*",
    "access-control-allow-methods": "GET,POST,PATCH,DELETE,OPTIONS",
    "access-control-allow-headers": "Content-Type, If-Match",
}


class CorsMiddleware:
    """Adds CORS headers to every response and answers preflight requests."""

    __slots__ = ("_headers",)

    def __init__(self, headers: Optional[dict[str, str]] = None) -> None:
        self._headers = dict(headers or CORS_HEADERS)

    async def __call__(self, request: Request, handler: Handler) -> Response:
        if request.method == "OPTIONS":
            return Response.empty(204, headers=self._headers)

        response = await handler(request)
        for key, value in self._headers.items():
            response.headers.setdefault(key, value)
        return response


class AccessLogMiddleware:
    """Logs method, path, status and latency."""

    __slots__ = ()

    async def __call__(self, request: Request, handler: Handler) -> Response:
        start = time.perf_counter()
        response = await handler(request)
        logger.info(
            "Request served",
            method=request.method,
            path=request.path,
            status=response.status,
            duration_ms=round((time.perf_counter() - start) * 1000, 3),
        )
        return response


class Gateway:
    """
    Front door for all groups.

    Usage:
        gateway = Gateway(registry)
        response = await gateway.handle(
            Request.build("POST", "/api/groups", {"label": "Finals"})
        )
    """

    __slots__ = ("_registry", "_router")

    def __init__(self, registry: CoordinatorRegistry) -> None:
        self._registry = registry
        self._router = Router()
        self._router.use(CorsMiddleware())
        self._router.use(AccessLogMiddleware())

        self._router.add("GET", "/health", self._health)
        self._router.add("GET", "/metrics", self._metrics)
        self._router.add("POST", "/api/groups", self._create_group)
        for method in FORWARDED_METHODS:
            self._router.add(method, "/api/groups/{group_id}{rest:path}", self._forward)

    @property
    def registry(self) -> CoordinatorRegistry:
        return self._registry

    async def handle(self, request: Request) -> Response:
        return await self._router.dispatch(request)

    async def _health(self, request: Request) -> Response:
        return Response.json({"status": "ok", "groups": len(self._registry)})

    async def _metrics(self, request: Request) -> Response:
        return Response.json(self._registry.metrics.snapshot())

    async def _create_group(self, request: Request) -> Response:
        """Bootstrap a group under the caller's id, or a freshly minted one."""
        payload = request.json_object()
        if not payload.get("label"):
            return Response.from_error(ValidationError.missing_fields("label"))

        raw_id = payload.get("groupId")
        if isinstance(raw_id, str) and not raw_id.strip():
            raw_id = None
        if raw_id:
            parsed = GroupId.parse(raw_id)
            if parsed.is_err():
                return Response.from_error(
                    ValidationError.invalid_field("groupId", raw_id, parsed.error),
                )
            group_id = parsed.unwrap()
        else:
            group_id = GroupId.generate()
        payload["groupId"] = group_id.value

        forwarded = Request(
            method="POST",
            path="/bootstrap",
            query_params=request.query_params,
            headers=request.headers,
            body=json.dumps(payload).encode("utf-8"),
        )
        return await self._registry.fetch(group_id, forwarded)

    async def _forward(self, request: Request) -> Response:
        raw_id = unquote(request.path_params["group_id"])
        parsed = GroupId.parse(raw_id)
        if parsed.is_err():
            return Response.from_error(
                ValidationError.invalid_field("groupId", raw_id, parsed.error),
            )

        rest = request.path_params.get("rest") or "/"
        return await self._registry.fetch(parsed.unwrap(), request.with_path(rest))
