"""
API module: transport-agnostic HTTP primitives.

The edge gateway lives in countdownmesh.api.gateway and is imported from
there directly, since it depends on the group package.
"""

from countdownmesh.api.router import Request, Response, Route, Router

__all__ = [
    "Request",
    "Response",
    "Route",
    "Router",
]
