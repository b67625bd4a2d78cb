"""Per-request HTTP metrics.

Implemented as plain ASGI middleware (not BaseHTTPMiddleware) so the status
code is read straight off ``http.response.start`` and streaming responses are
not buffered.
"""

from __future__ import annotations

import time
from typing import Any, Callable

from obe_backend.apps.api.perf.metrics import prometheus


def _route_label(scope: dict[str, Any]) -> str:
    """Return a low-cardinality route label (prefer the route template)."""

    route = scope.get("route")
    path = getattr(route, "path", None)
    if isinstance(path, str) and path:
        return path
    return _sanitize_path(str(scope.get("path") or ""))


def _sanitize_path(path: str) -> str:
    # Unmatched paths: collapse ids so scanners cannot explode label cardinality.
    parts = []
    for part in (path or "").split("/"):
        if not part:
            continue
        if part.isdigit():
            parts.append("{id}")
            continue
        if len(part) == 36 and part.count("-") == 4:
            parts.append("{uuid}")
            continue
        parts.append(part)
    return "/" + "/".join(parts)


class HTTPMetricsMiddleware:
    """Observe duration and count per (method, route, status_code)."""

    def __init__(self, app) -> None:
        self.app = app

    async def __call__(self, scope: dict[str, Any], receive: Callable, send: Callable) -> None:
        if scope.get("type") != "http":
            await self.app(scope, receive, send)
            return

        method = str(scope.get("method") or "GET")
        prometheus.HTTP_INFLIGHT.inc()
        start = time.perf_counter()
        status_code = 500

        async def send_wrapper(message: dict[str, Any]) -> None:
            nonlocal status_code
            if message.get("type") == "http.response.start":
                status_code = int(message.get("status") or 500)
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        finally:
            duration = max(0.0, time.perf_counter() - start)
            prometheus.HTTP_INFLIGHT.dec()
            prometheus.observe_http(
                method=method,
                route=_route_label(scope),
                status_code=status_code,
                duration_seconds=duration,
            )
