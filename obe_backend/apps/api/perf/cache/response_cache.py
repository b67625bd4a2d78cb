"""Redis-backed HTTP response cache for GET endpoints.

The middleware memoizes JSON responses by URL + query string:

- hit: answer immediately with ``{"success", "data", "cached", "timestamp"}``
  and never call the route handler
- miss: call the handler, copy its JSON body as it streams out and store it
  with the configured TTL once the client has the full response
- only 2xx ``application/json`` responses are stored

The cache is best-effort. ``CacheClient`` turns Redis failures into misses and
no-op writes, and a missing cache or failing key generator simply passes the
request through.

Successful writes (POST/PUT/PATCH/DELETE) under the default key scheme delete
the cached GET responses of the same resource, so edits are visible before the
TTL runs out.
"""

from __future__ import annotations

import json
import logging
import re
from datetime import datetime, timezone
from typing import Any, Callable, Optional, Sequence

from starlette.datastructures import MutableHeaders
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from obe_backend.apps.api.perf.metrics import prometheus
from obe_backend.core.cache import CacheClient, get_cache

logger = logging.getLogger(__name__)

KEY_PREFIX = "cache:"

KeyGenerator = Callable[[Request], str]

_ID_SEGMENT = re.compile(r"^(\d+|[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12})$")
_GLOB_SPECIAL = re.compile(r"([\\*?\[\]])")
_SAFE_METHODS = frozenset({"HEAD", "OPTIONS"})


def _serialize_query(request: Request) -> str:
    params: dict[str, Any] = {}
    for key, value in request.query_params.multi_items():
        if key not in params:
            params[key] = value
        elif isinstance(params[key], list):
            params[key].append(value)
        else:
            params[key] = [params[key], value]
    return json.dumps(params, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def default_cache_key(request: Request) -> str:
    return f"{KEY_PREFIX}{request.url.path}:{_serialize_query(request)}"


def resource_prefix(path: str) -> str:
    """Collection path a write belongs to; everything from the first id on is dropped.

    ``/api/config/departments/12`` and ``/api/config/users/5/deactivate`` map to
    ``/api/config/departments`` and ``/api/config/users``.
    """
    resource: list[str] = []
    for part in (path or "").split("/"):
        if not part:
            continue
        if _ID_SEGMENT.match(part):
            break
        resource.append(part)
    return "/" + "/".join(resource)


def invalidation_pattern(path: str) -> str:
    escaped = _GLOB_SPECIAL.sub(r"\\\1", resource_prefix(path))
    return f"{KEY_PREFIX}{escaped}*"


class ResponseCacheMiddleware:
    """ASGI middleware memoizing GET JSON responses in Redis."""

    def __init__(
        self,
        app: ASGIApp,
        *,
        ttl_seconds: int = 300,
        key_generator: Optional[KeyGenerator] = None,
        cache: Optional[CacheClient] = None,
        include_prefixes: Sequence[str] = (),
        invalidate_on_write: bool = True,
        cache_type: str = "response",
    ) -> None:
        self.app = app
        self.ttl_seconds = ttl_seconds
        self.key_generator = key_generator or default_cache_key
        self.include_prefixes = tuple(include_prefixes)
        # Invalidation only knows the default key layout.
        self.invalidate_on_write = invalidate_on_write and key_generator is None
        self.cache_type = cache_type
        self._cache = cache

    def _resolve_cache(self, scope: Scope) -> Optional[CacheClient]:
        if self._cache is not None:
            return self._cache
        app = scope.get("app")
        state_cache = getattr(getattr(app, "state", None), "cache", None)
        if state_cache is not None:
            return state_cache
        try:
            return get_cache()
        except RuntimeError:
            return None

    def _applies(self, path: str) -> bool:
        return not self.include_prefixes or path.startswith(self.include_prefixes)

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope.get("type") != "http" or not self._applies(str(scope.get("path") or "")):
            await self.app(scope, receive, send)
            return

        method = str(scope.get("method") or "GET").upper()
        cache = self._resolve_cache(scope)
        if cache is None or method in _SAFE_METHODS:
            await self.app(scope, receive, send)
        elif method == "GET":
            await self._serve_get(cache, scope, receive, send)
        elif self.invalidate_on_write:
            await self._serve_write(cache, scope, receive, send)
        else:
            await self.app(scope, receive, send)

    async def _serve_get(self, cache: CacheClient, scope: Scope, receive: Receive, send: Send) -> None:
        try:
            key = self.key_generator(Request(scope))
        except Exception:
            logger.warning("Cache key generation failed, serving uncached", exc_info=True)
            await self.app(scope, receive, send)
            return

        cached = await cache.get(key)
        if cached is not None:
            logger.debug("Cache hit for key: %s", key)
            prometheus.record_cache_hit(self.cache_type)
            response = JSONResponse(
                {
                    "success": True,
                    "data": cached,
                    "cached": True,
                    "timestamp": datetime.now(timezone.utc).isoformat(),
                },
                headers={"X-Cache": "HIT"},
            )
            await response(scope, receive, send)
            return

        prometheus.record_cache_miss(self.cache_type)
        cacheable = False
        chunks: list[bytes] = []

        async def send_wrapper(message: Message) -> None:
            nonlocal cacheable
            if message["type"] == "http.response.start":
                headers = MutableHeaders(scope=message)
                status = int(message.get("status") or 500)
                cacheable = (
                    200 <= status < 300
                    and headers.get("content-type", "").startswith("application/json")
                    and "content-encoding" not in headers
                )
                headers.append("X-Cache", "MISS")
            elif message["type"] == "http.response.body" and cacheable:
                chunks.append(message.get("body", b""))
                if not message.get("more_body", False):
                    await send(message)
                    await self._store(cache, key, b"".join(chunks))
                    return
            await send(message)

        await self.app(scope, receive, send_wrapper)

    async def _store(self, cache: CacheClient, key: str, raw_body: bytes) -> None:
        try:
            body = json.loads(raw_body)
        except ValueError:
            logger.debug("Response for %s is not valid JSON, not caching", key)
            return
        await cache.set(key, body, ttl_seconds=self.ttl_seconds)

    async def _serve_write(self, cache: CacheClient, scope: Scope, receive: Receive, send: Send) -> None:
        status = 500

        async def send_wrapper(message: Message) -> None:
            nonlocal status
            if message["type"] == "http.response.start":
                status = int(message.get("status") or 500)
            await send(message)

        await self.app(scope, receive, send_wrapper)
        if 200 <= status < 300:
            await cache.delete_pattern(invalidation_pattern(str(scope.get("path") or "")))


def cache_middleware(
    ttl_seconds: int = 300,
    key_generator: Optional[KeyGenerator] = None,
    **options: Any,
) -> Callable[[ASGIApp], ResponseCacheMiddleware]:
    """Build a wrapper that caches one ASGI app (a mounted router, say).

    Usage:
        config_app = FastAPI()
        config_app.include_router(departments.router)
        app.mount("/api/config", cache_middleware(300)(config_app))
    """

    def wrap(app: ASGIApp) -> ResponseCacheMiddleware:
        return ResponseCacheMiddleware(
            app,
            ttl_seconds=ttl_seconds,
            key_generator=key_generator,
            **options,
        )

    return wrap


__all__ = [
    "KEY_PREFIX",
    "ResponseCacheMiddleware",
    "cache_middleware",
    "default_cache_key",
    "invalidation_pattern",
    "resource_prefix",
]
