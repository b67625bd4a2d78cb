"""HTTP middleware for security headers and request correlation."""

from __future__ import annotations

import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from obe_backend.core.logging import reset_request_id, set_request_id


class SecureHeadersMiddleware(BaseHTTPMiddleware):
    """Apply a baseline of security headers for every response."""

    _csp = (
        "default-src 'self'; "
        "style-src 'self' 'unsafe-inline'; "
        "script-src 'self'; "
        "img-src 'self' data: https:; "
        "frame-ancestors 'none'; "
        "base-uri 'self'; "
        "object-src 'none';"
    )

    async def dispatch(self, request: Request, call_next):
        response: Response = await call_next(request)

        response.headers.setdefault("Content-Security-Policy", self._csp)
        response.headers.setdefault("X-Frame-Options", "DENY")
        response.headers.setdefault("X-Content-Type-Options", "nosniff")
        response.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
        response.headers.setdefault("Cross-Origin-Opener-Policy", "same-origin")
        response.headers.setdefault("Cross-Origin-Resource-Policy", "same-origin")

        if request.url.scheme == "https":
            response.headers.setdefault(
                "Strict-Transport-Security",
                "max-age=31536000; includeSubDomains",
            )

        return response


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Add X-Request-ID header for request tracing and correlation."""

    HEADER_NAME = "X-Request-ID"

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get(self.HEADER_NAME) or str(uuid.uuid4())
        request.state.request_id = request_id

        # Every log record emitted while handling this request carries the id.
        token = set_request_id(request_id)
        try:
            response: Response = await call_next(request)
            response.headers[self.HEADER_NAME] = request_id
            return response
        finally:
            reset_request_id(token)


__all__ = ["RequestIDMiddleware", "SecureHeadersMiddleware"]
