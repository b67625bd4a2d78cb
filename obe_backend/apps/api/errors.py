"""JSON error responses for unmatched routes, rate limits and crashes."""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.exception_handlers import http_exception_handler
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from obe_backend.apps.api.security import RateLimitExceeded, _rate_limit_exceeded_handler

logger = logging.getLogger(__name__)


def register_exception_handlers(app: FastAPI, *, environment: str = "development") -> None:
    show_details = environment == "development"

    async def not_found_or_http_error(request: Request, exc: StarletteHTTPException):
        # Only the router's own 404 means "no such route"; handlers may raise theirs.
        if exc.status_code == 404 and exc.detail == "Not Found":
            return JSONResponse({"message": "Route not found"}, status_code=404)
        return await http_exception_handler(request, exc)

    async def unhandled_error(request: Request, exc: Exception) -> JSONResponse:
        logger.error(
            "Unhandled error on %s %s",
            request.method,
            request.url.path,
            exc_info=(type(exc), exc, exc.__traceback__),
        )
        return JSONResponse(
            {
                "message": "Something went wrong!",
                "error": str(exc) if show_details else {},
            },
            status_code=500,
        )

    app.add_exception_handler(StarletteHTTPException, not_found_or_http_error)
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_exception_handler(Exception, unhandled_error)


__all__ = ["register_exception_handlers"]
