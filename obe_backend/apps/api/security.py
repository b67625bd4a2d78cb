"""Rate limiting for the public API."""

from __future__ import annotations

import logging
from typing import Callable, Iterable

from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from obe_backend.core.redis_factory import parse_redis_target
from obe_backend.core.settings import Settings

logger = logging.getLogger(__name__)


def build_limiter(settings: Settings, exempt: Iterable[Callable] = ()) -> Limiter:
    """
    Create the per-client rate limiter.

    Storage backend selection:
    - Redis configured: limits are shared by every worker and survive restarts
    - otherwise: in-memory storage, per worker (fine for development)

    Storage errors never fail a request: the limiter swallows them and falls
    back to memory until Redis answers again.
    """

    storage_uri = "memory://"
    if settings.rate_limit_enabled and settings.redis_url:
        target = parse_redis_target(settings.redis_url, component="rate limiter")
        storage_uri = target.to_url(hide_password=False)
        logger.info("Rate limiter using Redis storage")
    elif settings.rate_limit_enabled:
        logger.warning(
            "Rate limiter using in-memory storage (not shared between workers). "
            "Set REDIS_URL to enable Redis storage."
        )

    limiter = Limiter(
        key_func=get_remote_address,
        default_limits=[f"{settings.rate_limit_max}/{settings.rate_limit_window_seconds} seconds"],
        enabled=settings.rate_limit_enabled,
        storage_uri=storage_uri,
        in_memory_fallback_enabled=storage_uri != "memory://",
        swallow_errors=True,
    )
    for endpoint in exempt:
        limiter.exempt(endpoint)
    return limiter


__all__ = [
    "RateLimitExceeded",
    "_rate_limit_exceeded_handler",
    "build_limiter",
]
