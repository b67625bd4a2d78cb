"""Redis endpoint parsing shared by the response cache and the rate limiter."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional
from urllib.parse import quote, unquote, urlparse

logger = logging.getLogger(__name__)

_SCHEMES = {"redis": False, "rediss": True}


@dataclass(frozen=True)
class RedisTarget:
    host: str
    port: int
    db: int
    password: Optional[str]
    ssl: bool = False

    def to_url(self, *, hide_password: bool = True) -> str:
        scheme = "rediss" if self.ssl else "redis"
        auth = ""
        if self.password:
            auth = ":***@" if hide_password else f":{quote(self.password, safe='')}@"
        return f"{scheme}://{auth}{self.host}:{self.port}/{self.db}"


def parse_redis_target(redis_url: str, *, component: str) -> RedisTarget:
    """Split ``redis[s]://[:password@]host[:port][/db]``; bad db numbers mean db 0."""
    parsed = urlparse(redis_url)
    if parsed.scheme not in _SCHEMES:
        raise ValueError(f"Unsupported Redis URL scheme for {component}: {parsed.scheme or '<none>'}")
    try:
        db = int(parsed.path.strip("/") or "0")
    except ValueError:
        db = 0
    target = RedisTarget(
        host=parsed.hostname or "localhost",
        port=parsed.port or 6379,
        db=db,
        password=unquote(parsed.password) if parsed.password else None,
        ssl=_SCHEMES[parsed.scheme],
    )
    logger.info("Redis %s target: %s", component, target.to_url())
    return target


__all__ = ["RedisTarget", "parse_redis_target"]
