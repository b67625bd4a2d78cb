"""FastAPI dependencies exposing the data-access layer to route modules.

The lifespan stores the pools, router and cache on ``app.state``; handlers
receive them through ``Depends`` instead of importing module globals.

Usage:
    @router.get("/departments/all")
    async def all_departments(db: QueryRouter = Depends(get_query_router)):
        result = await db.query("SELECT id, department_name FROM departments")
        return {"data": result.rows}
"""

from typing import Optional

from fastapi import HTTPException, Request

from obe_backend.core.cache import CacheClient, get_cache
from obe_backend.core.db import DatabaseCluster
from obe_backend.core.routing import QueryRouter


def get_query_router(request: Request) -> QueryRouter:
    router = getattr(request.app.state, "query_router", None)
    if router is None:
        raise HTTPException(status_code=503, detail="Database is not initialised")
    return router


def get_database(request: Request) -> DatabaseCluster:
    cluster = getattr(request.app.state, "database", None)
    if cluster is None:
        raise HTTPException(status_code=503, detail="Database is not initialised")
    return cluster


def get_cache_client(request: Request) -> Optional[CacheClient]:
    """Return the cache client, or ``None`` when caching is disabled."""
    cache = getattr(request.app.state, "cache", None)
    if cache is not None:
        return cache
    try:
        return get_cache()
    except RuntimeError:
        return None


__all__ = ["get_cache_client", "get_database", "get_query_router"]
