"""FastAPI application wiring for the OBE API."""

import logging
import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from slowapi.middleware import SlowAPIMiddleware

from obe_backend.apps.api.errors import register_exception_handlers
from obe_backend.apps.api.middleware import RequestIDMiddleware, SecureHeadersMiddleware
from obe_backend.apps.api.perf.cache.response_cache import ResponseCacheMiddleware
from obe_backend.apps.api.perf.metrics.http_metrics import HTTPMetricsMiddleware
from obe_backend.apps.api.perf.metrics.pool_stats import start_pool_stats_task
from obe_backend.apps.api.routers import metrics, system
from obe_backend.apps.api.security import build_limiter
from obe_backend.core.cache import CacheClient, CacheConfig, init_cache, reset_cache
from obe_backend.core.db import DatabaseCluster
from obe_backend.core.error_handler import GracefulShutdown, setup_global_exception_handler
from obe_backend.core.logging import configure_logging
from obe_backend.core.metrics import get_metrics
from obe_backend.core.routing import QueryRouter
from obe_backend.core.settings import Settings, get_settings

request_logger = logging.getLogger("obe.api.requests")
logger = logging.getLogger(__name__)

CACHED_PREFIXES = ("/api",)


async def _initialize_cache(app: FastAPI, settings: Settings) -> Optional[CacheClient]:
    """Connect the response cache; returns the client only if this call created it."""
    injected: Optional[CacheClient] = getattr(app.state, "cache", None)
    if injected is not None:
        app.state.cache_status = "ok" if await injected.ping() else "degraded"
        return None

    if not settings.redis_url:
        app.state.cache_status = "disabled"
        if settings.environment == "production":
            logger.warning("REDIS_URL not set in production - response cache disabled")
        else:
            logger.info("Response cache disabled (no REDIS_URL)")
        return None

    cache = init_cache(CacheConfig.from_url(settings.redis_url))
    await cache.connect()
    app.state.cache = cache
    if await cache.ping():
        app.state.cache_status = "ok"
    else:
        app.state.cache_status = "degraded"
        logger.error("Redis unreachable; serving uncached responses until it answers")
    return cache


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager with graceful startup and shutdown."""
    setup_global_exception_handler()
    logger.info("Starting OBE API...")

    settings: Settings = app.state.settings
    shutdown_manager = GracefulShutdown(timeout=10.0)
    get_metrics().slow_query_threshold_ms = settings.slow_query_ms

    cluster: Optional[DatabaseCluster] = getattr(app.state, "database", None)
    owns_cluster = cluster is None
    if cluster is None:
        cluster = DatabaseCluster.from_settings(settings)
        app.state.database = cluster
    app.state.query_router = QueryRouter(cluster, slow_query_ms=settings.slow_query_ms)

    try:
        await cluster.connect()
        app.state.db_available = True
    except Exception as exc:
        app.state.db_available = False
        logger.error("Database unavailable at startup: %s", exc, exc_info=True)

    owned_cache: Optional[CacheClient] = None
    try:
        owned_cache = await _initialize_cache(app, settings)
    except Exception as exc:
        app.state.cache_status = "degraded"
        logger.error("Cache failed to start: %s", exc, exc_info=True)

    if settings.metrics_enabled:
        shutdown_manager.add_task(start_pool_stats_task(cluster, settings.pool_stats_interval))
        logger.info("Pool statistics sampler started")

    logger.info(
        "Application started (database=%s, cache=%s)",
        "ok" if app.state.db_available else "unavailable",
        app.state.cache_status,
    )

    try:
        yield
    finally:
        logger.info("Shutting down application...")

        await shutdown_manager.shutdown()

        if owned_cache is not None:
            try:
                await owned_cache.disconnect()
            except Exception as exc:
                logger.error("Error disconnecting cache: %s", exc)
            reset_cache()

        if owns_cluster:
            await cluster.close()

        logger.info("Application shut down complete")


def create_app(
    settings: Optional[Settings] = None,
    *,
    cluster: Optional[DatabaseCluster] = None,
    cache: Optional[CacheClient] = None,
) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings)

    docs_url = "/docs" if settings.api_docs_enabled else None
    redoc_url = "/redoc" if settings.api_docs_enabled else None
    openapi_url = "/openapi.json" if settings.api_docs_enabled else None

    app = FastAPI(
        title="OBE System API",
        lifespan=lifespan,
        docs_url=docs_url,
        redoc_url=redoc_url,
        openapi_url=openapi_url,
    )
    app.state.settings = settings
    app.state.database = cluster
    app.state.cache = cache
    app.state.query_router = None
    app.state.db_available = False
    app.state.cache_status = "disabled"
    app.state.limiter = build_limiter(
        settings,
        exempt=(system.health_check, system.database_health, metrics.metrics),
    )

    app.include_router(system.router)
    app.include_router(metrics.router)
    register_exception_handlers(app, environment=settings.environment)

    # Added innermost first: the response cache sees plain JSON bodies.
    app.add_middleware(
        ResponseCacheMiddleware,
        ttl_seconds=settings.cache_default_ttl,
        include_prefixes=CACHED_PREFIXES,
        invalidate_on_write=settings.cache_invalidate_on_write,
    )
    app.add_middleware(HTTPMetricsMiddleware)
    app.add_middleware(SlowAPIMiddleware)
    app.add_middleware(GZipMiddleware, minimum_size=1000)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(SecureHeadersMiddleware)

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        start = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            duration = (time.perf_counter() - start) * 1000
            request_logger.exception(
                "HTTP %s %s failed",
                request.method,
                request.url.path,
                extra={"path": request.url.path, "method": request.method, "duration_ms": duration},
            )
            raise
        duration = (time.perf_counter() - start) * 1000
        request_logger.info(
            "HTTP %s %s -> %s (%.1f ms)",
            request.method,
            request.url.path,
            response.status_code,
            duration,
            extra={
                "path": request.url.path,
                "method": request.method,
                "status": response.status_code,
                "duration_ms": duration,
            },
        )
        return response

    app.add_middleware(RequestIDMiddleware)

    return app


__all__ = ["CACHED_PREFIXES", "create_app", "lifespan"]
