import logging
from typing import Any, Dict

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from obe_backend.core.metrics import get_health_data

logger = logging.getLogger(__name__)

router = APIRouter(tags=["system"])


@router.get("/health")
async def health_check() -> Dict[str, Any]:
    """Process liveness plus query statistics; always 200."""
    return get_health_data()


@router.get("/health/database")
async def database_health(request: Request) -> JSONResponse:
    cluster = getattr(request.app.state, "database", None)
    if cluster is None:
        return JSONResponse(
            {"overall": "unhealthy", "error": "Database is not initialised"},
            status_code=503,
        )

    try:
        report = await cluster.health_check()
        report["pools"] = cluster.pool_stats()
    except Exception as exc:
        logger.exception("Database health check failed")
        return JSONResponse({"overall": "unhealthy", "error": str(exc)}, status_code=503)

    report["cache"] = getattr(request.app.state, "cache_status", "disabled")
    status_code = 503 if report["overall"] == "unhealthy" else 200
    return JSONResponse(report, status_code=status_code)
