"""Prometheus metrics endpoint (gated by METRICS_ENABLED)."""

from __future__ import annotations

from fastapi import APIRouter, HTTPException, Request
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.responses import Response

from obe_backend.core.settings import get_settings

router = APIRouter(tags=["metrics"])


def _metrics_enabled(request: Request) -> bool:
    settings = getattr(request.app.state, "settings", None) or get_settings()
    return settings.metrics_enabled


@router.get("/metrics", include_in_schema=False)
async def metrics(request: Request) -> Response:
    if not _metrics_enabled(request):
        raise HTTPException(status_code=404, detail="Metrics are disabled")
    payload = generate_latest()
    return Response(content=payload, media_type=CONTENT_TYPE_LATEST)
