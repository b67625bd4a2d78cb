"""Periodic sampling of pool occupancy into Prometheus gauges."""

from __future__ import annotations

import asyncio
import logging

from obe_backend.apps.api.perf.metrics import prometheus
from obe_backend.core.db import DatabaseCluster
from obe_backend.core.error_handler import safe_background_task

logger = logging.getLogger(__name__)


async def _sample_pool_stats_forever(cluster: DatabaseCluster, interval_seconds: float) -> None:
    while True:
        try:
            prometheus.update_pool_gauges(cluster)
        except Exception:
            logger.exception("Failed to sample database pool statistics")
        await asyncio.sleep(interval_seconds)


def start_pool_stats_task(cluster: DatabaseCluster, interval_seconds: float = 5.0) -> asyncio.Task:
    """Start the sampler; the caller owns cancellation on shutdown."""

    return safe_background_task(
        "db_pool_stats_sampler",
        _sample_pool_stats_forever(cluster, interval_seconds),
    )


__all__ = ["start_pool_stats_task"]
