"""Prometheus metrics for the HTTP layer, the response cache and the pools.

Query latency histograms live next to the collector in
``obe_backend.core.metrics``; everything here is scraped from ``/metrics``
through the default registry.
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

from obe_backend.core.db import DatabaseCluster

# ----------------------------
# HTTP metrics
# ----------------------------

HTTP_INFLIGHT = Gauge(
    "http_inflight_requests",
    "Number of in-flight HTTP requests.",
)

HTTP_REQUESTS_TOTAL = Counter(
    "http_requests_total",
    "Total number of HTTP requests.",
    labelnames=("method", "route", "status_code"),
)

HTTP_REQUEST_DURATION_SECONDS = Histogram(
    "http_request_duration_seconds",
    "Duration of HTTP requests in seconds.",
    labelnames=("method", "route", "status_code"),
    buckets=(0.1, 0.3, 0.5, 0.7, 1.0, 3.0, 5.0, 7.0, 10.0),
)

# ----------------------------
# Cache metrics
# ----------------------------

CACHE_HITS_TOTAL = Counter(
    "cache_hits_total",
    "Total number of cache hits.",
    labelnames=("cache_type",),
)

CACHE_MISSES_TOTAL = Counter(
    "cache_misses_total",
    "Total number of cache misses.",
    labelnames=("cache_type",),
)

# ----------------------------
# Pool metrics
# ----------------------------

DB_CONNECTIONS_ACTIVE = Gauge(
    "db_connections_active",
    "Connections currently checked out of the pool.",
    labelnames=("pool",),
)

DB_CONNECTIONS_IDLE = Gauge(
    "db_connections_idle",
    "Idle connections held by the pool.",
    labelnames=("pool",),
)


def observe_http(*, method: str, route: str, status_code: int, duration_seconds: float) -> None:
    """Record a single HTTP request observation."""

    status = str(int(status_code))
    HTTP_REQUESTS_TOTAL.labels(method=method, route=route, status_code=status).inc()
    HTTP_REQUEST_DURATION_SECONDS.labels(method=method, route=route, status_code=status).observe(
        duration_seconds
    )


def record_cache_hit(cache_type: str = "default") -> None:
    CACHE_HITS_TOTAL.labels(cache_type=cache_type).inc()


def record_cache_miss(cache_type: str = "default") -> None:
    CACHE_MISSES_TOTAL.labels(cache_type=cache_type).inc()


def update_pool_gauges(cluster: DatabaseCluster) -> None:
    for name, stats in cluster.pool_stats().items():
        DB_CONNECTIONS_ACTIVE.labels(pool=name).set(stats.get("checked_out", 0))
        DB_CONNECTIONS_IDLE.labels(pool=name).set(stats.get("idle", 0))
