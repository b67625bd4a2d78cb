"""Query metrics and the process health snapshot.

``QueryMetrics`` keeps running counters for the ``/health`` summary and feeds
the Prometheus histogram used for per-table latency dashboards.
"""

from __future__ import annotations

import re
import time
from datetime import datetime, timezone
from typing import Any, Optional

import psutil
from prometheus_client import Counter, Histogram

SLOW_QUERY_THRESHOLD_MS = 1000.0

DB_QUERY_DURATION_SECONDS = Histogram(
    "db_query_duration_seconds",
    "Duration of database queries in seconds by statement type and table.",
    labelnames=("query_type", "table"),
    buckets=(0.01, 0.05, 0.1, 0.2, 0.5, 1.0, 2.0, 5.0),
)

DB_SLOW_QUERIES_TOTAL = Counter(
    "db_slow_queries_total",
    "Database queries slower than the slow-query threshold.",
    labelnames=("query_type", "table"),
)

DB_REPLICA_FALLBACKS_TOTAL = Counter(
    "db_replica_fallbacks_total",
    "Failed replica reads that were retried on the master pool.",
    labelnames=("pool",),
)

_TABLE_PATTERNS = (
    re.compile(r"FROM\s+(\w+)", re.IGNORECASE),
    re.compile(r"UPDATE\s+(\w+)", re.IGNORECASE),
    re.compile(r"INSERT\s+INTO\s+(\w+)", re.IGNORECASE),
)


def infer_table(sql: str) -> str:
    """Best-effort table name: first match of FROM, then UPDATE, then INSERT INTO."""
    for pattern in _TABLE_PATTERNS:
        match = pattern.search(sql or "")
        if match:
            return match.group(1)
    return "unknown"


def infer_statement_type(sql: str) -> str:
    head = (sql or "").strip().upper()
    for statement_type in ("INSERT", "UPDATE", "DELETE"):
        if head.startswith(statement_type):
            return statement_type
    return "SELECT"


class QueryMetrics:
    """Running query counters; an approximation, not a latency distribution."""

    def __init__(self, slow_query_threshold_ms: float = SLOW_QUERY_THRESHOLD_MS) -> None:
        self.slow_query_threshold_ms = slow_query_threshold_ms
        self.query_count = 0
        self.total_duration = 0.0
        self.slow_queries = 0

    def record_query(
        self,
        duration_ms: float,
        sql: str,
        row_count: int,
        operation: Optional[str] = None,
    ) -> None:
        self.query_count += 1
        self.total_duration += duration_ms

        table = infer_table(sql)
        query_type = infer_statement_type(sql)
        if duration_ms > self.slow_query_threshold_ms:
            self.slow_queries += 1
            DB_SLOW_QUERIES_TOTAL.labels(query_type=query_type, table=table).inc()

        DB_QUERY_DURATION_SECONDS.labels(query_type=query_type, table=table).observe(
            duration_ms / 1000.0
        )

    def get_stats(self) -> dict[str, Any]:
        if self.query_count == 0:
            return {
                "query_count": 0,
                "average_duration": 0.0,
                "slow_queries": 0,
                "slow_query_percentage": 0.0,
            }
        return {
            "query_count": self.query_count,
            "average_duration": self.total_duration / self.query_count,
            "slow_queries": self.slow_queries,
            "slow_query_percentage": self.slow_queries / self.query_count * 100,
        }

    def reset(self) -> None:
        self.query_count = 0
        self.total_duration = 0.0
        self.slow_queries = 0


_metrics: QueryMetrics | None = None


def get_metrics() -> QueryMetrics:
    """Process-wide collector shared by the router and ``/health``."""
    global _metrics
    if _metrics is None:
        _metrics = QueryMetrics()
    return _metrics


def reset_metrics() -> None:
    global _metrics
    _metrics = QueryMetrics()


def _memory_usage() -> dict[str, int]:
    info = psutil.Process().memory_info()
    return {"rss": info.rss, "vms": info.vms}


def _uptime_seconds() -> float:
    return max(0.0, time.time() - psutil.Process().create_time())


def get_health_data(metrics: QueryMetrics | None = None) -> dict[str, Any]:
    """Liveness snapshot served on ``/health``.

    ``status`` reports that the process is up; pool connectivity is reported
    separately by ``DatabaseCluster.health_check``.
    """

    stats = (metrics or get_metrics()).get_stats()
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "uptime": _uptime_seconds(),
        "memory": _memory_usage(),
        "database": {
            "query_count": stats["query_count"],
            "average_query_time": stats["average_duration"],
            "slow_queries": stats["slow_queries"],
            "slow_query_percentage": stats["slow_query_percentage"],
        },
    }


__all__ = [
    "QueryMetrics",
    "SLOW_QUERY_THRESHOLD_MS",
    "get_health_data",
    "get_metrics",
    "infer_statement_type",
    "infer_table",
    "reset_metrics",
]
