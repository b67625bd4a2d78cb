"""Read/write splitting across the master and replica pools.

Writes (and anything flagged ``use_master``) always go to master. Reads are
spread over the replicas round-robin; a read that fails on a replica is
retried once on master before the error reaches the caller.
"""

from __future__ import annotations

import itertools
import logging
import time
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Optional, Sequence, TypeVar

from obe_backend.core.db import ConnectionPool, DatabaseCluster, PoolConnection, QueryParams, QueryResult
from obe_backend.core.metrics import (
    DB_REPLICA_FALLBACKS_TOTAL,
    SLOW_QUERY_THRESHOLD_MS,
    QueryMetrics,
    get_metrics,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

_PREVIEW_CHARS = 100


class Operation(str, Enum):
    READ = "read"
    WRITE = "write"
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"

    @classmethod
    def parse(cls, value: str | Operation | None) -> Operation:
        """Case-insensitive lookup; unknown strings count as reads."""
        if isinstance(value, Operation):
            return value
        try:
            return cls((value or "read").strip().lower())
        except ValueError:
            logger.debug("Unknown query operation %r, routing as read", value)
            return cls.READ


_WRITE_OPERATIONS = frozenset(
    {Operation.WRITE, Operation.INSERT, Operation.UPDATE, Operation.DELETE}
)


@dataclass(frozen=True)
class QueryIntent:
    use_master: bool = False
    operation: Operation = Operation.READ

    @classmethod
    def of(cls, *, use_master: bool = False, operation: str | Operation | None = None) -> QueryIntent:
        return cls(use_master=bool(use_master), operation=Operation.parse(operation))

    @property
    def requires_master(self) -> bool:
        return self.use_master or self.operation in _WRITE_OPERATIONS


class PoolSelector:
    """Round-robin over the replica pools.

    ``next()`` on ``itertools.count`` is atomic, so concurrent readers never
    observe a torn counter; at worst the spread is uneven.
    """

    def __init__(self, replicas: Sequence[ConnectionPool]) -> None:
        self._replicas = tuple(replicas)
        self._counter = itertools.count()

    @property
    def replicas(self) -> tuple[ConnectionPool, ...]:
        return self._replicas

    def next_replica(self) -> Optional[ConnectionPool]:
        if not self._replicas:
            return None
        return self._replicas[next(self._counter) % len(self._replicas)]


def _preview(statement: str) -> str:
    flat = " ".join((statement or "").split())
    if len(flat) > _PREVIEW_CHARS:
        return flat[:_PREVIEW_CHARS] + "..."
    return flat


class QueryRouter:
    """Entry point route modules use for every query and transaction."""

    def __init__(
        self,
        cluster: DatabaseCluster,
        *,
        selector: Optional[PoolSelector] = None,
        metrics: Optional[QueryMetrics] = None,
        slow_query_ms: float = SLOW_QUERY_THRESHOLD_MS,
    ) -> None:
        self._cluster = cluster
        self._selector = selector or PoolSelector(cluster.replicas)
        self._metrics = metrics or get_metrics()
        self._slow_query_ms = slow_query_ms

    @property
    def cluster(self) -> DatabaseCluster:
        return self._cluster

    def select_pool(self, intent: QueryIntent) -> ConnectionPool:
        if intent.requires_master:
            return self._cluster.master
        replica = self._selector.next_replica()
        # No replicas configured: reads fall back to master.
        return replica if replica is not None else self._cluster.master

    async def query(
        self,
        statement: str,
        params: QueryParams = None,
        *,
        use_master: bool = False,
        operation: str | Operation = Operation.READ,
    ) -> QueryResult:
        """Execute ``statement`` on the pool chosen for its intent.

        A failure on a replica is retried exactly once on master with
        ``use_master=True``; every other failure propagates unchanged.
        """

        intent = QueryIntent.of(use_master=use_master, operation=operation)
        pool = self.select_pool(intent)
        query_id = uuid.uuid4().hex[:9]
        preview = _preview(statement)
        logger.debug(
            "[query %s] %s on %s: %s",
            query_id,
            intent.operation.value.upper(),
            pool.name,
            preview,
        )

        start = time.perf_counter()
        try:
            result = await pool.execute(statement, params)
        except Exception as exc:
            duration_ms = (time.perf_counter() - start) * 1000.0
            logger.error(
                "[query %s] failed after %.1fms on %s: %s",
                query_id,
                duration_ms,
                pool.name,
                exc,
            )
            if pool is not self._cluster.master and not intent.use_master:
                logger.warning("[query %s] retrying failed replica query on master", query_id)
                DB_REPLICA_FALLBACKS_TOTAL.labels(pool=pool.name).inc()
                return await self.query(
                    statement,
                    params,
                    use_master=True,
                    operation=intent.operation,
                )
            raise

        duration_ms = (time.perf_counter() - start) * 1000.0
        if duration_ms > self._slow_query_ms:
            logger.warning(
                "[query %s] slow query detected: %.1fms on %s - %s",
                query_id,
                duration_ms,
                pool.name,
                preview,
            )
        else:
            logger.debug("[query %s] completed in %.1fms on %s", query_id, duration_ms, pool.name)

        self._metrics.record_query(duration_ms, statement, result.row_count, intent.operation.value)
        return result

    async def transaction(self, work: Callable[[PoolConnection], Awaitable[T]]) -> T:
        """Run ``work`` inside BEGIN/COMMIT on a master connection.

        Any exception rolls back and is re-raised as is; the connection goes
        back to the pool either way.
        """

        async with self._cluster.master.acquire() as connection:
            await connection.begin()
            try:
                result = await work(connection)
            except BaseException:
                try:
                    await connection.rollback()
                except Exception:
                    logger.exception("Rollback failed, keeping the original error")
                raise
            await connection.commit()
            return result


__all__ = ["Operation", "PoolSelector", "QueryIntent", "QueryRouter"]
