from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Optional
from urllib.parse import quote

from sqlalchemy.engine import URL

from obe_backend.core.env import load_env


PROJECT_ROOT = Path(__file__).resolve().parents[2]
DEFAULT_USER_DATA_DIR = Path.home() / ".obe_backend" / "data"

_ENVIRONMENTS = {"development", "staging", "production", "test"}
_DEV_CORS_ORIGINS = (
    "http://localhost:3000",
    "http://127.0.0.1:3000",
    "http://localhost:3001",
)


@dataclass(frozen=True)
class PoolSettings:
    """Sizing and timeouts for one connection pool."""

    role: str  # master or replica
    url: str
    min_size: int
    max_size: int
    idle_timeout_ms: int
    connect_timeout_ms: int
    acquire_timeout_ms: int
    statement_timeout_ms: int
    query_timeout_ms: int


@dataclass(frozen=True)
class Settings:
    environment: str  # development, staging, production, test
    data_dir: Path
    master_db: PoolSettings
    replica_dbs: tuple[PoolSettings, ...]
    sql_echo: bool
    redis_url: str
    cache_default_ttl: int
    cache_invalidate_on_write: bool
    slow_query_ms: float
    metrics_enabled: bool
    pool_stats_interval: float
    log_level: str
    log_json: bool
    log_file: str
    cors_origins: tuple[str, ...]
    rate_limit_enabled: bool
    rate_limit_window_seconds: int
    rate_limit_max: int
    api_docs_enabled: bool
    host: str
    port: int


def _get_int(name: str, default: int, *, minimum: Optional[int] = None) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        value = int(raw.strip())
    except (TypeError, ValueError):
        return default
    if minimum is not None and value < minimum:
        return default
    return value


def _get_float(name: str, default: float, *, minimum: Optional[float] = None) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        value = float(raw.strip())
    except (TypeError, ValueError):
        return default
    if minimum is not None and value < minimum:
        return default
    return value


def _get_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _get_str(name: str, default: str = "") -> str:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip() or default


def _get_list(name: str) -> tuple[str, ...]:
    raw = os.getenv(name) or ""
    return tuple(item.strip() for item in raw.split(",") if item.strip())


load_env()


def _default_data_dir() -> Path:
    env_dir = os.getenv("DATA_DIR")
    if env_dir and env_dir.strip():
        return Path(env_dir).expanduser()
    return DEFAULT_USER_DATA_DIR


def _build_database_url(host: str, port: int) -> str:
    url = URL.create(
        "postgresql+asyncpg",
        username=_get_str("DB_USER", "postgres"),
        password=os.getenv("DB_PASSWORD", "password"),
        host=host,
        port=port,
        database=_get_str("DB_NAME", "obe_system"),
    )
    return url.render_as_string(hide_password=False)


def _pool_settings(role: str, url: str, *, min_size: int, max_size: int) -> PoolSettings:
    if max_size < min_size:
        max_size = min_size
    return PoolSettings(
        role=role,
        url=url,
        min_size=min_size,
        max_size=max_size,
        idle_timeout_ms=_get_int("DB_IDLE_TIMEOUT", 30000, minimum=1000),
        connect_timeout_ms=_get_int("DB_CONNECTION_TIMEOUT", 2000, minimum=100),
        acquire_timeout_ms=_get_int("DB_ACQUIRE_TIMEOUT", 60000, minimum=100),
        statement_timeout_ms=_get_int("DB_STATEMENT_TIMEOUT", 30000, minimum=0),
        query_timeout_ms=_get_int("DB_QUERY_TIMEOUT", 30000, minimum=0),
    )


def _build_redis_url() -> str:
    redis_url = _get_str("REDIS_URL")
    if redis_url:
        return redis_url
    host = _get_str("REDIS_HOST")
    if not host:
        return ""
    port = _get_int("REDIS_PORT", 6379, minimum=1)
    password = os.getenv("REDIS_PASSWORD", "").strip()
    auth = f":{quote(password, safe='')}@" if password else ""
    return f"redis://{auth}{host}:{port}/0"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    environment = os.getenv("ENVIRONMENT", "development").strip().lower()
    if environment not in _ENVIRONMENTS:
        environment = "development"
    production = environment == "production"

    data_dir = _default_data_dir()
    data_dir.mkdir(parents=True, exist_ok=True)

    master_host = _get_str("DB_HOST", "localhost")
    master_port = _get_int("DB_PORT", 5432, minimum=1)
    master_url = _get_str("DATABASE_URL") or _build_database_url(master_host, master_port)
    master_db = _pool_settings(
        "master",
        master_url,
        min_size=_get_int("DB_MIN_CONNECTIONS", 5, minimum=0),
        max_size=_get_int("DB_MAX_CONNECTIONS", 50, minimum=1),
    )

    replica_urls = _get_list("DATABASE_REPLICA_URLS")
    if not replica_urls:
        if os.getenv("DATABASE_URL") and not os.getenv("DB_SLAVE_HOST"):
            # A single explicit URL with no replica host: read from the same server.
            replica_urls = (master_url,)
        else:
            replica_host = _get_str("DB_SLAVE_HOST", master_host)
            replica_port = _get_int("DB_SLAVE_PORT", master_port, minimum=1)
            replica_urls = (_build_database_url(replica_host, replica_port),)
    replica_min = _get_int("DB_SLAVE_MIN_CONNECTIONS", 10, minimum=0)
    replica_max = _get_int("DB_SLAVE_MAX_CONNECTIONS", 100, minimum=1)
    replica_dbs = tuple(
        _pool_settings("replica", url, min_size=replica_min, max_size=replica_max)
        for url in replica_urls
    )

    log_level = os.getenv("LOG_LEVEL", "INFO").strip().upper() or "INFO"
    log_file = _get_str("LOG_FILE")
    if not log_file:
        log_dir = data_dir / "logs"
        log_dir.mkdir(parents=True, exist_ok=True)
        log_file = str(log_dir / "app.log")

    cors_origins = _get_list("CORS_ORIGINS")
    if not cors_origins and not production:
        cors_origins = _DEV_CORS_ORIGINS

    return Settings(
        environment=environment,
        data_dir=data_dir,
        master_db=master_db,
        replica_dbs=replica_dbs,
        sql_echo=_get_bool("SQL_ECHO"),
        redis_url=_build_redis_url(),
        cache_default_ttl=_get_int("CACHE_DEFAULT_TTL", 300, minimum=1),
        cache_invalidate_on_write=_get_bool("CACHE_INVALIDATE_ON_WRITE", default=True),
        slow_query_ms=_get_float("SLOW_QUERY_MS", 1000.0, minimum=0.0),
        metrics_enabled=_get_bool("METRICS_ENABLED", default=True),
        pool_stats_interval=_get_float("POOL_STATS_INTERVAL", 5.0, minimum=0.5),
        log_level=log_level,
        log_json=_get_bool("LOG_JSON"),
        log_file=log_file,
        cors_origins=cors_origins,
        rate_limit_enabled=_get_bool("RATE_LIMIT_ENABLED", default=True),
        rate_limit_window_seconds=_get_int("RATE_LIMIT_WINDOW", 900, minimum=1),
        rate_limit_max=_get_int("RATE_LIMIT_MAX", 1000 if production else 10000, minimum=1),
        api_docs_enabled=_get_bool("API_DOCS_ENABLED"),
        host=_get_str("HOST", "0.0.0.0"),
        port=_get_int("PORT", 5000, minimum=1),
    )


__all__ = ["PoolSettings", "Settings", "get_settings"]
