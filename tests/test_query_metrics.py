import pytest
from prometheus_client import REGISTRY

from obe_backend.core.metrics import (
    QueryMetrics,
    get_health_data,
    infer_statement_type,
    infer_table,
)


def test_stats_after_recorded_durations():
    metrics = QueryMetrics()
    durations = [12.0, 250.0, 1000.0, 1000.5, 2400.0]

    for duration in durations:
        metrics.record_query(duration, "SELECT * FROM courses", 3, "read")

    stats = metrics.get_stats()
    assert stats["query_count"] == 5
    assert stats["average_duration"] == pytest.approx(sum(durations) / 5)
    assert stats["slow_queries"] == 2
    assert stats["slow_query_percentage"] == pytest.approx(40.0)


def test_empty_stats_are_zero():
    assert QueryMetrics().get_stats() == {
        "query_count": 0,
        "average_duration": 0.0,
        "slow_queries": 0,
        "slow_query_percentage": 0.0,
    }


def test_reset_clears_counters():
    metrics = QueryMetrics()
    metrics.record_query(1500.0, "SELECT 1", 1)
    metrics.reset()
    assert metrics.get_stats()["query_count"] == 0


def test_custom_slow_threshold():
    metrics = QueryMetrics(slow_query_threshold_ms=100.0)
    metrics.record_query(150.0, "SELECT 1", 1)
    assert metrics.get_stats()["slow_queries"] == 1


@pytest.mark.parametrize(
    "sql, table",
    [
        ("SELECT id, department_name FROM departments WHERE id = $1", "departments"),
        ("update courses set course_name = $1", "courses"),
        ("INSERT INTO programs (program_name) VALUES ($1)", "programs"),
        ("SELECT 1", "unknown"),
    ],
)
def test_infer_table(sql, table):
    assert infer_table(sql) == table


def test_infer_statement_type():
    assert infer_statement_type("  insert into programs values ($1)") == "INSERT"
    assert infer_statement_type("UPDATE courses SET x = 1") == "UPDATE"
    assert infer_statement_type("DELETE FROM courses") == "DELETE"
    assert infer_statement_type("WITH recent AS (SELECT 1) SELECT * FROM recent") == "SELECT"


def test_record_query_feeds_prometheus():
    labels = {"query_type": "SELECT", "table": "learning_outcomes"}
    before = REGISTRY.get_sample_value("db_query_duration_seconds_count", labels) or 0.0
    slow_before = REGISTRY.get_sample_value("db_slow_queries_total", labels) or 0.0

    metrics = QueryMetrics()
    metrics.record_query(20.0, "SELECT * FROM learning_outcomes", 4)
    metrics.record_query(1200.0, "SELECT * FROM learning_outcomes", 4)

    assert REGISTRY.get_sample_value("db_query_duration_seconds_count", labels) == before + 2
    assert REGISTRY.get_sample_value("db_slow_queries_total", labels) == slow_before + 1


def test_health_data_shape():
    metrics = QueryMetrics()
    metrics.record_query(40.0, "SELECT * FROM courses", 1)

    data = get_health_data(metrics)

    assert data["status"] == "healthy"
    assert data["uptime"] >= 0
    assert data["memory"]["rss"] > 0
    assert data["database"] == {
        "query_count": 1,
        "average_query_time": 40.0,
        "slow_queries": 0,
        "slow_query_percentage": 0.0,
    }
