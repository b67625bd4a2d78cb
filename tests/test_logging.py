import json
import logging
from types import SimpleNamespace

from obe_backend.core.logging import (
    JsonFormatter,
    RequestIdFilter,
    build_logging_config,
    get_request_id,
    reset_request_id,
    set_request_id,
)


def _settings(tmp_path, **overrides):
    values = dict(log_level="INFO", log_json=False, log_file="", data_dir=tmp_path)
    values.update(overrides)
    return SimpleNamespace(**values)


def _record(message="HTTP GET /api/config/departments -> 200", **extra):
    record = logging.LogRecord("obe.api.requests", logging.INFO, __file__, 1, message, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_request_id_filter_uses_context():
    record_filter = RequestIdFilter()
    outside = _record()
    record_filter.filter(outside)
    assert outside.request_id == "-"

    token = set_request_id("req-42")
    try:
        assert get_request_id() == "req-42"
        inside = _record()
        record_filter.filter(inside)
        assert inside.request_id == "req-42"
    finally:
        reset_request_id(token)
    assert get_request_id() is None


def test_json_formatter_includes_access_fields():
    record = _record(request_id="req-7", method="GET", path="/api/config/departments", status=200, duration_ms=12.345)

    payload = json.loads(JsonFormatter().format(record))

    assert payload["request_id"] == "req-7"
    assert payload["method"] == "GET"
    assert payload["path"] == "/api/config/departments"
    assert payload["status"] == 200
    assert payload["duration_ms"] == 12.3


def test_json_formatter_omits_missing_fields():
    payload = json.loads(JsonFormatter().format(_record("pool ready", request_id="-")))

    assert payload["message"] == "pool ready"
    assert "request_id" not in payload
    assert "status" not in payload


def test_config_quiets_libraries_and_defaults_log_file(tmp_path):
    config = build_logging_config(_settings(tmp_path))

    assert config["loggers"]["sqlalchemy.engine"] == {"level": "WARNING"}
    assert config["loggers"]["uvicorn.access"] == {"level": "WARNING"}
    assert config["handlers"]["console"]["formatter"] == "standard"
    assert config["handlers"]["file"]["formatter"] == "json"
    assert config["handlers"]["file"]["filename"] == str(tmp_path / "logs" / "app.log")
    assert (tmp_path / "logs").is_dir()


def test_debug_level_lets_library_logs_through(tmp_path):
    log_file = tmp_path / "custom" / "obe.log"
    config = build_logging_config(_settings(tmp_path, log_level="debug", log_json=True, log_file=str(log_file)))

    assert config["loggers"] == {}
    assert config["root"]["level"] == "DEBUG"
    assert config["handlers"]["console"]["formatter"] == "json"
    assert config["handlers"]["file"]["filename"] == str(log_file)
