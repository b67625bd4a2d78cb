from __future__ import annotations

from dataclasses import replace

from fastapi.testclient import TestClient

from obe_backend.apps.api.app import create_app
from obe_backend.core.settings import get_settings


def _app_with_api_routes(settings, cluster, cache=None):
    app = create_app(settings, cluster=cluster, cache=cache)
    calls = {"programs": 0}

    async def list_programs():
        calls["programs"] += 1
        return {"success": True, "data": [{"id": 1, "program_name": "BSCS"}]}

    async def crash():
        raise RuntimeError("pool exhausted")

    app.add_api_route("/api/config/programs", list_programs, methods=["GET"])
    app.add_api_route("/api/crash", crash, methods=["GET"])
    return app, calls


def test_unknown_route_returns_json_404(make_cluster):
    with TestClient(create_app(get_settings(), cluster=make_cluster())) as client:
        resp = client.get("/api/does-not-exist")

    assert resp.status_code == 404
    assert resp.json() == {"message": "Route not found"}


def test_unhandled_error_hides_details_outside_development(make_cluster):
    app, _ = _app_with_api_routes(get_settings(), make_cluster())
    with TestClient(app, raise_server_exceptions=False) as client:
        resp = client.get("/api/crash")

    assert resp.status_code == 500
    assert resp.json() == {"message": "Something went wrong!", "error": {}}


def test_unhandled_error_shows_message_in_development(make_cluster):
    settings = replace(get_settings(), environment="development")
    app, _ = _app_with_api_routes(settings, make_cluster())
    with TestClient(app, raise_server_exceptions=False) as client:
        resp = client.get("/api/crash")

    assert resp.status_code == 500
    assert resp.json() == {"message": "Something went wrong!", "error": "pool exhausted"}


def test_rate_limit_spares_health_and_metrics(make_cluster):
    settings = replace(get_settings(), rate_limit_enabled=True, rate_limit_max=2, redis_url="")
    app, _ = _app_with_api_routes(settings, make_cluster())
    with TestClient(app) as client:
        health = [client.get("/health").status_code for _ in range(5)]
        scrapes = [client.get("/metrics").status_code for _ in range(5)]
        api = [client.get("/api/config/programs").status_code for _ in range(3)]

    assert health == [200] * 5
    assert scrapes == [200] * 5
    assert api == [200, 200, 429]


def test_security_and_request_id_headers(make_cluster):
    with TestClient(create_app(get_settings(), cluster=make_cluster())) as client:
        generated = client.get("/health")
        echoed = client.get("/health", headers={"X-Request-ID": "req-42"})

    assert generated.headers["X-Content-Type-Options"] == "nosniff"
    assert generated.headers["X-Frame-Options"] == "DENY"
    assert "default-src 'self'" in generated.headers["Content-Security-Policy"]
    assert generated.headers["X-Request-ID"]
    assert echoed.headers["X-Request-ID"] == "req-42"


def test_api_responses_are_cached_through_the_app(make_cluster, cache_client):
    app, calls = _app_with_api_routes(get_settings(), make_cluster(), cache=cache_client)
    with TestClient(app) as client:
        first = client.get("/api/config/programs")
        second = client.get("/api/config/programs")
        health = client.get("/health/database")

    assert calls["programs"] == 1
    assert first.headers["X-Cache"] == "MISS"
    assert second.json()["cached"] is True
    assert health.json()["cache"] == "ok"


def test_lifespan_wires_query_router(make_cluster):
    cluster = make_cluster()
    app = create_app(get_settings(), cluster=cluster)
    with TestClient(app):
        assert app.state.query_router.cluster is cluster
        assert app.state.db_available is True
        assert app.state.cache_status == "disabled"
