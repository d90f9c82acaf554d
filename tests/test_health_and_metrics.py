from booking_funnel.api import routes_jobs
from booking_funnel.main import app
from booking_funnel.settings import settings


class BrokenSessionFactory:
    def __call__(self):
        raise ConnectionError("database unreachable")


def test_healthz(client):
    response = client.get("/healthz")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}
    assert response.headers["X-Request-ID"]
    assert client.head("/healthz").status_code == 200


def test_request_id_is_echoed(client):
    response = client.get("/healthz", headers={"X-Request-ID": "req-123"})

    assert response.headers["X-Request-ID"] == "req-123"


def test_readyz_checks_database(client):
    response = client.get("/readyz")

    assert response.status_code == 200
    assert response.json() == {"status": "ok", "checks": {"database": {"ok": True}}}


def test_readyz_reports_unavailable_database(client):
    original = app.state.db_session_factory
    app.state.db_session_factory = BrokenSessionFactory()
    try:
        response = client.get("/readyz")
    finally:
        app.state.db_session_factory = original

    assert response.status_code == 503
    body = response.json()
    assert body["status"] == "unavailable"
    assert body["checks"]["database"] == {"ok": False, "error": "ConnectionError"}


def test_metrics_endpoint_exposes_prometheus_text(client):
    client.get("/healthz")

    response = client.get("/metrics")

    assert response.status_code == 200
    assert "http_requests_total" in response.text


def test_metrics_token_required_when_configured(client, monkeypatch):
    monkeypatch.setattr(settings, "metrics_token", "metrics-secret")

    assert client.get("/metrics").status_code == 401
    assert client.get("/metrics", headers={"Authorization": "Bearer wrong"}).status_code == 401
    assert client.get("/metrics", headers={"Authorization": "Bearer metrics-secret"}).status_code == 200
    assert client.get("/metrics?token=metrics-secret").status_code == 200


def test_service_role_required_outside_dev(client, monkeypatch):
    monkeypatch.setattr(settings, "app_env", "prod")
    monkeypatch.setattr(settings, "service_role_key", None)

    response = client.post("/v1/jobs/charge-remaining")

    assert response.status_code == 503
    assert response.headers["content-type"].startswith("application/problem+json")


def test_unhandled_errors_become_problem_details(client_no_raise, monkeypatch):
    async def _explode(*args, **kwargs):
        raise RuntimeError("unexpected")

    monkeypatch.setattr(routes_jobs, "complete_job", _explode)

    response = client_no_raise.post("/v1/jobs/some-job/complete")

    assert response.status_code == 500
    body = response.json()
    assert body["title"] == "Internal Server Error"
    assert body["detail"] == "Unexpected error"
    assert "unexpected" not in response.text
