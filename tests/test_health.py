# tests/test_health.py
from fastapi.testclient import TestClient


def test_health_reports_ok(client: TestClient) -> None:
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json() == {"status": "ok"}


def test_root_describes_api(client: TestClient) -> None:
    r = client.get("/")
    assert r.status_code == 200
    body = r.json()
    assert body["name"] == "Compyy API"
    assert body["docs"] == "/docs"


def test_security_headers_present(client: TestClient) -> None:
    r = client.get("/health")
    assert r.headers["X-Content-Type-Options"] == "nosniff"
    assert r.headers["X-Frame-Options"] == "DENY"
    assert r.headers["Referrer-Policy"] == "strict-origin-when-cross-origin"
    assert "default-src 'self'" in r.headers["Content-Security-Policy"]
    # HSTS is only sent in production.
    assert "Strict-Transport-Security" not in r.headers
    assert "x-powered-by" not in r.headers
