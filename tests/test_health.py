"""Tests pour l'endpoint de santé de l'application."""

from fastapi.testclient import TestClient

from hostlink.api.deps import get_container
from hostlink.app.main import app
from hostlink.core.http_constants import HTTP_OK
from tests.fakes import build_container


def test_health() -> None:
    """L'endpoint de santé retourne l'état d'activation et l'outbox."""
    c, _, _, _ = build_container()
    app.dependency_overrides[get_container] = lambda: c
    try:
        client = TestClient(app)
        r = client.get("/health")
        assert r.status_code == HTTP_OK
        body = r.json()
        assert body["status"] == "ok"
        assert body["activated"] is False
        assert body["registered"] is False

        assert c.gateway.activate_deployment("ACT-1").success
        c.outbox.log_event("user.created", "user", {"id": 1})
        body = client.get("/health").json()
        assert body["activated"] is True
        assert body["outbox"].get("pending") == 1
    finally:
        app.dependency_overrides.clear()
