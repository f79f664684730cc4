"""Tests for the health endpoint."""

from filedock.core.config import settings


def test_health_returns_ok(client):
    response = client.get("/api/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok", "app": settings.app_name}


def test_startup_creates_namespace_roots(client, store):
    for namespace in ("permanent", "temporary"):
        root = store.root / namespace
        assert (root / ".trash").is_dir()
        assert (root / ".uploading").is_dir()
