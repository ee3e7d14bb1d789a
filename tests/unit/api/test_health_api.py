"""Tests for health endpoints."""

from flock import __version__
from flock.core.errors import UnavailableError


class TestHealthEndpoints:
    """Tests for /health."""

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy", "version": __version__}

    def test_liveness(self, client):
        assert client.get("/health/live").json() == {"status": "alive"}

    def test_ready(self, client):
        response = client.get("/health/ready")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ready"
        assert data["store"]["backend"] == "InMemoryTableService"

    def test_not_ready_when_store_down(self, client, tables, monkeypatch):
        def broken(*args, **kwargs):
            raise UnavailableError("connection refused")

        monkeypatch.setattr(tables, "list", broken)
        response = client.get("/health/ready")
        assert response.status_code == 503
        assert response.json()["store"] == {"status": "unhealthy", "error": "connection refused"}

    def test_root(self, client):
        assert client.get("/").json()["version"] == __version__
