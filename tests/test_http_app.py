"""Tests for the HTTP application routes."""
from fastapi.testclient import TestClient

from rally_core.connection import ConnectionCheck, ConnectionStatus
from rally_mcp.http_app import create_app

from conftest import make_settings


class TestHttpApp:
    """Test routes outside the MCP endpoint (lifespan not started)."""

    def test_root(self, fake_rally):
        app = create_app(make_settings(), transport=fake_rally.transport, validate_on_startup=False)
        response = TestClient(app).get("/")

        assert response.status_code == 200
        assert response.json()["name"] == "rally-mcp"
        assert response.json()["mcp"] == "/mcp"

    def test_health_before_validation(self, fake_rally):
        app = create_app(make_settings(), transport=fake_rally.transport, validate_on_startup=False)
        response = TestClient(app).get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "ok"
        assert body["connection"] is None
        assert "timestamp" in body

    def test_health_reports_validation(self, fake_rally):
        """Test that /health exposes the last validation outcome."""
        app = create_app(make_settings(), transport=fake_rally.transport, validate_on_startup=False)
        app.state.connection = ConnectionCheck(
            status=ConnectionStatus.VALID_WITH_WARNING,
            message='Workspace "X" not found',
            workspace_ref="/workspace/1",
        )

        body = TestClient(app).get("/health").json()

        assert body["connection"]["status"] == "valid_with_warning"
        assert body["connection"]["valid"] is True
        assert body["connection"]["workspace_ref"] == "/workspace/1"

    def test_mcp_route_registered(self, fake_rally):
        app = create_app(make_settings(), transport=fake_rally.transport, validate_on_startup=False)
        assert "/mcp" in {route.path for route in app.routes}
