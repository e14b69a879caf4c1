"""Tests for health check endpoint."""

from src.api.app import app


class TestHealthEndpoint:
    async def test_health_check(self, async_client):
        response = await async_client.get("/api/v1/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["version"] == "1.0.0"
        assert data["openrouter_configured"] is True
        assert data["resources"]["max_pipelines"] == 2
        assert data["events"]["dropped"] == 0

    async def test_unconfigured_key_reported(self, async_client, api_context):
        api_context.config.llm.api_key = ""
        response = await async_client.get("/api/v1/health")
        assert response.json()["openrouter_configured"] is False

    async def test_unavailable_before_startup(self, async_client):
        app.state.context = None
        response = await async_client.get("/api/v1/health")
        assert response.status_code == 503


class TestRootEndpoint:
    async def test_root(self, async_client):
        response = await async_client.get("/")
        assert response.status_code == 200
        data = response.json()
        assert "docs" in data
        assert "message" in data
