"""
Tests for health and status endpoints.
"""
import pytest


@pytest.mark.asyncio
async def test_health_endpoint_returns_healthy(client):
    """Test that the /health endpoint returns a healthy status."""
    response = await client.get("/health")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ok"
    assert data["database"] == "healthy"
    assert "version" in data


@pytest.mark.asyncio
async def test_health_returns_json(client):
    """Test that the /health endpoint returns JSON content type."""
    response = await client.get("/health")

    assert response.status_code == 200
    assert response.headers["content-type"] == "application/json"


@pytest.mark.asyncio
async def test_ping(client):
    response = await client.get("/ping")
    assert response.json() == {"status": "ok"}


@pytest.mark.asyncio
async def test_status_reports_feeds_and_backlog(client, make_feed):
    make_feed()
    make_feed()

    response = await client.get("/status")

    assert response.status_code == 200
    data = response.json()
    assert data["feeds"] == {"active": 2}
    assert data["scheduler"]["running"] is False
    assert data["runs_in_flight"] == 0
    assert data["pending_webhook_events"] == 0
