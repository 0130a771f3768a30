"""Tests for health check endpoint."""

import pytest
from fastapi.testclient import TestClient
from unittest.mock import patch, AsyncMock


class TestHealthEndpoint:
    """Test health check endpoint."""

    @pytest.fixture
    def client(self):
        """Create test client with mocked database."""
        with patch("app.main.init_db", new_callable=AsyncMock), \
                patch("app.main.recover_stale_jobs", new_callable=AsyncMock):
            from app.main import app
            with TestClient(app) as client:
                yield client

    def test_health_check_returns_200(self, client):
        """Health endpoint returns 200 OK."""
        response = client.get("/health")

        assert response.status_code == 200

    def test_health_check_response_body(self, client):
        """Health endpoint returns expected body."""
        response = client.get("/health")
        data = response.json()

        assert data["status"] == "healthy"
        assert "version" in data

    def test_health_check_no_auth_required(self, client):
        """Health endpoint doesn't require authentication."""
        # No Authorization header
        response = client.get("/health")

        assert response.status_code == 200


class TestLifespan:
    """Test startup work."""

    def test_startup_recovers_stale_jobs(self):
        with patch("app.main.init_db", new_callable=AsyncMock) as init_db, \
                patch("app.main.recover_stale_jobs", new_callable=AsyncMock) as recover:
            from app.main import app
            with TestClient(app):
                pass

        init_db.assert_awaited_once()
        recover.assert_awaited_once()
