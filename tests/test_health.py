"""Tests for health check endpoints."""

from unittest.mock import AsyncMock

import pytest
from httpx import ASGITransport, AsyncClient

from basal_loop.main import app, create_app
from basal_loop.routers import health
from fakes import FakePumpDriver


async def get(target_app, path: str):
    async with AsyncClient(
        transport=ASGITransport(app=target_app), base_url="http://test"
    ) as client:
        return await client.get(path)


class TestHealthEndpoint:
    """Tests for /health."""

    @pytest.mark.parametrize(
        ("reachable", "status_code", "overall", "database"),
        [
            (True, 200, "healthy", "connected"),
            (False, 503, "degraded", "disconnected"),
        ],
    )
    async def test_reports_database_state(
        self, monkeypatch, reachable, status_code, overall, database
    ):
        monkeypatch.setattr(
            health, "check_database_connection", AsyncMock(return_value=reachable)
        )

        response = await get(app, "/health")

        assert response.status_code == status_code
        assert response.json() == {
            "status": overall,
            "database": database,
            "smb_basal": {"configured": False},
        }

    async def test_reports_manager_state_with_real_database(self, db_engine):
        response = await get(create_app(driver=FakePumpDriver()), "/health")

        assert response.status_code == 200
        assert response.json()["smb_basal"] == {
            "configured": True,
            "enabled": False,
            "running": False,
        }


class TestLivenessProbe:
    """Tests for /health/live and the root endpoint."""

    async def test_liveness_always_succeeds(self):
        response = await get(app, "/health/live")

        assert response.status_code == 200
        assert response.json() == {"status": "alive"}

    async def test_root_names_service(self):
        response = await get(app, "/")
        assert response.json()["name"] == "Basal Loop"
