"""Tests for the SMB-basal HTTP endpoints."""

from datetime import UTC, datetime

import pytest
from httpx import ASGITransport, AsyncClient

from basal_loop.config import Settings
from basal_loop.core.enums import EventKind, InsulinCurve
from basal_loop.dependencies import build_components
from basal_loop.main import create_app
from basal_loop.schemas.basal_profile import BasalProfileEntry
from basal_loop.schemas.pump_history import PumpHistoryEvent
from basal_loop.services.scheduler import stop_scheduler
from fakes import FakePumpDriver


@pytest.fixture
async def api_app(db_engine):
    app = create_app(
        driver=FakePumpDriver(),
        basal_profile=lambda: [BasalProfileEntry(start_minute=0, rate=0.9)],
        config=Settings(smb_basal_enabled=False),
    )
    yield app
    stop_scheduler()


@pytest.fixture
async def client(api_app):
    async with AsyncClient(
        transport=ASGITransport(app=api_app),
        base_url="http://test",
    ) as ac:
        yield ac


class TestStatusEndpoints:
    """Tests for status and enable/disable."""

    async def test_status(self, client):
        response = await client.get("/api/smb-basal/status")

        assert response.status_code == 200
        data = response.json()
        assert data["is_enabled"] is False
        assert data["is_running"] is False
        assert data["pump_step"] == 0.05
        assert data["current_basal_rate"] == 0.9
        assert data["failed_pulses"]["count"] == 0

    async def test_enable_and_disable(self, client):
        response = await client.put("/api/smb-basal/enabled", json={"enabled": True})
        assert response.status_code == 200
        assert response.json()["is_running"] is True

        response = await client.put("/api/smb-basal/enabled", json={"enabled": False})
        assert response.status_code == 200
        assert response.json()["is_running"] is False
        assert response.json()["accumulator_units"] == 0.0

    async def test_enable_requires_flag(self, client):
        response = await client.put("/api/smb-basal/enabled", json={})
        assert response.status_code == 422

    async def test_no_driver_configured(self, db_engine):
        app = create_app()
        async with AsyncClient(
            transport=ASGITransport(app=app), base_url="http://test"
        ) as ac:
            response = await ac.get("/api/smb-basal/status")

        assert response.status_code == 503


class TestIobEndpoints:
    """Tests for IoB and forecast endpoints."""

    async def test_basal_iob_empty(self, client):
        response = await client.get("/api/smb-basal/iob")

        assert response.status_code == 200
        assert response.json()["iob"] == 0.0
        assert response.json()["active_pulses"] == 0

    async def test_total_iob(self, client, api_app):
        await api_app.state.smb_basal.ledger.store(
            [
                PumpHistoryEvent(
                    id="a",
                    kind=EventKind.bolus,
                    timestamp=datetime.now(UTC),
                    amount=1.5,
                )
            ]
        )

        response = await client.get("/api/smb-basal/iob/total")

        assert response.status_code == 200
        data = response.json()
        assert data["bolus_iob"] == pytest.approx(1.5)
        assert data["difference"] is None

    async def test_forecast_hours(self, client):
        response = await client.get("/api/smb-basal/iob/forecast", params={"hours": 1})

        assert response.status_code == 200
        data = response.json()
        assert len(data["points"]) == 13
        assert data["points"][0]["label"] == "Now"
        assert data["resolution_minutes"] == 5

    async def test_forecast_hours_out_of_range(self, client):
        response = await client.get("/api/smb-basal/iob/forecast", params={"hours": 12})
        assert response.status_code == 422


class TestHistoryEndpoints:
    """Tests for pump history and treatment endpoints."""

    async def test_pump_history(self, client, api_app):
        await api_app.state.smb_basal.ledger.store_journal_carbs(20)

        response = await client.get("/api/smb-basal/pump-history")

        assert response.status_code == 200
        data = response.json()
        assert data["count"] == 1
        assert data["events"][0]["kind"] == "journal_carbs"

    async def test_unsynced_treatments(self, client, api_app):
        await api_app.state.smb_basal.ledger.store_journal_carbs(20)

        response = await client.get("/api/smb-basal/treatments/unsynced")

        assert response.status_code == 200
        data = response.json()
        assert data["count"] == 1
        assert data["treatments"][0]["event_type"] == "carb_correction"
        assert data["treatments"][0]["entered_by"] == "basal-loop"


class TestCorrelationHeader:
    """Tests for request correlation IDs."""

    async def test_generated_id_returned(self, client):
        response = await client.get("/api/smb-basal/status")
        assert response.headers["x-correlation-id"].startswith("req-")

    async def test_incoming_id_echoed(self, client):
        response = await client.get(
            "/api/smb-basal/status", headers={"X-Correlation-ID": "trace-42"}
        )
        assert response.headers["x-correlation-id"] == "trace-42"


class TestWiring:
    """Tests for building the services from configuration."""

    async def test_unusable_custom_peak_does_not_block_startup(self, db_engine):
        config = Settings(
            insulin_curve=InsulinCurve.ultra_rapid,
            use_custom_peak_time=True,
            insulin_peak_time_minutes=160,
        )

        components = build_components(FakePumpDriver(), list, config=config)

        assert components.basal_iob.params.peak_activity_minutes == 55
        assert components.manager.enabled is False
