"""Pytest configuration and shared fixtures.

Every test that touches the database gets its own SQLite file under
``tmp_path``; the module-level engine is pointed at it so services that
use the default session maker see the same database.
"""

import os
from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

# Set testing mode BEFORE importing the package to use NullPool
os.environ["TESTING"] = "true"

from basal_loop.config import Settings, settings

# Override settings for testing
settings.testing = True

from basal_loop import database
from basal_loop.database import build_engine, build_session_maker, init_database
from basal_loop.schemas.basal_profile import BasalProfileEntry
from basal_loop.services.pump_history import PumpHistoryLedger
from basal_loop.services.smb_basal_pulses import PulseStore
from fakes import FakePumpDriver


@pytest_asyncio.fixture
async def db_engine(tmp_path, monkeypatch) -> AsyncGenerator[AsyncEngine, None]:
    """Per-test SQLite database with the ledger tables created."""
    engine = build_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'basal_loop.db'}", testing=True
    )
    await init_database(engine)
    monkeypatch.setattr(database, "_engine", engine)
    monkeypatch.setattr(database, "_session_maker", build_session_maker(engine))
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(db_engine) -> async_sessionmaker[AsyncSession]:
    return database.get_session_maker()


@pytest.fixture
def pulse_store(session_maker) -> PulseStore:
    return PulseStore(session_maker=session_maker)


@pytest.fixture
def ledger(session_maker, pulse_store) -> PumpHistoryLedger:
    return PumpHistoryLedger(
        pulse_store,
        session_maker=session_maker,
        smb_basal_enabled=lambda: True,
    )


@pytest.fixture
def pump_driver() -> FakePumpDriver:
    return FakePumpDriver()


@pytest.fixture
def smb_config() -> Settings:
    """Settings for an enabled SMB-basal manager with default timing."""
    return Settings(
        smb_basal_enabled=True,
        bolus_increment=0.05,
        smb_interval_minutes=3,
        tick_interval_seconds=60,
    )


@pytest.fixture
def flat_profile() -> list[BasalProfileEntry]:
    """1.2 U/h around the clock."""
    return [BasalProfileEntry(start_minute=0, rate=1.2)]
