from datetime import date

import pytest
from httpx import ASGITransport, AsyncClient

from services.art_planner.app.config import CapacityFactors, PlanningConfig, get_settings
from services.art_planner.app.domain.types import ProgramIncrement, Team
from services.art_planner.app.main import app
from services.art_planner.app.persistence.db import dispose_engine, init_db

NEUTRAL_FACTORS = CapacityFactors(holiday_factor=1.0, pto_factor=1.0, meeting_factor=1.0, focus_factor=1.0)


@pytest.fixture
def neutral_config() -> PlanningConfig:
    """Available capacity equals raw velocity for full-length iterations."""
    return PlanningConfig(buffer_capacity=0.0, capacity_factors=NEUTRAL_FACTORS)


@pytest.fixture
def two_iteration_pi() -> ProgramIncrement:
    return ProgramIncrement(id="PI1", name="PI 1", start_date=date(2024, 1, 1), end_date=date(2024, 1, 28))


@pytest.fixture
def three_iteration_pi() -> ProgramIncrement:
    return ProgramIncrement(id="PI1", name="PI 1", start_date=date(2024, 1, 1), end_date=date(2024, 2, 11))


@pytest.fixture
def single_team() -> list[Team]:
    return [Team(id="T1", name="Team One", member_count=5, average_velocity=6, specializations=("backend",))]


@pytest.fixture
async def client(tmp_path, monkeypatch):
    monkeypatch.setenv("ART_PLANNER_STORAGE__DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'art_planner.db'}")
    get_settings.cache_clear()
    await dispose_engine()
    await init_db()
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as http_client:
        yield http_client
    await dispose_engine()
    get_settings.cache_clear()
