import pytest
from pydantic import ValidationError

from services.art_planner.app.config import CapacityFactors, PlannerSettings, PlanningConfig


def test_merged_applies_overrides_and_ignores_unknown_keys():
    base = PlanningConfig()

    merged = base.merged(
        {
            "buffer_capacity": 0.1,
            "planning_horizon": None,
            "not_a_setting": 42,
            "optimizer": {"target_readiness_score": 0.9, "max_iteration_changes": None},
        }
    )

    assert merged.buffer_capacity == 0.1
    assert merged.planning_horizon == base.planning_horizon
    assert merged.optimizer.target_readiness_score == 0.9
    assert merged.optimizer.max_iteration_changes == base.optimizer.max_iteration_changes
    assert base.buffer_capacity == 0.2


def test_merged_without_overrides_returns_same_instance():
    base = PlanningConfig()

    assert base.merged(None) is base
    assert base.merged({}) is base


def test_merged_validates_ranges():
    with pytest.raises(ValidationError):
        PlanningConfig().merged({"max_capacity_utilization": 1.5})


def test_combined_capacity_factor():
    factors = CapacityFactors(holiday_factor=0.5, pto_factor=0.5, meeting_factor=1.0, focus_factor=0.8)

    assert factors.combined() == pytest.approx(0.2)


def test_settings_read_nested_environment(monkeypatch):
    monkeypatch.setenv("ART_PLANNER_PLANNING__BUFFER_CAPACITY", "0.1")
    monkeypatch.setenv("ART_PLANNER_PLANNING__OPTIMIZER__TARGET_READINESS_SCORE", "0.9")
    monkeypatch.setenv("ART_PLANNER_ENVIRONMENT", "qa")

    settings = PlannerSettings()

    assert settings.planning.buffer_capacity == 0.1
    assert settings.planning.optimizer.target_readiness_score == 0.9
    assert settings.environment == "qa"
