"""Application configuration using Pydantic settings."""
from __future__ import annotations

from functools import lru_cache
from typing import Any, Literal, Mapping

from pydantic import BaseModel, ConfigDict, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class CapacityFactors(BaseModel):
    """Multiplicative reductions applied to raw team velocity."""

    holiday_factor: float = Field(default=0.9, ge=0, le=1)
    pto_factor: float = Field(default=0.85, ge=0, le=1)
    meeting_factor: float = Field(default=0.8, ge=0, le=1)
    focus_factor: float = Field(default=0.85, ge=0, le=1)

    model_config = ConfigDict(frozen=True)

    def combined(self) -> float:
        return self.holiday_factor * self.pto_factor * self.meeting_factor * self.focus_factor


class OptimizerTuning(BaseModel):
    target_readiness_score: float = Field(default=0.85, ge=0, le=1)
    max_iteration_changes: int = Field(default=5, ge=0)
    low_value_threshold: float = Field(default=0.6, ge=0, le=1)
    high_value_threshold: float = Field(default=0.8, ge=0, le=1)
    regression_tolerance: float = Field(default=0.01, ge=0, le=0.1)
    max_deferrals_per_iteration: int = Field(default=2, ge=0)
    bottleneck_dependent_count: int = Field(default=3, ge=1)

    model_config = ConfigDict(frozen=True)


class PlanningConfig(BaseModel):
    """Explicit parameters for a planning run; passed into every core function."""

    default_iteration_length: int = Field(default=14, ge=1, description="Iteration length in days")
    buffer_capacity: float = Field(default=0.2, ge=0, lt=1)
    max_capacity_utilization: float = Field(default=0.85, gt=0, le=1)
    min_value_delivery_threshold: float = Field(default=0.8, ge=0, le=1)
    planning_horizon: int = Field(default=6, ge=1, description="Maximum number of iterations")
    enable_dependency_optimization: bool = True
    enable_value_optimization: bool = True
    defer_unplaceable_items: bool = False
    max_story_points: int = Field(default=5, ge=1)
    default_story_points: int = Field(default=3, ge=1)
    capacity_factors: CapacityFactors = CapacityFactors()
    optimizer: OptimizerTuning = OptimizerTuning()

    model_config = ConfigDict(frozen=True)

    def merged(self, overrides: Mapping[str, Any] | None) -> "PlanningConfig":
        """Return a copy with request overrides applied; unknown keys and ``None`` values are ignored."""
        if not overrides:
            return self
        data = self.model_dump()
        for key, value in overrides.items():
            if value is None or key not in data:
                continue
            if isinstance(value, Mapping) and isinstance(data[key], dict):
                data[key] = {**data[key], **{k: v for k, v in value.items() if v is not None}}
            else:
                data[key] = value
        return PlanningConfig.model_validate(data)


class ObservabilitySettings(BaseModel):
    otel_service_name: str = "art-planner"
    otel_exporter_otlp_endpoint: str | None = None
    log_level: str = "INFO"
    log_json: bool = False


class StorageSettings(BaseModel):
    database_url: str = Field(
        default="sqlite+aiosqlite:///./art_planner.db",
        description="SQLAlchemy async database URL (Postgres 15 in production)",
    )


class PlannerSettings(BaseSettings):
    planning: PlanningConfig = PlanningConfig()
    observability: ObservabilitySettings = ObservabilitySettings()
    storage: StorageSettings = StorageSettings()
    environment: Literal["dev", "qa", "prod"] | str = "dev"

    model_config = SettingsConfigDict(env_nested_delimiter="__", env_prefix="ART_PLANNER_", case_sensitive=False)


@lru_cache(maxsize=1)
def get_settings(**kwargs: Any) -> PlannerSettings:
    """Return cached settings instance."""
    return PlannerSettings(**kwargs)


__all__ = [
    "CapacityFactors",
    "OptimizerTuning",
    "PlannerSettings",
    "PlanningConfig",
    "get_settings",
]
