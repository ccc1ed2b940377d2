"""Planning run API."""
from __future__ import annotations

import uuid
from datetime import date
from typing import Any, List

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from ..domain.planner_service import PlanCreateParams, PlannerOrchestrator
from ..domain.types import (
    DependencyEdge,
    DependencyStrength,
    DependencyType,
    ProgramIncrement,
    Team,
    WorkItem,
    WorkItemType,
)
from ..persistence.models import PlanRun
from .deps import get_db_session

router = APIRouter(prefix="/plans", tags=["plans"])


class WorkItemPayload(BaseModel):
    id: str
    type: WorkItemType = WorkItemType.story
    title: str
    description: str = ""
    story_points: int | None = Field(default=None, alias="storyPoints", ge=0)
    priority: int | None = Field(default=None, ge=1)
    parent_id: str | None = Field(default=None, alias="parentId")
    acceptance_criteria: List[str] = Field(default_factory=list, alias="acceptanceCriteria")
    labels: List[str] = Field(default_factory=list)

    model_config = ConfigDict(populate_by_name=True)

    def to_domain(self) -> WorkItem:
        return WorkItem(
            id=self.id,
            type=self.type,
            title=self.title,
            description=self.description,
            story_points=self.story_points,
            priority=self.priority,
            parent_id=self.parent_id,
            acceptance_criteria=tuple(self.acceptance_criteria),
            labels=tuple(self.labels),
        )


class DependencyPayload(BaseModel):
    source_id: str = Field(alias="sourceId")
    target_id: str = Field(alias="targetId")
    type: DependencyType = DependencyType.requires
    strength: DependencyStrength = DependencyStrength.soft
    confidence: float = Field(default=1.0, ge=0, le=1)
    rationale: str = ""

    model_config = ConfigDict(populate_by_name=True)

    def to_domain(self) -> DependencyEdge:
        return DependencyEdge(
            source_id=self.source_id,
            target_id=self.target_id,
            type=self.type,
            strength=self.strength,
            confidence=self.confidence,
            rationale=self.rationale,
        )


class TeamPayload(BaseModel):
    id: str
    name: str
    member_count: int = Field(alias="memberCount")
    average_velocity: float = Field(alias="averageVelocity")
    capacity_factor: float = Field(default=1.0, alias="capacityFactor")
    specializations: List[str] = Field(default_factory=list)

    model_config = ConfigDict(populate_by_name=True)

    def to_domain(self) -> Team:
        return Team(
            id=self.id,
            name=self.name,
            member_count=self.member_count,
            average_velocity=self.average_velocity,
            capacity_factor=self.capacity_factor,
            specializations=tuple(self.specializations),
        )


class ProgramIncrementPayload(BaseModel):
    id: str
    name: str
    start_date: date = Field(alias="startDate")
    end_date: date = Field(alias="endDate")

    model_config = ConfigDict(populate_by_name=True)

    def to_domain(self) -> ProgramIncrement:
        return ProgramIncrement(id=self.id, name=self.name, start_date=self.start_date, end_date=self.end_date)


class PlanOptions(BaseModel):
    iteration_length: int | None = Field(default=None, alias="iterationLength", ge=1)
    buffer_capacity: float | None = Field(default=None, alias="bufferCapacity", ge=0, lt=1)
    max_capacity_utilization: float | None = Field(default=None, alias="maxCapacityUtilization", gt=0, le=1)
    min_value_delivery_threshold: float | None = Field(default=None, alias="minValueDeliveryThreshold", ge=0, le=1)
    planning_horizon: int | None = Field(default=None, alias="planningHorizon", ge=1)
    enable_dependency_optimization: bool | None = Field(default=None, alias="enableDependencyOptimization")
    enable_value_optimization: bool | None = Field(default=None, alias="enableValueOptimization")
    defer_unplaceable_items: bool | None = Field(default=None, alias="deferUnplaceableItems")
    target_readiness_score: float | None = Field(default=None, alias="targetReadinessScore", ge=0, le=1)
    max_iteration_changes: int | None = Field(default=None, alias="maxIterationChanges", ge=0)

    model_config = ConfigDict(populate_by_name=True)

    def to_overrides(self) -> dict[str, Any]:
        return {
            "default_iteration_length": self.iteration_length,
            "buffer_capacity": self.buffer_capacity,
            "max_capacity_utilization": self.max_capacity_utilization,
            "min_value_delivery_threshold": self.min_value_delivery_threshold,
            "planning_horizon": self.planning_horizon,
            "enable_dependency_optimization": self.enable_dependency_optimization,
            "enable_value_optimization": self.enable_value_optimization,
            "defer_unplaceable_items": self.defer_unplaceable_items,
            "optimizer": {
                "target_readiness_score": self.target_readiness_score,
                "max_iteration_changes": self.max_iteration_changes,
            },
        }


class PlanCreateRequest(BaseModel):
    program_increment: ProgramIncrementPayload = Field(alias="programIncrement")
    work_items: List[WorkItemPayload] = Field(alias="workItems")
    dependencies: List[DependencyPayload] = Field(default_factory=list)
    teams: List[TeamPayload]
    options: PlanOptions | None = None

    model_config = ConfigDict(populate_by_name=True)

    def to_params(self, principal: str, rerun_of: str | None = None) -> PlanCreateParams:
        return PlanCreateParams(
            program_increment=self.program_increment.to_domain(),
            work_items=[item.to_domain() for item in self.work_items],
            edges=[dep.to_domain() for dep in self.dependencies],
            teams=[team.to_domain() for team in self.teams],
            config_overrides=self.options.to_overrides() if self.options else None,
            request_payload=self.model_dump(mode="json", by_alias=True),
            principal=principal,
            correlation_id=str(uuid.uuid4()),
            rerun_of=rerun_of,
        )


class PlanSummaryResponse(BaseModel):
    id: str
    program_increment_id: str = Field(alias="programIncrementId")
    status: str
    readiness_score: float = Field(alias="readinessScore")
    is_ready: bool = Field(alias="isReady")
    allocated_count: int = Field(alias="allocatedCount")
    unallocated_count: int = Field(alias="unallocatedCount")
    wall_time_ms: int | None = Field(alias="wallTimeMs")
    rerun_of: str | None = Field(default=None, alias="rerunOf")
    summary: dict[str, Any] = Field(default_factory=dict)
    created_at: str | None = Field(alias="createdAt")

    model_config = ConfigDict(populate_by_name=True)


def _plan_not_found(plan_id: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Plan {plan_id} not found")


async def _load_run(session: AsyncSession, plan_id: str) -> PlanRun:
    run = await session.get(PlanRun, plan_id)
    if not run:
        raise _plan_not_found(plan_id)
    return run


def _build_summary(run: PlanRun) -> PlanSummaryResponse:
    report = run.report or {}
    return PlanSummaryResponse(
        id=run.id,
        programIncrementId=run.program_increment_id,
        status=run.status.value,
        readinessScore=float(run.readiness_score),
        isReady=run.is_ready,
        allocatedCount=run.allocated_count,
        unallocatedCount=run.unallocated_count,
        wallTimeMs=run.wall_time_ms,
        rerunOf=run.rerun_of,
        summary=report.get("summary", {}),
        createdAt=run.created_at.isoformat() if run.created_at else None,
    )


@router.post("", response_model=PlanSummaryResponse, response_model_by_alias=True, status_code=status.HTTP_201_CREATED)
async def create_plan(
    request: PlanCreateRequest,
    session: AsyncSession = Depends(get_db_session),
):
    orchestrator = PlannerOrchestrator(session)
    run = await orchestrator.create_plan(request.to_params(principal="api"))
    return _build_summary(run)


@router.get("/{plan_id}", response_model=PlanSummaryResponse, response_model_by_alias=True)
async def get_plan(plan_id: str, session: AsyncSession = Depends(get_db_session)):
    return _build_summary(await _load_run(session, plan_id))


@router.get("/{plan_id}/iterations")
async def get_iterations(plan_id: str, session: AsyncSession = Depends(get_db_session)):
    run = await _load_run(session, plan_id)
    report = run.report or {}
    return {"iterations": report.get("iterations", []), "unallocated": report.get("unallocated", [])}


@router.get("/{plan_id}/graph")
async def get_graph(plan_id: str, session: AsyncSession = Depends(get_db_session)):
    run = await _load_run(session, plan_id)
    return (run.report or {}).get("graph", {"nodes": [], "edges": []})


@router.get("/{plan_id}/report")
async def get_report(plan_id: str, session: AsyncSession = Depends(get_db_session)):
    run = await _load_run(session, plan_id)
    if not run.report:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Report not generated")
    return run.report


@router.post(
    "/{plan_id}/rerun",
    response_model=PlanSummaryResponse,
    response_model_by_alias=True,
    status_code=status.HTTP_201_CREATED,
)
async def rerun_plan(plan_id: str, session: AsyncSession = Depends(get_db_session)):
    run = await _load_run(session, plan_id)
    payload = (run.params or {}).get("request")
    if not payload:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Plan does not contain a rerunnable request")
    request = PlanCreateRequest.model_validate(payload)
    orchestrator = PlannerOrchestrator(session)
    new_run = await orchestrator.create_plan(request.to_params(principal="api", rerun_of=run.id))
    return _build_summary(new_run)


__all__ = ["router"]
