"""Planner orchestration logic."""
from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any

import structlog
from opentelemetry import trace
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import get_settings
from ..persistence.models import AuditLog, PlanAllocation, PlanRun, PlanStatus, PlanUnallocated
from .classifier import ValueClassifier
from .plan_builder import build_art_plan
from .report import build_plan_report
from .types import ARTPlan, DependencyEdge, ProgramIncrement, Team, WorkItem

logger = structlog.get_logger(__name__)
tracer = trace.get_tracer(__name__)


@dataclass
class PlanCreateParams:
    program_increment: ProgramIncrement
    work_items: list[WorkItem]
    edges: list[DependencyEdge]
    teams: list[Team]
    config_overrides: dict[str, Any] | None = None
    request_payload: dict[str, Any] = field(default_factory=dict)
    principal: str = "system"
    correlation_id: str = "system"
    rerun_of: str | None = None


def _status(plan: ARTPlan) -> PlanStatus:
    if plan.readiness.is_ready:
        return PlanStatus.ready
    if plan.optimization is not None and plan.optimization.changes:
        return PlanStatus.optimized
    return PlanStatus.needs_attention


class PlannerOrchestrator:
    def __init__(self, session: AsyncSession, classifier: ValueClassifier | None = None) -> None:
        self._session = session
        self._settings = get_settings()
        self._classifier = classifier

    async def create_plan(self, params: PlanCreateParams) -> PlanRun:
        start = time.perf_counter()
        config = self._settings.planning.merged(params.config_overrides)

        with tracer.start_as_current_span("art_planner.build_plan") as span:
            span.set_attribute("art_planner.program_increment", params.program_increment.id)
            span.set_attribute("art_planner.work_items", len(params.work_items))
            span.set_attribute("art_planner.teams", len(params.teams))
            plan = build_art_plan(
                params.program_increment,
                params.work_items,
                params.edges,
                params.teams,
                config,
                self._classifier,
            )
            span.set_attribute("art_planner.readiness_score", plan.readiness.score)

        with tracer.start_as_current_span("art_planner.report"):
            report = build_plan_report(plan)

        run = PlanRun(
            program_increment_id=params.program_increment.id,
            program_increment_name=params.program_increment.name,
            start_date=params.program_increment.start_date,
            end_date=params.program_increment.end_date,
            status=_status(plan),
            readiness_score=plan.readiness.score,
            is_ready=plan.readiness.is_ready,
            allocated_count=len(plan.allocation.allocated),
            unallocated_count=len(plan.allocation.unallocated),
            wall_time_ms=int((time.perf_counter() - start) * 1000),
            params={"request": params.request_payload, "config": config.model_dump()},
            report=report,
            rerun_of=params.rerun_of,
        )
        with tracer.start_as_current_span("art_planner.persist"):
            self._session.add(run)
            await self._session.flush()
            self._persist_allocations(run, plan)
            self._persist_audit(run, params)
            await self._session.flush()

        logger.info(
            "plan.persisted",
            plan_id=run.id,
            status=run.status.value,
            readiness=plan.readiness.score,
            wall_time_ms=run.wall_time_ms,
            correlation_id=params.correlation_id,
        )
        return run

    def _persist_allocations(self, run: PlanRun, plan: ARTPlan) -> None:
        for alloc in plan.allocation.allocated:
            self._session.add(
                PlanAllocation(
                    run_id=run.id,
                    work_item_id=alloc.item_id,
                    title=alloc.work_item.title,
                    team_id=alloc.team_id,
                    iteration_id=alloc.iteration_id,
                    iteration_index=alloc.iteration_index,
                    points=alloc.allocated_points,
                    confidence=alloc.confidence,
                    rationale=alloc.rationale,
                )
            )
        for item in plan.allocation.unallocated:
            self._session.add(
                PlanUnallocated(
                    run_id=run.id,
                    work_item_id=item.work_item.id,
                    reason=item.reason,
                    blockers=list(item.blockers),
                    solutions=list(item.solutions),
                )
            )

    def _persist_audit(self, run: PlanRun, params: PlanCreateParams) -> None:
        self._session.add(
            AuditLog(
                principal=params.principal,
                action="plan.rerun" if params.rerun_of else "plan.created",
                old_val={"planId": params.rerun_of} if params.rerun_of else None,
                new_val={
                    "planId": run.id,
                    "programIncrementId": run.program_increment_id,
                    "readinessScore": float(run.readiness_score),
                },
                correlation_id=params.correlation_id,
            )
        )


__all__ = ["PlanCreateParams", "PlannerOrchestrator"]
