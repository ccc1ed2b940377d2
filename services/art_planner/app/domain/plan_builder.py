"""End-to-end construction of a release-train plan."""
from __future__ import annotations

from collections import Counter
from dataclasses import replace
from typing import Iterable, Sequence

import structlog

from ..config import PlanningConfig
from .allocator import allocate_work_items
from .capacity import compute_capacities
from .classifier import KeywordValueClassifier, ValueClassifier
from .errors import PlanInputError
from .graph import build_dependency_graph
from .iterations import generate_iterations
from .optimizer import optimize_readiness
from .types import ARTPlan, DependencyEdge, ProgramIncrement, Team, WorkItem
from .validator import assess_readiness, build_iteration_plans

logger = structlog.get_logger(__name__)


def validate_inputs(work_items: Sequence[WorkItem], teams: Sequence[Team]) -> None:
    if not teams:
        raise PlanInputError("At least one team is required to plan a program increment")
    duplicates = [item_id for item_id, count in Counter(item.id for item in work_items).items() if count > 1]
    if duplicates:
        raise PlanInputError(f"Duplicate work item ids: {', '.join(duplicates)}", duplicates)
    duplicate_teams = [team_id for team_id, count in Counter(team.id for team in teams).items() if count > 1]
    if duplicate_teams:
        raise PlanInputError(f"Duplicate team ids: {', '.join(duplicate_teams)}", duplicate_teams)


def build_art_plan(
    program_increment: ProgramIncrement,
    work_items: Sequence[WorkItem],
    edges: Iterable[DependencyEdge],
    teams: Sequence[Team],
    config: PlanningConfig,
    classifier: ValueClassifier | None = None,
) -> ARTPlan:
    classifier = classifier or KeywordValueClassifier()
    validate_inputs(work_items, teams)

    iterations = generate_iterations(program_increment, teams, config)
    graph = build_dependency_graph(work_items, edges, default_points=config.default_story_points)
    capacities = compute_capacities(iterations, teams, config)
    allocation = allocate_work_items(work_items, iterations, graph, teams, config, capacities)
    iteration_plans = build_iteration_plans(allocation, iterations, capacities, graph, config, classifier)
    readiness = assess_readiness(iteration_plans, graph, config)

    plan = ARTPlan(
        program_increment=program_increment,
        iterations=tuple(iterations),
        work_items=tuple(work_items),
        teams=tuple(teams),
        graph=graph,
        capacities=capacities,
        allocation=allocation,
        iteration_plans=tuple(iteration_plans),
        readiness=readiness,
        config=config,
    )

    if config.enable_value_optimization and readiness.score < config.optimizer.target_readiness_score:
        optimization = optimize_readiness(plan, config, classifier)
        plan = replace(
            plan,
            allocation=optimization.allocation,
            iteration_plans=optimization.iteration_plans,
            readiness=optimization.readiness,
            optimization=optimization,
        )

    logger.info(
        "plan.built",
        program_increment=program_increment.id,
        iterations=len(iterations),
        allocated=len(plan.allocation.allocated),
        unallocated=len(plan.allocation.unallocated),
        readiness=plan.readiness.score,
        optimized=plan.optimization is not None,
    )
    return plan


__all__ = [
    "allocate_work_items",
    "assess_readiness",
    "build_art_plan",
    "build_dependency_graph",
    "compute_capacities",
    "optimize_readiness",
    "validate_inputs",
]
