"""Team capacity calculation and utilization metrics."""
from __future__ import annotations

import math
from typing import Iterable, Sequence

import structlog

from ..config import CapacityFactors, PlanningConfig
from .errors import CapacityValidationError
from .types import (
    AllocatedWorkItem,
    CapacityCalculationResult,
    CapacityMetrics,
    CapacityUtilization,
    Iteration,
    Team,
    TeamCapacity,
)

logger = structlog.get_logger(__name__)

BASE_CONFIDENCE = 0.9


def validate_team(team: Team) -> tuple[list[str], list[str]]:
    """Return (issues, warnings) for a single team."""
    issues: list[str] = []
    warnings: list[str] = []
    if team.average_velocity <= 0:
        issues.append(f"Team {team.name} has invalid average velocity: {team.average_velocity}")
    if team.member_count <= 0:
        issues.append(f"Team {team.name} has invalid member count: {team.member_count}")
    if not 0 <= team.capacity_factor <= 1:
        issues.append(f"Team {team.name} has invalid capacity factor: {team.capacity_factor}")
    if team.member_count > 0 and team.average_velocity > team.member_count * 10:
        warnings.append(
            f"Team {team.name} has unusually high velocity ({team.average_velocity}) for team size ({team.member_count})"
        )
    return issues, warnings


def validate_teams(teams: Sequence[Team], factors: CapacityFactors) -> list[str]:
    """Raise ``CapacityValidationError`` on any invariant violation; return the warnings otherwise."""
    issues: list[str] = []
    warnings: list[str] = []
    invalid: list[str] = []
    for team in teams:
        team_issues, team_warnings = validate_team(team)
        if team_issues:
            invalid.append(team.id)
        issues.extend(team_issues)
        warnings.extend(team_warnings)
    for name, value in factors.model_dump().items():
        if not 0 <= value <= 1:
            issues.append(f"Capacity factor {name} must be within [0, 1], got {value}")
    if issues:
        logger.error("capacity.validation_failed", issues=issues, teams=invalid)
        raise CapacityValidationError(issues, invalid)
    for warning in warnings:
        logger.warning("capacity.validation_warning", detail=warning)
    return warnings


def team_confidence(team: Team) -> tuple[float, list[str]]:
    confidence = BASE_CONFIDENCE
    risks: list[str] = []
    if team.average_velocity < 10:
        confidence -= 0.1
        risks.append(f"Team {team.name} has low historical velocity")
    if team.member_count < 3:
        confidence -= 0.15
        risks.append(f"Team {team.name} is very small ({team.member_count} members)")
    elif team.member_count > 10:
        confidence -= 0.1
        risks.append(f"Team {team.name} is very large ({team.member_count} members)")
    if not team.specializations:
        confidence -= 0.05
        risks.append(f"Team {team.name} has no defined specializations")
    return max(0.3, min(1.0, confidence)), risks


def compute_capacities(
    iterations: Sequence[Iteration],
    teams: Sequence[Team],
    config: PlanningConfig,
) -> CapacityCalculationResult:
    warnings = validate_teams(teams, config.capacity_factors)
    roster = {team.id: team for team in teams}
    reduction = config.capacity_factors.combined() * (1 - config.buffer_capacity)

    capacities: list[TeamCapacity] = []
    notes: list[str] = list(warnings)
    risks: list[str] = []
    confidence_by_team: dict[str, float] = {}

    for team in teams:
        confidence, team_risks = team_confidence(team)
        confidence_by_team[team.id] = confidence
        risks.extend(team_risks)
        if team.capacity_factor != 1:
            notes.append(f"Applied team capacity factor {team.capacity_factor} for {team.name}")

    for iteration in iterations:
        duration_factor = iteration.duration / config.default_iteration_length
        if iteration.duration != config.default_iteration_length:
            notes.append(
                f"Adjusted {iteration.name} for iteration duration: {iteration.duration} days (factor: {duration_factor:.2f})"
            )
        for team_id in iteration.team_ids:
            team = roster.get(team_id)
            if team is None:
                notes.append(f"Team {team_id} is eligible for {iteration.name} but missing from the roster")
                logger.warning("capacity.unknown_team", iteration=iteration.id, team=team_id)
                continue
            available = team.average_velocity * team.capacity_factor * duration_factor * reduction
            capacities.append(
                TeamCapacity(
                    team_id=team.id,
                    team_name=team.name,
                    iteration_id=iteration.id,
                    total_capacity=team.average_velocity,
                    available_capacity=round(available, 2),
                    team_size=team.member_count,
                    average_velocity=team.average_velocity,
                    capacity_factor=team.capacity_factor,
                    confidence_factor=confidence_by_team[team.id],
                )
            )

    if config.buffer_capacity:
        notes.append(f"Applied {config.buffer_capacity * 100:.0f}% buffer capacity")

    total = round(sum(tc.available_capacity for tc in capacities), 2)
    confidence_score = (
        sum(confidence_by_team.values()) / len(confidence_by_team) if confidence_by_team else 0.0
    )
    logger.info(
        "capacity.computed",
        iterations=len(iterations),
        teams=len(teams),
        total_capacity=total,
        confidence=round(confidence_score, 3),
    )
    return CapacityCalculationResult(
        team_capacities=capacities,
        total_capacity=total,
        confidence_score=confidence_score,
        notes=notes,
        risks=risks,
    )


def calculate_utilization(
    allocated: Iterable[AllocatedWorkItem],
    capacities: CapacityCalculationResult,
    config: PlanningConfig,
) -> list[CapacityUtilization]:
    """Utilization for every (iteration, team) pair with computed capacity."""
    points: dict[tuple[str, str], int] = {}
    for alloc in allocated:
        key = (alloc.iteration_id, alloc.team_id)
        points[key] = points.get(key, 0) + alloc.allocated_points

    utilizations: list[CapacityUtilization] = []
    for tc in capacities.team_capacities:
        allocated_points = points.get((tc.iteration_id, tc.team_id), 0)
        available = tc.available_capacity
        rate = allocated_points / available if available > 0 else 0.0
        utilizations.append(
            CapacityUtilization(
                iteration_id=tc.iteration_id,
                team_id=tc.team_id,
                available_capacity=available,
                allocated_points=allocated_points,
                utilization_rate=rate,
                is_over_allocated=rate > config.max_capacity_utilization or (available <= 0 and allocated_points > 0),
                buffer_capacity=max(0.0, round(available - allocated_points, 2)),
            )
        )
    return utilizations


def capacity_metrics(utilizations: Sequence[CapacityUtilization]) -> CapacityMetrics:
    if not utilizations:
        return CapacityMetrics(0.0, 0.0, 0.0, 0.0, 0, 0.0, 0)
    rates = [u.utilization_rate for u in utilizations]
    mean = sum(rates) / len(rates)
    variance = sum((rate - mean) ** 2 for rate in rates) / len(rates)
    return CapacityMetrics(
        average_utilization=mean,
        max_utilization=max(rates),
        min_utilization=min(rates),
        utilization_std_dev=math.sqrt(variance),
        over_allocated_count=sum(1 for u in utilizations if u.is_over_allocated),
        total_capacity=round(sum(u.available_capacity for u in utilizations), 2),
        total_allocated=sum(u.allocated_points for u in utilizations),
    )


def review_utilization(utilizations: Sequence[CapacityUtilization]) -> tuple[list[str], list[str]]:
    """Per-team (issues, recommendations) for one iteration's utilization."""
    issues: list[str] = []
    recommendations: list[str] = []
    for u in utilizations:
        if u.is_over_allocated:
            issues.append(f"Team {u.team_id} is over-allocated at {u.utilization_rate * 100:.1f}%")
            recommendations.append(f"Reduce allocation for team {u.team_id} or increase capacity")
        elif u.utilization_rate > 0.95:
            recommendations.append(f"Team {u.team_id} has no capacity buffer - consider reducing allocation")
        if u.utilization_rate < 0.5:
            recommendations.append(
                f"Team {u.team_id} has low utilization ({u.utilization_rate * 100:.1f}%) - consider additional work"
            )
    return issues, recommendations


def capacity_recommendations(utilizations: Sequence[CapacityUtilization]) -> list[str]:
    if not utilizations:
        return []
    recommendations: list[str] = []
    over = [u for u in utilizations if u.is_over_allocated]
    under = [u for u in utilizations if u.utilization_rate < 0.6]
    if over:
        recommendations.append(f"{len(over)} teams are over-allocated - consider redistributing work")
    if under:
        recommendations.append(f"{len(under)} teams have low utilization - consider additional work or cross-training")

    rates = [u.utilization_rate for u in utilizations]
    mean = sum(rates) / len(rates)
    if max(abs(rate - mean) for rate in rates) > 0.3:
        recommendations.append("Large capacity imbalance detected - consider rebalancing work across teams")

    total_capacity = sum(u.available_capacity for u in utilizations)
    total_allocated = sum(u.allocated_points for u in utilizations)
    overall = total_allocated / total_capacity if total_capacity > 0 else 0.0
    if overall > 0.9:
        recommendations.append("Overall capacity utilization is very high - consider reducing scope or adding capacity")
    elif overall < 0.5:
        recommendations.append("Overall capacity utilization is low - consider adding more work or reducing team size")
    return recommendations


__all__ = [
    "calculate_utilization",
    "capacity_metrics",
    "capacity_recommendations",
    "compute_capacities",
    "review_utilization",
    "team_confidence",
    "validate_team",
    "validate_teams",
]
