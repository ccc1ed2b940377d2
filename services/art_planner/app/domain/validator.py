"""Readiness scoring for an allocated plan."""
from __future__ import annotations

from collections import Counter
from typing import Sequence

import structlog

from ..config import PlanningConfig
from .allocator import ordering_violations
from .capacity import calculate_utilization, review_utilization
from .classifier import KeywordValueClassifier, ValueClassifier
from .types import (
    AllocatedWorkItem,
    AllocationResult,
    CapacityCalculationResult,
    CapacityUtilization,
    DeliverableValue,
    DependencyGraph,
    Iteration,
    IterationPlan,
    ReadinessAssessment,
    ReadinessCategory,
    ReadinessResult,
    RiskSeverity,
    ValueRisk,
    WorkItemType,
)

logger = structlog.get_logger(__name__)

READY_THRESHOLD = 0.8
VALUE_CARRYING_TYPES = (WorkItemType.story, WorkItemType.feature)
NO_DIRECT_VALUE = "No direct user value"

_BLOCKING_CATEGORIES = (ReadinessCategory.dependency_resolution, ReadinessCategory.capacity_allocation)


def _clamp(score: float) -> float:
    return max(0.0, min(1.0, score))


def _value_risks(
    alloc: AllocatedWorkItem,
    over_allocated_teams: set[str],
    graph: DependencyGraph,
) -> list[ValueRisk]:
    item_id = alloc.item_id
    risks: list[ValueRisk] = []
    if len(alloc.blocked_by) > 3:
        risks.append(
            ValueRisk(
                id=f"high-dependency-{item_id}",
                description=f"Work item has {len(alloc.blocked_by)} dependencies",
                severity=RiskSeverity.medium,
                probability=0.6,
                impact="May delay value delivery if dependencies are not ready",
                mitigations=("Monitor dependency completion closely", "Prepare alternative implementation"),
                owner=alloc.team_id,
            )
        )
    if alloc.confidence < 0.7:
        risks.append(
            ValueRisk(
                id=f"low-confidence-{item_id}",
                description="Low confidence in allocation estimate",
                severity=RiskSeverity.medium,
                probability=0.4,
                impact="Work may take longer than expected",
                mitigations=("Add buffer time", "Break down work further", "Get expert review"),
            )
        )
    if alloc.team_id in over_allocated_teams:
        risks.append(
            ValueRisk(
                id=f"over-allocated-{item_id}",
                description=f"Assigned to over-allocated team {alloc.team_id}",
                severity=RiskSeverity.high,
                probability=0.7,
                impact="Team is unlikely to finish all committed work in the iteration",
                mitigations=("Move lower-priority work to a later iteration", "Borrow capacity from another team"),
                owner=alloc.team_id,
            )
        )
    if graph.on_critical_path(item_id) and alloc.confidence < 0.5:
        risks.append(
            ValueRisk(
                id=f"critical-path-{item_id}",
                description="Critical path item has low allocation confidence",
                severity=RiskSeverity.high,
                probability=0.5,
                impact="Slippage delays every downstream item",
                mitigations=("Swarm on the item early in the iteration", "Split the item to reduce uncertainty"),
                owner=alloc.team_id,
            )
        )
    return risks


def _value_confidence(
    allocated: Sequence[AllocatedWorkItem],
    value_stories: Sequence[str],
    risks: Sequence[ValueRisk],
) -> float:
    confidence = 0.8
    if value_stories:
        confidence += min(0.2, len(value_stories) * 0.05)
    else:
        confidence -= 0.3
    confidence -= 0.1 * sum(1 for risk in risks if risk.severity in (RiskSeverity.high, RiskSeverity.critical))
    if allocated:
        low = sum(1 for alloc in allocated if alloc.confidence < 0.7)
        confidence -= (low / len(allocated)) * 0.2
    return max(0.1, min(1.0, confidence))


def _secondary_values(allocated: Sequence[AllocatedWorkItem]) -> list[str]:
    values: list[str] = []
    if any(alloc.work_item.type is WorkItemType.enabler for alloc in allocated):
        values.append("Technical enablers and infrastructure improvements")
    if any(alloc.work_item.type is WorkItemType.feature for alloc in allocated):
        values.append("Feature development and capabilities")
    if any(word in alloc.work_item.description.lower() for alloc in allocated for word in ("research", "spike")):
        values.append("Learning and risk reduction")
    return values


def deliverable_value(
    allocated: Sequence[AllocatedWorkItem],
    utilization: Sequence[CapacityUtilization],
    graph: DependencyGraph,
    classifier: ValueClassifier,
) -> DeliverableValue:
    over_allocated = {u.team_id for u in utilization if u.is_over_allocated}
    value_items = [
        alloc
        for alloc in allocated
        if alloc.work_item.type in VALUE_CARRYING_TYPES and classifier.is_user_valuable(alloc.work_item)
    ]
    value_ids = [alloc.item_id for alloc in value_items]
    prerequisites = list(dict.fromkeys(prereq for alloc in value_items for prereq in alloc.blocked_by))
    risks = [risk for alloc in allocated for risk in _value_risks(alloc, over_allocated, graph)]

    categories = Counter(classifier.value_category(alloc.work_item) for alloc in value_items)
    primary = categories.most_common(1)[0][0] if categories else NO_DIRECT_VALUE

    return DeliverableValue(
        can_deliver_working_software=bool(value_items),
        primary_value=primary,
        secondary_values=tuple(_secondary_values(allocated)),
        value_confidence=round(_value_confidence(allocated, value_ids, risks), 4),
        value_delivery_stories=tuple(value_ids),
        value_prerequisites=tuple(prerequisites),
        value_risks=tuple(risks),
    )


def build_iteration_plans(
    allocation: AllocationResult,
    iterations: Sequence[Iteration],
    capacities: CapacityCalculationResult,
    graph: DependencyGraph,
    config: PlanningConfig,
    classifier: ValueClassifier | None = None,
) -> list[IterationPlan]:
    classifier = classifier or KeywordValueClassifier()
    utilizations = calculate_utilization(allocation.allocated, capacities, config)
    plans: list[IterationPlan] = []
    for iteration in iterations:
        allocated = allocation.for_iteration(iteration.id)
        utilization = [u for u in utilizations if u.iteration_id == iteration.id]
        plans.append(
            IterationPlan(
                iteration=iteration,
                allocated_work=tuple(allocated),
                utilization=tuple(utilization),
                deliverable_value=deliverable_value(allocated, utilization, graph, classifier),
                total_points=sum(alloc.allocated_points for alloc in allocated),
                total_capacity=round(capacities.iteration_total(iteration.id), 2),
            )
        )
    return plans


def assess_story_readiness(plans: Sequence[IterationPlan], config: PlanningConfig) -> ReadinessAssessment:
    issues: list[str] = []
    recommendations: list[str] = []
    total = oversized = missing_criteria = 0
    for plan in plans:
        for alloc in plan.allocated_work:
            item = alloc.work_item
            if item.type is not WorkItemType.story:
                continue
            total += 1
            if item.story_points and item.story_points > config.max_story_points:
                oversized += 1
                issues.append(f"Story {item.id} has {item.story_points} points (>{config.max_story_points})")
            if not item.acceptance_criteria:
                missing_criteria += 1
                issues.append(f"Story {item.id} lacks acceptance criteria")

    score = 1.0
    if total:
        score -= (oversized / total) * 0.5
        score -= (missing_criteria / total) * 0.3
    if oversized:
        recommendations.append(f"Break down {oversized} oversized stories into smaller sub-stories")
    if missing_criteria:
        recommendations.append(f"Add acceptance criteria to {missing_criteria} stories")
    if not issues:
        recommendations.append("Story readiness is good - all stories are properly sized and defined")
    return _assessment(ReadinessCategory.story_readiness, score, issues, recommendations)


def assess_dependency_resolution(plans: Sequence[IterationPlan], graph: DependencyGraph) -> ReadinessAssessment:
    issues: list[str] = []
    recommendations: list[str] = []
    score = 1.0

    if graph.circular_dependencies:
        issues.append(f"{len(graph.circular_dependencies)} circular dependencies detected")
        recommendations.append("Resolve circular dependencies before execution")
        score -= 0.4

    allocated = [alloc for plan in plans for alloc in plan.allocated_work]
    violations = ordering_violations(allocated, graph, [plan.iteration for plan in plans])
    if violations:
        issues.append(f"{len(violations)} dependency ordering violations")
        recommendations.append("Reorder work items to respect dependency constraints")
        score -= 0.1 * len(violations)

    scheduled = {alloc.item_id for alloc in allocated}
    external = list(
        dict.fromkeys(
            edge.target_id
            for edge in graph.edges
            if edge.is_prerequisite and edge.source_id in scheduled and edge.target_id not in scheduled
        )
    )
    if external:
        recommendations.append(f"Monitor {len(external)} external dependencies")
        score -= 0.05 * len(external)
    return _assessment(ReadinessCategory.dependency_resolution, score, issues, recommendations)


def assess_capacity_allocation(plans: Sequence[IterationPlan]) -> ReadinessAssessment:
    issues: list[str] = []
    recommendations: list[str] = []
    over_allocated_iterations = under_utilized_iterations = 0
    for plan in plans:
        over = plan.over_allocated_teams
        under = [u for u in plan.utilization if u.utilization_rate < 0.5]
        if over:
            over_allocated_iterations += 1
            issues.append(f"Iteration {plan.iteration.name} has {len(over)} over-allocated teams")
            team_issues, _ = review_utilization(plan.utilization)
            issues.extend(team_issues)
        if under:
            under_utilized_iterations += 1
            recommendations.append(f"Iteration {plan.iteration.name} has {len(under)} under-utilized teams")

    score = 1.0
    if plans:
        score -= (over_allocated_iterations / len(plans)) * 0.6
    if over_allocated_iterations:
        recommendations.append("Redistribute work to resolve capacity over-allocation")
    if under_utilized_iterations:
        recommendations.append("Consider additional work for under-utilized teams")
    return _assessment(ReadinessCategory.capacity_allocation, score, issues, recommendations)


def assess_value_delivery(plans: Sequence[IterationPlan], config: PlanningConfig) -> ReadinessAssessment:
    issues: list[str] = []
    recommendations: list[str] = []
    with_value = with_risks = 0
    for plan in plans:
        value = plan.deliverable_value
        if value.can_deliver_working_software:
            with_value += 1
        else:
            issues.append(f"Iteration {plan.iteration.name} cannot deliver working software")
        if value.value_confidence < config.min_value_delivery_threshold:
            issues.append(
                f"Iteration {plan.iteration.name} has low value delivery confidence ({value.value_confidence * 100:.0f}%)"
            )
        if value.has_high_severity_risk:
            with_risks += 1
            recommendations.append(f"Address high-severity value risks in iteration {plan.iteration.name}")

    score = 1.0
    if plans:
        score = with_value / len(plans) - (with_risks / len(plans)) * 0.2
    if with_value < len(plans):
        recommendations.append("Ensure all iterations can deliver working software value")
    if with_risks:
        recommendations.append("Develop mitigation strategies for value delivery risks")
    return _assessment(ReadinessCategory.value_delivery, score, issues, recommendations)


def _assessment(
    category: ReadinessCategory,
    score: float,
    issues: list[str],
    recommendations: list[str],
) -> ReadinessAssessment:
    score = round(_clamp(score), 4)
    return ReadinessAssessment(
        category=category,
        score=score,
        is_ready=score >= READY_THRESHOLD and not issues,
        issues=tuple(issues),
        recommendations=tuple(recommendations),
    )


def assess_readiness(
    iteration_plans: Sequence[IterationPlan],
    graph: DependencyGraph,
    config: PlanningConfig,
) -> ReadinessResult:
    """Score the plan on four independent categories and average them."""
    assessments = (
        assess_story_readiness(iteration_plans, config),
        assess_dependency_resolution(iteration_plans, graph),
        assess_capacity_allocation(iteration_plans),
        assess_value_delivery(iteration_plans, config),
    )
    score = round(sum(a.score for a in assessments) / len(assessments), 4)
    has_issues = any(a.issues for a in assessments)
    blockers = [issue for a in assessments if a.category in _BLOCKING_CATEGORIES for issue in a.issues]
    recommendations = list(dict.fromkeys(rec for a in assessments for rec in a.recommendations))
    result = ReadinessResult(
        is_ready=score >= READY_THRESHOLD and not has_issues,
        score=score,
        assessments=assessments,
        critical_blockers=tuple(blockers),
        recommendations=tuple(recommendations),
    )
    logger.info(
        "readiness.assessed",
        score=score,
        is_ready=result.is_ready,
        scores={a.category.value: a.score for a in assessments},
        blockers=len(blockers),
    )
    return result


__all__ = [
    "NO_DIRECT_VALUE",
    "READY_THRESHOLD",
    "assess_capacity_allocation",
    "assess_dependency_resolution",
    "assess_readiness",
    "assess_story_readiness",
    "assess_value_delivery",
    "build_iteration_plans",
    "deliverable_value",
]
