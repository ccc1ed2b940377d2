"""Improvement planning and a single bounded rebalancing pass over an allocated plan."""
from __future__ import annotations

import math
from dataclasses import replace
from typing import Callable, Sequence

import structlog

from ..config import PlanningConfig
from .allocator import CapacityLedger, summarise_allocation
from .classifier import KeywordValueClassifier, ValueClassifier
from .types import (
    AllocatedWorkItem,
    ARTPlan,
    ImprovementAction,
    ImprovementPlan,
    IterationPlan,
    OptimizedPlan,
    PlanChange,
    ReadinessAssessment,
    ReadinessCategory,
    ReadinessResult,
    RiskReduction,
    RiskSeverity,
)
from .validator import VALUE_CARRYING_TYPES, assess_readiness, build_iteration_plans

logger = structlog.get_logger(__name__)

_PRIORITY_ORDER = {"high": 3, "medium": 2, "low": 1}
_EFFORT_DAYS = {"low": 2, "medium": 5, "high": 10}

_CATEGORY_ACTIONS: dict[ReadinessCategory, ImprovementAction] = {
    ReadinessCategory.story_readiness: ImprovementAction(
        id="improve-story-readiness",
        category=ReadinessCategory.story_readiness,
        action="Add acceptance criteria to incomplete stories",
        priority="high",
        estimated_impact=0.12,
        effort="low",
        risks=("Requires Product Owner availability",),
    ),
    ReadinessCategory.dependency_resolution: ImprovementAction(
        id="resolve-dependencies",
        category=ReadinessCategory.dependency_resolution,
        action="Create dependency resolution sprint",
        priority="high",
        estimated_impact=0.15,
        effort="medium",
        risks=("May impact current sprint velocity",),
    ),
    ReadinessCategory.capacity_allocation: ImprovementAction(
        id="balance-capacity",
        category=ReadinessCategory.capacity_allocation,
        action="Redistribute work across available teams",
        priority="medium",
        estimated_impact=0.1,
        effort="medium",
        risks=("Teams may need cross-training",),
    ),
    ReadinessCategory.value_delivery: ImprovementAction(
        id="increase-value-focus",
        category=ReadinessCategory.value_delivery,
        action="Prioritize user-facing stories over technical work",
        priority="medium",
        estimated_impact=0.08,
        effort="low",
        risks=("Technical debt may accumulate",),
    ),
}


def _sort_actions(actions: list[ImprovementAction]) -> list[ImprovementAction]:
    return sorted(actions, key=lambda a: (-_PRIORITY_ORDER[a.priority], -a.estimated_impact))


def _category_actions(assessment: ReadinessAssessment, target: float) -> list[ImprovementAction]:
    category = assessment.category.value
    gap = target - assessment.score
    actions: list[ImprovementAction] = []
    if gap > 0.3:
        actions.append(
            ImprovementAction(
                id=f"major-{category}",
                category=assessment.category,
                action=f"Major improvement required for {category}",
                priority="high",
                estimated_impact=round(gap * 0.6, 4),
                effort="high",
                risks=("Significant resource commitment required",),
            )
        )
    elif gap > 0.1:
        actions.append(
            ImprovementAction(
                id=f"moderate-{category}",
                category=assessment.category,
                action=f"Moderate improvement for {category}",
                priority="medium",
                estimated_impact=round(gap * 0.7, 4),
                effort="medium",
                risks=("May impact current iteration velocity",),
            )
        )
    for recommendation in assessment.recommendations:
        actions.append(
            ImprovementAction(
                id=f"rec-{category}-{len(actions)}",
                category=assessment.category,
                action=recommendation,
                priority="high" if gap > 0.2 else "medium",
                estimated_impact=0.05,
                effort="low",
            )
        )
    return actions


def _timeline(actions: Sequence[ImprovementAction]) -> list[dict]:
    phases = (("Quick Wins", 1, "low"), ("Core Improvements", 2, "medium"), ("Strategic Initiatives", 3, "high"))
    timeline = []
    for phase, duration, effort in phases:
        selected = [a.action for a in actions if a.effort == effort]
        if selected:
            timeline.append({"phase": phase, "duration": duration, "actions": selected})
    return timeline


def _resources(actions: Sequence[ImprovementAction]) -> dict[str, int]:
    total_days = sum(_EFFORT_DAYS[a.effort] for a in actions)
    categories = {a.category for a in actions}
    return {
        "developers": math.ceil(total_days / 20),
        "product_owners": int(ReadinessCategory.story_readiness in categories),
        "scrum_masters": int(ReadinessCategory.capacity_allocation in categories),
        "total_effort_days": total_days,
    }


def _risk_mitigations(readiness: ReadinessResult) -> list[str]:
    mitigations: list[str] = []
    if readiness.score < 0.6:
        mitigations.append("Consider reducing PI scope to improve execution confidence")
    if any(a.score < 0.5 for a in readiness.assessments):
        mitigations.append("Address critical readiness gaps before PI execution")
    mitigations.append("Establish regular readiness checkpoints during PI")
    mitigations.append("Create contingency plans for high-risk areas")
    return mitigations


def generate_improvement_plan(readiness: ReadinessResult, config: PlanningConfig) -> ImprovementPlan:
    target = config.optimizer.target_readiness_score
    actions: list[ImprovementAction] = []
    for assessment in readiness.assessments:
        if assessment.score < target:
            actions.extend(_category_actions(assessment, target))
    actions = _sort_actions(actions)

    total_impact = sum(a.estimated_impact for a in actions)
    return ImprovementPlan(
        current_score=readiness.score,
        target_score=target,
        prioritized_actions=tuple(actions),
        quick_wins=tuple(a for a in actions if a.effort == "low" and a.estimated_impact >= 0.05),
        strategic_improvements=tuple(a for a in actions if a.estimated_impact >= 0.1 and a.priority == "high"),
        estimated_improvement=round(min(1.0, readiness.score + total_impact * 0.8), 4),
        timeline=tuple(_timeline(actions)),
        resource_requirements=_resources(actions),
        risk_mitigation=tuple(_risk_mitigations(readiness)),
    )


def _weakest_categories(readiness: ReadinessResult, target: float, limit: int = 2) -> list[ReadinessAssessment]:
    below = [a for a in readiness.assessments if a.score < target]
    return sorted(below, key=lambda a: a.score)[:limit]


def _synthesise_actions(plan: ARTPlan, readiness: ReadinessResult, config: PlanningConfig) -> list[ImprovementAction]:
    tuning = config.optimizer
    actions = [_CATEGORY_ACTIONS[a.category] for a in _weakest_categories(readiness, tuning.target_readiness_score)]

    confidences = [p.deliverable_value.value_confidence for p in plan.iteration_plans]
    if confidences and min(confidences) < tuning.low_value_threshold:
        actions.append(
            ImprovementAction(
                id="improve-value-distribution",
                category=ReadinessCategory.value_delivery,
                action="Rebalance iterations to ensure consistent value delivery",
                priority="high",
                estimated_impact=0.15,
                effort="medium",
                risks=("May require story resequencing",),
            )
        )
    over_allocated = sum(1 for p in plan.iteration_plans if p.over_allocated_teams)
    if over_allocated:
        actions.append(
            ImprovementAction(
                id="optimize-capacity",
                category=ReadinessCategory.capacity_allocation,
                action=f"Reduce over-allocation in {over_allocated} iterations",
                priority="high",
                estimated_impact=0.1,
                effort="medium",
                risks=("May need to defer some work items",),
            )
        )
    if plan.graph.statistics.average_dependencies > 2:
        actions.append(
            ImprovementAction(
                id="simplify-dependencies",
                category=ReadinessCategory.dependency_resolution,
                action="Reduce dependency complexity through better sequencing",
                priority="medium",
                estimated_impact=0.08,
                effort="high",
                risks=("Requires coordination across teams",),
            )
        )
    return _sort_actions(actions)


class _Rebalancer:
    """Applies bounded moves against a working copy of the allocation."""

    def __init__(self, plan: ARTPlan, config: PlanningConfig, classifier: ValueClassifier) -> None:
        self.plan = plan
        self.config = config
        self.classifier = classifier
        self.iterations = list(plan.iterations)
        self.position = {iteration.id: idx for idx, iteration in enumerate(self.iterations)}
        self.allocated: dict[str, AllocatedWorkItem] = {alloc.item_id: alloc for alloc in plan.allocation.allocated}
        self.ledger = CapacityLedger.from_allocations(self.iterations, plan.capacities, self.allocated.values())
        self.changes: list[PlanChange] = []
        self.budget = config.optimizer.max_iteration_changes

    @property
    def exhausted(self) -> bool:
        return len(self.changes) >= self.budget

    def _pos(self, item_id: str) -> int | None:
        alloc = self.allocated.get(item_id)
        return self.position[alloc.iteration_id] if alloc else None

    def _feasible_at(self, alloc: AllocatedWorkItem, target: int) -> bool:
        graph = self.plan.graph
        for prereq in graph.prerequisites_of(alloc.item_id):
            prereq_pos = self._pos(prereq)
            if prereq_pos is None or prereq_pos >= target:
                return False
        for dependent in graph.dependents_of(alloc.item_id):
            dependent_pos = self._pos(dependent)
            if dependent_pos is not None and dependent_pos <= target:
                return False
        return True

    def _move(self, alloc: AllocatedWorkItem, target: int, team_id: str, kind: str, reason: str) -> None:
        iteration = self.iterations[target]
        self.ledger.release(alloc.iteration_id, alloc.team_id, alloc.allocated_points)
        self.ledger.reserve(iteration.id, team_id, alloc.allocated_points)
        self.allocated[alloc.item_id] = replace(
            alloc,
            team_id=team_id,
            iteration_id=iteration.id,
            iteration_index=iteration.index,
            rationale=f"{alloc.rationale}; moved to {iteration.name} ({reason})",
        )
        self.changes.append(
            PlanChange(
                kind=kind,  # type: ignore[arg-type]
                work_item_id=alloc.item_id,
                from_iteration_id=alloc.iteration_id,
                to_iteration_id=iteration.id,
                team_id=team_id,
                reason=reason,
            )
        )
        logger.debug("optimizer.move", item=alloc.item_id, kind=kind, source=alloc.iteration_id, target=iteration.id)

    def _in_iteration(self, iteration_id: str) -> list[AllocatedWorkItem]:
        return [alloc for alloc in self.allocated.values() if alloc.iteration_id == iteration_id]

    def _value_items(self, iteration_id: str) -> list[AllocatedWorkItem]:
        return [
            alloc
            for alloc in self._in_iteration(iteration_id)
            if alloc.work_item.type in VALUE_CARRYING_TYPES and self.classifier.is_user_valuable(alloc.work_item)
        ]

    def rebalance_value(self, iteration_plans: Sequence[IterationPlan]) -> None:
        tuning = self.config.optimizer
        ceiling = self.config.max_capacity_utilization
        low = [p.iteration for p in iteration_plans if p.deliverable_value.value_confidence < tuning.low_value_threshold]
        high = [p.iteration for p in iteration_plans if p.deliverable_value.value_confidence > tuning.high_value_threshold]
        for receiver in low:
            if self.exhausted:
                return
            target = self.position[receiver.id]
            moved = False
            for donor in high:
                donor_items = self._value_items(donor.id)
                if len(donor_items) < 2:
                    continue
                for alloc in sorted(donor_items, key=lambda a: -self.classifier.confidence(a.work_item)):
                    if not self._feasible_at(alloc, target):
                        continue
                    slot = self.ledger.best_team(receiver.id, alloc.allocated_points, ceiling)
                    if slot is None:
                        continue
                    self._move(alloc, target, slot.team_id, "value_rebalance", f"bring user value into {receiver.name}")
                    moved = True
                    break
                if moved:
                    break

    def defer_over_allocated(self) -> None:
        tuning = self.config.optimizer
        ceiling = self.config.max_capacity_utilization
        for idx, iteration in enumerate(self.iterations[:-1]):
            deferred = 0
            nxt = idx + 1
            for tc in self.plan.capacities.for_iteration(iteration.id):
                slot = self.ledger.slot(iteration.id, tc.team_id)
                if slot is None:
                    continue
                candidates = [
                    alloc
                    for alloc in self._in_iteration(iteration.id)
                    if alloc.team_id == tc.team_id
                    and alloc.work_item.priority is not None
                    and alloc.work_item.priority > 3
                    and not alloc.enables
                ]
                candidates.sort(key=lambda a: (-(a.work_item.priority or 0), -a.allocated_points))
                for alloc in candidates:
                    over = slot.available <= 0 or slot.used > slot.available * ceiling
                    if not over or deferred >= tuning.max_deferrals_per_iteration or self.exhausted:
                        break
                    if not self._feasible_at(alloc, nxt):
                        continue
                    target_slot = self.ledger.slot(self.iterations[nxt].id, tc.team_id)
                    if target_slot is None or not target_slot.fits(alloc.allocated_points, ceiling):
                        target_slot = self.ledger.best_team(self.iterations[nxt].id, alloc.allocated_points, ceiling)
                    if target_slot is None:
                        continue
                    self._move(alloc, nxt, target_slot.team_id, "capacity_deferral", f"relieve over-allocated team {tc.team_id}")
                    deferred += 1

    def pull_bottlenecks_forward(self) -> None:
        ceiling = self.config.max_capacity_utilization
        threshold = self.config.optimizer.bottleneck_dependent_count
        graph = self.plan.graph
        bottlenecks = [
            alloc for alloc in self.allocated.values() if len(graph.dependents_of(alloc.item_id)) >= threshold
        ]
        bottlenecks.sort(key=lambda a: -len(graph.dependents_of(a.item_id)))
        for alloc in bottlenecks:
            if self.exhausted:
                return
            target = self.position[alloc.iteration_id] - 1
            if target < 0 or not self._feasible_at(alloc, target):
                continue
            slot = self.ledger.best_team(self.iterations[target].id, alloc.allocated_points, ceiling)
            if slot is None:
                continue
            self._move(alloc, target, slot.team_id, "bottleneck_pull_forward", f"unblock {len(graph.dependents_of(alloc.item_id))} dependents sooner")

    def ordered_allocations(self) -> list[AllocatedWorkItem]:
        return sorted(self.allocated.values(), key=lambda a: self.position[a.iteration_id])


def _count_risks(plans: Sequence[IterationPlan]) -> tuple[int, int]:
    risks = [risk for p in plans for risk in p.deliverable_value.value_risks]
    high = sum(1 for risk in risks if risk.severity in (RiskSeverity.high, RiskSeverity.critical))
    return len(risks), high


def _risk_reduction(before: Sequence[IterationPlan], after: Sequence[IterationPlan]) -> RiskReduction:
    total_before, _ = _count_risks(before)
    total_after, high_after = _count_risks(after)
    eliminated = max(0, total_before - total_after)
    strategies: list[str] = []
    if high_after:
        strategies.append("Address high-severity risks through dedicated risk reduction sprint")
    if total_after > 5:
        strategies.append("Implement risk monitoring dashboard for proactive management")
    strategies.append("Regular risk review meetings during iteration planning")
    return RiskReduction(
        risks_eliminated=eliminated,
        risk_reduction_percentage=round(eliminated / total_before, 4) if total_before else 0.0,
        remaining_high_risks=high_after,
        mitigation_strategies=tuple(strategies),
    )


def _complexity(actions: Sequence[ImprovementAction]) -> str:
    high = sum(1 for a in actions if a.effort == "high")
    if high > len(actions) * 0.5:
        return "high"
    if high > len(actions) * 0.2:
        return "medium"
    return "low"


def optimize_readiness(
    plan: ARTPlan,
    config: PlanningConfig | None = None,
    classifier: ValueClassifier | None = None,
) -> OptimizedPlan:
    """Run one corrective pass; never iterates to convergence.

    Changes are discarded when the recomputed score drops below the starting
    score by more than the configured tolerance.
    """
    config = config or plan.config
    classifier = classifier or KeywordValueClassifier()
    tuning = config.optimizer
    before = plan.readiness

    if before.score >= tuning.target_readiness_score:
        logger.info("optimizer.skipped", score=before.score, target=tuning.target_readiness_score)
        return OptimizedPlan(
            allocation=plan.allocation,
            iteration_plans=plan.iteration_plans,
            readiness_before=before,
            readiness=before,
            improvement_actions=(),
            changes=(),
            readiness_score_improvement=0.0,
            value_delivery_improvement=0.0,
            risk_reduction=_risk_reduction(plan.iteration_plans, plan.iteration_plans),
            implementation_complexity="low",
        )

    actions = _synthesise_actions(plan, before, config)
    rebalancer = _Rebalancer(plan, config, classifier)
    passes: list[tuple[ReadinessCategory, Callable[[], None]]] = [
        (ReadinessCategory.capacity_allocation, rebalancer.defer_over_allocated),
        (ReadinessCategory.value_delivery, lambda: rebalancer.rebalance_value(plan.iteration_plans)),
    ]
    if config.enable_dependency_optimization:
        passes.append((ReadinessCategory.dependency_resolution, rebalancer.pull_bottlenecks_forward))
    passes.sort(key=lambda entry: before.score_for(entry[0]))
    for _, apply in passes:
        if rebalancer.exhausted:
            break
        apply()

    allocation = plan.allocation
    iteration_plans = plan.iteration_plans
    after = before
    reverted = False
    changes = tuple(rebalancer.changes)
    if changes:
        candidate_allocation = summarise_allocation(
            rebalancer.ordered_allocations(),
            list(plan.allocation.unallocated),
            plan.iterations,
            plan.graph,
            plan.capacities,
            config,
            processing_time_ms=plan.allocation.statistics.processing_time_ms,
        )
        candidate_plans = build_iteration_plans(
            candidate_allocation, plan.iterations, plan.capacities, plan.graph, config, classifier
        )
        candidate_readiness = assess_readiness(candidate_plans, plan.graph, config)
        if candidate_readiness.score < before.score - tuning.regression_tolerance:
            reverted = True
            logger.warning(
                "optimizer.reverted",
                attempted=len(changes),
                before=before.score,
                candidate=candidate_readiness.score,
            )
            changes = ()
        else:
            allocation = candidate_allocation
            iteration_plans = tuple(candidate_plans)
            after = candidate_readiness

    result = OptimizedPlan(
        allocation=allocation,
        iteration_plans=tuple(iteration_plans),
        readiness_before=before,
        readiness=after,
        improvement_actions=tuple(actions),
        changes=changes,
        readiness_score_improvement=round(after.score - before.score, 4),
        value_delivery_improvement=round(
            after.score_for(ReadinessCategory.value_delivery) - before.score_for(ReadinessCategory.value_delivery), 4
        ),
        risk_reduction=_risk_reduction(plan.iteration_plans, iteration_plans),
        implementation_complexity=_complexity(actions),  # type: ignore[arg-type]
        reverted=reverted,
    )
    logger.info(
        "optimizer.completed",
        changes=len(changes),
        before=before.score,
        after=after.score,
        reverted=reverted,
    )
    return result


__all__ = ["generate_improvement_plan", "optimize_readiness"]
