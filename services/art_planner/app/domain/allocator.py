"""Greedy, capacity-aware assignment of work items to iterations and teams."""
from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Iterable, Sequence

import structlog

from ..config import PlanningConfig
from .capacity import compute_capacities
from .types import (
    AllocatedWorkItem,
    AllocationIssue,
    AllocationResult,
    AllocationStatistics,
    CapacityCalculationResult,
    DependencyGraph,
    Iteration,
    RiskSeverity,
    Team,
    UnallocatedWorkItem,
    WorkItem,
)

logger = structlog.get_logger(__name__)

REASON_DEPENDENCIES = "no feasible iteration for dependencies"
REASON_HORIZON = "no iteration remains after prerequisites"
REASON_CAPACITY = "no team has sufficient capacity"

_EPSILON = 1e-9


@dataclass
class TeamSlot:
    team_id: str
    available: float
    used: int = 0

    @property
    def remaining(self) -> float:
        return self.available - self.used

    def fits(self, points: int, ceiling: float) -> bool:
        return self.available > 0 and self.used + points <= self.available * ceiling + _EPSILON


class CapacityLedger:
    """Mutable per-iteration, per-team bookkeeping for a single allocation run."""

    def __init__(self, iterations: Sequence[Iteration], capacities: CapacityCalculationResult) -> None:
        self._slots: dict[str, list[TeamSlot]] = {}
        for iteration in iterations:
            self._slots[iteration.id] = [
                TeamSlot(tc.team_id, tc.available_capacity) for tc in capacities.for_iteration(iteration.id)
            ]

    @classmethod
    def from_allocations(
        cls,
        iterations: Sequence[Iteration],
        capacities: CapacityCalculationResult,
        allocated: Iterable[AllocatedWorkItem],
    ) -> "CapacityLedger":
        ledger = cls(iterations, capacities)
        for alloc in allocated:
            slot = ledger.slot(alloc.iteration_id, alloc.team_id)
            if slot is not None:
                slot.used += alloc.allocated_points
        return ledger

    def slot(self, iteration_id: str, team_id: str) -> TeamSlot | None:
        for slot in self._slots.get(iteration_id, []):
            if slot.team_id == team_id:
                return slot
        return None

    def best_team(self, iteration_id: str, points: int, ceiling: float) -> TeamSlot | None:
        """Team with the most remaining capacity that can absorb ``points``; first listed wins ties."""
        best: TeamSlot | None = None
        for slot in self._slots.get(iteration_id, []):
            if not slot.fits(points, ceiling):
                continue
            if best is None or slot.remaining > best.remaining:
                best = slot
        return best

    def reserve(self, iteration_id: str, team_id: str, points: int) -> None:
        slot = self.slot(iteration_id, team_id)
        if slot is not None:
            slot.used += points

    def release(self, iteration_id: str, team_id: str, points: int) -> None:
        slot = self.slot(iteration_id, team_id)
        if slot is not None:
            slot.used -= points


def priority_score(item: WorkItem, graph: DependencyGraph, config: PlanningConfig) -> int:
    score = 0
    if item.priority is not None:
        score += (6 - item.priority) * 100
    score += len(graph.dependents_of(item.id)) * 50
    if graph.on_critical_path(item.id):
        score += 200
    score += (6 - item.points(config.default_story_points)) * 10
    return score


def prioritize(work_items: Sequence[WorkItem], graph: DependencyGraph, config: PlanningConfig) -> list[WorkItem]:
    """Stable descending sort by priority score."""
    return sorted(work_items, key=lambda item: -priority_score(item, graph, config))


def allocation_confidence(prerequisite_count: int, points: int) -> float:
    confidence = 0.8 - 0.05 * prerequisite_count
    if points > 5:
        confidence -= 0.1
    if points <= 2:
        confidence += 0.1
    return round(max(0.1, min(1.0, confidence)), 4)


def allocate_work_items(
    work_items: Sequence[WorkItem],
    iterations: Sequence[Iteration],
    graph: DependencyGraph,
    teams: Sequence[Team],
    config: PlanningConfig,
    capacities: CapacityCalculationResult | None = None,
) -> AllocationResult:
    """Single deterministic pass; never backtracks.

    An item whose prerequisites are not all placed, or for which no team has
    room in the earliest feasible iteration, is reported as unallocated.
    """
    started = time.perf_counter()
    if capacities is None:
        capacities = compute_capacities(iterations, teams, config)
    ledger = CapacityLedger(iterations, capacities)
    position = {iteration.id: idx for idx, iteration in enumerate(iterations)}
    ceiling = config.max_capacity_utilization

    placed: dict[str, AllocatedWorkItem] = {}
    unallocated: list[UnallocatedWorkItem] = []

    for item in prioritize(work_items, graph, config):
        points = item.points(config.default_story_points)
        prerequisites = graph.prerequisites_of(item.id)
        pending = [prereq for prereq in prerequisites if prereq not in placed]
        if pending:
            unallocated.append(
                UnallocatedWorkItem(
                    work_item=item,
                    reason=REASON_DEPENDENCIES,
                    blockers=tuple(pending),
                    solutions=("Resolve dependency conflicts", "Consider breaking down work item"),
                )
            )
            logger.debug("allocation.item_unallocated", item=item.id, reason=REASON_DEPENDENCIES, blockers=pending)
            continue

        earliest = max((position[placed[prereq].iteration_id] + 1 for prereq in prerequisites), default=0)
        if earliest >= len(iterations):
            unallocated.append(
                UnallocatedWorkItem(
                    work_item=item,
                    reason=REASON_HORIZON,
                    blockers=tuple(prerequisites),
                    solutions=("Extend the planning horizon", "Pull prerequisites into earlier iterations"),
                )
            )
            logger.debug("allocation.item_unallocated", item=item.id, reason=REASON_HORIZON)
            continue

        candidates = range(earliest, len(iterations)) if config.defer_unplaceable_items else [earliest]
        allocation: AllocatedWorkItem | None = None
        for idx in candidates:
            iteration = iterations[idx]
            slot = ledger.best_team(iteration.id, points, ceiling)
            if slot is None:
                continue
            ledger.reserve(iteration.id, slot.team_id, points)
            deferred = idx - earliest
            rationale = f"Placed in {iteration.name} with team {slot.team_id}"
            if prerequisites:
                rationale += f" after {len(prerequisites)} prerequisites"
            if deferred:
                rationale += f", deferred {deferred} iterations for capacity"
            allocation = AllocatedWorkItem(
                work_item=item,
                team_id=slot.team_id,
                iteration_id=iteration.id,
                iteration_index=iteration.index,
                allocated_points=points,
                confidence=allocation_confidence(len(prerequisites), points),
                blocked_by=tuple(prerequisites),
                enables=tuple(graph.enabled_by(item.id)),
                rationale=rationale,
            )
            break

        if allocation is None:
            unallocated.append(
                UnallocatedWorkItem(
                    work_item=item,
                    reason=REASON_CAPACITY,
                    blockers=("Capacity constraints",),
                    solutions=("Reduce scope", "Add team capacity", "Move to later iteration"),
                )
            )
            logger.debug("allocation.item_unallocated", item=item.id, reason=REASON_CAPACITY, points=points)
            continue
        placed[item.id] = allocation

    result = summarise_allocation(
        list(placed.values()),
        unallocated,
        iterations,
        graph,
        capacities,
        config,
        processing_time_ms=(time.perf_counter() - started) * 1000,
    )
    logger.info(
        "allocation.completed",
        allocated=result.statistics.allocated_count,
        unallocated=result.statistics.unallocated_count,
        success_rate=round(result.statistics.success_rate, 3),
        issues=len(result.issues),
        duration_ms=round(result.statistics.processing_time_ms, 2),
    )
    return result


def summarise_allocation(
    allocated: list[AllocatedWorkItem],
    unallocated: list[UnallocatedWorkItem],
    iterations: Sequence[Iteration],
    graph: DependencyGraph,
    capacities: CapacityCalculationResult,
    config: PlanningConfig,
    processing_time_ms: float = 0.0,
) -> AllocationResult:
    total = len(allocated) + len(unallocated)
    statistics = AllocationStatistics(
        total_work_items=total,
        allocated_count=len(allocated),
        unallocated_count=len(unallocated),
        success_rate=len(allocated) / total if total else 0.0,
        average_confidence=sum(alloc.confidence for alloc in allocated) / len(allocated) if allocated else 0.0,
        processing_time_ms=processing_time_ms,
    )
    return AllocationResult(
        allocated=allocated,
        unallocated=unallocated,
        statistics=statistics,
        issues=allocation_issues(allocated, iterations, graph, capacities, config),
    )


def ordering_violations(
    allocated: Iterable[AllocatedWorkItem],
    graph: DependencyGraph,
    iterations: Sequence[Iteration],
) -> list[tuple[AllocatedWorkItem, AllocatedWorkItem]]:
    """(dependent, prerequisite) pairs where the dependent is not strictly later."""
    position = {iteration.id: idx for idx, iteration in enumerate(iterations)}
    by_item = {alloc.item_id: alloc for alloc in allocated}
    violations: list[tuple[AllocatedWorkItem, AllocatedWorkItem]] = []
    for alloc in by_item.values():
        if alloc.item_id in graph.cyclic_node_ids:
            continue
        for prereq_id in graph.prerequisites_of(alloc.item_id):
            prereq = by_item.get(prereq_id)
            if prereq is None or prereq_id in graph.cyclic_node_ids:
                continue
            if position[alloc.iteration_id] <= position[prereq.iteration_id]:
                violations.append((alloc, prereq))
    return violations


def allocation_issues(
    allocated: Sequence[AllocatedWorkItem],
    iterations: Sequence[Iteration],
    graph: DependencyGraph,
    capacities: CapacityCalculationResult,
    config: PlanningConfig,
) -> list[AllocationIssue]:
    issues: list[AllocationIssue] = []
    violations = ordering_violations(allocated, graph, iterations)
    if violations:
        issues.append(
            AllocationIssue(
                type="dependency_violation",
                severity=RiskSeverity.critical,
                description="Work items scheduled before their dependencies",
                affected_iterations=tuple(dict.fromkeys(dependent.iteration_id for dependent, _ in violations)),
                recommendations=("Reorder work items to respect dependencies",),
            )
        )

    ledger = CapacityLedger.from_allocations(iterations, capacities, allocated)
    overruns: list[str] = []
    for tc in capacities.team_capacities:
        slot = ledger.slot(tc.iteration_id, tc.team_id)
        if slot is None or slot.used == 0:
            continue
        if slot.available <= 0 or slot.used > slot.available * config.max_capacity_utilization + _EPSILON:
            overruns.append(tc.iteration_id)
    if overruns:
        issues.append(
            AllocationIssue(
                type="capacity_overrun",
                severity=RiskSeverity.high,
                description="Team capacity exceeded in some iterations",
                affected_iterations=tuple(dict.fromkeys(overruns)),
                recommendations=("Reduce scope", "Add capacity", "Redistribute work"),
            )
        )
    return issues


__all__ = [
    "CapacityLedger",
    "REASON_CAPACITY",
    "REASON_DEPENDENCIES",
    "REASON_HORIZON",
    "allocate_work_items",
    "allocation_confidence",
    "allocation_issues",
    "ordering_violations",
    "prioritize",
    "priority_score",
    "summarise_allocation",
]
