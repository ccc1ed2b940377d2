"""Domain-level dataclasses for release-train planning."""
from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import date
from functools import cached_property
from typing import Any, Literal

from ..config import PlanningConfig


class WorkItemType(enum.Enum):
    story = "story"
    feature = "feature"
    enabler = "enabler"
    epic = "epic"


class DependencyType(enum.Enum):
    requires = "requires"
    blocked_by = "blocked_by"
    enables = "enables"
    blocks = "blocks"
    related = "related"
    conflicts = "conflicts"


PREREQUISITE_TYPES = frozenset({DependencyType.requires, DependencyType.blocked_by})


class DependencyStrength(enum.Enum):
    hard = "hard"
    soft = "soft"
    optional = "optional"


class CycleSeverity(enum.Enum):
    critical = "critical"
    warning = "warning"
    info = "info"


class RiskSeverity(enum.Enum):
    low = "low"
    medium = "medium"
    high = "high"
    critical = "critical"


class ReadinessCategory(enum.Enum):
    story_readiness = "story-readiness"
    dependency_resolution = "dependency-resolution"
    capacity_allocation = "capacity-allocation"
    value_delivery = "value-delivery"


Level = Literal["high", "medium", "low"]


@dataclass(frozen=True)
class WorkItem:
    id: str
    type: WorkItemType
    title: str
    description: str = ""
    story_points: int | None = None
    priority: int | None = None
    parent_id: str | None = None
    acceptance_criteria: tuple[str, ...] = ()
    labels: tuple[str, ...] = ()

    def points(self, default: int = 3) -> int:
        return self.story_points if self.story_points else default

    @property
    def text(self) -> str:
        return " ".join([self.title, self.description, *self.acceptance_criteria])


@dataclass(frozen=True)
class DependencyEdge:
    """``source`` depends on ``target`` for prerequisite types."""

    source_id: str
    target_id: str
    type: DependencyType = DependencyType.requires
    strength: DependencyStrength = DependencyStrength.soft
    confidence: float = 1.0
    rationale: str = ""

    @property
    def id(self) -> str:
        return f"{self.source_id}->{self.target_id}"

    @property
    def is_prerequisite(self) -> bool:
        return self.type in PREREQUISITE_TYPES


@dataclass(frozen=True)
class ValidationMessage:
    code: str
    message: str
    affected_items: tuple[str, ...] = ()
    suggested_fix: str | None = None


@dataclass(frozen=True)
class GraphValidation:
    is_valid: bool
    errors: tuple[ValidationMessage, ...] = ()
    warnings: tuple[ValidationMessage, ...] = ()
    info: tuple[ValidationMessage, ...] = ()


@dataclass(frozen=True)
class GraphStatistics:
    node_count: int
    edge_count: int
    hard_dependencies: int
    soft_dependencies: int
    average_dependencies: float
    independent_items: int
    high_dependency_items: tuple[str, ...]
    longest_path_weight: int
    total_story_points: int


@dataclass(frozen=True)
class CircularDependency:
    cycle: tuple[str, ...]
    edges: tuple[DependencyEdge, ...]
    severity: CycleSeverity
    resolution_suggestions: tuple[str, ...]


@dataclass(frozen=True)
class DependencyGraph:
    nodes: dict[str, WorkItem]
    edges: tuple[DependencyEdge, ...]
    critical_path: tuple[str, ...]
    circular_dependencies: tuple[CircularDependency, ...]
    validation: GraphValidation
    statistics: GraphStatistics
    cyclic_node_ids: frozenset[str] = frozenset()

    @cached_property
    def _prerequisites(self) -> dict[str, list[str]]:
        mapping: dict[str, list[str]] = {node_id: [] for node_id in self.nodes}
        for edge in self.edges:
            if edge.is_prerequisite:
                mapping[edge.source_id].append(edge.target_id)
        return mapping

    @cached_property
    def _dependents(self) -> dict[str, list[str]]:
        mapping: dict[str, list[str]] = {node_id: [] for node_id in self.nodes}
        for edge in self.edges:
            if edge.is_prerequisite:
                mapping[edge.target_id].append(edge.source_id)
        return mapping

    def prerequisites_of(self, item_id: str) -> list[str]:
        return list(self._prerequisites.get(item_id, []))

    def dependents_of(self, item_id: str) -> list[str]:
        return list(self._dependents.get(item_id, []))

    def enabled_by(self, item_id: str) -> list[str]:
        """Items unblocked once ``item_id`` is done: prerequisite dependents plus enables/blocks targets."""
        enabled = self.dependents_of(item_id)
        for edge in self.edges:
            if edge.source_id == item_id and edge.type in (DependencyType.enables, DependencyType.blocks):
                if edge.target_id not in enabled:
                    enabled.append(edge.target_id)
        return enabled

    def on_critical_path(self, item_id: str) -> bool:
        return item_id in self.critical_path


@dataclass(frozen=True)
class Team:
    id: str
    name: str
    member_count: int
    average_velocity: float
    capacity_factor: float = 1.0
    specializations: tuple[str, ...] = ()


@dataclass(frozen=True)
class ProgramIncrement:
    id: str
    name: str
    start_date: date
    end_date: date


@dataclass(frozen=True)
class Iteration:
    id: str
    name: str
    index: int
    start_date: date
    end_date: date
    duration: int
    team_ids: tuple[str, ...] = ()


@dataclass(frozen=True)
class TeamCapacity:
    team_id: str
    team_name: str
    iteration_id: str
    total_capacity: float
    available_capacity: float
    team_size: int
    average_velocity: float
    capacity_factor: float
    confidence_factor: float


@dataclass
class CapacityCalculationResult:
    team_capacities: list[TeamCapacity]
    total_capacity: float
    confidence_score: float
    notes: list[str] = field(default_factory=list)
    risks: list[str] = field(default_factory=list)

    @cached_property
    def _index(self) -> dict[tuple[str, str], TeamCapacity]:
        return {(tc.iteration_id, tc.team_id): tc for tc in self.team_capacities}

    def capacity_for(self, iteration_id: str, team_id: str) -> float:
        entry = self._index.get((iteration_id, team_id))
        return entry.available_capacity if entry else 0.0

    def for_iteration(self, iteration_id: str) -> list[TeamCapacity]:
        return [tc for tc in self.team_capacities if tc.iteration_id == iteration_id]

    def iteration_total(self, iteration_id: str) -> float:
        return sum(tc.available_capacity for tc in self.for_iteration(iteration_id))


@dataclass(frozen=True)
class CapacityUtilization:
    iteration_id: str
    team_id: str
    available_capacity: float
    allocated_points: int
    utilization_rate: float
    is_over_allocated: bool
    buffer_capacity: float


@dataclass(frozen=True)
class CapacityMetrics:
    average_utilization: float
    max_utilization: float
    min_utilization: float
    utilization_std_dev: float
    over_allocated_count: int
    total_capacity: float
    total_allocated: int


@dataclass(frozen=True)
class AllocatedWorkItem:
    work_item: WorkItem
    team_id: str
    iteration_id: str
    iteration_index: int
    allocated_points: int
    confidence: float
    blocked_by: tuple[str, ...] = ()
    enables: tuple[str, ...] = ()
    rationale: str = ""

    @property
    def item_id(self) -> str:
        return self.work_item.id


@dataclass(frozen=True)
class UnallocatedWorkItem:
    work_item: WorkItem
    reason: str
    blockers: tuple[str, ...] = ()
    solutions: tuple[str, ...] = ()


@dataclass(frozen=True)
class AllocationStatistics:
    total_work_items: int
    allocated_count: int
    unallocated_count: int
    success_rate: float
    average_confidence: float
    processing_time_ms: float


@dataclass(frozen=True)
class AllocationIssue:
    type: Literal["capacity_overrun", "dependency_violation"]
    severity: RiskSeverity
    description: str
    affected_iterations: tuple[str, ...]
    recommendations: tuple[str, ...]


@dataclass
class AllocationResult:
    allocated: list[AllocatedWorkItem]
    unallocated: list[UnallocatedWorkItem]
    statistics: AllocationStatistics
    issues: list[AllocationIssue] = field(default_factory=list)

    def by_item(self) -> dict[str, AllocatedWorkItem]:
        return {alloc.item_id: alloc for alloc in self.allocated}

    def for_iteration(self, iteration_id: str) -> list[AllocatedWorkItem]:
        return [alloc for alloc in self.allocated if alloc.iteration_id == iteration_id]


@dataclass(frozen=True)
class ValueRisk:
    id: str
    description: str
    severity: RiskSeverity
    probability: float
    impact: str
    mitigations: tuple[str, ...] = ()
    owner: str | None = None


@dataclass(frozen=True)
class DeliverableValue:
    can_deliver_working_software: bool
    primary_value: str
    secondary_values: tuple[str, ...]
    value_confidence: float
    value_delivery_stories: tuple[str, ...]
    value_prerequisites: tuple[str, ...]
    value_risks: tuple[ValueRisk, ...]

    @property
    def has_high_severity_risk(self) -> bool:
        return any(risk.severity in (RiskSeverity.high, RiskSeverity.critical) for risk in self.value_risks)


@dataclass(frozen=True)
class IterationPlan:
    iteration: Iteration
    allocated_work: tuple[AllocatedWorkItem, ...]
    utilization: tuple[CapacityUtilization, ...]
    deliverable_value: DeliverableValue
    total_points: int
    total_capacity: float

    @property
    def over_allocated_teams(self) -> list[str]:
        return [u.team_id for u in self.utilization if u.is_over_allocated]


@dataclass(frozen=True)
class ReadinessAssessment:
    category: ReadinessCategory
    score: float
    is_ready: bool
    issues: tuple[str, ...] = ()
    recommendations: tuple[str, ...] = ()


@dataclass(frozen=True)
class ReadinessResult:
    is_ready: bool
    score: float
    assessments: tuple[ReadinessAssessment, ...]
    critical_blockers: tuple[str, ...]
    recommendations: tuple[str, ...]

    def score_for(self, category: ReadinessCategory) -> float:
        for assessment in self.assessments:
            if assessment.category is category:
                return assessment.score
        raise KeyError(category)


@dataclass(frozen=True)
class ImprovementAction:
    id: str
    category: ReadinessCategory
    action: str
    priority: Level
    estimated_impact: float
    effort: Level
    risks: tuple[str, ...] = ()


@dataclass(frozen=True)
class ImprovementPlan:
    current_score: float
    target_score: float
    prioritized_actions: tuple[ImprovementAction, ...]
    quick_wins: tuple[ImprovementAction, ...]
    strategic_improvements: tuple[ImprovementAction, ...]
    estimated_improvement: float
    timeline: tuple[dict[str, Any], ...]
    resource_requirements: dict[str, int]
    risk_mitigation: tuple[str, ...]


@dataclass(frozen=True)
class PlanChange:
    kind: Literal["value_rebalance", "capacity_deferral", "bottleneck_pull_forward"]
    work_item_id: str
    from_iteration_id: str
    to_iteration_id: str
    team_id: str
    reason: str


@dataclass(frozen=True)
class RiskReduction:
    risks_eliminated: int
    risk_reduction_percentage: float
    remaining_high_risks: int
    mitigation_strategies: tuple[str, ...]


@dataclass(frozen=True)
class OptimizedPlan:
    allocation: AllocationResult
    iteration_plans: tuple[IterationPlan, ...]
    readiness_before: ReadinessResult
    readiness: ReadinessResult
    improvement_actions: tuple[ImprovementAction, ...]
    changes: tuple[PlanChange, ...]
    readiness_score_improvement: float
    value_delivery_improvement: float
    risk_reduction: RiskReduction
    implementation_complexity: Level
    reverted: bool = False


@dataclass(frozen=True)
class ARTPlan:
    program_increment: ProgramIncrement
    iterations: tuple[Iteration, ...]
    work_items: tuple[WorkItem, ...]
    teams: tuple[Team, ...]
    graph: DependencyGraph
    capacities: CapacityCalculationResult
    allocation: AllocationResult
    iteration_plans: tuple[IterationPlan, ...]
    readiness: ReadinessResult
    config: PlanningConfig
    optimization: OptimizedPlan | None = None


__all__ = [
    "ARTPlan",
    "AllocatedWorkItem",
    "AllocationIssue",
    "AllocationResult",
    "AllocationStatistics",
    "CapacityCalculationResult",
    "CapacityMetrics",
    "CapacityUtilization",
    "CircularDependency",
    "CycleSeverity",
    "DeliverableValue",
    "DependencyEdge",
    "DependencyGraph",
    "DependencyStrength",
    "DependencyType",
    "GraphStatistics",
    "GraphValidation",
    "ImprovementAction",
    "ImprovementPlan",
    "Iteration",
    "IterationPlan",
    "OptimizedPlan",
    "PREREQUISITE_TYPES",
    "PlanChange",
    "ProgramIncrement",
    "ReadinessAssessment",
    "ReadinessCategory",
    "ReadinessResult",
    "RiskReduction",
    "RiskSeverity",
    "Team",
    "TeamCapacity",
    "UnallocatedWorkItem",
    "ValidationMessage",
    "ValueRisk",
    "WorkItem",
    "WorkItemType",
]
