"""Plan reporting helpers."""
from __future__ import annotations

from typing import Any

from .capacity import calculate_utilization, capacity_metrics, capacity_recommendations
from .optimizer import generate_improvement_plan
from .types import (
    AllocatedWorkItem,
    ARTPlan,
    DependencyGraph,
    ImprovementAction,
    IterationPlan,
    OptimizedPlan,
    ReadinessResult,
    ValidationMessage,
    WorkItemType,
)


def plan_risk_level(average_utilization: float, value_confidence: float, edge_count: int, item_count: int) -> str:
    utilization_pressure = average_utilization > 0.9
    weak_value = value_confidence < 0.7
    if utilization_pressure and weak_value:
        return "high"
    if utilization_pressure or weak_value or edge_count > item_count * 0.5:
        return "medium"
    return "low"


def _allocation(alloc: AllocatedWorkItem) -> dict[str, Any]:
    return {
        "workItemId": alloc.item_id,
        "title": alloc.work_item.title,
        "type": alloc.work_item.type.value,
        "teamId": alloc.team_id,
        "iterationId": alloc.iteration_id,
        "iterationIndex": alloc.iteration_index,
        "points": alloc.allocated_points,
        "confidence": alloc.confidence,
        "blockedBy": list(alloc.blocked_by),
        "enables": list(alloc.enables),
        "rationale": alloc.rationale,
    }


def serialize_iteration_plan(plan: IterationPlan) -> dict[str, Any]:
    value = plan.deliverable_value
    return {
        "id": plan.iteration.id,
        "name": plan.iteration.name,
        "index": plan.iteration.index,
        "startDate": plan.iteration.start_date.isoformat(),
        "endDate": plan.iteration.end_date.isoformat(),
        "duration": plan.iteration.duration,
        "totalPoints": plan.total_points,
        "totalCapacity": plan.total_capacity,
        "allocations": [_allocation(alloc) for alloc in plan.allocated_work],
        "utilization": [
            {
                "teamId": u.team_id,
                "availableCapacity": u.available_capacity,
                "allocatedPoints": u.allocated_points,
                "utilizationRate": round(u.utilization_rate, 4),
                "isOverAllocated": u.is_over_allocated,
                "bufferCapacity": u.buffer_capacity,
            }
            for u in plan.utilization
        ],
        "deliverableValue": {
            "canDeliverWorkingSoftware": value.can_deliver_working_software,
            "primaryValue": value.primary_value,
            "secondaryValues": list(value.secondary_values),
            "valueConfidence": value.value_confidence,
            "valueDeliveryStories": list(value.value_delivery_stories),
            "valuePrerequisites": list(value.value_prerequisites),
            "valueRisks": [
                {
                    "id": risk.id,
                    "description": risk.description,
                    "severity": risk.severity.value,
                    "probability": risk.probability,
                    "impact": risk.impact,
                    "mitigations": list(risk.mitigations),
                    "owner": risk.owner,
                }
                for risk in value.value_risks
            ],
        },
    }


def _message(message: ValidationMessage) -> dict[str, Any]:
    return {
        "code": message.code,
        "message": message.message,
        "affectedItems": list(message.affected_items),
        "suggestedFix": message.suggested_fix,
    }


def serialize_graph(graph: DependencyGraph) -> dict[str, Any]:
    stats = graph.statistics
    return {
        "nodes": [
            {
                "id": item.id,
                "type": item.type.value,
                "title": item.title,
                "storyPoints": item.story_points,
                "priority": item.priority,
            }
            for item in graph.nodes.values()
        ],
        "edges": [
            {
                "id": edge.id,
                "sourceId": edge.source_id,
                "targetId": edge.target_id,
                "type": edge.type.value,
                "strength": edge.strength.value,
                "confidence": edge.confidence,
            }
            for edge in graph.edges
        ],
        "criticalPath": list(graph.critical_path),
        "circularDependencies": [
            {
                "cycle": list(cd.cycle),
                "edges": [edge.id for edge in cd.edges],
                "severity": cd.severity.value,
                "resolutionSuggestions": list(cd.resolution_suggestions),
            }
            for cd in graph.circular_dependencies
        ],
        "validation": {
            "isValid": graph.validation.is_valid,
            "errors": [_message(m) for m in graph.validation.errors],
            "warnings": [_message(m) for m in graph.validation.warnings],
            "info": [_message(m) for m in graph.validation.info],
        },
        "statistics": {
            "nodeCount": stats.node_count,
            "edgeCount": stats.edge_count,
            "hardDependencies": stats.hard_dependencies,
            "softDependencies": stats.soft_dependencies,
            "averageDependencies": stats.average_dependencies,
            "independentItems": stats.independent_items,
            "highDependencyItems": list(stats.high_dependency_items),
            "longestPathWeight": stats.longest_path_weight,
            "totalStoryPoints": stats.total_story_points,
        },
    }


def _readiness(readiness: ReadinessResult) -> dict[str, Any]:
    return {
        "score": readiness.score,
        "isReady": readiness.is_ready,
        "assessments": [
            {
                "category": a.category.value,
                "score": a.score,
                "isReady": a.is_ready,
                "issues": list(a.issues),
                "recommendations": list(a.recommendations),
            }
            for a in readiness.assessments
        ],
        "criticalBlockers": list(readiness.critical_blockers),
        "recommendations": list(readiness.recommendations),
    }


def _action(action: ImprovementAction) -> dict[str, Any]:
    return {
        "id": action.id,
        "category": action.category.value,
        "action": action.action,
        "priority": action.priority,
        "estimatedImpact": action.estimated_impact,
        "effort": action.effort,
        "risks": list(action.risks),
    }


def _optimization(optimization: OptimizedPlan | None) -> dict[str, Any] | None:
    if optimization is None:
        return None
    return {
        "scoreBefore": optimization.readiness_before.score,
        "scoreAfter": optimization.readiness.score,
        "readinessScoreImprovement": optimization.readiness_score_improvement,
        "valueDeliveryImprovement": optimization.value_delivery_improvement,
        "reverted": optimization.reverted,
        "implementationComplexity": optimization.implementation_complexity,
        "changes": [
            {
                "kind": change.kind,
                "workItemId": change.work_item_id,
                "fromIterationId": change.from_iteration_id,
                "toIterationId": change.to_iteration_id,
                "teamId": change.team_id,
                "reason": change.reason,
            }
            for change in optimization.changes
        ],
        "improvementActions": [_action(a) for a in optimization.improvement_actions],
        "riskReduction": {
            "risksEliminated": optimization.risk_reduction.risks_eliminated,
            "riskReductionPercentage": optimization.risk_reduction.risk_reduction_percentage,
            "remainingHighRisks": optimization.risk_reduction.remaining_high_risks,
            "mitigationStrategies": list(optimization.risk_reduction.mitigation_strategies),
        },
    }


def build_plan_report(plan: ARTPlan) -> dict[str, Any]:
    utilizations = calculate_utilization(plan.allocation.allocated, plan.capacities, plan.config)
    metrics = capacity_metrics(utilizations)
    confidences = [p.deliverable_value.value_confidence for p in plan.iteration_plans]
    value_confidence = sum(confidences) / len(confidences) if confidences else 0.0
    stories = [a.work_item for a in plan.allocation.allocated if a.work_item.type is WorkItemType.story]
    sized = [s for s in stories if (s.story_points or 0) <= plan.config.max_story_points]
    improvement = generate_improvement_plan(plan.readiness, plan.config)

    return {
        "programIncrement": {
            "id": plan.program_increment.id,
            "name": plan.program_increment.name,
            "startDate": plan.program_increment.start_date.isoformat(),
            "endDate": plan.program_increment.end_date.isoformat(),
        },
        "summary": {
            "totalIterations": len(plan.iterations),
            "totalWorkItems": len(plan.work_items),
            "totalStoryPoints": sum(a.allocated_points for a in plan.allocation.allocated),
            "averageUtilization": round(metrics.average_utilization, 4),
            "dependencyCount": len(plan.graph.edges),
            "criticalPathLength": len(plan.graph.critical_path),
            "valueDeliveryConfidence": round(value_confidence, 4),
            "riskLevel": plan_risk_level(
                metrics.average_utilization, value_confidence, len(plan.graph.edges), len(plan.work_items)
            ),
        },
        "metrics": {
            "properlySizedStories": round(len(sized) / len(stories), 4) if stories else 1.0,
            "iterationsWithValue": sum(1 for p in plan.iteration_plans if p.deliverable_value.can_deliver_working_software),
            "capacityBalance": round(1 - metrics.utilization_std_dev, 4),
            "maxUtilization": round(metrics.max_utilization, 4),
            "minUtilization": round(metrics.min_utilization, 4),
            "overAllocatedCount": metrics.over_allocated_count,
        },
        "allocation": {
            "allocatedCount": plan.allocation.statistics.allocated_count,
            "unallocatedCount": plan.allocation.statistics.unallocated_count,
            "successRate": round(plan.allocation.statistics.success_rate, 4),
            "averageConfidence": round(plan.allocation.statistics.average_confidence, 4),
            "processingTimeMs": round(plan.allocation.statistics.processing_time_ms, 3),
            "issues": [
                {
                    "type": issue.type,
                    "severity": issue.severity.value,
                    "description": issue.description,
                    "affectedIterations": list(issue.affected_iterations),
                    "recommendations": list(issue.recommendations),
                }
                for issue in plan.allocation.issues
            ],
        },
        "capacity": {
            "totalCapacity": plan.capacities.total_capacity,
            "confidence": round(plan.capacities.confidence_score, 4),
            "notes": list(plan.capacities.notes),
            "risks": list(plan.capacities.risks),
            "recommendations": capacity_recommendations(utilizations),
        },
        "readiness": _readiness(plan.readiness),
        "improvementPlan": {
            "currentScore": improvement.current_score,
            "targetScore": improvement.target_score,
            "estimatedImprovement": improvement.estimated_improvement,
            "prioritizedActions": [_action(a) for a in improvement.prioritized_actions],
            "quickWins": [a.id for a in improvement.quick_wins],
            "strategicImprovements": [a.id for a in improvement.strategic_improvements],
            "timeline": list(improvement.timeline),
            "resourceRequirements": improvement.resource_requirements,
            "riskMitigation": list(improvement.risk_mitigation),
        },
        "optimization": _optimization(plan.optimization),
        "iterations": [serialize_iteration_plan(p) for p in plan.iteration_plans],
        "graph": serialize_graph(plan.graph),
        "unallocated": [
            {
                "workItemId": u.work_item.id,
                "title": u.work_item.title,
                "reason": u.reason,
                "blockers": list(u.blockers),
                "solutions": list(u.solutions),
            }
            for u in plan.allocation.unallocated
        ],
    }


__all__ = ["build_plan_report", "plan_risk_level", "serialize_graph", "serialize_iteration_plan"]
