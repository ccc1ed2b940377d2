"""Dependency graph construction, cycle detection and critical path analysis."""
from __future__ import annotations

from collections import deque
from typing import Iterable, Sequence

import structlog

from .types import (
    CircularDependency,
    CycleSeverity,
    DependencyEdge,
    DependencyGraph,
    DependencyStrength,
    DependencyType,
    GraphStatistics,
    GraphValidation,
    ValidationMessage,
    WorkItem,
)

logger = structlog.get_logger(__name__)


def build_dependency_graph(
    work_items: Sequence[WorkItem],
    edges: Iterable[DependencyEdge],
    default_points: int = 3,
) -> DependencyGraph:
    """Build an immutable dependency graph.

    Edges that reference unknown work items or point at themselves are dropped
    with a warning. Duplicate (source, target) pairs collapse onto the edge
    with the highest confidence.
    """
    nodes: dict[str, WorkItem] = {}
    warnings: list[ValidationMessage] = []
    for item in work_items:
        if item.id in nodes:
            warnings.append(
                ValidationMessage(
                    code="DUPLICATE_WORK_ITEM",
                    message=f"Work item {item.id} appears more than once; keeping the first occurrence",
                    affected_items=(item.id,),
                )
            )
            continue
        nodes[item.id] = item

    kept = _normalise_edges(nodes, edges, warnings)
    prerequisite_edges = [edge for edge in kept if edge.is_prerequisite]

    clusters = _cyclic_clusters(nodes, prerequisite_edges)
    circular = tuple(_describe_cycle(cluster, prerequisite_edges, nodes) for cluster in clusters)
    cyclic_ids = frozenset(node_id for cluster in clusters for node_id in cluster)
    if circular:
        logger.warning(
            "graph.cycles_detected",
            cycles=[list(cd.cycle) for cd in circular],
            severities=[cd.severity.value for cd in circular],
        )

    acyclic_edges = [
        edge for edge in prerequisite_edges if edge.source_id not in cyclic_ids and edge.target_id not in cyclic_ids
    ]
    order, _ = _kahn([node_id for node_id in nodes if node_id not in cyclic_ids], acyclic_edges)
    critical_path, path_weight = _longest_weighted_path(order, acyclic_edges, nodes, default_points)

    validation = _validate(nodes, kept, circular, warnings)
    statistics = _statistics(nodes, kept, path_weight, default_points)

    graph = DependencyGraph(
        nodes=nodes,
        edges=tuple(kept),
        critical_path=tuple(critical_path),
        circular_dependencies=circular,
        validation=validation,
        statistics=statistics,
        cyclic_node_ids=cyclic_ids,
    )
    logger.info(
        "graph.built",
        nodes=len(nodes),
        edges=len(kept),
        cycles=len(circular),
        critical_path_length=len(critical_path),
        critical_path_weight=path_weight,
    )
    return graph


def topological_order(graph: DependencyGraph) -> list[str]:
    """Prerequisites-first ordering of every node outside a cyclic cluster."""
    node_ids = [node_id for node_id in graph.nodes if node_id not in graph.cyclic_node_ids]
    edges = [
        edge
        for edge in graph.edges
        if edge.is_prerequisite
        and edge.source_id not in graph.cyclic_node_ids
        and edge.target_id not in graph.cyclic_node_ids
    ]
    order, _ = _kahn(node_ids, edges)
    return order


def _normalise_edges(
    nodes: dict[str, WorkItem],
    edges: Iterable[DependencyEdge],
    warnings: list[ValidationMessage],
) -> list[DependencyEdge]:
    unique: dict[tuple[str, str], DependencyEdge] = {}
    for edge in edges:
        missing = [node_id for node_id in (edge.source_id, edge.target_id) if node_id not in nodes]
        if missing:
            warnings.append(
                ValidationMessage(
                    code="UNKNOWN_WORK_ITEM",
                    message=f"Dependency {edge.id} references unknown work items: {', '.join(missing)}",
                    affected_items=tuple(missing),
                    suggested_fix="Remove the dependency or add the missing work items to the planning input",
                )
            )
            logger.warning("graph.edge_dropped", edge=edge.id, reason="unknown_work_item", missing=missing)
            continue
        if edge.source_id == edge.target_id:
            warnings.append(
                ValidationMessage(
                    code="SELF_DEPENDENCY",
                    message=f"Work item {edge.source_id} cannot depend on itself",
                    affected_items=(edge.source_id,),
                )
            )
            logger.warning("graph.edge_dropped", edge=edge.id, reason="self_dependency")
            continue
        key = (edge.source_id, edge.target_id)
        current = unique.get(key)
        if current is None or edge.confidence > current.confidence:
            unique[key] = edge
    return list(unique.values())


def _kahn(node_ids: Sequence[str], edges: Sequence[DependencyEdge]) -> tuple[list[str], list[str]]:
    """Return (emitted order, residual nodes) for prerequisite edges over ``node_ids``."""
    in_degree = {node_id: 0 for node_id in node_ids}
    dependents: dict[str, list[str]] = {node_id: [] for node_id in node_ids}
    for edge in edges:
        if edge.source_id not in in_degree or edge.target_id not in in_degree:
            continue
        in_degree[edge.source_id] += 1
        dependents[edge.target_id].append(edge.source_id)

    queue = deque(node_id for node_id in node_ids if in_degree[node_id] == 0)
    order: list[str] = []
    while queue:
        node_id = queue.popleft()
        order.append(node_id)
        for dependent in dependents[node_id]:
            in_degree[dependent] -= 1
            if in_degree[dependent] == 0:
                queue.append(dependent)

    emitted = set(order)
    residual = [node_id for node_id in node_ids if node_id not in emitted]
    return order, residual


def _reachable(start: str, adjacency: dict[str, list[str]], allowed: set[str]) -> set[str]:
    seen: set[str] = set()
    stack = [start]
    while stack:
        node_id = stack.pop()
        for neighbour in adjacency.get(node_id, ()):
            if neighbour in allowed and neighbour not in seen:
                seen.add(neighbour)
                stack.append(neighbour)
    return seen


def _cyclic_clusters(nodes: dict[str, WorkItem], edges: Sequence[DependencyEdge]) -> list[list[str]]:
    """Strongly connected groups among the nodes Kahn's algorithm could not emit.

    Residual nodes that merely depend on a cycle are not part of any cluster.
    """
    _, residual = _kahn(list(nodes), edges)
    if not residual:
        return []

    forward: dict[str, list[str]] = {}
    backward: dict[str, list[str]] = {}
    for edge in edges:
        forward.setdefault(edge.source_id, []).append(edge.target_id)
        backward.setdefault(edge.target_id, []).append(edge.source_id)

    allowed = set(residual)
    assigned: set[str] = set()
    clusters: list[list[str]] = []
    for node_id in residual:
        if node_id in assigned:
            continue
        downstream = _reachable(node_id, forward, allowed)
        if node_id not in downstream:
            continue
        members = downstream & _reachable(node_id, backward, allowed)
        assigned.update(members)
        clusters.append([candidate for candidate in residual if candidate in members])
    return clusters


def _minimal_cycle(start: str, members: set[str], edges: Sequence[DependencyEdge]) -> list[str]:
    """Shortest cycle through ``start`` inside ``members``."""
    adjacency: dict[str, list[str]] = {}
    for edge in edges:
        if edge.source_id in members and edge.target_id in members:
            adjacency.setdefault(edge.source_id, []).append(edge.target_id)

    parents: dict[str, str] = {}
    queue = deque([start])
    visited = {start}
    while queue:
        node_id = queue.popleft()
        for neighbour in adjacency.get(node_id, ()):
            if neighbour == start:
                path = [node_id]
                while path[-1] != start:
                    path.append(parents[path[-1]])
                return list(reversed(path))
            if neighbour not in visited:
                visited.add(neighbour)
                parents[neighbour] = node_id
                queue.append(neighbour)
    return [start]


def _describe_cycle(
    cluster: list[str],
    edges: Sequence[DependencyEdge],
    nodes: dict[str, WorkItem],
) -> CircularDependency:
    cycle = _minimal_cycle(cluster[0], set(cluster), edges)
    lookup = {(edge.source_id, edge.target_id): edge for edge in edges}
    cycle_edges = tuple(
        lookup[(cycle[idx], cycle[(idx + 1) % len(cycle)])]
        for idx in range(len(cycle))
        if (cycle[idx], cycle[(idx + 1) % len(cycle)]) in lookup
    )
    return CircularDependency(
        cycle=tuple(cycle),
        edges=cycle_edges,
        severity=_cycle_severity(cycle_edges),
        resolution_suggestions=tuple(_resolution_suggestions(cycle, cycle_edges)),
    )


def _cycle_severity(edges: Sequence[DependencyEdge]) -> CycleSeverity:
    if any(edge.strength is DependencyStrength.hard or edge.type is DependencyType.blocks for edge in edges):
        return CycleSeverity.critical
    if len(edges) > 2:
        return CycleSeverity.warning
    return CycleSeverity.info


def _resolution_suggestions(cycle: Sequence[str], edges: Sequence[DependencyEdge]) -> list[str]:
    suggestions = [
        "Review the necessity of each dependency in the cycle",
        "Consider breaking the cycle by removing soft dependencies",
        "Reorder work items to create a linear dependency chain",
    ]
    if len(cycle) > 3:
        suggestions.append("Split large work items to reduce dependency complexity")
    soft = [edge.id for edge in edges if edge.strength is DependencyStrength.soft]
    if soft:
        suggestions.append(f"Consider making soft dependencies optional: {', '.join(soft)}")
    return suggestions


def _longest_weighted_path(
    order: Sequence[str],
    edges: Sequence[DependencyEdge],
    nodes: dict[str, WorkItem],
    default_points: int,
) -> tuple[list[str], int]:
    if not order:
        return [], 0

    prerequisites: dict[str, list[str]] = {node_id: [] for node_id in order}
    for edge in edges:
        if edge.source_id in prerequisites:
            prerequisites[edge.source_id].append(edge.target_id)

    best: dict[str, int] = {}
    predecessor: dict[str, str | None] = {}
    for node_id in order:
        weight = nodes[node_id].points(default_points)
        incoming = None
        incoming_best = 0
        for prerequisite in prerequisites[node_id]:
            if best[prerequisite] > incoming_best:
                incoming_best = best[prerequisite]
                incoming = prerequisite
        best[node_id] = weight + incoming_best
        predecessor[node_id] = incoming

    end = order[0]
    for node_id in order:
        if best[node_id] > best[end]:
            end = node_id

    path = [end]
    while predecessor[path[-1]] is not None:
        path.append(predecessor[path[-1]])  # type: ignore[arg-type]
    path.reverse()
    return path, best[end]


def _validate(
    nodes: dict[str, WorkItem],
    edges: Sequence[DependencyEdge],
    circular: Sequence[CircularDependency],
    warnings: list[ValidationMessage],
) -> GraphValidation:
    errors: list[ValidationMessage] = []
    info: list[ValidationMessage] = []

    critical = [cd for cd in circular if cd.severity is CycleSeverity.critical]
    if critical:
        errors.append(
            ValidationMessage(
                code="CRITICAL_CIRCULAR_DEPENDENCIES",
                message=f"Found {len(critical)} critical circular dependencies that must be resolved",
                affected_items=tuple(node_id for cd in critical for node_id in cd.cycle),
                suggested_fix="Review and break circular dependencies by reordering work or removing unnecessary dependencies",
            )
        )

    connected = {node_id for edge in edges for node_id in (edge.source_id, edge.target_id)}
    isolated = [node_id for node_id in nodes if node_id not in connected]
    if isolated:
        info.append(
            ValidationMessage(
                code="ISOLATED_NODES",
                message=f"{len(isolated)} work items have no dependencies",
                affected_items=tuple(isolated),
            )
        )

    return GraphValidation(
        is_valid=not errors,
        errors=tuple(errors),
        warnings=tuple(warnings),
        info=tuple(info),
    )


def _statistics(
    nodes: dict[str, WorkItem],
    edges: Sequence[DependencyEdge],
    path_weight: int,
    default_points: int,
) -> GraphStatistics:
    node_count = len(nodes)
    edge_count = len(edges)
    outgoing: dict[str, int] = {}
    for edge in edges:
        outgoing[edge.source_id] = outgoing.get(edge.source_id, 0) + 1

    average = edge_count / node_count if node_count else 0.0
    threshold = max(3.0, average * 1.5)
    return GraphStatistics(
        node_count=node_count,
        edge_count=edge_count,
        hard_dependencies=sum(1 for edge in edges if edge.strength is DependencyStrength.hard),
        soft_dependencies=sum(1 for edge in edges if edge.strength is DependencyStrength.soft),
        average_dependencies=round(average, 3),
        independent_items=node_count - len(outgoing),
        high_dependency_items=tuple(node_id for node_id, count in outgoing.items() if count >= threshold),
        longest_path_weight=path_weight,
        total_story_points=sum(item.points(default_points) for item in nodes.values()),
    )


__all__ = ["build_dependency_graph", "topological_order"]
