from collections import defaultdict

import pytest

from services.art_planner.app.domain.allocator import (
    REASON_CAPACITY,
    REASON_DEPENDENCIES,
    REASON_HORIZON,
    allocate_work_items,
    allocation_confidence,
    priority_score,
    summarise_allocation,
)
from services.art_planner.app.domain.capacity import compute_capacities
from services.art_planner.app.domain.graph import build_dependency_graph
from services.art_planner.app.domain.iterations import generate_iterations
from services.art_planner.app.domain.types import (
    AllocatedWorkItem,
    DependencyEdge,
    DependencyType,
    RiskSeverity,
    Team,
    WorkItem,
    WorkItemType,
)


def _item(item_id: str, points: int = 3, priority: int | None = None) -> WorkItem:
    return WorkItem(id=item_id, type=WorkItemType.story, title=f"Story {item_id}", story_points=points, priority=priority)


def _requires(source: str, target: str) -> DependencyEdge:
    return DependencyEdge(source_id=source, target_id=target, type=DependencyType.requires)


def _allocate(pi, items, edges, teams, config):
    iterations = generate_iterations(pi, teams, config)
    graph = build_dependency_graph(items, edges)
    return iterations, graph, allocate_work_items(items, iterations, graph, teams, config)


def test_high_scoring_dependent_is_left_unallocated_without_backtracking(
    two_iteration_pi, single_team, neutral_config
):
    items = [_item("A", 5), _item("B", 3), _item("C", 3)]
    edges = [_requires("B", "A"), _requires("C", "B")]

    iterations, _, result = _allocate(two_iteration_pi, items, edges, single_team, neutral_config)

    assert [(a.item_id, a.iteration_id) for a in result.allocated] == [("A", iterations[0].id)]
    reasons = {u.work_item.id: u.reason for u in result.unallocated}
    assert reasons == {"B": REASON_DEPENDENCIES, "C": REASON_DEPENDENCIES}
    blockers = {u.work_item.id: u.blockers for u in result.unallocated}
    assert blockers["B"] == ("A",)
    assert result.statistics.success_rate == pytest.approx(1 / 3)


def test_prioritised_chain_lands_in_consecutive_iterations(three_iteration_pi, single_team, neutral_config):
    items = [_item("A", 5, priority=1), _item("B", 3, priority=2), _item("C", 3, priority=3)]
    edges = [_requires("B", "A"), _requires("C", "B")]

    iterations, _, result = _allocate(three_iteration_pi, items, edges, single_team, neutral_config)

    placed = {a.item_id: a for a in result.allocated}
    assert [placed[item_id].iteration_index for item_id in "ABC"] == [1, 2, 3]
    assert placed["B"].blocked_by == ("A",)
    assert placed["A"].enables == ("B",)
    assert placed["C"].confidence == pytest.approx(0.75)
    assert result.unallocated == []
    assert result.issues == []


def test_dependent_past_the_horizon_is_reported(two_iteration_pi, single_team, neutral_config):
    items = [_item("A", 5, priority=1), _item("B", 3, priority=2), _item("C", 3, priority=3)]
    edges = [_requires("B", "A"), _requires("C", "B")]

    _, _, result = _allocate(two_iteration_pi, items, edges, single_team, neutral_config)

    assert [u.work_item.id for u in result.unallocated] == ["C"]
    assert result.unallocated[0].reason == REASON_HORIZON
    assert result.unallocated[0].blockers == ("B",)


def test_full_iteration_leaves_item_unallocated_unless_deferral_enabled(
    two_iteration_pi, single_team, neutral_config
):
    items = [_item("X", 4), _item("Y", 4)]

    _, _, strict = _allocate(two_iteration_pi, items, [], single_team, neutral_config)
    assert [a.item_id for a in strict.allocated] == ["X"]
    assert strict.unallocated[0].reason == REASON_CAPACITY

    deferring = neutral_config.merged({"defer_unplaceable_items": True})
    _, _, relaxed = _allocate(two_iteration_pi, items, [], single_team, deferring)
    placed = {a.item_id: a for a in relaxed.allocated}
    assert placed["Y"].iteration_index == 2
    assert "deferred 1 iterations" in placed["Y"].rationale


def test_team_with_most_remaining_capacity_is_chosen(two_iteration_pi, neutral_config):
    teams = [
        Team(id="T1", name="One", member_count=5, average_velocity=10),
        Team(id="T2", name="Two", member_count=5, average_velocity=8),
    ]
    items = [_item("P", 3, priority=1), _item("Q", 3, priority=2)]

    _, _, result = _allocate(two_iteration_pi, items, [], teams, neutral_config)

    placed = {a.item_id: a.team_id for a in result.allocated}
    assert placed == {"P": "T1", "Q": "T2"}


def test_allocation_conserves_items_and_respects_capacity(three_iteration_pi, neutral_config):
    teams = [
        Team(id="T1", name="One", member_count=5, average_velocity=7),
        Team(id="T2", name="Two", member_count=4, average_velocity=5),
    ]
    items = [_item(f"S{n}", points=1 + n % 4, priority=1 + n % 5) for n in range(14)]
    edges = [_requires("S3", "S1"), _requires("S5", "S3"), _requires("S8", "S2")]
    config = neutral_config.merged({"defer_unplaceable_items": True})

    iterations, graph, result = _allocate(three_iteration_pi, items, edges, teams, config)

    seen = [a.item_id for a in result.allocated] + [u.work_item.id for u in result.unallocated]
    assert sorted(seen) == sorted(item.id for item in items)
    assert len(seen) == len(set(seen))

    capacities = compute_capacities(iterations, teams, config)
    used = defaultdict(int)
    for alloc in result.allocated:
        used[(alloc.iteration_id, alloc.team_id)] += alloc.allocated_points
    for (iteration_id, team_id), points in used.items():
        assert points <= capacities.capacity_for(iteration_id, team_id) * config.max_capacity_utilization + 1e-9

    position = {it.id: idx for idx, it in enumerate(iterations)}
    placed = result.by_item()
    for alloc in result.allocated:
        for prereq in graph.prerequisites_of(alloc.item_id):
            assert position[placed[prereq].iteration_id] < position[alloc.iteration_id]
    assert not any(issue.type == "capacity_overrun" for issue in result.issues)


def test_allocation_is_deterministic(three_iteration_pi, single_team, neutral_config):
    items = [_item(f"S{n}", points=1 + n % 3) for n in range(8)]
    edges = [_requires("S4", "S0")]

    def snapshot():
        _, _, result = _allocate(three_iteration_pi, items, edges, single_team, neutral_config)
        return [(a.item_id, a.iteration_id, a.team_id) for a in result.allocated], [
            u.work_item.id for u in result.unallocated
        ]

    assert snapshot() == snapshot()


def test_mutually_dependent_items_are_never_scheduled(two_iteration_pi, single_team, neutral_config):
    items = [_item("A", 2), _item("B", 2), _item("C", 2)]
    edges = [_requires("A", "B"), _requires("B", "A")]

    _, _, result = _allocate(two_iteration_pi, items, edges, single_team, neutral_config)

    assert [a.item_id for a in result.allocated] == ["C"]
    assert {u.work_item.id for u in result.unallocated} == {"A", "B"}
    assert all(u.reason == REASON_DEPENDENCIES for u in result.unallocated)


def test_priority_score_components(neutral_config):
    items = [_item("A", 2, priority=1), _item("B", 8)]
    graph = build_dependency_graph(items, [])

    assert priority_score(items[0], graph, neutral_config) == 540
    assert priority_score(items[1], graph, neutral_config) == 180


@pytest.mark.parametrize(
    "prerequisites, points, expected",
    [(0, 2, 0.9), (1, 3, 0.75), (2, 8, 0.6), (20, 3, 0.1)],
)
def test_allocation_confidence(prerequisites, points, expected):
    assert allocation_confidence(prerequisites, points) == pytest.approx(expected)


def test_issues_report_ordering_violation_and_overrun(two_iteration_pi, single_team, neutral_config):
    iterations = generate_iterations(two_iteration_pi, single_team, neutral_config)
    items = [_item("A", 5), _item("B", 4)]
    graph = build_dependency_graph(items, [_requires("B", "A")])
    capacities = compute_capacities(iterations, single_team, neutral_config)
    first = iterations[0]
    allocated = [
        AllocatedWorkItem(items[0], "T1", first.id, first.index, 5, 0.8),
        AllocatedWorkItem(items[1], "T1", first.id, first.index, 4, 0.75, blocked_by=("A",)),
    ]

    result = summarise_allocation(allocated, [], iterations, graph, capacities, neutral_config)

    kinds = {issue.type: issue for issue in result.issues}
    assert kinds["dependency_violation"].severity is RiskSeverity.critical
    assert kinds["dependency_violation"].affected_iterations == (first.id,)
    assert kinds["capacity_overrun"].severity is RiskSeverity.high
    assert result.statistics.success_rate == 1.0
