from services.art_planner.app.domain.graph import build_dependency_graph, topological_order
from services.art_planner.app.domain.types import (
    CycleSeverity,
    DependencyEdge,
    DependencyStrength,
    DependencyType,
    WorkItem,
    WorkItemType,
)


def _item(item_id: str, points: int | None = 3, **kwargs) -> WorkItem:
    return WorkItem(id=item_id, type=WorkItemType.story, title=f"Story {item_id}", story_points=points, **kwargs)


def _requires(source: str, target: str, **kwargs) -> DependencyEdge:
    return DependencyEdge(source_id=source, target_id=target, type=DependencyType.requires, **kwargs)


def test_two_node_hard_cycle_is_critical_and_off_the_critical_path():
    items = [_item("A"), _item("B")]
    edges = [
        _requires("A", "B", strength=DependencyStrength.hard),
        _requires("B", "A", strength=DependencyStrength.hard),
    ]

    graph = build_dependency_graph(items, edges)

    assert len(graph.circular_dependencies) == 1
    cycle = graph.circular_dependencies[0]
    assert cycle.severity is CycleSeverity.critical
    assert set(cycle.cycle) == {"A", "B"}
    assert "A" not in graph.critical_path
    assert "B" not in graph.critical_path
    assert not graph.validation.is_valid
    assert graph.validation.errors[0].code == "CRITICAL_CIRCULAR_DEPENDENCIES"


def test_three_node_cycle_reported_as_one_cycle_with_all_members():
    items = [_item("A"), _item("B"), _item("C")]
    edges = [_requires("A", "B"), _requires("B", "C"), _requires("C", "A")]

    graph = build_dependency_graph(items, edges)

    assert len(graph.circular_dependencies) == 1
    cycle = graph.circular_dependencies[0]
    assert set(cycle.cycle) == {"A", "B", "C"}
    assert len(cycle.edges) == 3
    assert cycle.severity is CycleSeverity.warning
    assert any("A->B" in suggestion for suggestion in cycle.resolution_suggestions)
    assert graph.cyclic_node_ids == frozenset({"A", "B", "C"})


def test_soft_two_edge_cycle_is_informational():
    graph = build_dependency_graph([_item("A"), _item("B")], [_requires("A", "B"), _requires("B", "A")])

    assert graph.circular_dependencies[0].severity is CycleSeverity.info
    assert graph.validation.is_valid


def test_item_depending_on_a_cycle_is_not_part_of_it():
    items = [_item("A"), _item("B"), _item("C", points=5)]
    edges = [_requires("A", "B"), _requires("B", "A"), _requires("C", "A")]

    graph = build_dependency_graph(items, edges)

    assert graph.cyclic_node_ids == frozenset({"A", "B"})
    assert graph.critical_path == ("C",)


def test_duplicate_edges_keep_highest_confidence():
    items = [_item("A"), _item("B")]
    edges = [
        _requires("B", "A", confidence=0.4, rationale="first"),
        _requires("B", "A", confidence=0.9, rationale="second"),
        _requires("B", "A", confidence=0.9, rationale="third"),
    ]

    graph = build_dependency_graph(items, edges)

    assert len(graph.edges) == 1
    assert graph.edges[0].confidence == 0.9
    assert graph.edges[0].rationale == "second"


def test_unknown_and_self_referencing_edges_are_dropped_with_warnings():
    items = [_item("A"), _item("B")]
    edges = [_requires("A", "ghost"), _requires("A", "A"), _requires("B", "A")]

    graph = build_dependency_graph(items, edges)

    assert [edge.id for edge in graph.edges] == ["B->A"]
    codes = [warning.code for warning in graph.validation.warnings]
    assert codes == ["UNKNOWN_WORK_ITEM", "SELF_DEPENDENCY"]
    assert graph.validation.warnings[0].affected_items == ("ghost",)


def test_critical_path_follows_heaviest_dependency_chain():
    items = [_item("A", 5), _item("B", 3), _item("C", 3), _item("D", 8)]
    edges = [_requires("B", "A"), _requires("C", "B")]

    graph = build_dependency_graph(items, edges)

    assert graph.critical_path == ("A", "B", "C")
    assert graph.statistics.longest_path_weight == 11


def test_without_prerequisites_the_heaviest_item_is_the_critical_path():
    graph = build_dependency_graph([_item("A", 2), _item("B", 8), _item("C", 8)], [])

    assert graph.critical_path == ("B",)
    info_codes = [message.code for message in graph.validation.info]
    assert info_codes == ["ISOLATED_NODES"]
    assert graph.validation.info[0].affected_items == ("A", "B", "C")


def test_missing_points_use_default_weight():
    graph = build_dependency_graph([_item("A", None), _item("B", 2)], [], default_points=3)

    assert graph.critical_path == ("A",)
    assert graph.statistics.total_story_points == 5


def test_non_prerequisite_edges_do_not_create_cycles():
    items = [_item("A"), _item("B")]
    edges = [
        DependencyEdge(source_id="A", target_id="B", type=DependencyType.related),
        DependencyEdge(source_id="B", target_id="A", type=DependencyType.enables),
    ]

    graph = build_dependency_graph(items, edges)

    assert graph.circular_dependencies == ()
    assert graph.prerequisites_of("A") == []
    assert graph.enabled_by("B") == ["A"]


def test_helper_queries_and_statistics():
    items = [_item("A"), _item("B"), _item("C"), _item("D")]
    edges = [
        _requires("B", "A", strength=DependencyStrength.hard),
        _requires("C", "A"),
        DependencyEdge(source_id="D", target_id="A", type=DependencyType.blocked_by),
    ]

    graph = build_dependency_graph(items, edges)

    assert graph.prerequisites_of("B") == ["A"]
    assert graph.dependents_of("A") == ["B", "C", "D"]
    assert graph.enabled_by("A") == ["B", "C", "D"]
    stats = graph.statistics
    assert stats.node_count == 4
    assert stats.edge_count == 3
    assert stats.hard_dependencies == 1
    assert stats.soft_dependencies == 2
    assert stats.independent_items == 1
    assert stats.average_dependencies == 0.75


def test_topological_order_puts_prerequisites_first():
    items = [_item("C"), _item("B"), _item("A"), _item("X"), _item("Y")]
    edges = [_requires("C", "B"), _requires("B", "A"), _requires("X", "Y"), _requires("Y", "X")]

    graph = build_dependency_graph(items, edges)
    order = topological_order(graph)

    assert order.index("A") < order.index("B") < order.index("C")
    assert "X" not in order and "Y" not in order
