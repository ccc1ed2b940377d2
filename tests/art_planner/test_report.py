import json

import pytest

from services.art_planner.app.domain.graph import build_dependency_graph
from services.art_planner.app.domain.plan_builder import build_art_plan
from services.art_planner.app.domain.report import build_plan_report, plan_risk_level, serialize_graph
from services.art_planner.app.domain.types import (
    DependencyEdge,
    DependencyStrength,
    DependencyType,
    Team,
    WorkItem,
    WorkItemType,
)

TEAMS = [Team(id="T1", name="Team One", member_count=5, average_velocity=10, specializations=("web",))]


@pytest.mark.parametrize(
    "utilization, confidence, edges, items, expected",
    [
        (0.95, 0.6, 0, 10, "high"),
        (0.95, 0.8, 0, 10, "medium"),
        (0.5, 0.6, 0, 10, "medium"),
        (0.5, 0.8, 6, 10, "medium"),
        (0.5, 0.8, 5, 10, "low"),
    ],
)
def test_plan_risk_level(utilization, confidence, edges, items, expected):
    assert plan_risk_level(utilization, confidence, edges, items) == expected


@pytest.fixture
def optimized_plan(two_iteration_pi, neutral_config):
    stories = [
        WorkItem(
            id=item_id,
            type=WorkItemType.story,
            title=f"Story {item_id}",
            story_points=2,
            priority=1,
            acceptance_criteria=("done",),
        )
        for item_id in ("S1", "S2", "S3")
    ]
    enabler = WorkItem(id="E1", type=WorkItemType.enabler, title="Enabler E1", story_points=2, priority=5)
    config = neutral_config.merged({"optimizer": {"target_readiness_score": 0.95}})
    return build_art_plan(
        two_iteration_pi,
        [*stories, enabler],
        [DependencyEdge(source_id="E1", target_id="S1", type=DependencyType.requires)],
        TEAMS,
        config,
    )


def test_report_sections_are_json_serialisable(optimized_plan):
    report = build_plan_report(optimized_plan)

    assert set(report) == {
        "programIncrement",
        "summary",
        "metrics",
        "allocation",
        "capacity",
        "readiness",
        "improvementPlan",
        "optimization",
        "iterations",
        "graph",
        "unallocated",
    }
    assert json.loads(json.dumps(report))["programIncrement"]["startDate"] == "2024-01-01"


def test_report_summary_and_metrics(optimized_plan):
    report = build_plan_report(optimized_plan)

    summary = report["summary"]
    assert summary["totalIterations"] == 2
    assert summary["totalWorkItems"] == 4
    assert summary["totalStoryPoints"] == 8
    assert summary["averageUtilization"] == pytest.approx(0.4)
    assert summary["dependencyCount"] == 1
    assert summary["criticalPathLength"] == 2
    assert summary["valueDeliveryConfidence"] == pytest.approx(0.875)
    assert summary["riskLevel"] == "low"

    metrics = report["metrics"]
    assert metrics["properlySizedStories"] == 1.0
    assert metrics["iterationsWithValue"] == 2
    assert metrics["capacityBalance"] == pytest.approx(1.0)
    assert report["unallocated"] == []


def test_report_includes_optimization_outcome(optimized_plan):
    report = build_plan_report(optimized_plan)

    optimization = report["optimization"]
    assert optimization["scoreBefore"] == pytest.approx(0.875)
    assert optimization["scoreAfter"] == 1.0
    assert [change["kind"] for change in optimization["changes"]] == ["value_rebalance"]
    assert not optimization["reverted"]
    assert report["readiness"]["isReady"]
    assert report["improvementPlan"]["prioritizedActions"] == []
    second = report["iterations"][1]
    assert {a["workItemId"] for a in second["allocations"]} == {"S2", "E1"}
    assert second["deliverableValue"]["canDeliverWorkingSoftware"]


def test_serialize_graph_reports_cycles():
    items = [WorkItem(id=item_id, type=WorkItemType.story, title=item_id, story_points=3) for item_id in ("A", "B")]
    edges = [
        DependencyEdge(source_id="A", target_id="B", strength=DependencyStrength.hard),
        DependencyEdge(source_id="B", target_id="A", strength=DependencyStrength.hard),
    ]

    payload = serialize_graph(build_dependency_graph(items, edges))

    assert payload["circularDependencies"][0]["severity"] == "critical"
    assert sorted(payload["circularDependencies"][0]["edges"]) == ["A->B", "B->A"]
    assert payload["validation"]["isValid"] is False
    assert payload["statistics"]["hardDependencies"] == 2
    assert payload["criticalPath"] == []
