from datetime import date

import pytest

from services.art_planner.app.config import PlanningConfig
from services.art_planner.app.domain.capacity import (
    calculate_utilization,
    capacity_metrics,
    capacity_recommendations,
    compute_capacities,
    team_confidence,
    validate_teams,
)
from services.art_planner.app.domain.errors import CapacityValidationError
from services.art_planner.app.domain.types import AllocatedWorkItem, Iteration, Team, WorkItem, WorkItemType


def _iteration(index: int, duration: int = 14, team_ids=("T1",)) -> Iteration:
    return Iteration(
        id=f"I{index}",
        name=f"Iteration {index}",
        index=index,
        start_date=date(2024, 1, 1),
        end_date=date(2024, 1, duration),
        duration=duration,
        team_ids=tuple(team_ids),
    )


def _team(team_id: str = "T1", **kwargs) -> Team:
    defaults = dict(name=f"Team {team_id}", member_count=5, average_velocity=20, specializations=("api",))
    defaults.update(kwargs)
    return Team(id=team_id, **defaults)


def _alloc(item_id: str, points: int, iteration_id: str = "I1", team_id: str = "T1") -> AllocatedWorkItem:
    return AllocatedWorkItem(
        work_item=WorkItem(id=item_id, type=WorkItemType.story, title=item_id, story_points=points),
        team_id=team_id,
        iteration_id=iteration_id,
        iteration_index=int(iteration_id[1:]),
        allocated_points=points,
        confidence=0.8,
    )


def test_available_capacity_applies_full_factor_chain():
    result = compute_capacities([_iteration(1)], [_team()], PlanningConfig())

    capacity = result.team_capacities[0]
    # 20 * 0.9 * 0.85 * 0.8 * 0.85 * (1 - 0.2)
    assert capacity.available_capacity == pytest.approx(8.32)
    assert capacity.total_capacity == 20
    assert result.capacity_for("I1", "T1") == pytest.approx(8.32)
    assert result.capacity_for("I1", "missing") == 0.0


def test_short_iteration_scales_capacity_by_duration():
    result = compute_capacities([_iteration(1, duration=7)], [_team(capacity_factor=0.5)], PlanningConfig())

    assert result.team_capacities[0].available_capacity == pytest.approx(2.08)
    assert any("7 days" in note for note in result.notes)
    assert any("capacity factor 0.5" in note for note in result.notes)


def test_team_confidence_penalties():
    small, small_risks = team_confidence(_team(member_count=2, average_velocity=5, specializations=()))
    large, _ = team_confidence(_team(member_count=12, average_velocity=40))
    steady, steady_risks = team_confidence(_team())

    assert small == pytest.approx(0.6)
    assert len(small_risks) == 3
    assert large == pytest.approx(0.8)
    assert steady == pytest.approx(0.9)
    assert steady_risks == []


@pytest.mark.parametrize(
    "overrides, fragment",
    [
        ({"average_velocity": 0}, "invalid average velocity"),
        ({"member_count": 0}, "invalid member count"),
        ({"capacity_factor": 1.5}, "invalid capacity factor"),
        ({"capacity_factor": -0.1}, "invalid capacity factor"),
    ],
)
def test_invariant_violations_are_fatal(overrides, fragment):
    with pytest.raises(CapacityValidationError) as excinfo:
        compute_capacities([_iteration(1)], [_team(**overrides)], PlanningConfig())

    assert any(fragment in issue for issue in excinfo.value.issues)
    assert excinfo.value.affected_items == ["T1"]


def test_unusually_high_velocity_is_only_a_warning():
    warnings = validate_teams([_team(member_count=2, average_velocity=50)], PlanningConfig().capacity_factors)

    assert len(warnings) == 1
    assert "unusually high velocity" in warnings[0]


def test_eligible_team_missing_from_roster_is_skipped_with_note():
    result = compute_capacities([_iteration(1, team_ids=("T1", "ghost"))], [_team()], PlanningConfig())

    assert [tc.team_id for tc in result.team_capacities] == ["T1"]
    assert any("ghost" in note for note in result.notes)


def test_utilization_flags_over_allocation_above_ceiling():
    config = PlanningConfig(buffer_capacity=0.0)
    capacities = compute_capacities(
        [_iteration(1, team_ids=("T1", "T2")), _iteration(2, team_ids=("T1", "T2"))],
        [_team("T1"), _team("T2")],
        config,
    )
    available = capacities.capacity_for("I1", "T1")
    allocated = [_alloc("A", 10, "I1", "T1"), _alloc("B", 2, "I1", "T2")]

    utilizations = calculate_utilization(allocated, capacities, config)

    by_key = {(u.iteration_id, u.team_id): u for u in utilizations}
    assert len(utilizations) == 4
    assert by_key[("I1", "T1")].utilization_rate == pytest.approx(10 / available)
    assert by_key[("I1", "T1")].is_over_allocated
    assert not by_key[("I1", "T2")].is_over_allocated
    assert by_key[("I2", "T1")].allocated_points == 0
    assert by_key[("I1", "T2")].buffer_capacity == pytest.approx(round(available - 2, 2))


def test_metrics_and_recommendations():
    config = PlanningConfig(buffer_capacity=0.0)
    capacities = compute_capacities([_iteration(1, team_ids=("T1", "T2"))], [_team("T1"), _team("T2")], config)
    available = capacities.capacity_for("I1", "T1")
    utilizations = calculate_utilization([_alloc("A", 9, "I1", "T1")], capacities, config)

    metrics = capacity_metrics(utilizations)
    rate = 9 / available

    assert metrics.max_utilization == pytest.approx(rate)
    assert metrics.min_utilization == 0
    assert metrics.average_utilization == pytest.approx(rate / 2)
    assert metrics.utilization_std_dev == pytest.approx(rate / 2)
    assert metrics.over_allocated_count == 1
    assert metrics.total_allocated == 9

    recommendations = capacity_recommendations(utilizations)
    assert "1 teams are over-allocated - consider redistributing work" in recommendations
    assert "1 teams have low utilization - consider additional work or cross-training" in recommendations


def test_metrics_for_empty_input():
    metrics = capacity_metrics([])

    assert metrics.average_utilization == 0.0
    assert metrics.over_allocated_count == 0
