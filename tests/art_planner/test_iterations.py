from datetime import date

import pytest

from services.art_planner.app.config import PlanningConfig
from services.art_planner.app.domain.errors import PlanInputError
from services.art_planner.app.domain.iterations import generate_iterations
from services.art_planner.app.domain.types import ProgramIncrement, Team

TEAMS = [
    Team(id="T1", name="Alpha", member_count=5, average_velocity=20),
    Team(id="T2", name="Beta", member_count=6, average_velocity=25),
]


def test_final_iteration_is_truncated_to_increment_end():
    pi = ProgramIncrement(id="PI7", name="PI 7", start_date=date(2024, 3, 1), end_date=date(2024, 3, 30))

    iterations = generate_iterations(pi, TEAMS, PlanningConfig())

    assert [it.duration for it in iterations] == [14, 14, 2]
    assert iterations[0].start_date == date(2024, 3, 1)
    assert iterations[0].end_date == date(2024, 3, 14)
    assert iterations[1].start_date == date(2024, 3, 15)
    assert iterations[-1].end_date == date(2024, 3, 30)
    assert [it.index for it in iterations] == [1, 2, 3]
    assert iterations[0].id == "PI7-I1"
    assert all(it.team_ids == ("T1", "T2") for it in iterations)


def test_planning_horizon_caps_iteration_count():
    pi = ProgramIncrement(id="PI8", name="PI 8", start_date=date(2024, 1, 1), end_date=date(2024, 12, 31))

    iterations = generate_iterations(pi, TEAMS, PlanningConfig(planning_horizon=4))

    assert len(iterations) == 4
    assert iterations[-1].end_date == date(2024, 2, 25)


def test_single_day_increment_yields_one_short_iteration():
    pi = ProgramIncrement(id="PI9", name="PI 9", start_date=date(2024, 5, 6), end_date=date(2024, 5, 6))

    iterations = generate_iterations(pi, TEAMS, PlanningConfig(default_iteration_length=10))

    assert len(iterations) == 1
    assert iterations[0].duration == 1


def test_end_before_start_is_rejected():
    pi = ProgramIncrement(id="PI0", name="PI 0", start_date=date(2024, 5, 6), end_date=date(2024, 5, 1))

    with pytest.raises(PlanInputError) as excinfo:
        generate_iterations(pi, TEAMS, PlanningConfig())

    assert excinfo.value.error_code == "PLAN_INPUT_ERROR"
    assert excinfo.value.affected_items == ["PI0"]
