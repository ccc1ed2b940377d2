"""Iteration cadence generation for a program increment."""
from __future__ import annotations

from datetime import timedelta
from typing import Sequence

import structlog

from ..config import PlanningConfig
from .errors import PlanInputError
from .types import Iteration, ProgramIncrement, Team

logger = structlog.get_logger(__name__)


def generate_iterations(
    program_increment: ProgramIncrement,
    teams: Sequence[Team],
    config: PlanningConfig,
) -> list[Iteration]:
    """Split the increment into consecutive, inclusive day ranges.

    The last iteration is truncated at the increment end and no more than
    ``planning_horizon`` iterations are produced.
    """
    if program_increment.end_date < program_increment.start_date:
        raise PlanInputError(
            f"Program increment {program_increment.id} ends before it starts",
            [program_increment.id],
        )

    length = config.default_iteration_length
    team_ids = tuple(team.id for team in teams)
    iterations: list[Iteration] = []
    start = program_increment.start_date
    while start <= program_increment.end_date and len(iterations) < config.planning_horizon:
        end = min(start + timedelta(days=length - 1), program_increment.end_date)
        index = len(iterations) + 1
        iterations.append(
            Iteration(
                id=f"{program_increment.id}-I{index}",
                name=f"{program_increment.name} Iteration {index}",
                index=index,
                start_date=start,
                end_date=end,
                duration=(end - start).days + 1,
                team_ids=team_ids,
            )
        )
        start = end + timedelta(days=1)

    if start <= program_increment.end_date:
        logger.warning(
            "iterations.horizon_truncated",
            program_increment=program_increment.id,
            planning_horizon=config.planning_horizon,
            uncovered_from=start.isoformat(),
        )
    logger.info("iterations.generated", program_increment=program_increment.id, count=len(iterations))
    return iterations


__all__ = ["generate_iterations"]
