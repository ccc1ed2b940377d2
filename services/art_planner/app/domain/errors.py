"""Exceptions raised by the planning engine."""
from __future__ import annotations

from typing import Sequence


class PlanningError(Exception):
    """Base error for planning failures that must halt a run."""

    error_code = "PLANNING_ERROR"

    def __init__(self, message: str, affected_items: Sequence[str] = ()) -> None:
        super().__init__(message)
        self.message = message
        self.affected_items = list(affected_items)


class CapacityValidationError(PlanningError):
    """Team or capacity-factor invariants are violated; capacity numbers would be meaningless."""

    error_code = "CAPACITY_VALIDATION_ERROR"

    def __init__(self, issues: Sequence[str], team_ids: Sequence[str] = ()) -> None:
        super().__init__("Capacity validation failed: " + "; ".join(issues), team_ids)
        self.issues = list(issues)


class PlanInputError(PlanningError):
    """The planning request itself is malformed."""

    error_code = "PLAN_INPUT_ERROR"


__all__ = ["CapacityValidationError", "PlanInputError", "PlanningError"]
