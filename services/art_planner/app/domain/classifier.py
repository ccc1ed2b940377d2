"""Pluggable heuristics for deciding whether a work item delivers user-visible value."""
from __future__ import annotations

import re
from typing import Protocol

from .types import WorkItem

USER_FACING_KEYWORDS = frozenset({"user", "users", "customer", "customers", "interface", "ui", "ux", "display", "show", "screen", "experience"})

_CATEGORY_KEYWORDS: tuple[tuple[str, frozenset[str]], ...] = (
    ("customer value", frozenset({"customer", "customers", "user", "users", "ui", "interface"})),
    ("business value", frozenset({"revenue", "payment", "payments", "billing", "sales"})),
    ("operational efficiency", frozenset({"performance", "optimization", "efficiency", "automation"})),
    ("technical health", frozenset({"debt", "refactor", "cleanup"})),
)

_TOKEN = re.compile(r"[a-z0-9]+")


class ValueClassifier(Protocol):
    def is_user_valuable(self, item: WorkItem) -> bool: ...

    def confidence(self, item: WorkItem) -> float: ...

    def value_category(self, item: WorkItem) -> str: ...


def _tokens(item: WorkItem) -> set[str]:
    return set(_TOKEN.findall(item.text.lower()))


class KeywordValueClassifier:
    """Acceptance criteria or user-facing vocabulary mark an item as valuable.

    Output is a confidence signal, not ground truth.
    """

    def __init__(self, keywords: frozenset[str] = USER_FACING_KEYWORDS) -> None:
        self._keywords = keywords

    def _mentions_user(self, item: WorkItem) -> bool:
        return bool(_tokens(item) & self._keywords)

    def is_user_valuable(self, item: WorkItem) -> bool:
        return bool(item.acceptance_criteria) or self._mentions_user(item)

    def confidence(self, item: WorkItem) -> float:
        signals = int(bool(item.acceptance_criteria)) + int(self._mentions_user(item))
        return {0: 0.3, 1: 0.7, 2: 0.9}[signals]

    def value_category(self, item: WorkItem) -> str:
        tokens = _tokens(item)
        for category, keywords in _CATEGORY_KEYWORDS:
            if tokens & keywords:
                return category
        return "feature delivery"


__all__ = ["KeywordValueClassifier", "USER_FACING_KEYWORDS", "ValueClassifier"]
