"""Keyword-based classification of free-text workflow status names."""

from __future__ import annotations

from typing import Iterable

from .config import StatusKeywords


class StatusClassifier:
    """Classify status names by case-insensitive substring match.

    Matching is containment, not equality, so ``"Code Review - Blocked"`` is
    both active and blocked.
    """

    def __init__(self, keywords: StatusKeywords | None = None) -> None:
        self.keywords = keywords or StatusKeywords()

    @staticmethod
    def _matches(status: str, keywords: Iterable[str]) -> bool:
        normalized = (status or "").lower()
        return any(keyword in normalized for keyword in keywords)

    def is_completed(self, status: str) -> bool:
        return self._matches(status, self.keywords.completed)

    def is_active(self, status: str) -> bool:
        return self._matches(status, self.keywords.active)

    def is_not_started(self, status: str) -> bool:
        return self._matches(status, self.keywords.not_started)

    def is_blocked(self, status: str) -> bool:
        return self._matches(status, self.keywords.blocked)
