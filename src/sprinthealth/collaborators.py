"""Contracts for the external systems the analysis depends on.

Implementations must be idempotent and safe to retry. They enforce their own
bounded retry with backoff and resolve to data or a typed ``ApiError``
subclass; the orchestrator never imposes wall-clock timeouts.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Protocol, Sequence

from .models import Issue, ReviewRequest, Sprint, StatusTransition


@dataclass(slots=True)
class CollaboratorHealth:
    """Availability of the code review system for a single analysis pass.

    A fresh instance is created per pass, so an outage observed in one pass
    never leaks into another.
    """

    review_system_available: bool = True
    reason: Optional[str] = None

    def mark_review_system_unavailable(self, reason: str) -> None:
        self.review_system_available = False
        self.reason = reason


class IssueTracker(Protocol):
    async def fetch_sprint_metadata(self, sprint_id: str) -> Sprint:
        """Raises ``NotFoundError`` when no such sprint exists upstream."""
        ...

    async def fetch_sprint_issues(self, sprint_id: str) -> List[Issue]:
        """Return the complete, deduplicated issue list including transitions."""
        ...

    async def fetch_issue_transitions(self, issue_key: str) -> List[StatusTransition]: ...

    async def fetch_historical_sprints(self, board_id: str, count: int) -> List[Sprint]:
        """Return closed sprints, most recent first."""
        ...


class CodeReviewSystem(Protocol):
    async def fetch_review_requests_for_issues(
        self,
        issue_keys: Sequence[str],
        health: CollaboratorHealth,
    ) -> List[ReviewRequest]:
        """Return review requests linked to ``issue_keys``, deduplicated by id.

        Once ``health`` reports the system unavailable, returns ``[]`` without
        making further requests.
        """
        ...
