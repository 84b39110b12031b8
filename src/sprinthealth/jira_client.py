"""Issue tracker collaborator backed by the Jira Cloud REST APIs."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from .config import Config
from .errors import ApiError
from .http_client import JsonHttpClient, parse_datetime
from .models import Issue, Sprint, SprintState, StatusTransition

logger = logging.getLogger(__name__)

_SPRINT_STATES = {
    "active": SprintState.ACTIVE,
    "closed": SprintState.CLOSED,
    "future": SprintState.PLANNED,
}


def map_sprint_state(state: Optional[str]) -> SprintState:
    """Map a Jira sprint state to ``SprintState``; unknown states count as planned."""
    return _SPRINT_STATES.get((state or "").lower(), SprintState.PLANNED)


class JiraIssueTracker:
    """Fetch sprints, issues and status history from Jira.

    Blocking HTTP calls run in worker threads so concurrent fetches issued by
    the orchestrator overlap.
    """

    _PAGE_SIZE = 50
    _STORY_POINTS_FIELD = "customfield_10016"

    def __init__(
        self,
        config: Config,
        story_points_field: str = _STORY_POINTS_FIELD,
        client: Optional[JsonHttpClient] = None,
    ) -> None:
        self._story_points_field = story_points_field
        self._client = client or JsonHttpClient(
            base_url=config.jira_base_url,
            username=config.jira_email,
            token=config.jira_token,
            service_name="Jira",
            timeout_seconds=config.timeout_seconds,
        )

    async def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return await asyncio.to_thread(self._client.get_json, path, params)

    def _parse_sprint(self, item: Dict[str, Any]) -> Sprint:
        sprint_id = item.get("id")
        start = parse_datetime(item.get("startDate"))
        end = parse_datetime(item.get("endDate"))
        if sprint_id is None or start is None or end is None:
            raise ApiError(f"Jira sprint payload is missing required fields: payload={item}")

        return Sprint(
            id=str(sprint_id),
            name=str(item.get("name") or f"Sprint {sprint_id}"),
            state=map_sprint_state(item.get("state")),
            start=start,
            end=end,
            goal=item.get("goal") or None,
        )

    def _parse_story_points(self, fields: Dict[str, Any]) -> Optional[float]:
        value = fields.get(self._story_points_field)
        if value is None:
            return None
        try:
            return float(value)
        except (TypeError, ValueError):
            logger.debug("Ignoring non-numeric story points", extra={"value": value})
            return None

    async def fetch_sprint_metadata(self, sprint_id: str) -> Sprint:
        """Fetch sprint dates, state and goal.

        Raises:
            NotFoundError: If Jira has no sprint with this id.
        """
        payload = await self._get(f"rest/agile/1.0/sprint/{sprint_id}")
        return self._parse_sprint(payload)

    async def fetch_sprint_issues(self, sprint_id: str) -> List[Issue]:
        """Fetch every issue of a sprint, following pagination and deduplicating by key."""
        issues: List[Issue] = []
        seen_keys = set()
        start_at = 0

        while True:
            payload = await self._get(
                f"rest/agile/1.0/sprint/{sprint_id}/issue",
                params={
                    "startAt": start_at,
                    "maxResults": self._PAGE_SIZE,
                    "fields": f"summary,assignee,status,{self._story_points_field}",
                },
            )

            page_items = payload.get("issues", [])
            page_issues: List[Issue] = []
            for item in page_items:
                key = item.get("key")
                if not key or key in seen_keys:
                    continue
                seen_keys.add(key)

                fields = item.get("fields") or {}
                assignee = fields.get("assignee") or {}
                status = fields.get("status") or {}
                page_issues.append(
                    Issue(
                        id=str(item.get("id", key)),
                        key=str(key),
                        summary=str(fields.get("summary") or ""),
                        assignee=assignee.get("displayName") or None,
                        story_points=self._parse_story_points(fields),
                        status=str(status.get("name") or ""),
                    )
                )

            page_transitions = await asyncio.gather(
                *(self.fetch_issue_transitions(issue.key) for issue in page_issues)
            )
            for issue, transitions in zip(page_issues, page_transitions):
                issue.transitions = transitions
            issues.extend(page_issues)

            start_at += len(page_items)
            total = int(payload.get("total", 0))
            if not page_items or start_at >= total:
                break

        logger.info("Fetched sprint issues", extra={"sprint_id": sprint_id, "issues": len(issues)})
        return issues

    async def fetch_issue_transitions(self, issue_key: str) -> List[StatusTransition]:
        """Fetch status changes from the issue changelog, ordered by timestamp."""
        transitions: List[StatusTransition] = []
        start_at = 0

        while True:
            payload = await self._get(
                f"rest/api/3/issue/{issue_key}/changelog",
                params={"startAt": start_at, "maxResults": 100},
            )

            histories = payload.get("values", [])
            for history in histories:
                created: Optional[datetime] = parse_datetime(history.get("created"))
                if created is None:
                    continue
                for item in history.get("items", []):
                    if item.get("field") != "status":
                        continue
                    transitions.append(
                        StatusTransition(
                            from_status=str(item.get("fromString") or ""),
                            to_status=str(item.get("toString") or ""),
                            timestamp=created,
                        )
                    )

            start_at += len(histories)
            if not histories or payload.get("isLast", True):
                break

        return sorted(transitions, key=lambda transition: transition.timestamp)

    async def fetch_historical_sprints(self, board_id: str, count: int) -> List[Sprint]:
        """Fetch up to ``count`` closed sprints of a board, most recent first."""
        sprints: List[Sprint] = []
        start_at = 0

        while True:
            payload = await self._get(
                f"rest/agile/1.0/board/{board_id}/sprint",
                params={"state": "closed", "startAt": start_at, "maxResults": self._PAGE_SIZE},
            )

            values = payload.get("values", [])
            for item in values:
                try:
                    sprints.append(self._parse_sprint(item))
                except ApiError:
                    logger.debug("Skipping closed sprint without dates", extra={"sprint": item.get("id")})

            start_at += len(values)
            if not values or payload.get("isLast", True):
                break

        sprints.sort(key=lambda sprint: sprint.end, reverse=True)
        return sprints[:count]
