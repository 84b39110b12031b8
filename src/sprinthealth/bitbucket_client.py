"""Code review collaborator backed by Jira development info and Bitbucket Cloud."""

from __future__ import annotations

import asyncio
import logging
import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

from .collaborators import CollaboratorHealth
from .config import Config
from .errors import ApiError, CollaboratorUnavailable, ConfigurationError, NotFoundError
from .http_client import JsonHttpClient, parse_datetime
from .models import ReviewRequest, ReviewState, Reviewer

logger = logging.getLogger(__name__)

ISSUE_KEY_PATTERN = re.compile(r"[A-Z]+-\d+")
PULL_REQUEST_URL_PATTERN = re.compile(r"bitbucket\.org/([^/]+)/([^/]+)/pull-requests/(\d+)")


def map_review_state(state: Optional[str]) -> ReviewState:
    normalized = (state or "").upper()
    if normalized == "MERGED":
        return ReviewState.MERGED
    if normalized in ("DECLINED", "SUPERSEDED"):
        return ReviewState.DECLINED
    return ReviewState.OPEN


def extract_issue_keys(text: Optional[str]) -> List[str]:
    """Return distinct issue keys mentioned in ``text``, in order of appearance."""
    keys: List[str] = []
    for match in ISSUE_KEY_PATTERN.findall(text or ""):
        if match not in keys:
            keys.append(match)
    return keys


def _user_name(user: Optional[Dict[str, Any]]) -> Optional[str]:
    if not user:
        return None
    return user.get("username") or user.get("nickname") or user.get("display_name")


class BitbucketCodeReview:
    """Fetch pull requests linked to Jira issues.

    Pull requests are discovered through Jira's development-status API and
    then enriched from the Bitbucket REST API with reviewer activity and
    commit counts. When either service stays unavailable after retries the
    pass-scoped ``CollaboratorHealth`` is marked and later lookups return
    nothing.
    """

    _BATCH_SIZE = 5

    def __init__(
        self,
        config: Config,
        jira_client: Optional[JsonHttpClient] = None,
        bitbucket_client: Optional[JsonHttpClient] = None,
    ) -> None:
        if bitbucket_client is None and not config.has_code_review:
            raise ConfigurationError("Bitbucket URL, username and BITBUCKET_API_TOKEN are required.")

        self._jira = jira_client or JsonHttpClient(
            base_url=config.jira_base_url,
            username=config.jira_email,
            token=config.jira_token,
            service_name="Jira",
            timeout_seconds=config.timeout_seconds,
        )
        self._bitbucket = bitbucket_client or JsonHttpClient(
            base_url=config.bitbucket_base_url or "",
            username=config.bitbucket_username or "",
            token=config.bitbucket_token or "",
            service_name="Bitbucket",
            timeout_seconds=config.timeout_seconds,
        )

    async def fetch_review_requests_for_issues(
        self,
        issue_keys: Sequence[str],
        health: CollaboratorHealth,
    ) -> List[ReviewRequest]:
        reviews: List[ReviewRequest] = []
        seen_ids = set()

        for start in range(0, len(issue_keys), self._BATCH_SIZE):
            if not health.review_system_available:
                break

            batch = issue_keys[start:start + self._BATCH_SIZE]
            results = await asyncio.gather(*(self._fetch_for_issue(key, health) for key in batch))
            for issue_reviews in results:
                for review in issue_reviews:
                    if review.id in seen_ids:
                        continue
                    seen_ids.add(review.id)
                    reviews.append(review)

        logger.info(
            "Fetched review requests",
            extra={"issues": len(issue_keys), "reviews": len(reviews)},
        )
        return reviews

    async def _fetch_for_issue(self, issue_key: str, health: CollaboratorHealth) -> List[ReviewRequest]:
        if not health.review_system_available:
            return []

        try:
            return await asyncio.to_thread(self._collect_for_issue, issue_key)
        except CollaboratorUnavailable as exc:
            logger.warning(
                "Code review system unavailable; continuing without review data",
                extra={"issue_key": issue_key, "error": str(exc)},
            )
            health.mark_review_system_unavailable(str(exc))
            return []
        except ApiError as exc:
            logger.warning(
                "Skipping review lookup for issue",
                extra={"issue_key": issue_key, "error": str(exc)},
            )
            return []

    def _collect_for_issue(self, issue_key: str) -> List[ReviewRequest]:
        try:
            dev_info = self._jira.get_json(
                "rest/dev-status/1.0/issue/detail",
                params={"issueId": issue_key, "applicationType": "bitbucket", "dataType": "pullrequest"},
            )
        except NotFoundError:
            return []

        reviews: List[ReviewRequest] = []
        for detail in dev_info.get("detail") or []:
            for summary in detail.get("pullRequests") or []:
                review = self._fetch_review_detail(summary)
                if issue_key not in review.linked_issue_keys:
                    review.linked_issue_keys.insert(0, issue_key)
                reviews.append(review)
        return reviews

    def _fetch_review_detail(self, summary: Dict[str, Any]) -> ReviewRequest:
        match = PULL_REQUEST_URL_PATTERN.search(str(summary.get("url") or ""))
        if not match:
            logger.debug("Could not parse pull request URL", extra={"url": summary.get("url")})
            return self._review_from_summary(summary)

        workspace, repo, number = match.groups()
        base_path = f"2.0/repositories/{workspace}/{repo}/pullrequests/{number}"

        try:
            detail = self._bitbucket.get_json(base_path)
        except NotFoundError:
            return self._review_from_summary(summary)

        try:
            activity: List[Dict[str, Any]] = self._bitbucket.get_json(f"{base_path}/activity").get("values", [])
        except NotFoundError:
            activity = []

        created_at = parse_datetime(detail.get("created_on")) or datetime.now(timezone.utc)
        updated_on = parse_datetime(detail.get("updated_on"))

        return ReviewRequest(
            id=str(summary.get("id") or detail.get("id")),
            title=str(detail.get("title") or ""),
            author=_user_name(detail.get("author")) or "Unknown",
            created_at=created_at,
            first_review_at=self.first_review_time(activity),
            merged_at=updated_on if detail.get("merge_commit") else None,
            state=map_review_state(detail.get("state")),
            reviewers=self.extract_reviewers(detail, activity),
            revision_count=self._count_revisions(base_path, created_at),
            linked_issue_keys=extract_issue_keys(detail.get("description")),
        )

    @staticmethod
    def _review_from_summary(summary: Dict[str, Any]) -> ReviewRequest:
        """Build a review request from the Jira dev-status summary alone."""
        last_update = parse_datetime(summary.get("lastUpdate")) or datetime.now(timezone.utc)
        state = map_review_state(summary.get("status"))
        return ReviewRequest(
            id=str(summary.get("id")),
            title=str(summary.get("name") or "Unknown"),
            author=(summary.get("author") or {}).get("name") or "Unknown",
            created_at=last_update,
            first_review_at=None,
            merged_at=last_update if state == ReviewState.MERGED else None,
            state=state,
        )

    @staticmethod
    def extract_reviewers(detail: Dict[str, Any], activity: Sequence[Dict[str, Any]]) -> List[Reviewer]:
        """Collect reviewer participants and count their comments in the activity feed."""
        reviewers: Dict[str, Reviewer] = {}
        approved_fallback = parse_datetime(detail.get("updated_on"))

        for participant in detail.get("participants", []):
            if participant.get("role") != "REVIEWER":
                continue
            username = _user_name(participant.get("user")) or "Unknown"
            approved_at = None
            if participant.get("approved"):
                approved_at = parse_datetime(participant.get("participated_on")) or approved_fallback
            reviewers[username] = Reviewer(username=username, approved_at=approved_at)

        for item in activity:
            comment = item.get("comment")
            if not comment:
                continue
            username = _user_name(comment.get("user"))
            if username in reviewers:
                reviewers[username].comment_count += 1

        return list(reviewers.values())

    @staticmethod
    def first_review_time(activity: Sequence[Dict[str, Any]]) -> Optional[datetime]:
        """Return the earliest comment or approval timestamp in the activity feed."""
        first: Optional[datetime] = None
        for item in activity:
            comment = item.get("comment") or {}
            approval = item.get("approval") or {}
            timestamp = parse_datetime(comment.get("created_on") or approval.get("date"))
            if timestamp is not None and (first is None or timestamp < first):
                first = timestamp
        return first

    def _count_revisions(self, base_path: str, created_at: datetime) -> int:
        try:
            commits = self._bitbucket.get_json(f"{base_path}/commits").get("values", [])
        except NotFoundError:
            return 0

        count = 0
        for commit in commits:
            committed_at = parse_datetime(commit.get("date"))
            if committed_at is not None and committed_at > created_at:
                count += 1
        return count
