"""Analysis pass coordination.

This module provides utilities for:
- Serving cached reports and cached raw data when fresh.
- Collecting issue tracker, history and code review data concurrently.
- Running the metrics, risk, spillover, recommendation and report stages.
- Containing failures so callers always receive a ``SprintReport``.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from .classifier import StatusClassifier
from .collaborators import CodeReviewSystem, CollaboratorHealth, IssueTracker
from .errors import ApiError, NotFoundError, StorageFailure, ValidationError
from .metrics import MetricsEngine
from .models import (
    HistoricalMetrics,
    Issue,
    PRMetrics,
    ReviewRequest,
    Sprint,
    SprintMetrics,
    SprintReport,
    SprintState,
)
from .recommendations import RecommendationEngine
from .report import ReportAssembler, build_degraded_report
from .risk import RiskAssessor
from .spillover import SpilloverPredictor
from .storage import InMemoryCache, StorageService

logger = logging.getLogger(__name__)

HISTORY_LOOKBACK_SPRINTS = 5
FALLBACK_SPRINT_DAYS = 14


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True, slots=True)
class AnalysisStatus:
    """What the cache currently holds for a sprint."""

    sprint_id: str
    has_cached_report: bool
    has_cached_data: bool
    last_analyzed: Optional[datetime] = None


@dataclass(slots=True)
class _CollectedData:
    sprint_id: str
    sprint: Sprint
    issues: List[Issue]
    reviews: List[ReviewRequest]
    history: Optional[HistoricalMetrics]


def link_reviews(issues: Sequence[Issue], reviews: Sequence[ReviewRequest]) -> List[Issue]:
    """Return copies of ``issues`` with the ids of review requests that mention them."""
    linked: Dict[str, List[str]] = {}
    for review in reviews:
        for key in review.linked_issue_keys:
            linked.setdefault(key, []).append(review.id)

    result = []
    for issue in issues:
        review_ids = list(issue.linked_review_ids)
        for review_id in linked.get(issue.key, []):
            if review_id not in review_ids:
                review_ids.append(review_id)
        result.append(dataclasses.replace(issue, linked_review_ids=review_ids))
    return result


class AnalysisOrchestrator:
    """Run one sprint analysis pass end to end.

    Passes share no mutable state. Two concurrent passes for the same sprint
    both fetch and both write the cache; the last write wins.
    """

    def __init__(
        self,
        issue_tracker: IssueTracker,
        code_review: Optional[CodeReviewSystem] = None,
        storage: Optional[StorageService] = None,
        classifier: Optional[StatusClassifier] = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._issue_tracker = issue_tracker
        self._code_review = code_review
        self._storage = storage or StorageService(InMemoryCache())
        self._clock = clock

        classifier = classifier or StatusClassifier()
        self._metrics = MetricsEngine(classifier, clock=clock)
        self._risk = RiskAssessor(classifier)
        self._spillover = SpilloverPredictor(classifier)
        self._recommendations = RecommendationEngine(classifier, clock=clock)
        self._assembler = ReportAssembler(clock=clock)

    async def analyze(
        self,
        sprint_id: str,
        board_id: Optional[str] = None,
        force_refresh: bool = False,
    ) -> SprintReport:
        """Analyze a sprint and return its report.

        ``force_refresh`` bypasses both the report cache and the raw-data
        cache. Any failure after input validation yields a degraded report
        instead of an exception; degraded reports are never cached.

        Raises:
            ValidationError: If ``sprint_id`` is empty.
        """
        if not sprint_id:
            raise ValidationError("A sprint id is required for analysis.")

        logger.info(
            "Starting sprint analysis",
            extra={"sprint_id": sprint_id, "board_id": board_id, "force_refresh": force_refresh},
        )

        try:
            if not force_refresh:
                cached_report = await self._read_cache(self._storage.get_report(sprint_id), "report")
                if cached_report is not None:
                    logger.info("Returning cached report", extra={"sprint_id": sprint_id})
                    return cached_report

            data = await self._collect_data(sprint_id, board_id, force_refresh)
            report = await self._run_pipeline(data)
        except Exception as exc:
            logger.exception("Sprint analysis failed", extra={"sprint_id": sprint_id})
            return build_degraded_report(sprint_id, str(exc) or type(exc).__name__, self._clock())

        logger.info("Sprint analysis complete", extra={"sprint_id": sprint_id})
        return report

    async def invalidate(self, sprint_id: str) -> None:
        """Drop cached raw data and the cached report for ``sprint_id``."""
        try:
            await self._storage.invalidate_sprint(sprint_id)
        except StorageFailure as exc:
            logger.warning("Cache invalidation failed", extra={"sprint_id": sprint_id, "error": str(exc)})

    async def get_analysis_status(self, sprint_id: str) -> AnalysisStatus:
        report = await self._read_cache(self._storage.get_report(sprint_id), "report")
        data = await self._read_cache(self._storage.get_cached_sprint_data(sprint_id), "sprint data")
        return AnalysisStatus(
            sprint_id=sprint_id,
            has_cached_report=report is not None,
            has_cached_data=data is not None,
            last_analyzed=report.generated_at if report is not None else None,
        )

    async def _run_pipeline(self, data: _CollectedData) -> SprintReport:
        sprint, issues, reviews, history = data.sprint, data.issues, data.reviews, data.history

        sprint_metrics = self._metrics.compute_sprint_metrics(issues, sprint)
        pr_metrics = self._metrics.compute_pr_metrics(reviews)
        bottlenecks = self._metrics.find_bottlenecks(issues)

        risk = self._risk.assess(sprint_metrics, pr_metrics, history, issues, reviews)

        if sprint.state == SprintState.ACTIVE:
            predictions = self._spillover.predict(issues, sprint, self._clock(), sprint_metrics)
            if predictions:
                logger.info(
                    "Issues at risk of spillover",
                    extra={"sprint_id": sprint.id, "issue_keys": [p.issue_key for p in predictions]},
                )

        recommendations = self._recommendations.generate(
            risk, sprint_metrics, pr_metrics, issues, reviews, bottlenecks
        )

        next_sprint = None
        if history is not None:
            next_sprint = self._recommendations.generate_next_sprint_suggestions(
                sprint_metrics, history, risk, issues, reviews
            )

        report = self._assembler.assemble(
            sprint,
            sprint_metrics,
            pr_metrics,
            risk,
            recommendations,
            issues,
            reviews,
            bottlenecks,
            next_sprint,
        )

        await self._write_cache(self._storage.store_report(data.sprint_id, report), "report", data.sprint_id)

        if sprint.state == SprintState.CLOSED:
            await self._store_history(sprint, sprint_metrics, pr_metrics)

        return report

    async def _collect_data(
        self,
        sprint_id: str,
        board_id: Optional[str],
        force_refresh: bool,
    ) -> _CollectedData:
        if not force_refresh:
            cached_data = await self._read_cache(self._storage.get_cached_sprint_data(sprint_id), "sprint data")
            cached_reviews = await self._read_cache(self._storage.get_cached_review_data(sprint_id), "review data")
            if cached_data is not None and cached_reviews is not None:
                logger.info("Using cached sprint data", extra={"sprint_id": sprint_id})
                sprint, issues = cached_data
                history = await self._history_or_none(board_id, sprint_id)
                return _CollectedData(sprint_id, sprint, issues, cached_reviews, history)

        tracker_result, history_result = await asyncio.gather(
            self._fetch_issue_tracker_data(sprint_id),
            self._fetch_history(board_id, sprint_id),
            return_exceptions=True,
        )

        if isinstance(tracker_result, BaseException):
            raise tracker_result

        history: Optional[HistoricalMetrics] = None
        if isinstance(history_result, BaseException):
            logger.warning(
                "Historical metrics unavailable",
                extra={"sprint_id": sprint_id, "board_id": board_id, "error": str(history_result)},
            )
        else:
            history = history_result

        sprint, issues = tracker_result
        health = CollaboratorHealth()
        reviews = await self._fetch_reviews(issues, health)
        issues = link_reviews(issues, reviews)

        await self._write_cache(self._storage.cache_sprint_data(sprint_id, sprint, issues), "sprint data", sprint_id)
        if health.review_system_available:
            await self._write_cache(self._storage.cache_review_data(sprint_id, reviews), "review data", sprint_id)

        return _CollectedData(sprint_id, sprint, issues, reviews, history)

    async def _fetch_issue_tracker_data(self, sprint_id: str) -> Tuple[Sprint, List[Issue]]:
        sprint, issues = await asyncio.gather(
            self._fetch_sprint_or_fallback(sprint_id),
            self._issue_tracker.fetch_sprint_issues(sprint_id),
        )
        logger.info("Fetched issue tracker data", extra={"sprint_id": sprint_id, "issues": len(issues)})
        return sprint, issues

    async def _fetch_sprint_or_fallback(self, sprint_id: str) -> Sprint:
        try:
            return await self._issue_tracker.fetch_sprint_metadata(sprint_id)
        except NotFoundError:
            logger.warning("Sprint metadata not found; using a default window", extra={"sprint_id": sprint_id})
            now = self._clock()
            return Sprint(
                id=sprint_id,
                name=f"Sprint {sprint_id}",
                state=SprintState.ACTIVE,
                start=now,
                end=now + timedelta(days=FALLBACK_SPRINT_DAYS),
            )

    async def _fetch_history(self, board_id: Optional[str], sprint_id: str) -> Optional[HistoricalMetrics]:
        """Return the stored snapshot of the most recent closed sprint before this one."""
        if not board_id:
            return None

        sprints = await self._issue_tracker.fetch_historical_sprints(board_id, HISTORY_LOOKBACK_SPRINTS)
        past = [sprint for sprint in sprints if sprint.id != sprint_id]
        if not past:
            return None
        return await self._storage.get_historical_metric(past[0].id)

    async def _history_or_none(self, board_id: Optional[str], sprint_id: str) -> Optional[HistoricalMetrics]:
        try:
            return await self._fetch_history(board_id, sprint_id)
        except (ApiError, StorageFailure) as exc:
            logger.warning(
                "Historical metrics unavailable",
                extra={"sprint_id": sprint_id, "board_id": board_id, "error": str(exc)},
            )
            return None

    async def _fetch_reviews(self, issues: Sequence[Issue], health: CollaboratorHealth) -> List[ReviewRequest]:
        if self._code_review is None or not issues:
            return []

        try:
            reviews = await self._code_review.fetch_review_requests_for_issues(
                [issue.key for issue in issues], health
            )
        except Exception as exc:
            logger.warning("Review data unavailable; continuing without it", extra={"error": str(exc)})
            health.mark_review_system_unavailable(str(exc))
            return []

        if not health.review_system_available:
            logger.warning("Review system unavailable during pass", extra={"reason": health.reason})
        return reviews

    async def _store_history(self, sprint: Sprint, sprint_metrics: SprintMetrics, pr_metrics: PRMetrics) -> None:
        history = HistoricalMetrics(
            sprint_id=sprint.id,
            sprint_name=sprint.name,
            completed_at=sprint.end,
            metrics=sprint_metrics,
            pr_metrics=pr_metrics,
        )
        await self._write_cache(self._storage.store_historical_metrics(history), "historical metrics", sprint.id)

    @staticmethod
    async def _read_cache(read, what: str):
        try:
            return await read
        except StorageFailure as exc:
            logger.warning("Cache read failed; treating as miss", extra={"entry": what, "error": str(exc)})
            return None

    @staticmethod
    async def _write_cache(write, what: str, sprint_id: str) -> None:
        try:
            await write
        except StorageFailure as exc:
            logger.warning(
                "Cache write failed; continuing",
                extra={"entry": what, "sprint_id": sprint_id, "error": str(exc)},
            )
