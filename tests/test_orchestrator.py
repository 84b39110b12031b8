"""Tests for analysis pass orchestration, caching and failure containment."""

import asyncio
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import AsyncMock, Mock

import pytest

# Add src directory to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from sprinthealth.errors import ApiError, CollaboratorUnavailable, NotFoundError, ValidationError
from sprinthealth.models import (
    HistoricalMetrics,
    Issue,
    PRMetrics,
    Reviewer,
    ReviewRequest,
    ReviewState,
    RiskLevel,
    Sprint,
    SprintMetrics,
    SprintState,
    StatusTransition,
)
from sprinthealth.orchestrator import AnalysisOrchestrator, link_reviews
from sprinthealth.report import DEGRADED_FINDINGS
from sprinthealth.storage import InMemoryCache, StorageService

NOW = datetime(2024, 3, 10, 12, 0, tzinfo=timezone.utc)


def _sprint(sprint_id="42", state=SprintState.ACTIVE) -> Sprint:
    return Sprint(
        id=sprint_id,
        name=f"Sprint {sprint_id}",
        state=state,
        start=NOW - timedelta(days=7),
        end=NOW + timedelta(days=7),
    )


def _issues():
    started = NOW - timedelta(days=5)
    return [
        Issue(
            id="1",
            key="APP-1",
            summary="Login form",
            assignee="alice",
            story_points=5.0,
            status="Done",
            transitions=[
                StatusTransition("To Do", "In Progress", started),
                StatusTransition("In Progress", "Done", started + timedelta(hours=8)),
            ],
        ),
        Issue(
            id="2",
            key="APP-2",
            summary="Logout",
            assignee="bob",
            story_points=3.0,
            status="In Progress",
            transitions=[StatusTransition("To Do", "In Progress", started)],
        ),
    ]


def _review() -> ReviewRequest:
    return ReviewRequest(
        id="PR-1",
        title="Login form",
        author="alice",
        created_at=NOW - timedelta(days=4),
        first_review_at=NOW - timedelta(days=4) + timedelta(hours=2),
        merged_at=NOW - timedelta(days=4) + timedelta(hours=6),
        state=ReviewState.MERGED,
        reviewers=[Reviewer(username="bob")],
        revision_count=1,
        linked_issue_keys=["APP-1"],
    )


def _tracker(sprint=None, issues=None) -> Mock:
    tracker = Mock()
    tracker.fetch_sprint_metadata = AsyncMock(return_value=sprint or _sprint())
    tracker.fetch_sprint_issues = AsyncMock(return_value=_issues() if issues is None else issues)
    tracker.fetch_historical_sprints = AsyncMock(return_value=[])
    return tracker


def _code_review(reviews=None) -> Mock:
    code_review = Mock()
    code_review.fetch_review_requests_for_issues = AsyncMock(return_value=reviews or [_review()])
    return code_review


def _orchestrator(tracker, code_review=None, storage=None) -> AnalysisOrchestrator:
    return AnalysisOrchestrator(
        issue_tracker=tracker,
        code_review=code_review,
        storage=storage or StorageService(InMemoryCache()),
        clock=lambda: NOW,
    )


def test_analyze_builds_report_and_serves_it_from_cache():
    """Verify a second analysis returns the cached report without refetching."""
    tracker = _tracker()
    code_review = _code_review()
    orchestrator = _orchestrator(tracker, code_review)

    first = asyncio.run(orchestrator.analyze("42"))
    second = asyncio.run(orchestrator.analyze("42"))

    assert second is first
    assert first.metrics.sprint.throughput == 1
    assert first.metrics.pull_requests.average_latency == pytest.approx(6.0)
    assert first.generated_at == NOW
    tracker.fetch_sprint_issues.assert_awaited_once_with("42")
    code_review.fetch_review_requests_for_issues.assert_awaited_once()
    issue_keys, health = code_review.fetch_review_requests_for_issues.await_args.args
    assert issue_keys == ["APP-1", "APP-2"]
    assert health.review_system_available is True


def test_force_refresh_bypasses_report_and_data_cache():
    """Verify force_refresh refetches from the collaborators."""
    tracker = _tracker()
    orchestrator = _orchestrator(tracker, _code_review())

    asyncio.run(orchestrator.analyze("42"))
    asyncio.run(orchestrator.analyze("42", force_refresh=True))

    assert tracker.fetch_sprint_issues.await_count == 2


def test_invalidate_forces_recollection_and_updates_status():
    """Verify invalidation clears the report and raw data entries."""
    tracker = _tracker()
    orchestrator = _orchestrator(tracker, _code_review())

    asyncio.run(orchestrator.analyze("42"))
    status = asyncio.run(orchestrator.get_analysis_status("42"))
    assert status.has_cached_report is True
    assert status.has_cached_data is True
    assert status.last_analyzed == NOW

    asyncio.run(orchestrator.invalidate("42"))
    status = asyncio.run(orchestrator.get_analysis_status("42"))
    assert status.has_cached_report is False
    assert status.has_cached_data is False
    assert status.last_analyzed is None

    asyncio.run(orchestrator.analyze("42"))
    assert tracker.fetch_sprint_issues.await_count == 2


def test_issue_tracker_failure_returns_uncached_degraded_report():
    """Verify a failed issue tracker fetch yields a degraded report that is not cached."""
    tracker = _tracker()
    tracker.fetch_sprint_issues = AsyncMock(side_effect=CollaboratorUnavailable("Jira unavailable"))
    orchestrator = _orchestrator(tracker, _code_review())

    report = asyncio.run(orchestrator.analyze("42"))

    assert report.summary == "Analysis failed for sprint 42. Jira unavailable"
    assert report.risk_assessment.level == RiskLevel.HIGH
    assert report.key_findings == list(DEGRADED_FINDINGS)
    assert report.metrics.sprint == SprintMetrics.empty()
    assert asyncio.run(orchestrator.get_analysis_status("42")).has_cached_report is False


def test_review_system_outage_degrades_to_empty_review_metrics():
    """Verify an unavailable review system leaves PR metrics zeroed and skips caching reviews."""

    async def unavailable(issue_keys, health):
        health.mark_review_system_unavailable("Bitbucket down")
        return []

    code_review = Mock()
    code_review.fetch_review_requests_for_issues = AsyncMock(side_effect=unavailable)
    storage = StorageService(InMemoryCache())
    orchestrator = _orchestrator(_tracker(), code_review, storage)

    report = asyncio.run(orchestrator.analyze("42"))

    assert report.metrics.pull_requests == PRMetrics.empty()
    assert report.metrics.sprint.throughput == 1
    assert asyncio.run(storage.get_cached_review_data("42")) is None


def test_review_api_error_is_not_fatal():
    """Verify an ApiError from the review collaborator does not fail the pass."""
    code_review = Mock()
    code_review.fetch_review_requests_for_issues = AsyncMock(side_effect=ApiError("boom"))

    report = asyncio.run(_orchestrator(_tracker(), code_review).analyze("42"))

    assert report.metrics.pull_requests == PRMetrics.empty()
    assert not report.summary.startswith("Analysis failed")


def test_unexpected_review_error_is_not_fatal():
    """Verify any failure in the review collaborator leaves a Jira-only analysis."""
    code_review = Mock()
    code_review.fetch_review_requests_for_issues = AsyncMock(side_effect=TypeError("bad payload"))
    storage = StorageService(InMemoryCache())

    report = asyncio.run(_orchestrator(_tracker(), code_review, storage).analyze("42"))

    assert report.key_findings != list(DEGRADED_FINDINGS)
    assert report.metrics.sprint.throughput == 1
    assert report.metrics.pull_requests == PRMetrics.empty()
    assert asyncio.run(storage.get_cached_review_data("42")) is None


def test_history_failure_omits_next_sprint_suggestions():
    """Verify a failed history lookup neither fails the pass nor the issue fetch."""
    tracker = _tracker()
    tracker.fetch_historical_sprints = AsyncMock(side_effect=ApiError("board missing"))

    report = asyncio.run(_orchestrator(tracker, _code_review()).analyze("42", board_id="12"))

    assert report.next_sprint_suggestions is None
    assert report.metrics.sprint.throughput == 1


def test_history_enables_next_sprint_suggestions():
    """Verify the previous closed sprint's stored snapshot feeds next-sprint planning."""
    storage = StorageService(InMemoryCache())
    asyncio.run(
        storage.store_historical_metrics(
            HistoricalMetrics(
                sprint_id="41",
                sprint_name="Sprint 41",
                completed_at=NOW - timedelta(days=8),
                metrics=SprintMetrics(8.0, 12.0, 3, 9.0, 1, 0, 75.0),
                pr_metrics=PRMetrics(6.0, 2.0, 1.0, 1.0),
            )
        )
    )
    tracker = _tracker()
    tracker.fetch_historical_sprints = AsyncMock(
        return_value=[_sprint("42", SprintState.CLOSED), _sprint("41", SprintState.CLOSED)]
    )

    report = asyncio.run(_orchestrator(tracker, _code_review(), storage).analyze("42", board_id="12"))

    tracker.fetch_historical_sprints.assert_awaited_once_with("12", 5)
    assert report.next_sprint_suggestions is not None
    assert report.next_sprint_suggestions.tasks_to_include == ["APP-2"]


def test_closed_sprint_persists_historical_metrics():
    """Verify analyzing a closed sprint stores its metrics snapshot."""
    storage = StorageService(InMemoryCache())
    tracker = _tracker(sprint=_sprint(state=SprintState.CLOSED))

    report = asyncio.run(_orchestrator(tracker, _code_review(), storage).analyze("42"))
    history = asyncio.run(storage.get_historical_metric("42"))

    assert history is not None
    assert history.metrics == report.metrics.sprint
    assert history.completed_at == _sprint().end


def test_missing_sprint_metadata_uses_fallback_window():
    """Verify a NotFound sprint falls back to a synthetic active sprint."""
    tracker = _tracker()
    tracker.fetch_sprint_metadata = AsyncMock(side_effect=NotFoundError("no sprint"))

    report = asyncio.run(_orchestrator(tracker).analyze("42"))

    assert report.summary.startswith("Sprint 42 is")
    assert report.metrics.pull_requests == PRMetrics.empty()


def test_missing_sprint_id_raises_validation_error():
    """Verify an empty sprint id is rejected before any collaborator is called."""
    tracker = _tracker()

    with pytest.raises(ValidationError):
        asyncio.run(_orchestrator(tracker).analyze(""))

    tracker.fetch_sprint_issues.assert_not_awaited()


def test_cache_failures_are_not_fatal():
    """Verify a broken cache is treated as a miss and the analysis still completes."""
    cache = AsyncMock()
    cache.get.side_effect = ConnectionError("cache down")
    cache.set.side_effect = ConnectionError("cache down")

    report = asyncio.run(_orchestrator(_tracker(), _code_review(), StorageService(cache)).analyze("42"))

    assert report.metrics.sprint.throughput == 1
    assert not report.summary.startswith("Analysis failed")


def test_empty_sprint_produces_zeroed_report():
    """Verify an empty sprint with no reviews still produces a complete report."""
    report = asyncio.run(_orchestrator(_tracker(issues=[]), _code_review()).analyze("42"))

    assert report.metrics.sprint == SprintMetrics.empty()
    assert report.metrics.pull_requests == PRMetrics.empty()
    assert report.recommendations is not None


def test_link_reviews_attaches_review_ids_to_issues():
    """Verify review ids are attached to the issues they mention without mutating inputs."""
    issues = _issues()

    linked = link_reviews(issues, [_review()])

    assert linked[0].linked_review_ids == ["PR-1"]
    assert linked[1].linked_review_ids == []
    assert issues[0].linked_review_ids == []
