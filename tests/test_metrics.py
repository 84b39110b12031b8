"""Tests for sprint metrics, review request metrics and bottleneck detection."""

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

# Add src directory to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from sprinthealth.metrics import MetricsEngine
from sprinthealth.models import (
    BottleneckType,
    Issue,
    PRMetrics,
    Reviewer,
    ReviewRequest,
    ReviewState,
    Sprint,
    SprintState,
    StatusTransition,
)

SPRINT_START = datetime(2024, 3, 4, 9, 0, tzinfo=timezone.utc)


def _at(hours: float) -> datetime:
    return SPRINT_START + timedelta(hours=hours)


def _sprint() -> Sprint:
    return Sprint(
        id="42",
        name="Sprint 42",
        state=SprintState.ACTIVE,
        start=SPRINT_START,
        end=SPRINT_START + timedelta(days=14),
    )


def _issue(key: str, status: str, points=None, transitions=None, assignee="alice") -> Issue:
    return Issue(
        id=key,
        key=key,
        summary=f"Summary of {key}",
        assignee=assignee,
        story_points=points,
        status=status,
        transitions=transitions or [],
    )


def _move(from_status: str, to_status: str, hours: float) -> StatusTransition:
    return StatusTransition(from_status=from_status, to_status=to_status, timestamp=_at(hours))


def _engine() -> MetricsEngine:
    return MetricsEngine(clock=lambda: _at(100))


def test_compute_sprint_metrics_three_issue_sprint():
    """Verify throughput, velocity, WIP, completion rate and cycle time for a mixed sprint."""
    issues = [
        _issue("APP-1", "Done", 5, [_move("To Do", "In Progress", 1), _move("In Progress", "Done", 9)]),
        _issue("APP-2", "Done", 3, [_move("To Do", "In Progress", 2), _move("In Progress", "Done", 8)]),
        _issue("APP-3", "In Progress", 8, [_move("To Do", "In Progress", 3)]),
    ]

    metrics = _engine().compute_sprint_metrics(issues, _sprint())

    assert metrics.throughput == 2
    assert metrics.velocity == 8
    assert metrics.wip_count == 1
    assert metrics.completion_rate == pytest.approx(66.67, abs=0.01)
    assert metrics.cycle_time == pytest.approx(7.0)
    assert metrics.carry_over_count == 0


def test_compute_sprint_metrics_with_zero_completed_issues():
    """Verify completion rate, throughput and velocity are zero when nothing is done."""
    issues = [
        _issue("APP-1", "In Progress", 5, [_move("To Do", "In Progress", 1)]),
        _issue("APP-2", "To Do", 3),
    ]

    metrics = _engine().compute_sprint_metrics(issues, _sprint())

    assert metrics.completion_rate == 0
    assert metrics.throughput == 0
    assert metrics.velocity == 0
    assert metrics.cycle_time == 0


def test_compute_sprint_metrics_empty_issue_list():
    """Verify an empty sprint yields all-zero metrics."""
    metrics = _engine().compute_sprint_metrics([], _sprint())

    assert metrics.completion_rate == 0
    assert metrics.wip_count == 0
    assert metrics.lead_time == 0


def test_compute_sprint_metrics_counts_carry_over_by_creation_proxy():
    """Verify issues whose first transition predates the sprint count as carry-over."""
    issues = [
        _issue("APP-1", "In Progress", 3, [_move("To Do", "In Progress", -48)]),
        _issue("APP-2", "To Do", 3),
    ]

    metrics = _engine().compute_sprint_metrics(issues, _sprint())

    assert metrics.carry_over_count == 1


def test_cycle_time_without_active_transition_is_zero():
    """Verify cycle time is 0 when no transition enters an active status."""
    transitions = [_move("To Do", "Done", 5)]

    assert _engine().cycle_time(transitions) == 0


def test_cycle_time_without_completed_transition_is_zero():
    """Verify cycle time is 0 when no transition enters a completed status."""
    transitions = [_move("To Do", "In Progress", 1), _move("In Progress", "In Review", 4)]

    assert _engine().cycle_time(transitions) == 0


def test_cycle_time_handles_out_of_order_transitions():
    """Verify transitions are sorted before measuring from first active to last completed."""
    transitions = [
        _move("In Review", "Done", 10),
        _move("To Do", "In Progress", 2),
        _move("Done", "In Progress", 6),
        _move("In Progress", "In Review", 8),
        _move("In Progress", "Done", 4),
    ]

    assert _engine().cycle_time(transitions) == pytest.approx(8.0)


def test_compute_pr_metrics_two_merged_reviews():
    """Verify latency, first review time and revision averages for merged reviews."""
    reviews = [
        ReviewRequest(
            id="1",
            title="Add login",
            author="alice",
            created_at=_at(0),
            first_review_at=_at(2),
            merged_at=_at(8),
            state=ReviewState.MERGED,
            reviewers=[Reviewer(username="bob")],
            revision_count=3,
        ),
        ReviewRequest(
            id="2",
            title="Fix logout",
            author="carol",
            created_at=_at(10),
            first_review_at=_at(11),
            merged_at=_at(14),
            state=ReviewState.MERGED,
            reviewers=[Reviewer(username="bob"), Reviewer(username="dave")],
            revision_count=1,
        ),
    ]

    metrics = _engine().compute_pr_metrics(reviews)

    assert metrics.average_latency == pytest.approx(6.0)
    assert metrics.average_time_to_first_review == pytest.approx(1.5)
    assert metrics.average_revisions == pytest.approx(2.0)
    assert metrics.average_review_cycles == pytest.approx(1.5)


def test_compute_pr_metrics_empty_is_all_zero():
    """Verify no review requests produce zeroed metrics rather than NaN."""
    assert _engine().compute_pr_metrics([]) == PRMetrics(0.0, 0.0, 0.0, 0.0)


def test_find_bottlenecks_flags_status_with_long_dwell():
    """Verify a status well above the global mean dwell is reported as a bottleneck."""
    issues = [
        _issue(
            f"APP-{index}",
            "Done",
            3,
            [
                _move("Backlog", "To Do", 0),
                _move("To Do", "In Progress", 1),
                _move("In Progress", "Code Review", 2),
                _move("Code Review", "Done", 12),
            ],
        )
        for index in range(1, 4)
    ]

    bottlenecks = _engine().find_bottlenecks(issues)

    assert len(bottlenecks) == 1
    bottleneck = bottlenecks[0]
    assert bottleneck.location == "Code Review"
    assert bottleneck.type == BottleneckType.STATUS
    assert bottleneck.affected_issues == ["APP-1", "APP-2", "APP-3"]
    assert bottleneck.severity == 7
    assert "10.0 hours" in bottleneck.description
    assert "150% above average" in bottleneck.description


def test_find_bottlenecks_requires_two_affected_issues():
    """Verify a slow status touched by a single issue is not a bottleneck."""
    issues = [
        _issue(
            "APP-1",
            "Done",
            3,
            [
                _move("To Do", "In Progress", 0),
                _move("In Progress", "Code Review", 1),
                _move("Code Review", "Done", 30),
            ],
        )
    ]

    assert _engine().find_bottlenecks(issues) == []


def test_find_bottlenecks_without_transitions_is_empty():
    """Verify issues lacking dwell data produce no bottlenecks."""
    assert _engine().find_bottlenecks([_issue("APP-1", "To Do")]) == []


def test_blocked_review_status_counts_as_work_in_progress():
    """Verify a combined status such as "Code Review - Blocked" still counts toward WIP."""
    issues = [_issue("APP-1", "Code Review - Blocked", 3, [_move("To Do", "Code Review - Blocked", 1)])]

    metrics = _engine().compute_sprint_metrics(issues, _sprint())

    assert metrics.wip_count == 1
