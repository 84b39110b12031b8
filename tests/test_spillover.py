"""Tests for heuristic spillover prediction."""

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

# Add src directory to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from sprinthealth.models import Issue, Sprint, SprintMetrics, SprintState, StatusTransition
from sprinthealth.spillover import (
    DEFAULT_HOURS_PER_POINT,
    SPRINT_ENDED_REASON,
    SpilloverPredictor,
)

NOW = datetime(2024, 3, 10, 12, 0, tzinfo=timezone.utc)


def _sprint(end: datetime) -> Sprint:
    return Sprint(
        id="7",
        name="Sprint 7",
        state=SprintState.ACTIVE,
        start=end - timedelta(days=14),
        end=end,
    )


def _issue(key, status, points=3.0, assignee="alice", transitions=None, reviews=None) -> Issue:
    return Issue(
        id=key,
        key=key,
        summary="",
        assignee=assignee,
        story_points=points,
        status=status,
        transitions=transitions or [],
        linked_review_ids=reviews or [],
    )


def test_ended_sprint_marks_every_incomplete_issue_certain():
    """Verify each incomplete issue gets probability 1.0 once the sprint has ended."""
    issues = [
        _issue("APP-1", "In Progress"),
        _issue("APP-2", "To Do"),
        _issue("APP-3", "Done"),
    ]

    predictions = SpilloverPredictor().predict(issues, _sprint(NOW - timedelta(hours=1)), NOW)

    assert [prediction.issue_key for prediction in predictions] == ["APP-1", "APP-2"]
    assert all(prediction.probability == 1.0 for prediction in predictions)
    assert all(prediction.reasons == [SPRINT_ENDED_REASON] for prediction in predictions)


def test_completed_issues_never_predicted_for_active_sprint():
    """Verify completed and closed issues are excluded regardless of the time budget."""
    issues = [_issue("APP-1", "Done"), _issue("APP-2", "Closed")]

    assert SpilloverPredictor().predict(issues, _sprint(NOW + timedelta(days=3)), NOW) == []


def test_predictions_are_ordered_by_probability_with_reasons():
    """Verify at-risk issues are reported highest probability first with explanations."""
    started = [StatusTransition("To Do", "In Progress", NOW - timedelta(hours=2))]
    issues = [
        _issue("APP-1", "To Do", points=3.0),
        _issue("APP-2", "In Progress", points=8.0, assignee=None, transitions=started),
        _issue("APP-3", "In Progress", points=1.0, transitions=started, reviews=["PR-1"]),
    ]

    predictions = SpilloverPredictor().predict(issues, _sprint(NOW + timedelta(days=10)), NOW)

    assert [prediction.issue_key for prediction in predictions] == ["APP-2", "APP-1"]
    assert predictions[0].probability == pytest.approx(0.55)
    assert predictions[1].probability == pytest.approx(0.4)
    assert "Issue is unassigned" in predictions[0].reasons
    assert "High complexity (8 story points)" in predictions[0].reasons
    assert "Issue not yet started (status: To Do)" in predictions[1].reasons
    assert predictions[1].reasons[0] == "Estimated 24h needed vs 80h remaining"


def test_hours_per_point_uses_observed_metrics_or_default():
    """Verify hours per point derives from cycle time and velocity, with a default fallback."""
    metrics = SprintMetrics(
        cycle_time=12.0,
        lead_time=20.0,
        throughput=2,
        velocity=8.0,
        wip_count=1,
        carry_over_count=0,
        completion_rate=50.0,
    )

    assert SpilloverPredictor.hours_per_point(metrics) == pytest.approx(3.0)
    assert SpilloverPredictor.hours_per_point(None) == DEFAULT_HOURS_PER_POINT
    assert SpilloverPredictor.hours_per_point(SprintMetrics.empty()) == DEFAULT_HOURS_PER_POINT


def test_tight_timeline_adds_small_boost():
    """Verify work that fits in the remaining time but not in half of it gains 0.1."""
    predictions = SpilloverPredictor().predict(
        [_issue("APP-1", "Blocked")], _sprint(NOW + timedelta(days=4)), NOW
    )

    assert predictions[0].probability == pytest.approx(0.4)
    assert predictions[0].reasons == ["Tight timeline: 24h needed vs 32h remaining"]


def test_insufficient_time_lowers_completion_probability():
    """Verify work that exceeds the remaining time loses 0.3."""
    predictions = SpilloverPredictor().predict(
        [_issue("APP-1", "Blocked")], _sprint(NOW + timedelta(days=2)), NOW
    )

    assert predictions[0].probability == pytest.approx(0.8)
    assert predictions[0].reasons == ["Insufficient time: 24h needed vs 16h remaining"]


def test_long_running_in_progress_issue_gains_larger_boost():
    """Verify an issue in progress longer than 0.7x the average cycle time gains 0.2."""
    started = [StatusTransition("To Do", "In Progress", NOW - timedelta(hours=30))]
    issues = [_issue("APP-1", "In Progress", assignee=None, transitions=started)]

    predictions = SpilloverPredictor().predict(issues, _sprint(NOW + timedelta(days=4)), NOW)

    assert predictions[0].probability == pytest.approx(0.35)
    assert "Issue in progress for 30h (125% of avg cycle time)" in predictions[0].reasons


def test_high_status_dwell_time_lowers_completion_probability():
    """Verify an average dwell above twice the hours per point costs 0.15."""
    transitions = [
        StatusTransition("To Do", "In Progress", NOW - timedelta(hours=100)),
        StatusTransition("In Progress", "Blocked", NOW - timedelta(hours=60)),
    ]
    issues = [_issue("APP-1", "Blocked", transitions=transitions)]

    predictions = SpilloverPredictor().predict(issues, _sprint(NOW + timedelta(days=10)), NOW)

    assert predictions[0].probability == pytest.approx(0.35)
    assert predictions[0].reasons == [
        "Estimated 24h needed vs 80h remaining",
        "High status dwell time (40h average per status)",
    ]


def test_hours_per_point_ignores_zero_cycle_time():
    """Verify points completed with no measured cycle time still use the default rate."""
    metrics = SprintMetrics(
        cycle_time=0.0,
        lead_time=0.0,
        throughput=2,
        velocity=8.0,
        wip_count=0,
        carry_over_count=0,
        completion_rate=100.0,
    )

    assert SpilloverPredictor.hours_per_point(metrics) == DEFAULT_HOURS_PER_POINT
