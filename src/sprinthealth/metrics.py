"""Sprint and review request metric computation.

This module turns raw issue and review request records into:
- Sprint flow metrics (cycle time, lead time, throughput, velocity, WIP,
  carry-over, completion rate).
- Review request metrics (latency, time to first review, review cycles,
  revisions).
- Workflow bottlenecks derived from per-status dwell times.

All durations are expressed in hours.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Sequence

from .classifier import StatusClassifier
from .models import (
    BottleneckInfo,
    BottleneckType,
    Issue,
    PRMetrics,
    ReviewRequest,
    ReviewState,
    Sprint,
    SprintMetrics,
    StatusTransition,
)
from .stats import hours_between, percentage, safe_mean

logger = logging.getLogger(__name__)

MIN_BOTTLENECK_HOURS = 1.0
BOTTLENECK_RATIO = 1.5
MIN_BOTTLENECK_ISSUES = 2


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ordered_transitions(transitions: Sequence[StatusTransition]) -> List[StatusTransition]:
    """Return transitions sorted by timestamp; sources do not guarantee order."""
    return sorted(transitions, key=lambda transition: transition.timestamp)


@dataclass
class _DwellBucket:
    total_hours: float = 0.0
    count: int = 0
    issue_keys: List[str] = field(default_factory=list)


class MetricsEngine:
    """Compute sprint metrics, review request metrics and bottlenecks."""

    def __init__(
        self,
        classifier: Optional[StatusClassifier] = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._classifier = classifier or StatusClassifier()
        self._clock = clock

    def compute_sprint_metrics(self, issues: Sequence[Issue], sprint: Sprint) -> SprintMetrics:
        """Compute aggregate flow metrics for the issues of ``sprint``.

        Cycle and lead time are averaged over completed issues with a strictly
        positive value; issues without usable transition data are left out of
        the average instead of counting as zero.
        """
        completed = [issue for issue in issues if self._classifier.is_completed(issue.status)]
        active = [issue for issue in issues if self._classifier.is_active(issue.status)]
        carry_over = [issue for issue in issues if self.creation_time(issue) < sprint.start]

        cycle_times = [self.cycle_time(issue.transitions) for issue in completed]
        lead_times = [self.lead_time(issue) for issue in completed]

        metrics = SprintMetrics(
            cycle_time=safe_mean(value for value in cycle_times if value > 0),
            lead_time=safe_mean(value for value in lead_times if value > 0),
            throughput=len(completed),
            velocity=float(sum(issue.story_points or 0 for issue in completed)),
            wip_count=len(active),
            carry_over_count=len(carry_over),
            completion_rate=percentage(len(completed), len(issues)),
        )

        logger.info(
            "Computed sprint metrics",
            extra={
                "sprint_id": sprint.id,
                "issues_total": len(issues),
                "throughput": metrics.throughput,
                "wip_count": metrics.wip_count,
            },
        )
        return metrics

    def compute_pr_metrics(self, reviews: Sequence[ReviewRequest]) -> PRMetrics:
        """Compute review request averages; every field is ``0`` on empty input."""
        if not reviews:
            return PRMetrics.empty()

        latencies = [
            hours_between(review.created_at, review.merged_at)
            for review in reviews
            if review.state == ReviewState.MERGED and review.merged_at is not None
        ]
        first_review_times = [
            hours_between(review.created_at, review.first_review_at)
            for review in reviews
            if review.first_review_at is not None
        ]

        return PRMetrics(
            average_latency=safe_mean(latencies),
            average_time_to_first_review=safe_mean(first_review_times),
            average_review_cycles=safe_mean(len(review.reviewers) for review in reviews),
            average_revisions=safe_mean(review.revision_count for review in reviews),
        )

    def cycle_time(self, transitions: Sequence[StatusTransition]) -> float:
        """Hours from the first move into an active status to the last move into a completed one.

        Bounces between active and completed states in between are ignored.
        Returns ``0`` when either endpoint is missing.
        """
        ordered = ordered_transitions(transitions)
        start = next(
            (t for t in ordered if self._classifier.is_active(t.to_status)),
            None,
        )
        end = next(
            (t for t in reversed(ordered) if self._classifier.is_completed(t.to_status)),
            None,
        )
        if start is None or end is None:
            return 0.0
        return max(0.0, hours_between(start.timestamp, end.timestamp))

    def lead_time(self, issue: Issue) -> float:
        """Hours from the issue's creation proxy to its last completion transition."""
        ordered = ordered_transitions(issue.transitions)
        completion = next(
            (t for t in reversed(ordered) if self._classifier.is_completed(t.to_status)),
            None,
        )
        if completion is None:
            return 0.0
        return max(0.0, hours_between(self.creation_time(issue), completion.timestamp))

    def creation_time(self, issue: Issue) -> datetime:
        """Earliest transition timestamp, or the current time for issues with no history."""
        if not issue.transitions:
            return self._clock()
        return min(transition.timestamp for transition in issue.transitions)

    def find_bottlenecks(self, issues: Sequence[Issue]) -> List[BottleneckInfo]:
        """Flag statuses whose average dwell time is well above the sprint-wide mean.

        A status is a bottleneck when its average dwell exceeds one hour and
        1.5x the global mean, and it affected at least two distinct issues.
        Completed statuses are never flagged. Results are ordered by severity,
        highest first.
        """
        buckets = self._status_dwell_times(issues)
        total_hours = sum(bucket.total_hours for bucket in buckets.values())
        total_count = sum(bucket.count for bucket in buckets.values())
        global_mean = total_hours / total_count if total_count else 0.0

        if global_mean <= 0:
            return []

        bottlenecks: List[BottleneckInfo] = []
        for status, bucket in buckets.items():
            if self._classifier.is_completed(status):
                continue

            average = bucket.total_hours / bucket.count
            if (
                average > MIN_BOTTLENECK_HOURS
                and average > global_mean * BOTTLENECK_RATIO
                and len(bucket.issue_keys) >= MIN_BOTTLENECK_ISSUES
            ):
                ratio = average / global_mean
                bottlenecks.append(
                    BottleneckInfo(
                        location=status,
                        type=BottleneckType.STATUS,
                        affected_issues=list(bucket.issue_keys),
                        severity=min(10, math.floor(ratio * 3)),
                        description=(
                            f'Issues spend an average of {average:.1f} hours in "{status}" '
                            f"status, which is {(ratio - 1) * 100:.0f}% above average."
                        ),
                    )
                )

        bottlenecks.sort(key=lambda bottleneck: bottleneck.severity, reverse=True)
        logger.debug("Identified bottlenecks", extra={"bottleneck_count": len(bottlenecks)})
        return bottlenecks

    def _status_dwell_times(self, issues: Sequence[Issue]) -> Dict[str, _DwellBucket]:
        buckets: Dict[str, _DwellBucket] = {}
        for issue in issues:
            ordered = ordered_transitions(issue.transitions)
            for current, following in zip(ordered, ordered[1:]):
                bucket = buckets.setdefault(current.to_status, _DwellBucket())
                bucket.total_hours += hours_between(current.timestamp, following.timestamp)
                bucket.count += 1
                if issue.key not in bucket.issue_keys:
                    bucket.issue_keys.append(issue.key)
        return buckets
