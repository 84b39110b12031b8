"""Heuristic spillover prediction for incomplete issues of an active sprint.

Each incomplete issue starts from a neutral completion probability of 0.5
that is nudged by time budget, status, dwell time, complexity, ownership and
linked review requests. Every adjustment records a reason. The spillover
probability reported is ``1 - completion probability``.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import List, Optional, Sequence, Tuple

from .classifier import StatusClassifier
from .metrics import ordered_transitions
from .models import Issue, SpilloverPrediction, Sprint, SprintMetrics
from .stats import hours_between

logger = logging.getLogger(__name__)

SPRINT_ENDED_REASON = "sprint ended, issue incomplete"

DEFAULT_HOURS_PER_POINT = 8.0
DEFAULT_STORY_POINTS = 3.0
WORKDAY_HOURS = 8.0
BASE_COMPLETION_PROBABILITY = 0.5
# issues at or above this completion probability are not reported
COMPLETION_CONFIDENCE_CUTOFF = 0.7


class SpilloverPredictor:
    """Predict which incomplete issues are likely to miss the sprint end."""

    def __init__(self, classifier: Optional[StatusClassifier] = None) -> None:
        self._classifier = classifier or StatusClassifier()

    def predict(
        self,
        issues: Sequence[Issue],
        sprint: Sprint,
        now: datetime,
        metrics: Optional[SprintMetrics] = None,
    ) -> List[SpilloverPrediction]:
        """Return at-risk issues ordered by spillover probability, highest first.

        Completed issues never appear. Once the sprint has ended every
        incomplete issue is reported with probability ``1.0``.
        """
        incomplete = [issue for issue in issues if not self._classifier.is_completed(issue.status)]
        days_remaining = hours_between(now, sprint.end) / 24

        if days_remaining <= 0:
            return [
                SpilloverPrediction(issue_key=issue.key, probability=1.0, reasons=[SPRINT_ENDED_REASON])
                for issue in incomplete
            ]

        hours_per_point = self.hours_per_point(metrics)
        predictions: List[SpilloverPrediction] = []

        for issue in incomplete:
            completion, reasons = self._completion_probability(
                issue, days_remaining, hours_per_point, now, metrics
            )
            if completion < COMPLETION_CONFIDENCE_CUTOFF:
                predictions.append(
                    SpilloverPrediction(
                        issue_key=issue.key,
                        probability=1.0 - completion,
                        reasons=reasons,
                    )
                )

        predictions.sort(key=lambda prediction: prediction.probability, reverse=True)
        logger.debug(
            "Predicted spillover",
            extra={"sprint_id": sprint.id, "candidates": len(incomplete), "at_risk": len(predictions)},
        )
        return predictions

    @staticmethod
    def hours_per_point(metrics: Optional[SprintMetrics]) -> float:
        """Observed cycle hours per story point, or the default when unknown."""
        if (
            metrics is None
            or metrics.velocity <= 0
            or metrics.throughput <= 0
            or metrics.cycle_time <= 0
        ):
            return DEFAULT_HOURS_PER_POINT
        return metrics.cycle_time / (metrics.velocity / metrics.throughput)

    def _completion_probability(
        self,
        issue: Issue,
        days_remaining: float,
        hours_per_point: float,
        now: datetime,
        metrics: Optional[SprintMetrics],
    ) -> Tuple[float, List[str]]:
        reasons: List[str] = []
        probability = BASE_COMPLETION_PROBABILITY

        points = issue.story_points or DEFAULT_STORY_POINTS
        needed = points * hours_per_point
        remaining = days_remaining * WORKDAY_HOURS

        if needed <= remaining * 0.5:
            probability += 0.3
            reasons.append(f"Estimated {needed:.0f}h needed vs {remaining:.0f}h remaining")
        elif needed <= remaining:
            probability += 0.1
            reasons.append(f"Tight timeline: {needed:.0f}h needed vs {remaining:.0f}h remaining")
        else:
            probability -= 0.3
            reasons.append(f"Insufficient time: {needed:.0f}h needed vs {remaining:.0f}h remaining")

        if self._classifier.is_not_started(issue.status):
            probability -= 0.2
            reasons.append(f"Issue not yet started (status: {issue.status})")
        elif self._classifier.is_active(issue.status):
            in_status = self._hours_in_current_status(issue, now)
            average_cycle = (metrics.cycle_time if metrics else 0.0) or hours_per_point * points
            if in_status > average_cycle * 0.7:
                probability += 0.2
                reasons.append(
                    f"Issue in progress for {in_status:.0f}h "
                    f"({in_status / average_cycle * 100:.0f}% of avg cycle time)"
                )
            else:
                probability += 0.1
                reasons.append(f"Issue recently started ({in_status:.0f}h in progress)")

        dwell = self._average_dwell_hours(issue)
        if dwell > hours_per_point * 2:
            probability -= 0.15
            reasons.append(f"High status dwell time ({dwell:.0f}h average per status)")

        if points >= 8:
            probability -= 0.1
            reasons.append(f"High complexity ({points:g} story points)")
        elif points >= 5:
            probability -= 0.05
            reasons.append(f"Medium-high complexity ({points:g} story points)")

        if not issue.assignee:
            probability -= 0.15
            reasons.append("Issue is unassigned")

        if issue.linked_review_ids:
            probability += 0.1
            reasons.append(f"Has {len(issue.linked_review_ids)} linked PR(s)")

        return max(0.0, min(1.0, probability)), reasons

    @staticmethod
    def _hours_in_current_status(issue: Issue, now: datetime) -> float:
        entered = next(
            (t for t in reversed(ordered_transitions(issue.transitions)) if t.to_status == issue.status),
            None,
        )
        if entered is None:
            return 0.0
        return max(0.0, hours_between(entered.timestamp, now))

    @staticmethod
    def _average_dwell_hours(issue: Issue) -> float:
        ordered = ordered_transitions(issue.transitions)
        if len(ordered) < 2:
            return 0.0
        return hours_between(ordered[0].timestamp, ordered[-1].timestamp) / (len(ordered) - 1)
