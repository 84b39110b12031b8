"""Sprint risk detection, scoring and classification."""

from __future__ import annotations

import logging
import math
from collections import Counter
from typing import List, Optional, Sequence

from .classifier import StatusClassifier
from .models import (
    HistoricalMetrics,
    Issue,
    PRMetrics,
    ReviewRequest,
    ReviewState,
    RiskAssessment,
    RiskCategory,
    RiskFactor,
    RiskLevel,
    SprintMetrics,
)
from .stats import round_half_up

logger = logging.getLogger(__name__)

LOW_RISK_MAX_SCORE = 33
MEDIUM_RISK_MAX_SCORE = 66

HIGH_WIP_THRESHOLD = 5
LOW_COMPLETION_RATE_THRESHOLD = 70.0
VERY_LOW_COMPLETION_RATE_THRESHOLD = 50.0
REVIEWER_OVERLOAD_THRESHOLD = 8
PR_DELAY_MULTIPLIER = 1.3
ABSOLUTE_LATENCY_HOURS = 48.0
ABSOLUTE_FIRST_REVIEW_HOURS = 24.0


def open_review_load(reviews: Sequence[ReviewRequest]) -> Counter:
    """Count pending open review requests per reviewer, in first-seen order."""
    load: Counter = Counter()
    for review in reviews:
        if review.state != ReviewState.OPEN:
            continue
        for reviewer in review.reviewers:
            load[reviewer.username] += 1
    return load


def active_load_by_assignee(issues: Sequence[Issue], classifier: StatusClassifier) -> Counter:
    """Count active issues per assignee; unassigned issues are ignored."""
    load: Counter = Counter()
    for issue in issues:
        if issue.assignee and classifier.is_active(issue.status):
            load[issue.assignee] += 1
    return load


def calculate_risk_score(factors: Sequence[RiskFactor]) -> int:
    """Scale the mean factor severity (0-10) to a 0-100 score; ``0`` without factors."""
    if not factors:
        return 0
    mean_severity = sum(factor.severity for factor in factors) / len(factors)
    return min(100, round_half_up(mean_severity / 10 * 100))


def classify_risk_level(score: int) -> RiskLevel:
    if score <= LOW_RISK_MAX_SCORE:
        return RiskLevel.LOW
    if score <= MEDIUM_RISK_MAX_SCORE:
        return RiskLevel.MEDIUM
    return RiskLevel.HIGH


class RiskAssessor:
    """Assess sprint risk from metrics, optional history and raw records.

    Five independent detectors each contribute at most one factor. The score
    is the mean severity scaled to 0-100 and the level is a pure function of
    the score.
    """

    def __init__(self, classifier: Optional[StatusClassifier] = None) -> None:
        self._classifier = classifier or StatusClassifier()

    def assess(
        self,
        sprint_metrics: SprintMetrics,
        pr_metrics: PRMetrics,
        history: Optional[HistoricalMetrics] = None,
        issues: Optional[Sequence[Issue]] = None,
        reviews: Optional[Sequence[ReviewRequest]] = None,
    ) -> RiskAssessment:
        factors = self.identify_risk_factors(sprint_metrics, pr_metrics, history, issues, reviews)
        score = calculate_risk_score(factors)
        level = classify_risk_level(score)

        logger.info(
            "Assessed sprint risk",
            extra={
                "risk_score": score,
                "risk_level": level.value,
                "factors": [factor.category.value for factor in factors],
            },
        )

        return RiskAssessment(
            level=level,
            score=score,
            factors=factors,
            justification=self._justify(level, factors, sprint_metrics),
        )

    def identify_risk_factors(
        self,
        sprint_metrics: SprintMetrics,
        pr_metrics: PRMetrics,
        history: Optional[HistoricalMetrics] = None,
        issues: Optional[Sequence[Issue]] = None,
        reviews: Optional[Sequence[ReviewRequest]] = None,
    ) -> List[RiskFactor]:
        """Run every detector and return the fired factors, most severe first."""
        candidates = [
            self._detect_pr_delays(pr_metrics, history),
            self._detect_high_wip(sprint_metrics, issues),
            self._detect_carry_over(sprint_metrics),
            self._detect_reviewer_bottleneck(reviews),
            self._detect_complexity(sprint_metrics),
        ]
        factors = [factor for factor in candidates if factor is not None]
        return sorted(factors, key=lambda factor: factor.severity, reverse=True)

    def _detect_pr_delays(
        self,
        pr_metrics: PRMetrics,
        history: Optional[HistoricalMetrics],
    ) -> Optional[RiskFactor]:
        latency = pr_metrics.average_latency
        baseline = history.pr_metrics.average_latency if history is not None else 0.0

        if baseline > 0:
            if latency <= baseline * PR_DELAY_MULTIPLIER:
                return None
            increase = (latency / baseline - 1) * 100
            return RiskFactor(
                category=RiskCategory.PR_DELAYS,
                severity=min(10, math.floor(increase / 10)),
                description=(
                    f"PR latency is {increase:.0f}% above historical baseline "
                    f"({latency:.1f} vs {baseline:.1f} hours)."
                ),
            )

        first_review = pr_metrics.average_time_to_first_review
        if latency > ABSOLUTE_LATENCY_HOURS or first_review > ABSOLUTE_FIRST_REVIEW_HOURS:
            return RiskFactor(
                category=RiskCategory.PR_DELAYS,
                severity=min(10, math.floor(latency / 10)),
                description=(
                    f"PR latency is {latency:.1f} hours with "
                    f"{first_review:.1f} hours to first review."
                ),
            )
        return None

    def _detect_high_wip(
        self,
        sprint_metrics: SprintMetrics,
        issues: Optional[Sequence[Issue]],
    ) -> Optional[RiskFactor]:
        if issues is not None:
            load = active_load_by_assignee(issues, self._classifier)
            overloaded = [count for count in load.values() if count >= HIGH_WIP_THRESHOLD]
            if not overloaded:
                return None
            max_wip = max(overloaded)
            return RiskFactor(
                category=RiskCategory.HIGH_WIP,
                severity=min(10, math.floor((max_wip - HIGH_WIP_THRESHOLD) * 2) + 5),
                description=(
                    f"{len(overloaded)} developer(s) have {HIGH_WIP_THRESHOLD}+ active issues "
                    f"(max: {max_wip})."
                ),
            )

        if sprint_metrics.wip_count >= HIGH_WIP_THRESHOLD * 2:
            return RiskFactor(
                category=RiskCategory.HIGH_WIP,
                severity=min(10, math.floor(sprint_metrics.wip_count / 3)),
                description=f"High WIP with {sprint_metrics.wip_count} active issues.",
            )
        return None

    def _detect_carry_over(self, sprint_metrics: SprintMetrics) -> Optional[RiskFactor]:
        rate = sprint_metrics.completion_rate
        if rate >= LOW_COMPLETION_RATE_THRESHOLD:
            return None
        return RiskFactor(
            category=RiskCategory.CARRYOVER,
            severity=min(10, math.floor((LOW_COMPLETION_RATE_THRESHOLD - rate) / 5) + 3),
            description=(
                f"Completion rate is {rate:.0f}%, indicating "
                f"{sprint_metrics.carry_over_count} likely carry-over tasks."
            ),
        )

    def _detect_reviewer_bottleneck(
        self,
        reviews: Optional[Sequence[ReviewRequest]],
    ) -> Optional[RiskFactor]:
        if not reviews:
            return None
        load = open_review_load(reviews)
        overloaded = [count for count in load.values() if count >= REVIEWER_OVERLOAD_THRESHOLD]
        if not overloaded:
            return None
        max_pending = max(overloaded)
        return RiskFactor(
            category=RiskCategory.BOTTLENECK,
            severity=min(10, math.floor((max_pending - REVIEWER_OVERLOAD_THRESHOLD) / 2) + 6),
            description=(
                f"{len(overloaded)} reviewer(s) have {REVIEWER_OVERLOAD_THRESHOLD}+ pending PRs "
                f"(max: {max_pending})."
            ),
        )

    def _detect_complexity(self, sprint_metrics: SprintMetrics) -> Optional[RiskFactor]:
        rate = sprint_metrics.completion_rate
        # velocity > 0 separates "attempted but unfinished" from "nothing attempted"
        if rate >= VERY_LOW_COMPLETION_RATE_THRESHOLD or sprint_metrics.velocity <= 0:
            return None
        return RiskFactor(
            category=RiskCategory.COMPLEXITY,
            severity=min(10, math.floor((VERY_LOW_COMPLETION_RATE_THRESHOLD - rate) / 5) + 5),
            description=(
                f"Very low completion rate ({rate:.0f}%) suggests task complexity issues."
            ),
        )

    @staticmethod
    def _justify(
        level: RiskLevel,
        factors: Sequence[RiskFactor],
        sprint_metrics: SprintMetrics,
    ) -> str:
        if not factors:
            return (
                f"Sprint is at {level.value} risk. All metrics are within normal ranges "
                f"with a {sprint_metrics.completion_rate:.0f}% completion rate."
            )
        top = sorted(factors, key=lambda factor: factor.severity, reverse=True)[:3]
        return f"Sprint is at {level.value} risk. " + " ".join(factor.description for factor in top)
