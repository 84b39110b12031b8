"""Actionable recommendations and next-sprint planning suggestions."""

from __future__ import annotations

import logging
import math
from dataclasses import replace
from datetime import datetime, timezone
from typing import Callable, List, Optional, Sequence

from .classifier import StatusClassifier
from .models import (
    BottleneckInfo,
    BottleneckType,
    HistoricalMetrics,
    Impact,
    Issue,
    NextSprintSuggestions,
    PRMetrics,
    Recommendation,
    RecommendationCategory,
    ReviewerAssignment,
    ReviewRequest,
    RiskAssessment,
    RiskLevel,
    SprintMetrics,
)
from .risk import (
    HIGH_WIP_THRESHOLD,
    LOW_COMPLETION_RATE_THRESHOLD,
    LOW_RISK_MAX_SCORE,
    MEDIUM_RISK_MAX_SCORE,
    REVIEWER_OVERLOAD_THRESHOLD,
    active_load_by_assignee,
    open_review_load,
)
from .stats import hours_between, round_half_up

logger = logging.getLogger(__name__)

MAX_RECOMMENDATIONS = 7
MAX_TASKS_TO_INCLUDE = 5
MAX_TASKS_TO_POSTPONE = 3
MAX_REVIEWER_ASSIGNMENTS = 5
STALLED_AFTER_HOURS = 72.0
HIGH_COMPLEXITY_POINTS = 8
UNDERUTILIZED_REVIEWER_LOAD = 3
UNDERUTILIZED_DEVELOPER_LOAD = 2
SLOW_FIRST_REVIEW_HOURS = 24.0
HIGH_REVISION_COUNT = 3.0
ESTIMATION_COMPLETION_RATE = 60.0
STRONG_COMPLETION_RATE = 90.0

_IMPACT_ORDER = {Impact.HIGH: 0, Impact.MEDIUM: 1, Impact.LOW: 2}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def prioritize(recommendations: Sequence[Recommendation]) -> List[Recommendation]:
    """Sort by priority then impact, keep the top seven and renumber them from 1."""
    ordered = sorted(
        recommendations,
        key=lambda rec: (rec.priority, _IMPACT_ORDER[rec.impact]),
    )
    return [
        replace(rec, priority=index)
        for index, rec in enumerate(ordered[:MAX_RECOMMENDATIONS], start=1)
    ]


class RecommendationEngine:
    """Generate prioritized recommendations from risk, metrics and raw records."""

    def __init__(
        self,
        classifier: Optional[StatusClassifier] = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._classifier = classifier or StatusClassifier()
        self._clock = clock

    def generate(
        self,
        risk: RiskAssessment,
        sprint_metrics: SprintMetrics,
        pr_metrics: PRMetrics,
        issues: Sequence[Issue],
        reviews: Sequence[ReviewRequest],
        bottlenecks: Optional[Sequence[BottleneckInfo]] = None,
    ) -> List[Recommendation]:
        """Return at most seven recommendations numbered ``1..k``."""
        generated: List[Recommendation] = []
        generated.extend(self._scope_recommendations(risk, sprint_metrics, issues))
        generated.extend(self._reviewer_recommendations(reviews, pr_metrics))
        generated.extend(self._wip_recommendations(issues, bottlenecks or []))
        generated.extend(self._process_recommendations(risk, sprint_metrics, pr_metrics))

        recommendations = prioritize(generated)
        logger.info(
            "Generated recommendations",
            extra={"generated": len(generated), "kept": len(recommendations)},
        )
        return recommendations

    def generate_next_sprint_suggestions(
        self,
        sprint_metrics: SprintMetrics,
        history: HistoricalMetrics,
        risk: RiskAssessment,
        issues: Sequence[Issue],
        reviews: Sequence[ReviewRequest],
    ) -> NextSprintSuggestions:
        """Suggest a point target, task carry/postpone lists and reviewer loads."""
        incomplete = self._incomplete(issues)

        tasks_to_include = [
            issue.key for issue in incomplete if self._classifier.is_active(issue.status)
        ][:MAX_TASKS_TO_INCLUDE]

        tasks_to_postpone: List[str] = []
        if risk.level == RiskLevel.HIGH or sprint_metrics.completion_rate < LOW_COMPLETION_RATE_THRESHOLD:
            tasks_to_postpone = [issue.key for issue in self.risky_tasks(issues)][:MAX_TASKS_TO_POSTPONE]

        return NextSprintSuggestions(
            target_story_points=self.target_story_points(sprint_metrics, history, risk),
            tasks_to_include=tasks_to_include,
            tasks_to_postpone=tasks_to_postpone,
            reviewer_assignments=self._reviewer_assignments(reviews),
        )

    @staticmethod
    def target_story_points(
        sprint_metrics: SprintMetrics,
        history: HistoricalMetrics,
        risk: RiskAssessment,
    ) -> int:
        """Blend historical and current velocity, then scale for risk. Never below 1."""
        average_velocity = (history.metrics.velocity + sprint_metrics.velocity) / 2

        if risk.level == RiskLevel.HIGH:
            factor = 0.8
        elif risk.level == RiskLevel.MEDIUM:
            factor = 0.9
        elif sprint_metrics.completion_rate > STRONG_COMPLETION_RATE:
            factor = 1.1
        else:
            factor = 1.0

        return max(1, round_half_up(average_velocity * factor))

    def risky_tasks(self, issues: Sequence[Issue]) -> List[Issue]:
        """Incomplete issues that are blocked, large (8+ points) or stalled for 72h+."""
        return [
            issue
            for issue in self._incomplete(issues)
            if self._classifier.is_blocked(issue.status)
            or (issue.story_points or 0) >= HIGH_COMPLEXITY_POINTS
            or self._is_stalled(issue)
        ]

    def _incomplete(self, issues: Sequence[Issue]) -> List[Issue]:
        return [issue for issue in issues if not self._classifier.is_completed(issue.status)]

    def _is_stalled(self, issue: Issue) -> bool:
        if not issue.transitions:
            return False
        last_change = max(transition.timestamp for transition in issue.transitions)
        return hours_between(last_change, self._clock()) > STALLED_AFTER_HOURS

    def _scope_recommendations(
        self,
        risk: RiskAssessment,
        sprint_metrics: SprintMetrics,
        issues: Sequence[Issue],
    ) -> List[Recommendation]:
        recommendations: List[Recommendation] = []

        if risk.score >= MEDIUM_RISK_MAX_SCORE:
            remaining_points = sum(issue.story_points or 0 for issue in self._incomplete(issues))
            reduction = math.ceil(remaining_points * 0.2)
            recommendations.append(
                Recommendation(
                    priority=1,
                    category=RecommendationCategory.SCOPE,
                    title="Reduce sprint scope to manage high risk",
                    description=(
                        f"Consider reducing scope by {reduction} story points (20% of remaining work). "
                        "Focus on completing high-priority tasks and postpone lower-priority items "
                        "to reduce risk and improve completion rate."
                    ),
                    impact=Impact.HIGH,
                )
            )

            risky = self.risky_tasks(issues)
            if risky:
                task_list = ", ".join(issue.key for issue in risky[:MAX_TASKS_TO_POSTPONE])
                recommendations.append(
                    Recommendation(
                        priority=2,
                        category=RecommendationCategory.SCOPE,
                        title="Postpone blocked or risky tasks",
                        description=(
                            f"Consider postponing tasks that are blocked or have high complexity: "
                            f"{task_list}. These tasks are at high risk of spillover and may impact "
                            "team velocity."
                        ),
                        impact=Impact.HIGH,
                    )
                )
        elif (
            sprint_metrics.completion_rate < LOW_COMPLETION_RATE_THRESHOLD
            and risk.score >= LOW_RISK_MAX_SCORE
        ):
            recommendations.append(
                Recommendation(
                    priority=3,
                    category=RecommendationCategory.SCOPE,
                    title="Adjust scope to improve completion rate",
                    description=(
                        f"Current completion rate is {sprint_metrics.completion_rate:.0f}%. "
                        "Consider moving 1-2 lower-priority tasks to the backlog to ensure the team "
                        "can complete committed work."
                    ),
                    impact=Impact.MEDIUM,
                )
            )

        return recommendations

    def _reviewer_recommendations(
        self,
        reviews: Sequence[ReviewRequest],
        pr_metrics: PRMetrics,
    ) -> List[Recommendation]:
        recommendations: List[Recommendation] = []
        load = open_review_load(reviews)
        overloaded = [
            (reviewer, count)
            for reviewer, count in load.most_common()
            if count >= REVIEWER_OVERLOAD_THRESHOLD
        ]

        if overloaded:
            top_reviewer, pending = overloaded[0]
            available = [
                reviewer for reviewer, count in load.items() if count < UNDERUTILIZED_REVIEWER_LOAD
            ]
            if available:
                recommendations.append(
                    Recommendation(
                        priority=1,
                        category=RecommendationCategory.REVIEWER,
                        title="Redistribute PR reviews to balance workload",
                        description=(
                            f"{top_reviewer} has {pending} pending PRs. Redistribute reviews to "
                            f"{', '.join(available[:2])} to reduce bottlenecks and improve review "
                            "turnaround time."
                        ),
                        impact=Impact.HIGH,
                    )
                )
            else:
                recommendations.append(
                    Recommendation(
                        priority=2,
                        category=RecommendationCategory.REVIEWER,
                        title="Address reviewer overload",
                        description=(
                            f"{len(overloaded)} reviewer(s) have {REVIEWER_OVERLOAD_THRESHOLD}+ pending "
                            f"PRs ({top_reviewer}: {pending}). Redistribution of reviews is needed: "
                            "add more reviewers or prioritize critical PRs to reduce review delays."
                        ),
                        impact=Impact.HIGH,
                    )
                )

        if pr_metrics.average_time_to_first_review > SLOW_FIRST_REVIEW_HOURS:
            recommendations.append(
                Recommendation(
                    priority=3,
                    category=RecommendationCategory.REVIEWER,
                    title="Improve review response time",
                    description=(
                        f"Average time to first review is {pr_metrics.average_time_to_first_review:.1f} "
                        "hours. Set a team goal of responding to PRs within 8-12 hours to maintain "
                        "development momentum."
                    ),
                    impact=Impact.MEDIUM,
                )
            )

        return recommendations

    def _wip_recommendations(
        self,
        issues: Sequence[Issue],
        bottlenecks: Sequence[BottleneckInfo],
    ) -> List[Recommendation]:
        recommendations: List[Recommendation] = []
        load = active_load_by_assignee(issues, self._classifier)
        overloaded = [
            (assignee, count) for assignee, count in load.most_common() if count >= HIGH_WIP_THRESHOLD
        ]

        if overloaded:
            top_assignee, wip = overloaded[0]
            recommendations.append(
                Recommendation(
                    priority=2,
                    category=RecommendationCategory.WIP,
                    title="Implement WIP limits to improve flow",
                    description=(
                        f"{len(overloaded)} developer(s) have {HIGH_WIP_THRESHOLD}+ active issues "
                        f"({top_assignee}: {wip}). Implement a WIP limit of 3-4 issues per developer "
                        "to improve focus and completion rate."
                    ),
                    impact=Impact.HIGH,
                )
            )

            if any(count < UNDERUTILIZED_DEVELOPER_LOAD for count in load.values()):
                recommendations.append(
                    Recommendation(
                        priority=3,
                        category=RecommendationCategory.WIP,
                        title="Rebalance task assignments",
                        description=(
                            "Redistribute tasks from overloaded developers to team members with lower "
                            "WIP. This will help prevent bottlenecks and improve overall team throughput."
                        ),
                        impact=Impact.MEDIUM,
                    )
                )

        if bottlenecks and bottlenecks[0].type == BottleneckType.STATUS:
            top = bottlenecks[0]
            recommendations.append(
                Recommendation(
                    priority=2,
                    category=RecommendationCategory.PROCESS,
                    title=f'Address bottleneck in "{top.location}" status',
                    description=(
                        f'{len(top.affected_issues)} issues are delayed in "{top.location}". '
                        f"{top.description} Investigate and remove blockers to improve flow."
                    ),
                    impact=Impact.HIGH,
                )
            )

        return recommendations

    @staticmethod
    def _process_recommendations(
        risk: RiskAssessment,
        sprint_metrics: SprintMetrics,
        pr_metrics: PRMetrics,
    ) -> List[Recommendation]:
        recommendations: List[Recommendation] = []

        if pr_metrics.average_revisions > HIGH_REVISION_COUNT:
            recommendations.append(
                Recommendation(
                    priority=4,
                    category=RecommendationCategory.PROCESS,
                    title="Reduce PR revision cycles",
                    description=(
                        f"Average of {pr_metrics.average_revisions:.1f} revisions per PR. Consider "
                        "implementing PR checklists, clearer acceptance criteria, or pair programming "
                        "to reduce rework."
                    ),
                    impact=Impact.MEDIUM,
                )
            )

        if risk.factors:
            top_factors = sorted(risk.factors, key=lambda factor: factor.severity, reverse=True)[:2]
            focus = " and ".join(
                factor.category.value.lower().replace("_", " ") for factor in top_factors
            )
            recommendations.append(
                Recommendation(
                    priority=5,
                    category=RecommendationCategory.PLANNING,
                    title="Focus retrospective on key risk areas",
                    description=(
                        f"In the next retrospective, prioritize discussion on {focus}. Use data from "
                        "this analysis to identify root causes and actionable improvements."
                    ),
                    impact=Impact.MEDIUM,
                )
            )

        if sprint_metrics.completion_rate < ESTIMATION_COMPLETION_RATE:
            recommendations.append(
                Recommendation(
                    priority=4,
                    category=RecommendationCategory.PLANNING,
                    title="Improve sprint planning and estimation",
                    description=(
                        f"Completion rate of {sprint_metrics.completion_rate:.0f}% suggests estimation "
                        "or planning issues. Review task breakdown and consider using historical data "
                        "for more accurate estimates."
                    ),
                    impact=Impact.MEDIUM,
                )
            )

        return recommendations

    @staticmethod
    def _reviewer_assignments(reviews: Sequence[ReviewRequest]) -> List[ReviewerAssignment]:
        load = open_review_load(reviews)
        mean_load = sum(load.values()) / len(load) if load else 0.0
        assignments: List[ReviewerAssignment] = []

        for reviewer, pending in load.items():
            if pending >= REVIEWER_OVERLOAD_THRESHOLD:
                count = math.floor(mean_load)
                rationale = f"Currently overloaded with {pending} PRs. Reduce to average workload."
            elif pending < mean_load * 0.5:
                count = math.ceil(mean_load)
                rationale = f"Currently underutilized with {pending} PRs. Can take on more reviews."
            else:
                count = round_half_up(mean_load)
                rationale = f"Maintain current balanced workload of ~{pending} PRs."
            assignments.append(
                ReviewerAssignment(reviewer=reviewer, recommended_pr_count=count, rationale=rationale)
            )

        return assignments[:MAX_REVIEWER_ASSIGNMENTS]
