"""Sprint report assembly and rendering.

This module provides utilities for:
- Assembling the user-facing ``SprintReport`` from analysis results.
- Building the degraded placeholder report used when analysis fails.
- Converting a report to a JSON-ready mapping with external field names.
- Rendering a report as human-readable text.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence

from .models import (
    BottleneckInfo,
    Impact,
    Issue,
    NextSprintSuggestions,
    PRMetrics,
    Recommendation,
    RecommendationCategory,
    ReportMetrics,
    ReviewRequest,
    ReviewState,
    RiskAssessment,
    RiskLevel,
    RiskSummary,
    Sprint,
    SprintMetrics,
    SprintReport,
    SprintState,
)
from .stats import format_hours, format_number

logger = logging.getLogger(__name__)

MAX_KEY_FINDINGS = 7
WORKLOAD_IMBALANCE_RATIO = 1.5

DEGRADED_FINDINGS = (
    "Unable to complete analysis due to an error.",
    "Please check system logs for details.",
    "Try refreshing the analysis or contact support if the issue persists.",
)
DEGRADED_JUSTIFICATION = "Analysis could not be completed due to system error."


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def wip_assessment(wip_count: int) -> str:
    if wip_count <= 3:
        return "which is healthy"
    if wip_count <= 6:
        return "which is moderate"
    if wip_count <= 10:
        return "which is high and may impact flow"
    return "which is very high and likely causing bottlenecks"


class ReportAssembler:
    """Turn metrics, risk and recommendations into a single ``SprintReport``."""

    def __init__(self, clock: Callable[[], datetime] = _utcnow) -> None:
        self._clock = clock

    def assemble(
        self,
        sprint: Sprint,
        sprint_metrics: SprintMetrics,
        pr_metrics: PRMetrics,
        risk: RiskAssessment,
        recommendations: Sequence[Recommendation],
        issues: Sequence[Issue],
        reviews: Sequence[ReviewRequest],
        bottlenecks: Optional[Sequence[BottleneckInfo]] = None,
        next_sprint: Optional[NextSprintSuggestions] = None,
    ) -> SprintReport:
        report = SprintReport(
            summary=self.summarize(sprint, sprint_metrics, risk),
            key_findings=self.key_findings(sprint_metrics, pr_metrics, issues, reviews, bottlenecks),
            risk_assessment=RiskSummary(level=risk.level, justification=risk.justification),
            recommendations=sorted(recommendations, key=lambda rec: rec.priority),
            metrics=ReportMetrics(sprint=sprint_metrics, pull_requests=pr_metrics),
            generated_at=self._clock(),
            next_sprint_suggestions=next_sprint,
        )
        logger.debug(
            "Assembled sprint report",
            extra={"sprint_id": sprint.id, "findings": len(report.key_findings)},
        )
        return report

    @staticmethod
    def summarize(sprint: Sprint, sprint_metrics: SprintMetrics, risk: RiskAssessment) -> str:
        """Pick one of six summary templates by sprint state, completion band and risk level."""
        name = sprint.name
        rate = sprint_metrics.completion_rate
        rate_text = f"{rate:.0f}"
        level = risk.level.value
        velocity = format_number(sprint_metrics.velocity)

        if sprint.state == SprintState.CLOSED:
            if rate >= 90:
                return (
                    f"{name} completed successfully with {rate_text}% completion rate and {velocity} "
                    f"story points delivered. The sprint had {level} risk and met team expectations."
                )
            if rate >= 70:
                return (
                    f"{name} completed with {rate_text}% completion rate and {velocity} story points "
                    f"delivered. The sprint had {level} risk with some tasks carrying over to the next sprint."
                )
            return (
                f"{name} completed with {rate_text}% completion rate and {velocity} story points "
                f"delivered. The sprint had {level} risk with significant challenges impacting delivery."
            )

        if risk.level == RiskLevel.LOW:
            return (
                f"{name} is progressing well with {rate_text}% completion rate and {level} risk. "
                "The team is on track to meet sprint goals."
            )
        if risk.level == RiskLevel.MEDIUM:
            return (
                f"{name} is at {level} risk with {rate_text}% completion rate. "
                "Some adjustments may be needed to ensure successful delivery."
            )
        return (
            f"{name} is at {level} risk with {rate_text}% completion rate. Immediate action is "
            "recommended to address blockers and improve sprint outcomes."
        )

    def key_findings(
        self,
        sprint_metrics: SprintMetrics,
        pr_metrics: PRMetrics,
        issues: Sequence[Issue],
        reviews: Sequence[ReviewRequest],
        bottlenecks: Optional[Sequence[BottleneckInfo]] = None,
    ) -> List[str]:
        """Return up to seven ordered facts about the sprint."""
        findings = [
            f"Completed {sprint_metrics.throughput} issues "
            f"({sprint_metrics.completion_rate:.0f}% completion rate) with "
            f"{format_number(sprint_metrics.velocity)} story points delivered."
        ]

        if sprint_metrics.wip_count > 0:
            share = sprint_metrics.wip_count / (sprint_metrics.throughput + sprint_metrics.wip_count) * 100
            findings.append(
                f"Current WIP is {sprint_metrics.wip_count} issues ({share:.0f}% of total work), "
                f"{wip_assessment(sprint_metrics.wip_count)}."
            )

        if sprint_metrics.cycle_time > 0:
            findings.append(
                f"Average cycle time is {sprint_metrics.cycle_time:.1f} hours and lead time is "
                f"{sprint_metrics.lead_time:.1f} hours."
            )

        if reviews:
            findings.append(self._review_finding(pr_metrics, reviews))

        if bottlenecks:
            findings.append(f"Bottleneck detected: {bottlenecks[0].description}")

        if sprint_metrics.carry_over_count > 0:
            findings.append(
                f"{sprint_metrics.carry_over_count} tasks are carry-overs from previous sprints, "
                "indicating potential scope or estimation issues."
            )

        workload = self._workload_finding(issues)
        if workload:
            findings.append(workload)

        return findings[:MAX_KEY_FINDINGS]

    @staticmethod
    def _review_finding(pr_metrics: PRMetrics, reviews: Sequence[ReviewRequest]) -> str:
        open_count = sum(1 for review in reviews if review.state == ReviewState.OPEN)
        merged_count = sum(1 for review in reviews if review.state == ReviewState.MERGED)

        if pr_metrics.average_latency > 48:
            return (
                f"{merged_count} PRs merged with {pr_metrics.average_latency:.1f} hour average latency "
                f"({open_count} still open), indicating review delays."
            )
        if pr_metrics.average_time_to_first_review > 24:
            return (
                f"{len(reviews)} PRs processed with {pr_metrics.average_time_to_first_review:.1f} hour "
                "average time to first review, suggesting reviewer availability issues."
            )
        if open_count > merged_count and open_count > 5:
            return (
                f"{open_count} PRs are currently open (vs {merged_count} merged), indicating a "
                "potential review backlog."
            )
        return (
            f"{merged_count} PRs merged with {pr_metrics.average_latency:.1f} hour average latency and "
            f"{pr_metrics.average_revisions:.1f} revisions per PR."
        )

    @staticmethod
    def _workload_finding(issues: Sequence[Issue]) -> Optional[str]:
        counts = Counter(issue.assignee for issue in issues if issue.assignee)
        if len(counts) < 2:
            return None

        values = list(counts.values())
        highest = max(values)
        mean = sum(values) / len(values)
        if highest <= mean * WORKLOAD_IMBALANCE_RATIO:
            return None
        return (
            f"Workload imbalance detected: {len(counts)} developers with "
            f"{min(values)}-{highest} issues each (avg: {mean:.1f})."
        )


def build_degraded_report(sprint_id: str, message: str, now: datetime) -> SprintReport:
    """Return the placeholder report used when the primary data source is unavailable."""
    return SprintReport(
        summary=f"Analysis failed for sprint {sprint_id}. {message}",
        key_findings=list(DEGRADED_FINDINGS),
        risk_assessment=RiskSummary(level=RiskLevel.HIGH, justification=DEGRADED_JUSTIFICATION),
        recommendations=[
            Recommendation(
                priority=1,
                category=RecommendationCategory.PROCESS,
                title="Retry analysis",
                description=(
                    "Click the refresh button to retry the analysis. If the issue persists, "
                    "contact your system administrator."
                ),
                impact=Impact.HIGH,
            )
        ],
        metrics=ReportMetrics(sprint=SprintMetrics.empty(), pull_requests=PRMetrics.empty()),
        generated_at=now,
    )


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


def _external(value: Any) -> Any:
    if isinstance(value, dict):
        return {_camel(key): _external(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_external(item) for item in value]
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat().replace("+00:00", "Z")
    return value


def report_to_dict(report: SprintReport) -> Dict[str, Any]:
    """Convert a report to a JSON-ready mapping with camelCase keys.

    ``nextSprintSuggestions`` is omitted entirely when absent.
    """
    payload = _external(asdict(report))
    if report.next_sprint_suggestions is None:
        payload.pop("nextSprintSuggestions", None)
    return payload


def render_report(report: SprintReport) -> str:
    """Render a report as multi-line text for terminals and logs."""
    sprint = report.metrics.sprint
    prs = report.metrics.pull_requests

    lines = [
        "Sprint Health Report",
        f"Generated: {report.generated_at.isoformat()}",
        "",
        report.summary,
        "",
        f"Risk: {report.risk_assessment.level.value}",
        f"   {report.risk_assessment.justification}",
        "",
        "Key findings",
    ]
    lines.extend(f"   - {finding}" for finding in report.key_findings)
    lines.extend(
        [
            "",
            "Metrics",
            f"   Cycle time: {format_hours(sprint.cycle_time)}",
            f"   Lead time: {format_hours(sprint.lead_time)}",
            f"   Throughput: {sprint.throughput}",
            f"   Velocity: {format_number(sprint.velocity)}",
            f"   WIP: {sprint.wip_count}",
            f"   Carry-over: {sprint.carry_over_count}",
            f"   Completion rate: {sprint.completion_rate:.0f}%",
            f"   PR latency: {format_hours(prs.average_latency)}",
            f"   Time to first review: {format_hours(prs.average_time_to_first_review)}",
            f"   Reviewers per PR: {prs.average_review_cycles:.1f}",
            f"   Revisions per PR: {prs.average_revisions:.1f}",
            "",
            "Recommendations",
        ]
    )
    for rec in report.recommendations:
        lines.append(f"   {rec.priority}) [{rec.category.value}/{rec.impact.value}] {rec.title}")
        lines.append(f"      {rec.description}")

    suggestions = report.next_sprint_suggestions
    if suggestions is not None:
        lines.extend(
            [
                "",
                "Next sprint",
                f"   Target story points: {suggestions.target_story_points}",
                f"   Include: {', '.join(suggestions.tasks_to_include) or 'n/a'}",
                f"   Postpone: {', '.join(suggestions.tasks_to_postpone) or 'n/a'}",
            ]
        )
        for assignment in suggestions.reviewer_assignments:
            lines.append(
                f"   {assignment.reviewer}: {assignment.recommended_pr_count} PRs. {assignment.rationale}"
            )

    return "\n".join(lines)
