"""Domain models for sprint health analysis.

Raw records (sprints, issues, review requests) mirror only the subset of
upstream payload fields the analysis needs. Derived values (metrics,
assessments, reports) are frozen and owned by the analysis pass that created
them.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional


class SprintState(str, Enum):
    PLANNED = "planned"
    ACTIVE = "active"
    CLOSED = "closed"


class ReviewState(str, Enum):
    OPEN = "open"
    MERGED = "merged"
    DECLINED = "declined"


class RiskCategory(str, Enum):
    PR_DELAYS = "PR_DELAYS"
    HIGH_WIP = "HIGH_WIP"
    COMPLEXITY = "COMPLEXITY"
    CARRYOVER = "CARRYOVER"
    BOTTLENECK = "BOTTLENECK"


class RiskLevel(str, Enum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"


class BottleneckType(str, Enum):
    STATUS = "STATUS"
    REVIEWER = "REVIEWER"
    DEPENDENCY = "DEPENDENCY"


class RecommendationCategory(str, Enum):
    SCOPE = "SCOPE"
    REVIEWER = "REVIEWER"
    WIP = "WIP"
    PROCESS = "PROCESS"
    PLANNING = "PLANNING"


class Impact(str, Enum):
    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"


@dataclass(frozen=True, slots=True)
class Sprint:
    """Sprint metadata as fetched for one analysis pass."""

    id: str
    name: str
    state: SprintState
    start: datetime
    end: datetime
    goal: Optional[str] = None


@dataclass(frozen=True, slots=True)
class StatusTransition:
    """One edge of an issue's workflow history."""

    from_status: str
    to_status: str
    timestamp: datetime


@dataclass(slots=True)
class Issue:
    """Represents the issue tracker data required for sprint metrics."""

    id: str
    key: str
    summary: str
    assignee: Optional[str]
    story_points: Optional[float]
    status: str
    transitions: List[StatusTransition] = field(default_factory=list)
    linked_review_ids: List[str] = field(default_factory=list)


@dataclass(slots=True)
class Reviewer:
    """A reviewer participating in a review request."""

    username: str
    approved_at: Optional[datetime] = None
    comment_count: int = 0


@dataclass(slots=True)
class ReviewRequest:
    """Represents the minimal pull request data required for PR metrics."""

    id: str
    title: str
    author: str
    created_at: datetime
    first_review_at: Optional[datetime]
    merged_at: Optional[datetime]
    state: ReviewState
    reviewers: List[Reviewer] = field(default_factory=list)
    revision_count: int = 0
    linked_issue_keys: List[str] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class SprintMetrics:
    """Aggregated flow metrics for one sprint. Times are in hours."""

    cycle_time: float
    lead_time: float
    throughput: int
    velocity: float
    wip_count: int
    carry_over_count: int
    completion_rate: float

    @classmethod
    def empty(cls) -> "SprintMetrics":
        return cls(
            cycle_time=0.0,
            lead_time=0.0,
            throughput=0,
            velocity=0.0,
            wip_count=0,
            carry_over_count=0,
            completion_rate=0.0,
        )


@dataclass(frozen=True, slots=True)
class PRMetrics:
    """Aggregated review request metrics. Latencies are in hours."""

    average_latency: float
    average_time_to_first_review: float
    average_review_cycles: float
    average_revisions: float

    @classmethod
    def empty(cls) -> "PRMetrics":
        return cls(
            average_latency=0.0,
            average_time_to_first_review=0.0,
            average_review_cycles=0.0,
            average_revisions=0.0,
        )


@dataclass(frozen=True, slots=True)
class HistoricalMetrics:
    """Metrics snapshot persisted once per closed sprint."""

    sprint_id: str
    sprint_name: str
    completed_at: datetime
    metrics: SprintMetrics
    pr_metrics: PRMetrics


@dataclass(frozen=True, slots=True)
class RiskFactor:
    category: RiskCategory
    severity: int
    description: str


@dataclass(frozen=True, slots=True)
class RiskAssessment:
    """Scored and classified sprint risk. ``factors`` are ordered by severity."""

    level: RiskLevel
    score: int
    factors: List[RiskFactor]
    justification: str


@dataclass(frozen=True, slots=True)
class BottleneckInfo:
    location: str
    type: BottleneckType
    affected_issues: List[str]
    severity: int
    description: str


@dataclass(frozen=True, slots=True)
class SpilloverPrediction:
    issue_key: str
    probability: float
    reasons: List[str]


@dataclass(frozen=True, slots=True)
class Recommendation:
    priority: int
    category: RecommendationCategory
    title: str
    description: str
    impact: Impact


@dataclass(frozen=True, slots=True)
class ReviewerAssignment:
    reviewer: str
    recommended_pr_count: int
    rationale: str


@dataclass(frozen=True, slots=True)
class NextSprintSuggestions:
    target_story_points: int
    tasks_to_include: List[str]
    tasks_to_postpone: List[str]
    reviewer_assignments: List[ReviewerAssignment]


@dataclass(frozen=True, slots=True)
class RiskSummary:
    """Risk assessment trimmed to what report consumers see."""

    level: RiskLevel
    justification: str


@dataclass(frozen=True, slots=True)
class ReportMetrics:
    sprint: SprintMetrics
    pull_requests: PRMetrics


@dataclass(frozen=True, slots=True)
class SprintReport:
    """Terminal, user-facing result of one analysis pass."""

    summary: str
    key_findings: List[str]
    risk_assessment: RiskSummary
    recommendations: List[Recommendation]
    metrics: ReportMetrics
    generated_at: datetime
    next_sprint_suggestions: Optional[NextSprintSuggestions] = None
