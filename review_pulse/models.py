"""Domain models for the review activity dashboard."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Literal, Union

AuthorType = Literal["employee", "maintainer", "community", "bot"]


# ── Timeline events ────────────────────────────────────────────────────────


@dataclass(frozen=True)
class RequestedEvent:
    """A user was asked to review the pull request."""

    reviewer: str
    at: datetime


@dataclass(frozen=True)
class ReviewEvent:
    """A review submission on the pull request."""

    reviewer: str
    author_association: str
    submitted_at: datetime
    state: str  # APPROVED, CHANGES_REQUESTED, COMMENTED, PENDING, DISMISSED


@dataclass(frozen=True)
class ReadyEvent:
    """The pull request left draft state."""

    at: datetime


TimelineEvent = Union[RequestedEvent, ReviewEvent, ReadyEvent]


@dataclass
class MergedPullRequest:
    """A merged pull request with its parsed timeline."""

    number: int
    url: str
    merged_at: datetime | None
    created_at: datetime | None
    author_login: str | None
    author_association: str
    timeline: list[TimelineEvent] = field(default_factory=list)


# ── Reconciled facts ───────────────────────────────────────────────────────


@dataclass
class ReviewRequestRecord:
    """The earliest in-window review request for one reviewer on one PR."""

    reviewer: str
    pr_number: int
    requested_at: datetime
    repo: str = ""


@dataclass
class CompletedReview:
    """A substantive review, with the request it fulfilled if any."""

    reviewer: str
    author_association: str
    pr_number: int
    pr_url: str
    submitted_at: datetime
    requested_at: datetime | None = None
    repo: str = ""

    @property
    def fulfilled(self) -> bool:
        return self.requested_at is not None


@dataclass
class AuthorClassReview:
    """A reviewer's first review on a merged PR, timed from ready-for-review."""

    reviewer: str
    pr_number: int
    pr_url: str
    pr_author: str
    pr_author_association: str
    author_type: AuthorType
    ready_at: datetime
    first_review_at: datetime
    review_time_hours: float


@dataclass
class ReviewActivity:
    """Reconciled review facts for one or more repositories."""

    completed_reviews: list[CompletedReview] = field(default_factory=list)
    review_requests: list[ReviewRequestRecord] = field(default_factory=list)
    author_class_reviews: list[AuthorClassReview] = field(default_factory=list)

    def extend(self, other: ReviewActivity) -> None:
        """Append another repository's results."""
        self.completed_reviews.extend(other.completed_reviews)
        self.review_requests.extend(other.review_requests)
        self.author_class_reviews.extend(other.author_class_reviews)


# ── Open pull requests ─────────────────────────────────────────────────────


@dataclass
class RequestedReviewers:
    users: list[str] = field(default_factory=list)
    teams: list[str] = field(default_factory=list)


@dataclass
class Review:
    """A review on an open pull request."""

    author_login: str
    state: str
    submitted_at: datetime | None


@dataclass
class OpenPullRequest:
    """An open pull request as shown on the dashboard."""

    repo: str
    number: int
    title: str
    url: str
    author_login: str
    author_association: str
    author_type: AuthorType
    is_employee_author: bool
    is_draft: bool
    created_at: datetime
    updated_at: datetime
    labels: list[str] = field(default_factory=list)
    requested_reviewers: RequestedReviewers = field(default_factory=RequestedReviewers)
    reviews: list[Review] = field(default_factory=list)
    first_human_response_at: datetime | None = None
    first_review_at: datetime | None = None
    age_hours: float = 0.0
    needs_first_response: bool = True
    overdue_first_response: bool = False
    overdue_first_review: bool = False


# ── Aggregates ─────────────────────────────────────────────────────────────


@dataclass
class ReviewerStat:
    """Per-reviewer statistics for one aggregation pass."""

    name: str
    pending_count: int = 0
    completed_total: int = 0
    completed_requested: int = 0
    completed_unrequested: int = 0
    requested_total: int = 0
    completion_rate: float | None = None
    median_review_time_hours: float | None = None
    community_prs_reviewed: int = 0
    median_community_review_time_hours: float | None = None
    org_member_prs_reviewed: int = 0
    median_org_member_review_time_hours: float | None = None
    bot_prs_reviewed: int = 0
    median_bot_review_time_hours: float | None = None

    @property
    def is_active(self) -> bool:
        return self.pending_count > 0 or self.completed_total > 0


@dataclass
class RateLimit:
    remaining: int
    reset_at: datetime | None = None


@dataclass
class DashboardKPIs:
    open_community_prs: int
    community_pr_percentage: float
    median_response_time_hours: float | None
    median_review_time_hours: float | None
    reviewer_compliance_pct: float
    pending_reviews: int
    active_reviewers: int
    prs_without_reviewers: int


@dataclass
class DashboardData:
    """Everything the presentation layer renders."""

    kpis: DashboardKPIs
    prs: list[OpenPullRequest]
    reviewers: list[ReviewerStat]
    last_updated: datetime
    total_prs: int
    degraded: bool = False
    failed_repos: list[str] = field(default_factory=list)
    rate_limit: RateLimit | None = None


@dataclass
class ReviewStatsSummary:
    total_open_prs: int
    pending_review_requests: int
    non_draft_prs_without_reviewers: int
    top_pending_reviewers: list[tuple[str, int]]
    unique_reviewers_with_pending: int
