"""Dashboard assembly: open-PR transformation, KPIs and the final payload.

``build_dashboard`` is the offline entry point: it takes a snapshot written
by ``fetcher.fetch_all`` and runs reduce -> match -> aggregate -> assemble
without touching the network.
"""

from __future__ import annotations

import dataclasses
import logging
import math
from collections.abc import Iterable
from datetime import datetime, timezone
from typing import Any

from review_pulse.aggregation import InclusionPolicy, aggregate_reviewers, median, pending_counts
from review_pulse.config import (
    FIRST_RESPONSE_SLA_HOURS,
    FIRST_REVIEW_SLA_HOURS,
    INCLUSION_POLICY,
    TOP_PENDING_REVIEWERS,
)
from review_pulse.errors import MalformedResponse
from review_pulse.identity import IdentityClassifier
from review_pulse.matching import reconcile_repository
from review_pulse.models import (
    DashboardData,
    DashboardKPIs,
    OpenPullRequest,
    RateLimit,
    RequestedReviewers,
    Review,
    ReviewActivity,
    ReviewerStat,
    ReviewStatsSummary,
)
from review_pulse.timeline import parse_timestamp

logger = logging.getLogger(__name__)


def _hours_between(start: datetime, end: datetime) -> float:
    return (end - start).total_seconds() / 3600


def _nodes(raw: dict[str, Any], key: str) -> list[dict[str, Any]]:
    """The ``nodes`` of connection ``key``; raises if any node is not an object."""
    conn = raw.get(key) or {}
    if not isinstance(conn, dict):
        raise MalformedResponse(f"{key} is not a connection")
    nodes = conn.get("nodes") or []
    if not isinstance(nodes, list):
        raise MalformedResponse(f"{key}.nodes is not a list")
    for node in nodes:
        if not isinstance(node, dict):
            raise MalformedResponse(f"{key} node is not an object: {node!r}")
    return nodes


def _author_login(node: dict[str, Any]) -> str | None:
    author = node.get("author")
    return author.get("login") if isinstance(author, dict) else None


# ── Open pull requests ─────────────────────────────────────────────────────


def compute_firsts(
    raw_pr: dict[str, Any],
    classifier: IdentityClassifier,
) -> tuple[datetime | None, datetime | None]:
    """Return ``(first_human_response_at, first_review_at)`` for an open PR.

    A human response is the first review by an employee; the first review
    is the first by anyone.
    """
    submitted: list[tuple[datetime, str | None]] = []
    for review in _nodes(raw_pr, "reviews"):
        if review.get("submittedAt"):
            submitted.append((parse_timestamp(review["submittedAt"]), _author_login(review)))
    submitted.sort(key=lambda item: item[0])

    first_review_at = submitted[0][0] if submitted else None
    first_human_response_at = next(
        (at for at, login in submitted if classifier.is_employee(login)),
        None,
    )
    return first_human_response_at, first_review_at


def compute_flags(
    created_at: datetime,
    first_human_response_at: datetime | None,
    first_review_at: datetime | None,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Age and SLA flags for an open PR."""
    now = now or datetime.now(timezone.utc)
    age_hours = _hours_between(created_at, now)
    needs_first_response = first_human_response_at is None
    return {
        "age_hours": round(age_hours, 1),
        "needs_first_response": needs_first_response,
        "overdue_first_response": needs_first_response and age_hours > FIRST_RESPONSE_SLA_HOURS,
        "overdue_first_review": first_review_at is None and age_hours > FIRST_REVIEW_SLA_HOURS,
    }


def transform_open_pr(
    raw: dict[str, Any],
    repo: str,
    classifier: IdentityClassifier,
    now: datetime | None = None,
) -> OpenPullRequest:
    """Convert a raw open-PR node into an ``OpenPullRequest``."""
    if not isinstance(raw, dict) or "number" not in raw or not raw.get("createdAt"):
        raise MalformedResponse(f"{repo}: open PR node missing required fields: {raw!r}")
    number = raw["number"]
    created_at = parse_timestamp(raw["createdAt"])

    users: list[str] = []
    teams: list[str] = []
    for req in _nodes(raw, "reviewRequests"):
        reviewer = req.get("requestedReviewer") or {}
        if not isinstance(reviewer, dict):
            raise MalformedResponse(f"{repo}#{number}: requestedReviewer is not an object")
        if reviewer.get("__typename") == "User" and reviewer.get("login"):
            users.append(reviewer["login"])
        elif reviewer.get("__typename") == "Team" and reviewer.get("slug"):
            teams.append(reviewer["slug"])

    reviews = [
        Review(
            author_login=_author_login(r) or "unknown",
            state=r.get("state", ""),
            submitted_at=parse_timestamp(r["submittedAt"]) if r.get("submittedAt") else None,
        )
        for r in _nodes(raw, "reviews")
    ]

    labels: list[str] = []
    for label in _nodes(raw, "labels"):
        if not label.get("name"):
            raise MalformedResponse(f"{repo}#{number}: label without a name")
        labels.append(label["name"])

    author_login = _author_login(raw) or "unknown"
    author_association = raw.get("authorAssociation") or "NONE"
    first_human_response_at, first_review_at = compute_firsts(raw, classifier)

    return OpenPullRequest(
        repo=repo,
        number=number,
        title=raw.get("title", ""),
        url=raw.get("url", ""),
        author_login=author_login,
        author_association=author_association,
        author_type=classifier.author_type(author_login, author_association),
        is_employee_author=classifier.is_employee(author_login),
        is_draft=bool(raw.get("isDraft")),
        created_at=created_at,
        updated_at=parse_timestamp(raw.get("updatedAt") or raw["createdAt"]),
        labels=labels,
        requested_reviewers=RequestedReviewers(users=users, teams=teams),
        reviews=reviews,
        first_human_response_at=first_human_response_at,
        first_review_at=first_review_at,
        **compute_flags(created_at, first_human_response_at, first_review_at, now),
    )


# ── KPIs ───────────────────────────────────────────────────────────────────


def compute_kpis(
    prs: list[OpenPullRequest],
    reviewers: list[ReviewerStat],
) -> DashboardKPIs:
    """Pull-request level KPIs.

    Community response and review medians are measured from PR creation to
    the first qualifying review on the PR, independent of per-reviewer
    latency.
    """
    community = [pr for pr in prs if pr.author_type == "community"]
    non_draft = [pr for pr in prs if not pr.is_draft]

    response_hours = [
        _hours_between(pr.created_at, pr.first_human_response_at)
        for pr in community
        if pr.first_human_response_at is not None
    ]
    review_hours = [
        _hours_between(pr.created_at, pr.first_review_at)
        for pr in community
        if pr.first_review_at is not None
    ]

    with_reviewers = [pr for pr in non_draft if pr.requested_reviewers.users]
    compliance = len(with_reviewers) / len(non_draft) * 100 if non_draft else 0.0

    return DashboardKPIs(
        open_community_prs=len(community),
        community_pr_percentage=len(community) / len(prs) * 100 if prs else 0.0,
        median_response_time_hours=median(response_hours),
        median_review_time_hours=median(review_hours),
        reviewer_compliance_pct=compliance,
        pending_reviews=sum(r.pending_count for r in reviewers),
        active_reviewers=sum(1 for r in reviewers if r.is_active),
        prs_without_reviewers=len(non_draft) - len(with_reviewers),
    )


def compute_review_stats(
    prs: list[OpenPullRequest],
    top_n: int = TOP_PENDING_REVIEWERS,
) -> ReviewStatsSummary:
    """Summary of pending review requests across open PRs."""
    counts = pending_counts(prs)
    top = sorted(counts.items(), key=lambda item: item[1], reverse=True)[:top_n]
    return ReviewStatsSummary(
        total_open_prs=len(prs),
        pending_review_requests=sum(counts.values()),
        non_draft_prs_without_reviewers=sum(
            1 for pr in prs if not pr.is_draft and not pr.requested_reviewers.users
        ),
        top_pending_reviewers=top,
        unique_reviewers_with_pending=len(counts),
    )


def format_hours(hours: float | None) -> str:
    """``None`` or NaN -> ``N/A``, under a day -> ``"5h"``, otherwise ``"3d"``."""
    if hours is None or math.isnan(hours):
        return "N/A"
    if hours < 24:
        return f"{round(hours)}h"
    return f"{round(hours / 24)}d"


# ── Assembly ───────────────────────────────────────────────────────────────


def assemble_dashboard(
    prs: list[OpenPullRequest],
    reviewers: list[ReviewerStat],
    failed_repos: Iterable[str] = (),
    rate_limit: RateLimit | None = None,
    now: datetime | None = None,
) -> DashboardData:
    """Combine reviewer stats and open PRs into the final payload."""
    failed = list(failed_repos)
    return DashboardData(
        kpis=compute_kpis(prs, reviewers),
        prs=prs,
        reviewers=reviewers,
        last_updated=now or datetime.now(timezone.utc),
        total_prs=len(prs),
        degraded=bool(failed),
        failed_repos=failed,
        rate_limit=rate_limit,
    )


def _snapshot_rate_limit(raw: dict[str, Any] | None) -> RateLimit | None:
    if not raw:
        return None
    reset_at = raw.get("reset_at")
    return RateLimit(
        remaining=raw.get("remaining", 0),
        reset_at=parse_timestamp(reset_at) if reset_at else None,
    )


def build_dashboard(
    snapshot: dict[str, Any],
    classifier: IdentityClassifier | None = None,
    policy: InclusionPolicy | str = INCLUSION_POLICY,
    now: datetime | None = None,
) -> DashboardData:
    """Run reconciliation, aggregation and assembly over a fetch snapshot.

    A repository whose payload cannot be parsed is logged and added to the
    failed list rather than aborting the whole run.
    """
    if classifier is None:
        classifier = IdentityClassifier(snapshot.get("employees") or [])
    since = parse_timestamp(snapshot["since"])
    now = now or parse_timestamp(snapshot["fetched_at"])

    failed_repos: list[str] = list(snapshot.get("failed_repos") or [])
    prs: list[OpenPullRequest] = []
    activity = ReviewActivity()

    for repo, data in (snapshot.get("repos") or {}).items():
        # Per-repo buffers, merged only once the repo parsed cleanly.
        try:
            if not isinstance(data, dict):
                raise MalformedResponse(f"{repo}: snapshot entry is not an object")
            repo_prs = [
                transform_open_pr(raw, repo, classifier, now)
                for raw in data.get("open") or []
            ]
            repo_activity = reconcile_repository(
                data.get("merged") or [], repo, since, classifier
            )
        except MalformedResponse:
            logger.exception("Skipping %s: malformed snapshot data", repo)
            failed_repos.append(repo)
            continue
        prs.extend(repo_prs)
        activity.extend(repo_activity)

    reviewers = aggregate_reviewers(prs, activity, classifier.is_includable, policy)
    logger.info(
        "Aggregated %d reviewers from %d open PRs and %d completed reviews",
        len(reviewers), len(prs), len(activity.completed_reviews),
    )
    return assemble_dashboard(
        prs,
        reviewers,
        failed_repos=failed_repos,
        rate_limit=_snapshot_rate_limit(snapshot.get("rate_limit")),
        now=now,
    )


def _jsonable(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value


def dashboard_to_dict(data: DashboardData) -> dict[str, Any]:
    """JSON-ready representation of a ``DashboardData``."""
    return _jsonable(dataclasses.asdict(data))
