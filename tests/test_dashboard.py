"""Tests for open-PR transformation, KPIs and offline dashboard assembly."""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone

import pytest

from review_pulse.dashboard import (
    build_dashboard,
    compute_flags,
    compute_kpis,
    compute_review_stats,
    dashboard_to_dict,
    format_hours,
    transform_open_pr,
)
from review_pulse.errors import MalformedResponse
from review_pulse.identity import IdentityClassifier
from review_pulse.models import OpenPullRequest, RequestedReviewers, ReviewerStat


# ── Helpers ─────────────────────────────────────────────────────────────────

NOW = datetime(2024, 3, 1, tzinfo=timezone.utc)
CLASSIFIER = IdentityClassifier(["alice", "bob"])


def _iso(dt: datetime) -> str:
    return dt.strftime("%Y-%m-%dT%H:%M:%SZ")


def _raw_open(
    number: int,
    age_hours: float,
    author: str = "stranger",
    requested: list[dict] | None = None,
    reviews: list[tuple[str, float]] | None = None,
    draft: bool = False,
) -> dict:
    created = NOW - timedelta(hours=age_hours)
    return {
        "number": number,
        "title": f"Change {number}",
        "url": f"https://github.com/acme/widgets/pull/{number}",
        "state": "OPEN",
        "createdAt": _iso(created),
        "updatedAt": _iso(created),
        "isDraft": draft,
        "authorAssociation": "CONTRIBUTOR",
        "author": {"login": author},
        "labels": {"nodes": [{"name": "bug"}]},
        "reviewRequests": {"nodes": [{"requestedReviewer": r} for r in requested or []]},
        "reviews": {
            "nodes": [
                {
                    "author": {"login": login},
                    "state": "COMMENTED",
                    "submittedAt": _iso(created + timedelta(hours=offset)),
                }
                for login, offset in reviews or []
            ]
        },
    }


def _user(login: str) -> dict:
    return {"__typename": "User", "login": login}


def _open_pr(
    number: int,
    author_type: str = "community",
    users: list[str] | None = None,
    draft: bool = False,
    first_response_hours: float | None = None,
    first_review_hours: float | None = None,
) -> OpenPullRequest:
    created = NOW - timedelta(days=2)
    return OpenPullRequest(
        repo="acme/widgets",
        number=number,
        title=f"Change {number}",
        url=f"url{number}",
        author_login=f"author{number}",
        author_association="NONE",
        author_type=author_type,
        is_employee_author=author_type == "employee",
        is_draft=draft,
        created_at=created,
        updated_at=created,
        requested_reviewers=RequestedReviewers(users=users or []),
        first_human_response_at=(
            created + timedelta(hours=first_response_hours)
            if first_response_hours is not None else None
        ),
        first_review_at=(
            created + timedelta(hours=first_review_hours)
            if first_review_hours is not None else None
        ),
    )


# ── Open PR transformation ─────────────────────────────────────────────────


def test_transform_open_pr_splits_users_and_teams() -> None:
    raw = _raw_open(
        7,
        age_hours=100,
        requested=[_user("alice"), {"__typename": "Team", "slug": "core"}],
        reviews=[("stranger2", 2), ("alice", 5)],
    )
    pr = transform_open_pr(raw, "acme/widgets", CLASSIFIER, NOW)

    assert pr.repo == "acme/widgets"
    assert pr.requested_reviewers.users == ["alice"]
    assert pr.requested_reviewers.teams == ["core"]
    assert pr.labels == ["bug"]
    assert pr.author_type == "community"
    assert not pr.is_employee_author
    assert [r.author_login for r in pr.reviews] == ["stranger2", "alice"]

    created = NOW - timedelta(hours=100)
    assert pr.first_review_at == created + timedelta(hours=2)
    assert pr.first_human_response_at == created + timedelta(hours=5)
    assert pr.age_hours == 100
    assert not pr.needs_first_response
    assert not pr.overdue_first_response
    assert not pr.overdue_first_review


def test_transform_open_pr_classifies_authors() -> None:
    assert transform_open_pr(_raw_open(1, 1, author="alice"), "r/r", CLASSIFIER, NOW).author_type == "employee"
    assert transform_open_pr(_raw_open(2, 1, author="renovate-bot"), "r/r", CLASSIFIER, NOW).author_type == "bot"

    raw = _raw_open(3, 1, author="outside-maintainer")
    raw["authorAssociation"] = "COLLABORATOR"
    assert transform_open_pr(raw, "r/r", CLASSIFIER, NOW).author_type == "maintainer"


def test_transform_open_pr_requires_number_and_created_at() -> None:
    raw = _raw_open(1, 1)
    del raw["createdAt"]
    with pytest.raises(MalformedResponse):
        transform_open_pr(raw, "acme/widgets", CLASSIFIER, NOW)


@pytest.mark.parametrize(
    ("age", "overdue_response", "overdue_review"),
    [(10, False, False), (80, True, False), (200, True, True)],
)
def test_sla_flags_without_reviews(age: float, overdue_response: bool, overdue_review: bool) -> None:
    flags = compute_flags(NOW - timedelta(hours=age), None, None, NOW)
    assert flags["needs_first_response"]
    assert flags["overdue_first_response"] is overdue_response
    assert flags["overdue_first_review"] is overdue_review


def test_bot_review_is_not_a_human_response() -> None:
    raw = _raw_open(1, 200, reviews=[("renovate-bot", 1)])
    pr = transform_open_pr(raw, "acme/widgets", CLASSIFIER, NOW)
    assert pr.first_review_at is not None
    assert pr.first_human_response_at is None
    assert pr.overdue_first_response
    assert not pr.overdue_first_review


# ── KPIs ───────────────────────────────────────────────────────────────────


def test_compute_kpis() -> None:
    prs = [
        _open_pr(1, users=["alice"], first_response_hours=5, first_review_hours=2),
        _open_pr(2, draft=True),
        _open_pr(3, author_type="employee"),
        _open_pr(4, users=["bob"], first_response_hours=10, first_review_hours=10),
    ]
    reviewers = [
        ReviewerStat("alice", pending_count=1, completed_total=3),
        ReviewerStat("bob", pending_count=1),
        ReviewerStat("carol", requested_total=2),
    ]
    kpis = compute_kpis(prs, reviewers)

    assert kpis.open_community_prs == 3
    assert kpis.community_pr_percentage == 75
    assert kpis.median_response_time_hours == 7.5
    assert kpis.median_review_time_hours == 6
    assert kpis.reviewer_compliance_pct == pytest.approx(66.67, abs=0.01)
    assert kpis.pending_reviews == 2
    assert kpis.active_reviewers == 2
    assert kpis.prs_without_reviewers == 1


def test_compute_kpis_empty() -> None:
    kpis = compute_kpis([], [])
    assert kpis.open_community_prs == 0
    assert kpis.community_pr_percentage == 0
    assert kpis.median_response_time_hours is None
    assert kpis.reviewer_compliance_pct == 0


def test_compute_review_stats() -> None:
    prs = [
        _open_pr(1, users=["alice", "bob"]),
        _open_pr(2, users=["alice"]),
        _open_pr(3),
        _open_pr(4, draft=True),
    ]
    summary = compute_review_stats(prs, top_n=1)
    assert summary.total_open_prs == 4
    assert summary.pending_review_requests == 3
    assert summary.non_draft_prs_without_reviewers == 1
    assert summary.top_pending_reviewers == [("alice", 2)]
    assert summary.unique_reviewers_with_pending == 2


@pytest.mark.parametrize(
    ("hours", "expected"),
    [(None, "N/A"), (float("nan"), "N/A"), (5.2, "5h"), (72, "3d"), (24, "1d")],
)
def test_format_hours(hours: float | None, expected: str) -> None:
    assert format_hours(hours) == expected


# ── End to end over a snapshot ─────────────────────────────────────────────


def _snapshot() -> dict:
    requested = NOW - timedelta(days=5)
    merged = {
        "number": 40,
        "url": "https://github.com/acme/widgets/pull/40",
        "createdAt": _iso(requested - timedelta(hours=1)),
        "mergedAt": _iso(NOW - timedelta(days=1)),
        "authorAssociation": "CONTRIBUTOR",
        "author": {"login": "stranger"},
        "timelineItems": {"nodes": [
            {
                "__typename": "ReviewRequestedEvent",
                "createdAt": _iso(requested),
                "requestedReviewer": _user("alice"),
            },
            {
                "__typename": "PullRequestReview",
                "author": {"login": "carol"},
                "authorAssociation": "CONTRIBUTOR",
                "submittedAt": _iso(requested + timedelta(hours=3)),
                "state": "COMMENTED",
            },
            {
                "__typename": "PullRequestReview",
                "author": {"login": "alice"},
                "authorAssociation": "MEMBER",
                "submittedAt": _iso(requested + timedelta(hours=24)),
                "state": "APPROVED",
            },
        ]},
    }
    return {
        "fetched_at": NOW.isoformat(),
        "since": (NOW - timedelta(days=30)).isoformat(),
        "days_back": 30,
        "employees": ["alice", "bob"],
        "failed_repos": ["acme/gone"],
        "rate_limit": {"remaining": 4200, "reset_at": NOW.isoformat()},
        "repos": {
            "acme/widgets": {
                "open": [_raw_open(41, 10, requested=[_user("alice")])],
                "merged": [merged],
            },
            "acme/broken": {"open": [{"title": "no number"}], "merged": []},
        },
    }


def test_build_dashboard_from_snapshot() -> None:
    data = build_dashboard(_snapshot())

    assert data.total_prs == 1
    assert data.degraded
    assert data.failed_repos == ["acme/gone", "acme/broken"]
    assert data.rate_limit.remaining == 4200
    assert data.last_updated == NOW

    by_name = {r.name: r for r in data.reviewers}
    assert [r.name for r in data.reviewers] == ["alice", "carol"]
    alice = by_name["alice"]
    assert alice.pending_count == 1
    assert alice.completed_requested == 1
    assert alice.requested_total == 1
    assert alice.completion_rate == 100
    assert alice.median_review_time_hours == 24
    assert by_name["carol"].completed_unrequested == 1
    assert "bob" not in by_name

    assert data.kpis.open_community_prs == 1
    assert data.kpis.reviewer_compliance_pct == 100


def test_build_dashboard_classified_policy() -> None:
    data = build_dashboard(_snapshot(), policy="classified")
    assert [r.name for r in data.reviewers] == ["alice"]


def test_build_dashboard_without_failures_is_not_degraded() -> None:
    snapshot = _snapshot()
    snapshot["failed_repos"] = []
    del snapshot["repos"]["acme/broken"]
    data = build_dashboard(snapshot)
    assert not data.degraded
    assert data.failed_repos == []


def test_dashboard_to_dict_is_json_serialisable() -> None:
    payload = dashboard_to_dict(build_dashboard(_snapshot()))
    text = json.dumps(payload)
    assert payload["last_updated"] == NOW.isoformat()
    assert payload["prs"][0]["requested_reviewers"]["users"] == ["alice"]
    assert "alice" in text


# ── Malformed snapshot data ────────────────────────────────────────────────


def test_null_open_review_fails_only_that_repository() -> None:
    snapshot = _snapshot()
    snapshot["failed_repos"] = []
    del snapshot["repos"]["acme/broken"]
    odd = _raw_open(50, 5)
    odd["reviews"]["nodes"] = [None]
    snapshot["repos"]["acme/odd"] = {"open": [odd], "merged": []}

    data = build_dashboard(snapshot)
    assert data.failed_repos == ["acme/odd"]
    assert data.degraded
    assert [pr.number for pr in data.prs] == [41]


def test_malformed_merged_timeline_fails_only_that_repository() -> None:
    snapshot = _snapshot()
    snapshot["failed_repos"] = []
    del snapshot["repos"]["acme/broken"]
    snapshot["repos"]["acme/odd"] = {
        "open": [],
        "merged": [{"number": 1, "timelineItems": ["not", "a", "connection"]}],
    }

    data = build_dashboard(snapshot)
    assert data.failed_repos == ["acme/odd"]
    assert {r.name for r in data.reviewers} == {"alice", "carol"}


@pytest.mark.parametrize(
    "mutate",
    [
        lambda raw: raw["labels"]["nodes"].append({"color": "red"}),
        lambda raw: raw["reviewRequests"]["nodes"].append(None),
        lambda raw: raw["reviewRequests"]["nodes"].append({"requestedReviewer": "alice"}),
        lambda raw: raw.update(reviews={"nodes": "oops"}),
    ],
)
def test_transform_open_pr_rejects_malformed_nodes(mutate) -> None:
    raw = _raw_open(1, 1, requested=[_user("alice")])
    mutate(raw)
    with pytest.raises(MalformedResponse):
        transform_open_pr(raw, "acme/widgets", CLASSIFIER, NOW)
