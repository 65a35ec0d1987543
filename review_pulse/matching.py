"""Review-request fulfilment matching.

For each merged pull request, every substantive review inside the lookback
window becomes a ``CompletedReview``. A review *fulfils* its reviewer's
request (and carries ``requested_at``) only when:

    - the reviewer has a request on this PR, made inside the window;
    - the review was submitted at or after that request;
    - no earlier review by the same reviewer on this PR already fulfilled it.

Everything else is recorded with ``requested_at=None`` and counts as
unrequested work. Requests never apply backwards in time, and one request is
satisfied by exactly one review.

The request map and the fulfilled set are scratch state for a single pull
request and are discarded once it has been matched.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from review_pulse.identity import IdentityClassifier
from review_pulse.models import (
    AuthorClassReview,
    CompletedReview,
    MergedPullRequest,
    ReviewActivity,
    ReviewRequestRecord,
)
from review_pulse.timeline import ReducedTimeline, parse_merged_pull_request, reduce_timeline

logger = logging.getLogger(__name__)


def match_pull_request(
    pr: MergedPullRequest,
    reduced: ReducedTimeline,
    since: datetime,
    repo: str = "",
) -> tuple[list[ReviewRequestRecord], list[CompletedReview]]:
    """Pair reviews with the requests they fulfil on one pull request.

    Returns the in-window request records and one ``CompletedReview`` per
    in-window substantive review, in submission order.
    """
    requests = [
        ReviewRequestRecord(
            reviewer=reviewer,
            pr_number=pr.number,
            requested_at=requested_at,
            repo=repo,
        )
        for reviewer, requested_at in reduced.request_map.items()
        if requested_at >= since
    ]

    fulfilled: set[str] = set()
    completed: list[CompletedReview] = []

    for review in reduced.ordered_reviews:
        if review.submitted_at < since:
            continue

        requested_at = reduced.request_map.get(review.reviewer)
        is_candidate = (
            requested_at is not None
            and requested_at >= since
            and review.submitted_at >= requested_at
        )
        fulfils = is_candidate and review.reviewer not in fulfilled
        if fulfils:
            fulfilled.add(review.reviewer)

        completed.append(CompletedReview(
            reviewer=review.reviewer,
            author_association=review.author_association,
            pr_number=pr.number,
            pr_url=pr.url,
            submitted_at=review.submitted_at,
            requested_at=requested_at if fulfils else None,
            repo=repo,
        ))

    return requests, completed


def author_class_reviews(
    pr: MergedPullRequest,
    reduced: ReducedTimeline,
    since: datetime,
    classifier: IdentityClassifier,
) -> list[AuthorClassReview]:
    """Time each reviewer's first review from when the PR became ready.

    ``ready_at`` is the first ready-for-review event, or the creation time
    for pull requests that were never drafts. Non-positive durations and
    reviews before ``since`` are dropped.
    """
    if not pr.author_login:
        return []
    ready_at = reduced.ready_at or pr.created_at
    if ready_at is None:
        return []

    author_type = classifier.author_type(pr.author_login, pr.author_association)

    first_review: dict[str, datetime] = {}
    for review in reduced.ordered_reviews:
        first_review.setdefault(review.reviewer, review.submitted_at)

    results: list[AuthorClassReview] = []
    for reviewer, reviewed_at in first_review.items():
        hours = (reviewed_at - ready_at).total_seconds() / 3600
        if hours <= 0:
            logger.debug(
                "Skipping non-positive review time on PR #%d: %.2fh (ready %s, review %s)",
                pr.number, hours, ready_at.isoformat(), reviewed_at.isoformat(),
            )
            continue
        if reviewed_at < since:
            continue
        results.append(AuthorClassReview(
            reviewer=reviewer,
            pr_number=pr.number,
            pr_url=pr.url,
            pr_author=pr.author_login,
            pr_author_association=pr.author_association,
            author_type=author_type,
            ready_at=ready_at,
            first_review_at=reviewed_at,
            review_time_hours=hours,
        ))

    return results


def reconcile_repository(
    merged_nodes: list[dict[str, Any]],
    repo: str,
    since: datetime,
    classifier: IdentityClassifier,
) -> ReviewActivity:
    """Parse, reduce and match every merged pull request of one repository."""
    activity = ReviewActivity()

    for node in merged_nodes:
        pr = parse_merged_pull_request(node)
        if pr.merged_at is not None and pr.merged_at < since:
            continue
        reduced = reduce_timeline(pr.timeline)
        requests, completed = match_pull_request(pr, reduced, since, repo)
        activity.review_requests.extend(requests)
        activity.completed_reviews.extend(completed)
        activity.author_class_reviews.extend(
            author_class_reviews(pr, reduced, since, classifier)
        )

    logger.debug(
        "%s: %d completed reviews, %d review requests",
        repo, len(activity.completed_reviews), len(activity.review_requests),
    )
    return activity
