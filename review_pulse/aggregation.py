"""Per-reviewer aggregation of reconciled review activity.

    pending_count           open PRs currently listing the reviewer
    completed_total         substantive reviews in the window
    completed_requested     ... of which fulfilled a review request
    completed_unrequested   ... of which did not
    requested_total         review requests received in the window
    completion_rate         completed_requested / requested_total * 100
    median_review_time      median hours from request to fulfilling review

Pending load reflects the present state of open pull requests; everything
else is computed over the lookback window.
"""

from __future__ import annotations

import enum
import logging
from collections import defaultdict
from collections.abc import Callable, Iterable

from review_pulse.config import MIN_CLASS_SAMPLE_SIZE
from review_pulse.errors import InvalidParameter
from review_pulse.models import OpenPullRequest, ReviewActivity, ReviewerStat

logger = logging.getLogger(__name__)


class InclusionPolicy(enum.Enum):
    """Which reviewers appear in the aggregated table."""

    #: Classified reviewers plus anyone with pending, completed or requested work.
    ACTIVE = "active"
    #: Classified reviewers only.
    CLASSIFIED = "classified"

    @classmethod
    def parse(cls, value: str | InclusionPolicy) -> InclusionPolicy:
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError as exc:
            choices = ", ".join(p.value for p in cls)
            raise InvalidParameter(
                f"Unknown inclusion policy {value!r}; expected one of {choices}"
            ) from exc


def median(values: Iterable[float]) -> float | None:
    """Median of ``values``; mean of the two central values for even counts."""
    ordered = sorted(values)
    if not ordered:
        return None
    mid = len(ordered) // 2
    if len(ordered) % 2 == 0:
        return (ordered[mid - 1] + ordered[mid]) / 2
    return ordered[mid]


def pending_counts(prs: Iterable[OpenPullRequest]) -> dict[str, int]:
    """Number of open PRs listing each user as a requested reviewer."""
    counts: dict[str, int] = {}
    for pr in prs:
        for reviewer in pr.requested_reviewers.users:
            counts[reviewer] = counts.get(reviewer, 0) + 1
    return counts


def _has_activity(stat: ReviewerStat) -> bool:
    return stat.pending_count > 0 or stat.completed_total > 0 or stat.requested_total > 0


def aggregate_reviewers(
    open_prs: Iterable[OpenPullRequest],
    activity: ReviewActivity,
    is_includable: Callable[[str], bool],
    policy: InclusionPolicy | str = InclusionPolicy.ACTIVE,
    min_class_samples: int = MIN_CLASS_SAMPLE_SIZE,
) -> list[ReviewerStat]:
    """Fold open PRs and reconciled activity into sorted ``ReviewerStat``s.

    Reviewers are discovered in order: pending, then completed reviews, then
    requests. The result is sorted by ``completed_total`` descending; the
    sort is stable so ties keep discovery order.
    """
    policy = InclusionPolicy.parse(policy)
    stats: dict[str, ReviewerStat] = {}

    def stat_for(name: str) -> ReviewerStat:
        if name not in stats:
            stats[name] = ReviewerStat(name=name)
        return stats[name]

    for name, count in pending_counts(open_prs).items():
        stat_for(name).pending_count = count

    review_hours: dict[str, list[float]] = defaultdict(list)
    for review in activity.completed_reviews:
        stat = stat_for(review.reviewer)
        stat.completed_total += 1
        if not review.fulfilled:
            stat.completed_unrequested += 1
            continue
        stat.completed_requested += 1
        hours = (review.submitted_at - review.requested_at).total_seconds() / 3600
        if hours > 0:
            review_hours[review.reviewer].append(hours)

    for request in activity.review_requests:
        stat_for(request.reviewer).requested_total += 1

    class_hours: dict[tuple[str, str], list[float]] = defaultdict(list)
    for acr in activity.author_class_reviews:
        # Org members are employees and maintainers alike.
        bucket = "org_member" if acr.author_type in ("employee", "maintainer") else acr.author_type
        class_hours[(acr.reviewer, bucket)].append(acr.review_time_hours)

    def class_median(samples: list[float]) -> float | None:
        return median(samples) if len(samples) >= min_class_samples else None

    reviewers: list[ReviewerStat] = []
    for name, stat in stats.items():
        if policy is InclusionPolicy.CLASSIFIED:
            included = is_includable(name)
        else:
            included = is_includable(name) or _has_activity(stat)
        if not included:
            continue

        if stat.requested_total > 0:
            stat.completion_rate = stat.completed_requested / stat.requested_total * 100
        stat.median_review_time_hours = median(review_hours.get(name, []))

        community = class_hours.get((name, "community"), [])
        org_member = class_hours.get((name, "org_member"), [])
        bot = class_hours.get((name, "bot"), [])
        stat.community_prs_reviewed = len(community)
        stat.median_community_review_time_hours = class_median(community)
        stat.org_member_prs_reviewed = len(org_member)
        stat.median_org_member_review_time_hours = class_median(org_member)
        stat.bot_prs_reviewed = len(bot)
        stat.median_bot_review_time_hours = class_median(bot)

        if stat.completed_requested > stat.requested_total:
            logger.warning(
                "%s: %d fulfilled reviews exceed %d requests; inputs are inconsistent",
                name, stat.completed_requested, stat.requested_total,
            )
        reviewers.append(stat)

    reviewers.sort(key=lambda s: s.completed_total, reverse=True)
    return reviewers
