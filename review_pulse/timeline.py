"""Timeline parsing and per-pull-request reduction.

Raw ``timelineItems`` nodes are turned into the ``TimelineEvent`` union once,
at this boundary; everything downstream works on typed events.

``reduce_timeline`` walks the events a single time, in delivered
(chronological) order, and produces:

* a request map, reviewer -> time of their *first* review request
  (later re-requests never overwrite it);
* the substantive reviews (APPROVED / CHANGES_REQUESTED / COMMENTED) in
  submission order, which the fulfilment rule depends on;
* the first ready-for-review time, if the pull request was ever a draft.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from review_pulse.config import SUBSTANTIVE_REVIEW_STATES
from review_pulse.errors import MalformedResponse
from review_pulse.models import (
    MergedPullRequest,
    ReadyEvent,
    RequestedEvent,
    ReviewEvent,
    TimelineEvent,
)

logger = logging.getLogger(__name__)


def parse_timestamp(value: str) -> datetime:
    """Parse a GitHub ISO-8601 timestamp (``...Z``) into an aware datetime."""
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (AttributeError, ValueError) as exc:
        raise MalformedResponse(f"Invalid timestamp: {value!r}") from exc


def _optional_timestamp(value: str | None) -> datetime | None:
    return parse_timestamp(value) if value else None


def _login(actor: Any) -> str | None:
    if isinstance(actor, dict):
        return actor.get("login")
    return None


# ── Parsing ────────────────────────────────────────────────────────────────


def parse_timeline_events(nodes: list[Any]) -> list[TimelineEvent]:
    """Convert raw ``timelineItems`` nodes into typed events, keeping order.

    Team review requests and reviews by deleted users (no login) are
    skipped, as are reviews with no ``submittedAt`` (pending drafts).
    """
    events: list[TimelineEvent] = []

    for node in nodes:
        if not isinstance(node, dict):
            raise MalformedResponse(f"Timeline node is not an object: {node!r}")

        typename = node.get("__typename")
        if typename == "ReviewRequestedEvent":
            reviewer = _login(node.get("requestedReviewer"))
            if reviewer and node.get("createdAt"):
                events.append(RequestedEvent(reviewer, parse_timestamp(node["createdAt"])))
        elif typename == "PullRequestReview":
            reviewer = _login(node.get("author"))
            if reviewer and node.get("submittedAt"):
                events.append(ReviewEvent(
                    reviewer=reviewer,
                    author_association=node.get("authorAssociation") or "NONE",
                    submitted_at=parse_timestamp(node["submittedAt"]),
                    state=node.get("state", ""),
                ))
        elif typename == "ReadyForReviewEvent":
            if node.get("createdAt"):
                events.append(ReadyEvent(parse_timestamp(node["createdAt"])))
        else:
            logger.debug("Skipping timeline item of type %s", typename)

    return events


def parse_merged_pull_request(node: dict[str, Any]) -> MergedPullRequest:
    """Convert one raw merged pull-request node into a ``MergedPullRequest``."""
    if not isinstance(node, dict) or "number" not in node:
        raise MalformedResponse(f"Pull request node without a number: {node!r}")

    timeline = node.get("timelineItems") or {}
    if not isinstance(timeline, dict) or not isinstance(timeline.get("nodes") or [], list):
        raise MalformedResponse(f"PR #{node['number']}: timelineItems is not a connection")
    return MergedPullRequest(
        number=node["number"],
        url=node.get("url", ""),
        merged_at=_optional_timestamp(node.get("mergedAt")),
        created_at=_optional_timestamp(node.get("createdAt")),
        author_login=_login(node.get("author")),
        author_association=node.get("authorAssociation") or "NONE",
        timeline=parse_timeline_events(timeline.get("nodes") or []),
    )


# ── Reduction ──────────────────────────────────────────────────────────────


@dataclass
class ReducedTimeline:
    request_map: dict[str, datetime] = field(default_factory=dict)
    ordered_reviews: list[ReviewEvent] = field(default_factory=list)
    ready_at: datetime | None = None


def reduce_timeline(events: list[TimelineEvent]) -> ReducedTimeline:
    """Reduce one pull request's events to its request map and review list."""
    reduced = ReducedTimeline()

    for event in events:
        match event:
            case RequestedEvent(reviewer=reviewer, at=at):
                # First write wins: a re-request must not move the clock.
                reduced.request_map.setdefault(reviewer, at)
            case ReviewEvent(state=state):
                if state in SUBSTANTIVE_REVIEW_STATES:
                    reduced.ordered_reviews.append(event)
            case ReadyEvent(at=at):
                if reduced.ready_at is None:
                    reduced.ready_at = at
            case _:
                raise TypeError(f"Unknown timeline event: {event!r}")

    return reduced
