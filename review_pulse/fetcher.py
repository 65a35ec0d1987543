"""Paginated fetchers for open and merged pull requests, plus org discovery.

Everything here returns raw GraphQL/REST dicts. ``fetch_all`` bundles them
into a JSON-serialisable snapshot that the scoring side consumes offline.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from datetime import datetime, timedelta, timezone
from typing import Any

from review_pulse.config import (
    DEFAULT_LOOKBACK_DAYS,
    LABEL_PAGE_SIZE,
    MAX_MEMBER_PAGES,
    MAX_MERGED_PAGES_PER_REPO,
    MAX_PR_PAGES_PER_REPO,
    PR_PAGE_SIZE,
    REPO_PER_PAGE,
    REVIEW_PAGE_SIZE,
    REVIEW_REQUEST_PAGE_SIZE,
    TIMELINE_PAGE_SIZE,
)
from review_pulse.errors import InvalidParameter, MalformedResponse, TransportError
from review_pulse.github_client import GitHubClient
from review_pulse.timeline import parse_timestamp

logger = logging.getLogger(__name__)

# ── GraphQL Queries ─────────────────────────────────────────────────────────

QUERY_OPEN_PRS = """
query($owner: String!, $name: String!, $cursor: String) {
  repository(owner: $owner, name: $name) {
    pullRequests(states: OPEN, first: %d, after: $cursor,
                 orderBy: {field: CREATED_AT, direction: DESC}) {
      pageInfo { hasNextPage endCursor }
      nodes {
        number
        title
        url
        state
        createdAt
        updatedAt
        isDraft
        authorAssociation
        author { login }
        labels(first: %d) { nodes { name } }
        reviewRequests(first: %d) {
          nodes {
            requestedReviewer {
              __typename
              ... on User { login }
              ... on Team { slug }
            }
          }
        }
        reviews(first: %d) {
          nodes {
            author { login }
            state
            submittedAt
          }
        }
      }
    }
  }
  rateLimit { cost remaining resetAt }
}
""" % (PR_PAGE_SIZE, LABEL_PAGE_SIZE, REVIEW_REQUEST_PAGE_SIZE, REVIEW_PAGE_SIZE)

QUERY_MERGED_PRS = """
query($owner: String!, $name: String!, $cursor: String) {
  repository(owner: $owner, name: $name) {
    pullRequests(states: MERGED, first: %d, after: $cursor,
                 orderBy: {field: UPDATED_AT, direction: DESC}) {
      pageInfo { hasNextPage endCursor }
      nodes {
        number
        url
        createdAt
        mergedAt
        authorAssociation
        author { login }
        timelineItems(first: %d, itemTypes: [
          REVIEW_REQUESTED_EVENT, PULL_REQUEST_REVIEW, READY_FOR_REVIEW_EVENT
        ]) {
          nodes {
            __typename
            ... on ReviewRequestedEvent {
              createdAt
              requestedReviewer {
                __typename
                ... on User { login }
              }
            }
            ... on PullRequestReview {
              author { login }
              authorAssociation
              submittedAt
              state
            }
            ... on ReadyForReviewEvent {
              createdAt
            }
          }
        }
      }
    }
  }
  rateLimit { cost remaining resetAt }
}
""" % (PR_PAGE_SIZE, TIMELINE_PAGE_SIZE)

QUERY_ORG_MEMBERS = """
query($login: String!, $cursor: String) {
  organization(login: $login) {
    membersWithRole(first: 100, after: $cursor) {
      pageInfo { hasNextPage endCursor }
      nodes { login }
    }
  }
  rateLimit { cost remaining resetAt }
}
"""


# ── Helpers ────────────────────────────────────────────────────────────────


def window_start(days_back: int, now: datetime | None = None) -> datetime:
    """Start of the lookback window ending at ``now``.

    Raises ``InvalidParameter`` unless ``days_back`` is a positive integer.
    """
    if isinstance(days_back, bool) or not isinstance(days_back, int) or days_back <= 0:
        raise InvalidParameter(f"days_back must be a positive integer, got {days_back!r}")
    now = now or datetime.now(timezone.utc)
    return now - timedelta(days=days_back)


def split_full_name(full_name: str) -> tuple[str, str]:
    """``"owner/name"`` -> ``("owner", "name")``."""
    owner, sep, name = full_name.partition("/")
    if not sep or not owner or not name or "/" in name:
        raise InvalidParameter(f"Repository must be 'owner/name', got {full_name!r}")
    return owner, name


def _connection(data: dict[str, Any], *path: str) -> dict[str, Any]:
    """Walk ``path`` into a GraphQL response and return the connection dict."""
    node: Any = data
    for key in path:
        if not isinstance(node, dict) or node.get(key) is None:
            raise MalformedResponse(f"Missing {'.'.join(path)} in GraphQL response")
        node = node[key]
    if not isinstance(node.get("nodes"), list) or not isinstance(node.get("pageInfo"), dict):
        raise MalformedResponse(f"{'.'.join(path)} is not a connection")
    return node


def _require_dicts(nodes: list[Any], what: str) -> list[dict[str, Any]]:
    """Return ``nodes`` unchanged, or raise if any of them is not an object."""
    for node in nodes:
        if not isinstance(node, dict):
            raise MalformedResponse(f"{what} node is not an object: {node!r}")
    return nodes


def _paginate(
    client: GitHubClient,
    query: str,
    variables: dict[str, Any],
    path: tuple[str, ...],
    max_pages: int,
) -> Iterator[list[dict[str, Any]]]:
    """Yield the ``nodes`` of successive pages, following ``endCursor``.

    Stops on the last page or after ``max_pages`` requests. The consumer
    may stop earlier simply by not asking for the next page.
    """
    cursor: str | None = None
    for page in range(1, max_pages + 1):
        data = client.graphql(query, variables={**variables, "cursor": cursor})
        conn = _connection(data, *path)
        logger.debug("Fetched page %d of %s (%d nodes)", page, ".".join(path), len(conn["nodes"]))
        yield conn["nodes"]

        page_info = conn["pageInfo"]
        cursor = page_info.get("endCursor")
        if not page_info.get("hasNextPage") or not cursor:
            return

    logger.warning("Stopped %s after the %d-page limit", ".".join(path), max_pages)


# ── Pull requests ──────────────────────────────────────────────────────────


def fetch_open_pull_requests(
    client: GitHubClient,
    owner: str,
    name: str,
    max_pages: int = MAX_PR_PAGES_PER_REPO,
) -> list[dict]:
    """Fetch currently open pull requests with reviewers and reviews."""
    prs: list[dict] = []
    pages = _paginate(
        client,
        QUERY_OPEN_PRS,
        {"owner": owner, "name": name},
        ("repository", "pullRequests"),
        max_pages,
    )
    for nodes in pages:
        # The API occasionally returns PRs closed between pages.
        prs.extend(
            pr for pr in _require_dicts(nodes, "Open pull request")
            if pr.get("state") == "OPEN"
        )
    return prs


def iter_merged_pull_requests(
    client: GitHubClient,
    owner: str,
    name: str,
    days_back: int = DEFAULT_LOOKBACK_DAYS,
    max_pages: int = MAX_MERGED_PAGES_PER_REPO,
    now: datetime | None = None,
) -> Iterator[dict]:
    """Yield merged pull requests (with timelines) inside the lookback window.

    ``days_back`` is validated before any request is made. Pages arrive most
    recently updated first, so the first node merged before the window start
    ends iteration: it and the rest of its page are dropped and no further
    page is requested.
    """
    since = window_start(days_back, now)
    return _iter_merged(client, owner, name, since, max_pages)


def _iter_merged(
    client: GitHubClient,
    owner: str,
    name: str,
    since: datetime,
    max_pages: int,
) -> Iterator[dict]:
    pages = _paginate(
        client,
        QUERY_MERGED_PRS,
        {"owner": owner, "name": name},
        ("repository", "pullRequests"),
        max_pages,
    )
    for nodes in pages:
        for pr in _require_dicts(nodes, "Merged pull request"):
            merged_at = pr.get("mergedAt")
            if merged_at and parse_timestamp(merged_at) < since:
                logger.debug(
                    "%s/%s: PR #%s merged before window; stopping",
                    owner, name, pr.get("number"),
                )
                return
            yield pr


# ── Organisations ──────────────────────────────────────────────────────────


def fetch_org_members(
    client: GitHubClient,
    org: str,
    max_pages: int = MAX_MEMBER_PAGES,
) -> list[str]:
    """Logins of all members of ``org``."""
    members: list[str] = []
    pages = _paginate(
        client,
        QUERY_ORG_MEMBERS,
        {"login": org},
        ("organization", "membersWithRole"),
        max_pages,
    )
    for nodes in pages:
        members.extend(n["login"] for n in nodes if isinstance(n, dict) and n.get("login"))
    return members


def list_org_repositories(client: GitHubClient, org: str) -> list[str]:
    """Full names of the public, active repositories of ``org``."""
    names: list[str] = []
    page = 1

    while True:
        data = client.rest_get(
            f"/orgs/{org}/repos",
            params={"type": "public", "sort": "updated", "per_page": REPO_PER_PAGE, "page": page},
        )
        if not isinstance(data, list):
            raise MalformedResponse(f"Repository listing for {org} is not a list")
        if not data:
            break

        for repo in data:
            if not isinstance(repo, dict) or not repo.get("full_name"):
                raise MalformedResponse(f"Repository entry for {org} has no full_name: {repo!r}")
            if not repo.get("archived") and not repo.get("disabled"):
                names.append(repo["full_name"])
        if len(data) < REPO_PER_PAGE:
            break
        page += 1

    return names


def repositories_for_orgs(client: GitHubClient, orgs: list[str]) -> list[str]:
    """List repositories across organisations, skipping any that fail."""
    all_repos: list[str] = []
    for org in orgs:
        try:
            repos = list_org_repositories(client, org)
        except (TransportError, MalformedResponse):
            logger.exception("Failed to list repositories for org %s; skipping", org)
            continue
        logger.info("Found %d active repositories for %s", len(repos), org)
        all_repos.extend(repos)
    return all_repos


def members_for_orgs(client: GitHubClient, orgs: list[str]) -> list[str]:
    """Union of member logins across organisations, skipping any that fail."""
    members: dict[str, None] = {}
    for org in orgs:
        try:
            logins = fetch_org_members(client, org)
        except (TransportError, MalformedResponse):
            logger.exception("Failed to fetch members of org %s; skipping", org)
            continue
        logger.info("Found %d members of %s", len(logins), org)
        members.update(dict.fromkeys(logins))
    return list(members)


# ── Orchestrator ────────────────────────────────────────────────────────────


def fetch_repository(
    client: GitHubClient,
    full_name: str,
    since: datetime,
    max_pr_pages: int = MAX_PR_PAGES_PER_REPO,
    max_merged_pages: int = MAX_MERGED_PAGES_PER_REPO,
) -> dict[str, list[dict]]:
    """Fetch one repository's open and merged pull requests."""
    owner, name = split_full_name(full_name)
    return {
        "open": fetch_open_pull_requests(client, owner, name, max_pr_pages),
        "merged": list(_iter_merged(client, owner, name, since, max_merged_pages)),
    }


def fetch_all(
    repositories: list[str],
    days_back: int = DEFAULT_LOOKBACK_DAYS,
    client: GitHubClient | None = None,
    employees: list[str] | None = None,
    max_pr_pages: int = MAX_PR_PAGES_PER_REPO,
    max_merged_pages: int = MAX_MERGED_PAGES_PER_REPO,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Fetch every repository into a JSON-serialisable snapshot.

    A repository that fails is logged, listed under ``failed_repos`` and
    skipped; the others are still fetched. Each repository's data is added
    to the snapshot only once both of its fetches have completed.
    """
    now = now or datetime.now(timezone.utc)
    since = window_start(days_back, now)
    for full_name in repositories:
        split_full_name(full_name)

    snapshot: dict[str, Any] = {
        "fetched_at": now.isoformat(),
        "since": since.isoformat(),
        "days_back": days_back,
        "repos": {},
        "employees": list(employees or []),
        "failed_repos": [],
        "rate_limit": None,
    }

    owns_client = client is None
    client = client or GitHubClient()
    try:
        for i, full_name in enumerate(repositories, 1):
            logger.info("Fetching %s (%d/%d)", full_name, i, len(repositories))
            try:
                repo_data = fetch_repository(
                    client, full_name, since, max_pr_pages, max_merged_pages
                )
            except (TransportError, MalformedResponse):
                logger.exception("Failed to fetch %s; continuing", full_name)
                snapshot["failed_repos"].append(full_name)
                continue
            snapshot["repos"][full_name] = repo_data
            logger.info(
                "  %s: %d open, %d merged in window",
                full_name, len(repo_data["open"]), len(repo_data["merged"]),
            )

        rate_limit = client.rate_limit
        if rate_limit is not None:
            snapshot["rate_limit"] = {
                "remaining": rate_limit.remaining,
                "reset_at": rate_limit.reset_at.isoformat() if rate_limit.reset_at else None,
            }
    finally:
        if owns_client:
            client.close()

    return snapshot
