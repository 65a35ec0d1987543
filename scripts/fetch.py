"""CLI: Fetch open and recently merged PRs for the target orgs via GitHub API."""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone

from review_pulse.config import (
    DEFAULT_LOOKBACK_DAYS,
    RAW_DIR,
    TARGET_ORGS,
    TARGET_REPOSITORIES,
)
from review_pulse.fetcher import fetch_all, members_for_orgs, repositories_for_orgs
from review_pulse.github_client import GitHubClient

logging.basicConfig(
    level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s"
)
logger = logging.getLogger(__name__)


def main() -> None:
    """Fetch a snapshot and save it to data/raw/."""
    days_back = int(sys.argv[1]) if len(sys.argv) > 1 else DEFAULT_LOOKBACK_DAYS

    RAW_DIR.mkdir(parents=True, exist_ok=True)
    with GitHubClient() as client:
        employees = members_for_orgs(client, TARGET_ORGS)
        repositories = TARGET_REPOSITORIES or repositories_for_orgs(client, TARGET_ORGS)
        logger.info(
            "Fetching %d repositories, %d-day window, %d known employees",
            len(repositories), days_back, len(employees),
        )
        snapshot = fetch_all(repositories, days_back, client=client, employees=employees)

    timestamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S")
    out_path = RAW_DIR / f"snapshot_{timestamp}.json"
    out_path.write_text(json.dumps(snapshot, indent=2, default=str))
    logger.info("Saved snapshot of %d repositories → %s", len(snapshot["repos"]), out_path)
    if snapshot["failed_repos"]:
        logger.warning("Failed repositories: %s", ", ".join(snapshot["failed_repos"]))


if __name__ == "__main__":
    main()
