"""CLI: Compute reviewer stats and KPIs from a raw snapshot."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path

from review_pulse.config import (
    EMPLOYEE_ALLOWLIST,
    EMPLOYEE_DENYLIST,
    INCLUSION_POLICY,
    PROCESSED_DIR,
    RAW_DIR,
)
from review_pulse.dashboard import (
    build_dashboard,
    compute_review_stats,
    dashboard_to_dict,
    format_hours,
)
from review_pulse.identity import IdentityClassifier

logging.basicConfig(
    level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s"
)
logger = logging.getLogger(__name__)


def _latest_raw_file() -> Path | None:
    """Return the most recent raw snapshot file."""
    files = sorted(RAW_DIR.glob("snapshot_*.json"))
    return files[-1] if files else None


def main() -> None:
    """Load the latest snapshot, build the dashboard, and save to processed/."""
    raw_file = _latest_raw_file()
    if raw_file is None:
        print("No raw data found. Run: python scripts/fetch.py")
        return

    logger.info("Loading snapshot from %s", raw_file)
    snapshot = json.loads(raw_file.read_text())

    classifier = IdentityClassifier(
        snapshot.get("employees") or [],
        allowlist=EMPLOYEE_ALLOWLIST,
        denylist=EMPLOYEE_DENYLIST,
    )
    logger.info("Classifying reviewers against %d known employees", len(classifier))
    data = build_dashboard(snapshot, classifier, policy=INCLUSION_POLICY)
    logger.info("Aggregated %d reviewers over %d open PRs", len(data.reviewers), data.total_prs)

    PROCESSED_DIR.mkdir(parents=True, exist_ok=True)
    timestamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S")
    out_path = PROCESSED_DIR / f"dashboard_{timestamp}.json"

    serialized = {
        "_metadata": {
            "raw_file": str(raw_file),
            "computed_at": datetime.now(timezone.utc).isoformat(),
            "days_back": snapshot.get("days_back"),
            "repo_count": len(snapshot.get("repos") or {}),
        },
        **dashboard_to_dict(data),
    }
    out_path.write_text(json.dumps(serialized, indent=2))
    logger.info("Saved dashboard → %s", out_path)

    if data.degraded:
        print(f"\nWARNING: partial data, failed repositories: {', '.join(data.failed_repos)}")

    k = data.kpis
    print(
        f"\n{data.total_prs} open PRs · {k.open_community_prs} community "
        f"({k.community_pr_percentage:.0f}%) · compliance {k.reviewer_compliance_pct:.0f}% · "
        f"response {format_hours(k.median_response_time_hours)} · "
        f"review {format_hours(k.median_review_time_hours)}"
    )
    print(f"\nTop 10 reviewers by completed reviews (last {snapshot.get('days_back')} days):\n")
    for i, r in enumerate(data.reviewers[:10], 1):
        rate = f"{r.completion_rate:5.1f}%" if r.completion_rate is not None else "   n/a"
        print(
            f"  {i:2d}. {r.name:<25s}  Done={r.completed_total:3d} "
            f"(req {r.completed_requested}/{r.requested_total})  Rate={rate}  "
            f"Median={format_hours(r.median_review_time_hours):>4s}  Pending={r.pending_count}"
        )

    pending = compute_review_stats(data.prs)
    print(
        f"\n{pending.pending_review_requests} pending review requests across "
        f"{pending.unique_reviewers_with_pending} reviewers; "
        f"{pending.non_draft_prs_without_reviewers} ready PRs have no reviewer"
    )
    for name, count in pending.top_pending_reviewers:
        print(f"  {name:<25s}  {count}")


if __name__ == "__main__":
    main()
