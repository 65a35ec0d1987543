"""Centralised configuration and constants."""

from __future__ import annotations

import os
from pathlib import Path


def _csv_env(name: str, default: str = "") -> list[str]:
    """Split a comma-separated environment variable into trimmed items."""
    return [item.strip() for item in os.getenv(name, default).split(",") if item.strip()]


# ── Paths ───────────────────────────────────────────────────────────────────
PROJECT_ROOT: Path = Path(__file__).resolve().parent.parent
DATA_DIR: Path = PROJECT_ROOT / "data"
RAW_DIR: Path = DATA_DIR / "raw"
PROCESSED_DIR: Path = DATA_DIR / "processed"

# ── GitHub API ──────────────────────────────────────────────────────────────
GITHUB_TOKEN: str | None = os.getenv("GITHUB_TOKEN")
GITHUB_API_BASE: str = "https://api.github.com"
GRAPHQL_URL: str = "https://api.github.com/graphql"
USER_AGENT: str = "review-pulse/0.1"
REQUEST_TIMEOUT: int = 30  # seconds

# ── Targets ────────────────────────────────────────────────────────────────
TARGET_ORGS: list[str] = _csv_env("REVIEW_PULSE_ORGS", "All-Hands-AI")
# Explicit "owner/name" entries; when set, org repository listing is skipped.
TARGET_REPOSITORIES: list[str] = _csv_env("REVIEW_PULSE_REPOS")

# ── Fetch settings ─────────────────────────────────────────────────────────
DEFAULT_LOOKBACK_DAYS: int = int(os.getenv("REVIEW_PULSE_DAYS_BACK", "30"))
MAX_PR_PAGES_PER_REPO: int = 10
MAX_MERGED_PAGES_PER_REPO: int = 5
MAX_MEMBER_PAGES: int = 50
PR_PAGE_SIZE: int = 50
TIMELINE_PAGE_SIZE: int = 100
REVIEW_REQUEST_PAGE_SIZE: int = 20
LABEL_PAGE_SIZE: int = 20
REVIEW_PAGE_SIZE: int = 50
REPO_PER_PAGE: int = 100
RATE_LIMIT_BUFFER: int = 5
RETRY_MAX: int = 3
RETRY_BACKOFF: float = 2.0  # seconds, exponential base

# ── Review semantics ───────────────────────────────────────────────────────
SUBSTANTIVE_REVIEW_STATES: frozenset[str] = frozenset(
    {"APPROVED", "CHANGES_REQUESTED", "COMMENTED"}
)
WRITE_ACCESS_ASSOCIATIONS: frozenset[str] = frozenset(
    {"COLLABORATOR", "MEMBER", "OWNER"}
)

# ── SLAs ───────────────────────────────────────────────────────────────────
FIRST_RESPONSE_SLA_HOURS: float = 72.0
FIRST_REVIEW_SLA_HOURS: float = 168.0

# ── Reviewer table ─────────────────────────────────────────────────────────
# "active": classified reviewers plus anyone with review activity.
# "classified": classified reviewers only.
INCLUSION_POLICY: str = os.getenv("REVIEW_PULSE_INCLUSION_POLICY", "active")
EMPLOYEE_ALLOWLIST: list[str] = _csv_env("REVIEW_PULSE_EMPLOYEE_ALLOWLIST")
EMPLOYEE_DENYLIST: list[str] = _csv_env("REVIEW_PULSE_EMPLOYEE_DENYLIST")
# Per-class latency medians below this sample count are reported as None.
MIN_CLASS_SAMPLE_SIZE: int = 3
TOP_PENDING_REVIEWERS: int = 10

# ── Dashboard defaults ─────────────────────────────────────────────────────
DEFAULT_TOP_N: int = 15
