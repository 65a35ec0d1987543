"""Streamlit dashboard for pull-request review activity."""

from __future__ import annotations

import json
from pathlib import Path

import pandas as pd
import plotly.graph_objects as go
import streamlit as st

from review_pulse.config import DEFAULT_TOP_N, EMPLOYEE_ALLOWLIST, EMPLOYEE_DENYLIST
from review_pulse.dashboard import build_dashboard, dashboard_to_dict, format_hours
from review_pulse.identity import IdentityClassifier

RAW_DIR = Path(__file__).resolve().parent.parent / "data" / "raw"


# ── Data loading (cached) ──────────────────────────────────────────────────

@st.cache_data
def _load_latest_snapshot() -> dict | None:
    """Load the most recent raw snapshot written by scripts/fetch.py."""
    files = sorted(RAW_DIR.glob("snapshot_*.json"))
    if not files:
        return None
    return json.loads(files[-1].read_text())


@st.cache_data
def _build(snapshot: dict, policy: str) -> dict:
    """Re-run reconciliation and aggregation in memory."""
    classifier = IdentityClassifier(
        snapshot.get("employees") or [],
        allowlist=EMPLOYEE_ALLOWLIST,
        denylist=EMPLOYEE_DENYLIST,
    )
    return dashboard_to_dict(build_dashboard(snapshot, classifier, policy=policy))


# ── Dashboard ───────────────────────────────────────────────────────────────

def main() -> None:
    """Render the Streamlit dashboard."""
    st.set_page_config(page_title="PR Review Activity", layout="wide")

    snapshot = _load_latest_snapshot()
    if snapshot is None:
        st.error(
            "No snapshot found. Run the fetcher first:\n\n"
            "```bash\n"
            "python scripts/fetch.py\n"
            "```"
        )
        return

    with st.sidebar:
        st.header("Filters")
        top_n = st.slider("Top N reviewers", min_value=5, max_value=50, value=DEFAULT_TOP_N)
        policy = st.radio(
            "Reviewer inclusion",
            options=["active", "classified"],
            help="'active' also lists non-employees with review activity; "
                 "'classified' lists known employees only.",
        )
        hide_idle = st.toggle("Hide reviewers with no completed reviews", value=False)

    data = _build(snapshot, policy)
    kpis = data["kpis"]

    # ── Compact header ───────────────────────────────────────────────────
    col_h1, col_h2 = st.columns([3, 2])
    with col_h1:
        st.markdown("## Pull Request Review Activity")
        st.caption("Pending load · completion rate · response latency")
    with col_h2:
        st.caption(
            f"{len(snapshot.get('repos') or {})} repositories · {data['total_prs']} open PRs · "
            f"last {snapshot.get('days_back', '?')} days · fetched {snapshot.get('fetched_at', '')[:10]}"
        )

    if data["degraded"]:
        st.warning(
            "Partial data: these repositories failed to load: "
            + ", ".join(data["failed_repos"])
        )

    # ── KPI row ──────────────────────────────────────────────────────────
    cols = st.columns(6)
    cols[0].metric(
        "Open community PRs",
        kpis["open_community_prs"],
        f"{kpis['community_pr_percentage']:.0f}% of open",
        delta_color="off",
    )
    cols[1].metric("Median first response", format_hours(kpis["median_response_time_hours"]))
    cols[2].metric("Median first review", format_hours(kpis["median_review_time_hours"]))
    cols[3].metric("Reviewer compliance", f"{kpis['reviewer_compliance_pct']:.0f}%")
    cols[4].metric("Pending reviews", kpis["pending_reviews"])
    cols[5].metric("PRs without reviewers", kpis["prs_without_reviewers"])

    df = pd.DataFrame(data["reviewers"])
    if df.empty:
        st.warning("No reviewers found in the snapshot.")
        return
    if hide_idle:
        df = df[df["completed_total"] > 0]
    filtered = df.head(top_n)
    if filtered.empty:
        st.warning("No reviewers match the current filters.")
        return

    # ── Side-by-side: table (left) + chart (right) ──────────────────────
    display_df = filtered[
        [
            "name",
            "pending_count",
            "completed_total",
            "completed_requested",
            "completed_unrequested",
            "requested_total",
            "completion_rate",
            "median_review_time_hours",
        ]
    ].copy()
    display_df["median_review_time_hours"] = display_df["median_review_time_hours"].apply(
        format_hours
    )
    display_df = display_df.rename(columns={
        "name": "Reviewer",
        "pending_count": "Pending",
        "completed_total": "Completed",
        "completed_requested": "Requested & Done",
        "completed_unrequested": "Unrequested",
        "requested_total": "Requests",
        "completion_rate": "Completion %",
        "median_review_time_hours": "Median Time",
    })
    display_df = display_df.reset_index(drop=True)
    display_df.index = display_df.index + 1

    col_table, col_chart = st.columns([3, 2])

    with col_table:
        st.markdown(f"**Top {len(filtered)} Reviewers**")
        st.dataframe(
            display_df.style.format({"Completion %": "{:.0f}"}, na_rep="n/a"),
            use_container_width=True,
        )

    with col_chart:
        st.markdown("**Requested vs Unrequested Reviews**")
        fig = go.Figure()
        fig.add_trace(go.Bar(
            x=filtered["name"],
            y=filtered["completed_requested"],
            name="Requested",
            marker_color="#4ECDC4",
        ))
        fig.add_trace(go.Bar(
            x=filtered["name"],
            y=filtered["completed_unrequested"],
            name="Unrequested",
            marker_color="#FF6B6B",
        ))
        fig.update_layout(
            barmode="stack",
            xaxis_title="Reviewer",
            yaxis_title="Reviews completed",
            legend=dict(orientation="h", yanchor="bottom", y=1.02, xanchor="right", x=1),
            margin=dict(t=10, b=40, l=50, r=10),
        )
        st.plotly_chart(fig, use_container_width=True)

    # ── Contributor-class breakdown (collapsed) ──────────────────────────
    with st.expander("Review latency by PR author class"):
        breakdown = filtered[
            [
                "name",
                "community_prs_reviewed",
                "median_community_review_time_hours",
                "org_member_prs_reviewed",
                "median_org_member_review_time_hours",
                "bot_prs_reviewed",
                "median_bot_review_time_hours",
            ]
        ].copy()
        for col in breakdown.columns:
            if col.startswith("median_"):
                breakdown[col] = breakdown[col].apply(format_hours)
        st.dataframe(breakdown, use_container_width=True)

    # ── Open PRs needing attention ───────────────────────────────────────
    with st.expander("Open PRs awaiting a first response"):
        prs = pd.DataFrame(data["prs"])
        if not prs.empty:
            waiting = prs[prs["needs_first_response"] & ~prs["is_draft"]]
            for _, pr in waiting.sort_values("age_hours", ascending=False).iterrows():
                flag = " ⚠ overdue" if pr["overdue_first_response"] else ""
                st.markdown(
                    f"- [{pr['repo']}#{pr['number']}: {pr['title']}]({pr['url']}) "
                    f"— {pr['author_login']} ({pr['author_type']}), "
                    f"{format_hours(pr['age_hours'])} old{flag}"
                )

    # ── Methodology ──────────────────────────────────────────────────────
    with st.expander("How the numbers work"):
        st.markdown("""
- **Pending** — open PRs currently requesting this reviewer.
- **Completed** — approvals, change requests and comment reviews submitted in the window.
- **Requested & Done** — reviews that fulfilled a review request. Only the first review
  after a request counts; a request never applies to reviews submitted before it, and a
  re-request keeps the original request time.
- **Unrequested** — every other completed review.
- **Completion %** — Requested & Done ÷ requests received in the window.
- **Median Time** — median hours from request to the fulfilling review.
""")


if __name__ == "__main__":
    main()
