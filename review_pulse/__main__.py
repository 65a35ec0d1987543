"""Entry-point for ``python -m review_pulse``."""

from __future__ import annotations

import sys

from review_pulse import __version__


def main() -> None:
    """Print a short help message and exit."""
    print(
        f"review_pulse v{__version__}\n"
        "\n"
        "Reviewer load, completion rate and response latency for GitHub orgs\n"
        "\n"
        "Usage:\n"
        "  python -m review_pulse                Show this help message\n"
        "  python scripts/fetch.py [DAYS]        Fetch PRs and timelines via GitHub API\n"
        "  python scripts/score.py               Compute reviewer stats and KPIs\n"
        "  streamlit run app/streamlit_app.py     Launch the dashboard\n"
    )
    sys.exit(0)


if __name__ == "__main__":
    main()
