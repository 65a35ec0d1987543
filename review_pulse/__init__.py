"""Pull-request review activity metrics for GitHub organisations."""

__version__ = "0.1.0"
