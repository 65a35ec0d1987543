"""Exception types raised across the package."""

from __future__ import annotations

from review_pulse.models import RateLimit


class ReviewPulseError(Exception):
    """Base class for all review_pulse errors."""


class InvalidParameter(ReviewPulseError, ValueError):
    """A caller-supplied argument is out of range. Raised before any I/O."""


class TransportError(ReviewPulseError):
    """GitHub returned a non-success response or could not be reached.

    ``status`` is ``None`` when no HTTP response was received at all.
    """

    def __init__(
        self,
        message: str,
        status: int | None = None,
        rate_limit: RateLimit | None = None,
    ) -> None:
        super().__init__(message)
        self.status = status
        self.rate_limit = rate_limit


class MalformedResponse(ReviewPulseError):
    """A GitHub payload did not have the expected shape."""
