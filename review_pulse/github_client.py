"""GitHub API client supporting both REST and GraphQL with rate-limit tracking."""

from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from typing import Any

import httpx

from review_pulse.config import (
    GITHUB_API_BASE,
    GITHUB_TOKEN,
    GRAPHQL_URL,
    RATE_LIMIT_BUFFER,
    REQUEST_TIMEOUT,
    RETRY_BACKOFF,
    RETRY_MAX,
    USER_AGENT,
)
from review_pulse.errors import InvalidParameter, MalformedResponse, TransportError
from review_pulse.models import RateLimit

logger = logging.getLogger(__name__)


class GitHubClient:
    """Unified GitHub client for REST and GraphQL.

    Connection failures and rate-limited responses (429, or 403 with
    rate-limit headers) are retried up to ``retry_max`` attempts; any other
    non-success response, including a permission 403, raises
    ``TransportError`` immediately with the latest rate-limit snapshot.
    """

    def __init__(
        self,
        token: str | None = None,
        *,
        transport: httpx.BaseTransport | None = None,
        retry_max: int = RETRY_MAX,
    ) -> None:
        self._token = token or GITHUB_TOKEN
        if not self._token:
            raise InvalidParameter(
                "GITHUB_TOKEN is required. Set it as an environment variable."
            )
        if retry_max < 1:
            raise InvalidParameter("retry_max must be at least 1")
        self._client = httpx.Client(
            headers={
                "Authorization": f"Bearer {self._token}",
                "Accept": "application/vnd.github+json",
                "User-Agent": USER_AGENT,
            },
            timeout=REQUEST_TIMEOUT,
            transport=transport,
        )
        self._retry_max = retry_max
        self._remaining: int | None = None
        self._reset_at: float = 0.0

    @property
    def rate_limit(self) -> RateLimit | None:
        """Most recent rate-limit snapshot, or ``None`` before any response."""
        if self._remaining is None:
            return None
        reset_at = (
            datetime.fromtimestamp(self._reset_at, tz=timezone.utc)
            if self._reset_at
            else None
        )
        return RateLimit(remaining=self._remaining, reset_at=reset_at)

    # ── GraphQL ─────────────────────────────────────────────────────────

    def graphql(
        self,
        query: str,
        variables: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Execute a GraphQL query. Should include a ``rateLimit`` selection.

        Returns the ``data`` dict from the response.
        """
        payload: dict[str, Any] = {"query": query}
        if variables:
            payload["variables"] = variables

        resp = self._send("POST", GRAPHQL_URL, json=payload)
        body = self._decode(resp)
        if not isinstance(body, dict):
            raise MalformedResponse("GraphQL response body is not an object")

        data = body.get("data")
        rate_info = data.get("rateLimit") if isinstance(data, dict) else None
        if rate_info:
            self._update_rate_limit(rate_info)

        if body.get("errors"):
            error_msg = "; ".join(
                e.get("message", str(e)) if isinstance(e, dict) else str(e)
                for e in body["errors"]
            )
            raise TransportError(
                f"GraphQL errors: {error_msg}",
                status=resp.status_code,
                rate_limit=self.rate_limit,
            )

        if not isinstance(data, dict):
            raise MalformedResponse("GraphQL response has no data object")
        return data

    # ── REST ────────────────────────────────────────────────────────────

    def rest_get(
        self,
        endpoint: str,
        params: dict[str, Any] | None = None,
    ) -> Any:
        """Send a GET request to the GitHub REST API and return parsed JSON."""
        url = f"{GITHUB_API_BASE}{endpoint}"
        return self._decode(self._send("GET", url, params=params))

    # ── Transport ───────────────────────────────────────────────────────

    def _send(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        for attempt in range(1, self._retry_max + 1):
            self._wait_if_rate_limited()

            try:
                resp = self._client.request(method, url, **kwargs)
            except httpx.TransportError as exc:
                logger.warning(
                    "Transport error (attempt %d/%d): %s", attempt, self._retry_max, exc
                )
                if attempt == self._retry_max:
                    raise TransportError(
                        f"All {self._retry_max} attempts failed: {exc}",
                        rate_limit=self.rate_limit,
                    ) from exc
                time.sleep(RETRY_BACKOFF ** attempt)
                continue

            self._track_headers(resp)

            if self._is_rate_limited(resp) and attempt < self._retry_max:
                self._handle_rate_limit_response(resp, attempt)
                continue

            if resp.is_error:
                raise TransportError(
                    f"GitHub API error: {resp.status_code} {resp.reason_phrase}",
                    status=resp.status_code,
                    rate_limit=self.rate_limit,
                )
            return resp

        # Unreachable: the last attempt either returns or raises.
        raise TransportError(f"All {self._retry_max} attempts failed")

    @staticmethod
    def _decode(resp: httpx.Response) -> Any:
        try:
            return resp.json()
        except ValueError as exc:
            raise MalformedResponse(
                f"Non-JSON response from {resp.request.url}"
            ) from exc

    # ── Rate-limit helpers ──────────────────────────────────────────────

    def _track_headers(self, resp: httpx.Response) -> None:
        """Update rate-limit state from REST-style response headers."""
        remaining = resp.headers.get("X-RateLimit-Remaining")
        reset_ts = resp.headers.get("X-RateLimit-Reset")
        if remaining is not None:
            self._remaining = int(remaining)
        if reset_ts is not None:
            self._reset_at = float(reset_ts)

    def _wait_if_rate_limited(self) -> None:
        """Sleep if remaining API points are below the safety buffer."""
        if self._remaining is not None and self._remaining < RATE_LIMIT_BUFFER:
            wait = max(0.0, self._reset_at - time.time()) + 5
            logger.info(
                "Rate limit low (%d remaining). Sleeping %.0fs.",
                self._remaining,
                wait,
            )
            time.sleep(wait)

    @staticmethod
    def _is_rate_limited(resp: httpx.Response) -> bool:
        """429, or a 403 that carries rate-limit signals. Other 403s are permission errors."""
        if resp.status_code == 429:
            return True
        return resp.status_code == 403 and (
            "Retry-After" in resp.headers
            or resp.headers.get("X-RateLimit-Remaining") == "0"
        )

    def _handle_rate_limit_response(self, resp: httpx.Response, attempt: int) -> None:
        """Sleep for ``Retry-After``, else until the rate-limit reset."""
        if "Retry-After" in resp.headers:
            retry_after = int(resp.headers["Retry-After"])
        elif self._reset_at:
            retry_after = max(1, int(self._reset_at - time.time()) + 1)
        else:
            retry_after = 60
        logger.warning(
            "Rate limited (HTTP %d). Sleeping %ds (attempt %d/%d).",
            resp.status_code,
            retry_after,
            attempt,
            self._retry_max,
        )
        time.sleep(retry_after)

    def _update_rate_limit(self, rate_info: dict[str, Any]) -> None:
        """Update internal rate-limit state from a GraphQL rateLimit field."""
        self._remaining = rate_info.get("remaining", self._remaining)
        reset_at_str = rate_info.get("resetAt")
        if reset_at_str:
            reset_dt = datetime.fromisoformat(reset_at_str.replace("Z", "+00:00"))
            self._reset_at = reset_dt.timestamp()
        logger.debug("Rate limit: remaining=%s", self._remaining)

    # ── Context manager ─────────────────────────────────────────────────

    def close(self) -> None:
        """Close the underlying HTTP client."""
        self._client.close()

    def __enter__(self) -> GitHubClient:
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()
