"""Tests for the GitHub transport, driven through ``httpx.MockTransport``."""

from __future__ import annotations

from datetime import datetime, timezone

import httpx
import pytest

from review_pulse.errors import InvalidParameter, MalformedResponse, TransportError
from review_pulse.github_client import GitHubClient


# ── Helpers ─────────────────────────────────────────────────────────────────

RESET_AT = "2024-03-01T12:00:00Z"


def _client(handler, retry_max: int = 3) -> GitHubClient:
    return GitHubClient("test-token", transport=httpx.MockTransport(handler), retry_max=retry_max)


@pytest.fixture(autouse=True)
def _no_sleep(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr("review_pulse.github_client.time.sleep", lambda seconds: None)


# ── GraphQL ─────────────────────────────────────────────────────────────────


def test_graphql_returns_data_and_tracks_rate_limit() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={
            "data": {
                "viewer": {"login": "octocat"},
                "rateLimit": {"cost": 1, "remaining": 4999, "resetAt": RESET_AT},
            }
        })

    with _client(handler) as client:
        assert client.rate_limit is None
        data = client.graphql("query { viewer { login } }", {"x": 1})

    assert data["viewer"] == {"login": "octocat"}
    assert client.rate_limit.remaining == 4999
    assert client.rate_limit.reset_at == datetime(2024, 3, 1, 12, tzinfo=timezone.utc)
    assert seen[0].method == "POST"
    assert seen[0].headers["Authorization"] == "Bearer test-token"


def test_graphql_errors_raise_transport_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={
            "data": None,
            "errors": [{"message": "Could not resolve to a Repository"}],
        })

    with _client(handler) as client:
        with pytest.raises(TransportError, match="Could not resolve") as excinfo:
            client.graphql("query { x }")
    assert excinfo.value.status == 200


def test_graphql_without_data_is_malformed() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"unexpected": True})

    with _client(handler) as client:
        with pytest.raises(MalformedResponse):
            client.graphql("query { x }")


def test_non_json_body_is_malformed() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="<html>gateway</html>")

    with _client(handler) as client:
        with pytest.raises(MalformedResponse):
            client.graphql("query { x }")


# ── Failures ────────────────────────────────────────────────────────────────


def test_server_error_carries_status_and_rate_limit() -> None:
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(
            500,
            headers={"X-RateLimit-Remaining": "1234", "X-RateLimit-Reset": "1709294400"},
        )

    with _client(handler) as client:
        with pytest.raises(TransportError) as excinfo:
            client.graphql("query { x }")

    err = excinfo.value
    assert err.status == 500
    assert err.rate_limit.remaining == 1234
    assert err.rate_limit.reset_at == datetime(2024, 3, 1, 12, tzinfo=timezone.utc)
    assert len(calls) == 1


def test_forbidden_on_last_attempt_raises() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(403, headers={"Retry-After": "1"})

    with _client(handler, retry_max=1) as client:
        with pytest.raises(TransportError) as excinfo:
            client.rest_get("/rate_limit")
    assert excinfo.value.status == 403


def test_rate_limited_request_is_retried() -> None:
    responses = iter([
        httpx.Response(429, headers={"Retry-After": "1"}),
        httpx.Response(200, json=[{"full_name": "acme/widgets"}]),
    ])

    def handler(request: httpx.Request) -> httpx.Response:
        return next(responses)

    with _client(handler, retry_max=2) as client:
        assert client.rest_get("/orgs/acme/repos") == [{"full_name": "acme/widgets"}]


def test_connection_error_has_no_status() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with _client(handler, retry_max=2) as client:
        with pytest.raises(TransportError) as excinfo:
            client.graphql("query { x }")
    assert excinfo.value.status is None


# ── REST ────────────────────────────────────────────────────────────────────


def test_rest_get_sends_params() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.method == "GET"
        assert request.url.path == "/orgs/acme/repos"
        assert request.url.params["page"] == "2"
        return httpx.Response(200, json=[], headers={"X-RateLimit-Remaining": "42"})

    with _client(handler) as client:
        assert client.rest_get("/orgs/acme/repos", params={"page": 2}) == []
        assert client.rate_limit.remaining == 42
        assert client.rate_limit.reset_at is None


# ── Construction ────────────────────────────────────────────────────────────


def test_missing_token_is_rejected(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr("review_pulse.github_client.GITHUB_TOKEN", None)
    with pytest.raises(InvalidParameter):
        GitHubClient()


def test_retry_max_must_be_positive() -> None:
    with pytest.raises(InvalidParameter):
        GitHubClient("test-token", retry_max=0)


def test_permission_denied_is_not_retried() -> None:
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(403, headers={"X-RateLimit-Remaining": "4000"})

    with _client(handler, retry_max=3) as client:
        with pytest.raises(TransportError) as excinfo:
            client.graphql("query { x }")
    assert excinfo.value.status == 403
    assert len(calls) == 1


def test_exhausted_rate_limit_403_is_retried(monkeypatch: pytest.MonkeyPatch) -> None:
    slept: list[float] = []
    monkeypatch.setattr("review_pulse.github_client.time.sleep", slept.append)
    responses = iter([
        httpx.Response(403, headers={"X-RateLimit-Remaining": "0", "X-RateLimit-Reset": "0"}),
        httpx.Response(200, json=[], headers={"X-RateLimit-Remaining": "5000"}),
    ])

    with _client(lambda request: next(responses), retry_max=2) as client:
        assert client.rest_get("/orgs/acme/repos") == []
    assert slept
