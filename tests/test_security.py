"""
Tests for the API-key gate: authentication, rolling-window rate limit and usage logging.
"""

from datetime import datetime, timedelta
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest

from fpl_predictor.errors import AuthError, RateLimitExceededError, ServiceUnavailableError
from fpl_predictor.models import ApiKey
from fpl_predictor.security import (
    API_KEY_SUFFIX_LENGTH,
    check_rate_limit,
    client_ip,
    generate_api_key,
    verify_master_key,
)


class TestGenerateApiKey:
    """Token format of issued keys."""

    def test_prefix_and_suffix(self):
        """Key is the prefix followed by 32 alphanumerics."""
        key = generate_api_key("fpl_")
        assert key.startswith("fpl_")
        suffix = key[len("fpl_"):]
        assert len(suffix) == API_KEY_SUFFIX_LENGTH
        assert suffix.isalnum()

    def test_keys_are_random(self):
        """Two issued keys never collide in practice."""
        assert generate_api_key("fpl_") != generate_api_key("fpl_")


class TestVerifyMasterKey:
    """Master secret checks for key administration."""

    def test_unconfigured_master_key_is_unavailable(self, settings):
        """No MASTER_API_KEY configured means key administration is disabled."""
        settings.MASTER_API_KEY = ""
        with pytest.raises(ServiceUnavailableError):
            verify_master_key("anything", settings)

    def test_wrong_master_key_is_forbidden(self, settings):
        """A mismatching secret is rejected with 403."""
        with pytest.raises(AuthError) as exc_info:
            verify_master_key("wrong", settings)
        assert exc_info.value.status_code == 403
        assert exc_info.value.kind == "invalid_master_key"

    def test_missing_master_key_is_forbidden(self, settings):
        with pytest.raises(AuthError):
            verify_master_key(None, settings)

    def test_matching_master_key_passes(self, settings):
        verify_master_key(settings.MASTER_API_KEY, settings)


class TestCheckRateLimit:
    """Rolling-window counting against the key's ceiling."""

    @pytest.mark.asyncio
    async def test_remaining_counts_current_request(self, settings):
        """With 3 of 5 used, this request leaves 1 remaining."""
        storage = AsyncMock()
        storage.count_usage_since.return_value = 3
        key = ApiKey(id=1, api_key="fpl_x", name="k", rate_limit=5)

        status = await check_rate_limit(key, storage, settings)

        assert status.limit == 5
        assert status.remaining == 1
        assert status.window == "1 hour"

    @pytest.mark.asyncio
    async def test_exhausted_window_raises(self, settings):
        storage = AsyncMock()
        storage.count_usage_since.return_value = 5
        key = ApiKey(id=1, api_key="fpl_x", name="k", rate_limit=5)

        with pytest.raises(RateLimitExceededError) as exc_info:
            await check_rate_limit(key, storage, settings)
        assert exc_info.value.limit == 5
        assert exc_info.value.reset_at > datetime.utcnow()

    @pytest.mark.asyncio
    async def test_count_failure_fails_open(self, settings):
        """A failed count lets the request through with unknown remaining."""
        storage = AsyncMock()
        storage.count_usage_since.side_effect = RuntimeError("db down")
        key = ApiKey(id=1, api_key="fpl_x", name="k", rate_limit=5)

        status = await check_rate_limit(key, storage, settings)

        assert status.remaining is None
        assert status.limit == 5

    @pytest.mark.asyncio
    async def test_window_is_trailing(self, settings):
        """Only events inside the configured window are counted."""
        storage = AsyncMock()
        storage.count_usage_since.return_value = 0
        key = ApiKey(id=7, api_key="fpl_x", name="k", rate_limit=5)

        before = datetime.utcnow()
        await check_rate_limit(key, storage, settings)

        api_key_id, since = storage.count_usage_since.call_args.args
        assert api_key_id == 7
        assert before - timedelta(minutes=61) < since <= before - timedelta(minutes=59)


class TestClientIp:
    """Client address resolution for usage events."""

    def _request(self, headers: dict, host="10.0.0.1"):
        client = SimpleNamespace(host=host) if host else None
        return SimpleNamespace(headers=headers, client=client)

    def test_forwarded_for_first_hop(self):
        request = self._request({"x-forwarded-for": "203.0.113.9, 10.0.0.2"})
        assert client_ip(request) == "203.0.113.9"

    def test_real_ip_fallback(self):
        request = self._request({"x-real-ip": "198.51.100.4"})
        assert client_ip(request) == "198.51.100.4"

    def test_socket_peer(self):
        assert client_ip(self._request({})) == "10.0.0.1"

    def test_unknown(self):
        assert client_ip(self._request({}, host=None)) == "unknown"


class TestGateAuthentication:
    """Authentication outcomes through a gated endpoint."""

    def test_missing_key(self, client):
        """No key at all: 401 with remediation help."""
        response = client.get("/api/predict/latest")

        assert response.status_code == 401
        body = response.json()
        assert body["success"] is False
        assert body["error"] == "missing_api_key"
        assert body["status_code"] == 401
        assert body["help"]["required_header"] == "x-api-key"

    def test_bad_prefix_rejected_before_lookup(self, client, storage):
        """A key without the prefix never reaches storage."""
        storage.get_api_key = AsyncMock(wraps=storage.get_api_key)

        response = client.get("/api/predict/latest", headers={"x-api-key": "not-prefixed"})

        assert response.status_code == 401
        body = response.json()
        assert body["error"] == "invalid_api_key_format"
        assert "fpl_" in body["message"]
        storage.get_api_key.assert_not_awaited()

    def test_unknown_key(self, client):
        response = client.get("/api/predict/latest", headers={"x-api-key": "fpl_doesnotexist"})

        assert response.status_code == 401
        assert response.json()["error"] == "invalid_api_key"

    def test_inactive_key_forbidden(self, client, make_key):
        """Disabled keys get 403, not 401."""
        make_key("fpl_disabled", is_active=False)

        response = client.get("/api/predict/latest", headers={"x-api-key": "fpl_disabled"})

        assert response.status_code == 403
        assert response.json()["error"] == "api_key_disabled"

    def test_expired_key(self, client, make_key):
        make_key("fpl_expired", expires_at=datetime.utcnow() - timedelta(days=1))

        response = client.get("/api/predict/latest", headers={"x-api-key": "fpl_expired"})

        assert response.status_code == 401
        assert response.json()["error"] == "invalid_api_key"

    def test_bearer_fallback(self, client, make_key):
        """Authorization: Bearer is accepted when the key header is absent."""
        make_key("fpl_bearer")

        response = client.get("/api/predict/latest", headers={"Authorization": "Bearer fpl_bearer"})

        assert response.status_code == 200
        assert response.json()["success"] is True

    def test_storage_outage_is_503(self, client, make_key, storage):
        """Lookup failures surface as 503 so clients can tell them from a bad key."""
        make_key("fpl_abc123")
        storage.available = False

        response = client.get("/api/predict/latest", headers={"x-api-key": "fpl_abc123"})

        assert response.status_code == 503
        assert response.json()["error"] == "service_unavailable"

    def test_last_used_at_refreshed(self, client, make_key):
        key = make_key("fpl_abc123")
        assert key.last_used_at is None

        client.get("/api/predict/latest", headers={"x-api-key": "fpl_abc123"})

        assert key.last_used_at is not None


class TestGateRateLimit:
    """Rolling-window enforcement through a gated endpoint."""

    def test_third_request_over_limit_of_two(self, client, make_key, provider, wait_for_usage):
        """Two requests pass, the third is rejected without reaching the handler."""
        make_key("fpl_abc123", rate_limit=2)
        headers = {"x-api-key": "fpl_abc123"}

        first = client.post("/api/data/sync", headers=headers)
        wait_for_usage(1)
        second = client.post("/api/data/sync", headers=headers)
        wait_for_usage(2)
        third = client.post("/api/data/sync", headers=headers)

        assert first.status_code == 200
        assert first.headers["X-RateLimit-Limit"] == "2"
        assert first.headers["X-RateLimit-Remaining"] == "1"
        assert second.status_code == 200
        assert second.headers["X-RateLimit-Remaining"] == "0"

        assert third.status_code == 429
        body = third.json()
        assert body["error"] == "rate_limit_exceeded"
        assert body["rate_limit"]["limit"] == 2
        assert body["rate_limit"]["remaining"] == 0
        assert body["rate_limit"]["reset_at"]
        assert third.headers["X-RateLimit-Remaining"] == "0"

        assert provider.calls["bootstrap"] == 2

    def test_rejected_request_still_logged(self, client, make_key, wait_for_usage):
        make_key("fpl_abc123", rate_limit=1)
        headers = {"x-api-key": "fpl_abc123"}

        client.get("/api/predict/latest", headers=headers)
        wait_for_usage(1)
        client.get("/api/predict/latest", headers=headers)
        events = wait_for_usage(2)

        assert [e.status_code for e in events] == [200, 429]

    def test_count_failure_fails_open(self, client, make_key, storage):
        """If usage cannot be counted the request is allowed."""
        make_key("fpl_abc123", rate_limit=1)
        storage.count_usage_since = AsyncMock(side_effect=RuntimeError("db down"))

        response = client.get("/api/predict/latest", headers={"x-api-key": "fpl_abc123"})

        assert response.status_code == 200
        assert response.headers["X-RateLimit-Limit"] == "1"
        assert "X-RateLimit-Remaining" not in response.headers


class TestGateUsageLogging:
    """Usage events for every request with a resolved key."""

    def test_success_logged_with_request_details(self, client, make_key, wait_for_usage):
        key = make_key("fpl_abc123")

        client.get(
            "/api/predict/latest",
            headers={
                "x-api-key": "fpl_abc123",
                "user-agent": "pytest-agent",
                "x-forwarded-for": "203.0.113.9, 10.0.0.2",
            },
        )
        events = wait_for_usage(1)

        assert len(events) == 1
        event = events[0]
        assert event.api_key_id == key.id
        assert event.endpoint == "/api/predict/latest"
        assert event.method == "GET"
        assert event.status_code == 200
        assert event.user_agent == "pytest-agent"
        assert event.ip_address == "203.0.113.9"
        assert event.response_time_ms >= 0

    def test_handler_crash_is_500_and_logged(self, client, make_key, storage, wait_for_usage):
        """An unexpected handler error is contained and still counted."""
        make_key("fpl_abc123")
        storage.count_entities = AsyncMock(side_effect=RuntimeError("boom"))

        response = client.get("/api/data/sync", headers={"x-api-key": "fpl_abc123"})

        assert response.status_code == 500
        body = response.json()
        assert body["error"] == "internal_error"
        assert body["details"] == "boom"
        events = wait_for_usage(1)
        assert events[0].status_code == 500

    def test_validation_error_logged_as_422(self, client, make_key, wait_for_usage):
        make_key("fpl_abc123")

        response = client.get("/api/predict/latest?limit=0", headers={"x-api-key": "fpl_abc123"})

        assert response.status_code == 422
        events = wait_for_usage(1)
        assert events[0].status_code == 422

    def test_daily_rollup_tracks_failures(self, client, make_key, storage, wait_for_usage):
        key = make_key("fpl_abc123")
        headers = {"x-api-key": "fpl_abc123"}

        client.get("/api/predict/latest", headers=headers)
        client.get("/api/predict/latest?limit=0", headers=headers)
        wait_for_usage(2)

        (stat,) = [s for (key_id, _), s in storage.usage_stats.items() if key_id == key.id]
        assert stat.total_requests == 2
        assert stat.successful_requests == 1
        assert stat.failed_requests == 1

    def test_auth_failures_not_logged(self, client, storage):
        client.get("/api/predict/latest", headers={"x-api-key": "fpl_unknown"})
        assert storage.usage_events == []

    def test_usage_write_failure_does_not_fail_request(self, client, make_key, storage):
        make_key("fpl_abc123")
        storage.log_usage = AsyncMock(side_effect=RuntimeError("disk full"))

        response = client.get("/api/predict/latest", headers={"x-api-key": "fpl_abc123"})

        assert response.status_code == 200
