"""
Unit tests for provider HTTP helpers - retry bounds and error mapping
"""

import httpx
import pytest

from utils.error_codes import ErrorCode
from utils.exceptions import AuthenticationError, PlatformError, RateLimitedError, TransientError
from utils.http_client import raise_for_provider_status, send_with_retry


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestSendWithRetry:
    """Test bounded per-step retries"""

    async def test_retries_server_errors_then_succeeds(self, recording_sleep):
        responses = [httpx.Response(503), httpx.Response(502), httpx.Response(200, json={"ok": True})]

        async with _client(lambda request: responses.pop(0)) as client:
            response = await send_with_retry(client, "GET", "https://graph.test/me", retries=3, backoff=1.0, sleep=recording_sleep)

        assert response.status_code == 200
        assert recording_sleep.calls == [1.0, 2.0]

    async def test_returns_last_server_error_when_budget_spent(self, recording_sleep):
        async with _client(lambda request: httpx.Response(500)) as client:
            response = await send_with_retry(client, "GET", "https://graph.test/me", retries=2, sleep=recording_sleep)

        assert response.status_code == 500
        assert len(recording_sleep.calls) == 2

    async def test_client_errors_are_not_retried(self, recording_sleep):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(400, json={"error": {"message": "bad"}})

        async with _client(handler) as client:
            response = await send_with_retry(client, "POST", "https://graph.test/feed", sleep=recording_sleep)

        assert response.status_code == 400
        assert len(calls) == 1
        assert recording_sleep.calls == []

    async def test_timeouts_become_transient_after_retries(self, recording_sleep):
        """
        Business Critical: a hanging provider must end in a categorized failure
        """
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        async with _client(handler) as client:
            with pytest.raises(TransientError) as exc_info:
                await send_with_retry(client, "GET", "https://graph.test/me?access_token=secret", retries=1, sleep=recording_sleep)

        assert exc_info.value.error_code == ErrorCode.TRANSIENT
        assert "secret" not in exc_info.value.message


class TestRaiseForProviderStatus:
    """Test provider response to error taxonomy mapping"""

    def test_success_passes(self):
        raise_for_provider_status(httpx.Response(201), "FACEBOOK", "feed post")

    def test_graph_token_error_is_expired(self):
        response = httpx.Response(400, json={"error": {"message": "Session has expired", "code": 190, "error_subcode": 463}})

        with pytest.raises(AuthenticationError) as exc_info:
            raise_for_provider_status(response, "FACEBOOK", "feed post")

        assert exc_info.value.error_code == ErrorCode.AUTH_TOKEN_EXPIRED
        assert not exc_info.value.revoked

    def test_graph_token_error_with_revocation_subcode_is_revoked(self):
        response = httpx.Response(400, json={"error": {"message": "User removed app", "code": 190, "error_subcode": 458}})

        with pytest.raises(AuthenticationError) as exc_info:
            raise_for_provider_status(response, "INSTAGRAM", "container create")

        assert exc_info.value.error_code == ErrorCode.AUTH_TOKEN_REVOKED

    def test_unauthorized_is_expired(self):
        with pytest.raises(AuthenticationError):
            raise_for_provider_status(httpx.Response(401, json={"title": "Unauthorized"}), "TWITTER", "create tweet")

    def test_rate_limit_keeps_retry_after(self):
        response = httpx.Response(429, headers={"Retry-After": "60"}, json={"errors": [{"message": "Too Many Requests"}]})

        with pytest.raises(RateLimitedError) as exc_info:
            raise_for_provider_status(response, "TWITTER", "create tweet")

        assert exc_info.value.details["retry_after"] == "60"

    def test_other_client_error_is_permanent_rejection(self):
        response = httpx.Response(403, json={"detail": "You are not allowed to create a Tweet with duplicate content."})

        with pytest.raises(PlatformError) as exc_info:
            raise_for_provider_status(response, "TWITTER", "create tweet")

        assert exc_info.value.error_code == ErrorCode.PROVIDER_REJECTED
        assert "duplicate content" in exc_info.value.message


class TestSingleShotCalls:
    """Test calls sent without a retry budget"""

    async def test_timeout_without_retries_is_transient(self, recording_sleep):
        calls = []

        def handler(request):
            calls.append(request)
            raise httpx.ConnectError("connection reset", request=request)

        async with _client(handler) as client:
            with pytest.raises(TransientError) as exc_info:
                await send_with_retry(client, "POST", "https://api.twitter.test/2/tweets", retries=0, sleep=recording_sleep)

        assert len(calls) == 1
        assert recording_sleep.calls == []
        assert exc_info.value.details == {"attempts": 1}

    async def test_server_error_without_retries_is_returned(self, recording_sleep):
        async with _client(lambda request: httpx.Response(503)) as client:
            response = await send_with_retry(client, "POST", "https://api.twitter.test/2/tweets", retries=0, sleep=recording_sleep)

        assert response.status_code == 503
        assert recording_sleep.calls == []
