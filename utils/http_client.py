"""
HTTP client factory and provider-call helpers
"""

import asyncio
from typing import Any, Awaitable, Callable, Optional

import httpx
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    retry_if_result,
    stop_after_attempt,
    wait_exponential,
)

from utils.exceptions import AuthenticationError, PlatformError, RateLimitedError, TransientError
from utils.logging import get_logger

logger = get_logger(__name__)

Sleep = Callable[[float], Awaitable[Any]]

# Graph API error code for invalid/expired OAuth tokens and the subcodes meaning the
# user removed the app or changed their password
_GRAPH_TOKEN_ERROR = 190
_GRAPH_REVOKED_SUBCODES = {458, 460}
# OAuth2 token endpoint error for a dead refresh token or authorization code
_OAUTH_INVALID_GRANT = "invalid_grant"


def get_async_client(
    timeout: float = 30.0,
    max_connections: int = 100,
    max_keepalive: int = 10
) -> httpx.AsyncClient:
    """
    Return an AsyncClient with connection limits and a bounded default timeout.

    Args:
        timeout: request timeout in seconds
        max_connections: maximum number of connections
        max_keepalive: maximum number of keep-alive connections
    """
    limits = httpx.Limits(max_keepalive_connections=max_keepalive, max_connections=max_connections)
    return httpx.AsyncClient(limits=limits, timeout=timeout)


async def send_with_retry(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    *,
    retries: int = 3,
    backoff: float = 1.0,
    sleep: Sleep = asyncio.sleep,
    **kwargs: Any,
) -> httpx.Response:
    """
    Send one provider request, retrying timeouts, connection errors and 5xx.

    Retries are bounded to this single step. Once the budget is spent a 5xx response is
    returned to the caller and a transport failure becomes TransientError.
    """
    public_url = _strip_query(url)

    def log_retry(retry_state: RetryCallState) -> None:
        outcome = retry_state.outcome
        if outcome.failed:
            logger.warning("Provider request failed, retrying", url=public_url, attempt=retry_state.attempt_number, error=type(outcome.exception()).__name__)
        else:
            logger.warning("Provider returned server error, retrying", url=public_url, status_code=outcome.result().status_code, attempt=retry_state.attempt_number)

    def give_up(retry_state: RetryCallState) -> httpx.Response:
        outcome = retry_state.outcome
        if outcome.failed:
            raise TransientError(
                f"{method} {public_url} failed: {type(outcome.exception()).__name__}",
                {"attempts": retry_state.attempt_number}
            ) from outcome.exception()
        return outcome.result()

    retrying = AsyncRetrying(
        retry=retry_if_exception_type(httpx.TransportError) | retry_if_result(_is_server_error),
        stop=stop_after_attempt(retries + 1),
        wait=wait_exponential(multiplier=backoff),
        sleep=sleep,
        before_sleep=log_retry,
        retry_error_callback=give_up,
    )
    return await retrying(client.request, method, url, **kwargs)


def _is_server_error(response: httpx.Response) -> bool:
    return response.status_code >= 500


def raise_for_provider_status(response: httpx.Response, provider: str, action: str) -> None:
    """Map a non-2xx provider response onto the error taxonomy"""
    if response.is_success:
        return

    detail = _error_detail(response)
    details = {"provider": provider, "status_code": response.status_code, "detail": detail}
    message = f"{provider} {action} failed: {detail}" if detail else f"{provider} {action} failed"

    graph_error = _graph_error(response)
    if graph_error and graph_error.get("code") == _GRAPH_TOKEN_ERROR:
        revoked = graph_error.get("error_subcode") in _GRAPH_REVOKED_SUBCODES
        raise AuthenticationError(message, details, revoked=revoked)

    if response.status_code == 401 or json_or_empty(response).get("error") == _OAUTH_INVALID_GRANT:
        raise AuthenticationError(message, details)
    if response.status_code == 429:
        retry_after = response.headers.get("Retry-After")
        if retry_after:
            details["retry_after"] = retry_after
        raise RateLimitedError(message, details)
    if response.status_code >= 500:
        raise TransientError(message, details)
    raise PlatformError(message, details)


def json_or_empty(response: httpx.Response) -> dict:
    try:
        data = response.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


def _graph_error(response: httpx.Response) -> Optional[dict]:
    error = json_or_empty(response).get("error")
    return error if isinstance(error, dict) else None


def _error_detail(response: httpx.Response) -> str:
    data = json_or_empty(response)
    error = data.get("error")
    if isinstance(error, dict):
        return str(error.get("message") or error.get("code") or "")
    if isinstance(error, str):
        return data.get("error_description") or error
    if data.get("errors"):
        first = data["errors"][0]
        return str(first.get("message") or first.get("detail") or first) if isinstance(first, dict) else str(first)
    if data.get("detail"):
        return str(data["detail"])
    return response.text[:300]


def _strip_query(url: str) -> str:
    # Query strings carry access tokens for Graph API calls
    return url.split("?", 1)[0]
