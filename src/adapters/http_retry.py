"""Retry wrapper shared by the backend HTTP adapters.

A 401 is never retried: it means the session is stale, and only a new login
can fix it. A malformed URL is not retried either. Everything else (transport
errors, other HTTP error statuses) is retried with exponential backoff and
surfaces as BackendUnavailableError once the attempt budget is spent.
"""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable

import httpx
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from core.config import RetryPolicy
from core.errors import AuthExpiredError, BackendUnavailableError

LOGGER = logging.getLogger(__name__)


async def request_with_retry(
    send: Callable[[], Awaitable[httpx.Response]],
    policy: RetryPolicy,
    label: str,
) -> httpx.Response:
    """Run ``send`` under the retry policy and return the successful response."""

    retrying = AsyncRetrying(
        stop=stop_after_attempt(policy.attempts),
        wait=wait_exponential(multiplier=policy.base_delay),
        retry=retry_if_not_exception_type((AuthExpiredError, httpx.InvalidURL)),
        before_sleep=before_sleep_log(LOGGER, logging.WARNING),
        reraise=True,
    )
    try:
        async for attempt in retrying:
            with attempt:
                response = await send()
                if response.status_code == 401:
                    raise AuthExpiredError(f"{label}: session rejected (401)")
                response.raise_for_status()
                return response
    except httpx.InvalidURL as exc:
        raise BackendUnavailableError(f"{label} failed: invalid URL ({exc})") from exc
    except httpx.HTTPError as exc:
        raise BackendUnavailableError(
            f"{label} failed after {policy.attempts} attempts: {type(exc).__name__}"
        ) from exc
    raise BackendUnavailableError(f"{label} failed without a response")


def json_body(response: httpx.Response) -> Any:
    """Decode a JSON body, returning an empty dict for empty or invalid payloads."""

    try:
        return response.json()
    except ValueError:
        return {}
