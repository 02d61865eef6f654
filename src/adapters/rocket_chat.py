"""Rocket.Chat REST API adapter.

Implements the core BackendPort: login and the raw subscription listing the
unread aggregator works on.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, Optional

import httpx

from adapters.http_retry import json_body, request_with_retry
from core.config import RetryPolicy
from core.errors import AuthError, AuthExpiredError, BackendUnavailableError
from core.models import LoginResult

LOGGER = logging.getLogger(__name__)

LOGIN_PATH = "/api/v1/login"
SUBSCRIPTIONS_PATH = "/api/v1/subscriptions.get"

_HEADER = "header"
_BODY = "body"

# Ordered extractors for the login response; headers take precedence.
LOGIN_FIELD_SOURCES: dict[str, tuple[tuple[str, ...], ...]] = {
    "auth_token": (
        (_HEADER, "x-auth-token"),
        (_BODY, "data", "authToken"),
        (_BODY, "authToken"),
        (_BODY, "data", "X-Auth-Token"),
        (_BODY, "X-Auth-Token"),
    ),
    "user_id": (
        (_HEADER, "x-user-id"),
        (_BODY, "data", "userId"),
        (_BODY, "userId"),
        (_BODY, "data", "X-User-Id"),
        (_BODY, "X-User-Id"),
    ),
    "instance_id": (
        (_HEADER, "x-instance-id"),
        (_BODY, "data", "instanceId"),
        (_BODY, "instanceId"),
    ),
}

# Envelope keys probed in order for the subscription list.
SUBSCRIPTION_ENVELOPE_KEYS = ("subscriptions", "update")


def _dig(body: Any, path: Iterable[str]) -> Any:
    current = body
    for key in path:
        if not isinstance(current, dict):
            return None
        current = current.get(key)
    return current


def extract_login_field(
    headers: httpx.Headers,
    body: Any,
    sources: tuple[tuple[str, ...], ...],
) -> Optional[str]:
    """Return the first present value among the given header/body sources."""

    for source, *path in sources:
        value = headers.get(path[0]) if source == _HEADER else _dig(body, path)
        if value not in (None, ""):
            return str(value)
    return None


def normalize_subscriptions(body: Any) -> list[dict[str, Any]]:
    """Pull the subscription list out of whichever envelope the server used."""

    if not isinstance(body, dict):
        return []
    for key in SUBSCRIPTION_ENVELOPE_KEYS:
        value = body.get(key)
        if value is not None:
            return list(value) if isinstance(value, list) else []
    return []


def auth_headers(auth_token: str, user_id: str, instance_id: Optional[str] = None) -> dict[str, str]:
    headers = {
        "X-Auth-Token": auth_token,
        "X-User-Id": user_id,
        "Content-Type": "application/json",
    }
    if instance_id:
        headers["X-Instance-Id"] = instance_id
    return headers


class RocketChatClient:
    """Async Rocket.Chat client; one short-lived httpx client per call."""

    def __init__(
        self,
        retry_policy: RetryPolicy = RetryPolicy(),
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._retry = retry_policy
        self._timeout = timeout
        self._transport = transport

    def _http(self, server_url: str) -> httpx.AsyncClient:
        try:
            return httpx.AsyncClient(
                base_url=server_url.rstrip("/"),
                timeout=self._timeout,
                transport=self._transport,
            )
        except httpx.InvalidURL as exc:
            raise BackendUnavailableError(f"Invalid Rocket.Chat server URL: {exc}") from exc

    async def login(self, server_url: str, user: str, password: str) -> LoginResult:
        """Log in with username/password and return the issued session data."""

        async with self._http(server_url) as http:
            try:
                response = await request_with_retry(
                    lambda: http.post(
                        LOGIN_PATH,
                        json={"user": user, "password": password},
                        headers={"Content-Type": "application/json"},
                    ),
                    self._retry,
                    "Rocket.Chat login",
                )
            except AuthExpiredError as exc:
                raise AuthError("Rocket.Chat rejected the credentials") from exc

        body = json_body(response)
        auth_token = extract_login_field(response.headers, body, LOGIN_FIELD_SOURCES["auth_token"])
        user_id = extract_login_field(response.headers, body, LOGIN_FIELD_SOURCES["user_id"])
        instance_id = extract_login_field(response.headers, body, LOGIN_FIELD_SOURCES["instance_id"])

        if not auth_token or not user_id:
            LOGGER.error("Rocket.Chat login returned no auth token or user id")
            raise AuthError("Rocket.Chat login failed: missing auth data")

        LOGGER.info("Authorized in Rocket.Chat as %s", user_id[:6])
        return LoginResult(auth_token=auth_token, user_id=user_id, instance_id=instance_id)

    async def fetch_subscriptions(
        self,
        server_url: str,
        auth_token: str,
        user_id: str,
        instance_id: Optional[str] = None,
    ) -> list[dict[str, Any]]:
        """Return the raw per-conversation subscription records."""

        headers = auth_headers(auth_token, user_id, instance_id)
        async with self._http(server_url) as http:
            try:
                response = await request_with_retry(
                    lambda: http.get(SUBSCRIPTIONS_PATH, headers=headers),
                    self._retry,
                    "Rocket.Chat subscriptions.get",
                )
            except AuthExpiredError:
                LOGGER.warning("Rocket.Chat session expired for user %s", user_id[:6])
                raise
        return normalize_subscriptions(json_body(response))

