"""Pachca REST API adapter.

Public API calls authenticate with a bearer token. The internal
``/chats/unread_ids`` endpoint needs the web session cookie and is only
used when one is configured.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Optional

import httpx

from adapters.http_retry import json_body, request_with_retry
from core.config import PachcaConfig, RetryPolicy
from core.errors import ConfigError

LOGGER = logging.getLogger(__name__)

DEFAULT_INTERNAL_BASE_URL = "https://app.pachca.com/api/v3"
LIST_ENVELOPE_KEYS = ("data", "items")
_LOG_PAYLOAD_CHARS = 2000


def normalize_list(body: Any, keys: tuple[str, ...] = LIST_ENVELOPE_KEYS) -> list[Any]:
    """Accept a bare list or the first list found under one of ``keys``."""

    if isinstance(body, list):
        return body
    if isinstance(body, dict):
        for key in keys:
            value = body.get(key)
            if isinstance(value, list):
                return value
    return []


def _preview(payload: Any) -> str:
    try:
        text = json.dumps(payload, ensure_ascii=False)
    except (TypeError, ValueError):
        return "[unserializable]"
    return text if len(text) <= _LOG_PAYLOAD_CHARS else f"{text[:_LOG_PAYLOAD_CHARS]}..."


class PachcaClient:
    def __init__(
        self,
        base_url: str,
        access_token: str,
        internal_base_url: str = DEFAULT_INTERNAL_BASE_URL,
        internal_cookie: Optional[str] = None,
        retry_policy: RetryPolicy = RetryPolicy(),
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        if not base_url:
            raise ConfigError("Missing required env: PACHCA_BASE_URL")
        if not access_token:
            raise ConfigError("Missing required env: PACHCA_ACCESS_TOKEN")
        self._base_url = base_url.rstrip("/")
        self._internal_base_url = internal_base_url.rstrip("/")
        self._access_token = access_token
        self._internal_cookie = internal_cookie
        self._retry = retry_policy
        self._timeout = timeout
        self._transport = transport

    @classmethod
    def from_config(
        cls,
        config: PachcaConfig,
        retry_policy: RetryPolicy = RetryPolicy(),
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> PachcaClient:
        return cls(
            config.base_url,
            config.access_token,
            internal_base_url=config.internal_base_url,
            internal_cookie=config.internal_cookie,
            retry_policy=retry_policy,
            timeout=timeout,
            transport=transport,
        )

    def can_use_internal_api(self) -> bool:
        return bool(self._internal_cookie)

    async def get_chats(self) -> list[dict[str, Any]]:
        return await self._get_list(self._base_url, "/chats", self._auth_headers())

    async def get_chat_messages(self, chat_id: str, limit: int = 30) -> list[dict[str, Any]]:
        return await self._get_list(
            self._base_url,
            f"/chats/{chat_id}/messages",
            self._auth_headers(),
            params={"limit": limit},
        )

    async def get_message_readers(self, chat_id: str, message_id: str) -> list[dict[str, Any]]:
        return await self._get_list(
            self._base_url,
            f"/chats/{chat_id}/messages/{message_id}/readers",
            self._auth_headers(),
        )

    async def get_unread_chat_ids(self) -> list[str]:
        """Chat ids the web client shows as unread (internal API)."""

        if not self._internal_cookie:
            raise ConfigError("Missing internal Pachca auth cookie")
        ids = await self._get_list(
            self._internal_base_url,
            "/chats/unread_ids",
            {"Cookie": self._internal_cookie, "Content-Type": "application/json"},
            keys=("data",),
        )
        return [str(chat_id) for chat_id in ids]

    def _auth_headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._access_token}",
            "Content-Type": "application/json",
        }

    async def _get_list(
        self,
        base_url: str,
        path: str,
        headers: dict[str, str],
        params: Optional[dict[str, Any]] = None,
        keys: tuple[str, ...] = LIST_ENVELOPE_KEYS,
    ) -> list[Any]:
        async with httpx.AsyncClient(base_url=base_url, timeout=self._timeout, transport=self._transport) as http:
            response = await request_with_retry(
                lambda: http.get(path, headers=headers, params=params),
                self._retry,
                f"Pachca {path}",
            )
        items = normalize_list(json_body(response), keys)
        if LOGGER.isEnabledFor(logging.DEBUG):
            LOGGER.debug("Pachca %s: %s", path, _preview(items))
        return items
