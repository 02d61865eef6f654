"""Minimal async Telegram Bot API client.

Only the handful of methods the notifier and the command poller use. The bot
token is part of every URL, so request URLs are never logged.
"""

from __future__ import annotations

from typing import Any, Optional

import httpx

API_ROOT = "https://api.telegram.org"


class BotApiError(Exception):
    """The Bot API answered with ok=false or an HTTP error status."""

    def __init__(self, method: str, status: Optional[int], description: str) -> None:
        super().__init__(f"Bot API {method} failed ({status}): {description}")
        self.method = method
        self.status = status
        self.description = description


class TelegramBotApi:
    """Thin wrapper around Bot API methods using one shared httpx client."""

    def __init__(
        self,
        bot_token: str,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._http = httpx.AsyncClient(
            base_url=f"{API_ROOT}/bot{bot_token}",
            timeout=timeout,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._http.aclose()

    async def call(self, method: str, payload: Optional[dict[str, Any]] = None, timeout: Optional[float] = None) -> Any:
        """Invoke a Bot API method and return its ``result`` field.

        Raises:
            BotApiError: Telegram rejected the call.
            httpx.HTTPError: transport failure.
        """

        kwargs: dict[str, Any] = {"json": payload or {}}
        if timeout is not None:
            kwargs["timeout"] = timeout
        response = await self._http.post(f"/{method}", **kwargs)
        try:
            body = response.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}
        if response.status_code >= 400 or not body.get("ok", False):
            description = str(body.get("description") or response.reason_phrase)
            raise BotApiError(method, response.status_code, description)
        return body.get("result")

    async def send_message(
        self,
        chat_id: str,
        text: str,
        parse_mode: Optional[str] = "HTML",
        reply_markup: Optional[dict[str, Any]] = None,
    ) -> Any:
        payload: dict[str, Any] = {
            "chat_id": chat_id,
            "text": text,
            "disable_web_page_preview": True,
        }
        if parse_mode:
            payload["parse_mode"] = parse_mode
        if reply_markup:
            payload["reply_markup"] = reply_markup
        return await self.call("sendMessage", payload)

    async def delete_message(self, chat_id: str, message_id: int) -> Any:
        return await self.call("deleteMessage", {"chat_id": chat_id, "message_id": message_id})

    async def get_updates(self, offset: Optional[int], timeout: int = 30) -> list[dict[str, Any]]:
        payload: dict[str, Any] = {"timeout": timeout, "allowed_updates": ["message", "callback_query"]}
        if offset is not None:
            payload["offset"] = offset
        # The HTTP timeout must outlast the long-poll window.
        result = await self.call("getUpdates", payload, timeout=timeout + 10)
        return result if isinstance(result, list) else []

    async def set_my_commands(self, commands: list[tuple[str, str]]) -> Any:
        return await self.call(
            "setMyCommands",
            {"commands": [{"command": name, "description": text} for name, text in commands]},
        )

    async def delete_webhook(self, drop_pending_updates: bool = False) -> Any:
        return await self.call("deleteWebhook", {"drop_pending_updates": drop_pending_updates})

    async def answer_callback_query(self, callback_query_id: str) -> Any:
        return await self.call("answerCallbackQuery", {"callback_query_id": callback_query_id})
