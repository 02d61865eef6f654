"""Long-polling receiver for Telegram bot updates.

Fetches updates with getUpdates and routes messages and button presses to the
BotCommandRouter. Any previously configured webhook is dropped on start,
since Telegram refuses getUpdates while one is set.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

import httpx

from adapters.telegram_bot_api import BotApiError, TelegramBotApi
from core.bot_commands import BOT_COMMANDS, BotCommandRouter
from core.models import BotReply

LOGGER = logging.getLogger(__name__)

ERROR_BACKOFF_SECONDS = 5.0


def reply_markup(reply: BotReply) -> Optional[dict[str, Any]]:
    if not reply.buttons:
        return None
    return {"inline_keyboard": [[{"text": label, "callback_data": data}] for label, data in reply.buttons]}


class BotUpdatePoller:
    def __init__(
        self,
        api: TelegramBotApi,
        router: BotCommandRouter,
        poll_timeout: int = 30,
        error_backoff: float = ERROR_BACKOFF_SECONDS,
    ) -> None:
        self._api = api
        self._router = router
        self._poll_timeout = poll_timeout
        self._error_backoff = error_backoff
        self._offset: Optional[int] = None

    async def prepare(self) -> None:
        """Drop any webhook and register the command menu."""

        await self._api.delete_webhook(drop_pending_updates=True)
        await self._api.set_my_commands(BOT_COMMANDS)
        LOGGER.info("Bot commands registered, long polling enabled")

    async def run(self) -> None:
        """Poll until cancelled. Transport errors back off and retry."""

        while True:
            try:
                await self.poll_once()
            except (BotApiError, httpx.HTTPError) as exc:
                LOGGER.warning("getUpdates failed: %s", exc)
                await asyncio.sleep(self._error_backoff)

    async def poll_once(self) -> int:
        """Fetch and dispatch one batch; returns the number of updates."""

        updates = await self._api.get_updates(self._offset, timeout=self._poll_timeout)
        for update in updates:
            update_id = update.get("update_id")
            if isinstance(update_id, int):
                self._offset = update_id + 1
            try:
                await self.dispatch(update)
            except Exception:
                LOGGER.exception("Failed to handle update %s", update_id)
        return len(updates)

    async def dispatch(self, update: dict[str, Any]) -> None:
        if "callback_query" in update:
            await self._handle_callback(update["callback_query"])
        elif "message" in update:
            await self._handle_message(update["message"])

    async def _handle_message(self, message: dict[str, Any]) -> None:
        text = message.get("text")
        sender = message.get("from") or {}
        chat = message.get("chat") or {}
        if not isinstance(text, str) or "id" not in sender or "id" not in chat:
            return

        reply = await self._router.handle_message(str(sender["id"]), text)
        if reply is None:
            return
        chat_id = str(chat["id"])
        if reply.delete_message and "message_id" in message:
            try:
                await self._api.delete_message(chat_id, message["message_id"])
            except (BotApiError, httpx.HTTPError) as exc:
                LOGGER.warning("Could not delete message in chat %s: %s", chat_id, exc)
        await self._send(chat_id, reply)

    async def _handle_callback(self, callback: dict[str, Any]) -> None:
        sender = callback.get("from") or {}
        if "id" not in sender:
            return
        await self._api.answer_callback_query(str(callback.get("id", "")))
        reply = await self._router.handle_callback(str(sender["id"]), str(callback.get("data", "")))
        if reply is None:
            return
        chat = (callback.get("message") or {}).get("chat") or {}
        await self._send(str(chat.get("id", sender["id"])), reply)

    async def _send(self, chat_id: str, reply: BotReply) -> None:
        await self._api.send_message(chat_id, reply.text, reply_markup=reply_markup(reply))
