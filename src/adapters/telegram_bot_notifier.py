"""Telegram Bot API notification adapter.

Uses the Bot API for delivery so alerts can go to a subscriber's own chat or
to a broadcast channel the bot posts into.
"""

from __future__ import annotations

import logging
from typing import Optional

import httpx

from adapters.notification_formatting import format_unread_alert
from adapters.telegram_bot_api import BotApiError, TelegramBotApi
from core.errors import DeliveryError
from core.models import AlertDetails

LOGGER = logging.getLogger(__name__)


class TelegramBotNotifier:
    """Notifier adapter that sends unread alerts via the Telegram Bot API."""

    def __init__(self, api: TelegramBotApi, title: str = "Rocket.Chat") -> None:
        self._api = api
        self._title = title

    async def send_alert(
        self,
        destination: str,
        unread_count: int,
        details: Optional[AlertDetails] = None,
    ) -> None:
        """Send the formatted alert; failures surface as DeliveryError."""

        message = format_unread_alert(self._title, unread_count, details, mode="html")
        try:
            await self._api.send_message(destination, message, parse_mode="HTML")
        except BotApiError as exc:
            raise DeliveryError(f"Telegram rejected the alert for {destination}: {exc.description}") from exc
        except httpx.HTTPError as exc:
            raise DeliveryError(f"Telegram unreachable: {type(exc).__name__}") from exc
        LOGGER.debug("Alert delivered to %s", destination)
