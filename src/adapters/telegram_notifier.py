"""Telegram notification adapter for a user account session.

Sends alerts through a Telethon client, by default into Saved Messages. Used
when no bot is configured and alerts should come from the user's own account.
"""

from __future__ import annotations

from typing import Optional

from telethon import errors

from adapters.notification_formatting import format_unread_alert
from core.errors import DeliveryError
from core.models import AlertDetails

SAVED_MESSAGES = "me"


class TelegramSavedMessagesNotifier:
    """Notifier adapter that sends alerts from the logged-in user account."""

    def __init__(self, client, title: str = "Rocket.Chat", fixed_destination: Optional[str] = SAVED_MESSAGES) -> None:
        self._client = client
        self._title = title
        self._fixed_destination = fixed_destination

    async def send_alert(
        self,
        destination: str,
        unread_count: int,
        details: Optional[AlertDetails] = None,
    ) -> None:
        """Send the formatted alert to Saved Messages (or the given chat)."""

        target = self._fixed_destination or destination
        message = format_unread_alert(self._title, unread_count, details, mode="markdown")
        try:
            await self._client.send_message(target, message, parse_mode="Markdown")
        except (errors.RPCError, ConnectionError, ValueError) as exc:
            raise DeliveryError(f"Telethon delivery to {target} failed: {type(exc).__name__}") from exc
