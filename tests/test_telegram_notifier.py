from __future__ import annotations

import asyncio
from typing import Optional

import pytest

from adapters.telegram_notifier import TelegramSavedMessagesNotifier
from core.errors import DeliveryError
from core.models import AlertDetails


class FakeTelethonClient:
    def __init__(self, error: Optional[Exception] = None) -> None:
        self.sent: list[tuple[str, str, str]] = []
        self.error = error

    async def send_message(self, entity, message, parse_mode=None) -> None:
        if self.error is not None:
            raise self.error
        self.sent.append((entity, message, parse_mode))


def test_sends_markdown_to_saved_messages() -> None:
    client = FakeTelethonClient()
    notifier = TelegramSavedMessagesNotifier(client)

    asyncio.run(notifier.send_alert("42", 4, AlertDetails(im=4)))

    entity, message, parse_mode = client.sent[0]
    assert entity == "me"
    assert parse_mode == "Markdown"
    assert "**Unread:** 4" in message
    assert "Direct messages: 4" in message


def test_explicit_destination_when_not_fixed() -> None:
    client = FakeTelethonClient()
    notifier = TelegramSavedMessagesNotifier(client, title="Pachca", fixed_destination=None)

    asyncio.run(notifier.send_alert("-100", 1))

    assert client.sent[0][0] == "-100"
    assert client.sent[0][1].startswith("**Pachca notifications**")


def test_connection_failure_is_delivery_error() -> None:
    notifier = TelegramSavedMessagesNotifier(FakeTelethonClient(ConnectionError("offline")))

    with pytest.raises(DeliveryError):
        asyncio.run(notifier.send_alert("42", 1))
