from __future__ import annotations

import asyncio

import pytest

from core.config import NotificationConfig
from core.errors import DeliveryError
from core.models import CheckOutcome
from core.processor import UnreadChecker
from core.sessions import SessionManager
from fakes import FakeBackend, FakeNotifier, FakeStore, FakeVault, configured


def _checker(store, backend, notifier, config: NotificationConfig = NotificationConfig()) -> UnreadChecker:
    return UnreadChecker(SessionManager(backend, FakeVault(), store), store, notifier, config)


def test_alerts_when_unread_grows() -> None:
    store = FakeStore((configured(last_unread=0),))
    notifier = FakeNotifier()
    checker = _checker(store, FakeBackend([{"t": "c", "unread": 3}]), notifier)

    outcome = asyncio.run(checker.check(store.get("42")))

    assert outcome is CheckOutcome.ALERTED
    destination, total, details = notifier.sent[0]
    assert (destination, total) == ("42", 3)
    assert details.channels == 3
    assert store.get("42").last_unread == 3


def test_no_alert_when_unread_unchanged() -> None:
    store = FakeStore((configured(last_unread=5),))
    notifier = FakeNotifier()
    checker = _checker(store, FakeBackend([{"t": "c", "unread": 2}, {"t": "d", "unread": 3}]), notifier)

    outcome = asyncio.run(checker.check(store.get("42")))

    assert outcome is CheckOutcome.UNCHANGED
    assert notifier.sent == []
    assert store.watermarks == []
    assert store.get("42").last_unread == 5


def test_watermark_lowers_without_alert() -> None:
    store = FakeStore((configured(last_unread=5),))
    notifier = FakeNotifier()
    checker = _checker(store, FakeBackend([{"t": "c", "unread": 1}]), notifier)

    outcome = asyncio.run(checker.check(store.get("42")))

    assert outcome is CheckOutcome.LOWERED
    assert notifier.sent == []
    assert store.get("42").last_unread == 1


def test_failed_delivery_keeps_watermark() -> None:
    store = FakeStore((configured(last_unread=0),))
    checker = _checker(store, FakeBackend([{"t": "c", "unread": 3}]), FakeNotifier(DeliveryError("down")))

    with pytest.raises(DeliveryError):
        asyncio.run(checker.check(store.get("42")))

    assert store.get("42").last_unread == 0


def test_missing_token_is_skipped() -> None:
    store = FakeStore((configured(encrypted_token=None),))
    backend = FakeBackend([{"t": "c", "unread": 3}])
    checker = _checker(store, backend, FakeNotifier())

    assert asyncio.run(checker.check(store.get("42"))) is CheckOutcome.SKIPPED
    assert backend.fetch_calls == []


def test_needs_reauth_is_skipped() -> None:
    store = FakeStore((configured(needs_reauth=True),))
    backend = FakeBackend([{"t": "c", "unread": 3}])
    checker = _checker(store, backend, FakeNotifier())

    assert asyncio.run(checker.check(store.get("42"))) is CheckOutcome.SKIPPED
    assert backend.fetch_calls == []


def test_broadcast_channel_overrides_destination() -> None:
    store = FakeStore((configured(),))
    notifier = FakeNotifier()
    config = NotificationConfig(broadcast_chat_id="-100500", include_breakdown=False)
    checker = _checker(store, FakeBackend([{"t": "p", "unread": 1}]), notifier, config)

    asyncio.run(checker.check(store.get("42")))

    assert notifier.sent == [("-100500", 1, None)]
