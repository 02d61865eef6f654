from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from adapters.telegram_bot_api import TelegramBotApi
from adapters.telegram_bot_notifier import TelegramBotNotifier
from adapters.telegram_bot_updates import BotUpdatePoller
from core.bot_commands import BotCommandRouter
from core.errors import DeliveryError
from core.models import AlertDetails
from core.sessions import SessionManager
from core.setup_wizard import SetupWizard
from fakes import FakeBackend, FakeStore, FakeVault


class Recorder:
    """MockTransport handler that records Bot API calls."""

    def __init__(self, updates=None, fail_methods=()) -> None:
        self.calls: list[tuple[str, dict]] = []
        self.updates = updates or []
        self.fail_methods = set(fail_methods)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        method = request.url.path.rsplit("/", 1)[-1]
        payload = json.loads(request.content or b"{}")
        self.calls.append((method, payload))
        if method in self.fail_methods:
            return httpx.Response(400, json={"ok": False, "description": "Bad Request: chat not found"})
        if method == "getUpdates":
            return httpx.Response(200, json={"ok": True, "result": self.updates})
        if method == "sendMessage":
            return httpx.Response(200, json={"ok": True, "result": {"message_id": 1}})
        return httpx.Response(200, json={"ok": True, "result": True})

    def methods(self) -> list[str]:
        return [method for method, _ in self.calls]


def _api(recorder: Recorder) -> TelegramBotApi:
    return TelegramBotApi("123:abc", transport=httpx.MockTransport(recorder))


def test_send_alert_posts_html_message() -> None:
    recorder = Recorder()
    notifier = TelegramBotNotifier(_api(recorder))

    asyncio.run(notifier.send_alert("42", 3, AlertDetails(channels=3)))

    method, payload = recorder.calls[0]
    assert method == "sendMessage"
    assert payload["chat_id"] == "42"
    assert payload["parse_mode"] == "HTML"
    assert payload["disable_web_page_preview"] is True
    assert "<b>Unread:</b> 3" in payload["text"]


def test_rejected_alert_is_delivery_error() -> None:
    notifier = TelegramBotNotifier(_api(Recorder(fail_methods={"sendMessage"})))

    with pytest.raises(DeliveryError):
        asyncio.run(notifier.send_alert("42", 3))


def test_unreachable_telegram_is_delivery_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("offline", request=request)

    notifier = TelegramBotNotifier(TelegramBotApi("123:abc", transport=httpx.MockTransport(handler)))

    with pytest.raises(DeliveryError):
        asyncio.run(notifier.send_alert("42", 1))


def _poller(recorder: Recorder):
    store = FakeStore()
    sessions = SessionManager(FakeBackend(), FakeVault(), store)
    router = BotCommandRouter(store, sessions, SetupWizard(store, sessions))
    return store, BotUpdatePoller(_api(recorder), router)


def _message(update_id: int, text: str, message_id: int = 10) -> dict:
    return {
        "update_id": update_id,
        "message": {
            "message_id": message_id,
            "from": {"id": 7},
            "chat": {"id": 7},
            "text": text,
        },
    }


def test_prepare_drops_webhook_and_registers_commands() -> None:
    recorder = Recorder()
    _, poller = _poller(recorder)

    asyncio.run(poller.prepare())

    assert recorder.methods() == ["deleteWebhook", "setMyCommands"]
    commands = [entry["command"] for entry in recorder.calls[1][1]["commands"]]
    assert commands == ["start", "setup", "login", "stop"]


def test_poll_routes_start_and_advances_offset() -> None:
    recorder = Recorder(updates=[_message(5, "/start")])
    store, poller = _poller(recorder)

    async def scenario() -> int:
        count = await poller.poll_once()
        recorder.updates = []
        await poller.poll_once()
        return count

    assert asyncio.run(scenario()) == 1
    assert store.get("7").enabled is True
    send = [payload for method, payload in recorder.calls if method == "sendMessage"][0]
    assert send["chat_id"] == "7"
    assert send["reply_markup"]["inline_keyboard"][0][0]["callback_data"] == "setup"
    last_get = [payload for method, payload in recorder.calls if method == "getUpdates"][-1]
    assert last_get["offset"] == 6


def test_login_message_is_deleted() -> None:
    recorder = Recorder(updates=[_message(1, "/login chat.example.com john pw", message_id=99)])
    _, poller = _poller(recorder)

    asyncio.run(poller.poll_once())

    deletes = [payload for method, payload in recorder.calls if method == "deleteMessage"]
    assert deletes == [{"chat_id": "7", "message_id": 99}]


def test_callback_is_answered_and_routed() -> None:
    update = {
        "update_id": 3,
        "callback_query": {"id": "cb-1", "from": {"id": 7}, "data": "setup", "message": {"chat": {"id": 7}}},
    }
    recorder = Recorder(updates=[update])
    store, poller = _poller(recorder)

    asyncio.run(poller.poll_once())

    assert recorder.methods()[1:3] == ["answerCallbackQuery", "sendMessage"]
    assert store.get_setup_state("7") is not None
