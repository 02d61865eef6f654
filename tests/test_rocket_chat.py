from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from adapters.rocket_chat import RocketChatClient, normalize_subscriptions
from core.config import RetryPolicy
from core.errors import AuthError, AuthExpiredError, BackendUnavailableError

NO_WAIT = RetryPolicy(attempts=3, base_delay=0)


def _client(handler) -> RocketChatClient:
    return RocketChatClient(retry_policy=NO_WAIT, transport=httpx.MockTransport(handler))


def test_login_prefers_headers_over_body() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(
            200,
            headers={"X-Auth-Token": "header-token", "X-User-Id": "header-user"},
            json={"data": {"authToken": "body-token", "userId": "body-user", "instanceId": "inst-1"}},
        )

    result = asyncio.run(_client(handler).login("https://chat.example.com///", "john", "secret"))

    assert result.auth_token == "header-token"
    assert result.user_id == "header-user"
    assert result.instance_id == "inst-1"
    assert str(seen[0].url) == "https://chat.example.com/api/v1/login"
    assert json.loads(seen[0].content) == {"user": "john", "password": "secret"}


def test_login_reads_body_fallbacks() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"authToken": "t", "X-User-Id": "u"})

    result = asyncio.run(_client(handler).login("https://chat.example.com", "john", "secret"))

    assert (result.auth_token, result.user_id, result.instance_id) == ("t", "u", None)


def test_login_without_user_id_fails() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"data": {"authToken": "t"}})

    with pytest.raises(AuthError):
        asyncio.run(_client(handler).login("https://chat.example.com", "john", "secret"))


def test_login_rejected_is_auth_error() -> None:
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(401, json={"status": "error"})

    with pytest.raises(AuthError):
        asyncio.run(_client(handler).login("https://chat.example.com", "john", "wrong"))
    assert len(calls) == 1


def test_fetch_sends_auth_headers_and_normalizes() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"update": [{"t": "c", "unread": 1}]})

    records = asyncio.run(
        _client(handler).fetch_subscriptions("https://chat.example.com/", "tok", "uid", "inst")
    )

    assert records == [{"t": "c", "unread": 1}]
    request = seen[0]
    assert request.url.path == "/api/v1/subscriptions.get"
    assert request.headers["X-Auth-Token"] == "tok"
    assert request.headers["X-User-Id"] == "uid"
    assert request.headers["X-Instance-Id"] == "inst"


def test_fetch_retries_then_succeeds() -> None:
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        if len(calls) < 3:
            return httpx.Response(502)
        return httpx.Response(200, json={"subscriptions": []})

    records = asyncio.run(_client(handler).fetch_subscriptions("https://chat.example.com", "tok", "uid"))

    assert records == []
    assert len(calls) == 3


def test_fetch_gives_up_after_three_attempts() -> None:
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        raise httpx.ConnectError("boom", request=request)

    with pytest.raises(BackendUnavailableError):
        asyncio.run(_client(handler).fetch_subscriptions("https://chat.example.com", "tok", "uid"))
    assert len(calls) == 3


def test_fetch_401_is_not_retried() -> None:
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(401)

    with pytest.raises(AuthExpiredError):
        asyncio.run(_client(handler).fetch_subscriptions("https://chat.example.com", "tok", "uid"))
    assert len(calls) == 1


def test_normalize_subscriptions_envelopes() -> None:
    assert normalize_subscriptions({"subscriptions": [{"a": 1}], "update": [{"b": 2}]}) == [{"a": 1}]
    assert normalize_subscriptions({"update": [{"b": 2}]}) == [{"b": 2}]
    assert normalize_subscriptions({"subscriptions": "nope"}) == []
    assert normalize_subscriptions({}) == []
    assert normalize_subscriptions(["raw"]) == []


def test_invalid_url_fails_fast_as_unavailable() -> None:
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        raise httpx.InvalidURL("Invalid URL component 'host'")

    with pytest.raises(BackendUnavailableError):
        asyncio.run(_client(handler).login("https://chat.example.com", "john", "pw"))
    assert len(calls) == 1
