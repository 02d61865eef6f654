from __future__ import annotations

import asyncio

import pytest

from core.errors import AuthError, AuthExpiredError, DecryptionError, ReauthRequiredError
from core.models import LoginResult, PasswordCredential, TokenCredential
from core.sessions import SessionManager
from fakes import SERVER, FakeBackend, FakeStore, FakeVault, configured


def _manager(store: FakeStore, backend: FakeBackend, retain: bool = False) -> SessionManager:
    return SessionManager(backend, FakeVault(), store, retain_passwords=retain)


def test_resolve_session_for_both_credential_kinds() -> None:
    backend = FakeBackend()
    manager = _manager(FakeStore(), backend)

    from_password = asyncio.run(manager.resolve_session(PasswordCredential(SERVER, "john", "pw")))
    from_token = asyncio.run(manager.resolve_session(TokenCredential(SERVER, "uid-9", "tok-9", "inst")))

    assert from_password.auth_token == "fresh-token"
    assert backend.logins == [(SERVER, "john", "pw")]
    assert (from_token.auth_token, from_token.user_id, from_token.instance_id) == ("tok-9", "uid-9", "inst")


def test_session_is_cached_after_first_use() -> None:
    store = FakeStore((configured(),))
    backend = FakeBackend([{"t": "c", "unread": 1}])
    manager = _manager(store, backend)

    asyncio.run(manager.fetch_subscriptions(store.get("42")))

    assert manager.cached("42").auth_token == "token-1"
    assert backend.fetch_calls == [(SERVER, "token-1", "uid-1", None)]


def test_401_with_retained_password_relogs_and_persists() -> None:
    subscriber = configured(encrypted_password="enc:pw")
    store = FakeStore((subscriber,))
    backend = FakeBackend()
    backend.fetch_results = [AuthExpiredError("401"), [{"t": "d", "unread": 2}]]
    manager = _manager(store, backend)

    records = asyncio.run(manager.fetch_subscriptions(subscriber))

    assert records == [{"t": "d", "unread": 2}]
    assert backend.logins == [(SERVER, "john", "pw")]
    assert backend.fetch_calls[-1][1] == "fresh-token"
    assert store.get("42").encrypted_token == "enc:fresh-token"
    assert manager.cached("42").auth_token == "fresh-token"


def test_401_without_password_flags_reauth() -> None:
    subscriber = configured()
    store = FakeStore((subscriber,))
    backend = FakeBackend()
    backend.fetch_results = [AuthExpiredError("401")]
    manager = _manager(store, backend)

    with pytest.raises(ReauthRequiredError):
        asyncio.run(manager.fetch_subscriptions(subscriber))

    assert store.get("42").needs_reauth is True
    assert manager.cached("42") is None
    assert backend.logins == []


def test_rejected_relogin_flags_reauth() -> None:
    subscriber = configured(encrypted_password="enc:old-pw")
    store = FakeStore((subscriber,))
    backend = FakeBackend()
    backend.fetch_results = [AuthExpiredError("401")]
    backend.login_error = AuthError("invalid credentials")
    manager = _manager(store, backend)

    with pytest.raises(AuthError):
        asyncio.run(manager.fetch_subscriptions(subscriber))

    assert store.get("42").needs_reauth is True
    assert backend.logins == [(SERVER, "john", "old-pw")]
    assert manager.cached("42") is None


def test_relogin_without_instance_clears_stored_instance() -> None:
    subscriber = configured(encrypted_password="enc:pw", backend_instance_id="old-inst")
    store = FakeStore((subscriber,))
    backend = FakeBackend()
    backend.fetch_results = [AuthExpiredError("401"), []]
    manager = _manager(store, backend)

    asyncio.run(manager.fetch_subscriptions(subscriber))

    assert store.get("42").backend_instance_id is None
    assert backend.fetch_calls[-1] == (SERVER, "fresh-token", "uid-1", None)


def test_corrupt_token_surfaces_decryption_error() -> None:
    subscriber = configured(encrypted_token="garbage")
    manager = _manager(FakeStore((subscriber,)), FakeBackend())

    with pytest.raises(DecryptionError):
        asyncio.run(manager.ensure_valid_session(subscriber))


def test_connect_stores_encrypted_token_and_enables() -> None:
    store = FakeStore()
    backend = FakeBackend()
    backend.login_result = LoginResult(auth_token="tok", user_id="uid-7", instance_id="inst")
    manager = _manager(store, backend, retain=True)
    store.find_or_create("7")
    store.set_enabled("7", False)
    store.set_needs_reauth("7", True)

    asyncio.run(manager.connect("7", SERVER, "jane", "pw"))

    stored = store.get("7")
    assert stored.encrypted_token == "enc:tok"
    assert stored.encrypted_password == "enc:pw"
    assert (stored.backend_url, stored.backend_user, stored.backend_user_id) == (SERVER, "jane", "uid-7")
    assert stored.backend_instance_id == "inst"
    assert stored.enabled and not stored.needs_reauth


def test_connect_without_retention_keeps_no_password() -> None:
    store = FakeStore()
    manager = _manager(store, FakeBackend(), retain=False)

    asyncio.run(manager.connect("7", SERVER, "jane", "pw"))

    assert store.get("7").encrypted_password is None


def test_resetup_without_retention_drops_old_password_and_instance() -> None:
    store = FakeStore((configured("7", encrypted_password="enc:old-pw", backend_instance_id="old-inst"),))
    backend = FakeBackend()
    backend.login_result = LoginResult(auth_token="tok", user_id="uid-7")
    manager = _manager(store, backend, retain=False)

    asyncio.run(manager.connect("7", SERVER, "jane", "new-pw"))

    stored = store.get("7")
    assert stored.encrypted_password is None
    assert stored.backend_instance_id is None
    assert (stored.backend_user, stored.encrypted_token) == ("jane", "enc:tok")


def test_resetup_with_retention_replaces_password() -> None:
    store = FakeStore((configured("7", encrypted_password="enc:old-pw"),))
    manager = _manager(store, FakeBackend(), retain=True)

    asyncio.run(manager.connect("7", SERVER, "jane", "new-pw"))

    assert store.get("7").encrypted_password == "enc:new-pw"


def test_register_single_tenant_with_token() -> None:
    store = FakeStore()
    backend = FakeBackend()
    manager = _manager(store, backend)

    asyncio.run(manager.register("-100", TokenCredential(SERVER, "uid-3", "tok-3")))

    stored = store.get("-100")
    assert stored.encrypted_token == "enc:tok-3"
    assert stored.backend_user_id == "uid-3"
    assert backend.logins == []
