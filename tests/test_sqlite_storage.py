from __future__ import annotations

import sqlite3
from datetime import datetime, timezone

import pytest

from adapters.sqlite_storage import SQLiteUserStore
from core.models import CredentialPatch, SetupState, SetupStep


@pytest.fixture()
def store(tmp_path) -> SQLiteUserStore:
    store = SQLiteUserStore(str(tmp_path / "rocketnotify.db"))
    store.init_db()
    return store


def test_find_or_create_is_idempotent(store: SQLiteUserStore) -> None:
    first = store.find_or_create("42")
    second = store.find_or_create("42")

    assert first.external_id == second.external_id == "42"
    assert first.enabled is True
    assert first.last_unread == 0
    assert len(store.list_all()) == 1


def test_external_id_is_unique(store: SQLiteUserStore, tmp_path) -> None:
    store.find_or_create("42")

    with sqlite3.connect(str(tmp_path / "rocketnotify.db")) as conn:
        with pytest.raises(sqlite3.IntegrityError):
            conn.execute(
                "INSERT INTO subscribers (external_id, created_at, updated_at) VALUES ('42', 'x', 'x')"
            )


def test_update_credentials_applies_only_given_fields(store: SQLiteUserStore) -> None:
    store.find_or_create("42")
    store.update_credentials("42", CredentialPatch(backend_url="https://chat", encrypted_token="enc-1"))
    store.update_credentials("42", CredentialPatch(backend_user_id="uid"))

    subscriber = store.get("42")
    assert subscriber.backend_url == "https://chat"
    assert subscriber.encrypted_token == "enc-1"
    assert subscriber.backend_user_id == "uid"
    assert subscriber.missing_fields() == []


def test_update_credentials_clears_listed_fields(store: SQLiteUserStore) -> None:
    store.find_or_create("42")
    store.update_credentials(
        "42",
        CredentialPatch(encrypted_password="enc-pw", backend_instance_id="inst", encrypted_token="enc-1"),
    )

    store.update_credentials(
        "42",
        CredentialPatch(encrypted_token="enc-2", clear=("encrypted_password", "backend_instance_id")),
    )

    subscriber = store.get("42")
    assert subscriber.encrypted_password is None
    assert subscriber.backend_instance_id is None
    assert subscriber.encrypted_token == "enc-2"


def test_patch_rejects_unknown_clear_field() -> None:
    with pytest.raises(ValueError):
        CredentialPatch(clear=("last_unread",))


def test_watermark_rejects_negative(store: SQLiteUserStore) -> None:
    store.find_or_create("42")
    store.update_watermark("42", 7)

    with pytest.raises(ValueError):
        store.update_watermark("42", -1)
    assert store.get("42").last_unread == 7


def test_list_enabled_in_creation_order(store: SQLiteUserStore) -> None:
    for external_id in ["3", "1", "2"]:
        store.find_or_create(external_id)
    store.set_enabled("1", False)

    assert [sub.external_id for sub in store.list_enabled()] == ["3", "2"]
    assert [sub.external_id for sub in store.list_all()] == ["3", "1", "2"]


def test_needs_reauth_flag(store: SQLiteUserStore) -> None:
    store.find_or_create("42")
    store.set_needs_reauth("42", True)

    assert store.get("42").needs_reauth is True


def test_setup_state_round_trip(store: SQLiteUserStore) -> None:
    created = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)
    store.set_setup_state("42", SetupState(step=SetupStep.SERVER, created_at=created))
    store.set_setup_state(
        "42",
        SetupState(step=SetupStep.PASS, created_at=created, server="https://chat", user="john"),
    )

    state = store.get_setup_state("42")
    assert state.step is SetupStep.PASS
    assert (state.server, state.user) == ("https://chat", "john")
    assert state.created_at == created

    store.clear_setup_state("42")
    assert store.get_setup_state("42") is None


def test_get_unknown_subscriber(store: SQLiteUserStore) -> None:
    assert store.get("nobody") is None
