"""SQLite storage adapter.

Implements the core UserStorePort using a simple SQLite database.
"""

from __future__ import annotations

import sqlite3
from datetime import datetime, timezone
from typing import Optional

from core.models import CredentialPatch, SetupState, SetupStep, Subscriber

_CREDENTIAL_COLUMNS = (
    "backend_url",
    "backend_user",
    "encrypted_token",
    "backend_user_id",
    "backend_instance_id",
    "encrypted_password",
)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


class SQLiteUserStore:
    """Thin SQLite wrapper that satisfies the UserStorePort contract."""

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def init_db(self) -> None:
        """Create tables if they do not exist.

        Tables:
        - subscribers: one row per Telegram chat, secrets stored encrypted
        - setup_states: transient wizard progress keyed by subscriber
        """

        with self._connect() as conn:
            # external_id is the Telegram chat id as text. UNIQUE keeps
            # find_or_create idempotent even if two updates race.
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS subscribers (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    external_id TEXT NOT NULL UNIQUE,
                    backend_url TEXT,
                    backend_user TEXT,
                    encrypted_token TEXT,
                    backend_user_id TEXT,
                    backend_instance_id TEXT,
                    encrypted_password TEXT,
                    interval_min INTEGER NOT NULL DEFAULT 5,
                    enabled INTEGER NOT NULL DEFAULT 1,
                    needs_reauth INTEGER NOT NULL DEFAULT 0,
                    last_unread INTEGER NOT NULL DEFAULT 0 CHECK (last_unread >= 0),
                    created_at TIMESTAMP NOT NULL,
                    updated_at TIMESTAMP NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS setup_states (
                    external_id TEXT PRIMARY KEY,
                    step TEXT NOT NULL,
                    server TEXT,
                    user TEXT,
                    created_at TIMESTAMP NOT NULL
                )
                """
            )

    @staticmethod
    def _row_to_subscriber(row: sqlite3.Row) -> Subscriber:
        return Subscriber(
            external_id=row["external_id"],
            backend_url=row["backend_url"],
            backend_user=row["backend_user"],
            encrypted_token=row["encrypted_token"],
            backend_user_id=row["backend_user_id"],
            backend_instance_id=row["backend_instance_id"],
            encrypted_password=row["encrypted_password"],
            interval_min=int(row["interval_min"]),
            enabled=bool(row["enabled"]),
            needs_reauth=bool(row["needs_reauth"]),
            last_unread=int(row["last_unread"]),
            created_at=_parse_ts(row["created_at"]),
            updated_at=_parse_ts(row["updated_at"]),
        )

    def find_or_create(self, external_id: str) -> Subscriber:
        """Return the subscriber, inserting an empty enabled row if new."""

        now = _now()
        with self._connect() as conn:
            conn.execute(
                """
                INSERT OR IGNORE INTO subscribers (external_id, created_at, updated_at)
                VALUES (?, ?, ?)
                """,
                (external_id, now, now),
            )
            row = conn.execute(
                "SELECT * FROM subscribers WHERE external_id = ?",
                (external_id,),
            ).fetchone()
        return self._row_to_subscriber(row)

    def get(self, external_id: str) -> Optional[Subscriber]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM subscribers WHERE external_id = ?",
                (external_id,),
            ).fetchone()
        return self._row_to_subscriber(row) if row else None

    def list_enabled(self) -> list[Subscriber]:
        """Enabled subscribers in creation order."""

        with self._connect() as conn:
            rows = conn.execute("SELECT * FROM subscribers WHERE enabled = 1 ORDER BY id").fetchall()
        return [self._row_to_subscriber(row) for row in rows]

    def list_all(self) -> list[Subscriber]:
        with self._connect() as conn:
            rows = conn.execute("SELECT * FROM subscribers ORDER BY id").fetchall()
        return [self._row_to_subscriber(row) for row in rows]

    def update_credentials(self, external_id: str, patch: CredentialPatch) -> None:
        """Apply the set and cleared fields of the patch; last writer wins."""

        values = patch.as_dict()
        if not values:
            return
        # Column names come from the fixed whitelist, never from input.
        columns = [name for name in _CREDENTIAL_COLUMNS if name in values]
        assignments = ", ".join(f"{name} = ?" for name in columns)
        params = [values[name] for name in columns] + [_now(), external_id]
        with self._connect() as conn:
            conn.execute(
                f"UPDATE subscribers SET {assignments}, updated_at = ? WHERE external_id = ?",
                params,
            )

    def update_watermark(self, external_id: str, value: int) -> None:
        if value < 0:
            raise ValueError("last_unread must be non-negative")
        self._update_column(external_id, "last_unread", int(value))

    def set_enabled(self, external_id: str, enabled: bool) -> None:
        self._update_column(external_id, "enabled", 1 if enabled else 0)

    def set_needs_reauth(self, external_id: str, needs_reauth: bool) -> None:
        self._update_column(external_id, "needs_reauth", 1 if needs_reauth else 0)

    def _update_column(self, external_id: str, column: str, value: int) -> None:
        with self._connect() as conn:
            conn.execute(
                f"UPDATE subscribers SET {column} = ?, updated_at = ? WHERE external_id = ?",
                (value, _now(), external_id),
            )

    def set_setup_state(self, external_id: str, state: SetupState) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO setup_states (external_id, step, server, user, created_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(external_id) DO UPDATE SET
                    step = excluded.step,
                    server = excluded.server,
                    user = excluded.user,
                    created_at = excluded.created_at
                """,
                (
                    external_id,
                    state.step.value,
                    state.server,
                    state.user,
                    state.created_at.isoformat(),
                ),
            )

    def get_setup_state(self, external_id: str) -> Optional[SetupState]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM setup_states WHERE external_id = ?",
                (external_id,),
            ).fetchone()
        if row is None:
            return None
        return SetupState(
            step=SetupStep(row["step"]),
            created_at=datetime.fromisoformat(row["created_at"]),
            server=row["server"],
            user=row["user"],
        )

    def clear_setup_state(self, external_id: str) -> None:
        with self._connect() as conn:
            conn.execute("DELETE FROM setup_states WHERE external_id = ?", (external_id,))
