"""Core domain models.

These dataclasses are shared across the core and adapters to avoid tight
coupling to any integration-specific types.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, Union


@dataclass(frozen=True)
class Subscriber:
    """A Telegram user or channel registered to receive unread alerts.

    Secrets are only ever held here in their encrypted form; decryption is
    done on demand by the SessionManager through the credential vault.
    """

    external_id: str
    backend_url: Optional[str] = None
    backend_user: Optional[str] = None
    encrypted_token: Optional[str] = None
    backend_user_id: Optional[str] = None
    backend_instance_id: Optional[str] = None
    encrypted_password: Optional[str] = None
    interval_min: int = 5
    enabled: bool = True
    needs_reauth: bool = False
    last_unread: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def missing_fields(self) -> list[str]:
        """Return the backend fields still required before polling can start."""

        missing = []
        if not self.backend_url:
            missing.append("backend_url")
        if not self.encrypted_token:
            missing.append("token")
        if not self.backend_user_id:
            missing.append("backend_user_id")
        return missing


@dataclass(frozen=True)
class CredentialPatch:
    """Partial credential update applied by UserStore.update_credentials.

    Fields left as None are not touched. Names listed in ``clear`` are
    written as NULL, unless the same patch also sets them.
    """

    backend_url: Optional[str] = None
    backend_user: Optional[str] = None
    encrypted_token: Optional[str] = None
    backend_user_id: Optional[str] = None
    backend_instance_id: Optional[str] = None
    encrypted_password: Optional[str] = None
    clear: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        unknown = [name for name in self.clear if name not in CREDENTIAL_FIELDS]
        if unknown:
            raise ValueError(f"Unknown credential fields: {', '.join(unknown)}")

    def as_dict(self) -> dict[str, Optional[str]]:
        values: dict[str, Optional[str]] = {name: None for name in self.clear}
        for name in CREDENTIAL_FIELDS:
            value = getattr(self, name)
            if value is not None:
                values[name] = value
        return values


CREDENTIAL_FIELDS = (
    "backend_url",
    "backend_user",
    "encrypted_token",
    "backend_user_id",
    "backend_instance_id",
    "encrypted_password",
)


@dataclass(frozen=True)
class Session:
    """An authenticated backend handle."""

    server_url: str
    auth_token: str
    user_id: str
    instance_id: Optional[str] = None


@dataclass(frozen=True)
class LoginResult:
    """Auth data returned by a successful backend login."""

    auth_token: str
    user_id: str
    instance_id: Optional[str] = None


@dataclass(frozen=True)
class PasswordCredential:
    """Username/password pair; allows logging in again after a 401."""

    server: str
    user: str
    password: str


@dataclass(frozen=True)
class TokenCredential:
    """Pre-issued token; cannot be refreshed without the user."""

    server: str
    user_id: str
    token: str
    instance_id: Optional[str] = None


Credential = Union[PasswordCredential, TokenCredential]


@dataclass(frozen=True)
class UnreadSnapshot:
    """Unread counts for one subscriber at poll time."""

    total: int
    channels: int
    im: int
    groups: int

    @classmethod
    def from_buckets(cls, channels: int, im: int, groups: int) -> "UnreadSnapshot":
        return cls(total=channels + im + groups, channels=channels, im=im, groups=groups)


@dataclass(frozen=True)
class AlertDetails:
    """Optional breakdown rendered under the unread total."""

    channels: Optional[int] = None
    im: Optional[int] = None
    groups: Optional[int] = None
    mentions: Optional[int] = None
    per_chat: list[tuple[str, int]] = field(default_factory=list)


class SetupStep(str, Enum):
    SERVER = "server"
    USER = "user"
    PASS = "pass"


@dataclass(frozen=True)
class SetupState:
    """Transient wizard progress for one subscriber."""

    step: SetupStep
    created_at: datetime
    server: Optional[str] = None
    user: Optional[str] = None


class CheckOutcome(str, Enum):
    ALERTED = "alerted"
    UNCHANGED = "unchanged"
    LOWERED = "lowered"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class BotReply:
    """A chat reply produced by the command router or the setup wizard.

    ``buttons`` are (label, callback_data) pairs rendered one per row.
    ``delete_message`` asks the transport to delete the incoming message,
    used for messages that carried a password.
    """

    text: str
    buttons: list[tuple[str, str]] = field(default_factory=list)
    delete_message: bool = False
