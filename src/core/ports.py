"""Ports (interfaces) used by the core pipeline.

Ports define the minimal contracts for storage, backend, queue and
notification adapters so that the core can be reused with different
backends.
"""

from __future__ import annotations

from typing import Any, Optional, Protocol

from core.config import JobOptions
from core.models import (
    AlertDetails,
    CredentialPatch,
    LoginResult,
    SetupState,
    Subscriber,
)


class UserStorePort(Protocol):
    """Subscriber persistence required by the scheduler and session manager."""

    def find_or_create(self, external_id: str) -> Subscriber:
        ...

    def get(self, external_id: str) -> Optional[Subscriber]:
        ...

    def list_enabled(self) -> list[Subscriber]:
        ...

    def list_all(self) -> list[Subscriber]:
        ...

    def update_credentials(self, external_id: str, patch: CredentialPatch) -> None:
        ...

    def update_watermark(self, external_id: str, value: int) -> None:
        ...

    def set_enabled(self, external_id: str, enabled: bool) -> None:
        ...

    def set_needs_reauth(self, external_id: str, needs_reauth: bool) -> None:
        ...

    def set_setup_state(self, external_id: str, state: SetupState) -> None:
        ...

    def get_setup_state(self, external_id: str) -> Optional[SetupState]:
        ...

    def clear_setup_state(self, external_id: str) -> None:
        ...


class BackendPort(Protocol):
    """Chat backend operations used by the session manager."""

    async def login(self, server_url: str, user: str, password: str) -> LoginResult:
        ...

    async def fetch_subscriptions(
        self,
        server_url: str,
        auth_token: str,
        user_id: str,
        instance_id: Optional[str] = None,
    ) -> list[dict[str, Any]]:
        ...


class VaultPort(Protocol):
    """Symmetric encryption of secrets at rest."""

    def encrypt(self, plaintext: str) -> str:
        ...

    def decrypt(self, opaque: str) -> str:
        ...


class NotifierPort(Protocol):
    """Notification operations required by the core pipeline."""

    async def send_alert(
        self,
        destination: str,
        unread_count: int,
        details: Optional[AlertDetails] = None,
    ) -> None:
        ...


class JobQueuePort(Protocol):
    """Asynchronous work-queue submission."""

    async def enqueue(self, job_type: str, payload: dict[str, Any], options: JobOptions) -> Any:
        ...


class PachcaPort(Protocol):
    """Pachca calls used by the single-tenant watcher."""

    def can_use_internal_api(self) -> bool:
        ...

    async def get_chat_messages(self, chat_id: str, limit: int = 30) -> list[dict[str, Any]]:
        ...

    async def get_message_readers(self, chat_id: str, message_id: str) -> list[dict[str, Any]]:
        ...

    async def get_unread_chat_ids(self) -> list[str]:
        ...
