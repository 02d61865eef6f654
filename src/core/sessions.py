"""Backend session lifecycle.

Each subscriber moves between two states: Unauthenticated (no cached
session) and Authenticated (cached session). A 401 from the backend drops the
cached session. If a password is retained the manager logs in again,
stores the fresh token encrypted, and retries the call once. Without a
password the subscriber is flagged for manual re-setup.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from core.errors import AuthError, AuthExpiredError, ReauthRequiredError
from core.models import (
    Credential,
    CredentialPatch,
    PasswordCredential,
    Session,
    Subscriber,
    TokenCredential,
)
from core.ports import BackendPort, UserStorePort, VaultPort

LOGGER = logging.getLogger(__name__)


class SessionManager:
    """Owns per-subscriber auth state on top of the backend client."""

    def __init__(
        self,
        backend: BackendPort,
        vault: VaultPort,
        store: UserStorePort,
        retain_passwords: bool = False,
    ) -> None:
        self._backend = backend
        self._vault = vault
        self._store = store
        self._retain_passwords = retain_passwords
        self._sessions: dict[str, Session] = {}

    def cached(self, external_id: str) -> Optional[Session]:
        return self._sessions.get(external_id)

    def invalidate(self, external_id: str) -> None:
        """Forget the cached session; the next call rebuilds it."""

        self._sessions.pop(external_id, None)

    async def resolve_session(self, credential: Credential) -> Session:
        """Turn a credential into a usable session."""

        if isinstance(credential, PasswordCredential):
            result = await self._backend.login(credential.server, credential.user, credential.password)
            return Session(
                server_url=credential.server,
                auth_token=result.auth_token,
                user_id=result.user_id,
                instance_id=result.instance_id,
            )
        return Session(
            server_url=credential.server,
            auth_token=credential.token,
            user_id=credential.user_id,
            instance_id=credential.instance_id,
        )

    def credential_for(self, subscriber: Subscriber) -> Credential:
        """Build the subscriber's credential from its encrypted secrets.

        Raises:
            DecryptionError: a stored secret is corrupt or the key changed.
        """

        if subscriber.encrypted_password and subscriber.backend_user and subscriber.backend_url:
            return PasswordCredential(
                server=subscriber.backend_url,
                user=subscriber.backend_user,
                password=self._vault.decrypt(subscriber.encrypted_password),
            )
        return TokenCredential(
            server=subscriber.backend_url or "",
            user_id=subscriber.backend_user_id or "",
            token=self._vault.decrypt(subscriber.encrypted_token or ""),
            instance_id=subscriber.backend_instance_id,
        )

    async def ensure_valid_session(self, subscriber: Subscriber) -> Session:
        """Return the cached session or rebuild one from the stored token."""

        session = self._sessions.get(subscriber.external_id)
        if session is not None:
            return session

        session = Session(
            server_url=subscriber.backend_url or "",
            auth_token=self._vault.decrypt(subscriber.encrypted_token or ""),
            user_id=subscriber.backend_user_id or "",
            instance_id=subscriber.backend_instance_id,
        )
        self._sessions[subscriber.external_id] = session
        return session

    async def fetch_subscriptions(self, subscriber: Subscriber) -> list[dict[str, Any]]:
        """Fetch subscription records, re-authenticating once on a 401."""

        session = await self.ensure_valid_session(subscriber)
        try:
            return await self._fetch(session)
        except AuthExpiredError:
            self.invalidate(subscriber.external_id)
            LOGGER.info("Session expired for %s, re-authenticating", subscriber.external_id)

        session = await self._reauthenticate(subscriber)
        return await self._fetch(session)

    async def _fetch(self, session: Session) -> list[dict[str, Any]]:
        return await self._backend.fetch_subscriptions(
            session.server_url,
            session.auth_token,
            session.user_id,
            session.instance_id,
        )

    async def _reauthenticate(self, subscriber: Subscriber) -> Session:
        credential = self.credential_for(subscriber)
        if not isinstance(credential, PasswordCredential):
            self._store.set_needs_reauth(subscriber.external_id, True)
            LOGGER.warning(
                "Subscriber %s has no retained password; manual re-setup required",
                subscriber.external_id,
            )
            raise ReauthRequiredError(f"Session for {subscriber.external_id} expired")

        try:
            session = await self.resolve_session(credential)
        except AuthError:
            self._store.set_needs_reauth(subscriber.external_id, True)
            LOGGER.warning(
                "Re-login rejected for %s; manual re-setup required",
                subscriber.external_id,
            )
            raise
        self._persist_session(subscriber.external_id, session)
        return session

    def _persist_session(self, external_id: str, session: Session) -> None:
        # Refresh-and-store is one step per subscriber; cycles never overlap.
        self._store.update_credentials(
            external_id,
            CredentialPatch(
                backend_url=session.server_url,
                encrypted_token=self._vault.encrypt(session.auth_token),
                backend_user_id=session.user_id,
                backend_instance_id=session.instance_id,
                clear=() if session.instance_id else ("backend_instance_id",),
            ),
        )
        self._sessions[external_id] = session

    async def connect(self, external_id: str, server: str, user: str, password: str) -> Session:
        """Log in with fresh credentials and store them for polling."""

        session = await self.resolve_session(PasswordCredential(server=server, user=user, password=password))
        self._store.find_or_create(external_id)
        if self._retain_passwords:
            patch = CredentialPatch(backend_user=user, encrypted_password=self._vault.encrypt(password))
        else:
            # A password kept by an earlier setup must not outlive this one.
            patch = CredentialPatch(backend_user=user, clear=("encrypted_password",))
        self._store.update_credentials(external_id, patch)
        self._persist_session(external_id, session)
        self._store.set_needs_reauth(external_id, False)
        self._store.set_enabled(external_id, True)
        LOGGER.info("Updated backend credentials for %s", external_id)
        return session

    async def register(self, external_id: str, credential: Credential) -> Session:
        """Bootstrap a process-wide subscriber from deployment credentials."""

        session = await self.resolve_session(credential)
        self._store.find_or_create(external_id)
        if isinstance(credential, PasswordCredential):
            # Single-tenant deployments always keep the password for re-login.
            self._store.update_credentials(
                external_id,
                CredentialPatch(
                    backend_user=credential.user,
                    encrypted_password=self._vault.encrypt(credential.password),
                ),
            )

        self._persist_session(external_id, session)
        self._store.set_needs_reauth(external_id, False)
        return session
