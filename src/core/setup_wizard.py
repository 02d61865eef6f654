"""Three-step conversational setup: server, user, password.

Progress is kept in the UserStore as a SetupState so a restart between steps
does not lose it. States older than the TTL are treated as absent. The
password is only held for the duration of the connect call and is never
echoed back or logged.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from html import escape
from typing import Callable, Optional
from urllib.parse import urlparse

from core.errors import RocketNotifyError
from core.models import BotReply, SetupState, SetupStep
from core.ports import UserStorePort
from core.sessions import SessionManager

LOGGER = logging.getLogger(__name__)

SETUP_STATE_TTL = timedelta(minutes=15)
CANCEL_BUTTON = ("Cancel", "cancel_setup")

SERVER_PROMPT = (
    "<b>Step 1 of 3: Rocket.Chat server</b>\n\n"
    "Send the URL of your Rocket.Chat server.\n\n"
    "Example: <code>https://rocketchat.example.com</code>"
)
INVALID_SERVER = (
    "<b>Invalid URL</b>\n\nSend a valid server URL.\n\n"
    "Example: <code>https://rocketchat.example.com</code>"
)
USER_PROMPT = (
    "Server saved: {server}\n\n"
    "<b>Step 2 of 3: Username</b>\n\n"
    "Send your Rocket.Chat username.\n\nExample: <code>john.doe</code>"
)
PASS_PROMPT = (
    "Username saved: {user}\n\n"
    "<b>Step 3 of 3: Password</b>\n\n"
    "Send your Rocket.Chat password.\n\n"
    "The message with the password is deleted right after processing."
)
CONNECTED = (
    "<b>Subscription created!</b>\n\n"
    "You will get a message here when unread messages appear in Rocket.Chat.\n\n"
    "Use /stop to turn notifications off."
)
AUTH_FAILED = (
    "<b>Authorization failed</b>\n\n"
    "Check the server, the username and the password, then start again with /setup."
)
STATE_LOST = "Setup data was lost. Start again with /setup."
CANCELLED = "Setup cancelled."


def normalize_server_url(raw: str) -> Optional[str]:
    """Trim, default the scheme to https and validate; None if unusable."""

    server = raw.strip()
    if not server:
        return None
    if not server.startswith(("http://", "https://")):
        server = f"https://{server}"
    try:
        parsed = urlparse(server)
    except ValueError:
        return None
    if parsed.scheme not in {"http", "https"} or not parsed.hostname:
        return None
    if any(char.isspace() for char in server):
        return None
    return server


class SetupWizard:
    """Drives the server → user → pass conversation for one subscriber."""

    def __init__(
        self,
        store: UserStorePort,
        sessions: SessionManager,
        ttl: timedelta = SETUP_STATE_TTL,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._store = store
        self._sessions = sessions
        self._ttl = ttl
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def begin(self, external_id: str) -> BotReply:
        """Reset any previous progress and ask for the server."""

        self._store.clear_setup_state(external_id)
        self._store.set_setup_state(
            external_id,
            SetupState(step=SetupStep.SERVER, created_at=self._clock()),
        )
        return BotReply(SERVER_PROMPT, buttons=[CANCEL_BUTTON])

    def cancel(self, external_id: str) -> BotReply:
        self._store.clear_setup_state(external_id)
        return BotReply(CANCELLED)

    def current_state(self, external_id: str) -> Optional[SetupState]:
        """Return the live state, clearing it if it has expired."""

        state = self._store.get_setup_state(external_id)
        if state is None:
            return None
        created_at = state.created_at
        if created_at.tzinfo is None:
            created_at = created_at.replace(tzinfo=timezone.utc)
        if self._clock() - created_at > self._ttl:
            LOGGER.info("Setup state for %s expired", external_id)
            self._store.clear_setup_state(external_id)
            return None
        return state

    async def handle_text(self, external_id: str, text: str) -> Optional[BotReply]:
        """Advance the wizard with a plain-text message.

        Returns None when the subscriber is not in the middle of a setup.
        """

        state = self.current_state(external_id)
        if state is None:
            return None

        if state.step is SetupStep.SERVER:
            server = normalize_server_url(text)
            if server is None:
                return BotReply(INVALID_SERVER, buttons=[CANCEL_BUTTON])
            self._store.set_setup_state(
                external_id,
                SetupState(step=SetupStep.USER, created_at=state.created_at, server=server),
            )
            return BotReply(USER_PROMPT.format(server=escape(server)), buttons=[CANCEL_BUTTON])

        if state.step is SetupStep.USER:
            user = text.strip()
            if not user:
                return BotReply("Username cannot be empty.", buttons=[CANCEL_BUTTON])
            self._store.set_setup_state(
                external_id,
                SetupState(step=SetupStep.PASS, created_at=state.created_at, server=state.server, user=user),
            )
            return BotReply(PASS_PROMPT.format(user=escape(user)), buttons=[CANCEL_BUTTON])

        password = text.strip()
        if not password:
            return BotReply("Password cannot be empty.", buttons=[CANCEL_BUTTON], delete_message=True)
        if not state.server or not state.user:
            self._store.clear_setup_state(external_id)
            return BotReply(STATE_LOST, delete_message=True)

        try:
            await self._sessions.connect(external_id, state.server, state.user, password)
        except RocketNotifyError as exc:
            LOGGER.warning("Setup login failed for %s: %s", external_id, type(exc).__name__)
            return BotReply(AUTH_FAILED, delete_message=True)
        finally:
            self._store.clear_setup_state(external_id)

        return BotReply(CONNECTED, delete_message=True)
