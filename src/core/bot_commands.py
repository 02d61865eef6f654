"""Telegram bot command routing.

Transport-agnostic: the update poller hands in the sender id and the message
text, and sends back whatever BotReply comes out.
"""

from __future__ import annotations

import logging
from typing import Optional

from core.errors import RocketNotifyError
from core.models import BotReply
from core.ports import UserStorePort
from core.sessions import SessionManager
from core.setup_wizard import SetupWizard, normalize_server_url

LOGGER = logging.getLogger(__name__)

BOT_COMMANDS: list[tuple[str, str]] = [
    ("start", "Start notifications"),
    ("setup", "Connect Rocket.Chat"),
    ("login", "Connect Rocket.Chat in one message"),
    ("stop", "Turn notifications off"),
]

WELCOME = (
    "<b>Welcome to RocketNotify!</b>\n\n"
    "I will message you here when unread messages appear in your Rocket.Chat.\n\n"
    "Start the setup:"
)
STOPPED = "<b>Notifications disabled</b>\n\nUse /start to turn them back on."
LOGIN_USAGE = (
    "<b>Wrong format</b>\n\n"
    "Use: <code>/login &lt;server&gt; &lt;user&gt; &lt;pass&gt;</code>\n\n"
    "Example: <code>/login https://rocketchat.example.com john pass123</code>"
)
LOGIN_OK = (
    "<b>Subscription created!</b>\n\n"
    "You will get a message here when unread messages appear."
)
LOGIN_FAILED = "<b>Authorization failed</b>\n\nCheck the server, the username and the password."
SETUP_BUTTON = ("Set up", "setup")


def parse_command(text: str) -> tuple[Optional[str], list[str]]:
    """Split ``/cmd@bot arg1 arg2`` into ("cmd", [args]); (None, []) for plain text."""

    stripped = text.strip()
    if not stripped.startswith("/"):
        return None, []
    head, *args = stripped.split()
    command = head[1:].split("@", 1)[0].lower()
    return command, args


class BotCommandRouter:
    def __init__(self, store: UserStorePort, sessions: SessionManager, wizard: SetupWizard) -> None:
        self._store = store
        self._sessions = sessions
        self._wizard = wizard

    async def handle_message(self, external_id: str, text: str) -> Optional[BotReply]:
        command, args = parse_command(text)
        if command is None:
            return await self._wizard.handle_text(external_id, text)
        if command == "start":
            self._store.find_or_create(external_id)
            self._store.set_enabled(external_id, True)
            return BotReply(WELCOME, buttons=[SETUP_BUTTON])
        if command == "setup":
            self._store.find_or_create(external_id)
            return self._wizard.begin(external_id)
        if command == "stop":
            self._store.find_or_create(external_id)
            self._store.set_enabled(external_id, False)
            LOGGER.info("Notifications disabled for %s", external_id)
            return BotReply(STOPPED)
        if command == "cancel":
            return self._wizard.cancel(external_id)
        if command == "login":
            return await self._login(external_id, args)
        return None

    async def handle_callback(self, external_id: str, data: str) -> Optional[BotReply]:
        if data == "setup":
            self._store.find_or_create(external_id)
            return self._wizard.begin(external_id)
        if data == "cancel_setup":
            return self._wizard.cancel(external_id)
        LOGGER.debug("Ignoring unknown callback %r", data)
        return None

    async def _login(self, external_id: str, args: list[str]) -> BotReply:
        # The command text carries a password, so every reply deletes it.
        if len(args) != 3:
            return BotReply(LOGIN_USAGE, delete_message=True)
        raw_server, user, password = args
        server = normalize_server_url(raw_server)
        if server is None:
            return BotReply(LOGIN_USAGE, delete_message=True)
        try:
            await self._sessions.connect(external_id, server, user, password)
        except RocketNotifyError as exc:
            LOGGER.warning("Login failed for %s: %s", external_id, type(exc).__name__)
            return BotReply(LOGIN_FAILED, delete_message=True)
        return BotReply(LOGIN_OK, delete_message=True)
