"""Single-tenant unread watcher for Pachca.

Pachca has no subscription listing with unread counters, so unread state is
derived in one of two ways:

- internal API available: the number of watched chats that appear in
  ``/chats/unread_ids``;
- public API only: per watched chat, the recent messages not written by the
  configured user and not listed among their readers.

The previous total lives in memory only, so the first cycle after a restart
alerts whenever anything is unread.
"""

from __future__ import annotations

import logging
from typing import Optional

from core.config import PachcaConfig
from core.errors import ConfigError
from core.models import AlertDetails
from core.ports import NotifierPort, PachcaPort
from core.scheduler import SchedulerState
from core.timer import RepeatingTimer

LOGGER = logging.getLogger(__name__)


class PachcaUnreadWatcher:
    def __init__(
        self,
        client: PachcaPort,
        notifier: NotifierPort,
        destination: str,
        chat_ids: list[str],
        user_id: Optional[str] = None,
        interval_seconds: float = 300.0,
        message_limit: int = 30,
    ) -> None:
        self._client = client
        self._notifier = notifier
        self._destination = destination
        self._chat_ids = [str(chat_id) for chat_id in chat_ids]
        self._user_id = str(user_id) if user_id else None
        self._interval = interval_seconds
        self._message_limit = message_limit
        self._use_internal = client.can_use_internal_api()
        if not self._use_internal and not self._user_id:
            raise ConfigError("Missing required env: PACHCA_USER_ID")
        self._state = SchedulerState.IDLE
        self._last_total = 0
        self._timer: Optional[RepeatingTimer] = None

    @classmethod
    def from_config(
        cls,
        client: PachcaPort,
        notifier: NotifierPort,
        config: PachcaConfig,
        destination: Optional[str],
    ) -> PachcaUnreadWatcher:
        if not destination:
            raise ConfigError("Missing required env: TELEGRAM_CHANNEL_ID")
        return cls(
            client,
            notifier,
            destination=destination,
            chat_ids=config.chat_ids,
            user_id=config.user_id,
            interval_seconds=config.interval_seconds,
        )

    @property
    def state(self) -> SchedulerState:
        return self._state

    @property
    def last_total(self) -> int:
        return self._last_total

    def start(self) -> None:
        if self._timer is not None and self._timer.running:
            return
        self._timer = RepeatingTimer(self._interval, self.run_cycle, name="pachca-polling")
        self._timer.start()
        LOGGER.info("Pachca polling started, interval %s min", round(self._interval / 60))

    async def stop(self) -> None:
        if self._timer is not None:
            await self._timer.stop()
            self._timer = None
        LOGGER.info("Pachca polling stopped")

    async def run_cycle(self) -> Optional[int]:
        """Run one check and return the unread total; None if skipped."""

        if self._state is SchedulerState.RUNNING:
            return None
        self._state = SchedulerState.RUNNING
        try:
            if not self._chat_ids:
                LOGGER.warning("PACHCA_CHAT_IDS is empty, nothing to poll")
                return None
            if self._use_internal:
                total, per_chat = await self._count_by_unread_ids()
            else:
                total, per_chat = await self._count_by_readers()

            if total > self._last_total:
                await self._notifier.send_alert(self._destination, total, AlertDetails(per_chat=per_chat))
                LOGGER.info("Sent Pachca alert: unread=%s", total)
            self._last_total = total
            return total
        finally:
            self._state = SchedulerState.IDLE

    async def _count_by_unread_ids(self) -> tuple[int, list[tuple[str, int]]]:
        unread = set(await self._client.get_unread_chat_ids())
        watched = [chat_id for chat_id in self._chat_ids if chat_id in unread]
        return len(watched), [(chat_id, 1) for chat_id in watched]

    async def _count_by_readers(self) -> tuple[int, list[tuple[str, int]]]:
        total = 0
        per_chat: list[tuple[str, int]] = []
        for chat_id in self._chat_ids:
            try:
                count = await self._count_chat(chat_id)
            except Exception:
                # A broken chat is skipped; the others still count.
                LOGGER.exception("Failed to check Pachca chat %s", chat_id)
                continue
            total += count
            per_chat.append((chat_id, count))
        return total, per_chat

    async def _count_chat(self, chat_id: str) -> int:
        unread = 0
        messages = await self._client.get_chat_messages(chat_id, limit=self._message_limit)
        for message in messages:
            if not isinstance(message, dict) or not message.get("id"):
                continue
            author = message.get("author_id")
            if author is not None and str(author) == self._user_id:
                continue
            readers = await self._client.get_message_readers(chat_id, str(message["id"]))
            if not any(str(reader.get("user_id")) == self._user_id for reader in readers if isinstance(reader, dict)):
                unread += 1
        return unread
