"""Core unread-check pipeline for one subscriber.

This module is integration-agnostic. It only relies on ports for storage,
backend access and notifications, so the inline scheduler path and the
queued job handler share exactly the same steps:

1) Skip subscribers that are not fully configured
2) Fetch subscription records through the session manager
3) Aggregate them into an UnreadSnapshot
4) Compare the total against the stored watermark
5) Notify, then persist the new watermark
"""

from __future__ import annotations

import logging
from typing import Optional

from core.config import NotificationConfig
from core.models import AlertDetails, CheckOutcome, Subscriber, UnreadSnapshot
from core.ports import NotifierPort, UserStorePort
from core.sessions import SessionManager
from core.unread import compute, count_mentions

LOGGER = logging.getLogger(__name__)


class UnreadChecker:
    """Orchestrates fetch, aggregation, watermark comparison and alerts."""

    def __init__(
        self,
        sessions: SessionManager,
        store: UserStorePort,
        notifier: NotifierPort,
        notification_config: NotificationConfig = NotificationConfig(),
    ) -> None:
        self._sessions = sessions
        self._store = store
        self._notifier = notifier
        self._notification = notification_config

    def destination_for(self, subscriber: Subscriber) -> str:
        return self._notification.broadcast_chat_id or subscriber.external_id

    async def check(self, subscriber: Subscriber) -> CheckOutcome:
        """Run one check for a subscriber; errors propagate to the caller."""

        missing = subscriber.missing_fields()
        if missing:
            LOGGER.warning("Subscriber %s is not configured (missing %s)", subscriber.external_id, ", ".join(missing))
            return CheckOutcome.SKIPPED
        if subscriber.needs_reauth:
            LOGGER.warning("Subscriber %s needs to run /setup again", subscriber.external_id)
            return CheckOutcome.SKIPPED

        records = await self._sessions.fetch_subscriptions(subscriber)
        snapshot = compute(records)
        LOGGER.info("Subscriber %s: total=%s", subscriber.external_id, snapshot.total)

        if snapshot.total > subscriber.last_unread:
            # Watermark moves only after a successful send (at-least-once).
            await self._notifier.send_alert(
                self.destination_for(subscriber),
                snapshot.total,
                self._details(snapshot, records),
            )
            self._store.update_watermark(subscriber.external_id, snapshot.total)
            LOGGER.info("Sent alert to %s: unread=%s", subscriber.external_id, snapshot.total)
            return CheckOutcome.ALERTED

        if snapshot.total < subscriber.last_unread:
            # Messages were read; lower the watermark so new ones alert again.
            self._store.update_watermark(subscriber.external_id, snapshot.total)
            return CheckOutcome.LOWERED

        return CheckOutcome.UNCHANGED

    def _details(self, snapshot: UnreadSnapshot, records: list) -> Optional[AlertDetails]:
        if not self._notification.include_breakdown:
            return None
        return AlertDetails(
            channels=snapshot.channels,
            im=snapshot.im,
            groups=snapshot.groups,
            mentions=count_mentions(records),
        )
