"""Polling scheduler for the unread-check loop.

One repeating timer drives check cycles. A cycle lists enabled subscribers
and either checks them inline, in listing order, or hands each one to the
work queue when the fleet is larger than the configured threshold, so a
large fleet never stretches one cycle across several intervals.

The scheduler state (Idle/Running) is only touched from the event loop, so a
plain field is enough to keep cycles from overlapping: a tick that fires
while a cycle is running is dropped, not queued.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from core.config import PollingConfig
from core.errors import (
    AuthError,
    BackendUnavailableError,
    DecryptionError,
    DeliveryError,
    ReauthRequiredError,
)
from core.models import CheckOutcome, Subscriber
from core.ports import JobQueuePort, UserStorePort
from core.processor import UnreadChecker
from core.timer import RepeatingTimer

LOGGER = logging.getLogger(__name__)

CHECK_UNREAD_JOB = "check-unread"


class SchedulerState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"


@dataclass
class CycleReport:
    """Counters for one completed polling cycle."""

    checked: int = 0
    alerted: int = 0
    skipped: int = 0
    failed: int = 0
    queued: int = 0


def log_check_failure(external_id: str, exc: Exception) -> None:
    """Log a per-subscriber failure by kind, never including secrets."""

    if isinstance(exc, DecryptionError):
        LOGGER.error("Stored token for %s cannot be decrypted; manual re-setup required", external_id)
    elif isinstance(exc, ReauthRequiredError):
        LOGGER.warning("Session for %s expired and cannot be renewed automatically", external_id)
    elif isinstance(exc, AuthError):
        LOGGER.warning("Re-authentication failed for %s: %s", external_id, exc)
    elif isinstance(exc, BackendUnavailableError):
        LOGGER.warning("Backend unavailable for %s, retrying next interval: %s", external_id, exc)
    elif isinstance(exc, DeliveryError):
        LOGGER.error("Alert delivery failed for %s: %s", external_id, exc)
    else:
        LOGGER.error("Polling failed for %s", external_id, exc_info=exc)


class PollingScheduler:
    """Runs check cycles on a timer with an at-most-one-in-flight guard."""

    def __init__(
        self,
        store: UserStorePort,
        checker: UnreadChecker,
        config: PollingConfig,
        job_queue: Optional[JobQueuePort] = None,
    ) -> None:
        self._store = store
        self._checker = checker
        self._config = config
        self._job_queue = job_queue
        self._state = SchedulerState.IDLE
        self._timer: Optional[RepeatingTimer] = None

    @property
    def state(self) -> SchedulerState:
        return self._state

    def start(self) -> None:
        """Start the repeating timer; the first cycle runs right away."""

        if self._timer is not None and self._timer.running:
            return
        self._timer = RepeatingTimer(self._config.interval_seconds, self.run_cycle, name="unread-polling")
        self._timer.start()
        LOGGER.info("Polling started, interval %s min", self._config.interval_minutes)

    async def stop(self) -> None:
        """Cancel the timer. Jobs already queued finish on their own."""

        if self._timer is not None:
            await self._timer.stop()
            self._timer = None
        LOGGER.info("Polling stopped")

    async def run_cycle(self) -> Optional[CycleReport]:
        """Run one cycle, or return None if a cycle is already in flight."""

        if self._state is SchedulerState.RUNNING:
            LOGGER.debug("Previous polling cycle still running; tick skipped")
            return None

        self._state = SchedulerState.RUNNING
        try:
            subscribers = self._store.list_enabled()
            LOGGER.info("Checking %s subscribers", len(subscribers))
            if len(subscribers) > self._config.queue_threshold and self._job_queue is not None:
                return await self._dispatch(subscribers)
            return await self._check_inline(subscribers)
        finally:
            self._state = SchedulerState.IDLE

    async def _dispatch(self, subscribers: list[Subscriber]) -> CycleReport:
        LOGGER.info("Dispatching %s subscribers to the work queue", len(subscribers))
        for subscriber in subscribers:
            await self._job_queue.enqueue(
                CHECK_UNREAD_JOB,
                {"subscriber_ref": subscriber.external_id},
                self._config.job_options,
            )
        return CycleReport(queued=len(subscribers))

    async def _check_inline(self, subscribers: list[Subscriber]) -> CycleReport:
        report = CycleReport()
        for subscriber in subscribers:
            try:
                outcome = await self._checker.check(subscriber)
            except Exception as exc:
                # One subscriber's failure never aborts the batch.
                report.failed += 1
                log_check_failure(subscriber.external_id, exc)
                continue
            if outcome is CheckOutcome.SKIPPED:
                report.skipped += 1
                continue
            report.checked += 1
            if outcome is CheckOutcome.ALERTED:
                report.alerted += 1
        LOGGER.info(
            "Polling cycle done: checked=%s alerted=%s skipped=%s failed=%s",
            report.checked,
            report.alerted,
            report.skipped,
            report.failed,
        )
        return report


def make_check_unread_handler(
    store: UserStorePort,
    checker: UnreadChecker,
) -> Callable[[dict[str, Any]], Awaitable[Optional[CheckOutcome]]]:
    """Build the work-queue handler for ``check-unread`` jobs.

    The subscriber is reloaded by reference so the job sees the current
    watermark and token. Errors propagate so the queue applies its retries.
    """

    async def handle(payload: dict[str, Any]) -> Optional[CheckOutcome]:
        external_id = str(payload.get("subscriber_ref", ""))
        subscriber = store.get(external_id)
        if subscriber is None or not subscriber.enabled:
            LOGGER.warning("Queued subscriber %s is gone or disabled", external_id)
            return None
        try:
            return await checker.check(subscriber)
        except Exception as exc:
            log_check_failure(external_id, exc)
            raise

    return handle
