"""Cooperative repeating timer for polling loops."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Any, Awaitable, Callable, Optional

LOGGER = logging.getLogger(__name__)


class RepeatingTimer:
    """Fire ``callback`` every ``interval`` seconds as an independent task.

    Ticks do not wait for the previous callback to finish, the same way a
    wall-clock interval timer behaves. Callers that must not overlap guard
    themselves (see PollingScheduler).
    """

    def __init__(
        self,
        interval: float,
        callback: Callable[[], Awaitable[Any]],
        name: str = "timer",
        run_immediately: bool = True,
    ) -> None:
        self._interval = interval
        self._callback = callback
        self._name = name
        self._run_immediately = run_immediately
        self._task: Optional[asyncio.Task] = None
        self._ticks: set[asyncio.Task] = set()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._loop(), name=self._name)

    async def stop(self, wait_for_ticks: bool = True) -> None:
        """Cancel the timer; optionally let in-flight ticks finish."""

        if self._task is not None:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
        if wait_for_ticks and self._ticks:
            await asyncio.gather(*self._ticks, return_exceptions=True)

    async def _loop(self) -> None:
        if self._run_immediately:
            self._fire()
        while True:
            await asyncio.sleep(self._interval)
            self._fire()

    def _fire(self) -> None:
        task = asyncio.create_task(self._invoke(), name=f"{self._name}-tick")
        self._ticks.add(task)
        task.add_done_callback(self._ticks.discard)

    async def _invoke(self) -> None:
        try:
            await self._callback()
        except Exception:
            LOGGER.exception("%s tick failed", self._name)
