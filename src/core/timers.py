"""Cooperative periodic timers on top of asyncio."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional

LOGGER = logging.getLogger(__name__)


class PeriodicTask:
    """Call an async callback every ``interval`` seconds until stopped.

    Each instance owns its asyncio task, so independent timers can be started
    and cancelled without touching each other. Exceptions raised by the
    callback are logged and the timer keeps running.
    """

    def __init__(
        self,
        name: str,
        interval: float,
        callback: Callable[[], Awaitable[None]],
        run_immediately: bool = True,
    ) -> None:
        self._name = name
        self._interval = interval
        self._callback = callback
        self._run_immediately = run_immediately
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> bool:
        """Schedule the timer on the running loop. No-op if already running."""

        if self.running:
            LOGGER.warning("%s is already running", self._name)
            return False
        loop = asyncio.get_running_loop()
        self._task = loop.create_task(self._run(), name=self._name)
        return True

    def stop(self) -> bool:
        """Cancel future ticks. No-op if the timer is not running."""

        if not self.running:
            LOGGER.info("%s is not running", self._name)
            self._task = None
            return False
        task = self._task
        self._task = None
        task.cancel()
        return True

    async def _run(self) -> None:
        if not self._run_immediately:
            await asyncio.sleep(self._interval)
        while True:
            try:
                await self._callback()
            except Exception:
                LOGGER.exception("%s tick failed", self._name)
            await asyncio.sleep(self._interval)
