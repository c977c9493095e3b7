"""
Observer base class.

An observer owns one background asyncio task running its _worker coroutine.
start() and stop() are idempotent.
"""

import asyncio
import logging
from typing import Optional

logger = logging.getLogger(__name__)


class Observer:
    """Base class for background polling loops."""

    def __init__(self, name: Optional[str] = None):
        self._name = name or self.__class__.__name__
        self._running = False
        self._task: Optional[asyncio.Task] = None

    @property
    def name(self) -> str:
        return self._name

    def is_running(self) -> bool:
        return self._running and self._task is not None and not self._task.done()

    async def start(self) -> None:
        if self.is_running():
            return
        self._running = True
        self._task = asyncio.create_task(self._worker(), name=self._name)
        logger.info(f"{self._name} started")

    async def stop(self) -> None:
        self._running = False
        task, self._task = self._task, None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info(f"{self._name} stopped")

    async def _worker(self) -> None:
        raise NotImplementedError
