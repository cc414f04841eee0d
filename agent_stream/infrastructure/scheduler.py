"""Asyncio Scheduler — running-loop clock and delayed callbacks for the normalizer."""

import asyncio
from typing import Callable


class AsyncioScheduler:
    """Scheduler backed by the running event loop (seconds, monotonic)."""

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None):
        self._loop = loop

    def now(self) -> float:
        return self._get_loop().time()

    def call_later(
        self, delay: float, callback: Callable[[], None],
    ) -> asyncio.TimerHandle:
        return self._get_loop().call_later(max(0.0, delay), callback)

    def _get_loop(self) -> asyncio.AbstractEventLoop:
        return self._loop or asyncio.get_running_loop()
