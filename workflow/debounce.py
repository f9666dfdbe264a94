from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


class Debouncer:
    """
    Runs `callback` once, `delay_ms` after the last trigger().
    """

    def __init__(self, delay_ms: int, callback: Callable[[], Awaitable[None]]):
        self.delay_ms = delay_ms
        self._callback = callback
        self._task: Optional[asyncio.Task] = None

    @property
    def pending(self) -> bool:
        return self._task is not None and not self._task.done()

    def trigger(self) -> None:
        self.cancel()
        self._task = asyncio.get_running_loop().create_task(self._run())

    async def _run(self) -> None:
        await asyncio.sleep(self.delay_ms / 1000)
        await self._callback()

    def cancel(self) -> None:
        if self.pending:
            self._task.cancel()
        self._task = None

    async def flush(self) -> None:
        """
        Run a pending callback now instead of waiting out the delay.
        """
        if not self.pending:
            return
        self.cancel()
        await self._callback()
