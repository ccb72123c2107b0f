"""Single-shot delayed retry with explicit cancellation."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)


class RetryTimer:
    """Runs *callback* once after *delay* seconds unless cancelled first.

    Cancellation only succeeds while the timer is still waiting; once the
    callback has started it runs to completion.
    """

    def __init__(self, delay: float, callback: Callable[[], Awaitable[None]], label: str = "retry"):
        self.delay = delay
        self.label = label
        self._callback = callback
        self._fired = False
        self._task = asyncio.create_task(self._run(), name=f"retry-timer:{label}")

    async def _run(self) -> None:
        await asyncio.sleep(self.delay)
        self._fired = True
        try:
            await self._callback()
        except Exception:
            logger.exception("Scheduled %s failed", self.label)

    @property
    def fired(self) -> bool:
        return self._fired

    @property
    def pending(self) -> bool:
        return not self._fired and not self._task.done()

    def cancel(self) -> bool:
        """Cancel the timer if it has not fired. Returns True when cancelled."""
        if not self.pending:
            return False
        self._task.cancel()
        logger.debug("Cancelled pending %s", self.label)
        return True

    async def wait(self) -> None:
        """Wait for the timer to finish (fired, failed, or cancelled)."""
        try:
            await self._task
        except asyncio.CancelledError:
            if not self._task.cancelled():
                raise
