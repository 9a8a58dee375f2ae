"""Cancellable, self-scheduling repeating task for the asyncio loop."""
from __future__ import annotations
import asyncio
import logging
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


class ScheduledTick:
    """Run an async callback repeatedly with a fixed pause between runs.

    The next run is scheduled only after the previous one has fully resolved,
    so a slow callback throttles the loop instead of overlapping with itself.
    A failing callback is logged and the loop keeps going.
    """

    def __init__(self, callback: Callable[[], Awaitable[None]], interval_s: float, name: str = "tick"):
        self._callback = callback
        self.interval_s = max(0.0, interval_s)
        self.name = name
        self._task: Optional[asyncio.Task] = None
        self.tick_count = 0
        self.error_count = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start ticking on the running event loop (no-op if already running)."""
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run(), name=self.name)

    def cancel(self) -> None:
        """Cancel the pending schedule; an in-flight callback is abandoned."""
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    async def stop(self) -> None:
        """Cancel and wait until the loop task has finished."""
        task = self._task
        self.cancel()
        if task is not None:
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def _run(self) -> None:
        while True:
            try:
                await self._callback()
            except asyncio.CancelledError:
                raise
            except Exception:
                self.error_count += 1
                logger.exception(f"[{self.name}] Tick failed; continuing")
            self.tick_count += 1
            await asyncio.sleep(self.interval_s)
