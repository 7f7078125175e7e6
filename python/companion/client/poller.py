"""Fallback poller: periodic resync while the change feed is not live."""

import asyncio
from collections.abc import Awaitable, Callable

from companion.logging import get_logger

logger = get_logger(__name__)

DEFAULT_POLL_INTERVAL_S = 3.0


class FallbackPoller:
    """Calls resync() every `interval` seconds until stopped.

    The first tick fires one interval after start(). Failed ticks are logged
    and the next tick runs on schedule.
    """

    def __init__(
        self,
        resync: Callable[[], Awaitable[None]],
        interval: float = DEFAULT_POLL_INTERVAL_S,
    ):
        self._resync = resync
        self._interval = interval
        self._task: asyncio.Task | None = None
        self.ticks = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        logger.info("poller_started", interval_s=self._interval)
        self._task = asyncio.get_running_loop().create_task(self._run())

    def stop(self) -> None:
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            logger.info("poller_stopped", ticks=self.ticks)

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            self.ticks += 1
            try:
                await self._resync()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.warning("poll_tick_failed", error_type=type(exc).__name__)
