"""Best-effort background dispatch on the application event loop.

Replaces a task queue for work that is fire-and-forget by contract (the
outbound webhook relay): the caller never awaits the result, a failure is
logged and never reaches the caller, and nothing is retried.

Sync route handlers run in a worker thread, so dispatch() hands the
coroutine to the app loop with call_soon_threadsafe when called off-loop.
"""

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

from companion.logging import get_logger

logger = get_logger(__name__)


class BestEffortDispatcher:
    """Runs fire-and-forget coroutines on one event loop and tracks them."""

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None):
        self._loop = loop
        self._tasks: set[asyncio.Task] = set()

    def bind(self, loop: asyncio.AbstractEventLoop) -> None:
        """Attach the loop tasks are scheduled on (the app's loop at startup)."""
        self._loop = loop

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def dispatch(
        self,
        name: str,
        coro_fn: Callable[..., Awaitable[Any]],
        *args: Any,
        **kwargs: Any,
    ) -> None:
        """Schedule coro_fn(*args, **kwargs) and return immediately."""
        loop = self._loop
        if loop is None or loop.is_closed():
            logger.warning("dispatch_dropped_no_loop", task=name)
            return

        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None

        if running is loop:
            self._spawn(name, coro_fn, args, kwargs)
        else:
            loop.call_soon_threadsafe(self._spawn, name, coro_fn, args, kwargs)

    def _spawn(self, name, coro_fn, args, kwargs) -> None:
        task = self._loop.create_task(self._run(name, coro_fn, args, kwargs), name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run(self, name, coro_fn, args, kwargs) -> None:
        try:
            await coro_fn(*args, **kwargs)
        except asyncio.CancelledError:
            logger.info("dispatch_task_cancelled", task=name)
            raise
        except Exception as e:
            logger.exception("dispatch_task_failed", task=name, error_type=type(e).__name__)

    async def drain(self, timeout: float = 5.0) -> None:
        """Wait for outstanding tasks, cancelling whatever is left after timeout."""
        # Let callbacks queued by call_soon_threadsafe create their tasks first
        await asyncio.sleep(0)
        tasks = list(self._tasks)
        if not tasks:
            return

        _, still_pending = await asyncio.wait(tasks, timeout=timeout)
        for task in still_pending:
            task.cancel()
        if still_pending:
            logger.warning("dispatch_drain_timeout", cancelled=len(still_pending))

    def drain_threadsafe(self, timeout: float = 5.0) -> None:
        """Block a non-loop thread until drain() completes on the dispatcher's loop."""
        if self._loop is None or self._loop.is_closed():
            return
        future = asyncio.run_coroutine_threadsafe(self.drain(timeout), self._loop)
        future.result(timeout + 1.0)
