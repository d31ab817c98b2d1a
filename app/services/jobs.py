"""Fire-and-forget background jobs that outlive the request that started them."""

from __future__ import annotations

import asyncio
from typing import Any, Callable, Coroutine, Optional, Set

from app.core.logging import get_logger

log = get_logger("jobs")


class BackgroundJobs:
    """Owns background tasks: keeps references, logs crashes, cancels on shutdown."""

    def __init__(self) -> None:
        self._tasks: Set[asyncio.Task] = set()

    def spawn(
        self,
        coro: Coroutine[Any, Any, Any],
        name: str,
        on_done: Optional[Callable[[], None]] = None,
    ) -> asyncio.Task:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)

        def _finished(t: asyncio.Task) -> None:
            self._tasks.discard(t)
            if on_done is not None:
                on_done()
            if t.cancelled():
                log.info(f"Background job {name} cancelled")
                return
            exc = t.exception()
            if exc is not None:
                log.opt(exception=exc).error(f"Background job {name} crashed: {exc}")

        task.add_done_callback(_finished)
        log.debug(f"Background job {name} started")
        return task

    @property
    def running(self) -> int:
        return len(self._tasks)

    async def wait(self, timeout: Optional[float] = None) -> None:
        """Wait for all current jobs (used by tests and the CLI)."""
        while self._tasks:
            await asyncio.wait(set(self._tasks), timeout=timeout)
            if timeout is not None:
                return

    async def shutdown(self) -> None:
        if not self._tasks:
            return
        log.info(f"Cancelling {len(self._tasks)} background job(s)...")
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
