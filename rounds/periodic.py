"""
Cancellable periodic task used by every loop in the project.

The timer is acquired on ``start()`` (or ``async with``) and always released on
``stop()``. One failing iteration is logged and never ends the loop.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


class PeriodicTask:
    """Run ``step`` every ``interval`` seconds on the running event loop."""

    def __init__(
        self,
        step: Callable[[], Awaitable[object]],
        interval: float,
        *,
        name: str = "periodic",
        run_immediately: bool = True,
    ) -> None:
        if interval <= 0:
            raise ValueError(f"interval must be positive, got {interval}")
        self._step = step
        self.interval = float(interval)
        self.name = name
        self.run_immediately = run_immediately
        self._task: Optional[asyncio.Task] = None
        self.iterations = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run(), name=self.name)
        logger.debug(f"Started periodic task {self.name} (every {self.interval:.2f}s)")

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.debug(f"Stopped periodic task {self.name} after {self.iterations} iterations")

    async def __aenter__(self) -> PeriodicTask:
        self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.stop()

    async def _run(self) -> None:
        if not self.run_immediately:
            await asyncio.sleep(self.interval)
        while True:
            try:
                await self._step()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.error(f"Periodic task {self.name} iteration failed: {exc}", exc_info=True)
            self.iterations += 1
            await asyncio.sleep(self.interval)
