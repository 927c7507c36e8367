"""Cancellable fixed-interval background tasks on the asyncio loop."""
from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional

LOGGER = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]


class PeriodicTask:
    """Run ``callback`` now and then every ``interval`` seconds until stopped.

    ``generation`` increases on every start and stop, so work that began under
    one generation can tell, once it resumes, whether it has been superseded.
    A failing callback is logged and the schedule continues.
    """

    def __init__(
        self,
        callback: Callable[[], Awaitable[object]],
        interval: float,
        *,
        sleep: Sleep = asyncio.sleep,
        name: str = "periodic-task",
    ) -> None:
        if interval <= 0:
            raise ValueError("interval must be positive")
        self._callback = callback
        self.interval = interval
        self._sleep = sleep
        self.name = name
        self._task: Optional[asyncio.Task] = None
        self.generation = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> asyncio.Task:
        """Schedule the loop on the running event loop; a second call is a no-op."""
        if self._task is not None and not self._task.done():
            return self._task
        self.generation += 1
        self._task = asyncio.get_running_loop().create_task(self._run(self.generation), name=self.name)
        LOGGER.debug("Started %s (every %ss)", self.name, self.interval)
        return self._task

    def stop(self) -> None:
        self.generation += 1
        if self._task is not None:
            self._task.cancel()
            self._task = None
            LOGGER.debug("Stopped %s", self.name)

    def is_current(self, generation: int) -> bool:
        return self.running and generation == self.generation

    async def _run(self, generation: int) -> None:
        while generation == self.generation:
            try:
                await self._callback()
            except asyncio.CancelledError:
                raise
            except Exception:
                LOGGER.exception("%s iteration failed", self.name)
            await self._sleep(self.interval)


__all__ = ["PeriodicTask", "Sleep"]
