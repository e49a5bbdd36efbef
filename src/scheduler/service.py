"""
Fixed-cadence timer for running the Dispatcher outside of AWS.
"""

import asyncio
from typing import Awaitable, Callable, Optional, Set

from shared.utils.configs import scheduler_configs
from shared.utils.logger import logger


class IntervalScheduler:
    """
    Fires callback every interval_seconds.

    A firing never waits for the previous one: overlapping cycles are
    expected, and the Task Store keeps them from dispatching a seller twice.
    Errors raised by a firing are logged and do not stop the schedule.
    """

    def __init__(
        self,
        callback: Callable[[], Awaitable],
        interval_seconds: Optional[float] = None,
    ):
        self.callback = callback
        self.interval_seconds = interval_seconds or scheduler_configs["interval_seconds"]
        self.ticks = 0
        self._in_flight: Set[asyncio.Task] = set()

    async def _fire(self, tick: int):
        try:
            await self.callback()
        except Exception as e:
            logger.error(f"Scheduled run {tick} failed: {str(e)}")

    def fire(self) -> asyncio.Task:
        """Start one firing in the background."""
        self.ticks += 1
        task = asyncio.create_task(self._fire(self.ticks))
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)
        return task

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    async def run(
        self,
        stop_event: Optional[asyncio.Event] = None,
        max_ticks: Optional[int] = None,
    ):
        """
        Fire until stop_event is set or max_ticks firings were started.

        In-flight firings are awaited before returning.
        """
        stop_event = stop_event or asyncio.Event()
        logger.info(f"Scheduler started with a {self.interval_seconds}s interval")

        try:
            while not stop_event.is_set():
                self.fire()
                if max_ticks is not None and self.ticks >= max_ticks:
                    break
                try:
                    await asyncio.wait_for(stop_event.wait(), timeout=self.interval_seconds)
                except asyncio.TimeoutError:
                    pass
        finally:
            await self.shutdown()
            logger.info(f"Scheduler stopped after {self.ticks} ticks")

    async def shutdown(self):
        """Wait for every in-flight firing to finish."""
        if self._in_flight:
            await asyncio.gather(*self._in_flight, return_exceptions=True)
