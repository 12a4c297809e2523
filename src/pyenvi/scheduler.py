"""Asyncio implementation of the scheduler collaborator.

Jobs are named. Scheduling under a name that is already pending replaces the
pending job, so a periodic refresh can never be installed twice. Every job
body runs while holding a shared lock, which serializes all orchestration
callbacks on the event loop.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any


if TYPE_CHECKING:
    from pyenvi.interfaces import JobCallback

_LOGGER = logging.getLogger(__name__)

MINUTES_PER_HOUR = 60


def next_grid_time(now: datetime, interval_minutes: int) -> datetime:
    """Get the next wall-clock time on an N-minute grid.

    The grid restarts at the top of every hour, matching a ``0 */N * * * ?``
    cron expression: with N=7 jobs fire at :00, :07, ... :56 and then :00.

    Args:
        now: Current time.
        interval_minutes: Grid step in minutes.

    Returns:
        First grid point strictly after the current grid slot.
    """
    base = now.replace(second=0, microsecond=0)
    next_minute = (base.minute // interval_minutes + 1) * interval_minutes
    if next_minute >= MINUTES_PER_HOUR:
        return base.replace(minute=0) + timedelta(hours=1)
    return base.replace(minute=next_minute)


class AsyncioScheduler:
    """Named one-shot and recurring jobs on the running event loop.

    Example:
        ```python
        scheduler = AsyncioScheduler()

        # Replaces any pending "refresh_all" job
        scheduler.schedule_recurring("refresh_all", 5, poller.refresh_all)
        scheduler.schedule_once("initial_refresh", 2, poller.refresh_all)

        scheduler.cancel("refresh_all")
        await scheduler.close()
        ```

    Attributes:
        lock: Lock held while any job body runs.
    """

    def __init__(self, *, lock: asyncio.Lock | None = None) -> None:
        """Initialize the scheduler.

        Args:
            lock: Optional lock shared with other entry points that must not run
                concurrently with scheduled jobs.
        """
        self.lock = lock or asyncio.Lock()
        self._jobs: dict[str, asyncio.Task[None]] = {}
        self._running: set[asyncio.Task[None]] = set()

    @property
    def job_names(self) -> list[str]:
        """Get names of pending jobs."""
        return [name for name, task in self._jobs.items() if not task.done()]

    def is_scheduled(self, name: str) -> bool:
        """Check whether a job is pending."""
        task = self._jobs.get(name)
        return task is not None and not task.done()

    def schedule_once(self, name: str, delay_seconds: float, callback: JobCallback, *args: Any) -> None:
        """Run ``callback(*args)`` once after ``delay_seconds``.

        Args:
            name: Job name. A pending job with the same name is replaced.
            delay_seconds: Delay before the job fires.
            callback: Coroutine function to run.
            *args: Positional arguments for the callback.
        """
        self.cancel(name)
        self._jobs[name] = asyncio.create_task(self._run_once(name, delay_seconds, callback, args))
        _LOGGER.debug("Scheduled %s in %.1fs", name, delay_seconds)

    def schedule_recurring(self, name: str, interval_minutes: int, callback: JobCallback) -> None:
        """Run ``callback()`` on every N-minute boundary of the wall clock.

        Args:
            name: Job name. A pending job with the same name is replaced.
            interval_minutes: Grid step in minutes.
            callback: Coroutine function to run.
        """
        if interval_minutes < 1:
            msg = f"Recurring interval must be at least 1 minute, got {interval_minutes}"
            raise ValueError(msg)
        self.cancel(name)
        self._jobs[name] = asyncio.create_task(self._run_recurring(name, interval_minutes, callback))
        _LOGGER.debug("Scheduled %s every %d minute(s)", name, interval_minutes)

    def cancel(self, name: str) -> None:
        """Cancel a pending job.

        A job body that is already running is not interrupted.

        Args:
            name: Job name.
        """
        task = self._jobs.pop(name, None)
        if task is not None and not task.done():
            task.cancel()
            _LOGGER.debug("Cancelled %s", name)

    def cancel_all(self) -> None:
        """Cancel every pending job."""
        for name in list(self._jobs):
            self.cancel(name)

    async def close(self) -> None:
        """Cancel pending jobs and running job bodies, and wait for them to finish."""
        tasks = [*self._jobs.values(), *self._running]
        self._jobs.clear()
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task

    async def _run_once(self, name: str, delay_seconds: float, callback: JobCallback, args: tuple[Any, ...]) -> None:
        await asyncio.sleep(delay_seconds)
        # Detach before running so the job can reschedule or cancel its own name
        if self._jobs.get(name) is asyncio.current_task():
            del self._jobs[name]
        await self._execute(name, callback, args)

    async def _run_recurring(self, name: str, interval_minutes: int, callback: JobCallback) -> None:
        target = next_grid_time(datetime.now().astimezone(), interval_minutes)
        while True:
            delay = (target - datetime.now().astimezone()).total_seconds()
            await asyncio.sleep(max(delay, 0))
            # Run outside this task so cancelling the schedule never interrupts a refresh
            task = asyncio.create_task(self._execute(name, callback, ()))
            self._running.add(task)
            task.add_done_callback(self._running.discard)
            # Step from the fired boundary so an early wakeup cannot fire it twice
            target = next_grid_time(max(target, datetime.now().astimezone()), interval_minutes)

    async def _execute(self, name: str, callback: JobCallback, args: tuple[Any, ...]) -> None:
        async with self.lock:
            try:
                await callback(*args)
            except Exception:
                _LOGGER.exception("Scheduled job %s failed", name)
