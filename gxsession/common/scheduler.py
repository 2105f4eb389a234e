"""
Repeating Timer for Poll Cycles

Provides ScheduledLoop, which fires an async callback at a fixed interval
measured from when the loop started, so callback execution time does not
push later runs back.

Unlike a plain `while True: await asyncio.sleep(interval)` loop, this
scheduler:
- Optionally runs the callback once immediately on start
- Schedules relative to the first run, not to callback completion
- Skips missed intervals instead of queueing them
- Lets a callback that is already running finish when stopped

Usage:
    async def poll():
        ...

    loop = ScheduledLoop(5.0, poll, name="10.0.0.5:502:1/energy")
    await loop.start()

    # Later:
    loop.stop()
"""

import asyncio
import time
from typing import Callable, Awaitable

from .logging_setup import get_service_logger

logger = get_service_logger("scheduler")


class ScheduledLoop:
    """
    Fixed-interval scheduler backed by a single asyncio task.

    Attributes:
        interval: The interval in seconds between executions
        callback: Async function to call each interval
        name: Label used in logs and stats
    """

    def __init__(
        self,
        interval_seconds: float,
        callback: Callable[[], Awaitable[None]],
        name: str = "unnamed",
        run_immediately: bool = False,
    ):
        """
        Initialize a scheduled loop.

        Args:
            interval_seconds: Time between executions (supports sub-second)
            callback: Async function to call each interval
            name: Name for logging/identification
            run_immediately: Run the callback once as soon as the loop starts
        """
        if interval_seconds <= 0:
            raise ValueError(f"interval must be > 0, got {interval_seconds}")

        self.interval = interval_seconds
        self.callback = callback
        self.name = name
        self.run_immediately = run_immediately

        self._next_run: float = 0
        self._running = False
        self._in_callback = False
        self._task: asyncio.Task | None = None

        self._skipped_count: int = 0
        self._execution_count: int = 0
        self._last_execution_time: float = 0

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def done(self) -> bool:
        """True once the background task has finished (or never started)"""
        return self._task is None or self._task.done()

    async def start(self) -> None:
        """Start the scheduled loop in a background task."""
        if self._running:
            return

        self._running = True
        self._task = asyncio.create_task(self._run(), name=f"scheduled-loop:{self.name}")

    def stop(self) -> None:
        """
        Stop the scheduled loop.

        A callback that is mid-flight is left to complete; the loop exits
        right after it. A sleeping loop is cancelled at once.
        """
        self._running = False
        if self._task and not self._in_callback:
            self._task.cancel()

    async def join(self) -> None:
        """Wait for the background task to finish after stop()."""
        if self._task is None or self._task is asyncio.current_task():
            return
        try:
            await self._task
        except asyncio.CancelledError:
            pass

    async def _run(self) -> None:
        """Main loop that fires callback at fixed intervals."""
        self._next_run = time.monotonic()
        if not self.run_immediately:
            self._next_run += self.interval

        while self._running:
            sleep_duration = self._next_run - time.monotonic()
            if sleep_duration > 0:
                try:
                    await asyncio.sleep(sleep_duration)
                except asyncio.CancelledError:
                    break

            if not self._running:
                break

            self._in_callback = True
            try:
                start = time.monotonic()
                await self.callback()
                self._last_execution_time = time.monotonic() - start
                self._execution_count += 1
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Scheduled callback '{self.name}' error: {e}")
            finally:
                self._in_callback = False

            # Skip missed intervals to catch up (don't queue up missed executions)
            now = time.monotonic()
            skipped = 0
            while self._next_run <= now:
                self._next_run += self.interval
                skipped += 1

            # First skip is expected (the one we just executed)
            if skipped > 1:
                self._skipped_count += skipped - 1
                logger.warning(
                    f"Scheduler '{self.name}' skipped {skipped - 1} intervals "
                    f"(execution took {self._last_execution_time:.3f}s)"
                )

    @property
    def skipped_count(self) -> int:
        """Number of intervals skipped to catch up."""
        return self._skipped_count

    @property
    def execution_count(self) -> int:
        """Total number of completed executions."""
        return self._execution_count

    @property
    def last_execution_time(self) -> float:
        """Duration of last callback execution in seconds."""
        return self._last_execution_time

    def get_stats(self) -> dict:
        """Get scheduler statistics for observability."""
        return {
            "name": self.name,
            "interval_s": self.interval,
            "running": self._running,
            "execution_count": self._execution_count,
            "skipped_count": self._skipped_count,
            "last_execution_s": round(self._last_execution_time, 3),
        }
