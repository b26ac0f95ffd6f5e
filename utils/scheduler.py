"""
Interval scheduler driven by an injectable clock.

Tasks are independent: each has its own interval and next-run time. Tests advance
a FakeClock and call ``run_pending()``; production code calls ``run_forever()``.
"""

import asyncio
import logging
from collections.abc import Callable, Coroutine
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from .clock import Clock

logger = logging.getLogger(__name__)

TaskCallback = Callable[[], Coroutine[Any, Any, Any]]

__all__ = ["ScheduledTask", "Scheduler"]


@dataclass
class ScheduledTask:
    name: str
    interval: timedelta
    callback: TaskCallback
    next_run_at: datetime
    last_run_at: datetime | None = None
    running: bool = False
    run_count: int = 0


class Scheduler:
    def __init__(self, clock: Clock):
        self.clock = clock
        self.tasks: dict[str, ScheduledTask] = {}

    def add_task(
        self,
        name: str,
        interval: timedelta,
        callback: TaskCallback,
        run_immediately: bool = False,
    ) -> ScheduledTask:
        """Register (or replace) a named task. The first run is one interval from now unless ``run_immediately``."""
        if interval <= timedelta(0):
            raise ValueError(f"Task '{name}' needs a positive interval")
        now = self.clock.now()
        task = ScheduledTask(
            name=name,
            interval=interval,
            callback=callback,
            next_run_at=now if run_immediately else now + interval,
        )
        self.tasks[name] = task
        logger.debug(f"Scheduled task '{name}' every {interval}")
        return task

    def remove_task(self, name: str) -> None:
        self.tasks.pop(name, None)

    def next_run_at(self, name: str) -> datetime | None:
        task = self.tasks.get(name)
        return task.next_run_at if task else None

    async def run_pending(self) -> list[str]:
        """Run every due task once. Returns the names of the tasks that ran."""
        now = self.clock.now()
        due = [task for task in self.tasks.values() if task.next_run_at <= now]
        ran = []
        for task in due:
            if await self._run(task):
                ran.append(task.name)
        return ran

    async def trigger(self, name: str) -> bool:
        """Run a task now, bypassing its timer. Returns False if it is unknown or already running."""
        task = self.tasks.get(name)
        if task is None:
            raise KeyError(f"Unknown task '{name}'")
        return await self._run(task)

    async def run_forever(self, poll_seconds: float = 1.0, stop_event: asyncio.Event | None = None) -> None:
        stop_event = stop_event or asyncio.Event()
        logger.info(f"Scheduler started with {len(self.tasks)} tasks")
        while not stop_event.is_set():
            await self.run_pending()
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=poll_seconds)
            except asyncio.TimeoutError:
                pass
        logger.info("Scheduler stopped")

    async def _run(self, task: ScheduledTask) -> bool:
        if task.running:
            logger.debug(f"Task '{task.name}' still running, skipping")
            return False
        task.running = True
        try:
            await task.callback()
        except Exception as e:
            logger.error(f"Scheduled task '{task.name}' failed: {e}", exc_info=True)
        finally:
            task.running = False
            task.last_run_at = self.clock.now()
            task.next_run_at = task.last_run_at + task.interval
            task.run_count += 1
        return True
