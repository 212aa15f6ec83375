"""Named asyncio timers.

Each timer is a background task sleeping for its delay before awaiting
its callback. Scheduling a name that is already pending replaces it.
"""

from __future__ import annotations

import asyncio
import time
from typing import Awaitable, Callable

from autofarm.core.logging import get_logger

log = get_logger("timers")

Callback = Callable[[], Awaitable[None]]


class TimerRegistry:
    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._tasks: dict[str, asyncio.Task] = {}
        self._due: dict[str, float] = {}

    def schedule(self, name: str, delay: float, callback: Callback) -> None:
        """Run ``callback`` once after ``delay`` seconds."""
        self.cancel(name)
        self._due[name] = self._clock() + delay
        self._tasks[name] = asyncio.create_task(self._run_once(name, delay, callback))
        log.debug("timer_scheduled", timer=name, delay=round(delay, 1))

    def schedule_periodic(self, name: str, interval: float, callback: Callback) -> None:
        """Run ``callback`` every ``interval`` seconds until cancelled."""
        self.cancel(name)
        self._due[name] = self._clock() + interval
        self._tasks[name] = asyncio.create_task(self._run_periodic(name, interval, callback))

    def cancel(self, *names: str) -> None:
        for name in names:
            task = self._tasks.pop(name, None)
            self._due.pop(name, None)
            if task and not task.done():
                task.cancel()

    def cancel_all(self) -> None:
        self.cancel(*list(self._tasks))

    def is_pending(self, name: str) -> bool:
        task = self._tasks.get(name)
        return task is not None and not task.done()

    def due_at(self, name: str) -> float | None:
        """Clock time at which the timer fires next, or None."""
        if not self.is_pending(name):
            return None
        return self._due.get(name)

    async def _run_once(self, name: str, delay: float, callback: Callback) -> None:
        await asyncio.sleep(delay)
        # Unregister first so the callback may reschedule or cancel this name.
        self._tasks.pop(name, None)
        self._due.pop(name, None)
        try:
            await callback()
        except Exception:
            log.exception("timer_callback_failed", timer=name)

    async def _run_periodic(self, name: str, interval: float, callback: Callback) -> None:
        while True:
            await asyncio.sleep(interval)
            self._due[name] = self._clock() + interval
            try:
                await callback()
            except Exception:
                log.exception("timer_callback_failed", timer=name)
