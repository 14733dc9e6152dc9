"""Periodic ticks and one-shot deadlines on top of a Clock."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

from elastic_contracts.clock import Clock


logger = logging.getLogger("elastic_contracts.esc.timers")

TickCallback = Callable[[], Awaitable[None]]


class PeriodicTimer:
    """Deadline-based periodic tick.

    The first tick fires one period after ``start``. Callbacks are awaited, so
    a timer never overlaps with itself, and the next tick is never due sooner
    than one full period after the previous callback returned. ``reschedule``
    keeps a single active loop: called from inside the callback it only moves
    the next deadline, called from outside it cancels the sleeping loop and
    starts a new one.
    """

    def __init__(self, clock: Clock, period: float, callback: TickCallback, *, name: str) -> None:
        if period <= 0:
            raise ValueError(f"timer period must be positive: {period}")
        self.clock = clock
        self.period = float(period)
        self.name = name
        self.ticks = 0
        self._callback = callback
        self._task: asyncio.Task[None] | None = None
        self._active = False
        self._next_due = 0.0

    @property
    def active(self) -> bool:
        return self._active

    def start(self) -> "PeriodicTimer":
        if self._active:
            return self
        self._active = True
        self._next_due = self.clock.now() + self.period
        self._task = asyncio.get_running_loop().create_task(self._run(), name=self.name)
        return self

    def cancel(self) -> None:
        self._active = False
        task, self._task = self._task, None
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()

    def reschedule(self, period: float) -> None:
        if period <= 0:
            raise ValueError(f"timer period must be positive: {period}")
        self.period = float(period)
        if self._task is not None and self._task is asyncio.current_task():
            self._next_due = self.clock.now() + self.period
            return
        self.cancel()
        self.start()

    async def _run(self) -> None:
        while self._active:
            await self.clock.sleep(self._next_due - self.clock.now())
            if not self._active:
                break
            self._next_due += self.period
            self.ticks += 1
            try:
                await self._callback()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Timer %s tick %s failed", self.name, self.ticks)
            self._next_due = max(self._next_due, self.clock.now() + self.period)


class Deadline:
    """One-shot timer firing ``callback`` after ``delay`` seconds."""

    def __init__(self, clock: Clock, delay: float, callback: TickCallback, *, name: str) -> None:
        self.clock = clock
        self.delay = max(0.0, float(delay))
        self.name = name
        self.fired = False
        self._callback = callback
        self._task: asyncio.Task[None] | None = None

    def start(self) -> "Deadline":
        if self._task is None:
            self._task = asyncio.get_running_loop().create_task(self._run(), name=self.name)
        return self

    def cancel(self) -> None:
        task, self._task = self._task, None
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()

    async def wait(self) -> None:
        task = self._task
        if task is None:
            return
        try:
            await asyncio.shield(task)
        except asyncio.CancelledError:
            if task.cancelled():
                return
            raise

    async def _run(self) -> None:
        await self.clock.sleep(self.delay)
        self.fired = True
        try:
            await self._callback()
        except Exception:
            logger.exception("Deadline %s callback failed", self.name)
