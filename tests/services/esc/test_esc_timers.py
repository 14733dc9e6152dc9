from __future__ import annotations

import asyncio

from elastic_contracts.clock import ManualClock
from elastic_contracts.esc.timers import Deadline, PeriodicTimer


def test_periodic_timer_first_tick_after_one_period() -> None:
    async def scenario():
        clock = ManualClock()
        stamps: list[float] = []

        async def tick() -> None:
            stamps.append(clock.now())

        timer = PeriodicTimer(clock, 1.0, tick, name="t").start()
        await clock.advance(0.9)
        before = list(stamps)
        await clock.advance(2.6)
        timer.cancel()
        await clock.advance(5.0)
        return before, stamps

    before, stamps = asyncio.run(scenario())
    assert before == []
    assert stamps == [1.0, 2.0, 3.0]


def test_reschedule_from_outside_restarts_period() -> None:
    async def scenario():
        clock = ManualClock()
        stamps: list[float] = []

        async def tick() -> None:
            stamps.append(clock.now())

        timer = PeriodicTimer(clock, 1.0, tick, name="t").start()
        await clock.advance(1.5)
        timer.reschedule(2.0)
        await clock.advance(4.0)
        timer.cancel()
        return timer, stamps

    timer, stamps = asyncio.run(scenario())
    assert stamps == [1.0, 3.5, 5.5]
    assert timer.period == 2.0
    assert timer.active is False


def test_reschedule_from_inside_moves_next_deadline() -> None:
    async def scenario():
        clock = ManualClock()
        stamps: list[float] = []
        timer: PeriodicTimer

        async def tick() -> None:
            stamps.append(clock.now())
            if len(stamps) == 2:
                timer.reschedule(3.0)

        timer = PeriodicTimer(clock, 1.0, tick, name="t").start()
        await clock.advance(8.5)
        timer.cancel()
        return stamps

    assert asyncio.run(scenario()) == [1.0, 2.0, 5.0, 8.0]


def test_failing_tick_keeps_timer_running() -> None:
    async def scenario():
        clock = ManualClock()
        calls: list[float] = []

        async def tick() -> None:
            calls.append(clock.now())
            raise RuntimeError("tick failed")

        timer = PeriodicTimer(clock, 1.0, tick, name="t").start()
        await clock.advance(3.0)
        timer.cancel()
        return calls

    assert asyncio.run(scenario()) == [1.0, 2.0, 3.0]


def test_deadline_fires_once_and_wait_returns() -> None:
    async def scenario():
        clock = ManualClock()
        fired: list[float] = []

        async def callback() -> None:
            fired.append(clock.now())

        deadline = Deadline(clock, 2.0, callback, name="d").start()
        waiter = asyncio.ensure_future(deadline.wait())
        await clock.advance(1.0)
        pending = waiter.done()
        await clock.advance(5.0)
        await waiter
        return deadline, fired, pending

    deadline, fired, pending = asyncio.run(scenario())
    assert pending is False
    assert fired == [2.0]
    assert deadline.fired is True


def test_cancelled_deadline_never_fires() -> None:
    async def scenario():
        clock = ManualClock()
        fired: list[float] = []

        async def callback() -> None:
            fired.append(clock.now())

        deadline = Deadline(clock, 2.0, callback, name="d").start()
        waiter = asyncio.ensure_future(deadline.wait())
        await clock.advance(1.0)
        deadline.cancel()
        await clock.advance(5.0)
        await waiter
        return deadline, fired

    deadline, fired = asyncio.run(scenario())
    assert fired == []
    assert deadline.fired is False


def test_slow_tick_delays_next_tick_by_a_full_period() -> None:
    async def scenario():
        clock = ManualClock()
        stamps: list[float] = []

        async def tick() -> None:
            stamps.append(clock.now())
            if len(stamps) == 1:
                await clock.sleep(2.5)

        timer = PeriodicTimer(clock, 1.0, tick, name="t").start()
        await clock.advance(6.0)
        timer.cancel()
        return stamps

    assert asyncio.run(scenario()) == [1.0, 4.5, 5.5]
