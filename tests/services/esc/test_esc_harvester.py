from __future__ import annotations

import asyncio
import json
from typing import Any

from elastic_contracts.clock import ManualClock
from elastic_contracts.esc.config import ElasticityMode, EscConfig
from elastic_contracts.esc.guard import SubmissionGuard
from elastic_contracts.esc.harvester import HarvestScheduler
from elastic_contracts.esc.observability import EscRunMetrics
from elastic_contracts.esc.state import InstanceState
from elastic_contracts.ledger import LocalLedger, register_analytics_chaincode


class CountingCollector:
    def __init__(self) -> None:
        self.calls = 0

    async def collect(self) -> dict[str, Any]:
        self.calls += 1
        return {"sensorId": 0, "detections": self.calls, "collectorRequestTime": 0.5}


def _harvester(clock: ManualClock, **overrides: Any):
    config = EscConfig(**overrides)
    ledger = register_analytics_chaincode(LocalLedger(clock))
    state = InstanceState.from_config("esc-a", config)
    metrics = EscRunMetrics(instance_key="esc-a")
    guard = SubmissionGuard(state, ledger, clock, config, metrics)
    harvester = HarvestScheduler(state, config, guard, CountingCollector(), clock, metrics)
    return harvester, guard, ledger, state


def test_fixed_frequency_run_submits_one_update_per_second() -> None:
    async def scenario():
        clock = ManualClock()
        harvester, guard, ledger, state = _harvester(clock, execution_time=60, harvest_frequency=1)
        harvester.start()
        await clock.advance(60.05)
        running_before_stop = harvester.running
        await clock.advance(0.1)
        running_after_stop = harvester.running
        await clock.advance(2.0)
        return harvester, ledger, running_before_stop, running_after_stop

    harvester, ledger, running_before_stop, running_after_stop = asyncio.run(scenario())
    assert running_before_stop is True
    assert running_after_stop is False
    assert harvester.timer is not None and harvester.timer.ticks == 60
    assert len(ledger.submissions("updateData")) == 60
    assert ledger.peak_in_flight == 1


def test_batch_is_handed_off_when_full() -> None:
    async def scenario():
        clock = ManualClock(start=2.0)
        harvester, guard, ledger, state = _harvester(clock, data_per_harvest=3, data_time_limit=12)
        results = [await harvester.harvest() for _ in range(3)]
        guard.cancel_all()
        return results, state

    results, state = asyncio.run(scenario())
    assert results[:2] == [None, None]
    request = results[2]
    assert request is not None
    assert [record["detections"] for record in json.loads(request.payload["data"])] == [1, 2, 3]
    assert request.payload["updateDataID"] == 0
    assert request.payload["timeData"] == 12
    assert request.payload["dataPerHarvest"] == 3
    assert request.payload["escKey"] == "esc-a"
    assert state.update_start == {0: 2.0}
    assert state.harvest_batch == []


def test_pending_frequency_change_restarts_tick_loop() -> None:
    async def scenario():
        clock = ManualClock()
        harvester, guard, ledger, state = _harvester(
            clock,
            elasticity_mode=ElasticityMode.HARVEST_FREQUENCY,
            harvest_frequency=5,
            analysis_frequency=5,
            execution_time=100,
        )
        harvester.start()
        await clock.advance(10.0)
        before_change = harvester.handed_off
        state.mailbox.post(7)
        state.mailbox.post(20)
        await clock.advance(5.0)
        at_change = harvester.handed_off
        await clock.advance(19.0)
        before_new_period = harvester.handed_off
        await clock.advance(1.0)
        after_new_period = harvester.handed_off
        harvester.stop()
        guard.cancel_all()
        return harvester, state, before_change, at_change, before_new_period, after_new_period

    harvester, state, before_change, at_change, before_new_period, after_new_period = asyncio.run(scenario())
    assert before_change == 2
    assert at_change == 2
    assert before_new_period == 2
    assert after_new_period == 3
    assert harvester.timer is not None and harvester.timer.period == 20.0
    assert state.mailbox.pending is False


def test_fixed_mode_ignores_mailbox() -> None:
    async def scenario():
        clock = ManualClock()
        harvester, guard, ledger, state = _harvester(clock, harvest_frequency=1, execution_time=10)
        harvester.start()
        state.mailbox.post(30)
        await clock.advance(3.0)
        harvester.stop()
        guard.cancel_all()
        return harvester, state

    harvester, state = asyncio.run(scenario())
    assert harvester.handed_off == 3
    assert state.mailbox.pending is True
