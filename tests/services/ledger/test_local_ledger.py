from __future__ import annotations

import asyncio
import json

import pytest

from elastic_contracts.clock import ManualClock
from elastic_contracts.ledger import (
    LedgerEvent,
    LocalLedger,
    LocalNetwork,
    TransactionError,
    decode_result,
    register_analytics_chaincode,
)
from elastic_contracts.ledger.chaincode import evaluate_frequency, evaluate_history


def _ledger(clock: ManualClock, **kwargs: float) -> LocalLedger:
    return register_analytics_chaincode(LocalLedger(clock, **kwargs))


def _update_payload(update_id: int, records: list[dict[str, object]], key: str = "esc-a") -> str:
    return json.dumps({"data": json.dumps(records), "updateDataID": update_id, "escKey": key})


def test_submit_runs_contract_and_delivers_events() -> None:
    async def scenario():
        clock = ManualClock(start=100.0)
        ledger = _ledger(clock)
        seen: list[LedgerEvent] = []

        async def listener(event: LedgerEvent) -> None:
            seen.append(event)

        ledger.subscribe(listener)
        raw = await ledger.submit_transaction("updateData", _update_payload(7, [{"sensorId": 1, "detections": 4}]))
        await clock.settle()
        return ledger, raw, seen

    ledger, raw, seen = asyncio.run(scenario())
    assert decode_result(raw) == {"stored": 1}
    assert ledger.world["sensor_data"] == [{"storedAt": 100000, "sensorId": 1, "detections": 4}]
    assert [event.type for event in seen] == ["updateData"]
    assert seen[0].get("updateDataID") == 7
    assert seen[0].get("escKey") == "esc-a"
    assert [tx.name for tx in ledger.submissions("updateData")] == ["updateData"]


def test_commit_latency_holds_submission_until_clock_advances() -> None:
    async def scenario():
        clock = ManualClock()
        ledger = _ledger(clock, commit_latency=2.0)
        task = asyncio.ensure_future(ledger.submit_transaction("createSensor"))
        await clock.advance(1.0)
        halfway = task.done()
        await clock.advance(1.5)
        return ledger, halfway, task.done()

    ledger, halfway, finished = asyncio.run(scenario())
    assert halfway is False
    assert finished is True
    assert ledger.peak_in_flight == 1
    assert "sensor_data" in ledger.world


def test_evaluate_does_not_touch_world_state_or_emit() -> None:
    async def scenario():
        clock = ManualClock(start=5.0)
        ledger = _ledger(clock)
        seen: list[LedgerEvent] = []

        async def listener(event: LedgerEvent) -> None:
            seen.append(event)

        ledger.subscribe(listener)
        payload = json.dumps({"fromDates": "[5000]", "timeData": 1, "analysisID": "0"})
        raw = await ledger.evaluate_transaction("analysis", payload)
        await clock.settle()
        return ledger, raw, seen

    ledger, raw, seen = asyncio.run(scenario())
    assert decode_result(raw) == {"analysisID": "0", "windows": 1}
    assert ledger.world == {}
    assert seen == []
    assert [tx.name for tx in ledger.evaluated] == ["analysis"]


def test_unknown_contract_raises_transaction_error() -> None:
    ledger = LocalLedger(ManualClock())
    with pytest.raises(TransactionError, match="unknown contract"):
        asyncio.run(ledger.submit_transaction("missing"))


def test_contract_failure_is_wrapped() -> None:
    def explode(ctx, *args):
        raise ValueError("boom")

    ledger = LocalLedger(ManualClock())
    ledger.register("explode", explode)
    with pytest.raises(TransactionError, match="boom"):
        asyncio.run(ledger.evaluate_transaction("explode", "x"))


def test_unsubscribed_listener_receives_nothing() -> None:
    async def scenario():
        clock = ManualClock()
        ledger = _ledger(clock)
        seen: list[LedgerEvent] = []

        async def listener(event: LedgerEvent) -> None:
            seen.append(event)

        token = ledger.subscribe(listener)
        ledger.unsubscribe(token)
        await ledger.submit_transaction("updateData", _update_payload(1, []))
        await clock.settle()
        return seen

    assert asyncio.run(scenario()) == []


def test_failing_listener_does_not_block_others() -> None:
    async def scenario():
        clock = ManualClock()
        ledger = LocalLedger(clock)
        seen: list[str] = []

        async def broken(event: LedgerEvent) -> None:
            raise RuntimeError("listener down")

        async def healthy(event: LedgerEvent) -> None:
            seen.append(event.type)

        ledger.subscribe(broken)
        ledger.subscribe(healthy)
        ledger.publish(LedgerEvent(type="analysis", payload={}))
        await clock.settle()
        return seen

    assert asyncio.run(scenario()) == ["analysis"]


def test_analysis_contract_reports_windowed_counts() -> None:
    async def scenario():
        clock = ManualClock(start=1.0)
        ledger = _ledger(clock)
        seen: list[LedgerEvent] = []

        async def listener(event: LedgerEvent) -> None:
            seen.append(event)

        await ledger.submit_transaction("updateData", _update_payload(0, [{"sensorId": 0, "detections": 9}]))
        await clock.advance(1.0)
        await ledger.submit_transaction(
            "updateData",
            _update_payload(1, [{"sensorId": 0, "detections": 2}, {"sensorId": 1, "detections": 4}]),
        )
        ledger.subscribe(listener)
        await clock.advance(0.5)
        payload = {"fromDates": "[2500]", "timeData": 1, "frequency": 1, "analysisID": "3", "escKey": "esc-a"}
        await ledger.submit_transaction("analysis", json.dumps(payload))
        await clock.settle()
        return ledger, seen

    ledger, seen = asyncio.run(scenario())
    assert len(seen) == 1
    event = seen[0]
    assert event.type == "analysis"
    assert event.get("analysisList") == [6]
    assert event.get("totalDataStoredList") == [2]
    assert event.get("info") == [["3"], [3.0], [6.0]]
    assert event.get("execDuration") == 1.0
    assert event.get("escKey") == "esc-a"
    assert ledger.world["analysis_holders"]["1"]["analyses"] == 1


def test_evaluate_history_scales_window_against_bounds() -> None:
    assert evaluate_history(None, "30", "0.2", "100", "50") == pytest.approx(15.0)
    assert evaluate_history(None, "30", "0.025", "100", "50") == pytest.approx(60.0)
    assert evaluate_history(None, "30", "0.075", "100", "50") == pytest.approx(30.0)
    assert evaluate_history(None, "30", "0", "100", "50") == pytest.approx(30.0)


def test_evaluate_frequency_scales_period_against_bounds() -> None:
    assert evaluate_frequency(None, "5", "0.2", "100", "50") == pytest.approx(10.0)
    assert evaluate_frequency(None, "10", "0.025", "100", "50") == pytest.approx(5.0)
    assert evaluate_frequency(None, "10", "0.075", "100", "50") == pytest.approx(10.0)


def test_network_gives_each_chaincode_its_own_ledger() -> None:
    async def scenario():
        clock = ManualClock(start=3.0)
        network = LocalNetwork(clock, commit_latency=0.5)
        first = register_analytics_chaincode(network.contract("first"))
        second = register_analytics_chaincode(network.contract("second"))
        seen: list[LedgerEvent] = []

        async def listener(event: LedgerEvent) -> None:
            seen.append(event)

        second.subscribe(listener)
        task = asyncio.ensure_future(first.submit_transaction("updateData", _update_payload(0, [{"detections": 1}])))
        await clock.advance(1.0)
        await task
        return network, first, second, seen

    network, first, second, seen = asyncio.run(scenario())
    assert network.contract("first") is first
    assert network.chaincodes == ["first", "second"]
    assert first.commit_latency == 0.5
    assert len(first.world["sensor_data"]) == 1
    assert second.world == {}
    assert second.submitted == []
    assert seen == []
