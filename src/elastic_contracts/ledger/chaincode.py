"""Reference analytics chaincode for the local ledger.

Mirrors the contract surface an ESC expects from a traffic-analytics
chaincode: storage creation, data updates, windowed analysis, holder query
and the two elasticity evaluators. Only meant for dry runs; real contracts
live on the ledger.
"""

from __future__ import annotations

import json
from typing import Any

from .local import ContractContext, LocalLedger


DATA_KEY = "sensor_data"
CALCULATIONS_KEY = "calculations"
HOLDERS_KEY = "analysis_holders"


def create_data_storage(ctx: ContractContext) -> dict[str, Any]:
    ctx.world.setdefault(DATA_KEY, [])
    return {"storage": DATA_KEY}


def create_calculation_storage(ctx: ContractContext) -> dict[str, Any]:
    ctx.world.setdefault(CALCULATIONS_KEY, [])
    ctx.world.setdefault(HOLDERS_KEY, {})
    return {"storage": CALCULATIONS_KEY}


def update_data(ctx: ContractContext, raw_params: str) -> dict[str, Any]:
    params = json.loads(raw_params)
    records = json.loads(params.get("data") or "[]")
    store = ctx.world.setdefault(DATA_KEY, [])
    for record in records:
        store.append({"storedAt": ctx.timestamp_ms, **record})
    ctx.emit(
        "updateData",
        {
            "updateDataID": params.get("updateDataID"),
            "initTime": ctx.timestamp_ms,
            "endTime": ctx.timestamp_ms,
            "totalTime": 0,
            "collectorRequestTime": params.get("collectorRequestTime", 0),
            "escKey": params.get("escKey"),
        },
    )
    return {"stored": len(records)}


def query_analysis_holder(ctx: ContractContext, holder_id: str) -> dict[str, Any]:
    holders = ctx.world.get(HOLDERS_KEY, {})
    return holders.get(str(holder_id), {"holderId": str(holder_id), "analyses": 0})


def make_analysis(exec_ms_per_record: float = 0.5):
    def analysis(ctx: ContractContext, raw_params: str) -> dict[str, Any]:
        params = json.loads(raw_params)
        from_dates = [int(value) for value in json.loads(params.get("fromDates") or "[]")]
        time_data = float(params.get("timeData") or 0)
        frequency = params.get("frequency")
        analysis_id = params.get("analysisID")
        store = ctx.world.get(DATA_KEY, [])

        detections: list[int] = []
        stored: list[int] = []
        by_sensor: list[float] = []
        total_rate: list[float] = []
        scanned = 0
        for from_date in from_dates:
            lower = from_date - 1000 * time_data
            window = [row for row in store if lower <= row["storedAt"] <= from_date]
            scanned += len(window)
            count = sum(int(row.get("detections", 0)) for row in window)
            sensors = {row.get("sensorId") for row in window} or {None}
            seconds = time_data if time_data > 0 else 1.0
            detections.append(count)
            stored.append(len(window))
            by_sensor.append(round(count / seconds / len(sensors), 4))
            total_rate.append(round(count / seconds, 4))

        holders = ctx.world.setdefault(HOLDERS_KEY, {})
        holder = holders.setdefault("1", {"holderId": "1", "analyses": 0})
        holder["analyses"] += 1
        ctx.world.setdefault(CALCULATIONS_KEY, []).append(
            {"analysisID": analysis_id, "detections": detections, "at": ctx.timestamp_ms}
        )
        ctx.emit(
            "analysis",
            {
                "info": [[analysis_id] * len(from_dates), by_sensor, total_rate],
                "analysisList": detections,
                "execDuration": scanned * exec_ms_per_record,
                "timeData": time_data,
                "frequencyData": frequency,
                "totalDataStoredList": stored,
                "fromDates": from_dates,
                "escKey": params.get("escKey"),
            },
        )
        return {"analysisID": analysis_id, "windows": len(from_dates)}

    return analysis


def evaluate_history(
    ctx: ContractContext,
    time_data: str,
    avg_latency: str,
    maximum_time: str,
    minimum_time: str,
) -> float:
    """Shrink the window when analyses run slow, widen it when they run fast."""
    current = float(time_data)
    avg_ms = float(avg_latency) * 1000
    if avg_ms <= 0:
        return current
    if avg_ms > float(maximum_time):
        return current * float(maximum_time) / avg_ms
    if avg_ms < float(minimum_time):
        return current * float(minimum_time) / avg_ms
    return current


def evaluate_frequency(
    ctx: ContractContext,
    frequency: str,
    avg_latency: str,
    maximum_time: str,
    minimum_time: str,
) -> float:
    """Harvest less often when analyses run slow, more often when fast."""
    current = float(frequency)
    avg_ms = float(avg_latency) * 1000
    if avg_ms <= 0:
        return current
    if avg_ms > float(maximum_time):
        return current * avg_ms / float(maximum_time)
    if avg_ms < float(minimum_time):
        return current * avg_ms / float(minimum_time)
    return current


def register_analytics_chaincode(
    ledger: LocalLedger,
    *,
    data_storage_contract: str = "createSensor",
    calculation_storage_contract: str = "calculationStorage",
    update_data_contract: str = "updateData",
    analysis_contract: str = "analysis",
    query_analysis_holder_contract: str = "queryAnalysis",
    evaluate_time_window_contract: str = "evaluateHistory",
    evaluate_harvest_frequency_contract: str = "evaluateFrequency",
    exec_ms_per_record: float = 0.5,
) -> LocalLedger:
    ledger.register(data_storage_contract, create_data_storage)
    ledger.register(calculation_storage_contract, create_calculation_storage)
    ledger.register(update_data_contract, update_data)
    ledger.register(analysis_contract, make_analysis(exec_ms_per_record))
    ledger.register(query_analysis_holder_contract, query_analysis_holder)
    ledger.register(evaluate_time_window_contract, evaluate_history)
    ledger.register(evaluate_harvest_frequency_contract, evaluate_frequency)
    return ledger
