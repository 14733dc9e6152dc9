"""Sensor data collectors feeding the harvest loop."""

from __future__ import annotations

import time
from typing import Any, Protocol

import numpy as np

from elastic_contracts.clock import Clock, LoopClock, now_ms


class Collector(Protocol):
    async def collect(self) -> dict[str, Any]:
        ...


class SyntheticSensorCollector:
    """Seeded traffic-sensor readings: Poisson car detections per sensor."""

    def __init__(
        self,
        *,
        sensors: int = 4,
        mean_detections: float = 3.0,
        seed: int = 0,
        clock: Clock | None = None,
    ) -> None:
        if sensors < 1:
            raise ValueError("sensors must be at least 1")
        self.sensors = sensors
        self.mean_detections = mean_detections
        self.clock = clock or LoopClock()
        self._rng = np.random.default_rng(seed)
        self._next_sensor = 0

    async def collect(self) -> dict[str, Any]:
        started = time.perf_counter()
        sensor_id = self._next_sensor
        self._next_sensor = (self._next_sensor + 1) % self.sensors
        detections = int(self._rng.poisson(self.mean_detections))
        return {
            "sensorId": sensor_id,
            "detections": detections,
            "timestamp": now_ms(self.clock),
            "collectorRequestTime": round((time.perf_counter() - started) * 1000, 3),
        }
