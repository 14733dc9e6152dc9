"""CSV time-series of analysis and harvest completions."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Iterable

import numpy as np

from elastic_contracts.clock import Clock, now_ms
from elastic_contracts.ledger import LedgerAdapter, LedgerEvent

from .config import EscConfig
from .events import ANALYSIS_EVENT, UPDATE_DATA_EVENT, analysis_id_of, owned_by, update_id_of
from .observability import EscRunMetrics
from .state import InstanceState
from .timers import Deadline


logger = logging.getLogger("elastic_contracts.esc.recorder")

FLUSH_DELAY_SECONDS = 10.0


@dataclass(frozen=True)
class ResultPaths:
    calculations: Path
    harvest: Path
    experiment: Path
    metrics: Path


def result_date_stamp(timestamp: float) -> str:
    day = datetime.fromtimestamp(timestamp)
    return f"{day.month}_{day.day}_{day.year}"


def result_paths(config: EscConfig, timestamp: float, suffix: str = "") -> ResultPaths:
    stem = f"{config.experiment_name}{suffix}_{result_date_stamp(timestamp)}"
    root = Path(config.results_path)
    return ResultPaths(
        calculations=root / f"{stem}.csv",
        harvest=root / f"{stem}_harvest.csv",
        experiment=root / f"{stem}_experiment.csv",
        metrics=root / f"{stem}_metrics.json",
    )


def seed_buffer(path: Path, header: str) -> str:
    """Existing same-day file contents, or a fresh header line."""
    try:
        existing = path.read_text(encoding="utf-8")
    except OSError:
        return _line([header])
    if not existing:
        return _line([header])
    return existing if existing.endswith("\n") else existing + "\n"


def format_value(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return str(value).lower()
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _line(values: Iterable[Any]) -> str:
    return ",".join(format_value(value) for value in values) + "\n"


def _number(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def _item(values: Any, index: int) -> Any:
    try:
        return values[index]
    except (TypeError, IndexError, KeyError):
        return None


class ResultRecorder:
    """Buffers one row per analysis window and per data update.

    Buffers are seeded from any same-day file so reruns append under a single
    header; both files are rewritten in full when the flush deadline fires.
    """

    def __init__(
        self,
        state: InstanceState,
        config: EscConfig,
        ledger: LedgerAdapter,
        clock: Clock,
        metrics: EscRunMetrics,
        *,
        esc_count: int = 1,
        suffix: str = "",
    ) -> None:
        self.state = state
        self.config = config
        self.ledger = ledger
        self.clock = clock
        self.metrics = metrics
        self.esc_count = esc_count
        self.paths = result_paths(config, clock.now(), suffix)
        self.calculations_buffer = ""
        self.harvest_buffer = ""
        self.flushed = False
        self._token: int | None = None
        self._flush_deadline: Deadline | None = None

    def start(self) -> None:
        self.calculations_buffer = seed_buffer(self.paths.calculations, self.config.csv_results_calculations_header)
        self.harvest_buffer = seed_buffer(self.paths.harvest, self.config.csv_results_harvest_header)
        self._token = self.ledger.subscribe(self.on_event)
        self._flush_deadline = Deadline(
            self.clock,
            self.config.execution_time + FLUSH_DELAY_SECONDS,
            self.flush,
            name=f"esc:{self.state.key}:results-flush",
        ).start()

    def stop(self) -> None:
        if self._token is not None:
            self.ledger.unsubscribe(self._token)
            self._token = None
        if self._flush_deadline is not None:
            self._flush_deadline.cancel()

    async def wait_flushed(self) -> None:
        if self._flush_deadline is not None:
            await self._flush_deadline.wait()

    async def on_event(self, event: LedgerEvent) -> None:
        if not owned_by(event, self.state.key):
            return
        if event.type == ANALYSIS_EVENT:
            self.record_analysis(event)
        elif event.type == UPDATE_DATA_EVENT:
            self.record_update(event)

    def record_analysis(self, event: LedgerEvent) -> int:
        state = self.state
        config = self.config
        self.metrics.bump("analysis_events_total")
        analysis_id = analysis_id_of(event)
        if analysis_id is None or analysis_id not in state.analysis_start:
            logger.warning("ESC %s: analysis event for unknown analysis %s", state.key, analysis_id)
            return 0

        exec_duration = _number(event.get("execDuration"))
        time_data = _number(event.get("timeData"))
        info = event.get("info") or []
        from_dates = event.get("fromDates") or []
        stored = event.get("totalDataStoredList") or []
        rows = 0
        for index, detections in enumerate(event.get("analysisList") or []):
            if config.maximum_time_analysis < exec_duration:
                state.calculations_over_max += 1
            logger.info(
                "ESC %s: analysis %s executed in %s ms",
                state.key,
                analysis_id,
                format_value(exec_duration),
            )
            now = self.clock.now()
            latency = now - state.analysis_start[analysis_id]
            state.history.record(analysis_id, latency)
            from_date = _item(from_dates, index)
            values: list[Any] = [
                _number(detections) + 1,
                latency,
                exec_duration / 1000,
                config.analysis_frequency,
                event.get("timeData"),
                event.get("frequencyData"),
                _item(stored, index),
                from_date,
                _number(from_date) - 1000 * time_data if from_date is not None else None,
                config.minimum_time_analysis,
                config.maximum_time_analysis,
                self.esc_count,
                state.analysis_fail_count[analysis_id],
                state.harvest_fail_count,
                int(round(state.analysis_start[analysis_id] * 1000)),
                now_ms(self.clock),
            ]
            values.extend(_item(column, index) for column in info)
            self.calculations_buffer += _line(values)
            if latency > 0:
                state.exec_times.append(latency)
            rows += 1
        return rows

    def record_update(self, event: LedgerEvent) -> bool:
        self.metrics.bump("update_events_total")
        update_id = update_id_of(event)
        started = self.state.update_start.get(update_id) if update_id is not None else None
        if started is None:
            logger.warning("ESC %s: data update event for unknown update %s", self.state.key, update_id)
            return False
        start_ms = int(round(started * 1000))
        end_ms = now_ms(self.clock)
        self.harvest_buffer += _line(
            [
                start_ms,
                end_ms,
                end_ms - start_ms,
                event.get("initTime"),
                event.get("endTime"),
                event.get("totalTime"),
                event.get("collectorRequestTime"),
            ]
        )
        return True

    def experiment_row(self) -> list[Any]:
        times = np.asarray(self.state.exec_times, dtype=float)
        if times.size:
            stats = [float(times.min()), float(times.max()), float(times.mean()), float(times.std())]
        else:
            stats = [None, None, None, None]
        return [
            self.state.harvest_frequency,
            self.state.data_time_limit,
            *stats,
            int(times.size),
            self.state.calculations_over_max,
        ]

    async def flush(self) -> ResultPaths:
        if self._token is not None:
            self.ledger.unsubscribe(self._token)
            self._token = None
        paths = self.paths
        paths.calculations.parent.mkdir(parents=True, exist_ok=True)
        paths.calculations.write_text(self.calculations_buffer, encoding="utf-8")
        paths.harvest.parent.mkdir(parents=True, exist_ok=True)
        paths.harvest.write_text(self.harvest_buffer, encoding="utf-8")
        experiment = seed_buffer(paths.experiment, self.config.csv_results_experiment_header)
        paths.experiment.write_text(experiment + _line(self.experiment_row()), encoding="utf-8")
        self.metrics.export(paths.metrics)
        self.flushed = True
        logger.info("ESC %s: results written to %s", self.state.key, paths.calculations.parent)
        return paths
