"""Latency-driven adjustment of the harvest frequency or analysis time-window."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from elastic_contracts.clock import Clock
from elastic_contracts.ledger import LedgerAdapter, LedgerEvent, decode_result

from .config import ElasticityMode, EscConfig
from .events import ANALYSIS_EVENT, analysis_id_of, owned_by
from .observability import EscRunMetrics
from .state import InstanceState
from .timers import Deadline


logger = logging.getLogger("elastic_contracts.esc.elasticity")

TIME_WINDOW_BOUNDS = (1.0, 65536.0)
HARVEST_FREQUENCY_BOUNDS = (5.0, 60.0)
STOP_SLACK_SECONDS = 0.1


def clamp(value: float, lower: float, upper: float) -> float:
    return max(lower, min(upper, value))


def clamp_time_window(value: float) -> float:
    return clamp(value, *TIME_WINDOW_BOUNDS)


def clamp_harvest_frequency(value: float) -> float:
    return clamp(value, *HARVEST_FREQUENCY_BOUNDS)


def accept_time_window(candidate: float, *, current: float, harvest_frequency: float) -> bool:
    # Window (seconds of data) is compared against the harvest period as-is.
    return candidate != current and candidate > harvest_frequency


def accept_harvest_frequency(candidate: float, *, current: float, analysis_frequency: float) -> bool:
    return candidate > 0 and candidate != current and candidate >= analysis_frequency


@dataclass(frozen=True)
class ElasticityDecision:
    mode: ElasticityMode
    analysis_id: int
    average_latency: float
    window_latency: float
    current: float
    proposed: float
    clamped: float
    applied: bool

    def as_dict(self) -> dict[str, Any]:
        return {
            "mode": self.mode.value,
            "analysis_id": self.analysis_id,
            "average_latency": self.average_latency,
            "window_latency": self.window_latency,
            "current": self.current,
            "proposed": self.proposed,
            "clamped": self.clamped,
            "applied": self.applied,
        }


class ElasticityEvaluator:
    """Evaluates elasticity every ``frequency_control_calculate`` analyses.

    The counter and window accumulator are local to the evaluator; the moving
    average itself comes from the instance latency history so that duplicate
    completions of one analysis never count twice.
    """

    def __init__(
        self,
        state: InstanceState,
        config: EscConfig,
        ledger: LedgerAdapter,
        clock: Clock,
        metrics: EscRunMetrics,
    ) -> None:
        self.state = state
        self.config = config
        self.ledger = ledger
        self.clock = clock
        self.metrics = metrics
        self.control_count = 0
        self.window_latency = 0.0
        self.decisions: list[ElasticityDecision] = []
        self._token: int | None = None
        self._stop_deadline: Deadline | None = None

    @property
    def listening(self) -> bool:
        return self._token is not None

    def start(self) -> None:
        self._token = self.ledger.subscribe(self.on_event)
        self._stop_deadline = Deadline(
            self.clock,
            self.config.execution_time + STOP_SLACK_SECONDS,
            self._complete,
            name=f"esc:{self.state.key}:elasticity-stop",
        ).start()

    def stop(self) -> None:
        if self._token is not None:
            self.ledger.unsubscribe(self._token)
            self._token = None
        if self._stop_deadline is not None:
            self._stop_deadline.cancel()

    async def _complete(self) -> None:
        if self._token is not None:
            self.ledger.unsubscribe(self._token)
            self._token = None

    async def on_event(self, event: LedgerEvent) -> None:
        if event.type != ANALYSIS_EVENT or not owned_by(event, self.state.key):
            return
        analysis_id = analysis_id_of(event)
        if analysis_id is None:
            logger.warning("ESC %s: analysis event without an analysis id", self.state.key)
            return
        latency = self.state.analysis_latency(analysis_id, self.clock.now())
        if latency is None:
            logger.debug("ESC %s: no start timestamp for analysis %s", self.state.key, analysis_id)
            return

        self.control_count += 1
        self.window_latency += latency / self.config.frequency_control_calculate
        if self.control_count < self.config.frequency_control_calculate:
            return
        try:
            await self.evaluate(analysis_id, latency, window_latency=self.window_latency)
        finally:
            self.control_count = 0
            self.window_latency = 0.0

    async def evaluate(
        self,
        analysis_id: int,
        latency: float,
        *,
        window_latency: float | None = None,
    ) -> ElasticityDecision | None:
        state = self.state
        config = self.config
        window = latency if window_latency is None else window_latency
        state.history.record(analysis_id, latency)
        average = state.history.average()
        if average is None:
            return None
        self.metrics.bump("evaluations_total")
        logger.info(
            "ESC %s: evaluating after analysis %s (avg latency %.3fs, window mean %.3fs)",
            state.key,
            analysis_id,
            average,
            window,
        )

        time_window_mode = config.elasticity_mode == ElasticityMode.TIME_WINDOW
        contract = (
            config.evaluate_time_window_contract if time_window_mode else config.evaluate_harvest_frequency_contract
        )
        current = state.data_time_limit if time_window_mode else state.harvest_frequency
        try:
            raw = await self.ledger.evaluate_transaction(
                contract,
                str(current),
                str(average),
                str(config.maximum_time_analysis),
                str(config.minimum_time_analysis),
            )
            proposed = float(decode_result(raw))
        except Exception as exc:
            self.metrics.bump("evaluation_error_total")
            logger.error("ESC %s: elasticity evaluation via %s failed: %s", state.key, contract, exc)
            return None

        if time_window_mode:
            clamped = clamp_time_window(proposed)
            applied = accept_time_window(clamped, current=current, harvest_frequency=state.harvest_frequency)
            if applied:
                state.data_time_limit = clamped
                logger.info("ESC %s: new time window %ss", state.key, clamped)
        else:
            clamped = clamp_harvest_frequency(proposed)
            applied = accept_harvest_frequency(clamped, current=current, analysis_frequency=state.analysis_frequency)
            if applied:
                state.harvest_frequency = clamped
                state.mailbox.post(clamped)
                logger.info("ESC %s: new harvest frequency %ss", state.key, clamped)
        if applied:
            self.metrics.bump("parameter_changes_total")

        decision = ElasticityDecision(
            mode=config.elasticity_mode,
            analysis_id=analysis_id,
            average_latency=average,
            window_latency=window,
            current=current,
            proposed=proposed,
            clamped=clamped,
            applied=applied,
        )
        self.decisions.append(decision)
        return decision
