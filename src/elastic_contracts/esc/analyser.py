"""Periodic analysis trigger."""

from __future__ import annotations

import json
import logging
from typing import Any

from elastic_contracts.clock import Clock, now_ms
from elastic_contracts.ledger import LedgerAdapter

from .config import EscConfig
from .events import OWNER_FIELD
from .guard import ANALYSIS, SubmissionGuard, SubmissionRequest
from .observability import EscRunMetrics
from .state import InstanceState
from .timers import Deadline, PeriodicTimer


logger = logging.getLogger("elastic_contracts.esc.analyser")

STOP_SLACK_SECONDS = 0.5


class AnalysisScheduler:
    def __init__(
        self,
        state: InstanceState,
        config: EscConfig,
        guard: SubmissionGuard,
        ledger: LedgerAdapter,
        clock: Clock,
        metrics: EscRunMetrics,
        params: dict[str, Any] | None = None,
    ) -> None:
        self.state = state
        self.config = config
        self.guard = guard
        self.ledger = ledger
        self.clock = clock
        self.metrics = metrics
        self.params = dict(params or {})
        self.timer: PeriodicTimer | None = None
        self.start_deadline: Deadline | None = None
        self.stop_deadline: Deadline | None = None

    @property
    def running(self) -> bool:
        return self.timer is not None and self.timer.active

    def start(self) -> None:
        self.start_deadline = Deadline(
            self.clock,
            self.config.analysis_start_delay,
            self._begin,
            name=f"esc:{self.state.key}:analysis-start",
        ).start()

    def stop(self) -> None:
        for handle in (self.start_deadline, self.timer, self.stop_deadline):
            if handle is not None:
                handle.cancel()

    async def _begin(self) -> None:
        self.timer = PeriodicTimer(
            self.clock,
            self.state.analysis_frequency,
            self._tick,
            name=f"esc:{self.state.key}:analysis",
        ).start()
        self.stop_deadline = Deadline(
            self.clock,
            self.config.execution_time + STOP_SLACK_SECONDS,
            self._complete,
            name=f"esc:{self.state.key}:analysis-stop",
        ).start()
        logger.info("ESC %s: analyser started every %ss", self.state.key, self.state.analysis_frequency)

    async def _complete(self) -> None:
        if self.timer is not None:
            self.timer.cancel()
        logger.info("ESC %s: analyser stopped", self.state.key)

    async def _tick(self) -> None:
        self.metrics.bump("analysis_ticks_total")
        await self.launch()
        if self.config.adaptive_harvest and self.timer is not None:
            self.timer.reschedule(self.state.analysis_frequency)

    async def launch(self) -> SubmissionRequest | None:
        state = self.state
        state.calculation_window_dates.append(now_ms(self.clock))
        from_dates = list(state.calculation_window_dates)
        analysis_id = state.new_analysis_id()
        state.analysis_start[analysis_id] = self.clock.now()
        state.analysis_fail_count[analysis_id] = 0
        logger.info("ESC %s: launching analysis transaction %s", state.key, analysis_id)
        try:
            holder = await self.ledger.evaluate_transaction(
                self.config.query_analysis_holder_contract,
                str(self.config.analysis_holder_id),
            )
        except Exception as exc:
            self.metrics.bump("holder_query_error_total")
            logger.error("ESC %s: analysis holder query failed for %s: %s", state.key, analysis_id, exc)
            return None
        finally:
            state.calculation_window_dates.clear()

        payload = {
            **self.params,
            "timeData": state.data_time_limit,
            "fromDates": json.dumps(from_dates),
            "frequency": state.harvest_frequency,
            "analysisHolder": holder.decode("utf-8") if isinstance(holder, (bytes, bytearray)) else str(holder),
            "analysisID": str(analysis_id),
            OWNER_FIELD: state.key,
        }
        request = SubmissionRequest(
            kind=ANALYSIS,
            contract=self.config.analysis_contract,
            payload=payload,
            key=analysis_id,
        )
        self.guard.hand_off(request)
        return request
