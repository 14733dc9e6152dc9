"""Single in-flight slot per ESC instance with bounded retry admission."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any

from elastic_contracts.clock import Clock
from elastic_contracts.ledger import LedgerAdapter

from .config import EscConfig
from .observability import EscRunMetrics
from .state import InstanceState
from .timers import PeriodicTimer


logger = logging.getLogger("elastic_contracts.esc.guard")

HARVEST = "harvest"
ANALYSIS = "analysis"


@dataclass(frozen=True)
class SubmissionRequest:
    kind: str
    contract: str
    payload: dict[str, Any]
    key: int

    def encoded_payload(self) -> str:
        return json.dumps(self.payload, ensure_ascii=True, separators=(",", ":"))


class SubmissionGuard:
    """Serialises ledger submissions for one instance.

    Every hand-off gets its own retry cadence. A tick that finds the slot busy
    counts a failure against the request key; once the count exceeds the
    retry cap the request is dropped for good. Ledger errors count the same
    way, so a request never retries forever.
    """

    def __init__(
        self,
        state: InstanceState,
        ledger: LedgerAdapter,
        clock: Clock,
        config: EscConfig,
        metrics: EscRunMetrics,
    ) -> None:
        self.state = state
        self.ledger = ledger
        self.clock = clock
        self.config = config
        self.metrics = metrics
        self._cadences: set[PeriodicTimer] = set()

    @property
    def pending(self) -> int:
        return sum(1 for cadence in self._cadences if cadence.active)

    def hand_off(self, request: SubmissionRequest) -> PeriodicTimer:
        interval = self.config.analysis_retry_time if request.kind == ANALYSIS else self.config.harvest_retry_time
        cadence: PeriodicTimer

        async def tick() -> None:
            await self.attempt(request, cadence)

        cadence = PeriodicTimer(
            self.clock,
            interval,
            tick,
            name=f"esc:{self.state.key}:{request.kind}:{request.key}",
        )
        self._cadences.add(cadence)
        return cadence.start()

    def cancel_all(self) -> None:
        for cadence in list(self._cadences):
            cadence.cancel()
        self._cadences.clear()

    async def attempt(self, request: SubmissionRequest, cadence: PeriodicTimer | None = None) -> bool:
        state = self.state
        if state.in_flight:
            self.metrics.bump("busy_retries_total")
            if self._count_failure(request, cadence):
                logger.info(
                    "ESC %s: another transaction is running (%s), retrying %s %s",
                    state.key,
                    state.in_flight_kind,
                    request.kind,
                    request.key,
                )
            return False

        state.in_flight = True
        state.in_flight_kind = request.kind
        self._stamp_start(request)
        self.metrics.bump("submit_attempts_total")
        try:
            await self.ledger.submit_transaction(request.contract, request.encoded_payload())
        except Exception as exc:
            self.metrics.bump("submit_error_total")
            logger.error(
                "ESC %s: %s %s submission to %s failed: %s",
                state.key,
                request.kind,
                request.key,
                request.contract,
                exc,
            )
            self._count_failure(request, cadence)
            return False
        finally:
            state.in_flight = False
            state.in_flight_kind = None

        self._reset_failures(request)
        self._stop(cadence)
        self.metrics.bump("submit_success_total")
        logger.info("ESC %s: %s %s submitted to the ledger", state.key, request.kind, request.key)
        return True

    def failures(self, request: SubmissionRequest) -> int:
        if request.kind == ANALYSIS:
            return self.state.analysis_fail_count[request.key]
        return self.state.harvest_fail_count

    def _count_failure(self, request: SubmissionRequest, cadence: PeriodicTimer | None) -> bool:
        """Record a failed attempt; returns False once the request is abandoned."""
        if request.kind == ANALYSIS:
            self.state.analysis_fail_count[request.key] += 1
        else:
            self.state.harvest_fail_count += 1
        if self.failures(request) <= self.config.retry_cap:
            return True
        self._reset_failures(request)
        self._stop(cadence)
        self.metrics.bump("abandoned_total")
        logger.warning(
            "ESC %s: %s %s abandoned after %s failed attempts",
            self.state.key,
            request.kind,
            request.key,
            self.config.retry_cap + 1,
        )
        return False

    def _reset_failures(self, request: SubmissionRequest) -> None:
        if request.kind == ANALYSIS:
            self.state.analysis_fail_count[request.key] = 0
        else:
            self.state.harvest_fail_count = 0

    def _stamp_start(self, request: SubmissionRequest) -> None:
        if request.kind == ANALYSIS:
            self.state.analysis_start[request.key] = self.clock.now()
        else:
            self.state.update_start[request.key] = self.clock.now()

    def _stop(self, cadence: PeriodicTimer | None) -> None:
        if cadence is None:
            return
        cadence.cancel()
        self._cadences.discard(cadence)
