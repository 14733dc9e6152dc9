"""Periodic harvest loop."""

from __future__ import annotations

import json
import logging

from elastic_contracts.clock import Clock

from .collector import Collector
from .config import EscConfig
from .events import OWNER_FIELD
from .guard import HARVEST, SubmissionGuard, SubmissionRequest
from .observability import EscRunMetrics
from .state import InstanceState
from .timers import Deadline, PeriodicTimer


logger = logging.getLogger("elastic_contracts.esc.harvester")

STOP_SLACK_SECONDS = 0.1


class HarvestScheduler:
    """Collects a record per tick and hands full batches to the guard.

    In harvest-frequency mode each tick first drains the frequency mailbox; a
    pending change restarts the tick loop at the new period instead of
    harvesting. The stop deadline at ``execution_time + 0.1s`` ends the run in
    both modes.
    """

    def __init__(
        self,
        state: InstanceState,
        config: EscConfig,
        guard: SubmissionGuard,
        collector: Collector,
        clock: Clock,
        metrics: EscRunMetrics,
    ) -> None:
        self.state = state
        self.config = config
        self.guard = guard
        self.collector = collector
        self.clock = clock
        self.metrics = metrics
        self.timer: PeriodicTimer | None = None
        self.stop_deadline: Deadline | None = None
        self.handed_off = 0

    @property
    def running(self) -> bool:
        return self.timer is not None and self.timer.active

    def start(self) -> None:
        if self.config.adaptive_harvest:
            self.state.mailbox.clear()
        self.timer = PeriodicTimer(
            self.clock,
            self.state.harvest_frequency,
            self._tick,
            name=f"esc:{self.state.key}:harvest",
        ).start()
        self.stop_deadline = Deadline(
            self.clock,
            self.config.execution_time + STOP_SLACK_SECONDS,
            self._complete,
            name=f"esc:{self.state.key}:harvest-stop",
        ).start()
        logger.info(
            "ESC %s: harvester started every %ss for %ss",
            self.state.key,
            self.state.harvest_frequency,
            self.config.execution_time,
        )

    def stop(self) -> None:
        if self.timer is not None:
            self.timer.cancel()
        if self.stop_deadline is not None:
            self.stop_deadline.cancel()

    async def _complete(self) -> None:
        if self.timer is not None:
            self.timer.cancel()
        logger.info("ESC %s: execution completed, harvester shut down", self.state.key)

    async def _tick(self) -> None:
        self.metrics.bump("harvest_ticks_total")
        if self.config.adaptive_harvest and self.timer is not None:
            change = self.state.mailbox.take()
            if change is not None:
                logger.info("ESC %s: harvest frequency now %ss", self.state.key, change.new_frequency)
                self.timer.reschedule(change.new_frequency)
                return
        await self.harvest()

    async def harvest(self) -> SubmissionRequest | None:
        state = self.state
        record = await self.collector.collect()
        state.harvest_batch.append(record)
        state.harvest_fail_count = 0
        if len(state.harvest_batch) < self.config.data_per_harvest:
            return None

        batch, state.harvest_batch = state.harvest_batch, []
        update_id = state.new_update_id()
        payload = {
            "data": json.dumps(batch, ensure_ascii=True, separators=(",", ":")),
            "timeData": state.data_time_limit,
            "frequency": state.harvest_frequency,
            "dataPerHarvest": self.config.data_per_harvest,
            "collectorRequestTime": record.get("collectorRequestTime", 0),
            "updateDataID": update_id,
            OWNER_FIELD: state.key,
        }
        state.update_start[update_id] = self.clock.now()
        request = SubmissionRequest(
            kind=HARVEST,
            contract=self.config.update_data_contract,
            payload=payload,
            key=update_id,
        )
        self.guard.hand_off(request)
        self.handed_off += 1
        return request
