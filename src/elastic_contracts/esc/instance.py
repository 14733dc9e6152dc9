"""ESC instance wiring and multi-instance runs."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Sequence

from elastic_contracts.clock import Clock, LoopClock
from elastic_contracts.ledger import LedgerAdapter, LedgerNetwork

from .analyser import AnalysisScheduler
from .collector import Collector, SyntheticSensorCollector
from .config import EscConfig, EscConfigError
from .elasticity import ElasticityEvaluator
from .guard import SubmissionGuard
from .harvester import HarvestScheduler
from .observability import EscRunMetrics
from .recorder import ResultPaths, ResultRecorder
from .state import InstanceState


logger = logging.getLogger("elastic_contracts.esc.instance")

CollectorFactory = Callable[[EscConfig, int], Collector]


class EscInstance:
    """One running ESC: owns its state and every loop acting on it."""

    def __init__(
        self,
        config: EscConfig,
        ledger: LedgerAdapter,
        *,
        collector: Collector | None = None,
        clock: Clock | None = None,
        key: str | None = None,
        esc_count: int = 1,
        result_suffix: str = "",
        analyser_params: dict[str, Any] | None = None,
    ) -> None:
        self.config = config
        self.ledger = ledger
        self.clock = clock or LoopClock()
        self.key = key or config.chaincode_name
        self.state = InstanceState.from_config(self.key, config)
        self.metrics = EscRunMetrics(instance_key=self.key)
        self.guard = SubmissionGuard(self.state, ledger, self.clock, config, self.metrics)
        self.recorder = ResultRecorder(
            self.state,
            config,
            ledger,
            self.clock,
            self.metrics,
            esc_count=esc_count,
            suffix=result_suffix,
        )
        self.evaluator = ElasticityEvaluator(self.state, config, ledger, self.clock, self.metrics)
        self.analyser = AnalysisScheduler(
            self.state,
            config,
            self.guard,
            ledger,
            self.clock,
            self.metrics,
            params=analyser_params,
        )
        self.harvester = HarvestScheduler(
            self.state,
            config,
            self.guard,
            collector or SyntheticSensorCollector(clock=self.clock),
            self.clock,
            self.metrics,
        )
        self.started = False

    def start(self) -> None:
        if self.started:
            return
        self.started = True
        logger.info(
            "ESC %s: starting (%s mode, %ss run)",
            self.key,
            self.config.elasticity_mode.value,
            self.config.execution_time,
        )
        self.recorder.start()
        self.analyser.start()
        self.evaluator.start()
        self.harvester.start()

    def stop(self) -> None:
        self.harvester.stop()
        self.analyser.stop()
        self.evaluator.stop()
        self.recorder.stop()
        self.guard.cancel_all()

    async def run(self) -> ResultPaths:
        """Run until the results are flushed, then tear every timer down."""
        self.start()
        try:
            await self.recorder.wait_flushed()
        finally:
            self.stop()
        return self.recorder.paths


def build_instances(
    configs: Sequence[EscConfig],
    network: LedgerNetwork,
    *,
    clock: Clock | None = None,
    collector_factory: CollectorFactory | None = None,
) -> list[EscInstance]:
    clock = clock or LoopClock()
    total = sum(config.number_of_escs for config in configs)
    instances: list[EscInstance] = []
    for config in configs:
        ledger = network.contract(config.chaincode_name)
        for ordinal in range(config.number_of_escs):
            many = config.number_of_escs > 1
            key = f"{config.chaincode_name}-{ordinal + 1}" if many else config.chaincode_name
            if any(instance.key == key for instance in instances):
                raise EscConfigError(f"duplicate ESC instance key: {key}")
            if collector_factory is not None:
                collector = collector_factory(config, ordinal)
            else:
                collector = SyntheticSensorCollector(seed=len(instances), clock=clock)
            instances.append(
                EscInstance(
                    config,
                    ledger,
                    collector=collector,
                    clock=clock,
                    key=key,
                    esc_count=total,
                    result_suffix=f"_esc{ordinal + 1}" if many else "",
                )
            )
    return instances


async def run_escs(
    configs: Sequence[EscConfig],
    network: LedgerNetwork,
    *,
    clock: Clock | None = None,
    collector_factory: CollectorFactory | None = None,
) -> list[ResultPaths]:
    instances = build_instances(configs, network, clock=clock, collector_factory=collector_factory)
    logger.info("Running %s ESC instance(s)", len(instances))
    return list(await asyncio.gather(*(instance.run() for instance in instances)))
