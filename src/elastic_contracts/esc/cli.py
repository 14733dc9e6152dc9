"""ESC command line entry point (start/bootstrap)."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
from pathlib import Path
from typing import Sequence

from elastic_contracts.clock import Clock, LoopClock, ManualClock
from elastic_contracts.ledger import LocalNetwork, register_analytics_chaincode

from .bootstrap import bootstrap_storage
from .config import EscConfig, EscConfigError, load_configs
from .instance import run_escs
from .logging_utils import configure_logging


logger = logging.getLogger("elastic_contracts.esc.cli")

SIMULATION_STEP_SECONDS = 0.5


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Elastic Smart Contract runner")
    sub = parser.add_subparsers(dest="command", required=True)

    start = sub.add_parser("start", help="Run the configured ESC(s) against the local ledger")
    start.add_argument("--config", required=True, help="Path to ESC YAML profile")
    start.add_argument("--simulate", action="store_true", help="Run on virtual time instead of the wall clock")
    start.add_argument("--log-path", default=None, help="Optional log file path")
    start.add_argument("--commit-latency", type=float, default=0.0, help="Simulated ledger commit latency (s)")
    start.add_argument("--log-level", default="INFO", help="Logging level")

    bootstrap = sub.add_parser("bootstrap", help="Create data and calculation storage on the ledger")
    bootstrap.add_argument("--config", required=True, help="Path to ESC YAML profile")
    bootstrap.add_argument("--log-level", default="INFO", help="Logging level")
    return parser


def build_network(configs: Sequence[EscConfig], clock: Clock, *, commit_latency: float = 0.0) -> LocalNetwork:
    """Install the reference chaincode once per configured chaincode name."""
    network = LocalNetwork(clock, commit_latency=commit_latency)
    for config in configs:
        register_analytics_chaincode(
            network.contract(config.chaincode_name),
            data_storage_contract=config.data_storage_contract,
            calculation_storage_contract=config.calculation_storage_contract,
            update_data_contract=config.update_data_contract,
            analysis_contract=config.analysis_contract,
            query_analysis_holder_contract=config.query_analysis_holder_contract,
            evaluate_time_window_contract=config.evaluate_time_window_contract,
            evaluate_harvest_frequency_contract=config.evaluate_harvest_frequency_contract,
        )
    return network


async def _start(configs: Sequence[EscConfig], *, simulate: bool, commit_latency: float) -> list[dict[str, str]]:
    clock: Clock = ManualClock(start=LoopClock().now()) if simulate else LoopClock()
    network = build_network(configs, clock, commit_latency=commit_latency)
    await bootstrap_storage(network, configs)
    run = asyncio.ensure_future(run_escs(configs, network, clock=clock))
    if isinstance(clock, ManualClock):
        while not run.done():
            await clock.advance(SIMULATION_STEP_SECONDS)
    paths = await run
    return [{key: str(value) for key, value in vars(item).items()} for item in paths]


def _load(path: str) -> list[EscConfig]:
    try:
        return load_configs(Path(path))
    except (FileNotFoundError, EscConfigError) as exc:
        raise SystemExit(str(exc)) from exc


def _cmd_start(args: argparse.Namespace) -> int:
    configs = _load(args.config)
    try:
        results = asyncio.run(_start(configs, simulate=args.simulate, commit_latency=args.commit_latency))
    except EscConfigError as exc:
        raise SystemExit(str(exc)) from exc
    for item in results:
        print(json.dumps(item, ensure_ascii=True, sort_keys=True))
    return 0


def _cmd_bootstrap(args: argparse.Namespace) -> int:
    configs = _load(args.config)

    async def _run() -> dict[str, list[str]]:
        network = build_network(configs, LoopClock())
        return await bootstrap_storage(network, configs)

    print(json.dumps(asyncio.run(_run()), ensure_ascii=True, sort_keys=True))
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    configure_logging(
        level=getattr(logging, str(args.log_level).upper(), logging.INFO),
        log_path=getattr(args, "log_path", None),
    )
    if args.command == "start":
        return _cmd_start(args)
    if args.command == "bootstrap":
        return _cmd_bootstrap(args)
    raise SystemExit("UNKNOWN_COMMAND")


if __name__ == "__main__":
    raise SystemExit(main())
