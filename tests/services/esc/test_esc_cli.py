from __future__ import annotations

import asyncio
import json
from pathlib import Path

import pytest

from elastic_contracts.clock import ManualClock
from elastic_contracts.esc import cli
from elastic_contracts.esc.config import EscConfig
from elastic_contracts.ledger import LedgerEvent


def _profile(tmp_path: Path) -> Path:
    path = tmp_path / "esc.yaml"
    path.write_text(
        "\n".join(
            [
                f"results_path: {tmp_path / 'results'}",
                "experiment_name: cli",
                "execution_time: 4",
                "analysis_start_delay: 1",
                "analysis_frequency: 1",
                "harvest_frequency: 1",
                "",
            ]
        ),
        encoding="utf-8",
    )
    return path


def test_bootstrap_command(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    assert cli.main(["bootstrap", "--config", str(_profile(tmp_path))]) == 0
    printed = json.loads(capsys.readouterr().out.strip().splitlines()[-1])
    assert printed == {"analytics_chaincode": ["createSensor", "calculationStorage"]}


def test_simulated_start_writes_result_files(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    assert cli.main(["start", "--config", str(_profile(tmp_path)), "--simulate"]) == 0
    printed = json.loads(capsys.readouterr().out.strip().splitlines()[-1])
    for key in ("calculations", "harvest", "experiment", "metrics"):
        assert Path(printed[key]).exists()
    assert Path(printed["calculations"]).name.startswith("cli_")


def test_missing_profile_exits(tmp_path: Path) -> None:
    with pytest.raises(SystemExit, match="not found"):
        cli.main(["start", "--config", str(tmp_path / "absent.yaml"), "--simulate"])


def test_command_is_required() -> None:
    with pytest.raises(SystemExit):
        cli.main([])


def test_build_network_isolates_chaincodes() -> None:
    async def scenario():
        clock = ManualClock(start=10.0)
        configs = [EscConfig(chaincode_name="analytics_chaincode"), EscConfig(chaincode_name="analytics_frequency")]
        network = cli.build_network(configs, clock)
        seen: list[LedgerEvent] = []

        async def listener(event: LedgerEvent) -> None:
            seen.append(event)

        frequency = network.contract("analytics_frequency")
        window = network.contract("analytics_chaincode")
        window.subscribe(listener)
        update = {"data": json.dumps([{"sensorId": 0, "detections": 9}]), "updateDataID": 0}
        await frequency.submit_transaction("updateData", json.dumps({**update, "escKey": "analytics_frequency"}))
        analysis = {"fromDates": "[10000]", "timeData": 5, "analysisID": "0", "escKey": "analytics_chaincode"}
        await window.submit_transaction("analysis", json.dumps(analysis))
        await clock.settle()
        return network, seen

    network, seen = asyncio.run(scenario())
    assert network.chaincodes == ["analytics_chaincode", "analytics_frequency"]
    assert [event.type for event in seen] == ["analysis"]
    assert seen[0].get("analysisList") == [0]
    assert seen[0].get("totalDataStoredList") == [0]
    assert len(network.contract("analytics_frequency").world["sensor_data"]) == 1
    assert "sensor_data" not in network.contract("analytics_chaincode").world


def test_duplicate_chaincodes_exit(tmp_path: Path) -> None:
    path = tmp_path / "dupes.yaml"
    path.write_text(
        "\n".join(
            [
                "defaults:",
                f"  results_path: {tmp_path / 'results'}",
                "  execution_time: 2",
                "escs:",
                "  - chaincode_name: same",
                "  - chaincode_name: same",
                "",
            ]
        ),
        encoding="utf-8",
    )
    with pytest.raises(SystemExit, match="duplicate ESC instance key"):
        cli.main(["start", "--config", str(path), "--simulate"])
