"""ESC configuration schema and YAML loader."""

from __future__ import annotations

import os
import re
from enum import Enum
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

_VAR_PATTERN = re.compile(r"\$\{([^}]+)\}")

CALCULATIONS_HEADER = (
    "NUMBER_DETECTIONS,TOTAL_TIME,FREQUENCY,TIME_DATA,FREQUENCY_DATA,DETECTIONS_STORED,"
    "FROM_DATE,TO_DATE,MINIMUM_TIME,MAXIMUM_TIME,CARS_PER_SECOND_BY_SENSOR,CARS_PER_SECOND_TOTAL"
)
HARVEST_HEADER = (
    "INIT_TIME,FINAL_TIME,TOTAL_TIME,INIT_UPDATE_TIME,FINAL_UPDATE_TIME,TOTAL_UPDATE_TIME,COLLECTOR_TIME"
)
EXPERIMENT_HEADER = (
    "FREQUENCY,TIME_DATA,MIN_TIME,MAX_TIME,AVG_TIME,STD_TIME,SUCCESFUL_CALCULATIONS,CALCULATIONS_OVER_MAX"
)


class EscConfigError(ValueError):
    """Raised when an ESC configuration file is missing fields or malformed."""


class ElasticityMode(str, Enum):
    TIME_WINDOW = "timeWindow"
    HARVEST_FREQUENCY = "harvestFrequency"


class EscConfig(BaseModel):
    """Immutable per-instance configuration.

    Durations and frequencies are in seconds; the analysis duration bounds
    are in milliseconds, matching the ``execDuration`` reported by the
    analysis contract.
    """

    chaincode_name: str = Field("analytics_chaincode", min_length=1)
    channel_name: str = "escchannel"
    identity_name: str = "admin"
    connection_profile: str | None = None
    results_path: str = "./esc-results"
    experiment_name: str = Field("test", min_length=1)

    execution_time: float = Field(60.0, gt=0, description="Run length in seconds")
    analysis_frequency: float = Field(5.0, gt=0, description="Seconds between analyses")
    harvest_frequency: float = Field(1.0, gt=0, description="Seconds between harvests")
    analysis_start_delay: float = Field(15.0, ge=0)
    data_time_limit: float = Field(30.0, gt=0, description="Analysis time-window in seconds")
    frequency_control_calculate: int = Field(5, ge=1, description="Analyses per elasticity evaluation")
    number_of_times_for_analysis_avg: int = Field(5, ge=1, description="Latency samples in the moving average")
    maximum_time_analysis: float = Field(100.0, ge=0, description="Upper analysis duration bound (ms)")
    minimum_time_analysis: float = Field(50.0, ge=0, description="Lower analysis duration bound (ms)")
    elasticity_mode: ElasticityMode = ElasticityMode.TIME_WINDOW

    number_of_escs: int = Field(1, ge=1)
    data_per_harvest: int = Field(1, ge=1, description="Records per submitted batch")
    analysis_retry_time: float = Field(0.5, gt=0, description="Seconds between analysis submit attempts")
    harvest_retry_time: float = Field(0.5, gt=0, description="Seconds between data-update submit attempts")
    retry_cap: int = Field(10, ge=0, description="Busy attempts tolerated before abandoning")

    update_data_contract: str = "updateData"
    evaluate_time_window_contract: str = "evaluateHistory"
    evaluate_harvest_frequency_contract: str = "evaluateFrequency"
    query_analysis_holder_contract: str = "queryAnalysis"
    analysis_holder_id: str = "1"
    analysis_contract: str = "analysis"
    data_storage_contract: str = "createSensor"
    calculation_storage_contract: str = "calculationStorage"

    csv_results_calculations_header: str = CALCULATIONS_HEADER
    csv_results_harvest_header: str = HARVEST_HEADER
    csv_results_experiment_header: str = EXPERIMENT_HEADER

    model_config = ConfigDict(extra="forbid", frozen=True)

    @model_validator(mode="after")
    def _check_bounds(self) -> "EscConfig":
        if self.minimum_time_analysis > self.maximum_time_analysis:
            raise ValueError("minimum_time_analysis must not exceed maximum_time_analysis")
        return self

    @property
    def adaptive_harvest(self) -> bool:
        return self.elasticity_mode == ElasticityMode.HARVEST_FREQUENCY


def _expand_str(value: str) -> str:
    def replacer(match: re.Match[str]) -> str:
        token = match.group(1)
        if ":-" in token:
            key, default = token.split(":-", 1)
            actual = os.getenv(key, "")
            return actual if actual.strip() else default
        actual = os.getenv(token, "")
        if not actual.strip():
            raise EscConfigError(f"missing environment variable: {token}")
        return actual

    return _VAR_PATTERN.sub(replacer, value)


def _expand_payload(value: Any) -> Any:
    if isinstance(value, str):
        return _expand_str(value)
    if isinstance(value, list):
        return [_expand_payload(item) for item in value]
    if isinstance(value, dict):
        return {str(key): _expand_payload(item) for key, item in value.items()}
    return value


def _read_yaml(path: Path) -> Any:
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise EscConfigError(f"Error parsing config '{path}': {exc}") from exc
    if not isinstance(data, dict):
        raise EscConfigError(f"Config '{path}' must be a mapping")
    return _expand_payload(data)


def _validate(payload: Any, path: Path) -> EscConfig:
    if not isinstance(payload, dict):
        raise EscConfigError(f"Config '{path}' entries must be mappings")
    try:
        return EscConfig.model_validate(payload)
    except ValidationError as exc:
        raise EscConfigError(f"Error parsing config '{path}':\n{exc}") from exc


def load_configs(path: Path) -> list[EscConfig]:
    """Load every ESC defined in a YAML profile.

    A profile is either a single ESC mapping or ``{"defaults": {...},
    "escs": [{...}, ...]}`` where each entry overrides the defaults.
    """
    data = _read_yaml(path)
    if "escs" not in data:
        return [_validate(data, path)]
    entries = data.get("escs")
    if not isinstance(entries, list) or not entries:
        raise EscConfigError(f"Config '{path}' requires a non-empty escs list")
    defaults = data.get("defaults") or {}
    if not isinstance(defaults, dict):
        raise EscConfigError(f"Config '{path}' defaults must be a mapping")
    unknown = sorted(set(data) - {"escs", "defaults"})
    if unknown:
        raise EscConfigError(f"Config '{path}' has unexpected keys: {', '.join(unknown)}")
    configs: list[EscConfig] = []
    for entry in entries:
        if not isinstance(entry, dict):
            raise EscConfigError(f"Config '{path}' entries must be mappings")
        configs.append(_validate({**defaults, **entry}, path))
    return configs


def load_config(path: Path) -> EscConfig:
    configs = load_configs(path)
    if len(configs) != 1:
        raise EscConfigError(f"Config '{path}' defines {len(configs)} ESCs; expected exactly one")
    return configs[0]
