"""Elastic Smart Contract runtime: harvest, analysis and elasticity control."""

from .config import ElasticityMode, EscConfig, EscConfigError, load_config, load_configs
from .instance import EscInstance, run_escs
from .recorder import ResultPaths

__all__ = [
    "ElasticityMode",
    "EscConfig",
    "EscConfigError",
    "EscInstance",
    "ResultPaths",
    "load_config",
    "load_configs",
    "run_escs",
]
