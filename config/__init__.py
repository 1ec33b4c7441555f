"""Configuration management module."""

from .schema import (
    BacktestConfig,
    MonteCarloConfig,
    WalkForwardConfig,
    RunConfig,
    load_config,
    validate_run_config,
    load_run_config,
)

__all__ = [
    "BacktestConfig",
    "MonteCarloConfig",
    "WalkForwardConfig",
    "RunConfig",
    "load_config",
    "validate_run_config",
    "load_run_config",
]
