"""Configuration validation schemas using Pydantic."""

from typing import Any, Dict, Optional
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel
import yaml


class _CamelModel(BaseModel):
    """Accepts both snake_case and the camelCase keys used by API payloads."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        allow_inf_nan=False,
    )


class BacktestConfig(_CamelModel):
    """Per-run instrument and account settings."""
    initial_balance: float = Field(default=10000.0, gt=0.0)
    symbol: str = "EURUSD"
    spread: float = Field(default=10.0, ge=0.0, description="Spread in points")
    commission: float = Field(default=3.5, ge=0.0, description="Commission per lot per side")
    digits: int = Field(default=5, ge=0, le=10, description="Price precision; one point is 10**-digits")
    point_value: float = Field(default=1.0, gt=0.0, description="Account currency per point per lot")
    lot_step: float = Field(default=0.01, gt=0.0)
    min_lot: float = Field(default=0.01, gt=0.0)
    max_lot: float = Field(default=100.0, gt=0.0)
    swap_long: float = Field(default=0.0, description="Swap per lot per night for long positions")
    swap_short: float = Field(default=0.0, description="Swap per lot per night for short positions")
    requote_rate: float = Field(
        default=0.0, ge=0.0, le=0.3,
        description="Probability that a market order is requoted and skipped"
    )
    seed: Optional[int] = Field(default=None, description="Seed for requote sampling")

    @model_validator(mode='after')
    def check_lot_bounds(self):
        if self.min_lot > self.max_lot:
            raise ValueError(f"min_lot ({self.min_lot}) must not exceed max_lot ({self.max_lot})")
        return self


class MonteCarloConfig(_CamelModel):
    """Trade-order resampling settings."""
    simulations: int = Field(default=1000, ge=1)
    ruin_threshold: float = Field(
        default=0.5, gt=0.0, le=1.0,
        description="Drawdown fraction of the running peak that counts as ruin"
    )
    seed: Optional[int] = None
    max_curves: int = Field(default=20, ge=0, description="Equity curves kept for plotting")


class WalkForwardConfig(_CamelModel):
    """Rolling in-sample / out-of-sample split settings."""
    window_count: int = Field(default=5, ge=2)
    in_sample_ratio: float = Field(default=0.7, gt=0.0, lt=1.0)


class RunConfig(_CamelModel):
    """Top-level run configuration file."""
    backtest: BacktestConfig = Field(default_factory=BacktestConfig)
    monte_carlo: Optional[MonteCarloConfig] = None
    walk_forward: Optional[WalkForwardConfig] = None


def load_config(config_path: Path) -> Dict[str, Any]:
    """Load YAML configuration file."""
    with open(config_path, 'r') as f:
        return yaml.safe_load(f) or {}


def validate_run_config(config_dict: Dict[str, Any]) -> RunConfig:
    """Validate and return RunConfig object."""
    return RunConfig(**config_dict)


def load_run_config(config_path: Path) -> RunConfig:
    """Load and validate a run configuration from file."""
    return validate_run_config(load_config(config_path))
