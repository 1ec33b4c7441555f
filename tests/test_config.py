"""Tests for run configuration validation."""

import pytest
from pydantic import ValidationError

from config.schema import (
    BacktestConfig,
    MonteCarloConfig,
    RunConfig,
    WalkForwardConfig,
    load_run_config,
    validate_run_config,
)


def test_backtest_config_defaults():
    config = BacktestConfig()
    assert config.initial_balance == 10000.0
    assert config.spread == 10.0
    assert config.commission == 3.5
    assert config.digits == 5
    assert config.point_value == 1.0
    assert config.requote_rate == 0.0
    assert config.seed is None


def test_camel_case_and_snake_case_keys():
    camel = BacktestConfig.model_validate({'initialBalance': 5000, 'pointValue': 10, 'swapLong': -1.5})
    snake = BacktestConfig(initial_balance=5000, point_value=10, swap_long=-1.5)
    assert camel == snake


def test_lot_bounds_are_checked():
    with pytest.raises(ValidationError, match="min_lot"):
        BacktestConfig(min_lot=2.0, max_lot=1.0)


@pytest.mark.parametrize("overrides", [
    {'initialBalance': 0},
    {'spread': -1},
    {'requoteRate': 0.5},
    {'digits': 11},
    {'initialBalance': float('nan')},
])
def test_out_of_range_values_are_rejected(overrides):
    with pytest.raises(ValidationError):
        BacktestConfig.model_validate(overrides)


def test_monte_carlo_and_walk_forward_defaults():
    mc = MonteCarloConfig()
    assert (mc.simulations, mc.ruin_threshold, mc.max_curves) == (1000, 0.5, 20)
    wf = WalkForwardConfig()
    assert (wf.window_count, wf.in_sample_ratio) == (5, 0.7)
    with pytest.raises(ValidationError):
        WalkForwardConfig(in_sample_ratio=1.0)


def test_validate_run_config_sections():
    run = validate_run_config({
        'backtest': {'symbol': 'USDJPY', 'digits': 3},
        'monteCarlo': {'simulations': 200, 'seed': 7},
    })
    assert run.backtest.symbol == 'USDJPY'
    assert run.monte_carlo.simulations == 200
    assert run.walk_forward is None
    assert RunConfig().backtest == BacktestConfig()


def test_load_run_config_from_yaml(tmp_path):
    path = tmp_path / "run.yaml"
    path.write_text(
        "backtest:\n"
        "  initialBalance: 2500\n"
        "  spread: 15\n"
        "walkForward:\n"
        "  windowCount: 4\n",
        encoding='utf-8',
    )

    run = load_run_config(path)

    assert run.backtest.initial_balance == 2500.0
    assert run.backtest.spread == 15.0
    assert run.walk_forward.window_count == 4


def test_empty_yaml_gives_defaults(tmp_path):
    path = tmp_path / "empty.yaml"
    path.write_text("", encoding='utf-8')
    assert load_run_config(path) == RunConfig()
