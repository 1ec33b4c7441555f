#!/usr/bin/env python3
"""Script to run backtests from command line."""

import argparse
import json
import logging
import sys
from pathlib import Path

from pydantic import ValidationError

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from adapters.data.bar_loader import BarLoader
from config.schema import MonteCarloConfig, RunConfig, WalkForwardConfig, load_run_config
from engine.backtest_engine import BacktestEngine
from engine.errors import BacktestError, InputValidationError
from strategies.graph import StrategyGraph
from validation.monte_carlo import run_monte_carlo
from validation.walkforward import WalkForwardAnalyzer


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='Run a backtest of a strategy graph')
    parser.add_argument(
        '--data',
        type=str,
        required=True,
        help='Path to OHLCV data file (CSV or TSV)'
    )
    parser.add_argument(
        '--strategy',
        type=str,
        required=True,
        help='Path to strategy graph JSON document'
    )
    parser.add_argument(
        '--config',
        type=str,
        help='Path to YAML run config (backtest, monte_carlo, walk_forward sections)'
    )
    parser.add_argument(
        '--monte-carlo',
        type=int,
        metavar='N',
        help='Run N Monte Carlo permutations of the trade list'
    )
    parser.add_argument(
        '--seed',
        type=int,
        help='Seed for Monte Carlo permutations (default: unseeded)'
    )
    parser.add_argument(
        '--walk-forward',
        action='store_true',
        help='Also run walk-forward analysis'
    )
    parser.add_argument(
        '--output',
        type=str,
        help='Write the full result as JSON to this path'
    )
    parser.add_argument(
        '--log-level',
        type=str,
        default='WARNING',
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
        help='Logging level (default: WARNING)'
    )
    return parser


def _resolve_run_config(args) -> RunConfig:
    run_config = load_run_config(Path(args.config)) if args.config else RunConfig()
    if args.monte_carlo is not None:
        mc = run_config.monte_carlo or MonteCarloConfig()
        run_config.monte_carlo = mc.model_copy(update={'simulations': args.monte_carlo})
    if args.seed is not None and run_config.monte_carlo is not None:
        run_config.monte_carlo = run_config.monte_carlo.model_copy(update={'seed': args.seed})
    if args.walk_forward and run_config.walk_forward is None:
        run_config.walk_forward = WalkForwardConfig()
    return run_config


def _print_summary(result, mc_result=None, wf_result=None) -> None:
    stats = result.statistics
    print("\n" + "=" * 60)
    print(f"BACKTEST RESULTS {result.symbol}")
    print("=" * 60)
    print(f"Bars processed:    {result.bars_processed} (warmup {result.warmup_bars})")
    print(f"Initial balance:   {result.initial_balance:,.2f}")
    print(f"Final balance:     {result.final_balance:,.2f}")
    print(f"Net profit:        {stats.net_profit:,.2f}")
    print(f"Total trades:      {stats.total_trades}")
    print(f"Win rate:          {stats.win_rate:.2f}%")
    print(f"Profit factor:     {stats.profit_factor:.2f}")
    print(f"Max drawdown:      {stats.max_drawdown:,.2f} ({stats.max_drawdown_percent:.2f}%)")
    print(f"Sharpe ratio:      {stats.sharpe_ratio:.2f}")
    if result.requotes:
        print(f"Requotes:          {result.requotes}")
    for warning in result.warnings:
        print(f"⚠️  {warning}")

    if mc_result is not None:
        print("\nMonte Carlo")
        print(f"  Simulations:          {mc_result.simulations}")
        print(f"  Median final balance: {mc_result.median_final_balance:,.2f}")
        print(f"  95% max drawdown:     {mc_result.confidence95.max_drawdown:,.2f}")
        print(f"  99% max drawdown:     {mc_result.confidence99.max_drawdown:,.2f}")
        print(f"  Probability of ruin:  {mc_result.probability_of_ruin:.2f}%")

    if wf_result is not None:
        print("\nWalk-forward")
        print(f"  Windows:              {len(wf_result.steps)}")
        print(f"  OOS profit:           {wf_result.overall_out_of_sample_profit:,.2f}")
        print(f"  Efficiency:           {wf_result.walk_forward_efficiency:.2f}")


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format='%(asctime)s %(levelname)s %(name)s: %(message)s'
    )

    try:
        run_config = _resolve_run_config(args)
        parsed = BarLoader().load(args.data)
        graph = StrategyGraph.from_json(Path(args.strategy).read_text(encoding='utf-8'))
    except FileNotFoundError as e:
        print(f"Error: File not found: {e.filename}")
        return 1
    except (InputValidationError, ValidationError) as e:
        print(f"Error: {e}")
        return 1

    print(f"✓ Loaded {len(parsed.bars)} bars ({parsed.detected_format})")
    for warning in parsed.warnings:
        print(f"⚠️  {warning}")

    try:
        result = BacktestEngine().run(parsed.bars, graph, run_config.backtest)
    except BacktestError as e:
        print(f"Error: {e}")
        return 1
    result.warnings[:0] = parsed.warnings

    mc_result = None
    if run_config.monte_carlo is not None:
        mc_result = run_monte_carlo(result.profits(), result.initial_balance, run_config.monte_carlo)

    wf_result = None
    if run_config.walk_forward is not None:
        wf_result = WalkForwardAnalyzer(run_config.walk_forward).run(parsed.bars, graph, run_config.backtest)

    _print_summary(result, mc_result, wf_result)

    if args.output:
        payload = result.to_dict()
        if mc_result is not None:
            payload['monteCarlo'] = mc_result.to_dict()
        if wf_result is not None:
            payload['walkForward'] = wf_result.to_dict()
        output_path = Path(args.output)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_text(json.dumps(payload, indent=2), encoding='utf-8')
        print(f"\n✓ Results written to {output_path}")
    return 0


if __name__ == '__main__':
    sys.exit(main())
