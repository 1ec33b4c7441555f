"""Validation modules: Monte Carlo risk analysis and walk-forward testing."""

from validation.walkforward import (
    WalkForwardAnalyzer,
    WalkForwardStep,
    WalkForwardResult,
)

from validation.monte_carlo import (
    MonteCarloPermutation,
    MonteCarloResult,
    percentile,
    run_monte_carlo,
    simulate_path,
)

__all__ = [
    'WalkForwardAnalyzer',
    'WalkForwardStep',
    'WalkForwardResult',
    'MonteCarloPermutation',
    'MonteCarloResult',
    'percentile',
    'run_monte_carlo',
    'simulate_path',
]
