"""Monte Carlo risk analysis over closed-trade profits.

Trade order is permuted many times to estimate drawdown and final-balance
confidence bands and the probability of ruin.
"""

from .permutation import (
    ConfidenceBand,
    MonteCarloPermutation,
    MonteCarloResult,
    PathOutcome,
    empty_result,
    run_monte_carlo,
    simulate_path,
)
from .utils import percentile

__all__ = [
    'ConfidenceBand',
    'MonteCarloPermutation',
    'MonteCarloResult',
    'PathOutcome',
    'empty_result',
    'percentile',
    'run_monte_carlo',
    'simulate_path',
]
