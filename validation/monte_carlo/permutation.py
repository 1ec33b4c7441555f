# validation/monte_carlo/permutation.py
"""
Monte Carlo trade-order permutation.

Key points:
 - The closed-trade profit sequence is shuffled (Fisher-Yates) and replayed
   additively from the initial balance:
       balance_{t+1} = balance_t + profit_perm[t]
 - Each path records its final balance, its max drawdown from the running peak
   and whether drawdown / peak ever reached the ruin threshold.
 - The multiset of profits is conserved, so every path ends at the same final
   balance; only the path (and therefore drawdown and ruin) varies.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence
import logging
import numpy as np
from tqdm import tqdm

from validation.monte_carlo.utils import percentile

DEFAULT_SIMULATIONS = 1000
DEFAULT_RUIN_THRESHOLD = 0.5
DEFAULT_MAX_CURVES = 20


@dataclass(frozen=True)
class ConfidenceBand:
    """Tail values at one confidence level."""
    max_drawdown: float
    final_balance: float
    worst_return: float

    def to_dict(self) -> Dict[str, float]:
        return {
            'maxDrawdown': self.max_drawdown,
            'finalBalance': self.final_balance,
            'worstReturn': self.worst_return,
        }


@dataclass(frozen=True)
class PathOutcome:
    """Result of replaying one ordering of the profits."""
    final_balance: float
    max_drawdown: float
    max_drawdown_fraction: float
    ruined: bool
    curve: List[float] = field(default_factory=list)


@dataclass
class MonteCarloResult:
    """Distribution summary of a permutation run.

    ``probability_of_ruin`` is a percentage (0-100).
    """
    simulations: int
    confidence95: ConfidenceBand
    confidence99: ConfidenceBand
    median_final_balance: float
    probability_of_ruin: float
    equity_curves: List[List[float]] = field(default_factory=list)
    seed: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'simulations': self.simulations,
            'confidence95': self.confidence95.to_dict(),
            'confidence99': self.confidence99.to_dict(),
            'medianFinalBalance': self.median_final_balance,
            'probabilityOfRuin': self.probability_of_ruin,
            'equityCurves': [list(c) for c in self.equity_curves],
        }


def simulate_path(
    profits: Sequence[float],
    initial_balance: float,
    ruin_threshold: float = DEFAULT_RUIN_THRESHOLD,
    keep_curve: bool = False
) -> PathOutcome:
    """
    Replay one ordering of trade profits.

    Ruin is declared as soon as (peak - balance) / peak reaches
    ``ruin_threshold`` at any step, with the peak starting at the initial
    balance. A non-positive peak counts as a zero drawdown fraction.

    Args:
        profits: Profits in replay order
        initial_balance: Starting balance
        ruin_threshold: Drawdown fraction of peak that counts as ruin
        keep_curve: Also return the balance after every step

    Returns:
        PathOutcome
    """
    steps = np.concatenate(([float(initial_balance)], np.asarray(profits, dtype=float)))
    equity = np.cumsum(steps)

    peaks = np.maximum.accumulate(equity)
    drawdowns = peaks - equity
    fractions = np.divide(drawdowns, peaks, out=np.zeros_like(drawdowns), where=peaks > 0)
    max_fraction = float(fractions.max())

    return PathOutcome(
        final_balance=float(equity[-1]),
        max_drawdown=float(drawdowns.max()),
        max_drawdown_fraction=max_fraction,
        ruined=max_fraction >= ruin_threshold,
        curve=equity.tolist() if keep_curve else [],
    )


def empty_result(initial_balance: float, seed: Optional[int] = None) -> MonteCarloResult:
    """Result for an empty trade list: no simulations, balance unchanged."""
    band = ConfidenceBand(max_drawdown=0.0, final_balance=float(initial_balance), worst_return=0.0)
    return MonteCarloResult(
        simulations=0,
        confidence95=band,
        confidence99=band,
        median_final_balance=float(initial_balance),
        probability_of_ruin=0.0,
        equity_curves=[],
        seed=seed,
    )


class MonteCarloPermutation:
    def __init__(self, seed: Optional[int] = None):
        self.seed = seed
        self.rng = np.random.default_rng(seed)
        self.logger = logging.getLogger(__name__)

    def permute(self, profits: Sequence[float]) -> np.ndarray:
        """One uniformly random ordering of ``profits``."""
        return self.rng.permutation(np.asarray(profits, dtype=float))

    def simulate(
        self,
        profits: Sequence[float],
        initial_balance: float,
        simulations: int = DEFAULT_SIMULATIONS,
        ruin_threshold: float = DEFAULT_RUIN_THRESHOLD,
        max_curves: int = DEFAULT_MAX_CURVES,
        show_progress: bool = False
    ) -> MonteCarloResult:
        """
        Run the permutation simulation.

        Args:
            profits: Closed-trade profits (or objects with a ``profit`` attribute)
            initial_balance: Starting balance
            simulations: Number of random orderings
            ruin_threshold: Drawdown fraction of peak that counts as ruin
            max_curves: Upper bound on equity curves kept for plotting
            show_progress: Wrap the loop in a tqdm progress bar

        Returns:
            MonteCarloResult
        """
        values = np.array([getattr(p, 'profit', p) for p in profits], dtype=float)
        if len(values) == 0 or simulations <= 0:
            return empty_result(initial_balance, self.seed)

        final_balances = np.empty(simulations, dtype=float)
        max_drawdowns = np.empty(simulations, dtype=float)
        ruin_count = 0
        curve_interval = max(1, simulations // max(max_curves, 1))
        equity_curves: List[List[float]] = []

        iterator = tqdm(range(simulations), desc="Permutation MC") if show_progress else range(simulations)
        for sim in iterator:
            keep = max_curves > 0 and sim % curve_interval == 0 and len(equity_curves) < max_curves
            outcome = simulate_path(self.permute(values), initial_balance, ruin_threshold, keep_curve=keep)
            final_balances[sim] = outcome.final_balance
            max_drawdowns[sim] = outcome.max_drawdown
            if outcome.ruined:
                ruin_count += 1
            if keep:
                equity_curves.append(outcome.curve)

        final_balances.sort()
        max_drawdowns.sort()
        worst_returns = final_balances - float(initial_balance)

        result = MonteCarloResult(
            simulations=simulations,
            confidence95=ConfidenceBand(
                max_drawdown=percentile(max_drawdowns, 95),
                final_balance=percentile(final_balances, 5),
                worst_return=percentile(worst_returns, 5),
            ),
            confidence99=ConfidenceBand(
                max_drawdown=percentile(max_drawdowns, 99),
                final_balance=percentile(final_balances, 1),
                worst_return=percentile(worst_returns, 1),
            ),
            median_final_balance=percentile(final_balances, 50),
            probability_of_ruin=ruin_count / simulations * 100.0,
            equity_curves=equity_curves,
            seed=self.seed,
        )
        self.logger.info(
            f"Monte Carlo finished: {simulations} simulations over {len(values)} trades, "
            f"ruin probability {result.probability_of_ruin:.2f}%"
        )
        return result


def run_monte_carlo(
    profits: Sequence[float],
    initial_balance: float,
    config=None
) -> MonteCarloResult:
    """Run a permutation simulation driven by a ``MonteCarloConfig``."""
    if config is None:
        return MonteCarloPermutation().simulate(profits, initial_balance)
    return MonteCarloPermutation(seed=config.seed).simulate(
        profits,
        initial_balance,
        simulations=config.simulations,
        ruin_threshold=config.ruin_threshold,
        max_curves=config.max_curves,
    )
