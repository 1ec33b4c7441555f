"""Performance metrics calculation.

Pure reductions over the closed-trade list and the per-bar equity curve.
Trades and equity points are read through their attributes only (``profit``,
``direction``, ``open_bar``/``close_bar``, ``close_time``; ``time``,
``balance``, ``equity``), so any objects with those fields can be measured.

Every ratio whose denominator is zero resolves to 0.0, except the profit
factor, which is ``PROFIT_FACTOR_INFINITE`` when there are gains and no losses.
"""

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Sequence
import math
import numpy as np
import pandas as pd

PROFIT_FACTOR_INFINITE = float("inf")

# Per-trade returns are annualized as if one trade closed per trading day
PERIODS_PER_YEAR = 252
# Bars per trading year assumed when annualizing the Calmar return
CALMAR_BARS_PER_YEAR = 252 * 6


def _safe_div(num: float, den: float) -> float:
    if den == 0 or not math.isfinite(den):
        return 0.0
    return float(num / den)


def calculate_sharpe_ratio(profits: np.ndarray, periods_per_year: int = PERIODS_PER_YEAR) -> float:
    """
    Per-trade Sharpe ratio: mean / population standard deviation, annualized.

    Args:
        profits: Trade profits
        periods_per_year: Annualization periods

    Returns:
        Sharpe ratio (0.0 without dispersion)
    """
    if len(profits) == 0:
        return 0.0
    std = float(np.std(profits))
    return _safe_div(float(np.mean(profits)), std) * math.sqrt(periods_per_year)


def calculate_sortino_ratio(profits: np.ndarray, periods_per_year: int = PERIODS_PER_YEAR) -> float:
    """
    Sortino ratio: like Sharpe, but only deviations below the mean count.

    Args:
        profits: Trade profits
        periods_per_year: Annualization periods

    Returns:
        Sortino ratio (0.0 without downside deviation)
    """
    if len(profits) == 0:
        return 0.0
    mean = float(np.mean(profits))
    downside = np.minimum(profits - mean, 0.0)
    downside_dev = math.sqrt(float(np.sum(downside ** 2)) / len(profits))
    return _safe_div(mean, downside_dev) * math.sqrt(periods_per_year)


def calculate_recovery_factor(total_pnl: float, max_drawdown: float) -> float:
    """Net profit / max drawdown."""
    if max_drawdown <= 0:
        return 0.0
    return float(total_pnl / max_drawdown)


def calculate_calmar_ratio(net_profit: float, max_drawdown: float, bars: int) -> float:
    """Annualized per-bar return over the absolute max drawdown."""
    if max_drawdown <= 0 or bars <= 0:
        return 0.0
    annualized = net_profit / bars * CALMAR_BARS_PER_YEAR
    return float(annualized / max_drawdown)


def calculate_drawdown(equity: np.ndarray) -> Dict[str, float]:
    """
    Max drawdown from the running equity peak.

    Returns:
        Dict with 'max_drawdown' (absolute) and 'max_drawdown_percent'
    """
    if len(equity) == 0:
        return {'max_drawdown': 0.0, 'max_drawdown_percent': 0.0}
    running_max = np.maximum.accumulate(equity)
    drawdown = running_max - equity
    with np.errstate(divide='ignore', invalid='ignore'):
        drawdown_pct = np.where(running_max > 0, drawdown / running_max * 100.0, 0.0)
    return {
        'max_drawdown': float(np.max(drawdown)),
        'max_drawdown_percent': float(np.max(drawdown_pct)),
    }


def calculate_ulcer_index(equity: np.ndarray) -> float:
    """
    Ulcer Index: root mean square of the percentage drawdowns.

    Args:
        equity: Array of equity values

    Returns:
        Ulcer Index
    """
    if len(equity) == 0:
        return 0.0
    running_max = np.maximum.accumulate(equity)
    with np.errstate(divide='ignore', invalid='ignore'):
        drawdown_pct = np.where(running_max > 0, (running_max - equity) / running_max * 100.0, 0.0)
    return float(np.sqrt(np.mean(drawdown_pct ** 2)))


def calculate_streaks(profits: Sequence[float]) -> Dict[str, int]:
    """Longest runs of winning (profit > 0) and losing trades."""
    max_wins = max_losses = wins = losses = 0
    for profit in profits:
        if profit > 0:
            wins += 1
            losses = 0
            max_wins = max(max_wins, wins)
        else:
            losses += 1
            wins = 0
            max_losses = max(max_losses, losses)
    return {'max_consecutive_wins': max_wins, 'max_consecutive_losses': max_losses}


def calculate_monthly_pnl(trades: Sequence) -> List[Dict[str, Any]]:
    """Closed P&L and trade count per UTC calendar month, in month order."""
    if not trades:
        return []
    df = pd.DataFrame({
        'month': pd.to_datetime([t.close_time for t in trades], unit='ms', utc=True).strftime('%Y-%m'),
        'profit': [t.profit for t in trades],
    })
    grouped = df.groupby('month')['profit'].agg(['sum', 'count']).sort_index()
    return [
        {'month': month, 'pnl': float(row['sum']), 'trades': int(row['count'])}
        for month, row in grouped.iterrows()
    ]


def calculate_underwater_curve(equity_curve: Sequence) -> List[Dict[str, float]]:
    """Percentage drawdown from the running peak at every equity point."""
    if not equity_curve:
        return []
    equity = np.array([p.equity for p in equity_curve], dtype=float)
    running_max = np.maximum.accumulate(equity)
    with np.errstate(divide='ignore', invalid='ignore'):
        drawdown_pct = np.where(running_max > 0, (running_max - equity) / running_max * 100.0, 0.0)
    return [
        {'time': int(p.time), 'drawdownPercent': float(dd)}
        for p, dd in zip(equity_curve, drawdown_pct)
    ]


@dataclass
class BacktestStatistics:
    """Summary statistics of one backtest.

    Percentages are 0-100. ``profit_factor`` may be ``PROFIT_FACTOR_INFINITE``;
    ``to_dict()`` serializes it as the string "Infinity".
    """
    total_trades: int = 0
    winning_trades: int = 0
    losing_trades: int = 0
    win_rate: float = 0.0
    profit_factor: float = 0.0
    net_profit: float = 0.0
    gross_profit: float = 0.0
    gross_loss: float = 0.0
    largest_win: float = 0.0
    largest_loss: float = 0.0
    average_win: float = 0.0
    average_loss: float = 0.0
    max_consecutive_wins: int = 0
    max_consecutive_losses: int = 0
    max_drawdown: float = 0.0
    max_drawdown_percent: float = 0.0
    sharpe_ratio: float = 0.0
    sortino_ratio: float = 0.0
    calmar_ratio: float = 0.0
    ulcer_index: float = 0.0
    recovery_factor: float = 0.0
    expected_payoff: float = 0.0
    average_trade_duration: float = 0.0
    long_trades: int = 0
    short_trades: int = 0
    long_win_rate: float = 0.0
    short_win_rate: float = 0.0
    initial_balance: float = 0.0
    final_balance: float = 0.0
    bars_processed: int = 0
    monthly_pnl: List[Dict[str, Any]] = field(default_factory=list)
    underwater_curve: List[Dict[str, float]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """JSON-safe dict with camelCase keys."""
        out = {}
        for key, value in asdict(self).items():
            parts = key.split('_')
            camel = parts[0] + ''.join(p.capitalize() for p in parts[1:])
            if isinstance(value, float) and math.isinf(value):
                value = "Infinity" if value > 0 else "-Infinity"
            out[camel] = value
        # Acronym keys keep the original casing
        out['monthlyPnL'] = out.pop('monthlyPnl')
        return out


def calculate_backtest_statistics(
    trades: Sequence,
    equity_curve: Sequence,
    initial_balance: float,
    bars_processed: int = 0
) -> BacktestStatistics:
    """
    Reduce a trade list and equity curve into summary statistics.

    Args:
        trades: Closed trades in close order
        equity_curve: Equity points in bar order
        initial_balance: Starting balance
        bars_processed: Number of simulated bars (for the Calmar ratio)

    Returns:
        BacktestStatistics
    """
    equity = np.array([p.equity for p in equity_curve], dtype=float)
    drawdown = calculate_drawdown(np.concatenate([[initial_balance], equity]))
    final_balance = float(equity_curve[-1].balance) if equity_curve else float(initial_balance)

    stats = BacktestStatistics(
        max_drawdown=drawdown['max_drawdown'],
        max_drawdown_percent=drawdown['max_drawdown_percent'],
        initial_balance=float(initial_balance),
        final_balance=final_balance,
        bars_processed=bars_processed,
    )
    if not trades:
        return stats

    profits = np.array([t.profit for t in trades], dtype=float)
    wins = profits[profits > 0]
    losses = profits[profits <= 0]
    total = len(profits)

    stats.total_trades = total
    stats.winning_trades = len(wins)
    stats.losing_trades = len(losses)
    stats.win_rate = len(wins) / total * 100.0
    stats.gross_profit = float(np.sum(wins))
    stats.gross_loss = float(abs(np.sum(losses)))
    stats.net_profit = stats.gross_profit - stats.gross_loss
    if stats.gross_loss > 0:
        stats.profit_factor = stats.gross_profit / stats.gross_loss
    elif stats.gross_profit > 0:
        stats.profit_factor = PROFIT_FACTOR_INFINITE
    stats.largest_win = float(np.max(wins)) if len(wins) else 0.0
    stats.largest_loss = float(np.max(np.abs(losses))) if len(losses) else 0.0
    stats.average_win = _safe_div(stats.gross_profit, len(wins))
    stats.average_loss = _safe_div(stats.gross_loss, len(losses))

    streaks = calculate_streaks(profits)
    stats.max_consecutive_wins = streaks['max_consecutive_wins']
    stats.max_consecutive_losses = streaks['max_consecutive_losses']

    stats.sharpe_ratio = calculate_sharpe_ratio(profits)
    stats.sortino_ratio = calculate_sortino_ratio(profits)
    stats.recovery_factor = calculate_recovery_factor(stats.net_profit, stats.max_drawdown)
    stats.calmar_ratio = calculate_calmar_ratio(stats.net_profit, stats.max_drawdown, bars_processed)
    stats.ulcer_index = calculate_ulcer_index(equity)
    stats.expected_payoff = stats.net_profit / total
    stats.average_trade_duration = float(np.mean([t.close_bar - t.open_bar for t in trades]))

    longs = [t for t in trades if t.direction == 'BUY']
    shorts = [t for t in trades if t.direction == 'SELL']
    stats.long_trades = len(longs)
    stats.short_trades = len(shorts)
    stats.long_win_rate = _safe_div(sum(1 for t in longs if t.profit > 0), len(longs)) * 100.0
    stats.short_win_rate = _safe_div(sum(1 for t in shorts if t.profit > 0), len(shorts)) * 100.0

    stats.monthly_pnl = calculate_monthly_pnl(trades)
    stats.underwater_curve = calculate_underwater_curve(equity_curve)
    return stats
