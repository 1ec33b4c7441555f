"""Performance metrics calculation."""

from metrics.metrics import (
    PROFIT_FACTOR_INFINITE,
    BacktestStatistics,
    calculate_backtest_statistics,
    calculate_calmar_ratio,
    calculate_drawdown,
    calculate_monthly_pnl,
    calculate_recovery_factor,
    calculate_sharpe_ratio,
    calculate_sortino_ratio,
    calculate_streaks,
    calculate_ulcer_index,
    calculate_underwater_curve,
)

__all__ = [
    'PROFIT_FACTOR_INFINITE',
    'BacktestStatistics',
    'calculate_backtest_statistics',
    'calculate_calmar_ratio',
    'calculate_drawdown',
    'calculate_monthly_pnl',
    'calculate_recovery_factor',
    'calculate_sharpe_ratio',
    'calculate_sortino_ratio',
    'calculate_streaks',
    'calculate_ulcer_index',
    'calculate_underwater_curve',
]
