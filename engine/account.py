"""Account state management for backtesting.

This module defines AccountState, which tracks:
- balance: Realized account balance
- equity: Total account value (balance + unrealized_pnl)
- peak / drawdown: Running equity peak and the deepest decline from it
- equity_curve: One EquityPoint per processed bar
"""

from dataclasses import dataclass, field
from typing import List, Optional
import math

from engine.errors import InvariantViolationError


@dataclass(frozen=True)
class EquityPoint:
    """One sample of the equity curve.

    Attributes:
        bar_index: Index of the bar the sample was taken on
        time: Bar timestamp (UTC epoch milliseconds)
        balance: Realized balance after the bar
        equity: Balance plus unrealized P&L of open positions
    """
    bar_index: int
    time: int
    balance: float
    equity: float

    def to_dict(self) -> dict:
        return {
            'barIndex': self.bar_index,
            'time': self.time,
            'balance': self.balance,
            'equity': self.equity,
        }


@dataclass
class AccountState:
    """Account state tracking for backtesting.

    This class maintains the account balance and the equity curve.
    It enforces the fundamental accounting invariant:
        equity == balance + unrealized_pnl
    and refuses to record a non-finite balance or equity.

    Attributes:
        initial_balance: Starting balance
        balance: Realized balance
        unrealized_pnl: Total unrealized P&L from all open positions
        commission_paid: Total commission paid
        swap_paid: Total swap charged (negative values are credits)
        peak_equity: Highest equity recorded so far
        max_drawdown: Largest absolute decline from the equity peak
        max_drawdown_percent: Largest decline as a percentage of the peak
        equity_curve: Recorded equity points
    """
    initial_balance: float
    balance: Optional[float] = None
    unrealized_pnl: float = 0.0
    commission_paid: float = 0.0
    swap_paid: float = 0.0
    peak_equity: Optional[float] = None
    max_drawdown: float = 0.0
    max_drawdown_percent: float = 0.0
    equity_curve: List[EquityPoint] = field(default_factory=list)

    def __post_init__(self):
        if self.balance is None:
            self.balance = self.initial_balance
        if self.peak_equity is None:
            self.peak_equity = self.initial_balance

    @property
    def equity(self) -> float:
        """Equity = balance + unrealized_pnl"""
        return self.balance + self.unrealized_pnl

    def apply_realized(self, profit: float, commission: float = 0.0, bar_index: Optional[int] = None) -> None:
        """Book a realized P&L (already net of ``commission``) into the balance.

        Raises:
            InvariantViolationError: if the resulting balance is not finite
        """
        self.balance += profit
        self.commission_paid += commission
        if not math.isfinite(self.balance):
            raise InvariantViolationError(f"Balance became non-finite ({self.balance})", bar_index)

    def apply_swap(self, amount: float, bar_index: Optional[int] = None) -> None:
        """Book a swap amount (negative is a charge)."""
        self.balance += amount
        self.swap_paid += amount
        if not math.isfinite(self.balance):
            raise InvariantViolationError(f"Balance became non-finite ({self.balance})", bar_index)

    def current_drawdown_percent(self) -> float:
        if self.peak_equity <= 0:
            return 0.0
        return max(0.0, (self.peak_equity - self.equity) / self.peak_equity * 100.0)

    def mark(self, bar_index: int, time: int, unrealized_pnl: float) -> EquityPoint:
        """
        Record the equity of one bar.

        Args:
            bar_index: Bar index
            time: Bar timestamp (ms)
            unrealized_pnl: Floating P&L of all open positions at the bar close

        Returns:
            The recorded EquityPoint

        Raises:
            InvariantViolationError: if balance or equity is not finite
        """
        self.unrealized_pnl = unrealized_pnl
        equity = self.equity
        if not (math.isfinite(self.balance) and math.isfinite(equity)):
            raise InvariantViolationError(
                f"Non-finite account state (balance={self.balance}, equity={equity})",
                bar_index
            )

        if equity > self.peak_equity:
            self.peak_equity = equity
        drawdown = self.peak_equity - equity
        if drawdown > self.max_drawdown:
            self.max_drawdown = drawdown
        if self.peak_equity > 0:
            self.max_drawdown_percent = max(self.max_drawdown_percent, drawdown / self.peak_equity * 100.0)

        point = EquityPoint(bar_index=bar_index, time=time, balance=self.balance, equity=equity)
        self.equity_curve.append(point)
        return point
