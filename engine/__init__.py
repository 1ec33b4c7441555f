"""Core backtesting engine module.

The bar-by-bar engine itself lives in ``engine.backtest_engine`` and the
worker host in ``engine.host``; both depend on the strategy package and are
imported from their modules directly.
"""

from engine.bars import Bar, BarArray
from engine.errors import (
    BacktestCancelled,
    BacktestError,
    BarValidationError,
    GraphValidationError,
    InputValidationError,
    InvariantViolationError,
    ValidationIssue,
)
from engine.market import InstrumentSpec
from engine.broker import BrokerModel, RiskRequest, BUY, SELL
from engine.account import AccountState, EquityPoint

__all__ = [
    'Bar',
    'BarArray',
    'BacktestCancelled',
    'BacktestError',
    'BarValidationError',
    'GraphValidationError',
    'InputValidationError',
    'InvariantViolationError',
    'ValidationIssue',
    'InstrumentSpec',
    'BrokerModel',
    'RiskRequest',
    'BUY',
    'SELL',
    'AccountState',
    'EquityPoint',
]
