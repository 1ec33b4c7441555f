"""Timing filters that gate new entries bar by bar.

Each timing node of a strategy graph becomes one filter; the FilterManager
combines them by the graph's condition mode.
"""

from strategies.filters.base import FilterBase, FilterContext, FilterResult
from strategies.filters.manager import FilterManager, build_filter

from strategies.filters.calendar.always_filter import AlwaysFilter
from strategies.filters.calendar.custom_times_filter import CustomTimesFilter
from strategies.filters.calendar.trading_session_filter import (
    SESSION_TIMES,
    TradingSession,
    TradingSessionFilter,
)
from strategies.filters.spread.max_spread_filter import MaxSpreadFilter

__all__ = [
    'FilterBase',
    'FilterContext',
    'FilterResult',
    'FilterManager',
    'build_filter',
    'AlwaysFilter',
    'CustomTimesFilter',
    'SESSION_TIMES',
    'TradingSession',
    'TradingSessionFilter',
    'MaxSpreadFilter',
]
