"""Calendar filters for time-based filtering."""

from .always_filter import AlwaysFilter
from .custom_times_filter import CustomTimesFilter
from .trading_session_filter import SESSION_TIMES, TradingSession, TradingSessionFilter

__all__ = ['AlwaysFilter', 'CustomTimesFilter', 'SESSION_TIMES', 'TradingSession', 'TradingSessionFilter']
