"""Trading session filter for allowing trades only during a market session.

Session windows are fixed in UTC. A window whose end is not after its start
spans midnight (e.g. Sydney 22:00-07:00).
"""

from datetime import time
from typing import Dict, Tuple
import logging
import pandas as pd

from strategies.filters.base import FilterBase, FilterContext, FilterResult

logger = logging.getLogger(__name__)

# (start, end) in UTC
SESSION_TIMES: Dict[str, Tuple[time, time]] = {
    'LONDON': (time(8, 0), time(17, 0)),
    'NEW_YORK': (time(13, 0), time(22, 0)),
    'TOKYO': (time(0, 0), time(9, 0)),
    'SYDNEY': (time(22, 0), time(7, 0)),
    'LONDON_NY_OVERLAP': (time(13, 0), time(17, 0)),
}


class TradingSession:
    """Individual time-of-day window."""

    def __init__(self, start_time: time, end_time: time):
        self.start_time = start_time
        self.end_time = end_time

    @classmethod
    def named(cls, name: str) -> 'TradingSession':
        if name not in SESSION_TIMES:
            raise ValueError(f"Unknown trading session: {name}")
        start, end = SESSION_TIMES[name]
        return cls(start, end)

    def is_active(self, timestamp: pd.Timestamp) -> bool:
        """
        Check if the window contains the time of day of ``timestamp``.

        Start is inclusive, end exclusive.
        """
        current_time = timestamp.time()
        if self.start_time < self.end_time:
            return self.start_time <= current_time < self.end_time
        # Spans midnight (e.g., 22:00 to 07:00)
        return current_time >= self.start_time or current_time < self.end_time


class TradingSessionFilter(FilterBase):
    """Allow entries only inside one named session.

    With ``tradeMondayToFriday`` set, Saturday and Sunday are blocked too.
    """

    def __init__(self, config):
        """
        Args:
            config: TradingSessionData node block (session, tradeMondayToFriday)
        """
        super().__init__(config)
        self.session_name = config.session
        self.session = TradingSession.named(config.session)
        self.weekdays_only = config.trade_monday_to_friday

    def check(self, context: FilterContext) -> FilterResult:
        if not self.enabled:
            return self._create_pass_result()

        if self.weekdays_only and context.timestamp.weekday() >= 5:
            return self._create_fail_result(
                reason=f"Weekend blocked ({context.timestamp.day_name()})",
                metadata={'filter': 'trading_session', 'timestamp': str(context.timestamp)}
            )

        if self.session.is_active(context.timestamp):
            return self._create_pass_result()

        return self._create_fail_result(
            reason=f"Outside trading session {self.session_name}",
            metadata={
                'filter': 'trading_session',
                'timestamp': str(context.timestamp),
                'session': self.session_name
            }
        )
