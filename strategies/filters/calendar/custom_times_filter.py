"""Custom trading times filter: allowed weekdays plus optional time slots.

All timestamps are UTC. Server-time conversion is not modelled, so
``useServerTime`` has no effect.
"""

from datetime import time
import logging

from strategies.filters.base import FilterBase, FilterContext, FilterResult
from strategies.filters.calendar.trading_session_filter import TradingSession

logger = logging.getLogger(__name__)

# pandas Timestamp.weekday(): Monday = 0 ... Sunday = 6
DAY_NAMES = ('monday', 'tuesday', 'wednesday', 'thursday', 'friday', 'saturday', 'sunday')


class CustomTimesFilter(FilterBase):
    """Allow entries on the enabled days, inside any of the time slots.

    No enabled day blocks everything; no time slots means the whole day. A
    slot whose end is not after its start wraps past midnight, so a slot with
    equal start and end covers the whole day.
    """

    def __init__(self, config):
        super().__init__(config)
        self.allowed_days = [d for d, name in enumerate(DAY_NAMES) if config.days.get(name, False)]
        self.slots = [
            TradingSession(
                time(slot.start_hour, slot.start_minute),
                time(slot.end_hour, slot.end_minute),
            )
            for slot in config.time_slots
        ]
        if not self.allowed_days:
            logger.debug("CustomTimesFilter: no trading day enabled, all entries blocked")

    def check(self, context: FilterContext) -> FilterResult:
        if not self.enabled:
            return self._create_pass_result()

        day = context.timestamp.weekday()
        if day not in self.allowed_days:
            return self._create_fail_result(
                reason=f"Day blocked ({DAY_NAMES[day]})",
                metadata={'day': day, 'allowed_days': self.allowed_days},
            )

        if not self.slots:
            return self._create_pass_result()

        for slot in self.slots:
            if slot.is_active(context.timestamp):
                return self._create_pass_result()

        return self._create_fail_result(
            reason="Outside custom trading times",
            metadata={'timestamp': str(context.timestamp)},
        )
