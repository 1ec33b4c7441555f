"""Filter manager for applying the timing filter chain to a bar."""

from typing import Dict, List, Sequence
import logging

from strategies.filters.base import FilterBase, FilterContext, FilterResult
from strategies.filters.calendar.always_filter import AlwaysFilter
from strategies.filters.calendar.custom_times_filter import CustomTimesFilter
from strategies.filters.calendar.trading_session_filter import TradingSessionFilter
from strategies.filters.spread.max_spread_filter import MaxSpreadFilter

logger = logging.getLogger(__name__)

_FILTER_CLASSES = {
    'always': AlwaysFilter,
    'custom-times': CustomTimesFilter,
    'trading-session': TradingSessionFilter,
    'max-spread': MaxSpreadFilter,
}


def build_filter(node) -> FilterBase:
    """Build the filter for one timing node.

    Raises:
        ValueError: if the node type is not a timing node
    """
    cls = _FILTER_CLASSES.get(node.type)
    if cls is None:
        raise ValueError(f"Not a timing node: {node.type}")
    return cls(node.data)


class FilterManager:
    """Manages and applies the timing filter chain.

    In AND mode (default) the first failing filter rejects the bar
    (short-circuiting); in OR mode any passing filter allows it. An empty
    chain always passes.

    Example:
        manager = FilterManager.from_nodes(graph.nodes_of_type(*TIMING_TYPES), 'AND')
        if manager.apply_filters(context).passed:
            # Entries allowed on this bar
            pass
    """

    def __init__(self, filters: Sequence[FilterBase] = (), mode: str = 'AND'):
        self.filters: List[FilterBase] = list(filters)
        self.mode = mode
        self._filter_failure_counts: Dict[str, int] = {}

    @classmethod
    def from_nodes(cls, nodes, mode: str = 'AND') -> 'FilterManager':
        return cls([build_filter(node) for node in nodes], mode)

    def apply_filters(self, context: FilterContext) -> FilterResult:
        """
        Apply all enabled filters to the bar described by ``context``.

        Returns:
            FilterResult; on rejection it is the first failing filter's result
        """
        active = [f for f in self.filters if f.is_enabled()]
        if not active:
            return FilterResult(passed=True)

        first_failure = None
        for filter_obj in active:
            result = filter_obj.check(context)
            if result.passed:
                if self.mode == 'OR':
                    return result
                continue
            self._filter_failure_counts[filter_obj.name] = self._filter_failure_counts.get(filter_obj.name, 0) + 1
            if first_failure is None:
                first_failure = result
            if self.mode != 'OR':
                break

        if first_failure is not None:
            logger.debug(f"Timing filter rejected bar {context.bar_index}: {first_failure.reason}")
            return first_failure
        return FilterResult(passed=True)

    def failure_counts(self) -> Dict[str, int]:
        """Number of rejections per filter class."""
        return dict(self._filter_failure_counts)
