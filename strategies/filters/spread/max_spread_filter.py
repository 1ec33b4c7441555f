"""Maximum spread filter.

Blocks new entries while the spread is wider than the node's limit. Pips and
points are the same unit throughout the engine.
"""

from strategies.filters.base import FilterBase, FilterContext, FilterResult


class MaxSpreadFilter(FilterBase):
    """Reject entries when ``spread_points > maxSpreadPips``."""

    def __init__(self, config):
        super().__init__(config)
        self.max_spread = float(config.max_spread_pips)

    def check(self, context: FilterContext) -> FilterResult:
        if not self.enabled:
            return self._create_pass_result()
        if context.spread_points > self.max_spread:
            return self._create_fail_result(
                reason=f"Spread {context.spread_points:g} above maximum {self.max_spread:g}",
                metadata={'spread': context.spread_points, 'max_spread': self.max_spread},
            )
        return self._create_pass_result()
