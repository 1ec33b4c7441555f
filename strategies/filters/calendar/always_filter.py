"""Filter that never blocks; the explicit "trade at any time" node."""

from strategies.filters.base import FilterBase, FilterContext, FilterResult


class AlwaysFilter(FilterBase):
    """Pass on every bar."""

    def check(self, context: FilterContext) -> FilterResult:
        return self._create_pass_result()
