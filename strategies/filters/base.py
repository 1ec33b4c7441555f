"""Base classes for the timing filter system."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, Optional
import pandas as pd


@dataclass
class FilterContext:
    """Context passed to filters for decision making.

    Attributes:
        timestamp: Bar open time (UTC)
        bar_index: Index of the bar being evaluated
        spread_points: Current spread in points
    """
    timestamp: pd.Timestamp
    bar_index: int = 0
    spread_points: float = 0.0


@dataclass
class FilterResult:
    """Result from filter check.

    Attributes:
        passed: Whether the filter passed (True) or failed (False)
        reason: Optional reason for failure (human-readable)
        metadata: Optional dictionary with additional information
    """
    passed: bool
    reason: Optional[str] = None
    metadata: Dict = field(default_factory=dict)

    def __post_init__(self):
        if self.metadata is None:
            self.metadata = {}


class FilterBase(ABC):
    """Base class for all timing filters.

    Filters are built from a graph node's data block and decide whether new
    entries are allowed on a bar. They never touch open positions.

    Example:
        class MyFilter(FilterBase):
            def check(self, context: FilterContext) -> FilterResult:
                if condition:
                    return self._create_pass_result()
                return self._create_fail_result("Reason for failure")
    """

    def __init__(self, config=None):
        """
        Initialize filter with configuration.

        Args:
            config: Node data model (or None for parameterless filters)
        """
        self.config = config
        self.enabled = getattr(config, 'enabled', True) if config is not None else True
        self.name = self.__class__.__name__

    @abstractmethod
    def check(self, context: FilterContext) -> FilterResult:
        """
        Check if filter passes.

        Args:
            context: FilterContext for the bar being evaluated

        Returns:
            FilterResult indicating pass/fail and reason
        """
        pass

    def is_enabled(self) -> bool:
        return self.enabled

    def _create_pass_result(self, metadata: Optional[Dict] = None) -> FilterResult:
        return FilterResult(passed=True, metadata=metadata or {})

    def _create_fail_result(self, reason: str, metadata: Optional[Dict] = None) -> FilterResult:
        return FilterResult(
            passed=False,
            reason=reason,
            metadata=metadata or {}
        )
