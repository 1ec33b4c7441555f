"""Error taxonomy for the backtesting engine.

Three outcomes can end a run early:

- InputValidationError: bad bars, graph or config, detected before simulation starts
- InvariantViolationError: corrupted state detected while simulating (fatal)
- BacktestCancelled: the caller asked the run to stop (not an error, no result)

Degraded-but-continuable conditions are not exceptions; they are collected as
warnings on the result.
"""

from dataclasses import dataclass
from typing import List, Optional, Sequence


@dataclass
class ValidationIssue:
    """One structured validation problem.

    Attributes:
        message: Human-readable description of the problem
        row: Source row (1-based for text input) or array index, if applicable
        field: Offending column / field name, if applicable
    """
    message: str
    row: Optional[int] = None
    field: Optional[str] = None

    def __str__(self) -> str:
        prefix = []
        if self.row is not None:
            prefix.append(f"row {self.row}")
        if self.field:
            prefix.append(self.field)
        if prefix:
            return f"{' '.join(prefix)}: {self.message}"
        return self.message


class BacktestError(Exception):
    """Base class for every engine error."""


class InputValidationError(BacktestError, ValueError):
    """Input rejected before the simulation started."""

    def __init__(self, message: str, issues: Optional[Sequence[ValidationIssue]] = None):
        self.issues: List[ValidationIssue] = list(issues or [])
        if self.issues:
            shown = "; ".join(str(i) for i in self.issues[:5])
            more = len(self.issues) - 5
            if more > 0:
                shown += f"; ... {more} more"
            message = f"{message}: {shown}"
        super().__init__(message)


class BarValidationError(InputValidationError):
    """Malformed or out-of-range bar data."""


class GraphValidationError(InputValidationError):
    """Malformed strategy graph document."""


class InvariantViolationError(BacktestError, ValueError):
    """Fatal runtime invariant violation; the run is aborted."""

    def __init__(self, message: str, bar_index: Optional[int] = None):
        self.bar_index = bar_index
        if bar_index is not None:
            message = f"bar {bar_index}: {message}"
        super().__init__(message)


class BacktestCancelled(BacktestError):
    """Raised inside the engine when a cancellation request is observed."""

    def __init__(self, bars_processed: int = 0):
        self.bars_processed = bars_processed
        super().__init__(f"Backtest cancelled after {bars_processed} bars")
