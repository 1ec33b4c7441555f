"""Exit condition resolution for stops and targets touched inside one bar."""

from dataclasses import dataclass
from typing import List, Optional
from enum import Enum


class ExitType(Enum):
    """Types of exit conditions, mapped to the trade close reason."""
    STOP_LOSS = "SL"
    TAKE_PROFIT = "TP"
    SIGNAL = "SIGNAL"
    TIME_EXIT = "TIME_EXIT"
    RISK_MGMT = "RISK_MGMT"
    MANUAL = "MANUAL"


# Lower number wins when several exits trigger on the same bar
EXIT_PRIORITY = {
    ExitType.STOP_LOSS: 0,
    ExitType.TAKE_PROFIT: 1,
}


@dataclass
class ExitCondition:
    """Represents a potential exit condition.

    Attributes:
        exit_type: Type of exit
        exit_price: Price at which exit would occur
        priority: Priority level (lower = higher priority, stop loss = 0)
    """
    exit_type: ExitType
    exit_price: float
    priority: int = 10

    def __lt__(self, other):
        return self.priority < other.priority


class ExitResolver:
    """Resolves simultaneous stop-loss / take-profit touches.

    The bar's path between high and low is unknown, so when both levels are
    inside the range the stop loss is assumed to have filled first. This
    conservative tie-break is part of the documented fill model.
    """

    @staticmethod
    def candidates(broker, position, high: float, low: float) -> List[ExitCondition]:
        """Exit conditions touched by a bar's range.

        Args:
            broker: BrokerModel used for the bid/ask range test
            position: Open position (direction, stop_loss, take_profit)
            high: Bar high
            low: Bar low

        Returns:
            Triggered conditions, each priced at its level
        """
        stop_hit, target_hit = broker.check_sl_tp(
            position.direction, position.stop_loss, position.take_profit, high, low
        )
        exits = []
        if stop_hit:
            exits.append(ExitCondition(ExitType.STOP_LOSS, position.stop_loss, EXIT_PRIORITY[ExitType.STOP_LOSS]))
        if target_hit:
            exits.append(ExitCondition(ExitType.TAKE_PROFIT, position.take_profit, EXIT_PRIORITY[ExitType.TAKE_PROFIT]))
        return exits

    @staticmethod
    def resolve(exits: List[ExitCondition]) -> Optional[ExitCondition]:
        """Resolve multiple simultaneous exit conditions.

        Args:
            exits: List of potential exit conditions

        Returns:
            Exit condition to execute, or None if no valid exits
        """
        valid_exits = [e for e in exits if e.exit_price > 0]
        if not valid_exits:
            return None
        return min(valid_exits)
