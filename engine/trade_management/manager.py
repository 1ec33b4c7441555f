"""Trade management: stop adjustment, partial close and time exit per bar."""

from dataclasses import dataclass
from typing import Any, List, Optional
import math
import logging

from engine.broker import BUY, BrokerModel

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ManagementRules:
    """Trade-management node parameters applied to one direction's positions.

    Each field holds the data block of the corresponding graph node (or None
    when the strategy has no such node).
    """
    breakeven: Optional[Any] = None
    trailing: Optional[Any] = None
    partial_close: Optional[Any] = None
    lock_profit: Optional[Any] = None
    time_exit: Optional[Any] = None

    @property
    def is_empty(self) -> bool:
        return not any((self.breakeven, self.trailing, self.partial_close, self.lock_profit, self.time_exit))


@dataclass(frozen=True)
class ManagementAction:
    """A close requested by trade management.

    Attributes:
        kind: 'PARTIAL_CLOSE' or 'TIME_EXIT'
        lots: Volume to close
        price: Close price (the bar close)
        closes_position: True when nothing remains open afterwards
    """
    kind: str
    lots: float
    price: float
    closes_position: bool = False


class TradeManagementManager:
    """Applies trade-management rules to an open position on one bar.

    The rules run in a fixed order: breakeven stop, trailing stop, partial
    close, lock profit, time exit. Stop adjustments are written to the
    position directly; closes are returned as actions for the engine to book.
    Stops only ever move in the position's favour.
    """

    def __init__(self, broker: BrokerModel):
        self.broker = broker
        self.spec = broker.spec

    def apply(
        self,
        position,
        rules: ManagementRules,
        bar_index: int,
        close: float,
        atr: float = math.nan
    ) -> List[ManagementAction]:
        """
        Run every rule against ``position`` at the close of bar ``bar_index``.

        Args:
            position: Open position (direction, entry_price, stop_loss, lots,
                open_bar, partial_close_done)
            rules: Management rules for the position's direction
            bar_index: Current bar index
            close: Bar close
            atr: ATR value of the bar (NaN when not available)

        Returns:
            Closes to execute, in order
        """
        actions: List[ManagementAction] = []
        if rules.breakeven is not None:
            self.apply_breakeven(position, rules.breakeven, close, atr)
        if rules.trailing is not None:
            self.apply_trailing(position, rules.trailing, close, atr)
        if rules.partial_close is not None:
            action = self.check_partial_close(position, rules.partial_close, close)
            if action is not None:
                actions.append(action)
                if action.closes_position:
                    return actions
        if rules.lock_profit is not None:
            self.apply_lock_profit(position, rules.lock_profit, close)
        if rules.time_exit is not None:
            action = self.check_time_exit(position, rules.time_exit, bar_index, close)
            if action is not None:
                actions.append(action)
        return actions

    def _profit_points(self, position, price: float) -> float:
        return self.broker.profit_points(position.direction, position.entry_price, price)

    def _move_stop(self, position, new_stop: float, rule: str) -> None:
        logger.debug(f"Position {position.id}: {rule} moves stop {position.stop_loss} -> {new_stop}")
        position.stop_loss = new_stop

    def apply_breakeven(self, position, data, close: float, atr: float) -> None:
        """Move the stop to entry (plus ``lockPips``) once price has moved far enough."""
        point = self.spec.point
        if data.trigger == 'PIPS':
            trigger_dist = data.trigger_pips * point
        elif data.trigger == 'ATR':
            if math.isnan(atr):
                return
            trigger_dist = atr * data.trigger_atr_multiplier
        elif data.trigger == 'PERCENTAGE':
            trigger_dist = position.entry_price * data.trigger_percent / 100.0
        else:
            return

        lock_extra = data.lock_pips * point
        if position.direction == BUY:
            if close >= position.entry_price + trigger_dist:
                new_stop = position.entry_price + lock_extra
                if new_stop > position.stop_loss:
                    self._move_stop(position, new_stop, 'breakeven')
        else:
            if close <= position.entry_price - trigger_dist:
                new_stop = position.entry_price - lock_extra
                if position.stop_loss == 0 or new_stop < position.stop_loss:
                    self._move_stop(position, new_stop, 'breakeven')

    def apply_trailing(self, position, data, close: float, atr: float) -> None:
        """Trail the stop behind the close, never below entry."""
        if self._profit_points(position, close) < data.start_after_pips:
            return

        if data.method == 'FIXED_PIPS':
            trail_dist = data.trail_pips * self.spec.point
        elif data.method == 'ATR_BASED':
            if math.isnan(atr):
                return
            trail_dist = atr * data.trail_atr_multiplier
        elif data.method == 'PERCENTAGE':
            trail_dist = close * data.trail_percent / 100.0
        else:
            return

        if position.direction == BUY:
            new_stop = close - trail_dist
            if new_stop > position.stop_loss and new_stop > position.entry_price:
                self._move_stop(position, new_stop, 'trailing')
        else:
            new_stop = close + trail_dist
            if (position.stop_loss == 0 or new_stop < position.stop_loss) and new_stop < position.entry_price:
                self._move_stop(position, new_stop, 'trailing')

    def check_partial_close(self, position, data, close: float) -> Optional[ManagementAction]:
        """
        Close part of the position once, when its profit trigger is reached.

        Returns:
            PARTIAL_CLOSE action, or None when not triggered
        """
        if position.partial_close_done:
            return None

        profit_points = self._profit_points(position, close)
        if data.trigger_method == 'PIPS':
            triggered = profit_points >= data.trigger_pips
        else:
            profit_percent = profit_points * self.spec.point * self.spec.point_value / position.entry_price * 100.0
            triggered = profit_percent >= data.trigger_percent
        if not triggered:
            return None

        position.partial_close_done = True
        if data.move_sl_to_breakeven:
            self._move_stop(position, position.entry_price, 'partial close')

        close_lots = position.lots * data.close_percent / 100.0
        remaining = position.lots - close_lots
        closes_position = remaining <= self.spec.lot_step / 2
        return ManagementAction('PARTIAL_CLOSE', close_lots, close, closes_position)

    def apply_lock_profit(self, position, data, close: float) -> None:
        """Lock part of the open profit once it exceeds ``checkIntervalPips``."""
        quote = self.broker.exit_quote(position.direction, close)
        profit_points = self._profit_points(position, quote)
        if profit_points <= data.check_interval_pips:
            return

        if data.method == 'PERCENTAGE':
            lock_points = profit_points * data.lock_percent / 100.0
        else:
            lock_points = data.lock_pips
        lock_dist = lock_points * self.spec.point

        if position.direction == BUY:
            new_stop = position.entry_price + lock_dist
            if new_stop > position.stop_loss and new_stop < quote:
                self._move_stop(position, new_stop, 'lock profit')
        else:
            new_stop = position.entry_price - lock_dist
            if (position.stop_loss == 0 or new_stop < position.stop_loss) and new_stop > quote:
                self._move_stop(position, new_stop, 'lock profit')

    def check_time_exit(self, position, data, bar_index: int, close: float) -> Optional[ManagementAction]:
        """Close the position after ``exitAfterBars`` bars."""
        if bar_index - position.open_bar >= data.exit_after_bars:
            return ManagementAction('TIME_EXIT', position.lots, close, True)
        return None
