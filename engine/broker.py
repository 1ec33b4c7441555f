"""Broker model: fills, stop/target levels, sizing and P&L.

The BrokerModel handles:
- Entry prices (buy at the ask, sell at the bid)
- Stop-loss / take-profit levels and the intrabar fill test
- Realized / unrealized P&L in account currency
- Lot sizing (fixed lot or percent-of-balance risk)
- Requotes (seeded) and overnight swap

Key principle: The broker enforces execution rules, the strategy doesn't know about them.
"""

from dataclasses import dataclass, field
from typing import Optional, Tuple
import math
import numpy as np

from engine.market import InstrumentSpec

BUY = 'BUY'
SELL = 'SELL'

# Stop distance assumed for risk sizing when a position has no stop loss
DEFAULT_SIZING_STOP_POINTS = 50.0
DEFAULT_STOP_POINTS = 50.0
DEFAULT_TARGET_POINTS = 100.0


@dataclass(frozen=True)
class RiskRequest:
    """Stop, target and sizing requested by the strategy for one direction.

    Attributes:
        sl_mode: 'NONE', 'DISTANCE' (``sl_value`` is a price distance),
            'PERCENT' (``sl_value`` percent of the entry price) or 'LEVEL'
            (``sl_value`` is the stop price itself)
        sl_value: Stop parameter for ``sl_mode``
        tp_mode: 'NONE', 'DISTANCE' (price distance) or 'RISK_REWARD'
            (``tp_value`` times the stop distance)
        tp_value: Target parameter for ``tp_mode``
        sizing: 'MIN_LOT', 'FIXED_LOT' or 'RISK_PERCENT'
        fixed_lot: Volume for FIXED_LOT (also the fallback of RISK_PERCENT)
        risk_percent: Percent of balance risked for RISK_PERCENT
        min_lot / max_lot: Optional per-strategy volume bounds
    """
    sl_mode: str = 'NONE'
    sl_value: float = 0.0
    tp_mode: str = 'NONE'
    tp_value: float = 0.0
    sizing: str = 'MIN_LOT'
    fixed_lot: Optional[float] = None
    risk_percent: float = 1.0
    min_lot: Optional[float] = None
    max_lot: Optional[float] = None


@dataclass
class BrokerModel:
    """Execution rules for one instrument.

    Attributes:
        spec: Instrument specification
        requote_rate: Probability that a market order is requoted (skipped)
        seed: Seed of the requote generator
    """
    spec: InstrumentSpec
    requote_rate: float = 0.0
    seed: Optional[int] = None
    _rng: np.random.Generator = field(init=False, repr=False)

    def __post_init__(self):
        self._rng = np.random.default_rng(self.seed)

    # ------------------------------------------------------------------
    # Prices
    # ------------------------------------------------------------------

    def bid(self, price: float) -> float:
        return price - self.spec.half_spread

    def ask(self, price: float) -> float:
        return price + self.spec.half_spread

    def entry_price(self, direction: str, close: float) -> float:
        """Buy at the ask, sell at the bid of the bar close."""
        return self.ask(close) if direction == BUY else self.bid(close)

    def exit_quote(self, direction: str, close: float) -> float:
        """Price a position would be closed at (bid for longs, ask for shorts)."""
        return self.bid(close) if direction == BUY else self.ask(close)

    # ------------------------------------------------------------------
    # Stops and targets
    # ------------------------------------------------------------------

    def stop_loss_price(self, direction: str, entry_price: float, request: RiskRequest) -> float:
        """
        Stop-loss level for a new position.

        Returns:
            Stop price, or 0.0 when the request has no stop
        """
        if request.sl_mode == 'NONE':
            return 0.0
        if request.sl_mode == 'LEVEL':
            # A level on the wrong side of the entry cannot act as a stop
            on_loss_side = request.sl_value < entry_price if direction == BUY else request.sl_value > entry_price
            dist = abs(entry_price - request.sl_value) if on_loss_side else self.spec.to_price(DEFAULT_STOP_POINTS)
        elif request.sl_mode == 'PERCENT':
            dist = entry_price * request.sl_value / 100.0
        elif request.sl_mode == 'DISTANCE':
            dist = request.sl_value
        else:
            dist = self.spec.to_price(DEFAULT_STOP_POINTS)
        return entry_price - dist if direction == BUY else entry_price + dist

    def take_profit_price(
        self,
        direction: str,
        entry_price: float,
        stop_price: float,
        request: RiskRequest
    ) -> float:
        """
        Take-profit level for a new position.

        RISK_REWARD targets are measured from the stop distance; without a stop
        they collapse onto the entry price.

        Returns:
            Target price, or 0.0 when the request has no target
        """
        if request.tp_mode == 'NONE':
            return 0.0
        if request.tp_mode == 'RISK_REWARD':
            sl_dist = abs(entry_price - stop_price) if stop_price > 0 else 0.0
            dist = sl_dist * request.tp_value
        elif request.tp_mode == 'DISTANCE':
            dist = request.tp_value
        else:
            dist = self.spec.to_price(DEFAULT_TARGET_POINTS)
        return entry_price + dist if direction == BUY else entry_price - dist

    def stop_distance_points(self, entry_price: float, stop_price: float) -> float:
        """Stop distance used for risk sizing (a fixed default without a stop)."""
        if stop_price > 0:
            return self.spec.to_points(abs(entry_price - stop_price))
        return DEFAULT_SIZING_STOP_POINTS

    def check_sl_tp(
        self,
        direction: str,
        stop_price: float,
        target_price: float,
        high: float,
        low: float
    ) -> Tuple[bool, bool]:
        """
        Test whether the bar's range touched the stop and/or the target.

        Longs close on the bid, so the bar's bid range (low/high minus half
        spread) is tested; shorts close on the ask. A level of 0 is inactive.

        Returns:
            (stop_hit, target_hit)
        """
        half = self.spec.half_spread
        if direction == BUY:
            stop_hit = stop_price > 0 and low - half <= stop_price
            target_hit = target_price > 0 and high - half >= target_price
        else:
            stop_hit = stop_price > 0 and high + half >= stop_price
            target_hit = target_price > 0 and low + half <= target_price
        return stop_hit, target_hit

    # ------------------------------------------------------------------
    # P&L
    # ------------------------------------------------------------------

    def gross_profit(self, direction: str, entry_price: float, exit_price: float, lots: float) -> float:
        """P&L before commission."""
        delta = exit_price - entry_price if direction == BUY else entry_price - exit_price
        return self.spec.to_points(delta) * self.spec.point_value * lots

    def commission(self, lots: float) -> float:
        """Round-trip commission (both sides)."""
        return self.spec.commission_per_lot * lots * 2

    def realized_profit(self, direction: str, entry_price: float, exit_price: float, lots: float) -> float:
        """Net P&L of closing ``lots`` at ``exit_price``.

        Returns:
            (price move / point) * point_value * lots - commission * lots * 2
        """
        return self.gross_profit(direction, entry_price, exit_price, lots) - self.commission(lots)

    def unrealized_profit(self, direction: str, entry_price: float, close: float, lots: float) -> float:
        """Floating P&L marked at the bid (longs) or ask (shorts); no commission."""
        return self.gross_profit(direction, entry_price, self.exit_quote(direction, close), lots)

    def profit_points(self, direction: str, entry_price: float, price: float) -> float:
        """Favourable move from entry to ``price`` in points."""
        delta = price - entry_price if direction == BUY else entry_price - price
        return self.spec.to_points(delta)

    def swap(self, direction: str, lots: float) -> float:
        """Swap charged (negative) or credited for one rollover."""
        rate = self.spec.swap_long if direction == BUY else self.spec.swap_short
        return rate * lots

    # ------------------------------------------------------------------
    # Sizing
    # ------------------------------------------------------------------

    def lot_size(self, balance: float, stop_distance_points: float, request: RiskRequest) -> float:
        """
        Volume of a new position.

        RISK_PERCENT risks ``risk_percent`` of the balance over the stop
        distance, floors the result to the lot step and clamps it to the
        volume bounds. FIXED_LOT clamps ``fixed_lot`` to the instrument
        bounds. Without a sizing node the minimum lot is traded.

        Args:
            balance: Current account balance
            stop_distance_points: Stop distance in points (50 when there is no stop)
            request: Sizing request

        Returns:
            Volume in lots
        """
        spec = self.spec
        if request.sizing == 'RISK_PERCENT':
            risk_amount = balance * request.risk_percent / 100.0
            if stop_distance_points <= 0 or spec.point_value <= 0:
                return request.fixed_lot if request.fixed_lot is not None else spec.min_lot
            lots = risk_amount / (stop_distance_points * spec.point_value)
            # Tolerance keeps exact multiples from flooring one step down
            lots = math.floor(lots / spec.lot_step + 1e-9) * spec.lot_step
            min_lot = request.min_lot if request.min_lot is not None else spec.min_lot
            max_lot = request.max_lot if request.max_lot is not None else spec.max_lot
            return max(min_lot, min(lots, max_lot))
        if request.sizing == 'FIXED_LOT':
            fixed = request.fixed_lot if request.fixed_lot is not None else 0.01
            return max(spec.min_lot, min(fixed, spec.max_lot))
        return spec.min_lot

    # ------------------------------------------------------------------
    # Requotes
    # ------------------------------------------------------------------

    def is_requoted(self) -> bool:
        """Sample whether the next market order is requoted."""
        if self.requote_rate <= 0:
            return False
        return bool(self._rng.random() < self.requote_rate)
