"""Instrument specification for price and P&L units.

This module defines InstrumentSpec, which encapsulates the instrument
parameters that affect fills and P&L:

- point: smallest price increment, 10**-digits
- point_value: account currency earned per point per lot
- spread: fixed bid/ask spread in points

Pips and points are the same unit everywhere in the engine.
"""

from dataclasses import dataclass
from typing import List, Optional
import logging

from config.schema import BacktestConfig

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class InstrumentSpec:
    """Instrument specification.

    Attributes:
        symbol: Trading symbol (e.g., 'EURUSD')
        digits: Price precision; one point is 10**-digits
        point_value: Account currency per point per lot
        spread_points: Fixed spread in points
        commission_per_lot: Commission per lot per side
        lot_step: Lot size increment
        min_lot: Smallest tradable volume
        max_lot: Largest tradable volume
        swap_long: Swap per lot per rollover for long positions
        swap_short: Swap per lot per rollover for short positions
    """
    symbol: str = 'EURUSD'
    digits: int = 5
    point_value: float = 1.0
    spread_points: float = 10.0
    commission_per_lot: float = 0.0
    lot_step: float = 0.01
    min_lot: float = 0.01
    max_lot: float = 100.0
    swap_long: float = 0.0
    swap_short: float = 0.0

    @property
    def point(self) -> float:
        return 10.0 ** -self.digits

    @property
    def spread_price(self) -> float:
        """Spread in price units."""
        return self.spread_points * self.point

    @property
    def half_spread(self) -> float:
        return self.spread_price / 2.0

    def to_points(self, price_distance: float) -> float:
        return price_distance / self.point

    def to_price(self, points: float) -> float:
        return points * self.point

    @classmethod
    def from_config(
        cls,
        config: BacktestConfig,
        warnings: Optional[List[str]] = None
    ) -> 'InstrumentSpec':
        """
        Build the spec for a run.

        Three-digit (JPY-quoted) symbols left at the default point value of 1
        are adjusted to 100; the adjustment is reported through ``warnings``.

        Args:
            config: Validated run configuration
            warnings: Run warning list to append to

        Returns:
            InstrumentSpec
        """
        point_value = config.point_value
        if config.digits == 3 and point_value == 1:
            point_value = 100.0
            message = f"JPY pair detected (digits={config.digits}): pointValue adjusted to {point_value:g}"
            logger.warning(message)
            if warnings is not None:
                warnings.append(message)
        return cls(
            symbol=config.symbol,
            digits=config.digits,
            point_value=point_value,
            spread_points=config.spread,
            commission_per_lot=config.commission,
            lot_step=config.lot_step,
            min_lot=config.min_lot,
            max_lot=config.max_lot,
            swap_long=config.swap_long,
            swap_short=config.swap_short,
        )
