"""Source-price selection for period-based indicators."""

import numpy as np

from engine.bars import BarArray

APPLIED_PRICES = ('CLOSE', 'OPEN', 'HIGH', 'LOW', 'MEDIAN', 'TYPICAL', 'WEIGHTED')


def resolve_applied_price(bars: BarArray, name: str = 'CLOSE') -> np.ndarray:
    """
    Return the price series an indicator should run on.

    Args:
        bars: Bar arrays
        name: CLOSE, OPEN, HIGH, LOW, MEDIAN (h+l)/2, TYPICAL (h+l+c)/3 or
            WEIGHTED (h+l+2c)/4

    Returns:
        Float array aligned with the bars
    """
    key = (name or 'CLOSE').upper()
    if key == 'CLOSE':
        return np.asarray(bars.close, dtype=float)
    if key == 'OPEN':
        return np.asarray(bars.open, dtype=float)
    if key == 'HIGH':
        return np.asarray(bars.high, dtype=float)
    if key == 'LOW':
        return np.asarray(bars.low, dtype=float)
    if key == 'MEDIAN':
        return (bars.high + bars.low) / 2.0
    if key == 'TYPICAL':
        return (bars.high + bars.low + bars.close) / 3.0
    if key == 'WEIGHTED':
        return (bars.high + bars.low + 2.0 * bars.close) / 4.0
    raise ValueError(f"Unknown applied price: {name}")
