"""Moving-average primitives.

All functions take a 1-D float array and return an array of the same length.
``NaN`` marks "not yet valid". Leading ``NaN`` values in the input (the
warmup of an upstream indicator) push the seed window forward, so chained
indicators stay invalid until their whole input window is valid.

Smoothing conventions:
    SMA   simple mean of the last ``period`` values
    EMA   seeded with the SMA of the first full window, then k = 2/(period+1)
    SMMA  seeded with the SMA of the first full window, then
          (prev*(period-1) + value) / period   (Wilder smoothing)
    LWMA  linearly weighted, newest value weight ``period``
"""

from typing import Literal
import numpy as np
import pandas as pd

MAMethod = Literal["SMA", "EMA", "SMMA", "LWMA"]


def _as_array(values) -> np.ndarray:
    return np.asarray(values, dtype=float)


def sma(values, period: int) -> np.ndarray:
    """Simple moving average."""
    values = _as_array(values)
    if period < 1:
        raise ValueError(f"period must be >= 1, got {period}")
    return pd.Series(values).rolling(window=period, min_periods=period).mean().to_numpy()


def _seeded_recursive(values: np.ndarray, period: int, alpha: float) -> np.ndarray:
    """Recursive smoothing seeded by the SMA of the first full valid window."""
    out = np.full(len(values), np.nan)
    seed = sma(values, period)
    valid = np.flatnonzero(~np.isnan(seed))
    if len(valid) == 0:
        return out
    start = int(valid[0])
    tail = values[start:].copy()
    tail[0] = seed[start]
    out[start:] = pd.Series(tail).ewm(alpha=alpha, adjust=False).mean().to_numpy()
    return out


def ema(values, period: int) -> np.ndarray:
    """Exponential moving average, k = 2/(period+1), SMA seed."""
    if period < 1:
        raise ValueError(f"period must be >= 1, got {period}")
    return _seeded_recursive(_as_array(values), period, 2.0 / (period + 1))


def smma(values, period: int) -> np.ndarray:
    """Smoothed (Wilder) moving average, SMA seed."""
    if period < 1:
        raise ValueError(f"period must be >= 1, got {period}")
    return _seeded_recursive(_as_array(values), period, 1.0 / period)


def lwma(values, period: int) -> np.ndarray:
    """Linearly weighted moving average."""
    values = _as_array(values)
    if period < 1:
        raise ValueError(f"period must be >= 1, got {period}")
    weights = np.arange(1, period + 1, dtype=float)
    total = weights.sum()
    return (
        pd.Series(values)
        .rolling(window=period, min_periods=period)
        .apply(lambda w: np.dot(w, weights) / total, raw=True)
        .to_numpy()
    )


def moving_average(values, period: int, method: str = "SMA") -> np.ndarray:
    """Dispatch on the MA method name."""
    method = (method or "SMA").upper()
    if method == "SMA":
        return sma(values, period)
    if method == "EMA":
        return ema(values, period)
    if method == "SMMA":
        return smma(values, period)
    if method == "LWMA":
        return lwma(values, period)
    raise ValueError(f"Unsupported moving average method: {method}")
