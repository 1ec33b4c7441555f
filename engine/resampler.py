"""Timeframe resampling for higher-timeframe filters.

Timeframes use the builder's codes (M1 ... MN1). Resampled bars are labelled
by their open time and a higher-timeframe value is only ever visible to base
bars once its period has closed, so filters never look ahead.
"""

from typing import Callable
import numpy as np
import pandas as pd

from engine.bars import BarArray


# Mapping of timeframe codes to pandas frequency strings
TIMEFRAME_MAP = {
    'M1': '1min',
    'M5': '5min',
    'M15': '15min',
    'M30': '30min',
    'H1': '1h',
    'H4': '4h',
    'D1': '1D',
    'W1': 'W-MON',
    'MN1': 'MS',
}

TIMEFRAME_MINUTES = {
    'M1': 1,
    'M5': 5,
    'M15': 15,
    'M30': 30,
    'H1': 60,
    'H4': 240,
    'D1': 1440,
    'W1': 10080,
    'MN1': 43200,
}


def parse_timeframe(tf: str) -> str:
    """
    Parse timeframe code to pandas frequency string.

    Raises:
        ValueError if timeframe is not supported
    """
    code = tf.upper().strip()
    if code not in TIMEFRAME_MAP:
        raise ValueError(f"Unsupported timeframe: {tf}. Supported: {list(TIMEFRAME_MAP.keys())}")
    return TIMEFRAME_MAP[code]


def infer_base_minutes(bars: BarArray) -> float:
    """Median spacing of the bars in minutes (0 for fewer than two bars)."""
    if len(bars) < 2:
        return 0.0
    return float(np.median(np.diff(bars.time))) / 60_000.0


def resample_ohlcv(df: pd.DataFrame, target_tf: str) -> pd.DataFrame:
    """
    Resample OHLCV data to target timeframe.

    Proper OHLC aggregation:
    - open: first value in period
    - high: maximum value in period
    - low: minimum value in period
    - close: last value in period
    - volume: sum of volumes in period

    Args:
        df: DataFrame with UTC DatetimeIndex (bar open times) and OHLCV columns
        target_tf: Target timeframe code (e.g., 'H4', 'D1')

    Returns:
        Resampled DataFrame indexed by period open time; empty periods dropped

    Raises:
        ValueError if required columns are missing or timeframe is invalid
    """
    required_cols = ['open', 'high', 'low', 'close', 'volume']
    missing = [col for col in required_cols if col not in df.columns]
    if missing:
        raise ValueError(f"DataFrame missing required columns: {missing}")

    if not isinstance(df.index, pd.DatetimeIndex):
        raise ValueError("DataFrame index must be DatetimeIndex")

    if df.empty:
        return df.copy()

    freq = parse_timeframe(target_tf)
    resampled = df.resample(freq, label='left', closed='left').agg({
        'open': 'first',
        'high': 'max',
        'low': 'min',
        'close': 'last',
        'volume': 'sum',
    })
    return resampled.dropna(subset=['open', 'high', 'low', 'close'], how='all')


def higher_timeframe_values(
    bars: BarArray,
    target_tf: str,
    compute: Callable[[pd.DataFrame], np.ndarray],
) -> np.ndarray:
    """
    Compute a value on higher-timeframe bars and align it to the base bars.

    Each base bar sees the value of the last higher-timeframe period that
    closed before its own period began.

    Args:
        bars: Base bars
        target_tf: Higher timeframe code
        compute: Function from the resampled DataFrame to one value per row

    Returns:
        Array aligned with ``bars`` (NaN where no completed period exists yet)
    """
    if len(bars) == 0:
        return np.array([], dtype=float)
    base = bars.to_dataframe()
    htf = resample_ohlcv(base, target_tf)
    values = pd.Series(np.asarray(compute(htf), dtype=float), index=htf.index)
    completed = values.shift(1)
    aligned = completed.reindex(base.index, method='ffill')
    return aligned.to_numpy(dtype=float)

