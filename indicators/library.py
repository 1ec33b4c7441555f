"""Composite indicators built from the moving-average primitives.

Every function is pure: arrays in, arrays out, ``NaN`` before warmup. The
smoothing conventions follow the MetaTrader terminal so that a strategy
backtested here reads the same values the exported expert advisor sees.
"""

from typing import Dict
import numpy as np
import pandas as pd

from engine.bars import BarArray
from indicators.moving_average import ema, moving_average, sma, smma


def _safe_ratio(num: np.ndarray, den: np.ndarray, fill: float) -> np.ndarray:
    """num/den with ``fill`` where den is zero; NaN stays NaN."""
    out = np.full(len(num), np.nan)
    valid = ~np.isnan(num) & ~np.isnan(den)
    zero = valid & (den == 0)
    ok = valid & (den != 0)
    out[ok] = num[ok] / den[ok]
    out[zero] = fill
    return out


def rsi(values, period: int = 14) -> np.ndarray:
    """
    Relative Strength Index with Wilder smoothing.

    The first average gain/loss is the simple mean of the first ``period``
    price changes, so the first valid value sits at index ``period``.
    A window with no movement reads 50, one with no losses reads 100.
    """
    values = np.asarray(values, dtype=float)
    out = np.full(len(values), np.nan)
    if len(values) <= period:
        return out

    change = np.full(len(values), np.nan)
    change[1:] = np.diff(values)
    gain = np.where(np.isnan(change), np.nan, np.maximum(change, 0.0))
    loss = np.where(np.isnan(change), np.nan, np.maximum(-change, 0.0))
    avg_gain = smma(gain, period)
    avg_loss = smma(loss, period)

    valid = ~np.isnan(avg_gain) & ~np.isnan(avg_loss)
    flat = valid & (avg_gain == 0) & (avg_loss == 0)
    no_loss = valid & (avg_loss == 0) & ~flat
    normal = valid & (avg_loss != 0)
    out[flat] = 50.0
    out[no_loss] = 100.0
    out[normal] = 100.0 - 100.0 / (1.0 + avg_gain[normal] / avg_loss[normal])
    return out


def macd(values, fast: int = 12, slow: int = 26, signal: int = 9) -> Dict[str, np.ndarray]:
    """MACD main (EMA fast - EMA slow), SMA signal line and histogram."""
    values = np.asarray(values, dtype=float)
    main = ema(values, fast) - ema(values, slow)
    signal_line = sma(main, signal)
    return {'main': main, 'signal': signal_line, 'histogram': main - signal_line}


def bollinger_bands(values, period: int = 20, deviation: float = 2.0) -> Dict[str, np.ndarray]:
    """Bollinger Bands with an SMA middle and population standard deviation."""
    values = np.asarray(values, dtype=float)
    middle = sma(values, period)
    std = pd.Series(values).rolling(window=period, min_periods=period).std(ddof=0).to_numpy()
    return {
        'upper': middle + deviation * std,
        'middle': middle,
        'lower': middle - deviation * std,
    }


def true_range(bars: BarArray) -> np.ndarray:
    """True range; the first bar has no previous close and uses high - low."""
    high = np.asarray(bars.high, dtype=float)
    low = np.asarray(bars.low, dtype=float)
    close = np.asarray(bars.close, dtype=float)
    tr = high - low
    if len(tr) > 1:
        prev_close = close[:-1]
        tr[1:] = np.maximum.reduce([
            high[1:] - low[1:],
            np.abs(high[1:] - prev_close),
            np.abs(low[1:] - prev_close),
        ])
    return tr


def atr(bars: BarArray, period: int = 14) -> np.ndarray:
    """Average True Range (Wilder), seeded by the mean of TR[1..period]."""
    tr = true_range(bars)
    if len(tr):
        tr[0] = np.nan
    return smma(tr, period)


def adx(bars: BarArray, period: int = 14) -> Dict[str, np.ndarray]:
    """
    Average Directional Index (Wilder).

    Returns:
        Dict with 'main' (ADX), 'plusDI' and 'minusDI'
    """
    high = np.asarray(bars.high, dtype=float)
    low = np.asarray(bars.low, dtype=float)
    n = len(high)
    plus_dm = np.full(n, np.nan)
    minus_dm = np.full(n, np.nan)
    if n > 1:
        up = high[1:] - high[:-1]
        down = low[:-1] - low[1:]
        plus_dm[1:] = np.where((up > down) & (up > 0), up, 0.0)
        minus_dm[1:] = np.where((down > up) & (down > 0), down, 0.0)

    tr = true_range(bars)
    if n:
        tr[0] = np.nan
    smooth_tr = smma(tr, period)
    plus_di = 100.0 * _safe_ratio(smma(plus_dm, period), smooth_tr, 0.0)
    minus_di = 100.0 * _safe_ratio(smma(minus_dm, period), smooth_tr, 0.0)
    dx = 100.0 * _safe_ratio(np.abs(plus_di - minus_di), plus_di + minus_di, 0.0)
    return {'main': smma(dx, period), 'plusDI': plus_di, 'minusDI': minus_di}


def stochastic(
    bars: BarArray,
    k_period: int = 14,
    d_period: int = 3,
    slowing: int = 3,
    method: str = 'SMA',
) -> Dict[str, np.ndarray]:
    """
    Stochastic oscillator.

    %K = 100 * sum(close - LL, slowing) / sum(HH - LL, slowing); a window
    with zero range reads 100. %D is a moving average of %K.
    """
    high = pd.Series(np.asarray(bars.high, dtype=float))
    low = pd.Series(np.asarray(bars.low, dtype=float))
    close = pd.Series(np.asarray(bars.close, dtype=float))
    highest = high.rolling(window=k_period, min_periods=k_period).max()
    lowest = low.rolling(window=k_period, min_periods=k_period).min()
    num = (close - lowest).rolling(window=slowing, min_periods=slowing).sum().to_numpy()
    den = (highest - lowest).rolling(window=slowing, min_periods=slowing).sum().to_numpy()
    main = 100.0 * _safe_ratio(num, den, 1.0)
    return {'main': main, 'signal': moving_average(main, d_period, method)}


def cci(values, period: int = 14) -> np.ndarray:
    """Commodity Channel Index with the 0.015 constant; 0 on a flat window."""
    values = np.asarray(values, dtype=float)
    mean = sma(values, period)
    mean_dev = (
        pd.Series(values)
        .rolling(window=period, min_periods=period)
        .apply(lambda w: np.mean(np.abs(w - w.mean())), raw=True)
        .to_numpy()
    )
    return _safe_ratio(values - mean, 0.015 * mean_dev, 0.0)


def obv(bars: BarArray, signal_period: int = 20) -> Dict[str, np.ndarray]:
    """On-Balance Volume (starting at 0) with an SMA signal line."""
    close = np.asarray(bars.close, dtype=float)
    volume = np.asarray(bars.volume, dtype=float)
    value = np.zeros(len(close))
    if len(close) > 1:
        direction = np.sign(np.diff(close))
        value[1:] = np.cumsum(direction * volume[1:])
    return {'value': value, 'signal': sma(value, signal_period)}


def ichimoku(
    bars: BarArray,
    tenkan_period: int = 9,
    kijun_period: int = 26,
    senkou_b_period: int = 52,
) -> Dict[str, np.ndarray]:
    """Ichimoku lines evaluated at the current bar (no forward shift)."""
    high = pd.Series(np.asarray(bars.high, dtype=float))
    low = pd.Series(np.asarray(bars.low, dtype=float))

    def midpoint(period: int) -> np.ndarray:
        hh = high.rolling(window=period, min_periods=period).max()
        ll = low.rolling(window=period, min_periods=period).min()
        return ((hh + ll) / 2.0).to_numpy()

    tenkan = midpoint(tenkan_period)
    kijun = midpoint(kijun_period)
    return {
        'tenkan': tenkan,
        'kijun': kijun,
        'spanA': (tenkan + kijun) / 2.0,
        'spanB': midpoint(senkou_b_period),
    }


def bb_squeeze(
    bars: BarArray,
    bb_period: int = 20,
    bb_deviation: float = 2.0,
    kc_period: int = 20,
    kc_multiplier: float = 1.5,
) -> Dict[str, np.ndarray]:
    """
    Volatility squeeze: 1 while the Bollinger Bands sit inside the Keltner
    Channel (EMA +/- multiplier * ATR), else 0.
    """
    close = np.asarray(bars.close, dtype=float)
    bb = bollinger_bands(close, bb_period, bb_deviation)
    center = ema(close, kc_period)
    range_ = atr(bars, kc_period)
    kc_upper = center + kc_multiplier * range_
    kc_lower = center - kc_multiplier * range_

    squeeze = np.full(len(close), np.nan)
    valid = ~np.isnan(bb['upper']) & ~np.isnan(kc_upper)
    inside = (bb['upper'] < kc_upper) & (bb['lower'] > kc_lower)
    squeeze[valid] = np.where(inside[valid], 1.0, 0.0)
    return {'squeeze': squeeze, 'middle': bb['middle']}


def vwap(bars: BarArray) -> np.ndarray:
    """Typical-price VWAP, reset at each UTC day; typical price when no volume has traded."""
    typical = (bars.high + bars.low + bars.close) / 3.0
    volume = np.asarray(bars.volume, dtype=float)
    day = np.asarray(bars.time, dtype=np.int64) // 86_400_000
    frame = pd.DataFrame({'pv': typical * volume, 'v': volume, 'day': day})
    cum_pv = frame.groupby('day')['pv'].cumsum().to_numpy()
    cum_v = frame.groupby('day')['v'].cumsum().to_numpy()
    out = np.array(typical, dtype=float)
    traded = cum_v > 0
    out[traded] = cum_pv[traded] / cum_v[traded]
    return out
