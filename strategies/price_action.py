"""Price ranges and range-breakout signals.

Ranges are computed once per run as arrays aligned with the bars. The range
visible at bar ``i`` never includes bar ``i`` itself: a rolling range covers
the ``lookback`` bars before it, and a time-window range is the last window
that had already finished when bar ``i`` opened.
"""

from dataclasses import dataclass
from typing import Tuple
import numpy as np
import pandas as pd

from engine.bars import BarArray
from strategies.signals import EntrySignal, NO_SIGNAL, gt, le, lt, ge

MS_PER_MINUTE = 60_000
MS_PER_DAY = 86_400_000

# (start minute, end minute) of the predefined range sessions, UTC
RANGE_SESSIONS = {
    'ASIAN': (0, 8 * 60),
    'LONDON': (8 * 60, 16 * 60),
    'NEW_YORK': (13 * 60, 21 * 60),
}


@dataclass(frozen=True)
class PriceRange:
    """Range boundaries aligned with the bars.

    Attributes:
        high: Range high per bar (NaN where no range exists yet)
        low: Range low per bar
        window: Identifier of the range window per bar (-1 where none); bars
            sharing an identifier see the same range
    """
    high: np.ndarray
    low: np.ndarray
    window: np.ndarray

    def size_points(self, point: float) -> np.ndarray:
        return (self.high - self.low) / point

    def is_valid(self, i: int, point: float, min_points: float, max_points: float) -> bool:
        """Range exists at ``i`` and its size lies inside [min, max] (max 0 = no cap)."""
        if np.isnan(self.high[i]) or np.isnan(self.low[i]):
            return False
        size = (self.high[i] - self.low[i]) / point
        if size < min_points:
            return False
        return max_points <= 0 or size <= max_points


def previous_candles_range(bars: BarArray, lookback: int) -> PriceRange:
    """Highest high / lowest low of the ``lookback`` bars before each bar."""
    high = pd.Series(bars.high).rolling(lookback, min_periods=lookback).max().shift(1).to_numpy()
    low = pd.Series(bars.low).rolling(lookback, min_periods=lookback).min().shift(1).to_numpy()
    window = np.where(np.isnan(high), -1, np.arange(len(bars)))
    return PriceRange(high=high, low=low, window=window)


def time_window_range(bars: BarArray, start_minute: int, end_minute: int) -> PriceRange:
    """
    High/low of the most recently completed daily time window.

    A window whose end is not after its start spans midnight and belongs to
    the day it started on. Equal start and end cover the whole day.

    Args:
        bars: Bar arrays
        start_minute: Window start, minutes after 00:00 UTC (inclusive)
        end_minute: Window end, minutes after 00:00 UTC (exclusive)

    Returns:
        PriceRange whose ``window`` is the UTC day number the window started on
    """
    n = len(bars)
    high = np.full(n, np.nan)
    low = np.full(n, np.nan)
    window = np.full(n, -1, dtype=np.int64)

    day = bars.time // MS_PER_DAY
    tod = (bars.time // MS_PER_MINUTE) % 1440
    if start_minute < end_minute:
        inside = (tod >= start_minute) & (tod < end_minute)
        window_day = day
    else:
        inside = (tod >= start_minute) | (tod < end_minute)
        window_day = np.where(tod >= start_minute, day, day - 1)

    active_id = None
    active_high = active_low = np.nan
    done_id, done_high, done_low = -1, np.nan, np.nan
    for i in range(n):
        if inside[i]:
            wid = int(window_day[i])
            if wid != active_id:
                if active_id is not None:
                    done_id, done_high, done_low = active_id, active_high, active_low
                active_id, active_high, active_low = wid, bars.high[i], bars.low[i]
            else:
                active_high = max(active_high, bars.high[i])
                active_low = min(active_low, bars.low[i])
        elif active_id is not None:
            done_id, done_high, done_low = active_id, active_high, active_low
            active_id = None
        high[i], low[i], window[i] = done_high, done_low, done_id
    return PriceRange(high=high, low=low, window=window)


def range_window_minutes(range_type: str, session: str, start: Tuple[int, int], end: Tuple[int, int]) -> Tuple[int, int]:
    """Start/end minute of a SESSION or TIME_WINDOW range."""
    if range_type == 'SESSION' and session in RANGE_SESSIONS:
        return RANGE_SESSIONS[session]
    return start[0] * 60 + start[1], end[0] * 60 + end[1]


class RangeBreakoutSignal:
    """Breakout of a price range (the ``range-breakout`` price-action node).

    Entry modes:
        IMMEDIATE: the ask / bid of the bar close beyond the buffered range
        ON_CLOSE: bar close beyond the buffered range
        AFTER_RETEST: previous close broke out, this bar came back to the
            buffered boundary and closed beyond the raw boundary again
    """

    def __init__(self, data, bars: BarArray, point: float, half_spread: float = 0.0):
        self.data = data
        self.bars = bars
        self.point = point
        self.half_spread = half_spread
        if data.range_type == 'PREVIOUS_CANDLES':
            self.range = previous_candles_range(bars, data.lookback_candles)
        else:
            start, end = range_window_minutes(
                data.range_type,
                data.range_session,
                (data.session_start_hour, data.session_start_minute),
                (data.session_end_hour, data.session_end_minute),
            )
            self.range = time_window_range(bars, start, end)

    @property
    def warmup(self) -> int:
        return self.data.lookback_candles if self.data.range_type == 'PREVIOUS_CANDLES' else 0

    def evaluate(self, i: int) -> EntrySignal:
        data = self.data
        if i < 1 or not self.range.is_valid(i, self.point, data.min_range_pips, data.max_range_pips):
            return NO_SIGNAL

        buffer = data.buffer_pips * self.point
        top = self.range.high[i] + buffer
        bottom = self.range.low[i] - buffer
        close = self.bars.close[i]

        if data.entry_mode == 'IMMEDIATE':
            buy = gt(close + self.half_spread, top)
            sell = lt(close - self.half_spread, bottom)
        elif data.entry_mode == 'AFTER_RETEST':
            prev_close = self.bars.close[i - 1]
            buy = gt(prev_close, top) and le(self.bars.low[i], top) and gt(close, self.range.high[i])
            sell = lt(prev_close, bottom) and ge(self.bars.high[i], bottom) and lt(close, self.range.low[i])
        else:
            buy = gt(close, top)
            sell = lt(close, bottom)

        if data.breakout_direction == 'BUY_ON_HIGH':
            sell = False
        elif data.breakout_direction == 'SELL_ON_LOW':
            buy = False
        return EntrySignal(buy=buy, sell=sell)
