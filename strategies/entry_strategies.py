"""Entry-strategy composites.

Each composite node bundles a base entry signal with optional toggles
(direction, session window, higher-timeframe EMA trend, oscillator
confirmation, ...). Every enabled toggle is an extra condition AND-ed with
the base signal. A composite also carries its own stop/target/sizing request.

All series are precomputed when the composite is built; ``evaluate(i)`` only
reads them.
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Tuple
import logging
import math
import numpy as np
import pandas as pd

from engine.bars import BarArray
from engine.broker import BUY, DEFAULT_STOP_POINTS, RiskRequest
from engine.market import InstrumentSpec
from engine.resampler import TIMEFRAME_MINUTES, higher_timeframe_values, infer_base_minutes
from indicators import library
from indicators.applied_price import resolve_applied_price
from indicators.moving_average import ema, sma
from strategies.filters.calendar.trading_session_filter import TradingSession
from strategies.price_action import previous_candles_range, time_window_range
from strategies.signals import (
    EntrySignal,
    NO_SIGNAL,
    crossover,
    ge,
    gt,
    is_valid,
    le,
    level_recross,
    lt,
    macd_signal,
)

logger = logging.getLogger(__name__)


def first_valid_index(*arrays: np.ndarray) -> int:
    """Index from which every array holds valid values (len when never)."""
    start = 0
    for arr in arrays:
        valid = np.flatnonzero(~np.isnan(arr))
        if len(valid) == 0:
            return len(arr)
        start = max(start, int(valid[0]))
    return start


class EntryStrategy(ABC):
    """Base class of the entry-strategy composites.

    Args:
        node: Entry-strategy graph node
        bars: Bar arrays of the run
        spec: Instrument specification (point size for pip parameters)
    """

    def __init__(self, node, bars: BarArray, spec: InstrumentSpec):
        self.node = node
        self.data = node.data
        self.bars = bars
        self.spec = spec
        self.warnings: List[str] = []
        self._atr_cache: Dict[int, np.ndarray] = {}
        self._session = TradingSession.named(self.data.session) if self.data.session_filter else None
        self._timestamps = bars.timestamps() if self._session is not None else None
        self.warmup = 0

    @property
    def label(self) -> str:
        return self.node.label

    def atr(self, period: int) -> np.ndarray:
        if period not in self._atr_cache:
            self._atr_cache[period] = library.atr(self.bars, period)
        return self._atr_cache[period]

    @abstractmethod
    def base_signal(self, i: int) -> EntrySignal:
        """Unfiltered entry signal at bar ``i``."""

    def gates(self, i: int) -> List[EntrySignal]:
        """Conditions of the enabled toggles (all must allow the direction)."""
        return []

    def evaluate(self, i: int) -> EntrySignal:
        """Base signal AND-ed with every enabled toggle."""
        if i < self.warmup:
            return NO_SIGNAL
        signal = self.base_signal(i)
        if not (signal.buy or signal.sell):
            return NO_SIGNAL

        buy, sell = signal.buy, signal.sell
        if self.data.direction == 'BUY':
            sell = False
        elif self.data.direction == 'SELL':
            buy = False
        if self._session is not None and not self._session.is_active(self._timestamps[i]):
            return NO_SIGNAL
        for gate in self.gates(i):
            buy = buy and gate.buy
            sell = sell and gate.sell
        return EntrySignal(buy=buy, sell=sell)

    def close_signals(self, i: int) -> Tuple[bool, bool]:
        """(close_long, close_short) requested by the composite itself."""
        return False, False

    def range_stop(self, direction: str, i: int) -> float:
        """Opposite range boundary for RANGE_OPPOSITE stops (NaN when not a range strategy)."""
        return math.nan

    def risk_request(self, direction: str, i: int) -> RiskRequest:
        """
        Stop/target/sizing request of a trade opened on bar ``i``.

        The stop follows ``slMethod``; an ATR or range stop that is not
        available on this bar falls back to the default stop distance. The
        target is ``tpRMultiple`` times the stop distance (none when 0).
        """
        data = self.data
        point = self.spec.point
        if data.sl_method == 'PIPS':
            sl_mode, sl_value = 'DISTANCE', data.sl_fixed_pips * point
        elif data.sl_method == 'PERCENT':
            sl_mode, sl_value = 'PERCENT', data.sl_percent
        elif data.sl_method == 'RANGE_OPPOSITE':
            level = self.range_stop(direction, i)
            if math.isnan(level):
                sl_mode, sl_value = 'DISTANCE', DEFAULT_STOP_POINTS * point
            else:
                sl_mode, sl_value = 'LEVEL', level
        else:
            atr_value = self.atr(data.sl_atr_period)[i]
            if math.isnan(atr_value):
                sl_mode, sl_value = 'DISTANCE', DEFAULT_STOP_POINTS * point
            else:
                sl_mode, sl_value = 'DISTANCE', atr_value * data.sl_atr_multiplier

        if data.tp_r_multiple > 0:
            tp_mode, tp_value = 'RISK_REWARD', data.tp_r_multiple
        else:
            tp_mode, tp_value = 'NONE', 0.0
        return RiskRequest(
            sl_mode=sl_mode,
            sl_value=sl_value,
            tp_mode=tp_mode,
            tp_value=tp_value,
            sizing='RISK_PERCENT',
            risk_percent=data.risk_percent,
        )

    def _htf_ema(self, timeframe: str, period: int) -> np.ndarray:
        base_minutes = infer_base_minutes(self.bars)
        if base_minutes and TIMEFRAME_MINUTES[timeframe] <= base_minutes:
            message = (
                f'"{self.label}": higher-timeframe filter {timeframe} is not above the data '
                f'timeframe and will use completed {timeframe} periods only'
            )
            logger.warning(message)
            self.warnings.append(message)
        return higher_timeframe_values(
            self.bars, timeframe, lambda df: ema(df['close'].to_numpy(dtype=float), period)
        )


class EMACrossoverEntry(EntryStrategy):
    """Fast EMA crossing the slow EMA.

    Toggles: minimum EMA separation (points), RSI confirmation (buy below
    ``rsiLongMax``, sell above ``rsiShortMin``), higher-timeframe EMA trend.
    """

    def __init__(self, node, bars: BarArray, spec: InstrumentSpec):
        super().__init__(node, bars, spec)
        data = self.data
        price = resolve_applied_price(bars, data.applied_price)
        self.fast = ema(price, data.fast_ema)
        self.slow = ema(price, data.slow_ema)
        series = [self.fast, self.slow]
        self.rsi = None
        if data.rsi_confirmation:
            self.rsi = library.rsi(bars.close, data.rsi_period)
            series.append(self.rsi)
            if data.rsi_long_max <= data.rsi_short_min:
                self.warnings.append(
                    f'"{self.label}": RSI confirmation bounds overlap '
                    f'(long max {data.rsi_long_max:g} <= short min {data.rsi_short_min:g})'
                )
        self.htf = self._htf_ema(data.htf_timeframe, data.htf_ema) if data.htf_trend_filter else None
        self.warmup = first_valid_index(*series) + 1

    def base_signal(self, i: int) -> EntrySignal:
        return crossover(self.fast[i], self.fast[i - 1], self.slow[i], self.slow[i - 1])

    def gates(self, i: int) -> List[EntrySignal]:
        data = self.data
        gates = []
        if data.min_ema_separation > 0:
            separated = ge(abs(self.fast[i] - self.slow[i]) / self.spec.point, data.min_ema_separation)
            gates.append(EntrySignal(buy=separated, sell=separated))
        if self.rsi is not None:
            gates.append(EntrySignal(buy=lt(self.rsi[i], data.rsi_long_max), sell=gt(self.rsi[i], data.rsi_short_min)))
        if self.htf is not None:
            close = self.bars.close[i]
            gates.append(EntrySignal(buy=gt(close, self.htf[i]), sell=lt(close, self.htf[i])))
        return gates


class RangeBreakoutEntry(EntryStrategy):
    """Close (or intrabar price) breaking out of a price range.

    The range is either the previous ``rangePeriod`` candles or a daily UTC
    time window. With a time window only the first breakout of each window
    is traded, and with ``cancelOpposite`` a breakout in one direction also
    cancels the other. Rolling candle ranges trade fresh breakouts only.
    ``closeAtTime`` closes open positions at the configured time of day.
    """

    def __init__(self, node, bars: BarArray, spec: InstrumentSpec):
        super().__init__(node, bars, spec)
        data = self.data
        if data.range_method == 'CANDLES':
            self.range = previous_candles_range(bars, data.range_period)
        else:
            self.range = time_window_range(
                bars,
                data.custom_start_hour * 60 + data.custom_start_minute,
                data.custom_end_hour * 60 + data.custom_end_minute,
            )
        if 0 < data.max_range_pips < data.min_range_pips:
            self.warnings.append(
                f'"{self.label}": minimum range {data.min_range_pips:g} exceeds maximum '
                f'{data.max_range_pips:g}; the breakout can never trigger'
            )
        self.volume_average = None
        if data.volume_confirmation:
            self.volume_average = pd.Series(sma(bars.volume, data.volume_confirmation_period)).shift(1).to_numpy()
        self._buy, self._sell = self._breakouts()
        self._close_at = self._close_at_bars() if data.close_at_time else None
        self.warmup = first_valid_index(self.range.high) if data.range_method == 'CANDLES' else 0

    def _raw_breakout(self, i: int) -> Tuple[bool, bool]:
        data = self.data
        point = self.spec.point
        if not self.range.is_valid(i, point, data.min_range_pips, data.max_range_pips):
            return False, False
        buffer = data.buffer_pips * point
        top = self.range.high[i] + buffer
        bottom = self.range.low[i] - buffer
        if data.breakout_entry == 'CURRENT_PRICE':
            return gt(self.bars.high[i], top), lt(self.bars.low[i], bottom)
        close = self.bars.close[i]
        return gt(close, top), lt(close, bottom)

    def _breakouts(self) -> Tuple[np.ndarray, np.ndarray]:
        n = len(self.bars)
        buy = np.zeros(n, dtype=bool)
        sell = np.zeros(n, dtype=bool)
        per_window = self.data.range_method != 'CANDLES'
        taken: Dict[int, set] = {}
        prev = (False, False)
        for i in range(n):
            raw = self._raw_breakout(i)
            if per_window:
                window = int(self.range.window[i])
                used = taken.setdefault(window, set())
                for side, fired, arr in (('buy', raw[0], buy), ('sell', raw[1], sell)):
                    if not fired or side in used:
                        continue
                    if self.data.cancel_opposite and used:
                        continue
                    arr[i] = True
                    used.add(side)
            else:
                buy[i] = raw[0] and not prev[0]
                sell[i] = raw[1] and not prev[1]
            prev = raw
        return buy, sell

    def _close_at_bars(self) -> np.ndarray:
        close_minute = self.data.close_at_hour * 60 + self.data.close_at_minute
        tod = (self.bars.time // 60_000) % 1440
        day = self.bars.time // 86_400_000
        reached = tod >= close_minute
        first = np.zeros(len(self.bars), dtype=bool)
        if len(first):
            first[0] = reached[0]
            first[1:] = reached[1:] & (~reached[:-1] | (day[1:] != day[:-1]))
        return first

    def base_signal(self, i: int) -> EntrySignal:
        return EntrySignal(buy=bool(self._buy[i]), sell=bool(self._sell[i]))

    def gates(self, i: int) -> List[EntrySignal]:
        if self.volume_average is None:
            return []
        confirmed = gt(self.bars.volume[i], self.volume_average[i])
        return [EntrySignal(buy=confirmed, sell=confirmed)]

    def close_signals(self, i: int) -> Tuple[bool, bool]:
        if self._close_at is None or not self._close_at[i]:
            return False, False
        return True, True

    def range_stop(self, direction: str, i: int) -> float:
        return self.range.low[i] if direction == BUY else self.range.high[i]


class RSIReversalEntry(EntryStrategy):
    """RSI leaving the oversold / overbought zone, optionally with the EMA trend."""

    def __init__(self, node, bars: BarArray, spec: InstrumentSpec):
        super().__init__(node, bars, spec)
        data = self.data
        self.rsi = library.rsi(bars.close, data.rsi_period)
        series = [self.rsi]
        self.trend = None
        if data.trend_filter:
            self.trend = ema(bars.close, data.trend_ema)
            series.append(self.trend)
        self.warmup = first_valid_index(*series) + 1

    def base_signal(self, i: int) -> EntrySignal:
        data = self.data
        return level_recross(self.rsi[i], self.rsi[i - 1], data.overbought_level, data.oversold_level)

    def gates(self, i: int) -> List[EntrySignal]:
        if self.trend is None:
            return []
        close = self.bars.close[i]
        return [EntrySignal(buy=gt(close, self.trend[i]), sell=lt(close, self.trend[i]))]


class TrendPullbackEntry(EntryStrategy):
    """Pullback inside an EMA trend.

    Buy when the close is above the trend EMA and RSI climbs back through
    ``rsiPullbackLevel``; sell when the close is below it and RSI falls back
    through ``100 - rsiPullbackLevel``. ``requireEmaBuffer`` keeps the close
    within ``pullbackMaxDistance`` percent of the EMA, and the ADX filter
    requires ADX above ``adxThreshold``.
    """

    def __init__(self, node, bars: BarArray, spec: InstrumentSpec):
        super().__init__(node, bars, spec)
        data = self.data
        self.trend = ema(bars.close, data.trend_ema)
        self.rsi = library.rsi(bars.close, data.pullback_rsi_period)
        series = [self.trend, self.rsi]
        self.adx = None
        if data.use_adx_filter:
            self.adx = library.adx(bars, data.adx_period)['main']
            series.append(self.adx)
        self.warmup = first_valid_index(*series) + 1

    def base_signal(self, i: int) -> EntrySignal:
        close = self.bars.close[i]
        level = self.data.rsi_pullback_level
        curr, prev = self.rsi[i], self.rsi[i - 1]
        return EntrySignal(
            buy=gt(close, self.trend[i]) and le(prev, level) and gt(curr, level),
            sell=lt(close, self.trend[i]) and ge(prev, 100.0 - level) and lt(curr, 100.0 - level),
        )

    def gates(self, i: int) -> List[EntrySignal]:
        data = self.data
        gates = []
        if data.require_ema_buffer:
            close, trend = self.bars.close[i], self.trend[i]
            if is_valid(trend) and trend != 0:
                distance = (close - trend) / trend * 100.0
                gates.append(EntrySignal(
                    buy=distance < data.pullback_max_distance,
                    sell=-distance < data.pullback_max_distance,
                ))
            else:
                gates.append(NO_SIGNAL)
        if self.adx is not None:
            strong = gt(self.adx[i], data.adx_threshold)
            gates.append(EntrySignal(buy=strong, sell=strong))
        return gates


class MACDCrossoverEntry(EntryStrategy):
    """MACD signal-line cross, zero cross or histogram sign change, with optional HTF trend."""

    def __init__(self, node, bars: BarArray, spec: InstrumentSpec):
        super().__init__(node, bars, spec)
        data = self.data
        if data.macd_fast >= data.macd_slow:
            self.warnings.append(
                f'"{self.label}": MACD fast period {data.macd_fast} is not below slow period {data.macd_slow}'
            )
        buffers = library.macd(bars.close, data.macd_fast, data.macd_slow, data.macd_signal)
        self.main = buffers['main']
        self.signal = buffers['signal']
        self.htf = self._htf_ema(data.htf_timeframe, data.htf_ema) if data.htf_trend_filter else None
        self.warmup = first_valid_index(self.main, self.signal) + 1

    def base_signal(self, i: int) -> EntrySignal:
        return macd_signal(
            self.main[i], self.main[i - 1], self.signal[i], self.signal[i - 1], self.data.macd_signal_type
        )

    def gates(self, i: int) -> List[EntrySignal]:
        if self.htf is None:
            return []
        close = self.bars.close[i]
        return [EntrySignal(buy=gt(close, self.htf[i]), sell=lt(close, self.htf[i]))]


ENTRY_STRATEGY_CLASSES = {
    'ema-crossover-entry': EMACrossoverEntry,
    'range-breakout-entry': RangeBreakoutEntry,
    'rsi-reversal-entry': RSIReversalEntry,
    'trend-pullback-entry': TrendPullbackEntry,
    'macd-crossover-entry': MACDCrossoverEntry,
}


def build_entry_strategy(node, bars: BarArray, spec: InstrumentSpec) -> EntryStrategy:
    """
    Build the composite for an entry-strategy node.

    Raises:
        ValueError: if the node is not an entry-strategy node
    """
    cls = ENTRY_STRATEGY_CLASSES.get(node.type)
    if cls is None:
        raise ValueError(f"Not an entry-strategy node: {node.type}")
    return cls(node, bars, spec)
