"""Strategy graph interpreter.

Compiles a ``StrategyGraph`` against one bar array: every indicator buffer,
composite series, range boundary and the ATR used for risk are computed once
up front, after which ``evaluate(i)`` only looks values up.

Signal contributors are indicator nodes (unless a condition node reads
them), condition nodes, candlestick-pattern nodes, range-breakout nodes and
entry-strategy composites. Their buy and sell votes combine by the graph's
``conditionMode``; an opposite signal closes open positions.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set, Tuple
import logging
import math
import numpy as np

from engine.bars import BarArray
from engine.broker import BUY, SELL, RiskRequest
from engine.market import InstrumentSpec
from engine.trade_management import ManagementRules
from indicators import library
from indicators.registry import compute_indicator, entry_warmup
from strategies.entry_strategies import EntryStrategy, build_entry_strategy
from strategies.filters import FilterContext, FilterManager
from strategies.graph import (
    ENTRY_STRATEGY_TYPES,
    INDICATOR_NODE_TYPES,
    TIMING_TYPES,
    StrategyGraph,
)
from strategies.patterns import detect_patterns
from strategies.price_action import RangeBreakoutSignal
from strategies.signals import (
    MIRRORED_OPERATORS,
    EntrySignal,
    NO_SIGNAL,
    combine,
    crossover,
    eq,
    evaluate_condition,
    ge,
    gt,
    is_valid,
    le,
    level_recross,
    lt,
    macd_signal,
)

logger = logging.getLogger(__name__)

WARMUP_SAFETY_BUFFER = 10
MIN_WARMUP_BARS = 5
DEFAULT_ATR_PERIOD = 14

NO_INDICATORS_WARNING = "No indicator nodes found - strategy has no entry conditions"
CORRELATION_FILTER_WARNING = (
    "Correlation filter is enabled but cannot be applied in single-symbol backtest. "
    "Correlation filtering between pairs requires multi-symbol data and is only applied in live trading."
)

# Oscillator zone defaults by indicator type
_LEVEL_DEFAULTS = {
    'rsi': (70.0, 30.0),
    'stochastic': (80.0, 20.0),
    'cci': (100.0, -100.0),
}


@dataclass(frozen=True)
class SignalSet:
    """Everything the strategy asks of the engine at one bar.

    Attributes:
        should_filter_trading: Timing nodes block new entries on this bar
        long_entry / short_entry: Open a position in that direction
        close_long / close_short: Close open positions of that direction
        long_risk / short_risk: Stop, target and sizing for a new position
        management: Trade-management rules for open positions
    """
    should_filter_trading: bool = False
    long_entry: bool = False
    short_entry: bool = False
    close_long: bool = False
    close_short: bool = False
    long_risk: RiskRequest = field(default_factory=RiskRequest)
    short_risk: RiskRequest = field(default_factory=RiskRequest)
    management: ManagementRules = field(default_factory=ManagementRules)

    def risk(self, direction: str) -> RiskRequest:
        return self.long_risk if direction == BUY else self.short_risk

    @property
    def requested_stop_loss(self) -> Dict[str, tuple]:
        """(mode, value) of the stop requested per direction."""
        return {
            BUY: (self.long_risk.sl_mode, self.long_risk.sl_value),
            SELL: (self.short_risk.sl_mode, self.short_risk.sl_value),
        }

    @property
    def requested_take_profit(self) -> Dict[str, tuple]:
        """(mode, value) of the target requested per direction."""
        return {
            BUY: (self.long_risk.tp_mode, self.long_risk.tp_value),
            SELL: (self.short_risk.tp_mode, self.short_risk.tp_value),
        }

    @property
    def sizing(self) -> Dict[str, str]:
        return {BUY: self.long_risk.sizing, SELL: self.short_risk.sizing}


def indicator_signal(node, buffers: Dict[str, np.ndarray], bars: BarArray, curr: int, prev: int) -> EntrySignal:
    """
    Default buy/sell contribution of an indicator node.

    Any "not valid" value among the inputs yields no signal.

    Args:
        node: Indicator node
        buffers: Computed buffers of the node
        bars: Bar arrays
        curr: Index of the bar being evaluated
        prev: Index of the bar before it
    """
    data = node.data
    node_type = node.type
    role = data.filter_role
    close = bars.close[curr]

    if node_type == 'moving-average':
        ma = buffers['value']
        if role == 'htf-trend':
            return EntrySignal(buy=gt(close, ma[curr]), sell=lt(close, ma[curr]))
        return crossover(close, bars.close[prev], ma[curr], ma[prev])

    if node_type in _LEVEL_DEFAULTS:
        values = buffers['value'] if node_type != 'stochastic' else buffers['main']
        default_ob, default_os = _LEVEL_DEFAULTS[node_type]
        overbought = data.overbought_level if data.overbought_level is not None else default_ob
        oversold = data.oversold_level if data.oversold_level is not None else default_os
        if node_type == 'rsi' and role == 'rsi-confirm':
            return EntrySignal(buy=lt(values[curr], overbought), sell=gt(values[curr], oversold))
        return level_recross(values[curr], values[prev], overbought, oversold)

    if node_type == 'macd':
        main, signal = buffers['main'], buffers['signal']
        return macd_signal(main[curr], main[prev], signal[curr], signal[prev], 'SIGNAL_CROSS')

    if node_type == 'bollinger-bands':
        return EntrySignal(buy=le(close, buffers['lower'][curr]), sell=ge(close, buffers['upper'][curr]))

    if node_type == 'adx':
        trend_level = data.trend_level if data.trend_level is not None else 25.0
        trending = gt(buffers['main'][curr], trend_level)
        if role == 'adx-trend-strength':
            return EntrySignal(buy=trending, sell=trending)
        if not trending:
            return NO_SIGNAL
        plus, minus = buffers['plusDI'], buffers['minusDI']
        return crossover(plus[curr], plus[prev], minus[curr], minus[prev])

    if node_type == 'ichimoku':
        tenkan, kijun = buffers['tenkan'], buffers['kijun']
        return crossover(tenkan[curr], tenkan[prev], kijun[curr], kijun[prev])

    if node_type == 'obv':
        value, signal = buffers['value'], buffers['signal']
        return crossover(value[curr], value[prev], signal[curr], signal[prev])

    if node_type == 'bb-squeeze':
        squeeze, middle = buffers['squeeze'], buffers['middle']
        if not (eq(squeeze[prev], 1.0) and eq(squeeze[curr], 0.0)):
            return NO_SIGNAL
        return EntrySignal(buy=gt(close, middle[curr]), sell=lt(close, middle[curr]))

    if node_type == 'vwap':
        value = buffers['value']
        return EntrySignal(buy=gt(close, value[curr]), sell=lt(close, value[curr]))

    # ATR measures volatility only
    return NO_SIGNAL


class StrategyInterpreter:
    """Evaluates a strategy graph bar by bar.

    The graph is only read; all per-run state lives in the precomputed
    arrays of this object.

    Args:
        graph: Strategy document
        bars: Bar arrays of the run
        spec: Instrument specification (point size, spread)

    Example:
        interpreter = StrategyInterpreter(graph, bars, spec)
        for i in range(len(bars)):
            signals = interpreter.evaluate(i)
    """

    def __init__(self, graph: StrategyGraph, bars: BarArray, spec: Optional[InstrumentSpec] = None):
        self.graph = graph
        self.bars = bars
        self.spec = spec or InstrumentSpec()
        self.condition_mode = graph.settings.condition_mode
        self.warnings: List[str] = []

        self._check_settings()
        for node in graph.unsupported_nodes():
            self._warn(f'"{node.label}" is not supported in backtesting and will be ignored')

        self.indicators = graph.nodes_of_type(*INDICATOR_NODE_TYPES)
        self.buffers: Dict[str, Dict[str, np.ndarray]] = {}
        warmups = []
        for node in self.indicators:
            params = node.data.indicator_params()
            self.buffers[node.id] = compute_indicator(bars, node.type, params)
            w = entry_warmup(node.type, params)
            warmups.append(w)
            if len(bars) <= w:
                self._warn(
                    f'"{node.label}" needs {w} bars of warmup but only {len(bars)} bars were provided; '
                    f'it will not produce signals'
                )

        self.conditions = []
        self._condition_inputs: Set[str] = set()
        for node in graph.nodes_of_type('condition'):
            source = next((e.source for e in graph.incoming(node.id) if e.source in self.buffers), None)
            if source is None:
                self._warn(f'"{node.label}" is not connected to an indicator and will be ignored')
                continue
            self.conditions.append((node, self._condition_buffer(self.buffers[source])))
            self._condition_inputs.add(source)

        self.patterns = [n for n in graph.nodes_of_type('candlestick-pattern') if n.data.patterns]
        self.ranges: List[RangeBreakoutSignal] = []
        for node in graph.nodes_of_type('range-breakout'):
            signal = RangeBreakoutSignal(node.data, bars, self.spec.point, self.spec.half_spread)
            self.ranges.append(signal)
            warmups.append(signal.warmup)

        self.composites: List[EntryStrategy] = []
        for node in graph.nodes_of_type(*ENTRY_STRATEGY_TYPES):
            composite = build_entry_strategy(node, bars, self.spec)
            self.composites.append(composite)
            warmups.append(composite.warmup)
            for message in composite.warnings:
                self._warn(message)

        if not (self.indicators or self.patterns or self.ranges or self.composites):
            self._warn(NO_INDICATORS_WARNING)

        self.warmup = self._warmup(warmups)
        if self.warmup >= len(bars):
            self._warn(
                f"Strategy warmup of {self.warmup} bars is not shorter than the {len(bars)} bars "
                f"provided; no entries will be evaluated"
            )

        self.timing = FilterManager.from_nodes(graph.nodes_of_type(*TIMING_TYPES), self.condition_mode)
        self._timestamps = bars.timestamps()

        atr_node = graph.first_of_type('atr')
        atr_period = DEFAULT_ATR_PERIOD
        if atr_node is not None and atr_node.data.period:
            atr_period = atr_node.data.period
        self.atr = library.atr(bars, atr_period)

        self.management = ManagementRules(
            breakeven=self._first_data('breakeven-stop'),
            trailing=self._first_data('trailing-stop'),
            partial_close=self._first_data('partial-close'),
            lock_profit=self._first_data('lock-profit'),
            time_exit=self._first_data('time-exit'),
        )
        logger.debug(
            f"Compiled strategy: {len(self.indicators)} indicators, {len(self.conditions)} conditions, "
            f"{len(self.composites)} entry strategies, warmup {self.warmup} bars"
        )

    # ------------------------------------------------------------------
    # Compilation helpers
    # ------------------------------------------------------------------

    def _warn(self, message: str) -> None:
        logger.warning(message)
        self.warnings.append(message)

    def _check_settings(self) -> None:
        extra = self.graph.settings.model_extra or {}
        multi_pair = extra.get('multiPair')
        if isinstance(multi_pair, dict) and multi_pair.get('enabled') and multi_pair.get('correlationFilter'):
            self._warn(CORRELATION_FILTER_WARNING)

    def _first_data(self, node_type: str):
        node = self.graph.first_of_type(node_type)
        return node.data if node is not None else None

    @staticmethod
    def _condition_buffer(buffers: Dict[str, np.ndarray]) -> np.ndarray:
        if 'value' in buffers:
            return buffers['value']
        if 'main' in buffers:
            return buffers['main']
        return next(iter(buffers.values()))

    @staticmethod
    def _warmup(warmups: List[int]) -> int:
        """Sum of the warmups (the largest when there is only one) plus a safety buffer."""
        if not warmups:
            total = 0
        elif len(warmups) > 1:
            total = sum(warmups)
        else:
            total = warmups[0]
        return max(total + WARMUP_SAFETY_BUFFER, MIN_WARMUP_BARS)

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------

    def is_filtered(self, i: int) -> bool:
        """True when the timing nodes block new entries on bar ``i``."""
        context = FilterContext(timestamp=self._timestamps[i], bar_index=i, spread_points=self.spec.spread_points)
        return not self.timing.apply_filters(context).passed

    def entry_signal(self, i: int) -> EntrySignal:
        """
        Combined buy/sell signal of every contributor at bar ``i``.

        Timing filters are not applied here. Before the warmup (and on the
        first two bars) there is never a signal.
        """
        if i < self.warmup or i < 2:
            return NO_SIGNAL

        votes: List[EntrySignal] = []
        for node in self.indicators:
            if node.id in self._condition_inputs or node.type == 'atr':
                continue
            offset = 1 if node.data.signal_mode == 'candle_close' else 0
            curr = i - offset
            votes.append(indicator_signal(node, self.buffers[node.id], self.bars, curr, curr - 1))

        for node, buffer in self.conditions:
            operator = node.data.condition_type
            curr, prev = buffer[i], buffer[i - 1]
            votes.append(EntrySignal(
                buy=evaluate_condition(operator, curr, node.data.threshold, prev),
                sell=evaluate_condition(MIRRORED_OPERATORS[operator], curr, node.data.threshold, prev),
            ))

        for node in self.patterns:
            votes.append(detect_patterns(self.bars, i, node.data.patterns, node.data.min_body_size, self.spec.point))

        for signal in self.ranges:
            votes.append(signal.evaluate(i))

        for composite in self.composites:
            votes.append(composite.evaluate(i))

        if not votes:
            return NO_SIGNAL
        return EntrySignal(
            buy=combine([v.buy for v in votes], self.condition_mode),
            sell=combine([v.sell for v in votes], self.condition_mode),
        )

    def risk_request(self, direction: str, i: int) -> RiskRequest:
        """
        Stop/target/sizing for a position opened on bar ``i``.

        The first entry-strategy composite that signals ``direction`` on this
        bar supplies the request; otherwise the stop-loss, take-profit and
        place-buy / place-sell nodes do.
        """
        for composite in self.composites:
            signal = composite.evaluate(i)
            if (signal.buy if direction == BUY else signal.sell):
                return composite.risk_request(direction, i)
        return self._node_risk(direction, i)

    def _node_risk(self, direction: str, i: int) -> RiskRequest:
        point = self.spec.point
        atr_value = self.atr[i] if i < len(self.atr) else math.nan

        sl_mode, sl_value = 'NONE', 0.0
        sl = self._first_data('stop-loss')
        if sl is not None:
            if sl.method == 'FIXED_PIPS':
                sl_mode, sl_value = 'DISTANCE', sl.fixed_pips * point
            elif sl.method == 'ATR_BASED' and is_valid(atr_value):
                sl_mode, sl_value = 'DISTANCE', atr_value * sl.atr_multiplier
            elif sl.method == 'PERCENT':
                sl_mode, sl_value = 'PERCENT', sl.sl_percent
            else:
                sl_mode = 'DEFAULT'

        tp_mode, tp_value = 'NONE', 0.0
        tp = self._first_data('take-profit')
        if tp is not None:
            if tp.method == 'FIXED_PIPS':
                tp_mode, tp_value = 'DISTANCE', tp.fixed_pips * point
            elif tp.method == 'RISK_REWARD':
                tp_mode, tp_value = 'RISK_REWARD', tp.risk_reward_ratio
            elif tp.method == 'ATR_BASED' and is_valid(atr_value):
                tp_mode, tp_value = 'DISTANCE', atr_value * tp.atr_multiplier
            else:
                tp_mode = 'DEFAULT'

        place = self._first_data('place-buy' if direction == BUY else 'place-sell')
        if place is None:
            return RiskRequest(sl_mode=sl_mode, sl_value=sl_value, tp_mode=tp_mode, tp_value=tp_value)
        return RiskRequest(
            sl_mode=sl_mode,
            sl_value=sl_value,
            tp_mode=tp_mode,
            tp_value=tp_value,
            sizing=place.method,
            fixed_lot=place.fixed_lot,
            risk_percent=place.risk_percent,
            min_lot=place.min_lot,
            max_lot=place.max_lot,
        )

    def close_signals(self, i: int, entry: Optional[EntrySignal] = None) -> Tuple[bool, bool]:
        """(close_long, close_short): the opposite entry signal plus closes requested by composites."""
        if entry is None:
            entry = self.entry_signal(i)
        close_long, close_short = entry.sell, entry.buy
        for composite in self.composites:
            long_close, short_close = composite.close_signals(i)
            close_long = close_long or long_close
            close_short = close_short or short_close
        return close_long, close_short

    def evaluate(self, i: int) -> SignalSet:
        """Signal set of bar ``i``."""
        filtered = self.is_filtered(i)
        entry = self.entry_signal(i)
        close_long, close_short = self.close_signals(i, entry)
        long_entry = entry.buy and not filtered
        short_entry = entry.sell and not filtered
        return SignalSet(
            should_filter_trading=filtered,
            long_entry=long_entry,
            short_entry=short_entry,
            close_long=close_long,
            close_short=close_short,
            long_risk=self.risk_request(BUY, i) if long_entry else self._node_risk(BUY, i),
            short_risk=self.risk_request(SELL, i) if short_entry else self._node_risk(SELL, i),
            management=self.management,
        )
