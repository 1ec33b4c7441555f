"""Indicator node registry.

Maps strategy-graph indicator node types to their calculation and to the
exact warmup of every output buffer. Parameter keys are the camelCase names
used in graph documents; missing keys fall back to the defaults below.
"""

from typing import Any, Callable, Dict, Mapping
import numpy as np

from engine.bars import BarArray
from indicators import library
from indicators.applied_price import resolve_applied_price
from indicators.moving_average import moving_average

IndicatorBuffers = Dict[str, np.ndarray]

DEFAULT_PARAMS: Dict[str, Dict[str, Any]] = {
    'moving-average': {'period': 50, 'method': 'SMA', 'appliedPrice': 'CLOSE'},
    'rsi': {'period': 14, 'appliedPrice': 'CLOSE'},
    'macd': {'fastPeriod': 12, 'slowPeriod': 26, 'signalPeriod': 9, 'appliedPrice': 'CLOSE'},
    'bollinger-bands': {'period': 20, 'deviation': 2.0, 'appliedPrice': 'CLOSE'},
    'atr': {'period': 14},
    'adx': {'period': 14},
    'stochastic': {'kPeriod': 14, 'dPeriod': 3, 'slowing': 3, 'maMethod': 'SMA'},
    'cci': {'period': 14, 'appliedPrice': 'TYPICAL'},
    'obv': {'signalPeriod': 20},
    'ichimoku': {'tenkanPeriod': 9, 'kijunPeriod': 26, 'senkouBPeriod': 52},
    'bb-squeeze': {'bbPeriod': 20, 'bbDeviation': 2.0, 'kcPeriod': 20, 'kcMultiplier': 1.5},
    'vwap': {},
}

INDICATOR_TYPES = tuple(DEFAULT_PARAMS)


def resolve_params(node_type: str, params: Mapping[str, Any]) -> Dict[str, Any]:
    """Overlay node parameters (ignoring None) on the defaults for its type."""
    if node_type not in DEFAULT_PARAMS:
        raise ValueError(f"Unknown indicator type: {node_type}")
    resolved = dict(DEFAULT_PARAMS[node_type])
    for key, value in params.items():
        if value is not None:
            resolved[key] = value
    return resolved


def _compute_moving_average(bars: BarArray, p: Dict[str, Any]) -> IndicatorBuffers:
    data = resolve_applied_price(bars, p['appliedPrice'])
    return {'value': moving_average(data, int(p['period']), p['method'])}


def _compute_rsi(bars: BarArray, p: Dict[str, Any]) -> IndicatorBuffers:
    return {'value': library.rsi(resolve_applied_price(bars, p['appliedPrice']), int(p['period']))}


def _compute_macd(bars: BarArray, p: Dict[str, Any]) -> IndicatorBuffers:
    data = resolve_applied_price(bars, p['appliedPrice'])
    return library.macd(data, int(p['fastPeriod']), int(p['slowPeriod']), int(p['signalPeriod']))


def _compute_bollinger(bars: BarArray, p: Dict[str, Any]) -> IndicatorBuffers:
    data = resolve_applied_price(bars, p['appliedPrice'])
    return library.bollinger_bands(data, int(p['period']), float(p['deviation']))


def _compute_cci(bars: BarArray, p: Dict[str, Any]) -> IndicatorBuffers:
    return {'value': library.cci(resolve_applied_price(bars, p['appliedPrice']), int(p['period']))}


_CALCULATORS: Dict[str, Callable[[BarArray, Dict[str, Any]], IndicatorBuffers]] = {
    'moving-average': _compute_moving_average,
    'rsi': _compute_rsi,
    'macd': _compute_macd,
    'bollinger-bands': _compute_bollinger,
    'atr': lambda bars, p: {'value': library.atr(bars, int(p['period']))},
    'adx': lambda bars, p: library.adx(bars, int(p['period'])),
    'stochastic': lambda bars, p: library.stochastic(
        bars, int(p['kPeriod']), int(p['dPeriod']), int(p['slowing']), p['maMethod']
    ),
    'cci': _compute_cci,
    'obv': lambda bars, p: library.obv(bars, int(p['signalPeriod'])),
    'ichimoku': lambda bars, p: library.ichimoku(
        bars, int(p['tenkanPeriod']), int(p['kijunPeriod']), int(p['senkouBPeriod'])
    ),
    'bb-squeeze': lambda bars, p: library.bb_squeeze(
        bars, int(p['bbPeriod']), float(p['bbDeviation']), int(p['kcPeriod']), float(p['kcMultiplier'])
    ),
    'vwap': lambda bars, p: {'value': library.vwap(bars)},
}


def compute_indicator(
    bars: BarArray,
    node_type: str,
    params: Mapping[str, Any] = None
) -> IndicatorBuffers:
    """
    Compute every buffer of an indicator node over the full bar array.

    Args:
        bars: Bar arrays
        node_type: Graph node type (e.g. 'rsi', 'bollinger-bands')
        params: Node parameters (camelCase keys)

    Returns:
        Dict of buffer name -> array aligned with the bars
    """
    p = resolve_params(node_type, params or {})
    return _CALCULATORS[node_type](bars, p)


def buffer_warmups(node_type: str, params: Mapping[str, Any] = None) -> Dict[str, int]:
    """Number of leading not-valid entries of each buffer."""
    p = resolve_params(node_type, params or {})
    if node_type == 'moving-average':
        return {'value': int(p['period']) - 1}
    if node_type == 'rsi':
        return {'value': int(p['period'])}
    if node_type == 'macd':
        base = max(int(p['fastPeriod']), int(p['slowPeriod'])) - 1
        signal = base + int(p['signalPeriod']) - 1
        return {'main': base, 'signal': signal, 'histogram': signal}
    if node_type == 'bollinger-bands':
        w = int(p['period']) - 1
        return {'upper': w, 'middle': w, 'lower': w}
    if node_type == 'atr':
        return {'value': int(p['period'])}
    if node_type == 'adx':
        period = int(p['period'])
        return {'main': 2 * period - 1, 'plusDI': period, 'minusDI': period}
    if node_type == 'stochastic':
        main = int(p['kPeriod']) + int(p['slowing']) - 2
        return {'main': main, 'signal': main + int(p['dPeriod']) - 1}
    if node_type == 'cci':
        return {'value': int(p['period']) - 1}
    if node_type == 'obv':
        return {'value': 0, 'signal': int(p['signalPeriod']) - 1}
    if node_type == 'ichimoku':
        tenkan, kijun = int(p['tenkanPeriod']), int(p['kijunPeriod'])
        return {
            'tenkan': tenkan - 1,
            'kijun': kijun - 1,
            'spanA': max(tenkan, kijun) - 1,
            'spanB': int(p['senkouBPeriod']) - 1,
        }
    if node_type == 'bb-squeeze':
        bb = int(p['bbPeriod']) - 1
        return {'squeeze': max(bb, int(p['kcPeriod'])), 'middle': bb}
    return {'value': 0}


def indicator_warmup(node_type: str, params: Mapping[str, Any] = None) -> int:
    """Warmup of the slowest buffer."""
    return max(buffer_warmups(node_type, params).values())


_DEFAULT_ENTRY_WARMUP = 50


def entry_warmup(node_type: str, params: Mapping[str, Any] = None) -> int:
    """Bars an indicator contributes to the strategy warmup before entries.

    Counts whole periods, plus the seed bar for Wilder-smoothed indicators,
    rather than the exact leading NaNs of ``buffer_warmups``. Unknown types
    (VWAP included) count 50 bars.
    """
    if node_type not in DEFAULT_PARAMS:
        return _DEFAULT_ENTRY_WARMUP
    p = resolve_params(node_type, params or {})
    if node_type in ('moving-average', 'bollinger-bands', 'cci'):
        return int(p['period'])
    if node_type in ('rsi', 'atr'):
        return int(p['period']) + 1
    if node_type == 'macd':
        return int(p['slowPeriod']) + int(p['signalPeriod'])
    if node_type == 'adx':
        return 2 * int(p['period']) + 1
    if node_type == 'stochastic':
        return int(p['kPeriod']) + int(p['slowing']) + int(p['dPeriod'])
    if node_type == 'obv':
        return int(p['signalPeriod'])
    if node_type == 'ichimoku':
        return int(p['senkouBPeriod'])
    if node_type == 'bb-squeeze':
        return max(int(p['bbPeriod']), int(p['kcPeriod'])) + 1
    return _DEFAULT_ENTRY_WARMUP
