"""Comparison, crossover and level-signal helpers.

Every comparison uses an epsilon of 1e-8 so that values that differ only by
floating-point noise compare equal, and any NaN operand (an indicator still
inside its warmup) makes the comparison False.
"""

import math
from dataclasses import dataclass
from typing import Sequence

EPSILON = 1e-8

MIRRORED_OPERATORS = {
    "CROSSES_ABOVE": "CROSSES_BELOW",
    "CROSSES_BELOW": "CROSSES_ABOVE",
    "GREATER_THAN": "LESS_THAN",
    "LESS_THAN": "GREATER_THAN",
    "GREATER_EQUAL": "LESS_EQUAL",
    "LESS_EQUAL": "GREATER_EQUAL",
    "EQUAL": "EQUAL",
}


@dataclass(frozen=True)
class EntrySignal:
    """Buy/sell contribution of one signal source at one bar."""
    buy: bool = False
    sell: bool = False


NO_SIGNAL = EntrySignal()


def is_valid(*values: float) -> bool:
    """True when every value is a finite number."""
    return all(v is not None and not math.isnan(v) for v in values)


def gt(a: float, b: float) -> bool:
    return is_valid(a, b) and a - b > EPSILON


def lt(a: float, b: float) -> bool:
    return is_valid(a, b) and b - a > EPSILON


def ge(a: float, b: float) -> bool:
    return is_valid(a, b) and a - b > -EPSILON


def le(a: float, b: float) -> bool:
    return is_valid(a, b) and b - a > -EPSILON


def eq(a: float, b: float) -> bool:
    return is_valid(a, b) and abs(a - b) < EPSILON


def evaluate_condition(operator: str, current: float, threshold: float, previous: float = math.nan) -> bool:
    """
    Evaluate ``current <operator> threshold``.

    Cross operators also need the previous value: CROSSES_ABOVE is true when
    the previous value was at or below the threshold and the current one is
    above it.

    Raises:
        ValueError: for an unknown operator
    """
    if operator == "GREATER_THAN":
        return gt(current, threshold)
    if operator == "LESS_THAN":
        return lt(current, threshold)
    if operator == "GREATER_EQUAL":
        return ge(current, threshold)
    if operator == "LESS_EQUAL":
        return le(current, threshold)
    if operator == "EQUAL":
        return eq(current, threshold)
    if operator == "CROSSES_ABOVE":
        return le(previous, threshold) and gt(current, threshold)
    if operator == "CROSSES_BELOW":
        return ge(previous, threshold) and lt(current, threshold)
    raise ValueError(f"Unknown condition operator: {operator}")


def crossover(a_curr: float, a_prev: float, b_curr: float, b_prev: float) -> EntrySignal:
    """Line A crossing line B: buy on a cross above, sell on a cross below."""
    return EntrySignal(
        buy=le(a_prev, b_prev) and gt(a_curr, b_curr),
        sell=ge(a_prev, b_prev) and lt(a_curr, b_curr),
    )


def level_recross(curr: float, prev: float, overbought: float, oversold: float) -> EntrySignal:
    """Oscillator leaving an extreme zone.

    Buy when the value climbs back above ``oversold``; sell when it falls
    back below ``overbought``.
    """
    return EntrySignal(
        buy=le(prev, oversold) and gt(curr, oversold),
        sell=ge(prev, overbought) and lt(curr, overbought),
    )


def macd_signal(
    main_curr: float,
    main_prev: float,
    signal_curr: float,
    signal_prev: float,
    mode: str = "SIGNAL_CROSS",
) -> EntrySignal:
    """MACD entry in one of three modes.

    SIGNAL_CROSS: main line crossing the signal line.
    ZERO_CROSS: main line crossing zero.
    HISTOGRAM_SIGN: histogram (main - signal) changing sign.
    """
    if mode == "ZERO_CROSS":
        return crossover(main_curr, main_prev, 0.0, 0.0)
    if mode == "HISTOGRAM_SIGN":
        hist_curr = main_curr - signal_curr
        hist_prev = main_prev - signal_prev
        return EntrySignal(
            buy=lt(hist_prev, 0.0) and gt(hist_curr, 0.0),
            sell=gt(hist_prev, 0.0) and lt(hist_curr, 0.0),
        )
    if mode == "SIGNAL_CROSS":
        return crossover(main_curr, main_prev, signal_curr, signal_prev)
    raise ValueError(f"Unknown MACD signal mode: {mode}")


def combine(conditions: Sequence[bool], mode: str = "AND") -> bool:
    """AND / OR over contributing conditions; no contributors means False."""
    if not conditions:
        return False
    if mode == "OR":
        return any(conditions)
    return all(conditions)
