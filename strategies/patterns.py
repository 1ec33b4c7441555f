"""Candlestick pattern detection on completed bars."""

from typing import Sequence

from engine.bars import BarArray
from strategies.signals import EntrySignal, NO_SIGNAL


def detect_patterns(
    bars: BarArray,
    i: int,
    patterns: Sequence[str],
    min_body_size: float,
    point: float,
) -> EntrySignal:
    """
    Check the bar at index ``i`` (and the two before it) for any of ``patterns``.

    DOJI is directional by context: after a bearish bar it is a buy, after a
    bullish bar a sell.

    Args:
        bars: Bar arrays
        i: Index of the bar that just closed
        patterns: Pattern names to look for
        min_body_size: Minimum real body, in points
        point: Instrument point size

    Returns:
        EntrySignal with buy/sell set when any bullish/bearish pattern matched
    """
    if i < 3 or not patterns:
        return NO_SIGNAL

    min_body = min_body_size * point
    o, h, l, c = bars.open, bars.high, bars.low, bars.close

    curr_open, curr_high, curr_low, curr_close = o[i], h[i], l[i], c[i]
    prev_open, prev_close = o[i - 1], c[i - 1]
    prev2_open, prev2_close = o[i - 2], c[i - 2]

    curr_body = abs(curr_close - curr_open)
    prev_body = abs(prev_close - prev_open)
    prev2_body = abs(prev2_close - prev2_open)
    curr_bull = curr_close > curr_open
    curr_bear = curr_close < curr_open
    prev_bull = prev_close > prev_open
    prev_bear = prev_close < prev_open
    prev2_bull = prev2_close > prev2_open
    prev2_bear = prev2_close < prev2_open

    buy = False
    sell = False
    for pattern in patterns:
        if pattern == "ENGULFING_BULLISH":
            if (prev_bear and curr_bull and curr_body > min_body
                    and curr_close > prev_open and curr_open < prev_close):
                buy = True
        elif pattern == "ENGULFING_BEARISH":
            if (prev_bull and curr_bear and curr_body > min_body
                    and curr_close < prev_open and curr_open > prev_close):
                sell = True
        elif pattern == "HAMMER":
            if curr_bull and curr_body > min_body:
                lower_wick = curr_open - curr_low
                upper_wick = curr_high - curr_close
                if lower_wick >= curr_body * 2 and upper_wick < curr_body * 0.5:
                    buy = True
        elif pattern == "SHOOTING_STAR":
            if curr_bear and curr_body > min_body:
                upper_wick = curr_high - curr_open
                lower_wick = curr_close - curr_low
                if upper_wick >= curr_body * 2 and lower_wick < curr_body * 0.5:
                    sell = True
        elif pattern == "DOJI":
            bar_range = curr_high - curr_low
            if bar_range > 0 and curr_body / bar_range < 0.1:
                if prev_bear:
                    buy = True
                if prev_bull:
                    sell = True
        elif pattern == "MORNING_STAR":
            if (prev2_bear and prev2_body > min_body
                    and prev_body < prev2_body * 0.3
                    and curr_bull and curr_body > min_body
                    and curr_close > (prev2_open + prev2_close) / 2):
                buy = True
        elif pattern == "EVENING_STAR":
            if (prev2_bull and prev2_body > min_body
                    and prev_body < prev2_body * 0.3
                    and curr_bear and curr_body > min_body
                    and curr_close < (prev2_open + prev2_close) / 2):
                sell = True
        elif pattern == "THREE_WHITE_SOLDIERS":
            if (prev2_bull and prev_bull and curr_bull
                    and prev_close > prev2_close and curr_close > prev_close
                    and curr_body > min_body and prev_body > min_body):
                buy = True
        elif pattern == "THREE_BLACK_CROWS":
            if (prev2_bear and prev_bear and curr_bear
                    and prev_close < prev2_close and curr_close < prev_close
                    and curr_body > min_body and prev_body > min_body):
                sell = True
        elif pattern == "HARAMI_BULLISH":
            # Small bullish body inside the previous large bearish body
            if (prev_bear and curr_bull and prev_body > min_body and curr_body < prev_body
                    and curr_close < prev_open and curr_open > prev_close):
                buy = True
        elif pattern == "HARAMI_BEARISH":
            if (prev_bull and curr_bear and prev_body > min_body and curr_body < prev_body
                    and curr_open < prev_close and curr_close > prev_open):
                sell = True

    return EntrySignal(buy=buy, sell=sell)
