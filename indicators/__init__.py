"""Technical indicators computed over bar arrays."""

from .applied_price import APPLIED_PRICES, resolve_applied_price
from .moving_average import ema, lwma, moving_average, sma, smma
from .library import (
    adx,
    atr,
    bb_squeeze,
    bollinger_bands,
    cci,
    ichimoku,
    macd,
    obv,
    rsi,
    stochastic,
    true_range,
    vwap,
)
from .registry import (
    DEFAULT_PARAMS,
    INDICATOR_TYPES,
    buffer_warmups,
    compute_indicator,
    entry_warmup,
    indicator_warmup,
)

__all__ = [
    "APPLIED_PRICES",
    "resolve_applied_price",
    "sma",
    "ema",
    "smma",
    "lwma",
    "moving_average",
    "rsi",
    "macd",
    "bollinger_bands",
    "true_range",
    "atr",
    "adx",
    "stochastic",
    "cci",
    "obv",
    "ichimoku",
    "bb_squeeze",
    "vwap",
    "DEFAULT_PARAMS",
    "INDICATOR_TYPES",
    "compute_indicator",
    "buffer_warmups",
    "entry_warmup",
    "indicator_warmup",
]
