"""Data adapters."""

from .bar_loader import (
    BarLoader,
    BarParseResult,
    bars_from_dataframe,
    detect_columns,
    detect_delimiter,
    parse_timestamp,
    parse_timestamps,
)

__all__ = [
    "BarLoader",
    "BarParseResult",
    "bars_from_dataframe",
    "detect_columns",
    "detect_delimiter",
    "parse_timestamp",
    "parse_timestamps",
]
