"""Flat, index-aligned OHLCV storage.

Bars are kept as one numpy array per field rather than a list of per-bar
objects, so the simulation loop and the indicator library both work on
contiguous arrays and index ``i`` means the same bar everywhere.
"""

from dataclasses import dataclass
from typing import Dict, Iterable, Optional, Sequence
import numpy as np
import pandas as pd

from engine.errors import InvariantViolationError


@dataclass(frozen=True)
class Bar:
    """Single OHLCV bar view (timestamp in UTC epoch milliseconds)."""
    time: int
    open: float
    high: float
    low: float
    close: float
    volume: float


class BarArray:
    """Read-only OHLCV arrays sharing one index.

    Attributes:
        time: int64 UTC epoch milliseconds
        open, high, low, close, volume: float64 arrays
    """

    FIELDS = ('open', 'high', 'low', 'close', 'volume')

    def __init__(
        self,
        time: Sequence[int],
        open: Sequence[float],
        high: Sequence[float],
        low: Sequence[float],
        close: Sequence[float],
        volume: Optional[Sequence[float]] = None
    ):
        self.time = np.array(time, dtype=np.int64)
        self.open = np.array(open, dtype=float)
        self.high = np.array(high, dtype=float)
        self.low = np.array(low, dtype=float)
        self.close = np.array(close, dtype=float)
        if volume is None:
            self.volume = np.zeros(len(self.time), dtype=float)
        else:
            self.volume = np.array(volume, dtype=float)

        n = len(self.time)
        for name in self.FIELDS:
            if len(getattr(self, name)) != n:
                raise ValueError(f"Field '{name}' has {len(getattr(self, name))} values, expected {n}")

        for arr in (self.time, self.open, self.high, self.low, self.close, self.volume):
            arr.setflags(write=False)

    def __len__(self) -> int:
        return len(self.time)

    def __getitem__(self, i: int) -> Bar:
        return Bar(
            time=int(self.time[i]),
            open=float(self.open[i]),
            high=float(self.high[i]),
            low=float(self.low[i]),
            close=float(self.close[i]),
            volume=float(self.volume[i]),
        )

    @classmethod
    def from_bars(cls, bars: Iterable[Bar]) -> 'BarArray':
        bars = list(bars)
        return cls(
            time=[b.time for b in bars],
            open=[b.open for b in bars],
            high=[b.high for b in bars],
            low=[b.low for b in bars],
            close=[b.close for b in bars],
            volume=[b.volume for b in bars],
        )

    @classmethod
    def from_records(cls, records: Iterable[Dict]) -> 'BarArray':
        """Build from dicts with time/open/high/low/close/volume keys."""
        records = list(records)
        return cls(
            time=[int(r['time']) for r in records],
            open=[r['open'] for r in records],
            high=[r['high'] for r in records],
            low=[r['low'] for r in records],
            close=[r['close'] for r in records],
            volume=[r.get('volume', 0.0) for r in records],
        )

    def slice(self, start: int, stop: int) -> 'BarArray':
        return BarArray(
            time=self.time[start:stop],
            open=self.open[start:stop],
            high=self.high[start:stop],
            low=self.low[start:stop],
            close=self.close[start:stop],
            volume=self.volume[start:stop],
        )

    def timestamps(self) -> pd.DatetimeIndex:
        return pd.to_datetime(self.time, unit='ms', utc=True)

    def to_dataframe(self) -> pd.DataFrame:
        """Return a DataFrame with a UTC DatetimeIndex and OHLCV columns."""
        return pd.DataFrame(
            {name: getattr(self, name) for name in self.FIELDS},
            index=self.timestamps(),
        )

    def check_bar(self, i: int) -> None:
        """Check the runtime invariants of bar i.

        Raises:
            InvariantViolationError: for a non-finite value or an inverted
                range (high < low)
        """
        for name in self.FIELDS:
            value = getattr(self, name)[i]
            if not np.isfinite(value):
                raise InvariantViolationError(f"non-finite {name} value {value}", i)
        if self.high[i] < self.low[i]:
            raise InvariantViolationError(
                f"inverted price range (high {self.high[i]} < low {self.low[i]})", i
            )
