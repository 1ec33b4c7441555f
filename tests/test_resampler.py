"""Tests for timeframe resampling."""

import numpy as np
import pandas as pd
import pytest

from engine.bars import BarArray
from engine.resampler import (
    higher_timeframe_values,
    infer_base_minutes,
    parse_timeframe,
    resample_ohlcv,
)

START_MS = 1704067200000
HOUR_MS = 3_600_000


def _hourly_bars(n, hours=None):
    hours = list(range(n)) if hours is None else hours
    values = np.arange(len(hours), dtype=float)
    return BarArray(
        time=[START_MS + h * HOUR_MS for h in hours],
        open=values, high=values + 0.5, low=values - 0.5, close=values + 0.25,
        volume=np.full(len(hours), 10.0),
    )


def test_parse_timeframe():
    assert parse_timeframe('H1') == '1h'
    assert parse_timeframe(' h4 ') == '4h'
    assert parse_timeframe('MN1') == 'MS'
    with pytest.raises(ValueError, match="Unsupported timeframe"):
        parse_timeframe('H2')


def test_resample_to_h4():
    df = _hourly_bars(8).to_dataframe()

    out = resample_ohlcv(df, 'H4')

    assert len(out) == 2
    assert out.index[0] == pd.Timestamp('2024-01-01 00:00', tz='UTC')
    assert out.index[1] == pd.Timestamp('2024-01-01 04:00', tz='UTC')
    first = out.iloc[0]
    assert first['open'] == 0.0
    assert first['high'] == 3.5
    assert first['low'] == -0.5
    assert first['close'] == 3.25
    assert first['volume'] == 40.0


def test_resample_drops_empty_periods():
    df = _hourly_bars(0, hours=[0, 1, 9]).to_dataframe()

    out = resample_ohlcv(df, 'H4')

    assert list(out.index.hour) == [0, 8]


def test_resample_rejects_bad_input():
    df = _hourly_bars(4).to_dataframe()
    with pytest.raises(ValueError, match="missing required columns"):
        resample_ohlcv(df.drop(columns=['volume']), 'H4')
    with pytest.raises(ValueError, match="DatetimeIndex"):
        resample_ohlcv(df.reset_index(drop=True), 'H4')
    assert resample_ohlcv(df.iloc[:0], 'H4').empty


def test_infer_base_minutes():
    assert infer_base_minutes(_hourly_bars(5)) == 60.0
    assert infer_base_minutes(_hourly_bars(1)) == 0.0


def test_higher_timeframe_values_only_use_completed_periods():
    bars = _hourly_bars(12)

    values = higher_timeframe_values(bars, 'H4', lambda df: df['close'].to_numpy())

    assert np.isnan(values[:4]).all()
    assert values[4:8] == pytest.approx([3.25] * 4)
    assert values[8:] == pytest.approx([7.25] * 4)


def test_higher_timeframe_values_of_no_bars():
    bars = _hourly_bars(0, hours=[])
    assert len(higher_timeframe_values(bars, 'D1', lambda df: df['close'].to_numpy())) == 0
