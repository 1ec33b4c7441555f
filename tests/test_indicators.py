"""Tests for the indicator library and registry."""

import numpy as np
import pytest

from engine.bars import BarArray
from indicators import library
from indicators.moving_average import ema, lwma, moving_average, sma, smma
from indicators.registry import (
    INDICATOR_TYPES,
    buffer_warmups,
    compute_indicator,
    entry_warmup,
    indicator_warmup,
)

START_MS = 1704067200000


def _random_walk_bars(n=300, seed=7):
    rng = np.random.default_rng(seed)
    close = 1.1 + np.cumsum(rng.normal(0.0, 1e-4, n))
    open_ = np.concatenate([[close[0]], close[:-1]])
    high = np.maximum(open_, close) + np.abs(rng.normal(0.0, 5e-5, n))
    low = np.minimum(open_, close) - np.abs(rng.normal(0.0, 5e-5, n))
    volume = rng.integers(100, 1000, n).astype(float)
    return BarArray(
        time=[START_MS + i * 60_000 for i in range(n)],
        open=open_, high=high, low=low, close=close, volume=volume,
    )


def _flat_bars(n=60, price=1.5):
    return BarArray(
        time=[START_MS + i * 60_000 for i in range(n)],
        open=[price] * n, high=[price] * n, low=[price] * n, close=[price] * n,
        volume=[100.0] * n,
    )


def _reference_bars():
    """Seven bars with integer prices so Wilder values are exact fractions."""
    high = [10, 11, 12, 11, 13, 12, 14]
    low = [8, 9, 10, 8, 10, 9, 11]
    close = [9, 10, 11, 9, 12, 10, 13]
    return BarArray(
        time=[START_MS + i * 60_000 for i in range(7)],
        open=close, high=high, low=low, close=close,
    )


def _leading_nans(values):
    valid = np.flatnonzero(~np.isnan(values))
    return int(valid[0]) if len(valid) else len(values)


def test_sma_values():
    out = sma([1, 2, 3, 4, 5], 3)
    assert np.isnan(out[:2]).all()
    assert out[2:] == pytest.approx([2.0, 3.0, 4.0])


def test_ema_is_seeded_with_sma():
    out = ema([1, 2, 3, 4, 5], 3)
    assert np.isnan(out[:2]).all()
    assert out[2:] == pytest.approx([2.0, 3.0, 4.0])


def test_smma_uses_wilder_smoothing():
    out = smma([2, 4, 6, 8], 2)
    # seed (2+4)/2 = 3, then (3*1 + 6)/2 = 4.5, then (4.5 + 8)/2 = 6.25
    assert out[1:] == pytest.approx([3.0, 4.5, 6.25])


def test_lwma_weights_newest_value_most():
    out = lwma([1, 2, 3], 3)
    assert out[2] == pytest.approx((1 * 1 + 2 * 2 + 3 * 3) / 6)


@pytest.mark.parametrize("method", ["SMA", "EMA", "SMMA", "LWMA"])
def test_moving_averages_converge_on_constant_input(method):
    out = moving_average(np.full(100, 1.5), 10, method)
    assert out[9:] == pytest.approx(np.full(91, 1.5))


def test_unknown_moving_average_method():
    with pytest.raises(ValueError):
        moving_average([1.0, 2.0], 2, "HULL")


def test_rsi_is_bounded():
    bars = _random_walk_bars()
    values = library.rsi(bars.close, 14)
    valid = values[~np.isnan(values)]
    assert len(valid) > 0
    assert ((valid >= 0) & (valid <= 100)).all()


def test_rsi_flat_and_rising_inputs():
    assert library.rsi(np.full(30, 1.1), 14)[14:] == pytest.approx(np.full(16, 50.0))
    assert library.rsi(np.linspace(1.0, 2.0, 30), 14)[14:] == pytest.approx(np.full(16, 100.0))


def test_bollinger_band_ordering():
    bars = _random_walk_bars()
    bands = library.bollinger_bands(bars.close, 20, 2.0)
    valid = ~np.isnan(bands['middle'])
    assert (bands['upper'][valid] >= bands['middle'][valid]).all()
    assert (bands['middle'][valid] >= bands['lower'][valid]).all()


def test_flat_market_fill_values():
    bars = _flat_bars()
    assert library.cci(bars.close, 14)[13:] == pytest.approx(np.zeros(47))
    stoch = library.stochastic(bars, 5, 3, 3)
    assert stoch['main'][6:] == pytest.approx(np.full(54, 100.0))


def test_true_range_uses_previous_close():
    bars = BarArray(
        time=[0, 60_000], open=[1.0, 1.3], high=[1.1, 1.4], low=[0.9, 1.25], close=[1.0, 1.3],
    )
    assert library.true_range(bars) == pytest.approx([0.2, 0.4])


def test_obv_accumulates_signed_volume():
    bars = BarArray(
        time=[0, 1, 2, 3], open=[1, 2, 1, 1], high=[1, 2, 1, 1], low=[1, 2, 1, 1],
        close=[1, 2, 1, 1], volume=[10, 20, 30, 40],
    )
    assert library.obv(bars, 2)['value'] == pytest.approx([0, 20, -10, -10])


def test_vwap_resets_each_day():
    day = 86_400_000
    bars = BarArray(
        time=[0, 60_000, day], open=[1, 2, 5], high=[1, 2, 5], low=[1, 2, 5], close=[1, 2, 5],
        volume=[1, 3, 2],
    )
    assert library.vwap(bars) == pytest.approx([1.0, 1.75, 5.0])


@pytest.mark.parametrize("node_type", INDICATOR_TYPES)
def test_buffer_warmups_match_leading_nans(node_type):
    bars = _random_walk_bars()
    buffers = compute_indicator(bars, node_type)
    warmups = buffer_warmups(node_type)
    assert set(warmups) <= set(buffers)
    for name, warmup in warmups.items():
        assert _leading_nans(buffers[name]) == warmup, name
        assert not np.isnan(buffers[name][warmup:]).any(), name


def test_warmup_follows_parameters():
    params = {'fastPeriod': 5, 'slowPeriod': 10, 'signalPeriod': 4}
    assert buffer_warmups('macd', params) == {'main': 9, 'signal': 12, 'histogram': 12}
    assert indicator_warmup('adx', {'period': 7}) == 13
    assert indicator_warmup('stochastic', {'kPeriod': 5, 'dPeriod': 3, 'slowing': 2}) == 7


def test_entry_warmup_counts_whole_periods():
    assert entry_warmup('moving-average', {'period': 50}) == 50
    assert entry_warmup('rsi', {'period': 14}) == 15
    assert entry_warmup('macd') == 35
    assert entry_warmup('atr') == 15
    assert entry_warmup('adx', {'period': 7}) == 15
    assert entry_warmup('stochastic') == 20
    assert entry_warmup('cci', {'period': 20}) == 20
    assert entry_warmup('obv') == 20
    assert entry_warmup('ichimoku') == 52
    assert entry_warmup('bb-squeeze', {'bbPeriod': 20, 'kcPeriod': 25}) == 26
    assert entry_warmup('vwap') == 50
    assert entry_warmup('supertrend') == 50


def test_none_parameters_fall_back_to_defaults():
    bars = _random_walk_bars()
    explicit = compute_indicator(bars, 'rsi', {'period': 14})
    defaulted = compute_indicator(bars, 'rsi', {'period': None})
    np.testing.assert_array_equal(explicit['value'], defaulted['value'])


def test_unknown_indicator_type():
    with pytest.raises(ValueError):
        compute_indicator(_flat_bars(), 'supertrend')


def test_true_range_reference_series():
    tr = library.true_range(_reference_bars())
    assert tr.tolist() == [2.0, 2.0, 2.0, 3.0, 4.0, 3.0, 4.0]


def test_atr_reference_series():
    values = library.atr(_reference_bars(), period=3)

    assert np.isnan(values[:3]).all()
    expected = [7 / 3, 26 / 9, 79 / 27, 266 / 81]
    assert values[3:].tolist() == pytest.approx(expected, abs=1e-9)


def test_adx_reference_series():
    result = library.adx(_reference_bars(), period=3)

    assert np.isnan(result['plusDI'][:3]).all()
    assert result['plusDI'][3:].tolist() == pytest.approx(
        [100 * 2 / 7, 100 * 5 / 13, 100 * 20 / 79, 100 * 47 / 133], abs=1e-9
    )
    assert result['minusDI'][3:].tolist() == pytest.approx(
        [100 * 2 / 7, 100 * 2 / 13, 100 * 17 / 79, 100 * 17 / 133], abs=1e-9
    )

    assert np.isnan(result['main'][:5]).all()
    # DX runs 0, 300/7, 300/37, 46.875 from bar 3
    seed = 100 * (1 / 7 + 1 / 37)
    assert result['main'][5] == pytest.approx(seed, abs=1e-9)
    assert result['main'][6] == pytest.approx(seed * 2 / 3 + 46.875 / 3, abs=1e-9)
