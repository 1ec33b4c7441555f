"""Tests for the bar-by-bar backtest engine."""

import pytest
from pydantic import ValidationError

from config.schema import BacktestConfig
from engine.backtest_engine import BacktestEngine, EntryOverride, run_backtest
from engine.bars import BarArray
from engine.broker import RiskRequest
from engine.errors import BacktestCancelled, InputValidationError, InvariantViolationError

START_MS = 1704067200000  # 2024-01-01 00:00 UTC (Monday)
HOUR_MS = 3_600_000
POINT = 1e-5


def _bars(closes, highs=None, lows=None, step_ms=HOUR_MS):
    highs = highs if highs is not None else closes
    lows = lows if lows is not None else closes
    return BarArray(
        time=[START_MS + i * step_ms for i in range(len(closes))],
        open=closes,
        high=highs,
        low=lows,
        close=closes,
        volume=[100.0] * len(closes),
    )


def _empty_graph(**settings):
    return {"version": "1.3", "nodes": [], "edges": [], "settings": settings}


def _always_long_graph(**settings):
    """MA(1) read by a condition node: buy on every bar whose close is above 1.1."""
    return {
        "version": "1.3",
        "nodes": [
            {"id": "ma", "type": "moving-average", "data": {"period": 1, "method": "SMA"}},
            {"id": "cond", "type": "condition", "data": {"conditionType": "GREATER_THAN", "threshold": 1.1}},
        ],
        "edges": [{"id": "e1", "source": "ma", "target": "cond"}],
        "settings": settings,
    }


def _no_costs(**overrides):
    return BacktestConfig(spread=0, commission=0, **overrides)


def _take_profit_scenario():
    """Flat at 1.10000, a small rally on bars 11-14 and a spike to 1.10050 on bar 15."""
    n = 100
    closes = [1.10000] * n
    highs = [1.10000] * n
    lows = [1.10000] * n
    for i in range(11, 15):
        closes[i], highs[i], lows[i] = 1.10010, 1.10015, 1.10005
    closes[15], highs[15], lows[15] = 1.10010, 1.10050, 1.10005
    return _bars(closes, highs, lows)


def _bracket(sl_points=20, tp_points=40):
    return RiskRequest(
        sl_mode='DISTANCE', sl_value=sl_points * POINT,
        tp_mode='DISTANCE', tp_value=tp_points * POINT,
    )


def test_take_profit_scenario_books_one_winning_trade():
    bars = _take_profit_scenario()
    result = BacktestEngine().run(
        bars, _empty_graph(), _no_costs(),
        entry_overrides=[EntryOverride(10, 'BUY', risk=_bracket())],
    )

    assert len(result.trades) == 1
    trade = result.trades[0]
    assert trade.exit_reason == 'TP'
    assert trade.open_bar == 10
    assert trade.close_bar == 15
    assert trade.entry_price == pytest.approx(1.10000)
    assert trade.exit_price == pytest.approx(1.10040)
    assert trade.stop_loss == pytest.approx(1.09980)
    assert trade.profit == pytest.approx(0.4)
    assert result.final_balance == pytest.approx(10000.4)


def test_equity_curve_has_one_point_per_bar():
    bars = _take_profit_scenario()
    result = BacktestEngine().run(
        bars, _empty_graph(), _no_costs(),
        entry_overrides=[EntryOverride(10, 'BUY', risk=_bracket())],
    )

    assert len(result.equity_curve) == len(bars)
    assert [p.bar_index for p in result.equity_curve] == list(range(len(bars)))
    for point in result.equity_curve[:10]:
        assert point.equity == pytest.approx(10000.0)
    after = [p.equity for p in result.equity_curve[15:]]
    assert all(e == pytest.approx(10000.4) for e in after)


def test_commission_is_charged_on_both_sides():
    bars = _take_profit_scenario()
    result = BacktestEngine().run(
        bars, _empty_graph(), BacktestConfig(spread=0, commission=3.5),
        entry_overrides=[EntryOverride(10, 'BUY', risk=_bracket())],
    )

    trade = result.trades[0]
    assert trade.commission == pytest.approx(0.07)
    assert trade.profit == pytest.approx(0.4 - 0.07)


def test_stop_loss_wins_when_both_levels_touched():
    closes = [1.10000] * 30
    highs = list(closes)
    lows = list(closes)
    highs[12], lows[12] = 1.10100, 1.09900
    bars = _bars(closes, highs, lows)

    result = BacktestEngine().run(
        bars, _empty_graph(), _no_costs(),
        entry_overrides=[EntryOverride(10, 'BUY', risk=_bracket())],
    )

    trade = result.trades[0]
    assert trade.exit_reason == 'SL'
    assert trade.close_bar == 12
    assert trade.exit_price == pytest.approx(1.09980)
    assert trade.profit == pytest.approx(-0.2)


def test_open_position_is_closed_on_last_bar():
    closes = [1.1 + i * 1e-4 for i in range(50)]
    bars = _bars(closes)

    result = BacktestEngine().run(bars, _empty_graph(), _no_costs(), entry_overrides=[EntryOverride(5, 'BUY')])

    assert len(result.trades) == 1
    trade = result.trades[0]
    assert trade.exit_reason == 'MANUAL'
    assert trade.close_bar == 49
    assert trade.exit_price == pytest.approx(closes[-1])
    assert trade.profit > 0
    assert trade.lots == pytest.approx(0.01)


def test_short_position_profits_from_falling_prices():
    closes = [1.1 - i * 1e-4 for i in range(30)]
    bars = _bars(closes)

    result = BacktestEngine().run(bars, _empty_graph(), _no_costs(), entry_overrides=[EntryOverride(5, 'SELL')])

    trade = result.trades[0]
    assert trade.direction == 'SELL'
    assert trade.profit == pytest.approx((closes[5] - closes[-1]) / POINT * 0.01)


def test_drawdown_limit_closes_positions_and_stops_entries():
    closes = [1.1] * 3 + [1.1 - i * 1e-4 for i in range(1, 47)]
    bars = _bars(closes)
    overrides = [
        EntryOverride(2, 'BUY', risk=RiskRequest(sizing='FIXED_LOT', fixed_lot=10.0)),
        EntryOverride(20, 'BUY'),
    ]

    result = BacktestEngine().run(bars, _empty_graph(maxTotalDrawdownPercent=4.5), _no_costs(), entry_overrides=overrides)

    assert len(result.trades) == 1
    trade = result.trades[0]
    assert trade.exit_reason == 'RISK_MGMT'
    assert trade.close_bar == 8
    assert trade.profit < 0


def test_max_open_trades_caps_strategy_entries():
    bars = _bars([1.2] * 100)

    single = BacktestEngine().run(bars, _always_long_graph(), _no_costs())
    triple = BacktestEngine().run(bars, _always_long_graph(maxOpenTrades=3), _no_costs())

    assert [t.open_bar for t in single.trades] == [11]
    assert sorted(t.open_bar for t in triple.trades) == [11, 12, 13]
    assert all(t.exit_reason == 'MANUAL' for t in triple.trades)


def test_daily_trade_cap_resets_each_utc_day():
    bars = _bars([1.2] * 100)

    result = BacktestEngine().run(bars, _always_long_graph(maxOpenTrades=20, maxTradesPerDay=2), _no_costs())

    assert sorted(t.open_bar for t in result.trades) == [11, 12, 24, 25, 48, 49, 72, 73, 96, 97]


def test_min_bars_between_trades():
    bars = _bars([1.2] * 100)

    result = BacktestEngine().run(
        bars, _always_long_graph(maxOpenTrades=20, minBarsBetweenTrades=30), _no_costs()
    )

    assert sorted(t.open_bar for t in result.trades) == [11, 41, 71]


def _with_node(graph, node_type, **data):
    graph["nodes"].append({"id": node_type, "type": node_type, "data": data})
    return graph


def test_daily_loss_cap_pauses_entries_until_next_utc_day():
    # every bar dips 30 points, so each 20-point stop is hit on the bar after entry
    closes = [1.2] * 72
    lows = [1.1997] * 72
    capped_graph = _with_node(_always_long_graph(maxDailyLossPercent=0.001), "stop-loss", method="FIXED_PIPS", fixedPips=20)
    free_graph = _with_node(_always_long_graph(), "stop-loss", method="FIXED_PIPS", fixedPips=20)

    capped = BacktestEngine().run(_bars(closes, lows=lows), capped_graph, _no_costs())
    free = BacktestEngine().run(_bars(closes, lows=lows), free_graph, _no_costs())

    assert [t.open_bar for t in capped.trades] == [11, 24, 48]
    assert all(t.exit_reason == "SL" for t in capped.trades)
    assert all(t.profit == pytest.approx(-0.2) for t in capped.trades)
    assert len(free.trades) > 40


def _profit_cap_bars():
    """Entries at 1.20000 (bar 11) and 1.20030 (bar 12); bar 13 reaches only the first target."""
    closes = [1.2] * 12 + [1.2003] * 36
    highs = list(closes)
    highs[13] = 1.2006
    return _bars(closes, highs=highs)


def test_daily_profit_cap_keeps_open_positions():
    graph = _with_node(_always_long_graph(maxOpenTrades=2, maxDailyProfitPercent=0.001), "take-profit", method="FIXED_PIPS", fixedPips=50)

    result = BacktestEngine().run(_profit_cap_bars(), graph, _no_costs())

    trades = sorted(result.trades, key=lambda t: t.open_bar)
    assert [t.open_bar for t in trades] == [11, 12, 24]
    first, held, next_day = trades
    assert (first.close_bar, first.exit_reason) == (13, "TP")
    assert first.profit == pytest.approx(0.5)
    # the cap only blocks new entries; the open position runs to the end
    assert (held.close_bar, held.exit_reason) == (47, "MANUAL")
    assert (next_day.close_bar, next_day.exit_reason) == (47, "MANUAL")


def test_without_profit_cap_entries_continue_same_day():
    graph = _with_node(_always_long_graph(maxOpenTrades=2), "take-profit", method="FIXED_PIPS", fixedPips=50)

    result = BacktestEngine().run(_profit_cap_bars(), graph, _no_costs())

    assert sorted(t.open_bar for t in result.trades) == [11, 12, 13]


def test_opposite_signal_closes_and_reverses():
    bars = _bars([1.2] * 50 + [1.0] * 50)

    result = BacktestEngine().run(bars, _always_long_graph(), _no_costs())

    assert [t.direction for t in result.trades] == ['BUY', 'SELL']
    long_trade, short_trade = result.trades
    assert long_trade.exit_reason == 'SIGNAL'
    assert long_trade.close_bar == 50
    assert long_trade.profit == pytest.approx(-0.2 / POINT * 0.01)
    assert short_trade.open_bar == 50
    assert short_trade.exit_reason == 'MANUAL'


def test_timing_filter_blocks_entries():
    graph = _always_long_graph()
    graph["nodes"].append({"id": "spread", "type": "max-spread", "data": {"maxSpreadPips": 5}})
    bars = _bars([1.2] * 100)

    result = BacktestEngine().run(bars, graph, BacktestConfig(spread=10, commission=0))

    assert result.trades == []


def test_entry_overrides_bypass_position_caps():
    bars = _bars([1.2] * 40)
    overrides = [EntryOverride(12, 'BUY'), EntryOverride(13, 'BUY')]

    result = BacktestEngine().run(bars, _always_long_graph(), _no_costs(), entry_overrides=overrides)

    assert sorted(t.open_bar for t in result.trades) == [11, 12, 13]


def test_no_indicator_graph_reports_warning_and_never_trades():
    bars = _bars([1.1] * 30)

    result = BacktestEngine().run(bars, _empty_graph(), _no_costs())

    assert result.trades == []
    assert result.statistics.total_trades == 0
    assert any("No indicator nodes" in w for w in result.warnings)
    assert result.final_balance == pytest.approx(10000.0)


def test_progress_is_reported_in_increasing_percentages():
    bars = _bars([1.1] * 200)
    calls = []

    BacktestEngine().run(bars, _empty_graph(), _no_costs(), progress_callback=lambda *args: calls.append(args))

    percents = [c[0] for c in calls]
    assert percents == sorted(set(percents))
    assert calls[-1] == (100, 200, 200)


def test_cancellation_stops_the_run():
    class _Token:
        def is_cancelled(self):
            return True

    bars = _bars([1.1] * 100)
    with pytest.raises(BacktestCancelled) as exc_info:
        BacktestEngine().run(bars, _empty_graph(), _no_costs(), cancel_token=_Token())

    assert exc_info.value.bars_processed == 1


def test_empty_bars_are_rejected():
    empty = BarArray(time=[], open=[], high=[], low=[], close=[])
    with pytest.raises(InputValidationError):
        BacktestEngine().run(empty, _empty_graph())


def test_inverted_bar_aborts_the_run():
    closes = [1.1] * 10
    highs = list(closes)
    lows = list(closes)
    highs[3], lows[3] = 1.0990, 1.1010
    bars = _bars(closes, highs, lows)

    with pytest.raises(InvariantViolationError) as exc_info:
        BacktestEngine().run(bars, _empty_graph())

    assert exc_info.value.bar_index == 3


def test_invalid_config_is_rejected():
    bars = _bars([1.1] * 10)
    with pytest.raises(ValidationError):
        BacktestEngine().run(bars, _empty_graph(), {"spread": -1})


def test_config_accepts_camel_case_dict():
    bars = _take_profit_scenario()
    result = run_backtest(
        bars, _empty_graph(), {"initialBalance": 5000, "spread": 0, "commission": 0},
        entry_overrides=[EntryOverride(10, 'BUY', risk=_bracket())],
    )

    assert result.initial_balance == 5000
    assert result.final_balance == pytest.approx(5000.4)


def test_requotes_are_deterministic_for_a_seed():
    bars = _bars([1.2] * 100)
    config = _no_costs(requote_rate=0.3, seed=11)

    first = BacktestEngine().run(bars, _always_long_graph(maxOpenTrades=100), config)
    second = BacktestEngine().run(bars, _always_long_graph(maxOpenTrades=100), config)

    assert first.requotes > 0
    assert first.requotes == second.requotes
    assert [t.open_bar for t in first.trades] == [t.open_bar for t in second.trades]


def test_swap_is_booked_on_each_rollover():
    bars = _bars([1.1] * 72)
    config = _no_costs(swap_long=-1.0)

    result = BacktestEngine().run(bars, _empty_graph(), config, entry_overrides=[EntryOverride(5, 'BUY')])

    trade = result.trades[0]
    # Day boundaries at bars 24 and 48
    assert trade.swap == pytest.approx(-0.02)
    assert trade.profit == pytest.approx(-0.02)


def test_result_to_dict_uses_camel_case():
    bars = _take_profit_scenario()
    result = BacktestEngine().run(
        bars, _empty_graph(), _no_costs(),
        entry_overrides=[EntryOverride(10, 'BUY', risk=_bracket())],
    )

    payload = result.to_dict()
    assert payload['barsProcessed'] == 100
    assert payload['trades'][0]['closeReason'] == 'TP'
    assert payload['statistics']['profitFactor'] == "Infinity"
    assert len(payload['equityCurve']) == 100


def test_equity_points_serialise_with_camel_case_keys():
    bars = _take_profit_scenario()
    result = BacktestEngine().run(
        bars, _empty_graph(), _no_costs(),
        entry_overrides=[EntryOverride(10, 'BUY', risk=_bracket())],
    )

    point = result.to_dict()['equityCurve'][0]
    assert set(point) == {'barIndex', 'time', 'balance', 'equity'}
    assert point['barIndex'] == 0
    assert point['time'] == bars.time[0]
