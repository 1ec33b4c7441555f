"""Tests for the broker model, instrument spec and account state."""

from types import SimpleNamespace

import pytest

from config.schema import BacktestConfig
from engine.account import AccountState
from engine.broker import BUY, SELL, BrokerModel, RiskRequest
from engine.errors import InvariantViolationError
from engine.market import InstrumentSpec
from engine.trade_management import ExitResolver, ExitType


def _broker(**spec_overrides):
    params = {'digits': 5, 'point_value': 1.0, 'spread_points': 10.0, 'commission_per_lot': 3.5}
    params.update(spec_overrides)
    return BrokerModel(spec=InstrumentSpec(**params))


def test_entry_and_exit_quotes_use_half_spread():
    broker = _broker()
    assert broker.entry_price(BUY, 1.1) == pytest.approx(1.10005)
    assert broker.entry_price(SELL, 1.1) == pytest.approx(1.09995)
    assert broker.exit_quote(BUY, 1.1) == pytest.approx(1.09995)
    assert broker.exit_quote(SELL, 1.1) == pytest.approx(1.10005)


def test_stop_loss_modes():
    broker = _broker()
    assert broker.stop_loss_price(BUY, 1.1, RiskRequest()) == 0.0
    assert broker.stop_loss_price(BUY, 1.1, RiskRequest(sl_mode='DISTANCE', sl_value=0.002)) == pytest.approx(1.098)
    assert broker.stop_loss_price(SELL, 1.1, RiskRequest(sl_mode='PERCENT', sl_value=1.0)) == pytest.approx(1.111)
    assert broker.stop_loss_price(BUY, 1.1, RiskRequest(sl_mode='LEVEL', sl_value=1.095)) == pytest.approx(1.095)


def test_level_stop_on_wrong_side_falls_back_to_default_distance():
    broker = _broker()
    request = RiskRequest(sl_mode='LEVEL', sl_value=1.11)
    assert broker.stop_loss_price(BUY, 1.1, request) == pytest.approx(1.0995)


def test_take_profit_modes():
    broker = _broker()
    rr = RiskRequest(tp_mode='RISK_REWARD', tp_value=2.0)
    assert broker.take_profit_price(BUY, 1.1, 1.098, rr) == pytest.approx(1.104)
    # no stop, so the target collapses onto the entry
    assert broker.take_profit_price(BUY, 1.1, 0.0, rr) == pytest.approx(1.1)
    distance = RiskRequest(tp_mode='DISTANCE', tp_value=0.001)
    assert broker.take_profit_price(SELL, 1.1, 0.0, distance) == pytest.approx(1.099)
    assert broker.take_profit_price(BUY, 1.1, 1.098, RiskRequest()) == 0.0


def test_stop_distance_points():
    broker = _broker()
    assert broker.stop_distance_points(1.1, 1.098) == pytest.approx(200.0)
    assert broker.stop_distance_points(1.1, 0.0) == 50.0


def test_check_sl_tp_uses_bid_for_longs_and_ask_for_shorts():
    broker = _broker()
    # long closes on the bid: low - half spread reaches the stop
    assert broker.check_sl_tp(BUY, 1.098, 1.104, 1.1, 1.09804) == (True, False)
    assert broker.check_sl_tp(BUY, 1.098, 1.104, 1.1, 1.09806) == (False, False)
    # short closes on the ask: high + half spread reaches the stop
    assert broker.check_sl_tp(SELL, 1.102, 1.096, 1.10196, 1.099) == (True, False)
    assert broker.check_sl_tp(SELL, 0.0, 1.096, 1.2, 1.09594) == (False, True)


def test_exit_resolver_prefers_stop_loss():
    broker = _broker()
    position = SimpleNamespace(direction=BUY, stop_loss=1.098, take_profit=1.104)

    exits = ExitResolver.candidates(broker, position, high=1.105, low=1.097)
    chosen = ExitResolver.resolve(exits)

    assert {e.exit_type for e in exits} == {ExitType.STOP_LOSS, ExitType.TAKE_PROFIT}
    assert chosen.exit_type == ExitType.STOP_LOSS
    assert chosen.exit_price == 1.098
    assert ExitResolver.resolve([]) is None


def test_profit_and_commission():
    broker = _broker()
    assert broker.gross_profit(BUY, 1.1, 1.102, 1.0) == pytest.approx(200.0)
    assert broker.gross_profit(SELL, 1.1, 1.102, 1.0) == pytest.approx(-200.0)
    assert broker.commission(0.5) == pytest.approx(3.5)
    assert broker.realized_profit(BUY, 1.1, 1.102, 0.5) == pytest.approx(96.5)
    assert broker.unrealized_profit(BUY, 1.1, 1.101, 1.0) == pytest.approx(95.0)
    assert broker.profit_points(SELL, 1.1, 1.099) == pytest.approx(100.0)


def test_swap_per_direction():
    broker = _broker(swap_long=-2.0, swap_short=0.5)
    assert broker.swap(BUY, 0.5) == pytest.approx(-1.0)
    assert broker.swap(SELL, 2.0) == pytest.approx(1.0)


def test_risk_percent_sizing():
    broker = _broker()
    request = RiskRequest(sizing='RISK_PERCENT', risk_percent=1.0)
    assert broker.lot_size(10000.0, 200.0, request) == pytest.approx(0.5)

    capped = RiskRequest(sizing='RISK_PERCENT', risk_percent=1.0, max_lot=0.3)
    assert broker.lot_size(10000.0, 200.0, capped) == pytest.approx(0.3)

    tiny = RiskRequest(sizing='RISK_PERCENT', risk_percent=0.01)
    assert broker.lot_size(100.0, 200.0, tiny) == pytest.approx(0.01)


def test_risk_percent_exact_multiple_is_not_floored_down():
    broker = _broker()
    request = RiskRequest(sizing='RISK_PERCENT', risk_percent=0.29)
    assert broker.lot_size(10000.0, 100.0, request) == pytest.approx(0.29)


def test_fixed_and_default_sizing():
    broker = _broker()
    assert broker.lot_size(10000.0, 50.0, RiskRequest(sizing='FIXED_LOT', fixed_lot=0.25)) == 0.25
    assert broker.lot_size(10000.0, 50.0, RiskRequest(sizing='FIXED_LOT', fixed_lot=500.0)) == 100.0
    assert broker.lot_size(10000.0, 50.0, RiskRequest(sizing='FIXED_LOT', fixed_lot=0.001)) == 0.01
    assert broker.lot_size(10000.0, 50.0, RiskRequest()) == 0.01


def test_requotes_are_seeded():
    first = BrokerModel(spec=InstrumentSpec(), requote_rate=0.3, seed=42)
    second = BrokerModel(spec=InstrumentSpec(), requote_rate=0.3, seed=42)

    assert [first.is_requoted() for _ in range(50)] == [second.is_requoted() for _ in range(50)]
    never = BrokerModel(spec=InstrumentSpec(), requote_rate=0.0, seed=42)
    assert not any(never.is_requoted() for _ in range(50))


def test_instrument_spec_from_config():
    spec = InstrumentSpec.from_config(BacktestConfig(symbol='GBPUSD', spread=12, commission=2.0))
    assert spec.symbol == 'GBPUSD'
    assert spec.point == pytest.approx(1e-5)
    assert spec.spread_price == pytest.approx(12e-5)
    assert spec.commission_per_lot == 2.0


def test_jpy_point_value_adjustment_is_reported():
    warnings = []
    spec = InstrumentSpec.from_config(BacktestConfig(symbol='USDJPY', digits=3), warnings)

    assert spec.point_value == 100.0
    assert len(warnings) == 1
    assert "JPY" in warnings[0]

    explicit = InstrumentSpec.from_config(BacktestConfig(digits=3, point_value=0.7), warnings)
    assert explicit.point_value == 0.7
    assert len(warnings) == 1


def test_account_tracks_peak_and_drawdown():
    account = AccountState(initial_balance=1000.0)
    account.mark(0, 0, 0.0)
    account.apply_realized(100.0, commission=2.0)
    account.mark(1, 60_000, 0.0)
    point = account.mark(2, 120_000, -220.0)

    assert point.equity == pytest.approx(880.0)
    assert account.peak_equity == pytest.approx(1100.0)
    assert account.max_drawdown == pytest.approx(220.0)
    assert account.max_drawdown_percent == pytest.approx(20.0)
    assert account.current_drawdown_percent() == pytest.approx(20.0)
    assert account.commission_paid == 2.0
    assert [p.bar_index for p in account.equity_curve] == [0, 1, 2]


def test_account_drawdown_percent_is_sticky():
    account = AccountState(initial_balance=1000.0)
    account.mark(0, 0, -100.0)
    account.mark(1, 1, 0.0)

    assert account.current_drawdown_percent() == 0.0
    assert account.max_drawdown_percent == pytest.approx(10.0)


def test_account_swap_booking():
    account = AccountState(initial_balance=1000.0)
    account.apply_swap(-5.0)
    assert account.balance == pytest.approx(995.0)
    assert account.swap_paid == pytest.approx(-5.0)


def test_account_rejects_non_finite_balance():
    account = AccountState(initial_balance=1000.0)
    with pytest.raises(InvariantViolationError) as exc_info:
        account.apply_realized(float('inf'), bar_index=7)
    assert exc_info.value.bar_index == 7

    with pytest.raises(InvariantViolationError):
        AccountState(initial_balance=1000.0).mark(0, 0, float('nan'))
