"""Tests for the timing filters and the filter chain."""

import pandas as pd
import pytest

from strategies.filters import (
    AlwaysFilter,
    CustomTimesFilter,
    FilterContext,
    FilterManager,
    MaxSpreadFilter,
    TradingSession,
    TradingSessionFilter,
    build_filter,
)
from strategies.graph import CustomTimesData, MaxSpreadData, StrategyGraph, TradingSessionData

# 2024-01-01 is a Monday
MONDAY = '2024-01-01'
SATURDAY = '2024-01-06'


def _context(when, spread_points=0.0, bar_index=0):
    return FilterContext(timestamp=pd.Timestamp(when, tz='UTC'), bar_index=bar_index, spread_points=spread_points)


def _session_filter(session, weekdays_only=True):
    data = TradingSessionData.model_validate({'session': session, 'tradeMondayToFriday': weekdays_only})
    return TradingSessionFilter(data)


class _Fixed(AlwaysFilter):
    """Filter with a fixed verdict that counts its calls."""

    def __init__(self, passed):
        super().__init__()
        self.passed = passed
        self.calls = 0

    def check(self, context):
        self.calls += 1
        if self.passed:
            return self._create_pass_result()
        return self._create_fail_result("fixed rejection")


def test_session_start_inclusive_end_exclusive():
    london = TradingSession.named('LONDON')
    assert london.is_active(pd.Timestamp(f'{MONDAY} 08:00', tz='UTC'))
    assert london.is_active(pd.Timestamp(f'{MONDAY} 16:59', tz='UTC'))
    assert not london.is_active(pd.Timestamp(f'{MONDAY} 17:00', tz='UTC'))
    assert not london.is_active(pd.Timestamp(f'{MONDAY} 07:59', tz='UTC'))


@pytest.mark.parametrize("hour,active", [(22, True), (23, True), (0, True), (6, True), (7, False), (12, False)])
def test_sydney_session_wraps_midnight(hour, active):
    sydney = TradingSession.named('SYDNEY')
    assert sydney.is_active(pd.Timestamp(f'{MONDAY} {hour:02d}:30', tz='UTC')) is active


def test_unknown_session_name():
    with pytest.raises(ValueError):
        TradingSession.named('FRANKFURT')


def test_trading_session_filter():
    overlap = _session_filter('LONDON_NY_OVERLAP')
    assert overlap.check(_context(f'{MONDAY} 14:00')).passed
    result = overlap.check(_context(f'{MONDAY} 18:00'))
    assert not result.passed
    assert 'LONDON_NY_OVERLAP' in result.reason


def test_trading_session_filter_blocks_weekends():
    tokyo = _session_filter('TOKYO')
    assert not tokyo.check(_context(f'{SATURDAY} 03:00')).passed
    assert _session_filter('TOKYO', weekdays_only=False).check(_context(f'{SATURDAY} 03:00')).passed


def test_custom_times_days_and_slots():
    data = CustomTimesData.model_validate({
        'days': {'monday': True, 'tuesday': True},
        'timeSlots': [
            {'startHour': 9, 'startMinute': 30, 'endHour': 11, 'endMinute': 0},
            {'startHour': 23, 'endHour': 1},
        ],
    })
    flt = CustomTimesFilter(data)

    assert flt.check(_context(f'{MONDAY} 09:30')).passed
    assert not flt.check(_context(f'{MONDAY} 11:00')).passed
    assert flt.check(_context(f'{MONDAY} 23:15')).passed
    assert flt.check(_context('2024-01-02 00:30')).passed
    assert not flt.check(_context('2024-01-03 10:00')).passed


def test_custom_times_without_slots_allows_whole_day():
    flt = CustomTimesFilter(CustomTimesData.model_validate({'days': {'saturday': True}}))
    assert flt.check(_context(f'{SATURDAY} 00:00')).passed
    assert flt.check(_context(f'{SATURDAY} 23:59')).passed


def test_custom_times_without_days_blocks_everything():
    flt = CustomTimesFilter(CustomTimesData())
    assert not flt.check(_context(f'{MONDAY} 12:00')).passed


def test_max_spread_filter():
    flt = MaxSpreadFilter(MaxSpreadData.model_validate({'maxSpreadPips': 20}))
    assert flt.check(_context(MONDAY, spread_points=20)).passed
    assert not flt.check(_context(MONDAY, spread_points=20.5)).passed


def test_and_mode_short_circuits_on_first_failure():
    failing, later = _Fixed(False), _Fixed(True)
    manager = FilterManager([AlwaysFilter(), failing, later], mode='AND')

    result = manager.apply_filters(_context(MONDAY))

    assert not result.passed
    assert result.reason == "fixed rejection"
    assert later.calls == 0
    assert manager.failure_counts() == {'_Fixed': 1}


def test_or_mode_needs_one_passing_filter():
    assert FilterManager([_Fixed(False), _Fixed(True)], mode='OR').apply_filters(_context(MONDAY)).passed
    assert not FilterManager([_Fixed(False), _Fixed(False)], mode='OR').apply_filters(_context(MONDAY)).passed


def test_empty_chain_passes():
    assert FilterManager().apply_filters(_context(MONDAY)).passed


def test_filters_built_from_graph_nodes():
    graph = StrategyGraph.from_dict({
        'version': '1.3',
        'nodes': [
            {'id': 't1', 'type': 'trading-session', 'data': {'session': 'NEW_YORK'}},
            {'id': 't2', 'type': 'max-spread', 'data': {'maxSpreadPips': 5}},
            {'id': 'r', 'type': 'rsi', 'data': {}},
        ],
        'edges': [],
    })
    manager = FilterManager.from_nodes(graph.nodes_of_type('trading-session', 'max-spread'))

    assert [f.name for f in manager.filters] == ['TradingSessionFilter', 'MaxSpreadFilter']
    assert manager.apply_filters(_context(f'{MONDAY} 15:00', spread_points=3)).passed
    assert not manager.apply_filters(_context(f'{MONDAY} 15:00', spread_points=8)).passed
    with pytest.raises(ValueError):
        build_filter(graph.node('r'))
