"""Tests for the background backtest host."""

import time

import numpy as np
import pytest

from config.schema import MonteCarloConfig
from engine import host as host_module
from engine.bars import BarArray
from engine.errors import BacktestCancelled
from engine.host import (
    BacktestHost,
    BacktestRequest,
    CancellationToken,
    CancelledMessage,
    ErrorMessage,
    ProgressMessage,
    ResultMessage,
)

START_MS = 1704067200000
HOUR_MS = 3_600_000
TIMEOUT = 30


def _bars(n=50, invert_at=None):
    close = np.full(n, 1.1)
    high = close + 0.0005
    low = close - 0.0005
    if invert_at is not None:
        high[invert_at], low[invert_at] = low[invert_at], high[invert_at]
    return BarArray(time=[START_MS + i * HOUR_MS for i in range(n)], open=close, high=high, low=low, close=close)


def _graph():
    return {'version': '1.3', 'nodes': [], 'edges': []}


def test_cancellation_token():
    token = CancellationToken()
    assert not token.is_cancelled()
    token.cancel()
    assert token.is_cancelled()


def test_successful_job_reports_progress_then_result():
    host = BacktestHost()
    job_id = host.submit(BacktestRequest(_bars(), _graph()))

    messages = list(host.messages(job_id, timeout=TIMEOUT))

    progress = [m for m in messages if isinstance(m, ProgressMessage)]
    assert isinstance(messages[-1], ResultMessage)
    assert progress[-1].percent == 100
    assert progress[-1].bars_processed == progress[-1].total_bars == 50
    assert [p.percent for p in progress] == sorted(p.percent for p in progress)
    assert messages[-1].result.bars_processed == 50
    assert messages[-1].monte_carlo is None
    assert host.wait(job_id, TIMEOUT) is messages[-1]


def test_monte_carlo_runs_after_backtest():
    host = BacktestHost()
    request = BacktestRequest(_bars(), _graph(), monte_carlo=MonteCarloConfig(simulations=10, seed=1))

    outcome = host.wait(host.submit(request), TIMEOUT)

    assert isinstance(outcome, ResultMessage)
    # no trades, so there is nothing to permute
    assert outcome.monte_carlo.simulations == 0
    assert outcome.monte_carlo.median_final_balance == outcome.result.initial_balance


def test_empty_bars_are_a_validation_error():
    host = BacktestHost()
    outcome = host.wait(host.submit(BacktestRequest(_bars(0), _graph())), TIMEOUT)

    assert isinstance(outcome, ErrorMessage)
    assert outcome.kind == "validation"
    assert "no valid bars parsed" in outcome.message


def test_invalid_config_is_a_validation_error():
    host = BacktestHost()
    outcome = host.wait(host.submit(BacktestRequest(_bars(), _graph(), {'spread': -1})), TIMEOUT)

    assert outcome.kind == "validation"
    assert any(issue.startswith("spread") for issue in outcome.issues)


def test_invalid_graph_is_a_validation_error():
    host = BacktestHost()
    graph = {'version': '9.9', 'nodes': [], 'edges': []}
    outcome = host.wait(host.submit(BacktestRequest(_bars(), graph)), TIMEOUT)

    assert outcome.kind == "validation"
    assert "version" in outcome.message


def test_corrupt_bar_is_an_invariant_error():
    host = BacktestHost()
    outcome = host.wait(host.submit(BacktestRequest(_bars(invert_at=3), _graph())), TIMEOUT)

    assert outcome.kind == "invariant"
    assert "bar 3" in outcome.message


class _BlockingEngine:
    """Engine stand-in that runs until its job is cancelled."""

    def run(self, bars, graph, config, progress_callback=None, cancel_token=None):
        progress_callback(1, 7, len(bars))
        while not cancel_token.is_cancelled():
            time.sleep(0.01)
        raise BacktestCancelled(7)


def test_cancel_ends_job_with_cancelled_message(monkeypatch):
    monkeypatch.setattr(host_module, 'BacktestEngine', _BlockingEngine)
    host = BacktestHost()
    job_id = host.submit(BacktestRequest(_bars(), _graph()))
    messages = host.messages(job_id, timeout=TIMEOUT)

    first = next(messages)
    host.cancel(job_id)
    rest = list(messages)

    assert isinstance(first, ProgressMessage)
    assert rest == [CancelledMessage(job_id, 7)]
    assert host.wait(job_id, TIMEOUT) == CancelledMessage(job_id, 7)


def test_unknown_job_id():
    with pytest.raises(KeyError):
        BacktestHost().cancel('missing')


def test_forget_releases_finished_jobs():
    host = BacktestHost()
    job_id = host.submit(BacktestRequest(_bars(), _graph()))
    outcome = host.wait(job_id, TIMEOUT)

    assert host.forget(job_id) is outcome
    with pytest.raises(KeyError):
        host.wait(job_id, TIMEOUT)
    with pytest.raises(KeyError):
        host.forget(job_id)


def test_running_job_cannot_be_forgotten(monkeypatch):
    monkeypatch.setattr(host_module, 'BacktestEngine', _BlockingEngine)
    host = BacktestHost()
    job_id = host.submit(BacktestRequest(_bars(), _graph()))
    next(host.messages(job_id, timeout=TIMEOUT))

    with pytest.raises(ValueError, match="still running"):
        host.forget(job_id)

    host.cancel(job_id)
    assert host.wait(job_id, TIMEOUT) == CancelledMessage(job_id, 7)
    assert host.forget(job_id) == CancelledMessage(job_id, 7)
