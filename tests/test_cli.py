"""Tests for the command-line backtest runner."""

import importlib.util
import json
from pathlib import Path

import pytest

SCRIPT = Path(__file__).resolve().parent.parent / "scripts" / "run_backtest.py"


@pytest.fixture(scope="module")
def cli():
    spec = importlib.util.spec_from_file_location("run_backtest", SCRIPT)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def _write_inputs(tmp_path, rows=150):
    lines = ["Date,Open,High,Low,Close,Volume"]
    for i in range(rows):
        day, hour = divmod(i, 24)
        price = 1.1 + 0.0001 * (i % 7)
        lines.append(f"2024-01-{day + 1:02d} {hour:02d}:00,{price:.5f},{price + 0.0005:.5f},{price - 0.0005:.5f},{price:.5f},100")
    data = tmp_path / "bars.csv"
    data.write_text("\n".join(lines) + "\n", encoding='utf-8')
    strategy = tmp_path / "strategy.json"
    strategy.write_text(json.dumps({'version': '1.3', 'nodes': [], 'edges': []}), encoding='utf-8')
    return data, strategy


def test_writes_result_json(cli, tmp_path, capsys):
    data, strategy = _write_inputs(tmp_path)
    output = tmp_path / "out" / "result.json"

    code = cli.main([
        '--data', str(data), '--strategy', str(strategy),
        '--monte-carlo', '25', '--seed', '3', '--walk-forward', '--output', str(output),
    ])

    assert code == 0
    payload = json.loads(output.read_text(encoding='utf-8'))
    assert payload['barsProcessed'] == 150
    assert payload['monteCarlo']['simulations'] == 0
    assert 'windows' in payload['walkForward']
    assert 'BACKTEST RESULTS' in capsys.readouterr().out


def test_config_file_is_applied(cli, tmp_path):
    data, strategy = _write_inputs(tmp_path)
    config = tmp_path / "run.yaml"
    config.write_text("backtest:\n  initialBalance: 2500\n  symbol: GBPUSD\n", encoding='utf-8')
    output = tmp_path / "result.json"

    assert cli.main(['--data', str(data), '--strategy', str(strategy), '--config', str(config), '--output', str(output)]) == 0

    payload = json.loads(output.read_text(encoding='utf-8'))
    assert payload['initialBalance'] == 2500.0
    assert payload['symbol'] == 'GBPUSD'


def test_missing_data_file(cli, tmp_path, capsys):
    _, strategy = _write_inputs(tmp_path)
    assert cli.main(['--data', str(tmp_path / 'nope.csv'), '--strategy', str(strategy)]) == 1
    assert "File not found" in capsys.readouterr().out


def test_invalid_strategy_document(cli, tmp_path, capsys):
    data, strategy = _write_inputs(tmp_path)
    strategy.write_text("{not json", encoding='utf-8')
    assert cli.main(['--data', str(data), '--strategy', str(strategy)]) == 1
    assert "not valid JSON" in capsys.readouterr().out
