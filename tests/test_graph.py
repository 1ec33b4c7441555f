"""Tests for the strategy graph document model."""

import json

import pytest

from engine.errors import GraphValidationError
from strategies.graph import (
    CURRENT_VERSION,
    IndicatorNode,
    StopLossNode,
    StrategyGraph,
    UnsupportedNode,
)


def _document():
    return {
        "version": "1.3",
        "nodes": [
            {
                "id": "rsi-1",
                "type": "rsi",
                "position": {"x": 10, "y": 20},
                "data": {"label": "RSI", "period": 14, "overboughtLevel": 75, "customFlag": True},
            },
            {"id": "sl-1", "type": "stop-loss", "data": {"method": "FIXED_PIPS", "fixedPips": 25}},
            {"id": "mystery", "type": "neural-forecast", "data": {"layers": 3}},
        ],
        "edges": [{"id": "e1", "source": "rsi-1", "target": "sl-1", "sourceHandle": "out"}],
        "settings": {"maxOpenTrades": 2, "conditionMode": "OR"},
        "metadata": {"name": "RSI test"},
    }


def test_nodes_parse_into_typed_models():
    graph = StrategyGraph.from_dict(_document())

    rsi, stop, mystery = graph.nodes
    assert isinstance(rsi, IndicatorNode)
    assert rsi.data.period == 14
    assert rsi.data.overbought_level == 75
    assert isinstance(stop, StopLossNode)
    assert stop.data.fixed_pips == 25
    assert isinstance(mystery, UnsupportedNode)
    assert graph.settings.max_open_trades == 2
    assert graph.settings.condition_mode == "OR"


def test_document_round_trips_with_unknown_keys():
    document = _document()
    graph = StrategyGraph.from_dict(document)

    assert graph.to_dict() == document


def test_canonical_json_is_stable():
    graph = StrategyGraph.from_dict(_document())
    text = graph.to_json()

    assert json.loads(text) == _document()
    assert StrategyGraph.from_json(text).to_json() == text


def test_settings_defaults():
    graph = StrategyGraph.from_dict({"version": "1.3", "nodes": [], "edges": []})
    assert graph.settings.max_open_trades == 1
    assert graph.settings.condition_mode == "AND"
    assert graph.settings.allow_hedging is False


def test_unsupported_version_is_rejected():
    with pytest.raises(GraphValidationError, match="version"):
        StrategyGraph.from_dict({"version": "2.0", "nodes": [], "edges": []})


def test_dangling_edge_is_rejected():
    document = _document()
    document["edges"].append({"id": "e2", "source": "rsi-1", "target": "missing"})

    with pytest.raises(GraphValidationError) as exc_info:
        StrategyGraph.from_dict(document)

    assert any("missing" in issue.message for issue in exc_info.value.issues)


def test_duplicate_node_ids_are_rejected():
    document = _document()
    document["nodes"].append({"id": "rsi-1", "type": "atr", "data": {}})

    with pytest.raises(GraphValidationError):
        StrategyGraph.from_dict(document)


def test_invalid_node_parameters_are_rejected():
    document = _document()
    document["nodes"][0]["data"]["period"] = 0

    with pytest.raises(GraphValidationError) as exc_info:
        StrategyGraph.from_dict(document)

    assert exc_info.value.issues


def test_ema_crossover_requires_fast_below_slow():
    document = {
        "version": "1.3",
        "nodes": [{"id": "ema", "type": "ema-crossover-entry", "data": {"fastEma": 50, "slowEma": 20}}],
        "edges": [],
    }
    with pytest.raises(GraphValidationError):
        StrategyGraph.from_dict(document)


def test_invalid_json_is_rejected():
    with pytest.raises(GraphValidationError, match="not valid JSON"):
        StrategyGraph.from_json("{nodes: [")
    with pytest.raises(GraphValidationError):
        StrategyGraph.from_json("[1, 2]")


def test_old_documents_upgrade_to_current_version():
    graph = StrategyGraph.from_dict({"version": "1.0", "nodes": [], "edges": []})

    upgraded = graph.upgraded()

    assert upgraded.version == CURRENT_VERSION
    assert upgraded.to_dict()["settings"]["conditionMode"] == "AND"


def test_lookups():
    graph = StrategyGraph.from_dict(_document())

    assert graph.node("sl-1").type == "stop-loss"
    assert [n.id for n in graph.nodes_of_type("rsi", "atr")] == ["rsi-1"]
    assert graph.first_of_type("take-profit") is None
    assert [e.id for e in graph.incoming("sl-1")] == ["e1"]
    assert [n.id for n in graph.unsupported_nodes()] == ["mystery"]
    with pytest.raises(KeyError):
        graph.node("nope")
