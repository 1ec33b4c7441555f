"""Strategy graph documents and their bar-by-bar interpretation."""

from strategies.graph import (
    CURRENT_VERSION,
    SUPPORTED_VERSIONS,
    Edge,
    GraphSettings,
    Node,
    StrategyGraph,
    UnsupportedNode,
)
from strategies.signals import EntrySignal, NO_SIGNAL
from strategies.entry_strategies import EntryStrategy, build_entry_strategy
from strategies.interpreter import SignalSet, StrategyInterpreter

__all__ = [
    'CURRENT_VERSION',
    'SUPPORTED_VERSIONS',
    'Edge',
    'GraphSettings',
    'Node',
    'StrategyGraph',
    'UnsupportedNode',
    'EntrySignal',
    'NO_SIGNAL',
    'EntryStrategy',
    'build_entry_strategy',
    'SignalSet',
    'StrategyInterpreter',
]
