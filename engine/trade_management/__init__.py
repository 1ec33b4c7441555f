"""Trade management module for position exits and stop adjustment."""

from engine.trade_management.manager import ManagementAction, ManagementRules, TradeManagementManager
from engine.trade_management.exit_resolver import ExitResolver, ExitCondition, ExitType

__all__ = [
    'TradeManagementManager',
    'ManagementRules',
    'ManagementAction',
    'ExitResolver',
    'ExitCondition',
    'ExitType',
]
