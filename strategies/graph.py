"""Strategy graph document model.

A strategy is a versioned JSON document produced by the visual builder:

    {version, nodes[], edges[], settings, metadata, viewport}

Each node is ``{id, type, position, data}``. The node set is closed: every
``type`` the engine understands maps to one model below through a tagged
union, and anything else parses as an ``UnsupportedNode`` that is kept
verbatim (so the document still round-trips) and reported as a warning by
the interpreter. Keys the models do not declare are preserved as extras.
"""

import json
import logging
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Discriminator,
    Field,
    Tag,
    ValidationError,
    model_validator,
)
from pydantic.alias_generators import to_camel

from engine.errors import GraphValidationError, ValidationIssue

logger = logging.getLogger(__name__)

SUPPORTED_VERSIONS = ("1.0", "1.1", "1.2", "1.3")
CURRENT_VERSION = "1.3"

TIMING_TYPES = ("always", "custom-times", "trading-session", "max-spread")
INDICATOR_NODE_TYPES = (
    "moving-average", "rsi", "macd", "bollinger-bands", "atr", "adx",
    "stochastic", "cci", "ichimoku", "obv", "bb-squeeze", "vwap",
)
ENTRY_STRATEGY_TYPES = (
    "ema-crossover-entry", "range-breakout-entry", "rsi-reversal-entry",
    "trend-pullback-entry", "macd-crossover-entry",
)
TRADE_MANAGEMENT_TYPES = (
    "breakeven-stop", "trailing-stop", "partial-close", "lock-profit", "time-exit",
)

Timeframe = Literal["M1", "M5", "M15", "M30", "H1", "H4", "D1", "W1", "MN1"]
ConditionType = Literal[
    "GREATER_THAN", "LESS_THAN", "GREATER_EQUAL", "LESS_EQUAL", "EQUAL",
    "CROSSES_ABOVE", "CROSSES_BELOW",
]


class _GraphModel(BaseModel):
    """camelCase document keys, unknown keys kept."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra='allow',
    )


# ============================================================================
# Node data
# ============================================================================

class NodeData(_GraphModel):
    """Fields shared by every node's ``data`` block.

    Attributes:
        label: Display name
        category: Builder palette category
        optimizable_fields: Parameter names flagged for sweeping
    """
    label: Optional[str] = None
    category: Optional[str] = None
    optimizable_fields: Optional[List[str]] = None


class TimeSlot(_GraphModel):
    start_hour: int = Field(default=0, ge=0, le=23)
    start_minute: int = Field(default=0, ge=0, le=59)
    end_hour: int = Field(default=0, ge=0, le=23)
    end_minute: int = Field(default=0, ge=0, le=59)


class AlwaysData(NodeData):
    pass


class CustomTimesData(NodeData):
    days: Dict[str, bool] = Field(default_factory=dict)
    time_slots: List[TimeSlot] = Field(default_factory=list)
    use_server_time: Optional[bool] = None


class TradingSessionData(NodeData):
    session: Literal["LONDON", "NEW_YORK", "TOKYO", "SYDNEY", "LONDON_NY_OVERLAP"] = "LONDON"
    trade_monday_to_friday: bool = True


class MaxSpreadData(NodeData):
    max_spread_pips: float = Field(default=30.0, ge=0.0)


class IndicatorData(NodeData):
    """Parameters of an indicator node; unset values use the registry defaults."""
    timeframe: Optional[Timeframe] = None
    signal_mode: Optional[str] = None
    filter_role: Optional[str] = Field(default=None, alias='_filterRole')
    period: Optional[int] = Field(default=None, ge=1)
    method: Optional[Literal["SMA", "EMA", "SMMA", "LWMA"]] = None
    applied_price: Optional[
        Literal["CLOSE", "OPEN", "HIGH", "LOW", "MEDIAN", "TYPICAL", "WEIGHTED"]
    ] = None
    deviation: Optional[float] = Field(default=None, gt=0.0)
    fast_period: Optional[int] = Field(default=None, ge=1)
    slow_period: Optional[int] = Field(default=None, ge=1)
    signal_period: Optional[int] = Field(default=None, ge=1)
    k_period: Optional[int] = Field(default=None, ge=1)
    d_period: Optional[int] = Field(default=None, ge=1)
    slowing: Optional[int] = Field(default=None, ge=1)
    ma_method: Optional[Literal["SMA", "EMA", "SMMA", "LWMA"]] = None
    tenkan_period: Optional[int] = Field(default=None, ge=1)
    kijun_period: Optional[int] = Field(default=None, ge=1)
    senkou_b_period: Optional[int] = Field(default=None, ge=1)
    bb_period: Optional[int] = Field(default=None, ge=1)
    bb_deviation: Optional[float] = Field(default=None, gt=0.0)
    kc_period: Optional[int] = Field(default=None, ge=1)
    kc_multiplier: Optional[float] = Field(default=None, gt=0.0)
    overbought_level: Optional[float] = None
    oversold_level: Optional[float] = None
    trend_level: Optional[float] = None

    def indicator_params(self) -> Dict[str, Any]:
        """camelCase parameter dict for the indicator registry."""
        return self.model_dump(by_alias=True, exclude_none=True)


class ConditionData(NodeData):
    condition_type: ConditionType = "GREATER_THAN"
    threshold: float = 0.0


class CandlestickPatternData(NodeData):
    timeframe: Optional[Timeframe] = None
    patterns: List[Literal[
        "ENGULFING_BULLISH", "ENGULFING_BEARISH", "DOJI", "HAMMER", "SHOOTING_STAR",
        "MORNING_STAR", "EVENING_STAR", "THREE_WHITE_SOLDIERS", "THREE_BLACK_CROWS",
        "HARAMI_BULLISH", "HARAMI_BEARISH",
    ]] = Field(default_factory=list)
    min_body_size: float = Field(default=5.0, ge=0.0)


class RangeBreakoutData(NodeData):
    timeframe: Optional[Timeframe] = None
    range_type: Literal["PREVIOUS_CANDLES", "SESSION", "TIME_WINDOW"] = "PREVIOUS_CANDLES"
    lookback_candles: int = Field(default=20, ge=1)
    range_session: Literal["ASIAN", "LONDON", "NEW_YORK", "CUSTOM"] = "ASIAN"
    session_start_hour: int = Field(default=0, ge=0, le=23)
    session_start_minute: int = Field(default=0, ge=0, le=59)
    session_end_hour: int = Field(default=8, ge=0, le=23)
    session_end_minute: int = Field(default=0, ge=0, le=59)
    breakout_direction: Literal["BUY_ON_HIGH", "SELL_ON_LOW", "BOTH"] = "BOTH"
    entry_mode: Literal["IMMEDIATE", "ON_CLOSE", "AFTER_RETEST"] = "ON_CLOSE"
    buffer_pips: float = Field(default=0.0, ge=0.0)
    min_range_pips: float = Field(default=0.0, ge=0.0)
    max_range_pips: float = Field(default=0.0, ge=0.0)


class EntryStrategyData(NodeData):
    """Risk fields shared by every entry-strategy composite.

    Attributes:
        direction: BUY, SELL or BOTH
        risk_percent: Percent of balance risked per trade
        sl_method: PIPS, ATR, PERCENT or RANGE_OPPOSITE (range breakout only)
        tp_r_multiple: Take profit as a multiple of the stop distance
        session_filter: Restrict entries to ``session``
    """
    entry_type: Optional[str] = None
    timeframe: Optional[Timeframe] = None
    direction: Literal["BUY", "SELL", "BOTH"] = "BOTH"
    risk_percent: float = Field(default=1.0, gt=0.0, le=100.0)
    sl_method: Literal["PIPS", "ATR", "PERCENT", "RANGE_OPPOSITE"] = "ATR"
    sl_fixed_pips: float = Field(default=50.0, gt=0.0)
    sl_percent: float = Field(default=1.0, gt=0.0)
    sl_atr_multiplier: float = Field(default=1.5, gt=0.0)
    sl_atr_period: int = Field(default=14, ge=1)
    tp_r_multiple: float = Field(default=2.0, ge=0.0)
    session_filter: bool = False
    session: Literal["LONDON", "NEW_YORK", "TOKYO", "SYDNEY", "LONDON_NY_OVERLAP"] = "LONDON"


class HigherTimeframeFields(_GraphModel):
    """Mixin fields for the optional higher-timeframe EMA trend filter."""
    htf_trend_filter: bool = False
    htf_timeframe: Timeframe = "H4"
    htf_ema: int = Field(default=200, ge=1)


class EMACrossoverEntryData(EntryStrategyData, HigherTimeframeFields):
    applied_price: Literal["CLOSE", "OPEN", "HIGH", "LOW", "MEDIAN", "TYPICAL", "WEIGHTED"] = "CLOSE"
    fast_ema: int = Field(default=50, ge=1)
    slow_ema: int = Field(default=200, ge=1)
    rsi_confirmation: bool = False
    rsi_period: int = Field(default=14, ge=1)
    rsi_long_max: float = 70.0
    rsi_short_min: float = 30.0
    min_ema_separation: float = Field(default=0.0, ge=0.0)

    @model_validator(mode='after')
    def check_periods(self):
        if self.fast_ema >= self.slow_ema:
            raise ValueError(f"fastEma ({self.fast_ema}) must be below slowEma ({self.slow_ema})")
        return self


class RangeBreakoutEntryData(EntryStrategyData):
    range_method: Literal["CANDLES", "CUSTOM_TIME"] = "CUSTOM_TIME"
    range_period: int = Field(default=20, ge=1)
    range_timeframe: Optional[Timeframe] = None
    custom_start_hour: int = Field(default=0, ge=0, le=23)
    custom_start_minute: int = Field(default=0, ge=0, le=59)
    custom_end_hour: int = Field(default=8, ge=0, le=23)
    custom_end_minute: int = Field(default=0, ge=0, le=59)
    breakout_entry: Literal["CANDLE_CLOSE", "CURRENT_PRICE"] = "CANDLE_CLOSE"
    buffer_pips: float = Field(default=2.0, ge=0.0)
    min_range_pips: float = Field(default=0.0, ge=0.0)
    max_range_pips: float = Field(default=0.0, ge=0.0)
    cancel_opposite: bool = True
    close_at_time: bool = False
    close_at_hour: int = Field(default=17, ge=0, le=23)
    close_at_minute: int = Field(default=0, ge=0, le=59)
    volume_confirmation: bool = False
    volume_confirmation_period: int = Field(default=20, ge=1)
    use_server_time: Optional[bool] = None


class RSIReversalEntryData(EntryStrategyData):
    rsi_period: int = Field(default=14, ge=1)
    oversold_level: float = Field(default=30.0, ge=0.0, le=100.0)
    overbought_level: float = Field(default=70.0, ge=0.0, le=100.0)
    trend_filter: bool = False
    trend_ema: int = Field(default=200, ge=1)


class TrendPullbackEntryData(EntryStrategyData):
    trend_ema: int = Field(default=200, ge=1)
    pullback_rsi_period: int = Field(default=14, ge=1)
    rsi_pullback_level: float = Field(default=40.0, ge=0.0, le=100.0)
    pullback_max_distance: float = Field(default=2.0, ge=0.0)
    require_ema_buffer: bool = False
    use_adx_filter: bool = False
    adx_period: int = Field(default=14, ge=1)
    adx_threshold: float = Field(default=25.0, ge=0.0)


class MACDCrossoverEntryData(EntryStrategyData, HigherTimeframeFields):
    macd_fast: int = Field(default=12, ge=1)
    macd_slow: int = Field(default=26, ge=1)
    macd_signal: int = Field(default=9, ge=1)
    macd_signal_type: Literal["SIGNAL_CROSS", "ZERO_CROSS", "HISTOGRAM_SIGN"] = "SIGNAL_CROSS"


class PlaceOrderData(NodeData):
    method: Literal["FIXED_LOT", "RISK_PERCENT"] = "FIXED_LOT"
    fixed_lot: float = Field(default=0.01, gt=0.0)
    risk_percent: float = Field(default=1.0, gt=0.0, le=100.0)
    min_lot: Optional[float] = Field(default=None, gt=0.0)
    max_lot: Optional[float] = Field(default=None, gt=0.0)


class StopLossData(NodeData):
    method: Literal["FIXED_PIPS", "ATR_BASED", "PERCENT", "INDICATOR"] = "FIXED_PIPS"
    fixed_pips: float = Field(default=50.0, ge=0.0)
    atr_multiplier: float = Field(default=1.5, gt=0.0)
    atr_period: int = Field(default=14, ge=1)
    sl_percent: float = Field(default=1.0, gt=0.0)


class TakeProfitData(NodeData):
    method: Literal["FIXED_PIPS", "RISK_REWARD", "ATR_BASED"] = "FIXED_PIPS"
    fixed_pips: float = Field(default=100.0, ge=0.0)
    risk_reward_ratio: float = Field(default=2.0, gt=0.0)
    atr_multiplier: float = Field(default=3.0, gt=0.0)
    atr_period: int = Field(default=14, ge=1)


class BreakevenStopData(NodeData):
    trigger: Literal["PIPS", "ATR", "PERCENTAGE"] = "PIPS"
    trigger_pips: float = Field(default=20.0, ge=0.0)
    trigger_percent: float = Field(default=1.0, ge=0.0)
    trigger_atr_multiplier: float = Field(default=1.0, gt=0.0)
    trigger_atr_period: int = Field(default=14, ge=1)
    lock_pips: float = Field(default=0.0, ge=0.0)


class TrailingStopData(NodeData):
    method: Literal["FIXED_PIPS", "ATR_BASED", "PERCENTAGE"] = "FIXED_PIPS"
    trail_pips: float = Field(default=20.0, ge=0.0)
    trail_atr_multiplier: float = Field(default=1.0, gt=0.0)
    trail_atr_period: int = Field(default=14, ge=1)
    trail_percent: float = Field(default=0.5, ge=0.0)
    start_after_pips: float = Field(default=0.0, ge=0.0)


class PartialCloseData(NodeData):
    trigger_method: Literal["PIPS", "PERCENT"] = "PIPS"
    close_percent: float = Field(default=50.0, ge=1.0, le=100.0)
    trigger_pips: float = Field(default=20.0, ge=0.0)
    trigger_percent: float = Field(default=1.0, ge=0.0)
    move_sl_to_breakeven: bool = Field(default=False, alias='moveSLToBreakeven')


class LockProfitData(NodeData):
    method: Literal["PERCENTAGE", "FIXED_PIPS"] = "PERCENTAGE"
    lock_percent: float = Field(default=50.0, ge=0.0, le=100.0)
    lock_pips: float = Field(default=10.0, ge=0.0)
    check_interval_pips: float = Field(default=10.0, ge=0.0)


class TimeExitData(NodeData):
    exit_after_bars: int = Field(default=10, ge=1)


# ============================================================================
# Nodes
# ============================================================================

class Node(_GraphModel):
    """Graph node; ``position`` and React Flow layout keys are cosmetic."""
    id: str
    type: str
    position: Optional[Dict[str, Any]] = None
    data: NodeData = Field(default_factory=NodeData)

    @property
    def label(self) -> str:
        return self.data.label or self.type


class AlwaysNode(Node):
    type: Literal["always"]
    data: AlwaysData = Field(default_factory=AlwaysData)


class CustomTimesNode(Node):
    type: Literal["custom-times"]
    data: CustomTimesData = Field(default_factory=CustomTimesData)


class TradingSessionNode(Node):
    type: Literal["trading-session"]
    data: TradingSessionData = Field(default_factory=TradingSessionData)


class MaxSpreadNode(Node):
    type: Literal["max-spread"]
    data: MaxSpreadData = Field(default_factory=MaxSpreadData)


class IndicatorNode(Node):
    type: Literal[
        "moving-average", "rsi", "macd", "bollinger-bands", "atr", "adx",
        "stochastic", "cci", "ichimoku", "obv", "bb-squeeze", "vwap",
    ]
    data: IndicatorData = Field(default_factory=IndicatorData)


class ConditionNode(Node):
    type: Literal["condition"]
    data: ConditionData = Field(default_factory=ConditionData)


class CandlestickPatternNode(Node):
    type: Literal["candlestick-pattern"]
    data: CandlestickPatternData = Field(default_factory=CandlestickPatternData)


class RangeBreakoutNode(Node):
    type: Literal["range-breakout"]
    data: RangeBreakoutData = Field(default_factory=RangeBreakoutData)


class EMACrossoverEntryNode(Node):
    type: Literal["ema-crossover-entry"]
    data: EMACrossoverEntryData = Field(default_factory=EMACrossoverEntryData)


class RangeBreakoutEntryNode(Node):
    type: Literal["range-breakout-entry"]
    data: RangeBreakoutEntryData = Field(default_factory=RangeBreakoutEntryData)


class RSIReversalEntryNode(Node):
    type: Literal["rsi-reversal-entry"]
    data: RSIReversalEntryData = Field(default_factory=RSIReversalEntryData)


class TrendPullbackEntryNode(Node):
    type: Literal["trend-pullback-entry"]
    data: TrendPullbackEntryData = Field(default_factory=TrendPullbackEntryData)


class MACDCrossoverEntryNode(Node):
    type: Literal["macd-crossover-entry"]
    data: MACDCrossoverEntryData = Field(default_factory=MACDCrossoverEntryData)


class PlaceOrderNode(Node):
    type: Literal["place-buy", "place-sell"]
    data: PlaceOrderData = Field(default_factory=PlaceOrderData)


class StopLossNode(Node):
    type: Literal["stop-loss"]
    data: StopLossData = Field(default_factory=StopLossData)


class TakeProfitNode(Node):
    type: Literal["take-profit"]
    data: TakeProfitData = Field(default_factory=TakeProfitData)


class BreakevenStopNode(Node):
    type: Literal["breakeven-stop"]
    data: BreakevenStopData = Field(default_factory=BreakevenStopData)


class TrailingStopNode(Node):
    type: Literal["trailing-stop"]
    data: TrailingStopData = Field(default_factory=TrailingStopData)


class PartialCloseNode(Node):
    type: Literal["partial-close"]
    data: PartialCloseData = Field(default_factory=PartialCloseData)


class LockProfitNode(Node):
    type: Literal["lock-profit"]
    data: LockProfitData = Field(default_factory=LockProfitData)


class TimeExitNode(Node):
    type: Literal["time-exit"]
    data: TimeExitData = Field(default_factory=TimeExitData)


class UnsupportedNode(Node):
    """Any node type the engine does not simulate; kept verbatim."""


_NODE_CLASSES: Dict[str, type] = {
    "always": AlwaysNode,
    "custom-times": CustomTimesNode,
    "trading-session": TradingSessionNode,
    "max-spread": MaxSpreadNode,
    "condition": ConditionNode,
    "candlestick-pattern": CandlestickPatternNode,
    "range-breakout": RangeBreakoutNode,
    "ema-crossover-entry": EMACrossoverEntryNode,
    "range-breakout-entry": RangeBreakoutEntryNode,
    "rsi-reversal-entry": RSIReversalEntryNode,
    "trend-pullback-entry": TrendPullbackEntryNode,
    "macd-crossover-entry": MACDCrossoverEntryNode,
    "place-buy": PlaceOrderNode,
    "place-sell": PlaceOrderNode,
    "stop-loss": StopLossNode,
    "take-profit": TakeProfitNode,
    "breakeven-stop": BreakevenStopNode,
    "trailing-stop": TrailingStopNode,
    "partial-close": PartialCloseNode,
    "lock-profit": LockProfitNode,
    "time-exit": TimeExitNode,
}
_NODE_CLASSES.update({t: IndicatorNode for t in INDICATOR_NODE_TYPES})


def _node_tag(value: Any) -> str:
    """Union tag of a raw node dict or a node model."""
    node_type = value.get('type') if isinstance(value, dict) else getattr(value, 'type', None)
    cls = _NODE_CLASSES.get(node_type)
    return cls.__name__ if cls is not None else UnsupportedNode.__name__


AnyNode = Annotated[
    Union[
        Annotated[AlwaysNode, Tag('AlwaysNode')],
        Annotated[CustomTimesNode, Tag('CustomTimesNode')],
        Annotated[TradingSessionNode, Tag('TradingSessionNode')],
        Annotated[MaxSpreadNode, Tag('MaxSpreadNode')],
        Annotated[IndicatorNode, Tag('IndicatorNode')],
        Annotated[ConditionNode, Tag('ConditionNode')],
        Annotated[CandlestickPatternNode, Tag('CandlestickPatternNode')],
        Annotated[RangeBreakoutNode, Tag('RangeBreakoutNode')],
        Annotated[EMACrossoverEntryNode, Tag('EMACrossoverEntryNode')],
        Annotated[RangeBreakoutEntryNode, Tag('RangeBreakoutEntryNode')],
        Annotated[RSIReversalEntryNode, Tag('RSIReversalEntryNode')],
        Annotated[TrendPullbackEntryNode, Tag('TrendPullbackEntryNode')],
        Annotated[MACDCrossoverEntryNode, Tag('MACDCrossoverEntryNode')],
        Annotated[PlaceOrderNode, Tag('PlaceOrderNode')],
        Annotated[StopLossNode, Tag('StopLossNode')],
        Annotated[TakeProfitNode, Tag('TakeProfitNode')],
        Annotated[BreakevenStopNode, Tag('BreakevenStopNode')],
        Annotated[TrailingStopNode, Tag('TrailingStopNode')],
        Annotated[PartialCloseNode, Tag('PartialCloseNode')],
        Annotated[LockProfitNode, Tag('LockProfitNode')],
        Annotated[TimeExitNode, Tag('TimeExitNode')],
        Annotated[UnsupportedNode, Tag('UnsupportedNode')],
    ],
    Discriminator(_node_tag),
]


# ============================================================================
# Document
# ============================================================================

class Edge(_GraphModel):
    id: str
    source: str
    target: str
    source_handle: Optional[str] = None
    target_handle: Optional[str] = None


class GraphSettings(_GraphModel):
    """Global strategy settings.

    Attributes:
        max_open_trades: Concurrent position limit
        allow_hedging: Allow long and short positions at the same time
        condition_mode: How contributing signals combine (AND / OR)
        max_trades_per_day: Daily entry cap, 0 disables it
        min_bars_between_trades: Bars required between entries, 0 disables it
        max_buy_positions / max_sell_positions: Per-direction caps, 0 disables them
        max_daily_loss_percent / max_daily_profit_percent: Daily caps on closed
            P&L as a percent of the initial balance
        max_total_drawdown_percent: Close everything once equity drawdown reaches it
    """
    magic_number: Optional[int] = Field(default=None, ge=1, le=2147483647)
    comment: Optional[str] = None
    max_open_trades: int = Field(default=1, ge=1)
    allow_hedging: bool = False
    condition_mode: Literal["AND", "OR"] = "AND"
    max_trades_per_day: int = Field(default=0, ge=0)
    min_bars_between_trades: int = Field(default=0, ge=0)
    max_buy_positions: int = Field(default=0, ge=0)
    max_sell_positions: int = Field(default=0, ge=0)
    max_daily_loss_percent: float = Field(default=0.0, ge=0.0)
    max_daily_profit_percent: float = Field(default=0.0, ge=0.0)
    max_total_drawdown_percent: float = Field(default=0.0, ge=0.0)


class StrategyGraph(_GraphModel):
    """Versioned strategy document.

    Use the ``from_*`` constructors: they wrap pydantic errors and check edge
    references, raising ``GraphValidationError``.
    """
    version: str = CURRENT_VERSION
    nodes: List[AnyNode] = Field(default_factory=list)
    edges: List[Edge] = Field(default_factory=list)
    settings: GraphSettings = Field(default_factory=GraphSettings)
    metadata: Optional[Dict[str, Any]] = None
    viewport: Optional[Dict[str, Any]] = None

    @classmethod
    def from_dict(cls, document: Dict[str, Any]) -> 'StrategyGraph':
        if not isinstance(document, dict):
            raise GraphValidationError("Strategy document must be a JSON object")
        version = str(document.get('version', CURRENT_VERSION))
        if version not in SUPPORTED_VERSIONS:
            raise GraphValidationError(
                f"Unsupported strategy document version '{version}'",
                [ValidationIssue(f"expected one of {', '.join(SUPPORTED_VERSIONS)}", field='version')],
            )
        try:
            graph = cls.model_validate(document)
        except ValidationError as e:
            issues = [
                ValidationIssue(err['msg'], field='.'.join(str(p) for p in err['loc']))
                for err in e.errors()
            ]
            raise GraphValidationError("Invalid strategy document", issues) from e
        graph.check_edges()
        return graph

    @classmethod
    def from_json(cls, text: Union[str, bytes]) -> 'StrategyGraph':
        try:
            document = json.loads(text)
        except json.JSONDecodeError as e:
            raise GraphValidationError(f"Strategy document is not valid JSON: {e}") from e
        return cls.from_dict(document)

    def to_dict(self) -> Dict[str, Any]:
        """Document form: camelCase keys, only the keys that were present."""
        return self.model_dump(by_alias=True, exclude_unset=True, mode='json')

    def to_json(self) -> str:
        """Canonical JSON (sorted keys, compact separators)."""
        return json.dumps(self.to_dict(), sort_keys=True, separators=(',', ':'), ensure_ascii=False)

    def check_edges(self) -> None:
        """Reject edges that reference node ids missing from the document.

        Raises:
            GraphValidationError: listing every dangling reference
        """
        ids = set()
        issues = []
        for node in self.nodes:
            if node.id in ids:
                issues.append(ValidationIssue(f"duplicate node id '{node.id}'", field='nodes'))
            ids.add(node.id)
        for edge in self.edges:
            for end in ('source', 'target'):
                ref = getattr(edge, end)
                if ref not in ids:
                    issues.append(ValidationIssue(
                        f"edge '{edge.id}' references unknown node '{ref}'", field=f"edges.{end}"
                    ))
        if issues:
            raise GraphValidationError("Invalid strategy graph", issues)

    def upgraded(self) -> 'StrategyGraph':
        """Copy of this document at the current version.

        Documents older than 1.1 predate ``conditionMode``; it is written
        out explicitly as AND, which is how they were always evaluated.
        """
        document = self.to_dict()
        if document.get('version', CURRENT_VERSION) != CURRENT_VERSION:
            settings = document.setdefault('settings', {})
            settings.setdefault('conditionMode', 'AND')
            logger.debug(f"Upgraded strategy document {document.get('version')} -> {CURRENT_VERSION}")
            document['version'] = CURRENT_VERSION
        return StrategyGraph.from_dict(document)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def node(self, node_id: str) -> Node:
        for n in self.nodes:
            if n.id == node_id:
                return n
        raise KeyError(node_id)

    def nodes_of_type(self, *node_types: str) -> List[Node]:
        return [n for n in self.nodes if n.type in node_types]

    def first_of_type(self, node_type: str) -> Optional[Node]:
        nodes = self.nodes_of_type(node_type)
        return nodes[0] if nodes else None

    def incoming(self, node_id: str) -> List[Edge]:
        return [e for e in self.edges if e.target == node_id]

    def unsupported_nodes(self) -> List[Node]:
        return [n for n in self.nodes if isinstance(n, UnsupportedNode)]
