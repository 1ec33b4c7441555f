"""Bar-by-bar backtesting engine.

This module replays historical bars through a compiled strategy graph:

- Strategies only express intent (enter, close, requested stop/target/size)
- The broker model owns fills, spread, commission and sizing
- The account owns balance, equity and drawdown
- The engine owns sequencing and the position lifecycle

Per bar the engine checks the bar, books the day rollover, manages positions
opened on earlier bars (breakeven, trailing, partial close, lock profit, time
exit, then stop-loss / take-profit), enforces the total drawdown limit, closes
positions on opposite signals, evaluates entries and finally records one
equity point.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence, Union
import logging

from config.schema import BacktestConfig
from engine.account import AccountState, EquityPoint
from engine.bars import BarArray
from engine.broker import BUY, SELL, BrokerModel, RiskRequest
from engine.errors import BacktestCancelled, InputValidationError
from engine.market import InstrumentSpec
from engine.trade_management import ExitResolver, ExitType, TradeManagementManager
from metrics.metrics import BacktestStatistics, calculate_backtest_statistics
from strategies.graph import StrategyGraph
from strategies.interpreter import SignalSet, StrategyInterpreter

logger = logging.getLogger(__name__)

MS_PER_DAY = 86_400_000

ProgressCallback = Callable[[int, int, int], None]


# ============================================================================
# Data Models
# ============================================================================

class PositionState(str, Enum):
    """Position lifecycle: PENDING_ENTRY -> OPEN -> PARTIALLY_CLOSED* -> CLOSED."""
    PENDING_ENTRY = "PENDING_ENTRY"
    OPEN = "OPEN"
    PARTIALLY_CLOSED = "PARTIALLY_CLOSED"
    CLOSED = "CLOSED"


@dataclass(frozen=True)
class PartialExit:
    """Partial close record.

    Attributes:
        bar_index: Bar on which the partial close executed
        time: Bar timestamp (ms)
        price: Close price
        lots: Volume closed
        profit: Realized P&L of the closed volume (after commission)
    """
    bar_index: int
    time: int
    price: float
    lots: float
    profit: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            'barIndex': self.bar_index,
            'time': self.time,
            'price': self.price,
            'lots': self.lots,
            'profit': self.profit,
        }


@dataclass
class Position:
    """Open position owned by the engine.

    ``stop_loss`` and ``take_profit`` are price levels, 0 when unset; trade
    management moves ``stop_loss`` in the position's favour only.
    """
    id: int
    direction: str
    entry_price: float
    lots: float
    stop_loss: float
    take_profit: float
    open_bar: int
    open_time: int
    initial_lots: float = 0.0
    initial_stop: float = 0.0
    state: PositionState = PositionState.PENDING_ENTRY
    partial_close_done: bool = False
    realized_profit: float = 0.0
    commission: float = 0.0
    swap: float = 0.0
    partial_exits: List[PartialExit] = field(default_factory=list)

    def __post_init__(self):
        if not self.initial_lots:
            self.initial_lots = self.lots
        if not self.initial_stop:
            self.initial_stop = self.stop_loss


@dataclass(frozen=True)
class Trade:
    """Closed trade (immutable).

    Attributes:
        id: Position id
        direction: 'BUY' or 'SELL'
        open_time / close_time: Timestamps (ms)
        open_bar / close_bar: Bar indices
        entry_price / exit_price: Fill prices (exit of the final volume)
        lots: Volume at entry
        stop_loss / take_profit: Levels at entry (0 when unset)
        profit: Total realized P&L including partial closes, commission and swap
        commission: Commission paid
        swap: Swap booked while open
        exit_reason: ExitType value of the final close
        partial_exits: Partial closes before the final close
    """
    id: int
    direction: str
    open_time: int
    close_time: int
    open_bar: int
    close_bar: int
    entry_price: float
    exit_price: float
    lots: float
    stop_loss: float
    take_profit: float
    profit: float
    commission: float
    swap: float
    exit_reason: str
    partial_exits: tuple = ()

    @property
    def duration_bars(self) -> int:
        return self.close_bar - self.open_bar

    @property
    def is_win(self) -> bool:
        return self.profit > 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'direction': self.direction,
            'openTime': self.open_time,
            'closeTime': self.close_time,
            'openBarIndex': self.open_bar,
            'closeBarIndex': self.close_bar,
            'openPrice': self.entry_price,
            'closePrice': self.exit_price,
            'lots': self.lots,
            'stopLoss': self.stop_loss,
            'takeProfit': self.take_profit,
            'profit': self.profit,
            'commission': self.commission,
            'swap': self.swap,
            'closeReason': self.exit_reason,
            'partialExits': [p.to_dict() for p in self.partial_exits],
        }


@dataclass(frozen=True)
class EntryOverride:
    """Entry forced at a given bar regardless of strategy signals.

    Used for deterministic scenario tests and randomized-entry studies: all
    other logic (fills, stops, management, exits) is unchanged.
    """
    bar_index: int
    direction: str
    risk: RiskRequest = field(default_factory=RiskRequest)


@dataclass
class BacktestResult:
    """Backtest results container.

    Attributes:
        statistics: Aggregate statistics
        trades: Closed trades in close order
        equity_curve: One point per bar, from bar 0
        warnings: Degraded-but-continuable conditions met during the run
        initial_balance / final_balance: Account balance at start and end
        bars_processed: Number of bars simulated
        warmup_bars: Bars skipped for entry evaluation
        requotes: Orders skipped by requotes
        symbol: Instrument symbol
    """
    statistics: BacktestStatistics
    trades: List[Trade] = field(default_factory=list)
    equity_curve: List[EquityPoint] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    initial_balance: float = 0.0
    final_balance: float = 0.0
    bars_processed: int = 0
    warmup_bars: int = 0
    requotes: int = 0
    symbol: str = ""

    @property
    def net_profit(self) -> float:
        return self.final_balance - self.initial_balance

    def profits(self) -> List[float]:
        """Closed-trade profit sequence (Monte Carlo input)."""
        return [t.profit for t in self.trades]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'symbol': self.symbol,
            'initialBalance': self.initial_balance,
            'finalBalance': self.final_balance,
            'barsProcessed': self.bars_processed,
            'warmupBars': self.warmup_bars,
            'requotes': self.requotes,
            'statistics': self.statistics.to_dict(),
            'trades': [t.to_dict() for t in self.trades],
            'equityCurve': [p.to_dict() for p in self.equity_curve],
            'warnings': list(self.warnings),
        }


def _is_cancelled(cancel_token) -> bool:
    if cancel_token is None:
        return False
    if hasattr(cancel_token, 'is_cancelled'):
        return bool(cancel_token.is_cancelled())
    return bool(cancel_token())


# ============================================================================
# Backtest Engine
# ============================================================================

class BacktestEngine:
    """Bar-by-bar backtesting engine.

    One engine instance runs one backtest at a time and exclusively owns the
    position and trade state of that run. The bars and the strategy graph
    are only read.

    Example:
        engine = BacktestEngine()
        result = engine.run(bars, graph, BacktestConfig(spread=10))
        print(result.statistics.net_profit)
    """

    def __init__(self):
        self.logger = logging.getLogger(__name__)

    def run(
        self,
        bars: BarArray,
        graph: Union[StrategyGraph, Dict[str, Any]],
        config: Union[BacktestConfig, Dict[str, Any], None] = None,
        progress_callback: Optional[ProgressCallback] = None,
        cancel_token=None,
        entry_overrides: Optional[Sequence[EntryOverride]] = None,
    ) -> BacktestResult:
        """
        Run a backtest.

        Args:
            bars: Validated bar arrays
            graph: Strategy document (model or raw dict)
            config: Instrument and account settings (model, dict or None for defaults)
            progress_callback: Called as (percent, bars_processed, total_bars)
                whenever the integer percentage increases
            cancel_token: Object with ``is_cancelled()`` (or a callable),
                polled whenever progress is reported
            entry_overrides: Entries forced at given bars

        Returns:
            BacktestResult

        Raises:
            InputValidationError: empty bars or an invalid graph
            pydantic.ValidationError: invalid config
            InvariantViolationError: corrupted bar or account state
            BacktestCancelled: cancellation observed
        """
        if isinstance(graph, dict):
            graph = StrategyGraph.from_dict(graph)
        if config is None:
            config = BacktestConfig()
        elif isinstance(config, dict):
            config = BacktestConfig.model_validate(config)
        if len(bars) == 0:
            raise InputValidationError("no valid bars parsed")

        run = _BacktestRun(bars, graph, config, progress_callback, cancel_token, entry_overrides or ())
        result = run.execute()
        self.logger.info(
            f"Backtest finished: {len(result.trades)} trades over {result.bars_processed} bars, "
            f"net profit {result.net_profit:.2f}"
        )
        return result


class _BacktestRun:
    """State of a single backtest run."""

    def __init__(
        self,
        bars: BarArray,
        graph: StrategyGraph,
        config: BacktestConfig,
        progress_callback: Optional[ProgressCallback],
        cancel_token,
        entry_overrides: Sequence[EntryOverride],
    ):
        self.bars = bars
        self.config = config
        self.settings = graph.settings
        self.progress_callback = progress_callback
        self.cancel_token = cancel_token
        self.overrides: Dict[int, List[EntryOverride]] = {}
        for override in entry_overrides:
            self.overrides.setdefault(override.bar_index, []).append(override)

        self.warnings: List[str] = []
        self.spec = InstrumentSpec.from_config(config, self.warnings)
        self.broker = BrokerModel(self.spec, requote_rate=config.requote_rate, seed=config.seed)
        self.account = AccountState(initial_balance=config.initial_balance)
        self.manager = TradeManagementManager(self.broker)
        self.interpreter = StrategyInterpreter(graph, bars, self.spec)
        self.warnings.extend(self.interpreter.warnings)

        self.open_positions: List[Position] = []
        self.trades: List[Trade] = []
        self.next_position_id = 1
        self.current_day: Optional[int] = None
        self.trades_today = 0
        self.day_pnl = 0.0
        self.last_entry_bar: Optional[int] = None
        self.requotes = 0
        self.last_percent = 0

    # ------------------------------------------------------------------
    # Main loop
    # ------------------------------------------------------------------

    def execute(self) -> BacktestResult:
        bars = self.bars
        n = len(bars)
        logger.info(
            f"Backtest started: {n} bars, {self.spec.symbol}, warmup {self.interpreter.warmup} bars"
        )
        for i in range(n):
            bars.check_bar(i)
            self._roll_day(i)

            # 1. Manage positions opened on earlier bars
            self._manage_positions(i)

            # 2. Total drawdown limit closes everything and stops new entries
            if self._drawdown_limit_reached():
                self._close_all(i, bars.close[i], ExitType.RISK_MGMT)
            else:
                signals = self.interpreter.evaluate(i)
                # 3. Opposite signals close positions
                self._process_exit_signals(i, signals)
                # 4. Entries
                self._process_entries(i, signals)

            # 5. Remaining positions are closed on the final bar
            if i == n - 1 and self.open_positions:
                self._close_all(i, bars.close[i], ExitType.MANUAL)

            # 6. Equity
            self.account.mark(i, int(bars.time[i]), self._unrealized(bars.close[i]))
            self._report_progress(i + 1, n)

        if self.requotes:
            logger.info(f"{self.requotes} orders were requoted and skipped")

        statistics = calculate_backtest_statistics(
            self.trades, self.account.equity_curve, self.config.initial_balance, n
        )
        return BacktestResult(
            statistics=statistics,
            trades=list(self.trades),
            equity_curve=list(self.account.equity_curve),
            warnings=list(self.warnings),
            initial_balance=self.config.initial_balance,
            final_balance=self.account.balance,
            bars_processed=n,
            warmup_bars=self.interpreter.warmup,
            requotes=self.requotes,
            symbol=self.spec.symbol,
        )

    def _report_progress(self, processed: int, total: int) -> None:
        percent = int(processed * 100 / total)
        if percent <= self.last_percent:
            return
        self.last_percent = percent
        if self.progress_callback is not None:
            self.progress_callback(percent, processed, total)
        if _is_cancelled(self.cancel_token):
            logger.info(f"Backtest cancelled after {processed} bars")
            raise BacktestCancelled(processed)

    def _roll_day(self, i: int) -> None:
        """Reset the daily counters and book swap when a new UTC day starts."""
        day = int(self.bars.time[i]) // MS_PER_DAY
        if day == self.current_day:
            return
        if self.current_day is not None:
            for position in self.open_positions:
                amount = self.broker.swap(position.direction, position.lots)
                if amount:
                    position.swap += amount
                    self.account.apply_swap(amount, i)
        self.current_day = day
        self.trades_today = 0
        self.day_pnl = 0.0

    # ------------------------------------------------------------------
    # Position management
    # ------------------------------------------------------------------

    def _manage_positions(self, i: int) -> None:
        bars = self.bars
        close = bars.close[i]
        rules = self.interpreter.management
        atr = self.interpreter.atr[i]
        for position in list(self.open_positions):
            if not rules.is_empty:
                for action in self.manager.apply(position, rules, i, close, atr):
                    if action.kind == 'PARTIAL_CLOSE' and not action.closes_position:
                        self._partial_close(position, i, action.lots, action.price)
                    elif action.kind == 'PARTIAL_CLOSE':
                        self._close_position(position, i, action.price, ExitType.SIGNAL)
                    else:
                        self._close_position(position, i, action.price, ExitType.TIME_EXIT)
                if position.state == PositionState.CLOSED:
                    continue

            exit_condition = ExitResolver.resolve(
                ExitResolver.candidates(self.broker, position, bars.high[i], bars.low[i])
            )
            if exit_condition is not None:
                self._close_position(position, i, exit_condition.exit_price, exit_condition.exit_type)

    def _drawdown_limit_reached(self) -> bool:
        limit = self.settings.max_total_drawdown_percent
        return limit > 0 and self.account.max_drawdown_percent >= limit

    def _process_exit_signals(self, i: int, signals: SignalSet) -> None:
        if not (signals.close_long or signals.close_short):
            return
        close = self.bars.close[i]
        for position in list(self.open_positions):
            if (position.direction == BUY and signals.close_long) or (
                    position.direction == SELL and signals.close_short):
                self._close_position(position, i, close, ExitType.SIGNAL)

    # ------------------------------------------------------------------
    # Entries
    # ------------------------------------------------------------------

    def _entries_allowed(self, i: int) -> bool:
        settings = self.settings
        initial = self.config.initial_balance
        if len(self.open_positions) >= settings.max_open_trades:
            return False
        if settings.max_trades_per_day and self.trades_today >= settings.max_trades_per_day:
            return False
        if (settings.min_bars_between_trades and self.last_entry_bar is not None
                and i - self.last_entry_bar < settings.min_bars_between_trades):
            return False
        if settings.max_daily_loss_percent and self.day_pnl <= -initial * settings.max_daily_loss_percent / 100.0:
            return False
        if settings.max_daily_profit_percent and self.day_pnl >= initial * settings.max_daily_profit_percent / 100.0:
            return False
        return True

    def _can_open(self, direction: str) -> bool:
        settings = self.settings
        if len(self.open_positions) >= settings.max_open_trades:
            return False
        same = sum(1 for p in self.open_positions if p.direction == direction)
        if same < len(self.open_positions) and not settings.allow_hedging:
            return False
        cap = settings.max_buy_positions if direction == BUY else settings.max_sell_positions
        return not cap or same < cap

    def _process_entries(self, i: int, signals: SignalSet) -> None:
        for override in self.overrides.get(i, ()):
            self._open_position(i, override.direction, override.risk)

        if not self._entries_allowed(i):
            return
        if signals.long_entry and self._can_open(BUY):
            self._open_position(i, BUY, signals.long_risk)
        if signals.short_entry and self._entries_allowed(i) and self._can_open(SELL):
            self._open_position(i, SELL, signals.short_risk)

    def _open_position(self, i: int, direction: str, request: RiskRequest) -> Optional[Position]:
        if self.broker.is_requoted():
            self.requotes += 1
            logger.debug(f"Bar {i}: {direction} order requoted")
            return None

        broker = self.broker
        entry = broker.entry_price(direction, self.bars.close[i])
        stop = broker.stop_loss_price(direction, entry, request)
        lots = broker.lot_size(self.account.balance, broker.stop_distance_points(entry, stop), request)
        target = broker.take_profit_price(direction, entry, stop, request)

        position = Position(
            id=self.next_position_id,
            direction=direction,
            entry_price=entry,
            lots=lots,
            stop_loss=stop,
            take_profit=target,
            open_bar=i,
            open_time=int(self.bars.time[i]),
        )
        self.next_position_id += 1
        position.state = PositionState.OPEN
        self.open_positions.append(position)
        self.trades_today += 1
        self.last_entry_bar = i
        logger.debug(
            f"Bar {i}: opened {direction} #{position.id} {lots:g} lots at {entry} (SL {stop}, TP {target})"
        )
        return position

    # ------------------------------------------------------------------
    # Closes
    # ------------------------------------------------------------------

    def _book(self, position: Position, i: int, price: float, lots: float) -> float:
        profit = self.broker.realized_profit(position.direction, position.entry_price, price, lots)
        commission = self.broker.commission(lots)
        self.account.apply_realized(profit, commission, i)
        position.realized_profit += profit
        position.commission += commission
        self.day_pnl += profit
        return profit

    def _partial_close(self, position: Position, i: int, lots: float, price: float) -> None:
        profit = self._book(position, i, price, lots)
        position.partial_exits.append(PartialExit(i, int(self.bars.time[i]), price, lots, profit))
        position.lots -= lots
        position.state = PositionState.PARTIALLY_CLOSED

    def _close_position(self, position: Position, i: int, price: float, reason: ExitType) -> Trade:
        self._book(position, i, price, position.lots)
        position.state = PositionState.CLOSED
        self.open_positions.remove(position)
        trade = Trade(
            id=position.id,
            direction=position.direction,
            open_time=position.open_time,
            close_time=int(self.bars.time[i]),
            open_bar=position.open_bar,
            close_bar=i,
            entry_price=position.entry_price,
            exit_price=price,
            lots=position.initial_lots,
            stop_loss=position.initial_stop,
            take_profit=position.take_profit,
            profit=position.realized_profit + position.swap,
            commission=position.commission,
            swap=position.swap,
            exit_reason=reason.value,
            partial_exits=tuple(position.partial_exits),
        )
        self.trades.append(trade)
        logger.debug(f"Bar {i}: closed #{position.id} at {price} ({reason.value}), profit {trade.profit:.2f}")
        return trade

    def _close_all(self, i: int, price: float, reason: ExitType) -> None:
        for position in list(self.open_positions):
            self._close_position(position, i, price, reason)

    def _unrealized(self, close: float) -> float:
        return sum(
            self.broker.unrealized_profit(p.direction, p.entry_price, close, p.lots)
            for p in self.open_positions
        )


def run_backtest(
    bars: BarArray,
    graph: Union[StrategyGraph, Dict[str, Any]],
    config: Union[BacktestConfig, Dict[str, Any], None] = None,
    progress_callback: Optional[ProgressCallback] = None,
    cancel_token=None,
    entry_overrides: Optional[Sequence[EntryOverride]] = None,
) -> BacktestResult:
    """Run one backtest with a fresh engine."""
    return BacktestEngine().run(bars, graph, config, progress_callback, cancel_token, entry_overrides)
