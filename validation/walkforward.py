"""Walk-forward analysis for strategy validation."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple, Union
import logging

from config.schema import BacktestConfig, WalkForwardConfig
from engine.backtest_engine import BacktestEngine, BacktestResult
from engine.bars import BarArray
from strategies.graph import StrategyGraph

MIN_TOTAL_BARS = 100
MIN_WINDOW_BARS = 50
MIN_IN_SAMPLE_BARS = 30
MIN_OUT_OF_SAMPLE_BARS = 10


@dataclass
class WalkForwardStep:
    """Results from a single walk-forward window.

    Bar indices are inclusive and refer to the full bar series.
    """
    step_number: int
    in_sample_start: int
    in_sample_end: int
    out_of_sample_start: int
    out_of_sample_end: int
    in_sample_result: BacktestResult
    out_of_sample_result: BacktestResult

    @property
    def in_sample_profit(self) -> float:
        return self.in_sample_result.statistics.net_profit

    @property
    def out_of_sample_profit(self) -> float:
        return self.out_of_sample_result.statistics.net_profit

    def to_dict(self) -> Dict[str, Any]:
        return {
            'inSampleStart': self.in_sample_start,
            'inSampleEnd': self.in_sample_end,
            'outOfSampleStart': self.out_of_sample_start,
            'outOfSampleEnd': self.out_of_sample_end,
            'inSampleProfit': self.in_sample_profit,
            'outOfSampleProfit': self.out_of_sample_profit,
            'inSampleSharpe': self.in_sample_result.statistics.sharpe_ratio,
            'outOfSampleSharpe': self.out_of_sample_result.statistics.sharpe_ratio,
        }


@dataclass
class WalkForwardResult:
    """Complete walk-forward analysis results."""
    steps: List[WalkForwardStep] = field(default_factory=list)
    overall_out_of_sample_profit: float = 0.0
    walk_forward_efficiency: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'windows': [s.to_dict() for s in self.steps],
            'overallOutOfSampleProfit': self.overall_out_of_sample_profit,
            'walkForwardEfficiency': self.walk_forward_efficiency,
        }


class WalkForwardAnalyzer:
    """Rolling in-sample / out-of-sample walk-forward engine.

    The bar series is cut into ``window_count`` overlapping windows. Each
    window steps forward by the out-of-sample size; its first
    ``in_sample_ratio`` share is backtested as in-sample and the remainder as
    out-of-sample. Efficiency is total out-of-sample profit over total
    in-sample profit.
    """

    def __init__(self, config: Optional[WalkForwardConfig] = None):
        self.config = config or WalkForwardConfig()
        self.logger = logging.getLogger(__name__)

    def build_windows(self, total_bars: int) -> List[Tuple[int, int, int]]:
        """
        Build rolling windows.

        Args:
            total_bars: Number of bars in the full series

        Returns:
            List of (window_start, split_index, window_end) with ``window_end``
            exclusive
        """
        window_count = self.config.window_count
        in_ratio = self.config.in_sample_ratio
        if total_bars < MIN_TOTAL_BARS or window_count < 2:
            return []

        oos_ratio = 1.0 - in_ratio
        step_size = int(total_bars // (window_count + in_ratio / oos_ratio))
        window_size = int(step_size // oos_ratio)

        windows = []
        for w in range(window_count):
            window_start = w * step_size
            window_end = min(window_start + window_size, total_bars)
            if window_end - window_start < MIN_WINDOW_BARS:
                break
            split = window_start + int((window_end - window_start) * in_ratio)
            if split - window_start < MIN_IN_SAMPLE_BARS or window_end - split < MIN_OUT_OF_SAMPLE_BARS:
                continue
            windows.append((window_start, split, window_end))
        return windows

    def run(
        self,
        bars: BarArray,
        graph: Union[StrategyGraph, Dict[str, Any]],
        backtest_config: Union[BacktestConfig, Dict[str, Any], None] = None
    ) -> WalkForwardResult:
        """
        Run walk-forward analysis.

        Args:
            bars: Full bar series
            graph: Strategy document
            backtest_config: Settings shared by every window backtest

        Returns:
            WalkForwardResult (empty when the series is too short)
        """
        if isinstance(graph, dict):
            graph = StrategyGraph.from_dict(graph)

        windows = self.build_windows(len(bars))
        if not windows:
            self.logger.warning(
                f"Walk-forward skipped: {len(bars)} bars, {self.config.window_count} windows requested"
            )
            return WalkForwardResult()

        engine = BacktestEngine()
        steps = []
        total_is = 0.0
        total_oos = 0.0
        for number, (start, split, end) in enumerate(windows, start=1):
            is_result = engine.run(bars.slice(start, split), graph, backtest_config)
            oos_result = engine.run(bars.slice(split, end), graph, backtest_config)
            step = WalkForwardStep(
                step_number=number,
                in_sample_start=start,
                in_sample_end=split - 1,
                out_of_sample_start=split,
                out_of_sample_end=end - 1,
                in_sample_result=is_result,
                out_of_sample_result=oos_result,
            )
            steps.append(step)
            total_is += step.in_sample_profit
            total_oos += step.out_of_sample_profit
            self.logger.debug(
                f"Window {number}: IS [{start}, {split - 1}] profit {step.in_sample_profit:.2f}, "
                f"OOS [{split}, {end - 1}] profit {step.out_of_sample_profit:.2f}"
            )

        efficiency = total_oos / total_is if total_is != 0 else 0.0
        self.logger.info(
            f"Walk-forward finished: {len(steps)} windows, OOS profit {total_oos:.2f}, "
            f"efficiency {efficiency:.2f}"
        )
        return WalkForwardResult(
            steps=steps,
            overall_out_of_sample_profit=total_oos,
            walk_forward_efficiency=efficiency,
        )
