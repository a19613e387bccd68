"""
WALK-FORWARD TESTER - Out-of-Sample Robustness Validation

Repeatedly optimizes on a trailing in-sample window and trades the
following out-of-sample window with the winning parameters:

1. Lay out windows: [start, start+IS) in-sample, [start+IS, start+IS+OOS)
   out-of-sample, advancing by step_size while a full layout fits
2. Grid-search the in-sample window (one full backtest per combination)
3. Pick the best in-sample Sharpe among combinations with enough trades
4. Backtest the out-of-sample window with those parameters, using
   in-sample history as warm-up only
5. Aggregate degradation, consistency, robustness and parameter stability

Combinations are independent and can run on a thread pool; selection is
deterministic regardless of completion order.
"""

import math
from dataclasses import dataclass, fields, replace
from typing import Any, Dict, List, Optional, Sequence

import numpy as np
from loguru import logger

from config.loader import BacktestConfiguration, RiskParameters, StrategyParameters
from core.events import Event, EventDispatcher, EventType
from core.invariants import INVARIANTS, InsufficientDataError, ValidationError
from learning.optimizer import Evaluation, GridSearchOptimizer, Optimizer
from perception.market_data import MarketData
from validation.backtester import BacktestingEngine
from validation.models import (
    BacktestResult,
    ParameterStability,
    PerformanceMetrics,
    WalkForwardAnalysis,
    WalkForwardResult,
)

DEFAULT_PARAMETER_RANGES: Dict[str, List[Any]] = {
    "correlation_window": [20, 30, 40, 50],
    "high_correlation_threshold": [0.65, 0.7, 0.75, 0.8],
    "low_correlation_threshold": [0.2, 0.25, 0.3, 0.35],
    "zscore_entry_threshold": [2.0, 2.5, 3.0, 3.5],
}

STABILITY_PARAMETERS = (
    "correlation_window",
    "high_correlation_threshold",
    "low_correlation_threshold",
    "zscore_entry_threshold",
    "zscore_exit_threshold",
)


@dataclass(frozen=True)
class WalkForwardWindow:
    """Row indexes of one window; end indexes are exclusive."""
    index: int
    start: int
    in_sample_end: int
    out_of_sample_end: int


@dataclass
class MonteCarloSummary:
    """Distribution of average out-of-sample return across random windows."""
    simulations: List[WalkForwardAnalysis]
    avg_return: float
    std_return: float
    success_rate: float  # percent of simulations with positive return
    worst_case: float
    best_case: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "simulations": len(self.simulations),
            "avg_return": self.avg_return,
            "std_return": self.std_return,
            "success_rate": self.success_rate,
            "worst_case": self.worst_case,
            "best_case": self.best_case,
        }


# ===== Pure Helpers =====

def build_windows(total: int, in_sample_days: int, out_of_sample_days: int, step_size: int) -> List[WalkForwardWindow]:
    """Every window whose full in-sample + out-of-sample layout fits in `total` rows."""
    if min(in_sample_days, out_of_sample_days, step_size) <= 0:
        raise ValidationError("Window sizes and step size must be positive")
    if total < in_sample_days + out_of_sample_days:
        raise InsufficientDataError(
            f"Walk-forward needs at least {in_sample_days + out_of_sample_days} days, got {total}"
        )

    windows = []
    start = 0
    while start + in_sample_days + out_of_sample_days <= total:
        windows.append(WalkForwardWindow(
            index=len(windows),
            start=start,
            in_sample_end=start + in_sample_days,
            out_of_sample_end=start + in_sample_days + out_of_sample_days,
        ))
        start += step_size
    return windows


def calculate_degradation(in_sample_sharpe: float, out_of_sample_sharpe: float) -> float:
    """Percent of in-sample Sharpe lost out of sample; 0 when in-sample Sharpe is 0."""
    if in_sample_sharpe == 0 or not math.isfinite(in_sample_sharpe):
        return 0.0
    return (in_sample_sharpe - out_of_sample_sharpe) / abs(in_sample_sharpe) * 100


def aggregate_results(
    results: List[WalkForwardResult],
    stability_parameters: Sequence[str] = STABILITY_PARAMETERS
) -> WalkForwardAnalysis:
    """Combine per-window results into the walk-forward summary."""
    if not results:
        return WalkForwardAnalysis(
            results=[],
            avg_in_sample_return=0.0,
            avg_out_of_sample_return=0.0,
            avg_degradation=0.0,
            consistency_score=0.0,
            robustness_score=0.0,
            parameter_stability={},
        )

    degradations = np.array([r.degradation for r in results])
    degradation_std = float(degradations.std())
    positive = sum(1 for r in results if r.out_of_sample_metrics.total_return > 0)

    stability = {}
    for name in stability_parameters:
        values = [float(r.optimal_params[name]) for r in results if name in r.optimal_params]
        if not values:
            continue
        mean = float(np.mean(values))
        std = float(np.std(values))
        score = 100 / (1 + std / mean) if mean > 0 else 0.0
        stability[name] = ParameterStability(mean=mean, std=std, stability=score)

    return WalkForwardAnalysis(
        results=results,
        avg_in_sample_return=float(np.mean([r.in_sample_metrics.annualized_return for r in results])),
        avg_out_of_sample_return=float(np.mean([r.out_of_sample_metrics.annualized_return for r in results])),
        avg_degradation=float(degradations.mean()),
        consistency_score=positive / len(results) * 100,
        robustness_score=100 / degradation_std if degradation_std > 0 else 100.0,
        parameter_stability=stability,
    )


def generate_report(analysis: WalkForwardAnalysis) -> str:
    """Plain-text summary of a walk-forward analysis."""
    lines = [
        "WALK-FORWARD ANALYSIS REPORT",
        "=" * 40,
        "",
        "SUMMARY",
        f"  Windows analyzed:          {len(analysis.results)}",
        f"  Avg in-sample return:      {analysis.avg_in_sample_return:.2f}%",
        f"  Avg out-of-sample return:  {analysis.avg_out_of_sample_return:.2f}%",
        f"  Avg Sharpe degradation:    {analysis.avg_degradation:.1f}%",
        f"  Consistency:               {analysis.consistency_score:.1f}%",
        f"  Robustness:                {analysis.robustness_score:.1f}",
        "",
        "PARAMETER STABILITY",
    ]
    for name, stability in analysis.parameter_stability.items():
        lines.append(f"  {name}: mean {stability.mean:.3f}, std {stability.std:.3f}, stability {stability.stability:.1f}")

    lines += ["", "WINDOWS"]
    for r in analysis.results:
        lines.append(
            f"  #{r.window_index + 1} {r.out_of_sample_start.date()} - {r.out_of_sample_end.date()}: "
            f"IS Sharpe {r.in_sample_metrics.sharpe_ratio:.2f}, OOS Sharpe {r.out_of_sample_metrics.sharpe_ratio:.2f}, "
            f"OOS return {r.out_of_sample_metrics.total_return:.2f}%, degradation {r.degradation:.1f}%"
        )

    lines += ["", "ASSESSMENT"]
    if analysis.consistency_score >= 60 and analysis.avg_degradation < 50:
        lines.append("  Strategy holds up out of sample.")
    elif analysis.consistency_score >= 40:
        lines.append("  Mixed out-of-sample results; parameters may be overfit.")
    else:
        lines.append("  Poor out-of-sample performance; strategy is likely overfit.")

    return "\n".join(lines)


# ===== Tester =====

class WalkForwardTester:
    """Runs walk-forward analysis of the pairs strategy."""

    SOURCE = "walk_forward"

    def __init__(
        self,
        config: BacktestConfiguration,
        strategy_params: StrategyParameters,
        risk_params: RiskParameters,
        parameter_ranges: Optional[Dict[str, List[Any]]] = None,
        min_trades: int = 10,
        max_workers: Optional[int] = None,
        optimizer: Optional[Optimizer] = None,
        dispatcher: Optional[EventDispatcher] = None
    ):
        self.config = config
        self.strategy_params = strategy_params
        self.risk_params = risk_params
        self.parameter_ranges = parameter_ranges or DEFAULT_PARAMETER_RANGES
        self.min_trades = min_trades
        self.optimizer = optimizer or GridSearchOptimizer(max_workers=max_workers)
        self.dispatcher = dispatcher or EventDispatcher()

        unknown = set(self.parameter_ranges) - {f.name for f in fields(StrategyParameters)}
        if unknown:
            raise ValidationError(f"Unknown strategy parameters in grid: {sorted(unknown)}")

    def run(
        self,
        market_data: MarketData,
        in_sample_days: int = 252,
        out_of_sample_days: int = 63,
        step_size: int = 21
    ) -> WalkForwardAnalysis:
        """
        Run the full walk-forward analysis.

        Raises:
            InsufficientDataError: if the data cannot hold one full window
        """
        market_data.validate()
        windows = build_windows(len(market_data), in_sample_days, out_of_sample_days, step_size)
        logger.info(
            f"Walk-forward: {len(windows)} windows (IS {in_sample_days}, OOS {out_of_sample_days}, "
            f"step {step_size}), {len(self.optimizer.candidates(self.parameter_ranges))} combinations each"
        )

        results = []
        for window in windows:
            try:
                result = self.run_window(market_data, window)
            except ValidationError as e:
                logger.warning(f"Walk-forward window {window.index + 1} skipped: {e}")
                continue

            results.append(result)
            self.dispatcher.dispatch([Event(
                event_type=EventType.WALK_FORWARD_WINDOW_COMPLETED,
                date=result.out_of_sample_end,
                source=self.SOURCE,
                payload={"window_index": window.index, "degradation": result.degradation},
            )])
            logger.info(
                f"Window {window.index + 1}/{len(windows)}: IS Sharpe {result.in_sample_metrics.sharpe_ratio:.2f}, "
                f"OOS Sharpe {result.out_of_sample_metrics.sharpe_ratio:.2f}, degradation {result.degradation:.1f}%"
            )

        if not results:
            raise ValidationError("No walk-forward window could be evaluated")

        analysis = aggregate_results(results)
        logger.info(
            f"Walk-forward complete: OOS return {analysis.avg_out_of_sample_return:.2f}%, "
            f"consistency {analysis.consistency_score:.1f}%, robustness {analysis.robustness_score:.1f}"
        )
        return analysis

    def run_window(self, market_data: MarketData, window: WalkForwardWindow) -> WalkForwardResult:
        in_sample = market_data.slice(window.start, window.in_sample_end)
        base_config = self.config.with_dates(None, None)

        optimization = self.optimizer.optimize(self._objective(in_sample, base_config), self.parameter_ranges)

        if optimization.found:
            params = replace(self.strategy_params, **optimization.best_params)
            best = next(e for e in optimization.history if e.params == optimization.best_params and e.is_valid)
            in_sample_metrics = best.metrics["performance"]
        else:
            logger.warning(f"Window {window.index + 1}: no combination met {self.min_trades} trades, using baseline")
            params = self.strategy_params
            in_sample_metrics = self._backtest(in_sample, base_config, params).metrics

        out_of_sample_metrics = self._out_of_sample(market_data, window, params)

        return WalkForwardResult(
            window_index=window.index,
            in_sample_start=market_data.dates[window.start],
            in_sample_end=market_data.dates[window.in_sample_end - 1],
            out_of_sample_start=market_data.dates[window.in_sample_end],
            out_of_sample_end=market_data.dates[window.out_of_sample_end - 1],
            optimal_params={
                name: getattr(params, name)
                for name in list(self.parameter_ranges) + [p for p in STABILITY_PARAMETERS if p not in self.parameter_ranges]
            },
            in_sample_metrics=in_sample_metrics,
            out_of_sample_metrics=out_of_sample_metrics,
            degradation=calculate_degradation(in_sample_metrics.sharpe_ratio, out_of_sample_metrics.sharpe_ratio),
            combinations_tested=optimization.iterations,
            combinations_failed=optimization.failed,
        )

    def _backtest(self, data: MarketData, config: BacktestConfiguration, params: StrategyParameters) -> BacktestResult:
        engine = BacktestingEngine(config, params, self.risk_params, quiet=True)
        return engine.run_backtest(data)

    def _objective(self, in_sample: MarketData, config: BacktestConfiguration):
        def evaluate(candidate: Dict[str, Any]) -> Evaluation:
            params = replace(self.strategy_params, **candidate)
            metrics = self._backtest(in_sample, config, params).metrics
            return Evaluation(
                params=candidate,
                score=metrics.sharpe_ratio,
                is_valid=metrics.total_trades >= self.min_trades,
                metrics={"performance": metrics},
            )
        return evaluate

    def _out_of_sample(
        self,
        market_data: MarketData,
        window: WalkForwardWindow,
        params: StrategyParameters
    ) -> PerformanceMetrics:
        """Trade the out-of-sample rows only; earlier rows feed the indicators."""
        warmup = params.correlation_window + INVARIANTS.WARMUP_BUFFER
        data = market_data.slice(max(0, window.in_sample_end - warmup), window.out_of_sample_end)
        config = self.config.with_dates(
            market_data.dates[window.in_sample_end],
            market_data.dates[window.out_of_sample_end - 1],
        )
        return self._backtest(data, config, params).metrics

    def run_monte_carlo(
        self,
        market_data: MarketData,
        num_simulations: int = 100,
        in_sample_days: int = 252,
        out_of_sample_days: int = 63,
        seed: int = 42
    ) -> MonteCarloSummary:
        """Walk-forward on randomly placed single windows, reproducible through `seed`."""
        market_data.validate()
        span = in_sample_days + out_of_sample_days
        max_start = len(market_data) - span
        if max_start < 0:
            raise InsufficientDataError(f"Monte Carlo walk-forward needs at least {span} days, got {len(market_data)}")

        rng = np.random.default_rng(seed)
        simulations = []
        for i in range(num_simulations):
            start = int(rng.integers(0, max_start + 1))
            window_data = market_data.slice(start, start + span)
            try:
                simulations.append(self.run(window_data, in_sample_days, out_of_sample_days, out_of_sample_days))
            except ValidationError as e:
                logger.warning(f"Monte Carlo simulation {i + 1} failed: {e}")

        returns = np.array([s.avg_out_of_sample_return for s in simulations])
        if len(returns) == 0:
            return MonteCarloSummary(simulations, 0.0, 0.0, 0.0, 0.0, 0.0)

        return MonteCarloSummary(
            simulations=simulations,
            avg_return=float(returns.mean()),
            std_return=float(returns.std()),
            success_rate=float(np.sum(returns > 0) / len(returns) * 100),
            worst_case=float(returns.min()),
            best_case=float(returns.max()),
        )
