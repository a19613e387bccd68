"""
VALIDATION MODELS - Ledger, Equity Curve and Result Records

Plain records produced by the backtester, the performance calculator and
the walk-forward tester. Every record has a deterministic to_dict() so
two runs over the same inputs serialize identically.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from config.loader import BacktestConfiguration, StrategyParameters
from strategy.models import CointegrationResult, Direction, Regime, StrategyType


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


class TradeStatus(str, Enum):
    OPEN = "open"
    CLOSED = "closed"


class ExitReason(str, Enum):
    MAX_HOLDING_PERIOD = "max_holding_period"
    STOP_LOSS = "stop_loss"
    PROFIT_TARGET = "profit_target"
    MEAN_REVERSION_TARGET = "mean_reversion_target"
    MOMENTUM_REVERSAL = "momentum_reversal"
    BACKTEST_END = "backtest_end"


class ExecutionSide(str, Enum):
    ENTRY = "entry"
    EXIT = "exit"


@dataclass(frozen=True)
class TradeExecution:
    """Snapshot of one fill (both legs) at entry or exit."""

    execution_id: str
    date: datetime
    side: ExecutionSide
    direction: Direction
    primary_price: float  # after slippage
    secondary_price: float
    primary_amount: float
    secondary_amount: float
    leverage: float
    commission: float
    slippage: float
    reason: str
    signal_strength: float
    regime: Regime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "execution_id": self.execution_id,
            "date": _iso(self.date),
            "side": self.side.value,
            "direction": self.direction.value,
            "primary_price": self.primary_price,
            "secondary_price": self.secondary_price,
            "primary_amount": self.primary_amount,
            "secondary_amount": self.secondary_amount,
            "leverage": self.leverage,
            "commission": self.commission,
            "slippage": self.slippage,
            "reason": self.reason,
            "signal_strength": self.signal_strength,
            "regime": self.regime.value,
        }


@dataclass
class Trade:
    """
    One pair trade from entry to exit.

    pnl_dollar is always net of every cost paid so far, and
    pnl_percent == pnl_dollar / capital_allocated.
    """

    trade_id: str
    entry_execution: TradeExecution
    regime: Regime
    strategy: StrategyType
    entry_date: datetime
    entry_primary_price: float
    entry_secondary_price: float
    entry_zscore: float
    entry_signal_strength: float
    entry_reason: str
    primary_amount: float
    secondary_amount: float
    leverage: float
    capital_allocated: float
    total_commission: float
    total_slippage: float

    status: TradeStatus = TradeStatus.OPEN
    exit_execution: Optional[TradeExecution] = None
    exit_date: Optional[datetime] = None
    exit_primary_price: Optional[float] = None
    exit_secondary_price: Optional[float] = None
    exit_zscore: Optional[float] = None
    exit_reason: Optional[str] = None

    pnl_dollar: float = 0.0
    pnl_percent: float = 0.0
    holding_period: float = 0.0  # days
    max_favorable_excursion: float = 0.0
    max_adverse_excursion: float = 0.0

    @property
    def is_open(self) -> bool:
        return self.status == TradeStatus.OPEN

    @property
    def total_costs(self) -> float:
        return self.total_commission + self.total_slippage

    def gross_pnl(self, primary_price: float, secondary_price: float) -> float:
        """Mark-to-market PnL of both legs before costs."""
        return (
            self.primary_amount * (primary_price / self.entry_primary_price - 1)
            + self.secondary_amount * (secondary_price / self.entry_secondary_price - 1)
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "trade_id": self.trade_id,
            "status": self.status.value,
            "regime": self.regime.value,
            "strategy": self.strategy.value,
            "entry_date": _iso(self.entry_date),
            "exit_date": _iso(self.exit_date),
            "entry_primary_price": self.entry_primary_price,
            "entry_secondary_price": self.entry_secondary_price,
            "exit_primary_price": self.exit_primary_price,
            "exit_secondary_price": self.exit_secondary_price,
            "entry_zscore": self.entry_zscore,
            "exit_zscore": self.exit_zscore,
            "entry_signal_strength": self.entry_signal_strength,
            "entry_reason": self.entry_reason,
            "exit_reason": self.exit_reason,
            "primary_amount": self.primary_amount,
            "secondary_amount": self.secondary_amount,
            "leverage": self.leverage,
            "capital_allocated": self.capital_allocated,
            "pnl_dollar": self.pnl_dollar,
            "pnl_percent": self.pnl_percent,
            "holding_period": self.holding_period,
            "max_favorable_excursion": self.max_favorable_excursion,
            "max_adverse_excursion": self.max_adverse_excursion,
            "total_commission": self.total_commission,
            "total_slippage": self.total_slippage,
            "entry_execution": self.entry_execution.to_dict(),
            "exit_execution": self.exit_execution.to_dict() if self.exit_execution else None,
        }


@dataclass(frozen=True)
class EquityPoint:
    date: datetime
    equity: float
    cash: float
    unrealized_pnl: float
    realized_pnl: float
    drawdown: float  # percent below running peak
    regime: Regime
    active_positions: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "date": _iso(self.date),
            "equity": self.equity,
            "cash": self.cash,
            "unrealized_pnl": self.unrealized_pnl,
            "realized_pnl": self.realized_pnl,
            "drawdown": self.drawdown,
            "regime": self.regime.value,
            "active_positions": self.active_positions,
        }


@dataclass
class RegimeMetrics:
    """Trade statistics restricted to one regime."""

    regime: Regime
    trades: int = 0
    win_rate: float = 0.0  # percent
    avg_return: float = 0.0  # percent
    total_return: float = 0.0  # percent
    volatility: float = 0.0
    sharpe_ratio: float = 0.0
    max_drawdown: float = 0.0
    profit_factor: float = 0.0
    avg_holding_period: float = 0.0
    time_in_regime: float = 0.0  # percent of simulated days

    def to_dict(self) -> Dict[str, Any]:
        return {
            "regime": self.regime.value,
            "trades": self.trades,
            "win_rate": self.win_rate,
            "avg_return": self.avg_return,
            "total_return": self.total_return,
            "volatility": self.volatility,
            "sharpe_ratio": self.sharpe_ratio,
            "max_drawdown": self.max_drawdown,
            "profit_factor": self.profit_factor,
            "avg_holding_period": self.avg_holding_period,
            "time_in_regime": self.time_in_regime,
        }


@dataclass
class PerformanceMetrics:
    """Return, risk, trade and timing statistics of one run. Returns are percent."""

    # Returns
    total_return: float = 0.0
    annualized_return: float = 0.0
    cagr: float = 0.0

    # Risk
    volatility: float = 0.0
    sharpe_ratio: float = 0.0
    sortino_ratio: float = 0.0
    calmar_ratio: float = 0.0
    max_drawdown: float = 0.0
    max_drawdown_duration: int = 0
    var_95: float = 0.0
    var_99: float = 0.0
    expected_shortfall: float = 0.0
    ulcer_index: float = 0.0

    # Trades
    total_trades: int = 0
    winning_trades: int = 0
    losing_trades: int = 0
    win_rate: float = 0.0
    avg_win: float = 0.0
    avg_loss: float = 0.0
    profit_factor: float = 0.0
    expectancy: float = 0.0
    max_consecutive_wins: int = 0
    max_consecutive_losses: int = 0

    # Timing
    avg_holding_period: float = 0.0
    avg_time_between_trades: float = 0.0
    trading_days: int = 0

    # Significance
    t_statistic: Optional[float] = None
    p_value: Optional[float] = None

    regime_performance: Dict[Regime, RegimeMetrics] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        result = {k: v for k, v in self.__dict__.items() if k != "regime_performance"}
        result["regime_performance"] = {
            regime.value: metrics.to_dict() for regime, metrics in self.regime_performance.items()
        }
        return result


@dataclass(frozen=True)
class PeriodReturn:
    """Return over one calendar month or year."""
    period: str  # "2021-03" or "2021"
    return_pct: float
    trades: int
    dominant_regime: Regime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "period": self.period,
            "return_pct": self.return_pct,
            "trades": self.trades,
            "dominant_regime": self.dominant_regime.value,
        }


@dataclass(frozen=True)
class DrawdownPeriod:
    start_date: datetime
    trough_date: datetime
    end_date: Optional[datetime]  # None while still underwater
    depth: float  # percent
    duration: int  # equity points from start to recovery (or data end)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "start_date": _iso(self.start_date),
            "trough_date": _iso(self.trough_date),
            "end_date": _iso(self.end_date),
            "depth": self.depth,
            "duration": self.duration,
        }


@dataclass(frozen=True)
class BenchmarkComparison:
    """Strategy against buy-and-hold of a benchmark series."""
    benchmark_return: float  # percent
    strategy_return: float  # percent
    alpha: float  # annualized, percent
    beta: float
    correlation: float
    information_ratio: float
    tracking_error: float  # annualized, percent

    def to_dict(self) -> Dict[str, Any]:
        return dict(self.__dict__)


@dataclass
class BacktestResult:
    """Results from a backtest run."""

    config: BacktestConfiguration
    strategy_params: StrategyParameters
    trades: List[Trade]
    equity_curve: List[EquityPoint]
    metrics: PerformanceMetrics
    cointegration: CointegrationResult
    monthly_returns: List[PeriodReturn] = field(default_factory=list)
    yearly_returns: List[PeriodReturn] = field(default_factory=list)
    drawdown_periods: List[DrawdownPeriod] = field(default_factory=list)
    benchmark_comparison: Optional[BenchmarkComparison] = None
    regime_changes: int = 0

    @property
    def start_date(self) -> Optional[datetime]:
        return self.equity_curve[0].date if self.equity_curve else None

    @property
    def end_date(self) -> Optional[datetime]:
        return self.equity_curve[-1].date if self.equity_curve else None

    @property
    def final_equity(self) -> float:
        return self.equity_curve[-1].equity if self.equity_curve else self.config.initial_capital

    def to_dict(self) -> Dict[str, Any]:
        return {
            "config": self.config.to_dict(),
            "strategy_params": self.strategy_params.to_dict(),
            "start_date": _iso(self.start_date),
            "end_date": _iso(self.end_date),
            "metrics": self.metrics.to_dict(),
            "cointegration": self.cointegration.to_dict(),
            "trades": [t.to_dict() for t in self.trades],
            "equity_curve": [p.to_dict() for p in self.equity_curve],
            "monthly_returns": [m.to_dict() for m in self.monthly_returns],
            "yearly_returns": [y.to_dict() for y in self.yearly_returns],
            "drawdown_periods": [d.to_dict() for d in self.drawdown_periods],
            "benchmark_comparison": self.benchmark_comparison.to_dict() if self.benchmark_comparison else None,
            "regime_changes": self.regime_changes,
        }


@dataclass
class WalkForwardResult:
    """One in-sample / out-of-sample window."""

    window_index: int
    in_sample_start: datetime
    in_sample_end: datetime
    out_of_sample_start: datetime
    out_of_sample_end: datetime
    optimal_params: Dict[str, Any]
    in_sample_metrics: PerformanceMetrics
    out_of_sample_metrics: PerformanceMetrics
    degradation: float  # percent
    combinations_tested: int = 0
    combinations_failed: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "window_index": self.window_index,
            "in_sample_start": _iso(self.in_sample_start),
            "in_sample_end": _iso(self.in_sample_end),
            "out_of_sample_start": _iso(self.out_of_sample_start),
            "out_of_sample_end": _iso(self.out_of_sample_end),
            "optimal_params": dict(self.optimal_params),
            "in_sample_metrics": self.in_sample_metrics.to_dict(),
            "out_of_sample_metrics": self.out_of_sample_metrics.to_dict(),
            "degradation": self.degradation,
            "combinations_tested": self.combinations_tested,
            "combinations_failed": self.combinations_failed,
        }


@dataclass(frozen=True)
class ParameterStability:
    mean: float
    std: float
    stability: float  # 0-100

    def to_dict(self) -> Dict[str, Any]:
        return {"mean": self.mean, "std": self.std, "stability": self.stability}


@dataclass
class WalkForwardAnalysis:
    """Aggregate of every walk-forward window."""

    results: List[WalkForwardResult]
    avg_in_sample_return: float
    avg_out_of_sample_return: float
    avg_degradation: float
    consistency_score: float  # percent of windows with positive OOS return
    robustness_score: float
    parameter_stability: Dict[str, ParameterStability]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "results": [r.to_dict() for r in self.results],
            "avg_in_sample_return": self.avg_in_sample_return,
            "avg_out_of_sample_return": self.avg_out_of_sample_return,
            "avg_degradation": self.avg_degradation,
            "consistency_score": self.consistency_score,
            "robustness_score": self.robustness_score,
            "parameter_stability": {k: v.to_dict() for k, v in self.parameter_stability.items()},
        }
