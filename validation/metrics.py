"""
METRICS - Performance Metric Calculations

Calculates every performance metric of a pairs backtest from its trade
ledger and equity curve:
- Returns (total, annualized, CAGR)
- Risk (volatility, drawdown, VaR, expected shortfall, ulcer index)
- Risk-adjusted returns (Sharpe, Sortino, Calmar)
- Trade statistics (win rate, profit factor, expectancy, streaks)
- Per-regime breakdown
- Calendar returns, drawdown periods, benchmark comparison

All percentages are expressed in percent (5.0 means 5%). The calculator
holds no state besides its risk-free rate, so one instance can be shared
across threads.
"""

import math
from collections import Counter
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from scipy import stats as scipy_stats

from core import stats
from core.invariants import INVARIANTS
from strategy.models import Regime
from strategy.regime import regime_durations
from validation.models import (
    BenchmarkComparison,
    DrawdownPeriod,
    EquityPoint,
    PerformanceMetrics,
    PeriodReturn,
    RegimeMetrics,
    Trade,
)

PERIODS_PER_YEAR = INVARIANTS.TRADING_DAYS_PER_YEAR


class PerformanceCalculator:
    """
    Calculates performance metrics from a trade ledger and equity curve.

    Sharpe and Sortino measure day-over-day changes of cumulative return
    (daily PnL over initial capital) in excess of the daily risk-free rate.
    """

    def __init__(self, risk_free_rate: float = 0.02):
        """
        Initialize calculator.

        Args:
            risk_free_rate: Annual risk-free rate (default 2%)
        """
        self.risk_free_rate = risk_free_rate
        self.daily_rf = risk_free_rate / PERIODS_PER_YEAR

    # ===== Return Metrics =====

    @staticmethod
    def daily_deltas(equity: Sequence[float], initial_capital: float) -> np.ndarray:
        """Day-over-day change of cumulative return (equity / initial - 1)."""
        cumulative = np.asarray(equity, dtype=float) / initial_capital - 1
        return np.diff(cumulative)

    @staticmethod
    def total_return(final_equity: float, initial_capital: float) -> float:
        return (final_equity - initial_capital) / initial_capital * 100

    @staticmethod
    def annualized_return(total_return_pct: float, periods: int) -> float:
        """Geometric annualization of a percent total return over `periods` days."""
        if periods <= 0:
            return 0.0
        growth = 1 + total_return_pct / 100
        if growth <= 0:
            return -100.0
        years = periods / PERIODS_PER_YEAR
        return (growth ** (1 / years) - 1) * 100

    def cagr(self, final_equity: float, initial_capital: float, periods: int) -> float:
        if periods <= 0 or initial_capital <= 0:
            return 0.0
        ratio = final_equity / initial_capital
        if ratio <= 0:
            return -100.0
        return (ratio ** (PERIODS_PER_YEAR / periods) - 1) * 100

    # ===== Risk Metrics =====

    @staticmethod
    def volatility(deltas: np.ndarray) -> float:
        """Annualized volatility in percent."""
        return stats.calculate_volatility(deltas, PERIODS_PER_YEAR) * 100

    def sharpe_ratio(self, deltas: np.ndarray) -> float:
        if len(deltas) < 2:
            return 0.0
        excess = deltas - self.daily_rf
        std = float(np.std(excess, ddof=1))
        if std == 0:
            return 0.0
        return float(excess.mean() / std * math.sqrt(PERIODS_PER_YEAR))

    def sortino_ratio(self, deltas: np.ndarray) -> float:
        """Sortino ratio; +inf when no excess return is negative."""
        if len(deltas) == 0:
            return 0.0
        excess = deltas - self.daily_rf
        downside = excess[excess < 0]
        if len(downside) == 0:
            return math.inf
        downside_deviation = math.sqrt(float(np.mean(downside ** 2)))
        return float(excess.mean() / downside_deviation * math.sqrt(PERIODS_PER_YEAR))

    @staticmethod
    def calmar_ratio(annualized_return_pct: float, max_drawdown_pct: float) -> float:
        if max_drawdown_pct <= 0:
            return 0.0
        return annualized_return_pct / max_drawdown_pct

    @staticmethod
    def ulcer_index(equity: Sequence[float]) -> float:
        drawdowns = stats.drawdown_series(equity)
        if len(drawdowns) == 0:
            return 0.0
        return float(math.sqrt(np.mean(drawdowns ** 2)))

    # ===== Trade Statistics =====

    @staticmethod
    def trade_stats(trades: List[Trade]) -> Dict[str, float]:
        """Statistics from closed trades. Wins are pnl > 0; everything else is a loss."""
        if not trades:
            return {
                "total_trades": 0,
                "winning_trades": 0,
                "losing_trades": 0,
                "win_rate": 0.0,
                "avg_win": 0.0,
                "avg_loss": 0.0,
                "profit_factor": 0.0,
                "expectancy": 0.0,
                "max_consecutive_wins": 0,
                "max_consecutive_losses": 0,
            }

        pnls = [t.pnl_dollar for t in trades]
        winners = [p for p in pnls if p > 0]
        losers = [p for p in pnls if p <= 0]

        win_rate = len(winners) / len(trades)
        avg_win = float(np.mean(winners)) if winners else 0.0
        avg_loss = abs(float(np.mean(losers))) if losers else 0.0

        gross_profit = sum(winners)
        gross_loss = abs(sum(losers))
        profit_factor = gross_profit / gross_loss if gross_loss > 0 else math.inf

        # Consecutive wins/losses
        max_consec_wins = 0
        max_consec_losses = 0
        current_wins = 0
        current_losses = 0
        for pnl in pnls:
            if pnl > 0:
                current_wins += 1
                current_losses = 0
                max_consec_wins = max(max_consec_wins, current_wins)
            else:
                current_losses += 1
                current_wins = 0
                max_consec_losses = max(max_consec_losses, current_losses)

        return {
            "total_trades": len(trades),
            "winning_trades": len(winners),
            "losing_trades": len(losers),
            "win_rate": win_rate * 100,
            "avg_win": avg_win,
            "avg_loss": avg_loss,
            "profit_factor": profit_factor,
            "expectancy": win_rate * avg_win - (1 - win_rate) * avg_loss,
            "max_consecutive_wins": max_consec_wins,
            "max_consecutive_losses": max_consec_losses,
        }

    @staticmethod
    def timing_stats(trades: List[Trade]) -> Tuple[float, float]:
        """Average holding period and average days between consecutive entries."""
        if not trades:
            return 0.0, 0.0
        avg_holding = float(np.mean([t.holding_period for t in trades]))
        entries = sorted(t.entry_date for t in trades)
        if len(entries) < 2:
            return avg_holding, 0.0
        gaps = [(b - a).total_seconds() / 86400 for a, b in zip(entries, entries[1:])]
        return avg_holding, float(np.mean(gaps))

    # ===== Statistical Tests =====

    @staticmethod
    def t_test(deltas: np.ndarray) -> Tuple[float, float]:
        """
        t-test of the mean daily return against zero.

        Returns:
            Tuple of (t-statistic, p-value)
        """
        if len(deltas) < 10 or float(np.std(deltas)) == 0:
            return 0.0, 1.0
        t_stat, p_value = scipy_stats.ttest_1samp(deltas, 0)
        return float(t_stat), float(p_value)

    # ===== Regime Breakdown =====

    @staticmethod
    def regime_metrics(trades: List[Trade], equity_curve: List[EquityPoint]) -> Dict[Regime, RegimeMetrics]:
        """Metrics for every regime; regimes without trades get an empty record."""
        days = regime_durations([p.regime for p in equity_curve])
        total_days = len(equity_curve)
        result = {}

        for regime in Regime:
            time_in_regime = days[regime] / total_days * 100 if total_days else 0.0
            regime_trades = [t for t in trades if t.regime == regime]
            if not regime_trades:
                result[regime] = RegimeMetrics(regime=regime, time_in_regime=time_in_regime)
                continue

            returns = np.array([t.pnl_percent * 100 for t in regime_trades])
            wins = returns[returns > 0]
            losses = returns[returns <= 0]
            avg_return = float(returns.mean())
            volatility = float(returns.std())
            loss_sum = abs(float(losses.sum()))

            max_dd, _ = stats.max_drawdown([p.equity for p in equity_curve if p.regime == regime])

            result[regime] = RegimeMetrics(
                regime=regime,
                trades=len(regime_trades),
                win_rate=len(wins) / len(returns) * 100,
                avg_return=avg_return,
                total_return=float(returns.sum()),
                volatility=volatility,
                sharpe_ratio=avg_return / volatility if volatility > 0 else 0.0,
                max_drawdown=max_dd,
                profit_factor=float(wins.sum()) / loss_sum if loss_sum > 0 else math.inf,
                avg_holding_period=float(np.mean([t.holding_period for t in regime_trades])),
                time_in_regime=time_in_regime,
            )

        return result

    # ===== Calendar / Drawdowns =====

    @staticmethod
    def period_returns(
        equity_curve: List[EquityPoint],
        trades: List[Trade],
        initial_capital: float,
        freq: str = "M"
    ) -> List[PeriodReturn]:
        """Calendar returns (freq 'M' monthly, 'Y' yearly) chained from period-end equity."""
        if not equity_curve:
            return []

        frame = pd.DataFrame(
            {
                "equity": [p.equity for p in equity_curve],
                "regime": [p.regime for p in equity_curve],
            },
            index=pd.DatetimeIndex([p.date for p in equity_curve]),
        )
        periods = frame.index.to_period(freq)
        exit_periods = Counter(
            str(pd.Timestamp(t.exit_date).to_period(freq)) for t in trades if t.exit_date is not None
        )

        results = []
        previous_equity = initial_capital
        for period, group in frame.groupby(periods, sort=True):
            end_equity = float(group["equity"].iloc[-1])
            regime_counts = Counter(group["regime"])
            label = str(period)
            results.append(PeriodReturn(
                period=label,
                return_pct=(end_equity / previous_equity - 1) * 100 if previous_equity > 0 else 0.0,
                trades=exit_periods.get(label, 0),
                dominant_regime=regime_counts.most_common(1)[0][0],
            ))
            previous_equity = end_equity

        return results

    @staticmethod
    def drawdown_periods(equity_curve: List[EquityPoint]) -> List[DrawdownPeriod]:
        """Every stretch spent below the running equity peak."""
        periods = []
        peak = -math.inf
        start = None
        trough_index = None
        depth = 0.0

        for i, point in enumerate(equity_curve):
            if point.equity >= peak:
                if start is not None:
                    periods.append(DrawdownPeriod(
                        start_date=equity_curve[start].date,
                        trough_date=equity_curve[trough_index].date,
                        end_date=point.date,
                        depth=depth,
                        duration=i - start,
                    ))
                    start = None
                peak = point.equity
                continue

            dd = (peak - point.equity) / peak * 100 if peak > 0 else 0.0
            if start is None:
                start, trough_index, depth = i, i, dd
            elif dd > depth:
                trough_index, depth = i, dd

        if start is not None:
            periods.append(DrawdownPeriod(
                start_date=equity_curve[start].date,
                trough_date=equity_curve[trough_index].date,
                end_date=None,
                depth=depth,
                duration=len(equity_curve) - start,
            ))

        return periods

    # ===== Benchmark =====

    @staticmethod
    def benchmark_comparison(
        equity: Sequence[float],
        benchmark_prices: Sequence[float]
    ) -> Optional[BenchmarkComparison]:
        """Compare the equity curve with buy-and-hold of the benchmark over the same days."""
        equity = np.asarray(equity, dtype=float)
        benchmark_prices = np.asarray(benchmark_prices, dtype=float)
        if len(equity) < 3 or len(equity) != len(benchmark_prices):
            return None

        strategy_returns = stats.calculate_returns(equity)
        benchmark_returns = stats.calculate_returns(benchmark_prices)
        active = strategy_returns - benchmark_returns
        active_std = float(np.std(active, ddof=1))

        try:
            fit = stats.linear_regression(benchmark_returns, strategy_returns)
            alpha, beta = fit.intercept * PERIODS_PER_YEAR * 100, fit.slope
        except ValueError:
            alpha, beta = float(strategy_returns.mean()) * PERIODS_PER_YEAR * 100, 0.0

        return BenchmarkComparison(
            benchmark_return=(benchmark_prices[-1] / benchmark_prices[0] - 1) * 100,
            strategy_return=(equity[-1] / equity[0] - 1) * 100,
            alpha=alpha,
            beta=beta,
            correlation=stats.correlation(strategy_returns, benchmark_returns),
            information_ratio=float(active.mean() / active_std * math.sqrt(PERIODS_PER_YEAR)) if active_std > 0 else 0.0,
            tracking_error=active_std * math.sqrt(PERIODS_PER_YEAR) * 100,
        )

    # ===== Aggregate =====

    def calculate_all(
        self,
        trades: List[Trade],
        equity_curve: List[EquityPoint],
        initial_capital: float
    ) -> PerformanceMetrics:
        """Calculate every metric of one run."""
        if not equity_curve:
            return PerformanceMetrics(regime_performance=self.regime_metrics(trades, equity_curve))

        equity = np.array([p.equity for p in equity_curve])
        deltas = self.daily_deltas(equity, initial_capital)
        periods = len(equity_curve)

        total_return = self.total_return(float(equity[-1]), initial_capital)
        annualized = self.annualized_return(total_return, periods)
        max_dd, max_dd_duration = stats.max_drawdown(equity)

        trade_stats = self.trade_stats(trades)
        avg_holding, avg_between = self.timing_stats(trades)
        t_stat, p_value = self.t_test(deltas)

        return PerformanceMetrics(
            total_return=total_return,
            annualized_return=annualized,
            cagr=self.cagr(float(equity[-1]), initial_capital, periods),
            volatility=self.volatility(deltas),
            sharpe_ratio=self.sharpe_ratio(deltas),
            sortino_ratio=self.sortino_ratio(deltas),
            calmar_ratio=self.calmar_ratio(annualized, max_dd),
            max_drawdown=max_dd,
            max_drawdown_duration=max_dd_duration,
            var_95=stats.value_at_risk(deltas, 0.95) * 100,
            var_99=stats.value_at_risk(deltas, 0.99) * 100,
            expected_shortfall=stats.expected_shortfall(deltas, 0.95) * 100,
            ulcer_index=self.ulcer_index(equity),
            avg_holding_period=avg_holding,
            avg_time_between_trades=avg_between,
            trading_days=periods,
            t_statistic=t_stat,
            p_value=p_value,
            regime_performance=self.regime_metrics(trades, equity_curve),
            **trade_stats,
        )
