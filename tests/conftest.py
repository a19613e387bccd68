"""
Shared fixtures: configurations, synthetic pairs and ledger builders.
"""

import sys
from datetime import datetime, timedelta
from pathlib import Path

import numpy as np
import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from config.loader import BacktestConfiguration, RiskParameters, StrategyParameters
from perception.market_data import SyntheticPairProvider
from strategy.models import Direction, Regime, StrategyType
from validation.models import (
    EquityPoint,
    ExecutionSide,
    Trade,
    TradeExecution,
    TradeStatus,
)


@pytest.fixture
def config():
    return BacktestConfiguration()


@pytest.fixture
def strategy_params():
    return StrategyParameters()


@pytest.fixture
def risk_params():
    return RiskParameters()


@pytest.fixture
def pair_data():
    """Tightly cointegrated, highly correlated pair."""
    return SyntheticPairProvider(days=400, seed=42).load()


@pytest.fixture
def correlated_pair_data():
    """Pair whose rolling return correlation stays well above 0.7."""
    return SyntheticPairProvider(days=500, seed=7, spread_volatility=0.005).load()


@pytest.fixture
def random_walks():
    np.random.seed(42)
    a = 100 * np.exp(np.cumsum(np.random.randn(300) * 0.01))
    b = 50 * np.exp(np.cumsum(np.random.randn(300) * 0.01))
    return a, b


@pytest.fixture
def make_trade():
    """Factory for closed trades with a given PnL."""

    def _make(
        pnl_dollar: float,
        regime: Regime = Regime.HIGH_CORRELATION,
        entry_date: datetime = datetime(2021, 1, 4),
        holding_days: int = 5,
        capital: float = 10_000.0,
        trade_id: str = "trade_1",
        entry_zscore: float = -2.8,
    ):
        exit_date = entry_date + timedelta(days=holding_days)
        strategy = {
            Regime.HIGH_CORRELATION: StrategyType.MEAN_REVERSION,
            Regime.LOW_CORRELATION: StrategyType.MOMENTUM,
            Regime.TRANSITION: StrategyType.TRANSITION,
        }[regime]
        entry = TradeExecution(
            execution_id=f"{trade_id}_entry",
            date=entry_date,
            side=ExecutionSide.ENTRY,
            direction=Direction.LONG_PRIMARY_SHORT_SECONDARY,
            primary_price=100.05,
            secondary_price=49.975,
            primary_amount=12_500.0,
            secondary_amount=-12_500.0,
            leverage=2.5,
            commission=10.0,
            slippage=5.0,
            reason=f"{regime.value} regime entry (z-score: {entry_zscore:.2f})",
            signal_strength=0.8,
            regime=regime,
        )
        return Trade(
            trade_id=trade_id,
            entry_execution=entry,
            regime=regime,
            strategy=strategy,
            entry_date=entry_date,
            entry_primary_price=100.05,
            entry_secondary_price=49.975,
            entry_zscore=entry_zscore,
            entry_signal_strength=0.8,
            entry_reason=entry.reason,
            primary_amount=12_500.0,
            secondary_amount=-12_500.0,
            leverage=2.5,
            capital_allocated=capital,
            total_commission=20.0,
            total_slippage=10.0,
            status=TradeStatus.CLOSED,
            exit_date=exit_date,
            exit_primary_price=101.0,
            exit_secondary_price=49.5,
            exit_zscore=-0.5,
            exit_reason="mean_reversion_target",
            pnl_dollar=pnl_dollar,
            pnl_percent=pnl_dollar / capital,
            holding_period=float(holding_days),
        )

    return _make


@pytest.fixture
def make_curve():
    """Factory for equity curves on consecutive days."""

    def _make(values, start: datetime = datetime(2021, 1, 4), regime: Regime = Regime.HIGH_CORRELATION):
        return [
            EquityPoint(
                date=start + timedelta(days=i),
                equity=float(v),
                cash=float(v),
                unrealized_pnl=0.0,
                realized_pnl=float(v) - float(values[0]),
                drawdown=0.0,
                regime=regime,
                active_positions=0,
            )
            for i, v in enumerate(values)
        ]

    return _make
