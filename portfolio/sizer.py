"""
POSITION SIZER - Risk-Constrained Kelly Sizing for Pair Trades

Converts a trading signal into dollar notionals for both legs:

1. Base size = capital x base_position_size
2. x fractional Kelly for the signal's regime
3. x regime multiplier (momentum regimes get more, transitions less)
4. x signal quality (strength, confidence)
5. x risk multiplier (current drawdown, capital already committed)
6. Clamped to the per-trade cap and to free cash
7. Levered, then split 50/50 into a long leg and a short leg

The sizer never raises: on an internal failure it returns a zero-capital
position, which the engine skips.
"""

import math
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from loguru import logger

from config.loader import RiskParameters, StrategyParameters
from core import stats
from core.invariants import INVARIANTS
from strategy.models import Direction, PositionSize, Regime, TradingSignal


@dataclass
class PortfolioSnapshot:
    """What the sizer knows about the portfolio at decision time."""
    total_capital: float  # current equity
    available_cash: float  # cash not committed to open trades
    allocated_capital: float = 0.0
    equity_history: List[float] = field(default_factory=list)

    @property
    def current_drawdown(self) -> float:
        """Drawdown of the latest equity point in percent."""
        if not self.equity_history:
            return 0.0
        peak = max(self.equity_history)
        if peak <= 0:
            return 0.0
        return max(0.0, (peak - self.equity_history[-1]) / peak * 100)


@dataclass
class RegimePerformance:
    """Trade statistics of one regime, as fed back into Kelly sizing."""
    win_rate: float  # 0 to 1
    avg_win: float  # fractional return, positive
    avg_loss: float  # fractional return, sign ignored
    total_trades: int = 0


class KellyCalculator:
    """
    Calculates Kelly criterion for position sizing.

    Full Kelly is too aggressive for pair trades with fat-tailed spreads,
    so the sizer always applies the configured Kelly multiplier on top.
    """

    @staticmethod
    def calculate_kelly(win_rate: float, avg_win: float, avg_loss: float) -> float:
        """
        Calculate Kelly fraction.

        Args:
            win_rate: Probability of winning (0 to 1)
            avg_win: Average winning trade return
            avg_loss: Average losing trade return (sign ignored)

        Returns:
            Kelly fraction (can be negative if edge is negative)
        """
        return stats.kelly_fraction(win_rate, abs(avg_win), abs(avg_loss))

    @staticmethod
    def calculate_kelly_from_performance(
        performance: Optional[RegimePerformance],
        multiplier: float,
        min_kelly: float = 0.1,
        max_kelly: float = 1.0
    ) -> float:
        """Fractional Kelly for a regime; the bare multiplier when there is no history."""
        if performance is None:
            return multiplier

        if performance.avg_loss == 0 or performance.win_rate == 0:
            return 0.25

        kelly = KellyCalculator.calculate_kelly(performance.win_rate, performance.avg_win, performance.avg_loss)
        return max(min_kelly, min(max_kelly, kelly * multiplier))


class PositionSizer:
    """Sizes pair trades from signals."""

    REGIME_MULTIPLIERS = {
        Regime.HIGH_CORRELATION: 1.0,
        Regime.LOW_CORRELATION: 1.2,
        Regime.TRANSITION: 0.5,
    }

    EXPECTED_RETURNS = {
        Regime.HIGH_CORRELATION: 0.015,
        Regime.LOW_CORRELATION: 0.025,
        Regime.TRANSITION: 0.005,
    }

    def __init__(self, risk_params: RiskParameters, strategy_params: StrategyParameters):
        self.risk_params = risk_params
        self.strategy_params = strategy_params

    def size(
        self,
        signal: TradingSignal,
        portfolio: PortfolioSnapshot,
        historical_performance: Optional[Dict[Regime, RegimePerformance]] = None
    ) -> PositionSize:
        """Size one trade. Returns PositionSize.minimal() on failure."""
        try:
            capital = portfolio.total_capital
            base_size = capital * self.strategy_params.base_position_size

            performance = (historical_performance or {}).get(signal.regime)
            kelly = KellyCalculator.calculate_kelly_from_performance(performance, self.strategy_params.kelly_multiplier)

            regime_multiplier = self.REGIME_MULTIPLIERS.get(signal.regime, 0.8)
            strength_multiplier = 0.5 + (signal.strength * 0.6 + signal.confidence * 0.4)
            risk_multiplier = self.risk_multiplier(portfolio)

            adjusted = base_size * kelly * regime_multiplier * strength_multiplier * risk_multiplier
            final_size = min(
                adjusted,
                self.risk_params.max_position_size * capital,
                portfolio.available_cash * INVARIANTS.CASH_USAGE_LIMIT,
            )
            final_size = max(0.0, final_size)
            if not math.isfinite(final_size):
                raise ValueError(f"non-finite position size {final_size}")

            leverage = self.leverage(signal)
            primary_amount, secondary_amount = self._split_exposure(final_size * leverage, signal.direction)

            return PositionSize(
                primary_amount=primary_amount,
                secondary_amount=secondary_amount,
                leverage=leverage,
                capital_allocated=final_size,
                risk_percentage=final_size / capital * 100 if capital > 0 else 0.0,
                expected_return=self.EXPECTED_RETURNS.get(signal.regime, 0.0),
                kelly_fraction=kelly,
            )
        except Exception as e:
            logger.error(f"Position sizing failed: {e}")
            return PositionSize.minimal()

    def risk_multiplier(self, portfolio: PortfolioSnapshot) -> float:
        """Cut size when in drawdown or when most capital is already committed."""
        multiplier = 1.0

        drawdown = portfolio.current_drawdown
        if drawdown > self.risk_params.max_drawdown * 0.5:
            multiplier *= 0.5
        elif drawdown > self.risk_params.max_drawdown * 0.3:
            multiplier *= 0.75

        if portfolio.total_capital > 0:
            allocation = portfolio.allocated_capital / portfolio.total_capital
            if allocation > 0.8:
                multiplier *= 0.3
            elif allocation > 0.6:
                multiplier *= 0.6

        return max(0.1, multiplier)

    def leverage(self, signal: TradingSignal) -> float:
        base = {
            Regime.HIGH_CORRELATION: self.strategy_params.mean_reversion_leverage,
            Regime.LOW_CORRELATION: self.strategy_params.momentum_leverage,
            Regime.TRANSITION: self.strategy_params.transition_leverage,
        }[signal.regime]
        return min(base * (0.5 + signal.strength * 0.5), self.risk_params.max_leverage)

    @staticmethod
    def _split_exposure(exposure: float, direction: Direction) -> Tuple[float, float]:
        leg = exposure * 0.5
        if direction == Direction.LONG_PRIMARY_SHORT_SECONDARY:
            return leg, -leg
        if direction == Direction.SHORT_PRIMARY_LONG_SECONDARY:
            return -leg, leg
        return 0.0, 0.0

    @staticmethod
    def rebalance_size(
        current_amount: float,
        target_amount: float,
        threshold: float = 0.1
    ) -> float:
        """Adjustment needed to move one leg back to target, 0 if drift is within threshold."""
        if current_amount == 0:
            return target_amount
        drift = abs(target_amount - current_amount) / abs(current_amount)
        if drift <= threshold:
            return 0.0
        return target_amount - current_amount
