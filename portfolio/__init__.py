"""
PORTFOLIO - Position Sizing for Pair Trades

The Portfolio module handles:
1. Kelly fraction per correlation regime
2. Risk-scaled sizing against drawdown and committed capital
3. Leverage and the long/short split of each pair trade
4. Rebalance suggestions for drifting legs

Components:
- PositionSizer: Turns a TradingSignal into a PositionSize
- KellyCalculator: Raw and fractional Kelly
- PortfolioSnapshot: What the sizer sees of the portfolio

Usage:
    from portfolio import PositionSizer, PortfolioSnapshot

    sizer = PositionSizer(risk_params, strategy_params)
    position = sizer.size(
        signal,
        PortfolioSnapshot(total_capital=100_000, available_cash=100_000),
    )
"""

from portfolio.sizer import (
    # Main class
    PositionSizer,

    # Kelly
    KellyCalculator,

    # Data types
    PortfolioSnapshot,
    RegimePerformance,
)


__all__ = [
    'PositionSizer',
    'KellyCalculator',
    'PortfolioSnapshot',
    'RegimePerformance',
]
