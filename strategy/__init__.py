"""
STRATEGY - Pairs Analysis and Signal Generation

The Strategy module turns two price series into daily trading decisions:

1. Cointegration - Is there a stable linear relationship?
2. Z-score - How stretched is the spread right now?
3. Regime - Are the legs moving together or apart?
4. Signals - Enter, exit or hold

Usage:
    from strategy import engle_granger_test, calculate_spread, rolling_zscore
    from strategy import classify_regime, SignalGenerator

    result = engle_granger_test(primary_prices, secondary_prices)
    spread = calculate_spread(primary_prices, secondary_prices, result.hedge_ratio)
    zscores = rolling_zscore(spread, window=30)

    regime = classify_regime(correlation, 0.7, 0.3)
    signal = SignalGenerator(params).generate(zscores[-1].zscore, regime, correlation, volatility)
"""

from strategy.models import (
    Regime,
    SignalType,
    Direction,
    StrategyType,
    REGIME_STRATEGY,
    CointegrationResult,
    ZScoreResult,
    RegimeState,
    TradingSignal,
    PositionSize,
)

from strategy.cointegration import (
    StructuralBreak,
    engle_granger_test,
    rolling_cointegration_test,
    optimal_hedge_ratio,
    structural_break_test,
    cointegration_confidence,
)

from strategy.zscore import (
    ZScoreRegime,
    calculate_spread,
    rolling_zscore,
    adaptive_window_size,
    adaptive_zscore,
    detect_zscore_regimes,
    zscore_momentum,
)

from strategy.regime import (
    classify_regime,
    regime_durations,
    regime_transitions,
)

from strategy.signals import (
    RegimeThresholds,
    SignalGenerator,
)


__all__ = [
    # Models
    'Regime',
    'SignalType',
    'Direction',
    'StrategyType',
    'REGIME_STRATEGY',
    'CointegrationResult',
    'ZScoreResult',
    'RegimeState',
    'TradingSignal',
    'PositionSize',

    # Cointegration
    'StructuralBreak',
    'engle_granger_test',
    'rolling_cointegration_test',
    'optimal_hedge_ratio',
    'structural_break_test',
    'cointegration_confidence',

    # Z-score
    'ZScoreRegime',
    'calculate_spread',
    'rolling_zscore',
    'adaptive_window_size',
    'adaptive_zscore',
    'detect_zscore_regimes',
    'zscore_momentum',

    # Regime
    'classify_regime',
    'regime_durations',
    'regime_transitions',

    # Signals
    'RegimeThresholds',
    'SignalGenerator',
]
