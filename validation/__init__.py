"""
VALIDATION - Backtesting and Robustness Testing

The Validation module tests the pairs strategy before it is trusted:

1. Backtesting - Day-by-day simulation on historical prices
2. Metrics - Return, risk, trade and regime statistics
3. Journal - Ledger filters, patterns and CSV export
4. Walk-forward - Rolling in-sample optimization, out-of-sample trading

Usage:
    from validation import BacktestingEngine, WalkForwardTester
    from config.loader import get_config

    config, strategy, risk = get_config().load()

    engine = BacktestingEngine(config, strategy, risk)
    result = engine.run_backtest(market_data)

    tester = WalkForwardTester(config, strategy, risk)
    analysis = tester.run(market_data, in_sample_days=252, out_of_sample_days=63)
"""

from validation.models import (
    TradeStatus,
    ExitReason,
    ExecutionSide,
    TradeExecution,
    Trade,
    EquityPoint,
    RegimeMetrics,
    PerformanceMetrics,
    PeriodReturn,
    DrawdownPeriod,
    BenchmarkComparison,
    BacktestResult,
    WalkForwardResult,
    ParameterStability,
    WalkForwardAnalysis,
)

from validation.metrics import PerformanceCalculator

from validation.backtester import (
    BacktestingEngine,
    DailyContext,
)

from validation.journal import (
    TradeJournal,
    CSV_COLUMNS,
)

from validation.walk_forward import (
    WalkForwardTester,
    WalkForwardWindow,
    MonteCarloSummary,
    DEFAULT_PARAMETER_RANGES,
    build_windows,
    calculate_degradation,
    aggregate_results,
    generate_report,
)


__all__ = [
    # Models
    'TradeStatus',
    'ExitReason',
    'ExecutionSide',
    'TradeExecution',
    'Trade',
    'EquityPoint',
    'RegimeMetrics',
    'PerformanceMetrics',
    'PeriodReturn',
    'DrawdownPeriod',
    'BenchmarkComparison',
    'BacktestResult',
    'WalkForwardResult',
    'ParameterStability',
    'WalkForwardAnalysis',

    # Metrics
    'PerformanceCalculator',

    # Backtester
    'BacktestingEngine',
    'DailyContext',

    # Journal
    'TradeJournal',
    'CSV_COLUMNS',

    # Walk-forward
    'WalkForwardTester',
    'WalkForwardWindow',
    'MonteCarloSummary',
    'DEFAULT_PARAMETER_RANGES',
    'build_windows',
    'calculate_degradation',
    'aggregate_results',
    'generate_report',
]
