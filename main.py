#!/usr/bin/env python3
"""
PAIRS - Regime-Adaptive Pairs Trading Backtester
Main Entry Point
"""

import sys
import json
import argparse
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent))

from loguru import logger

# Setup logging
Path("logs").mkdir(exist_ok=True)
logger.remove()
logger.add(
    sys.stderr,
    format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <level>{message}</level>",
    level="INFO"
)
logger.add(
    "logs/backtest_{time:YYYY-MM-DD}.log",
    rotation="00:00",
    retention="30 days",
    level="DEBUG"
)

from config.loader import ConfigLoader
from core.invariants import ValidationError
from perception.market_data import CsvMarketDataProvider, MarketData, SyntheticPairProvider
from validation.backtester import BacktestingEngine
from validation.journal import TradeJournal
from validation.models import BacktestResult
from validation.walk_forward import WalkForwardTester, generate_report


def load_market_data(args) -> MarketData:
    if args.data:
        return CsvMarketDataProvider(
            args.data,
            primary_column=args.primary_column,
            secondary_column=args.secondary_column,
            date_column=args.date_column,
        ).load()

    logger.info(f"Using synthetic pair ({args.days} days, seed {args.seed})")
    return SyntheticPairProvider(days=args.days, seed=args.seed).load()


def print_summary(result: BacktestResult):
    m = result.metrics
    c = result.cointegration

    print("\n" + "=" * 50)
    print("BACKTEST RESULTS")
    print("=" * 50)
    print(f"Period:            {result.start_date.date()} to {result.end_date.date()}")
    print(f"Cointegrated:      {c.is_cointegrated} (ADF {c.test_statistic:.2f}, hedge ratio {c.hedge_ratio:.4f})")
    print(f"Total return:      {m.total_return:.2f}%")
    print(f"Annualized return: {m.annualized_return:.2f}%")
    print(f"Sharpe ratio:      {m.sharpe_ratio:.2f}")
    print(f"Sortino ratio:     {m.sortino_ratio:.2f}")
    print(f"Max drawdown:      {m.max_drawdown:.2f}% ({m.max_drawdown_duration} days)")
    print(f"Trades:            {m.total_trades} (win rate {m.win_rate:.1f}%)")
    print(f"Profit factor:     {m.profit_factor:.2f}")
    print(f"Regime changes:    {result.regime_changes}")

    if m.regime_performance:
        print("\nBy regime:")
        for regime, rm in m.regime_performance.items():
            print(f"  {regime.value:<18} trades {rm.trades:>4}  win {rm.win_rate:5.1f}%  "
                  f"return {rm.total_return:7.2f}%  time {rm.time_in_regime:5.1f}%")
    print()


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(description="PAIRS - Regime-Adaptive Pairs Trading Backtester")
    source = parser.add_mutually_exclusive_group()
    source.add_argument("--data", help="CSV file with a date column and two price columns")
    source.add_argument("--synthetic", action="store_true", help="Use a simulated pair (default)")
    parser.add_argument("--primary-column", default="primary")
    parser.add_argument("--secondary-column", default="secondary")
    parser.add_argument("--date-column", default="date")
    parser.add_argument("--days", type=int, default=750, help="Synthetic data length")
    parser.add_argument("--seed", type=int, default=42, help="Synthetic data seed")
    parser.add_argument("--config", default="config", help="Directory holding settings.yaml")
    parser.add_argument("--walk-forward", action="store_true", help="Run walk-forward analysis")
    parser.add_argument("--in-sample-days", type=int, default=252)
    parser.add_argument("--out-of-sample-days", type=int, default=63)
    parser.add_argument("--step-size", type=int, default=21)
    parser.add_argument("--workers", type=int, default=None, help="Threads for parameter search")
    parser.add_argument("--export-trades", help="Write the trade ledger to this CSV file")
    parser.add_argument("--report-json", help="Write the full result as JSON to this file")

    args = parser.parse_args()

    try:
        config, strategy_params, risk_params = ConfigLoader(args.config).load()
        market_data = load_market_data(args)

        if args.walk_forward or config.enable_walk_forward:
            tester = WalkForwardTester(config, strategy_params, risk_params, max_workers=args.workers)
            analysis = tester.run(market_data, args.in_sample_days, args.out_of_sample_days, args.step_size)
            print(generate_report(analysis))
            report = analysis.to_dict()
        else:
            engine = BacktestingEngine(config, strategy_params, risk_params)
            result = engine.run_backtest(market_data)
            print_summary(result)
            report = result.to_dict()

            if args.export_trades:
                TradeJournal(result.trades).save_csv(args.export_trades)

    except (ValidationError, FileNotFoundError) as e:
        logger.error(f"Run failed: {e}")
        sys.exit(1)

    if args.report_json:
        path = Path(args.report_json)
        path.write_text(json.dumps(report, indent=2, sort_keys=True, default=str))
        logger.info(f"Report written to {path}")


if __name__ == "__main__":
    main()
