"""
Test the day-by-day backtesting engine.

Run with: python -m pytest tests/test_backtester.py -v
"""

import json
from datetime import datetime, timedelta

import pytest

from config.loader import BacktestConfiguration, StrategyParameters
from core.events import EventType
from core.invariants import InsufficientDataError, ValidationError
from perception.market_data import MarketData, SyntheticPairProvider
from strategy.models import Direction, StrategyType
from strategy.regime import classify_regime
from validation.backtester import BacktestingEngine, DailyContext
from validation.models import ExitReason

START = datetime(2021, 1, 4)


def context(day: int, primary: float, secondary: float, zscore: float, correlation: float = 0.9, offset_days: int = None):
    date = START + timedelta(days=day if offset_days is None else offset_days)
    return DailyContext(
        index=day,
        date=date,
        primary_price=primary,
        secondary_price=secondary,
        zscore=zscore,
        correlation=correlation,
        volatility=0.2,
        regime=classify_regime(correlation, 0.7, 0.3, 0.2),
    )


def event_types(events):
    return [e.event_type for e in events]


@pytest.fixture
def engine(config, strategy_params, risk_params):
    return BacktestingEngine(config, strategy_params, risk_params)


class TestTradeLifecycle:

    def test_profit_target_exit(self, engine):
        day1 = engine.step(context(0, 100.0, 50.0, -3.0))
        assert EventType.POSITION_OPENED in event_types(day1)

        trade = engine.open_trades[0]
        assert trade.entry_execution.direction == Direction.LONG_PRIMARY_SHORT_SECONDARY
        assert trade.strategy == StrategyType.MEAN_REVERSION
        assert trade.primary_amount > 0 > trade.secondary_amount
        assert trade.entry_reason == "high-correlation regime entry (z-score: -3.00)"

        day2 = engine.step(context(1, 101.0, 50.0, -1.5))
        assert EventType.POSITION_CLOSED not in event_types(day2)
        assert len(engine.open_trades) == 1

        day3 = engine.step(context(2, 110.0, 50.0, -1.5))
        closed = [e for e in day3 if e.event_type == EventType.POSITION_CLOSED]
        assert len(closed) == 1
        assert closed[0].payload["exit_reason"] == ExitReason.PROFIT_TARGET.value

        trade = engine.closed_trades[0]
        assert trade.pnl_dollar > 0
        assert trade.pnl_percent == pytest.approx(trade.pnl_dollar / trade.capital_allocated)
        assert trade.holding_period == pytest.approx(2.0)
        assert engine.cash == pytest.approx(100_000 + trade.pnl_dollar)
        assert engine.equity_curve[-1].equity == pytest.approx(engine.cash)

    def test_entry_only_pays_costs(self, engine):
        engine.step(context(0, 100.0, 50.0, -3.0))
        trade = engine.open_trades[0]
        assert engine.cash == pytest.approx(100_000 - trade.total_costs)
        # equity marks the legs at the unslipped close
        point = engine.equity_curve[-1]
        assert point.equity == pytest.approx(engine.cash + point.unrealized_pnl)
        assert point.active_positions == 1

    def test_stop_loss_exit(self, engine):
        engine.step(context(0, 100.0, 50.0, -3.0))
        engine.step(context(1, 90.0, 50.0, -3.2))
        trade = engine.closed_trades[0]
        assert trade.exit_reason == ExitReason.STOP_LOSS.value
        assert trade.pnl_percent < -0.05

    def test_max_holding_exit(self, engine):
        engine.step(context(0, 100.0, 50.0, -3.0))
        engine.step(context(1, 100.0, 50.0, -2.0, offset_days=31))
        assert engine.closed_trades[0].exit_reason == ExitReason.MAX_HOLDING_PERIOD.value

    def test_mean_reversion_exit(self, engine):
        engine.step(context(0, 100.0, 50.0, -3.0))
        engine.step(context(1, 100.0, 50.0, -0.5))
        assert engine.closed_trades[0].exit_reason == ExitReason.MEAN_REVERSION_TARGET.value

    def test_momentum_reversal_exit(self, engine):
        engine.step(context(0, 100.0, 50.0, 2.2, correlation=0.1))
        trade = engine.open_trades[0]
        assert trade.strategy == StrategyType.MOMENTUM
        assert trade.entry_execution.direction == Direction.LONG_PRIMARY_SHORT_SECONDARY

        engine.step(context(1, 100.0, 50.0, -0.5, correlation=0.1))
        assert engine.closed_trades[0].exit_reason == ExitReason.MOMENTUM_REVERSAL.value

    def test_transition_regime_never_opens(self, engine):
        events = engine.step(context(0, 100.0, 50.0, -4.0, correlation=0.5))
        assert EventType.POSITION_OPENED not in event_types(events)
        assert engine.open_trades == []

    def test_finalize_closes_everything(self, engine):
        ctx = context(0, 100.0, 50.0, -3.0)
        engine.step(ctx)
        events = engine.finalize(ctx)
        assert event_types(events) == [EventType.POSITION_CLOSED]
        assert engine.closed_trades[0].exit_reason == ExitReason.BACKTEST_END.value
        assert engine.open_trades == []

    def test_max_positions(self, strategy_params, risk_params):
        engine = BacktestingEngine(BacktestConfiguration(max_positions=1), strategy_params, risk_params)
        engine.step(context(0, 100.0, 50.0, -3.0))
        events = engine.step(context(1, 100.0, 50.0, -3.1))

        skipped = [e for e in events if e.event_type == EventType.ENTRY_SKIPPED]
        assert len(skipped) == 1
        assert skipped[0].payload["reason"] == "max_positions"
        assert len(engine.open_trades) == 1


class TestExecutionFailures:

    @staticmethod
    def _fail(*args, **kwargs):
        raise RuntimeError("broker rejected order")

    def test_failed_entry_is_skipped(self, engine, monkeypatch):
        monkeypatch.setattr(engine, "_execute_entry", self._fail)

        events = engine.step(context(0, 100.0, 50.0, -3.0))

        failed = [e for e in events if e.event_type == EventType.EXECUTION_FAILED]
        assert len(failed) == 1
        assert failed[0].payload["side"] == "entry"
        assert engine.open_trades == []
        assert len(engine.equity_curve) == 1

    def test_failed_exit_keeps_trade_open(self, engine, monkeypatch):
        engine.step(context(0, 100.0, 50.0, -3.0))
        monkeypatch.setattr(engine, "_execute_exit", self._fail)

        events = engine.step(context(1, 100.0, 50.0, -0.5))

        assert EventType.EXECUTION_FAILED in event_types(events)
        assert len(engine.open_trades) == 1
        assert engine.closed_trades == []

    def test_finalize_settles_trades_whose_exit_fails(self, engine, monkeypatch):
        ctx = context(0, 100.0, 50.0, -3.0)
        engine.step(ctx)
        entry_costs = engine.open_trades[0].total_costs
        monkeypatch.setattr(engine, "_execute_exit", self._fail)

        events = engine.finalize(ctx)

        assert event_types(events) == [EventType.EXECUTION_FAILED, EventType.POSITION_CLOSED]
        assert engine.open_trades == []
        trade = engine.closed_trades[0]
        assert trade.exit_reason == ExitReason.BACKTEST_END.value
        assert trade.exit_primary_price == 100.0
        assert trade.total_costs == pytest.approx(entry_costs)
        assert engine.cash == pytest.approx(100_000 + trade.pnl_dollar)

    def test_every_opened_trade_reaches_the_ledger(self, pair_data, engine, monkeypatch):
        monkeypatch.setattr(engine, "_execute_exit", self._fail)
        received = []
        engine.subscribe(received.append, EventType.POSITION_OPENED)

        result = engine.run_backtest(pair_data)

        assert len(received) > 0
        assert len(result.trades) == len(received)
        assert all(not t.is_open for t in result.trades)


class TestFullBacktest:

    def test_high_correlation_pair_only_mean_reverts(self, correlated_pair_data, config, risk_params):
        params = StrategyParameters(zscore_entry_threshold=2.0)
        result = BacktestingEngine(config, params, risk_params).run_backtest(correlated_pair_data)

        assert len(result.trades) > 0
        assert all(t.strategy == StrategyType.MEAN_REVERSION for t in result.trades)
        for t in result.trades:
            assert t.entry_date <= t.exit_date
            assert t.capital_allocated > 0
            assert t.pnl_percent == pytest.approx(t.pnl_dollar / t.capital_allocated)
        assert result.metrics.total_trades == len(result.trades)

    def test_equity_curve_covers_simulated_days(self, pair_data, engine, strategy_params):
        result = engine.run_backtest(pair_data)

        assert len(result.equity_curve) == len(pair_data) - strategy_params.correlation_window
        assert result.equity_curve[0].date == pair_data.dates[strategy_params.correlation_window]
        assert result.equity_curve[-1].date == pair_data.dates[-1]
        assert all(0.0 <= p.drawdown <= 100.0 for p in result.equity_curve)
        assert all(not t.is_open for t in result.trades)

    def test_dates_bound_the_simulation(self, pair_data, strategy_params, risk_params):
        config = BacktestConfiguration(start_date=pair_data.dates[100], end_date=pair_data.dates[300])
        result = BacktestingEngine(config, strategy_params, risk_params).run_backtest(pair_data)

        assert result.equity_curve[0].date == pair_data.dates[100]
        assert result.equity_curve[-1].date == pair_data.dates[300]
        assert all(t.exit_date <= pair_data.dates[300] for t in result.trades)

    def test_deterministic(self, pair_data, config, strategy_params, risk_params):
        first = BacktestingEngine(config, strategy_params, risk_params).run_backtest(pair_data)
        second = BacktestingEngine(config, strategy_params, risk_params).run_backtest(pair_data)

        dump = lambda r: json.dumps(r.to_dict(), sort_keys=True, default=str)
        assert dump(first) == dump(second)

    def test_engine_reusable(self, pair_data, engine):
        first = engine.run_backtest(pair_data)
        second = engine.run_backtest(pair_data)
        assert first.metrics.total_return == second.metrics.total_return
        assert len(first.trades) == len(second.trades)

    def test_event_stream(self, pair_data, engine):
        received = []
        engine.subscribe(received.append)

        result = engine.run_backtest(pair_data)

        assert received[0].event_type == EventType.BACKTEST_STARTED
        assert received[-1].event_type == EventType.BACKTEST_COMPLETED
        opened = [e for e in received if e.event_type == EventType.POSITION_OPENED]
        closed = [e for e in received if e.event_type == EventType.POSITION_CLOSED]
        assert len(opened) == len(closed) == len(result.trades)
        assert all(e.date is not None for e in received)


class TestValidation:

    def test_identical_legs_run_without_trading(self, pair_data, engine):
        prices = pair_data.secondary_prices
        data = MarketData(dates=pair_data.dates, primary_prices=prices.copy(), secondary_prices=prices.copy())

        result = engine.run_backtest(data)

        assert not result.cointegration.is_cointegrated
        assert result.trades == []
        assert len(result.equity_curve) == len(data) - engine.strategy_params.correlation_window

    def test_short_data_fails_before_trading(self, engine):
        short = SyntheticPairProvider(days=60).load()
        received = []
        engine.subscribe(received.append)

        with pytest.raises(InsufficientDataError):
            engine.run_backtest(short)

        assert received == []

    def test_start_after_data_fails(self, pair_data, strategy_params, risk_params):
        config = BacktestConfiguration(start_date=pair_data.dates[-1] + timedelta(days=10))
        with pytest.raises(ValidationError):
            BacktestingEngine(config, strategy_params, risk_params).run_backtest(pair_data)
