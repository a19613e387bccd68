"""
Test signal generation and position sizing.

Run with: python -m pytest tests/test_signals.py -v
"""

from datetime import datetime

import pytest

from config.loader import RiskParameters
from portfolio.sizer import KellyCalculator, PortfolioSnapshot, PositionSizer, RegimePerformance
from strategy.models import Direction, Regime, SignalType
from strategy.regime import classify_regime
from strategy.signals import SignalGenerator


def regime_state(correlation: float):
    return classify_regime(correlation, 0.7, 0.3, 0.2)


class TestSignalGenerator:

    @pytest.fixture
    def generator(self, strategy_params):
        return SignalGenerator(strategy_params)

    def test_high_correlation_trades_against_the_spread(self, generator):
        short = generator.generate(3.0, regime_state(0.9), 0.9, 0.2)
        long = generator.generate(-3.0, regime_state(0.9), 0.9, 0.2)

        assert short.signal_type == SignalType.ENTRY
        assert short.direction == Direction.SHORT_PRIMARY_LONG_SECONDARY
        assert long.direction == Direction.LONG_PRIMARY_SHORT_SECONDARY

    def test_low_correlation_trades_with_the_spread(self, generator):
        # low-correlation entry threshold is 0.8 x 2.5 = 2.0
        signal = generator.generate(2.2, regime_state(0.1), 0.1, 0.2)
        assert signal.signal_type == SignalType.ENTRY
        assert signal.direction == Direction.LONG_PRIMARY_SHORT_SECONDARY
        assert signal.entry_threshold == pytest.approx(2.0)

    def test_transition_never_enters(self, generator):
        for z in (3.0, 4.0, -4.5):
            signal = generator.generate(z, regime_state(0.5), 0.5, 0.2)
            assert signal.signal_type == SignalType.HOLD
            assert signal.direction == Direction.NEUTRAL

    def test_below_entry_threshold_holds(self, generator):
        signal = generator.generate(2.4, regime_state(0.9), 0.9, 0.2)
        assert signal.signal_type == SignalType.HOLD
        assert not signal.is_actionable

    def test_exit_on_reversion_with_position(self, generator):
        entry = generator.generate(-3.0, regime_state(0.9), 0.9, 0.2)
        signal = generator.generate(-0.5, regime_state(0.9), 0.9, 0.2, previous_signal=entry)
        assert signal.signal_type == SignalType.EXIT

    def test_exit_on_stop_with_position(self, generator):
        entry = generator.generate(-3.0, regime_state(0.9), 0.9, 0.2)
        signal = generator.generate(-5.5, regime_state(0.9), 0.9, 0.2, previous_signal=entry)
        assert signal.signal_type == SignalType.EXIT

    def test_no_exit_without_position(self, generator):
        assert generator.generate(-0.5, regime_state(0.9), 0.9, 0.2).signal_type == SignalType.HOLD

    def test_scores_bounded(self, generator):
        for z in (-6.0, -2.6, 0.0, 2.6, 6.0):
            for corr in (-1.0, 0.1, 0.5, 0.95):
                signal = generator.generate(z, regime_state(corr), corr, 3.0)
                assert 0.0 <= signal.strength <= 1.0
                assert 0.0 <= signal.confidence <= 1.0

    def test_failure_returns_neutral(self, generator):
        date = datetime(2021, 3, 1)
        signal = generator.generate(3.0, None, 0.9, 0.2, date=date)
        assert signal.signal_type == SignalType.HOLD
        assert signal.strength == 0.0
        assert signal.date == date

    def test_filter_and_momentum(self, generator):
        entry = generator.generate(-3.5, regime_state(0.95), 0.95, 0.1)
        assert SignalGenerator.filter_signal(entry)

        aligned = generator.generate_with_momentum(-3.5, 0.5, regime_state(0.95), 0.95, 0.1)
        against = generator.generate_with_momentum(-3.5, -0.5, regime_state(0.95), 0.95, 0.1)
        assert aligned.strength >= entry.strength
        assert against.strength < entry.strength


class TestKelly:

    def test_no_history_uses_multiplier(self):
        assert KellyCalculator.calculate_kelly_from_performance(None, 0.5) == 0.5

    def test_degenerate_history(self):
        assert KellyCalculator.calculate_kelly_from_performance(RegimePerformance(0.6, 0.02, 0.0), 0.5) == 0.25
        assert KellyCalculator.calculate_kelly_from_performance(RegimePerformance(0.0, 0.02, 0.01), 0.5) == 0.25

    def test_clamped(self):
        weak = RegimePerformance(win_rate=0.3, avg_win=0.01, avg_loss=0.02)
        strong = RegimePerformance(win_rate=0.9, avg_win=0.05, avg_loss=0.01)
        assert KellyCalculator.calculate_kelly_from_performance(weak, 0.5) == 0.1
        assert KellyCalculator.calculate_kelly_from_performance(strong, 2.0) == 1.0

    def test_kelly_value(self):
        performance = RegimePerformance(win_rate=0.6, avg_win=0.02, avg_loss=0.02)
        assert KellyCalculator.calculate_kelly_from_performance(performance, 1.0) == pytest.approx(0.2)


class TestPositionSizer:

    @pytest.fixture
    def sizer(self, risk_params, strategy_params):
        return PositionSizer(risk_params, strategy_params)

    @pytest.fixture
    def entry_signal(self, strategy_params):
        return SignalGenerator(strategy_params).generate(-3.0, regime_state(0.9), 0.9, 0.2)

    def test_legs_are_opposite_and_balanced(self, sizer, entry_signal):
        position = sizer.size(entry_signal, PortfolioSnapshot(100_000, 100_000))

        assert position.primary_amount > 0
        assert position.secondary_amount == pytest.approx(-position.primary_amount)
        assert abs(position.primary_amount) * 2 == pytest.approx(position.capital_allocated * position.leverage)

    def test_respects_caps(self, sizer, entry_signal, risk_params):
        position = sizer.size(entry_signal, PortfolioSnapshot(100_000, 5_000))
        assert position.capital_allocated <= 5_000 * 0.9 + 1e-9
        assert position.capital_allocated <= risk_params.max_position_size * 100_000
        assert position.leverage <= risk_params.max_leverage

    def test_leverage_capped_by_risk(self, strategy_params, entry_signal):
        sizer = PositionSizer(RiskParameters(max_leverage=1.2), strategy_params)
        assert sizer.size(entry_signal, PortfolioSnapshot(100_000, 100_000)).leverage == 1.2

    def test_drawdown_cuts_size(self, sizer, entry_signal):
        fresh = sizer.size(entry_signal, PortfolioSnapshot(100_000, 100_000, equity_history=[100_000]))
        hurt = sizer.size(entry_signal, PortfolioSnapshot(100_000, 100_000, equity_history=[120_000, 100_000]))
        assert hurt.capital_allocated == pytest.approx(fresh.capital_allocated * 0.5)

    def test_historical_performance_changes_kelly(self, sizer, entry_signal):
        history = {Regime.HIGH_CORRELATION: RegimePerformance(0.7, 0.03, 0.01, total_trades=20)}
        position = sizer.size(entry_signal, PortfolioSnapshot(100_000, 100_000), history)
        # b = 3, f* = (0.7 * 3 - 0.3) / 3 = 0.6, times the 0.5 multiplier
        assert position.kelly_fraction == pytest.approx(0.3)

    def test_failure_returns_minimal(self, sizer):
        position = sizer.size(None, PortfolioSnapshot(100_000, 100_000))
        assert position.capital_allocated == 0.0
        assert position.primary_amount == 0.0

    def test_rebalance_size(self):
        assert PositionSizer.rebalance_size(100.0, 105.0) == 0.0
        assert PositionSizer.rebalance_size(100.0, 130.0) == pytest.approx(30.0)
        assert PositionSizer.rebalance_size(0.0, 50.0) == 50.0
