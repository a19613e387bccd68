"""
Test configuration dataclasses, the YAML/env loader and market data providers.

Run with: python -m pytest tests/test_config.py -v
"""

from datetime import datetime
from pathlib import Path

import numpy as np
import pandas as pd
import pytest

from config.loader import BacktestConfiguration, ConfigLoader, RiskParameters, StrategyParameters
from core.invariants import ValidationError
from perception.market_data import CsvMarketDataProvider, MarketData, SyntheticPairProvider


class TestParameters:

    def test_defaults(self):
        params = StrategyParameters()
        assert params.correlation_window == 30
        assert params.zscore_entry_threshold == 2.5
        assert BacktestConfiguration().initial_capital == 100_000
        assert RiskParameters().max_leverage == 5.0

    def test_invalid_threshold_order(self):
        with pytest.raises(ValidationError):
            StrategyParameters(high_correlation_threshold=0.3, low_correlation_threshold=0.5)
        with pytest.raises(ValidationError):
            StrategyParameters(zscore_entry_threshold=0.5, zscore_exit_threshold=1.0)

    def test_invalid_backtest_config(self):
        with pytest.raises(ValidationError):
            BacktestConfiguration(initial_capital=0)
        with pytest.raises(ValidationError):
            BacktestConfiguration(start_date=datetime(2022, 1, 1), end_date=datetime(2021, 1, 1))

    def test_to_dict_is_serializable(self):
        config = BacktestConfiguration(start_date=datetime(2021, 1, 1))
        assert config.to_dict()["start_date"] == "2021-01-01T00:00:00"
        assert StrategyParameters().to_dict()["volatility_scaling"] is True


class TestConfigLoader:

    @pytest.fixture
    def config_dir(self, tmp_path):
        (tmp_path / "settings.yaml").write_text(
            "backtest:\n"
            "  initial_capital: 250000\n"
            "  start_date: 2021-01-04\n"
            "strategy:\n"
            "  zscore_entry_threshold: 3.0\n"
            "  volatility_scaling: false\n"
        )
        return tmp_path

    def test_yaml_values(self, config_dir):
        config, strategy, risk = ConfigLoader(str(config_dir)).load()

        assert config.initial_capital == 250_000.0
        assert config.start_date == datetime(2021, 1, 4)
        assert strategy.zscore_entry_threshold == 3.0
        assert strategy.volatility_scaling is False
        assert risk == RiskParameters()

    def test_env_overrides_yaml(self, config_dir, monkeypatch):
        monkeypatch.setenv("PAIRS_BACKTEST_INITIAL_CAPITAL", "50000")
        monkeypatch.setenv("PAIRS_STRATEGY_CORRELATION_WINDOW", "40")
        monkeypatch.setenv("PAIRS_STRATEGY_VOLATILITY_SCALING", "true")

        config, strategy, _ = ConfigLoader(str(config_dir)).load()

        assert config.initial_capital == 50_000.0
        assert strategy.correlation_window == 40
        assert strategy.volatility_scaling is True

    def test_missing_file_uses_defaults(self, tmp_path):
        config, strategy, risk = ConfigLoader(str(tmp_path)).load()
        assert config == BacktestConfiguration()
        assert strategy == StrategyParameters()

    def test_invalid_value(self, tmp_path, monkeypatch):
        monkeypatch.setenv("PAIRS_STRATEGY_CORRELATION_WINDOW", "thirty")
        with pytest.raises(ValidationError):
            ConfigLoader(str(tmp_path)).get_strategy_parameters()

    def test_bundled_settings_match_defaults(self):
        loader = ConfigLoader(str(Path(__file__).parent.parent / "config"))
        assert loader.get_strategy_parameters() == StrategyParameters()


class TestMarketData:

    def test_returns_derived(self):
        data = MarketData(
            dates=pd.bdate_range("2021-01-04", periods=3),
            primary_prices=[100.0, 110.0, 99.0],
            secondary_prices=[50.0, 50.0, 55.0],
        )
        assert np.allclose(data.primary_returns, [0.0, 0.1, -0.1])
        assert np.allclose(data.secondary_returns, [0.0, 0.0, 0.1])

    def test_validation_errors(self):
        dates = list(pd.bdate_range("2021-01-04", periods=3))
        with pytest.raises(ValidationError):
            MarketData(dates=dates, primary_prices=[1.0, -1.0, 2.0], secondary_prices=[1.0, 1.0, 1.0]).validate()
        with pytest.raises(ValidationError):
            MarketData(dates=dates[::-1], primary_prices=[1.0, 1.0, 2.0], secondary_prices=[1.0, 1.0, 1.0]).validate()
        with pytest.raises(ValidationError):
            MarketData(dates=dates, primary_prices=[1.0, 2.0], secondary_prices=[1.0, 1.0, 1.0]).validate()

    def test_slice_and_until(self, pair_data):
        part = pair_data.slice(10, 20)
        assert len(part) == 10
        assert part.dates[0] == pair_data.dates[10]
        assert len(pair_data.until(pair_data.dates[49])) == 50
        assert pair_data.until(None) is pair_data

    def test_frame_round_trip(self, pair_data):
        frame = pair_data.to_frame()
        rebuilt = MarketData.from_frame(frame)
        assert np.allclose(rebuilt.primary_prices, pair_data.primary_prices)
        assert rebuilt.dates == pair_data.dates

    def test_synthetic_is_reproducible(self):
        a = SyntheticPairProvider(days=100, seed=1).load()
        b = SyntheticPairProvider(days=100, seed=1).load()
        c = SyntheticPairProvider(days=100, seed=2).load()
        assert np.array_equal(a.primary_prices, b.primary_prices)
        assert not np.array_equal(a.primary_prices, c.primary_prices)

    def test_csv_provider(self, tmp_path, pair_data):
        path = tmp_path / "pair.csv"
        frame = pair_data.to_frame().reset_index()[["date", "primary", "secondary"]]
        frame.loc[5, "primary"] = np.nan
        frame.to_csv(path, index=False)

        data = CsvMarketDataProvider(path).load()

        assert len(data) == len(pair_data) - 1
        data.validate()

    def test_csv_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            CsvMarketDataProvider(tmp_path / "nope.csv").load()

    def test_csv_missing_column(self, tmp_path):
        path = tmp_path / "bad.csv"
        path.write_text("date,primary\n2021-01-04,100\n")
        with pytest.raises(ValidationError):
            CsvMarketDataProvider(path).load()
