"""
CONFIGURATION LOADER

Builds the three run configurations from:
1. Environment variables (PAIRS_<SECTION>_<FIELD>)
2. YAML files (config/settings.yaml, sections: backtest, strategy, risk)
3. Dataclass defaults

Environment variables take precedence over YAML files. Defaults are
applied exactly once, here; the engine never fills in missing values.
"""

import os
from dataclasses import dataclass, fields, replace
from datetime import date, datetime
from pathlib import Path
from typing import Optional, Dict, Any, Tuple

import pandas as pd
import yaml
from loguru import logger

from core.invariants import ValidationError


@dataclass(frozen=True)
class StrategyParameters:
    """Signal and sizing parameters of the pairs strategy."""

    correlation_window: int = 30  # rolling window for z-score and correlation
    high_correlation_threshold: float = 0.7
    low_correlation_threshold: float = 0.3
    zscore_entry_threshold: float = 2.5
    zscore_exit_threshold: float = 1.0
    stop_loss_zscore: float = 5.0
    base_position_size: float = 0.3  # fraction of capital
    max_position_size: float = 0.5
    kelly_multiplier: float = 0.5
    mean_reversion_leverage: float = 2.5
    momentum_leverage: float = 4.0
    transition_leverage: float = 1.5
    max_drawdown: float = 15.0  # percent
    correlation_breakdown_threshold: float = 0.1
    volatility_scaling: bool = True

    def __post_init__(self):
        if self.correlation_window < 2:
            raise ValidationError("correlation_window must be at least 2")
        if not -1 <= self.low_correlation_threshold < self.high_correlation_threshold <= 1:
            raise ValidationError("Require -1 <= low_correlation_threshold < high_correlation_threshold <= 1")
        if not 0 <= self.zscore_exit_threshold < self.zscore_entry_threshold < self.stop_loss_zscore:
            raise ValidationError("Require 0 <= exit threshold < entry threshold < stop-loss z-score")
        if not 0 < self.base_position_size <= 1 or not 0 < self.max_position_size <= 1:
            raise ValidationError("Position sizes must be in (0, 1]")
        if self.kelly_multiplier <= 0:
            raise ValidationError("kelly_multiplier must be positive")
        if min(self.mean_reversion_leverage, self.momentum_leverage, self.transition_leverage) <= 0:
            raise ValidationError("Leverage must be positive")

    def to_dict(self) -> Dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


@dataclass(frozen=True)
class RiskParameters:
    """Portfolio-level risk limits seen by the position sizer."""

    max_position_size: float = 0.5  # fraction of capital per trade
    max_leverage: float = 5.0
    stop_loss_threshold: float = 0.05
    max_drawdown: float = 15.0  # percent
    correlation_threshold: float = 0.3
    volatility_threshold: float = 0.5

    def __post_init__(self):
        if not 0 < self.max_position_size <= 1:
            raise ValidationError("max_position_size must be in (0, 1]")
        if self.max_leverage <= 0:
            raise ValidationError("max_leverage must be positive")
        if self.max_drawdown <= 0:
            raise ValidationError("max_drawdown must be positive")

    def to_dict(self) -> Dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


@dataclass(frozen=True)
class BacktestConfiguration:
    """Run-level settings: dates, capital and costs."""

    start_date: Optional[datetime] = None  # earlier rows are warm-up only
    end_date: Optional[datetime] = None  # later rows are dropped
    initial_capital: float = 100_000.0
    commission: float = 0.001  # fraction of allocated capital per fill
    slippage: float = 0.0005  # fraction of price per fill
    lookback_window: int = 30  # returns used for realized volatility
    rebalance_frequency: int = 7  # simulated days between rebalance checks
    max_positions: int = 3
    enable_walk_forward: bool = False
    risk_free_rate: float = 0.02

    def __post_init__(self):
        if self.initial_capital <= 0:
            raise ValidationError("initial_capital must be positive")
        if self.commission < 0 or self.slippage < 0:
            raise ValidationError("commission and slippage cannot be negative")
        if self.lookback_window < 2:
            raise ValidationError("lookback_window must be at least 2")
        if self.rebalance_frequency < 1:
            raise ValidationError("rebalance_frequency must be at least 1")
        if self.max_positions < 1:
            raise ValidationError("max_positions must be at least 1")
        if self.start_date and self.end_date and self.start_date > self.end_date:
            raise ValidationError("start_date must not be after end_date")

    def with_dates(self, start_date: Optional[datetime], end_date: Optional[datetime]) -> "BacktestConfiguration":
        return replace(self, start_date=start_date, end_date=end_date)

    def to_dict(self) -> Dict[str, Any]:
        result = {f.name: getattr(self, f.name) for f in fields(self)}
        for key in ("start_date", "end_date"):
            if result[key] is not None:
                result[key] = result[key].isoformat()
        return result


def _coerce(value: Any, default: Any) -> Any:
    """Cast a YAML/env value to the type of the field default."""
    if value is None:
        return None
    if isinstance(default, bool):
        if isinstance(value, str):
            return value.strip().lower() in ("true", "1", "yes", "on")
        return bool(value)
    if isinstance(default, int):
        return int(value)
    if isinstance(default, float):
        return float(value)
    if isinstance(value, (str, date)) and default is None:
        return pd.Timestamp(value).to_pydatetime()
    return value


class ConfigLoader:
    """
    Loads run configuration from environment variables and YAML.

    Priority:
    1. Environment variables (highest)
    2. settings.yaml
    3. Default values (lowest)
    """

    ENV_PREFIX = "PAIRS"

    def __init__(self, config_dir: str = "config", settings_file: str = "settings.yaml"):
        self.config_dir = Path(config_dir)
        self.settings_path = self.config_dir / settings_file
        self._yaml_settings: Dict[str, Any] = {}
        self._load_yaml_file()

    def _load_yaml_file(self):
        """Load the YAML settings file if it exists."""
        if not self.settings_path.exists():
            logger.debug(f"No settings file at {self.settings_path}, using defaults")
            return

        try:
            with open(self.settings_path, 'r') as f:
                self._yaml_settings = yaml.safe_load(f) or {}
            logger.debug(f"Loaded {self.settings_path}")
        except (OSError, yaml.YAMLError) as e:
            logger.warning(f"Could not load {self.settings_path}: {e}")

    def _build(self, cls, section: str):
        defaults = cls()
        section_data = self._yaml_settings.get(section) or {}
        values = {}

        for f in fields(cls):
            default = getattr(defaults, f.name)
            env_key = f"{self.ENV_PREFIX}_{section}_{f.name}".upper()
            raw = os.environ.get(env_key)
            if raw is None:
                raw = section_data.get(f.name)
            if raw is None:
                continue
            try:
                values[f.name] = _coerce(raw, default)
            except (TypeError, ValueError) as e:
                raise ValidationError(f"Invalid value for {section}.{f.name}: {raw!r} ({e})")

        unknown = set(section_data) - {f.name for f in fields(cls)}
        if unknown:
            logger.warning(f"Ignoring unknown {section} settings: {sorted(unknown)}")

        return cls(**values)

    def get_backtest_config(self) -> BacktestConfiguration:
        return self._build(BacktestConfiguration, "backtest")

    def get_strategy_parameters(self) -> StrategyParameters:
        return self._build(StrategyParameters, "strategy")

    def get_risk_parameters(self) -> RiskParameters:
        return self._build(RiskParameters, "risk")

    def load(self) -> Tuple[BacktestConfiguration, StrategyParameters, RiskParameters]:
        """Load all three configurations."""
        return self.get_backtest_config(), self.get_strategy_parameters(), self.get_risk_parameters()


# Global config loader instance
_config_loader: Optional[ConfigLoader] = None


def get_config(config_dir: str = "config") -> ConfigLoader:
    """Get the global configuration loader."""
    global _config_loader
    if _config_loader is None:
        _config_loader = ConfigLoader(config_dir)
    return _config_loader
