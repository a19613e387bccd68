"""
STRATEGY MODELS - Value Types of the Pairs Strategy

Everything the analysis pipeline hands from one stage to the next:
- CointegrationResult: Engle-Granger output
- ZScoreResult: one point of the rolling z-score series
- RegimeState: correlation regime of a single day
- TradingSignal: what the signal generator decided
- PositionSize: what the sizer allocated
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, Any, Optional

import numpy as np


class Regime(str, Enum):
    """Correlation regime of the pair."""
    HIGH_CORRELATION = "high-correlation"
    LOW_CORRELATION = "low-correlation"
    TRANSITION = "transition"


class SignalType(str, Enum):
    ENTRY = "entry"
    EXIT = "exit"
    HOLD = "hold"


class Direction(str, Enum):
    """Which leg is bought and which is sold."""
    LONG_PRIMARY_SHORT_SECONDARY = "long_primary_short_secondary"
    SHORT_PRIMARY_LONG_SECONDARY = "short_primary_long_secondary"
    NEUTRAL = "neutral"


class StrategyType(str, Enum):
    """Trade tag derived from the regime at entry."""
    MEAN_REVERSION = "mean_reversion"
    MOMENTUM = "momentum"
    TRANSITION = "transition"


REGIME_STRATEGY = {
    Regime.HIGH_CORRELATION: StrategyType.MEAN_REVERSION,
    Regime.LOW_CORRELATION: StrategyType.MOMENTUM,
    Regime.TRANSITION: StrategyType.TRANSITION,
}


@dataclass(frozen=True)
class CointegrationResult:
    """Engle-Granger cointegration test output."""

    is_cointegrated: bool
    p_value: float
    test_statistic: float
    critical_values: Dict[str, float]
    hedge_ratio: float
    residuals: np.ndarray = field(repr=False, compare=False)
    half_life: float
    r_squared: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "is_cointegrated": self.is_cointegrated,
            "p_value": self.p_value,
            "test_statistic": self.test_statistic,
            "critical_values": dict(self.critical_values),
            "hedge_ratio": self.hedge_ratio,
            "half_life": self.half_life,
            "r_squared": self.r_squared,
        }


@dataclass(frozen=True)
class ZScoreResult:
    zscore: float
    mean: float
    std_dev: float
    spread: float
    is_significant: bool
    percentile: float

    @classmethod
    def neutral(cls, spread: float) -> "ZScoreResult":
        """Placeholder emitted when a single index cannot be computed."""
        return cls(zscore=0.0, mean=0.0, std_dev=0.0, spread=spread, is_significant=False, percentile=50.0)


@dataclass(frozen=True)
class RegimeState:
    current: Regime
    confidence: float
    correlation: float
    volatility: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "current": self.current.value,
            "confidence": self.confidence,
            "correlation": self.correlation,
            "volatility": self.volatility,
        }


@dataclass(frozen=True)
class TradingSignal:
    """A trading decision for one day."""

    signal_type: SignalType
    direction: Direction
    strength: float  # 0-1
    confidence: float  # 0-1
    zscore: float
    regime: Regime
    entry_threshold: float
    exit_threshold: float
    date: Optional[datetime] = None

    @property
    def is_actionable(self) -> bool:
        return self.signal_type != SignalType.HOLD

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.signal_type.value,
            "direction": self.direction.value,
            "strength": self.strength,
            "confidence": self.confidence,
            "zscore": self.zscore,
            "regime": self.regime.value,
            "entry_threshold": self.entry_threshold,
            "exit_threshold": self.exit_threshold,
            "date": self.date.isoformat() if self.date else None,
        }


@dataclass(frozen=True)
class PositionSize:
    """Sizer output. Amounts are signed dollar notionals (long > 0)."""

    primary_amount: float
    secondary_amount: float
    leverage: float
    capital_allocated: float
    risk_percentage: float
    expected_return: float
    kelly_fraction: float

    @classmethod
    def minimal(cls) -> "PositionSize":
        return cls(
            primary_amount=0.0,
            secondary_amount=0.0,
            leverage=1.0,
            capital_allocated=0.0,
            risk_percentage=0.0,
            expected_return=0.0,
            kelly_fraction=0.0,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "primary_amount": self.primary_amount,
            "secondary_amount": self.secondary_amount,
            "leverage": self.leverage,
            "capital_allocated": self.capital_allocated,
            "risk_percentage": self.risk_percentage,
            "expected_return": self.expected_return,
            "kelly_fraction": self.kelly_fraction,
        }
