"""
INVARIANTS - The Fixed Laws of the Backtester

These limits are HARDCODED and are not part of any parameter search.
They keep every simulated trade inside the same risk envelope regardless
of which strategy parameters the optimizer picks.

Modification of this file changes the meaning of every historical result
and should be treated as a breaking change.
"""

from dataclasses import dataclass, field
from typing import Final, Dict


@dataclass(frozen=True)
class Invariants:
    """
    Immutable engine constants.

    These are deliberately separate from StrategyParameters.stop_loss_zscore,
    RiskParameters.stop_loss_threshold and RiskParameters.max_drawdown.
    """

    # === TRADE EXITS ===
    MAX_HOLDING_DAYS: Final[float] = 30.0  # calendar days
    STOP_LOSS_PCT: Final[float] = 0.05  # exit below -5% of allocated capital
    PROFIT_TARGET_PCT: Final[float] = 0.03  # exit above +3% of allocated capital

    # === TRADE ENTRIES ===
    MIN_TRADE_CAPITAL: Final[float] = 1000.0  # smaller entries are skipped
    CASH_USAGE_LIMIT: Final[float] = 0.9  # never size beyond 90% of free cash

    # === DATA REQUIREMENTS ===
    MIN_COINTEGRATION_OBSERVATIONS: Final[int] = 30
    MIN_ADF_OBSERVATIONS: Final[int] = 10
    WARMUP_BUFFER: Final[int] = 50  # history required beyond the rolling window

    # === ENGLE-GRANGER (fixed, not sample-size adjusted) ===
    CRITICAL_VALUES: Dict[str, float] = field(
        default_factory=lambda: {"1%": -3.9, "5%": -3.34, "10%": -3.04}
    )

    # === ANNUALIZATION ===
    TRADING_DAYS_PER_YEAR: Final[int] = 252
    DEFAULT_VOLATILITY: Final[float] = 0.2  # used before any return history exists


INVARIANTS = Invariants()


class ValidationError(ValueError):
    """Raised when inputs or configuration cannot produce a valid run."""
    pass


class InsufficientDataError(ValidationError):
    """Raised when a series is too short for the requested computation."""
    pass
