"""
MARKET DATA - Daily Prices of a Trading Pair

MarketData is the only input the backtester accepts. Providers build it
from somewhere:
- CsvMarketDataProvider: a CSV file with a date column and two price columns
- SyntheticPairProvider: a seeded, reproducible simulated pair

The core never reads files or the network itself.
"""

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Union

import numpy as np
import pandas as pd
from loguru import logger

from core.invariants import ValidationError


def _simple_returns(prices: np.ndarray) -> np.ndarray:
    """Simple returns aligned with prices; the first day has return 0."""
    returns = np.zeros(len(prices), dtype=float)
    if len(prices) > 1:
        returns[1:] = prices[1:] / prices[:-1] - 1
    return returns


@dataclass
class MarketData:
    """Aligned daily prices and simple returns of the primary and secondary asset."""

    dates: List[datetime]
    primary_prices: np.ndarray
    secondary_prices: np.ndarray
    primary_returns: np.ndarray = field(default=None, repr=False)
    secondary_returns: np.ndarray = field(default=None, repr=False)
    primary_symbol: str = "PRIMARY"
    secondary_symbol: str = "SECONDARY"

    def __post_init__(self):
        self.dates = [pd.Timestamp(d).to_pydatetime() for d in self.dates]
        self.primary_prices = np.asarray(self.primary_prices, dtype=float)
        self.secondary_prices = np.asarray(self.secondary_prices, dtype=float)
        if self.primary_returns is None:
            self.primary_returns = _simple_returns(self.primary_prices)
        if self.secondary_returns is None:
            self.secondary_returns = _simple_returns(self.secondary_prices)
        self.primary_returns = np.asarray(self.primary_returns, dtype=float)
        self.secondary_returns = np.asarray(self.secondary_returns, dtype=float)

    def __len__(self) -> int:
        return len(self.dates)

    def validate(self) -> None:
        """Raise ValidationError unless every series is aligned, ordered and positive."""
        n = len(self.dates)
        if n == 0:
            raise ValidationError("Market data is empty")
        lengths = {len(self.primary_prices), len(self.secondary_prices),
                   len(self.primary_returns), len(self.secondary_returns)}
        if lengths != {n}:
            raise ValidationError("Dates, prices and returns must all have the same length")
        if any(later <= earlier for earlier, later in zip(self.dates, self.dates[1:])):
            raise ValidationError("Dates must be strictly ascending")
        if not (np.all(np.isfinite(self.primary_prices)) and np.all(np.isfinite(self.secondary_prices))):
            raise ValidationError("Prices must be finite")
        if np.any(self.primary_prices <= 0) or np.any(self.secondary_prices <= 0):
            raise ValidationError("Prices must be positive")

    def slice(self, start: int, end: int) -> "MarketData":
        """Rows [start, end). Returns are sliced, not recomputed."""
        return MarketData(
            dates=self.dates[start:end],
            primary_prices=self.primary_prices[start:end],
            secondary_prices=self.secondary_prices[start:end],
            primary_returns=self.primary_returns[start:end],
            secondary_returns=self.secondary_returns[start:end],
            primary_symbol=self.primary_symbol,
            secondary_symbol=self.secondary_symbol,
        )

    def until(self, end_date: Optional[datetime]) -> "MarketData":
        """Rows dated on or before end_date."""
        if end_date is None:
            return self
        count = sum(1 for d in self.dates if d <= end_date)
        return self.slice(0, count)

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame(
            {
                "primary": self.primary_prices,
                "secondary": self.secondary_prices,
                "primary_return": self.primary_returns,
                "secondary_return": self.secondary_returns,
            },
            index=pd.DatetimeIndex(self.dates, name="date"),
        )

    @classmethod
    def from_frame(
        cls,
        frame: pd.DataFrame,
        primary_column: str = "primary",
        secondary_column: str = "secondary",
        date_column: Optional[str] = None
    ) -> "MarketData":
        """Build from a DataFrame indexed by date (or with a date column)."""
        if date_column is not None:
            frame = frame.set_index(date_column)
        frame = frame.sort_index()
        return cls(
            dates=list(pd.DatetimeIndex(frame.index)),
            primary_prices=frame[primary_column].to_numpy(dtype=float),
            secondary_prices=frame[secondary_column].to_numpy(dtype=float),
            primary_symbol=primary_column,
            secondary_symbol=secondary_column,
        )


class CsvMarketDataProvider:
    """Loads a pair from CSV: one date column and one close column per asset."""

    def __init__(
        self,
        path: Union[str, Path],
        primary_column: str = "primary",
        secondary_column: str = "secondary",
        date_column: str = "date"
    ):
        self.path = Path(path)
        self.primary_column = primary_column
        self.secondary_column = secondary_column
        self.date_column = date_column

    def load(self) -> MarketData:
        if not self.path.exists():
            raise FileNotFoundError(f"Market data file not found: {self.path}")

        frame = pd.read_csv(self.path, parse_dates=[self.date_column])
        missing = {self.date_column, self.primary_column, self.secondary_column} - set(frame.columns)
        if missing:
            raise ValidationError(f"CSV is missing columns: {sorted(missing)}")

        before = len(frame)
        frame = frame.dropna(subset=[self.primary_column, self.secondary_column])
        if len(frame) < before:
            logger.warning(f"Dropped {before - len(frame)} rows with missing prices from {self.path.name}")

        data = MarketData.from_frame(
            frame,
            primary_column=self.primary_column,
            secondary_column=self.secondary_column,
            date_column=self.date_column,
        )
        logger.info(f"Loaded {len(data)} rows from {self.path}")
        return data


class SyntheticPairProvider:
    """
    Seeded simulated pair.

    The secondary asset follows a geometric random walk. The primary's log
    price is hedge_ratio x the secondary's log price plus a stationary AR(1)
    spread. Return correlation falls as spread_volatility grows relative to
    volatility (about 0.9 with the defaults).
    """

    def __init__(
        self,
        days: int = 500,
        seed: int = 42,
        hedge_ratio: float = 1.0,
        volatility: float = 0.02,
        spread_reversion: float = 0.1,
        spread_volatility: float = 0.01,
        start_date: str = "2020-01-01"
    ):
        self.days = days
        self.seed = seed
        self.hedge_ratio = hedge_ratio
        self.volatility = volatility
        self.spread_reversion = spread_reversion
        self.spread_volatility = spread_volatility
        self.start_date = start_date

    def load(self) -> MarketData:
        rng = np.random.default_rng(self.seed)

        secondary_shocks = rng.normal(0, self.volatility, self.days)
        spread_noise = rng.normal(0, self.spread_volatility, self.days)

        spread = np.zeros(self.days)
        for t in range(1, self.days):
            spread[t] = (1 - self.spread_reversion) * spread[t - 1] + spread_noise[t]

        log_secondary = np.log(100.0) + np.cumsum(secondary_shocks)
        log_primary = np.log(100.0) + self.hedge_ratio * (log_secondary - np.log(100.0)) + spread

        dates = list(pd.bdate_range(start=self.start_date, periods=self.days))
        return MarketData(
            dates=dates,
            primary_prices=np.exp(log_primary),
            secondary_prices=np.exp(log_secondary),
            primary_symbol="SYNTH_A",
            secondary_symbol="SYNTH_B",
        )
