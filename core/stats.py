"""
STATS - Statistical Building Blocks

Pure numerical helpers shared by the strategy, sizing and metrics layers:
- Correlation and OLS regression
- Returns and annualized volatility
- Approximate lag-1 ADF statistic
- Percentile rank, EMA
- Kelly fraction, half-life, VaR / expected shortfall

Everything here is a stateless function over numpy arrays.
"""

import math
from dataclasses import dataclass
from typing import Sequence, Tuple

import numpy as np
import pandas as pd
from scipy import stats

from core.invariants import INVARIANTS, InsufficientDataError


@dataclass
class RegressionResult:
    """OLS fit of y on x with intercept."""
    slope: float
    intercept: float
    r_squared: float
    residuals: np.ndarray


@dataclass
class ADFResult:
    """Lag-1 Dickey-Fuller statistic; callers compare it to their own critical values."""
    test_statistic: float


def _as_array(values: Sequence[float]) -> np.ndarray:
    return np.asarray(values, dtype=float)


# ===== Correlation / Regression =====

def correlation(x: Sequence[float], y: Sequence[float]) -> float:
    """Pearson correlation; 0 when either series has no variance."""
    x, y = _as_array(x), _as_array(y)
    if len(x) != len(y) or len(x) == 0:
        raise ValueError("Arrays must have the same non-zero length")

    dx = x - x.mean()
    dy = y - y.mean()
    denominator = math.sqrt(float(np.sum(dx ** 2)) * float(np.sum(dy ** 2)))
    if denominator == 0:
        return 0.0
    return float(np.sum(dx * dy) / denominator)


def linear_regression(x: Sequence[float], y: Sequence[float]) -> RegressionResult:
    """Regress y on x. Raises ValueError on degenerate input."""
    x, y = _as_array(x), _as_array(y)
    if len(x) != len(y) or len(x) < 2:
        raise ValueError("Arrays must have the same length and at least 2 points")

    x_mean = x.mean()
    y_mean = y.mean()
    sxx = float(np.sum((x - x_mean) ** 2))
    if sxx == 0:
        raise ValueError("Regressor has zero variance")

    slope = float(np.sum((x - x_mean) * (y - y_mean)) / sxx)
    intercept = float(y_mean - slope * x_mean)
    residuals = y - (slope * x + intercept)

    ss_total = float(np.sum((y - y_mean) ** 2))
    ss_residual = float(np.sum(residuals ** 2))
    r_squared = 1.0 if ss_total == 0 else 1.0 - ss_residual / ss_total

    return RegressionResult(slope=slope, intercept=intercept, r_squared=r_squared, residuals=residuals)


# ===== Returns / Volatility =====

def calculate_returns(prices: Sequence[float]) -> np.ndarray:
    """Simple period-over-period returns (length n-1)."""
    prices = _as_array(prices)
    if len(prices) < 2:
        return np.array([], dtype=float)
    return prices[1:] / prices[:-1] - 1


def calculate_volatility(
    returns: Sequence[float],
    annualization_factor: int = INVARIANTS.TRADING_DAYS_PER_YEAR
) -> float:
    """Annualized sample standard deviation; 0 with fewer than 2 returns."""
    returns = _as_array(returns)
    if len(returns) < 2:
        return 0.0
    return float(np.std(returns, ddof=1) * math.sqrt(annualization_factor))


def rolling_correlation(x: Sequence[float], y: Sequence[float], window: int) -> np.ndarray:
    """
    Trailing-window Pearson correlation.

    Element k covers x[k:k+window], so the result has len(x) - window + 1
    entries. Windows without variance report 0.
    """
    x, y = _as_array(x), _as_array(y)
    if len(x) != len(y):
        raise ValueError("Arrays must have the same length")
    if window < 2 or len(x) < window:
        return np.array([], dtype=float)

    rolled = pd.Series(x).rolling(window).corr(pd.Series(y)).to_numpy()[window - 1:]
    rolled = np.where(np.isfinite(rolled), rolled, 0.0)
    return np.clip(rolled, -1.0, 1.0)


# ===== Stationarity =====

def adf_test(series: Sequence[float]) -> ADFResult:
    """
    Lag-1 ADF statistic: slope of the first difference on the lagged level
    divided by its standard error.
    """
    series = _as_array(series)
    n = len(series)
    if n < INVARIANTS.MIN_ADF_OBSERVATIONS:
        raise InsufficientDataError(f"ADF needs at least {INVARIANTS.MIN_ADF_OBSERVATIONS} points, got {n}")

    diff = series[1:] - series[:-1]
    lagged = series[:-1]
    fit = linear_regression(lagged, diff)

    ssr = float(np.sum(fit.residuals ** 2))
    lagged_ss = float(np.sum(lagged ** 2))
    standard_error = math.sqrt(ssr / (n - 2)) / math.sqrt(lagged_ss) if lagged_ss > 0 else 0.0
    if standard_error == 0 or not np.isfinite(standard_error):
        raise ValueError("Degenerate series: ADF standard error is zero")

    return ADFResult(test_statistic=fit.slope / standard_error)


def half_life(series: Sequence[float]) -> float:
    """Mean-reversion half-life from the AR(1) slope of differences; inf if not reverting."""
    series = _as_array(series)
    if len(series) < 3:
        return math.inf

    try:
        slope = linear_regression(series[:-1], series[1:] - series[:-1]).slope
    except ValueError:
        return math.inf

    if slope >= 0:
        return math.inf
    return -math.log(2) / slope


# ===== Ranking / Smoothing =====

def z_score(value: float, mean: float, std: float) -> float:
    if std == 0:
        return 0.0
    return (value - mean) / std


def percentile_rank(values: Sequence[float], value: float) -> float:
    """Percent of values below `value`, counting ties as half."""
    values = _as_array(values)
    if len(values) == 0:
        return 50.0
    return float(stats.percentileofscore(values, value, kind="mean"))


def exponential_moving_average(series: Sequence[float], alpha: float) -> np.ndarray:
    """EMA seeded with the first observation."""
    series = _as_array(series)
    if len(series) == 0:
        return series
    return pd.Series(series).ewm(alpha=alpha, adjust=False).mean().to_numpy()


# ===== Risk =====

def kelly_fraction(win_rate: float, avg_win: float, avg_loss: float) -> float:
    """Raw Kelly fraction f* = (p*b - q) / b with b = avg_win / |avg_loss|."""
    if avg_loss == 0 or avg_win <= 0 or win_rate <= 0 or win_rate >= 1:
        return 0.0
    b = avg_win / abs(avg_loss)
    return (win_rate * b - (1 - win_rate)) / b


def value_at_risk(returns: Sequence[float], confidence: float = 0.95) -> float:
    """Empirical VaR as the return at the (1 - confidence) quantile (signed)."""
    returns = np.sort(_as_array(returns))
    if len(returns) == 0:
        return 0.0
    index = min(int(math.floor((1 - confidence) * len(returns))), len(returns) - 1)
    return float(returns[index])


def expected_shortfall(returns: Sequence[float], confidence: float = 0.95) -> float:
    """Mean of the returns at or below the VaR."""
    returns = _as_array(returns)
    if len(returns) == 0:
        return 0.0
    var = value_at_risk(returns, confidence)
    tail = returns[returns <= var]
    return float(tail.mean()) if len(tail) else var


def drawdown_series(equity: Sequence[float]) -> np.ndarray:
    """Drawdown in percent against the running peak (peak includes the current point)."""
    equity = _as_array(equity)
    if len(equity) == 0:
        return equity
    peaks = np.maximum.accumulate(equity)
    with np.errstate(divide="ignore", invalid="ignore"):
        dd = np.where(peaks > 0, (peaks - equity) / peaks * 100, 0.0)
    return np.clip(dd, 0.0, 100.0)


def max_drawdown(equity: Sequence[float]) -> Tuple[float, int]:
    """Single-pass maximum drawdown (%) and longest underwater stretch (points)."""
    equity = _as_array(equity)
    peak = -math.inf
    max_dd = 0.0
    duration = 0
    max_duration = 0

    for value in equity:
        if value >= peak:
            peak = value
            duration = 0
        else:
            duration += 1
        if peak > 0:
            dd = min(100.0, max(0.0, (peak - value) / peak * 100))
            max_dd = max(max_dd, dd)
        max_duration = max(max_duration, duration)

    return max_dd, max_duration
