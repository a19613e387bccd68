"""
COINTEGRATION - Engle-Granger Testing of a Price Pair

Two-step procedure:
1. OLS-regress series1 (dependent) on series2 -> hedge ratio, residuals
2. Lag-1 ADF on the residuals against fixed critical values

Also provides rolling tests, alternative hedge-ratio estimators,
structural break detection and a 0-1 confidence score.
"""

import math
from dataclasses import dataclass
from typing import List, Optional, Sequence

import numpy as np
from loguru import logger

from core import stats
from core.invariants import INVARIANTS, InsufficientDataError
from strategy.models import CointegrationResult


@dataclass
class StructuralBreak:
    """Comparison of the relationship before and after one break point."""
    break_point: int
    hedge_ratio_before: float
    hedge_ratio_after: float
    r_squared_before: float
    r_squared_after: float
    is_break: bool


def _p_value(test_statistic: float, critical_values) -> float:
    if test_statistic < critical_values["1%"]:
        return 0.01
    if test_statistic < critical_values["5%"]:
        return 0.05
    if test_statistic < critical_values["10%"]:
        return 0.1
    return 0.5


def engle_granger_test(series1: Sequence[float], series2: Sequence[float]) -> CointegrationResult:
    """
    Test whether series1 and series2 are cointegrated.

    The hedge ratio h satisfies series1 ~ a + h * series2, so the
    stationary combination is series1 - h * series2.
    """
    series1 = np.asarray(series1, dtype=float)
    series2 = np.asarray(series2, dtype=float)

    if len(series1) != len(series2):
        raise InsufficientDataError("Series must have the same length")
    if len(series1) < INVARIANTS.MIN_COINTEGRATION_OBSERVATIONS:
        raise InsufficientDataError(
            f"Cointegration needs at least {INVARIANTS.MIN_COINTEGRATION_OBSERVATIONS} points, got {len(series1)}"
        )

    regression = stats.linear_regression(series2, series1)
    residuals = regression.residuals

    critical_values = dict(INVARIANTS.CRITICAL_VALUES)
    try:
        test_statistic = stats.adf_test(residuals).test_statistic
    except ValueError as e:
        # exactly proportional legs leave constant residuals
        logger.debug(f"ADF on residuals is degenerate: {e}")
        test_statistic = math.nan

    if math.isnan(test_statistic):
        return CointegrationResult(
            is_cointegrated=False,
            p_value=0.5,
            test_statistic=test_statistic,
            critical_values=critical_values,
            hedge_ratio=regression.slope,
            residuals=residuals,
            half_life=math.inf,
            r_squared=regression.r_squared,
        )

    return CointegrationResult(
        is_cointegrated=test_statistic < critical_values["5%"],
        p_value=_p_value(test_statistic, critical_values),
        test_statistic=test_statistic,
        critical_values=critical_values,
        hedge_ratio=regression.slope,
        residuals=residuals,
        half_life=stats.half_life(residuals),
        r_squared=regression.r_squared,
    )


def rolling_cointegration_test(
    series1: Sequence[float],
    series2: Sequence[float],
    window: int
) -> List[Optional[CointegrationResult]]:
    """
    Engle-Granger over each trailing window [i - window, i).

    A window that cannot be tested yields None; the sequence continues.
    """
    series1 = np.asarray(series1, dtype=float)
    series2 = np.asarray(series2, dtype=float)
    results: List[Optional[CointegrationResult]] = []

    for i in range(window, len(series1) + 1):
        try:
            results.append(engle_granger_test(series1[i - window:i], series2[i - window:i]))
        except ValueError as e:
            logger.warning(f"Rolling cointegration failed for window ending at {i}: {e}")
            results.append(None)

    return results


# ===== Hedge Ratio Estimators =====

def _total_least_squares(y: np.ndarray, x: np.ndarray) -> float:
    """Orthogonal regression slope of y on x."""
    x_c = x - x.mean()
    y_c = y - y.mean()
    sxx = float(np.sum(x_c ** 2))
    syy = float(np.sum(y_c ** 2))
    sxy = float(np.sum(x_c * y_c))
    if sxy == 0:
        raise ValueError("Uncorrelated series have no TLS slope")
    return ((syy - sxx) + math.sqrt((syy - sxx) ** 2 + 4 * sxy ** 2)) / (2 * sxy)


def _kalman_hedge_ratio(
    y: np.ndarray,
    x: np.ndarray,
    process_noise: float = 0.001,
    measurement_noise: float = 0.1
) -> float:
    """Random-walk Kalman filter on y_t = h_t * x_t; returns the final h."""
    hedge = 1.0
    covariance = 1.0

    for xt, yt in zip(x, y):
        covariance += process_noise
        innovation = yt - hedge * xt
        innovation_var = xt * covariance * xt + measurement_noise
        gain = covariance * xt / innovation_var
        hedge += gain * innovation
        covariance = (1 - gain * xt) * covariance

    return float(hedge)


def optimal_hedge_ratio(series1: Sequence[float], series2: Sequence[float], method: str = "ols") -> float:
    """Hedge ratio of series1 on series2 by 'ols', 'tls' or 'kalman'."""
    y = np.asarray(series1, dtype=float)
    x = np.asarray(series2, dtype=float)
    if len(y) != len(x) or len(y) < 2:
        raise InsufficientDataError("Need two equal-length series with at least 2 points")

    if method == "ols":
        return stats.linear_regression(x, y).slope
    if method == "tls":
        return _total_least_squares(y, x)
    if method == "kalman":
        return _kalman_hedge_ratio(y, x)
    raise ValueError(f"Unknown hedge ratio method: {method}")


# ===== Stability =====

def structural_break_test(
    series1: Sequence[float],
    series2: Sequence[float],
    break_points: Optional[List[int]] = None,
    hedge_ratio_tolerance: float = 0.2,
    r_squared_tolerance: float = 0.3
) -> List[StructuralBreak]:
    """Compare Engle-Granger fits before and after each candidate break point."""
    series1 = np.asarray(series1, dtype=float)
    series2 = np.asarray(series2, dtype=float)
    n = len(series1)
    margin = INVARIANTS.MIN_COINTEGRATION_OBSERVATIONS

    if break_points is None:
        break_points = [n // 2]

    breaks = []
    for point in break_points:
        if point < margin or point > n - margin:
            continue
        try:
            before = engle_granger_test(series1[:point], series2[:point])
            after = engle_granger_test(series1[point:], series2[point:])
        except ValueError as e:
            logger.warning(f"Structural break test failed at {point}: {e}")
            continue

        is_break = (
            abs(before.hedge_ratio - after.hedge_ratio) > hedge_ratio_tolerance
            or abs(before.r_squared - after.r_squared) > r_squared_tolerance
        )
        breaks.append(StructuralBreak(
            break_point=point,
            hedge_ratio_before=before.hedge_ratio,
            hedge_ratio_after=after.hedge_ratio,
            r_squared_before=before.r_squared,
            r_squared_after=after.r_squared,
            is_break=is_break,
        ))

    return breaks


def cointegration_confidence(result: CointegrationResult) -> float:
    """Score in [0, 1]: significance, fit quality, half-life and hedge ratio sanity."""
    confidence = 0.0

    if result.p_value <= 0.01:
        confidence += 0.4
    elif result.p_value <= 0.05:
        confidence += 0.3
    elif result.p_value <= 0.1:
        confidence += 0.2

    confidence += min(max(result.r_squared, 0.0), 1.0) * 0.3

    if 1 < result.half_life < 100:
        confidence += 0.2
    elif 100 <= result.half_life < 500:
        confidence += 0.1

    if 0.1 < abs(result.hedge_ratio) < 10:
        confidence += 0.1

    return min(confidence, 1.0)
