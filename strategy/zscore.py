"""
Z-SCORE - Spread Construction and Normalization

Turns a hedged price pair into a spread and measures how stretched the
spread is against its own recent history:
- Price or log spread
- Rolling z-score (simple window or exponentially weighted)
- Volatility-adaptive window sizes and thresholds
- Z-score regime detection and momentum
"""

import math
from dataclasses import dataclass
from typing import List, Sequence, Tuple

import numpy as np
from loguru import logger

from core import stats
from core.invariants import InsufficientDataError
from strategy.models import ZScoreResult

SIGNIFICANCE_LEVEL = 2.0
REGIME_LOOKBACK = 20
FLAT_TOLERANCE = 1e-12  # relative std below which a window counts as flat


@dataclass(frozen=True)
class ZScoreRegime:
    """Behaviour of the z-score over a trailing window."""
    index: int
    regime: str  # mean_reverting, trending or neutral
    confidence: float


def calculate_spread(
    series1: Sequence[float],
    series2: Sequence[float],
    hedge_ratio: float,
    method: str = "log"
) -> np.ndarray:
    """series1 - h * series2, on prices or on log prices."""
    series1 = np.asarray(series1, dtype=float)
    series2 = np.asarray(series2, dtype=float)
    if len(series1) != len(series2):
        raise ValueError("Series must have the same length")

    if method == "log":
        if np.any(series1 <= 0) or np.any(series2 <= 0):
            raise ValueError("Log spread requires positive prices")
        return np.log(series1) - hedge_ratio * np.log(series2)
    if method == "price":
        return series1 - hedge_ratio * series2
    raise ValueError(f"Unknown spread method: {method}")


def _simple_moments(window_values: np.ndarray) -> Tuple[float, float]:
    return float(window_values.mean()), float(window_values.std())


def _flat(std: float, mean: float) -> bool:
    return std <= FLAT_TOLERANCE * max(1.0, abs(mean))


def _exponential_moments(history: np.ndarray, ema: float, alpha: float) -> Tuple[float, float]:
    decay = (1 - alpha) ** np.arange(len(history) - 1, -1, -1)
    variance = float(np.sum(decay * (history - ema) ** 2) / np.sum(decay))
    return ema, math.sqrt(variance)


def rolling_zscore(spread: Sequence[float], window: int, method: str = "simple") -> List[ZScoreResult]:
    """
    Z-score for every index >= window - 1.

    Result k belongs to spread index k + window - 1. An index that cannot
    be computed yields ZScoreResult.neutral and the series continues.
    """
    spread = np.asarray(spread, dtype=float)
    if len(spread) < window:
        raise InsufficientDataError(f"Spread of length {len(spread)} is shorter than window {window}")
    if method not in ("simple", "exponential"):
        raise ValueError(f"Unknown z-score method: {method}")

    alpha = 2.0 / (window + 1)
    ema = stats.exponential_moving_average(spread, alpha) if method == "exponential" else None
    results: List[ZScoreResult] = []

    for i in range(window - 1, len(spread)):
        current = float(spread[i])
        window_values = spread[i - window + 1:i + 1]
        try:
            if method == "simple":
                mean, std = _simple_moments(window_values)
            else:
                mean, std = _exponential_moments(spread[:i + 1], float(ema[i]), alpha)

            if not (np.isfinite(mean) and np.isfinite(std) and np.isfinite(current)):
                raise FloatingPointError("non-finite spread statistics")
            if _flat(std, mean):
                std = 0.0

            z = stats.z_score(current, mean, std)
            results.append(ZScoreResult(
                zscore=z,
                mean=mean,
                std_dev=std,
                spread=current,
                is_significant=abs(z) > SIGNIFICANCE_LEVEL,
                percentile=stats.percentile_rank(window_values, current),
            ))
        except (ArithmeticError, ValueError) as e:
            logger.warning(f"Z-score failed at index {i}: {e}")
            results.append(ZScoreResult.neutral(current))

    return results


def adaptive_window_size(
    volatility: Sequence[float],
    base_window: int = 30,
    min_window: int = 15,
    max_window: int = 60
) -> List[int]:
    """Shrink the window when volatility is high relative to its recent past, widen it when low."""
    volatility = np.asarray(volatility, dtype=float)
    windows = []

    for i in range(len(volatility)):
        if i < REGIME_LOOKBACK:
            windows.append(base_window)
            continue

        rank = stats.percentile_rank(volatility[i - REGIME_LOOKBACK:i], volatility[i])
        if rank > 80:
            size = min_window
        elif rank > 60:
            size = int(math.floor(base_window * 0.8))
        elif rank < 20:
            size = max_window
        elif rank < 40:
            size = int(math.floor(base_window * 1.2))
        else:
            size = base_window

        windows.append(max(min_window, min(max_window, size)))

    return windows


def adaptive_zscore(
    spread: Sequence[float],
    window: int,
    volatility_adjustment: bool = True
) -> List[Tuple[ZScoreResult, float]]:
    """Rolling z-score paired with a significance threshold scaled by spread volatility."""
    spread = np.asarray(spread, dtype=float)
    results = rolling_zscore(spread, window)
    paired = []

    for k, result in enumerate(results):
        i = k + window - 1
        threshold = SIGNIFICANCE_LEVEL
        if volatility_adjustment and i >= window:
            changes = np.diff(spread[i - window:i + 1])
            spread_vol = float(np.std(changes, ddof=1)) if len(changes) > 1 else 0.0
            threshold = SIGNIFICANCE_LEVEL * min(2.0, max(0.5, spread_vol * 10))
        paired.append((result, threshold))

    return paired


def detect_zscore_regimes(zscores: Sequence[float], window: int = REGIME_LOOKBACK) -> List[ZScoreRegime]:
    """Classify each trailing window of z-scores as mean-reverting, trending or neutral."""
    zscores = np.asarray(zscores, dtype=float)
    regimes = []

    for i in range(window, len(zscores)):
        recent = zscores[i - window:i]
        mean_abs = float(np.mean(np.abs(recent)))
        crossings = int(np.sum(recent[1:] * recent[:-1] < 0))
        try:
            slope = stats.linear_regression(np.arange(window, dtype=float), recent).slope
        except ValueError:
            slope = 0.0

        if mean_abs > 1.5 and crossings >= 3:
            regimes.append(ZScoreRegime(i, "mean_reverting", min(0.9, mean_abs / 3 + crossings / 10)))
        elif abs(slope) > 0.1 and crossings <= 1:
            regimes.append(ZScoreRegime(i, "trending", min(0.9, abs(slope) * 5)))
        else:
            regimes.append(ZScoreRegime(i, "neutral", 0.5))

    return regimes


def zscore_momentum(zscores: Sequence[float], window: int = 5) -> np.ndarray:
    """Distance of each z-score from the mean of the previous `window` values."""
    zscores = np.asarray(zscores, dtype=float)
    if len(zscores) <= window:
        return np.array([], dtype=float)
    return np.array([zscores[i] - zscores[i - window:i].mean() for i in range(window, len(zscores))])
