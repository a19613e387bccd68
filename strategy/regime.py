"""
REGIME DETECTOR - Correlation Regimes of a Pair

Classifies each day by the rolling return correlation of the two legs:
- HIGH_CORRELATION: the pair moves together, trade the spread back to its mean
- LOW_CORRELATION: the legs have decoupled, trade with the spread's move
- TRANSITION: anything in between, no new positions

The classification is a total function: every correlation value,
including NaN, lands in exactly one regime.
"""

from collections import Counter
from typing import Dict, List, Sequence

from strategy.models import Regime, RegimeState


def classify_regime(
    correlation: float,
    high_threshold: float,
    low_threshold: float,
    volatility: float = 0.0
) -> RegimeState:
    """Map one correlation reading to a regime with a confidence score."""
    if correlation > high_threshold:
        regime = Regime.HIGH_CORRELATION
        confidence = min(1.0, (correlation - high_threshold) / 0.2 + 0.7)
    elif correlation < low_threshold:
        regime = Regime.LOW_CORRELATION
        confidence = min(1.0, (low_threshold - correlation) / 0.2 + 0.7)
    else:
        regime = Regime.TRANSITION
        confidence = 0.5

    return RegimeState(
        current=regime,
        confidence=confidence,
        correlation=correlation,
        volatility=volatility,
    )


def regime_durations(regimes: Sequence[Regime]) -> Dict[Regime, int]:
    """Days spent in each regime."""
    counts = Counter(regimes)
    return {regime: counts.get(regime, 0) for regime in Regime}


def regime_transitions(regimes: Sequence[Regime]) -> List[int]:
    """Indexes where the regime differs from the previous day."""
    return [i for i in range(1, len(regimes)) if regimes[i] != regimes[i - 1]]
