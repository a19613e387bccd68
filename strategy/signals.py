"""
SIGNAL GENERATOR - Regime-Aware Pairs Signals

Turns the current z-score and correlation regime into a trading decision.

Signal Flow:
1. Regime picks the threshold set (entry, exit, stop)
2. Open positions are checked for stop / exit first
3. A stretched spread produces an entry:
   - high correlation: bet on the spread reverting (trade against z)
   - low correlation: bet on the spread continuing (trade with z)
4. Strength and confidence score how convincing the setup is
"""

from dataclasses import dataclass, replace
from datetime import datetime
from typing import Dict, Optional

from loguru import logger

from config.loader import StrategyParameters
from strategy.models import Direction, Regime, RegimeState, SignalType, TradingSignal


@dataclass(frozen=True)
class RegimeThresholds:
    entry: float
    exit: float
    stop_loss: float


class SignalGenerator:
    """
    Generates one TradingSignal per day.

    Stateless: the previous day's signal is passed in explicitly.
    """

    def __init__(self, params: StrategyParameters):
        self.params = params
        self._thresholds = self._build_thresholds(params)

    @staticmethod
    def _build_thresholds(params: StrategyParameters) -> Dict[Regime, RegimeThresholds]:
        entry = params.zscore_entry_threshold
        exit_ = params.zscore_exit_threshold
        stop = params.stop_loss_zscore
        return {
            Regime.HIGH_CORRELATION: RegimeThresholds(entry, exit_, stop),
            Regime.LOW_CORRELATION: RegimeThresholds(entry * 0.8, exit_ * 1.5, stop * 0.8),
            Regime.TRANSITION: RegimeThresholds(entry * 1.5, exit_, stop * 0.6),
        }

    def thresholds(self, regime: Regime) -> RegimeThresholds:
        return self._thresholds[regime]

    def generate(
        self,
        zscore: float,
        regime: RegimeState,
        correlation: float,
        volatility: float,
        previous_signal: Optional[TradingSignal] = None,
        date: Optional[datetime] = None
    ) -> TradingSignal:
        """Decide entry, exit or hold for one day. Never raises."""
        try:
            thresholds = self._thresholds[regime.current]
            abs_z = abs(zscore)
            has_position = previous_signal is not None and previous_signal.signal_type == SignalType.ENTRY

            signal_type = SignalType.HOLD
            direction = Direction.NEUTRAL

            if has_position and abs_z > thresholds.stop_loss:
                signal_type = SignalType.EXIT
            elif has_position and abs_z < thresholds.exit:
                signal_type = SignalType.EXIT
            elif abs_z > thresholds.entry:
                if regime.current == Regime.HIGH_CORRELATION:
                    signal_type = SignalType.ENTRY
                    direction = (
                        Direction.SHORT_PRIMARY_LONG_SECONDARY if zscore > 0
                        else Direction.LONG_PRIMARY_SHORT_SECONDARY
                    )
                elif regime.current == Regime.LOW_CORRELATION:
                    signal_type = SignalType.ENTRY
                    direction = (
                        Direction.LONG_PRIMARY_SHORT_SECONDARY if zscore > 0
                        else Direction.SHORT_PRIMARY_LONG_SECONDARY
                    )

            strength = self._strength(abs_z, regime, correlation, volatility)
            confidence = self._confidence(abs_z, regime, correlation, strength)

            return TradingSignal(
                signal_type=signal_type,
                direction=direction,
                strength=strength,
                confidence=confidence,
                zscore=zscore,
                regime=regime.current,
                entry_threshold=thresholds.entry,
                exit_threshold=thresholds.exit,
                date=date,
            )
        except Exception as e:
            logger.error(f"Signal generation failed: {e}")
            return self.neutral_signal(zscore, date)

    def neutral_signal(self, zscore: float = 0.0, date: Optional[datetime] = None) -> TradingSignal:
        thresholds = self._thresholds[Regime.TRANSITION]
        return TradingSignal(
            signal_type=SignalType.HOLD,
            direction=Direction.NEUTRAL,
            strength=0.0,
            confidence=0.0,
            zscore=zscore,
            regime=Regime.TRANSITION,
            entry_threshold=thresholds.entry,
            exit_threshold=thresholds.exit,
            date=date,
        )

    # ===== Scoring =====

    @staticmethod
    def _strength(abs_z: float, regime: RegimeState, correlation: float, volatility: float) -> float:
        zscore_component = min(abs_z / 4.0, 1.0) * 0.4
        regime_component = regime.confidence * 0.3

        if regime.current == Regime.HIGH_CORRELATION:
            correlation_alignment = abs(correlation)
        else:
            correlation_alignment = 1 - abs(correlation)

        if regime.current == Regime.LOW_CORRELATION:
            volatility_alignment = volatility
        else:
            volatility_alignment = 1 - volatility
        volatility_alignment = max(0.0, min(1.0, volatility_alignment))

        strength = zscore_component + regime_component + correlation_alignment * 0.2 + volatility_alignment * 0.1
        return max(0.0, min(1.0, strength))

    @staticmethod
    def _confidence(abs_z: float, regime: RegimeState, correlation: float, strength: float) -> float:
        confidence = 0.0

        if abs_z > 3.0:
            confidence += 0.4
        elif abs_z > 2.5:
            confidence += 0.3
        elif abs_z > 2.0:
            confidence += 0.2

        confidence += regime.confidence * 0.3
        confidence += strength * 0.2

        if regime.current == Regime.HIGH_CORRELATION and abs(correlation) > 0.7:
            confidence += 0.1
        elif regime.current == Regime.LOW_CORRELATION and abs(correlation) < 0.3:
            confidence += 0.1

        return max(0.0, min(1.0, confidence))

    # ===== Filters =====

    @staticmethod
    def filter_signal(
        signal: TradingSignal,
        min_confidence: float = 0.5,
        min_strength: float = 0.3
    ) -> bool:
        """True if the signal is worth acting on. Holds always pass."""
        if signal.signal_type == SignalType.HOLD:
            return True
        if signal.confidence < min_confidence or signal.strength < min_strength:
            return False
        if signal.regime == Regime.TRANSITION and signal.confidence < 0.7:
            return False
        return True

    def generate_with_momentum(
        self,
        zscore: float,
        zscore_momentum: float,
        regime: RegimeState,
        correlation: float,
        volatility: float,
        previous_signal: Optional[TradingSignal] = None,
        date: Optional[datetime] = None
    ) -> TradingSignal:
        """Generate, then reward entries whose z-score momentum agrees with the trade."""
        signal = self.generate(zscore, regime, correlation, volatility, previous_signal, date)
        if signal.signal_type != SignalType.ENTRY:
            return signal

        if signal.regime == Regime.HIGH_CORRELATION:
            # reverting: momentum should point back toward zero
            aligned = zscore * zscore_momentum < 0
        else:
            aligned = zscore * zscore_momentum > 0

        if aligned:
            return replace(signal, strength=min(1.0, signal.strength * 1.2), confidence=min(1.0, signal.confidence * 1.1))
        return replace(signal, strength=signal.strength * 0.8, confidence=signal.confidence * 0.9)
