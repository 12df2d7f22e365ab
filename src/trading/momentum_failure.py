"""Momentum Failure Detector
===========================

Conservative early exit for profitable positions. Three independent signals:

1. Price action failure - near the recent high with 1h momentum rolling
   over, or a strong 1h reversal anywhere
2. Volume exhaustion   - volume ratio below average while in profit
3. HTF breakdown       - 4h momentum weakening, or price below long EMA

Exit requires `required_signals` of the three (default 2). Only active once
the position is at least `min_profit` in profit (default 2%).

Pyramided positions are held longer, so they use the looser 4h thresholds.

Author: SURIOTA Team
"""
from dataclasses import dataclass, field
from typing import Dict, List

from src.data.models import IndicatorSnapshot
from src.trading.position_ledger import Position
from src.utils.logger import get_exit_logger

log = get_exit_logger()


@dataclass
class MomentumSignals:
    """Which of the three signals fired"""
    price_action_failure: bool = False
    volume_exhaustion: bool = False
    htf_breakdown: bool = False

    def to_dict(self) -> Dict:
        return {
            "price_action_failure": self.price_action_failure,
            "volume_exhaustion": self.volume_exhaustion,
            "htf_breakdown": self.htf_breakdown,
        }


@dataclass
class MomentumFailureResult:
    """Detector verdict with reasoning"""
    should_exit: bool = False
    signals: MomentumSignals = field(default_factory=MomentumSignals)
    signal_count: int = 0
    reasoning: List[str] = field(default_factory=list)

    def __str__(self) -> str:
        status = "EXIT" if self.should_exit else "HOLD"
        return f"MomentumFailure[{status}] {self.signal_count} signals"


class MomentumFailureDetector:
    """Two-of-three momentum failure exit"""

    def __init__(
        self,
        enabled: bool = True,
        min_profit: float = 0.02,
        momentum_1h_threshold: float = -0.003,
        momentum_4h_threshold: float = -0.005,
        volume_exhaustion_1h: float = 0.9,
        volume_exhaustion_4h: float = 1.0,
        htf_weakening: float = 0.005,
        near_peak_ratio: float = 0.98,
        required_signals: int = 2
    ):
        self.enabled = enabled
        self.min_profit = min_profit
        self.momentum_1h_threshold = momentum_1h_threshold
        self.momentum_4h_threshold = momentum_4h_threshold
        self.volume_exhaustion_1h = volume_exhaustion_1h
        self.volume_exhaustion_4h = volume_exhaustion_4h
        self.htf_weakening = htf_weakening
        self.near_peak_ratio = near_peak_ratio
        self.required_signals = required_signals

        log.info(
            f"MomentumFailureDetector initialized: enabled={enabled}, "
            f"min_profit={min_profit:.1%}, required_signals={required_signals}"
        )

    def detect(
        self,
        position: Position,
        current_price: float,
        indicators: IndicatorSnapshot
    ) -> MomentumFailureResult:
        """Check an open position for momentum failure

        Args:
            position: Open position (profit already updated at current price)
            current_price: Current price
            indicators: Current indicators

        Returns:
            MomentumFailureResult
        """
        result = MomentumFailureResult()

        if not self.enabled:
            return result

        if position.profit_fraction < self.min_profit:
            return result

        if position.levels_activated >= 1:
            momentum_threshold = self.momentum_4h_threshold
            volume_threshold = self.volume_exhaustion_4h
        else:
            momentum_threshold = self.momentum_1h_threshold
            volume_threshold = self.volume_exhaustion_1h

        # Signal 1: price action failure
        m1h = indicators.momentum_1h
        near_peak = current_price / indicators.recent_high if indicators.recent_high > 0 else 0.0

        if near_peak >= self.near_peak_ratio and m1h < momentum_threshold:
            result.signals.price_action_failure = True
            result.reasoning.append(
                f"Price action failure: {near_peak * 100:.1f}% of peak, "
                f"1h momentum {m1h * 100:.2f}% (threshold: {momentum_threshold * 100:.2f}%)"
            )
        elif m1h < momentum_threshold:
            result.signals.price_action_failure = True
            result.reasoning.append(
                f"Strong 1h reversal: momentum {m1h * 100:.2f}% "
                f"(threshold: {momentum_threshold * 100:.2f}%)"
            )

        # Signal 2: volume exhaustion
        if indicators.volume_ratio < volume_threshold:
            result.signals.volume_exhaustion = True
            result.reasoning.append(
                f"Volume exhaustion: {indicators.volume_ratio:.2f}x "
                f"(threshold: {volume_threshold:.2f}x)"
            )

        # Signal 3: higher timeframe breakdown
        if indicators.momentum_4h < self.htf_weakening:
            result.signals.htf_breakdown = True
            result.reasoning.append(
                f"4h momentum weakening: {indicators.momentum_4h * 100:.2f}% "
                f"(threshold: {self.htf_weakening * 100:.2f}%)"
            )
        elif indicators.long_ema > 0 and current_price < indicators.long_ema:
            result.signals.htf_breakdown = True
            result.reasoning.append(
                f"Long EMA breakdown: price {current_price:.2f} < EMA {indicators.long_ema:.2f}"
            )

        result.signal_count = sum((
            result.signals.price_action_failure,
            result.signals.volume_exhaustion,
            result.signals.htf_breakdown,
        ))
        result.should_exit = result.signal_count >= self.required_signals

        if result.should_exit:
            result.reasoning.append(
                f"EXIT TRIGGERED: {result.signal_count}/{self.required_signals} signals met "
                f"(profit: {position.profit_fraction * 100:.2f}%)"
            )

        return result
