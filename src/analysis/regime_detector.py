"""Trend Regime Detector (ADX based)
===================================

Classifies market trendiness from trend strength (ADX):
- CHOPPY:   ADX < choppy threshold (20)  -> no new entries
- WEAK:     ADX < 30
- MODERATE: ADX < strong threshold (35)
- STRONG:   ADX >= strong threshold

The regime at entry time also decides how much giveback from peak
profit a position tolerates (erosion cap).

Author: SURIOTA Team
"""
from dataclasses import dataclass
from enum import Enum
from typing import Dict


class MarketRegime(Enum):
    """Market regime by trend strength"""
    CHOPPY = "choppy"
    WEAK = "weak"
    MODERATE = "moderate"
    STRONG = "strong"


@dataclass
class RegimeInfo:
    """Regime classification result"""
    regime: MarketRegime
    adx: float
    erosion_cap: float  # Fraction of peak profit tolerated as giveback

    @property
    def is_trending(self) -> bool:
        """Any regime other than choppy counts as trending"""
        return self.regime != MarketRegime.CHOPPY

    def to_dict(self) -> Dict:
        """Convert to dictionary"""
        return {
            "regime": self.regime.value,
            "adx": self.adx,
            "erosion_cap": self.erosion_cap,
            "is_trending": self.is_trending,
        }


class TrendRegimeDetector:
    """ADX based regime classifier"""

    def __init__(
        self,
        choppy_threshold: float = 20.0,
        weak_threshold: float = 30.0,
        strong_threshold: float = 35.0,
        min_adx_for_entry: float = 20.0,
        erosion_cap_choppy: float = 0.006,
        erosion_cap_trend: float = 0.008
    ):
        """Initialize regime detector

        Args:
            choppy_threshold: ADX below this = choppy
            weak_threshold: ADX below this (and above choppy) = weak trend
            strong_threshold: ADX at or above this = strong trend
            min_adx_for_entry: Entries need at least this trend strength
            erosion_cap_choppy: Erosion cap for choppy regime
            erosion_cap_trend: Erosion cap for weak/moderate/strong regimes
        """
        self.choppy_threshold = choppy_threshold
        self.weak_threshold = weak_threshold
        self.strong_threshold = strong_threshold
        self.min_adx_for_entry = min_adx_for_entry
        self.erosion_cap_choppy = erosion_cap_choppy
        self.erosion_cap_trend = erosion_cap_trend

    def get_regime(self, adx: float) -> MarketRegime:
        """Map ADX to a regime"""
        if adx < self.choppy_threshold:
            return MarketRegime.CHOPPY
        if adx < self.weak_threshold:
            return MarketRegime.WEAK
        if adx < self.strong_threshold:
            return MarketRegime.MODERATE
        return MarketRegime.STRONG

    def is_choppy_market(self, adx: float) -> bool:
        """Too choppy for a new entry"""
        return adx < self.min_adx_for_entry

    def get_erosion_cap(self, regime: MarketRegime) -> float:
        """Erosion cap for a regime (choppy is tighter)"""
        if regime == MarketRegime.CHOPPY:
            return self.erosion_cap_choppy
        return self.erosion_cap_trend

    def classify(self, adx: float) -> RegimeInfo:
        """Classify ADX into a RegimeInfo"""
        regime = self.get_regime(adx)
        return RegimeInfo(
            regime=regime,
            adx=adx,
            erosion_cap=self.get_erosion_cap(regime),
        )
