"""Analysis Layer Module

Components:
- TrendRegimeDetector: ADX-based regime classification and erosion caps
"""

from .regime_detector import TrendRegimeDetector, MarketRegime, RegimeInfo

__all__ = [
    "TrendRegimeDetector",
    "MarketRegime",
    "RegimeInfo",
]
