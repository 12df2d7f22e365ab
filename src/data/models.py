"""Market Data Value Objects
===========================

Read-only inputs handed to the risk core by its collaborators:
- IndicatorSnapshot: pre-computed technical indicators for one instrument
- Ticker: top-of-book quote
- ValidationDecision / PyramidValidationDecision: external advisory output
- MarketSnapshot: everything the engine needs for one instrument per tick

Momentum values are fractions (0.005 = 0.5%).

Author: SURIOTA Team
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import List


@dataclass(frozen=True)
class MACD:
    """MACD line/signal/histogram triple"""
    line: float = 0.0
    signal: float = 0.0
    histogram: float = 0.0


@dataclass(frozen=True)
class IndicatorSnapshot:
    """Pre-computed indicator values for one instrument"""
    rsi: float
    adx: float
    volume_ratio: float          # Current volume / average volume
    momentum_1h: float           # 1h price change (fraction)
    momentum_4h: float           # 4h price change (fraction)
    recent_high: float
    recent_low: float
    long_ema: float              # Long moving-average reference (EMA200)
    macd: MACD = field(default_factory=MACD)

    def to_dict(self) -> dict:
        return {
            "rsi": self.rsi,
            "adx": self.adx,
            "volume_ratio": self.volume_ratio,
            "momentum_1h": self.momentum_1h,
            "momentum_4h": self.momentum_4h,
            "recent_high": self.recent_high,
            "recent_low": self.recent_low,
            "long_ema": self.long_ema,
            "macd": {
                "line": self.macd.line,
                "signal": self.macd.signal,
                "histogram": self.macd.histogram,
            },
        }


@dataclass(frozen=True)
class Ticker:
    """Top-of-book quote"""
    bid: float
    ask: float
    price: float
    volume: float = 0.0
    spread: float = 0.0

    @property
    def spread_pct(self) -> float:
        """Spread normalized by price (fraction)"""
        if self.price <= 0:
            return 0.0
        return self.spread / self.price


class Decision(Enum):
    """External validation verdict"""
    ENTER = "ENTER"
    HOLD = "HOLD"


@dataclass(frozen=True)
class ValidationDecision:
    """Entry decision from the advisory collaborator"""
    decision: Decision
    confidence: float            # 0-100
    reasoning: List[str] = field(default_factory=list)

    @property
    def wants_entry(self) -> bool:
        return self.decision == Decision.ENTER


@dataclass(frozen=True)
class PyramidValidationDecision:
    """Pyramid add decision from the advisory collaborator"""
    should_add: bool
    level: int                   # 1 or 2
    confidence: float            # 0-100
    reasoning: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class MarketSnapshot:
    """One instrument's market state for a single tick"""
    instrument: str
    ticker: Ticker
    indicators: IndicatorSnapshot

    @property
    def price(self) -> float:
        return self.ticker.price
