"""Data Layer Module

Components:
- Market value objects (indicators, ticker, validation decisions)
- JsonHistoryStore: Closed-position persistence
- ValidationCache: Fingerprint keyed TTL cache
"""

from .models import (
    MACD,
    Decision,
    IndicatorSnapshot,
    MarketSnapshot,
    PyramidValidationDecision,
    Ticker,
    ValidationDecision,
)
from .history_store import HistoryPersistenceError, JsonHistoryStore
from .validation_cache import ValidationCache, market_fingerprint

__all__ = [
    "MACD",
    "Decision",
    "IndicatorSnapshot",
    "MarketSnapshot",
    "PyramidValidationDecision",
    "Ticker",
    "ValidationDecision",
    "HistoryPersistenceError",
    "JsonHistoryStore",
    "ValidationCache",
    "market_fingerprint",
]
