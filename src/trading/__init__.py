"""Trading Layer Module

Components:
- EntryGatePipeline: Five-stage entry filter + pyramid add validation
- DynamicPositionSizer: Kelly + confidence position sizing
- PositionLedger: Open positions, pyramid levels, erosion, history
- MomentumFailureDetector: Two-of-three early exit
- calculate_costs: Fee / spread / slippage edge check
- TradingEngine / TickScheduler: Per-tick orchestration
"""

from .cost_evaluator import CostAnalysis, calculate_costs
from .entry_gates import EntryCandidate, EntryGatePipeline, RiskFilterResult, ValidationBudget
from .position_ledger import (
    ClosedPosition,
    ExitReason,
    PerformanceStats,
    Position,
    PositionHealth,
    PositionLedger,
)
from .position_sizer import DynamicPositionSizer, PositionSize
from .momentum_failure import MomentumFailureDetector, MomentumFailureResult
from .engine import EngineAction, TradingEngine, build_engine
from .scheduler import TickScheduler

__all__ = [
    "CostAnalysis",
    "calculate_costs",
    "EntryCandidate",
    "EntryGatePipeline",
    "RiskFilterResult",
    "ValidationBudget",
    "ClosedPosition",
    "ExitReason",
    "PerformanceStats",
    "Position",
    "PositionHealth",
    "PositionLedger",
    "DynamicPositionSizer",
    "PositionSize",
    "MomentumFailureDetector",
    "MomentumFailureResult",
    "EngineAction",
    "TradingEngine",
    "build_engine",
    "TickScheduler",
]
