"""Trading Engine - Per-Tick Decision Step
=========================================

Wires the risk components together for one instrument per tick:

Flat instrument:
    prepare_entry()  -> gates stages 1, 2, 3, 5 + cost analysis + regime
    (caller asks the external validator, consulting the cache first)
    finalize_entry() -> stage 4, sizing, exposure guard, ledger add

Open position:
    monitor_position() -> update, then
                          stop-loss -> erosion cap -> momentum failure -> profit target
    pyramid_candidate() / apply_pyramid_decision() -> L1 / L2 adds

Everything here is synchronous; the async scheduler awaits collaborators
between these steps.

Author: SURIOTA Team
"""
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, Optional

from src.analysis.regime_detector import RegimeInfo, TrendRegimeDetector
from src.data.history_store import JsonHistoryStore
from src.data.models import (
    IndicatorSnapshot,
    PyramidValidationDecision,
    Ticker,
    ValidationDecision,
)
from src.data.validation_cache import ValidationCache, market_fingerprint
from src.trading.cost_evaluator import CostAnalysis
from src.trading.entry_gates import (
    EntryCandidate,
    EntryGatePipeline,
    RiskFilterResult,
    ValidationBudget,
)
from src.trading.momentum_failure import MomentumFailureDetector
from src.trading.position_ledger import ExitReason, PerformanceStats, PositionLedger
from src.trading.position_sizer import DynamicPositionSizer
from src.utils.logger import get_engine_logger

log = get_engine_logger()


class ActionType(Enum):
    """What the engine decided for an instrument"""
    ENTER = "enter"
    EXIT = "exit"
    PYRAMID = "pyramid"


@dataclass
class EngineAction:
    """Decision for the order-placement collaborator"""
    instrument: str
    action: ActionType
    price: float
    volume: float = 0.0
    reason: Optional[str] = None
    level: Optional[int] = None
    details: Dict = field(default_factory=dict)

    def __str__(self) -> str:
        text = f"{self.action.value.upper()} {self.instrument} @ {self.price:.2f}"
        if self.volume:
            text += f" vol={self.volume:.8f}"
        if self.level:
            text += f" L{self.level}"
        if self.reason:
            text += f" [{self.reason}]"
        return text


@dataclass
class EntryScreen:
    """Prescreen outcome for a flat instrument"""
    candidate: EntryCandidate
    result: RiskFilterResult
    costs: CostAnalysis
    regime: RegimeInfo
    cache_key: str

    @property
    def instrument(self) -> str:
        return self.candidate.instrument

    @property
    def price(self) -> float:
        return self.candidate.price

    @property
    def passed(self) -> bool:
        return self.result.passed


class TradingEngine:
    """Synchronous per-tick decision step"""

    def __init__(
        self,
        gates: EntryGatePipeline,
        sizer: DynamicPositionSizer,
        ledger: PositionLedger,
        detector: MomentumFailureDetector,
        regime_detector: TrendRegimeDetector,
        cache: Optional[ValidationCache] = None,
        stop_loss_pct: float = 0.05,
        profit_target_pct: float = 0.10,
        dynamic_sizing: bool = True,
        pyramid_enabled: bool = True,
        l1_add_size_pct: float = 0.35,
        l2_add_size_pct: float = 0.50,
        reference_instrument: str = "BTC/USD"
    ):
        self.gates = gates
        self.sizer = sizer
        self.ledger = ledger
        self.detector = detector
        self.regime_detector = regime_detector
        self.cache = cache or ValidationCache()
        self.stop_loss_pct = stop_loss_pct
        self.profit_target_pct = profit_target_pct
        self.dynamic_sizing = dynamic_sizing
        self.pyramid_enabled = pyramid_enabled
        self.l1_add_size_pct = l1_add_size_pct
        self.l2_add_size_pct = l2_add_size_pct
        self.reference_instrument = reference_instrument

    # =========================================================================
    # SHARED STATE
    # =========================================================================

    def refresh_performance(self) -> PerformanceStats:
        """Push closed-trade statistics into the sizer"""
        stats = self.ledger.get_performance_stats()
        self.sizer.update_performance(stats)
        return stats

    def update_reference(self, indicators: IndicatorSnapshot):
        """Feed the reference instrument's 1h momentum to drop protection"""
        self.gates.update_reference_momentum(indicators.momentum_1h)

    # =========================================================================
    # ENTRY
    # =========================================================================

    def prepare_entry(
        self,
        instrument: str,
        ticker: Ticker,
        indicators: IndicatorSnapshot
    ) -> Optional[EntryScreen]:
        """Prescreen a flat instrument (None when a position is already open)"""
        if self.ledger.has_position(instrument):
            return None

        candidate = EntryCandidate(
            instrument=instrument,
            ticker=ticker,
            indicators=indicators,
            profit_target_pct=self.profit_target_pct,
            stop_loss_pct=self.stop_loss_pct,
        )
        return EntryScreen(
            candidate=candidate,
            result=self.gates.prescreen(candidate),
            costs=self.gates.analyze_costs(candidate),
            regime=self.regime_detector.classify(indicators.adx),
            cache_key=market_fingerprint(instrument, ticker.price, indicators),
        )

    def cached_validation(self, screen: EntryScreen) -> Optional[ValidationDecision]:
        return self.cache.get(screen.cache_key)

    def record_validation(self, screen: EntryScreen, decision: ValidationDecision):
        """Count an external validation call and cache its answer"""
        self.gates.budget.record_call()
        self.cache.put(screen.cache_key, decision)

    def finalize_entry(
        self,
        screen: EntryScreen,
        decision: ValidationDecision
    ) -> Optional[EngineAction]:
        """Open a position if validation, sizing and exposure all allow it"""
        if not screen.passed:
            return None

        instrument = screen.instrument
        if not decision.wants_entry:
            log.info(f"{instrument}: validator says {decision.decision.value} ({decision.confidence:.0f}%)")
            return None

        if not self.gates.check_validation(decision.confidence, instrument).passed:
            return None

        price = screen.price
        if self.dynamic_sizing:
            size = self.sizer.size(decision.confidence, price, self.stop_loss_pct)
        else:
            size = self.sizer.fixed_size(price, self.stop_loss_pct)

        if not self.sizer.can_add_position(self.ledger.get_open_positions(), size.risk_currency):
            log.info(f"{instrument}: entry skipped, exposure limit reached")
            return None

        position = self.ledger.add_position(
            instrument,
            entry_price=price,
            volume=size.stake_asset,
            stop_loss=price * (1 - self.stop_loss_pct),
            profit_target=price * (1 + self.profit_target_pct),
            regime=screen.regime.regime.value,
            trend_strength=screen.regime.adx,
            erosion_cap=screen.regime.erosion_cap,
            reasoning=decision.reasoning,
        )
        if position is None:
            return None

        return EngineAction(
            instrument=instrument,
            action=ActionType.ENTER,
            price=price,
            volume=size.stake_asset,
            reason=f"confidence {decision.confidence:.0f}%",
            details={
                "stake": size.stake_currency,
                "risk": size.risk_currency,
                "risk_fraction": size.risk_fraction,
                "regime": screen.regime.regime.value,
                "erosion_cap": screen.regime.erosion_cap,
            },
        )

    # =========================================================================
    # OPEN POSITIONS
    # =========================================================================

    def _exit(self, instrument: str, price: float, reason: ExitReason, details: Dict) -> Optional[EngineAction]:
        closed = self.ledger.close_position(instrument, price, reason)
        if closed is None:
            return None
        details = dict(details, profit=closed.profit, profit_pct=closed.profit_pct)
        return EngineAction(
            instrument=instrument,
            action=ActionType.EXIT,
            price=price,
            volume=closed.total_volume,
            reason=reason.value,
            details=details,
        )

    def monitor_position(
        self,
        instrument: str,
        price: float,
        indicators: IndicatorSnapshot
    ) -> Optional[EngineAction]:
        """Update an open position and run the exit checks in priority order"""
        position = self.ledger.update_position(instrument, price)
        if position is None:
            return None

        if self.ledger.check_stop_loss(instrument, price):
            log.info(f"[STOP LOSS] {instrument} at {price:.2f}")
            return self._exit(instrument, price, ExitReason.STOP_LOSS, {})

        if self.ledger.check_erosion_cap(instrument):
            return self._exit(instrument, price, ExitReason.EROSION_CAP, {
                "peak_profit": position.peak_profit,
                "erosion_used": position.erosion_used,
            })

        failure = self.detector.detect(position, price, indicators)
        if failure.should_exit:
            log.info(
                f"[MOMENTUM FAILURE] {instrument} exit at {price:.2f} "
                f"({failure.signal_count}/{self.detector.required_signals} signals)"
            )
            for line in failure.reasoning:
                log.debug(f"[MOMENTUM FAILURE] {instrument}: {line}")
            return self._exit(instrument, price, ExitReason.MOMENTUM_FAILURE, {
                "signals": failure.signals.to_dict(),
                "reasoning": list(failure.reasoning),
            })

        if self.ledger.check_profit_target(instrument, price):
            log.info(f"[PROFIT TARGET] {instrument} hit target at {price:.2f}")
            return self._exit(instrument, price, ExitReason.PROFIT_TARGET, {})

        return None

    def pyramid_candidate(self, instrument: str) -> Optional[int]:
        """Pyramid level the position is ready for, if any"""
        if not self.pyramid_enabled:
            return None

        position = self.ledger.get_position(instrument)
        if position is None:
            return None

        if self.ledger.is_ready_for_l1(instrument, position.profit_fraction):
            return 1
        if self.ledger.is_ready_for_l2(instrument, position.profit_fraction):
            return 2
        return None

    def apply_pyramid_decision(
        self,
        instrument: str,
        level: int,
        price: float,
        decision: PyramidValidationDecision
    ) -> Optional[EngineAction]:
        """Add a pyramid level if the validator and the gates agree"""
        if not decision.should_add or decision.level != level:
            log.info(f"{instrument}: L{level} add declined by validator")
            return None

        position = self.ledger.get_position(instrument)
        if position is None:
            return None

        check = self.gates.validate_pyramid_add(
            level, decision.confidence, position.profit_fraction, instrument
        )
        if not check.passed:
            return None

        add_size_pct = self.l1_add_size_pct if level == 1 else self.l2_add_size_pct
        volume = position.initial_volume * add_size_pct

        if not self.ledger.add_pyramid_level(instrument, level, price, volume, decision.confidence):
            return None

        return EngineAction(
            instrument=instrument,
            action=ActionType.PYRAMID,
            price=price,
            volume=volume,
            level=level,
            reason=f"confidence {decision.confidence:.0f}%",
        )


def build_engine(settings=None) -> TradingEngine:
    """Wire every component from a Settings instance (global config by default)"""
    if settings is None:
        from config import config as settings

    gates_cfg = settings.gates
    pyramid_cfg = settings.pyramid
    sizing_cfg = settings.sizing
    momentum_cfg = settings.momentum_failure

    gates = EntryGatePipeline(
        budget=ValidationBudget(max_calls_per_hour=settings.validation.max_calls_per_hour),
        reference_instrument=settings.trading.reference_instrument,
        min_adx_for_entry=gates_cfg.min_adx_for_entry,
        reference_dump_threshold_1h=gates_cfg.reference_dump_threshold_1h,
        volume_spike_max=gates_cfg.volume_spike_max,
        spread_widening_pct=gates_cfg.spread_widening_pct,
        near_high_ratio=gates_cfg.near_high_ratio,
        rsi_extreme=gates_cfg.rsi_extreme,
        momentum_floor=gates_cfg.momentum_floor,
        breakout_volume_ratio=gates_cfg.breakout_volume_ratio,
        min_confidence=settings.validation.min_confidence,
        fee_rate=settings.costs.exchange_fee_pct,
        slippage_pct=settings.costs.slippage_pct,
        min_profit_multiplier=settings.costs.min_profit_multiplier,
        min_risk_reward_ratio=settings.costs.min_risk_reward_ratio,
        l1_trigger_pct=pyramid_cfg.l1_trigger_pct,
        l2_trigger_pct=pyramid_cfg.l2_trigger_pct,
        l1_confidence_min=pyramid_cfg.l1_confidence_min,
        l2_confidence_min=pyramid_cfg.l2_confidence_min,
    )

    sizer = DynamicPositionSizer(
        account_balance=settings.trading.account_balance,
        min_risk_per_trade=sizing_cfg.min_risk_per_trade,
        max_risk_per_trade=sizing_cfg.max_risk_per_trade,
        kelly_fraction=sizing_cfg.kelly_fraction,
        min_confidence=sizing_cfg.min_confidence,
        max_confidence=sizing_cfg.max_confidence,
        max_open_risk_pct=sizing_cfg.max_open_risk_pct,
        risk_per_trade_pct=sizing_cfg.risk_per_trade_pct,
    )

    ledger = PositionLedger(
        store=JsonHistoryStore(Path(settings.trading.data_dir)),
        l1_trigger_pct=pyramid_cfg.l1_trigger_pct,
        l2_trigger_pct=pyramid_cfg.l2_trigger_pct,
        max_pyramid_levels=pyramid_cfg.max_levels,
        activity_feed_size=settings.trading.activity_feed_size,
    )

    detector = MomentumFailureDetector(
        enabled=momentum_cfg.enabled,
        min_profit=momentum_cfg.min_profit,
        momentum_1h_threshold=momentum_cfg.momentum_1h_threshold,
        momentum_4h_threshold=momentum_cfg.momentum_4h_threshold,
        volume_exhaustion_1h=momentum_cfg.volume_exhaustion_1h,
        volume_exhaustion_4h=momentum_cfg.volume_exhaustion_4h,
        htf_weakening=momentum_cfg.htf_weakening,
        near_peak_ratio=momentum_cfg.near_peak_ratio,
        required_signals=momentum_cfg.required_signals,
    )

    regime_detector = TrendRegimeDetector(
        choppy_threshold=gates_cfg.adx_choppy_threshold,
        weak_threshold=gates_cfg.adx_weak_threshold,
        strong_threshold=gates_cfg.adx_strong_threshold,
        min_adx_for_entry=gates_cfg.min_adx_for_entry,
        erosion_cap_choppy=pyramid_cfg.erosion_cap_choppy,
        erosion_cap_trend=pyramid_cfg.erosion_cap_trend,
    )

    engine = TradingEngine(
        gates=gates,
        sizer=sizer,
        ledger=ledger,
        detector=detector,
        regime_detector=regime_detector,
        cache=ValidationCache(ttl_minutes=settings.validation.cache_minutes),
        stop_loss_pct=settings.trading.stop_loss_pct,
        profit_target_pct=settings.trading.profit_target_pct,
        dynamic_sizing=sizing_cfg.dynamic_sizing_enabled,
        pyramid_enabled=pyramid_cfg.enabled,
        l1_add_size_pct=pyramid_cfg.l1_add_size_pct,
        l2_add_size_pct=pyramid_cfg.l2_add_size_pct,
        reference_instrument=settings.trading.reference_instrument,
    )
    engine.refresh_performance()
    return engine
