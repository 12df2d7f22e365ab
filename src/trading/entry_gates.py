"""Entry Gate Pipeline
=====================

Five ordered safety gates a new long entry must pass:

1. Health / regime   - validation call budget, choppy market veto (ADX)
2. Drop protection   - reference instrument dump, volume panic, spread widening
3. Entry quality     - local top, RSI extreme, minimum momentum
4. Validation        - external confidence threshold
5. Cost floor        - target vs costs, risk-reward, net edge

The pipeline stops at the first failing stage. Stage 4 needs the external
validation confidence, so callers usually run `prescreen()` (stages 1, 2,
3 and 5) before spending a validation call, then `check_validation()`.

Pyramid adds go through `validate_pyramid_add()`, which is stricter on
confidence than the initial entry.

Author: SURIOTA Team
"""
import time
from dataclasses import dataclass
from typing import Callable, Optional

from src.data.models import IndicatorSnapshot, Ticker
from src.trading.cost_evaluator import CostAnalysis, calculate_costs
from src.utils.logger import get_gate_logger, log_filter_rejection

log = get_gate_logger()


# Stage numbers
STAGE_HEALTH = 1
STAGE_DROP_PROTECTION = 2
STAGE_ENTRY_QUALITY = 3
STAGE_VALIDATION = 4
STAGE_COST_FLOOR = 5

# Gate names used in rejection logs
GATE_NAMES = {
    STAGE_HEALTH: "health_check",
    STAGE_DROP_PROTECTION: "drop_protection",
    STAGE_ENTRY_QUALITY: "entry_quality",
    STAGE_VALIDATION: "validation",
    STAGE_COST_FLOOR: "cost_validation",
}


@dataclass(frozen=True)
class RiskFilterResult:
    """Outcome of one gate (or the whole pipeline)"""
    passed: bool
    stage: int
    reason: Optional[str] = None

    @property
    def gate(self) -> str:
        return GATE_NAMES.get(self.stage, "unknown")

    def __str__(self) -> str:
        status = "PASS" if self.passed else "BLOCK"
        if self.reason:
            return f"[{status}] stage {self.stage} ({self.gate}): {self.reason}"
        return f"[{status}] stage {self.stage} ({self.gate})"


@dataclass(frozen=True)
class EntryCandidate:
    """Everything the gates need to judge a new long entry"""
    instrument: str
    ticker: Ticker
    indicators: IndicatorSnapshot
    profit_target_pct: float     # Fraction, e.g. 0.10
    stop_loss_pct: float         # Fraction, e.g. 0.05

    @property
    def price(self) -> float:
        return self.ticker.price


class ValidationBudget:
    """Rolling hourly budget of external validation calls

    The window resets lazily: the first call after the window has elapsed
    starts a new one.
    """

    def __init__(
        self,
        max_calls_per_hour: int = 300,
        window_seconds: float = 3600.0,
        clock: Callable[[], float] = time.time
    ):
        self.max_calls_per_hour = max_calls_per_hour
        self.window_seconds = window_seconds
        self._clock = clock
        self._calls = 0
        self._window_start = clock()

    def _roll_window(self):
        now = self._clock()
        if now - self._window_start > self.window_seconds:
            self._calls = 0
            self._window_start = now

    def record_call(self):
        """Count one validation call"""
        self._roll_window()
        self._calls += 1

    @property
    def calls_used(self) -> int:
        self._roll_window()
        return self._calls

    @property
    def remaining(self) -> int:
        return max(0, self.max_calls_per_hour - self.calls_used)

    def is_exhausted(self) -> bool:
        return self.calls_used >= self.max_calls_per_hour


class EntryGatePipeline:
    """Ordered five-stage entry filter"""

    def __init__(
        self,
        budget: Optional[ValidationBudget] = None,
        reference_instrument: str = "BTC/USD",
        # Stage 1
        min_adx_for_entry: float = 20.0,
        # Stage 2
        reference_dump_threshold_1h: float = -0.015,
        volume_spike_max: float = 3.0,
        spread_widening_pct: float = 0.005,
        # Stage 3
        near_high_ratio: float = 0.995,
        rsi_extreme: float = 85.0,
        momentum_floor: float = 0.005,
        breakout_volume_ratio: float = 1.3,
        # Stage 4
        min_confidence: float = 70.0,
        # Stage 5
        fee_rate: float = 0.002,
        slippage_pct: float = 0.0001,
        min_profit_multiplier: float = 3.0,
        min_risk_reward_ratio: float = 2.0,
        # Pyramid adds
        l1_trigger_pct: float = 0.045,
        l2_trigger_pct: float = 0.08,
        l1_confidence_min: float = 85.0,
        l2_confidence_min: float = 90.0
    ):
        self.budget = budget or ValidationBudget()
        self.reference_instrument = reference_instrument
        self.min_adx_for_entry = min_adx_for_entry
        self.reference_dump_threshold_1h = reference_dump_threshold_1h
        self.volume_spike_max = volume_spike_max
        self.spread_widening_pct = spread_widening_pct
        self.near_high_ratio = near_high_ratio
        self.rsi_extreme = rsi_extreme
        self.momentum_floor = momentum_floor
        self.breakout_volume_ratio = breakout_volume_ratio
        self.min_confidence = min_confidence
        self.fee_rate = fee_rate
        self.slippage_pct = slippage_pct
        self.min_profit_multiplier = min_profit_multiplier
        self.min_risk_reward_ratio = min_risk_reward_ratio
        self.l1_trigger_pct = l1_trigger_pct
        self.l2_trigger_pct = l2_trigger_pct
        self.l1_confidence_min = l1_confidence_min
        self.l2_confidence_min = l2_confidence_min

        self.reference_momentum_1h = 0.0

        log.info(
            f"EntryGatePipeline initialized: min_adx={min_adx_for_entry}, "
            f"min_confidence={min_confidence}, budget={self.budget.max_calls_per_hour}/h"
        )

    def update_reference_momentum(self, momentum_1h: float):
        """Record the reference instrument's 1h momentum (fraction)"""
        self.reference_momentum_1h = momentum_1h

    # =========================================================================
    # STAGES
    # =========================================================================

    def check_health(self, indicators: IndicatorSnapshot) -> RiskFilterResult:
        """Stage 1: validation budget and choppy market veto"""
        if self.budget.is_exhausted():
            return RiskFilterResult(
                False, STAGE_HEALTH,
                f"Validation budget exhausted "
                f"({self.budget.calls_used}/{self.budget.max_calls_per_hour})"
            )

        if indicators.adx < self.min_adx_for_entry:
            return RiskFilterResult(
                False, STAGE_HEALTH,
                f"Choppy market (ADX {indicators.adx:.1f} < {self.min_adx_for_entry})"
            )

        return RiskFilterResult(True, STAGE_HEALTH)

    def check_drop_protection(self, candidate: EntryCandidate) -> RiskFilterResult:
        """Stage 2: reference dump, volume panic, spread widening"""
        if (candidate.instrument != self.reference_instrument
                and self.reference_momentum_1h < self.reference_dump_threshold_1h):
            return RiskFilterResult(
                False, STAGE_DROP_PROTECTION,
                f"{self.reference_instrument} dumping "
                f"({self.reference_momentum_1h * 100:.2f}%)"
            )

        volume_ratio = candidate.indicators.volume_ratio
        if volume_ratio > self.volume_spike_max:
            return RiskFilterResult(
                False, STAGE_DROP_PROTECTION,
                f"Volume panic spike ({volume_ratio:.2f}x)"
            )

        spread_pct = candidate.ticker.spread_pct
        if spread_pct > self.spread_widening_pct:
            return RiskFilterResult(
                False, STAGE_DROP_PROTECTION,
                f"Spread widening ({spread_pct * 100:.3f}%)"
            )

        return RiskFilterResult(True, STAGE_DROP_PROTECTION)

    def check_entry_quality(self, candidate: EntryCandidate) -> RiskFilterResult:
        """Stage 3: local top, RSI extreme, minimum momentum"""
        price = candidate.price
        ind = candidate.indicators

        if price > ind.recent_high * self.near_high_ratio:
            return RiskFilterResult(
                False, STAGE_ENTRY_QUALITY,
                f"Price at local top ({price:.2f} vs {ind.recent_high:.2f})"
            )

        if ind.rsi > self.rsi_extreme:
            return RiskFilterResult(
                False, STAGE_ENTRY_QUALITY,
                f"RSI extreme overbought ({ind.rsi:.1f})"
            )

        # Entry paths: strong 1h, 1h+4h trending, volume breakout
        has_1h_momentum = ind.momentum_1h > self.momentum_floor
        has_both_positive = (ind.momentum_1h > self.momentum_floor
                             and ind.momentum_4h > self.momentum_floor)
        has_volume_breakout = (ind.volume_ratio > self.breakout_volume_ratio
                               and ind.momentum_1h > 0)

        if not (has_1h_momentum or has_both_positive or has_volume_breakout):
            return RiskFilterResult(
                False, STAGE_ENTRY_QUALITY,
                f"Weak momentum (1h: {ind.momentum_1h * 100:.2f}%, "
                f"4h: {ind.momentum_4h * 100:.2f}%)"
            )

        return RiskFilterResult(True, STAGE_ENTRY_QUALITY)

    def check_confidence(self, confidence: float) -> RiskFilterResult:
        """Stage 4: external validation confidence"""
        if confidence < self.min_confidence:
            return RiskFilterResult(
                False, STAGE_VALIDATION,
                f"Confidence too low ({confidence:.0f}% < {self.min_confidence:.0f}%)"
            )
        return RiskFilterResult(True, STAGE_VALIDATION)

    def analyze_costs(self, candidate: EntryCandidate) -> CostAnalysis:
        """Cost breakdown for a candidate using the pipeline's cost settings"""
        return calculate_costs(
            candidate.instrument,
            candidate.profit_target_pct,
            candidate.stop_loss_pct,
            fee_rate=self.fee_rate,
            slippage_pct=self.slippage_pct,
            min_profit_multiplier=self.min_profit_multiplier,
            min_risk_reward_ratio=self.min_risk_reward_ratio,
        )

    def check_cost_floor(self, costs: CostAnalysis) -> RiskFilterResult:
        """Stage 5: cost floor, risk-reward, net edge"""
        if not costs.passes_cost_floor:
            return RiskFilterResult(
                False, STAGE_COST_FLOOR,
                f"Profit ({costs.profit_target_pct * 100:.2f}%) below cost floor "
                f"({costs.cost_floor_pct * 100:.2f}%)"
            )

        if not costs.passes_risk_reward_ratio:
            return RiskFilterResult(
                False, STAGE_COST_FLOOR,
                f"Risk-reward ({costs.risk_reward_ratio:.2f}:1) below minimum "
                f"({self.min_risk_reward_ratio}:1)"
            )

        if costs.net_edge_pct <= 0:
            return RiskFilterResult(
                False, STAGE_COST_FLOOR,
                f"No net edge after costs ({costs.net_edge_pct * 100:.2f}%)"
            )

        return RiskFilterResult(True, STAGE_COST_FLOOR)

    # =========================================================================
    # PIPELINES
    # =========================================================================

    def _reject(self, instrument: str, result: RiskFilterResult) -> RiskFilterResult:
        log_filter_rejection(instrument, result.gate, result.reason)
        return result

    def prescreen(self, candidate: EntryCandidate) -> RiskFilterResult:
        """Run stages 1, 2, 3 and 5 (everything but external validation)

        Returns:
            First failing result, or a passing stage-5 result
        """
        checks = (
            lambda: self.check_health(candidate.indicators),
            lambda: self.check_drop_protection(candidate),
            lambda: self.check_entry_quality(candidate),
            lambda: self.check_cost_floor(self.analyze_costs(candidate)),
        )
        for check in checks:
            result = check()
            if not result.passed:
                return self._reject(candidate.instrument, result)

        return RiskFilterResult(True, STAGE_COST_FLOOR)

    def check_validation(self, confidence: float, instrument: str = "") -> RiskFilterResult:
        """Run stage 4 alone (after the external validation call)"""
        result = self.check_confidence(confidence)
        if not result.passed:
            return self._reject(instrument, result)
        return result

    def evaluate(self, candidate: EntryCandidate, confidence: float) -> RiskFilterResult:
        """Run all five stages in order, stopping at the first failure

        Args:
            candidate: Entry candidate
            confidence: External validation confidence (0-100)

        Returns:
            RiskFilterResult of the first failing stage, or a pass at stage 5
        """
        checks = (
            lambda: self.check_health(candidate.indicators),
            lambda: self.check_drop_protection(candidate),
            lambda: self.check_entry_quality(candidate),
            lambda: self.check_confidence(confidence),
            lambda: self.check_cost_floor(self.analyze_costs(candidate)),
        )
        for check in checks:
            result = check()
            if not result.passed:
                return self._reject(candidate.instrument, result)

        return RiskFilterResult(True, STAGE_COST_FLOOR)

    def validate_pyramid_add(
        self,
        level: int,
        confidence: float,
        profit_fraction: float,
        instrument: str = ""
    ) -> RiskFilterResult:
        """Validate a pyramid add (L1 or L2)

        Args:
            level: Pyramid level (1 or 2)
            confidence: External validation confidence (0-100)
            profit_fraction: Current position profit as fraction
            instrument: For rejection logs

        Returns:
            RiskFilterResult (stage 4 for confidence, stage 3 for trigger)
        """
        if level == 1:
            min_confidence, trigger = self.l1_confidence_min, self.l1_trigger_pct
        else:
            min_confidence, trigger = self.l2_confidence_min, self.l2_trigger_pct

        if confidence < min_confidence:
            return self._reject(instrument, RiskFilterResult(
                False, STAGE_VALIDATION,
                f"L{level} confidence ({confidence:.0f}%) below minimum ({min_confidence:.0f}%)"
            ))

        if profit_fraction < trigger:
            return self._reject(instrument, RiskFilterResult(
                False, STAGE_ENTRY_QUALITY,
                f"Profit ({profit_fraction * 100:.2f}%) not at L{level} trigger "
                f"({trigger * 100:.2f}%)"
            ))

        return RiskFilterResult(True, STAGE_VALIDATION)
