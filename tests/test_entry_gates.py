"""Entry Gate Pipeline Unit Tests
================================

Tests for EntryGatePipeline and ValidationBudget.

Author: SURIOTA Team
"""
import pytest
from dataclasses import replace
from loguru import logger

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

from src.data.models import IndicatorSnapshot, Ticker
from src.trading.entry_gates import (
    EntryCandidate,
    EntryGatePipeline,
    RiskFilterResult,
    ValidationBudget,
)


def make_indicators(**overrides) -> IndicatorSnapshot:
    values = dict(
        rsi=60.0,
        adx=28.0,
        volume_ratio=1.5,
        momentum_1h=0.008,
        momentum_4h=0.010,
        recent_high=52000.0,
        recent_low=48000.0,
        long_ema=45000.0,
    )
    values.update(overrides)
    return IndicatorSnapshot(**values)


def make_candidate(
    instrument: str = "BTC/USD",
    price: float = 50000.0,
    spread: float = 5.0,
    profit_target_pct: float = 0.10,
    stop_loss_pct: float = 0.05,
    **indicator_overrides
) -> EntryCandidate:
    return EntryCandidate(
        instrument=instrument,
        ticker=Ticker(bid=price - spread / 2, ask=price + spread / 2, price=price, spread=spread),
        indicators=make_indicators(**indicator_overrides),
        profit_target_pct=profit_target_pct,
        stop_loss_pct=stop_loss_pct,
    )


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now


class TestRiskFilterResult:
    """Tests for RiskFilterResult"""

    def test_gate_name(self):
        """Stage numbers map to gate names"""
        assert RiskFilterResult(False, 2, "x").gate == "drop_protection"
        assert RiskFilterResult(True, 5).gate == "cost_validation"

    def test_str(self):
        """String form shows status and reason"""
        text = str(RiskFilterResult(False, 1, "Choppy market"))
        assert "BLOCK" in text
        assert "Choppy market" in text


class TestValidationBudget:
    """Tests for ValidationBudget"""

    def test_exhaustion(self):
        """Budget exhausted once max calls recorded"""
        budget = ValidationBudget(max_calls_per_hour=2, clock=FakeClock())
        assert budget.is_exhausted() is False
        budget.record_call()
        budget.record_call()
        assert budget.is_exhausted() is True
        assert budget.remaining == 0

    def test_window_resets(self):
        """A new window starts after an hour"""
        clock = FakeClock()
        budget = ValidationBudget(max_calls_per_hour=1, clock=clock)
        budget.record_call()
        assert budget.is_exhausted() is True

        clock.now += 3601
        assert budget.is_exhausted() is False
        assert budget.calls_used == 0


class TestEntryGatePipeline:
    """Tests for the five-stage pipeline"""

    @pytest.fixture
    def pipeline(self):
        return EntryGatePipeline(budget=ValidationBudget(max_calls_per_hour=10, clock=FakeClock()))

    def test_clean_candidate_passes(self, pipeline):
        """A healthy candidate passes all five stages"""
        result = pipeline.evaluate(make_candidate(), confidence=80)
        assert result.passed is True
        assert result.stage == 5

    def test_deterministic(self, pipeline):
        """Identical inputs give identical results"""
        candidate = make_candidate(volume_ratio=3.5)
        assert pipeline.evaluate(candidate, 80) == pipeline.evaluate(candidate, 80)

    # Stage 1 ---------------------------------------------------------------

    def test_choppy_market_rejected(self, pipeline):
        """ADX below minimum fails stage 1"""
        result = pipeline.evaluate(make_candidate(adx=15.0), confidence=80)
        assert result.passed is False
        assert result.stage == 1
        assert "Choppy" in result.reason

    def test_budget_exhausted_rejected(self):
        """Exhausted validation budget fails stage 1"""
        budget = ValidationBudget(max_calls_per_hour=1, clock=FakeClock())
        budget.record_call()
        pipeline = EntryGatePipeline(budget=budget)

        result = pipeline.evaluate(make_candidate(), confidence=80)
        assert result.stage == 1
        assert "budget" in result.reason

    # Stage 2 ---------------------------------------------------------------

    def test_volume_panic_rejected(self, pipeline):
        """Volume ratio 3.5 fails stage 2 even when everything else is fine"""
        result = pipeline.evaluate(make_candidate(volume_ratio=3.5), confidence=80)
        assert result.passed is False
        assert result.stage == 2
        assert "Volume panic" in result.reason

    def test_reference_dump_blocks_other_instruments(self, pipeline):
        """Reference dump blocks non-reference instruments only"""
        pipeline.update_reference_momentum(-0.02)

        alt = pipeline.evaluate(make_candidate(instrument="ETH/USD"), confidence=80)
        assert alt.stage == 2
        assert "dumping" in alt.reason

        ref = pipeline.evaluate(make_candidate(instrument="BTC/USD"), confidence=80)
        assert ref.passed is True

    def test_spread_widening_rejected(self, pipeline):
        """Spread over 0.5% of price fails stage 2"""
        result = pipeline.evaluate(make_candidate(spread=300.0), confidence=80)
        assert result.stage == 2
        assert "Spread" in result.reason

    # Stage 3 ---------------------------------------------------------------

    def test_local_top_rejected(self, pipeline):
        """Price within 0.5% of recent high fails stage 3"""
        result = pipeline.evaluate(make_candidate(price=51800.0), confidence=80)
        assert result.stage == 3
        assert "local top" in result.reason

    def test_rsi_extreme_rejected(self, pipeline):
        """RSI above 85 fails stage 3"""
        result = pipeline.evaluate(make_candidate(rsi=90.0), confidence=80)
        assert result.stage == 3
        assert "RSI" in result.reason

    def test_weak_momentum_rejected(self, pipeline):
        """No momentum path fails stage 3"""
        result = pipeline.evaluate(
            make_candidate(momentum_1h=0.001, momentum_4h=0.01, volume_ratio=1.0),
            confidence=80
        )
        assert result.stage == 3
        assert "Weak momentum" in result.reason

    def test_volume_breakout_path(self, pipeline):
        """Volume breakout with positive 1h momentum passes stage 3"""
        result = pipeline.evaluate(
            make_candidate(momentum_1h=0.002, momentum_4h=0.0, volume_ratio=1.5),
            confidence=80
        )
        assert result.passed is True

    # Stage 4 ---------------------------------------------------------------

    def test_low_confidence_rejected(self, pipeline):
        """Confidence below 70 fails stage 4"""
        result = pipeline.evaluate(make_candidate(), confidence=60)
        assert result.stage == 4

    def test_check_validation_alone(self, pipeline):
        """Stage 4 can run on its own"""
        assert pipeline.check_validation(70).passed is True
        assert pipeline.check_validation(69.9).stage == 4

    # Stage 5 ---------------------------------------------------------------

    def test_poor_risk_reward_rejected(self, pipeline):
        """Risk-reward below 2:1 fails stage 5"""
        result = pipeline.evaluate(
            make_candidate(profit_target_pct=0.08, stop_loss_pct=0.05), confidence=80
        )
        assert result.stage == 5
        assert "Risk-reward" in result.reason

    def test_cost_floor_rejected(self, pipeline):
        """Target under 3x costs fails stage 5"""
        result = pipeline.evaluate(
            make_candidate(profit_target_pct=0.01, stop_loss_pct=0.004), confidence=80
        )
        assert result.stage == 5
        assert "cost floor" in result.reason

    # Ordering --------------------------------------------------------------

    def test_first_failing_stage_wins(self, pipeline):
        """With several failures the earliest stage is reported"""
        everything_bad = make_candidate(adx=10.0, volume_ratio=3.5, rsi=95.0,
                                        profit_target_pct=0.01)
        assert pipeline.evaluate(everything_bad, confidence=10).stage == 1

        stage_2_and_3 = make_candidate(volume_ratio=3.5, rsi=95.0)
        assert pipeline.evaluate(stage_2_and_3, confidence=10).stage == 2

        stage_3_and_4 = make_candidate(rsi=95.0)
        assert pipeline.evaluate(stage_3_and_4, confidence=10).stage == 3

    def test_prescreen_skips_validation(self, pipeline):
        """prescreen runs everything but stage 4"""
        assert pipeline.prescreen(make_candidate()).passed is True
        assert pipeline.prescreen(make_candidate(volume_ratio=3.5)).stage == 2
        assert pipeline.prescreen(make_candidate(profit_target_pct=0.08)).stage == 5

    def test_rejection_logged_once(self, pipeline):
        """Each rejection emits exactly one log record"""
        messages = []
        handler_id = logger.add(messages.append, level="INFO")
        try:
            pipeline.evaluate(make_candidate(volume_ratio=3.5), confidence=80)
        finally:
            logger.remove(handler_id)

        blocked = [m for m in messages if "Entry Blocked" in m]
        assert len(blocked) == 1
        assert "drop_protection" in blocked[0]

    def test_candidate_not_mutated(self, pipeline):
        """Evaluation does not touch the candidate"""
        candidate = make_candidate()
        before = replace(candidate)
        pipeline.evaluate(candidate, confidence=80)
        assert candidate == before


class TestPyramidValidation:
    """Tests for validate_pyramid_add"""

    @pytest.fixture
    def pipeline(self):
        return EntryGatePipeline()

    def test_l1_low_confidence(self, pipeline):
        """L1 needs confidence 85"""
        result = pipeline.validate_pyramid_add(1, confidence=80, profit_fraction=0.05)
        assert result.passed is False
        assert result.stage == 4

    def test_l1_trigger_not_reached(self, pipeline):
        """L1 needs profit at the 4.5% trigger"""
        result = pipeline.validate_pyramid_add(1, confidence=88, profit_fraction=0.04)
        assert result.passed is False
        assert result.stage == 3

    def test_l1_passes(self, pipeline):
        """Confident and at trigger"""
        assert pipeline.validate_pyramid_add(1, confidence=88, profit_fraction=0.045).passed is True

    def test_l2_stricter(self, pipeline):
        """L2 needs confidence 90 and 8% profit"""
        assert pipeline.validate_pyramid_add(2, confidence=88, profit_fraction=0.09).stage == 4
        assert pipeline.validate_pyramid_add(2, confidence=92, profit_fraction=0.07).stage == 3
        assert pipeline.validate_pyramid_add(2, confidence=92, profit_fraction=0.08).passed is True
