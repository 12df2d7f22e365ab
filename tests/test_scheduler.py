"""Tick Scheduler Unit Tests
==========================

Async tests for TickScheduler with fake feed and validators.

Author: SURIOTA Team
"""
import asyncio
import pytest

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

from src.analysis.regime_detector import TrendRegimeDetector
from src.data.models import (
    Decision,
    IndicatorSnapshot,
    MarketSnapshot,
    PyramidValidationDecision,
    Ticker,
    ValidationDecision,
)
from src.data.validation_cache import ValidationCache
from src.trading.engine import ActionType, TradingEngine
from src.trading.entry_gates import EntryGatePipeline, ValidationBudget
from src.trading.momentum_failure import MomentumFailureDetector
from src.trading.position_ledger import PositionLedger
from src.trading.position_sizer import DynamicPositionSizer
from src.trading.scheduler import TickScheduler


def make_snapshot(instrument: str = "BTC/USD", price: float = 50000.0, **overrides) -> MarketSnapshot:
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
    return MarketSnapshot(
        instrument=instrument,
        ticker=Ticker(bid=price - 2.5, ask=price + 2.5, price=price, spread=5.0),
        indicators=IndicatorSnapshot(**values),
    )


class FakeFeed:
    """Returns queued snapshot lists, repeating the last one"""

    def __init__(self, *ticks):
        self.ticks = list(ticks)
        self.calls = 0

    async def __call__(self, instruments):
        self.calls += 1
        if len(self.ticks) > 1:
            return self.ticks.pop(0)
        return self.ticks[0]


class FakeValidator:
    def __init__(self, decision: ValidationDecision):
        self.decision = decision
        self.calls = 0

    async def __call__(self, screen):
        self.calls += 1
        return self.decision


class FakePyramidValidator:
    def __init__(self, confidence: float = 88.0):
        self.confidence = confidence
        self.calls = []

    async def __call__(self, instrument, level, position):
        self.calls.append((instrument, level))
        return PyramidValidationDecision(True, level, self.confidence)


@pytest.fixture
def engine():
    return TradingEngine(
        gates=EntryGatePipeline(budget=ValidationBudget(max_calls_per_hour=10)),
        sizer=DynamicPositionSizer(account_balance=10000, max_open_risk_pct=0.10),
        ledger=PositionLedger(),
        detector=MomentumFailureDetector(),
        regime_detector=TrendRegimeDetector(),
        cache=ValidationCache(ttl_minutes=15),
    )


class TestRunOnce:
    """Single tick behavior"""

    @pytest.mark.asyncio
    async def test_entry_then_exit(self, engine):
        """Tick 1 enters, tick 2 stops out"""
        feed = FakeFeed([make_snapshot()], [make_snapshot(price=47000.0)])
        validator = FakeValidator(ValidationDecision(Decision.ENTER, 80.0))
        scheduler = TickScheduler(engine, feed, validator, ["BTC/USD"])

        actions = await scheduler.run_once()
        assert [a.action for a in actions] == [ActionType.ENTER]
        assert validator.calls == 1
        assert engine.gates.budget.calls_used == 1

        actions = await scheduler.run_once()
        assert [a.action for a in actions] == [ActionType.EXIT]
        assert actions[0].reason == "stop_loss"
        assert scheduler.tick_count == 2
        assert engine.sizer.total_trades == 0

        await scheduler.run_once()
        assert engine.sizer.total_trades == 1

    @pytest.mark.asyncio
    async def test_cache_reused(self, engine):
        """Same fingerprint on the next tick skips the validator"""
        feed = FakeFeed([make_snapshot()])
        validator = FakeValidator(ValidationDecision(Decision.HOLD, 50.0))
        scheduler = TickScheduler(engine, feed, validator, ["BTC/USD"])

        assert await scheduler.run_once() == []
        assert await scheduler.run_once() == []
        assert validator.calls == 1
        assert engine.cache.hits == 1

    @pytest.mark.asyncio
    async def test_rejected_candidate_not_validated(self, engine):
        """Prescreen failure never reaches the validator"""
        feed = FakeFeed([make_snapshot(volume_ratio=3.5)])
        validator = FakeValidator(ValidationDecision(Decision.ENTER, 90.0))
        scheduler = TickScheduler(engine, feed, validator, ["BTC/USD"])

        assert await scheduler.run_once() == []
        assert validator.calls == 0
        assert engine.gates.budget.calls_used == 0

    @pytest.mark.asyncio
    async def test_reference_dump_blocks_alts(self, engine):
        """Reference momentum is applied before other instruments"""
        feed = FakeFeed([
            make_snapshot("ETH/USD", 3000.0, recent_high=3200.0, long_ema=2800.0),
            make_snapshot("BTC/USD", 50000.0, momentum_1h=-0.02),
        ])
        validator = FakeValidator(ValidationDecision(Decision.ENTER, 80.0))
        scheduler = TickScheduler(engine, feed, validator, ["ETH/USD", "BTC/USD"])

        await scheduler.run_once()
        assert engine.gates.reference_momentum_1h == -0.02
        assert engine.ledger.has_position("ETH/USD") is False

    @pytest.mark.asyncio
    async def test_pyramid_add(self, engine):
        """Open position at the L1 trigger is offered to the pyramid validator"""
        feed = FakeFeed([make_snapshot()], [make_snapshot(price=52500.0)])
        validator = FakeValidator(ValidationDecision(Decision.ENTER, 80.0))
        pyramid_validator = FakePyramidValidator(confidence=88.0)
        scheduler = TickScheduler(
            engine, feed, validator, ["BTC/USD"], pyramid_validator=pyramid_validator
        )

        await scheduler.run_once()
        actions = await scheduler.run_once()

        assert pyramid_validator.calls == [("BTC/USD", 1)]
        assert [a.action for a in actions] == [ActionType.PYRAMID]
        assert engine.ledger.get_position("BTC/USD").levels_activated == 1


class TestRunLoop:
    """run() / stop()"""

    @pytest.mark.asyncio
    async def test_stop(self, engine):
        """Loop exits after stop()"""
        feed = FakeFeed([make_snapshot()])
        validator = FakeValidator(ValidationDecision(Decision.HOLD, 50.0))
        scheduler = TickScheduler(engine, feed, validator, ["BTC/USD"], interval_seconds=0.01)

        task = asyncio.create_task(scheduler.run())
        while feed.calls < 3:
            await asyncio.sleep(0.01)
        assert scheduler.is_running is True

        scheduler.stop()
        await asyncio.wait_for(task, timeout=1.0)
        assert scheduler.is_running is False

    @pytest.mark.asyncio
    async def test_tick_errors_do_not_stop_loop(self, engine):
        """A failing feed is logged and the loop keeps going"""
        calls = []

        async def broken_feed(instruments):
            calls.append(1)
            raise RuntimeError("feed down")

        validator = FakeValidator(ValidationDecision(Decision.HOLD, 50.0))
        scheduler = TickScheduler(engine, broken_feed, validator, ["BTC/USD"], interval_seconds=0.01)

        task = asyncio.create_task(scheduler.run())
        while len(calls) < 3:
            await asyncio.sleep(0.01)
        scheduler.stop()
        await asyncio.wait_for(task, timeout=1.0)
        assert scheduler.tick_count >= 3

    @pytest.mark.asyncio
    async def test_cancel(self, engine):
        """Cancellation ends the loop and clears the running flag"""
        feed = FakeFeed([make_snapshot()])
        validator = FakeValidator(ValidationDecision(Decision.HOLD, 50.0))
        scheduler = TickScheduler(engine, feed, validator, ["BTC/USD"], interval_seconds=10)

        task = asyncio.create_task(scheduler.run())
        while feed.calls < 1:
            await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert scheduler.is_running is False
