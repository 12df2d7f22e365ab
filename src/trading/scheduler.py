"""Tick Scheduler - Async Run Loop
=================================

Drives the TradingEngine once per interval:
1. Fetch market snapshots from the injected feed
2. Refresh sizer statistics and reference momentum
3. For each instrument (sequentially):
   - open position: monitor exits, then look for a pyramid add
   - flat: prescreen, validate (cache first), finalize entry

The feed and validators are async callables supplied by the caller. The
engine steps between awaits are synchronous and run to completion, so
cancellation only lands between collaborator calls or between ticks.

Author: SURIOTA Team
"""
import asyncio
from typing import Awaitable, Callable, List, Optional

from src.data.models import MarketSnapshot, PyramidValidationDecision, ValidationDecision
from src.trading.engine import EngineAction, EntryScreen, TradingEngine
from src.trading.position_ledger import Position
from src.utils.logger import get_engine_logger

log = get_engine_logger()

MarketFeed = Callable[[List[str]], Awaitable[List[MarketSnapshot]]]
EntryValidator = Callable[[EntryScreen], Awaitable[ValidationDecision]]
PyramidValidator = Callable[[str, int, Position], Awaitable[PyramidValidationDecision]]


class TickScheduler:
    """Interval loop around the TradingEngine"""

    def __init__(
        self,
        engine: TradingEngine,
        feed: MarketFeed,
        validator: EntryValidator,
        instruments: List[str],
        pyramid_validator: Optional[PyramidValidator] = None,
        interval_seconds: float = 60.0
    ):
        self.engine = engine
        self.feed = feed
        self.validator = validator
        self.pyramid_validator = pyramid_validator
        self.instruments = list(instruments)
        self.interval_seconds = interval_seconds

        self._running = False
        self.tick_count = 0

    @property
    def is_running(self) -> bool:
        return self._running

    async def _process_open(self, snapshot: MarketSnapshot) -> List[EngineAction]:
        instrument = snapshot.instrument
        action = self.engine.monitor_position(instrument, snapshot.price, snapshot.indicators)
        if action is not None:
            return [action]

        level = self.engine.pyramid_candidate(instrument)
        if level is None or self.pyramid_validator is None:
            return []

        position = self.engine.ledger.get_position(instrument)
        if position is None:
            return []

        decision = await self.pyramid_validator(instrument, level, position)
        action = self.engine.apply_pyramid_decision(instrument, level, snapshot.price, decision)
        return [action] if action is not None else []

    async def _process_flat(self, snapshot: MarketSnapshot) -> List[EngineAction]:
        screen = self.engine.prepare_entry(snapshot.instrument, snapshot.ticker, snapshot.indicators)
        if screen is None or not screen.passed:
            return []

        decision = self.engine.cached_validation(screen)
        if decision is None:
            decision = await self.validator(screen)
            self.engine.record_validation(screen, decision)

        action = self.engine.finalize_entry(screen, decision)
        return [action] if action is not None else []

    async def run_once(self) -> List[EngineAction]:
        """Evaluate one tick across every instrument"""
        self.tick_count += 1
        snapshots = await self.feed(self.instruments)
        self.engine.refresh_performance()

        for snapshot in snapshots:
            if snapshot.instrument == self.engine.reference_instrument:
                self.engine.update_reference(snapshot.indicators)

        actions: List[EngineAction] = []
        for snapshot in snapshots:
            if self.engine.ledger.has_position(snapshot.instrument):
                actions.extend(await self._process_open(snapshot))
            else:
                actions.extend(await self._process_flat(snapshot))

        for action in actions:
            log.info(f"[Tick {self.tick_count}] {action}")
        return actions

    async def run(self):
        """Loop until stop() is called or the task is cancelled"""
        self._running = True
        log.info(f"Scheduler started: {len(self.instruments)} instruments, every {self.interval_seconds}s")

        try:
            while self._running:
                try:
                    await self.run_once()
                except Exception as e:
                    log.error(f"Error in tick {self.tick_count}: {e}")

                if self._running:
                    await asyncio.sleep(self.interval_seconds)
        finally:
            self._running = False
            log.info("Scheduler stopped")

    def stop(self):
        self._running = False
