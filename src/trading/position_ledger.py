"""Position Ledger - Pyramiding & Erosion Protection
===================================================

Owns the lifecycle of every open long position:
- Initial entry (L0) plus up to two pyramid adds (L1, L2)
- Volume-weighted profit across all legs on every price update
- Peak profit high-water mark and erosion (giveback from peak)
- Exit checks: stop-loss, profit target, erosion cap
- Closed-position history, performance statistics, health and activity feed

Erosion cap is a fraction of peak profit:
    exit when peak_profit > 0 and erosion_used / peak_profit > erosion_cap

Concurrency: each instrument has its own lock and every mutation of that
instrument's position runs inside it. The closed history has its own lock
(always taken after an instrument lock, never before).

Author: SURIOTA Team
"""
import threading
from collections import deque
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Deque, Dict, Iterator, List, Optional, Tuple, Union

import numpy as np
import pandas as pd

from src.data.history_store import HistoryPersistenceError, JsonHistoryStore
from src.utils.logger import get_ledger_logger, log_performance, log_trade_entry, log_trade_exit

log = get_ledger_logger()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PositionStatus(Enum):
    """Position status"""
    OPEN = "open"
    CLOSED = "closed"


class ExitReason(Enum):
    """Why a position was closed"""
    STOP_LOSS = "stop_loss"
    PROFIT_TARGET = "profit_target"
    EROSION_CAP = "erosion_cap"
    MOMENTUM_FAILURE = "momentum_failure"


class HealthStatus(Enum):
    """Erosion health of an open position"""
    HEALTHY = "HEALTHY"
    CAUTION = "CAUTION"
    RISK = "RISK"
    ALERT = "ALERT"


class ActivityAction(Enum):
    """Activity feed event type"""
    ENTRY = "ENTRY"
    PYRAMID = "PYRAMID"
    EXIT = "EXIT"
    EROSION_ALERT = "EROSION_ALERT"


@dataclass
class PyramidLevel:
    """One pyramid add (L1 or L2)"""
    level: int
    entry_price: float
    volume: float
    entry_time: datetime
    trigger_profit_pct: float    # Fraction, e.g. 0.045
    confidence: float
    status: str = "active"

    def to_dict(self) -> Dict:
        return {
            "level": self.level,
            "entry_price": self.entry_price,
            "volume": self.volume,
            "entry_time": self.entry_time.isoformat(),
            "trigger_profit_pct": self.trigger_profit_pct,
            "confidence": self.confidence,
            "status": self.status,
        }


@dataclass
class Position:
    """Open position state (L0 + pyramid levels)"""
    instrument: str
    entry_price: float
    initial_volume: float
    stop_loss: float
    profit_target: float
    entry_time: datetime = field(default_factory=_utcnow)

    # Pyramid tracking
    pyramid_levels: List[PyramidLevel] = field(default_factory=list)
    total_volume: float = 0.0
    levels_activated: int = 0

    # Profit tracking
    current_profit: float = 0.0
    profit_pct: float = 0.0          # Percent
    profit_fraction: float = 0.0     # Fraction (profit_pct / 100)
    peak_profit: float = 0.0

    # Erosion protection
    erosion_cap: float = 0.008
    erosion_used: float = 0.0

    # Entry metadata
    regime: str = "moderate"
    trend_strength: float = 0.0
    reasoning: List[str] = field(default_factory=list)

    # Lifecycle
    status: PositionStatus = PositionStatus.OPEN
    exit_price: Optional[float] = None
    exit_time: Optional[datetime] = None
    exit_reason: Optional[ExitReason] = None

    def __post_init__(self):
        if self.total_volume == 0.0:
            self.total_volume = self.initial_volume

    @property
    def is_open(self) -> bool:
        return self.status == PositionStatus.OPEN

    @property
    def has_pyramid(self) -> bool:
        return self.levels_activated > 0

    def legs(self) -> List[Tuple[float, float]]:
        """(entry_price, volume) for L0 and every pyramid level"""
        return [(self.entry_price, self.initial_volume)] + [
            (lvl.entry_price, lvl.volume) for lvl in self.pyramid_levels
        ]

    def profit_at(self, price: float) -> Tuple[float, float]:
        """Total profit and cost basis at a price across all legs"""
        total_profit = 0.0
        total_cost = 0.0
        for leg_entry, leg_volume in self.legs():
            total_profit += (price - leg_entry) * leg_volume
            total_cost += leg_entry * leg_volume
        return total_profit, total_cost

    def to_dict(self) -> Dict:
        return {
            "instrument": self.instrument,
            "entry_price": self.entry_price,
            "initial_volume": self.initial_volume,
            "total_volume": self.total_volume,
            "stop_loss": self.stop_loss,
            "profit_target": self.profit_target,
            "entry_time": self.entry_time.isoformat(),
            "levels_activated": self.levels_activated,
            "pyramid_levels": [lvl.to_dict() for lvl in self.pyramid_levels],
            "current_profit": self.current_profit,
            "profit_pct": self.profit_pct,
            "peak_profit": self.peak_profit,
            "erosion_cap": self.erosion_cap,
            "erosion_used": self.erosion_used,
            "regime": self.regime,
            "trend_strength": self.trend_strength,
            "status": self.status.value,
        }


@dataclass(frozen=True)
class ClosedLevel:
    """Immutable pyramid level snapshot"""
    level: int
    entry_price: float
    volume: float
    entry_time: datetime
    trigger_profit_pct: float
    confidence: float

    def to_dict(self) -> Dict:
        return {
            "level": self.level,
            "entry_price": self.entry_price,
            "volume": self.volume,
            "entry_time": self.entry_time.isoformat(),
            "trigger_profit_pct": self.trigger_profit_pct,
            "confidence": self.confidence,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "ClosedLevel":
        return cls(
            level=int(data["level"]),
            entry_price=float(data["entry_price"]),
            volume=float(data["volume"]),
            entry_time=datetime.fromisoformat(data["entry_time"]),
            trigger_profit_pct=float(data["trigger_profit_pct"]),
            confidence=float(data["confidence"]),
        )


@dataclass(frozen=True)
class ClosedPosition:
    """Immutable snapshot of a position at close time"""
    instrument: str
    entry_price: float
    initial_volume: float
    total_volume: float
    stop_loss: float
    profit_target: float
    entry_time: datetime
    exit_price: float
    exit_time: datetime
    exit_reason: ExitReason
    profit: float                # Realized, all legs
    profit_pct: float            # Percent of cost basis
    peak_profit: float
    erosion_cap: float
    erosion_used: float
    regime: str
    trend_strength: float
    levels: Tuple[ClosedLevel, ...] = ()
    reasoning: Tuple[str, ...] = ()

    @property
    def is_win(self) -> bool:
        return self.profit > 0

    @property
    def hold_time_minutes(self) -> float:
        return (self.exit_time - self.entry_time).total_seconds() / 60

    @classmethod
    def from_position(cls, position: Position) -> "ClosedPosition":
        return cls(
            instrument=position.instrument,
            entry_price=position.entry_price,
            initial_volume=position.initial_volume,
            total_volume=position.total_volume,
            stop_loss=position.stop_loss,
            profit_target=position.profit_target,
            entry_time=position.entry_time,
            exit_price=position.exit_price,
            exit_time=position.exit_time,
            exit_reason=position.exit_reason,
            profit=position.current_profit,
            profit_pct=position.profit_pct,
            peak_profit=position.peak_profit,
            erosion_cap=position.erosion_cap,
            erosion_used=position.erosion_used,
            regime=position.regime,
            trend_strength=position.trend_strength,
            levels=tuple(
                ClosedLevel(
                    level=lvl.level,
                    entry_price=lvl.entry_price,
                    volume=lvl.volume,
                    entry_time=lvl.entry_time,
                    trigger_profit_pct=lvl.trigger_profit_pct,
                    confidence=lvl.confidence,
                )
                for lvl in position.pyramid_levels
            ),
            reasoning=tuple(position.reasoning),
        )

    def to_dict(self) -> Dict:
        return {
            "instrument": self.instrument,
            "entry_price": self.entry_price,
            "initial_volume": self.initial_volume,
            "total_volume": self.total_volume,
            "stop_loss": self.stop_loss,
            "profit_target": self.profit_target,
            "entry_time": self.entry_time.isoformat(),
            "exit_price": self.exit_price,
            "exit_time": self.exit_time.isoformat(),
            "exit_reason": self.exit_reason.value,
            "profit": self.profit,
            "profit_pct": self.profit_pct,
            "peak_profit": self.peak_profit,
            "erosion_cap": self.erosion_cap,
            "erosion_used": self.erosion_used,
            "regime": self.regime,
            "trend_strength": self.trend_strength,
            "levels": [lvl.to_dict() for lvl in self.levels],
            "reasoning": list(self.reasoning),
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "ClosedPosition":
        return cls(
            instrument=data["instrument"],
            entry_price=float(data["entry_price"]),
            initial_volume=float(data["initial_volume"]),
            total_volume=float(data["total_volume"]),
            stop_loss=float(data["stop_loss"]),
            profit_target=float(data["profit_target"]),
            entry_time=datetime.fromisoformat(data["entry_time"]),
            exit_price=float(data["exit_price"]),
            exit_time=datetime.fromisoformat(data["exit_time"]),
            exit_reason=ExitReason(data["exit_reason"]),
            profit=float(data["profit"]),
            profit_pct=float(data["profit_pct"]),
            peak_profit=float(data.get("peak_profit", 0.0)),
            erosion_cap=float(data.get("erosion_cap", 0.0)),
            erosion_used=float(data.get("erosion_used", 0.0)),
            regime=data.get("regime", "moderate"),
            trend_strength=float(data.get("trend_strength", 0.0)),
            levels=tuple(ClosedLevel.from_dict(lvl) for lvl in data.get("levels", [])),
            reasoning=tuple(data.get("reasoning", [])),
        )


@dataclass
class PerformanceStats:
    """Aggregate statistics over closed positions"""
    total_trades: int = 0
    winning_trades: int = 0
    losing_trades: int = 0
    win_rate: float = 0.0        # Percent
    total_profit: float = 0.0    # Gross profit
    total_loss: float = 0.0      # Gross loss (positive)
    expectancy: float = 0.0
    profit_factor: float = 0.0
    max_drawdown: float = 0.0
    max_drawdown_pct: float = 0.0

    def to_dict(self) -> Dict:
        return {
            "total_trades": self.total_trades,
            "winning_trades": self.winning_trades,
            "losing_trades": self.losing_trades,
            "win_rate": self.win_rate,
            "total_profit": self.total_profit,
            "total_loss": self.total_loss,
            "expectancy": self.expectancy,
            "profit_factor": self.profit_factor,
            "max_drawdown": self.max_drawdown,
            "max_drawdown_pct": self.max_drawdown_pct,
        }


@dataclass(frozen=True)
class PositionHealth:
    """Erosion health snapshot for monitoring"""
    instrument: str
    entry_price: float
    current_profit: float
    profit_pct: float
    peak_profit: float
    erosion_used: float
    erosion_cap: float
    erosion_pct: float           # Erosion as percent of peak
    hold_time_minutes: int
    health_status: HealthStatus
    alert_message: Optional[str] = None

    def to_dict(self) -> Dict:
        return {
            "instrument": self.instrument,
            "entry_price": self.entry_price,
            "current_profit": self.current_profit,
            "profit_pct": self.profit_pct,
            "peak_profit": self.peak_profit,
            "erosion_used": self.erosion_used,
            "erosion_cap": self.erosion_cap,
            "erosion_pct": self.erosion_pct,
            "hold_time_minutes": self.hold_time_minutes,
            "health_status": self.health_status.value,
            "alert_message": self.alert_message,
        }


@dataclass(frozen=True)
class ActivityFeedEntry:
    """One event in the activity feed"""
    timestamp: datetime
    instrument: str
    action: ActivityAction
    details: Dict = field(default_factory=dict)

    def to_dict(self) -> Dict:
        return {
            "timestamp": self.timestamp.isoformat(),
            "instrument": self.instrument,
            "action": self.action.value,
            "details": dict(self.details),
        }


def health_status_for(erosion_pct: float, cap_pct: float) -> HealthStatus:
    """Map erosion (percent of peak) relative to the cap onto a status"""
    ratio = erosion_pct / cap_pct if cap_pct > 0 else 0.0
    if ratio < 0.5:
        return HealthStatus.HEALTHY
    if ratio < 0.8:
        return HealthStatus.CAUTION
    if ratio < 1.0:
        return HealthStatus.RISK
    return HealthStatus.ALERT


class PositionLedger:
    """Open positions, pyramid levels, erosion and closed history"""

    def __init__(
        self,
        store: Optional[JsonHistoryStore] = None,
        l1_trigger_pct: float = 0.045,
        l2_trigger_pct: float = 0.08,
        max_pyramid_levels: int = 2,
        activity_feed_size: int = 100
    ):
        """Initialize ledger

        Args:
            store: Closed-history persistence (None = memory only)
            l1_trigger_pct: Profit fraction for the L1 add
            l2_trigger_pct: Profit fraction for the L2 add
            max_pyramid_levels: Maximum pyramid adds per position
            activity_feed_size: Activity entries kept
        """
        self.store = store
        self.l1_trigger_pct = l1_trigger_pct
        self.l2_trigger_pct = l2_trigger_pct
        self.max_pyramid_levels = max_pyramid_levels

        self._positions: Dict[str, Position] = {}
        self._locks: Dict[str, threading.RLock] = {}
        self._registry_lock = threading.Lock()

        self._closed: List[ClosedPosition] = []
        self._history_lock = threading.Lock()

        self._activity: Deque[ActivityFeedEntry] = deque(maxlen=activity_feed_size)
        self._activity_lock = threading.Lock()

        self.persistence_failures = 0

        self._load_history()

    # =========================================================================
    # INTERNALS
    # =========================================================================

    def _lock_for(self, instrument: str) -> threading.RLock:
        """Lock for an instrument, created on first use (entries only)"""
        with self._registry_lock:
            lock = self._locks.get(instrument)
            if lock is None:
                lock = threading.RLock()
                self._locks[instrument] = lock
            return lock

    @contextmanager
    def _locked(self, instrument: str) -> Iterator[Optional[Position]]:
        """Hold the instrument lock and yield its open position

        Instruments never opened have no lock and yield None without
        registering one.
        """
        with self._registry_lock:
            lock = self._locks.get(instrument)
        if lock is None:
            yield None
            return
        with lock:
            yield self._positions.get(instrument)

    def _record_activity(self, instrument: str, action: ActivityAction, details: Dict):
        with self._activity_lock:
            self._activity.append(ActivityFeedEntry(_utcnow(), instrument, action, details))

    def _load_history(self):
        if self.store is None:
            return
        try:
            records = self.store.load()
        except HistoryPersistenceError as e:
            log.error(f"Failed to load position history, starting empty: {e}")
            return

        closed = []
        skipped = 0
        for index, record in enumerate(records):
            try:
                closed.append(ClosedPosition.from_dict(record))
            except (AttributeError, KeyError, TypeError, ValueError) as e:
                skipped += 1
                log.error(f"Skipping unreadable history record #{index}: {e!r}")

        if skipped:
            try:
                self.store.quarantine(keep_original=True)
            except HistoryPersistenceError as e:
                log.error(f"Failed to back up position history: {e}")
            log.warning(f"Loaded {len(closed)} closed positions, skipped {skipped}")

        with self._history_lock:
            self._closed = closed

    def _persist_history(self):
        """Write the full history (caller holds the history lock)"""
        if self.store is None:
            return
        try:
            self.store.save([c.to_dict() for c in self._closed])
        except HistoryPersistenceError as e:
            self.persistence_failures += 1
            log.error(f"Failed to persist position history ({self.persistence_failures} failures): {e}")

    def _trigger_for(self, level: int) -> float:
        return self.l1_trigger_pct if level == 1 else self.l2_trigger_pct

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def add_position(
        self,
        instrument: str,
        entry_price: float,
        volume: float,
        stop_loss: float,
        profit_target: float,
        regime: str = "moderate",
        trend_strength: float = 0.0,
        erosion_cap: float = 0.008,
        reasoning: Optional[List[str]] = None
    ) -> Optional[Position]:
        """Open a new position

        Returns:
            Position, or None when one is already open for the instrument
        """
        if entry_price <= 0 or volume <= 0:
            log.warning(
                f"Invalid entry for {instrument}: price={entry_price}, volume={volume}, ignoring"
            )
            return None

        with self._lock_for(instrument):
            if instrument in self._positions:
                log.warning(f"Position already exists for {instrument}, ignoring new entry")
                return None

            position = Position(
                instrument=instrument,
                entry_price=entry_price,
                initial_volume=volume,
                stop_loss=stop_loss,
                profit_target=profit_target,
                erosion_cap=erosion_cap,
                regime=regime,
                trend_strength=trend_strength,
                reasoning=list(reasoning or []),
            )
            with self._registry_lock:
                self._positions[instrument] = position

        details = {
            "entry_price": entry_price,
            "volume": volume,
            "stop_loss": stop_loss,
            "profit_target": profit_target,
            "adx": round(trend_strength, 1),
            "regime": regime,
        }
        log_trade_entry(instrument, "OPEN", details)
        self._record_activity(instrument, ActivityAction.ENTRY, details)
        return position

    def update_position(self, instrument: str, current_price: float) -> Optional[Position]:
        """Recompute profit, peak and erosion at the current price"""
        with self._locked(instrument) as position:
            if position is None:
                return None

            total_profit, total_cost = position.profit_at(current_price)
            position.current_profit = total_profit
            position.profit_fraction = total_profit / total_cost if total_cost > 0 else 0.0
            position.profit_pct = position.profit_fraction * 100

            if position.current_profit > position.peak_profit:
                position.peak_profit = position.current_profit
                position.erosion_used = 0.0
            else:
                position.erosion_used = position.peak_profit - position.current_profit

            return position

    def add_pyramid_level(
        self,
        instrument: str,
        level: int,
        entry_price: float,
        volume: float,
        confidence: float
    ) -> bool:
        """Add pyramid level L1 or L2

        Returns:
            True if added, False on any invalid transition
        """
        with self._locked(instrument) as position:
            if position is None:
                log.warning(f"No open position for {instrument}, cannot add L{level}")
                return False

            if position.levels_activated >= self.max_pyramid_levels:
                log.warning(f"{instrument} already has max pyramid levels ({self.max_pyramid_levels})")
                return False

            if any(lvl.level == level for lvl in position.pyramid_levels):
                log.warning(f"{instrument} L{level} already exists")
                return False

            if level != position.levels_activated + 1:
                log.warning(
                    f"{instrument} L{level} out of order ({position.levels_activated} levels active)"
                )
                return False

            if entry_price <= 0 or volume <= 0:
                log.warning(f"{instrument} L{level} invalid add: price={entry_price}, volume={volume}")
                return False

            position.pyramid_levels.append(PyramidLevel(
                level=level,
                entry_price=entry_price,
                volume=volume,
                entry_time=_utcnow(),
                trigger_profit_pct=self._trigger_for(level),
                confidence=confidence,
            ))
            position.total_volume += volume
            position.levels_activated += 1

        log.info(
            f"[PYRAMID] {instrument} L{level} added at {entry_price:.2f} "
            f"({volume * entry_price:.2f} notional, confidence {confidence:.0f}%)"
        )
        self._record_activity(instrument, ActivityAction.PYRAMID, {
            "level": level,
            "entry_price": entry_price,
            "volume": volume,
            "confidence": confidence,
        })
        return True

    def close_position(
        self,
        instrument: str,
        exit_price: float,
        reason: ExitReason
    ) -> Optional[ClosedPosition]:
        """Close position and move it to history

        P&L is recomputed at the exit price across every leg.
        """
        with self._locked(instrument) as position:
            if position is None:
                return None

            total_profit, total_cost = position.profit_at(exit_price)
            position.current_profit = total_profit
            position.profit_fraction = total_profit / total_cost if total_cost > 0 else 0.0
            position.profit_pct = position.profit_fraction * 100

            position.exit_price = exit_price
            position.exit_time = _utcnow()
            position.exit_reason = reason
            position.status = PositionStatus.CLOSED

            closed = ClosedPosition.from_position(position)
            with self._registry_lock:
                del self._positions[instrument]

            with self._history_lock:
                self._closed.append(closed)
                self._persist_history()

        log_trade_exit(instrument, closed.profit_pct, reason.value)
        self._record_activity(instrument, ActivityAction.EXIT, {
            "exit_price": exit_price,
            "profit": closed.profit,
            "profit_pct": closed.profit_pct,
            "reason": reason.value,
            "levels": len(closed.levels),
        })
        return closed

    def clear_all(self):
        """Drop every open position (history is kept)"""
        with self._registry_lock:
            instruments = list(self._positions)
        for instrument in instruments:
            with self._lock_for(instrument), self._registry_lock:
                self._positions.pop(instrument, None)
        log.warning("All open positions cleared")

    # =========================================================================
    # EXIT / PYRAMID CHECKS
    # =========================================================================

    def check_erosion_cap(self, instrument: str) -> bool:
        """True if giveback from peak exceeds the erosion cap"""
        with self._locked(instrument) as position:
            if position is None or position.peak_profit <= 0:
                return False

            erosion_fraction = position.erosion_used / position.peak_profit
            if erosion_fraction <= position.erosion_cap:
                return False

            peak = position.peak_profit
            erosion = position.erosion_used
            cap = position.erosion_cap

        log.warning(
            f"[EROSION EXIT] {instrument} erosion ({erosion_fraction:.2%}) exceeded cap ({cap:.2%}) "
            f"peak={peak:.2f}, erosion={erosion:.2f}"
        )
        self._record_activity(instrument, ActivityAction.EROSION_ALERT, {
            "erosion_pct": erosion_fraction * 100,
            "cap_pct": cap * 100,
            "peak_profit": peak,
            "erosion_used": erosion,
        })
        return True

    def check_stop_loss(self, instrument: str, current_price: float) -> bool:
        """True if price at or below stop"""
        with self._locked(instrument) as position:
            return position is not None and current_price <= position.stop_loss

    def check_profit_target(self, instrument: str, current_price: float) -> bool:
        """True if price at or above target"""
        with self._locked(instrument) as position:
            return position is not None and current_price >= position.profit_target

    def is_ready_for_l1(
        self,
        instrument: str,
        profit_fraction: float,
        trigger: Optional[float] = None
    ) -> bool:
        """No levels yet and profit at the L1 trigger"""
        trigger = self.l1_trigger_pct if trigger is None else trigger
        with self._locked(instrument) as position:
            if position is None or position.levels_activated >= 1:
                return False
            return profit_fraction >= trigger

    def is_ready_for_l2(
        self,
        instrument: str,
        profit_fraction: float,
        trigger: Optional[float] = None
    ) -> bool:
        """Exactly L1 active and profit at the L2 trigger"""
        trigger = self.l2_trigger_pct if trigger is None else trigger
        with self._locked(instrument) as position:
            if position is None or position.levels_activated != 1:
                return False
            return profit_fraction >= trigger

    # =========================================================================
    # QUERIES
    # =========================================================================

    def get_position(self, instrument: str) -> Optional[Position]:
        """Open position for an instrument (None if flat)"""
        with self._locked(instrument) as position:
            return position

    def has_position(self, instrument: str) -> bool:
        return self.get_position(instrument) is not None

    def get_open_positions(self) -> List[Position]:
        with self._registry_lock:
            positions = list(self._positions.values())
        return [p for p in positions if p.is_open]

    def get_closed_positions(self) -> List[ClosedPosition]:
        with self._history_lock:
            return list(self._closed)

    def get_performance_stats(self) -> PerformanceStats:
        """Aggregate statistics over closed positions

        Break-even trades count as losses. Drawdown is measured on the
        cumulative realized P&L curve starting from zero.
        """
        closed = self.get_closed_positions()
        if not closed:
            return PerformanceStats()

        profits = np.array([c.profit for c in closed], dtype=float)
        wins = profits[profits > 0]
        losses = profits[profits <= 0]

        total_trades = len(profits)
        total_profit = float(wins.sum())
        total_loss = float(np.abs(losses).sum())

        cumulative = np.cumsum(profits)
        peaks = np.maximum.accumulate(np.maximum(cumulative, 0.0))
        drawdowns = peaks - cumulative
        max_drawdown = float(drawdowns.max())
        final_peak = float(peaks[-1])

        if total_loss > 0:
            profit_factor = total_profit / total_loss
        elif total_profit > 0:
            profit_factor = float("inf")
        else:
            profit_factor = 0.0

        return PerformanceStats(
            total_trades=total_trades,
            winning_trades=len(wins),
            losing_trades=len(losses),
            win_rate=len(wins) / total_trades * 100,
            total_profit=total_profit,
            total_loss=total_loss,
            expectancy=(total_profit - total_loss) / total_trades,
            profit_factor=profit_factor,
            max_drawdown=max_drawdown,
            max_drawdown_pct=max_drawdown / final_peak * 100 if final_peak > 0 else 0.0,
        )

    def log_performance(self):
        """Log a performance snapshot"""
        stats = self.get_performance_stats()
        log_performance({
            "total_trades": stats.total_trades,
            "win_rate": f"{stats.win_rate:.1f}%",
            "expectancy": f"{stats.expectancy:.2f}",
            "profit_factor": f"{stats.profit_factor:.2f}",
            "max_drawdown": f"{stats.max_drawdown:.2f} ({stats.max_drawdown_pct:.1f}%)",
        })

    def get_position_health(self, instrument: Optional[str] = None) -> List[PositionHealth]:
        """Erosion health for open positions (optionally one instrument)"""
        if instrument is not None:
            position = self.get_position(instrument)
            positions = [position] if position is not None else []
        else:
            positions = self.get_open_positions()

        now = _utcnow()
        report = []
        for position in positions:
            with self._lock_for(position.instrument):
                if position.peak_profit > 0:
                    erosion_pct = position.erosion_used / position.peak_profit * 100
                else:
                    erosion_pct = 0.0
                cap_pct = position.erosion_cap * 100
                status = health_status_for(erosion_pct, cap_pct)

                alert = None
                if status == HealthStatus.ALERT:
                    alert = f"Erosion {erosion_pct:.2f}% exceeds cap {cap_pct:.2f}%"
                elif status == HealthStatus.RISK:
                    alert = f"Erosion {erosion_pct:.2f}% approaching cap {cap_pct:.2f}%"

                report.append(PositionHealth(
                    instrument=position.instrument,
                    entry_price=position.entry_price,
                    current_profit=position.current_profit,
                    profit_pct=position.profit_pct,
                    peak_profit=position.peak_profit,
                    erosion_used=position.erosion_used,
                    erosion_cap=position.erosion_cap,
                    erosion_pct=erosion_pct,
                    hold_time_minutes=int((now - position.entry_time).total_seconds() // 60),
                    health_status=status,
                    alert_message=alert,
                ))
        return report

    def get_activity_feed(self, limit: int = 20) -> List[ActivityFeedEntry]:
        """Most recent activity first"""
        with self._activity_lock:
            entries = list(self._activity)
        entries.reverse()
        return entries[:limit]

    # =========================================================================
    # EXPORT
    # =========================================================================

    def history_frame(self) -> pd.DataFrame:
        """Closed history as a DataFrame (one row per trade)"""
        columns = [
            "instrument", "entry_time", "exit_time", "entry_price", "exit_price",
            "total_volume", "levels", "profit", "profit_pct", "exit_reason",
        ]
        rows = [
            {
                "instrument": c.instrument,
                "entry_time": c.entry_time.isoformat(),
                "exit_time": c.exit_time.isoformat(),
                "entry_price": c.entry_price,
                "exit_price": c.exit_price,
                "total_volume": c.total_volume,
                "levels": len(c.levels),
                "profit": c.profit,
                "profit_pct": c.profit_pct,
                "exit_reason": c.exit_reason.value,
            }
            for c in self.get_closed_positions()
        ]
        return pd.DataFrame(rows, columns=columns)

    def export_to_csv(self, path: Union[str, Path]) -> Path:
        """Write closed history to CSV"""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        df = self.history_frame()
        df.to_csv(path, index=False, float_format="%.8f")
        log.info(f"Exported {len(df)} trades to {path}")
        return path
