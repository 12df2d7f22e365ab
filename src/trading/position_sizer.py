"""Dynamic Position Sizer
========================

Sizes new positions from:
- Kelly criterion on closed-trade history (dampened to 1/4 Kelly)
- Validation confidence (50% -> 0.5x, 95% -> 2.0x)
- Account balance (stake grows with the account)
- Concurrent exposure guard (max 5% of balance at risk)

Sizing rule:
    risk_fraction = clamp(kelly * confidence_multiplier, min_risk, max_risk)
    stake         = balance * risk_fraction / stop_loss_pct

Author: SURIOTA Team
"""
from dataclasses import dataclass
from typing import Dict, List

from src.trading.position_ledger import PerformanceStats, Position
from src.utils.logger import get_sizer_logger

log = get_sizer_logger()

DEFAULT_AVG_WIN = 0.025
DEFAULT_AVG_LOSS = 0.015
NO_HISTORY_KELLY = 0.05
KELLY_FLOOR = 0.01
KELLY_CEILING = 0.10


@dataclass(frozen=True)
class PositionSize:
    """Sizing result"""
    stake_currency: float        # Notional to invest
    stake_asset: float           # Units of the instrument
    risk_currency: float         # Amount lost if the stop is hit
    risk_fraction: float         # Fraction of balance at risk

    def to_dict(self) -> Dict:
        return {
            "stake_currency": self.stake_currency,
            "stake_asset": self.stake_asset,
            "risk_currency": self.risk_currency,
            "risk_fraction": self.risk_fraction,
        }


class DynamicPositionSizer:
    """Kelly + confidence based position sizing"""

    def __init__(
        self,
        account_balance: float,
        min_risk_per_trade: float = 0.01,
        max_risk_per_trade: float = 0.10,
        kelly_fraction: float = 0.25,
        min_confidence: float = 50.0,
        max_confidence: float = 95.0,
        max_open_risk_pct: float = 0.05,
        risk_per_trade_pct: float = 0.05
    ):
        """Initialize sizer

        Args:
            account_balance: Starting balance
            min_risk_per_trade: Never risk less than this fraction
            max_risk_per_trade: Never risk more than this fraction
            kelly_fraction: Kelly dampening factor (0.25 = quarter Kelly)
            min_confidence: Confidence mapped to the 0.5x multiplier
            max_confidence: Confidence mapped to the 2.0x multiplier
            max_open_risk_pct: Max fraction of balance at risk across open positions
            risk_per_trade_pct: Risk used by the fixed-fraction fallback
        """
        self.account_balance = account_balance
        self.min_risk_per_trade = min_risk_per_trade
        self.max_risk_per_trade = max_risk_per_trade
        self.kelly_fraction = kelly_fraction
        self.min_confidence = min_confidence
        self.max_confidence = max_confidence
        self.max_open_risk_pct = max_open_risk_pct
        self.risk_per_trade_pct = risk_per_trade_pct

        self.total_trades = 0
        self.total_wins = 0
        self.total_losses = 0
        self.avg_win_pct = DEFAULT_AVG_WIN
        self.avg_loss_pct = DEFAULT_AVG_LOSS

        log.info(
            f"DynamicPositionSizer initialized: balance={account_balance:.2f}, "
            f"risk=[{min_risk_per_trade:.2%}, {max_risk_per_trade:.2%}], "
            f"kelly_fraction={kelly_fraction}"
        )

    # =========================================================================
    # STATE
    # =========================================================================

    def update_balance(self, new_balance: float):
        """Sync account balance"""
        if new_balance != self.account_balance:
            log.info(f"Account balance updated: {self.account_balance:.2f} -> {new_balance:.2f}")
            self.account_balance = new_balance

    def update_performance(self, stats: PerformanceStats):
        """Refresh history from ledger statistics"""
        self.total_trades = stats.total_trades
        self.total_wins = stats.winning_trades
        self.total_losses = stats.losing_trades

        if self.total_trades == 0 or self.account_balance <= 0:
            return

        if self.total_wins > 0:
            self.avg_win_pct = stats.total_profit / (self.total_wins * self.account_balance)
        else:
            self.avg_win_pct = DEFAULT_AVG_WIN

        if self.total_losses > 0:
            self.avg_loss_pct = stats.total_loss / (self.total_losses * self.account_balance)
        else:
            self.avg_loss_pct = DEFAULT_AVG_LOSS

        log.debug(
            f"Sizer updated: trades={self.total_trades}, win_rate={self.win_rate:.1%}, "
            f"avg_win={self.avg_win_pct:.2%}, avg_loss={self.avg_loss_pct:.2%}"
        )

    @property
    def win_rate(self) -> float:
        """Historical win rate (0.5 with no history)"""
        if self.total_trades == 0:
            return 0.5
        return self.total_wins / self.total_trades

    # =========================================================================
    # SIZING
    # =========================================================================

    def kelly_risk(self) -> float:
        """Dampened Kelly fraction

        Kelly = (p * avg_win - (1 - p) * avg_loss) / avg_win
        """
        if self.total_trades == 0:
            return NO_HISTORY_KELLY

        p = self.win_rate
        if self.avg_win_pct <= 0:
            raw_kelly = 0.0
        else:
            raw_kelly = (p * self.avg_win_pct - (1 - p) * self.avg_loss_pct) / self.avg_win_pct

        safe_fraction = max(KELLY_FLOOR, min(KELLY_CEILING, raw_kelly))
        return safe_fraction * self.kelly_fraction

    def confidence_multiplier(self, confidence: float) -> float:
        """Map confidence onto [0.5, 2.0]"""
        span = self.max_confidence - self.min_confidence
        if span <= 0:
            return 1.0
        clamped = max(self.min_confidence, min(self.max_confidence, confidence))
        normalized = (clamped - self.min_confidence) / span
        return 0.5 + normalized * 1.5

    def risk_per_trade(self, confidence: float) -> float:
        """Final risk fraction for a trade"""
        kelly = self.kelly_risk()
        multiplier = self.confidence_multiplier(confidence)
        risk = kelly * multiplier
        risk = max(self.min_risk_per_trade, min(self.max_risk_per_trade, risk))

        log.debug(
            f"Risk calc: confidence={confidence:.0f}, kelly={kelly:.2%}, "
            f"multiplier={multiplier:.2f}x, final={risk:.2%}"
        )
        return risk

    def _build_size(self, risk_fraction: float, price: float, stop_loss_pct: float) -> PositionSize:
        if price <= 0:
            raise ValueError(f"price must be positive, got {price}")
        if stop_loss_pct <= 0:
            raise ValueError(f"stop_loss_pct must be positive, got {stop_loss_pct}")

        risk_currency = self.account_balance * risk_fraction
        stake_currency = risk_currency / stop_loss_pct
        return PositionSize(
            stake_currency=stake_currency,
            stake_asset=stake_currency / price,
            risk_currency=risk_currency,
            risk_fraction=risk_fraction,
        )

    def size(self, confidence: float, price: float, stop_loss_pct: float) -> PositionSize:
        """Calculate position size

        Args:
            confidence: Validation confidence (0-100)
            price: Entry price
            stop_loss_pct: Stop distance as fraction of entry

        Returns:
            PositionSize

        Raises:
            ValueError: price or stop_loss_pct not positive
        """
        result = self._build_size(self.risk_per_trade(confidence), price, stop_loss_pct)
        log.debug(
            f"Position size: balance={self.account_balance:.2f}, risk={result.risk_currency:.2f}, "
            f"stake={result.stake_currency:.2f}, units={result.stake_asset:.8f}"
        )
        return result

    def fixed_size(self, price: float, stop_loss_pct: float) -> PositionSize:
        """Fixed-fraction sizing (dynamic sizing disabled)"""
        return self._build_size(self.risk_per_trade_pct, price, stop_loss_pct)

    def can_add_position(self, open_positions: List[Position], new_risk_currency: float) -> bool:
        """Check concurrent risk across open positions stays within limit"""
        current_risk = sum(
            abs(pos.entry_price - pos.stop_loss) * pos.total_volume
            for pos in open_positions
        )
        total_risk = current_risk + new_risk_currency
        max_risk = self.account_balance * self.max_open_risk_pct

        if total_risk > max_risk:
            log.warning(
                f"Max concurrent risk exceeded: current={current_risk:.2f}, "
                f"new={new_risk_currency:.2f}, total={total_risk:.2f}, max={max_risk:.2f}"
            )
            return False
        return True

    def get_summary(self) -> Dict:
        """Sizer status"""
        return {
            "balance": self.account_balance,
            "win_rate": self.win_rate,
            "total_trades": self.total_trades,
            "avg_win_pct": self.avg_win_pct,
            "avg_loss_pct": self.avg_loss_pct,
            "kelly_fraction": self.kelly_risk(),
        }
