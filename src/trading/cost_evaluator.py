"""Cost / Edge Evaluator
=======================

Estimates round-trip trading costs for a long entry and checks whether
the profit target is worth taking:
- Round-trip exchange fee (2x per-side fee)
- Spread estimate (tighter for major pairs)
- Slippage estimate

All values are fractions of notional (0.002 = 0.2%).

Author: SURIOTA Team
"""
from dataclasses import dataclass
from typing import Dict

# Spread estimates
MAJOR_PAIRS = ("BTC/USD", "ETH/USD")
MAJOR_PAIR_SPREAD = 0.0003
DEFAULT_SPREAD = 0.0005


@dataclass(frozen=True)
class CostAnalysis:
    """Cost breakdown for one candidate trade"""
    fee_pct: float
    spread_pct: float
    slippage_pct: float
    total_costs_pct: float
    profit_target_pct: float
    net_edge_pct: float
    cost_floor_pct: float
    passes_cost_floor: bool
    risk_reward_ratio: float
    passes_risk_reward_ratio: bool

    @property
    def has_edge(self) -> bool:
        return self.net_edge_pct > 0

    def to_dict(self) -> Dict:
        return {
            "fee_pct": self.fee_pct,
            "spread_pct": self.spread_pct,
            "slippage_pct": self.slippage_pct,
            "total_costs_pct": self.total_costs_pct,
            "profit_target_pct": self.profit_target_pct,
            "net_edge_pct": self.net_edge_pct,
            "cost_floor_pct": self.cost_floor_pct,
            "passes_cost_floor": self.passes_cost_floor,
            "risk_reward_ratio": self.risk_reward_ratio,
            "passes_risk_reward_ratio": self.passes_risk_reward_ratio,
        }


def estimate_spread(instrument: str) -> float:
    """Spread estimate for an instrument"""
    if instrument in MAJOR_PAIRS:
        return MAJOR_PAIR_SPREAD
    return DEFAULT_SPREAD


def calculate_costs(
    instrument: str,
    profit_target_pct: float,
    stop_loss_pct: float,
    fee_rate: float = 0.002,
    slippage_pct: float = 0.0001,
    min_profit_multiplier: float = 3.0,
    min_risk_reward_ratio: float = 2.0
) -> CostAnalysis:
    """Calculate trading costs and edge for a candidate trade

    Args:
        instrument: Trading pair (e.g. "BTC/USD")
        profit_target_pct: Profit target as fraction of entry
        stop_loss_pct: Stop distance as fraction of entry
        fee_rate: Exchange fee per side
        slippage_pct: Expected slippage
        min_profit_multiplier: Target must be at least this many times total costs
        min_risk_reward_ratio: Minimum target / stop ratio

    Returns:
        CostAnalysis
    """
    fee_pct = fee_rate * 2
    spread_pct = estimate_spread(instrument)
    total_costs_pct = fee_pct + spread_pct + slippage_pct

    cost_floor_pct = total_costs_pct * min_profit_multiplier
    passes_cost_floor = profit_target_pct >= cost_floor_pct

    if stop_loss_pct > 0:
        risk_reward_ratio = profit_target_pct / stop_loss_pct
    else:
        risk_reward_ratio = 0.0
    passes_risk_reward_ratio = risk_reward_ratio >= min_risk_reward_ratio

    return CostAnalysis(
        fee_pct=fee_pct,
        spread_pct=spread_pct,
        slippage_pct=slippage_pct,
        total_costs_pct=total_costs_pct,
        profit_target_pct=profit_target_pct,
        net_edge_pct=profit_target_pct - total_costs_pct,
        cost_floor_pct=cost_floor_pct,
        passes_cost_floor=passes_cost_floor,
        risk_reward_ratio=risk_reward_ratio,
        passes_risk_reward_ratio=passes_risk_reward_ratio,
    )
