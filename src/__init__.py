"""Pyramid Guard - Position Lifecycle Risk Engine

Components:
1. Entry Gates - five ordered safety stages
2. Position Sizer - dampened Kelly + confidence multiplier
3. Position Ledger - pyramiding, erosion cap, closed history
4. Momentum Failure - two-of-three early exit
5. Cost Evaluator - fees, spread, slippage, net edge
"""

__version__ = "1.0.0"
__author__ = "SURIOTA Team"
