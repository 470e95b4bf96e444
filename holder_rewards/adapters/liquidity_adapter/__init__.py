"""Liquidity Adapter - values Algebra positions in the program pair."""

from .adapter import (
    LiquidityAdapter,
    LiquidityPosition,
    LiquidityReport,
    PoolState,
    PositionValuation,
    ValuationStatus,
)

__all__ = [
    "LiquidityAdapter",
    "LiquidityPosition",
    "LiquidityReport",
    "PoolState",
    "PositionValuation",
    "ValuationStatus",
]
