"""Concentrated-liquidity math and position-manager reads.

Amounts are recovered with float sqrt prices (``sqrt(1.0001**tick)``), which
is precise enough for scoring; nothing here builds transactions.
"""

from __future__ import annotations

import asyncio
import math
from enum import StrEnum
from typing import TYPE_CHECKING, Any, TypedDict

from eth_utils import to_checksum_address

from holder_rewards.core.constants.base import TICK_BASE

if TYPE_CHECKING:
    from holder_rewards.core.clients.ChainClient import ChainClient

MIN_TICK = -887272
MAX_TICK = 887272


class RangeState(StrEnum):
    BELOW = "below"
    IN_RANGE = "in_range"
    ABOVE = "above"


class PositionData(TypedDict):
    nonce: int
    operator: str
    token0: str
    token1: str
    tick_spacing: int
    tick_lower: int
    tick_upper: int
    liquidity: int
    tokens_owed0: int
    tokens_owed1: int


def tick_to_price(tick: int) -> float:
    return TICK_BASE**tick


def sqrt_price_from_tick(tick: int) -> float:
    if tick < MIN_TICK or tick > MAX_TICK:
        raise ValueError(f"tick {tick} out of range [{MIN_TICK}, {MAX_TICK}]")
    return math.sqrt(TICK_BASE**tick)


def classify_range(current_tick: int, tick_lower: int, tick_upper: int) -> RangeState:
    # Lower bound is inclusive for "in range"; sitting exactly on the upper
    # tick already counts as above.
    if current_tick < tick_lower:
        return RangeState.BELOW
    if current_tick >= tick_upper:
        return RangeState.ABOVE
    return RangeState.IN_RANGE


def amounts_for_liquidity(
    liquidity: int | float,
    tick_lower: int,
    tick_upper: int,
    current_tick: int,
) -> tuple[float, float]:
    """Raw token0/token1 amounts represented by ``liquidity`` in a tick range."""
    if tick_lower >= tick_upper:
        raise ValueError(f"tick_lower {tick_lower} must be below tick_upper {tick_upper}")
    L = float(liquidity)
    p_lower = sqrt_price_from_tick(tick_lower)
    p_upper = sqrt_price_from_tick(tick_upper)

    state = classify_range(current_tick, tick_lower, tick_upper)
    if state is RangeState.BELOW:
        return L * (1 / p_lower - 1 / p_upper), 0.0
    if state is RangeState.ABOVE:
        return 0.0, L * (p_upper - p_lower)

    p_current = sqrt_price_from_tick(current_tick)
    return L * (1 / p_current - 1 / p_upper), L * (p_current - p_lower)


def parse_position_struct(raw: tuple | list) -> PositionData:
    return PositionData(
        nonce=int(raw[0]),
        operator=to_checksum_address(raw[1]),
        token0=to_checksum_address(raw[2]),
        token1=to_checksum_address(raw[3]),
        tick_spacing=int(raw[4]),
        tick_lower=int(raw[5]),
        tick_upper=int(raw[6]),
        liquidity=int(raw[7]),
        tokens_owed0=int(raw[10]),
        tokens_owed1=int(raw[11]),
    )


async def enumerate_token_ids(chain: ChainClient, npm_contract: Any, owner: str) -> list[int]:
    balance = await chain.call(
        npm_contract.functions.balanceOf(owner), label="npm.balanceOf"
    )
    count = int(balance or 0)
    if count <= 0:
        return []
    ids = await asyncio.gather(
        *(
            chain.call(
                npm_contract.functions.tokenOfOwnerByIndex(owner, i),
                label="npm.tokenOfOwnerByIndex",
            )
            for i in range(count)
        )
    )
    return [int(tid) for tid in ids]


async def read_all_positions(
    chain: ChainClient, npm_contract: Any, owner: str
) -> list[tuple[int, PositionData]]:
    token_ids = await enumerate_token_ids(chain, npm_contract, owner)
    if not token_ids:
        return []
    raws = await asyncio.gather(
        *(
            chain.call(npm_contract.functions.positions(tid), label="npm.positions")
            for tid in token_ids
        )
    )
    return [
        (tid, parse_position_struct(raw))
        for tid, raw in zip(token_ids, raws, strict=True)
    ]
