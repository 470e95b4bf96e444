from __future__ import annotations

import math

import pytest

from holder_rewards.core.constants.program import AMY_TOKEN, HONEY_TOKEN
from holder_rewards.core.utils.liquidity_math import (
    MAX_TICK,
    RangeState,
    amounts_for_liquidity,
    classify_range,
    enumerate_token_ids,
    parse_position_struct,
    read_all_positions,
    sqrt_price_from_tick,
    tick_to_price,
)
from holder_rewards.tests.chain_mocks import WALLET, make_chain, mock_npm, raw_position

NPM = "0xc228fbf18864b6e91d15abfcc2039f87a5f66741"


def test_tick_to_price_zero_is_parity():
    assert tick_to_price(0) == 1.0
    assert tick_to_price(6932) == pytest.approx(2.0, rel=1e-3)


def test_sqrt_price_rejects_out_of_range_tick():
    with pytest.raises(ValueError):
        sqrt_price_from_tick(MAX_TICK + 1)


@pytest.mark.parametrize(
    ("current", "expected"),
    [
        (-101, RangeState.BELOW),
        (-100, RangeState.IN_RANGE),
        (0, RangeState.IN_RANGE),
        (99, RangeState.IN_RANGE),
        (100, RangeState.ABOVE),
        (500, RangeState.ABOVE),
    ],
)
def test_classify_range_boundaries(current, expected):
    assert classify_range(current, -100, 100) is expected


def test_amounts_below_range_are_all_token0():
    amount0, amount1 = amounts_for_liquidity(10**18, -100, 100, -200)
    assert amount0 > 0
    assert amount1 == 0.0


def test_amounts_above_range_are_all_token1():
    amount0, amount1 = amounts_for_liquidity(10**18, -100, 100, 100)
    assert amount0 == 0.0
    expected = 10**18 * (math.sqrt(1.0001**100) - math.sqrt(1.0001**-100))
    assert amount1 == pytest.approx(expected)


def test_amounts_in_range_split_between_tokens():
    amount0, amount1 = amounts_for_liquidity(10**18, -100, 100, 0)
    per_side = 10**18 * (1 - 1.0001**-50)
    assert amount0 == pytest.approx(per_side)
    assert amount1 == pytest.approx(per_side)


def test_amounts_reject_inverted_range():
    with pytest.raises(ValueError):
        amounts_for_liquidity(1, 100, 100, 0)


def test_parse_position_struct():
    pos = parse_position_struct(raw_position(AMY_TOKEN, HONEY_TOKEN, -120, 120, 5_000))
    assert pos["token0"].lower() == AMY_TOKEN
    assert pos["token1"].lower() == HONEY_TOKEN
    assert pos["tick_spacing"] == 60
    assert pos["tick_lower"] == -120
    assert pos["tick_upper"] == 120
    assert pos["liquidity"] == 5_000


@pytest.mark.asyncio
async def test_enumerate_token_ids_empty_wallet():
    npm = mock_npm({})
    chain = make_chain({NPM: npm})
    ids = await enumerate_token_ids(chain, chain.contract(NPM, []), WALLET)
    assert ids == []
    npm.functions.tokenOfOwnerByIndex.assert_not_called()


@pytest.mark.asyncio
async def test_read_all_positions_in_owner_order():
    positions = {
        7: raw_position(AMY_TOKEN, HONEY_TOKEN, -60, 60, 11),
        9: raw_position(AMY_TOKEN, HONEY_TOKEN, -120, 120, 22),
    }
    chain = make_chain({NPM: mock_npm(positions)})
    result = await read_all_positions(chain, chain.contract(NPM, []), WALLET)
    assert [tid for tid, _ in result] == [7, 9]
    assert [pos["liquidity"] for _, pos in result] == [11, 22]


def test_upper_boundary_counts_as_above_range():
    amount0, amount1 = amounts_for_liquidity(1000, -100, 100, 100)
    assert amount0 == 0
    assert amount1 > 0
