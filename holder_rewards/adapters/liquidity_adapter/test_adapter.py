import pytest

from holder_rewards.adapters.liquidity_adapter.adapter import (
    LiquidityAdapter,
    LiquidityPosition,
    PoolState,
    ValuationStatus,
)
from holder_rewards.core.constants.program import (
    AMY_HONEY_POOL,
    AMY_TOKEN,
    BULLA_POSITION_MANAGER,
    HONEY_TOKEN,
)
from holder_rewards.core.errors import ChainReadError, UnsupportedPair
from holder_rewards.core.settings import build_settings
from holder_rewards.core.utils.liquidity_math import RangeState
from holder_rewards.tests.chain_mocks import (
    WALLET,
    fn_returning,
    liquidity_for_usd,
    make_chain,
    mock_npm,
    mock_pool,
    raw_position,
)

WBERA = "0x6969696969696969696969696969696969696969"


def _adapter(chain=None) -> LiquidityAdapter:
    return LiquidityAdapter.from_settings(chain or make_chain({}), build_settings())


def _position(token0=AMY_TOKEN, token1=HONEY_TOKEN, lower=-100, upper=100, liquidity=10**18):
    return LiquidityPosition(
        position_id=1,
        token0=token0,
        token1=token1,
        tick_lower=lower,
        tick_upper=upper,
        liquidity=liquidity,
    )


class TestLiquidityAdapter:
    def test_adapter_type(self):
        assert _adapter().adapter_type == "LIQUIDITY"

    def test_program_token_price_as_token0(self):
        state = PoolState(current_tick=6932, token0=AMY_TOKEN, token1=HONEY_TOKEN)
        assert _adapter().program_token_price(state) == pytest.approx(2.0, rel=1e-3)

    def test_program_token_price_inverted_as_token1(self):
        state = PoolState(current_tick=6932, token0=HONEY_TOKEN, token1=AMY_TOKEN)
        assert _adapter().program_token_price(state) == pytest.approx(0.5, rel=1e-3)

    def test_ensure_supported_pair_rejects_other_pairs(self):
        with pytest.raises(UnsupportedPair):
            _adapter().ensure_supported_pair(_position(token1=WBERA))

    def test_wrong_pair_is_skipped_not_counted(self):
        state = PoolState(0, AMY_TOKEN, HONEY_TOKEN)
        valuation = _adapter().value(_position(token1=WBERA), state, 1.0)
        assert valuation.status is ValuationStatus.SKIPPED_WRONG_PAIR
        assert valuation.value_usd == 0.0

    def test_empty_position_is_skipped(self):
        state = PoolState(0, AMY_TOKEN, HONEY_TOKEN)
        valuation = _adapter().value(_position(liquidity=0), state, 1.0)
        assert valuation.status is ValuationStatus.SKIPPED_EMPTY

    def test_in_range_position_value(self):
        state = PoolState(0, AMY_TOKEN, HONEY_TOKEN)
        liquidity = liquidity_for_usd(120.0, 100)
        valuation = _adapter().value(_position(liquidity=liquidity), state, 1.0)
        assert valuation.status is ValuationStatus.COUNTED
        assert valuation.range_state is RangeState.IN_RANGE
        assert valuation.value_usd == pytest.approx(120.0, rel=1e-6)
        assert valuation.amount0 == pytest.approx(valuation.amount1)

    def test_position_above_range_holds_only_reference_token(self):
        state = PoolState(150, AMY_TOKEN, HONEY_TOKEN)
        valuation = _adapter().value(_position(), state, 1.0)
        assert valuation.range_state is RangeState.ABOVE
        assert valuation.amount0 == 0
        assert valuation.value_usd == pytest.approx(float(valuation.amount1))

    @pytest.mark.asyncio
    async def test_value_wallet_reads_pool_and_positions(self):
        positions = {
            11: raw_position(AMY_TOKEN, HONEY_TOKEN, -100, 100, liquidity_for_usd(120.0, 100)),
            12: raw_position(WBERA, HONEY_TOKEN, -100, 100, 10**18),
            13: raw_position(AMY_TOKEN, HONEY_TOKEN, -100, 100, 0),
        }
        chain = make_chain(
            {
                AMY_HONEY_POOL: mock_pool(0),
                BULLA_POSITION_MANAGER: mock_npm(positions),
            }
        )
        report = await _adapter(chain).value_wallet(WALLET)
        statuses = {v.position_id: v.status for v in report.valuations}
        assert statuses == {
            11: ValuationStatus.COUNTED,
            12: ValuationStatus.SKIPPED_WRONG_PAIR,
            13: ValuationStatus.SKIPPED_EMPTY,
        }
        assert report.counted == 1
        assert report.total_usd == pytest.approx(120.0, rel=1e-6)
        assert report.program_token_price_usd == pytest.approx(1.0)

    @pytest.mark.asyncio
    async def test_pool_read_failure_surfaces(self):
        pool = mock_pool(0)
        pool.functions.globalState.return_value = fn_returning(error=ValueError("revert"))
        chain = make_chain({AMY_HONEY_POOL: pool, BULLA_POSITION_MANAGER: mock_npm({})})
        with pytest.raises(ChainReadError):
            await _adapter(chain).value_wallet(WALLET)
