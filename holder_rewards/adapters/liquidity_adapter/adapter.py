import asyncio
from dataclasses import dataclass
from decimal import Decimal
from enum import StrEnum
from typing import Any

from eth_utils import to_checksum_address

from holder_rewards.core.adapters.BaseAdapter import BaseAdapter
from holder_rewards.core.clients.ChainClient import ChainClient
from holder_rewards.core.constants.algebra_abi import ALGEBRA_NPM_ABI, ALGEBRA_POOL_ABI
from holder_rewards.core.errors import UnsupportedPair
from holder_rewards.core.utils.liquidity_math import (
    RangeState,
    amounts_for_liquidity,
    classify_range,
    read_all_positions,
    tick_to_price,
)
from holder_rewards.core.utils.units import from_erc20_raw


@dataclass(frozen=True)
class LiquidityPosition:
    position_id: int
    token0: str
    token1: str
    tick_lower: int
    tick_upper: int
    liquidity: int


@dataclass(frozen=True)
class PoolState:
    current_tick: int
    token0: str
    token1: str


class ValuationStatus(StrEnum):
    COUNTED = "counted"
    SKIPPED_WRONG_PAIR = "skipped_wrong_pair"
    SKIPPED_EMPTY = "skipped_empty"


@dataclass(frozen=True)
class PositionValuation:
    position_id: int
    status: ValuationStatus
    amount0: Decimal = Decimal(0)
    amount1: Decimal = Decimal(0)
    value_usd: float = 0.0
    range_state: RangeState | None = None
    note: str | None = None


@dataclass(frozen=True)
class LiquidityReport:
    wallet: str
    pool_state: PoolState
    program_token_price_usd: float
    valuations: tuple[PositionValuation, ...]

    @property
    def total_usd(self) -> float:
        return sum(
            v.value_usd for v in self.valuations if v.status is ValuationStatus.COUNTED
        )

    @property
    def counted(self) -> int:
        return sum(1 for v in self.valuations if v.status is ValuationStatus.COUNTED)


class LiquidityAdapter(BaseAdapter):
    """Values a wallet's positions in the program pair.

    Only positions whose token pair is exactly {program token, reference
    token} count. Pool state is read fresh for every ``value_wallet`` call.
    """

    adapter_type = "LIQUIDITY"

    def __init__(
        self,
        chain: ChainClient,
        *,
        program_token: str,
        reference_token: str,
        position_manager: str,
        pool: str,
        program_token_decimals: int = 18,
        reference_token_decimals: int = 18,
        reference_price_usd: float = 1.0,
        config: dict[str, Any] | None = None,
    ):
        super().__init__("liquidity", chain, config)
        self.program_token = program_token.lower()
        self.reference_token = reference_token.lower()
        self.position_manager = position_manager
        self.pool = pool
        self.program_token_decimals = int(program_token_decimals)
        self.reference_token_decimals = int(reference_token_decimals)
        self.reference_price_usd = float(reference_price_usd)

    @classmethod
    def from_settings(cls, chain: ChainClient, settings: Any) -> "LiquidityAdapter":
        return cls(
            chain,
            program_token=settings.program_token,
            reference_token=settings.reference_token,
            position_manager=settings.position_manager,
            pool=settings.pool,
            program_token_decimals=settings.program_token_decimals,
            reference_token_decimals=settings.reference_token_decimals,
            reference_price_usd=settings.reference_price_usd,
        )

    def _decimals_for(self, token: str) -> int:
        if token.lower() == self.program_token:
            return self.program_token_decimals
        return self.reference_token_decimals

    async def get_pool_state(self) -> PoolState:
        pool = self.chain.contract(self.pool, ALGEBRA_POOL_ABI)
        global_state, token0, token1 = await asyncio.gather(
            self.chain.call(pool.functions.globalState(), label="pool.globalState"),
            self.chain.call(pool.functions.token0(), label="pool.token0"),
            self.chain.call(pool.functions.token1(), label="pool.token1"),
        )
        return PoolState(
            current_tick=int(global_state[1]),
            token0=str(token0).lower(),
            token1=str(token1).lower(),
        )

    def program_token_price(self, pool_state: PoolState) -> float:
        """Program token price in reference-token units at the pool's spot tick."""
        # 1.0001**tick quotes raw token0 in raw token1.
        dec0 = self._decimals_for(pool_state.token0)
        dec1 = self._decimals_for(pool_state.token1)
        spot = tick_to_price(pool_state.current_tick) * 10 ** (dec0 - dec1)
        if pool_state.token0 == self.program_token:
            return spot
        return 1 / spot

    def ensure_supported_pair(self, position: LiquidityPosition) -> None:
        pair = {position.token0.lower(), position.token1.lower()}
        if pair != {self.program_token, self.reference_token}:
            raise UnsupportedPair(
                "position is not in the program pair",
                position_id=position.position_id,
                token0=position.token0,
                token1=position.token1,
            )

    def value(
        self,
        position: LiquidityPosition,
        pool_state: PoolState,
        reference_price: float,
    ) -> PositionValuation:
        """USD value of one position; ``reference_price`` is the reference token in USD."""
        try:
            self.ensure_supported_pair(position)
        except UnsupportedPair as exc:
            return PositionValuation(
                position_id=position.position_id,
                status=ValuationStatus.SKIPPED_WRONG_PAIR,
                note=exc.message,
            )
        if position.liquidity <= 0:
            return PositionValuation(
                position_id=position.position_id,
                status=ValuationStatus.SKIPPED_EMPTY,
            )

        raw0, raw1 = amounts_for_liquidity(
            position.liquidity,
            position.tick_lower,
            position.tick_upper,
            pool_state.current_tick,
        )
        amount0 = from_erc20_raw(Decimal(repr(raw0)), self._decimals_for(position.token0))
        amount1 = from_erc20_raw(Decimal(repr(raw1)), self._decimals_for(position.token1))

        program_usd = self.program_token_price(pool_state) * reference_price
        if position.token0.lower() == self.program_token:
            usd = float(amount0) * program_usd + float(amount1) * reference_price
        else:
            usd = float(amount0) * reference_price + float(amount1) * program_usd

        return PositionValuation(
            position_id=position.position_id,
            status=ValuationStatus.COUNTED,
            amount0=amount0,
            amount1=amount1,
            value_usd=usd,
            range_state=classify_range(
                pool_state.current_tick, position.tick_lower, position.tick_upper
            ),
        )

    async def list_positions(self, wallet: str) -> list[LiquidityPosition]:
        npm = self.chain.contract(self.position_manager, ALGEBRA_NPM_ABI)
        raw = await read_all_positions(self.chain, npm, to_checksum_address(wallet))
        return [
            LiquidityPosition(
                position_id=token_id,
                token0=pos["token0"],
                token1=pos["token1"],
                tick_lower=pos["tick_lower"],
                tick_upper=pos["tick_upper"],
                liquidity=pos["liquidity"],
            )
            for token_id, pos in raw
        ]

    async def value_wallet(self, wallet: str) -> LiquidityReport:
        pool_state, positions = await asyncio.gather(
            self.get_pool_state(), self.list_positions(wallet)
        )
        valuations = tuple(
            self.value(p, pool_state, self.reference_price_usd) for p in positions
        )
        for v in valuations:
            self.logger.debug(
                f"position #{v.position_id}: {v.status} ${v.value_usd:.4f}",
                wallet=wallet,
            )
        return LiquidityReport(
            wallet=wallet.lower(),
            pool_state=pool_state,
            program_token_price_usd=self.program_token_price(pool_state)
            * self.reference_price_usd,
            valuations=valuations,
        )
