import asyncio
import secrets
from collections.abc import Sequence
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

from aiocache import Cache
from eth_utils import to_checksum_address

from holder_rewards.core.adapters.BaseAdapter import BaseAdapter
from holder_rewards.core.clients.ChainClient import ChainClient
from holder_rewards.core.constants.erc20_abi import ERC20_ABI
from holder_rewards.core.constants.erc4626_abi import ERC4626_ABI
from holder_rewards.core.errors import ChainReadError
from holder_rewards.core.settings import TokenSource
from holder_rewards.core.utils.units import from_erc20_raw


@dataclass(frozen=True)
class SourceReading:
    source: str
    kind: str
    address: str
    amount: Decimal
    shares: Decimal | None = None


@dataclass(frozen=True)
class SourceFailure:
    source: str
    kind: str
    address: str
    error: dict[str, Any]


@dataclass(frozen=True)
class BalanceReport:
    """Per-source balances for one wallet.

    A source that could not be read appears in ``failures`` rather than as a
    zero reading, so "verified zero" and "unknown" stay distinguishable.
    """

    wallet: str
    readings: tuple[SourceReading, ...] = ()
    failures: tuple[SourceFailure, ...] = field(default=())

    @property
    def partial(self) -> bool:
        return bool(self.failures)

    @property
    def total(self) -> Decimal:
        return sum((r.amount for r in self.readings), Decimal(0))

    def amount_of(self, source: str) -> Decimal | None:
        for reading in self.readings:
            if reading.source == source:
                return reading.amount
        return None


class BalanceAdapter(BaseAdapter):
    adapter_type = "BALANCE"

    def __init__(self, chain: ChainClient, config: dict[str, Any] | None = None):
        super().__init__("balance", chain, config)
        self._cache = Cache(Cache.MEMORY, namespace=f"decimals:{secrets.token_hex(4)}:")

    async def _token_decimals(self, token: str) -> int:
        key = token.lower()
        if (cached := await self._cache.get(key)) is not None:
            return cached
        contract = self.chain.contract(token, ERC20_ABI)
        decimals = int(
            await self.chain.call(
                contract.functions.decimals(), label=f"decimals({key})"
            )
        )
        await self._cache.set(key, decimals)
        return decimals

    async def get_direct_balance(
        self, wallet: str, token: str, *, decimals: int | None = None
    ) -> Decimal:
        owner = to_checksum_address(wallet)
        contract = self.chain.contract(token, ERC20_ABI)
        if decimals is None:
            raw, decimals = await asyncio.gather(
                self.chain.call(
                    contract.functions.balanceOf(owner), label=f"balanceOf({token})"
                ),
                self._token_decimals(token),
            )
        else:
            raw = await self.chain.call(
                contract.functions.balanceOf(owner), label=f"balanceOf({token})"
            )
        return from_erc20_raw(int(raw or 0), int(decimals))

    async def get_vault_shares(self, wallet: str, vault: str) -> int:
        contract = self.chain.contract(vault, ERC4626_ABI)
        raw = await self.chain.call(
            contract.functions.balanceOf(to_checksum_address(wallet)),
            label=f"shares({vault})",
        )
        return int(raw or 0)

    async def _vault_asset_decimals(self, vault: str) -> int:
        contract = self.chain.contract(vault, ERC4626_ABI)
        asset = await self.chain.call(contract.functions.asset(), label=f"asset({vault})")
        return await self._token_decimals(str(asset))

    async def get_staked_balance(
        self, wallet: str, vault: str, *, asset_decimals: int | None = None
    ) -> Decimal:
        """Underlying assets held through vault shares.

        Shares are converted with the vault's own ``convertToAssets``; the
        share count itself is never a balance.
        """
        assets, _shares = await self._staked_assets(
            wallet, vault, asset_decimals=asset_decimals
        )
        return assets

    async def _staked_assets(
        self, wallet: str, vault: str, *, asset_decimals: int | None
    ) -> tuple[Decimal, int]:
        shares = await self.get_vault_shares(wallet, vault)
        if shares <= 0:
            return Decimal(0), 0

        contract = self.chain.contract(vault, ERC4626_ABI)
        if asset_decimals is None:
            raw_assets, asset_decimals = await asyncio.gather(
                self.chain.call(
                    contract.functions.convertToAssets(shares),
                    label=f"convertToAssets({vault})",
                ),
                self._vault_asset_decimals(vault),
            )
        else:
            raw_assets = await self.chain.call(
                contract.functions.convertToAssets(shares),
                label=f"convertToAssets({vault})",
            )
        return from_erc20_raw(int(raw_assets or 0), int(asset_decimals)), shares

    async def _read_source(self, wallet: str, source: TokenSource) -> SourceReading:
        if source.kind == "erc4626":
            assets, shares = await self._staked_assets(
                wallet, source.address, asset_decimals=source.decimals
            )
            return SourceReading(
                source=source.name,
                kind=source.kind,
                address=source.address,
                amount=assets,
                shares=Decimal(shares),
            )
        amount = await self.get_direct_balance(
            wallet, source.address, decimals=source.decimals
        )
        return SourceReading(
            source=source.name, kind=source.kind, address=source.address, amount=amount
        )

    async def aggregate(
        self, wallet: str, sources: Sequence[TokenSource]
    ) -> BalanceReport:
        async def _guarded(source: TokenSource) -> SourceReading | SourceFailure:
            try:
                return await self._read_source(wallet, source)
            except ChainReadError as exc:
                self.logger.warning(
                    f"Balance source {source.name} unreadable: {exc}", wallet=wallet
                )
                return SourceFailure(
                    source=source.name,
                    kind=source.kind,
                    address=source.address,
                    error=exc.to_dict(),
                )

        results = await asyncio.gather(*(_guarded(s) for s in sources))
        readings = tuple(r for r in results if isinstance(r, SourceReading))
        failures = tuple(r for r in results if isinstance(r, SourceFailure))
        return BalanceReport(wallet=wallet.lower(), readings=readings, failures=failures)
