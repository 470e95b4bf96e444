"""Verification pipeline: challenge, signature, holdings, tier, record."""

from __future__ import annotations

import asyncio
import weakref
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any

from eth_utils import is_address
from loguru import logger
from pydantic import ValidationError

from holder_rewards.adapters.balance_adapter.adapter import BalanceAdapter, BalanceReport
from holder_rewards.adapters.liquidity_adapter.adapter import (
    LiquidityAdapter,
    LiquidityReport,
    PoolState,
)
from holder_rewards.core.clients.ChainClient import ChainClient
from holder_rewards.core.clients.GeckoTerminalClient import GeckoTerminalClient
from holder_rewards.core.constants.chains import GECKO_NETWORK_BY_CHAIN_ID
from holder_rewards.core.constants.program import LIQUIDITY_SOURCE
from holder_rewards.core.errors import (
    ChainReadError,
    ErrorKind,
    ExpiredChallenge,
    HolderRewardsError,
    InvalidRequest,
    ReplayOrUnknownNonce,
    SignatureMismatch,
    StorageError,
)
from holder_rewards.core.results import Failure, Result, Success
from holder_rewards.core.settings import ProgramSettings, TokenSource
from holder_rewards.core.utils.units import round_usd
from holder_rewards.scoring.multiplier import MultiplierEngine, combine_values
from holder_rewards.storage import open_stores
from holder_rewards.storage.base import RecordStore
from holder_rewards.storage.models import LeaderboardEntry, LeaderboardSnapshot, VerifiedHolder
from holder_rewards.verification.nonces import NonceStore, now_ms
from holder_rewards.verification.signature import SignatureVerifier


@dataclass(frozen=True)
class NonceChallenge:
    wallet: str
    nonce: str
    timestamp: int
    message: str


@dataclass(frozen=True)
class QualifyingValue:
    total: float
    breakdown: dict[str, float]
    failures: tuple[dict[str, Any], ...] = ()

    @property
    def complete(self) -> bool:
        return not self.failures


@dataclass(frozen=True)
class LeaderboardRow:
    position: int
    social_handle: str
    mindshare_score: float
    verified: bool
    qualifying_value: float | None
    eligible: bool


@dataclass(frozen=True)
class LeaderboardView:
    entries: list[LeaderboardRow] = field(default_factory=list)
    last_updated: datetime | None = None
    minimum_qualifying_value: float = 0.0


@dataclass(frozen=True)
class HolderListing:
    holders: list[VerifiedHolder] = field(default_factory=list)
    minimum_qualifying_value: float = 0.0

    @property
    def count(self) -> int:
        return len(self.holders)


class VerificationService:
    def __init__(
        self,
        *,
        settings: ProgramSettings,
        records: RecordStore,
        nonces: NonceStore,
        balances: BalanceAdapter,
        liquidity: LiquidityAdapter,
        prices: GeckoTerminalClient | None = None,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.settings = settings
        self.records = records
        self.nonces = nonces
        self.balances = balances
        self.liquidity = liquidity
        self.prices = prices
        self.clock = clock
        self.engine = MultiplierEngine(settings.tiers)
        self.verifier = SignatureVerifier(
            nonces,
            program_name=settings.program_name,
            template=settings.challenge_template,
            max_age_ms=settings.challenge_max_age_ms,
            clock=clock,
        )
        # Entries disappear once no coroutine holds or waits on the lock.
        self._wallet_locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )
        self.logger = logger.bind(component="VerificationService")

    @classmethod
    def from_settings(
        cls, settings: ProgramSettings, *, chain: ChainClient | None = None
    ) -> VerificationService:
        chain = chain or ChainClient.from_settings(settings)
        records, nonces = open_stores(settings.storage, settings.resolved_data_dir)
        prices = None
        if any(s.price == "gecko" for s in settings.sources):
            prices = GeckoTerminalClient(
                network=GECKO_NETWORK_BY_CHAIN_ID.get(settings.chain_id, "berachain")
            )
        return cls(
            settings=settings,
            records=records,
            nonces=nonces,
            balances=BalanceAdapter(chain),
            liquidity=LiquidityAdapter.from_settings(chain, settings),
            prices=prices,
        )

    def _lock_for(self, wallet: str) -> asyncio.Lock:
        key = wallet.lower()
        lock = self._wallet_locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._wallet_locks[key] = lock
        return lock

    # -- challenge ---------------------------------------------------------------

    def issue_nonce(self, wallet: str) -> Result[NonceChallenge]:
        if not is_address(wallet):
            return Failure.from_error(
                InvalidRequest("wallet is not a valid address", wallet=wallet)
            )
        nonce = self.nonces.issue(wallet)
        message = self.verifier.build_message(wallet, nonce.value, nonce.issued_at)
        return Success(
            NonceChallenge(
                wallet=nonce.wallet,
                nonce=nonce.value,
                timestamp=nonce.issued_at,
                message=message,
            )
        )

    def purge_nonces(self) -> int:
        return self.nonces.purge_expired(self.settings.nonce_retention_ms)

    # -- holdings ----------------------------------------------------------------

    async def _source_price_usd(self, source: TokenSource, pool_state: PoolState | None) -> float:
        if source.price == "fixed":
            return float(source.price_usd or 0.0)
        if source.price == "pool":
            if pool_state is None:
                raise ChainReadError("pool state unavailable", source=source.name)
            return (
                self.liquidity.program_token_price(pool_state)
                * self.settings.reference_price_usd
            )
        if self.prices is None:
            raise ChainReadError("no price client configured", source=source.name)
        try:
            return await self.prices.get_price_usd(
                source.price_token or source.address, pool_address=source.gecko_pool
            )
        except Exception as exc:  # noqa: BLE001
            raise ChainReadError(
                f"price lookup failed: {exc}", source=source.name
            ) from exc

    async def _read_liquidity(
        self, wallet: str
    ) -> LiquidityReport | PoolState | ChainReadError | None:
        try:
            if self.settings.include_liquidity:
                return await self.liquidity.value_wallet(wallet)
            if any(s.price == "pool" for s in self.settings.sources):
                return await self.liquidity.get_pool_state()
            return None
        except ChainReadError as exc:
            self.logger.warning(f"Liquidity read failed for {wallet}: {exc}")
            return exc

    async def compute_qualifying_value(self, wallet: str) -> QualifyingValue:
        balance_report: BalanceReport
        balance_report, liquidity_result = await asyncio.gather(
            self.balances.aggregate(wallet, self.settings.sources),
            self._read_liquidity(wallet),
        )

        failures: list[dict[str, Any]] = [
            {"source": f.source, **f.error} for f in balance_report.failures
        ]
        breakdown: dict[str, float] = {}

        pool_state: PoolState | None = None
        if isinstance(liquidity_result, LiquidityReport):
            pool_state = liquidity_result.pool_state
            breakdown[LIQUIDITY_SOURCE] = liquidity_result.total_usd
        elif isinstance(liquidity_result, PoolState):
            pool_state = liquidity_result
        elif isinstance(liquidity_result, ChainReadError):
            failures.append({"source": LIQUIDITY_SOURCE, **liquidity_result.to_dict()})

        sources = {s.name: s for s in self.settings.sources}
        for reading in balance_report.readings:
            source = sources[reading.source]
            if reading.amount == Decimal(0):
                breakdown[source.name] = 0.0
                continue
            try:
                price = await self._source_price_usd(source, pool_state)
            except ChainReadError as exc:
                failures.append({"source": source.name, **exc.to_dict()})
                continue
            breakdown[source.name] = float(reading.amount) * price

        total = combine_values(breakdown.values(), self.settings.combination)
        return QualifyingValue(
            total=total,
            breakdown={k: round_usd(v, 4) for k, v in breakdown.items()},
            failures=tuple(failures),
        )

    # -- orchestration -------------------------------------------------------------

    async def verify_and_record(
        self,
        wallet: str,
        nonce: str,
        timestamp: int,
        signature: str | bytes,
        social_handle: str,
    ) -> Result[VerifiedHolder]:
        handle = (social_handle or "").strip().lstrip("@")
        if not handle:
            return Failure.from_error(InvalidRequest("social handle is required"))

        try:
            identity = self.verifier.verify(wallet, nonce, timestamp, signature)
        except (ExpiredChallenge, SignatureMismatch, ReplayOrUnknownNonce) as exc:
            self.logger.info(f"Verification rejected for {wallet}: {exc.kind}")
            return Failure.from_error(exc)

        async with self._lock_for(identity.wallet):
            try:
                value = await self.compute_qualifying_value(identity.wallet)
            except ChainReadError as exc:
                return Failure.from_error(exc)

            if not value.complete and self.settings.partial_read_policy == "reject":
                return Failure(
                    kind=ErrorKind.CHAIN_READ_ERROR,
                    message="could not determine every balance source",
                    context={"wallet": identity.wallet, "failures": list(value.failures)},
                )

            resolution = self.engine.resolve_tier(value.total)
            holder = VerifiedHolder(
                wallet=identity.wallet,
                social_handle=handle,
                qualifying_value=round_usd(value.total),
                tier=resolution.tier,
                multiplier=resolution.multiplier,
                signature_verified=True,
                balance_complete=value.complete,
                breakdown=value.breakdown,
            )
            try:
                self.records.upsert(holder)
            except StorageError as exc:
                self.logger.error(f"Failed to save holder {identity.wallet}: {exc}")
                return Failure.from_error(exc)

        self.logger.info(
            f"Verified {holder.wallet} @{holder.social_handle}: "
            f"${holder.qualifying_value:.2f} -> {holder.tier} ({holder.multiplier}x)"
        )
        return Success(holder)

    # -- reads -----------------------------------------------------------------------

    def get_verification_status(self, wallet: str) -> VerifiedHolder | None:
        return self.records.get_by_wallet(wallet)

    def get_leaderboard(self) -> LeaderboardView:
        snapshot = self.records.get_leaderboard()
        minimum = snapshot.minimum_qualifying_value
        rows: list[LeaderboardRow] = []
        for entry in snapshot.entries:
            holder = self.records.get_by_social_handle(entry.social_handle)
            value = holder.qualifying_value if holder else None
            rows.append(
                LeaderboardRow(
                    position=entry.position,
                    social_handle=entry.social_handle,
                    mindshare_score=entry.mindshare_score,
                    verified=holder is not None,
                    qualifying_value=value,
                    eligible=value is not None and value >= minimum,
                )
            )
        return LeaderboardView(
            entries=rows,
            last_updated=snapshot.last_updated,
            minimum_qualifying_value=minimum,
        )

    def list_holders(
        self, *, eligible_only: bool = False, public: bool = False
    ) -> HolderListing:
        """Verified holders, highest qualifying value first.

        ``eligible_only`` keeps holders at or above the minimum qualifying value;
        ``public`` hides the configured excluded handles.
        """
        minimum = self.settings.minimum_qualifying_value
        excluded = set(self.settings.excluded_handles) if public else set()
        holders = [
            h
            for h in self.records.list_holders()
            if (not eligible_only or h.qualifying_value >= minimum)
            and h.social_handle.lower() not in excluded
        ]
        holders.sort(key=lambda h: h.qualifying_value, reverse=True)
        return HolderListing(holders=holders, minimum_qualifying_value=minimum)

    def delete_holder(self, wallet: str) -> Result[str]:
        """Administrative removal of a wallet's verification record."""
        if not is_address(wallet):
            return Failure.from_error(
                InvalidRequest("wallet is not a valid address", wallet=wallet)
            )
        try:
            deleted = self.records.delete_holder(wallet)
        except StorageError as exc:
            self.logger.error(f"Failed to delete holder {wallet.lower()}: {exc}")
            return Failure.from_error(exc)
        if not deleted:
            return Failure.from_error(
                InvalidRequest("no verification record for wallet", wallet=wallet.lower())
            )
        self.logger.info(f"Holder record removed for {wallet.lower()}")
        return Success(wallet.lower())

    def refresh_leaderboard(
        self,
        rows: Iterable[Mapping[str, Any] | LeaderboardEntry],
        *,
        minimum_qualifying_value: float | None = None,
    ) -> Result[LeaderboardSnapshot]:
        """Replace the whole leaderboard; nothing is written unless every row is valid."""
        try:
            entries = [
                r if isinstance(r, LeaderboardEntry) else LeaderboardEntry.model_validate(r)
                for r in rows
            ]
        except ValidationError as exc:
            return Failure.from_error(
                InvalidRequest(
                    "invalid leaderboard rows", errors=exc.errors(include_url=False)
                )
            )
        minimum = (
            self.settings.minimum_qualifying_value
            if minimum_qualifying_value is None
            else float(minimum_qualifying_value)
        )
        try:
            snapshot = self.records.replace_leaderboard(
                entries, minimum_qualifying_value=minimum
            )
        except ValueError as exc:
            return Failure.from_error(InvalidRequest(str(exc)))
        except HolderRewardsError as exc:
            self.logger.error(f"Leaderboard refresh failed: {exc}")
            return Failure.from_error(exc)
        self.logger.info(f"Leaderboard refreshed with {len(entries)} entries")
        return Success(snapshot)

    async def close(self) -> None:
        await self.balances.chain.close()
        if self.prices is not None:
            await self.prices.close()
        self.records.close()
