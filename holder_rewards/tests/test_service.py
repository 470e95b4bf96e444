from __future__ import annotations

import asyncio
import gc
from pathlib import Path

import pytest
from eth_account import Account
from eth_account.messages import encode_defunct

from holder_rewards.adapters.balance_adapter.adapter import BalanceAdapter
from holder_rewards.adapters.liquidity_adapter.adapter import LiquidityAdapter
from holder_rewards.core.constants.program import AMY_TOKEN, HONEY_TOKEN
from holder_rewards.core.errors import ErrorKind
from holder_rewards.core.results import Failure, Success
from holder_rewards.core.settings import build_settings
from holder_rewards.service import VerificationService
from holder_rewards.storage.json_store import JsonRecordStore
from holder_rewards.storage.models import VerifiedHolder
from holder_rewards.tests.chain_mocks import (
    liquidity_for_usd,
    mock_failing_erc20,
    mock_vault,
    program_chain,
    raw_position,
)
from holder_rewards.verification.nonces import MemoryNonceStore

HOLDER = Account.from_key("0x" + "11" * 32)
NOW = 1_700_000_000_000
PLSBERA_VAULT = "0x1111111111111111111111111111111111111111"


def _service(tmp_path: Path, chain, **overrides) -> VerificationService:
    settings = build_settings({"data_dir": str(tmp_path), **overrides})
    return VerificationService(
        settings=settings,
        records=JsonRecordStore(tmp_path),
        nonces=MemoryNonceStore(clock=lambda: NOW),
        balances=BalanceAdapter(chain),
        liquidity=LiquidityAdapter.from_settings(chain, settings),
        clock=lambda: NOW,
    )


def _holder_chain(**kwargs):
    wallet = HOLDER.address.lower()
    kwargs.setdefault("amy_balances", {wallet: 50 * 10**18})
    kwargs.setdefault(
        "positions",
        {1: raw_position(AMY_TOKEN, HONEY_TOKEN, -100, 100, liquidity_for_usd(120.0, 100))},
    )
    return program_chain(**kwargs)


def _signed_challenge(service: VerificationService) -> tuple[str, int, bytes]:
    challenge = service.issue_nonce(HOLDER.address)
    assert isinstance(challenge, Success)
    signed = Account.sign_message(
        encode_defunct(text=challenge.value.message), private_key=HOLDER.key
    )
    return challenge.value.nonce, challenge.value.timestamp, signed.signature


def test_issue_nonce_builds_signable_challenge(tmp_path: Path):
    service = _service(tmp_path, _holder_chain())
    result = service.issue_nonce(HOLDER.address)
    assert result.ok
    assert result.value.timestamp == NOW
    assert result.value.wallet == HOLDER.address.lower()
    assert f"Nonce: {result.value.nonce}" in result.value.message


def test_issue_nonce_rejects_invalid_wallet(tmp_path: Path):
    result = _service(tmp_path, _holder_chain()).issue_nonce("0x123")
    assert isinstance(result, Failure)
    assert result.kind is ErrorKind.INVALID_REQUEST


@pytest.mark.asyncio
async def test_qualifying_value_sums_direct_and_liquidity(tmp_path: Path):
    service = _service(tmp_path, _holder_chain())
    value = await service.compute_qualifying_value(HOLDER.address)
    assert value.complete
    assert value.breakdown["AMY"] == pytest.approx(50.0)
    assert value.breakdown["liquidity"] == pytest.approx(120.0, abs=1e-3)
    assert value.total == pytest.approx(170.0, abs=1e-3)


@pytest.mark.asyncio
async def test_max_combination(tmp_path: Path):
    service = _service(tmp_path, _holder_chain(), combination="max")
    value = await service.compute_qualifying_value(HOLDER.address)
    assert value.total == pytest.approx(120.0, abs=1e-3)


@pytest.mark.asyncio
async def test_staked_source_with_fixed_price(tmp_path: Path):
    wallet = HOLDER.address.lower()
    chain = _holder_chain(
        extra={PLSBERA_VAULT: mock_vault({wallet: 10 * 10**18}, rate=1.5, asset=AMY_TOKEN)}
    )
    service = _service(
        tmp_path,
        chain,
        sources=[
            {"name": "AMY", "address": AMY_TOKEN, "decimals": 18},
            {
                "name": "plsBERA",
                "kind": "erc4626",
                "address": PLSBERA_VAULT,
                "decimals": 18,
                "price": "fixed",
                "price_usd": 2.0,
            },
        ],
    )
    value = await service.compute_qualifying_value(HOLDER.address)
    assert value.breakdown["plsBERA"] == pytest.approx(30.0)
    assert value.total == pytest.approx(200.0, abs=1e-3)


@pytest.mark.asyncio
async def test_verify_and_record_end_to_end(tmp_path: Path):
    service = _service(tmp_path, _holder_chain())
    nonce, timestamp, signature = _signed_challenge(service)

    result = await service.verify_and_record(
        HOLDER.address, nonce, timestamp, signature, "@AmyFan"
    )

    assert isinstance(result, Success)
    holder = result.value
    assert holder.wallet == HOLDER.address.lower()
    assert holder.social_handle == "AmyFan"
    assert holder.qualifying_value == pytest.approx(170.0, abs=0.01)
    assert holder.tier == "silver"
    assert holder.multiplier == 10
    assert holder.balance_complete

    stored = service.get_verification_status(HOLDER.address)
    assert stored == holder


@pytest.mark.asyncio
async def test_replayed_challenge_is_rejected(tmp_path: Path):
    service = _service(tmp_path, _holder_chain())
    nonce, timestamp, signature = _signed_challenge(service)
    await service.verify_and_record(HOLDER.address, nonce, timestamp, signature, "AmyFan")

    again = await service.verify_and_record(
        HOLDER.address, nonce, timestamp, signature, "AmyFan"
    )
    assert isinstance(again, Failure)
    assert again.kind is ErrorKind.REPLAY_OR_UNKNOWN_NONCE


@pytest.mark.asyncio
async def test_concurrent_submissions_record_once(tmp_path: Path):
    service = _service(tmp_path, _holder_chain())
    nonce, timestamp, signature = _signed_challenge(service)

    results = await asyncio.gather(
        *(
            service.verify_and_record(HOLDER.address, nonce, timestamp, signature, "AmyFan")
            for _ in range(5)
        )
    )
    assert sum(1 for r in results if r.ok) == 1
    assert len(service.records.list_holders()) == 1


@pytest.mark.asyncio
async def test_empty_handle_is_rejected_without_spending_nonce(tmp_path: Path):
    service = _service(tmp_path, _holder_chain())
    nonce, timestamp, signature = _signed_challenge(service)

    result = await service.verify_and_record(HOLDER.address, nonce, timestamp, signature, " @ ")
    assert isinstance(result, Failure)
    assert result.kind is ErrorKind.INVALID_REQUEST
    assert not service.nonces.get(nonce).used


@pytest.mark.asyncio
async def test_partial_read_rejected_by_default(tmp_path: Path):
    service = _service(tmp_path, _holder_chain(amy=mock_failing_erc20()))
    nonce, timestamp, signature = _signed_challenge(service)

    result = await service.verify_and_record(
        HOLDER.address, nonce, timestamp, signature, "AmyFan"
    )
    assert isinstance(result, Failure)
    assert result.kind is ErrorKind.CHAIN_READ_ERROR
    assert result.context["failures"][0]["source"] == "AMY"
    assert service.get_verification_status(HOLDER.address) is None


@pytest.mark.asyncio
async def test_partial_read_recorded_as_provisional(tmp_path: Path):
    service = _service(
        tmp_path,
        _holder_chain(amy=mock_failing_erc20()),
        partial_read_policy="provisional",
    )
    nonce, timestamp, signature = _signed_challenge(service)

    result = await service.verify_and_record(
        HOLDER.address, nonce, timestamp, signature, "AmyFan"
    )
    assert isinstance(result, Success)
    assert result.value.balance_complete is False
    assert "AMY" not in result.value.breakdown
    assert result.value.qualifying_value == pytest.approx(120.0, abs=0.01)


@pytest.mark.asyncio
async def test_zero_balance_wallet_gets_base_tier(tmp_path: Path):
    service = _service(tmp_path, _holder_chain(amy_balances={}, positions={}))
    nonce, timestamp, signature = _signed_challenge(service)

    result = await service.verify_and_record(
        HOLDER.address, nonce, timestamp, signature, "AmyFan"
    )
    assert result.ok
    assert result.value.qualifying_value == 0
    assert result.value.multiplier == 1


def test_refresh_and_read_leaderboard(tmp_path: Path):
    service = _service(tmp_path, _holder_chain())
    service.records.upsert(
        _holder_record(wallet=HOLDER.address, handle="AmyFan", value=450.0)
    )
    service.records.upsert(
        _holder_record(wallet="0x" + "2" * 40, handle="small", value=20.0)
    )

    refreshed = service.refresh_leaderboard(
        [
            {"position": 1, "social_handle": "@amyfan", "mindshare_score": 9.5},
            {"position": 2, "social_handle": "small", "mindshare_score": 3.0},
            {"position": 3, "social_handle": "stranger", "mindshare_score": 1.0},
        ]
    )
    assert refreshed.ok
    assert refreshed.value.minimum_qualifying_value == 300.0

    view = service.get_leaderboard()
    rows = {r.social_handle: r for r in view.entries}
    assert rows["amyfan"].verified and rows["amyfan"].eligible
    assert rows["small"].verified and not rows["small"].eligible
    assert not rows["stranger"].verified
    assert rows["stranger"].qualifying_value is None


def test_refresh_with_invalid_row_changes_nothing(tmp_path: Path):
    service = _service(tmp_path, _holder_chain())
    service.refresh_leaderboard([{"position": 1, "social_handle": "first"}])

    result = service.refresh_leaderboard(
        [
            {"position": 1, "social_handle": "ok"},
            {"position": 0, "social_handle": "bad"},
        ]
    )
    assert isinstance(result, Failure)
    assert result.kind is ErrorKind.INVALID_REQUEST
    assert [e.social_handle for e in service.get_leaderboard().entries] == ["first"]


def test_refresh_with_duplicate_positions_is_invalid(tmp_path: Path):
    service = _service(tmp_path, _holder_chain())
    result = service.refresh_leaderboard(
        [
            {"position": 1, "social_handle": "a"},
            {"position": 1, "social_handle": "b"},
        ]
    )
    assert isinstance(result, Failure)
    assert result.kind is ErrorKind.INVALID_REQUEST


@pytest.mark.asyncio
async def test_wallet_locks_are_released_after_use(tmp_path: Path):
    service = _service(tmp_path, _holder_chain())
    nonce, timestamp, signature = _signed_challenge(service)
    result = await service.verify_and_record(
        HOLDER.address, nonce, timestamp, signature, "AmyFan"
    )
    assert result.ok

    gc.collect()
    assert len(service._wallet_locks) == 0


def test_list_holders_filters_and_sorts(tmp_path: Path):
    service = _service(tmp_path, _holder_chain(), excluded_handles=["@TeamWallet"])
    service.records.upsert(_holder_record(wallet="0x" + "1" * 40, handle="small", value=20.0))
    service.records.upsert(_holder_record(wallet="0x" + "2" * 40, handle="big", value=900.0))
    service.records.upsert(
        _holder_record(wallet="0x" + "3" * 40, handle="teamwallet", value=5000.0)
    )

    everyone = service.list_holders()
    assert [h.social_handle for h in everyone.holders] == ["teamwallet", "big", "small"]

    eligible = service.list_holders(eligible_only=True)
    assert [h.social_handle for h in eligible.holders] == ["teamwallet", "big"]
    assert eligible.minimum_qualifying_value == 300.0

    public = service.list_holders(eligible_only=True, public=True)
    assert [h.social_handle for h in public.holders] == ["big"]
    assert public.count == 1


def test_delete_holder(tmp_path: Path):
    service = _service(tmp_path, _holder_chain())
    service.records.upsert(_holder_record(wallet=HOLDER.address, handle="AmyFan", value=450.0))

    result = service.delete_holder(HOLDER.address)
    assert isinstance(result, Success)
    assert result.value == HOLDER.address.lower()
    assert service.get_verification_status(HOLDER.address) is None

    again = service.delete_holder(HOLDER.address)
    assert isinstance(again, Failure)
    assert again.kind is ErrorKind.INVALID_REQUEST

    invalid = service.delete_holder("not-a-wallet")
    assert isinstance(invalid, Failure)
    assert invalid.kind is ErrorKind.INVALID_REQUEST

def _holder_record(*, wallet: str, handle: str, value: float):
    return VerifiedHolder(
        wallet=wallet,
        social_handle=handle,
        qualifying_value=value,
        tier="silver",
        multiplier=10,
    )
