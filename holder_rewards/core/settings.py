from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from holder_rewards.core.config import get_data_dir, get_program_config, get_rpc_urls
from holder_rewards.core.constants.base import (
    CHALLENGE_MAX_AGE_MS,
    DEFAULT_RPC_MAX_RETRIES,
    DEFAULT_RPC_TIMEOUT,
    NONCE_RETENTION_MS,
)
from holder_rewards.core.constants.chains import DEFAULT_RPC_URLS
from holder_rewards.core.constants.program import (
    AMY_HONEY_POOL,
    AMY_TOKEN,
    BULLA_POSITION_MANAGER,
    CHALLENGE_TEMPLATE,
    DEFAULT_TIERS,
    HONEY_PRICE_USD,
    HONEY_TOKEN,
    LIQUIDITY_SOURCE,
    MINIMUM_QUALIFYING_VALUE,
    PROGRAM_CHAIN_ID,
    PROGRAM_NAME,
    TOKEN_DECIMALS,
)
from holder_rewards.core.errors import ConfigurationError
from holder_rewards.scoring.multiplier import TierRule
from holder_rewards.verification.signature import validate_challenge_template


def _normalize_address(value: str) -> str:
    addr = str(value).strip().lower()
    if not addr.startswith("0x") or len(addr) != 42:
        raise ValueError(f"invalid address: {value}")
    return addr


class TokenSource(BaseModel):
    """A balance source counted toward a wallet's qualifying value.

    ``erc20`` sources are read with ``balanceOf``; ``erc4626`` sources are
    staking vaults whose shares are converted with ``convertToAssets``.
    ``price`` selects how the token amount becomes USD: ``pool`` uses the
    program pool's spot price, ``fixed`` uses ``price_usd``, ``gecko`` asks
    GeckoTerminal (by ``gecko_pool`` when set, otherwise by token address).
    """

    name: str
    kind: Literal["erc20", "erc4626"] = "erc20"
    address: str
    decimals: int | None = None
    price: Literal["pool", "fixed", "gecko"] = "pool"
    price_usd: float | None = None
    price_token: str | None = None
    gecko_pool: str | None = None

    @field_validator("address", "price_token", "gecko_pool")
    @classmethod
    def _address(cls, v: str | None) -> str | None:
        return _normalize_address(v) if v is not None else None

    @model_validator(mode="after")
    def _fixed_needs_price(self) -> TokenSource:
        if self.price == "fixed" and self.price_usd is None:
            raise ValueError(f"source {self.name}: fixed price requires price_usd")
        return self


def _default_sources() -> list[TokenSource]:
    return [
        TokenSource(
            name=PROGRAM_NAME,
            kind="erc20",
            address=AMY_TOKEN,
            decimals=TOKEN_DECIMALS,
            price="pool",
        )
    ]


class ProgramSettings(BaseModel):
    program_name: str = PROGRAM_NAME
    challenge_template: str = CHALLENGE_TEMPLATE

    chain_id: int = PROGRAM_CHAIN_ID
    rpc_urls: list[str] = Field(default_factory=list)
    rpc_timeout_s: float = DEFAULT_RPC_TIMEOUT
    rpc_max_retries: int = DEFAULT_RPC_MAX_RETRIES

    program_token: str = AMY_TOKEN
    program_token_decimals: int = TOKEN_DECIMALS
    reference_token: str = HONEY_TOKEN
    reference_token_decimals: int = TOKEN_DECIMALS
    reference_price_usd: float = HONEY_PRICE_USD
    position_manager: str = BULLA_POSITION_MANAGER
    pool: str = AMY_HONEY_POOL
    include_liquidity: bool = True

    sources: list[TokenSource] = Field(default_factory=_default_sources)
    tiers: list[TierRule] = Field(
        default_factory=lambda: [TierRule(**t) for t in DEFAULT_TIERS]
    )
    combination: Literal["sum", "max"] = "sum"
    partial_read_policy: Literal["reject", "provisional"] = "reject"
    minimum_qualifying_value: float = MINIMUM_QUALIFYING_VALUE
    # Handles left out of the public holder listing (project team wallets).
    excluded_handles: list[str] = Field(default_factory=list)

    storage: Literal["json", "sqlite"] = "json"
    data_dir: Path | None = None

    challenge_max_age_ms: int = CHALLENGE_MAX_AGE_MS
    nonce_retention_ms: int = NONCE_RETENTION_MS

    @field_validator("program_token", "reference_token", "position_manager", "pool")
    @classmethod
    def _address(cls, v: str) -> str:
        return _normalize_address(v)

    @field_validator("challenge_template")
    @classmethod
    def _template(cls, v: str) -> str:
        return validate_challenge_template(v)

    @field_validator("excluded_handles")
    @classmethod
    def _handles(cls, v: list[str]) -> list[str]:
        return [h.strip().lstrip("@").lower() for h in v if h.strip()]

    @field_validator("sources")
    @classmethod
    def _unique_sources(cls, v: list[TokenSource]) -> list[TokenSource]:
        seen: set[str] = set()
        for source in v:
            if source.name == LIQUIDITY_SOURCE:
                raise ValueError(f"source name {LIQUIDITY_SOURCE!r} is reserved")
            if source.name in seen:
                raise ValueError(f"duplicate source name: {source.name}")
            seen.add(source.name)
        return v

    @model_validator(mode="after")
    def _fill_defaults(self) -> ProgramSettings:
        if not self.rpc_urls and self.chain_id in DEFAULT_RPC_URLS:
            self.rpc_urls = [DEFAULT_RPC_URLS[self.chain_id]]
        if self.program_token == self.reference_token:
            raise ValueError("program_token and reference_token must differ")
        return self

    @property
    def resolved_data_dir(self) -> Path:
        return self.data_dir if self.data_dir is not None else get_data_dir()


def build_settings(overrides: dict[str, Any] | None = None) -> ProgramSettings:
    try:
        return ProgramSettings(**(overrides or {}))
    except ValidationError as exc:
        raise ConfigurationError(
            "invalid program settings", errors=exc.errors(include_url=False)
        ) from exc


def load_settings() -> ProgramSettings:
    """Settings from the ``program`` section of the loaded CONFIG."""
    program = dict(get_program_config())
    rpcs = get_rpc_urls()
    if rpcs:
        program["rpc_urls"] = rpcs
    return build_settings(program)
