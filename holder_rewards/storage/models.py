from __future__ import annotations

from datetime import UTC, datetime

from pydantic import BaseModel, Field, field_validator


def utc_now() -> datetime:
    return datetime.now(UTC)


class VerifiedHolder(BaseModel):
    """Canonical verification record; one per lower-cased wallet."""

    wallet: str
    social_handle: str
    qualifying_value: float
    tier: str
    multiplier: int
    verified_at: datetime = Field(default_factory=utc_now)
    signature_verified: bool = True
    balance_complete: bool = True
    breakdown: dict[str, float] = Field(default_factory=dict)

    @field_validator("wallet")
    @classmethod
    def _lower_wallet(cls, v: str) -> str:
        return v.strip().lower()

    @field_validator("social_handle")
    @classmethod
    def _strip_handle(cls, v: str) -> str:
        return v.strip().lstrip("@")


class LeaderboardEntry(BaseModel):
    position: int = Field(ge=1)
    social_handle: str
    mindshare_score: float = 0.0

    @field_validator("social_handle")
    @classmethod
    def _strip_handle(cls, v: str) -> str:
        handle = v.strip().lstrip("@")
        if not handle:
            raise ValueError("social_handle must not be empty")
        return handle


class LeaderboardSnapshot(BaseModel):
    entries: list[LeaderboardEntry] = Field(default_factory=list)
    last_updated: datetime | None = None
    minimum_qualifying_value: float = 0.0
