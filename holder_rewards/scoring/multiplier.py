"""Step function from qualifying value to a points multiplier."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import Literal

from holder_rewards.core.errors import ConfigurationError

CombinationPolicy = Literal["sum", "max"]


@dataclass(frozen=True)
class TierRule:
    name: str
    min_value: float
    multiplier: int


@dataclass(frozen=True)
class TierResolution:
    tier: str
    multiplier: int


class MultiplierEngine:
    """Resolve a value against rules ordered from highest minimum to lowest.

    The first rule whose ``min_value`` is ``<=`` the value wins, so a value
    sitting exactly on a boundary belongs to that boundary's tier. A value
    below every rule falls back to ``fallback``.
    """

    def __init__(
        self,
        rules: Sequence[TierRule],
        *,
        fallback: TierResolution = TierResolution(tier="none", multiplier=1),
    ) -> None:
        self.rules: tuple[TierRule, ...] = tuple(rules)
        self.fallback = fallback
        self._validate()

    def _validate(self) -> None:
        if not self.rules:
            raise ConfigurationError("tier table is empty")
        names = [r.name for r in self.rules]
        if len(set(names)) != len(names):
            raise ConfigurationError("tier names must be unique", tiers=names)
        for prev, cur in zip(self.rules, self.rules[1:]):
            if cur.min_value >= prev.min_value:
                raise ConfigurationError(
                    "tier table must be sorted by min_value, highest first",
                    tier=cur.name,
                    min_value=cur.min_value,
                    previous_min_value=prev.min_value,
                )
            if cur.multiplier > prev.multiplier:
                raise ConfigurationError(
                    "tier multipliers must not increase as min_value decreases",
                    tier=cur.name,
                    multiplier=cur.multiplier,
                    previous_multiplier=prev.multiplier,
                )
        for rule in self.rules:
            if rule.multiplier < 1:
                raise ConfigurationError(
                    "tier multiplier must be >= 1", tier=rule.name
                )

    def resolve_tier(self, value: float) -> TierResolution:
        for rule in self.rules:
            if value >= rule.min_value:
                return TierResolution(tier=rule.name, multiplier=rule.multiplier)
        return self.fallback

    def multiplier(self, value: float) -> int:
        return self.resolve_tier(value).multiplier

    def describe(self) -> list[dict[str, float | int | str]]:
        return [
            {"tier": r.name, "min_value": r.min_value, "multiplier": r.multiplier}
            for r in self.rules
        ]


def combine_values(values: Iterable[float], policy: CombinationPolicy) -> float:
    vals = [float(v) for v in values]
    if not vals:
        return 0.0
    if policy == "sum":
        return sum(vals)
    if policy == "max":
        return max(vals)
    raise ConfigurationError("unknown combination policy", policy=policy)
