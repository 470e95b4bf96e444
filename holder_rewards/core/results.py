from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Generic, TypeAlias, TypeVar

from holder_rewards.core.errors import ErrorKind, HolderRewardsError

T = TypeVar("T")


@dataclass(frozen=True)
class Success(Generic[T]):
    value: T
    ok: bool = field(default=True, init=False)


@dataclass(frozen=True)
class Failure:
    kind: ErrorKind
    message: str
    context: dict[str, Any] = field(default_factory=dict)
    ok: bool = field(default=False, init=False)

    @classmethod
    def from_error(cls, exc: HolderRewardsError) -> Failure:
        return cls(kind=exc.kind, message=exc.message, context=dict(exc.context))

    def to_dict(self) -> dict[str, Any]:
        return {"kind": str(self.kind), "message": self.message, "context": self.context}


Result: TypeAlias = Success[T] | Failure
