from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Sequence

from holder_rewards.storage.models import (
    LeaderboardEntry,
    LeaderboardSnapshot,
    VerifiedHolder,
)


def check_unique_positions(entries: Sequence[LeaderboardEntry]) -> None:
    positions = [e.position for e in entries]
    if len(set(positions)) != len(positions):
        raise ValueError("leaderboard positions must be unique")


class RecordStore(ABC):
    """Persistence contract shared by the JSON and sqlite backends.

    ``upsert`` replaces a holder's record wholesale and is the only write path
    for holders. ``replace_leaderboard`` swaps the whole leaderboard at once;
    readers see either the old or the new board, never a half-written one.
    Lookups return ``None`` when nothing matches.
    """

    backend: str

    @abstractmethod
    def upsert(self, holder: VerifiedHolder) -> VerifiedHolder: ...

    @abstractmethod
    def get_by_wallet(self, wallet: str) -> VerifiedHolder | None: ...

    @abstractmethod
    def get_by_social_handle(self, handle: str) -> VerifiedHolder | None: ...

    @abstractmethod
    def list_holders(self) -> list[VerifiedHolder]: ...

    @abstractmethod
    def delete_holder(self, wallet: str) -> bool: ...

    @abstractmethod
    def replace_leaderboard(
        self,
        entries: Sequence[LeaderboardEntry],
        *,
        minimum_qualifying_value: float,
    ) -> LeaderboardSnapshot: ...

    @abstractmethod
    def get_leaderboard(self) -> LeaderboardSnapshot: ...

    def close(self) -> None:
        pass
