from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
from typing import Literal

from loguru import logger

from holder_rewards.core.errors import ConfigurationError
from holder_rewards.storage.base import RecordStore
from holder_rewards.storage.json_store import JsonNonceStore, JsonRecordStore
from holder_rewards.storage.models import (
    LeaderboardEntry,
    LeaderboardSnapshot,
    VerifiedHolder,
)
from holder_rewards.storage.sqlite_store import (
    DB_FILENAME,
    SqliteDatabase,
    SqliteNonceStore,
    SqliteRecordStore,
)
from holder_rewards.verification.nonces import NonceStore, now_ms


def open_stores(
    backend: Literal["json", "sqlite"],
    data_dir: Path,
    *,
    clock: Callable[[], int] = now_ms,
) -> tuple[RecordStore, NonceStore]:
    """Build the record and nonce stores for the configured backend."""
    data_dir = Path(data_dir)
    if backend == "json":
        logger.info(f"Using JSON storage in {data_dir}")
        return JsonRecordStore(data_dir), JsonNonceStore(data_dir, clock=clock)
    if backend == "sqlite":
        db = SqliteDatabase(data_dir / DB_FILENAME)
        logger.info(f"Using sqlite storage at {db.path}")
        return SqliteRecordStore(db), SqliteNonceStore(db, clock=clock)
    raise ConfigurationError("unknown storage backend", backend=backend)


__all__ = [
    "LeaderboardEntry",
    "LeaderboardSnapshot",
    "NonceStore",
    "RecordStore",
    "VerifiedHolder",
    "open_stores",
]
