from __future__ import annotations

import json
import sqlite3
import threading
from collections.abc import Callable, Iterator, Sequence
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from loguru import logger

from holder_rewards.core.errors import StorageError
from holder_rewards.storage.base import RecordStore, check_unique_positions
from holder_rewards.storage.models import (
    LeaderboardEntry,
    LeaderboardSnapshot,
    VerifiedHolder,
    utc_now,
)
from holder_rewards.verification.nonces import Nonce, NonceStore, now_ms

DB_FILENAME = "holder_rewards.db"

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS verified_holders (
      wallet TEXT PRIMARY KEY,
      social_handle TEXT NOT NULL,
      qualifying_value REAL NOT NULL,
      tier TEXT NOT NULL,
      multiplier INTEGER NOT NULL,
      verified_at TEXT NOT NULL,
      signature_verified INTEGER NOT NULL DEFAULT 1,
      balance_complete INTEGER NOT NULL DEFAULT 1,
      breakdown_json TEXT NOT NULL DEFAULT '{}'
    );
    """,
    "CREATE INDEX IF NOT EXISTS idx_holders_handle ON verified_holders(LOWER(social_handle));",
    """
    CREATE TABLE IF NOT EXISTS leaderboard (
      position INTEGER PRIMARY KEY,
      social_handle TEXT NOT NULL,
      mindshare_score REAL NOT NULL DEFAULT 0
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS leaderboard_meta (
      id INTEGER PRIMARY KEY CHECK (id = 1),
      last_updated TEXT NOT NULL,
      minimum_qualifying_value REAL NOT NULL
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS nonces (
      nonce TEXT PRIMARY KEY,
      wallet TEXT NOT NULL,
      issued_at INTEGER NOT NULL,
      used_at INTEGER
    );
    """,
)


class SqliteDatabase:
    """Shared connection for the record and nonce stores.

    One connection guarded by a lock; writes that span statements run inside
    ``transaction()`` and roll back as a unit.
    """

    def __init__(self, db_path: Path) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self.lock = threading.RLock()
        try:
            self.conn = sqlite3.connect(
                str(self._db_path),
                check_same_thread=False,
                isolation_level=None,  # autocommit
            )
            self.conn.row_factory = sqlite3.Row
            with self.lock:
                self._init_schema()
        except sqlite3.Error as exc:
            raise StorageError(f"Cannot open {self._db_path}: {exc}", path=str(self._db_path)) from exc

    @property
    def path(self) -> Path:
        return self._db_path

    def _init_schema(self) -> None:
        cur = self.conn.cursor()
        cur.execute("PRAGMA journal_mode=WAL;")
        for statement in _SCHEMA:
            cur.execute(statement)

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Cursor]:
        with self.lock:
            cur = self.conn.cursor()
            cur.execute("BEGIN IMMEDIATE;")
            try:
                yield cur
            except BaseException:
                cur.execute("ROLLBACK;")
                raise
            cur.execute("COMMIT;")

    def execute(self, sql: str, params: Sequence[Any] = ()) -> sqlite3.Cursor:
        with self.lock:
            try:
                return self.conn.execute(sql, params)
            except sqlite3.Error as exc:
                raise StorageError(f"sqlite error: {exc}", sql=sql.split()[0]) from exc

    def close(self) -> None:
        with self.lock:
            self.conn.close()


class SqliteRecordStore(RecordStore):
    backend = "sqlite"

    def __init__(self, db: SqliteDatabase) -> None:
        self.db = db

    @staticmethod
    def _row_to_holder(row: sqlite3.Row) -> VerifiedHolder:
        return VerifiedHolder(
            wallet=row["wallet"],
            social_handle=row["social_handle"],
            qualifying_value=float(row["qualifying_value"]),
            tier=row["tier"],
            multiplier=int(row["multiplier"]),
            verified_at=row["verified_at"],
            signature_verified=bool(row["signature_verified"]),
            balance_complete=bool(row["balance_complete"]),
            breakdown=json.loads(row["breakdown_json"] or "{}"),
        )

    def upsert(self, holder: VerifiedHolder) -> VerifiedHolder:
        self.db.execute(
            """
            INSERT INTO verified_holders(wallet, social_handle, qualifying_value, tier, multiplier,
                                         verified_at, signature_verified, balance_complete, breakdown_json)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(wallet) DO UPDATE SET
              social_handle = excluded.social_handle,
              qualifying_value = excluded.qualifying_value,
              tier = excluded.tier,
              multiplier = excluded.multiplier,
              verified_at = excluded.verified_at,
              signature_verified = excluded.signature_verified,
              balance_complete = excluded.balance_complete,
              breakdown_json = excluded.breakdown_json
            """,
            (
                holder.wallet,
                holder.social_handle,
                holder.qualifying_value,
                holder.tier,
                holder.multiplier,
                holder.verified_at.isoformat(),
                int(holder.signature_verified),
                int(holder.balance_complete),
                json.dumps(holder.breakdown, sort_keys=True),
            ),
        )
        return holder

    def get_by_wallet(self, wallet: str) -> VerifiedHolder | None:
        row = self.db.execute(
            "SELECT * FROM verified_holders WHERE wallet = ?",
            (str(wallet).strip().lower(),),
        ).fetchone()
        return self._row_to_holder(row) if row else None

    def get_by_social_handle(self, handle: str) -> VerifiedHolder | None:
        row = self.db.execute(
            "SELECT * FROM verified_holders WHERE LOWER(social_handle) = ? "
            "ORDER BY verified_at DESC LIMIT 1",
            (handle.strip().lstrip("@").lower(),),
        ).fetchone()
        return self._row_to_holder(row) if row else None

    def list_holders(self) -> list[VerifiedHolder]:
        rows = self.db.execute(
            "SELECT * FROM verified_holders ORDER BY qualifying_value DESC"
        ).fetchall()
        return [self._row_to_holder(r) for r in rows]

    def delete_holder(self, wallet: str) -> bool:
        cur = self.db.execute(
            "DELETE FROM verified_holders WHERE wallet = ?", (str(wallet).strip().lower(),)
        )
        deleted = int(cur.rowcount or 0) > 0
        if deleted:
            logger.info(f"Deleted holder record {wallet.lower()}")
        return deleted

    def replace_leaderboard(
        self,
        entries: Sequence[LeaderboardEntry],
        *,
        minimum_qualifying_value: float,
    ) -> LeaderboardSnapshot:
        check_unique_positions(entries)
        updated = utc_now()
        try:
            with self.db.transaction() as cur:
                cur.execute("DELETE FROM leaderboard;")
                cur.executemany(
                    "INSERT INTO leaderboard(position, social_handle, mindshare_score) VALUES (?, ?, ?)",
                    [(e.position, e.social_handle, e.mindshare_score) for e in entries],
                )
                cur.execute(
                    """
                    INSERT INTO leaderboard_meta(id, last_updated, minimum_qualifying_value)
                    VALUES (1, ?, ?)
                    ON CONFLICT(id) DO UPDATE SET
                      last_updated = excluded.last_updated,
                      minimum_qualifying_value = excluded.minimum_qualifying_value
                    """,
                    (updated.isoformat(), float(minimum_qualifying_value)),
                )
        except sqlite3.Error as exc:
            raise StorageError(
                f"Leaderboard refresh rolled back: {exc}", entries=len(entries)
            ) from exc
        return self.get_leaderboard()

    def get_leaderboard(self) -> LeaderboardSnapshot:
        with self.db.lock:
            rows = self.db.execute(
                "SELECT position, social_handle, mindshare_score FROM leaderboard ORDER BY position ASC"
            ).fetchall()
            meta = self.db.execute(
                "SELECT last_updated, minimum_qualifying_value FROM leaderboard_meta WHERE id = 1"
            ).fetchone()
        return LeaderboardSnapshot(
            entries=[
                LeaderboardEntry(
                    position=int(r["position"]),
                    social_handle=r["social_handle"],
                    mindshare_score=float(r["mindshare_score"]),
                )
                for r in rows
            ],
            last_updated=meta["last_updated"] if meta else None,
            minimum_qualifying_value=float(meta["minimum_qualifying_value"]) if meta else 0.0,
        )

    def close(self) -> None:
        self.db.close()


class SqliteNonceStore(NonceStore):
    def __init__(self, db: SqliteDatabase, *, clock: Callable[[], int] = now_ms) -> None:
        super().__init__(clock=clock)
        self.db = db

    @staticmethod
    def _row_to_nonce(row: sqlite3.Row) -> Nonce:
        return Nonce(
            value=row["nonce"],
            wallet=row["wallet"],
            issued_at=int(row["issued_at"]),
            used_at=int(row["used_at"]) if row["used_at"] is not None else None,
        )

    def get(self, value: str) -> Nonce | None:
        row = self.db.execute("SELECT * FROM nonces WHERE nonce = ?", (value,)).fetchone()
        return self._row_to_nonce(row) if row else None

    def _insert(self, nonce: Nonce) -> None:
        self.db.execute(
            "INSERT INTO nonces(nonce, wallet, issued_at, used_at) VALUES (?, ?, ?, ?)",
            (nonce.value, nonce.wallet, nonce.issued_at, nonce.used_at),
        )

    def _mark_used(self, value: str, wallet: str | None, used_at: int) -> Nonce | None:
        # Single conditional UPDATE: the row count tells us whether we won.
        with self.db.lock:
            cur = self.db.execute(
                """
                UPDATE nonces SET used_at = ?
                WHERE nonce = ? AND used_at IS NULL AND (? IS NULL OR wallet = ?)
                """,
                (used_at, value, wallet, wallet),
            )
            if int(cur.rowcount or 0) != 1:
                return None
            return self.get(value)

    def _delete_older_than(self, cutoff_ms: int) -> int:
        cur = self.db.execute(
            "DELETE FROM nonces WHERE COALESCE(used_at, issued_at) < ?", (cutoff_ms,)
        )
        return int(cur.rowcount or 0)
