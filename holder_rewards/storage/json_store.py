from __future__ import annotations

import json
import os
import tempfile
import threading
from collections.abc import Callable, Iterator, Sequence
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from filelock import FileLock, Timeout
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

USERS_FILENAME = "verified-users.json"
LEADERBOARD_FILENAME = "leaderboard.json"
NONCES_FILENAME = "nonces.json"

FILE_LOCK_TIMEOUT_S = 10.0


class _JsonFile:
    """One JSON document, replaced atomically on every save.

    Writers hold a sidecar ``.lock`` file for the whole load-modify-save cycle,
    so separate processes sharing a data dir do not lose each other's updates.
    """

    SCHEMA_VERSION = "1.0"

    def __init__(self, path: Path, default: Callable[[], dict[str, Any]]):
        self.path = path
        self.default = default
        self._flock = FileLock(f"{path}.lock", timeout=FILE_LOCK_TIMEOUT_S)

    @contextmanager
    def locked(self) -> Iterator[None]:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        try:
            with self._flock:
                yield
        except Timeout as exc:
            raise StorageError(
                f"Timed out waiting for lock on {self.path.name}", path=str(self.path)
            ) from exc

    def load(self) -> dict[str, Any]:
        if not self.path.exists():
            return self.default()
        try:
            data = json.loads(self.path.read_text())
        except (OSError, json.JSONDecodeError) as exc:
            raise StorageError(
                f"Failed to read {self.path.name}: {exc}", path=str(self.path)
            ) from exc
        if not isinstance(data, dict):
            raise StorageError(f"{self.path.name} is not a JSON object", path=str(self.path))
        return data

    def save(self, data: dict[str, Any]) -> None:
        data["schema_version"] = self.SCHEMA_VERSION
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(
                dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp"
            )
            try:
                with os.fdopen(fd, "w") as fh:
                    json.dump(data, fh, indent=2, default=str)
                os.replace(tmp, self.path)
            except BaseException:
                Path(tmp).unlink(missing_ok=True)
                raise
        except OSError as exc:
            raise StorageError(
                f"Failed to write {self.path.name}: {exc}", path=str(self.path)
            ) from exc


class JsonRecordStore(RecordStore):
    backend = "json"

    def __init__(self, data_dir: Path):
        self.data_dir = Path(data_dir)
        self._lock = threading.Lock()
        self._users = _JsonFile(self.data_dir / USERS_FILENAME, lambda: {"users": {}})
        self._board = _JsonFile(
            self.data_dir / LEADERBOARD_FILENAME,
            lambda: {
                "leaderboard": [],
                "last_updated": None,
                "minimum_qualifying_value": 0.0,
            },
        )

    @staticmethod
    def _normalize_address(address: str) -> str:
        return str(address).strip().lower()

    def _load_users(self) -> dict[str, Any]:
        data = self._users.load()
        if not isinstance(data.get("users"), dict):
            data["users"] = {}
        return data

    def upsert(self, holder: VerifiedHolder) -> VerifiedHolder:
        with self._lock, self._users.locked():
            data = self._load_users()
            data["users"][holder.wallet] = holder.model_dump(mode="json")
            self._users.save(data)
        return holder

    def get_by_wallet(self, wallet: str) -> VerifiedHolder | None:
        with self._lock:
            raw = self._load_users()["users"].get(self._normalize_address(wallet))
        return VerifiedHolder.model_validate(raw) if raw else None

    def get_by_social_handle(self, handle: str) -> VerifiedHolder | None:
        wanted = handle.strip().lstrip("@").lower()
        with self._lock:
            users = self._load_users()["users"]
        matches = [
            VerifiedHolder.model_validate(raw)
            for raw in users.values()
            if str(raw.get("social_handle", "")).lower() == wanted
        ]
        return max(matches, key=lambda h: h.verified_at, default=None)

    def list_holders(self) -> list[VerifiedHolder]:
        with self._lock:
            users = self._load_users()["users"]
        holders = [VerifiedHolder.model_validate(raw) for raw in users.values()]
        return sorted(holders, key=lambda h: h.qualifying_value, reverse=True)

    def delete_holder(self, wallet: str) -> bool:
        key = self._normalize_address(wallet)
        with self._lock, self._users.locked():
            data = self._load_users()
            if key not in data["users"]:
                return False
            del data["users"][key]
            self._users.save(data)
        logger.info(f"Deleted holder record {key}")
        return True

    def replace_leaderboard(
        self,
        entries: Sequence[LeaderboardEntry],
        *,
        minimum_qualifying_value: float,
    ) -> LeaderboardSnapshot:
        check_unique_positions(entries)
        snapshot = LeaderboardSnapshot(
            entries=sorted(entries, key=lambda e: e.position),
            last_updated=utc_now(),
            minimum_qualifying_value=float(minimum_qualifying_value),
        )
        payload = {
            "leaderboard": [e.model_dump(mode="json") for e in snapshot.entries],
            "last_updated": snapshot.last_updated.isoformat(),
            "minimum_qualifying_value": snapshot.minimum_qualifying_value,
        }
        # The rename in _JsonFile.save is atomic, so readers never see a
        # partially written board.
        with self._lock, self._board.locked():
            self._board.save(payload)
        return snapshot

    def get_leaderboard(self) -> LeaderboardSnapshot:
        with self._lock:
            data = self._board.load()
        return LeaderboardSnapshot(
            entries=[LeaderboardEntry.model_validate(e) for e in data.get("leaderboard") or []],
            last_updated=data.get("last_updated"),
            minimum_qualifying_value=float(data.get("minimum_qualifying_value") or 0.0),
        )


class JsonNonceStore(NonceStore):
    def __init__(self, data_dir: Path, *, clock: Callable[[], int] = now_ms):
        super().__init__(clock=clock)
        self._lock = threading.Lock()
        self._file = _JsonFile(Path(data_dir) / NONCES_FILENAME, lambda: {"nonces": {}})

    def _load(self) -> dict[str, Any]:
        data = self._file.load()
        if not isinstance(data.get("nonces"), dict):
            data["nonces"] = {}
        return data

    @staticmethod
    def _to_nonce(value: str, raw: dict[str, Any]) -> Nonce:
        return Nonce(
            value=value,
            wallet=raw["wallet"],
            issued_at=int(raw["issued_at"]),
            used_at=int(raw["used_at"]) if raw.get("used_at") is not None else None,
        )

    def get(self, value: str) -> Nonce | None:
        with self._lock:
            raw = self._load()["nonces"].get(value)
        return self._to_nonce(value, raw) if raw else None

    def _insert(self, nonce: Nonce) -> None:
        with self._lock, self._file.locked():
            data = self._load()
            data["nonces"][nonce.value] = {
                "wallet": nonce.wallet,
                "issued_at": nonce.issued_at,
                "used_at": nonce.used_at,
            }
            self._file.save(data)

    def _mark_used(self, value: str, wallet: str | None, used_at: int) -> Nonce | None:
        with self._lock, self._file.locked():
            data = self._load()
            raw = data["nonces"].get(value)
            if not raw or raw.get("used_at") is not None:
                return None
            if wallet is not None and raw.get("wallet") != wallet:
                return None
            raw["used_at"] = used_at
            self._file.save(data)
            return self._to_nonce(value, raw)

    def _delete_older_than(self, cutoff_ms: int) -> int:
        with self._lock, self._file.locked():
            data = self._load()
            before = len(data["nonces"])
            data["nonces"] = {
                k: v
                for k, v in data["nonces"].items()
                if self._to_nonce(k, v).last_touched() >= cutoff_ms
            }
            removed = before - len(data["nonces"])
            if removed:
                self._file.save(data)
            return removed
