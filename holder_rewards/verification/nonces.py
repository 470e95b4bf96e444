from __future__ import annotations

import secrets
import threading
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, replace

from loguru import logger

from holder_rewards.core.constants.base import NONCE_BYTES, NONCE_RETENTION_MS
from holder_rewards.core.errors import ReplayOrUnknownNonce


def now_ms() -> int:
    return int(time.time() * 1000)


def new_nonce_value() -> str:
    return secrets.token_hex(NONCE_BYTES)


@dataclass(frozen=True)
class Nonce:
    value: str
    wallet: str
    issued_at: int
    used_at: int | None = None

    @property
    def used(self) -> bool:
        return self.used_at is not None

    def last_touched(self) -> int:
        return self.used_at if self.used_at is not None else self.issued_at


class NonceStore(ABC):
    """Single-use challenge tokens.

    ``consume`` is the only transition from unused to used and must be an
    atomic check-and-set: with concurrent callers on one nonce, exactly one
    succeeds.
    """

    def __init__(self, *, clock: Callable[[], int] = now_ms) -> None:
        self.clock = clock

    def issue(self, wallet: str) -> Nonce:
        nonce = Nonce(value=new_nonce_value(), wallet=wallet.lower(), issued_at=self.clock())
        self._insert(nonce)
        logger.debug(f"Issued nonce for {nonce.wallet}")
        return nonce

    def consume(self, value: str, *, wallet: str | None = None) -> Nonce:
        used = self._mark_used(value, wallet.lower() if wallet else None, self.clock())
        if used is None:
            logger.warning(f"Rejected nonce {value[:8]}... (replayed or unknown)")
            raise ReplayOrUnknownNonce(
                "nonce is unknown or has already been used", nonce=value, wallet=wallet
            )
        return used

    def purge_expired(self, max_age_ms: int = NONCE_RETENTION_MS) -> int:
        """Best-effort cleanup; never raises."""
        cutoff = self.clock() - int(max_age_ms)
        try:
            removed = self._delete_older_than(cutoff)
        except Exception as exc:  # noqa: BLE001
            logger.warning(f"Nonce cleanup failed: {exc}")
            return 0
        if removed:
            logger.info(f"Purged {removed} expired nonces")
        return removed

    @abstractmethod
    def get(self, value: str) -> Nonce | None: ...

    @abstractmethod
    def _insert(self, nonce: Nonce) -> None: ...

    @abstractmethod
    def _mark_used(self, value: str, wallet: str | None, used_at: int) -> Nonce | None:
        """Stamp ``used_at`` if the nonce exists, is unused and matches ``wallet``."""

    @abstractmethod
    def _delete_older_than(self, cutoff_ms: int) -> int: ...


class MemoryNonceStore(NonceStore):
    def __init__(self, *, clock: Callable[[], int] = now_ms) -> None:
        super().__init__(clock=clock)
        self._lock = threading.Lock()
        self._nonces: dict[str, Nonce] = {}

    def get(self, value: str) -> Nonce | None:
        with self._lock:
            return self._nonces.get(value)

    def _insert(self, nonce: Nonce) -> None:
        with self._lock:
            self._nonces[nonce.value] = nonce

    def _mark_used(self, value: str, wallet: str | None, used_at: int) -> Nonce | None:
        with self._lock:
            current = self._nonces.get(value)
            if current is None or current.used:
                return None
            if wallet is not None and current.wallet != wallet:
                return None
            used = replace(current, used_at=used_at)
            self._nonces[value] = used
            return used

    def _delete_older_than(self, cutoff_ms: int) -> int:
        with self._lock:
            stale = [k for k, n in self._nonces.items() if n.last_touched() < cutoff_ms]
            for key in stale:
                del self._nonces[key]
            return len(stale)
