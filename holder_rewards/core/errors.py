from __future__ import annotations

from enum import StrEnum
from typing import Any


class ErrorKind(StrEnum):
    REPLAY_OR_UNKNOWN_NONCE = "REPLAY_OR_UNKNOWN_NONCE"
    EXPIRED_CHALLENGE = "EXPIRED_CHALLENGE"
    SIGNATURE_MISMATCH = "SIGNATURE_MISMATCH"
    CHAIN_READ_ERROR = "CHAIN_READ_ERROR"
    UNSUPPORTED_PAIR = "UNSUPPORTED_PAIR"
    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"
    STORAGE_ERROR = "STORAGE_ERROR"
    INVALID_REQUEST = "INVALID_REQUEST"


class HolderRewardsError(Exception):
    """Base error. Every failure carries a ``kind`` and structured ``context``."""

    kind: ErrorKind

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context: dict[str, Any] = context

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": str(self.kind),
            "message": self.message,
            "context": self.context,
        }


class ReplayOrUnknownNonce(HolderRewardsError):
    kind = ErrorKind.REPLAY_OR_UNKNOWN_NONCE


class ExpiredChallenge(HolderRewardsError):
    kind = ErrorKind.EXPIRED_CHALLENGE


class SignatureMismatch(HolderRewardsError):
    kind = ErrorKind.SIGNATURE_MISMATCH


class ChainReadError(HolderRewardsError):
    """Transient; callers may retry."""

    kind = ErrorKind.CHAIN_READ_ERROR


class UnsupportedPair(HolderRewardsError):
    kind = ErrorKind.UNSUPPORTED_PAIR


class ConfigurationError(HolderRewardsError):
    kind = ErrorKind.CONFIGURATION_ERROR


class StorageError(HolderRewardsError):
    kind = ErrorKind.STORAGE_ERROR


class InvalidRequest(HolderRewardsError):
    """Malformed caller input (bad address, empty handle, bad leaderboard rows)."""

    kind = ErrorKind.INVALID_REQUEST
