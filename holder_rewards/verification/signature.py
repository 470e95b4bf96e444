from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from string import Formatter

from eth_account import Account
from eth_account.messages import encode_defunct
from eth_utils import is_address
from loguru import logger

from holder_rewards.core.constants.base import (
    CHALLENGE_MAX_AGE_MS,
    CHALLENGE_MAX_FUTURE_SKEW_MS,
)
from holder_rewards.core.constants.program import CHALLENGE_TEMPLATE, PROGRAM_NAME
from holder_rewards.core.errors import (
    ConfigurationError,
    ExpiredChallenge,
    SignatureMismatch,
)
from holder_rewards.verification.nonces import NonceStore, now_ms


REQUIRED_TEMPLATE_FIELDS = frozenset({"wallet", "nonce", "timestamp"})
ALLOWED_TEMPLATE_FIELDS = REQUIRED_TEMPLATE_FIELDS | {"program"}


def validate_challenge_template(template: str) -> str:
    """Reject templates that would not bind the message to wallet, nonce and time."""
    try:
        fields = {name for _, name, _, _ in Formatter().parse(template) if name is not None}
    except ValueError as exc:
        raise ValueError(f"malformed challenge template: {exc}") from exc
    missing = REQUIRED_TEMPLATE_FIELDS - fields
    if missing:
        raise ValueError(
            f"challenge template is missing placeholders: {sorted(missing)}"
        )
    unknown = fields - ALLOWED_TEMPLATE_FIELDS
    if unknown:
        raise ValueError(f"challenge template has unknown placeholders: {sorted(unknown)}")
    return template


@dataclass(frozen=True)
class VerifiedIdentity:
    wallet: str
    nonce: str
    timestamp: int
    verified_at: int


class SignatureVerifier:
    """Checks an EIP-191 ``personal_sign`` signature over the challenge message.

    Checks run in a fixed order: freshness, then signer recovery, then nonce
    consumption. A nonce is only spent on a message the wallet really signed,
    and the identity is only returned once the nonce is spent.
    """

    def __init__(
        self,
        nonces: NonceStore,
        *,
        program_name: str = PROGRAM_NAME,
        template: str = CHALLENGE_TEMPLATE,
        max_age_ms: int = CHALLENGE_MAX_AGE_MS,
        max_future_skew_ms: int = CHALLENGE_MAX_FUTURE_SKEW_MS,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.nonces = nonces
        self.program_name = program_name
        try:
            self.template = validate_challenge_template(template)
        except ValueError as exc:
            raise ConfigurationError(str(exc)) from exc
        self.max_age_ms = int(max_age_ms)
        self.max_future_skew_ms = int(max_future_skew_ms)
        self.clock = clock

    def build_message(self, wallet: str, nonce: str, timestamp: int) -> str:
        # Wallet is lower-cased so checksum and plain spellings sign the same text.
        return self.template.format(
            program=self.program_name,
            wallet=wallet.lower(),
            nonce=nonce,
            timestamp=int(timestamp),
        )

    def check_freshness(self, timestamp: int) -> None:
        age = self.clock() - int(timestamp)
        if age > self.max_age_ms:
            raise ExpiredChallenge(
                "challenge has expired", timestamp=int(timestamp), age_ms=age
            )
        if age < -self.max_future_skew_ms:
            raise ExpiredChallenge(
                "challenge timestamp is in the future",
                timestamp=int(timestamp),
                age_ms=age,
            )

    def recover_signer(self, message: str, signature: str | bytes) -> str:
        try:
            return Account.recover_message(
                encode_defunct(text=message), signature=signature
            )
        except Exception as exc:  # noqa: BLE001
            raise SignatureMismatch(
                "signature could not be decoded", reason=str(exc)
            ) from exc

    def verify(
        self, wallet: str, nonce: str, timestamp: int, signature: str | bytes
    ) -> VerifiedIdentity:
        if not is_address(wallet):
            raise SignatureMismatch("wallet is not a valid address", wallet=wallet)

        self.check_freshness(timestamp)

        message = self.build_message(wallet, nonce, timestamp)
        recovered = self.recover_signer(message, signature)
        if recovered.lower() != wallet.lower():
            logger.warning(f"Signature mismatch: claimed {wallet}, recovered {recovered}")
            raise SignatureMismatch(
                "recovered signer does not match wallet",
                wallet=wallet.lower(),
                recovered=recovered.lower(),
            )

        self.nonces.consume(nonce, wallet=wallet)
        logger.info(f"Signature verified for {wallet.lower()}")
        return VerifiedIdentity(
            wallet=wallet.lower(),
            nonce=nonce,
            timestamp=int(timestamp),
            verified_at=self.clock(),
        )
