from holder_rewards.verification.nonces import MemoryNonceStore, Nonce, NonceStore
from holder_rewards.verification.signature import SignatureVerifier, VerifiedIdentity

__all__ = [
    "MemoryNonceStore",
    "Nonce",
    "NonceStore",
    "SignatureVerifier",
    "VerifiedIdentity",
]
