"""
Decryption proofs: Ed25519 signatures over (request_id, cleartext).

The oracle signs with the authority's private key; the reveal coordinator
only ever holds the matching public key.
"""
import hashlib
from typing import Optional

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)

from umbra.shared.errors import ProofVerificationFailure

DOMAIN_TAG = b"umbra/decryption/v1"


def decryption_message(request_id: int, cleartext: bytes) -> bytes:
    """Bytes covered by a decryption proof."""
    return DOMAIN_TAG + int(request_id).to_bytes(32, "big") + bytes(cleartext)


class KmsSigner:
    """Signing authority used by the decryption oracle."""

    def __init__(self, private_key: Optional[Ed25519PrivateKey] = None):
        self._private_key = private_key or Ed25519PrivateKey.generate()

    @classmethod
    def from_secret(cls, secret: bytes) -> "KmsSigner":
        """Deterministic signer derived from a secret (for fixtures and demos)."""
        seed = hashlib.sha256(secret).digest()
        return cls(Ed25519PrivateKey.from_private_bytes(seed))

    @property
    def public_key_bytes(self) -> bytes:
        return self._private_key.public_key().public_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PublicFormat.Raw,
        )

    def sign(self, request_id: int, cleartext: bytes) -> bytes:
        return self._private_key.sign(decryption_message(request_id, cleartext))


class ProofVerifier:
    """Checks oracle proofs against a known authority public key."""

    def __init__(self, authority_public_key: bytes):
        self._public_key = Ed25519PublicKey.from_public_bytes(authority_public_key)

    def verify(self, request_id: int, cleartext: bytes, proof: bytes) -> None:
        """
        Verify a proof for exactly this (request_id, cleartext) pair.

        Raises:
            ProofVerificationFailure: if the signature does not validate
        """
        try:
            self._public_key.verify(bytes(proof), decryption_message(request_id, cleartext))
        except (InvalidSignature, ValueError, TypeError) as e:
            raise ProofVerificationFailure(
                f"Invalid decryption proof for request {request_id}"
            ) from e
