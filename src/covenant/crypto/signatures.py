"""Signature verification — stateless check of a signature over bytes.

The engine never generates or stores private keys. It only consumes
``verify(message, signature, public_key) -> bool``. Key custody and
signing belong to the signer's own tooling.

The shipped verifier uses Ed25519 (RFC 8032). Public keys are carried as
lowercase hex of the 32-byte verify key.
"""

from __future__ import annotations

from typing import Protocol

from nacl.exceptions import BadSignatureError, CryptoError
from nacl.signing import SigningKey, VerifyKey


class SignatureVerifier(Protocol):
    def verify(self, message: bytes, signature: bytes, public_key: str) -> bool:
        ...


class Ed25519Verifier:
    """Verifies Ed25519 signatures against hex-encoded public keys.

    Malformed keys and signatures verify as False rather than raising;
    a signer cannot distinguish a bad key from a bad signature.
    """

    algorithm = "Ed25519"

    def verify(self, message: bytes, signature: bytes, public_key: str) -> bool:
        try:
            verify_key = VerifyKey(bytes.fromhex(public_key))
            verify_key.verify(message, signature)
        except (BadSignatureError, CryptoError, ValueError, TypeError):
            return False
        return True


def public_key_hex(seed_hex: str) -> str:
    """Derive the hex public key for a hex-encoded Ed25519 seed."""
    return SigningKey(bytes.fromhex(seed_hex)).verify_key.encode().hex()


def sign_message(seed_hex: str, message: bytes) -> bytes:
    """Sign with a hex-encoded Ed25519 seed.

    Local convenience for operators and tests; the engine itself never
    calls this.
    """
    return SigningKey(bytes.fromhex(seed_hex)).sign(message).signature
