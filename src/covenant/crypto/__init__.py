"""Cryptographic primitives — canonical hashing, signatures, ledger anchoring."""

from covenant.crypto.canonical import canonicalize, hash_concat, hash_value
from covenant.crypto.signatures import Ed25519Verifier, SignatureVerifier

__all__ = ["canonicalize", "hash_concat", "hash_value", "Ed25519Verifier", "SignatureVerifier"]
