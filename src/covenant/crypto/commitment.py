"""Privacy commitment layer — commit to a number, prove it meets a threshold.

The prover commits to ``actual_value`` against a public threshold and
label, then produces a blinded proof:

    blinded_value     = (actual_value * r) mod M
    blinded_threshold = (threshold * r) mod M

for a random blinding factor ``r`` and fixed modulus ``M``. The verifier
checks the proof is complete, bound to the commitment, and that a claim of
compliance agrees with the blinded comparison.

This is a lightweight blinded-commitment scheme, not a sound
zero-knowledge proof:

- ``r`` is drawn from [BLINDING_MIN, BLINDING_MAX] and ``r`` cancels out.
  While neither product wraps the modulus, anyone holding the export
  recovers the value exactly as
  ``blinded_value * public_threshold / blinded_threshold``.
- Once ``value * r`` or ``threshold * r`` reaches M the product wraps,
  the blinded comparison no longer tracks the real one, and an honest
  proof can fail verification. Magnitudes up to ``(M - 1) // BLINDING_MAX``
  (100 for the defaults) never wrap.
- A verifier that only checks one direction accepts a dishonest
  ``claimed_compliant = false``. ``verify(strict=True)`` closes that gap.
"""

from __future__ import annotations

import random
import secrets
from datetime import datetime
from decimal import Decimal
from typing import Iterable, Optional

import structlog

from covenant.crypto.canonical import HASH_PREFIX, hash_concat, hash_value
from covenant.models.attestation import utc_timestamp
from covenant.models.commitment import (
    BatchProof,
    Commitment,
    CommitmentSecret,
    Number,
    Proof,
)

logger = structlog.get_logger(__name__)

MODULUS = Decimal(1_000_000)
BLINDING_MIN = 1000
BLINDING_MAX = 9999
NONCE_BYTES = 16
CHALLENGE_BYTES = 32


def _decimal(value: Number, name: str) -> Decimal:
    if isinstance(value, bool) or not isinstance(value, (int, float, Decimal)):
        raise ValueError(f"{name} must be a number, got {type(value).__name__}")
    result = Decimal(str(value))
    if not result.is_finite():
        raise ValueError(f"{name} must be finite, got {value}")
    return result


def commitment_hash_for(value: Number, threshold: Number, label: str, nonce: str) -> str:
    """hash(actual_value ‖ public_threshold ‖ public_label ‖ nonce)."""
    return hash_value([value, threshold, label, nonce])


def _is_hash(value: object) -> bool:
    if not isinstance(value, str) or not value.startswith(HASH_PREFIX):
        return False
    digest = value[len(HASH_PREFIX):]
    return len(digest) == 64 and all(c in "0123456789abcdef" for c in digest)


class CommitmentLayer:
    """Builds commitments and blinded threshold proofs.

    Usage:
        layer = CommitmentLayer()
        commitment, secret = layer.commit(0.8, 5.0, "benzene")
        proof = layer.prove(secret)
        assert layer.verify(commitment, proof)

    Pass a seeded ``random.Random`` as ``rng`` for reproducible output in
    tests; the default draws from the operating system.
    """

    def __init__(
        self,
        rng: Optional[random.Random] = None,
        modulus: Decimal = MODULUS,
    ) -> None:
        self._rng = rng or secrets.SystemRandom()
        self._modulus = modulus

    # ------------------------------------------------------------------
    # Prover side
    # ------------------------------------------------------------------

    def commit(
        self,
        actual_value: Number,
        threshold: Number,
        label: str,
        now: Optional[datetime] = None,
    ) -> tuple[Commitment, CommitmentSecret]:
        """Commit to a hidden value. The secret is returned separately.

        Callers must not persist the secret next to the commitment.
        """
        _decimal(actual_value, "actual_value")
        _decimal(threshold, "threshold")
        if not isinstance(label, str) or not label:
            raise ValueError("label must be a non-empty string")

        nonce = self._random_hex(NONCE_BYTES)
        commitment = Commitment(
            commitment_hash=commitment_hash_for(actual_value, threshold, label, nonce),
            public_threshold=threshold,
            public_label=label,
            created_at=utc_timestamp(now),
        )
        secret = CommitmentSecret(
            actual_value=actual_value,
            nonce=nonce,
            threshold=threshold,
            label=label,
        )
        logger.debug("commitment_created", label=label, commitment_hash=commitment.commitment_hash)
        return commitment, secret

    def prove(self, secret: CommitmentSecret, challenge: Optional[str] = None) -> Proof:
        """Produce a blinded proof that the committed value meets the threshold."""
        if challenge is None:
            challenge = self._random_hex(CHALLENGE_BYTES)

        value = _decimal(secret.actual_value, "actual_value")
        threshold = _decimal(secret.threshold, "threshold")
        r = self._blinding_factor()

        blinded_value = (value * r) % self._modulus
        blinded_threshold = (threshold * r) % self._modulus

        return Proof(
            commitment_hash=commitment_hash_for(
                secret.actual_value, secret.threshold, secret.label, secret.nonce
            ),
            blinded_value=blinded_value,
            blinded_threshold=blinded_threshold,
            proof_hash=hash_value([blinded_value, blinded_threshold, challenge, secret.nonce]),
            challenge=challenge,
            claimed_compliant=value <= threshold,
        )

    def prove_batch(
        self,
        entries: Iterable[tuple[Number, Number, str]],
        challenge: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> tuple[BatchProof, list[CommitmentSecret]]:
        """Commit and prove several facts under one shared challenge."""
        entries = list(entries)
        if not entries:
            raise ValueError("prove_batch needs at least one entry")
        if challenge is None:
            challenge = self._random_hex(CHALLENGE_BYTES)

        items: list[tuple[Commitment, Proof]] = []
        secrets_out: list[CommitmentSecret] = []
        for value, threshold, label in entries:
            commitment, secret = self.commit(value, threshold, label, now=now)
            items.append((commitment, self.prove(secret, challenge)))
            secrets_out.append(secret)

        batch = BatchProof(
            items=tuple(items),
            challenge=challenge,
            batch_hash=hash_concat(*(c.commitment_hash for c, _ in items)),
            overall_compliant=all(p.claimed_compliant for _, p in items),
            created_at=utc_timestamp(now),
        )
        return batch, secrets_out

    # ------------------------------------------------------------------
    # Verifier side
    # ------------------------------------------------------------------

    def verify(self, commitment: Commitment, proof: Proof, strict: bool = False) -> bool:
        """Check a proof against the public commitment.

        Default mode enforces ``claimed_compliant => blinded_value <=
        blinded_threshold``. ``strict`` also rejects a non-compliance claim
        that the blinded comparison contradicts.
        """
        if not self._structurally_complete(commitment, proof):
            logger.info("proof_incomplete", commitment_hash=commitment.commitment_hash)
            return False
        if proof.commitment_hash != commitment.commitment_hash:
            logger.info(
                "proof_commitment_mismatch",
                commitment_hash=commitment.commitment_hash,
                proof_commitment_hash=proof.commitment_hash,
            )
            return False

        blinded_ok = proof.blinded_value <= proof.blinded_threshold
        if proof.claimed_compliant and not blinded_ok:
            logger.info("proof_inconsistent", commitment_hash=commitment.commitment_hash)
            return False
        if strict and proof.claimed_compliant != blinded_ok:
            logger.info(
                "proof_claim_contradicted", commitment_hash=commitment.commitment_hash
            )
            return False
        return True

    def verify_batch(self, batch: BatchProof, strict: bool = False) -> bool:
        if not batch.items:
            return False
        if any(p.challenge != batch.challenge for _, p in batch.items):
            return False
        expected_hash = hash_concat(*(c.commitment_hash for c, _ in batch.items))
        if expected_hash != batch.batch_hash:
            return False
        if batch.overall_compliant != all(p.claimed_compliant for _, p in batch.items):
            return False
        return all(self.verify(c, p, strict=strict) for c, p in batch.items)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _blinding_factor(self) -> int:
        return self._rng.randint(BLINDING_MIN, BLINDING_MAX)

    def _random_hex(self, nbytes: int) -> str:
        return f"{self._rng.getrandbits(nbytes * 8):0{nbytes * 2}x}"

    @staticmethod
    def _structurally_complete(commitment: Commitment, proof: Proof) -> bool:
        if not _is_hash(commitment.commitment_hash) or not _is_hash(proof.proof_hash):
            return False
        if not isinstance(proof.challenge, str) or not proof.challenge:
            return False
        if not isinstance(proof.claimed_compliant, bool):
            return False
        for value in (proof.blinded_value, proof.blinded_threshold):
            if not isinstance(value, Decimal) or not value.is_finite():
                return False
        return True
