"""Privacy commitment and proof models.

A Commitment binds a hidden numeric value to a public threshold and label
through a random nonce. The prover keeps the CommitmentSecret; only the
Commitment and the Proof are ever shared.

The export helpers are the only sanctioned way to serialize these objects,
and none of them can emit the secret.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

Number = int | float | Decimal


@dataclass(frozen=True)
class Commitment:
    """Public half of a commitment."""
    commitment_hash: str
    public_threshold: Number
    public_label: str
    created_at: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "commitment_hash": self.commitment_hash,
            "public_threshold": self.public_threshold,
            "public_label": self.public_label,
            "created_at": self.created_at,
        }


@dataclass(frozen=True)
class CommitmentSecret:
    """Private half of a commitment. Held by the prover only.

    ``threshold`` and ``label`` are public but kept here so a proof can be
    produced from the secret alone.
    """
    actual_value: Number = field(repr=False)
    nonce: str = field(repr=False)
    threshold: Number = 0
    label: str = ""


@dataclass(frozen=True)
class Proof:
    commitment_hash: str
    blinded_value: Decimal
    blinded_threshold: Decimal
    proof_hash: str
    challenge: str
    claimed_compliant: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "commitment_hash": self.commitment_hash,
            "blinded_value": self.blinded_value,
            "blinded_threshold": self.blinded_threshold,
            "proof_hash": self.proof_hash,
            "challenge": self.challenge,
            "claimed_compliant": self.claimed_compliant,
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> Proof:
        return Proof(
            commitment_hash=data["commitment_hash"],
            blinded_value=Decimal(str(data["blinded_value"])),
            blinded_threshold=Decimal(str(data["blinded_threshold"])),
            proof_hash=data["proof_hash"],
            challenge=data["challenge"],
            claimed_compliant=bool(data["claimed_compliant"]),
        )


@dataclass(frozen=True)
class BatchProof:
    """Proofs for several facts that share one challenge."""
    items: tuple[tuple[Commitment, Proof], ...]
    challenge: str
    batch_hash: str
    overall_compliant: bool
    created_at: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "items": [export_proof(c, p) for c, p in self.items],
            "challenge": self.challenge,
            "batch_hash": self.batch_hash,
            "overall_compliant": self.overall_compliant,
            "created_at": self.created_at,
        }


def export_proof(commitment: Commitment, proof: Proof) -> dict[str, Any]:
    """Canonical proof export. Never contains the secret."""
    return {
        "commitment_hash": commitment.commitment_hash,
        "public_threshold": commitment.public_threshold,
        "public_label": commitment.public_label,
        "blinded_value": proof.blinded_value,
        "blinded_threshold": proof.blinded_threshold,
        "proof_hash": proof.proof_hash,
        "challenge": proof.challenge,
        "claimed_compliant": proof.claimed_compliant,
    }


def import_proof(data: dict[str, Any]) -> tuple[Commitment, Proof]:
    """Rebuild the verifier's view from a proof export."""
    commitment = Commitment(
        commitment_hash=data["commitment_hash"],
        public_threshold=data["public_threshold"],
        public_label=data["public_label"],
        created_at=data.get("created_at", ""),
    )
    proof = Proof.from_dict(data)
    return commitment, proof
