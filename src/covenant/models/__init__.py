"""Core data models for Covenant."""

from covenant.models.attestation import (
    Attestation,
    AttestationState,
    SignatureEntry,
    SignerInfo,
)
from covenant.models.audit import AuditEvent, AuditEventType
from covenant.models.commitment import BatchProof, Commitment, CommitmentSecret, Proof

__all__ = [
    "Attestation",
    "AttestationState",
    "SignatureEntry",
    "SignerInfo",
    "AuditEvent",
    "AuditEventType",
    "BatchProof",
    "Commitment",
    "CommitmentSecret",
    "Proof",
]
