"""Audit event model.

Each lifecycle transition of an attestation produces one AuditEvent. The
event hash chains to the previous event for the same attestation, so a
deleted, reordered or edited event breaks every hash after it.

The external ledger receipt is attached after the fact and is not part of
the hash: the chain is the tamper evidence, the receipt is a witness.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Optional

from covenant.crypto.canonical import canonicalize, prefixed, sha256_hex


# Sentinel previous hash for the first event of every attestation.
CHAIN_SEED = "sha256:" + "0" * 64


class AuditEventType(str, enum.Enum):
    CREATED = "created"
    SIGNED = "signed"
    FINALIZED = "finalized"


def chain_hash(previous_hash: str, event_type: AuditEventType, payload: dict[str, Any]) -> str:
    """hash(previous_event_hash ‖ event_type ‖ canonicalize(payload))."""
    data = previous_hash.encode("utf-8") + event_type.value.encode("utf-8") + canonicalize(payload)
    return prefixed(sha256_hex(data))


@dataclass(frozen=True)
class LifecycleEvent:
    """An event emitted by the signing engine, not yet chained."""
    event_type: AuditEventType
    payload: dict[str, Any]


@dataclass(frozen=True)
class AuditEvent:
    """A single immutable, chained event in an attestation's audit trail."""
    attestation_id: str
    event_type: AuditEventType
    sequence_no: int
    previous_hash: str
    event_hash: str
    payload: dict[str, Any] = field(default_factory=dict)
    created_at: str = ""
    external_receipt: Optional[str] = None

    def publish_bytes(self) -> bytes:
        """What goes to the external ledger. Excludes the receipt itself."""
        return canonicalize({
            "attestation_id": self.attestation_id,
            "event_type": self.event_type.value,
            "sequence_no": self.sequence_no,
            "previous_hash": self.previous_hash,
            "event_hash": self.event_hash,
            "created_at": self.created_at,
        })

    def to_dict(self) -> dict[str, Any]:
        return {
            "attestation_id": self.attestation_id,
            "event_type": self.event_type.value,
            "sequence_no": self.sequence_no,
            "previous_hash": self.previous_hash,
            "event_hash": self.event_hash,
            "payload": self.payload,
            "created_at": self.created_at,
            "external_receipt": self.external_receipt,
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> AuditEvent:
        return AuditEvent(
            attestation_id=data["attestation_id"],
            event_type=AuditEventType(data["event_type"]),
            sequence_no=int(data["sequence_no"]),
            previous_hash=data["previous_hash"],
            event_hash=data["event_hash"],
            payload=data.get("payload", {}),
            created_at=data.get("created_at", ""),
            external_receipt=data.get("external_receipt"),
        )
