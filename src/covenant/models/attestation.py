"""Attestation record model.

An attestation is a template-bound contract whose content hash is fixed at
creation and signed by every party. Signatures are append-only; once the
completion rule is met the attestation is finalized and an anchor hash
binds the content to the ordered signatures.

This module holds data only. Transition rules live in
``covenant.engine.state_machine``.
"""

from __future__ import annotations

import enum
import secrets
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from covenant.crypto.canonical import hash_concat, hash_value
from covenant.errors import ValidationError
from covenant.templates.registry import ContractTemplate
from covenant.templates.schemas import FieldSchema


TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%SZ"


class AttestationState(str, enum.Enum):
    DRAFT = "draft"
    SIGNING = "signing"
    COMPLETE = "complete"


def utc_timestamp(now: Optional[datetime] = None) -> str:
    return (now or datetime.now(timezone.utc)).strftime(TIMESTAMP_FORMAT)


def new_attestation_id() -> str:
    return f"att_{int(time.time() * 1000)}_{secrets.token_hex(8)}"


def signing_message(content_hash: str) -> bytes:
    """The exact bytes every party signs."""
    return content_hash.encode("utf-8")


def compute_content_hash(subject: str, action: str, fields: dict[str, Any]) -> str:
    return hash_value({"subject": subject, "action": action, "fields": fields})


@dataclass(frozen=True)
class SignerInfo:
    """What a signer declares alongside their signature."""
    key_role: str
    name: str = "Anonymous"


@dataclass(frozen=True)
class SignatureEntry:
    """One collected signature. Immutable once appended."""
    pubkey: str
    key_role: str
    signer_name: str
    signature: bytes
    signed_at: str
    verified: bool = True

    def export(self) -> dict[str, Any]:
        return {
            "pubkey": self.pubkey,
            "key_role": self.key_role,
            "signer_name": self.signer_name,
            "signature_hex": self.signature.hex(),
            "signed_at": self.signed_at,
        }

    def entry_hash(self) -> str:
        return hash_value(self.export())

    @staticmethod
    def from_export(data: dict[str, Any], verified: bool = False) -> SignatureEntry:
        return SignatureEntry(
            pubkey=data["pubkey"],
            key_role=data["key_role"],
            signer_name=data["signer_name"],
            signature=bytes.fromhex(data["signature_hex"]),
            signed_at=data["signed_at"],
            verified=verified,
        )


def compute_anchor_hash(content_hash: str, signatures: list[SignatureEntry]) -> str:
    """hash(content_hash ‖ ordered signature hashes)."""
    return hash_concat(content_hash, *(s.entry_hash() for s in signatures))


@dataclass
class Attestation:
    """A multi-party signed contract bound to one template.

    ``content_hash`` is computed once and never recomputed; it is what
    every signature signs. ``anchor_hash`` and ``finalized_at`` are set
    together, exactly once, when the attestation completes.
    """
    attestation_id: str
    subject: str
    action: str
    fields: FieldSchema
    content_hash: str
    created_at: str
    state: AttestationState = AttestationState.DRAFT
    signatures: list[SignatureEntry] = field(default_factory=list)
    finalized_at: Optional[str] = None
    anchor_hash: Optional[str] = None

    @property
    def finalized(self) -> bool:
        return self.state == AttestationState.COMPLETE

    @property
    def signer_pubkeys(self) -> set[str]:
        return {s.pubkey for s in self.signatures}

    def recompute_anchor_hash(self) -> str:
        return compute_anchor_hash(self.content_hash, self.signatures)

    def export(self) -> dict[str, Any]:
        """Canonical export. Anchor fields appear only once finalized."""
        data: dict[str, Any] = {
            "id": self.attestation_id,
            "subject": self.subject,
            "action": self.action,
            "fields": self.fields.to_dict(),
            "content_hash": self.content_hash,
            "signatures": [s.export() for s in self.signatures],
        }
        if self.anchor_hash is not None:
            data["anchor_hash"] = self.anchor_hash
        if self.finalized_at is not None:
            data["finalized_at"] = self.finalized_at
        return data

    def to_record(self) -> dict[str, Any]:
        """Persisted form: the export plus bookkeeping the export omits."""
        record = self.export()
        record["created_at"] = self.created_at
        record["state"] = self.state.value
        record["signatures_verified"] = [s.verified for s in self.signatures]
        return record

    @staticmethod
    def from_export(data: dict[str, Any], template: ContractTemplate) -> Attestation:
        """Rebuild from an export or a persisted record.

        Fail-closed: the fields are re-validated against the template, and
        both the content hash and (when present) the anchor hash must
        recompute to the stored values.
        """
        if data.get("action") != template.action:
            raise ValidationError(
                f"Export is for action {data.get('action')!r}, template is {template.action!r}"
            )
        fields = template.parse_fields(data["fields"])
        expected = compute_content_hash(data["subject"], data["action"], fields.to_dict())
        if expected != data["content_hash"]:
            raise ValidationError(
                "Content hash does not match fields",
                problems=[f"expected {expected}, stored {data['content_hash']}"],
            )

        verified_flags = data.get("signatures_verified") or []
        signatures = [
            SignatureEntry.from_export(
                s, verified=bool(verified_flags[i]) if i < len(verified_flags) else False
            )
            for i, s in enumerate(data.get("signatures", []))
        ]

        finalized_at = data.get("finalized_at")
        attestation = Attestation(
            attestation_id=data["id"],
            subject=data["subject"],
            action=data["action"],
            fields=fields,
            content_hash=data["content_hash"],
            created_at=data.get("created_at", ""),
            state=AttestationState.COMPLETE if finalized_at else AttestationState.SIGNING,
            signatures=signatures,
            finalized_at=finalized_at,
            anchor_hash=data.get("anchor_hash"),
        )
        if attestation.anchor_hash is not None:
            recomputed = attestation.recompute_anchor_hash()
            if recomputed != attestation.anchor_hash:
                raise ValidationError(
                    "Anchor hash does not match signatures",
                    problems=[f"expected {recomputed}, stored {attestation.anchor_hash}"],
                )
        return attestation
