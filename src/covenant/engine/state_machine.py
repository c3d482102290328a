"""Signing state machine — enforces the attestation lifecycle.

Lifecycle:
    DRAFT → SIGNING → COMPLETE
    DRAFT → COMPLETE            (templates that need no signatures)

COMPLETE is terminal. There is no path back.

Every operation here either returns the lifecycle events it produced or
raises before touching the attestation. Nothing is half-applied: checks
run first, then the attestation is mutated in one step.

Signature checks run in a fixed order so the error a caller sees is
stable: state, duplicate key, role, eligibility, cryptographic validity.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Mapping, Optional

import structlog

from covenant.crypto.signatures import SignatureVerifier
from covenant.errors import (
    DuplicateSigner,
    InvalidSignature,
    NotInSigningState,
    RoleMismatch,
    SigningError,
    UnknownSigner,
)
from covenant.models.attestation import (
    Attestation,
    AttestationState,
    SignatureEntry,
    SignerInfo,
    compute_anchor_hash,
    compute_content_hash,
    new_attestation_id,
    signing_message,
    utc_timestamp,
)
from covenant.models.audit import AuditEventType, LifecycleEvent
from covenant.templates.registry import ContractTemplate, TemplateRegistry

logger = structlog.get_logger(__name__)


# Legal transitions: {from_state: {allowed_to_states}}
_TRANSITIONS: dict[AttestationState, set[AttestationState]] = {
    AttestationState.DRAFT: {AttestationState.SIGNING, AttestationState.COMPLETE},
    AttestationState.SIGNING: {AttestationState.COMPLETE},
    AttestationState.COMPLETE: set(),
}


class TransitionError(Exception):
    """Raised when a state transition is not allowed."""


class SigningStateMachine:
    """Creates attestations and applies signatures to them.

    Usage:
        machine = SigningStateMachine(registry, Ed25519Verifier())
        attestation, events = machine.create("publishing-split", fields)
        events = machine.add_signature(attestation, pubkey, sig, SignerInfo("property", "Ana"))
        report = machine.verify_all(attestation)
    """

    def __init__(self, registry: TemplateRegistry, verifier: SignatureVerifier) -> None:
        self._registry = registry
        self._verifier = verifier

    @staticmethod
    def validate_transition(attestation: Attestation, target: AttestationState) -> list[str]:
        """Check if a transition is valid. Returns errors (empty = OK)."""
        if target not in _TRANSITIONS[attestation.state]:
            return [
                f"{attestation.attestation_id}: illegal transition "
                f"{attestation.state.value} → {target.value}"
            ]
        return []

    def template_for(self, attestation: Attestation) -> ContractTemplate:
        return self._registry.get(attestation.action)

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create(
        self,
        action: str,
        fields: Mapping[str, Any],
        subject: Optional[str] = None,
        attestation_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> tuple[Attestation, list[LifecycleEvent]]:
        """Create an attestation from a template.

        Raises ValidationError if the action is unknown or the fields do not
        exactly match the template's schema.
        """
        template = self._registry.get(action)
        parsed = template.parse_fields(fields)
        subject = subject or f"contract:{action}"
        content_hash = compute_content_hash(subject, action, parsed.to_dict())

        attestation = Attestation(
            attestation_id=attestation_id or new_attestation_id(),
            subject=subject,
            action=action,
            fields=parsed,
            content_hash=content_hash,
            created_at=utc_timestamp(now),
        )
        required = template.required_signatures(parsed)
        events = [
            LifecycleEvent(
                AuditEventType.CREATED,
                {
                    "attestation_id": attestation.attestation_id,
                    "subject": subject,
                    "action": action,
                    "template_version": template.version,
                    "content_hash": content_hash,
                    "required_signatures": required,
                },
            )
        ]

        if required == 0:
            events.append(self._finalize(attestation, now))
        else:
            self._transition(attestation, AttestationState.SIGNING)

        logger.info(
            "attestation_created",
            attestation_id=attestation.attestation_id,
            action=action,
            required_signatures=required,
            state=attestation.state.value,
        )
        return attestation, events

    # ------------------------------------------------------------------
    # Signing
    # ------------------------------------------------------------------

    def check_signature(
        self,
        attestation: Attestation,
        pubkey: str,
        signature: bytes,
        signer_info: SignerInfo,
    ) -> None:
        """Raise the first signing-protocol violation, if any."""
        template = self.template_for(attestation)

        if attestation.state != AttestationState.SIGNING:
            raise NotInSigningState(attestation.attestation_id, attestation.state.value)
        if pubkey in attestation.signer_pubkeys:
            raise DuplicateSigner(attestation.attestation_id, pubkey)
        if not template.accepts_role(signer_info.key_role):
            raise RoleMismatch(
                attestation.action,
                [r.value for r in template.key_roles],
                signer_info.key_role,
            )
        eligible = template.eligible_signers(attestation.fields)
        if pubkey not in eligible:
            raise UnknownSigner(attestation.attestation_id, pubkey, eligible)
        if not self._verifier.verify(
            signing_message(attestation.content_hash), signature, pubkey
        ):
            raise InvalidSignature(attestation.attestation_id, pubkey, attestation.content_hash)

    def add_signature(
        self,
        attestation: Attestation,
        pubkey: str,
        signature: bytes,
        signer_info: SignerInfo,
        now: Optional[datetime] = None,
    ) -> list[LifecycleEvent]:
        """Append a verified signature; finalize if the completion rule is met."""
        pubkey = pubkey.strip().lower()
        try:
            self.check_signature(attestation, pubkey, signature, signer_info)
        except SigningError as exc:
            logger.warning(
                "signature_rejected",
                attestation_id=attestation.attestation_id,
                pubkey=pubkey,
                reason=type(exc).__name__,
            )
            raise

        entry = SignatureEntry(
            pubkey=pubkey,
            key_role=signer_info.key_role,
            signer_name=signer_info.name,
            signature=signature,
            signed_at=utc_timestamp(now),
            verified=True,
        )
        attestation.signatures.append(entry)
        events = [
            LifecycleEvent(
                AuditEventType.SIGNED,
                {
                    "attestation_id": attestation.attestation_id,
                    "pubkey": pubkey,
                    "key_role": entry.key_role,
                    "signer_name": entry.signer_name,
                    "signature_hash": entry.entry_hash(),
                    "signature_count": len(attestation.signatures),
                },
            )
        ]
        logger.info(
            "signature_added",
            attestation_id=attestation.attestation_id,
            pubkey=pubkey,
            signature_count=len(attestation.signatures),
        )

        if self.is_satisfied(attestation):
            events.append(self._finalize(attestation, now))
        return events

    def is_satisfied(self, attestation: Attestation) -> bool:
        """True once the template's completion rule holds.

        Matching is by pubkey set membership, never by display name.
        """
        template = self.template_for(attestation)
        eligible = template.eligible_signers(attestation.fields)
        signed = attestation.signer_pubkeys & eligible
        return len(signed) >= template.required_signatures(attestation.fields)

    # ------------------------------------------------------------------
    # Verification
    # ------------------------------------------------------------------

    def verify_all(self, attestation: Attestation) -> dict[str, Any]:
        """Re-verify every stored signature. Side-effect-free."""
        message = signing_message(attestation.content_hash)
        results = []
        for entry in attestation.signatures:
            valid = self._verifier.verify(message, entry.signature, entry.pubkey)
            results.append({
                "pubkey": entry.pubkey,
                "valid": valid,
                "key_role": entry.key_role,
                "signer_name": entry.signer_name,
                "signed_at": entry.signed_at,
            })
        return {
            "attestation_id": attestation.attestation_id,
            "all_valid": all(r["valid"] for r in results),
            "signature_count": len(results),
            "valid_count": sum(1 for r in results if r["valid"]),
            "results": results,
            "finalized": attestation.finalized,
        }

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _transition(self, attestation: Attestation, target: AttestationState) -> None:
        errors = self.validate_transition(attestation, target)
        if errors:
            raise TransitionError("; ".join(errors))
        attestation.state = target

    def _finalize(self, attestation: Attestation, now: Optional[datetime]) -> LifecycleEvent:
        self._transition(attestation, AttestationState.COMPLETE)
        attestation.anchor_hash = compute_anchor_hash(
            attestation.content_hash, attestation.signatures
        )
        attestation.finalized_at = utc_timestamp(now)
        logger.info(
            "attestation_finalized",
            attestation_id=attestation.attestation_id,
            anchor_hash=attestation.anchor_hash,
        )
        return LifecycleEvent(
            AuditEventType.FINALIZED,
            {
                "attestation_id": attestation.attestation_id,
                "anchor_hash": attestation.anchor_hash,
                "finalized_at": attestation.finalized_at,
                "signature_count": len(attestation.signatures),
            },
        )
