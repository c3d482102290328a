"""Service layer — single facade over templates, signing, audit and proofs.

All callers (CLI, tests, an HTTP adapter) go through CovenantService. Each
operation returns a ServiceResult; engine errors never escape. A failed
result carries the error type and its structured details in ``data`` so
the caller can act without parsing messages.

Ledger publishing is explicit: ``publish_pending`` is the only call that
contacts the publisher. Nothing in the create/sign path waits on it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Iterable, Mapping, Optional

import structlog

from covenant.config import Settings
from covenant.crypto.anchor import EthereumLedgerPublisher, LedgerPublisher
from covenant.crypto.commitment import CommitmentLayer
from covenant.crypto.signatures import Ed25519Verifier, SignatureVerifier
from covenant.engine.manager import AttestationManager
from covenant.errors import CovenantError, PublishUnavailable, ValidationError
from covenant.models.attestation import SignerInfo
from covenant.models.commitment import export_proof
from covenant.persistence.audit_trail import AuditTrail
from covenant.persistence.store import (
    AttestationStore,
    FileAttestationStore,
    InMemoryAttestationStore,
)
from covenant.templates.registry import TemplateRegistry

logger = structlog.get_logger(__name__)

VERSION = "0.1.0"


@dataclass
class ServiceResult:
    """Result of a service operation."""
    success: bool
    errors: list[str] = field(default_factory=list)
    data: dict[str, Any] = field(default_factory=dict)


def _failure(exc: CovenantError) -> ServiceResult:
    return ServiceResult(
        success=False,
        errors=[str(exc)],
        data={"error": type(exc).__name__, **exc.details()},
    )


def resolve_field(fields: Mapping[str, Any], path: str) -> Any:
    """Walk a dotted path such as ``parties.0.split`` through plain data."""
    current: Any = fields
    for part in path.split("."):
        if isinstance(current, Mapping) and part in current:
            current = current[part]
        elif isinstance(current, list) and part.isdigit() and int(part) < len(current):
            current = current[int(part)]
        else:
            raise ValidationError(f"Field path {path!r} does not resolve", missing=[path])
    return current


class CovenantService:
    """Attestation engine facade.

    Usage:
        registry = TemplateRegistry.from_config_dir(config_dir)
        service = CovenantService(registry)
        result = service.create_attestation("publishing-split", fields)
        service.sign_attestation(result.data["id"], pubkey, signature, "property")
    """

    def __init__(
        self,
        registry: TemplateRegistry,
        verifier: Optional[SignatureVerifier] = None,
        store: Optional[AttestationStore] = None,
        trail: Optional[AuditTrail] = None,
        publisher: Optional[LedgerPublisher] = None,
        commitments: Optional[CommitmentLayer] = None,
    ) -> None:
        self._registry = registry
        self._store = store or InMemoryAttestationStore()
        self._trail = trail or AuditTrail()
        self._publisher = publisher
        self._commitments = commitments or CommitmentLayer()
        self._manager = AttestationManager(
            registry, verifier or Ed25519Verifier(), self._store, self._trail
        )

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        publisher: Optional[LedgerPublisher] = None,
    ) -> CovenantService:
        """Wire a service from runtime settings.

        With a data directory, attestations and the audit log persist to
        disk; otherwise everything stays in memory. A ledger publisher is
        built from settings only when one is not passed in.
        """
        registry = TemplateRegistry.from_config_dir(settings.config_dir)
        store: AttestationStore
        audit_path = None
        if settings.data_dir is not None:
            store = FileAttestationStore(settings.data_dir / "attestations")
            audit_path = settings.data_dir / "audit.jsonl"
        else:
            store = InMemoryAttestationStore()
        trail = AuditTrail(
            audit_path,
            backoff_seconds=settings.publish_backoff_seconds,
            backoff_max_seconds=settings.publish_backoff_max_seconds,
        )
        if publisher is None and settings.ledger_configured:
            publisher = EthereumLedgerPublisher(
                settings.ledger_rpc_url,
                settings.ledger_private_key,
                chain_id=settings.ledger_chain_id,
            )
        return cls(registry, store=store, trail=trail, publisher=publisher)

    @property
    def manager(self) -> AttestationManager:
        return self._manager

    @property
    def trail(self) -> AuditTrail:
        return self._trail

    # ------------------------------------------------------------------
    # Templates
    # ------------------------------------------------------------------

    def available_templates(self) -> ServiceResult:
        return ServiceResult(success=True, data={"templates": self._registry.describe()})

    # ------------------------------------------------------------------
    # Attestations
    # ------------------------------------------------------------------

    def create_attestation(
        self,
        action: str,
        fields: Mapping[str, Any],
        subject: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        """Create an attestation from a template and record its first events."""
        try:
            attestation, events = self._manager.create(action, fields, subject=subject, now=now)
        except CovenantError as e:
            return _failure(e)
        return ServiceResult(success=True, data={
            "id": attestation.attestation_id,
            "content_hash": attestation.content_hash,
            "state": attestation.state.value,
            "finalized": attestation.finalized,
            "required_signatures": self._required(attestation),
            "events": [e.event_type.value for e in events],
        })

    def sign_attestation(
        self,
        attestation_id: str,
        pubkey: str,
        signature: bytes | str,
        key_role: str,
        signer_name: str = "Anonymous",
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        """Add one signature. ``signature`` may be raw bytes or hex."""
        try:
            if isinstance(signature, str):
                try:
                    signature = bytes.fromhex(signature)
                except ValueError:
                    raise ValidationError(
                        "Signature is not valid hex", problems=["signature"]
                    ) from None
            attestation, events = self._manager.sign(
                attestation_id, pubkey, signature, SignerInfo(key_role, signer_name), now=now
            )
        except CovenantError as e:
            return _failure(e)
        data: dict[str, Any] = {
            "id": attestation_id,
            "signature_count": len(attestation.signatures),
            "required_signatures": self._required(attestation),
            "finalized": attestation.finalized,
            "events": [e.event_type.value for e in events],
        }
        if attestation.finalized:
            data["anchor_hash"] = attestation.anchor_hash
            data["finalized_at"] = attestation.finalized_at
        return ServiceResult(success=True, data=data)

    def verify_attestation(self, attestation_id: str) -> ServiceResult:
        try:
            report = self._manager.verify(attestation_id)
        except CovenantError as e:
            return _failure(e)
        return ServiceResult(success=True, data=report)

    def get_attestation(self, attestation_id: str) -> ServiceResult:
        try:
            attestation = self._manager.load(attestation_id)
        except CovenantError as e:
            return _failure(e)
        return ServiceResult(success=True, data=attestation.to_record())

    def export_attestation(self, attestation_id: str) -> ServiceResult:
        try:
            attestation = self._manager.load(attestation_id)
        except CovenantError as e:
            return _failure(e)
        return ServiceResult(success=True, data=attestation.export())

    def contract_text(self, attestation_id: str) -> ServiceResult:
        try:
            text = self._manager.contract_text(attestation_id)
        except CovenantError as e:
            return _failure(e)
        return ServiceResult(success=True, data={"id": attestation_id, "text": text})

    def list_attestations(self) -> ServiceResult:
        try:
            summaries = self._manager.summaries()
        except CovenantError as e:
            return _failure(e)
        return ServiceResult(success=True, data={"attestations": summaries})

    # ------------------------------------------------------------------
    # Audit trail
    # ------------------------------------------------------------------

    def audit_trail(self, attestation_id: str) -> ServiceResult:
        """Events for one attestation, whether the chain holds, and its head."""
        events = self._trail.events(attestation_id)
        if not events:
            return ServiceResult(
                success=False,
                errors=[f"audit trail not found: {attestation_id}"],
                data={"error": "NotFound", "kind": "audit trail", "id": attestation_id},
            )
        data: dict[str, Any] = {
            "id": attestation_id,
            "events": [e.to_dict() for e in events],
            "chain_valid": True,
            "head": self._trail.head(attestation_id),
        }
        try:
            self._trail.check_chain(attestation_id)
        except CovenantError as e:
            data["chain_valid"] = False
            data["chain_error"] = e.details()
        return ServiceResult(success=True, data=data)

    def publish_pending(self, now: Optional[datetime] = None) -> ServiceResult:
        """Push pending audit events to the ledger. Failures are retried later."""
        if self._publisher is None:
            return _failure(PublishUnavailable("no ledger publisher configured"))
        try:
            counts = self._trail.publish_pending(self._publisher, now=now)
        except CovenantError as e:
            return _failure(e)
        return ServiceResult(
            success=True, data={**counts, "pending": len(self._trail.pending())}
        )

    # ------------------------------------------------------------------
    # Privacy proofs
    # ------------------------------------------------------------------

    def prove_field(
        self,
        attestation_id: str,
        field_path: str,
        threshold: int | float | Decimal,
        label: Optional[str] = None,
        strict: bool = True,
    ) -> ServiceResult:
        """Commit to a numeric field of an attestation and prove it meets a threshold.

        Only the commitment and proof are returned. The secret is dropped
        here and never leaves this call.
        """
        try:
            attestation = self._manager.load(attestation_id)
            value = resolve_field(attestation.fields.to_dict(), field_path)
            if isinstance(value, bool) or not isinstance(value, (int, float, Decimal)):
                raise ValidationError(
                    f"Field {field_path!r} is not numeric", problems=[field_path]
                )
            commitment, secret = self._commitments.commit(
                value, threshold, label or f"{attestation_id}:{field_path}"
            )
            proof = self._commitments.prove(secret)
        except CovenantError as e:
            return _failure(e)
        except ValueError as e:
            return ServiceResult(success=False, errors=[str(e)], data={"error": "ValueError"})

        return ServiceResult(success=True, data={
            "id": attestation_id,
            "field": field_path,
            "proof": export_proof(commitment, proof),
            "verified": self._commitments.verify(commitment, proof, strict=strict),
        })

    def prove_values(
        self,
        entries: Iterable[tuple[int | float | Decimal, int | float | Decimal, str]],
        strict: bool = True,
    ) -> ServiceResult:
        """Batch-prove ``(value, threshold, label)`` facts under one challenge."""
        try:
            batch, _secrets = self._commitments.prove_batch(entries)
        except ValueError as e:
            return ServiceResult(success=False, errors=[str(e)], data={"error": "ValueError"})
        return ServiceResult(success=True, data={
            "batch": batch.to_dict(),
            "verified": self._commitments.verify_batch(batch, strict=strict),
        })

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def status(self) -> dict[str, Any]:
        """Return system-wide status summary."""
        ids = self._manager.ids()
        finalized = sum(1 for s in self._manager.summaries() if s["finalized"])
        return {
            "version": VERSION,
            "templates": len(self._registry),
            "attestations": {
                "total": len(ids),
                "finalized": finalized,
                "in_progress": len(ids) - finalized,
            },
            "audit": {
                "events": self._trail.count,
                "pending_publish": len(self._trail.pending()),
            },
            "ledger_configured": self._publisher is not None,
        }

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _required(self, attestation: Any) -> int:
        template = self._registry.get(attestation.action)
        return template.required_signatures(attestation.fields)
