"""Attestation manager — owns attestations between requests.

Mutations (create, sign) run as one unit under a per-attestation lock:

    load → mutate → save → append audit events

A failed check raises before the save, so nothing is persisted and no
event is appended. If the audit append raises after the save, the stored
record is put back (or removed, for a create) before the error propagates.
Reads do not take the lock; they see the last saved state.
"""

from __future__ import annotations

import json
import threading
from datetime import datetime
from typing import Any, Mapping, Optional

import structlog

from covenant.crypto.canonical import canonicalize
from covenant.crypto.signatures import SignatureVerifier
from covenant.engine.state_machine import SigningStateMachine
from covenant.errors import ValidationError
from covenant.models.attestation import Attestation, SignerInfo
from covenant.models.audit import AuditEvent
from covenant.persistence.audit_trail import AuditTrail
from covenant.persistence.store import AttestationStore
from covenant.templates.registry import TemplateRegistry

logger = structlog.get_logger(__name__)


class AttestationManager:
    """Create, sign, load and verify attestations by id."""

    def __init__(
        self,
        registry: TemplateRegistry,
        verifier: SignatureVerifier,
        store: AttestationStore,
        trail: AuditTrail,
    ) -> None:
        self._registry = registry
        self._store = store
        self._trail = trail
        self._machine = SigningStateMachine(registry, verifier)
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    @property
    def machine(self) -> SigningStateMachine:
        return self._machine

    @property
    def trail(self) -> AuditTrail:
        return self._trail

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def create(
        self,
        action: str,
        fields: Mapping[str, Any],
        subject: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> tuple[Attestation, list[AuditEvent]]:
        attestation, lifecycle = self._machine.create(action, fields, subject=subject, now=now)
        with self._lock_for(attestation.attestation_id):
            self._save(attestation)
            try:
                events = self._trail.append_all(attestation.attestation_id, lifecycle, now=now)
            except BaseException:
                self._store.delete(attestation.attestation_id)
                raise
        return attestation, events

    def sign(
        self,
        attestation_id: str,
        pubkey: str,
        signature: bytes,
        signer_info: SignerInfo,
        now: Optional[datetime] = None,
    ) -> tuple[Attestation, list[AuditEvent]]:
        """Apply one signature. Raises a SigningError with nothing persisted on refusal."""
        with self._lock_for(attestation_id):
            previous = self._store.load(attestation_id)
            attestation = self._decode(attestation_id, previous)
            lifecycle = self._machine.add_signature(
                attestation, pubkey, signature, signer_info, now=now
            )
            self._save(attestation)
            try:
                events = self._trail.append_all(attestation_id, lifecycle, now=now)
            except BaseException:
                self._store.save(attestation_id, previous)
                raise
        return attestation, events

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def load(self, attestation_id: str) -> Attestation:
        """Rebuild an attestation from the store. Raises NotFound."""
        return self._decode(attestation_id, self._store.load(attestation_id))

    def from_export(self, data: Mapping[str, Any]) -> Attestation:
        """Rebuild an exported attestation, resolving its template by action."""
        template = self._registry.get(data.get("action"))
        return Attestation.from_export(dict(data), template)

    def verify(self, attestation_id: str) -> dict[str, Any]:
        """Re-verify every signature and the anchor hash. Side-effect-free."""
        attestation = self.load(attestation_id)
        report = self._machine.verify_all(attestation)
        if attestation.anchor_hash is not None:
            report["anchor_hash"] = attestation.anchor_hash
            report["anchor_hash_valid"] = (
                attestation.recompute_anchor_hash() == attestation.anchor_hash
            )
        return report

    def contract_text(self, attestation_id: str) -> str:
        attestation = self.load(attestation_id)
        return self._machine.template_for(attestation).render(attestation.fields)

    def ids(self) -> list[str]:
        return self._store.ids()

    def summaries(self) -> list[dict[str, Any]]:
        summaries = []
        for attestation_id in self.ids():
            attestation = self.load(attestation_id)
            summaries.append({
                "id": attestation.attestation_id,
                "subject": attestation.subject,
                "action": attestation.action,
                "signature_count": len(attestation.signatures),
                "finalized": attestation.finalized,
                "created_at": attestation.created_at,
            })
        summaries.sort(key=lambda s: (s["created_at"], s["id"]), reverse=True)
        return summaries

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _lock_for(self, attestation_id: str) -> threading.Lock:
        with self._locks_guard:
            return self._locks.setdefault(attestation_id, threading.Lock())

    def _decode(self, attestation_id: str, raw: bytes) -> Attestation:
        try:
            record = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise ValidationError(f"Stored attestation {attestation_id} is unreadable: {exc}") from exc
        return self.from_export(record)

    def _save(self, attestation: Attestation) -> None:
        self._store.save(attestation.attestation_id, canonicalize(attestation.to_record()))
        logger.debug(
            "attestation_saved",
            attestation_id=attestation.attestation_id,
            state=attestation.state.value,
        )
