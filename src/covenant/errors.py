"""Error taxonomy for the attestation engine.

Every error carries structured detail so a caller can act on it without
re-deriving state: expected vs. actual role, expected vs. actual field set,
the mismatched hash and the sequence number where a chain diverged.

Signing-protocol and validation errors are raised before any mutation is
committed. Chain-integrity errors are never repaired automatically.
"""

from __future__ import annotations

from typing import Any, Iterable


class CovenantError(Exception):
    """Base class for all engine errors."""

    def details(self) -> dict[str, Any]:
        return {}


class CanonicalizationError(CovenantError, ValueError):
    """Raised when a value has no canonical serialization."""


class ValidationError(CovenantError):
    """Template fields are missing, unexpected or semantically invalid.

    The caller must fix the fields and resubmit. Never retried.
    """

    def __init__(
        self,
        message: str,
        missing: Iterable[str] = (),
        unexpected: Iterable[str] = (),
        problems: Iterable[str] = (),
    ) -> None:
        self.missing = sorted(missing)
        self.unexpected = sorted(unexpected)
        self.problems = list(problems)
        parts = [message]
        if self.missing:
            parts.append(f"missing: {', '.join(self.missing)}")
        if self.unexpected:
            parts.append(f"unexpected: {', '.join(self.unexpected)}")
        parts.extend(self.problems)
        super().__init__("; ".join(parts))

    def details(self) -> dict[str, Any]:
        return {
            "missing": self.missing,
            "unexpected": self.unexpected,
            "problems": self.problems,
        }


# ------------------------------------------------------------------
# Signing-protocol violations
# ------------------------------------------------------------------

class SigningError(CovenantError):
    """A signature was refused. The attestation is unchanged."""


class NotInSigningState(SigningError):
    def __init__(self, attestation_id: str, state: str) -> None:
        self.attestation_id = attestation_id
        self.state = state
        super().__init__(
            f"Attestation {attestation_id} is {state}; no further signatures accepted"
        )

    def details(self) -> dict[str, Any]:
        return {"attestation_id": self.attestation_id, "state": self.state}


class DuplicateSigner(SigningError):
    def __init__(self, attestation_id: str, pubkey: str) -> None:
        self.attestation_id = attestation_id
        self.pubkey = pubkey
        super().__init__(f"Key {pubkey} has already signed {attestation_id}")

    def details(self) -> dict[str, Any]:
        return {"attestation_id": self.attestation_id, "pubkey": self.pubkey}


class RoleMismatch(SigningError):
    def __init__(self, action: str, expected: Iterable[str], actual: str) -> None:
        self.action = action
        self.expected = sorted(expected)
        self.actual = actual
        super().__init__(
            f'Action "{action}" requires key role {" or ".join(self.expected)}, '
            f'got "{actual}"'
        )

    def details(self) -> dict[str, Any]:
        return {
            "action": self.action,
            "expected_roles": self.expected,
            "actual_role": self.actual,
        }


class UnknownSigner(SigningError):
    """The key is not one of the parties named by the attestation."""

    def __init__(self, attestation_id: str, pubkey: str, eligible: Iterable[str]) -> None:
        self.attestation_id = attestation_id
        self.pubkey = pubkey
        self.eligible = sorted(eligible)
        super().__init__(f"Key {pubkey} is not a named signer of {attestation_id}")

    def details(self) -> dict[str, Any]:
        return {
            "attestation_id": self.attestation_id,
            "pubkey": self.pubkey,
            "eligible_pubkeys": self.eligible,
        }


class InvalidSignature(SigningError):
    def __init__(self, attestation_id: str, pubkey: str, content_hash: str) -> None:
        self.attestation_id = attestation_id
        self.pubkey = pubkey
        self.content_hash = content_hash
        super().__init__(
            f"Signature from {pubkey} does not verify over {content_hash}"
        )

    def details(self) -> dict[str, Any]:
        return {
            "attestation_id": self.attestation_id,
            "pubkey": self.pubkey,
            "content_hash": self.content_hash,
        }


# ------------------------------------------------------------------
# Audit trail, ledger and storage
# ------------------------------------------------------------------

class ChainIntegrityError(CovenantError):
    """A stored audit event does not match its recomputed hash."""

    def __init__(
        self,
        attestation_id: str,
        sequence_no: int,
        expected: str,
        actual: str,
        reason: str = "event hash mismatch",
    ) -> None:
        self.attestation_id = attestation_id
        self.sequence_no = sequence_no
        self.expected = expected
        self.actual = actual
        self.reason = reason
        super().__init__(
            f"Audit chain for {attestation_id} diverges at sequence {sequence_no}: "
            f"{reason} (expected {expected}, stored {actual})"
        )

    def details(self) -> dict[str, Any]:
        return {
            "attestation_id": self.attestation_id,
            "sequence_no": self.sequence_no,
            "expected": self.expected,
            "actual": self.actual,
            "reason": self.reason,
        }


class PublishUnavailable(CovenantError):
    """The external ledger could not accept an event right now. Transient."""

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(f"Ledger publish unavailable: {reason}")

    def details(self) -> dict[str, Any]:
        return {"reason": self.reason}


class NotFound(CovenantError):
    def __init__(self, kind: str, identifier: str) -> None:
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"{kind} not found: {identifier}")

    def details(self) -> dict[str, Any]:
        return {"kind": self.kind, "id": self.identifier}
