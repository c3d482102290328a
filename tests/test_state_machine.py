"""Tests for the signing state machine — proves signing is ordered and fail-closed."""

from datetime import datetime, timezone

import pytest

from covenant.crypto.signatures import Ed25519Verifier
from covenant.engine.state_machine import SigningStateMachine, TransitionError
from covenant.errors import (
    DuplicateSigner,
    InvalidSignature,
    NotInSigningState,
    RoleMismatch,
    UnknownSigner,
    ValidationError,
)
from covenant.models.attestation import Attestation, AttestationState, SignerInfo
from covenant.models.audit import AuditEventType
from covenant.templates.registry import TemplateRegistry

from conftest import NOTICE_FIELDS, quorum_fields, split_fields


NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def sm(registry: TemplateRegistry, verifier: Ed25519Verifier) -> SigningStateMachine:
    return SigningStateMachine(registry, verifier)


class TestCreate:
    def test_create_enters_signing(self, sm, ana, ben) -> None:
        attestation, events = sm.create("publishing-split", split_fields([(ana, 60), (ben, 40)]))
        assert attestation.state == AttestationState.SIGNING
        assert attestation.attestation_id.startswith("att_")
        assert attestation.subject == "contract:publishing-split"
        assert attestation.content_hash.startswith("sha256:")
        assert [e.event_type for e in events] == [AuditEventType.CREATED]
        assert events[0].payload["required_signatures"] == 2

    def test_zero_signature_template_completes_immediately(self, sm) -> None:
        attestation, events = sm.create("public-notice", NOTICE_FIELDS, now=NOW)
        assert attestation.finalized
        assert attestation.finalized_at == "2026-03-01T12:00:00Z"
        assert attestation.anchor_hash == attestation.recompute_anchor_hash()
        assert [e.event_type for e in events] == [
            AuditEventType.CREATED,
            AuditEventType.FINALIZED,
        ]

    def test_unknown_action(self, sm) -> None:
        with pytest.raises(ValidationError):
            sm.create("mortgage", {})

    def test_content_hash_independent_of_key_order(self, sm, ana, ben) -> None:
        fields = split_fields([(ana, 60), (ben, 40)])
        reordered = {k: fields[k] for k in reversed(list(fields))}
        a, _ = sm.create("publishing-split", fields)
        b, _ = sm.create("publishing-split", reordered)
        assert a.content_hash == b.content_hash
        assert a.attestation_id != b.attestation_id


class TestPublishingSplitScenario:
    def test_splits_of_95_rejected(self, sm, ana, ben, cleo) -> None:
        with pytest.raises(ValidationError, match="got 95"):
            sm.create("publishing-split", split_fields([(ana, 50), (ben, 30), (cleo, 15)]))

    def test_exactly_three_signatures_complete(self, sm, ana, ben, cleo) -> None:
        attestation, _ = sm.create(
            "publishing-split", split_fields([(ana, 50), (ben, 30), (cleo, 20)])
        )
        h = attestation.content_hash

        events = sm.add_signature(attestation, ana.pubkey, ana.sign(h), SignerInfo("property", "Ana"))
        assert [e.event_type for e in events] == [AuditEventType.SIGNED]
        sm.add_signature(attestation, ben.pubkey, ben.sign(h), SignerInfo("property", "Ben"))
        assert attestation.state == AttestationState.SIGNING

        events = sm.add_signature(
            attestation, cleo.pubkey, cleo.sign(h), SignerInfo("property", "Cleo"), now=NOW
        )
        assert [e.event_type for e in events] == [
            AuditEventType.SIGNED,
            AuditEventType.FINALIZED,
        ]
        assert attestation.finalized
        assert [s.pubkey for s in attestation.signatures] == [ana.pubkey, ben.pubkey, cleo.pubkey]
        assert sm.verify_all(attestation)["all_valid"] is True

    def test_outsider_cannot_complete(self, sm, ana, ben, outsider) -> None:
        attestation, _ = sm.create("publishing-split", split_fields([(ana, 60), (ben, 40)]))
        h = attestation.content_hash
        sm.add_signature(attestation, ana.pubkey, ana.sign(h), SignerInfo("property"))
        with pytest.raises(UnknownSigner) as exc:
            sm.add_signature(attestation, outsider.pubkey, outsider.sign(h), SignerInfo("property"))
        assert exc.value.details()["eligible_pubkeys"] == sorted([ana.pubkey, ben.pubkey])
        assert len(attestation.signatures) == 1
        assert attestation.state == AttestationState.SIGNING


class TestSignatureChecks:
    @pytest.fixture
    def attestation(self, sm, ana, ben) -> Attestation:
        attestation, _ = sm.create("publishing-split", split_fields([(ana, 60), (ben, 40)]))
        return attestation

    def test_duplicate_signer(self, sm, attestation, ana) -> None:
        h = attestation.content_hash
        sm.add_signature(attestation, ana.pubkey, ana.sign(h), SignerInfo("property"))
        with pytest.raises(DuplicateSigner):
            sm.add_signature(attestation, ana.pubkey, ana.sign(h), SignerInfo("property"))
        assert len(attestation.signatures) == 1

    def test_role_mismatch_carries_expected_and_actual(self, sm, attestation, ana) -> None:
        with pytest.raises(RoleMismatch) as exc:
            sm.add_signature(
                attestation, ana.pubkey, ana.sign(attestation.content_hash),
                SignerInfo("financial"),
            )
        assert exc.value.details()["expected_roles"] == ["property"]
        assert exc.value.details()["actual_role"] == "financial"
        assert attestation.signatures == []

    def test_invalid_signature(self, sm, attestation, ana, ben) -> None:
        forged = ben.sign(attestation.content_hash)
        with pytest.raises(InvalidSignature):
            sm.add_signature(attestation, ana.pubkey, forged, SignerInfo("property"))
        assert attestation.signatures == []

    def test_signature_over_other_content_rejected(self, sm, attestation, ana) -> None:
        with pytest.raises(InvalidSignature):
            sm.add_signature(
                attestation, ana.pubkey, ana.sign("sha256:" + "0" * 64), SignerInfo("property")
            )

    def test_duplicate_checked_before_role(self, sm, attestation, ana) -> None:
        h = attestation.content_hash
        sm.add_signature(attestation, ana.pubkey, ana.sign(h), SignerInfo("property"))
        with pytest.raises(DuplicateSigner):
            sm.add_signature(attestation, ana.pubkey, ana.sign(h), SignerInfo("financial"))

    def test_uppercase_pubkey_matches(self, sm, attestation, ana) -> None:
        sm.add_signature(
            attestation, ana.pubkey.upper(), ana.sign(attestation.content_hash),
            SignerInfo("property"),
        )
        assert attestation.signatures[0].pubkey == ana.pubkey


class TestFinalized:
    def test_no_signatures_after_complete(self, sm, ana, ben) -> None:
        attestation, _ = sm.create("publishing-split", split_fields([(ana, 100)]))
        h = attestation.content_hash
        sm.add_signature(attestation, ana.pubkey, ana.sign(h), SignerInfo("property"))
        anchor = attestation.anchor_hash
        with pytest.raises(NotInSigningState):
            sm.add_signature(attestation, ben.pubkey, ben.sign(h), SignerInfo("property"))
        assert attestation.anchor_hash == anchor
        assert attestation.recompute_anchor_hash() == anchor

    def test_complete_is_terminal(self, sm) -> None:
        attestation, _ = sm.create("public-notice", NOTICE_FIELDS)
        assert sm.validate_transition(attestation, AttestationState.SIGNING)
        with pytest.raises(TransitionError):
            sm._transition(attestation, AttestationState.SIGNING)

    def test_quorum_completes_at_n_of_m(self, sm, ana, ben, cleo) -> None:
        attestation, _ = sm.create("document-approval", quorum_fields([ana, ben, cleo], 2))
        h = attestation.content_hash
        sm.add_signature(attestation, ana.pubkey, ana.sign(h), SignerInfo("document"))
        assert not attestation.finalized
        sm.add_signature(attestation, cleo.pubkey, cleo.sign(h), SignerInfo("identity"))
        assert attestation.finalized
        with pytest.raises(NotInSigningState):
            sm.add_signature(attestation, ben.pubkey, ben.sign(h), SignerInfo("document"))


class TestVerifyAll:
    def test_fresh_attestation_verifies_unfinalized(self, sm, ana, ben) -> None:
        attestation, _ = sm.create("publishing-split", split_fields([(ana, 60), (ben, 40)]))
        report = sm.verify_all(attestation)
        assert report["all_valid"] is True
        assert report["finalized"] is False
        assert report["signature_count"] == 0
        assert report["results"] == []
        assert attestation.state == AttestationState.SIGNING

    def test_reports_tampered_signature(self, sm, ana, ben) -> None:
        attestation, _ = sm.create("publishing-split", split_fields([(ana, 60), (ben, 40)]))
        h = attestation.content_hash
        sm.add_signature(attestation, ana.pubkey, ana.sign(h), SignerInfo("property", "Ana"))
        sm.add_signature(attestation, ben.pubkey, ben.sign(h), SignerInfo("property", "Ben"))

        good = sm.verify_all(attestation)
        assert good["all_valid"] and good["valid_count"] == 2 and good["finalized"]

        entry = attestation.signatures[1]
        attestation.signatures[1] = type(entry)(
            entry.pubkey, entry.key_role, entry.signer_name,
            bytes(64), entry.signed_at,
        )
        report = sm.verify_all(attestation)
        assert report["all_valid"] is False
        assert report["valid_count"] == 1
        assert [r["valid"] for r in report["results"]] == [True, False]
