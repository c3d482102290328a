"""Shared fixtures: Ed25519 keys, the configured template registry, and a
ledger publisher that records what it was asked to publish."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import pytest
import structlog
from nacl.signing import SigningKey

from covenant.crypto.signatures import Ed25519Verifier
from covenant.errors import PublishUnavailable
from covenant.models.attestation import signing_message
from covenant.persistence.audit_trail import AuditTrail
from covenant.persistence.store import InMemoryAttestationStore
from covenant.engine.manager import AttestationManager
from covenant.templates.registry import TemplateRegistry


CONFIG_DIR = Path(__file__).resolve().parents[1] / "config"


@dataclass(frozen=True)
class KeyPair:
    name: str
    seed_hex: str

    @property
    def pubkey(self) -> str:
        return SigningKey(bytes.fromhex(self.seed_hex)).verify_key.encode().hex()

    def sign(self, content_hash: str) -> bytes:
        key = SigningKey(bytes.fromhex(self.seed_hex))
        return key.sign(signing_message(content_hash)).signature


def make_key(name: str, fill: int) -> KeyPair:
    """Deterministic key so failures are reproducible."""
    return KeyPair(name, bytes([fill]).hex() * 32)


class RecordingPublisher:
    """Ledger stand-in. Fails the first ``fail_times`` calls."""

    def __init__(self, fail_times: int = 0) -> None:
        self.fail_times = fail_times
        self.calls = 0
        self.published: list[bytes] = []

    def publish(self, event_bytes: bytes) -> str:
        self.calls += 1
        if self.calls <= self.fail_times:
            raise PublishUnavailable("ledger offline")
        self.published.append(event_bytes)
        return f"tx-{len(self.published):04d}"


@pytest.fixture(autouse=True)
def _reset_logging():
    yield
    structlog.reset_defaults()


@pytest.fixture
def registry() -> TemplateRegistry:
    return TemplateRegistry.from_config_dir(CONFIG_DIR)


@pytest.fixture
def verifier() -> Ed25519Verifier:
    return Ed25519Verifier()


@pytest.fixture
def ana() -> KeyPair:
    return make_key("Ana", 0x11)


@pytest.fixture
def ben() -> KeyPair:
    return make_key("Ben", 0x22)


@pytest.fixture
def cleo() -> KeyPair:
    return make_key("Cleo", 0x33)


@pytest.fixture
def outsider() -> KeyPair:
    return make_key("Mallory", 0x44)


@pytest.fixture
def store() -> InMemoryAttestationStore:
    return InMemoryAttestationStore()


@pytest.fixture
def trail() -> AuditTrail:
    return AuditTrail()


@pytest.fixture
def manager(
    registry: TemplateRegistry,
    verifier: Ed25519Verifier,
    store: InMemoryAttestationStore,
    trail: AuditTrail,
) -> AttestationManager:
    return AttestationManager(registry, verifier, store, trail)


@pytest.fixture
def publisher() -> RecordingPublisher:
    return RecordingPublisher()


def split_fields(parties: list[tuple[KeyPair, float]]) -> dict:
    return {
        "song_title": "Harbor Lights",
        "song_hash": "sha256:" + "ab" * 32,
        "parties": [
            {"name": k.name, "pubkey": k.pubkey, "split": split} for k, split in parties
        ],
    }


def quorum_fields(signers: list[KeyPair], quorum: int) -> dict:
    return {
        "document_title": "Board minutes",
        "document_hash": "sha256:" + "cd" * 32,
        "signers": [{"name": k.name, "pubkey": k.pubkey} for k in signers],
        "quorum": quorum,
    }


NOTICE_FIELDS = {"title": "Catalog transfer", "statement": "The catalog moves on 1 May."}
