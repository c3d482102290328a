"""Typed field schemas — one frozen dataclass per contract type.

The set of contract payloads is closed: every template names one of the
schemas registered in ``SCHEMAS``. Parsing from a plain mapping rejects
missing and unexpected keys at every nesting level, so a payload that
reaches an Attestation is always exactly the shape its template expects.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, ClassVar, Mapping, Optional

from covenant.crypto.canonical import format_number
from covenant.errors import ValidationError


def _check_keys(data: Any, expected: tuple[str, ...], where: str = "") -> None:
    """Fail with a ValidationError unless ``data`` has exactly ``expected`` keys."""
    if not isinstance(data, Mapping):
        raise ValidationError(f"{where or 'fields'} must be an object")
    prefix = f"{where}." if where else ""
    present = set(data.keys())
    missing = [f"{prefix}{k}" for k in expected if k not in present]
    unexpected = [f"{prefix}{k}" for k in present - set(expected)]
    if missing or unexpected:
        raise ValidationError(
            "Fields do not match template",
            missing=missing,
            unexpected=unexpected,
        )


def _text(data: Mapping[str, Any], key: str, where: str = "", allow_empty: bool = False) -> str:
    value = data[key]
    name = f"{where}.{key}" if where else key
    if not isinstance(value, str):
        raise ValidationError("Invalid field", problems=[f"{name} must be a string"])
    if not allow_empty and not value.strip():
        raise ValidationError("Invalid field", problems=[f"{name} must not be empty"])
    return value


def _number(data: Mapping[str, Any], key: str, where: str = "") -> int | float:
    value = data[key]
    name = f"{where}.{key}" if where else key
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError("Invalid field", problems=[f"{name} must be a number"])
    return value


def _pubkey(data: Mapping[str, Any], key: str, where: str) -> str:
    value = _text(data, key, where).strip().lower()
    try:
        raw = bytes.fromhex(value)
    except ValueError:
        raw = b""
    if len(raw) != 32:
        raise ValidationError(
            "Invalid field",
            problems=[f"{where}.{key} must be a 32-byte hex public key"],
        )
    return value


def _items(data: Mapping[str, Any], key: str) -> list[Mapping[str, Any]]:
    value = data[key]
    if not isinstance(value, (list, tuple)):
        raise ValidationError("Invalid field", problems=[f"{key} must be a list"])
    return list(value)


def _require_distinct(pubkeys: list[str], key: str) -> None:
    seen: set[str] = set()
    dupes: set[str] = set()
    for pubkey in pubkeys:
        if pubkey in seen:
            dupes.add(pubkey)
        seen.add(pubkey)
    if dupes:
        raise ValidationError(
            "Invalid field",
            problems=[f"{key} lists the same pubkey more than once: {', '.join(sorted(dupes))}"],
        )


def _plain(value: Any) -> Any:
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {f.name: _plain(getattr(value, f.name)) for f in dataclasses.fields(value)}
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    return value


def short_key(pubkey: str) -> str:
    return f"{pubkey[:8]}...{pubkey[-4:]}"


class FieldSchema:
    """Behaviour shared by every contract field schema."""

    schema_name: ClassVar[str]

    @classmethod
    def field_names(cls) -> tuple[str, ...]:
        return tuple(f.name for f in dataclasses.fields(cls))  # type: ignore[arg-type]

    @classmethod
    def from_mapping(cls, data: Any) -> "FieldSchema":
        raise NotImplementedError

    def to_dict(self) -> dict[str, Any]:
        """JSON-native form: nested dataclasses as objects, tuples as lists."""
        return _plain(self)

    def signer_pubkeys(self) -> tuple[str, ...]:
        """Pubkeys of the parties named by these fields, in listed order."""
        return ()

    def quorum_size(self) -> Optional[int]:
        """Signatures needed for quorum templates; None elsewhere."""
        return None

    def render_context(self) -> dict[str, Any]:
        return self.to_dict()


# ------------------------------------------------------------------
# Shared party shapes
# ------------------------------------------------------------------

@dataclass(frozen=True)
class Party:
    name: str
    pubkey: str
    split: int | float

    KEYS: ClassVar[tuple[str, ...]] = ("name", "pubkey", "split")

    @classmethod
    def parse(cls, data: Any, where: str) -> Party:
        _check_keys(data, cls.KEYS, where)
        split = _number(data, "split", where)
        if not 0 < split <= 100:
            raise ValidationError(
                "Invalid field", problems=[f"{where}.split must be in (0, 100]"]
            )
        return cls(
            name=_text(data, "name", where),
            pubkey=_pubkey(data, "pubkey", where),
            split=split,
        )


@dataclass(frozen=True)
class Collaborator:
    name: str
    pubkey: str
    role: str

    KEYS: ClassVar[tuple[str, ...]] = ("name", "pubkey", "role")

    @classmethod
    def parse(cls, data: Any, where: str) -> Collaborator:
        _check_keys(data, cls.KEYS, where)
        return cls(
            name=_text(data, "name", where),
            pubkey=_pubkey(data, "pubkey", where),
            role=_text(data, "role", where),
        )


@dataclass(frozen=True)
class Signer:
    name: str
    pubkey: str

    KEYS: ClassVar[tuple[str, ...]] = ("name", "pubkey")

    @classmethod
    def parse(cls, data: Any, where: str) -> Signer:
        _check_keys(data, cls.KEYS, where)
        return cls(name=_text(data, "name", where), pubkey=_pubkey(data, "pubkey", where))


# ------------------------------------------------------------------
# Contract schemas
# ------------------------------------------------------------------

@dataclass(frozen=True)
class PublishingSplitFields(FieldSchema):
    """Publishing rights split across parties; splits sum to 100."""

    song_title: str
    song_hash: str
    parties: tuple[Party, ...]

    schema_name: ClassVar[str] = "publishing_split"

    @classmethod
    def from_mapping(cls, data: Any) -> PublishingSplitFields:
        _check_keys(data, cls.field_names())
        raw = _items(data, "parties")
        if not raw:
            raise ValidationError("Invalid field", problems=["parties must not be empty"])
        parties = tuple(Party.parse(p, f"parties[{i}]") for i, p in enumerate(raw))
        _require_distinct([p.pubkey for p in parties], "parties")

        total = sum((Decimal(str(p.split)) for p in parties), Decimal("0"))
        if total != Decimal("100"):
            raise ValidationError(
                "Invalid field",
                problems=[f"party splits must total 100, got {format_number(total)}"],
            )
        return cls(
            song_title=_text(data, "song_title"),
            song_hash=_text(data, "song_hash"),
            parties=parties,
        )

    def signer_pubkeys(self) -> tuple[str, ...]:
        return tuple(p.pubkey for p in self.parties)

    def render_context(self) -> dict[str, Any]:
        ctx = self.to_dict()
        ctx["parties"] = [
            {**dataclasses.asdict(p), "pubkey_short": short_key(p.pubkey)}
            for p in self.parties
        ]
        ctx["total_split"] = format_number(
            sum((Decimal(str(p.split)) for p in self.parties), Decimal("0"))
        )
        return ctx


@dataclass(frozen=True)
class CollaborationFields(FieldSchema):
    """Joint work between named collaborators."""

    project_name: str
    collaborators: tuple[Collaborator, ...]
    terms: str

    schema_name: ClassVar[str] = "collaboration"

    @classmethod
    def from_mapping(cls, data: Any) -> CollaborationFields:
        _check_keys(data, cls.field_names())
        raw = _items(data, "collaborators")
        if len(raw) < 2:
            raise ValidationError(
                "Invalid field", problems=["collaborators needs at least two entries"]
            )
        collaborators = tuple(
            Collaborator.parse(c, f"collaborators[{i}]") for i, c in enumerate(raw)
        )
        _require_distinct([c.pubkey for c in collaborators], "collaborators")
        return cls(
            project_name=_text(data, "project_name"),
            collaborators=collaborators,
            terms=_text(data, "terms"),
        )

    def signer_pubkeys(self) -> tuple[str, ...]:
        return tuple(c.pubkey for c in self.collaborators)

    def render_context(self) -> dict[str, Any]:
        ctx = self.to_dict()
        ctx["collaborators"] = [
            {**dataclasses.asdict(c), "pubkey_short": short_key(c.pubkey)}
            for c in self.collaborators
        ]
        return ctx


@dataclass(frozen=True)
class LicensingFields(FieldSchema):
    """Licence from a licensor to a licensee. Both must sign."""

    song_title: str
    licensor: Signer
    licensee: Signer
    license_type: str
    terms: str
    fees: str

    schema_name: ClassVar[str] = "licensing"

    @classmethod
    def from_mapping(cls, data: Any) -> LicensingFields:
        _check_keys(data, cls.field_names())
        licensor = Signer.parse(data["licensor"], "licensor")
        licensee = Signer.parse(data["licensee"], "licensee")
        if licensor.pubkey == licensee.pubkey:
            raise ValidationError(
                "Invalid field", problems=["licensor and licensee must use different keys"]
            )
        return cls(
            song_title=_text(data, "song_title"),
            licensor=licensor,
            licensee=licensee,
            license_type=_text(data, "license_type"),
            terms=_text(data, "terms"),
            fees=_text(data, "fees", allow_empty=True),
        )

    def signer_pubkeys(self) -> tuple[str, ...]:
        return (self.licensor.pubkey, self.licensee.pubkey)

    def render_context(self) -> dict[str, Any]:
        ctx = self.to_dict()
        for key in ("licensor", "licensee"):
            ctx[key]["pubkey_short"] = short_key(ctx[key]["pubkey"])
        ctx["fees"] = self.fees or "As separately negotiated"
        return ctx


@dataclass(frozen=True)
class QuorumDocumentFields(FieldSchema):
    """Generic document that completes once ``quorum`` of ``signers`` sign."""

    document_title: str
    document_hash: str
    signers: tuple[Signer, ...]
    quorum: int

    schema_name: ClassVar[str] = "quorum_document"

    @classmethod
    def from_mapping(cls, data: Any) -> QuorumDocumentFields:
        _check_keys(data, cls.field_names())
        raw = _items(data, "signers")
        signers = tuple(Signer.parse(s, f"signers[{i}]") for i, s in enumerate(raw))
        _require_distinct([s.pubkey for s in signers], "signers")
        quorum = data["quorum"]
        if isinstance(quorum, bool) or not isinstance(quorum, int):
            raise ValidationError("Invalid field", problems=["quorum must be an integer"])
        if not 1 <= quorum <= len(signers):
            raise ValidationError(
                "Invalid field",
                problems=[f"quorum must be between 1 and {len(signers)}, got {quorum}"],
            )
        return cls(
            document_title=_text(data, "document_title"),
            document_hash=_text(data, "document_hash"),
            signers=signers,
            quorum=quorum,
        )

    def signer_pubkeys(self) -> tuple[str, ...]:
        return tuple(s.pubkey for s in self.signers)

    def quorum_size(self) -> Optional[int]:
        return self.quorum

    def render_context(self) -> dict[str, Any]:
        ctx = self.to_dict()
        ctx["signers"] = [
            {**dataclasses.asdict(s), "pubkey_short": short_key(s.pubkey)}
            for s in self.signers
        ]
        ctx["signer_count"] = len(self.signers)
        return ctx


@dataclass(frozen=True)
class NoticeFields(FieldSchema):
    """A record that needs no signatures; complete on creation."""

    title: str
    statement: str

    schema_name: ClassVar[str] = "notice"

    @classmethod
    def from_mapping(cls, data: Any) -> NoticeFields:
        _check_keys(data, cls.field_names())
        return cls(title=_text(data, "title"), statement=_text(data, "statement"))


SCHEMAS: dict[str, type[FieldSchema]] = {
    schema.schema_name: schema
    for schema in (
        PublishingSplitFields,
        CollaborationFields,
        LicensingFields,
        QuorumDocumentFields,
        NoticeFields,
    )
}
