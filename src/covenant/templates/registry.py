"""Template registry — immutable table of contract templates.

A template fixes, for one action name:
- the typed field schema the attestation payload must match,
- which key roles may sign,
- how completion is decided (all named parties, N-of-M quorum, or none),
- the human-readable contract text.

The registry is loaded from configuration at startup and injected where
needed. It is never mutated, so alternate template sets can be used side
by side (tests do exactly this).
"""

from __future__ import annotations

import enum
import json
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Iterable, Mapping

from covenant.errors import ValidationError
from covenant.templates.schemas import SCHEMAS, FieldSchema


TEMPLATES_FILE = "templates.json"


class KeyRole(str, enum.Enum):
    """Key roles a signer may present. One key per role per person."""
    PROPERTY = "property"          # Ownership, splits, transfers
    CONTRACTUAL = "contractual"    # Licensing, collaborations
    FINANCIAL = "financial"        # Payments, royalties
    DOCUMENT = "document"          # NDAs, waivers, assignments
    IDENTITY = "identity"          # Identity and role assignment


class SignerRule(str, enum.Enum):
    """How an attestation decides it has enough signatures."""
    ALL_PARTIES = "all_parties"
    QUORUM = "quorum"
    NONE = "none"


@dataclass(frozen=True)
class ContractTemplate:
    action: str
    version: str
    schema: type[FieldSchema]
    key_roles: frozenset[KeyRole]
    signer_rule: SignerRule
    text: str
    item_text: Mapping[str, str] = field(default_factory=dict)

    @property
    def required_fields(self) -> tuple[str, ...]:
        return self.schema.field_names()

    def parse_fields(self, data: Any) -> FieldSchema:
        """Validate a plain mapping against this template's schema."""
        if isinstance(data, self.schema):
            return data
        return self.schema.from_mapping(data)

    def accepts_role(self, role: str) -> bool:
        return role in {r.value for r in self.key_roles}

    def eligible_signers(self, fields: FieldSchema) -> frozenset[str]:
        return frozenset(fields.signer_pubkeys())

    def required_signatures(self, fields: FieldSchema) -> int:
        if self.signer_rule == SignerRule.NONE:
            return 0
        if self.signer_rule == SignerRule.QUORUM:
            quorum = fields.quorum_size()
            if quorum is None:
                raise ValidationError(
                    f"Template {self.action} uses a quorum rule but its fields carry no quorum"
                )
            return quorum
        return len(fields.signer_pubkeys())

    def render(self, fields: FieldSchema) -> str:
        """Render the contract text for a set of fields."""
        context = fields.render_context()
        for key, line in self.item_text.items():
            items = context.get(key) or []
            context[key] = "\n".join(line.format_map(item) for item in items)
        return self.text.format_map(context).strip()

    def describe(self) -> dict[str, Any]:
        return {
            "action": self.action,
            "version": self.version,
            "required_fields": list(self.required_fields),
            "key_roles": sorted(r.value for r in self.key_roles),
            "signer_rule": self.signer_rule.value,
        }


class TemplateRegistry:
    """Read-only lookup of templates by action name.

    Usage:
        registry = TemplateRegistry.from_config_dir(Path("config"))
        template = registry.get("publishing-split")
        fields = template.parse_fields(raw_fields)
    """

    def __init__(self, templates: Iterable[ContractTemplate]) -> None:
        table: dict[str, ContractTemplate] = {}
        for template in templates:
            if template.action in table:
                raise ValueError(f"Duplicate template action: {template.action}")
            table[template.action] = template
        self._templates: Mapping[str, ContractTemplate] = MappingProxyType(table)

    @classmethod
    def from_config_dir(cls, config_dir: Path) -> TemplateRegistry:
        path = config_dir / TEMPLATES_FILE
        data = json.loads(path.read_text(encoding="utf-8"))
        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> TemplateRegistry:
        """Build a registry from the ``templates.json`` structure.

        Fail-closed: unknown schemas, roles or signer rules raise ValueError
        at load time rather than at first use.
        """
        templates = []
        for action, entry in data["templates"].items():
            schema_name = entry["schema"]
            if schema_name not in SCHEMAS:
                raise ValueError(f"Template {action}: unknown schema {schema_name!r}")
            roles = entry["key_roles"]
            if not roles:
                raise ValueError(f"Template {action}: at least one key role required")
            text = entry["text"]
            if isinstance(text, list):
                text = "\n".join(text)
            template = ContractTemplate(
                action=action,
                version=entry["version"],
                schema=SCHEMAS[schema_name],
                key_roles=frozenset(KeyRole(r) for r in roles),
                signer_rule=SignerRule(entry["signer_rule"]),
                text=text,
                item_text=MappingProxyType(dict(entry.get("item_text", {}))),
            )
            templates.append(template)
        return cls(templates)

    def get(self, action: str) -> ContractTemplate:
        template = self._templates.get(action)
        if template is None:
            raise ValidationError(
                f"Unknown contract template: {action}",
                problems=[f"known templates: {', '.join(sorted(self._templates))}"],
            )
        return template

    def actions(self) -> list[str]:
        return sorted(self._templates)

    def describe(self) -> list[dict[str, Any]]:
        return [self._templates[a].describe() for a in self.actions()]

    def __contains__(self, action: object) -> bool:
        return action in self._templates

    def __len__(self) -> int:
        return len(self._templates)
