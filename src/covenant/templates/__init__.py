"""Contract templates — typed field schemas and the template registry."""

from covenant.templates.registry import (
    ContractTemplate,
    KeyRole,
    SignerRule,
    TemplateRegistry,
)
from covenant.templates.schemas import SCHEMAS, FieldSchema

__all__ = [
    "ContractTemplate",
    "FieldSchema",
    "KeyRole",
    "SCHEMAS",
    "SignerRule",
    "TemplateRegistry",
]
