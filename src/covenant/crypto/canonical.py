"""Canonical serialization — the sole input to every hash and signature.

Canonical form: keys sorted, compact separators, Unicode preserved,
UTF-8 encoded. Numbers have exactly one textual form: integral values
(``100``, ``100.0``, ``Decimal("100")``) are written as integers, all
other finite values as their exact plain decimal digits. A float
contributes the digits of its shortest round-trip text.

Two logically-equal values that differ only in key insertion order always
produce identical bytes, so signatures verify across processes.
"""

from __future__ import annotations

import dataclasses
import enum
import hashlib
import json
import math
from decimal import Decimal
from typing import Any

from covenant.errors import CanonicalizationError


HASH_PREFIX = "sha256:"


def canonicalize(value: Any) -> bytes:
    """Serialize a structured value to canonical bytes."""
    return _encode(_normalize(value)).encode("utf-8")


def canonical_text(value: Any) -> str:
    return canonicalize(value).decode("utf-8")


def format_number(value: int | float | Decimal) -> str:
    """Return the single canonical text for a number."""
    return _encode(_normalize_number(value))


def sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def prefixed(digest: str) -> str:
    """Ensure the sha256: prefix on a hex digest."""
    if digest.startswith(HASH_PREFIX):
        return digest
    return f"{HASH_PREFIX}{digest}"


def strip_prefix(digest: str) -> str:
    return digest.removeprefix(HASH_PREFIX)


def hash_value(value: Any) -> str:
    """sha256:-prefixed digest of the canonical form of ``value``."""
    return prefixed(sha256_hex(canonicalize(value)))


def hash_concat(*parts: str) -> str:
    """Hash hex digests joined end to end (prefixes stripped)."""
    joined = "".join(strip_prefix(p) for p in parts).encode("utf-8")
    return prefixed(sha256_hex(joined))


def _encode(value: Any) -> str:
    if isinstance(value, dict):
        return "{" + ",".join(
            f"{_encode(key)}:{_encode(item)}" for key, item in sorted(value.items())
        ) + "}"
    if isinstance(value, list):
        return "[" + ",".join(_encode(item) for item in value) + "]"
    if isinstance(value, Decimal):
        return _decimal_text(value)
    return json.dumps(value, ensure_ascii=False)


def _decimal_text(value: Decimal) -> str:
    return format(value.normalize(), "f")


def _normalize(value: Any) -> Any:
    if value is None or isinstance(value, (bool, str)):
        return value
    if isinstance(value, enum.Enum):
        return _normalize(value.value)
    if isinstance(value, (int, float, Decimal)):
        return _normalize_number(value)
    if isinstance(value, dict):
        out: dict[str, Any] = {}
        for key, item in value.items():
            if not isinstance(key, str):
                raise CanonicalizationError(
                    f"Mapping keys must be strings, got {type(key).__name__}"
                )
            out[key] = _normalize(item)
        return out
    if isinstance(value, (list, tuple)):
        return [_normalize(item) for item in value]
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return _normalize(
            {f.name: getattr(value, f.name) for f in dataclasses.fields(value)}
        )
    raise CanonicalizationError(f"Cannot canonicalize type: {type(value).__name__}")


def _normalize_number(value: int | float | Decimal) -> int | Decimal:
    """Integers stay integers; everything else becomes an exact Decimal.

    Floats go through their shortest round-trip text, so ``0.8`` and
    ``Decimal("0.8")`` agree while ``Decimal("0.80000000000000000001")``
    keeps every digit.
    """
    if isinstance(value, bool):
        raise CanonicalizationError("Booleans are not numbers")
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if not math.isfinite(value):
            raise CanonicalizationError(f"Non-finite number: {value}")
        value = Decimal(repr(value))
    if not value.is_finite():
        raise CanonicalizationError(f"Non-finite number: {value}")
    if value == value.to_integral_value():
        return int(value)
    return value
