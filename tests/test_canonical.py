"""Tests for canonical serialization — proves hashing is order- and type-stable."""

from dataclasses import dataclass
from decimal import Decimal

import pytest

from covenant.crypto.canonical import (
    canonical_text,
    canonicalize,
    format_number,
    hash_concat,
    hash_value,
    sha256_hex,
)
from covenant.errors import CanonicalizationError


@dataclass(frozen=True)
class _Point:
    x: int
    y: float


class TestCanonicalize:
    def test_key_order_does_not_matter(self) -> None:
        a = {"b": 1, "a": [1, 2, {"d": "x", "c": None}]}
        b = {"a": [1, 2, {"c": None, "d": "x"}], "b": 1}
        assert canonicalize(a) == canonicalize(b)

    def test_compact_sorted_output(self) -> None:
        assert canonical_text({"b": True, "a": "x"}) == '{"a":"x","b":true}'

    def test_unicode_preserved(self) -> None:
        assert canonicalize({"name": "Zoë"}) == '{"name":"Zoë"}'.encode("utf-8")

    def test_integral_numbers_render_as_integers(self) -> None:
        assert canonicalize([100, 100.0, Decimal("100"), Decimal("100.00")]) == b"[100,100,100,100]"

    def test_fractional_numbers_round_trip(self) -> None:
        assert canonicalize([33.34, Decimal("0.8")]) == b"[33.34,0.8]"

    def test_decimal_digits_beyond_float_precision_kept(self) -> None:
        precise = Decimal("0.80000000000000000001")
        assert canonicalize(precise) == b"0.80000000000000000001"
        assert canonicalize(precise) != canonicalize(Decimal("0.8"))

    def test_trailing_zeros_and_exponents_normalized(self) -> None:
        assert canonicalize([Decimal("0.500"), Decimal("5E-1"), 0.5]) == b"[0.5,0.5,0.5]"
        assert canonicalize(1e-07) == b"0.0000001"

    def test_tuple_and_list_are_equivalent(self) -> None:
        assert canonicalize((1, 2)) == canonicalize([1, 2])

    def test_dataclass_converted_field_by_field(self) -> None:
        assert canonicalize(_Point(1, 2.5)) == canonicalize({"x": 1, "y": 2.5})

    @pytest.mark.parametrize("value", [float("nan"), float("inf"), Decimal("NaN")])
    def test_non_finite_rejected(self, value: object) -> None:
        with pytest.raises(CanonicalizationError):
            canonicalize({"v": value})

    def test_non_string_keys_rejected(self) -> None:
        with pytest.raises(CanonicalizationError):
            canonicalize({1: "x"})

    def test_unsupported_type_rejected(self) -> None:
        with pytest.raises(CanonicalizationError):
            canonicalize({"v": object()})

    def test_canonicalization_error_is_value_error(self) -> None:
        with pytest.raises(ValueError):
            canonicalize({"v": {1, 2}})


class TestHashing:
    def test_hash_value_is_prefixed_sha256(self) -> None:
        digest = hash_value({"a": 1})
        assert digest == "sha256:" + sha256_hex(b'{"a":1}')

    def test_hash_concat_ignores_prefixes(self) -> None:
        a, b = "sha256:" + "0" * 64, "1" * 64
        assert hash_concat(a, b) == hash_concat("0" * 64, "sha256:" + "1" * 64)

    def test_hash_concat_is_order_sensitive(self) -> None:
        a, b = hash_value(1), hash_value(2)
        assert hash_concat(a, b) != hash_concat(b, a)

    def test_format_number(self) -> None:
        assert format_number(Decimal("100.0")) == "100"
        assert format_number(99.5) == "99.5"
