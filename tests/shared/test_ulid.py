"""Tests for shared ULID generation and validation semantics."""

from __future__ import annotations

import pytest

from packages.ledger_shared.ids import (
    ULID_STR_LENGTH,
    generate_ulid_str,
    require_ulid_str,
)


def test_generated_ulid_is_canonical_and_prefixed_by_timestamp() -> None:
    value = generate_ulid_str(timestamp_ms=1_790_000_000_000)
    sibling = generate_ulid_str(timestamp_ms=1_790_000_000_000)

    assert len(value) == ULID_STR_LENGTH
    assert require_ulid_str(value) == value
    assert value[:10] == sibling[:10]


def test_ulids_sort_in_creation_order() -> None:
    earlier = generate_ulid_str(timestamp_ms=1_000)
    later = generate_ulid_str(timestamp_ms=2_000)

    assert earlier < later


def test_require_ulid_str_normalizes_lowercase() -> None:
    value = generate_ulid_str()

    assert require_ulid_str(value.lower()) == value


@pytest.mark.parametrize(
    ("value", "message"),
    [
        (42, "must be a ULID string"),
        ("01ABC", "exactly 26 characters"),
        ("0" * 25 + "U", "invalid ULID character"),
        ("8" + "0" * 25, "exceeds 128-bit"),
    ],
)
def test_require_ulid_str_rejects_malformed_values(value: object, message: str) -> None:
    with pytest.raises(ValueError, match=message):
        require_ulid_str(value, field_name="event_id")


def test_generate_ulid_rejects_out_of_range_timestamp() -> None:
    with pytest.raises(ValueError, match="48-bit"):
        generate_ulid_str(timestamp_ms=-1)
