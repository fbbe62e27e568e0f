"""Shared ULID primitives for primary-key standardization."""

from packages.ledger_shared.ids.sqlalchemy import ulid_column, ulid_primary_key_column
from packages.ledger_shared.ids.ulid import (
    ULID_STR_LENGTH,
    generate_ulid_str,
    require_ulid_str,
)

__all__ = [
    "ULID_STR_LENGTH",
    "generate_ulid_str",
    "require_ulid_str",
    "ulid_column",
    "ulid_primary_key_column",
]
