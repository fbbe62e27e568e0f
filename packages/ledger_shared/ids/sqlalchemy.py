"""SQLAlchemy helpers for ULID-backed primary keys."""

from __future__ import annotations

from sqlalchemy import Column, String

from packages.ledger_shared.ids.ulid import ULID_STR_LENGTH


def ulid_primary_key_column(name: str = "id") -> Column[str]:
    """Return a standard ULID primary-key column definition.

    ULIDs are stored in canonical string form so keys stay portable across
    SQL dialects and remain time-sortable.
    """
    return Column(name, String(ULID_STR_LENGTH), primary_key=True, nullable=False)


def ulid_column(name: str, *, nullable: bool = False, index: bool = False) -> Column[str]:
    """Return a non-key ULID reference column definition."""
    return Column(name, String(ULID_STR_LENGTH), nullable=nullable, index=index)
