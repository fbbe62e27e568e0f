"""Identifier masking helpers for log output."""

from __future__ import annotations

DEFAULT_VISIBLE_CHARS = 4


def mask_identifier(value: str | None, *, visible_chars: int = DEFAULT_VISIBLE_CHARS) -> str:
    """Return ``value`` with all but the leading ``visible_chars`` replaced by ``*``.

    Values no longer than ``visible_chars`` are masked entirely so short
    identifiers never leak verbatim.
    """
    if not value:
        return ""
    if visible_chars < 0:
        raise ValueError("visible_chars must be >= 0")
    if len(value) <= visible_chars:
        return "*" * len(value)
    return value[:visible_chars] + "*" * (len(value) - visible_chars)
