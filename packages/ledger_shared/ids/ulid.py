"""ULID generation and validation helpers.

The canonical string form is 26 Crockford Base32 characters representing
exactly 128 bits: a 48-bit millisecond timestamp followed by 80 random bits.
ULID strings sort lexicographically in creation order.
"""

from __future__ import annotations

import secrets
import time

_ULID_ALPHABET = "0123456789ABCDEFGHJKMNPQRSTVWXYZ"
_DECODE_TABLE = {char: index for index, char in enumerate(_ULID_ALPHABET)}
_MAX_ULID_INT = (1 << 128) - 1

ULID_STR_LENGTH = 26


def generate_ulid_str(*, timestamp_ms: int | None = None) -> str:
    """Generate a new ULID in canonical 26-char string format."""
    ts_ms = int(time.time() * 1000) if timestamp_ms is None else int(timestamp_ms)
    if ts_ms < 0 or ts_ms >= (1 << 48):
        raise ValueError("timestamp_ms out of ULID 48-bit range")

    entropy = int.from_bytes(secrets.token_bytes(10), byteorder="big", signed=False)
    return _encode((ts_ms << 80) | entropy)


def require_ulid_str(value: object, *, field_name: str = "id") -> str:
    """Validate and normalize a value as a canonical ULID string."""
    if not isinstance(value, str):
        raise ValueError(f"{field_name} must be a ULID string")
    candidate = value.strip().upper()
    if len(candidate) != ULID_STR_LENGTH:
        raise ValueError(f"{field_name} must be exactly {ULID_STR_LENGTH} characters")

    number = 0
    for char in candidate:
        if char not in _DECODE_TABLE:
            raise ValueError(f"{field_name} has invalid ULID character: {char!r}")
        number = (number << 5) | _DECODE_TABLE[char]

    # 26 base32 chars encode 130 bits; canonical ULID uses only lower 128 bits.
    if number > _MAX_ULID_INT:
        raise ValueError(f"{field_name} exceeds 128-bit ULID range")
    return candidate


def _encode(number: int) -> str:
    """Encode a 128-bit integer as a 26-char Crockford Base32 string."""
    chars: list[str] = []
    for _ in range(ULID_STR_LENGTH):
        number, remainder = divmod(number, 32)
        chars.append(_ULID_ALPHABET[remainder])
    return "".join(reversed(chars))
