"""Pseudonym and request identifier generation."""

from __future__ import annotations

import base64
import hashlib
import secrets
import time
from collections.abc import Callable

from services.action.subject_rights.domain import PseudonymizationStrategy

PSEUDONYM_PREFIX = "pseudo-"
ENCRYPTED_PSEUDONYM_PREFIX = "pseudo-enc-"
_ENCODED_CHARS = 16


def generate_pseudonym_id(
    principal_id: str, *, strategy: PseudonymizationStrategy, salt: str
) -> str:
    """Derive a pseudonym for ``principal_id``.

    ``hash`` is deterministic for a given salt, ``token`` is random, and
    ``encryption`` is a reversible encoding that offers no secrecy on its own.
    The recoverable identifier always lives in the KMS-encrypted mapping.
    """
    if strategy == PseudonymizationStrategy.HASH:
        digest = hashlib.sha256((principal_id + salt).encode("utf-8")).hexdigest()
        return PSEUDONYM_PREFIX + digest[:16]
    if strategy == PseudonymizationStrategy.TOKEN:
        return PSEUDONYM_PREFIX + secrets.token_hex(16)
    if strategy == PseudonymizationStrategy.ENCRYPTION:
        encoded = base64.b64encode(principal_id.encode("utf-8")).decode("ascii")
        alphanumeric = "".join(char for char in encoded if char.isalnum())
        return ENCRYPTED_PSEUDONYM_PREFIX + alphanumeric[:_ENCODED_CHARS]
    raise ValueError(f"unsupported pseudonymization strategy: {strategy}")


def generate_request_id(*, clock_ms: Callable[[], int] | None = None) -> str:
    """Return ``gdpr-<epoch ms>-<16 hex>``."""
    now_ms = clock_ms() if clock_ms is not None else time.time_ns() // 1_000_000
    return f"gdpr-{now_ms}-{secrets.token_hex(8)}"
