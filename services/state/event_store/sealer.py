"""Integrity sealing: canonical serialization, hashing, and signatures.

A record's hash covers every stored field except the hash itself, the
signature fields, the store-assigned ``event_id``, and the ``archived_at``
lifecycle marker. Serialization is key-sorted compact JSON with UTC
timestamps, so the digest is independent of field order.
"""

from __future__ import annotations

import hashlib
import hmac
import json
from typing import Any

from packages.ledger_shared.logging import get_logger
from resources.adapters.kms import KeyManagementClient
from services.state.event_store.domain import (
    AuditEvent,
    canonical_timestamp,
    IntegrityReason,
    IntegrityVerification,
)

_LOGGER = get_logger(__name__)

SUPPORTED_HASH_ALGORITHM = "SHA-256"
HMAC_SIGNATURE_ALGORITHM = "HMAC-SHA256"
LOCAL_SIGNING_KEY_ID = "local"

UNSEALED_FIELDS = frozenset(
    {
        "event_id",
        "hash",
        "signature",
        "signing_key_id",
        "signature_algorithm",
        "archived_at",
    }
)


def canonical_payload(event: AuditEvent) -> dict[str, Any]:
    """Return the sealed field mapping for one event."""
    payload = event.model_dump(
        mode="json",
        exclude=set(UNSEALED_FIELDS | {"details", "timestamp"}),
    )
    payload["details"] = event.details.as_dict()
    payload["timestamp"] = canonical_timestamp(event.timestamp)
    return payload


def canonical_serialize(event: AuditEvent) -> bytes:
    """Return canonical UTF-8 bytes for hashing and signing."""
    return json.dumps(
        canonical_payload(event),
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
    ).encode("utf-8")


class IntegritySealer:
    """Seal records at write time and re-verify them on demand."""

    def __init__(
        self,
        *,
        hash_algorithm: str = SUPPORTED_HASH_ALGORITHM,
        kms: KeyManagementClient | None = None,
        signing_enabled: bool = False,
        signing_algorithm: str = "RSA-4096",
        signing_secret: str = "",
    ) -> None:
        if hash_algorithm != SUPPORTED_HASH_ALGORITHM:
            raise ValueError(f"unsupported hash algorithm: {hash_algorithm}")
        if signing_enabled and kms is None:
            raise ValueError("signing_enabled requires a key management client")
        self._hash_algorithm = hash_algorithm
        self._kms = kms
        self._signing_enabled = signing_enabled
        self._signing_algorithm = signing_algorithm
        self._signing_secret = signing_secret.encode("utf-8")

    @property
    def hash_algorithm(self) -> str:
        """Return the digest algorithm recorded on sealed events."""
        return self._hash_algorithm

    def compute_hash(self, event: AuditEvent) -> str:
        """Return the hex SHA-256 digest of the canonical event bytes."""
        return hashlib.sha256(canonical_serialize(event)).hexdigest()

    def seal(self, event: AuditEvent) -> AuditEvent:
        """Return ``event`` with hash and, when configured, signature attached.

        KMS failures propagate; an event that cannot be signed is not stored.
        """
        unsigned = event.model_copy(
            update={
                "hash_algorithm": self._hash_algorithm,
                "signature": None,
                "signing_key_id": None,
                "signature_algorithm": None,
            }
        )
        canonical = canonical_serialize(unsigned)
        update: dict[str, Any] = {"hash": hashlib.sha256(canonical).hexdigest()}

        if self._signing_enabled and self._kms is not None:
            signed = self._kms.sign(canonical, algorithm=self._signing_algorithm)
            update.update(
                signature=signed.signature,
                signing_key_id=signed.key_id,
                signature_algorithm=signed.algorithm,
            )
        elif self._signing_secret:
            update.update(
                signature=self._hmac(canonical),
                signing_key_id=LOCAL_SIGNING_KEY_ID,
                signature_algorithm=HMAC_SIGNATURE_ALGORITHM,
            )
        return unsigned.model_copy(update=update)

    def verify(self, event: AuditEvent) -> IntegrityVerification:
        """Recompute hash and signature for one stored record; never raises."""
        if event.hash_algorithm != SUPPORTED_HASH_ALGORITHM:
            return _invalid(
                event,
                reason=IntegrityReason.VERIFICATION_UNAVAILABLE,
                detail=f"unsupported hash algorithm {event.hash_algorithm}",
            )
        try:
            canonical = canonical_serialize(event)
        except (TypeError, ValueError) as exc:
            return _invalid(
                event,
                reason=IntegrityReason.VERIFICATION_UNAVAILABLE,
                detail=type(exc).__name__,
            )

        computed = hashlib.sha256(canonical).hexdigest()
        if not hmac.compare_digest(computed, event.hash):
            return _invalid(
                event,
                reason=IntegrityReason.HASH_MISMATCH,
                computed_hash=computed,
            )
        if event.signature is None:
            return _valid(event, computed_hash=computed, signature_checked=False)
        return self._verify_signature(event, canonical=canonical, computed_hash=computed)

    def _verify_signature(
        self, event: AuditEvent, *, canonical: bytes, computed_hash: str
    ) -> IntegrityVerification:
        """Route signature verification by the stored signature algorithm."""
        signature = event.signature or ""
        algorithm = event.signature_algorithm or self._signing_algorithm

        if algorithm == HMAC_SIGNATURE_ALGORITHM:
            if not self._signing_secret:
                return _invalid(
                    event,
                    reason=IntegrityReason.VERIFICATION_UNAVAILABLE,
                    computed_hash=computed_hash,
                    detail="local signing secret is not configured",
                )
            signature_ok = hmac.compare_digest(self._hmac(canonical), signature)
        else:
            if self._kms is None:
                return _invalid(
                    event,
                    reason=IntegrityReason.VERIFICATION_UNAVAILABLE,
                    computed_hash=computed_hash,
                    detail="key management client is not configured",
                )
            try:
                signature_ok = self._kms.verify(canonical, signature, algorithm=algorithm)
            except Exception as exc:  # noqa: BLE001
                _LOGGER.warning(
                    "Signature verification unavailable: event_id=%s exception_type=%s",
                    event.event_id,
                    type(exc).__name__,
                )
                return _invalid(
                    event,
                    reason=IntegrityReason.VERIFICATION_UNAVAILABLE,
                    computed_hash=computed_hash,
                    detail=type(exc).__name__,
                )

        if not signature_ok:
            return _invalid(
                event,
                reason=IntegrityReason.SIGNATURE_INVALID,
                computed_hash=computed_hash,
                signature_checked=True,
            )
        return _valid(event, computed_hash=computed_hash, signature_checked=True)

    def _hmac(self, canonical: bytes) -> str:
        """Return the hex HMAC-SHA256 of canonical bytes under the local secret."""
        return hmac.new(self._signing_secret, canonical, hashlib.sha256).hexdigest()


def _valid(
    event: AuditEvent, *, computed_hash: str, signature_checked: bool
) -> IntegrityVerification:
    return IntegrityVerification(
        event_id=event.event_id,
        valid=True,
        expected_hash=event.hash,
        computed_hash=computed_hash,
        signature_checked=signature_checked,
        pseudonymized=event.is_pseudonymized,
    )


def _invalid(
    event: AuditEvent,
    *,
    reason: IntegrityReason,
    computed_hash: str | None = None,
    signature_checked: bool = False,
    detail: str = "",
) -> IntegrityVerification:
    return IntegrityVerification(
        event_id=event.event_id,
        valid=False,
        reason=reason,
        expected_hash=event.hash,
        computed_hash=computed_hash,
        signature_checked=signature_checked,
        pseudonymized=event.is_pseudonymized,
        detail=detail,
    )
