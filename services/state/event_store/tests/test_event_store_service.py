"""Behavior tests for the Event Store public service API."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta, timezone

from sqlalchemy import update
from sqlalchemy.exc import OperationalError

from packages.ledger_shared.envelope import EnvelopeKind, EnvelopeMeta, new_meta
from packages.ledger_shared.errors import codes
from resources.adapters.kms import KeyManagementError, SignatureResult
from resources.substrates.postgres import SessionProvider
from services.state.event_store.config import EventStoreSettings
from services.state.event_store.data import PostgresAuditEventRepository
from services.state.event_store.data.schema import audit_log
from services.state.event_store.domain import (
    DataClassification,
    EventDetails,
    EventDraft,
    EventStatus,
    PseudonymMapping,
)
from services.state.event_store.implementation import DefaultEventStoreService
from services.state.event_store.sealer import IntegritySealer

NOW = datetime(2026, 10, 1, 12, 0, 0, tzinfo=UTC)


class _FailingKms:
    """KMS fake whose signing always fails after retries."""

    def encrypt(self, plaintext: str) -> str:
        return plaintext

    def decrypt(self, ciphertext: str) -> str:
        return ciphertext

    def sign(self, data: bytes, *, algorithm: str | None = None) -> SignatureResult:
        del data, algorithm
        raise KeyManagementError("kms sign failed", operation="sign", attempts=3)

    def verify(
        self, data: bytes, signature: str, *, algorithm: str | None = None
    ) -> bool:
        del data, signature, algorithm
        return False


class _UnavailableRepository:
    """Repository fake whose reads fail like an unreachable database."""

    def get_event(self, *, event_id: str) -> None:
        raise OperationalError("SELECT 1", {}, Exception("connection refused"))


def _service(
    sessions: SessionProvider, *, sealer: IntegritySealer | None = None
) -> DefaultEventStoreService:
    return DefaultEventStoreService(
        settings=EventStoreSettings(verification_batch_size=10),
        repository=PostgresAuditEventRepository(sessions),
        sealer=sealer or IntegritySealer(),
        clock=lambda: NOW,
    )


def _draft(**overrides: object) -> EventDraft:
    values: dict[str, object] = {
        "principal_id": "user-1",
        "organization_id": "org-1",
        "action": "record.read",
        "status": EventStatus.SUCCESS,
        "data_classification": DataClassification.PHI,
        "retention_policy": "healthcare_phi",
        "details": EventDetails.model_validate({"ip": "10.0.0.1"}),
    }
    values.update(overrides)
    return EventDraft.model_validate(values)


def test_append_event_seals_and_stores(
    sqlite_sessions: SessionProvider, meta: EnvelopeMeta
) -> None:
    """Appending should assign id, clock timestamp, version, and hash."""
    service = _service(sqlite_sessions)

    appended = service.append_event(meta=meta, draft=_draft())

    assert appended.ok
    event = appended.value()
    assert event.timestamp == NOW
    assert event.event_version == "1.0"
    assert event.hash_algorithm == "SHA-256"
    assert service.get_event(meta=meta, event_id=event.event_id).value() == event
    assert service.verify_event(meta=meta, event_id=event.event_id).value().valid


def test_append_event_keeps_caller_timestamp_in_utc(
    sqlite_sessions: SessionProvider, meta: EnvelopeMeta
) -> None:
    """Caller-provided timestamps are normalized rather than replaced."""
    service = _service(sqlite_sessions)
    local = datetime(2026, 9, 1, 10, 0, 0, tzinfo=timezone(timedelta(hours=2)))

    event = service.append_event(meta=meta, draft=_draft(timestamp=local)).value()

    assert event.timestamp == datetime(2026, 9, 1, 8, 0, 0, tzinfo=UTC)
    assert event.timestamp.tzinfo == UTC


def test_tampered_record_reports_integrity_failure(
    sqlite_sessions: SessionProvider, meta: EnvelopeMeta
) -> None:
    """A direct row edit should surface as a non-retryable integrity error."""
    service = _service(sqlite_sessions)
    event = service.append_event(meta=meta, draft=_draft()).value()
    with sqlite_sessions.session() as session:
        session.execute(
            update(audit_log)
            .where(audit_log.c.id == event.event_id)
            .values(action="record.delete")
        )

    result = service.verify_event(meta=meta, event_id=event.event_id)

    assert not result.ok
    assert result.errors[0].code == codes.INTEGRITY_VERIFICATION_FAILED
    assert result.errors[0].retryable is False
    assert result.errors[0].metadata["reason"] == "hash_mismatch"
    assert result.payload is not None
    assert result.payload.value.valid is False


def test_verify_events_classifies_and_records_findings(
    sqlite_sessions: SessionProvider, meta: EnvelopeMeta
) -> None:
    """Sweeps report findings by reason and flag pseudonymized records."""
    service = _service(sqlite_sessions)
    clean = service.append_event(meta=meta, draft=_draft()).value()
    tampered = service.append_event(
        meta=meta, draft=_draft(principal_id="user-2")
    ).value()
    service.append_event(meta=meta, draft=_draft(principal_id="user-3"))
    with sqlite_sessions.session() as session:
        session.execute(
            update(audit_log)
            .where(audit_log.c.id == tampered.event_id)
            .values(outcome_description="edited")
        )
    service.pseudonymize_principal(
        meta=meta,
        principal_id="user-3",
        mapping=PseudonymMapping(
            pseudonym_id="pseudo-aaaaaaaaaaaaaaaa",
            original_id="cipher",
            strategy="hash",
            timestamp=NOW,
        ),
    )

    report = service.verify_events(meta=meta).value()

    assert report.checked == 3
    assert report.valid == 1
    assert report.by_reason == {"hash_mismatch": 2}
    assert report.pseudonymized_findings == 1
    assert clean.event_id not in {finding.event_id for finding in report.findings}
    assert report.next_after_event_id is None


def test_verify_events_pages_with_cursor(
    sqlite_sessions: SessionProvider, meta: EnvelopeMeta
) -> None:
    """A full page returns a cursor for the next sweep batch."""
    service = _service(sqlite_sessions)
    for _ in range(3):
        service.append_event(meta=meta, draft=_draft())

    first = service.verify_events(meta=meta, limit=2).value()
    second = service.verify_events(
        meta=meta, limit=2, after_event_id=first.next_after_event_id
    ).value()

    assert first.checked == 2
    assert first.next_after_event_id is not None
    assert second.checked == 1
    assert second.next_after_event_id is None


def test_missing_records_and_invalid_meta_fail_cleanly(
    sqlite_sessions: SessionProvider, meta: EnvelopeMeta
) -> None:
    """Lookups return typed not-found and validation errors."""
    service = _service(sqlite_sessions)
    bad_meta = new_meta(kind=EnvelopeKind.UNSPECIFIED, source="test", principal="op")

    missing = service.get_event(meta=meta, event_id="01J0000000000000000000000")
    missing_mapping = service.get_pseudonym_mapping(meta=meta, pseudonym_id="pseudo-x")
    invalid = service.append_event(meta=bad_meta, draft=_draft())

    assert missing.errors[0].code == codes.RESOURCE_NOT_FOUND
    assert missing_mapping.errors[0].code == codes.RESOURCE_NOT_FOUND
    assert invalid.errors[0].code == codes.INVALID_ARGUMENT


def test_system_classification_lifecycle_is_rejected(
    sqlite_sessions: SessionProvider, meta: EnvelopeMeta
) -> None:
    """SYSTEM-classified records are never archived or deleted."""
    service = _service(sqlite_sessions)

    result = service.archive_batch(
        meta=meta,
        classification=DataClassification.SYSTEM,
        cutoff=NOW,
        archived_at=NOW,
        batch_size=10,
    )

    assert result.errors[0].code == codes.SYSTEM_CLASSIFICATION_PROTECTED


def test_kms_failure_prevents_append(
    sqlite_sessions: SessionProvider, meta: EnvelopeMeta
) -> None:
    """An unsigned event is never stored when signing is enabled."""
    service = _service(
        sqlite_sessions,
        sealer=IntegritySealer(kms=_FailingKms(), signing_enabled=True),
    )

    result = service.append_event(meta=meta, draft=_draft())

    assert result.errors[0].code == codes.KEY_MANAGEMENT_FAILURE
    summary = service.principal_summary(meta=meta, principal_id="user-1").value()
    assert summary.record_count == 0


def test_erase_with_preservation_requires_mapping(
    sqlite_sessions: SessionProvider, meta: EnvelopeMeta
) -> None:
    """Preserving records without a mapping is a caller error."""
    service = _service(sqlite_sessions)

    result = service.erase_principal(
        meta=meta, principal_id="user-1", preserve_actions=("auth.login.success",)
    )

    assert result.errors[0].code == codes.MISSING_REQUIRED_FIELD


def test_health_reports_substrate_state(
    sqlite_sessions: SessionProvider, meta: EnvelopeMeta
) -> None:
    """Health reflects repository reachability and never fails the envelope."""
    healthy = _service(sqlite_sessions).health(meta=meta).value()
    degraded = DefaultEventStoreService(
        settings=EventStoreSettings(),
        repository=_UnavailableRepository(),  # type: ignore[arg-type]
        sealer=IntegritySealer(),
    ).health(meta=meta)

    assert healthy.substrate_ready is True
    assert degraded.ok
    assert degraded.value().substrate_ready is False


def test_database_errors_are_normalized(meta: EnvelopeMeta) -> None:
    """Operational database failures map to retryable dependency errors."""
    service = DefaultEventStoreService(
        settings=EventStoreSettings(),
        repository=_UnavailableRepository(),  # type: ignore[arg-type]
        sealer=IntegritySealer(),
    )

    result = service.get_event(meta=meta, event_id="01J0000000000000000000000")

    assert result.errors[0].code == codes.DEPENDENCY_UNAVAILABLE
    assert result.errors[0].retryable is True
