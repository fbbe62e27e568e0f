"""SQLite-backed behavior tests for the Event Store SQL repository."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Any

import pytest
from sqlalchemy import func, select

from packages.ledger_shared.ids import generate_ulid_str
from resources.substrates.postgres import SessionProvider
from services.state.event_store.data import PostgresAuditEventRepository
from services.state.event_store.data import repository as repository_module
from services.state.event_store.data.schema import (
    audit_integrity_log,
    audit_log,
    pseudonym_mapping,
)
from services.state.event_store.domain import (
    AuditEvent,
    DataClassification,
    EventDetails,
    EventQuery,
    EventStatus,
    IntegrityReason,
    PseudonymMapping,
)
from services.state.event_store.errors import ProtectedClassificationError
from services.state.event_store.sealer import IntegritySealer

NOW = datetime(2026, 10, 1, 12, 0, 0, tzinfo=UTC)
ALLOW_LIST = ("auth.login.success", "auth.login.failure")


def _store(
    repo: PostgresAuditEventRepository,
    *,
    principal_id: str = "user-1",
    action: str = "record.read",
    classification: DataClassification = DataClassification.PHI,
    age_days: float = 0,
    archived_at: datetime | None = None,
    organization_id: str | None = "org-1",
    details: dict[str, object] | None = None,
) -> AuditEvent:
    sealed = IntegritySealer().seal(
        AuditEvent(
            event_id=generate_ulid_str(),
            timestamp=NOW - timedelta(days=age_days),
            principal_id=principal_id,
            organization_id=organization_id,
            action=action,
            status=EventStatus.SUCCESS,
            target_resource_type="record",
            target_resource_id="r-1",
            outcome_description=None,
            data_classification=classification,
            retention_policy="healthcare_phi",
            details=EventDetails.model_validate(details or {"source": "test"}),
            hash="",
            hash_algorithm="SHA-256",
            event_version="1.0",
            archived_at=archived_at,
        )
    )
    return repo.insert_event(event=sealed)


def _mapping(pseudonym_id: str = "pseudo-0011223344556677") -> PseudonymMapping:
    return PseudonymMapping(
        pseudonym_id=pseudonym_id,
        original_id="ciphertext",
        strategy="hash",
        timestamp=NOW,
    )


def _count(sessions: SessionProvider, table: Any, *criteria: Any) -> int:
    stmt = select(func.count()).select_from(table)
    if criteria:
        stmt = stmt.where(*criteria)
    with sessions.session() as session:
        return int(session.execute(stmt).scalar_one())


def test_stored_event_round_trips_and_still_verifies(
    sqlite_sessions: SessionProvider,
) -> None:
    """Storage must preserve every sealed field byte-for-byte."""
    repo = PostgresAuditEventRepository(sqlite_sessions)
    stored = _store(repo, details={"nested": {"k": [1, 2.5, None]}, "flag": True})

    loaded = repo.get_event(event_id=stored.event_id)

    assert loaded == stored
    assert IntegritySealer().verify(loaded).valid is True
    assert repo.get_event(event_id=generate_ulid_str()) is None


def test_query_events_orders_by_timestamp_and_filters(
    sqlite_sessions: SessionProvider,
) -> None:
    """Queries return one principal's records in timestamp order within range."""
    repo = PostgresAuditEventRepository(sqlite_sessions)
    newest = _store(repo, age_days=1)
    oldest = _store(repo, age_days=30)
    middle = _store(repo, age_days=10)
    _store(repo, age_days=5, organization_id="org-2")
    _store(repo, principal_id="user-2", age_days=2)

    everything = repo.query_events(query=EventQuery(principal_id="user-1"))
    scoped = repo.query_events(
        query=EventQuery(
            principal_id="user-1",
            organization_id="org-1",
            start=NOW - timedelta(days=15),
            end=NOW,
        )
    )

    assert len(everything) == 4
    assert [event.timestamp for event in everything] == sorted(
        event.timestamp for event in everything
    )
    assert [event.event_id for event in scoped] == [middle.event_id, newest.event_id]
    assert oldest.event_id not in {event.event_id for event in scoped}


def test_archive_batch_processes_bounded_chunks(sqlite_sessions: SessionProvider) -> None:
    """Archival runs chunk by chunk and only touches eligible records."""
    repo = PostgresAuditEventRepository(sqlite_sessions)
    for index in range(25):
        _store(repo, age_days=100, action="read" if index % 2 else "write")
    _store(repo, age_days=10)
    _store(repo, age_days=100, classification=DataClassification.INTERNAL)

    cutoff = NOW - timedelta(days=90)
    batches = []
    while True:
        batch = repo.archive_batch(
            classification=DataClassification.PHI,
            cutoff=cutoff,
            archived_at=NOW,
            batch_size=10,
        )
        batches.append(batch)
        if batch.exhausted:
            break

    assert [batch.affected for batch in batches] == [10, 10, 5]
    assert sum(batch.by_action.get("read", 0) for batch in batches) == 12
    assert sum(batch.by_action.get("write", 0) for batch in batches) == 13
    assert batches[0].by_classification == {"PHI": 10}
    assert _count(sqlite_sessions, audit_log, audit_log.c.archived_at.is_not(None)) == 25

    again = repo.archive_batch(
        classification=DataClassification.PHI,
        cutoff=cutoff,
        archived_at=NOW,
        batch_size=10,
    )
    assert again.affected == 0
    assert again.exhausted is True


def test_delete_requires_prior_archival(sqlite_sessions: SessionProvider) -> None:
    """Unarchived records are never deleted, however old."""
    repo = PostgresAuditEventRepository(sqlite_sessions)
    archived = [
        _store(repo, age_days=400, archived_at=NOW - timedelta(days=300))
        for _ in range(3)
    ]
    active = _store(repo, age_days=400)

    batch = repo.delete_archived_batch(
        classification=DataClassification.PHI,
        cutoff=NOW - timedelta(days=365),
        batch_size=100,
    )

    assert batch.affected == 3
    assert all(repo.get_event(event_id=event.event_id) is None for event in archived)
    assert repo.get_event(event_id=active.event_id) is not None


def test_system_classification_is_refused(sqlite_sessions: SessionProvider) -> None:
    """Lifecycle statements never target the SYSTEM classification."""
    repo = PostgresAuditEventRepository(sqlite_sessions)
    _store(repo, age_days=5000, classification=DataClassification.SYSTEM)

    with pytest.raises(ProtectedClassificationError):
        repo.archive_batch(
            classification=DataClassification.SYSTEM,
            cutoff=NOW,
            archived_at=NOW,
            batch_size=10,
        )
    with pytest.raises(ProtectedClassificationError):
        repo.delete_archived_batch(
            classification=DataClassification.SYSTEM, cutoff=NOW, batch_size=10
        )


def test_pseudonymize_rewrites_principal_and_merges_markers(
    sqlite_sessions: SessionProvider,
) -> None:
    """Pseudonymization preserves counts and keeps extension detail keys."""
    repo = PostgresAuditEventRepository(sqlite_sessions)
    for _ in range(4):
        _store(repo, details={"ip": "10.0.0.1"})
    _store(repo, principal_id="user-2")

    outcome = repo.pseudonymize_principal(principal_id="user-1", mapping=_mapping())
    repeat = repo.pseudonymize_principal(principal_id="user-1", mapping=_mapping())

    assert outcome.records_affected == 4
    assert outcome.mapping_created is True
    assert repeat.records_affected == 0
    assert repeat.mapping_created is False
    assert repo.query_events(query=EventQuery(principal_id="user-1")) == []

    rewritten = repo.query_events(
        query=EventQuery(principal_id="pseudo-0011223344556677")
    )
    assert len(rewritten) == 4
    for event in rewritten:
        assert event.details.pseudonymized is True
        assert event.details.pseudonymized_at == "2026-10-01T12:00:00.000000Z"
        assert event.details.as_dict()["ip"] == "10.0.0.1"
        assert IntegritySealer().verify(event).reason == IntegrityReason.HASH_MISMATCH
    assert len(repo.query_events(query=EventQuery(principal_id="user-2"))) == 1


def test_pseudonymize_is_atomic_when_bulk_update_fails(
    sqlite_sessions: SessionProvider, monkeypatch: pytest.MonkeyPatch
) -> None:
    """A failed bulk update leaves neither mapping nor rewritten rows behind."""
    repo = PostgresAuditEventRepository(sqlite_sessions)
    _store(repo)

    def _boom(*args: object, **kwargs: object) -> int:
        raise RuntimeError("bulk update failed")

    monkeypatch.setattr(repository_module, "_rewrite_principal", _boom)

    with pytest.raises(RuntimeError):
        repo.pseudonymize_principal(principal_id="user-1", mapping=_mapping())

    assert repo.get_pseudonym_mapping(pseudonym_id="pseudo-0011223344556677") is None
    assert len(repo.query_events(query=EventQuery(principal_id="user-1"))) == 1


def test_erase_preserves_allow_listed_subset(sqlite_sessions: SessionProvider) -> None:
    """Preserved plus deleted equals the original total for the principal."""
    repo = PostgresAuditEventRepository(sqlite_sessions)
    for action in ("auth.login.success", "auth.login.failure", "record.read"):
        _store(repo, action=action)
        _store(repo, action=action)

    outcome = repo.erase_principal(
        principal_id="user-1", preserve_actions=ALLOW_LIST, mapping=_mapping()
    )

    assert outcome.records_preserved == 4
    assert outcome.records_deleted == 2
    assert outcome.pseudonym_id == "pseudo-0011223344556677"
    survivors = repo.query_events(
        query=EventQuery(principal_id="pseudo-0011223344556677")
    )
    assert {event.action for event in survivors} <= set(ALLOW_LIST)
    assert repo.query_events(query=EventQuery(principal_id="user-1")) == []


def test_erase_without_preservation_deletes_everything(
    sqlite_sessions: SessionProvider,
) -> None:
    """Unconditional erasure deletes all records and stores no mapping."""
    repo = PostgresAuditEventRepository(sqlite_sessions)
    _store(repo, action="auth.login.success")
    _store(repo, action="record.read")

    outcome = repo.erase_principal(principal_id="user-1")

    assert outcome.records_deleted == 2
    assert outcome.records_preserved == 0
    assert outcome.pseudonym_id is None
    assert _count(sqlite_sessions, pseudonym_mapping) == 0


def test_erase_skips_mapping_when_nothing_is_preserved(
    sqlite_sessions: SessionProvider,
) -> None:
    """No mapping row is written when no allow-listed record exists."""
    repo = PostgresAuditEventRepository(sqlite_sessions)
    _store(repo, action="record.read")

    outcome = repo.erase_principal(
        principal_id="user-1", preserve_actions=ALLOW_LIST, mapping=_mapping()
    )

    assert outcome.records_deleted == 1
    assert outcome.pseudonym_id is None
    assert repo.get_pseudonym_mapping(pseudonym_id="pseudo-0011223344556677") is None


def test_principal_summary_aggregates_records(sqlite_sessions: SessionProvider) -> None:
    """Summary reports counts, labels, and covered range."""
    repo = PostgresAuditEventRepository(sqlite_sessions)
    _store(repo, action="auth.login.success", age_days=3)
    _store(repo, classification=DataClassification.CONFIDENTIAL, age_days=1)

    summary = repo.principal_summary(principal_id="user-1", compliance_actions=ALLOW_LIST)
    empty = repo.principal_summary(principal_id="nobody", compliance_actions=ALLOW_LIST)

    assert summary.record_count == 2
    assert summary.data_classifications == ["CONFIDENTIAL", "PHI"]
    assert summary.retention_policies == ["healthcare_phi"]
    assert summary.oldest_record == NOW - timedelta(days=3)
    assert summary.newest_record == NOW - timedelta(days=1)
    assert summary.compliance_critical_records == 1
    assert empty.record_count == 0
    assert empty.oldest_record is None


def test_verification_cursor_and_integrity_log(sqlite_sessions: SessionProvider) -> None:
    """Sweeps page by id and persist one integrity row per result."""
    repo = PostgresAuditEventRepository(sqlite_sessions)
    stored = sorted((_store(repo) for _ in range(5)), key=lambda event: event.event_id)

    first = repo.list_events_after(after_event_id=None, limit=3)
    second = repo.list_events_after(after_event_id=first[-1].event_id, limit=3)
    results = [IntegritySealer().verify(event) for event in first + second]
    written = repo.record_integrity_results(
        results=results, verified_by="tester", verified_at=NOW
    )

    assert [event.event_id for event in first + second] == [
        event.event_id for event in stored
    ]
    assert written == 5
    assert (
        _count(
            sqlite_sessions,
            audit_integrity_log,
            audit_integrity_log.c.verification_status == "valid",
        )
        == 5
    )
