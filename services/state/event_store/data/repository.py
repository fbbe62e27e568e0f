"""Authoritative SQL repository for Event Store Service state."""

from __future__ import annotations

import json
from collections import Counter
from collections.abc import Mapping, Sequence
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import ColumnElement, cast, delete, func, insert, select, update
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Session

from packages.ledger_shared.ids import generate_ulid_str
from resources.substrates.postgres import SessionProvider
from services.state.event_store.domain import (
    PSEUDONYMIZED_AT_KEY,
    PSEUDONYMIZED_KEY,
    AuditEvent,
    DataClassification,
    ErasureOutcome,
    EventDetails,
    EventQuery,
    EventStatus,
    IntegrityVerification,
    LifecycleBatch,
    PrincipalSummary,
    PseudonymizationOutcome,
    PseudonymMapping,
    canonical_timestamp,
)
from services.state.event_store.errors import ProtectedClassificationError
from services.state.event_store.interfaces import AuditEventRepository

from .schema import audit_integrity_log, audit_log, pseudonym_mapping


class PostgresAuditEventRepository(AuditEventRepository):
    """SQL repository over Event Store owned tables."""

    def __init__(self, sessions: SessionProvider) -> None:
        self._sessions = sessions

    def insert_event(self, *, event: AuditEvent) -> AuditEvent:
        """Insert one sealed event row."""
        with self._sessions.session() as session:
            session.execute(insert(audit_log).values(**_to_row(event)))
        return event

    def get_event(self, *, event_id: str) -> AuditEvent | None:
        """Read one event row by id."""
        with self._sessions.session() as session:
            row = (
                session.execute(select(audit_log).where(audit_log.c.id == event_id))
                .mappings()
                .one_or_none()
            )
            return None if row is None else _to_event(row)

    def query_events(self, *, query: EventQuery) -> list[AuditEvent]:
        """Read one principal's events in timestamp order."""
        stmt = select(audit_log).where(audit_log.c.principal_id == query.principal_id)
        if query.organization_id is not None:
            stmt = stmt.where(audit_log.c.organization_id == query.organization_id)
        if query.start is not None:
            stmt = stmt.where(audit_log.c.timestamp >= _utc(query.start))
        if query.end is not None:
            stmt = stmt.where(audit_log.c.timestamp <= _utc(query.end))
        stmt = stmt.order_by(audit_log.c.timestamp, audit_log.c.id)
        if query.limit is not None:
            stmt = stmt.limit(query.limit)

        with self._sessions.session() as session:
            rows = session.execute(stmt).mappings().all()
            return [_to_event(row) for row in rows]

    def list_events_after(
        self, *, after_event_id: str | None, limit: int
    ) -> list[AuditEvent]:
        """Read up to ``limit`` events in id order after an optional cursor."""
        stmt = select(audit_log).order_by(audit_log.c.id).limit(limit)
        if after_event_id is not None:
            stmt = stmt.where(audit_log.c.id > after_event_id)
        with self._sessions.session() as session:
            rows = session.execute(stmt).mappings().all()
            return [_to_event(row) for row in rows]

    def record_integrity_results(
        self,
        *,
        results: Sequence[IntegrityVerification],
        verified_by: str,
        verified_at: datetime,
    ) -> int:
        """Insert one integrity-log row per verification result."""
        if len(results) == 0:
            return 0
        rows = [
            {
                "id": generate_ulid_str(),
                "audit_log_id": result.event_id,
                "verification_timestamp": _utc(verified_at),
                "verification_status": "valid" if result.valid else "invalid",
                "reason": None if result.reason is None else result.reason.value,
                "hash_verified": result.computed_hash == result.expected_hash,
                "signature_verified": (
                    result.valid if result.signature_checked else None
                ),
                "pseudonymized": result.pseudonymized,
                "expected_hash": result.expected_hash,
                "computed_hash": result.computed_hash,
                "verified_by": verified_by,
                "verification_details": {"detail": result.detail},
            }
            for result in results
        ]
        with self._sessions.session() as session:
            session.execute(insert(audit_integrity_log), rows)
        return len(rows)

    def archive_batch(
        self,
        *,
        classification: DataClassification,
        cutoff: datetime,
        archived_at: datetime,
        batch_size: int,
    ) -> LifecycleBatch:
        """Archive up to ``batch_size`` unarchived records older than ``cutoff``."""
        _reject_protected(classification, operation="archive_batch")
        with self._sessions.session() as session:
            rows = self._select_lifecycle_chunk(
                session,
                classification=classification,
                cutoff=cutoff,
                archived=False,
                batch_size=batch_size,
            )
            if len(rows) == 0:
                return LifecycleBatch(affected=0, exhausted=True)

            result = session.execute(
                update(audit_log)
                .where(
                    audit_log.c.id.in_([row["id"] for row in rows]),
                    audit_log.c.archived_at.is_(None),
                )
                .values(archived_at=_utc(archived_at))
            )
            return _lifecycle_batch(
                rows,
                classification=classification,
                affected=int(result.rowcount or 0),
                batch_size=batch_size,
            )

    def delete_archived_batch(
        self,
        *,
        classification: DataClassification,
        cutoff: datetime,
        batch_size: int,
    ) -> LifecycleBatch:
        """Delete up to ``batch_size`` archived records older than ``cutoff``."""
        _reject_protected(classification, operation="delete_archived_batch")
        with self._sessions.session() as session:
            rows = self._select_lifecycle_chunk(
                session,
                classification=classification,
                cutoff=cutoff,
                archived=True,
                batch_size=batch_size,
            )
            if len(rows) == 0:
                return LifecycleBatch(affected=0, exhausted=True)

            result = session.execute(
                delete(audit_log).where(
                    audit_log.c.id.in_([row["id"] for row in rows]),
                    audit_log.c.archived_at.is_not(None),
                )
            )
            return _lifecycle_batch(
                rows,
                classification=classification,
                affected=int(result.rowcount or 0),
                batch_size=batch_size,
            )

    def pseudonymize_principal(
        self,
        *,
        principal_id: str,
        mapping: PseudonymMapping,
        actions: Sequence[str] | None = None,
    ) -> PseudonymizationOutcome:
        """Insert mapping when absent and rewrite the principal in one transaction."""
        with self._sessions.session() as session:
            created = _ensure_mapping(session, mapping)
            affected = _rewrite_principal(
                session,
                principal_id=principal_id,
                mapping=mapping,
                actions=actions,
            )
            return PseudonymizationOutcome(
                pseudonym_id=mapping.pseudonym_id,
                records_affected=affected,
                mapping_created=created,
            )

    def erase_principal(
        self,
        *,
        principal_id: str,
        preserve_actions: Sequence[str] = (),
        mapping: PseudonymMapping | None = None,
    ) -> ErasureOutcome:
        """Preserve the allow-listed subset under a pseudonym and delete the rest."""
        if len(preserve_actions) > 0 and mapping is None:
            raise ValueError("mapping is required when preserving records")

        with self._sessions.session() as session:
            preserved = 0
            pseudonym_id: str | None = None
            if mapping is not None and len(preserve_actions) > 0:
                eligible = session.execute(
                    select(func.count())
                    .select_from(audit_log)
                    .where(
                        audit_log.c.principal_id == principal_id,
                        audit_log.c.action.in_(list(preserve_actions)),
                    )
                ).scalar_one()
                if int(eligible) > 0:
                    _ensure_mapping(session, mapping)
                    preserved = _rewrite_principal(
                        session,
                        principal_id=principal_id,
                        mapping=mapping,
                        actions=preserve_actions,
                    )
                    pseudonym_id = mapping.pseudonym_id

            result = session.execute(
                delete(audit_log).where(audit_log.c.principal_id == principal_id)
            )
            return ErasureOutcome(
                records_deleted=int(result.rowcount or 0),
                records_preserved=preserved,
                pseudonym_id=pseudonym_id,
            )

    def get_pseudonym_mapping(self, *, pseudonym_id: str) -> PseudonymMapping | None:
        """Read one mapping row by pseudonym id."""
        with self._sessions.session() as session:
            row = (
                session.execute(
                    select(pseudonym_mapping).where(
                        pseudonym_mapping.c.pseudonym_id == pseudonym_id
                    )
                )
                .mappings()
                .one_or_none()
            )
            return None if row is None else _to_mapping(row)

    def principal_summary(
        self, *, principal_id: str, compliance_actions: Sequence[str]
    ) -> PrincipalSummary:
        """Aggregate counts, labels, and covered range for one principal."""
        owned = audit_log.c.principal_id == principal_id
        with self._sessions.session() as session:
            count, oldest, newest = session.execute(
                select(
                    func.count(audit_log.c.id),
                    func.min(audit_log.c.timestamp),
                    func.max(audit_log.c.timestamp),
                ).where(owned)
            ).one()
            classifications = session.execute(
                select(audit_log.c.data_classification)
                .where(owned)
                .distinct()
                .order_by(audit_log.c.data_classification)
            ).scalars()
            policies = session.execute(
                select(audit_log.c.retention_policy)
                .where(owned)
                .distinct()
                .order_by(audit_log.c.retention_policy)
            ).scalars()
            critical = 0
            if len(compliance_actions) > 0:
                critical = session.execute(
                    select(func.count(audit_log.c.id)).where(
                        owned, audit_log.c.action.in_(list(compliance_actions))
                    )
                ).scalar_one()

            return PrincipalSummary(
                principal_id=principal_id,
                record_count=int(count or 0),
                data_classifications=[str(item) for item in classifications],
                retention_policies=[str(item) for item in policies],
                oldest_record=None if oldest is None else _utc(oldest),
                newest_record=None if newest is None else _utc(newest),
                compliance_critical_records=int(critical or 0),
            )

    def _select_lifecycle_chunk(
        self,
        session: Session,
        *,
        classification: DataClassification,
        cutoff: datetime,
        archived: bool,
        batch_size: int,
    ) -> list[Mapping[str, Any]]:
        """Lock and return one chunk of records matching a lifecycle predicate."""
        archived_predicate = (
            audit_log.c.archived_at.is_not(None)
            if archived
            else audit_log.c.archived_at.is_(None)
        )
        stmt = (
            select(audit_log.c.id, audit_log.c.action, audit_log.c.timestamp)
            .where(
                audit_log.c.data_classification == classification.value,
                audit_log.c.timestamp <= _utc(cutoff),
                archived_predicate,
            )
            .order_by(audit_log.c.timestamp, audit_log.c.id)
            .limit(batch_size)
            .with_for_update(skip_locked=True)
        )
        return list(session.execute(stmt).mappings().all())


def _reject_protected(classification: DataClassification, *, operation: str) -> None:
    """Refuse lifecycle statements against SYSTEM-classified records."""
    if classification is DataClassification.SYSTEM:
        raise ProtectedClassificationError(operation=operation)


def _ensure_mapping(session: Session, mapping: PseudonymMapping) -> bool:
    """Insert ``mapping`` unless its pseudonym already exists."""
    existing = session.execute(
        select(pseudonym_mapping.c.id).where(
            pseudonym_mapping.c.pseudonym_id == mapping.pseudonym_id
        )
    ).first()
    if existing is not None:
        return False
    session.execute(
        insert(pseudonym_mapping).values(
            id=generate_ulid_str(),
            pseudonym_id=mapping.pseudonym_id,
            original_id=mapping.original_id,
            strategy=mapping.strategy,
            timestamp=_utc(mapping.timestamp),
        )
    )
    return True


def _rewrite_principal(
    session: Session,
    *,
    principal_id: str,
    mapping: PseudonymMapping,
    actions: Sequence[str] | None,
) -> int:
    """Bulk-replace ``principal_id`` and merge the pseudonymization markers."""
    patch = {
        PSEUDONYMIZED_KEY: True,
        PSEUDONYMIZED_AT_KEY: canonical_timestamp(mapping.timestamp),
    }
    stmt = update(audit_log).where(audit_log.c.principal_id == principal_id)
    if actions is not None:
        stmt = stmt.where(audit_log.c.action.in_(list(actions)))
    stmt = stmt.values(
        principal_id=mapping.pseudonym_id,
        details=_merged_details(session, patch),
    )
    return int(session.execute(stmt).rowcount or 0)


def _merged_details(session: Session, patch: dict[str, Any]) -> ColumnElement[Any]:
    """Return a dialect-specific expression merging ``patch`` into details."""
    payload = json.dumps(patch, sort_keys=True)
    if session.get_bind().dialect.name == "postgresql":
        return audit_log.c.details.op("||", return_type=JSONB)(cast(payload, JSONB))
    return func.json_patch(audit_log.c.details, payload)


def _lifecycle_batch(
    rows: Sequence[Mapping[str, Any]],
    *,
    classification: DataClassification,
    affected: int,
    batch_size: int,
) -> LifecycleBatch:
    """Summarize one processed chunk by classification, action, and range."""
    timestamps = [_utc(row["timestamp"]) for row in rows]
    return LifecycleBatch(
        affected=affected,
        by_classification={classification.value: affected} if affected else {},
        by_action=dict(Counter(str(row["action"]) for row in rows)) if affected else {},
        earliest=min(timestamps),
        latest=max(timestamps),
        exhausted=len(rows) < batch_size,
    )


def _to_row(event: AuditEvent) -> dict[str, Any]:
    """Map one domain event to column values."""
    return {
        "id": event.event_id,
        "timestamp": _utc(event.timestamp),
        "principal_id": event.principal_id,
        "organization_id": event.organization_id,
        "action": event.action,
        "target_resource_type": event.target_resource_type,
        "target_resource_id": event.target_resource_id,
        "status": event.status.value,
        "outcome_description": event.outcome_description,
        "data_classification": event.data_classification.value,
        "retention_policy": event.retention_policy,
        "details": event.details.as_dict(),
        "hash": event.hash,
        "hash_algorithm": event.hash_algorithm,
        "signature": event.signature,
        "signing_key_id": event.signing_key_id,
        "signature_algorithm": event.signature_algorithm,
        "event_version": event.event_version,
        "correlation_id": event.correlation_id,
        "archived_at": None if event.archived_at is None else _utc(event.archived_at),
    }


def _to_event(row: Mapping[str, Any]) -> AuditEvent:
    """Map one SQL row to a strict domain event."""
    archived_at = row.get("archived_at")
    return AuditEvent(
        event_id=str(row["id"]),
        timestamp=_utc(row["timestamp"]),
        principal_id=str(row["principal_id"]),
        organization_id=row.get("organization_id"),
        action=str(row["action"]),
        status=EventStatus(str(row["status"])),
        target_resource_type=row.get("target_resource_type"),
        target_resource_id=row.get("target_resource_id"),
        outcome_description=row.get("outcome_description"),
        data_classification=DataClassification(str(row["data_classification"])),
        retention_policy=str(row["retention_policy"]),
        details=EventDetails.model_validate(_details_dict(row.get("details"))),
        hash=str(row["hash"]),
        hash_algorithm=str(row["hash_algorithm"]),
        signature=row.get("signature"),
        signing_key_id=row.get("signing_key_id"),
        signature_algorithm=row.get("signature_algorithm"),
        event_version=str(row["event_version"]),
        correlation_id=row.get("correlation_id"),
        archived_at=None if archived_at is None else _utc(archived_at),
    )


def _to_mapping(row: Mapping[str, Any]) -> PseudonymMapping:
    """Map one SQL row to a pseudonym mapping."""
    return PseudonymMapping(
        pseudonym_id=str(row["pseudonym_id"]),
        original_id=str(row["original_id"]),
        strategy=str(row["strategy"]),
        timestamp=_utc(row["timestamp"]),
    )


def _details_dict(value: object) -> dict[str, Any]:
    """Normalize a stored details value into a mapping."""
    if value is None:
        return {}
    if isinstance(value, str):
        value = json.loads(value)
    if not isinstance(value, dict):
        raise ValueError("audit_log.details must be a JSON object")
    return value


def _utc(value: datetime) -> datetime:
    """Normalize naive/aware datetimes to UTC; naive values are UTC already."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)
