"""Transport-neutral protocol interfaces used by Event Store Service."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime
from typing import Protocol

from services.state.event_store.domain import (
    AuditEvent,
    DataClassification,
    ErasureOutcome,
    EventQuery,
    IntegrityVerification,
    LifecycleBatch,
    PrincipalSummary,
    PseudonymizationOutcome,
    PseudonymMapping,
)


class AuditEventRepository(Protocol):
    """Protocol for authoritative audit record persistence.

    Every bulk method runs as one transaction; a failure leaves no partial
    state behind.
    """

    def insert_event(self, *, event: AuditEvent) -> AuditEvent:
        """Persist one sealed event."""

    def get_event(self, *, event_id: str) -> AuditEvent | None:
        """Read one event by id."""

    def query_events(self, *, query: EventQuery) -> list[AuditEvent]:
        """Read one principal's events ordered by timestamp."""

    def list_events_after(
        self, *, after_event_id: str | None, limit: int
    ) -> list[AuditEvent]:
        """Read up to ``limit`` events in id order, starting after a cursor."""

    def record_integrity_results(
        self,
        *,
        results: Sequence[IntegrityVerification],
        verified_by: str,
        verified_at: datetime,
    ) -> int:
        """Persist verification findings and return rows written."""

    def archive_batch(
        self,
        *,
        classification: DataClassification,
        cutoff: datetime,
        archived_at: datetime,
        batch_size: int,
    ) -> LifecycleBatch:
        """Mark one chunk of eligible unarchived records as archived."""

    def delete_archived_batch(
        self,
        *,
        classification: DataClassification,
        cutoff: datetime,
        batch_size: int,
    ) -> LifecycleBatch:
        """Delete one chunk of eligible archived records."""

    def pseudonymize_principal(
        self,
        *,
        principal_id: str,
        mapping: PseudonymMapping,
        actions: Sequence[str] | None = None,
    ) -> PseudonymizationOutcome:
        """Insert mapping when absent and rewrite matching records atomically."""

    def erase_principal(
        self,
        *,
        principal_id: str,
        preserve_actions: Sequence[str] = (),
        mapping: PseudonymMapping | None = None,
    ) -> ErasureOutcome:
        """Pseudonymize the preserved subset and delete the rest atomically."""

    def get_pseudonym_mapping(self, *, pseudonym_id: str) -> PseudonymMapping | None:
        """Read one pseudonym mapping by pseudonym id."""

    def principal_summary(
        self, *, principal_id: str, compliance_actions: Sequence[str]
    ) -> PrincipalSummary:
        """Aggregate one principal's stored records."""
