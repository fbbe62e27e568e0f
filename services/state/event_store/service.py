"""Authoritative in-process Python API for Event Store Service."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Sequence
from datetime import datetime

from packages.ledger_shared.config import LedgerSettings
from packages.ledger_shared.envelope import Envelope, EnvelopeMeta
from resources.adapters.kms import KeyManagementClient
from services.state.event_store.domain import (
    AuditEvent,
    DataClassification,
    ErasureOutcome,
    EventDraft,
    EventQuery,
    HealthStatus,
    IntegrityReport,
    IntegrityVerification,
    LifecycleBatch,
    PrincipalSummary,
    PseudonymizationOutcome,
    PseudonymMapping,
)


class EventStoreService(ABC):
    """Public API for sealed audit records and pseudonym mappings.

    ``append_event`` is the only way records are created. Bulk lifecycle
    statements refuse the SYSTEM classification.
    """

    @abstractmethod
    def append_event(
        self, *, meta: EnvelopeMeta, draft: EventDraft
    ) -> Envelope[AuditEvent]:
        """Seal one event and append it to the store."""

    @abstractmethod
    def get_event(self, *, meta: EnvelopeMeta, event_id: str) -> Envelope[AuditEvent]:
        """Read one stored event by id."""

    @abstractmethod
    def query_events(
        self, *, meta: EnvelopeMeta, query: EventQuery
    ) -> Envelope[list[AuditEvent]]:
        """Read one principal's events in timestamp order."""

    @abstractmethod
    def verify_event(
        self, *, meta: EnvelopeMeta, event_id: str
    ) -> Envelope[IntegrityVerification]:
        """Re-verify one stored event's hash and signature."""

    @abstractmethod
    def verify_events(
        self,
        *,
        meta: EnvelopeMeta,
        limit: int | None = None,
        after_event_id: str | None = None,
    ) -> Envelope[IntegrityReport]:
        """Verify one bounded batch of stored events and record findings."""

    @abstractmethod
    def archive_batch(
        self,
        *,
        meta: EnvelopeMeta,
        classification: DataClassification,
        cutoff: datetime,
        archived_at: datetime,
        batch_size: int,
    ) -> Envelope[LifecycleBatch]:
        """Archive one chunk of eligible records for a classification."""

    @abstractmethod
    def delete_archived_batch(
        self,
        *,
        meta: EnvelopeMeta,
        classification: DataClassification,
        cutoff: datetime,
        batch_size: int,
    ) -> Envelope[LifecycleBatch]:
        """Delete one chunk of archived records for a classification."""

    @abstractmethod
    def pseudonymize_principal(
        self,
        *,
        meta: EnvelopeMeta,
        principal_id: str,
        mapping: PseudonymMapping,
        actions: Sequence[str] | None = None,
    ) -> Envelope[PseudonymizationOutcome]:
        """Store ``mapping`` and rewrite the principal's records atomically."""

    @abstractmethod
    def erase_principal(
        self,
        *,
        meta: EnvelopeMeta,
        principal_id: str,
        preserve_actions: Sequence[str] = (),
        mapping: PseudonymMapping | None = None,
    ) -> Envelope[ErasureOutcome]:
        """Preserve allow-listed records under a pseudonym; delete the rest."""

    @abstractmethod
    def get_pseudonym_mapping(
        self, *, meta: EnvelopeMeta, pseudonym_id: str
    ) -> Envelope[PseudonymMapping]:
        """Read one pseudonym mapping."""

    @abstractmethod
    def principal_summary(
        self,
        *,
        meta: EnvelopeMeta,
        principal_id: str,
        compliance_actions: Sequence[str] = (),
    ) -> Envelope[PrincipalSummary]:
        """Return compliance status for one principal."""

    @abstractmethod
    def health(self, *, meta: EnvelopeMeta) -> Envelope[HealthStatus]:
        """Return Event Store and substrate readiness."""


def build_event_store_service(
    *,
    settings: LedgerSettings,
    kms: KeyManagementClient | None = None,
) -> EventStoreService:
    """Build default Event Store implementation from typed settings."""
    from services.state.event_store.implementation import DefaultEventStoreService

    return DefaultEventStoreService.from_settings(settings, kms=kms)
