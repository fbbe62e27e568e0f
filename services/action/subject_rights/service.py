"""Authoritative in-process Python API for Subject Rights Service."""

from __future__ import annotations

from abc import ABC, abstractmethod

from packages.ledger_shared.config import LedgerSettings
from packages.ledger_shared.envelope import Envelope, EnvelopeMeta
from resources.adapters.kms import KeyManagementClient
from services.action.subject_rights.domain import (
    ComplianceStatus,
    ErasureResult,
    ExportRequest,
    ExportResult,
    HealthStatus,
    OriginalIdLookup,
    PseudonymizationResult,
    PseudonymizationStrategy,
)
from services.state.event_store.service import EventStoreService


class SubjectRightsService(ABC):
    """Public API for export, pseudonymization, and erasure requests.

    Every completed request appends a SYSTEM-classified event describing
    itself; a failed self-log is reported via ``audit_logged`` and never
    undoes the request.
    """

    @abstractmethod
    def export_user_data(
        self, *, meta: EnvelopeMeta, request: ExportRequest
    ) -> Envelope[ExportResult]:
        """Serialize one principal's records in the requested format."""

    @abstractmethod
    def pseudonymize_user_data(
        self,
        *,
        meta: EnvelopeMeta,
        principal_id: str,
        requested_by: str,
        strategy: PseudonymizationStrategy | None = None,
    ) -> Envelope[PseudonymizationResult]:
        """Replace the principal id with a pseudonym across all records."""

    @abstractmethod
    def delete_user_data_with_audit_trail(
        self,
        *,
        meta: EnvelopeMeta,
        principal_id: str,
        requested_by: str,
        preserve_compliance_audits: bool = True,
    ) -> Envelope[ErasureResult]:
        """Erase the principal's records, optionally keeping compliance audits."""

    @abstractmethod
    def get_original_id(
        self, *, meta: EnvelopeMeta, pseudonym_id: str
    ) -> Envelope[OriginalIdLookup]:
        """Resolve a pseudonym to its original identifier."""

    @abstractmethod
    def get_compliance_status(
        self, *, meta: EnvelopeMeta, principal_id: str
    ) -> Envelope[ComplianceStatus]:
        """Summarize what the store holds about one principal."""

    @abstractmethod
    def health(self, *, meta: EnvelopeMeta) -> Envelope[HealthStatus]:
        """Return Subject Rights Service and Event Store readiness."""


def build_subject_rights_service(
    *,
    settings: LedgerSettings,
    event_store: EventStoreService,
    kms: KeyManagementClient | None = None,
) -> SubjectRightsService:
    """Build default Subject Rights implementation from typed settings."""
    from services.action.subject_rights.implementation import (
        DefaultSubjectRightsService,
    )

    return DefaultSubjectRightsService.from_settings(
        settings, event_store=event_store, kms=kms
    )
