"""Concrete Subject Rights Service implementation."""

from __future__ import annotations

from collections.abc import Callable, Iterable, Sequence
from datetime import UTC, datetime
from typing import Any

from packages.ledger_shared.config import LedgerSettings
from packages.ledger_shared.envelope import (
    Envelope,
    EnvelopeMeta,
    child_meta,
    failure,
    success,
    validate_meta,
)
from packages.ledger_shared.errors import (
    ErrorDetail,
    LedgerError,
    codes,
    dependency_error,
    validation_error,
)
from packages.ledger_shared.logging import (
    get_logger,
    log_context,
    mask_identifier,
    public_api_instrumented,
)
from resources.adapters.kms import (
    HttpKeyManagementClient,
    KeyManagementClient,
    resolve_kms_settings,
)
from resources.substrates.postgres import is_database_error, normalize_postgres_error
from services.action.subject_rights.component import SERVICE_COMPONENT_ID
from services.action.subject_rights.config import (
    SubjectRightsSettings,
    resolve_subject_rights_settings,
)
from services.action.subject_rights.domain import (
    DELETE_ACTION,
    EXPORT_ACTION,
    PSEUDONYMIZE_ACTION,
    SELF_LOG_RESOURCE_TYPE,
    SELF_LOG_RETENTION_POLICY,
    ComplianceStatus,
    DateRange,
    ErasureResult,
    ExportFormat,
    ExportMetadata,
    ExportRequest,
    ExportResult,
    HealthStatus,
    LookupOutcome,
    OriginalIdLookup,
    PseudonymizationResult,
    PseudonymizationStrategy,
)
from services.action.subject_rights.errors import (
    PseudonymizationFailure,
    UnsupportedExportFormat,
)
from services.action.subject_rights.export_formats import (
    export_document,
    export_record,
    render_export,
)
from services.action.subject_rights.pseudonyms import (
    generate_pseudonym_id,
    generate_request_id,
)
from services.action.subject_rights.service import SubjectRightsService
from services.action.subject_rights.validation import (
    ProblemKind,
    is_supported_format,
    validate_export_request,
)
from services.state.event_store.domain import (
    AuditEvent,
    DataClassification,
    EventDetails,
    EventDraft,
    EventQuery,
    EventStatus,
    PseudonymMapping,
)
from services.state.event_store.service import EventStoreService

_LOGGER = get_logger(__name__)
_SOURCE = str(SERVICE_COMPONENT_ID)
_PROBLEM_CODES = {
    ProblemKind.MISSING: codes.MISSING_REQUIRED_FIELD,
    ProblemKind.INVALID: codes.INVALID_ARGUMENT,
}


def _utc_now() -> datetime:
    return datetime.now(UTC)


class DefaultSubjectRightsService(SubjectRightsService):
    """Default DSR processor over the Event Store and a KMS collaborator."""

    def __init__(
        self,
        *,
        settings: SubjectRightsSettings,
        event_store: EventStoreService,
        kms: KeyManagementClient,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._settings = settings
        self._event_store = event_store
        self._kms = kms
        self._clock = clock

    @classmethod
    def from_settings(
        cls,
        settings: LedgerSettings,
        *,
        event_store: EventStoreService,
        kms: KeyManagementClient | None = None,
    ) -> "DefaultSubjectRightsService":
        """Build the processor from typed settings and an Event Store handle."""
        return cls(
            settings=resolve_subject_rights_settings(settings),
            event_store=event_store,
            kms=kms or HttpKeyManagementClient(settings=resolve_kms_settings(settings)),
        )

    @public_api_instrumented(
        logger=_LOGGER,
        component_id=str(SERVICE_COMPONENT_ID),
    )
    def export_user_data(
        self, *, meta: EnvelopeMeta, request: ExportRequest
    ) -> Envelope[ExportResult]:
        """Query, serialize, and self-log one principal's export."""
        errors = self._validate_meta(meta)
        if errors:
            return failure(meta=meta, errors=errors)
        if request.format and not is_supported_format(request.format):
            return failure(
                meta=meta,
                errors=[
                    UnsupportedExportFormat(export_format=request.format).to_error()
                ],
            )
        errors = _export_request_errors(request)
        if errors:
            return failure(meta=meta, errors=errors)

        export_format = ExportFormat(request.format)
        date_range = request.date_range
        queried = self._event_store.query_events(
            meta=child_meta(meta, source=_SOURCE),
            query=EventQuery(
                principal_id=request.principal_id,
                organization_id=request.organization_id,
                start=None if date_range is None else date_range.start,
                end=None if date_range is None else date_range.end,
            ),
        )
        if not queried.ok:
            return failure(meta=meta, errors=queried.errors)
        events = queried.value()

        exported_at = self._clock()
        request_id = generate_request_id(
            clock_ms=lambda: int(exported_at.timestamp() * 1000)
        )
        try:
            data = render_export(
                export_document(
                    [export_record(event) for event in events],
                    export_format=export_format,
                    exported_at=exported_at,
                    include_metadata=request.include_metadata,
                ),
                export_format=export_format,
            )
        except Exception as exc:  # noqa: BLE001
            return self._operation_failure(
                meta=meta, operation="export_user_data", exc=exc
            )

        with log_context({"request_id": request_id}):
            audit_logged = self._log_request(
                meta=meta,
                action=EXPORT_ACTION,
                requested_by=request.requested_by,
                target_id=request.principal_id,
                description=f"Exported {len(events)} audit records",
                details={
                    "requestId": request_id,
                    "requestType": request.request_type,
                    "format": export_format.value,
                    "recordCount": len(events),
                    "dataSize": len(data),
                },
            )
            _LOGGER.info(
                "Data export completed: principal_id=%s records=%d format=%s",
                mask_identifier(request.principal_id),
                len(events),
                export_format.value,
            )

        return success(
            meta=meta,
            payload=ExportResult(
                request_id=request_id,
                principal_id=request.principal_id,
                organization_id=request.organization_id,
                export_timestamp=exported_at,
                format=export_format,
                record_count=len(events),
                data_size=len(data),
                data=data,
                metadata=ExportMetadata(
                    date_range=_covered_range(events),
                    categories=_distinct(event.action for event in events),
                    retention_policies=_distinct(
                        event.retention_policy for event in events
                    ),
                    exported_by=request.requested_by,
                ),
                audit_logged=audit_logged,
            ),
        )

    @public_api_instrumented(
        logger=_LOGGER,
        component_id=str(SERVICE_COMPONENT_ID),
        masked_fields=("principal_id",),
    )
    def pseudonymize_user_data(
        self,
        *,
        meta: EnvelopeMeta,
        principal_id: str,
        requested_by: str,
        strategy: PseudonymizationStrategy | None = None,
    ) -> Envelope[PseudonymizationResult]:
        """Encrypt the mapping first, then rewrite every record atomically."""
        errors = self._validate_meta(meta) or _request_errors(
            principal_id=principal_id, requested_by=requested_by
        )
        if errors:
            return failure(meta=meta, errors=errors)

        chosen = strategy or self._settings.default_strategy
        try:
            mapping = self._mapping(principal_id=principal_id, strategy=chosen)
        except Exception as exc:  # noqa: BLE001
            return self._operation_failure(
                meta=meta, operation="pseudonymize_user_data", exc=exc
            )

        rewritten = self._event_store.pseudonymize_principal(
            meta=child_meta(meta, source=_SOURCE),
            principal_id=principal_id,
            mapping=mapping,
        )
        if not rewritten.ok:
            return failure(
                meta=meta,
                errors=[
                    _pseudonymization_error(
                        principal_id,
                        rewritten.errors,
                        operation="pseudonymize_user_data",
                    )
                ],
            )
        outcome = rewritten.value()

        audit_logged = self._log_request(
            meta=meta,
            action=PSEUDONYMIZE_ACTION,
            requested_by=requested_by,
            target_id=outcome.pseudonym_id,
            description=f"Pseudonymized {outcome.records_affected} audit records",
            details={
                "pseudonymId": outcome.pseudonym_id,
                "strategy": chosen.value,
                "recordsAffected": outcome.records_affected,
                "mappingCreated": outcome.mapping_created,
            },
        )
        return success(
            meta=meta,
            payload=PseudonymizationResult(
                pseudonym_id=outcome.pseudonym_id,
                strategy=chosen,
                records_affected=outcome.records_affected,
                mapping_created=outcome.mapping_created,
                audit_logged=audit_logged,
            ),
        )

    @public_api_instrumented(
        logger=_LOGGER,
        component_id=str(SERVICE_COMPONENT_ID),
        masked_fields=("principal_id",),
    )
    def delete_user_data_with_audit_trail(
        self,
        *,
        meta: EnvelopeMeta,
        principal_id: str,
        requested_by: str,
        preserve_compliance_audits: bool = True,
    ) -> Envelope[ErasureResult]:
        """Pseudonymize the compliance subset and delete the rest in one unit."""
        errors = self._validate_meta(meta) or _request_errors(
            principal_id=principal_id, requested_by=requested_by
        )
        if errors:
            return failure(meta=meta, errors=errors)

        compliance_actions = self._settings.compliance_actions
        mapping: PseudonymMapping | None = None
        if preserve_compliance_audits and compliance_actions:
            summarized = self._event_store.principal_summary(
                meta=child_meta(meta, source=_SOURCE),
                principal_id=principal_id,
                compliance_actions=compliance_actions,
            )
            if not summarized.ok:
                return failure(meta=meta, errors=summarized.errors)
            if summarized.value().compliance_critical_records > 0:
                try:
                    mapping = self._mapping(
                        principal_id=principal_id,
                        strategy=PseudonymizationStrategy.HASH,
                    )
                except Exception as exc:  # noqa: BLE001
                    return self._operation_failure(
                        meta=meta,
                        operation="delete_user_data_with_audit_trail",
                        exc=exc,
                    )

        erased = self._event_store.erase_principal(
            meta=child_meta(meta, source=_SOURCE),
            principal_id=principal_id,
            preserve_actions=compliance_actions if mapping is not None else (),
            mapping=mapping,
        )
        if not erased.ok:
            if mapping is None:
                return failure(meta=meta, errors=erased.errors)
            return failure(
                meta=meta,
                errors=[
                    _pseudonymization_error(
                        principal_id,
                        erased.errors,
                        operation="delete_user_data_with_audit_trail",
                    )
                ],
            )
        outcome = erased.value()

        audit_logged = self._log_request(
            meta=meta,
            action=DELETE_ACTION,
            requested_by=requested_by,
            target_id=outcome.pseudonym_id or mask_identifier(principal_id),
            description=(
                f"Deleted {outcome.records_deleted} audit records, "
                f"preserved {outcome.records_preserved}"
            ),
            details={
                "recordsDeleted": outcome.records_deleted,
                "complianceRecordsPreserved": outcome.records_preserved,
                "preserveComplianceAudits": preserve_compliance_audits,
                "pseudonymId": outcome.pseudonym_id,
            },
        )
        return success(
            meta=meta,
            payload=ErasureResult(
                records_deleted=outcome.records_deleted,
                compliance_records_preserved=outcome.records_preserved,
                pseudonym_id=outcome.pseudonym_id,
                audit_logged=audit_logged,
            ),
        )

    @public_api_instrumented(
        logger=_LOGGER,
        component_id=str(SERVICE_COMPONENT_ID),
        id_fields=("pseudonym_id",),
    )
    def get_original_id(
        self, *, meta: EnvelopeMeta, pseudonym_id: str
    ) -> Envelope[OriginalIdLookup]:
        """Resolve a pseudonym; lookup and decryption failures become outcomes."""
        errors = self._validate_meta(meta)
        if errors:
            return failure(meta=meta, errors=errors)

        found = self._event_store.get_pseudonym_mapping(
            meta=child_meta(meta, source=_SOURCE), pseudonym_id=pseudonym_id
        )
        if not found.ok:
            not_found = any(
                error.code == codes.RESOURCE_NOT_FOUND for error in found.errors
            )
            if not not_found:
                _LOGGER.warning(
                    "Pseudonym lookup failed: pseudonym_id=%s errors=%s",
                    pseudonym_id,
                    ",".join(error.code for error in found.errors),
                )
            return success(
                meta=meta,
                payload=OriginalIdLookup(
                    outcome=(
                        LookupOutcome.NOT_FOUND
                        if not_found
                        else LookupOutcome.OPERATION_FAILED
                    )
                ),
            )

        try:
            original_id = self._kms.decrypt(found.value().original_id)
        except Exception as exc:  # noqa: BLE001
            _LOGGER.warning(
                "Pseudonym decryption failed: pseudonym_id=%s exception_type=%s",
                pseudonym_id,
                type(exc).__name__,
            )
            return success(
                meta=meta,
                payload=OriginalIdLookup(outcome=LookupOutcome.OPERATION_FAILED),
            )
        return success(
            meta=meta,
            payload=OriginalIdLookup(
                outcome=LookupOutcome.FOUND, original_id=original_id
            ),
        )

    @public_api_instrumented(
        logger=_LOGGER,
        component_id=str(SERVICE_COMPONENT_ID),
        masked_fields=("principal_id",),
    )
    def get_compliance_status(
        self, *, meta: EnvelopeMeta, principal_id: str
    ) -> Envelope[ComplianceStatus]:
        """Summarize stored records and the compliance-critical subset."""
        errors = self._validate_meta(meta)
        if errors:
            return failure(meta=meta, errors=errors)

        summarized = self._event_store.principal_summary(
            meta=child_meta(meta, source=_SOURCE),
            principal_id=principal_id,
            compliance_actions=self._settings.compliance_actions,
        )
        if not summarized.ok:
            return failure(meta=meta, errors=summarized.errors)
        summary = summarized.value()
        return success(
            meta=meta,
            payload=ComplianceStatus(
                has_data=summary.record_count > 0,
                record_count=summary.record_count,
                data_classifications=summary.data_classifications,
                retention_policies=summary.retention_policies,
                oldest_record=summary.oldest_record,
                newest_record=summary.newest_record,
                compliance_critical_records=summary.compliance_critical_records,
            ),
        )

    @public_api_instrumented(
        logger=_LOGGER,
        component_id=str(SERVICE_COMPONENT_ID),
    )
    def health(self, *, meta: EnvelopeMeta) -> Envelope[HealthStatus]:
        """Return readiness based on Event Store health."""
        errors = self._validate_meta(meta)
        if errors:
            return failure(meta=meta, errors=errors)

        probed = self._event_store.health(meta=child_meta(meta, source=_SOURCE))
        ready = probed.ok and probed.value().substrate_ready
        return success(
            meta=meta,
            payload=HealthStatus(
                service_ready=True,
                event_store_ready=ready,
                detail="ok" if ready else "event store not ready",
            ),
        )

    def _mapping(
        self, *, principal_id: str, strategy: PseudonymizationStrategy
    ) -> PseudonymMapping:
        """Build a mapping whose original id is KMS ciphertext."""
        pseudonym_id = generate_pseudonym_id(
            principal_id, strategy=strategy, salt=self._settings.pseudonym_salt
        )
        return PseudonymMapping(
            pseudonym_id=pseudonym_id,
            original_id=self._kms.encrypt(principal_id),
            strategy=strategy.value,
            timestamp=self._clock(),
        )

    def _log_request(
        self,
        *,
        meta: EnvelopeMeta,
        action: str,
        requested_by: str,
        target_id: str,
        description: str,
        details: dict[str, Any],
    ) -> bool:
        """Append the SYSTEM self-log for one completed request."""
        draft = EventDraft(
            principal_id=requested_by,
            action=action,
            status=EventStatus.SUCCESS,
            target_resource_type=SELF_LOG_RESOURCE_TYPE,
            target_resource_id=target_id,
            outcome_description=description,
            data_classification=DataClassification.SYSTEM,
            retention_policy=SELF_LOG_RETENTION_POLICY,
            details=EventDetails.model_validate(details),
        )
        try:
            appended = self._event_store.append_event(
                meta=child_meta(meta, source=_SOURCE), draft=draft
            )
        except Exception as exc:  # noqa: BLE001
            _LOGGER.error(
                "Subject rights self-log failed: action=%s exception_type=%s",
                action,
                type(exc).__name__,
                exc_info=exc,
            )
            return False
        if not appended.ok:
            _LOGGER.error(
                "Subject rights self-log failed: action=%s errors=%s",
                action,
                ",".join(error.code for error in appended.errors),
            )
            return False
        return True

    def _validate_meta(self, meta: EnvelopeMeta) -> list[ErrorDetail]:
        """Validate envelope metadata with stable, typed error mapping."""
        try:
            validate_meta(meta)
        except ValueError as exc:
            return [validation_error(str(exc), code=codes.INVALID_ARGUMENT)]
        return []

    def _operation_failure(
        self,
        *,
        meta: EnvelopeMeta,
        operation: str,
        exc: Exception,
    ) -> Envelope[Any]:
        """Map one raised exception into structured envelope errors."""
        if isinstance(exc, LedgerError):
            _LOGGER.warning("%s failed: code=%s", operation, exc.code)
            return failure(meta=meta, errors=[exc.to_error()])
        if is_database_error(exc):
            _LOGGER.warning(
                "%s failed due to database error: exception_type=%s",
                operation,
                type(exc).__name__,
                exc_info=exc,
            )
            return failure(meta=meta, errors=[normalize_postgres_error(exc)])
        if isinstance(exc, ValueError):
            return failure(
                meta=meta,
                errors=[validation_error(str(exc), code=codes.INVALID_ARGUMENT)],
            )
        _LOGGER.warning(
            "%s failed due to dependency error: exception_type=%s",
            operation,
            type(exc).__name__,
            exc_info=exc,
        )
        return failure(
            meta=meta,
            errors=[
                dependency_error(
                    f"{operation} failed",
                    code=codes.DEPENDENCY_FAILURE,
                    metadata={"exception_type": type(exc).__name__},
                )
            ],
        )


def _export_request_errors(request: ExportRequest) -> list[ErrorDetail]:
    return [
        validation_error(
            problem.message,
            code=_PROBLEM_CODES[problem.kind],
            metadata={"field": problem.field},
        )
        for problem in validate_export_request(request)
    ]


def _request_errors(*, principal_id: str, requested_by: str) -> list[ErrorDetail]:
    errors: list[ErrorDetail] = []
    if principal_id.strip() == "":
        errors.append(
            validation_error(
                "Principal ID is required",
                code=codes.MISSING_REQUIRED_FIELD,
                metadata={"field": "principal_id"},
            )
        )
    if requested_by.strip() == "":
        errors.append(
            validation_error(
                "Requested by field is required",
                code=codes.MISSING_REQUIRED_FIELD,
                metadata={"field": "requested_by"},
            )
        )
    return errors


def _pseudonymization_error(
    principal_id: str, errors: Sequence[ErrorDetail], *, operation: str
) -> ErrorDetail:
    cause = errors[0].code if errors else ""
    return PseudonymizationFailure(
        principal_id=principal_id, operation=operation, cause_code=cause
    ).to_error()


def _covered_range(events: Sequence[AuditEvent]) -> DateRange:
    """Span the earliest and latest exported timestamps; empty without records."""
    if not events:
        return DateRange()
    timestamps = [event.timestamp for event in events]
    return DateRange(start=min(timestamps), end=max(timestamps))


def _distinct(values: Iterable[str]) -> list[str]:
    seen: dict[str, None] = {}
    for value in values:
        seen.setdefault(value, None)
    return list(seen)
