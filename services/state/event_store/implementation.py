"""Concrete Event Store Service implementation."""

from __future__ import annotations

from collections import Counter
from collections.abc import Callable, Sequence
from datetime import UTC, datetime
from typing import Any

from packages.ledger_shared.config import LedgerSettings
from packages.ledger_shared.envelope import (
    Envelope,
    EnvelopeMeta,
    failure,
    success,
    validate_meta,
)
from packages.ledger_shared.errors import (
    ErrorDetail,
    LedgerError,
    codes,
    dependency_error,
    not_found_error,
    validation_error,
)
from packages.ledger_shared.ids import generate_ulid_str
from packages.ledger_shared.logging import get_logger, public_api_instrumented
from resources.adapters.kms import (
    HttpKeyManagementClient,
    KeyManagementClient,
    resolve_kms_settings,
)
from resources.substrates.postgres import is_database_error, normalize_postgres_error
from services.state.event_store.component import SERVICE_COMPONENT_ID
from services.state.event_store.config import (
    EventStoreSettings,
    resolve_event_store_settings,
)
from services.state.event_store.data import (
    EventStorePostgresRuntime,
    PostgresAuditEventRepository,
)
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
from services.state.event_store.errors import IntegrityVerificationFailure
from services.state.event_store.interfaces import AuditEventRepository
from services.state.event_store.sealer import IntegritySealer
from services.state.event_store.service import EventStoreService

_LOGGER = get_logger(__name__)

_HEALTH_PROBE_EVENT_ID = "0" * 26


def _utc_now() -> datetime:
    return datetime.now(UTC)


class DefaultEventStoreService(EventStoreService):
    """Default Event Store implementation over a SQL repository."""

    def __init__(
        self,
        *,
        settings: EventStoreSettings,
        repository: AuditEventRepository,
        sealer: IntegritySealer,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._settings = settings
        self._repository = repository
        self._sealer = sealer
        self._clock = clock

    @classmethod
    def from_settings(
        cls,
        settings: LedgerSettings,
        *,
        kms: KeyManagementClient | None = None,
    ) -> "DefaultEventStoreService":
        """Build Event Store from typed settings and owned resources.

        A KMS client is created when signing is enabled or a signing key is
        configured, so previously signed records stay verifiable.
        """
        service_settings = resolve_event_store_settings(settings)
        kms_settings = resolve_kms_settings(settings)
        if kms is None and (
            service_settings.signing_enabled or kms_settings.signing_key_id
        ):
            kms = HttpKeyManagementClient(settings=kms_settings)

        runtime = EventStorePostgresRuntime.from_settings(settings)
        return cls(
            settings=service_settings,
            repository=PostgresAuditEventRepository(runtime.schema_sessions),
            sealer=IntegritySealer(
                hash_algorithm=service_settings.hash_algorithm,
                kms=kms,
                signing_enabled=service_settings.signing_enabled,
                signing_algorithm=kms_settings.signing_algorithm,
                signing_secret=service_settings.signing_secret,
            ),
        )

    @public_api_instrumented(
        logger=_LOGGER,
        component_id=str(SERVICE_COMPONENT_ID),
    )
    def append_event(
        self, *, meta: EnvelopeMeta, draft: EventDraft
    ) -> Envelope[AuditEvent]:
        """Seal one event and append it."""
        errors = self._validate_meta(meta)
        if errors:
            return failure(meta=meta, errors=errors)

        timestamp = _utc(draft.timestamp) if draft.timestamp else self._clock()
        unsealed = AuditEvent(
            event_id=generate_ulid_str(),
            timestamp=timestamp,
            principal_id=draft.principal_id,
            organization_id=draft.organization_id,
            action=draft.action,
            status=draft.status,
            target_resource_type=draft.target_resource_type,
            target_resource_id=draft.target_resource_id,
            outcome_description=draft.outcome_description,
            data_classification=draft.data_classification,
            retention_policy=draft.retention_policy,
            details=draft.details,
            hash="",
            hash_algorithm=self._sealer.hash_algorithm,
            event_version=self._settings.event_version,
            correlation_id=draft.correlation_id,
        )
        try:
            sealed = self._sealer.seal(unsealed)
            stored = self._repository.insert_event(event=sealed)
        except Exception as exc:  # noqa: BLE001
            return self._operation_failure(meta=meta, operation="append_event", exc=exc)
        return success(meta=meta, payload=stored)

    @public_api_instrumented(
        logger=_LOGGER,
        component_id=str(SERVICE_COMPONENT_ID),
        id_fields=("event_id",),
    )
    def get_event(self, *, meta: EnvelopeMeta, event_id: str) -> Envelope[AuditEvent]:
        """Read one stored event by id."""
        errors = self._validate_meta(meta)
        if errors:
            return failure(meta=meta, errors=errors)

        try:
            event = self._repository.get_event(event_id=event_id)
        except Exception as exc:  # noqa: BLE001
            return self._operation_failure(meta=meta, operation="get_event", exc=exc)
        if event is None:
            return self._not_found(meta=meta, what="event", key={"event_id": event_id})
        return success(meta=meta, payload=event)

    @public_api_instrumented(
        logger=_LOGGER,
        component_id=str(SERVICE_COMPONENT_ID),
    )
    def query_events(
        self, *, meta: EnvelopeMeta, query: EventQuery
    ) -> Envelope[list[AuditEvent]]:
        """Read one principal's events in timestamp order."""
        errors = self._validate_meta(meta)
        if errors:
            return failure(meta=meta, errors=errors)

        try:
            events = self._repository.query_events(query=query)
        except Exception as exc:  # noqa: BLE001
            return self._operation_failure(meta=meta, operation="query_events", exc=exc)
        return success(meta=meta, payload=events)

    @public_api_instrumented(
        logger=_LOGGER,
        component_id=str(SERVICE_COMPONENT_ID),
        id_fields=("event_id",),
    )
    def verify_event(
        self, *, meta: EnvelopeMeta, event_id: str
    ) -> Envelope[IntegrityVerification]:
        """Re-verify one event; invalid results carry the finding as payload."""
        errors = self._validate_meta(meta)
        if errors:
            return failure(meta=meta, errors=errors)

        try:
            event = self._repository.get_event(event_id=event_id)
        except Exception as exc:  # noqa: BLE001
            return self._operation_failure(meta=meta, operation="verify_event", exc=exc)
        if event is None:
            return self._not_found(meta=meta, what="event", key={"event_id": event_id})

        verification = self._sealer.verify(event)
        if verification.valid:
            return success(meta=meta, payload=verification)

        _LOGGER.warning(
            "Integrity verification failed: event_id=%s reason=%s pseudonymized=%s",
            event_id,
            verification.reason.value if verification.reason else "unknown",
            verification.pseudonymized,
        )
        return failure(
            meta=meta,
            errors=[_integrity_error(verification)],
            payload=verification,
        )

    @public_api_instrumented(
        logger=_LOGGER,
        component_id=str(SERVICE_COMPONENT_ID),
        id_fields=("after_event_id",),
    )
    def verify_events(
        self,
        *,
        meta: EnvelopeMeta,
        limit: int | None = None,
        after_event_id: str | None = None,
    ) -> Envelope[IntegrityReport]:
        """Verify one bounded batch and persist every result."""
        errors = self._validate_meta(meta)
        if errors:
            return failure(meta=meta, errors=errors)
        batch_limit = self._settings.verification_batch_size if limit is None else limit
        if batch_limit <= 0:
            return failure(
                meta=meta,
                errors=[
                    validation_error("limit must be > 0", code=codes.INVALID_ARGUMENT)
                ],
            )

        try:
            events = self._repository.list_events_after(
                after_event_id=after_event_id, limit=batch_limit
            )
            results = [self._sealer.verify(event) for event in events]
            self._repository.record_integrity_results(
                results=results,
                verified_by=self._settings.verifier_id,
                verified_at=self._clock(),
            )
        except Exception as exc:  # noqa: BLE001
            return self._operation_failure(meta=meta, operation="verify_events", exc=exc)

        findings = [result for result in results if not result.valid]
        by_reason = Counter(
            result.reason.value for result in findings if result.reason is not None
        )
        report = IntegrityReport(
            checked=len(results),
            valid=len(results) - len(findings),
            findings=findings,
            by_reason=dict(by_reason),
            pseudonymized_findings=sum(1 for result in findings if result.pseudonymized),
            next_after_event_id=(
                events[-1].event_id if len(events) == batch_limit else None
            ),
        )
        if findings:
            _LOGGER.warning(
                "Integrity sweep recorded %d finding(s) of %d checked: %s",
                len(findings),
                report.checked,
                ", ".join(f"{key}={value}" for key, value in sorted(by_reason.items())),
            )
        return success(meta=meta, payload=report)

    @public_api_instrumented(
        logger=_LOGGER,
        component_id=str(SERVICE_COMPONENT_ID),
    )
    def archive_batch(
        self,
        *,
        meta: EnvelopeMeta,
        classification: DataClassification,
        cutoff: datetime,
        archived_at: datetime,
        batch_size: int,
    ) -> Envelope[LifecycleBatch]:
        """Archive one chunk of eligible records."""
        errors = self._validate_meta(meta) or _batch_size_errors(batch_size)
        if errors:
            return failure(meta=meta, errors=errors)

        try:
            batch = self._repository.archive_batch(
                classification=classification,
                cutoff=cutoff,
                archived_at=archived_at,
                batch_size=batch_size,
            )
        except Exception as exc:  # noqa: BLE001
            return self._operation_failure(meta=meta, operation="archive_batch", exc=exc)
        return success(meta=meta, payload=batch)

    @public_api_instrumented(
        logger=_LOGGER,
        component_id=str(SERVICE_COMPONENT_ID),
    )
    def delete_archived_batch(
        self,
        *,
        meta: EnvelopeMeta,
        classification: DataClassification,
        cutoff: datetime,
        batch_size: int,
    ) -> Envelope[LifecycleBatch]:
        """Delete one chunk of archived records."""
        errors = self._validate_meta(meta) or _batch_size_errors(batch_size)
        if errors:
            return failure(meta=meta, errors=errors)

        try:
            batch = self._repository.delete_archived_batch(
                classification=classification,
                cutoff=cutoff,
                batch_size=batch_size,
            )
        except Exception as exc:  # noqa: BLE001
            return self._operation_failure(
                meta=meta, operation="delete_archived_batch", exc=exc
            )
        return success(meta=meta, payload=batch)

    @public_api_instrumented(
        logger=_LOGGER,
        component_id=str(SERVICE_COMPONENT_ID),
        masked_fields=("principal_id",),
    )
    def pseudonymize_principal(
        self,
        *,
        meta: EnvelopeMeta,
        principal_id: str,
        mapping: PseudonymMapping,
        actions: Sequence[str] | None = None,
    ) -> Envelope[PseudonymizationOutcome]:
        """Store mapping and rewrite the principal's records atomically."""
        errors = self._validate_meta(meta) or _principal_errors(principal_id)
        if errors:
            return failure(meta=meta, errors=errors)

        try:
            outcome = self._repository.pseudonymize_principal(
                principal_id=principal_id,
                mapping=mapping,
                actions=actions,
            )
        except Exception as exc:  # noqa: BLE001
            return self._operation_failure(
                meta=meta, operation="pseudonymize_principal", exc=exc
            )
        return success(meta=meta, payload=outcome)

    @public_api_instrumented(
        logger=_LOGGER,
        component_id=str(SERVICE_COMPONENT_ID),
        masked_fields=("principal_id",),
    )
    def erase_principal(
        self,
        *,
        meta: EnvelopeMeta,
        principal_id: str,
        preserve_actions: Sequence[str] = (),
        mapping: PseudonymMapping | None = None,
    ) -> Envelope[ErasureOutcome]:
        """Preserve allow-listed records and delete the rest atomically."""
        errors = self._validate_meta(meta) or _principal_errors(principal_id)
        if errors:
            return failure(meta=meta, errors=errors)
        if len(preserve_actions) > 0 and mapping is None:
            return failure(
                meta=meta,
                errors=[
                    validation_error(
                        "mapping is required when preserving records",
                        code=codes.MISSING_REQUIRED_FIELD,
                    )
                ],
            )

        try:
            outcome = self._repository.erase_principal(
                principal_id=principal_id,
                preserve_actions=preserve_actions,
                mapping=mapping,
            )
        except Exception as exc:  # noqa: BLE001
            return self._operation_failure(meta=meta, operation="erase_principal", exc=exc)
        return success(meta=meta, payload=outcome)

    @public_api_instrumented(
        logger=_LOGGER,
        component_id=str(SERVICE_COMPONENT_ID),
        id_fields=("pseudonym_id",),
    )
    def get_pseudonym_mapping(
        self, *, meta: EnvelopeMeta, pseudonym_id: str
    ) -> Envelope[PseudonymMapping]:
        """Read one pseudonym mapping by pseudonym id."""
        errors = self._validate_meta(meta)
        if errors:
            return failure(meta=meta, errors=errors)

        try:
            mapping = self._repository.get_pseudonym_mapping(pseudonym_id=pseudonym_id)
        except Exception as exc:  # noqa: BLE001
            return self._operation_failure(
                meta=meta, operation="get_pseudonym_mapping", exc=exc
            )
        if mapping is None:
            return self._not_found(
                meta=meta, what="pseudonym mapping", key={"pseudonym_id": pseudonym_id}
            )
        return success(meta=meta, payload=mapping)

    @public_api_instrumented(
        logger=_LOGGER,
        component_id=str(SERVICE_COMPONENT_ID),
        masked_fields=("principal_id",),
    )
    def principal_summary(
        self,
        *,
        meta: EnvelopeMeta,
        principal_id: str,
        compliance_actions: Sequence[str] = (),
    ) -> Envelope[PrincipalSummary]:
        """Aggregate one principal's stored records."""
        errors = self._validate_meta(meta) or _principal_errors(principal_id)
        if errors:
            return failure(meta=meta, errors=errors)

        try:
            summary = self._repository.principal_summary(
                principal_id=principal_id,
                compliance_actions=compliance_actions,
            )
        except Exception as exc:  # noqa: BLE001
            return self._operation_failure(
                meta=meta, operation="principal_summary", exc=exc
            )
        return success(meta=meta, payload=summary)

    @public_api_instrumented(
        logger=_LOGGER,
        component_id=str(SERVICE_COMPONENT_ID),
    )
    def health(self, *, meta: EnvelopeMeta) -> Envelope[HealthStatus]:
        """Return readiness based on repository availability."""
        errors = self._validate_meta(meta)
        if errors:
            return failure(meta=meta, errors=errors)

        try:
            self._repository.get_event(event_id=_HEALTH_PROBE_EVENT_ID)
        except Exception as exc:  # noqa: BLE001
            return success(
                meta=meta,
                payload=HealthStatus(
                    service_ready=True,
                    substrate_ready=False,
                    detail=f"postgres probe failed: {type(exc).__name__}",
                ),
            )
        return success(
            meta=meta,
            payload=HealthStatus(service_ready=True, substrate_ready=True, detail="ok"),
        )

    def _validate_meta(self, meta: EnvelopeMeta) -> list[ErrorDetail]:
        """Validate envelope metadata with stable, typed error mapping."""
        try:
            validate_meta(meta)
        except ValueError as exc:
            return [validation_error(str(exc), code=codes.INVALID_ARGUMENT)]
        return []

    def _not_found(
        self, *, meta: EnvelopeMeta, what: str, key: dict[str, str]
    ) -> Envelope[Any]:
        """Return canonical not-found envelope for id lookups."""
        return failure(
            meta=meta,
            errors=[
                not_found_error(
                    f"{what} not found",
                    code=codes.RESOURCE_NOT_FOUND,
                    metadata=key,
                )
            ],
        )

    def _operation_failure(
        self,
        *,
        meta: EnvelopeMeta,
        operation: str,
        exc: Exception,
    ) -> Envelope[Any]:
        """Map one raised exception into structured envelope errors."""
        if isinstance(exc, LedgerError):
            _LOGGER.warning("%s failed: code=%s %s", operation, exc.code, exc)
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


def _integrity_error(verification: IntegrityVerification) -> ErrorDetail:
    """Build the integrity finding error for one failed verification."""
    reason = verification.reason.value if verification.reason else "unknown"
    return IntegrityVerificationFailure(
        event_id=verification.event_id,
        reason=reason,
        detail=verification.detail,
    ).to_error()


def _batch_size_errors(batch_size: int) -> list[ErrorDetail]:
    if batch_size <= 0:
        return [validation_error("batch_size must be > 0", code=codes.INVALID_ARGUMENT)]
    return []


def _principal_errors(principal_id: str) -> list[ErrorDetail]:
    if principal_id.strip() == "":
        return [
            validation_error(
                "principal_id is required", code=codes.MISSING_REQUIRED_FIELD
            )
        ]
    return []


def _utc(value: datetime) -> datetime:
    """Normalize naive/aware datetimes to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)
