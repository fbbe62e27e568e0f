"""Concrete Retention Policy Engine implementation."""

from __future__ import annotations

import contextvars
from collections import Counter
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from threading import Event
from typing import Any

from pydantic import ValidationError

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
    public_api_instrumented,
)
from resources.substrates.postgres import is_database_error, normalize_postgres_error
from resources.substrates.postgres.config import resolve_postgres_settings
from services.action.retention_engine.cache import PolicyCache
from services.action.retention_engine.component import SERVICE_COMPONENT_ID
from services.action.retention_engine.config import (
    RetentionEngineSettings,
    resolve_retention_engine_settings,
)
from services.action.retention_engine.data import (
    PostgresRetentionPolicyRepository,
    RetentionEnginePostgresRuntime,
)
from services.action.retention_engine.domain import (
    SELF_LOG_ACTION,
    SELF_LOG_RESOURCE_TYPE,
    SELF_LOG_RETENTION_POLICY,
    ArchiveSummary,
    DateRange,
    HealthStatus,
    PolicyApplicationResult,
    PolicyRunStatus,
    RetentionPolicy,
    RetentionPolicyDraft,
    RetentionRunResult,
)
from services.action.retention_engine.errors import RetentionPolicyFailure
from services.action.retention_engine.interfaces import RetentionPolicyRepository
from services.action.retention_engine.policies import recommended_retention
from services.action.retention_engine.service import RetentionEngineService
from services.state.event_store.domain import (
    DataClassification,
    EventDetails,
    EventDraft,
    EventStatus,
    LifecycleBatch,
)
from services.state.event_store.service import EventStoreService

_LOGGER = get_logger(__name__)
_SOURCE = str(SERVICE_COMPONENT_ID)

_SELF_LOG_STATUS = {
    PolicyRunStatus.COMPLETED: EventStatus.SUCCESS,
    PolicyRunStatus.CANCELLED: EventStatus.ATTEMPT,
    PolicyRunStatus.FAILED: EventStatus.FAILURE,
}


def _utc_now() -> datetime:
    return datetime.now(UTC)


@dataclass
class _SweepTally:
    """Running totals for one policy application across chunks."""

    archived: int = 0
    deleted: int = 0
    by_classification: Counter[str] = field(default_factory=Counter)
    by_action: Counter[str] = field(default_factory=Counter)
    earliest: datetime | None = None
    latest: datetime | None = None

    def add_archived(self, batch: LifecycleBatch) -> None:
        self.archived += batch.affected
        self.by_classification.update(batch.by_classification)
        self.by_action.update(batch.by_action)
        if batch.earliest is not None and (
            self.earliest is None or batch.earliest < self.earliest
        ):
            self.earliest = batch.earliest
        if batch.latest is not None and (
            self.latest is None or batch.latest > self.latest
        ):
            self.latest = batch.latest

    def summary(self) -> ArchiveSummary:
        return ArchiveSummary(
            by_classification=dict(self.by_classification),
            by_action=dict(self.by_action),
            date_range=DateRange(start=self.earliest, end=self.latest),
        )


class _Cancelled(Exception):
    """Raised between chunks when the caller requested cancellation."""


class DefaultRetentionEngineService(RetentionEngineService):
    """Default engine driving Event Store bulk lifecycle statements."""

    def __init__(
        self,
        *,
        settings: RetentionEngineSettings,
        repository: RetentionPolicyRepository,
        event_store: EventStoreService,
        pool_size: int,
        clock: Callable[[], datetime] = _utc_now,
        cache: PolicyCache | None = None,
    ) -> None:
        self._settings = settings
        self._repository = repository
        self._event_store = event_store
        self._workers = max(1, min(settings.max_concurrency, pool_size))
        self._clock = clock
        self._cache = cache or PolicyCache(
            ttl_seconds=settings.policy_cache_ttl_seconds
        )

    @classmethod
    def from_settings(
        cls,
        settings: LedgerSettings,
        *,
        event_store: EventStoreService,
    ) -> "DefaultRetentionEngineService":
        """Build the engine from typed settings and an Event Store handle."""
        runtime = RetentionEnginePostgresRuntime.from_settings(settings)
        return cls(
            settings=resolve_retention_engine_settings(settings),
            repository=PostgresRetentionPolicyRepository(runtime.schema_sessions),
            event_store=event_store,
            pool_size=resolve_postgres_settings(settings).pool_size,
        )

    @property
    def workers(self) -> int:
        """Upper bound on policies applied concurrently."""
        return self._workers

    @public_api_instrumented(
        logger=_LOGGER,
        component_id=str(SERVICE_COMPONENT_ID),
    )
    def apply_retention_policies(
        self, *, meta: EnvelopeMeta, cancel: Event | None = None
    ) -> Envelope[RetentionRunResult]:
        """Apply every active policy; one failing policy never aborts siblings."""
        errors = self._validate_meta(meta)
        if errors:
            return failure(meta=meta, errors=errors)

        try:
            policies = self._cache.get(
                lambda: self._repository.list_policies(active_only=True)
            )
        except Exception as exc:  # noqa: BLE001
            return self._operation_failure(
                meta=meta, operation="list_active_policies", exc=exc
            )

        stop = cancel or Event()
        if self._settings.parallel and self._workers > 1 and len(policies) > 1:
            results = self._apply_parallel(meta=meta, policies=policies, cancel=stop)
        else:
            results = [
                self._apply(meta=meta, policy=policy, cancel=stop)
                for policy in policies
            ]

        run = RetentionRunResult(results=results)
        _LOGGER.info(
            "Retention sweep finished: policies=%d archived=%d deleted=%d failed=%d",
            len(results),
            run.records_archived,
            run.records_deleted,
            len(run.failed),
        )
        return success(meta=meta, payload=run)

    @public_api_instrumented(
        logger=_LOGGER,
        component_id=str(SERVICE_COMPONENT_ID),
    )
    def apply_retention_policy(
        self,
        *,
        meta: EnvelopeMeta,
        policy: RetentionPolicy,
        cancel: Event | None = None,
    ) -> Envelope[PolicyApplicationResult]:
        """Apply one policy; failures carry the partial result as payload."""
        errors = self._validate_meta(meta)
        if errors:
            return failure(meta=meta, errors=errors)

        result = self._apply(meta=meta, policy=policy, cancel=cancel or Event())
        if result.error is not None:
            return failure(meta=meta, errors=[result.error], payload=result)
        return success(meta=meta, payload=result)

    @public_api_instrumented(
        logger=_LOGGER,
        component_id=str(SERVICE_COMPONENT_ID),
    )
    def create_retention_policy(
        self, *, meta: EnvelopeMeta, draft: RetentionPolicyDraft
    ) -> Envelope[RetentionPolicy]:
        """Persist one policy, filling unset thresholds from recommendations."""
        errors = self._validate_meta(meta)
        if errors:
            return failure(meta=meta, errors=errors)

        recommended = recommended_retention(draft.data_classification)
        try:
            policy = RetentionPolicy(
                policy_name=draft.policy_name or recommended.policy_name,
                data_classification=draft.data_classification,
                retention_days=(
                    recommended.retention_days
                    if draft.retention_days is None
                    else draft.retention_days
                ),
                archive_after_days=(
                    recommended.archive_after_days
                    if draft.archive_after_days is None
                    else draft.archive_after_days
                ),
                delete_after_days=(
                    recommended.delete_after_days
                    if draft.delete_after_days is None
                    else draft.delete_after_days
                ),
                description=draft.description,
                created_by=draft.created_by,
            )
        except ValidationError as exc:
            return failure(
                meta=meta,
                errors=[
                    validation_error(
                        _first_validation_message(exc), code=codes.INVALID_ARGUMENT
                    )
                ],
            )

        try:
            stored = self._repository.create_policy(policy=policy)
        except Exception as exc:  # noqa: BLE001
            return self._operation_failure(
                meta=meta, operation="create_retention_policy", exc=exc
            )
        self._cache.invalidate()
        _LOGGER.info(
            "Retention policy created: policy_name=%s classification=%s "
            "archive_after_days=%s delete_after_days=%s",
            stored.policy_name,
            stored.data_classification.value,
            stored.archive_after_days,
            stored.delete_after_days,
        )
        return success(meta=meta, payload=stored)

    @public_api_instrumented(
        logger=_LOGGER,
        component_id=str(SERVICE_COMPONENT_ID),
    )
    def list_retention_policies(
        self, *, meta: EnvelopeMeta, active_only: bool = False
    ) -> Envelope[list[RetentionPolicy]]:
        """Return stored policies ordered by name."""
        errors = self._validate_meta(meta)
        if errors:
            return failure(meta=meta, errors=errors)

        try:
            policies = self._repository.list_policies(active_only=active_only)
        except Exception as exc:  # noqa: BLE001
            return self._operation_failure(
                meta=meta, operation="list_retention_policies", exc=exc
            )
        return success(meta=meta, payload=policies)

    @public_api_instrumented(
        logger=_LOGGER,
        component_id=str(SERVICE_COMPONENT_ID),
    )
    def health(self, *, meta: EnvelopeMeta) -> Envelope[HealthStatus]:
        """Return readiness based on policy-store availability."""
        errors = self._validate_meta(meta)
        if errors:
            return failure(meta=meta, errors=errors)

        try:
            self._repository.list_policies(active_only=True)
        except Exception as exc:  # noqa: BLE001
            return success(
                meta=meta,
                payload=HealthStatus(
                    service_ready=True,
                    substrate_ready=False,
                    detail=f"policy store probe failed: {type(exc).__name__}",
                ),
            )
        return success(
            meta=meta,
            payload=HealthStatus(service_ready=True, substrate_ready=True, detail="ok"),
        )

    def _apply_parallel(
        self,
        *,
        meta: EnvelopeMeta,
        policies: Sequence[RetentionPolicy],
        cancel: Event,
    ) -> list[PolicyApplicationResult]:
        """Apply policies on a bounded pool, keeping results in policy order."""
        workers = min(self._workers, len(policies))
        with ThreadPoolExecutor(
            max_workers=workers, thread_name_prefix="retention"
        ) as executor:
            futures = [
                executor.submit(
                    contextvars.copy_context().run,
                    self._apply,
                    meta=meta,
                    policy=policy,
                    cancel=cancel,
                )
                for policy in policies
            ]
            return [future.result() for future in futures]

    def _apply(
        self, *, meta: EnvelopeMeta, policy: RetentionPolicy, cancel: Event
    ) -> PolicyApplicationResult:
        """Run archive then delete phases for one policy; never raises."""
        now = self._clock()
        tally = _SweepTally()
        status = PolicyRunStatus.COMPLETED
        error: ErrorDetail | None = None
        phase = "archive"

        with log_context(
            {
                "policy_name": policy.policy_name,
                "data_classification": policy.data_classification.value,
            }
        ):
            try:
                if policy.archive_after_days is not None:
                    self._archive(
                        meta=meta,
                        policy=policy,
                        cutoff=now - timedelta(days=policy.archive_after_days),
                        now=now,
                        tally=tally,
                        cancel=cancel,
                    )
                phase = "delete"
                if policy.delete_after_days is not None:
                    self._delete(
                        meta=meta,
                        policy=policy,
                        cutoff=now - timedelta(days=policy.delete_after_days),
                        tally=tally,
                        cancel=cancel,
                    )
            except _Cancelled:
                status = PolicyRunStatus.CANCELLED
                _LOGGER.warning(
                    "Retention policy cancelled between chunks: policy_name=%s "
                    "phase=%s archived=%d deleted=%d",
                    policy.policy_name,
                    phase,
                    tally.archived,
                    tally.deleted,
                )
            except LedgerError as exc:
                status = PolicyRunStatus.FAILED
                error = exc.to_error()
                _LOGGER.error("Retention policy failed: %s", exc)
            except Exception as exc:  # noqa: BLE001
                status = PolicyRunStatus.FAILED
                error = RetentionPolicyFailure(
                    policy_name=policy.policy_name,
                    phase=phase,
                    detail=type(exc).__name__,
                ).to_error()
                _LOGGER.error(
                    "Retention policy failed: policy_name=%s phase=%s",
                    policy.policy_name,
                    phase,
                    exc_info=exc,
                )

            result = PolicyApplicationResult(
                policy_name=policy.policy_name,
                data_classification=policy.data_classification,
                status=status,
                records_archived=tally.archived,
                records_deleted=tally.deleted,
                archived_at=now,
                summary=tally.summary(),
                error=error,
            )
            audit_logged = self._log_application(meta=meta, result=result)
        return result.model_copy(update={"audit_logged": audit_logged})

    def _archive(
        self,
        *,
        meta: EnvelopeMeta,
        policy: RetentionPolicy,
        cutoff: datetime,
        now: datetime,
        tally: _SweepTally,
        cancel: Event,
    ) -> None:
        """Archive eligible ACTIVE records chunk by chunk."""
        while True:
            if cancel.is_set():
                raise _Cancelled()
            result = self._event_store.archive_batch(
                meta=child_meta(meta, source=_SOURCE),
                classification=policy.data_classification,
                cutoff=cutoff,
                archived_at=now,
                batch_size=self._settings.batch_size,
            )
            batch = _batch_or_raise(result, policy=policy, phase="archive")
            tally.add_archived(batch)
            if batch.exhausted:
                return

    def _delete(
        self,
        *,
        meta: EnvelopeMeta,
        policy: RetentionPolicy,
        cutoff: datetime,
        tally: _SweepTally,
        cancel: Event,
    ) -> None:
        """Delete eligible ARCHIVED records chunk by chunk."""
        while True:
            if cancel.is_set():
                raise _Cancelled()
            result = self._event_store.delete_archived_batch(
                meta=child_meta(meta, source=_SOURCE),
                classification=policy.data_classification,
                cutoff=cutoff,
                batch_size=self._settings.batch_size,
            )
            batch = _batch_or_raise(result, policy=policy, phase="delete")
            tally.deleted += batch.affected
            if batch.exhausted:
                return

    def _log_application(
        self, *, meta: EnvelopeMeta, result: PolicyApplicationResult
    ) -> bool:
        """Append the SYSTEM self-log for one application; report success."""
        summary = result.summary
        draft = EventDraft(
            principal_id=self._settings.system_principal,
            action=SELF_LOG_ACTION,
            status=_SELF_LOG_STATUS[result.status],
            target_resource_type=SELF_LOG_RESOURCE_TYPE,
            target_resource_id=result.policy_name,
            outcome_description=(
                f"Applied retention policy {result.policy_name}"
                if result.ok
                else f"Retention policy {result.policy_name} {result.status.value}"
            ),
            data_classification=DataClassification.SYSTEM,
            retention_policy=SELF_LOG_RETENTION_POLICY,
            details=EventDetails.model_validate(
                {
                    "policy": result.policy_name,
                    "dataClassification": result.data_classification.value,
                    "recordsArchived": result.records_archived,
                    "recordsDeleted": result.records_deleted,
                    "runStatus": result.status.value,
                    "byClassification": summary.by_classification,
                    "byAction": summary.by_action,
                    "dateRange": {
                        "start": _iso(summary.date_range.start),
                        "end": _iso(summary.date_range.end),
                    },
                    "errorCode": None if result.error is None else result.error.code,
                }
            ),
            timestamp=result.archived_at,
        )
        try:
            appended = self._event_store.append_event(
                meta=child_meta(meta, source=_SOURCE), draft=draft
            )
        except Exception as exc:  # noqa: BLE001
            _LOGGER.error(
                "Retention self-log failed: policy_name=%s exception_type=%s",
                result.policy_name,
                type(exc).__name__,
                exc_info=exc,
            )
            return False
        if not appended.ok:
            _LOGGER.error(
                "Retention self-log failed: policy_name=%s errors=%s",
                result.policy_name,
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
            return failure(meta=meta, errors=[exc.to_error()])
        if is_database_error(exc):
            _LOGGER.warning(
                "%s failed due to database error: exception_type=%s",
                operation,
                type(exc).__name__,
                exc_info=exc,
            )
            return failure(meta=meta, errors=[normalize_postgres_error(exc)])
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


def _batch_or_raise(
    result: Envelope[LifecycleBatch], *, policy: RetentionPolicy, phase: str
) -> LifecycleBatch:
    """Unwrap one chunk result or raise a policy failure with its cause."""
    if result.ok:
        return result.value()
    first = result.errors[0]
    raise RetentionPolicyFailure(
        policy_name=policy.policy_name,
        phase=phase,
        cause_code=first.code,
        detail=first.message,
    )


def _first_validation_message(exc: ValidationError) -> str:
    first = exc.errors()[0]
    message = str(first.get("msg", "invalid retention policy"))
    return message.removeprefix("Value error, ")


def _iso(value: datetime | None) -> str | None:
    return None if value is None else value.astimezone(UTC).isoformat()
