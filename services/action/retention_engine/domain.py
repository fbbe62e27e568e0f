"""Domain payloads for Retention Policy Engine."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, model_validator

from packages.ledger_shared.errors import ErrorDetail
from services.state.event_store.domain import DataClassification

SELF_LOG_ACTION = "gdpr.retention.apply"
SELF_LOG_RETENTION_POLICY = "system_audit"
SELF_LOG_RESOURCE_TYPE = "RetentionPolicy"


class RetentionPolicy(BaseModel):
    """Classification-scoped archive and delete age thresholds."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    policy_name: str = Field(min_length=1, max_length=100)
    data_classification: DataClassification
    retention_days: int = Field(gt=0)
    archive_after_days: int | None = Field(default=None, ge=0)
    delete_after_days: int | None = Field(default=None, ge=0)
    is_active: bool = True
    description: str = ""
    created_by: str = "system"

    @model_validator(mode="after")
    def _validate_thresholds(self) -> "RetentionPolicy":
        """Reject SYSTEM scope and deletes scheduled before archival."""
        if self.data_classification == DataClassification.SYSTEM:
            raise ValueError("SYSTEM classification cannot carry a retention policy")
        if (
            self.archive_after_days is not None
            and self.delete_after_days is not None
            and self.delete_after_days < self.archive_after_days
        ):
            raise ValueError("delete_after_days must be >= archive_after_days")
        return self


class RetentionPolicyDraft(BaseModel):
    """Operator input for a new policy; unset thresholds use recommendations."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    data_classification: DataClassification
    policy_name: str | None = None
    retention_days: int | None = None
    archive_after_days: int | None = None
    delete_after_days: int | None = None
    description: str = ""
    created_by: str = "system"


class DateRange(BaseModel):
    """Inclusive timestamp range covered by one sweep."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    start: datetime | None = None
    end: datetime | None = None


class ArchiveSummary(BaseModel):
    """Breakdown of archived records for one policy application."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    by_classification: dict[str, int] = Field(default_factory=dict)
    by_action: dict[str, int] = Field(default_factory=dict)
    date_range: DateRange = Field(default_factory=DateRange)


class PolicyRunStatus(str, Enum):
    """Terminal status of one policy application."""

    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


class PolicyApplicationResult(BaseModel):
    """Outcome of applying one retention policy."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    policy_name: str
    data_classification: DataClassification
    status: PolicyRunStatus
    records_archived: int = 0
    records_deleted: int = 0
    archived_at: datetime
    summary: ArchiveSummary = Field(default_factory=ArchiveSummary)
    audit_logged: bool = False
    error: ErrorDetail | None = None

    @property
    def ok(self) -> bool:
        return self.status == PolicyRunStatus.COMPLETED


class RetentionRunResult(BaseModel):
    """Per-policy results of one sweep, in policy order."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    results: list[PolicyApplicationResult] = Field(default_factory=list)

    @property
    def records_archived(self) -> int:
        return sum(result.records_archived for result in self.results)

    @property
    def records_deleted(self) -> int:
        return sum(result.records_deleted for result in self.results)

    @property
    def failed(self) -> list[PolicyApplicationResult]:
        return [
            result
            for result in self.results
            if result.status == PolicyRunStatus.FAILED
        ]


class HealthStatus(BaseModel):
    """Retention engine and policy-store readiness."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    service_ready: bool
    substrate_ready: bool
    detail: str
