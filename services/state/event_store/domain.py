"""Domain contracts for Event Store Service payloads."""

from __future__ import annotations

import math
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

PSEUDONYMIZED_KEY = "pseudonymized"
PSEUDONYMIZED_AT_KEY = "pseudonymizedAt"


def canonical_timestamp(value: datetime) -> str:
    """Render one timestamp as UTC ISO-8601 with microseconds and ``Z``."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    rendered = value.astimezone(UTC).isoformat(timespec="microseconds")
    return rendered.replace("+00:00", "Z")


class DataClassification(str, Enum):
    """Sensitivity label governing retention and handling of one record."""

    PUBLIC = "PUBLIC"
    INTERNAL = "INTERNAL"
    CONFIDENTIAL = "CONFIDENTIAL"
    PHI = "PHI"
    SYSTEM = "SYSTEM"


class EventStatus(str, Enum):
    """Outcome status recorded on one audit event."""

    ATTEMPT = "attempt"
    SUCCESS = "success"
    FAILURE = "failure"


class IntegrityReason(str, Enum):
    """Distinguishing reason attached to a failed verification."""

    HASH_MISMATCH = "hash_mismatch"
    SIGNATURE_INVALID = "signature_invalid"
    VERIFICATION_UNAVAILABLE = "verification_unavailable"


class EventDetails(BaseModel):
    """Typed detail map: reserved pseudonymization keys plus an open JSON bag."""

    model_config = ConfigDict(frozen=True, extra="allow", populate_by_name=True)

    pseudonymized: bool | None = None
    pseudonymized_at: str | None = Field(default=None, alias=PSEUDONYMIZED_AT_KEY)

    @field_validator("pseudonymized_at")
    @classmethod
    def _validate_pseudonymized_at(cls, value: str | None) -> str | None:
        """Require ISO-8601 text for the pseudonymization timestamp."""
        if value is None:
            return None
        try:
            datetime.fromisoformat(value)
        except ValueError as exc:
            raise ValueError("pseudonymizedAt must be an ISO-8601 timestamp") from exc
        return value

    @model_validator(mode="after")
    def _validate_extension_values(self) -> "EventDetails":
        """Reject extension values that do not survive a JSON round trip."""
        for key, value in (self.model_extra or {}).items():
            _require_json_value(value, path=key)
        return self

    def as_dict(self) -> dict[str, Any]:
        """Return the wire/storage form with reserved keys in camelCase."""
        output: dict[str, Any] = dict(self.model_extra or {})
        if self.pseudonymized is not None:
            output[PSEUDONYMIZED_KEY] = self.pseudonymized
        if self.pseudonymized_at is not None:
            output[PSEUDONYMIZED_AT_KEY] = self.pseudonymized_at
        return output


class EventDraft(BaseModel):
    """Caller-supplied audit event fields prior to sealing."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    principal_id: str = Field(min_length=1, max_length=255)
    action: str = Field(min_length=1, max_length=255)
    status: EventStatus
    organization_id: str | None = None
    target_resource_type: str | None = None
    target_resource_id: str | None = None
    outcome_description: str | None = None
    data_classification: DataClassification = DataClassification.INTERNAL
    retention_policy: str = "standard"
    details: EventDetails = Field(default_factory=EventDetails)
    correlation_id: str | None = None
    timestamp: datetime | None = None


class AuditEvent(BaseModel):
    """One sealed audit record as stored."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    event_id: str
    timestamp: datetime
    principal_id: str
    organization_id: str | None
    action: str
    status: EventStatus
    target_resource_type: str | None
    target_resource_id: str | None
    outcome_description: str | None
    data_classification: DataClassification
    retention_policy: str
    details: EventDetails
    hash: str
    hash_algorithm: str
    signature: str | None = None
    signing_key_id: str | None = None
    signature_algorithm: str | None = None
    event_version: str
    correlation_id: str | None = None
    archived_at: datetime | None = None

    @property
    def is_pseudonymized(self) -> bool:
        """Return whether this record was redacted by a pseudonymization."""
        return bool(self.details.pseudonymized)


class IntegrityVerification(BaseModel):
    """Outcome of re-verifying one stored record."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    event_id: str
    valid: bool
    reason: IntegrityReason | None = None
    expected_hash: str
    computed_hash: str | None = None
    signature_checked: bool = False
    pseudonymized: bool = False
    detail: str = ""


class IntegrityReport(BaseModel):
    """Classified findings from one verification sweep."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    checked: int
    valid: int
    findings: list[IntegrityVerification]
    by_reason: dict[str, int]
    pseudonymized_findings: int
    next_after_event_id: str | None = None


class EventQuery(BaseModel):
    """Criteria for reading one principal's events in timestamp order."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    principal_id: str = Field(min_length=1)
    organization_id: str | None = None
    start: datetime | None = None
    end: datetime | None = None
    limit: int | None = Field(default=None, gt=0)

    @model_validator(mode="after")
    def _validate_range(self) -> "EventQuery":
        """Reject inverted date ranges."""
        if self.start is not None and self.end is not None and self.start > self.end:
            raise ValueError("start must be before end")
        return self


class LifecycleBatch(BaseModel):
    """Counts for one chunked archive/delete statement."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    affected: int
    by_classification: dict[str, int] = Field(default_factory=dict)
    by_action: dict[str, int] = Field(default_factory=dict)
    earliest: datetime | None = None
    latest: datetime | None = None
    exhausted: bool = True


class PseudonymMapping(BaseModel):
    """Stored pseudonym to encrypted-original-identifier mapping."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    pseudonym_id: str = Field(min_length=1, max_length=64)
    original_id: str = Field(min_length=1)
    strategy: str
    timestamp: datetime


class PseudonymizationOutcome(BaseModel):
    """Result of one atomic mapping insert plus bulk principal update."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    pseudonym_id: str
    records_affected: int
    mapping_created: bool


class ErasureOutcome(BaseModel):
    """Result of one atomic preserve-and-delete erasure."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    records_deleted: int
    records_preserved: int
    pseudonym_id: str | None = None


class PrincipalSummary(BaseModel):
    """Compliance view of one principal's stored records."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    principal_id: str
    record_count: int
    data_classifications: list[str]
    retention_policies: list[str]
    oldest_record: datetime | None
    newest_record: datetime | None
    compliance_critical_records: int


class HealthStatus(BaseModel):
    """Event Store and owned dependency readiness status payload."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    service_ready: bool
    substrate_ready: bool
    detail: str


def _require_json_value(value: object, *, path: str) -> None:
    """Raise ``ValueError`` unless ``value`` is plain JSON-compatible data."""
    if value is None or isinstance(value, (bool, int, str)):
        return
    if isinstance(value, float):
        if not math.isfinite(value):
            raise ValueError(f"details.{path} must be a finite number")
        return
    if isinstance(value, list):
        for index, item in enumerate(value):
            _require_json_value(item, path=f"{path}[{index}]")
        return
    if isinstance(value, dict):
        for key, item in value.items():
            if not isinstance(key, str):
                raise ValueError(f"details.{path} keys must be strings")
            _require_json_value(item, path=f"{path}.{key}")
        return
    raise ValueError(f"details.{path} is not JSON-compatible: {type(value).__name__}")
