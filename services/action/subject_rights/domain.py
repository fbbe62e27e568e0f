"""Domain payloads for Subject Rights Service."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

DEFAULT_COMPLIANCE_ACTIONS: tuple[str, ...] = (
    "auth.login.success",
    "auth.login.failure",
    "data.access.unauthorized",
    "gdpr.data.export",
    "gdpr.data.pseudonymize",
    "gdpr.data.delete",
)

EXPORT_ACTION = "gdpr.data.export"
PSEUDONYMIZE_ACTION = "gdpr.data.pseudonymize"
DELETE_ACTION = "gdpr.data.delete"
SELF_LOG_RETENTION_POLICY = "system_audit"
SELF_LOG_RESOURCE_TYPE = "AuditLog"


class ExportFormat(str, Enum):
    """Serialization formats accepted for data exports."""

    JSON = "json"
    CSV = "csv"
    XML = "xml"


class RequestType(str, Enum):
    """Data-subject rights a request can exercise."""

    ACCESS = "access"
    RECTIFICATION = "rectification"
    ERASURE = "erasure"
    PORTABILITY = "portability"
    RESTRICTION = "restriction"


class PseudonymizationStrategy(str, Enum):
    """Ways a pseudonym is derived from a principal identifier."""

    HASH = "hash"
    TOKEN = "token"
    ENCRYPTION = "encryption"


class DateRange(BaseModel):
    """Optional export window; both ends are required when present."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    start: datetime | None = None
    end: datetime | None = None


class ExportRequest(BaseModel):
    """Caller input for a data export; validated by the service."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    principal_id: str = ""
    organization_id: str | None = None
    request_type: str = ""
    format: str = ""
    date_range: DateRange | None = None
    include_metadata: bool = False
    requested_by: str = ""


class ExportMetadata(BaseModel):
    """Aggregates describing the exported records."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    date_range: DateRange
    categories: list[str] = Field(default_factory=list)
    retention_policies: list[str] = Field(default_factory=list)
    exported_by: str


class ExportResult(BaseModel):
    """Serialized export and its metadata."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    request_id: str
    principal_id: str
    organization_id: str | None
    export_timestamp: datetime
    format: ExportFormat
    record_count: int
    data_size: int
    data: bytes
    metadata: ExportMetadata
    audit_logged: bool


class PseudonymizationResult(BaseModel):
    """Outcome of replacing a principal identifier with a pseudonym."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    pseudonym_id: str
    strategy: PseudonymizationStrategy
    records_affected: int
    mapping_created: bool
    audit_logged: bool


class ErasureResult(BaseModel):
    """Outcome of a preservation-aware erasure."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    records_deleted: int
    compliance_records_preserved: int
    pseudonym_id: str | None = None
    audit_logged: bool


class LookupOutcome(str, Enum):
    """Distinct results of a reverse pseudonym lookup."""

    FOUND = "found"
    NOT_FOUND = "not_found"
    OPERATION_FAILED = "operation_failed"


class OriginalIdLookup(BaseModel):
    """Reverse lookup result; only FOUND carries an identifier."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    outcome: LookupOutcome
    original_id: str | None = None

    @property
    def found(self) -> bool:
        return self.outcome == LookupOutcome.FOUND


class ComplianceStatus(BaseModel):
    """What the store currently holds about one principal."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    has_data: bool
    record_count: int
    data_classifications: list[str] = Field(default_factory=list)
    retention_policies: list[str] = Field(default_factory=list)
    oldest_record: datetime | None = None
    newest_record: datetime | None = None
    compliance_critical_records: int = 0


class HealthStatus(BaseModel):
    """Subject Rights Service and dependency readiness."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    service_ready: bool
    event_store_ready: bool
    detail: str
