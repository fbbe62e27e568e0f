"""Typed failures raised by Subject Rights Service components."""

from __future__ import annotations

from packages.ledger_shared.errors import ErrorCategory, LedgerError, codes
from packages.ledger_shared.logging import mask_identifier


class PseudonymizationFailure(LedgerError):
    """Mapping write or bulk rewrite failed and was rolled back."""

    code = codes.PSEUDONYMIZATION_FAILED
    category = ErrorCategory.DEPENDENCY
    retryable = False

    def __init__(
        self, *, principal_id: str, operation: str, cause_code: str = ""
    ) -> None:
        super().__init__(
            f"{operation} failed; principal data left unchanged",
            context={
                "principal_id": mask_identifier(principal_id),
                "operation": operation,
                "cause_code": cause_code or None,
            },
        )
        self.operation = operation


class UnsupportedExportFormat(LedgerError):
    """Export format is not one of json, csv, or xml."""

    code = codes.UNSUPPORTED_EXPORT_FORMAT
    category = ErrorCategory.VALIDATION
    retryable = False

    def __init__(self, *, export_format: str) -> None:
        super().__init__(
            "Invalid export format",
            context={"format": export_format},
        )
        self.export_format = export_format
