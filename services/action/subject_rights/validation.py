"""Export request validation with caller-facing messages."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from services.action.subject_rights.domain import (
    ExportFormat,
    ExportRequest,
    RequestType,
)

_REQUEST_TYPES = frozenset(item.value for item in RequestType)
_EXPORT_FORMATS = frozenset(item.value for item in ExportFormat)


class ProblemKind(str, Enum):
    """Whether a request field was omitted or carries an unusable value."""

    MISSING = "missing"
    INVALID = "invalid"


@dataclass(frozen=True)
class RequestProblem:
    field: str
    message: str
    kind: ProblemKind


def is_supported_format(value: str) -> bool:
    return value in _EXPORT_FORMATS


def validate_export_request(request: ExportRequest) -> list[RequestProblem]:
    """Return every problem found in ``request``.

    An empty list means the request is valid. Missing fields are reported
    before unknown enum values so callers see all omissions at once.
    """
    problems: list[RequestProblem] = []

    def missing(field: str, message: str) -> None:
        problems.append(RequestProblem(field, message, ProblemKind.MISSING))

    def invalid(field: str, message: str) -> None:
        problems.append(RequestProblem(field, message, ProblemKind.INVALID))

    if request.principal_id.strip() == "":
        missing("principal_id", "Principal ID is required")
    if request.request_type == "":
        missing("request_type", "Request type is required")
    if request.format == "":
        missing("format", "Export format is required")
    if request.requested_by.strip() == "":
        missing("requested_by", "Requested by field is required")

    if request.request_type and request.request_type not in _REQUEST_TYPES:
        invalid("request_type", "Invalid request type")
    if request.format and not is_supported_format(request.format):
        invalid("format", "Invalid export format")

    date_range = request.date_range
    if date_range is not None:
        if date_range.start is None or date_range.end is None:
            invalid("date_range", "Date range must include both start and end dates")
        elif date_range.start >= date_range.end:
            invalid("date_range", "Date range start must be before end")
    return problems
