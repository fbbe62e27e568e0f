"""Base exception type carrying operation context and an error mapping."""

from __future__ import annotations

from typing import ClassVar, Mapping

from . import codes
from .types import ErrorCategory, ErrorDetail


class LedgerError(Exception):
    """Base class for typed domain failures raised inside Ledger components.

    ``context`` carries the operation identity (policy name, masked principal,
    request id) so a failure can be reported without string inspection.
    """

    code: ClassVar[str] = codes.INTERNAL_ERROR
    category: ClassVar[ErrorCategory] = ErrorCategory.INTERNAL
    retryable: ClassVar[bool] = False

    def __init__(
        self, message: str, *, context: Mapping[str, object] | None = None
    ) -> None:
        super().__init__(message)
        self.message = message
        self.context: dict[str, str] = {
            str(key): str(value)
            for key, value in (context or {}).items()
            if value is not None
        }

    def __str__(self) -> str:
        if not self.context:
            return self.message
        details = " ".join(f"{key}={value}" for key, value in sorted(self.context.items()))
        return f"{self.message} ({details})"

    def to_error(self) -> ErrorDetail:
        """Return the shared ``ErrorDetail`` describing this failure."""
        return ErrorDetail(
            code=self.code,
            message=self.message,
            category=self.category,
            retryable=self.retryable,
            metadata={"exception_type": type(self).__name__, **self.context},
        )
