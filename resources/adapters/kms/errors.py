"""Typed failures raised by the key-management adapter."""

from __future__ import annotations

from packages.ledger_shared.errors import ErrorCategory, LedgerError, codes


class KeyManagementError(LedgerError):
    """KMS call failed after bounded retries or with a non-retryable error.

    ``attempts`` records how many calls were made before giving up.
    """

    code = codes.KEY_MANAGEMENT_FAILURE
    category = ErrorCategory.DEPENDENCY
    retryable = True

    def __init__(
        self,
        message: str,
        *,
        operation: str,
        attempts: int,
        cause_type: str | None = None,
    ) -> None:
        super().__init__(
            message,
            context={
                "operation": operation,
                "attempts": attempts,
                "cause_type": cause_type,
            },
        )
        self.operation = operation
        self.attempts = attempts
