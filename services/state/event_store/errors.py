"""Typed failures raised by Event Store Service components."""

from __future__ import annotations

from packages.ledger_shared.errors import ErrorCategory, LedgerError, codes


class IntegrityVerificationFailure(LedgerError):
    """A stored record failed hash or signature verification.

    Verification failures are evidence, not transient faults; they are never
    retried.
    """

    code = codes.INTEGRITY_VERIFICATION_FAILED
    category = ErrorCategory.INTEGRITY
    retryable = False

    def __init__(self, *, event_id: str, reason: str, detail: str = "") -> None:
        super().__init__(
            f"integrity verification failed: {reason}",
            context={"event_id": event_id, "reason": reason, "detail": detail or None},
        )
        self.event_id = event_id
        self.reason = reason


class ProtectedClassificationError(LedgerError):
    """A lifecycle statement targeted the protected SYSTEM classification."""

    code = codes.SYSTEM_CLASSIFICATION_PROTECTED
    category = ErrorCategory.POLICY
    retryable = False

    def __init__(self, *, operation: str) -> None:
        super().__init__(
            "SYSTEM classification is excluded from lifecycle statements",
            context={"operation": operation},
        )
