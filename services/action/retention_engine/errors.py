"""Typed failures raised by Retention Policy Engine components."""

from __future__ import annotations

from packages.ledger_shared.errors import ErrorCategory, LedgerError, codes


class RetentionPolicyFailure(LedgerError):
    """One policy's bulk statement failed; sibling policies still run."""

    code = codes.RETENTION_POLICY_FAILED
    category = ErrorCategory.DEPENDENCY
    retryable = False

    def __init__(
        self,
        *,
        policy_name: str,
        phase: str,
        cause_code: str = "",
        detail: str = "",
    ) -> None:
        super().__init__(
            f"retention policy '{policy_name}' failed during {phase}",
            context={
                "policy_name": policy_name,
                "phase": phase,
                "cause_code": cause_code or None,
                "detail": detail or None,
            },
        )
        self.policy_name = policy_name
        self.phase = phase
