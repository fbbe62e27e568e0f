"""Persistence contracts for Retention Policy Engine."""

from __future__ import annotations

from typing import Protocol

from services.action.retention_engine.domain import RetentionPolicy


class RetentionPolicyRepository(Protocol):
    """Store of classification-scoped retention policies."""

    def list_policies(self, *, active_only: bool) -> list[RetentionPolicy]:
        """Return policies ordered by name."""

    def get_policy(self, *, policy_name: str) -> RetentionPolicy | None:
        """Return one policy by unique name."""

    def create_policy(self, *, policy: RetentionPolicy) -> RetentionPolicy:
        """Persist one new policy; duplicate names raise."""
