"""Authoritative in-process Python API for Retention Policy Engine."""

from __future__ import annotations

from abc import ABC, abstractmethod
from threading import Event

from packages.ledger_shared.config import LedgerSettings
from packages.ledger_shared.envelope import Envelope, EnvelopeMeta
from services.action.retention_engine.domain import (
    HealthStatus,
    PolicyApplicationResult,
    RetentionPolicy,
    RetentionPolicyDraft,
    RetentionRunResult,
)
from services.state.event_store.service import EventStoreService


class RetentionEngineService(ABC):
    """Public API for retention sweeps and policy management.

    Records move ACTIVE -> ARCHIVED -> DELETED per classification bucket,
    driven only by age. Sweeps are idempotent and never touch SYSTEM records.
    """

    @abstractmethod
    def apply_retention_policies(
        self, *, meta: EnvelopeMeta, cancel: Event | None = None
    ) -> Envelope[RetentionRunResult]:
        """Apply every active policy and return per-policy results."""

    @abstractmethod
    def apply_retention_policy(
        self,
        *,
        meta: EnvelopeMeta,
        policy: RetentionPolicy,
        cancel: Event | None = None,
    ) -> Envelope[PolicyApplicationResult]:
        """Archive then delete one classification bucket."""

    @abstractmethod
    def create_retention_policy(
        self, *, meta: EnvelopeMeta, draft: RetentionPolicyDraft
    ) -> Envelope[RetentionPolicy]:
        """Persist one policy, filling unset thresholds from recommendations."""

    @abstractmethod
    def list_retention_policies(
        self, *, meta: EnvelopeMeta, active_only: bool = False
    ) -> Envelope[list[RetentionPolicy]]:
        """Return stored policies ordered by name."""

    @abstractmethod
    def health(self, *, meta: EnvelopeMeta) -> Envelope[HealthStatus]:
        """Return engine and policy-store readiness."""


def build_retention_engine_service(
    *,
    settings: LedgerSettings,
    event_store: EventStoreService,
) -> RetentionEngineService:
    """Build default Retention Policy Engine from typed settings."""
    from services.action.retention_engine.implementation import (
        DefaultRetentionEngineService,
    )

    return DefaultRetentionEngineService.from_settings(
        settings, event_store=event_store
    )
