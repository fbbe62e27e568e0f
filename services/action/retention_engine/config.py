"""Pydantic settings for Retention Policy Engine behavior."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from packages.ledger_shared.config import LedgerSettings, resolve_component_settings
from services.action.retention_engine.component import SERVICE_COMPONENT_ID


class RetentionEngineSettings(BaseModel):
    """Sweep chunking, concurrency, and policy-cache settings."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    batch_size: int = Field(default=1000, gt=0, le=50_000)
    max_concurrency: int = Field(default=4, gt=0)
    parallel: bool = True
    policy_cache_ttl_seconds: float = Field(default=60.0, ge=0.0)
    system_principal: str = Field(default="system", min_length=1)


def resolve_retention_engine_settings(
    settings: LedgerSettings,
) -> RetentionEngineSettings:
    """Resolve engine settings from ``components.service.retention_engine``."""
    return resolve_component_settings(
        settings=settings,
        component_id=str(SERVICE_COMPONENT_ID),
        model=RetentionEngineSettings,
    )
