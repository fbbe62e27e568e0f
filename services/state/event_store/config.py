"""Pydantic settings for Event Store Service behavior."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, field_validator

from packages.ledger_shared.config import LedgerSettings, resolve_component_settings
from services.state.event_store.component import SERVICE_COMPONENT_ID


class EventStoreSettings(BaseModel):
    """Event Store sealing and verification settings."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    hash_algorithm: str = "SHA-256"
    event_version: str = "1.0"
    signing_enabled: bool = False
    signing_secret: str = ""
    verification_batch_size: int = Field(default=500, gt=0, le=10_000)
    verifier_id: str = "integrity_sweep"

    @field_validator("hash_algorithm")
    @classmethod
    def _validate_hash_algorithm(cls, value: str) -> str:
        """Restrict sealing to the canonical SHA-256 digest."""
        normalized = value.strip().upper()
        if normalized not in {"SHA-256", "SHA256"}:
            raise ValueError("hash_algorithm must be 'SHA-256'")
        return "SHA-256"

    @field_validator("event_version", "verifier_id")
    @classmethod
    def _require_text(cls, value: str) -> str:
        """Require non-empty identifiers."""
        normalized = value.strip()
        if normalized == "":
            raise ValueError("value is required")
        return normalized


def resolve_event_store_settings(settings: LedgerSettings) -> EventStoreSettings:
    """Resolve Event Store settings from ``components.service.event_store``."""
    return resolve_component_settings(
        settings=settings,
        component_id=str(SERVICE_COMPONENT_ID),
        model=EventStoreSettings,
    )
