"""Pydantic settings for the key-management adapter resource."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from packages.ledger_shared.config import LedgerSettings, resolve_component_settings
from resources.adapters.kms.component import RESOURCE_COMPONENT_ID


class KeyManagementSettings(BaseModel):
    """Runtime settings for KMS encrypt/decrypt/sign/verify calls."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    base_url: str = "http://kms:8080"
    access_token: str = ""
    encryption_key_id: str = ""
    signing_key_id: str = ""
    signing_algorithm: str = "RSA-4096"
    timeout_seconds: float = Field(default=10.0, gt=0)
    max_attempts: int = Field(default=3, ge=1)
    backoff_initial_seconds: float = Field(default=0.5, ge=0)
    backoff_max_seconds: float = Field(default=8.0, ge=0)
    backoff_multiplier: float = Field(default=2.0, ge=1.0)
    backoff_jitter_ratio: float = Field(default=0.1, ge=0, lt=1.0)

    @field_validator("base_url")
    @classmethod
    def _normalize_base_url(cls, value: str) -> str:
        """Require a base URL and strip trailing slashes."""
        normalized = value.strip().rstrip("/")
        if normalized == "":
            raise ValueError("base_url is required")
        return normalized

    @model_validator(mode="after")
    def _validate_backoff_bounds(self) -> "KeyManagementSettings":
        """Reject an initial backoff larger than the backoff ceiling."""
        if self.backoff_initial_seconds > self.backoff_max_seconds:
            raise ValueError("backoff_initial_seconds must be <= backoff_max_seconds")
        return self


def resolve_kms_settings(settings: LedgerSettings) -> KeyManagementSettings:
    """Resolve adapter settings from ``components.adapter.kms``."""
    return resolve_component_settings(
        settings=settings,
        component_id=str(RESOURCE_COMPONENT_ID),
        model=KeyManagementSettings,
    )
