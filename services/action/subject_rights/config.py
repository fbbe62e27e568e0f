"""Pydantic settings for Subject Rights Service behavior."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, field_validator

from packages.ledger_shared.config import LedgerSettings, resolve_component_settings
from services.action.subject_rights.component import SERVICE_COMPONENT_ID
from services.action.subject_rights.domain import (
    DEFAULT_COMPLIANCE_ACTIONS,
    PseudonymizationStrategy,
)


class SubjectRightsSettings(BaseModel):
    """Pseudonymization salt, compliance allow-list, and default strategy.

    ``pseudonym_salt`` has no default; hash pseudonyms are only as strong as
    the configured secret.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    pseudonym_salt: str = Field(min_length=1)
    compliance_actions: tuple[str, ...] = DEFAULT_COMPLIANCE_ACTIONS
    default_strategy: PseudonymizationStrategy = PseudonymizationStrategy.HASH

    @field_validator("pseudonym_salt")
    @classmethod
    def _require_salt(cls, value: str) -> str:
        if value.strip() == "":
            raise ValueError("pseudonym_salt is required")
        return value

    @field_validator("compliance_actions")
    @classmethod
    def _normalize_actions(cls, value: tuple[str, ...]) -> tuple[str, ...]:
        """Drop blanks and duplicates while keeping order."""
        seen: dict[str, None] = {}
        for action in value:
            normalized = action.strip()
            if normalized:
                seen.setdefault(normalized, None)
        return tuple(seen)


def resolve_subject_rights_settings(settings: LedgerSettings) -> SubjectRightsSettings:
    """Resolve settings from ``components.service.subject_rights``."""
    return resolve_component_settings(
        settings=settings,
        component_id=str(SERVICE_COMPONENT_ID),
        model=SubjectRightsSettings,
    )
