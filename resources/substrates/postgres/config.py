"""Configuration model for shared Postgres substrate access."""

from __future__ import annotations

from typing import Literal
from urllib.parse import quote_plus

from pydantic import BaseModel, ConfigDict, Field, model_validator

from packages.ledger_shared.config import LedgerSettings, resolve_component_settings
from resources.substrates.postgres.component import RESOURCE_COMPONENT_ID

SslMode = Literal["disable", "allow", "prefer", "require", "verify-ca", "verify-full"]


class PostgresSettings(BaseModel):
    """Runtime settings for constructing Postgres engines and pools.

    ``url`` wins when set; otherwise the URL is assembled from split parts.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    url: str = ""
    host: str = "postgres"
    port: int = Field(default=5432, gt=0)
    database: str = "ledger"
    user: str = "ledger"
    password: str = "ledger"
    pool_size: int = Field(default=5, gt=0)
    max_overflow: int = Field(default=10, ge=0)
    pool_timeout_seconds: float = Field(default=30.0, gt=0)
    pool_pre_ping: bool = True
    connect_timeout_seconds: float = Field(default=10.0, gt=0)
    health_timeout_seconds: float = Field(default=1.0, gt=0)
    sslmode: SslMode = "prefer"

    @model_validator(mode="after")
    def _resolve_url(self) -> "PostgresSettings":
        """Build the SQLAlchemy psycopg URL from parts when unset."""
        if self.url.strip():
            return self
        if not self.host.strip():
            raise ValueError("postgres.host is required when postgres.url is unset")
        if not self.database.strip():
            raise ValueError("postgres.database is required when postgres.url is unset")
        if not self.user.strip():
            raise ValueError("postgres.user is required when postgres.url is unset")
        url = (
            "postgresql+psycopg://"
            f"{quote_plus(self.user)}:{quote_plus(self.password)}"
            f"@{self.host}:{self.port}/{quote_plus(self.database)}"
        )
        object.__setattr__(self, "url", url)
        return self


def resolve_postgres_settings(settings: LedgerSettings) -> PostgresSettings:
    """Resolve substrate settings from ``components.substrate.postgres``."""
    return resolve_component_settings(
        settings=settings,
        component_id=str(RESOURCE_COMPONENT_ID),
        model=PostgresSettings,
    )
