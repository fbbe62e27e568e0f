"""Pre-migration bootstrap for service-owned Postgres schemas."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from sqlalchemy import text

from packages.ledger_shared.component_loader import import_registered_component_modules
from packages.ledger_shared.config import LedgerSettings, load_settings
from packages.ledger_shared.logging import get_logger
from packages.ledger_shared.manifest import ServiceManifest, get_registry
from resources.substrates.postgres.config import resolve_postgres_settings
from resources.substrates.postgres.engine import create_postgres_engine

_LOGGER = get_logger(__name__)


@dataclass(frozen=True)
class BootstrapResult:
    """Summary of pre-migration bootstrap actions."""

    imported_components: tuple[str, ...]
    provisioned_schemas: tuple[str, ...]


def bootstrap_service_schemas(
    settings: LedgerSettings | None = None,
) -> BootstrapResult:
    """Provision one schema per registered service before migrations run."""
    resolved_settings = load_settings() if settings is None else settings
    postgres_config = resolve_postgres_settings(resolved_settings)

    imported = import_registered_component_modules()
    registry = get_registry()
    registry.assert_valid()
    services = registry.list_services()
    if len(services) == 0:
        raise RuntimeError(
            "no registered services discovered; refusing schema bootstrap"
        )

    engine = create_postgres_engine(postgres_config)
    try:
        provisioned: list[str] = []
        with engine.begin() as connection:
            for service in services:
                _provision_service_schema(connection=connection, service=service)
                provisioned.append(service.schema_name)
    finally:
        engine.dispose()

    _LOGGER.info("Provisioned %d service schema(s)", len(provisioned))
    return BootstrapResult(
        imported_components=imported,
        provisioned_schemas=tuple(provisioned),
    )


def _provision_service_schema(*, connection: Any, service: ServiceManifest) -> None:
    """Create one service schema when missing."""
    connection.execute(text(f"CREATE SCHEMA IF NOT EXISTS {service.schema_name}"))
