"""Public API for Ledger core schema provisioning and migrations."""

from packages.ledger_core.migrations import (
    MigrationExecutionError,
    MigrationRunResult,
    discover_service_migration_configs,
    run_startup_migrations,
)

__all__ = [
    "MigrationExecutionError",
    "MigrationRunResult",
    "discover_service_migration_configs",
    "run_startup_migrations",
]
