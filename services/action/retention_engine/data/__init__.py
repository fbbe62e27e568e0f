"""Data-layer exports for Retention Policy Engine."""

from services.action.retention_engine.data.repository import (
    PostgresRetentionPolicyRepository,
)
from services.action.retention_engine.data.runtime import (
    RetentionEnginePostgresRuntime,
    retention_engine_postgres_schema,
)

__all__ = [
    "PostgresRetentionPolicyRepository",
    "RetentionEnginePostgresRuntime",
    "retention_engine_postgres_schema",
]
