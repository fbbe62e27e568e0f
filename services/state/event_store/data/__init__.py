"""Data-layer exports for Event Store Service."""

from services.state.event_store.data.repository import PostgresAuditEventRepository
from services.state.event_store.data.runtime import (
    EventStorePostgresRuntime,
    event_store_postgres_schema,
)

__all__ = [
    "EventStorePostgresRuntime",
    "PostgresAuditEventRepository",
    "event_store_postgres_schema",
]
