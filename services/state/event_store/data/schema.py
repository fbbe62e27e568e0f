"""SQLAlchemy table definitions owned by Event Store Service.

Tables carry no schema argument; Postgres sessions pin ``search_path`` to the
service schema, and the same metadata builds SQLite fixtures in tests.
"""

from __future__ import annotations

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Index,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    false,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB

from packages.ledger_shared.ids import ulid_column, ulid_primary_key_column

metadata = MetaData()

DetailsJSON = JSON().with_variant(JSONB(), "postgresql")

audit_log = Table(
    "audit_log",
    metadata,
    ulid_primary_key_column("id"),
    Column("timestamp", DateTime(timezone=True), nullable=False),
    Column("principal_id", String(255), nullable=False),
    Column("organization_id", String(255), nullable=True),
    Column("action", String(255), nullable=False),
    Column("target_resource_type", String(255), nullable=True),
    Column("target_resource_id", String(255), nullable=True),
    Column("status", String(16), nullable=False),
    Column("outcome_description", Text, nullable=True),
    Column("data_classification", String(16), nullable=False),
    Column("retention_policy", String(100), nullable=False),
    Column("details", DetailsJSON, nullable=False),
    Column("hash", String(64), nullable=False),
    Column("hash_algorithm", String(16), nullable=False),
    Column("signature", Text, nullable=True),
    Column("signing_key_id", String(255), nullable=True),
    Column("signature_algorithm", String(64), nullable=True),
    Column("event_version", String(8), nullable=False),
    Column("correlation_id", String(255), nullable=True),
    Column("archived_at", DateTime(timezone=True), nullable=True),
    Column(
        "created_at",
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    ),
    CheckConstraint(
        "status IN ('attempt', 'success', 'failure')",
        name="ck_audit_log_status",
    ),
    CheckConstraint(
        "data_classification IN ('PUBLIC', 'INTERNAL', 'CONFIDENTIAL', 'PHI', 'SYSTEM')",
        name="ck_audit_log_data_classification",
    ),
    CheckConstraint("length(hash) = 64", name="ck_audit_log_hash_len"),
    Index("ix_audit_log_principal_timestamp", "principal_id", "timestamp"),
    Index("ix_audit_log_classification_timestamp", "data_classification", "timestamp"),
    Index("ix_audit_log_archived_at", "archived_at"),
    Index("ix_audit_log_action", "action"),
)

pseudonym_mapping = Table(
    "pseudonym_mapping",
    metadata,
    ulid_primary_key_column("id"),
    Column("pseudonym_id", String(64), nullable=False),
    Column("original_id", Text, nullable=False),
    Column("strategy", String(16), nullable=False),
    Column("timestamp", DateTime(timezone=True), nullable=False),
    UniqueConstraint("pseudonym_id", name="uq_pseudonym_mapping_pseudonym_id"),
)

audit_integrity_log = Table(
    "audit_integrity_log",
    metadata,
    ulid_primary_key_column("id"),
    ulid_column("audit_log_id", index=True),
    Column("verification_timestamp", DateTime(timezone=True), nullable=False),
    Column("verification_status", String(16), nullable=False),
    Column("reason", String(32), nullable=True),
    Column("hash_verified", Boolean, nullable=False),
    Column("signature_verified", Boolean, nullable=True),
    Column("pseudonymized", Boolean, nullable=False, server_default=false()),
    Column("expected_hash", String(64), nullable=False),
    Column("computed_hash", String(64), nullable=True),
    Column("verified_by", String(255), nullable=False),
    Column("verification_details", DetailsJSON, nullable=False),
    CheckConstraint(
        "verification_status IN ('valid', 'invalid')",
        name="ck_audit_integrity_log_status",
    ),
)
