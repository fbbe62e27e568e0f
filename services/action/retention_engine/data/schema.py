"""SQLAlchemy table definitions owned by Retention Policy Engine."""

from __future__ import annotations

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    func,
    true,
)

from packages.ledger_shared.ids import ulid_primary_key_column

metadata = MetaData()

audit_retention_policy = Table(
    "audit_retention_policy",
    metadata,
    ulid_primary_key_column("id"),
    Column("policy_name", String(100), nullable=False),
    Column("retention_days", Integer, nullable=False),
    Column("archive_after_days", Integer, nullable=True),
    Column("delete_after_days", Integer, nullable=True),
    Column("data_classification", String(16), nullable=False),
    Column("description", Text, nullable=False, server_default=""),
    Column("is_active", Boolean, nullable=False, server_default=true()),
    Column("created_by", String(255), nullable=False),
    Column(
        "created_at",
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    ),
    Column(
        "updated_at",
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    ),
    UniqueConstraint("policy_name", name="uq_audit_retention_policy_name"),
    CheckConstraint(
        "data_classification IN ('PUBLIC', 'INTERNAL', 'CONFIDENTIAL', 'PHI')",
        name="ck_audit_retention_policy_classification",
    ),
    CheckConstraint(
        "delete_after_days IS NULL OR archive_after_days IS NULL "
        "OR delete_after_days >= archive_after_days",
        name="ck_audit_retention_policy_delete_after_archive",
    ),
)
