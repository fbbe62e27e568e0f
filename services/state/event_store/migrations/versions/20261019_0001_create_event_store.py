"""create event store tables"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from services.state.event_store.data.runtime import event_store_postgres_schema

# revision identifiers, used by Alembic.
revision = "20261019_0001"
down_revision = None
branch_labels = None
depends_on = None


def _schema() -> str:
    """Resolve canonical Event Store schema name."""
    return event_store_postgres_schema()


def upgrade() -> None:
    """Create Event Store authoritative schema objects."""
    schema = _schema()

    op.create_table(
        "audit_log",
        sa.Column("id", sa.String(length=26), primary_key=True, nullable=False),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("principal_id", sa.String(length=255), nullable=False),
        sa.Column("organization_id", sa.String(length=255), nullable=True),
        sa.Column("action", sa.String(length=255), nullable=False),
        sa.Column("target_resource_type", sa.String(length=255), nullable=True),
        sa.Column("target_resource_id", sa.String(length=255), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("outcome_description", sa.Text(), nullable=True),
        sa.Column("data_classification", sa.String(length=16), nullable=False),
        sa.Column("retention_policy", sa.String(length=100), nullable=False),
        sa.Column("details", postgresql.JSONB(), nullable=False),
        sa.Column("hash", sa.String(length=64), nullable=False),
        sa.Column("hash_algorithm", sa.String(length=16), nullable=False),
        sa.Column("signature", sa.Text(), nullable=True),
        sa.Column("signing_key_id", sa.String(length=255), nullable=True),
        sa.Column("signature_algorithm", sa.String(length=64), nullable=True),
        sa.Column("event_version", sa.String(length=8), nullable=False),
        sa.Column("correlation_id", sa.String(length=255), nullable=True),
        sa.Column("archived_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.CheckConstraint(
            "status IN ('attempt', 'success', 'failure')",
            name="ck_audit_log_status",
        ),
        sa.CheckConstraint(
            "data_classification IN ('PUBLIC', 'INTERNAL', 'CONFIDENTIAL', 'PHI', 'SYSTEM')",
            name="ck_audit_log_data_classification",
        ),
        sa.CheckConstraint("length(hash) = 64", name="ck_audit_log_hash_len"),
        schema=schema,
    )
    op.create_index(
        "ix_audit_log_principal_timestamp",
        "audit_log",
        ["principal_id", "timestamp"],
        schema=schema,
    )
    op.create_index(
        "ix_audit_log_classification_timestamp",
        "audit_log",
        ["data_classification", "timestamp"],
        schema=schema,
    )
    op.create_index(
        "ix_audit_log_archived_at", "audit_log", ["archived_at"], schema=schema
    )
    op.create_index("ix_audit_log_action", "audit_log", ["action"], schema=schema)

    op.create_table(
        "pseudonym_mapping",
        sa.Column("id", sa.String(length=26), primary_key=True, nullable=False),
        sa.Column("pseudonym_id", sa.String(length=64), nullable=False),
        sa.Column("original_id", sa.Text(), nullable=False),
        sa.Column("strategy", sa.String(length=16), nullable=False),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint(
            "pseudonym_id", name="uq_pseudonym_mapping_pseudonym_id"
        ),
        schema=schema,
    )

    op.create_table(
        "audit_integrity_log",
        sa.Column("id", sa.String(length=26), primary_key=True, nullable=False),
        sa.Column("audit_log_id", sa.String(length=26), nullable=False),
        sa.Column(
            "verification_timestamp", sa.DateTime(timezone=True), nullable=False
        ),
        sa.Column("verification_status", sa.String(length=16), nullable=False),
        sa.Column("reason", sa.String(length=32), nullable=True),
        sa.Column("hash_verified", sa.Boolean(), nullable=False),
        sa.Column("signature_verified", sa.Boolean(), nullable=True),
        sa.Column(
            "pseudonymized",
            sa.Boolean(),
            nullable=False,
            server_default=sa.false(),
        ),
        sa.Column("expected_hash", sa.String(length=64), nullable=False),
        sa.Column("computed_hash", sa.String(length=64), nullable=True),
        sa.Column("verified_by", sa.String(length=255), nullable=False),
        sa.Column("verification_details", postgresql.JSONB(), nullable=False),
        sa.CheckConstraint(
            "verification_status IN ('valid', 'invalid')",
            name="ck_audit_integrity_log_status",
        ),
        schema=schema,
    )
    op.create_index(
        "ix_audit_integrity_log_audit_log_id",
        "audit_integrity_log",
        ["audit_log_id"],
        schema=schema,
    )


def downgrade() -> None:
    """Drop Event Store authoritative schema objects."""
    schema = _schema()
    op.drop_table("audit_integrity_log", schema=schema)
    op.drop_table("pseudonym_mapping", schema=schema)
    op.drop_table("audit_log", schema=schema)
