"""create retention policy table"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa

from services.action.retention_engine.data.runtime import (
    retention_engine_postgres_schema,
)

# revision identifiers, used by Alembic.
revision = "20261019_0001"
down_revision = None
branch_labels = None
depends_on = None


def _schema() -> str:
    """Resolve canonical Retention Engine schema name."""
    return retention_engine_postgres_schema()


def upgrade() -> None:
    """Create the retention policy table."""
    op.create_table(
        "audit_retention_policy",
        sa.Column("id", sa.String(length=26), primary_key=True, nullable=False),
        sa.Column("policy_name", sa.String(length=100), nullable=False),
        sa.Column("retention_days", sa.Integer(), nullable=False),
        sa.Column("archive_after_days", sa.Integer(), nullable=True),
        sa.Column("delete_after_days", sa.Integer(), nullable=True),
        sa.Column("data_classification", sa.String(length=16), nullable=False),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column(
            "is_active", sa.Boolean(), nullable=False, server_default=sa.true()
        ),
        sa.Column("created_by", sa.String(length=255), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.UniqueConstraint("policy_name", name="uq_audit_retention_policy_name"),
        sa.CheckConstraint(
            "data_classification IN ('PUBLIC', 'INTERNAL', 'CONFIDENTIAL', 'PHI')",
            name="ck_audit_retention_policy_classification",
        ),
        sa.CheckConstraint(
            "delete_after_days IS NULL OR archive_after_days IS NULL "
            "OR delete_after_days >= archive_after_days",
            name="ck_audit_retention_policy_delete_after_archive",
        ),
        schema=_schema(),
    )


def downgrade() -> None:
    """Drop the retention policy table."""
    op.drop_table("audit_retention_policy", schema=_schema())
