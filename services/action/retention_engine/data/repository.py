"""Authoritative SQL repository for retention policies."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from sqlalchemy import insert, select

from packages.ledger_shared.ids import generate_ulid_str
from resources.substrates.postgres import SessionProvider
from services.action.retention_engine.domain import RetentionPolicy
from services.action.retention_engine.interfaces import RetentionPolicyRepository
from services.state.event_store.domain import DataClassification

from .schema import audit_retention_policy


class PostgresRetentionPolicyRepository(RetentionPolicyRepository):
    """SQL repository over the retention policy table."""

    def __init__(self, sessions: SessionProvider) -> None:
        self._sessions = sessions

    def list_policies(self, *, active_only: bool) -> list[RetentionPolicy]:
        stmt = select(audit_retention_policy).order_by(
            audit_retention_policy.c.policy_name
        )
        if active_only:
            stmt = stmt.where(audit_retention_policy.c.is_active.is_(True))
        with self._sessions.session() as session:
            rows = session.execute(stmt).mappings().all()
            return [_to_policy(row) for row in rows]

    def get_policy(self, *, policy_name: str) -> RetentionPolicy | None:
        with self._sessions.session() as session:
            row = (
                session.execute(
                    select(audit_retention_policy).where(
                        audit_retention_policy.c.policy_name == policy_name
                    )
                )
                .mappings()
                .one_or_none()
            )
            return None if row is None else _to_policy(row)

    def create_policy(self, *, policy: RetentionPolicy) -> RetentionPolicy:
        with self._sessions.session() as session:
            session.execute(
                insert(audit_retention_policy).values(
                    id=generate_ulid_str(),
                    policy_name=policy.policy_name,
                    retention_days=policy.retention_days,
                    archive_after_days=policy.archive_after_days,
                    delete_after_days=policy.delete_after_days,
                    data_classification=policy.data_classification.value,
                    description=policy.description,
                    is_active=policy.is_active,
                    created_by=policy.created_by,
                )
            )
        return policy


def _to_policy(row: Mapping[str, Any]) -> RetentionPolicy:
    return RetentionPolicy(
        policy_name=row["policy_name"],
        data_classification=DataClassification(row["data_classification"]),
        retention_days=row["retention_days"],
        archive_after_days=row["archive_after_days"],
        delete_after_days=row["delete_after_days"],
        is_active=bool(row["is_active"]),
        description=row["description"] or "",
        created_by=row["created_by"],
    )
