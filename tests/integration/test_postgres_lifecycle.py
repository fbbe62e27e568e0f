"""Real-Postgres lifecycle checks across Event Store and Subject Rights."""

from __future__ import annotations

from sqlalchemy import Engine, text

from packages.ledger_shared.config import LedgerSettings
from packages.ledger_shared.envelope import EnvelopeKind, EnvelopeMeta, new_meta
from packages.ledger_shared.ids import generate_ulid_str
from resources.adapters.kms import SignatureResult
from services.action.subject_rights.config import SubjectRightsSettings
from services.action.subject_rights.domain import LookupOutcome
from services.action.subject_rights.implementation import DefaultSubjectRightsService
from services.state.event_store.domain import (
    DataClassification,
    EventDraft,
    EventQuery,
    EventStatus,
    IntegrityReason,
)
from services.state.event_store.service import (
    EventStoreService,
    build_event_store_service,
)


class _ReversingKms:
    def encrypt(self, plaintext: str) -> str:
        return plaintext[::-1]

    def decrypt(self, ciphertext: str) -> str:
        return ciphertext[::-1]

    def sign(self, data: bytes, *, algorithm: str | None = None) -> SignatureResult:
        raise NotImplementedError

    def verify(
        self, data: bytes, signature: str, *, algorithm: str | None = None
    ) -> bool:
        raise NotImplementedError


def _meta() -> EnvelopeMeta:
    return new_meta(kind=EnvelopeKind.COMMAND, source="test", principal="operator")


def _append(store: EventStoreService, principal_id: str, action: str) -> str:
    appended = store.append_event(
        meta=_meta(),
        draft=EventDraft(
            principal_id=principal_id,
            action=action,
            status=EventStatus.SUCCESS,
            data_classification=DataClassification.PHI,
            retention_policy="healthcare_phi",
        ),
    )
    assert appended.ok, appended.errors
    return appended.value().event_id


def test_tampered_row_is_reported_by_verification(
    migrated_settings: LedgerSettings, postgres_engine: Engine
) -> None:
    store = build_event_store_service(settings=migrated_settings)
    event_id = _append(store, f"user-{generate_ulid_str()}", "record.read")

    assert store.verify_event(meta=_meta(), event_id=event_id).value().valid is True

    with postgres_engine.begin() as conn:
        conn.execute(
            text(
                "UPDATE service_event_store.audit_log "
                "SET action = 'record.write' WHERE id = :id"
            ),
            {"id": event_id},
        )

    verification = store.verify_event(meta=_meta(), event_id=event_id).value()
    assert verification.valid is False
    assert verification.reason == IntegrityReason.HASH_MISMATCH


def test_pseudonymized_principal_resolves_through_mapping(
    migrated_settings: LedgerSettings,
) -> None:
    store = build_event_store_service(settings=migrated_settings)
    principal_id = f"user-{generate_ulid_str()}"
    for action in ("record.read", "record.update", "auth.login.success"):
        _append(store, principal_id, action)
    subject_rights = DefaultSubjectRightsService(
        settings=SubjectRightsSettings(pseudonym_salt="integration-salt"),
        event_store=store,
        kms=_ReversingKms(),
    )

    result = subject_rights.pseudonymize_user_data(
        meta=_meta(), principal_id=principal_id, requested_by="dpo"
    ).value()
    lookup = subject_rights.get_original_id(
        meta=_meta(), pseudonym_id=result.pseudonym_id
    ).value()
    remaining = store.query_events(
        meta=_meta(), query=EventQuery(principal_id=principal_id)
    ).value()

    assert result.records_affected == 3
    assert lookup.outcome == LookupOutcome.FOUND
    assert lookup.original_id == principal_id
    assert remaining == []
