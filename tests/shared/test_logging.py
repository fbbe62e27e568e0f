"""Tests for shared logging context, masking, and public API instrumentation."""

from __future__ import annotations

import json
import logging

import pytest

from packages.ledger_shared.envelope import EnvelopeKind, failure, new_meta, success
from packages.ledger_shared.errors import codes, not_found_error
from packages.ledger_shared.logging import (
    CompletionContext,
    InvocationContext,
    get_context,
    log_context,
    mask_identifier,
    public_api_instrumented,
)
from packages.ledger_shared.logging.config import ContextFilter, JsonFormatter


class _RecordingConcern:
    def __init__(self) -> None:
        self.invocations: list[InvocationContext] = []
        self.completions: list[CompletionContext] = []

    def on_invocation(self, context: InvocationContext) -> None:
        self.invocations.append(context)

    def on_completion(self, context: CompletionContext) -> None:
        self.completions.append(context)


class _ExplodingConcern:
    def on_invocation(self, context: InvocationContext) -> None:
        raise RuntimeError("concern down")

    def on_completion(self, context: CompletionContext) -> None:
        raise RuntimeError("concern down")


def _meta():
    return new_meta(kind=EnvelopeKind.COMMAND, source="actor_cli", principal="dpo")


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        ("user-12345", "user******"),
        ("abc", "***"),
        ("", ""),
        (None, ""),
    ],
)
def test_mask_identifier_keeps_only_leading_characters(
    value: str | None, expected: str
) -> None:
    assert mask_identifier(value) == expected


def test_log_context_restores_previous_values() -> None:
    with log_context({"request_id": "gdpr-1"}):
        with log_context({"pseudonym_id": "pseudo-1", "skipped": None}):
            assert get_context()["pseudonym_id"] == "pseudo-1"
            assert "skipped" not in get_context()
        assert get_context()["request_id"] == "gdpr-1"
        assert "pseudonym_id" not in get_context()
    assert "request_id" not in get_context()


def test_json_formatter_includes_bound_context() -> None:
    record = logging.LogRecord("ledger", logging.INFO, __file__, 1, "hi", None, None)
    with log_context({"policy_name": "healthcare_phi"}):
        ContextFilter().filter(record)

    body = json.loads(JsonFormatter().format(record))

    assert body["policy_name"] == "healthcare_phi"
    assert body["level"] == "INFO"


def test_instrumentation_masks_subject_identifiers() -> None:
    concern = _RecordingConcern()

    @public_api_instrumented(
        component_id="service_subject_rights",
        id_fields=("requested_by",),
        masked_fields=("principal_id",),
        concerns=(concern,),
    )
    def pseudonymize(*, meta, principal_id: str, requested_by: str):
        return success(meta=meta, payload=principal_id)

    pseudonymize(meta=_meta(), principal_id="user-12345", requested_by="dpo")

    references = concern.invocations[0].references
    assert references == {"requested_by": "dpo", "principal_id": "user******"}
    assert concern.invocations[0].principal == "dpo"
    assert concern.completions[0].success is True


def test_instrumentation_reports_failed_envelopes_and_exceptions() -> None:
    concern = _RecordingConcern()

    @public_api_instrumented(component_id="service_event_store", concerns=(concern,))
    def lookup(*, meta, explode: bool = False):
        if explode:
            raise RuntimeError("boom")
        error = not_found_error("pseudonym not found", code=codes.RESOURCE_NOT_FOUND)
        return failure(meta=meta, errors=[error])

    lookup(meta=_meta())
    with pytest.raises(RuntimeError):
        lookup(meta=_meta(), explode=True)

    first, second = concern.completions
    assert first.success is False
    assert first.errors == ["RESOURCE_NOT_FOUND: pseudonym not found"]
    assert second.errors == ["RuntimeError: boom"]


def test_instrumentation_isolates_concern_failures() -> None:
    @public_api_instrumented(
        component_id="service_retention_engine",
        concerns=(_ExplodingConcern(),),
        logger=logging.getLogger("test"),
    )
    def health(*, meta):
        return success(meta=meta, payload=True)

    assert health(meta=_meta()).value() is True


def test_instrumentation_requires_a_concern() -> None:
    with pytest.raises(ValueError, match="at least one concern"):
        public_api_instrumented(component_id="service_event_store")
