"""Unit tests for export rendering, pseudonyms, and request validation."""

from __future__ import annotations

import re
from datetime import UTC, datetime
from xml.etree import ElementTree

import pytest
from pydantic import ValidationError

from services.action.subject_rights.config import SubjectRightsSettings
from services.action.subject_rights.domain import (
    DateRange,
    ExportFormat,
    ExportRequest,
    PseudonymizationStrategy,
)
from services.action.subject_rights.errors import UnsupportedExportFormat
from services.action.subject_rights.export_formats import (
    export_document,
    render_csv,
    render_export,
    render_xml,
)
from services.action.subject_rights.pseudonyms import (
    generate_pseudonym_id,
    generate_request_id,
)
from services.action.subject_rights.validation import (
    ProblemKind,
    RequestProblem,
    validate_export_request,
)

EXPORTED_AT = datetime(2026, 10, 1, 12, 0, 0, tzinfo=UTC)


def test_hash_pseudonyms_are_deterministic_per_salt() -> None:
    first = generate_pseudonym_id(
        "user-1", strategy=PseudonymizationStrategy.HASH, salt="a"
    )
    again = generate_pseudonym_id(
        "user-1", strategy=PseudonymizationStrategy.HASH, salt="a"
    )
    other_salt = generate_pseudonym_id(
        "user-1", strategy=PseudonymizationStrategy.HASH, salt="b"
    )

    assert first == again
    assert first != other_salt
    assert re.fullmatch(r"pseudo-[0-9a-f]{16}", first)


def test_token_pseudonyms_are_random() -> None:
    first = generate_pseudonym_id(
        "user-1", strategy=PseudonymizationStrategy.TOKEN, salt="a"
    )
    second = generate_pseudonym_id(
        "user-1", strategy=PseudonymizationStrategy.TOKEN, salt="a"
    )

    assert first != second
    assert re.fullmatch(r"pseudo-[0-9a-f]{32}", first)


def test_encryption_pseudonym_keeps_alphanumerics_only() -> None:
    pseudonym = generate_pseudonym_id(
        "user-1@example.com", strategy=PseudonymizationStrategy.ENCRYPTION, salt=""
    )

    assert re.fullmatch(r"pseudo-enc-[A-Za-z0-9]{16}", pseudonym)


def test_request_id_embeds_epoch_millis() -> None:
    assert re.fullmatch(
        r"gdpr-1700000000000-[0-9a-f]{16}",
        generate_request_id(clock_ms=lambda: 1_700_000_000_000),
    )


def test_csv_cells_render_booleans_and_nested_values() -> None:
    rendered = render_csv(
        [{"id": "1", "ok": True, "details": {"a": 1}, "note": None}]
    ).decode("utf-8")

    assert rendered == 'id,ok,details,note\n1,true,"{""a"":1}",'


def test_xml_renders_metadata_and_escapes_text() -> None:
    document = export_document(
        [{"id": "1", "outcomeDescription": 'a"b'}],
        export_format=ExportFormat.XML,
        exported_at=EXPORTED_AT,
        include_metadata=True,
    )

    rendered = render_xml(document).decode("utf-8")

    assert (
        "<exportMetadata><exportTimestamp>2026-10-01T12:00:00.000000Z"
        "</exportTimestamp><recordCount>1</recordCount><format>xml</format>"
        "<gdprCompliant>true</gdprCompliant></exportMetadata>"
    ) in rendered
    assert "<outcomeDescription>a&quot;b</outcomeDescription>" in rendered


def test_xml_details_keys_become_well_formed_element_names() -> None:
    document = export_document(
        [
            {
                "id": "1",
                "details": {
                    "ip address": "10.0.0.1",
                    "a<b": 1,
                    "9lives": True,
                    "><injected/": "x",
                },
            }
        ],
        export_format=ExportFormat.XML,
        exported_at=EXPORTED_AT,
        include_metadata=False,
    )

    root = ElementTree.fromstring(render_xml(document))

    details = root.find("auditLog/details")
    assert details is not None
    assert [(child.tag, child.text) for child in details] == [
        ("ip_address", "10.0.0.1"),
        ("a_b", "1"),
        ("_9lives", "true"),
        ("__injected_", "x"),
    ]


def test_xml_lists_under_non_plural_keys_repeat_item_elements() -> None:
    document = export_document(
        [{"id": "1", "details": {"data": [1, 2], "x": ["a"], "tags": ["t"]}}],
        export_format=ExportFormat.XML,
        exported_at=EXPORTED_AT,
        include_metadata=False,
    )

    rendered = render_xml(document).decode("utf-8")

    assert (
        "<details><item>1</item><item>2</item><item>a</item><tag>t</tag></details>"
    ) in rendered


def test_render_export_rejects_unknown_format() -> None:
    with pytest.raises(UnsupportedExportFormat) as raised:
        render_export({"auditLogs": []}, export_format="pdf")  # type: ignore[arg-type]

    assert raised.value.to_error().metadata["format"] == "pdf"


def test_validation_rejects_unknown_request_type_and_half_ranges() -> None:
    problems = validate_export_request(
        ExportRequest(
            principal_id="user-1",
            request_type="delete-everything",
            format="json",
            requested_by="dpo",
            date_range=DateRange(start=EXPORTED_AT),
        )
    )

    assert problems == [
        RequestProblem("request_type", "Invalid request type", ProblemKind.INVALID),
        RequestProblem(
            "date_range",
            "Date range must include both start and end dates",
            ProblemKind.INVALID,
        ),
    ]


def test_validation_marks_omitted_fields_as_missing() -> None:
    problems = validate_export_request(
        ExportRequest(principal_id=" ", request_type="access", format="csv")
    )

    assert [(problem.field, problem.kind) for problem in problems] == [
        ("principal_id", ProblemKind.MISSING),
        ("requested_by", ProblemKind.MISSING),
    ]


def test_validation_accepts_complete_request() -> None:
    assert (
        validate_export_request(
            ExportRequest(
                principal_id="user-1",
                request_type="portability",
                format="xml",
                requested_by="dpo",
            )
        )
        == []
    )


@pytest.mark.parametrize("salt", ["", "   "])
def test_settings_require_a_pseudonym_salt(salt: str) -> None:
    with pytest.raises(ValidationError):
        SubjectRightsSettings(pseudonym_salt=salt)


def test_settings_normalize_compliance_actions() -> None:
    settings = SubjectRightsSettings(
        pseudonym_salt="s",
        compliance_actions=("auth.login.success", " auth.login.success ", ""),
    )

    assert settings.compliance_actions == ("auth.login.success",)
    assert settings.default_strategy == PseudonymizationStrategy.HASH
