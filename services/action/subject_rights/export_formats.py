"""Serialization of exported audit records as JSON, CSV, or XML."""

from __future__ import annotations

import csv
import io
import json
import re
from collections.abc import Mapping, Sequence
from datetime import datetime
from typing import Any
from xml.sax.saxutils import escape

from services.action.subject_rights.domain import ExportFormat
from services.action.subject_rights.errors import UnsupportedExportFormat
from services.state.event_store.domain import AuditEvent, canonical_timestamp

XML_DECLARATION = '<?xml version="1.0" encoding="UTF-8"?>\n'
XML_ROOT = "gdprExport"
EMPTY_CSV = "No data to export"
_XML_ENTITIES = {"'": "&apos;", '"': "&quot;"}
_XML_ITEM = "item"
_XML_NAME_INVALID = re.compile(r"[^\w.-]", re.ASCII)


def export_record(event: AuditEvent) -> dict[str, Any]:
    """Return the exported camelCase view of one stored event."""
    return {
        "id": event.event_id,
        "timestamp": canonical_timestamp(event.timestamp),
        "principalId": event.principal_id,
        "organizationId": event.organization_id,
        "action": event.action,
        "targetResourceType": event.target_resource_type,
        "targetResourceId": event.target_resource_id,
        "status": event.status.value,
        "outcomeDescription": event.outcome_description,
        "dataClassification": event.data_classification.value,
        "retentionPolicy": event.retention_policy,
        "details": event.details.as_dict(),
        "hash": event.hash,
        "hashAlgorithm": event.hash_algorithm,
        "signature": event.signature,
        "eventVersion": event.event_version,
        "correlationId": event.correlation_id,
        "archivedAt": (
            None
            if event.archived_at is None
            else canonical_timestamp(event.archived_at)
        ),
    }


def export_document(
    records: Sequence[Mapping[str, Any]],
    *,
    export_format: ExportFormat,
    exported_at: datetime,
    include_metadata: bool,
) -> dict[str, Any]:
    """Build the ``{exportMetadata, auditLogs}`` document.

    ``exportMetadata`` is ``None`` when not requested; JSON drops the key
    while XML renders it as an empty element.
    """
    metadata = None
    if include_metadata:
        metadata = {
            "exportTimestamp": canonical_timestamp(exported_at),
            "recordCount": len(records),
            "format": export_format.value,
            "gdprCompliant": True,
        }
    return {"exportMetadata": metadata, "auditLogs": [dict(item) for item in records]}


def render_export(document: Mapping[str, Any], *, export_format: ExportFormat) -> bytes:
    if export_format == ExportFormat.JSON:
        return render_json(document)
    if export_format == ExportFormat.CSV:
        return render_csv(document["auditLogs"])
    if export_format == ExportFormat.XML:
        return render_xml(document)
    raise UnsupportedExportFormat(export_format=str(export_format))


def render_json(document: Mapping[str, Any]) -> bytes:
    payload = {key: value for key, value in document.items() if value is not None}
    return json.dumps(payload, indent=2, ensure_ascii=False).encode("utf-8")


def render_csv(records: Sequence[Mapping[str, Any]]) -> bytes:
    """Render records with the first record's keys as the header row."""
    if len(records) == 0:
        return EMPTY_CSV.encode("utf-8")

    headers = list(records[0].keys())
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(headers)
    for record in records:
        writer.writerow([_csv_cell(record.get(header)) for header in headers])
    return buffer.getvalue().removesuffix("\n").encode("utf-8")


def render_xml(document: Mapping[str, Any]) -> bytes:
    return (XML_DECLARATION + _xml_element(XML_ROOT, document)).encode("utf-8")


def _csv_cell(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (dict, list)):
        return json.dumps(value, separators=(",", ":"), ensure_ascii=False)
    return _scalar_text(value)


def _xml_element(key: str, value: Any) -> str:
    """Render one value; list items repeat under the singular of ``key``."""
    key = _xml_name(key)
    if value is None:
        return f"<{key}></{key}>"
    if isinstance(value, list):
        singular = key[:-1] if len(key) > 1 and key.endswith("s") else _XML_ITEM
        return "".join(_xml_element(singular, item) for item in value)
    if isinstance(value, Mapping):
        inner = "".join(_xml_element(str(child), item) for child, item in value.items())
        return f"<{key}>{inner}</{key}>"
    return f"<{key}>{escape(_scalar_text(value), _XML_ENTITIES)}</{key}>"


def _xml_name(key: str) -> str:
    """Map an arbitrary details key onto a well-formed element name."""
    name = _XML_NAME_INVALID.sub("_", key)
    if name == "" or not (name[0].isalpha() or name[0] == "_"):
        name = "_" + name
    return name


def _scalar_text(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)
