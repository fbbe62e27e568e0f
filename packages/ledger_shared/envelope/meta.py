"""Envelope metadata primitives shared across Ledger services."""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from uuid import uuid4

from pydantic import BaseModel, ConfigDict


class EnvelopeKind(str, Enum):
    """Envelope kinds used for cross-service intent classification."""

    UNSPECIFIED = "unspecified"
    COMMAND = "command"
    EVENT = "event"
    RESULT = "result"


class EnvelopeMeta(BaseModel):
    """Canonical metadata attached to every envelope result."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    envelope_id: str
    trace_id: str
    parent_id: str
    timestamp: datetime
    kind: EnvelopeKind
    source: str
    principal: str


def new_meta(
    *,
    kind: EnvelopeKind,
    source: str,
    principal: str,
    trace_id: str | None = None,
    parent_id: str = "",
    envelope_id: str | None = None,
    timestamp: datetime | None = None,
) -> EnvelopeMeta:
    """Build ``EnvelopeMeta`` with safe defaults for IDs and timestamp."""
    return EnvelopeMeta(
        envelope_id=envelope_id or _new_id(),
        trace_id=trace_id or _new_id(),
        parent_id=parent_id,
        timestamp=datetime.now(UTC) if timestamp is None else _normalize_utc(timestamp),
        kind=kind,
        source=source,
        principal=principal,
    )


def child_meta(parent: EnvelopeMeta, *, source: str) -> EnvelopeMeta:
    """Build metadata for a downstream call made on behalf of ``parent``."""
    return new_meta(
        kind=EnvelopeKind.COMMAND,
        source=source,
        principal=parent.principal,
        trace_id=parent.trace_id,
        parent_id=parent.envelope_id,
    )


def _new_id() -> str:
    """Return a compact random identifier."""
    return uuid4().hex


def _normalize_utc(value: datetime) -> datetime:
    """Normalize naive/aware datetimes to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)
