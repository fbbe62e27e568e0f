"""Pytest configuration for the Ledger test suite."""

from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path

import pytest
from sqlalchemy import Engine, create_engine

from packages.ledger_shared.envelope import EnvelopeKind, EnvelopeMeta, new_meta
from resources.substrates.postgres import SessionProvider, create_session_factory
from services.action.retention_engine.data.schema import (
    metadata as retention_metadata,
)
from services.state.event_store.data.schema import metadata as event_store_metadata


@pytest.fixture(scope="function")
def sqlite_engine(tmp_path: Path) -> Iterator[Engine]:
    """Return a temp-file SQLite engine with every service table created."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'ledger.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    event_store_metadata.create_all(engine)
    retention_metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture(scope="function")
def sqlite_sessions(sqlite_engine: Engine) -> SessionProvider:
    """Return transactional sessions over the temp SQLite database."""
    return SessionProvider(session_factory=create_session_factory(sqlite_engine))


@pytest.fixture(scope="function")
def meta() -> EnvelopeMeta:
    """Return valid command envelope metadata."""
    return new_meta(kind=EnvelopeKind.COMMAND, source="test", principal="operator")
