"""Shared fixtures for real-Postgres integration test modules."""

from __future__ import annotations

from pathlib import Path

import pytest
from sqlalchemy import Engine

from packages.ledger_core.migrations import run_startup_migrations
from packages.ledger_shared.config import LedgerSettings, load_settings
from resources.substrates.postgres.config import resolve_postgres_settings
from resources.substrates.postgres.engine import create_postgres_engine
from tests.integration.helpers import real_provider_tests_enabled

_REPO_ROOT = Path(__file__).resolve().parents[2]


@pytest.fixture(scope="session")
def env_settings() -> LedgerSettings:
    """Return settings loaded through the standard cascade."""
    return load_settings()


@pytest.fixture(scope="session")
def postgres_engine(env_settings: LedgerSettings) -> Engine:
    """Return an engine for the configured Postgres, or skip when unavailable."""
    if not real_provider_tests_enabled():
        pytest.skip("real-provider integration tests disabled")

    engine = create_postgres_engine(resolve_postgres_settings(env_settings))
    try:
        with engine.connect() as conn:
            conn.exec_driver_sql("SELECT 1")
    except Exception as exc:  # noqa: BLE001
        pytest.skip(f"postgres unavailable for integration tests: {exc}")
    return engine


@pytest.fixture(scope="session")
def migrated_settings(
    env_settings: LedgerSettings, postgres_engine: Engine
) -> LedgerSettings:
    """Provision service schemas and upgrade every service to head once."""
    del postgres_engine
    run_startup_migrations(settings=env_settings, repo_root=_REPO_ROOT)
    return env_settings
