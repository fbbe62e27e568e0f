"""Tests for service migration discovery and execution behavior."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from types import SimpleNamespace

import pytest
from alembic.config import Config

from packages.ledger_core.migrations import (
    MigrationExecutionError,
    discover_service_migration_configs,
    run_startup_migrations,
)
from packages.ledger_shared.config import LedgerSettings


@dataclass(frozen=True, slots=True)
class _FakeService:
    """Minimal service manifest shape for migration discovery tests."""

    system: str
    module_roots: frozenset[str]


@dataclass(frozen=True, slots=True)
class _FakeRegistry:
    """Minimal registry shape for migration discovery tests."""

    services: tuple[_FakeService, ...]

    def assert_valid(self) -> None:
        """Satisfy registry contract used by migration discovery."""

    def list_services(self) -> tuple[_FakeService, ...]:
        return self.services


def _write_ini(root: Path, *parts: str) -> Path:
    path = root.joinpath(*parts, "migrations", "alembic.ini")
    path.parent.mkdir(parents=True)
    path.write_text("[alembic]\n", encoding="utf-8")
    return path


def test_discover_orders_state_before_action(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    """Event Store tables must exist before action services migrate."""
    store_ini = _write_ini(tmp_path, "services", "state", "event_store")
    retention_ini = _write_ini(tmp_path, "services", "action", "retention_engine")

    registry = _FakeRegistry(
        services=(
            _FakeService(
                system="action",
                module_roots=frozenset({"services.action.retention_engine"}),
            ),
            _FakeService(
                system="state",
                module_roots=frozenset({"services.state.event_store"}),
            ),
            _FakeService(
                system="action",
                module_roots=frozenset({"services.action.subject_rights"}),
            ),
        )
    )
    monkeypatch.setattr(
        "packages.ledger_core.migrations.import_registered_component_modules",
        lambda repo_root=None: tuple(),
    )
    monkeypatch.setattr("packages.ledger_core.migrations.get_registry", lambda: registry)

    configs = discover_service_migration_configs(repo_root=tmp_path)

    assert configs == (store_ini, retention_ini)


def test_run_startup_migrations_bootstraps_then_upgrades(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    store_ini = _write_ini(tmp_path, "services", "state", "event_store")
    retention_ini = _write_ini(tmp_path, "services", "action", "retention_engine")

    monkeypatch.setattr(
        "packages.ledger_core.migrations.bootstrap_service_schemas",
        lambda settings: SimpleNamespace(
            imported_components=("services.state.event_store.component",),
            provisioned_schemas=("service_event_store",),
        ),
    )
    monkeypatch.setattr(
        "packages.ledger_core.migrations.discover_service_migration_configs",
        lambda repo_root=None: (store_ini, retention_ini),
    )

    calls: list[tuple[str, str]] = []

    def _upgrade(config: Config, revision: str) -> None:
        calls.append((str(config.config_file_name), revision))

    result = run_startup_migrations(
        settings=LedgerSettings(),
        repo_root=tmp_path,
        upgrade_fn=_upgrade,
    )

    assert result.imported_components == ("services.state.event_store.component",)
    assert result.provisioned_schemas == ("service_event_store",)
    assert result.executed_alembic_configs == (str(store_ini), str(retention_ini))
    assert calls == [(str(store_ini), "head"), (str(retention_ini), "head")]


def test_run_startup_migrations_raises_on_upgrade_failure(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    """One failed upgrade stops the pass."""
    ini = _write_ini(tmp_path, "services", "state", "event_store")

    monkeypatch.setattr(
        "packages.ledger_core.migrations.bootstrap_service_schemas",
        lambda settings: SimpleNamespace(
            imported_components=tuple(),
            provisioned_schemas=tuple(),
        ),
    )
    monkeypatch.setattr(
        "packages.ledger_core.migrations.discover_service_migration_configs",
        lambda repo_root=None: (ini,),
    )

    def _failing_upgrade(config: Config, revision: str) -> None:
        raise RuntimeError("boom")

    with pytest.raises(MigrationExecutionError):
        run_startup_migrations(
            settings=LedgerSettings(),
            repo_root=tmp_path,
            upgrade_fn=_failing_upgrade,
        )
