"""Tests for shared configuration loading and component resolution."""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from packages.ledger_shared.config import load_settings, resolve_component_settings
from resources.substrates.postgres.config import PostgresSettings
from services.action.retention_engine.config import resolve_retention_engine_settings
from services.action.subject_rights.config import resolve_subject_rights_settings
from services.action.subject_rights.domain import PseudonymizationStrategy


def test_load_settings_uses_ledger_precedence_cascade(tmp_path: Path) -> None:
    """CLI params override env, env overrides YAML, then built-in defaults."""
    config_file = tmp_path / "ledger.yaml"
    config_file.write_text(
        "\n".join(
            [
                "logging:",
                "  level: WARNING",
                "components:",
                "  substrate:",
                "    postgres:",
                "      pool_size: 7",
                "  service:",
                "    retention_engine:",
                "      batch_size: 200",
            ]
        ),
        encoding="utf-8",
    )

    settings = load_settings(
        cli_params={"logging": {"level": "DEBUG"}},
        environ={
            "LEDGER_LOGGING__LEVEL": "ERROR",
            "LEDGER_COMPONENTS__SUBSTRATE__POSTGRES__POOL_SIZE": "9",
            "LEDGER_COMPONENTS__SERVICE__RETENTION_ENGINE__MAX_CONCURRENCY": "2",
        },
        config_path=config_file,
    )

    postgres = resolve_component_settings(
        settings=settings,
        component_id="substrate_postgres",
        model=PostgresSettings,
    )
    retention = resolve_retention_engine_settings(settings)

    assert settings.logging.level == "DEBUG"
    assert postgres.pool_size == 9
    assert retention.batch_size == 200
    assert retention.max_concurrency == 2
    assert retention.policy_cache_ttl_seconds == 60.0


def test_load_settings_uses_builtin_defaults_when_sources_missing(
    tmp_path: Path,
) -> None:
    settings = load_settings(config_path=tmp_path / "ledger.yaml", environ={})
    postgres = resolve_component_settings(
        settings=settings,
        component_id="substrate_postgres",
        model=PostgresSettings,
    )

    assert settings.logging.service == "ledger"
    assert settings.logging.level == "INFO"
    assert postgres.pool_size == 5


def test_pseudonym_salt_has_no_builtin_default(tmp_path: Path) -> None:
    """The salt must come from an explicit source, never a fallback."""
    settings = load_settings(config_path=tmp_path / "ledger.yaml", environ={})

    with pytest.raises(ValidationError):
        resolve_subject_rights_settings(settings)


def test_pseudonym_salt_resolves_from_environment(tmp_path: Path) -> None:
    settings = load_settings(
        config_path=tmp_path / "ledger.yaml",
        environ={"LEDGER_COMPONENTS__SERVICE__SUBJECT_RIGHTS__PSEUDONYM_SALT": "s3"},
    )

    resolved = resolve_subject_rights_settings(settings)

    assert resolved.pseudonym_salt == "s3"
    assert resolved.default_strategy == PseudonymizationStrategy.HASH
    assert "gdpr.data.delete" in resolved.compliance_actions


def test_flat_component_keys_are_rejected(tmp_path: Path) -> None:
    config_file = tmp_path / "ledger.yaml"
    config_file.write_text(
        "components:\n  service_event_store:\n    signing_enabled: true\n",
        encoding="utf-8",
    )

    with pytest.raises(ValidationError, match="components.service.event_store"):
        load_settings(config_path=config_file, environ={})


def test_non_mapping_config_file_is_rejected(tmp_path: Path) -> None:
    config_file = tmp_path / "ledger.yaml"
    config_file.write_text("- just\n- a list\n", encoding="utf-8")

    with pytest.raises(ValueError, match="top-level mapping"):
        load_settings(config_path=config_file, environ={})
