"""Ledger operator CLI implemented with Typer."""

from __future__ import annotations

import dataclasses
import json
import signal
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from pathlib import Path
from threading import Event
from typing import Any, Callable

import typer

from packages.ledger_core import MigrationExecutionError, run_startup_migrations
from packages.ledger_shared.config import LedgerSettings, load_settings
from packages.ledger_shared.envelope import (
    Envelope,
    EnvelopeKind,
    EnvelopeMeta,
    new_meta,
)
from packages.ledger_shared.logging import configure_logging_from_settings
from services.action.retention_engine.service import (
    RetentionEngineService,
    build_retention_engine_service,
)
from services.action.subject_rights.domain import (
    DateRange,
    ExportFormat,
    ExportRequest,
    PseudonymizationStrategy,
    RequestType,
)
from services.action.subject_rights.service import (
    SubjectRightsService,
    build_subject_rights_service,
)
from services.state.event_store.service import (
    EventStoreService,
    build_event_store_service,
)

SUCCESS_EXIT_CODE = 0
DOMAIN_ERROR_EXIT_CODE = 3
STARTUP_ERROR_EXIT_CODE = 4


@dataclass(frozen=True)
class CliConfig:
    """Global CLI runtime options propagated to service calls."""

    config_path: str | None
    principal: str
    source: str
    as_json: bool


@dataclass(frozen=True)
class LedgerServices:
    """In-process service handles shared by one CLI invocation."""

    settings: LedgerSettings
    event_store: EventStoreService
    retention_engine: RetentionEngineService
    subject_rights: SubjectRightsService


def load_cli_settings(cfg: CliConfig) -> LedgerSettings:
    """Load settings and configure logging for one invocation."""
    settings = load_settings(config_path=cfg.config_path)
    configure_logging_from_settings(settings.logging)
    return settings


def build_services(cfg: CliConfig) -> LedgerServices:
    """Build the in-process service graph from loaded settings."""
    settings = load_cli_settings(cfg)
    event_store = build_event_store_service(settings=settings)
    return LedgerServices(
        settings=settings,
        event_store=event_store,
        retention_engine=build_retention_engine_service(
            settings=settings, event_store=event_store
        ),
        subject_rights=build_subject_rights_service(
            settings=settings, event_store=event_store
        ),
    )


class DomainFailure(Exception):
    """A service call returned a failed envelope or a failed outcome."""

    def __init__(self, message: str, *, payload: Any = None) -> None:
        super().__init__(message)
        self.payload = payload


def _serialize(value: Any) -> Any:
    """Convert result objects to JSON-serializable structures."""

    if isinstance(value, Enum):
        return _serialize(value.value)
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, (datetime, date, Decimal, Path)):
        return str(value)
    if isinstance(value, bytes):
        return f"<{len(value)} bytes>"
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return _serialize(dataclasses.asdict(value))
    if isinstance(value, dict):
        return {str(key): _serialize(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_serialize(item) for item in value]
    if hasattr(value, "model_dump"):
        return _serialize(value.model_dump(mode="python"))
    return str(value)


def _emit_output(result: Any, as_json: bool) -> None:
    """Render command output in requested format."""

    data = _serialize(result)
    if as_json:
        typer.echo(json.dumps(data, sort_keys=True, separators=(",", ":")))
        return
    if data is None:
        typer.echo("ok")
        return
    if isinstance(data, (dict, list)):
        typer.echo(json.dumps(data, indent=2, sort_keys=True))
        return
    typer.echo(str(data))


def _emit_error(exc: Exception, as_json: bool) -> None:
    """Render mapped domain errors to stderr."""

    if as_json:
        body: dict[str, Any] = {"error": str(exc)}
        payload = getattr(exc, "payload", None)
        if payload is not None:
            body["payload"] = _serialize(payload)
        typer.echo(json.dumps(body, sort_keys=True), err=True)
        return
    typer.echo(f"error: {exc}", err=True)


def _unwrap(result: Envelope[Any]) -> Any:
    """Return the payload of a successful envelope or raise ``DomainFailure``."""
    if result.ok:
        return result.value()
    summary = "; ".join(f"{error.code}: {error.message}" for error in result.errors)
    payload = result.payload.value if result.payload is not None else None
    raise DomainFailure(summary, payload=payload)


def _run_command(
    cfg: CliConfig, invoke: Callable[[LedgerServices, EnvelopeMeta], Any]
) -> None:
    """Execute one service call and map outputs/errors to process semantics."""
    try:
        services = build_services(cfg)
    except (ValueError, TypeError) as exc:
        _emit_error(exc, cfg.as_json)
        raise typer.Exit(code=STARTUP_ERROR_EXIT_CODE) from exc

    meta = new_meta(
        kind=EnvelopeKind.COMMAND, source=cfg.source, principal=cfg.principal
    )
    try:
        result = invoke(services, meta)
    except DomainFailure as exc:
        _emit_error(exc, cfg.as_json)
        raise typer.Exit(code=DOMAIN_ERROR_EXIT_CODE) from exc

    _emit_output(result, cfg.as_json)
    raise typer.Exit(code=SUCCESS_EXIT_CODE)


def _require_config(ctx: typer.Context) -> CliConfig:
    """Return required CLI config from Typer context."""

    config = ctx.obj
    if not isinstance(config, CliConfig):
        raise RuntimeError("CLI configuration not initialized")
    return config


app = typer.Typer(no_args_is_help=True, help="Ledger command-line interface")
retention_app = typer.Typer(help="Retention policy commands")
integrity_app = typer.Typer(help="Integrity verification commands")
dsr_app = typer.Typer(help="Data-subject rights commands")


@app.callback()
def main(
    ctx: typer.Context,
    config: str | None = typer.Option(
        None,
        envvar="LEDGER_CONFIG_PATH",
        help="Path to ledger.yaml",
    ),
    principal: str = typer.Option("operator", help="Envelope principal"),
    source: str = typer.Option("cli", help="Envelope source"),
    as_json: bool = typer.Option(False, "--json", help="Emit JSON output"),
) -> None:
    """Store global options for all commands."""

    ctx.obj = CliConfig(
        config_path=config,
        principal=principal,
        source=source,
        as_json=as_json,
    )


@app.command("health")
def health_command(ctx: typer.Context) -> None:
    """Report readiness of every service."""
    cfg = _require_config(ctx)

    def _invoke(services: LedgerServices, meta: EnvelopeMeta) -> dict[str, Any]:
        return {
            "event_store": _unwrap(services.event_store.health(meta=meta)),
            "retention_engine": _unwrap(services.retention_engine.health(meta=meta)),
            "subject_rights": _unwrap(services.subject_rights.health(meta=meta)),
        }

    _run_command(cfg, _invoke)


@app.command("migrate")
def migrate_command(ctx: typer.Context) -> None:
    """Provision service schemas and upgrade every service to head."""
    cfg = _require_config(ctx)
    try:
        settings = load_cli_settings(cfg)
    except (ValueError, TypeError) as exc:
        _emit_error(exc, cfg.as_json)
        raise typer.Exit(code=STARTUP_ERROR_EXIT_CODE) from exc

    try:
        result = run_startup_migrations(settings=settings)
    except MigrationExecutionError as exc:
        _emit_error(exc, cfg.as_json)
        raise typer.Exit(code=DOMAIN_ERROR_EXIT_CODE) from exc

    _emit_output(result, cfg.as_json)
    raise typer.Exit(code=SUCCESS_EXIT_CODE)


@retention_app.command("apply")
def retention_apply_command(ctx: typer.Context) -> None:
    """Apply every active policy; SIGTERM stops between chunks."""
    cfg = _require_config(ctx)

    def _invoke(services: LedgerServices, meta: EnvelopeMeta) -> Any:
        cancel = Event()
        previous = signal.signal(signal.SIGTERM, lambda *_: cancel.set())
        try:
            run = _unwrap(
                services.retention_engine.apply_retention_policies(
                    meta=meta, cancel=cancel
                )
            )
        finally:
            signal.signal(signal.SIGTERM, previous)
        if run.failed:
            names = ", ".join(result.policy_name for result in run.failed)
            raise DomainFailure(f"retention policies failed: {names}", payload=run)
        return run

    _run_command(cfg, _invoke)


@retention_app.command("list")
def retention_list_command(
    ctx: typer.Context,
    active_only: bool = typer.Option(False, help="Only list active policies"),
) -> None:
    """List retention policies."""
    cfg = _require_config(ctx)
    _run_command(
        cfg,
        lambda services, meta: _unwrap(
            services.retention_engine.list_retention_policies(
                meta=meta, active_only=active_only
            )
        ),
    )


@integrity_app.command("sweep")
def integrity_sweep_command(
    ctx: typer.Context,
    limit: int | None = typer.Option(None, min=1, help="Events per batch"),
    after: str | None = typer.Option(None, help="Resume after this event id"),
) -> None:
    """Verify one batch of stored events and record findings."""
    cfg = _require_config(ctx)

    def _invoke(services: LedgerServices, meta: EnvelopeMeta) -> Any:
        report = _unwrap(
            services.event_store.verify_events(
                meta=meta, limit=limit, after_event_id=after
            )
        )
        if report.findings:
            raise DomainFailure(
                f"{len(report.findings)} integrity finding(s)", payload=report
            )
        return report

    _run_command(cfg, _invoke)


@dsr_app.command("export")
def dsr_export_command(
    ctx: typer.Context,
    principal_id: str = typer.Argument(..., help="Data subject principal id"),
    output: Path = typer.Option(..., help="File to write the export to"),
    requested_by: str = typer.Option(..., help="Operator filing the request"),
    export_format: ExportFormat = typer.Option(
        ExportFormat.JSON, "--format", case_sensitive=False
    ),
    request_type: RequestType = typer.Option(
        RequestType.ACCESS, case_sensitive=False
    ),
    organization_id: str | None = typer.Option(None, help="Organization filter"),
    start: datetime | None = typer.Option(None, help="Range start (inclusive)"),
    end: datetime | None = typer.Option(None, help="Range end (inclusive)"),
    include_metadata: bool = typer.Option(False, help="Embed export metadata"),
) -> None:
    """Export one data subject's audit records to a file."""
    cfg = _require_config(ctx)
    date_range = None
    if start is not None or end is not None:
        date_range = DateRange(start=start, end=end)
    request = ExportRequest(
        principal_id=principal_id,
        organization_id=organization_id,
        request_type=request_type.value,
        format=export_format.value,
        date_range=date_range,
        include_metadata=include_metadata,
        requested_by=requested_by,
    )

    def _invoke(services: LedgerServices, meta: EnvelopeMeta) -> Any:
        result = _unwrap(
            services.subject_rights.export_user_data(meta=meta, request=request)
        )
        output.write_bytes(result.data)
        return result

    _run_command(cfg, _invoke)


@dsr_app.command("pseudonymize")
def dsr_pseudonymize_command(
    ctx: typer.Context,
    principal_id: str = typer.Argument(..., help="Data subject principal id"),
    requested_by: str = typer.Option(..., help="Operator filing the request"),
    strategy: PseudonymizationStrategy | None = typer.Option(
        None, case_sensitive=False, help="Defaults to the configured strategy"
    ),
) -> None:
    """Replace a principal id with a pseudonym across all records."""
    cfg = _require_config(ctx)
    _run_command(
        cfg,
        lambda services, meta: _unwrap(
            services.subject_rights.pseudonymize_user_data(
                meta=meta,
                principal_id=principal_id,
                requested_by=requested_by,
                strategy=strategy,
            )
        ),
    )


@dsr_app.command("erase")
def dsr_erase_command(
    ctx: typer.Context,
    principal_id: str = typer.Argument(..., help="Data subject principal id"),
    requested_by: str = typer.Option(..., help="Operator filing the request"),
    preserve_compliance: bool = typer.Option(
        True, help="Keep compliance audits under a pseudonym"
    ),
) -> None:
    """Erase a principal's records, keeping compliance audits by default."""
    cfg = _require_config(ctx)
    _run_command(
        cfg,
        lambda services, meta: _unwrap(
            services.subject_rights.delete_user_data_with_audit_trail(
                meta=meta,
                principal_id=principal_id,
                requested_by=requested_by,
                preserve_compliance_audits=preserve_compliance,
            )
        ),
    )


@dsr_app.command("lookup")
def dsr_lookup_command(
    ctx: typer.Context,
    pseudonym_id: str = typer.Argument(..., help="Pseudonym to resolve"),
) -> None:
    """Resolve a pseudonym to its original principal id."""
    cfg = _require_config(ctx)

    def _invoke(services: LedgerServices, meta: EnvelopeMeta) -> Any:
        lookup = _unwrap(
            services.subject_rights.get_original_id(
                meta=meta, pseudonym_id=pseudonym_id
            )
        )
        if not lookup.found:
            raise DomainFailure(f"pseudonym lookup {lookup.outcome.value}")
        return lookup

    _run_command(cfg, _invoke)


app.add_typer(retention_app, name="retention")
app.add_typer(integrity_app, name="integrity")
app.add_typer(dsr_app, name="dsr")


if __name__ == "__main__":
    app()
