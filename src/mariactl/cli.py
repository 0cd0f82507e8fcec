"""Typer-powered command line interface for ``mariactl``.

``configure`` drives the full reconfiguration pipeline, ``check`` runs the
read-only part of it (discovery, template, value gathering and validation),
``tune`` prints the buffer pool recommendation for this host and
``config show`` displays the merged application configuration.
"""
from __future__ import annotations

import json
import textwrap
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any, NoReturn

import typer
from rich.console import Console
from rich.table import Table

from . import __version__
from .config import (
    DEFAULT_BUFFER_POOL_INSTANCES,
    DEFAULT_BUFFER_POOL_SIZE,
    AppConfig,
    ConfigError,
    DesiredConfiguration,
    build_desired_configuration,
    env_mariadb_keys,
    load_config,
)
from .context import CancellationToken, OperationCancelled, RunContext, cancel_on_sigint
from .discovery import discover_installation
from .exit_codes import ExitCode
from .logging import OperationScope, StructuredLogger
from .pipeline import (
    ConfigurePipeline,
    PipelineCollaborators,
    PipelineDeclined,
    PipelineError,
    PipelineReport,
    has_admin_privileges,
)
from .ports import SystemPortInspector
from .providers import SystemdProvider
from .service_accounts import resolve_service_account
from .tuning import TuningError, auto_tune, detect_hardware

console = Console()

CONFIG_FILE_OPTION = typer.Option(
    None,
    "--config-file",
    help="Path to an alternate configuration file.",
    dir_okay=False,
)
SERVER_ID_OPTION = typer.Option(None, "--server-id", min=1, help="MariaDB server_id.")
PORT_OPTION = typer.Option(None, "--port", help="TCP port the server listens on.")
DATA_DIR_OPTION = typer.Option(None, "--data-dir", help="Target data directory.")
LOG_DIR_OPTION = typer.Option(None, "--log-dir", help="Target log directory.")
BINLOG_DIR_OPTION = typer.Option(None, "--binlog-dir", help="Target binary log directory.")
CONFIG_DIR_OPTION = typer.Option(
    None,
    "--config-dir",
    help="Directory holding the server option files.",
)
ENCRYPTION_OPTION = typer.Option(
    None,
    "--encrypt-tables/--no-encrypt-tables",
    help="Enable or disable InnoDB table encryption.",
)
KEY_FILE_OPTION = typer.Option(
    None,
    "--encryption-key-file",
    help="Key file for the file_key_management plugin.",
)
BUFFER_POOL_SIZE_OPTION = typer.Option(
    None,
    "--buffer-pool-size",
    help="innodb_buffer_pool_size (e.g. 4G); disables auto-tuning of this value.",
)
BUFFER_POOL_INSTANCES_OPTION = typer.Option(
    None,
    "--buffer-pool-instances",
    min=1,
    max=64,
    help="innodb_buffer_pool_instances; disables auto-tuning of this value.",
)
TEMPLATE_OPTION = typer.Option(
    None,
    "--template",
    help="Server configuration template (defaults to templates.server_config).",
    dir_okay=False,
)
NON_INTERACTIVE_OPTION = typer.Option(
    False,
    "--non-interactive",
    help="Never prompt; fill missing values from the installation and defaults.",
)

app = typer.Typer(
    add_completion=False,
    help=textwrap.dedent(
        """
        MariaDB reconfiguration and data migration CLI.

        Renders the server option file from a template, validates directories,
        ports and disk space, sizes the InnoDB buffer pool for this host and
        moves existing data when directories change.
        """
    ).strip(),
)
config_app = typer.Typer(help="Inspect mariactl configuration.")
app.add_typer(config_app, name="config")


@dataclass(slots=True)
class RuntimeContext:
    """Aggregated runtime objects shared by commands."""

    config: AppConfig
    logger: StructuredLogger
    systemd_provider: SystemdProvider


def _ensure_runtime(ctx: typer.Context, config_file: Path | None) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime

    try:
        config = load_config(config_file=config_file)
    except ConfigError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=int(ExitCode.VALIDATION)) from exc
    logger = StructuredLogger(config.logs_dir)
    systemd = config.systemd
    systemd_provider = SystemdProvider(
        systemctl_bin=systemd.systemctl_bin,
        attempts=systemd.restart_attempts,
        backoff=systemd.restart_backoff,
    )
    runtime = RuntimeContext(config=config, logger=logger, systemd_provider=systemd_provider)
    ctx.obj = runtime
    return runtime


def _get_runtime(ctx: typer.Context) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime
    return _ensure_runtime(ctx, None)


def _build_collaborators(runtime: RuntimeContext) -> PipelineCollaborators:
    """Return the host-backed collaborators used by the pipeline."""
    mariadb = runtime.config.mariadb
    systemd = runtime.systemd_provider
    return PipelineCollaborators(
        systemd=systemd,
        port_inspector=SystemPortInspector(),
        discover=lambda: discover_installation(
            systemd, service_candidates=runtime.config.systemd.service_candidates
        ),
        hardware=detect_hardware,
        service_account=lambda: resolve_service_account(
            mariadb.service_user,
            mariadb.service_group,
            fallback_uid=mariadb.fallback_uid,
            fallback_gid=mariadb.fallback_gid,
        ),
        is_privileged=has_admin_privileges,
    )


@app.callback(invoke_without_command=True)
def _root(  # noqa: D401 - Typer displays help for us, docstring optional.
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show the mariactl version and exit.",
    ),
    config_file: Path | None = CONFIG_FILE_OPTION,
) -> None:
    """Entry point callback invoked for every CLI execution."""
    if version:
        runtime = _ensure_runtime(ctx, config_file)
        with runtime.logger.operation(
            "root --version",
            args={"version": True},
            target={"kind": "meta", "scope": "version"},
        ) as op:
            console.print(f"mariactl {__version__}")
            op.success("Reported CLI version.", changed=0)
        raise typer.Exit(code=0)

    _ensure_runtime(ctx, config_file)

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())
        raise typer.Exit(code=0)


def _command_error(
    op: OperationScope,
    message: str,
    *,
    rc: int = int(ExitCode.VALIDATION),
    errors: Sequence[str] | None = None,
) -> NoReturn:
    """Emit a structured error and terminate the command."""
    console.print(f"[red]{message}[/red]")
    op.error(message, errors=list(errors or [message]), rc=rc)
    raise typer.Exit(code=rc)


_STAGE_EXIT_CODES = {
    "PreChecks": ExitCode.ENVIRONMENT,
    "LoadTemplate": ExitCode.VALIDATION,
    "GatherValues": ExitCode.VALIDATION,
    "Validate": ExitCode.VALIDATION,
    "AutoTune": ExitCode.ENVIRONMENT,
    "StopService": ExitCode.PROVIDER,
    "RestartService": ExitCode.PROVIDER,
    "VerifyService": ExitCode.PROVIDER,
}


def _exit_code_for(error: PipelineError) -> int:
    return int(_STAGE_EXIT_CODES.get(error.stage, ExitCode.ENVIRONMENT))


def _desired_from_flags(
    runtime: RuntimeContext,
    op: OperationScope,
    flags: Mapping[str, object],
) -> DesiredConfiguration:
    try:
        return build_desired_configuration(
            runtime.config,
            flags=flags,
            env_keys=env_mariadb_keys(),
        )
    except ConfigError as exc:
        _command_error(op, str(exc))


def _run_pipeline(
    runtime: RuntimeContext,
    op: OperationScope,
    desired: DesiredConfiguration,
    *,
    template: Path | None,
    assume_yes: bool,
    stop_after: str | None = None,
    repair: bool = True,
) -> PipelineReport:
    token = CancellationToken()
    context = RunContext(config=runtime.config, logger=runtime.logger, token=token)
    pipeline = ConfigurePipeline(
        context,
        desired,
        _build_collaborators(runtime),
        template_path=template or runtime.config.templates.server_config,
        console=console,
        op=op,
        assume_yes=assume_yes,
        repair=repair,
    )
    try:
        with cancel_on_sigint(token):
            return pipeline.run(stop_after=stop_after)
    except OperationCancelled as exc:
        _command_error(op, f"Operation cancelled: {exc}", rc=int(ExitCode.CANCELLED))
    except PipelineError as exc:
        _command_error(
            op,
            f"{exc.stage} failed: {exc.message}",
            rc=_exit_code_for(exc),
            errors=[str(exc)],
        )


@app.command()
def configure(
    ctx: typer.Context,
    server_id: int | None = SERVER_ID_OPTION,
    port: int | None = PORT_OPTION,
    data_dir: Path | None = DATA_DIR_OPTION,
    log_dir: Path | None = LOG_DIR_OPTION,
    binlog_dir: Path | None = BINLOG_DIR_OPTION,
    config_dir: Path | None = CONFIG_DIR_OPTION,
    encryption: bool | None = ENCRYPTION_OPTION,
    encryption_key_file: Path | None = KEY_FILE_OPTION,
    buffer_pool_size: str | None = BUFFER_POOL_SIZE_OPTION,
    buffer_pool_instances: int | None = BUFFER_POOL_INSTANCES_OPTION,
    template: Path | None = TEMPLATE_OPTION,
    auto_tune_enabled: bool = typer.Option(
        True,
        "--auto-tune/--no-auto-tune",
        help="Size the InnoDB buffer pool from host memory and CPU count.",
    ),
    backup_dir: Path | None = typer.Option(
        None,
        "--backup-dir",
        help="Directory receiving a copy of the current option file.",
    ),
    backup_config: bool | None = typer.Option(
        None,
        "--backup-config/--no-backup-config",
        help="Back up the current option file before rewriting it (default from config).",
    ),
    migrate_data: bool = typer.Option(
        True,
        "--migrate-data/--no-migrate-data",
        help="Copy existing data when directories change.",
    ),
    verify_migration: bool = typer.Option(
        True,
        "--verify-migration/--no-verify-migration",
        help="Check data directory markers after migration.",
    ),
    non_interactive: bool = NON_INTERACTIVE_OPTION,
    yes: bool = typer.Option(
        False,
        "--yes",
        "-y",
        help="Apply the change summary without asking for confirmation.",
    ),
) -> None:
    """Reconfigure MariaDB, migrating data when directories change."""
    runtime = _get_runtime(ctx)
    flags: dict[str, Any] = {
        "server_id": server_id,
        "port": port,
        "data_dir": data_dir,
        "log_dir": log_dir,
        "binlog_dir": binlog_dir,
        "config_dir": config_dir,
        "encryption_enabled": encryption,
        "encryption_key_file": encryption_key_file,
        "buffer_pool_size": buffer_pool_size,
        "buffer_pool_instances": buffer_pool_instances,
        "backup_dir": backup_dir,
    }
    with runtime.logger.operation(
        "configure",
        args={**flags, "auto_tune": auto_tune_enabled, "non_interactive": non_interactive},
        target={"kind": "mariadb"},
    ) as op:
        desired = _desired_from_flags(runtime, op, flags)
        desired.auto_tune = auto_tune_enabled
        if backup_config is not None:
            desired.backup_current_config = backup_config
        desired.migrate_data = migrate_data
        desired.verify_migration = verify_migration
        desired.non_interactive = non_interactive

        try:
            report = _run_pipeline(runtime, op, desired, template=template, assume_yes=yes)
        except PipelineDeclined as exc:
            console.print(f"[yellow]{exc}[/yellow]")
            op.success("Configuration declined by operator.", changed=0)
            return

        _render_report(report)
        changed = 1 + sum(outcome.files_copied for outcome in report.outcomes)
        backups = [str(report.backup_path)] if report.backup_path else None
        if report.warnings:
            op.warning(
                "MariaDB reconfigured with warnings.",
                warnings=report.warnings,
                changed=changed,
                backups=backups,
                context=report.to_dict(),
            )
        else:
            op.success(
                "MariaDB reconfigured.",
                changed=changed,
                backups=backups,
                context=report.to_dict(),
            )


@app.command()
def check(
    ctx: typer.Context,
    server_id: int | None = SERVER_ID_OPTION,
    port: int | None = PORT_OPTION,
    data_dir: Path | None = DATA_DIR_OPTION,
    log_dir: Path | None = LOG_DIR_OPTION,
    binlog_dir: Path | None = BINLOG_DIR_OPTION,
    encryption: bool | None = ENCRYPTION_OPTION,
    encryption_key_file: Path | None = KEY_FILE_OPTION,
    template: Path | None = TEMPLATE_OPTION,
) -> None:
    """Validate a prospective configuration without changing anything."""
    runtime = _get_runtime(ctx)
    flags: dict[str, Any] = {
        "server_id": server_id,
        "port": port,
        "data_dir": data_dir,
        "log_dir": log_dir,
        "binlog_dir": binlog_dir,
        "encryption_enabled": encryption,
        "encryption_key_file": encryption_key_file,
    }
    with runtime.logger.operation(
        "check",
        args=flags,
        target={"kind": "mariadb"},
    ) as op:
        desired = _desired_from_flags(runtime, op, flags)
        desired.non_interactive = True
        report = _run_pipeline(
            runtime,
            op,
            desired,
            template=template,
            assume_yes=False,
            stop_after="Validate",
            repair=False,
        )
        if report.warnings:
            op.warning("Validation passed with warnings.", warnings=report.warnings, changed=0)
        else:
            op.success("Validation passed.", changed=0)
        console.print("[green]Configuration is valid.[/green]")


@app.command()
def tune(
    ctx: typer.Context,
    json_output: bool = typer.Option(
        False,
        "--json",
        help="Emit the recommendation as JSON instead of a table.",
    ),
) -> None:
    """Show the buffer pool settings recommended for this host."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "tune",
        args={"json": json_output},
        target={"kind": "hardware"},
    ) as op:
        try:
            hardware = detect_hardware()
        except TuningError as exc:
            _command_error(op, str(exc), rc=int(ExitCode.ENVIRONMENT))
        sizing = build_desired_configuration(runtime.config)
        sizing.buffer_pool_size = DEFAULT_BUFFER_POOL_SIZE
        sizing.buffer_pool_instances = DEFAULT_BUFFER_POOL_INSTANCES
        result = auto_tune(sizing, hardware)
        data = {
            "cpu_cores": hardware.cpu_cores,
            "total_ram_mb": hardware.total_ram_mb,
            "innodb_buffer_pool_size": result.buffer_pool_size,
            "innodb_buffer_pool_instances": result.buffer_pool_instances,
        }
        if json_output:
            console.print_json(data=data)
        else:
            table = Table(show_header=True, header_style="bold magenta")
            table.add_column("Setting", style="bold")
            table.add_column("Value")
            for key, value in data.items():
                table.add_row(key, str(value))
            console.print(table)
        op.success("Computed buffer pool recommendation.", changed=0, context=data)


@config_app.command("show")
def config_show(
    ctx: typer.Context,
    json_output: bool = typer.Option(
        False,
        "--json",
        help="Emit configuration as JSON instead of a table.",
    ),
) -> None:
    """Display the effective configuration after merges."""
    runtime = _get_runtime(ctx)
    data = runtime.config.to_dict()

    with runtime.logger.operation(
        "config show",
        args={"json": json_output},
        target={"kind": "config"},
    ) as op:
        if json_output:
            console.print_json(data=data)
            op.success("Rendered configuration as JSON.", changed=0)
            return

        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Key", style="bold")
        table.add_column("Value")

        for key, value in data.items():
            if isinstance(value, dict):
                rendered = json.dumps(value, indent=2, sort_keys=True)
            else:
                rendered = str(value)
            table.add_row(key, rendered)

        console.print(table)
        op.success("Rendered configuration table.", changed=0)


def _render_report(report: PipelineReport) -> None:
    table = Table(title="Pipeline stages", show_header=True, header_style="bold magenta")
    table.add_column("Stage", style="bold")
    table.add_column("Status")
    table.add_column("Detail")
    styles = {"success": "green", "warning": "yellow", "skipped": "dim", "error": "red"}
    for stage in report.stages:
        style = styles.get(stage.status, "white")
        table.add_row(stage.name, f"[{style}]{stage.status}[/{style}]", stage.detail or "")
    console.print(table)
    for warning in report.warnings:
        console.print(f"[yellow]Warning:[/yellow] {warning}")
    if report.backup_path:
        console.print(f"Previous configuration saved to {report.backup_path}")
    console.print("[green]MariaDB reconfiguration complete.[/green]")


__all__ = ["app"]
