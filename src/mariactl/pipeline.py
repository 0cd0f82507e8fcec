"""Orchestration of a MariaDB reconfiguration run.

The pipeline is a fixed, strictly ordered list of stages::

    PreChecks -> LoadTemplate -> GatherValues -> Validate -> AutoTune ->
    ShowDiff -> Confirm -> StopService -> MigrateData ->
    RenderAndBackupConfig -> WriteConfig -> RestartService ->
    VerifyService -> VerifyConfigApplied -> PersistAppConfig

Every failure is re-raised as :class:`PipelineError` carrying the stage name.
Declining the confirmation raises :class:`PipelineDeclined` before anything
destructive has happened. Completed stages are never rolled back; the
configuration backup and the non-destructive migration (sources are never
modified) are the recovery path.
"""
from __future__ import annotations

import grp
import logging
import os
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import typer
from rich.console import Console
from rich.table import Table

from .config import (
    PERSISTED_MARIADB_KEYS,
    ConfigError,
    DesiredConfiguration,
    save_mariadb_settings,
)
from .context import OperationCancelled, RunContext
from .discovery import (
    InstallationSnapshot,
    detect_network_filesystem,
    read_server_settings,
)
from .interactive import DefaultResolver, gather_values
from .logging import OperationScope
from .migration import (
    DataMigration,
    MigrationEngine,
    MigrationError,
    MigrationOutcome,
    MigrationState,
    plan_migrations,
)
from .ports import PortInspector
from .providers.systemd import SystemdError, SystemdProvider
from .service_accounts import ServiceAccount
from .templates import (
    STANDARD_CONFIG_PATHS,
    ConfigTemplate,
    TemplateError,
    load_template,
    write_config,
)
from .tuning import HardwareInfo, TuningError, TuningResult, auto_tune
from .validation import ValidationError, ValidationResult, validate_configuration

LOGGER = logging.getLogger(__name__)

STAGES: tuple[str, ...] = (
    "PreChecks",
    "LoadTemplate",
    "GatherValues",
    "Validate",
    "AutoTune",
    "ShowDiff",
    "Confirm",
    "StopService",
    "MigrateData",
    "RenderAndBackupConfig",
    "WriteConfig",
    "RestartService",
    "VerifyService",
    "VerifyConfigApplied",
    "PersistAppConfig",
)
PRIVILEGED_GROUPS = frozenset({"sudo", "wheel", "admin"})
NETWORK_SOCKET_PATH = Path("/var/run/mysqld/mysqld.sock")
ENCRYPTION_ALGORITHM = "AES_CTR"

_WRAPPED_ERRORS = (
    ConfigError,
    MigrationError,
    OSError,
    SystemdError,
    TemplateError,
    TuningError,
)


class PipelineError(RuntimeError):
    """Raised when a stage fails; ``stage`` names the failing stage."""

    def __init__(self, stage: str, message: str) -> None:
        super().__init__(f"{stage}: {message}")
        self.stage = stage
        self.message = message


class PipelineDeclined(RuntimeError):
    """Raised when the operator declines the change summary."""


def has_admin_privileges() -> bool:
    """Return ``True`` for root or members of an administrative group."""
    if os.geteuid() == 0:
        return True
    try:
        names = {grp.getgrgid(gid).gr_name for gid in os.getgroups()}
    except KeyError:
        return False
    return bool(names & PRIVILEGED_GROUPS)


def socket_path_for(data_dir: Path, *, network_filesystem: bool) -> Path:
    """Return the server socket path for *data_dir*."""
    if network_filesystem:
        return NETWORK_SOCKET_PATH
    return data_dir / "mysql.sock"


def build_config_values(desired: DesiredConfiguration, *, socket_path: Path) -> dict[str, str]:
    """Return template values for *desired* keyed by server option name."""
    encrypt = "ON" if desired.encryption_enabled else "OFF"
    return {
        "server_id": str(desired.server_id),
        "port": str(desired.port),
        "datadir": str(desired.data_dir),
        "socket": str(socket_path),
        "log_bin": str(desired.binlog_dir / "mysql-bin"),
        "log_error": str(desired.log_dir / "mysql_error.log"),
        "slow_query_log_file": str(desired.log_dir / "mysql_slow.log"),
        "innodb_data_home_dir": str(desired.data_dir),
        "innodb_log_group_home_dir": str(desired.data_dir),
        "innodb_buffer_pool_size": desired.buffer_pool_size,
        "innodb_buffer_pool_instances": str(desired.buffer_pool_instances),
        "innodb-encrypt-tables": encrypt,
        "innodb_encrypt_tables": encrypt,
        "file_key_management_filename": str(desired.encryption_key_file),
        "file_key_management_encryption_algorithm": ENCRYPTION_ALGORITHM,
    }


@dataclass(slots=True)
class PipelineCollaborators:
    """Host-facing collaborators; tests substitute fakes."""

    systemd: SystemdProvider
    port_inspector: PortInspector
    discover: Callable[[], InstallationSnapshot]
    hardware: Callable[[], HardwareInfo]
    service_account: Callable[[], ServiceAccount]
    is_privileged: Callable[[], bool] = has_admin_privileges
    prompt: Callable[..., Any] = typer.prompt
    confirm: Callable[..., Any] = typer.confirm
    mounts_file: Path = Path("/proc/mounts")


@dataclass(slots=True)
class StageRecord:
    """Status of one executed stage."""

    name: str
    status: str
    detail: str | None = None


@dataclass(slots=True)
class PipelineReport:
    """Everything the pipeline learned and did during one run."""

    desired: DesiredConfiguration
    snapshot: InstallationSnapshot | None = None
    template: ConfigTemplate | None = None
    validation: ValidationResult | None = None
    tuning: TuningResult | None = None
    plan: list[DataMigration] = field(default_factory=list)
    outcomes: list[MigrationOutcome] = field(default_factory=list)
    active_config: Path | None = None
    rendered: str | None = None
    backup_path: Path | None = None
    service_name: str | None = None
    stages: list[StageRecord] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def completed(self) -> list[str]:
        """Return the names of stages that ran (successfully or skipped)."""
        return [stage.name for stage in self.stages]

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable summary."""
        return {
            "desired": self.desired.to_dict(),
            "snapshot": self.snapshot.to_dict() if self.snapshot else None,
            "active_config": str(self.active_config) if self.active_config else None,
            "backup": str(self.backup_path) if self.backup_path else None,
            "service": self.service_name,
            "migrations": [outcome.to_dict() for outcome in self.outcomes],
            "stages": [
                {"name": stage.name, "status": stage.status, "detail": stage.detail}
                for stage in self.stages
            ],
            "warnings": list(self.warnings),
        }


StageHandler = Callable[[], tuple[str, str | None]]


class ConfigurePipeline:
    """Run the reconfiguration stages against one host."""

    def __init__(
        self,
        context: RunContext,
        desired: DesiredConfiguration,
        collaborators: PipelineCollaborators,
        *,
        template_path: Path,
        console: Console | None = None,
        op: OperationScope | None = None,
        assume_yes: bool = False,
        repair: bool = True,
    ) -> None:
        self.context = context
        self.desired = desired
        self.collaborators = collaborators
        self.template_path = template_path
        self.console = console or Console()
        self.op = op
        self.assume_yes = assume_yes
        self.repair = repair
        self.report = PipelineReport(desired=desired)

    # ------------------------------------------------------------------
    def run(self, *, stop_after: str | None = None) -> PipelineReport:
        """Execute the stages in order, optionally stopping after *stop_after*.

        Without a caller-supplied operation the run is recorded as a
        ``pipeline`` operation through the context logger.
        """
        if stop_after is not None and stop_after not in STAGES:
            raise ValueError(f"Unknown pipeline stage: {stop_after}")
        if self.op is not None:
            return self._run_stages(stop_after)
        with self.context.logger.operation(
            "pipeline",
            args={"stop_after": stop_after, "repair": self.repair},
            target={"kind": "mariadb"},
        ) as op:
            self.op = op
            try:
                report = self._run_stages(stop_after)
            except PipelineDeclined:
                op.success("Configuration declined by operator.", changed=0)
                raise
            except PipelineError as exc:
                op.error(f"{exc.stage} failed: {exc.message}")
                raise
            finally:
                self.op = None
            backups = [str(report.backup_path)] if report.backup_path else None
            op.success("Pipeline finished.", backups=backups)
            return report

    def _run_stages(self, stop_after: str | None) -> PipelineReport:
        handlers = self._handlers()
        for name in STAGES:
            self.context.token.raise_if_cancelled(name)
            LOGGER.info("Stage %s starting", name)
            try:
                status, detail = handlers[name]()
            except (PipelineError, PipelineDeclined, OperationCancelled):
                raise
            except _WRAPPED_ERRORS as exc:
                self._record(name, "error", str(exc))
                raise PipelineError(name, str(exc)) from exc
            self._record(name, status, detail)
            if name == stop_after:
                break
        return self.report

    def _handlers(self) -> dict[str, StageHandler]:
        return {
            "PreChecks": self._pre_checks,
            "LoadTemplate": self._load_template,
            "GatherValues": self._gather_values,
            "Validate": self._validate,
            "AutoTune": self._auto_tune,
            "ShowDiff": self._show_diff,
            "Confirm": self._confirm,
            "StopService": self._stop_service,
            "MigrateData": self._migrate_data,
            "RenderAndBackupConfig": self._render_and_backup,
            "WriteConfig": self._write_config,
            "RestartService": self._restart_service,
            "VerifyService": self._verify_service,
            "VerifyConfigApplied": self._verify_config_applied,
            "PersistAppConfig": self._persist_app_config,
        }

    def _record(self, name: str, status: str, detail: str | None) -> None:
        self.report.stages.append(StageRecord(name, status, detail))
        if self.op is not None:
            self.op.add_step(f"pipeline.{name}", status=status, detail=detail)
        LOGGER.info("Stage %s %s%s", name, status, f": {detail}" if detail else "")

    def _fail(self, stage: str, message: str) -> PipelineError:
        self._record(stage, "error", message)
        return PipelineError(stage, message)

    @property
    def _snapshot(self) -> InstallationSnapshot:
        snapshot = self.report.snapshot
        if snapshot is None:  # pragma: no cover - guarded by stage order
            raise RuntimeError("Installation snapshot is not available yet.")
        return snapshot

    @property
    def _template(self) -> ConfigTemplate:
        template = self.report.template
        if template is None:  # pragma: no cover - guarded by stage order
            raise RuntimeError("Configuration template is not loaded yet.")
        return template

    # Stages -----------------------------------------------------------
    def _pre_checks(self) -> tuple[str, str | None]:
        if not self.collaborators.is_privileged():
            raise self._fail(
                "PreChecks",
                "root privileges are required; run as root or through sudo",
            )
        snapshot = self.collaborators.discover()
        self.report.snapshot = snapshot
        if not snapshot.installed:
            raise self._fail("PreChecks", "no MariaDB installation was found on this host")
        return "success", f"MariaDB {snapshot.version or 'unknown version'}"

    def _load_template(self) -> tuple[str, str | None]:
        standard = _dedupe_paths(
            (self.desired.config_dir / "50-server.cnf", *STANDARD_CONFIG_PATHS)
        )
        template = load_template(
            self.template_path,
            config_paths=self._snapshot.config_paths,
            standard_paths=standard,
        )
        self.report.template = template
        self.report.active_config = template.current_path
        return "success", str(template.current_path)

    def _gather_values(self) -> tuple[str, str | None]:
        resolver = DefaultResolver(self._snapshot, self.report.template, self.desired)
        filled = gather_values(
            self.desired,
            resolver,
            prompt=self.collaborators.prompt,
            confirm=self.collaborators.confirm,
        )
        return "success", ", ".join(filled) if filled else "all values supplied"

    def _validate(self) -> tuple[str, str | None]:
        validation = self.context.config.validation
        result = validate_configuration(
            self.desired,
            inspector=self.collaborators.port_inspector,
            account=self.collaborators.service_account(),
            min_free_bytes=validation.min_free_bytes,
            port_min=validation.port_min,
            port_max=validation.port_max,
            repair=self.repair,
        )
        self.report.validation = result
        self.report.warnings.extend(result.warnings)
        for warning in result.warnings:
            self.console.print(f"[yellow]Warning:[/yellow] {warning}")
        try:
            result.raise_for_errors()
        except ValidationError as exc:
            raise self._fail("Validate", str(exc)) from exc
        return ("warning" if result.warnings else "success"), None

    def _auto_tune(self) -> tuple[str, str | None]:
        if not self.desired.auto_tune:
            return "skipped", "auto-tune disabled"
        result = auto_tune(self.desired, self.collaborators.hardware())
        self.report.tuning = result
        return "success", (
            f"innodb_buffer_pool_size={result.buffer_pool_size} "
            f"innodb_buffer_pool_instances={result.buffer_pool_instances}"
        )

    def _show_diff(self) -> tuple[str, str | None]:
        if self.desired.migrate_data:
            self.report.plan = plan_migrations(self._snapshot, self.desired)
        self.console.print(render_comparison(self._snapshot, self.desired))
        if self.report.plan:
            self.console.print("[bold]Data migration plan:[/bold]")
            for migration in self.report.plan:
                self.console.print(f"  - {migration.describe()}")
            self.console.print(
                "[yellow]The MariaDB service will be stopped while data is copied.[/yellow]"
            )
        return "success", f"{len(self.report.plan)} migration(s) planned"

    def _confirm(self) -> tuple[str, str | None]:
        if self.assume_yes or self.desired.non_interactive:
            return "success", "confirmed automatically"
        confirmed = self.collaborators.confirm("Apply this configuration?", default=False)
        if not confirmed:
            self._record("Confirm", "declined", "operator declined")
            raise PipelineDeclined("Configuration change declined; nothing was modified.")
        return "success", "confirmed by operator"

    def _stop_service(self) -> tuple[str, str | None]:
        snapshot = self._snapshot
        if not self.report.plan:
            return "skipped", "no data to migrate"
        if not snapshot.running or not snapshot.service_name:
            return "skipped", "service not running"
        self.collaborators.systemd.stop(snapshot.service_name)
        return "success", snapshot.service_name

    def _migrate_data(self) -> tuple[str, str | None]:
        if not self.desired.migrate_data:
            return "skipped", "migration disabled"
        if not self.report.plan:
            return "skipped", "nothing to migrate"
        engine = MigrationEngine(token=self.context.token, verify=self.desired.verify_migration)
        try:
            self.report.outcomes = engine.run(self.report.plan)
        except MigrationError as exc:
            if exc.outcome is not None:
                self.report.outcomes.append(exc.outcome)
            raise
        status = "success"
        for outcome in self.report.outcomes:
            self.report.warnings.extend(outcome.warnings)
            if outcome.state is MigrationState.FAILED:
                status = "warning"
                self.report.warnings.append(
                    f"{outcome.migration.type.value} migration failed: {outcome.message}"
                )
            self.console.print(
                f"  {outcome.migration.type.value}: {outcome.state.value} ({outcome.message})"
            )
        summary = ", ".join(
            f"{outcome.migration.type.value}={outcome.state.value}"
            for outcome in self.report.outcomes
        )
        return status, summary

    def _render_and_backup(self) -> tuple[str, str | None]:
        template = self._template
        network = detect_network_filesystem(
            self.desired.data_dir, self.collaborators.mounts_file
        )
        values = build_config_values(
            self.desired,
            socket_path=socket_path_for(self.desired.data_dir, network_filesystem=network),
        )
        self.report.rendered = template.render(values)

        active = template.current_path
        if not self.desired.backup_current_config:
            return "success", "rendered; backup disabled"
        if active is None or not active.exists():
            return "success", "rendered; no existing configuration to back up"
        self.report.backup_path = template.backup(self.desired.backup_dir)
        return "success", f"backup {self.report.backup_path}"

    def _write_config(self) -> tuple[str, str | None]:
        target = self.report.active_config
        rendered = self.report.rendered
        if target is None or rendered is None:  # pragma: no cover - guarded by stage order
            raise self._fail("WriteConfig", "nothing rendered to write")
        write_config(target, rendered)
        return "success", str(target)

    def _restart_service(self) -> tuple[str, str | None]:
        snapshot = self._snapshot
        if snapshot.service_name:
            names: Sequence[str] = [snapshot.service_name]
        else:
            names = self.context.config.systemd.service_candidates
        self.report.service_name = self.collaborators.systemd.start_with_retry(names)
        return "success", self.report.service_name

    def _verify_service(self) -> tuple[str, str | None]:
        name = self.report.service_name
        if not name or not self.collaborators.systemd.wait_until_active(name):
            raise self._fail("VerifyService", f"service {name} is not active after restart")
        return "success", f"{name} active"

    def _verify_config_applied(self) -> tuple[str, str | None]:
        target = self.report.active_config
        if target is None:  # pragma: no cover - guarded by stage order
            raise self._fail("VerifyConfigApplied", "active configuration path unknown")
        mismatches = verify_applied_settings(target, self.desired)
        if mismatches:
            raise self._fail("VerifyConfigApplied", "; ".join(mismatches))
        return "success", "port and directories match"

    def _persist_app_config(self) -> tuple[str, str | None]:
        path = self.context.config.config_file
        save_mariadb_settings(path, self.desired.persisted_values())
        return "success", f"{path} ({', '.join(PERSISTED_MARIADB_KEYS)})"


def verify_applied_settings(path: Path, desired: DesiredConfiguration) -> list[str]:
    """Return human readable differences between *path* and *desired*."""
    settings = read_server_settings([path])
    problems: list[str] = []
    if settings.port != desired.port:
        problems.append(f"port is {settings.port}, expected {desired.port}")
    if settings.data_dir is None or not _same_path(settings.data_dir, desired.data_dir):
        problems.append(f"datadir is {settings.data_dir}, expected {desired.data_dir}")
    if settings.server_id is not None and settings.server_id != desired.server_id:
        problems.append(f"server_id is {settings.server_id}, expected {desired.server_id}")
    if settings.binlog_dir is not None and not _same_path(settings.binlog_dir, desired.binlog_dir):
        problems.append(f"binlog directory is {settings.binlog_dir}, expected {desired.binlog_dir}")
    log_error = settings.options.get("log_error")
    if log_error and "/" in log_error and not _same_path(Path(log_error).parent, desired.log_dir):
        problems.append(f"log directory is {Path(log_error).parent}, expected {desired.log_dir}")
    return problems


def render_comparison(snapshot: InstallationSnapshot, desired: DesiredConfiguration) -> Table:
    """Return an existing-vs-new table of the managed settings."""
    table = Table(title="MariaDB configuration changes", show_header=True, header_style="bold magenta")
    table.add_column("Setting", style="bold")
    table.add_column("Existing")
    table.add_column("New")

    rows: list[tuple[str, object, object]] = [
        ("server_id", snapshot.server_id, desired.server_id),
        ("port", snapshot.port, desired.port),
        ("data_dir", snapshot.data_dir, desired.data_dir),
        ("log_dir", snapshot.log_dir, desired.log_dir),
        ("binlog_dir", snapshot.binlog_dir, desired.binlog_dir),
        ("innodb_encrypt_tables", snapshot.encryption_enabled, desired.encryption_enabled),
        ("encryption_key_file", snapshot.encryption_key_file, desired.encryption_key_file),
        ("innodb_buffer_pool_size", snapshot.buffer_pool_size, desired.buffer_pool_size),
        (
            "innodb_buffer_pool_instances",
            snapshot.buffer_pool_instances,
            desired.buffer_pool_instances,
        ),
    ]
    for name, existing, new in rows:
        existing_text = "-" if existing is None else str(existing)
        new_text = str(new)
        if existing_text != new_text:
            new_text = f"[green]{new_text}[/green]"
        table.add_row(name, existing_text, new_text)
    return table


def _same_path(left: Path, right: Path) -> bool:
    return os.path.normpath(str(left)) == os.path.normpath(str(right))


def _dedupe_paths(paths: Sequence[Path]) -> tuple[Path, ...]:
    seen: list[Path] = []
    for path in paths:
        if path not in seen:
            seen.append(path)
    return tuple(seen)


__all__ = [
    "ConfigurePipeline",
    "PipelineCollaborators",
    "PipelineDeclined",
    "PipelineError",
    "PipelineReport",
    "STAGES",
    "StageRecord",
    "build_config_values",
    "has_admin_privileges",
    "render_comparison",
    "socket_path_for",
    "verify_applied_settings",
]
