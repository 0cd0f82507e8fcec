"""Pre-flight checks run before any destructive step.

Each ``check_*`` function returns a :class:`ValidationResult`. With the default
``repair=True`` the side effects are creating missing target directories, sentinel
write tests and the ownership repair performed by
:func:`check_directory_permissions`. ``repair=False`` keeps only the sentinel
write tests and reports the remaining changes as warnings.
"""
from __future__ import annotations

import logging
import os
import shutil
import stat
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from pathlib import Path

from .config import DesiredConfiguration
from .ports import PortInspector
from .service_accounts import ServiceAccount

LOGGER = logging.getLogger(__name__)

MIN_FREE_BYTES = 1024**3
PORT_MIN = 1024
PORT_MAX = 65535
WRITE_TEST_NAME = ".mariactl_write_test"
ENGINE_PROCESS_MARKERS = ("mysqld", "mariadbd", "mariadb")
REPAIRED_DIRECTORY_MODE = 0o750


class ValidationError(RuntimeError):
    """Raised when the proposed configuration fails validation."""

    def __init__(self, errors: Sequence[str]) -> None:
        super().__init__("; ".join(errors) if errors else "validation failed")
        self.errors = list(errors)


@dataclass(slots=True)
class ValidationResult:
    """Collected validation errors (fatal) and warnings (advisory)."""

    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        """Return ``True`` when no errors were recorded."""
        return not self.errors

    def error(self, message: str) -> None:
        """Record a fatal finding."""
        LOGGER.debug("validation error: %s", message)
        self.errors.append(message)

    def warn(self, message: str) -> None:
        """Record an advisory finding."""
        LOGGER.debug("validation warning: %s", message)
        self.warnings.append(message)

    def merge(self, other: ValidationResult) -> ValidationResult:
        """Append *other*'s findings to this result and return ``self``."""
        self.errors.extend(other.errors)
        self.warnings.extend(other.warnings)
        return self

    def raise_for_errors(self) -> None:
        """Raise :class:`ValidationError` when errors were recorded."""
        if self.errors:
            raise ValidationError(self.errors)


def check_directories(
    directories: Sequence[tuple[str, Path]],
    *,
    repair: bool = True,
) -> ValidationResult:
    """Ensure each labelled directory is absolute, present, writable and distinct.

    Missing directories are created when *repair* is true; otherwise they are
    reported as warnings and only their nearest existing parent is checked.
    """
    result = ValidationResult()
    for label, directory in directories:
        if not directory.is_absolute():
            result.error(f"{label} must be an absolute path: {directory}")
            continue
        if not directory.exists() and not repair:
            parent = _nearest_existing(directory)
            if os.access(parent, os.W_OK | os.X_OK):
                result.warn(f"{label} {directory} does not exist and would be created")
            else:
                result.error(f"Cannot create {label} {directory}: {parent} is not writable")
            continue
        try:
            directory.mkdir(parents=True, exist_ok=True, mode=0o755)
        except OSError as exc:
            result.error(f"Failed to create {label} {directory}: {exc}")
            continue
        sentinel = directory / WRITE_TEST_NAME
        try:
            sentinel.write_text("test", encoding="utf-8")
        except OSError as exc:
            result.error(f"{label} {directory} is not writable: {exc}")
            continue
        sentinel.unlink(missing_ok=True)

    seen: dict[str, str] = {}
    for label, directory in directories:
        key = os.path.normpath(str(directory))
        if key in seen:
            result.error(f"{seen[key]} and {label} cannot be the same directory: {directory}")
        else:
            seen[key] = label
    return result


def is_engine_process(name: str | None) -> bool:
    """Return ``True`` when *name* looks like the database server itself."""
    if not name:
        return False
    lowered = name.lower()
    return any(marker in lowered for marker in ENGINE_PROCESS_MARKERS)


def check_port(
    port: int,
    inspector: PortInspector,
    *,
    port_min: int = PORT_MIN,
    port_max: int = PORT_MAX,
) -> ValidationResult:
    """Validate *port* is in range and free (or held by the database server)."""
    result = ValidationResult()
    if port < port_min or port > port_max:
        result.error(f"port must be between {port_min}-{port_max}, got: {port}")
        return result
    if inspector.is_available(port):
        return result

    owner = inspector.owner(port)
    if owner is None or owner.process is None:
        result.error(f"port {port} is already in use by an unidentified process")
        return result
    if is_engine_process(owner.process):
        LOGGER.info("Port %s held by %s; ignoring self-conflict", port, owner.describe())
        return result
    result.error(
        f"port {port} is already in use by process {owner.process} (pid={owner.pid})"
    )
    return result


def check_disk_space(
    directories: Iterable[Path],
    *,
    minimum: int = MIN_FREE_BYTES,
) -> ValidationResult:
    """Require at least *minimum* free bytes on the filesystem of each directory."""
    result = ValidationResult()
    for directory in directories:
        anchor = _nearest_existing(directory)
        try:
            usage = shutil.disk_usage(anchor)
        except OSError as exc:
            result.warn(f"Unable to determine free space for {directory}: {exc}")
            continue
        if usage.free < minimum:
            result.error(
                f"Insufficient disk space for {directory}: {_format_bytes(usage.free)} "
                f"available, {_format_bytes(minimum)} required"
            )
    return result


def check_encryption_key(path: Path, *, repair: bool = True) -> ValidationResult:
    """Ensure the encryption key file can be created or read."""
    result = ValidationResult()
    if not str(path):
        result.error("encryption key file path is required when encryption is enabled")
        return result
    if not path.is_absolute():
        result.error(f"encryption key file must be an absolute path: {path}")
        return result
    if not path.parent.exists() and not repair:
        parent = _nearest_existing(path.parent)
        if os.access(parent, os.W_OK | os.X_OK):
            result.warn(
                f"encryption key directory {path.parent} does not exist and would be created"
            )
        else:
            result.error(
                f"Cannot create encryption key directory {path.parent}: {parent} is not writable"
            )
        return result
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        result.error(f"Failed to create encryption key directory {path.parent}: {exc}")
        return result

    if not path.exists():
        scratch = path.with_name(path.name + ".test")
        try:
            fd = os.open(scratch, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
            os.close(fd)
        except OSError as exc:
            result.error(f"Cannot create encryption key file at {path}: {exc}")
            return result
        scratch.unlink(missing_ok=True)
        LOGGER.info("Encryption key %s does not exist yet; location is writable", path)
        return result

    try:
        with path.open("rb") as handle:
            handle.read(1)
    except OSError as exc:
        result.error(f"Encryption key file {path} is not readable: {exc}")
    return result


def needs_permission_repair(path: Path) -> bool:
    """Return ``True`` when *path* is root-owned and not group/world writable."""
    info = path.stat()
    mode = stat.S_IMODE(info.st_mode)
    if mode & (stat.S_IWGRP | stat.S_IWOTH):
        return False
    return info.st_uid == 0


def check_directory_permissions(
    directories: Iterable[Path],
    account: ServiceAccount,
    *,
    repair: bool = True,
) -> ValidationResult:
    """Hand root-owned target directories over to the service account."""
    result = ValidationResult()
    for directory in directories:
        try:
            needed = needs_permission_repair(directory)
        except OSError as exc:
            result.warn(f"Unable to inspect permissions of {directory}: {exc}")
            continue
        if not needed:
            continue
        if not repair:
            result.warn(
                f"{directory} would be handed to {account.name} "
                f"({account.uid}:{account.gid}) with mode {REPAIRED_DIRECTORY_MODE:o}"
            )
            continue
        LOGGER.info("Fixing ownership of %s for %s", directory, account.name)
        try:
            os.chmod(directory, REPAIRED_DIRECTORY_MODE)
            os.chown(directory, account.uid, account.gid)
        except OSError as exc:
            result.warn(
                f"Failed to hand {directory} to {account.name} "
                f"({account.uid}:{account.gid}): {exc}"
            )
    return result


def validate_configuration(
    desired: DesiredConfiguration,
    *,
    inspector: PortInspector,
    account: ServiceAccount,
    min_free_bytes: int = MIN_FREE_BYTES,
    port_min: int = PORT_MIN,
    port_max: int = PORT_MAX,
    repair: bool = True,
) -> ValidationResult:
    """Run every pre-flight check for *desired* and collect the findings.

    With ``repair=False`` nothing is created, chmod-ed or chown-ed; the
    changes a real run would make are reported as warnings instead.
    """
    result = ValidationResult()
    labelled = (
        ("data-dir", desired.data_dir),
        ("log-dir", desired.log_dir),
        ("binlog-dir", desired.binlog_dir),
    )
    result.merge(check_directories(labelled, repair=repair))
    result.merge(check_port(desired.port, inspector, port_min=port_min, port_max=port_max))
    result.merge(check_disk_space(desired.managed_dirs(), minimum=min_free_bytes))
    if desired.encryption_enabled:
        result.merge(check_encryption_key(desired.encryption_key_file, repair=repair))
    existing = [path for path in desired.managed_dirs() if path.is_absolute() and path.exists()]
    result.merge(check_directory_permissions(existing, account, repair=repair))
    return result


def _nearest_existing(path: Path) -> Path:
    current = path
    while not current.exists() and current.parent != current:
        current = current.parent
    return current


def _format_bytes(value: int) -> str:
    amount = float(value)
    for unit in ("B", "KiB", "MiB", "GiB", "TiB"):
        if amount < 1024 or unit == "TiB":
            return f"{amount:.1f} {unit}" if unit != "B" else f"{int(amount)} B"
        amount /= 1024
    return f"{value} B"  # pragma: no cover


__all__ = [
    "MIN_FREE_BYTES",
    "ValidationError",
    "ValidationResult",
    "check_directories",
    "check_directory_permissions",
    "check_disk_space",
    "check_encryption_key",
    "check_port",
    "is_engine_process",
    "needs_permission_repair",
    "validate_configuration",
]
