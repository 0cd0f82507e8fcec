"""Discovery of the MariaDB installation currently present on the host."""
from __future__ import annotations

import logging
import os
import re
import shutil
import subprocess
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field, fields
from pathlib import Path

from .providers.systemd import SystemdError, SystemdProvider

LOGGER = logging.getLogger(__name__)

BINARY_NAMES = ("mariadb", "mysql", "mysqld", "mariadbd")
STANDARD_BINARY_PATHS = (
    Path("/usr/bin/mariadb"),
    Path("/usr/bin/mysql"),
    Path("/usr/sbin/mysqld"),
    Path("/usr/sbin/mariadbd"),
    Path("/usr/local/bin/mariadb"),
    Path("/usr/local/bin/mysql"),
)
CONFIG_CANDIDATES = (
    Path("/etc/my.cnf"),
    Path("/etc/mysql/my.cnf"),
    Path("/etc/my.cnf.d/server.cnf"),
    Path("/etc/my.cnf.d/50-server.cnf"),
    Path("/etc/my.cnf.d/mariadb-server.cnf"),
    Path("/etc/mysql/mariadb.conf.d/50-server.cnf"),
    Path("/etc/mysql/conf.d/mysql.cnf"),
    Path("/usr/local/etc/my.cnf"),
)
SERVICE_CANDIDATES = ("mariadb", "mysql", "mysqld")
SERVER_SECTIONS = frozenset({"mysqld", "mariadb", "server", "mariadbd"})

_VERSION_PATTERNS = (
    re.compile(r"mariadb\s+Ver\s+(\d+\.\d+\.\d+)", re.IGNORECASE),
    re.compile(r"MariaDB\s+(\d+\.\d+\.\d+)", re.IGNORECASE),
    re.compile(r"mysql\s+Ver\s+(\d+\.\d+\.\d+).*MariaDB", re.IGNORECASE),
    re.compile(r"(\d+\.\d+\.\d+)-MariaDB", re.IGNORECASE),
)
_ON_VALUES = {"on", "1", "true", "yes", "force"}

# Compiled-in server defaults; option files override them.
STOCK_SERVER_OPTIONS: dict[str, str] = {
    "datadir": "/var/lib/mysql",
    "port": "3306",
    "log_bin": "/var/lib/mysqlbinlogs/mysql-bin",
    "log_error": "/var/log/mysql/mysql_error.log",
}


@dataclass(frozen=True, slots=True)
class InstallationSnapshot:
    """Point-in-time description of the MariaDB installation."""

    installed: bool = False
    binary_path: Path | None = None
    version: str | None = None
    data_dir: Path | None = None
    log_dir: Path | None = None
    binlog_dir: Path | None = None
    socket_path: Path | None = None
    port: int | None = None
    server_id: int | None = None
    encryption_enabled: bool = False
    encryption_key_file: Path | None = None
    buffer_pool_size: str | None = None
    buffer_pool_instances: int | None = None
    config_paths: tuple[Path, ...] = ()
    service_name: str | None = None
    running: bool = False
    enabled: bool = False

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        data: dict[str, object] = {}
        for item in fields(self):
            value = getattr(self, item.name)
            if isinstance(value, Path):
                value = str(value)
            elif isinstance(value, tuple):
                value = [str(entry) for entry in value]
            data[item.name] = value
        return data


@dataclass(slots=True)
class ServerSettings:
    """Values read from the server sections of one or more option files."""

    data_dir: Path | None = None
    log_dir: Path | None = None
    binlog_dir: Path | None = None
    socket_path: Path | None = None
    port: int | None = None
    server_id: int | None = None
    encryption_enabled: bool = False
    encryption_key_file: Path | None = None
    buffer_pool_size: str | None = None
    buffer_pool_instances: int | None = None
    options: dict[str, str] = field(default_factory=dict)


def parse_server_options(text: str) -> dict[str, str]:
    """Return ``key -> value`` pairs from the server sections of *text*.

    Dashes in keys are normalised to underscores; later assignments win.
    """
    options: dict[str, str] = {}
    in_server_section = False
    for raw_line in text.splitlines():
        line = raw_line.strip()
        if not line or line.startswith(("#", ";")):
            continue
        if line.startswith("["):
            section = line.strip("[]").strip().lower()
            in_server_section = section in SERVER_SECTIONS
            continue
        if not in_server_section or "=" not in line:
            continue
        key, _, value = line.partition("=")
        value = value.split("#", 1)[0].strip().strip("'\"")
        options[key.strip().replace("-", "_").lower()] = value
    return options


def settings_from_options(
    options: Mapping[str, str],
    *,
    seed: Mapping[str, str] | None = None,
) -> ServerSettings:
    """Interpret raw option values as :class:`ServerSettings`.

    *seed* supplies values for options the files do not set.
    """
    options = {**(seed or {}), **options}
    settings = ServerSettings(options=dict(options))
    if options.get("datadir"):
        settings.data_dir = Path(options["datadir"])
    if options.get("socket"):
        settings.socket_path = Path(options["socket"])
    settings.port = _parse_int(options.get("port"))
    settings.server_id = _parse_int(options.get("server_id"))
    settings.encryption_enabled = (
        options.get("innodb_encrypt_tables", "").strip().lower() in _ON_VALUES
    )
    if options.get("file_key_management_filename"):
        settings.encryption_key_file = Path(options["file_key_management_filename"])
    if options.get("innodb_buffer_pool_size"):
        settings.buffer_pool_size = options["innodb_buffer_pool_size"]
    settings.buffer_pool_instances = _parse_int(options.get("innodb_buffer_pool_instances"))

    binlog = options.get("log_bin")
    if binlog:
        settings.binlog_dir = _directory_of(binlog, settings.data_dir)
    for key in ("log_error", "general_log_file", "slow_query_log_file"):
        value = options.get(key)
        if value:
            settings.log_dir = _directory_of(value, settings.data_dir)
    return settings


def read_server_settings(
    paths: Iterable[Path],
    *,
    seed: Mapping[str, str] | None = None,
) -> ServerSettings:
    """Merge server options from *paths* (later files win) into settings."""
    merged: dict[str, str] = {}
    for path in paths:
        try:
            text = Path(path).read_text(encoding="utf-8")
        except OSError as exc:
            LOGGER.debug("Skipping unreadable config %s: %s", path, exc)
            continue
        merged.update(parse_server_options(text))
    return settings_from_options(merged, seed=seed)


def parse_version(output: str) -> str | None:
    """Extract the MariaDB version from ``--version`` output."""
    for pattern in _VERSION_PATTERNS:
        match = pattern.search(output)
        if match:
            return match.group(1)
    return None


def find_binary(
    which: Callable[[str], str | None] = shutil.which,
    standard_paths: Sequence[Path] = STANDARD_BINARY_PATHS,
) -> Path | None:
    """Return the first MariaDB client/server binary found."""
    for name in BINARY_NAMES:
        located = which(name)
        if located:
            return Path(located)
    for candidate in standard_paths:
        if candidate.exists():
            return candidate
    return None


def detect_version(binary: Path) -> str | None:
    """Run ``binary --version`` and parse the result."""
    try:
        result = subprocess.run(  # noqa: S603
            [str(binary), "--version"],
            capture_output=True,
            text=True,
            check=False,
        )
    except OSError as exc:
        LOGGER.debug("Unable to run %s --version: %s", binary, exc)
        return None
    return parse_version(f"{result.stdout}\n{result.stderr}")


def detect_service(
    systemd: SystemdProvider,
    candidates: Sequence[str] = SERVICE_CANDIDATES,
) -> tuple[str | None, bool, bool]:
    """Return ``(service_name, running, enabled)`` for the first known unit."""
    for name in candidates:
        try:
            if systemd.is_active(name):
                return name, True, systemd.is_enabled(name)
            if systemd.exists(name):
                return name, False, systemd.is_enabled(name)
        except SystemdError as exc:
            LOGGER.debug("Service query for %s failed: %s", name, exc)
            return None, False, False
    return None, False, False


def discover_installation(
    systemd: SystemdProvider,
    *,
    config_candidates: Sequence[Path] = CONFIG_CANDIDATES,
    service_candidates: Sequence[str] = SERVICE_CANDIDATES,
    which: Callable[[str], str | None] = shutil.which,
    binary_paths: Sequence[Path] = STANDARD_BINARY_PATHS,
) -> InstallationSnapshot:
    """Inspect the host and return an :class:`InstallationSnapshot`."""
    binary = find_binary(which, binary_paths)
    version = detect_version(binary) if binary is not None else None
    config_paths = tuple(path for path in config_candidates if path.is_file())
    settings = read_server_settings(config_paths, seed=STOCK_SERVER_OPTIONS)
    service_name, running, enabled = detect_service(systemd, service_candidates)

    snapshot = InstallationSnapshot(
        installed=binary is not None,
        binary_path=binary,
        version=version,
        data_dir=settings.data_dir,
        log_dir=settings.log_dir,
        binlog_dir=settings.binlog_dir,
        socket_path=settings.socket_path,
        port=settings.port,
        server_id=settings.server_id,
        encryption_enabled=settings.encryption_enabled,
        encryption_key_file=settings.encryption_key_file,
        buffer_pool_size=settings.buffer_pool_size,
        buffer_pool_instances=settings.buffer_pool_instances,
        config_paths=config_paths,
        service_name=service_name,
        running=running,
        enabled=enabled,
    )
    LOGGER.info(
        "Discovered installation: installed=%s version=%s service=%s running=%s configs=%s",
        snapshot.installed,
        snapshot.version,
        snapshot.service_name,
        snapshot.running,
        ", ".join(str(path) for path in config_paths) or "none",
    )
    return snapshot


def detect_network_filesystem(
    path: Path,
    mounts_file: Path = Path("/proc/mounts"),
) -> bool:
    """Return ``True`` when *path* lives on an NFS/CIFS/SMB mount."""
    try:
        lines = mounts_file.read_text(encoding="utf-8").splitlines()
    except OSError:
        return False
    target = os.path.normpath(str(path))
    best_mount = ""
    best_type = ""
    for line in lines:
        parts = line.split()
        if len(parts) < 3:
            continue
        mount_point, fs_type = parts[1], parts[2]
        prefix = mount_point.rstrip("/") + "/"
        if target == mount_point or target.startswith(prefix) or mount_point == "/":
            if len(mount_point) >= len(best_mount):
                best_mount, best_type = mount_point, fs_type
    return best_type.lower().startswith(("nfs", "cifs", "smb"))


def _directory_of(value: str, data_dir: Path | None) -> Path | None:
    if "/" in value:
        return Path(value).parent
    return data_dir


def _parse_int(value: str | None) -> int | None:
    if value is None:
        return None
    match = re.match(r"\s*(\d+)", value)
    return int(match.group(1)) if match else None


__all__ = [
    "CONFIG_CANDIDATES",
    "InstallationSnapshot",
    "STOCK_SERVER_OPTIONS",
    "ServerSettings",
    "detect_network_filesystem",
    "detect_service",
    "detect_version",
    "discover_installation",
    "find_binary",
    "parse_server_options",
    "parse_version",
    "read_server_settings",
    "settings_from_options",
]
