"""Placeholder-based rendering of the MariaDB server configuration file.

Templates are plain ``key = value`` files. A value written as ``{{NAME}}`` is a
placeholder filled at render time; any other value is a template default::

    [mysqld]
    server_id = {{SERVER_ID}}
    port = {{PORT}}
    character-set-server = utf8mb4

Placeholders are resolved from caller supplied values (looked up by key,
then by placeholder name) and fall back to template defaults, which are
themselves completed from :data:`BUILTIN_DEFAULTS` for keys the template omits.
"""
from __future__ import annotations

import logging
import os
import re
import shutil
import tempfile
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

LOGGER = logging.getLogger(__name__)

STANDARD_CONFIG_PATHS: tuple[Path, ...] = (
    Path("/etc/my.cnf.d/50-server.cnf"),
    Path("/etc/my.cnf.d/server.cnf"),
    Path("/etc/my.cnf"),
    Path("/etc/mysql/my.cnf"),
)
DEFAULT_TARGET_PATH = STANDARD_CONFIG_PATHS[0]
BACKUP_PREFIX = "mariadb-config-backup-"
BACKUP_SUFFIX = ".cnf"

BUILTIN_DEFAULTS: dict[str, str] = {
    "server_id": "1",
    "file_key_management_encryption_algorithm": "AES_CTR",
    "file_key_management_filename": "/var/lib/mysql/encryption/keyfile",
    "innodb-encrypt-tables": "ON",
    "log_bin": "/var/lib/mysqlbinlogs/mysql-bin",
    "datadir": "/var/lib/mysql",
    "socket": "/var/lib/mysql/mysql.sock",
    "port": "3306",
    "innodb_buffer_pool_size": "128M",
    "innodb_data_home_dir": "/var/lib/mysql",
    "innodb_log_group_home_dir": "/var/lib/mysql",
    "log_error": "/var/lib/mysql/mysql_error.log",
    "slow_query_log_file": "/var/lib/mysql/mysql_slow.log",
    "innodb_buffer_pool_instances": "8",
}

_PLACEHOLDER_VALUE = re.compile(r"^\{\{\s*([^{}\s]+)\s*\}\}$")


class TemplateError(RuntimeError):
    """Raised when a template cannot be loaded, rendered or backed up."""


class MissingValueError(TemplateError):
    """Raised when a placeholder has neither a supplied value nor a default."""

    def __init__(self, key: str, placeholder: str) -> None:
        super().__init__(
            f"No value for placeholder {{{{{placeholder}}}}} (key '{key}') "
            "and no template default is defined."
        )
        self.key = key
        self.placeholder = placeholder


def parse_template(content: str) -> tuple[dict[str, str], dict[str, str]]:
    """Split *content* into ``(placeholders, defaults)`` keyed by config key."""
    placeholders: dict[str, str] = {}
    defaults: dict[str, str] = {}
    for raw_line in content.splitlines():
        line = raw_line.strip()
        if not line or line.startswith(("#", ";")):
            continue
        if line.startswith("[") and line.endswith("]"):
            continue
        if "=" not in line:
            continue
        key, _, value = line.partition("=")
        key = key.strip()
        value = value.strip()
        if not key:
            continue
        match = _PLACEHOLDER_VALUE.match(value)
        if match:
            placeholders[key] = match.group(1)
        else:
            defaults[key] = value
    return placeholders, defaults


def merge_builtin_defaults(defaults: dict[str, str]) -> dict[str, str]:
    """Fill *defaults* with :data:`BUILTIN_DEFAULTS` for keys it lacks."""
    for key, value in BUILTIN_DEFAULTS.items():
        defaults.setdefault(key, value)
    return defaults


@dataclass(slots=True)
class ConfigTemplate:
    """Parsed server configuration template."""

    content: str
    path: Path | None = None
    current_path: Path | None = None
    current_config: str | None = None
    placeholders: dict[str, str] = field(default_factory=dict)
    defaults: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_text(
        cls,
        content: str,
        *,
        path: Path | None = None,
        current_path: Path | None = None,
    ) -> ConfigTemplate:
        """Parse *content* and merge built-in defaults."""
        placeholders, defaults = parse_template(content)
        return cls(
            content=content,
            path=path,
            current_path=current_path,
            placeholders=placeholders,
            defaults=merge_builtin_defaults(defaults),
        )

    def default_for(self, key: str) -> str | None:
        """Return the template (or built-in) default for *key*."""
        return self.defaults.get(key)

    def render(self, values: Mapping[str, object]) -> str:
        """Return the template text with every placeholder substituted."""
        if not self.content.strip():
            raise TemplateError("Template content is empty.")

        resolved: dict[str, str] = {}
        for key, name in self.placeholders.items():
            if name in resolved:
                continue
            if key in values and values[key] is not None:
                resolved[name] = _format_value(values[key])
            elif name in values and values[name] is not None:
                resolved[name] = _format_value(values[name])
            elif key in self.defaults:
                resolved[name] = self.defaults[key]
            else:
                raise MissingValueError(key, name)

        text = self.content
        for name, value in resolved.items():
            pattern = re.compile(r"\{\{\s*" + re.escape(name) + r"\s*\}\}")
            text = pattern.sub(lambda _match, value=value: value, text)
        return text

    def backup(self, directory: Path, *, now: datetime | None = None) -> Path:
        """Copy the active configuration file into *directory*."""
        if self.current_path is None:
            raise TemplateError("No active configuration file is known; cannot back it up.")
        return backup_config(self.current_path, directory, now=now)


def load_template(
    template_path: Path,
    *,
    config_paths: Iterable[Path] = (),
    standard_paths: Iterable[Path] = STANDARD_CONFIG_PATHS,
) -> ConfigTemplate:
    """Read *template_path* and attach the active configuration file."""
    if not template_path.exists():
        raise TemplateError(
            f"Template file not found: {template_path}. Install a server template first."
        )
    try:
        content = template_path.read_text(encoding="utf-8")
    except OSError as exc:
        raise TemplateError(f"Failed to read template file {template_path}: {exc}") from exc
    if not content.strip():
        raise TemplateError(f"Template file {template_path} is empty.")

    current_path = locate_active_config(config_paths, standard_paths=standard_paths)
    template = ConfigTemplate.from_text(content, path=template_path, current_path=current_path)
    if current_path.exists():
        try:
            template.current_config = current_path.read_text(encoding="utf-8")
        except OSError as exc:
            LOGGER.warning("Unable to read active config %s: %s", current_path, exc)
    LOGGER.info(
        "Loaded template %s (%d placeholders), active config %s",
        template_path,
        len(template.placeholders),
        current_path,
    )
    return template


def locate_active_config(
    config_paths: Iterable[Path] = (),
    *,
    standard_paths: Iterable[Path] = STANDARD_CONFIG_PATHS,
) -> Path:
    """Return the configuration file that should be rewritten.

    Discovered files are preferred in standard-location order, then the first
    discovered file, then the first standard location that exists, falling
    back to the first standard location.
    """
    discovered = [Path(item) for item in config_paths]
    standard = [Path(item) for item in standard_paths]
    for candidate in standard:
        if candidate in discovered:
            return candidate
    if discovered:
        return discovered[0]
    for candidate in standard:
        if candidate.exists():
            return candidate
    return standard[0] if standard else DEFAULT_TARGET_PATH


def backup_config(source: Path, directory: Path, *, now: datetime | None = None) -> Path:
    """Copy *source* to ``directory/mariadb-config-backup-<timestamp>.cnf``."""
    if not source.is_file():
        raise TemplateError(f"Configuration file {source} does not exist; nothing to back up.")
    try:
        directory.mkdir(parents=True, exist_ok=True, mode=0o755)
    except OSError as exc:
        raise TemplateError(f"Unable to create backup directory {directory}: {exc}") from exc

    stamp = (now or datetime.now()).strftime("%Y%m%d-%H%M%S")
    destination = directory / f"{BACKUP_PREFIX}{stamp}{BACKUP_SUFFIX}"
    counter = 1
    while destination.exists():
        destination = directory / f"{BACKUP_PREFIX}{stamp}-{counter}{BACKUP_SUFFIX}"
        counter += 1

    try:
        shutil.copy2(source, destination)
    except OSError as exc:
        raise TemplateError(f"Failed to back up {source} to {destination}: {exc}") from exc
    LOGGER.info("Backed up %s to %s", source, destination)
    return destination


def write_config(path: Path, text: str, *, mode: int = 0o644) -> Path:
    """Atomically replace *path* with *text*."""
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_fd, tmp_name = tempfile.mkstemp(dir=str(path.parent), prefix=f".{path.name}.")
    except OSError as exc:
        raise TemplateError(f"Unable to write configuration file {path}: {exc}") from exc
    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(tmp_fd, "w", encoding="utf-8") as handle:
            handle.write(text)
        os.chmod(tmp_path, mode)
        os.replace(tmp_path, path)
    except OSError as exc:
        raise TemplateError(f"Unable to write configuration file {path}: {exc}") from exc
    finally:
        tmp_path.unlink(missing_ok=True)
    return path


def _format_value(value: object) -> str:
    if isinstance(value, bool):
        return "ON" if value else "OFF"
    return str(value)


__all__ = [
    "BUILTIN_DEFAULTS",
    "ConfigTemplate",
    "MissingValueError",
    "STANDARD_CONFIG_PATHS",
    "TemplateError",
    "backup_config",
    "load_template",
    "locate_active_config",
    "merge_builtin_defaults",
    "parse_template",
    "write_config",
]
