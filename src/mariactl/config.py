"""Configuration loader for mariactl.

Configuration values are merged from several sources, later sources winning:

1. Built-in defaults.
2. ``/etc/mariactl/config.yml`` (or an override path).
3. Environment variables prefixed with ``MARIACTL_``.
4. Explicit overrides supplied programmatically (CLI flags).

Environment keys use double underscores to express nesting, e.g.::

    export MARIACTL_MARIADB__PORT=3307
    export MARIACTL_MARIADB__DATA_DIR=/data/mysql

Values are coerced via PyYAML's ``safe_load`` so that booleans and numbers are
parsed naturally. The resulting configuration is exposed as immutable
``dataclasses``. :class:`DesiredConfiguration` is the mutable per-run target
state derived from the ``mariadb`` section plus CLI flags.
"""
from __future__ import annotations

import os
import tempfile
from collections.abc import Iterable, Mapping, MutableMapping
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import cast

try:  # PyYAML is a runtime dependency (declared in pyproject.toml).
    import yaml
except Exception as exc:  # pragma: no cover
    raise RuntimeError(
        "PyYAML is required to load mariactl configuration. Install with "
        "`pip install mariactl` or ensure PyYAML>=6.0 is available."
    ) from exc


ENV_PREFIX = "MARIACTL_"
CONFIG_ENV_VAR = f"{ENV_PREFIX}CONFIG_FILE"
RESERVED_ENV_KEYS = {CONFIG_ENV_VAR}

DEFAULT_BUFFER_POOL_SIZE = "128M"
DEFAULT_BUFFER_POOL_INSTANCES = 8

# Keys rewritten into the ``mariadb`` section after a successful run.
PERSISTED_MARIADB_KEYS = (
    "server_id",
    "port",
    "data_dir",
    "log_dir",
    "binlog_dir",
    "config_dir",
    "encryption_key_file",
    "innodb_encrypt_tables",
)


class ConfigError(RuntimeError):
    """Raised when configuration parsing fails."""


@dataclass(frozen=True)
class MariaDBConfig:
    """Default target values for the managed MariaDB server."""

    server_id: int = 1
    port: int = 3306
    data_dir: Path = Path("/var/lib/mysql")
    log_dir: Path = Path("/var/log/mysql")
    binlog_dir: Path = Path("/var/lib/mysqlbinlogs")
    config_dir: Path = Path("/etc/my.cnf.d")
    encryption_key_file: Path = Path("/var/lib/mysql/encryption/keyfile")
    innodb_encrypt_tables: bool = False
    innodb_buffer_pool_size: str = DEFAULT_BUFFER_POOL_SIZE
    innodb_buffer_pool_instances: int = DEFAULT_BUFFER_POOL_INSTANCES
    service_user: str = "mysql"
    service_group: str = "mysql"
    fallback_uid: int = 992
    fallback_gid: int = 991

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "server_id": self.server_id,
            "port": self.port,
            "data_dir": str(self.data_dir),
            "log_dir": str(self.log_dir),
            "binlog_dir": str(self.binlog_dir),
            "config_dir": str(self.config_dir),
            "encryption_key_file": str(self.encryption_key_file),
            "innodb_encrypt_tables": self.innodb_encrypt_tables,
            "innodb_buffer_pool_size": self.innodb_buffer_pool_size,
            "innodb_buffer_pool_instances": self.innodb_buffer_pool_instances,
            "service_user": self.service_user,
            "service_group": self.service_group,
            "fallback_uid": self.fallback_uid,
            "fallback_gid": self.fallback_gid,
        }


@dataclass(frozen=True)
class TemplatesConfig:
    """Location of the server configuration template."""

    server_config: Path = Path("/etc/mariactl/templates/server.cnf")

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"server_config": str(self.server_config)}


@dataclass(frozen=True)
class BackupConfig:
    """Where copies of the active server configuration are kept."""

    root: Path = Path("/var/lib/mariactl/backups")
    enabled: bool = True

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"root": str(self.root), "enabled": self.enabled}


@dataclass(frozen=True)
class ValidationConfig:
    """Thresholds applied by the pre-flight validation gate."""

    min_free_bytes: int = 1024**3
    port_min: int = 1024
    port_max: int = 65535

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "min_free_bytes": self.min_free_bytes,
            "port_min": self.port_min,
            "port_max": self.port_max,
        }


@dataclass(frozen=True)
class SystemdConfig:
    """Systemd integration configuration values."""

    systemctl_bin: str = "systemctl"
    service_candidates: tuple[str, ...] = ("mariadb", "mysql", "mysqld")
    restart_attempts: int = 3
    restart_backoff: float = 2.0

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "systemctl_bin": self.systemctl_bin,
            "service_candidates": list(self.service_candidates),
            "restart_attempts": self.restart_attempts,
            "restart_backoff": self.restart_backoff,
        }


@dataclass(frozen=True)
class AppConfig:
    """Resolved configuration values for mariactl."""

    config_file: Path
    logs_dir: Path
    templates: TemplatesConfig
    backups: BackupConfig
    mariadb: MariaDBConfig
    validation: ValidationConfig
    systemd: SystemdConfig

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-serialisable representation of the config."""
        return {
            "config_file": str(self.config_file),
            "logs_dir": str(self.logs_dir),
            "templates": self.templates.to_dict(),
            "backups": self.backups.to_dict(),
            "mariadb": self.mariadb.to_dict(),
            "validation": self.validation.to_dict(),
            "systemd": self.systemd.to_dict(),
        }


@dataclass(slots=True)
class DesiredConfiguration:
    """Mutable target state for one configuration run.

    ``explicit`` holds the names of fields the operator supplied through CLI
    flags or environment variables. Interactive gathering only prompts for
    the remaining fields and the auto-tuner never overrides explicit values.
    """

    server_id: int
    port: int
    data_dir: Path
    log_dir: Path
    binlog_dir: Path
    config_dir: Path
    encryption_enabled: bool
    encryption_key_file: Path
    buffer_pool_size: str = DEFAULT_BUFFER_POOL_SIZE
    buffer_pool_instances: int = DEFAULT_BUFFER_POOL_INSTANCES
    auto_tune: bool = True
    backup_dir: Path = Path("/var/lib/mariactl/backups")
    backup_current_config: bool = True
    migrate_data: bool = True
    verify_migration: bool = True
    non_interactive: bool = False
    explicit: set[str] = field(default_factory=set)

    def is_explicit(self, name: str) -> bool:
        """Return ``True`` when *name* was supplied by the operator."""
        return name in self.explicit

    def managed_dirs(self) -> tuple[Path, Path, Path]:
        """Return the data, log and binlog directories."""
        return (self.data_dir, self.log_dir, self.binlog_dir)

    def persisted_values(self) -> dict[str, object]:
        """Return the values written back into the ``mariadb`` config section."""
        return {
            "server_id": self.server_id,
            "port": self.port,
            "data_dir": str(self.data_dir),
            "log_dir": str(self.log_dir),
            "binlog_dir": str(self.binlog_dir),
            "config_dir": str(self.config_dir),
            "encryption_key_file": str(self.encryption_key_file),
            "innodb_encrypt_tables": self.encryption_enabled,
        }

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        data: dict[str, object] = {}
        for item in fields(self):
            value = getattr(self, item.name)
            if isinstance(value, Path):
                value = str(value)
            elif isinstance(value, set):
                value = sorted(value)
            data[item.name] = value
        return data


# Maps DesiredConfiguration fields onto keys of the ``mariadb`` section.
DESIRED_FIELD_TO_MARIADB_KEY = {
    "server_id": "server_id",
    "port": "port",
    "data_dir": "data_dir",
    "log_dir": "log_dir",
    "binlog_dir": "binlog_dir",
    "config_dir": "config_dir",
    "encryption_enabled": "innodb_encrypt_tables",
    "encryption_key_file": "encryption_key_file",
    "buffer_pool_size": "innodb_buffer_pool_size",
    "buffer_pool_instances": "innodb_buffer_pool_instances",
}


DEFAULTS: dict[str, object] = {
    "config_file": "/etc/mariactl/config.yml",
    "logs_dir": "/var/log/mariactl",
    "templates": {
        "server_config": "/etc/mariactl/templates/server.cnf",
    },
    "backups": {
        "root": "/var/lib/mariactl/backups",
        "enabled": True,
    },
    "mariadb": MariaDBConfig().to_dict(),
    "validation": ValidationConfig().to_dict(),
    "systemd": SystemdConfig().to_dict(),
}

ALLOWED_TOP_LEVEL_KEYS = set(DEFAULTS.keys())
ALLOWED_SECTION_KEYS: dict[str, set[str]] = {
    "templates": {"server_config"},
    "backups": {"root", "enabled"},
    "mariadb": set(MariaDBConfig().to_dict().keys()),
    "validation": set(ValidationConfig().to_dict().keys()),
    "systemd": set(SystemdConfig().to_dict().keys()),
}


def load_config(
    config_file: str | os.PathLike[str] | None = None,
    *,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, object] | None = None,
) -> AppConfig:
    """Load and merge configuration sources into an :class:`AppConfig`."""
    merged: dict[str, object] = _deep_copy(DEFAULTS)
    resolved_env = dict(os.environ if env is None else env)

    config_default = _expect_str(merged["config_file"], "config_file")
    config_path = _determine_config_path(config_default, config_file, resolved_env)

    file_values = _load_yaml_file(config_path)
    if file_values:
        _deep_merge(merged, file_values)

    env_values = _build_env_overrides(resolved_env)
    if env_values:
        _deep_merge(merged, env_values)

    if overrides:
        _deep_merge(merged, dict(overrides))

    merged["config_file"] = str(config_path)

    _validate_structure(merged)

    return _build_app_config(merged)


def env_mariadb_keys(env: Mapping[str, str] | None = None) -> set[str]:
    """Return ``mariadb`` section keys supplied through environment variables."""
    resolved_env = dict(os.environ if env is None else env)
    env_values = _build_env_overrides(resolved_env)
    section = env_values.get("mariadb")
    if not isinstance(section, Mapping):
        return set()
    return {str(key) for key in section}


def build_desired_configuration(
    config: AppConfig,
    *,
    flags: Mapping[str, object] | None = None,
    env_keys: Iterable[str] = (),
) -> DesiredConfiguration:
    """Create the per-run target state from *config* and CLI *flags*.

    ``flags`` uses :class:`DesiredConfiguration` field names; ``None`` values
    are treated as "not supplied". ``env_keys`` lists ``mariadb`` keys that
    came from the environment and therefore count as explicit.
    """
    mariadb = config.mariadb
    desired = DesiredConfiguration(
        server_id=mariadb.server_id,
        port=mariadb.port,
        data_dir=mariadb.data_dir,
        log_dir=mariadb.log_dir,
        binlog_dir=mariadb.binlog_dir,
        config_dir=mariadb.config_dir,
        encryption_enabled=mariadb.innodb_encrypt_tables,
        encryption_key_file=mariadb.encryption_key_file,
        buffer_pool_size=mariadb.innodb_buffer_pool_size,
        buffer_pool_instances=mariadb.innodb_buffer_pool_instances,
        backup_dir=config.backups.root,
        backup_current_config=config.backups.enabled,
    )

    env_set = set(env_keys)
    for name, key in DESIRED_FIELD_TO_MARIADB_KEY.items():
        if key in env_set:
            desired.explicit.add(name)

    known = {item.name for item in fields(DesiredConfiguration)} - {"explicit"}
    for name, value in (flags or {}).items():
        if value is None:
            continue
        if name not in known:
            raise ConfigError(f"Unknown configuration flag: {name}.")
        current = getattr(desired, name)
        if isinstance(current, Path):
            value = _to_path(value)
        elif isinstance(current, bool):
            value = bool(value)
        elif isinstance(current, int):
            value = _expect_int(value, name, default=current)
        else:
            value = str(value)
        setattr(desired, name, value)
        if name in DESIRED_FIELD_TO_MARIADB_KEY:
            desired.explicit.add(name)
    return desired


def save_mariadb_settings(config_file: Path, updates: Mapping[str, object]) -> Path:
    """Merge *updates* into the ``mariadb`` section of *config_file* atomically.

    Other sections and keys of the file are preserved. The file and its
    parent directory are created when missing.
    """
    unknown = set(updates.keys()) - ALLOWED_SECTION_KEYS["mariadb"]
    if unknown:
        joined = ", ".join(sorted(unknown))
        raise ConfigError(f"Unknown mariadb configuration keys: {joined}.")

    existing = _load_yaml_file(config_file)
    section = _as_dict(existing.get("mariadb"), "mariadb")
    for key, value in updates.items():
        section[key] = str(value) if isinstance(value, Path) else value
    existing["mariadb"] = section

    try:
        config_file.parent.mkdir(parents=True, exist_ok=True)
        tmp_fd, tmp_name = tempfile.mkstemp(
            dir=str(config_file.parent), prefix=f".{config_file.name}."
        )
    except OSError as exc:
        raise ConfigError(f"Unable to write config file {config_file}: {exc}") from exc
    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(tmp_fd, "w", encoding="utf-8") as handle:
            yaml.safe_dump(existing, handle, sort_keys=False)
        os.replace(tmp_path, config_file)
        os.chmod(config_file, 0o640)
    except OSError as exc:
        raise ConfigError(f"Unable to write config file {config_file}: {exc}") from exc
    finally:
        tmp_path.unlink(missing_ok=True)
    return config_file


def _determine_config_path(
    default_path: str,
    cli_override: str | os.PathLike[str] | None,
    env: Mapping[str, str],
) -> Path:
    if cli_override:
        return Path(cli_override)
    if CONFIG_ENV_VAR in env:
        return Path(env[CONFIG_ENV_VAR])
    return Path(default_path)


def _load_yaml_file(path: Path) -> dict[str, object]:
    if not path.exists():
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:  # pragma: no cover - PyYAML owns detailed error
        raise ConfigError(f"Failed to parse config file {path}: {exc}") from exc
    except OSError as exc:
        raise ConfigError(f"Unable to read config file {path}: {exc}") from exc
    if not isinstance(data, Mapping):
        raise ConfigError(f"Config file {path} must contain a mapping at the top level.")
    return _as_dict(data, f"file:{path}")


def _validate_structure(raw: Mapping[str, object]) -> None:
    unknown_keys = set(raw.keys()) - ALLOWED_TOP_LEVEL_KEYS
    if unknown_keys:
        joined = ", ".join(sorted(unknown_keys))
        raise ConfigError(f"Unknown configuration keys: {joined}.")

    for section, allowed in ALLOWED_SECTION_KEYS.items():
        value = raw.get(section)
        if value is None:
            continue
        mapping = _as_dict(value, section)
        unknown = set(mapping.keys()) - allowed
        if unknown:
            joined = ", ".join(sorted(unknown))
            raise ConfigError(f"Unknown {section} configuration keys: {joined}.")

    mariadb = _as_dict(raw.get("mariadb"), "mariadb")
    port = mariadb.get("port")
    if port is not None:
        parsed = _expect_int(port, "mariadb.port", default=3306)
        if not 1 <= parsed <= 65535:
            raise ConfigError(f"mariadb.port must be between 1 and 65535. Got {parsed}.")
    server_id = mariadb.get("server_id")
    if server_id is not None and _expect_int(server_id, "mariadb.server_id", default=1) < 1:
        raise ConfigError("mariadb.server_id must be a positive integer.")

    systemd = _as_dict(raw.get("systemd"), "systemd")
    attempts = systemd.get("restart_attempts")
    if attempts is not None and _expect_int(attempts, "systemd.restart_attempts", default=3) < 1:
        raise ConfigError("systemd.restart_attempts must be at least 1.")


def _build_app_config(raw: Mapping[str, object]) -> AppConfig:
    templates_mapping = _as_dict(raw.get("templates"), "templates")
    templates = TemplatesConfig(
        server_config=_to_path(
            templates_mapping.get("server_config", "/etc/mariactl/templates/server.cnf")
        ),
    )

    backups_mapping = _as_dict(raw.get("backups"), "backups")
    backups = BackupConfig(
        root=_to_path(backups_mapping.get("root", "/var/lib/mariactl/backups")),
        enabled=_expect_bool(backups_mapping.get("enabled"), "backups.enabled", default=True),
    )

    defaults = MariaDBConfig()
    mariadb_mapping = _as_dict(raw.get("mariadb"), "mariadb")
    mariadb = MariaDBConfig(
        server_id=_expect_int(
            mariadb_mapping.get("server_id"), "mariadb.server_id", default=defaults.server_id
        ),
        port=_expect_int(mariadb_mapping.get("port"), "mariadb.port", default=defaults.port),
        data_dir=_to_path(mariadb_mapping.get("data_dir", defaults.data_dir)),
        log_dir=_to_path(mariadb_mapping.get("log_dir", defaults.log_dir)),
        binlog_dir=_to_path(mariadb_mapping.get("binlog_dir", defaults.binlog_dir)),
        config_dir=_to_path(mariadb_mapping.get("config_dir", defaults.config_dir)),
        encryption_key_file=_to_path(
            mariadb_mapping.get("encryption_key_file", defaults.encryption_key_file)
        ),
        innodb_encrypt_tables=_expect_bool(
            mariadb_mapping.get("innodb_encrypt_tables"),
            "mariadb.innodb_encrypt_tables",
            default=defaults.innodb_encrypt_tables,
        ),
        innodb_buffer_pool_size=str(
            mariadb_mapping.get("innodb_buffer_pool_size", defaults.innodb_buffer_pool_size)
        ),
        innodb_buffer_pool_instances=_expect_int(
            mariadb_mapping.get("innodb_buffer_pool_instances"),
            "mariadb.innodb_buffer_pool_instances",
            default=defaults.innodb_buffer_pool_instances,
        ),
        service_user=str(mariadb_mapping.get("service_user", defaults.service_user)),
        service_group=str(mariadb_mapping.get("service_group", defaults.service_group)),
        fallback_uid=_expect_int(
            mariadb_mapping.get("fallback_uid"), "mariadb.fallback_uid", default=992
        ),
        fallback_gid=_expect_int(
            mariadb_mapping.get("fallback_gid"), "mariadb.fallback_gid", default=991
        ),
    )

    validation_mapping = _as_dict(raw.get("validation"), "validation")
    validation = ValidationConfig(
        min_free_bytes=_expect_int(
            validation_mapping.get("min_free_bytes"),
            "validation.min_free_bytes",
            default=1024**3,
        ),
        port_min=_expect_int(validation_mapping.get("port_min"), "validation.port_min", default=1024),
        port_max=_expect_int(
            validation_mapping.get("port_max"), "validation.port_max", default=65535
        ),
    )

    systemd_mapping = _as_dict(raw.get("systemd"), "systemd")
    candidates_raw = systemd_mapping.get("service_candidates")
    if candidates_raw is None:
        candidates: tuple[str, ...] = SystemdConfig().service_candidates
    elif isinstance(candidates_raw, str):
        candidates = tuple(item.strip() for item in candidates_raw.split(",") if item.strip())
    elif isinstance(candidates_raw, (list, tuple)):
        candidates = tuple(str(item) for item in candidates_raw)
    else:
        raise ConfigError("systemd.service_candidates must be a list of unit names.")
    systemd = SystemdConfig(
        systemctl_bin=str(systemd_mapping.get("systemctl_bin", "systemctl")),
        service_candidates=candidates,
        restart_attempts=_expect_int(
            systemd_mapping.get("restart_attempts"), "systemd.restart_attempts", default=3
        ),
        restart_backoff=_expect_non_negative_float(
            systemd_mapping.get("restart_backoff"), "systemd.restart_backoff", default=2.0
        ),
    )

    return AppConfig(
        config_file=_to_path(raw.get("config_file")),
        logs_dir=_to_path(raw.get("logs_dir")),
        templates=templates,
        backups=backups,
        mariadb=mariadb,
        validation=validation,
        systemd=systemd,
    )


def _build_env_overrides(env: Mapping[str, str]) -> dict[str, object]:
    overrides: dict[str, object] = {}
    for key, value in env.items():
        if key in RESERVED_ENV_KEYS:
            continue
        if not key.startswith(ENV_PREFIX):
            continue
        suffix = key[len(ENV_PREFIX) :]
        path_segments = [segment.lower() for segment in suffix.split("__") if segment]
        if not path_segments:
            continue
        _assign_nested(overrides, path_segments, _coerce_value(value))
    return overrides


def _assign_nested(tree: MutableMapping[str, object], path: list[str], value: object) -> None:
    current: MutableMapping[str, object] = tree
    for segment in path[:-1]:
        existing = current.get(segment)
        if existing is None:
            new_child: MutableMapping[str, object] = {}
            current[segment] = new_child
            current = new_child
            continue
        if isinstance(existing, MutableMapping):
            current = cast(MutableMapping[str, object], existing)
            continue
        raise ConfigError(
            "Environment overrides conflict with existing scalar value at "
            f"{'.'.join(path)}"
        )
    current[path[-1]] = value


def _deep_merge(target: MutableMapping[str, object], overrides: Mapping[str, object]) -> None:
    for key, value in overrides.items():
        existing = target.get(key)
        if isinstance(existing, MutableMapping) and isinstance(value, Mapping):
            _deep_merge(existing, _as_dict(value, f"merge.{key}"))
            continue
        target[key] = value


def _deep_copy(source: Mapping[str, object]) -> dict[str, object]:
    result: dict[str, object] = {}
    for key, value in source.items():
        if isinstance(value, Mapping):
            result[key] = _deep_copy(_as_dict(value, f"copy.{key}"))
        else:
            result[key] = value
    return result


def _coerce_value(raw: str) -> object:
    raw = raw.strip()
    try:
        parsed = yaml.safe_load(raw)
    except yaml.YAMLError:  # pragma: no cover - treat as string if parsing fails
        return raw
    return parsed


def _to_path(value: object) -> Path:
    if value is None:
        raise ConfigError("Expected a filesystem path, received None.")
    if isinstance(value, Path):
        return value.expanduser()
    if isinstance(value, str):
        return Path(value).expanduser()
    raise ConfigError(f"Cannot convert value {value!r} to Path.")


def _expect_int(value: object | None, label: str, *, default: int) -> int:
    if value is None:
        return default
    if isinstance(value, bool):
        raise ConfigError(f"Expected {label} to be an integer. Got boolean {value!r}.")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value, 0)
        except ValueError as exc:
            raise ConfigError(f"Invalid integer for {label}: {value!r}.") from exc
    raise ConfigError(f"Expected {label} to be an integer. Got {type(value).__name__}.")


def _expect_bool(value: object | None, label: str, *, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"on", "1", "true", "yes"}:
            return True
        if lowered in {"off", "0", "false", "no"}:
            return False
    if isinstance(value, int):
        return bool(value)
    raise ConfigError(f"Expected {label} to be a boolean. Got {value!r}.")


def _expect_str(value: object, key: str) -> str:
    if isinstance(value, str):
        return value
    raise ConfigError(f"Expected {key} to resolve to a string. Got {value!r}.")


def _expect_non_negative_float(
    value: object | None,
    label: str,
    *,
    default: float,
) -> float:
    if value is None:
        return float(default)
    if isinstance(value, bool):
        raise ConfigError(f"Expected {label} to be a number. Got boolean {value!r}.")
    if isinstance(value, (int, float)):
        numeric = float(value)
    elif isinstance(value, str):
        try:
            numeric = float(value)
        except ValueError as exc:
            raise ConfigError(f"Invalid number for {label}: {value!r}.") from exc
    else:
        raise ConfigError(f"Expected {label} to be numeric. Got {type(value).__name__}.")
    if numeric < 0:
        raise ConfigError(f"{label} must not be negative. Got {numeric}.")
    return numeric


def _as_dict(value: object | None, label: str) -> dict[str, object]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ConfigError(f"Expected {label} to be a mapping. Got {type(value).__name__}.")
    result: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            raise ConfigError(f"Mapping {label} must use string keys. Got {key!r}.")
        result[key] = item
    return result


__all__ = [
    "AppConfig",
    "BackupConfig",
    "ConfigError",
    "DEFAULT_BUFFER_POOL_INSTANCES",
    "DEFAULT_BUFFER_POOL_SIZE",
    "DesiredConfiguration",
    "MariaDBConfig",
    "PERSISTED_MARIADB_KEYS",
    "SystemdConfig",
    "TemplatesConfig",
    "ValidationConfig",
    "build_desired_configuration",
    "env_mariadb_keys",
    "load_config",
    "save_mariadb_settings",
]
