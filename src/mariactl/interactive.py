"""Fill in configuration values the operator did not pass on the command line."""
from __future__ import annotations

import logging
import os
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import typer

from .config import DesiredConfiguration
from .discovery import InstallationSnapshot
from .templates import ConfigTemplate

LOGGER = logging.getLogger(__name__)

PromptFn = Callable[..., Any]

# (field, prompt label) in the order the operator is asked.
PROMPTED_FIELDS: tuple[tuple[str, str], ...] = (
    ("server_id", "Server ID"),
    ("port", "Port"),
    ("data_dir", "Data directory"),
    ("log_dir", "Log directory"),
    ("binlog_dir", "Binlog directory"),
    ("encryption_enabled", "Enable InnoDB table encryption"),
    ("encryption_key_file", "Encryption key file"),
)

_TRUE_VALUES = {"on", "1", "true", "yes"}
_FALSE_VALUES = {"off", "0", "false", "no"}


@dataclass(slots=True)
class DefaultResolver:
    """Pick a default per field: installation, then template, then app config."""

    snapshot: InstallationSnapshot
    template: ConfigTemplate | None
    fallback: DesiredConfiguration

    def resolve(self, name: str) -> Any:
        """Return the default for DesiredConfiguration field *name*."""
        for source in (self._from_installation, self._from_template):
            value = source(name)
            if value is not None:
                return value
        return getattr(self.fallback, name)

    def _from_installation(self, name: str) -> Any:
        snapshot = self.snapshot
        if name == "encryption_enabled":
            return snapshot.encryption_enabled if snapshot.installed else None
        mapping = {
            "server_id": snapshot.server_id,
            "port": snapshot.port,
            "data_dir": snapshot.data_dir,
            "log_dir": snapshot.log_dir,
            "binlog_dir": snapshot.binlog_dir,
            "encryption_key_file": snapshot.encryption_key_file,
        }
        return mapping.get(name)

    def _from_template(self, name: str) -> Any:
        if self.template is None:
            return None
        defaults = self.template.defaults
        if name == "server_id":
            return _as_int(defaults.get("server_id"))
        if name == "port":
            return _as_int(defaults.get("port"))
        if name == "data_dir":
            return _as_path(defaults.get("datadir"))
        if name == "log_dir":
            return _parent_dir(defaults.get("log_error"))
        if name == "binlog_dir":
            return _parent_dir(defaults.get("log_bin"))
        if name == "encryption_enabled":
            raw = defaults.get("innodb_encrypt_tables", defaults.get("innodb-encrypt-tables"))
            return _as_bool(raw)
        if name == "encryption_key_file":
            return _as_path(defaults.get("file_key_management_filename"))
        return None


def gather_values(
    desired: DesiredConfiguration,
    resolver: DefaultResolver,
    *,
    prompt: PromptFn = typer.prompt,
    confirm: PromptFn = typer.confirm,
) -> list[str]:
    """Populate every non-explicit field of *desired*.

    In non-interactive mode the resolved defaults are applied silently.
    Returns the names of fields that were filled in.
    """
    filled: list[str] = []
    for name, label in PROMPTED_FIELDS:
        if desired.is_explicit(name):
            continue
        if name == "encryption_key_file" and not desired.encryption_enabled:
            continue
        default = resolver.resolve(name)
        if desired.non_interactive:
            value = default
        elif name == "encryption_enabled":
            value = confirm(label, default=bool(default))
        elif name in {"server_id", "port"}:
            value = prompt(label, default=int(default), type=int)
        else:
            value = Path(str(prompt(label, default=str(default)))).expanduser()
        setattr(desired, name, value)
        filled.append(name)
        LOGGER.debug("Gathered %s=%s", name, value)
    return filled


def _as_int(value: str | None) -> int | None:
    if value is None:
        return None
    try:
        return int(str(value).strip())
    except ValueError:
        return None


def _as_path(value: str | None) -> Path | None:
    if not value:
        return None
    return Path(value)


def _parent_dir(value: str | None) -> Path | None:
    if not value or "/" not in value:
        return None
    parent = os.path.dirname(value)
    return Path(parent) if parent else None


def _as_bool(value: str | None) -> bool | None:
    if value is None:
        return None
    lowered = value.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    return None


__all__ = ["DefaultResolver", "PROMPTED_FIELDS", "gather_values"]
