"""Directory migration engine for relocating MariaDB data, logs and binlogs."""
from __future__ import annotations

from .engine import MigrationEngine, copy_directory, copy_symlink, verify_markers
from .models import (
    CopyResult,
    DataMigration,
    MigrationError,
    MigrationOutcome,
    MigrationState,
    MigrationType,
)
from .planner import plan_migrations

__all__ = [
    "CopyResult",
    "DataMigration",
    "MigrationEngine",
    "MigrationError",
    "MigrationOutcome",
    "MigrationState",
    "MigrationType",
    "copy_directory",
    "copy_symlink",
    "plan_migrations",
    "verify_markers",
]
