"""Data structures describing directory migrations and their outcomes."""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path


class MigrationType(str, Enum):
    """Kind of directory being relocated."""

    DATA = "data"
    BINLOGS = "binlogs"
    LOGS = "logs"


class MigrationState(str, Enum):
    """Terminal state of a single migration."""

    DONE = "done"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class DataMigration:
    """One ``source -> destination`` relocation.

    Critical migrations abort the run when they fail; the others only warn.
    ``log_only`` restricts the copy to log files, pruning database directories.
    """

    type: MigrationType
    source: Path
    destination: Path
    critical: bool = False
    log_only: bool = False

    def describe(self) -> str:
        """Return ``type: source -> destination`` for display."""
        label = self.type.value
        if self.critical:
            label += " (critical)"
        if self.log_only:
            label += " (log files only)"
        return f"{label}: {self.source} -> {self.destination}"


@dataclass(slots=True)
class CopyResult:
    """Result of copying one entry.

    Content failures raise; metadata (mode/ownership) failures are reported
    through ``metadata_warnings`` without failing the copy.
    """

    path: Path
    bytes_copied: int = 0
    metadata_warnings: list[str] = field(default_factory=list)


@dataclass(slots=True)
class MigrationOutcome:
    """Summary of a finished migration."""

    migration: DataMigration
    state: MigrationState
    message: str = ""
    warnings: list[str] = field(default_factory=list)
    files_copied: int = 0
    directories_created: int = 0
    symlinks_created: int = 0
    bytes_copied: int = 0

    @property
    def failed(self) -> bool:
        """Return ``True`` when the migration ended in :attr:`MigrationState.FAILED`."""
        return self.state is MigrationState.FAILED

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "type": self.migration.type.value,
            "source": str(self.migration.source),
            "destination": str(self.migration.destination),
            "critical": self.migration.critical,
            "log_only": self.migration.log_only,
            "state": self.state.value,
            "message": self.message,
            "warnings": list(self.warnings),
            "files_copied": self.files_copied,
            "directories_created": self.directories_created,
            "symlinks_created": self.symlinks_created,
            "bytes_copied": self.bytes_copied,
        }


class MigrationError(RuntimeError):
    """Raised when a critical migration fails."""

    def __init__(self, message: str, outcome: MigrationOutcome | None = None) -> None:
        super().__init__(message)
        self.outcome = outcome


__all__ = [
    "CopyResult",
    "DataMigration",
    "MigrationError",
    "MigrationOutcome",
    "MigrationState",
    "MigrationType",
]
