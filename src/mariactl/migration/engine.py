"""Copy MariaDB directory trees to a new location without touching the source."""
from __future__ import annotations

import logging
import os
import stat
from collections.abc import Iterator, Sequence
from dataclasses import dataclass, field
from pathlib import Path

from ..context import CancellationToken
from .models import (
    CopyResult,
    DataMigration,
    MigrationError,
    MigrationOutcome,
    MigrationState,
    MigrationType,
)
from .patterns import DATA_MARKERS, is_data_directory, is_log_file

LOGGER = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 1024 * 1024


@dataclass(slots=True)
class MigrationEngine:
    """Walks a source tree and mirrors it into an empty destination.

    The cancellation token is checked before every walked entry and after
    every copied chunk; cancelling raises
    :class:`~mariactl.context.OperationCancelled` and leaves the source intact.
    """

    token: CancellationToken = field(default_factory=CancellationToken)
    chunk_size: int = DEFAULT_CHUNK_SIZE
    verify: bool = True

    def run(self, plan: Sequence[DataMigration]) -> list[MigrationOutcome]:
        """Execute *plan* in order; a failed critical migration raises."""
        outcomes: list[MigrationOutcome] = []
        for migration in plan:
            self.token.raise_if_cancelled("data migration")
            outcome = self.migrate(migration)
            outcomes.append(outcome)
            if outcome.failed and migration.critical:
                raise MigrationError(
                    f"Critical {migration.type.value} migration failed: {outcome.message}",
                    outcome,
                )
            if outcome.failed:
                LOGGER.warning(
                    "Non-critical %s migration failed: %s",
                    migration.type.value,
                    outcome.message,
                )
        return outcomes

    def migrate(self, migration: DataMigration) -> MigrationOutcome:
        """Copy one migration unit and return its outcome."""
        source = migration.source
        destination = migration.destination
        LOGGER.info("Migrating %s", migration.describe())

        if not source.is_dir():
            if migration.critical:
                return MigrationOutcome(
                    migration,
                    MigrationState.FAILED,
                    f"source directory does not exist: {source}",
                )
            return MigrationOutcome(
                migration,
                MigrationState.SKIPPED,
                f"source directory does not exist: {source}",
            )

        if _is_empty_dir(source):
            return MigrationOutcome(
                migration, MigrationState.SKIPPED, f"source directory {source} is empty"
            )

        if destination.exists() and not (destination.is_dir() and _is_empty_dir(destination)):
            message = f"destination {destination} already contains data; not merging"
            return MigrationOutcome(
                migration, MigrationState.SKIPPED, message, warnings=[message]
            )

        outcome = MigrationOutcome(migration, MigrationState.DONE)
        try:
            self._copy_tree(migration, outcome)
        except OSError as exc:
            outcome.state = MigrationState.FAILED
            outcome.message = f"copy failed: {exc}"
            return outcome

        if migration.log_only and outcome.files_copied == 0:
            outcome.state = MigrationState.SKIPPED
            outcome.message = f"no log files found under {source}"
            return outcome

        if self.verify and migration.critical and migration.type is MigrationType.DATA:
            missing = verify_markers(source, destination)
            if missing:
                outcome.state = MigrationState.FAILED
                outcome.message = (
                    "verification failed; missing at destination: " + ", ".join(missing)
                )
                return outcome

        outcome.message = (
            f"copied {outcome.files_copied} files ({outcome.bytes_copied} bytes) "
            f"to {destination}"
        )
        LOGGER.info("Migration %s finished: %s", migration.type.value, outcome.message)
        return outcome

    # ------------------------------------------------------------------
    def _copy_tree(self, migration: DataMigration, outcome: MigrationOutcome) -> None:
        source = migration.source
        destination = migration.destination
        if not migration.log_only:
            created = not destination.exists()
            result = copy_directory(source, destination)
            outcome.warnings.extend(result.metadata_warnings)
            if created:
                outcome.directories_created += 1

        for entry_path, info in self._walk(source, log_only=migration.log_only):
            self.token.raise_if_cancelled(f"{migration.type.value} migration")
            target = destination / entry_path.relative_to(source)
            mode = info.st_mode
            if migration.log_only and not stat.S_ISDIR(mode) and not is_log_file(entry_path.name):
                continue
            if stat.S_ISLNK(mode):
                result = copy_symlink(entry_path, target, info)
                outcome.symlinks_created += 1
            elif stat.S_ISDIR(mode):
                if migration.log_only:
                    continue
                result = copy_directory(entry_path, target, info)
                outcome.directories_created += 1
            elif stat.S_ISREG(mode):
                result = self.copy_file(entry_path, target, info)
                outcome.files_copied += 1
                outcome.bytes_copied += result.bytes_copied
            else:
                message = f"skipped special file {entry_path}"
                LOGGER.warning(message)
                outcome.warnings.append(message)
                continue
            outcome.warnings.extend(result.metadata_warnings)

    def _walk(self, root: Path, *, log_only: bool) -> Iterator[tuple[Path, os.stat_result]]:
        pending = [root]
        while pending:
            current = pending.pop()
            with os.scandir(current) as iterator:
                entries = sorted(iterator, key=lambda item: item.name)
            for entry in entries:
                self.token.raise_if_cancelled("directory walk")
                path = Path(entry.path)
                info = entry.stat(follow_symlinks=False)
                if stat.S_ISDIR(info.st_mode):
                    if log_only and is_data_directory(path):
                        LOGGER.debug("Pruning database directory %s from log copy", path)
                        continue
                    yield path, info
                    pending.append(path)
                    continue
                yield path, info

    def copy_file(self, source: Path, destination: Path, info: os.stat_result) -> CopyResult:
        """Stream *source* into *destination*, then copy mode and ownership."""
        destination.parent.mkdir(parents=True, exist_ok=True)
        result = CopyResult(destination)
        with source.open("rb") as reader, destination.open("wb") as writer:
            while True:
                chunk = reader.read(self.chunk_size)
                if not chunk:
                    break
                writer.write(chunk)
                result.bytes_copied += len(chunk)
                self.token.raise_if_cancelled(f"copy of {source}")
        _apply_metadata(destination, info, result)
        return result


def copy_directory(
    source: Path,
    destination: Path,
    info: os.stat_result | None = None,
) -> CopyResult:
    """Create *destination* with the mode and ownership of *source*."""
    info = info or source.stat()
    result = CopyResult(destination)
    destination.mkdir(parents=True, exist_ok=True)
    _apply_metadata(destination, info, result)
    return result


def copy_symlink(source: Path, destination: Path, info: os.stat_result | None = None) -> CopyResult:
    """Recreate the symlink *source* at *destination* with the same target string."""
    info = info or source.lstat()
    result = CopyResult(destination)
    target = os.readlink(source)
    destination.parent.mkdir(parents=True, exist_ok=True)
    if destination.is_symlink() or destination.exists():
        destination.unlink()
    os.symlink(target, destination)
    try:
        os.lchown(destination, info.st_uid, info.st_gid)
    except OSError as exc:
        result.metadata_warnings.append(f"failed to set ownership on symlink {destination}: {exc}")
    return result


def verify_markers(source: Path, destination: Path) -> list[str]:
    """Return data markers present under *source* but missing under *destination*."""
    missing: list[str] = []
    for marker in DATA_MARKERS:
        if os.path.lexists(source / marker) and not os.path.lexists(destination / marker):
            missing.append(marker)
    return missing


def _apply_metadata(path: Path, info: os.stat_result, result: CopyResult) -> None:
    try:
        os.chmod(path, stat.S_IMODE(info.st_mode))
    except OSError as exc:
        result.metadata_warnings.append(f"failed to set mode on {path}: {exc}")
    try:
        os.chown(path, info.st_uid, info.st_gid)
    except OSError as exc:
        result.metadata_warnings.append(f"failed to set ownership on {path}: {exc}")


def _is_empty_dir(path: Path) -> bool:
    with os.scandir(path) as entries:
        return next(entries, None) is None


__all__ = [
    "DEFAULT_CHUNK_SIZE",
    "MigrationEngine",
    "copy_directory",
    "copy_symlink",
    "verify_markers",
]
