"""Derive the migration plan from the discovered and desired directories."""
from __future__ import annotations

import os
from pathlib import Path

from ..config import DesiredConfiguration
from ..discovery import InstallationSnapshot
from .models import DataMigration, MigrationType


def plan_migrations(
    snapshot: InstallationSnapshot,
    desired: DesiredConfiguration,
) -> list[DataMigration]:
    """Return the migrations needed to move *snapshot*'s directories to *desired*.

    Data moves are critical. Log and binlog moves are advisory. A log directory
    that is (or contains) the data directory is copied log files only, and
    binlogs stored inside the data directory travel with the data migration.
    """
    plan: list[DataMigration] = []
    current_data = snapshot.data_dir

    if current_data is not None and not _same_path(current_data, desired.data_dir):
        plan.append(
            DataMigration(
                type=MigrationType.DATA,
                source=current_data,
                destination=desired.data_dir,
                critical=True,
            )
        )

    current_logs = snapshot.log_dir
    if current_logs is not None and not _same_path(current_logs, desired.log_dir):
        log_only = current_data is not None and _contains(current_logs, current_data)
        plan.append(
            DataMigration(
                type=MigrationType.LOGS,
                source=current_logs,
                destination=desired.log_dir,
                critical=False,
                log_only=log_only,
            )
        )

    current_binlogs = snapshot.binlog_dir
    if (
        current_binlogs is not None
        and not _same_path(current_binlogs, desired.binlog_dir)
        and not (current_data is not None and _same_path(current_binlogs, current_data))
    ):
        plan.append(
            DataMigration(
                type=MigrationType.BINLOGS,
                source=current_binlogs,
                destination=desired.binlog_dir,
                critical=False,
            )
        )
    return plan


def _same_path(left: Path, right: Path) -> bool:
    return os.path.normpath(str(left)) == os.path.normpath(str(right))


def _contains(parent: Path, child: Path) -> bool:
    parent_norm = os.path.normpath(str(parent))
    child_norm = os.path.normpath(str(child))
    if parent_norm == child_norm:
        return True
    return child_norm.startswith(parent_norm.rstrip(os.sep) + os.sep)


__all__ = ["plan_migrations"]
