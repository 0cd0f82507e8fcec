"""File name heuristics separating log files from database files."""
from __future__ import annotations

import os
from pathlib import Path

LOG_EXTENSIONS = frozenset({".log", ".err", ".pid", ".out"})
LOG_PREFIXES = (
    "mysql-bin.",
    "mysql-relay-bin.",
    "slow",
    "error",
    "general",
    "access",
    "audit",
)
LOG_FILE_NAMES = frozenset(
    {
        "mysql.log",
        "mysqld.log",
        "error.log",
        "slow.log",
        "general.log",
        "relay.log",
        "mysqld.pid",
        "access.log",
        "audit.log",
        "binary.log",
        "update.log",
    }
)

DATA_DIRECTORY_NAMES = frozenset(
    {"mysql", "performance_schema", "information_schema", "sys", "test"}
)
DATABASE_EXTENSIONS = frozenset({".frm", ".ibd", ".MYD", ".MYI", ".opt", ".ARZ", ".ARM"})
DATABASE_FILE_NAMES = frozenset({"ibdata1", "ib_logfile0", "ib_logfile1", "auto.cnf"})

# Present in an initialised data directory; checked after a data migration.
DATA_MARKERS = ("ibdata1", "ib_logfile0", "mysql")


def is_log_file(name: str) -> bool:
    """Return ``True`` when *name* looks like a server log, pid or binlog file."""
    if name in LOG_FILE_NAMES:
        return True
    lowered = name.lower()
    if os.path.splitext(lowered)[1] in LOG_EXTENSIONS:
        return True
    return lowered.startswith(LOG_PREFIXES)


def is_database_file(name: str) -> bool:
    """Return ``True`` when *name* is a table/tablespace file or InnoDB system file."""
    if name in DATABASE_FILE_NAMES:
        return True
    return os.path.splitext(name)[1] in DATABASE_EXTENSIONS


def is_data_directory(path: Path) -> bool:
    """Return ``True`` when *path* is a schema directory that log-only copies must skip."""
    if path.name in DATA_DIRECTORY_NAMES:
        return True
    try:
        with os.scandir(path) as entries:
            for entry in entries:
                if entry.is_file(follow_symlinks=False) and is_database_file(entry.name):
                    return True
    except OSError:
        return False
    return False


__all__ = [
    "DATABASE_EXTENSIONS",
    "DATA_DIRECTORY_NAMES",
    "DATA_MARKERS",
    "LOG_EXTENSIONS",
    "LOG_FILE_NAMES",
    "LOG_PREFIXES",
    "is_data_directory",
    "is_database_file",
    "is_log_file",
]
