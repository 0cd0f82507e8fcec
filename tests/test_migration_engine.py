"""Tests for the directory migration engine."""
from __future__ import annotations

import os
from pathlib import Path

import pytest

from mariactl.context import CancellationToken, OperationCancelled
from mariactl.migration import (
    DataMigration,
    MigrationEngine,
    MigrationError,
    MigrationState,
    MigrationType,
    copy_symlink,
    verify_markers,
)


def _populate_datadir(root: Path) -> None:
    (root / "mysql").mkdir(parents=True)
    (root / "mysql" / "user.frm").write_bytes(b"frm")
    (root / "appdb").mkdir()
    (root / "appdb" / "orders.ibd").write_bytes(b"x" * 4096)
    (root / "ibdata1").write_bytes(b"i" * 1024)
    (root / "ib_logfile0").write_bytes(b"l" * 512)


def _data(source: Path, destination: Path, **kwargs: object) -> DataMigration:
    return DataMigration(MigrationType.DATA, source, destination, critical=True, **kwargs)  # type: ignore[arg-type]


def test_data_migration_copies_tree_with_metadata(tmp_path: Path) -> None:
    """Files, directories and symlinks are mirrored with their modes."""
    source = tmp_path / "var" / "lib" / "mysql"
    _populate_datadir(source)
    secret = source / "appdb" / "orders.ibd"
    os.chmod(secret, 0o640)
    os.chmod(source / "appdb", 0o750)
    os.symlink("appdb/orders.ibd", source / "orders-link")
    destination = tmp_path / "data" / "mysql"

    outcome = MigrationEngine(chunk_size=1000).migrate(_data(source, destination))

    assert outcome.state is MigrationState.DONE
    assert outcome.files_copied == 4
    assert outcome.bytes_copied == 3 + 4096 + 1024 + 512
    assert outcome.symlinks_created == 1
    assert (destination / "appdb" / "orders.ibd").read_bytes() == b"x" * 4096
    assert (destination / "appdb" / "orders.ibd").stat().st_mode & 0o777 == 0o640
    assert (destination / "appdb").stat().st_mode & 0o777 == 0o750
    assert os.readlink(destination / "orders-link") == "appdb/orders.ibd"
    assert secret.read_bytes() == b"x" * 4096


def test_missing_source_skipped_or_failed(tmp_path: Path) -> None:
    """A missing source is skipped unless the migration is critical."""
    engine = MigrationEngine()
    missing = tmp_path / "absent"

    logs = DataMigration(MigrationType.LOGS, missing, tmp_path / "logs")
    assert engine.migrate(logs).state is MigrationState.SKIPPED

    outcome = engine.migrate(_data(missing, tmp_path / "data"))
    assert outcome.state is MigrationState.FAILED
    assert "does not exist" in outcome.message


def test_empty_source_is_skipped(tmp_path: Path) -> None:
    """Nothing is copied from an empty directory."""
    source = tmp_path / "binlogs"
    source.mkdir()

    outcome = MigrationEngine().migrate(
        DataMigration(MigrationType.BINLOGS, source, tmp_path / "new-binlogs")
    )

    assert outcome.state is MigrationState.SKIPPED
    assert not (tmp_path / "new-binlogs").exists()


def test_non_empty_destination_is_not_merged(tmp_path: Path) -> None:
    """Existing data at the destination is left alone with a warning."""
    source = tmp_path / "src"
    _populate_datadir(source)
    destination = tmp_path / "dst"
    destination.mkdir()
    (destination / "keep.txt").write_text("existing")

    outcome = MigrationEngine().migrate(_data(source, destination))

    assert outcome.state is MigrationState.SKIPPED
    assert outcome.warnings == [f"destination {destination} already contains data; not merging"]
    assert sorted(path.name for path in destination.iterdir()) == ["keep.txt"]


def test_empty_destination_is_filled(tmp_path: Path) -> None:
    """An existing but empty destination counts as free."""
    source = tmp_path / "src"
    _populate_datadir(source)
    destination = tmp_path / "dst"
    destination.mkdir()

    outcome = MigrationEngine().migrate(_data(source, destination))

    assert outcome.state is MigrationState.DONE
    assert (destination / "ibdata1").exists()


def test_log_only_migration_skips_database_files(tmp_path: Path) -> None:
    """Log-only copies pick log files and prune schema directories."""
    source = tmp_path / "mysql"
    _populate_datadir(source)
    (source / "mysql_error.log").write_text("error\n")
    (source / "mysql-bin.000001").write_bytes(b"binlog")
    (source / "mysqld.pid").write_text("812\n")
    destination = tmp_path / "logs"

    outcome = MigrationEngine().migrate(
        DataMigration(MigrationType.LOGS, source, destination, log_only=True)
    )

    assert outcome.state is MigrationState.DONE
    assert sorted(path.name for path in destination.iterdir()) == [
        "mysql-bin.000001",
        "mysql_error.log",
        "mysqld.pid",
    ]
    assert outcome.files_copied == 3


def test_log_only_migration_skips_symlinks_to_database_files(tmp_path: Path) -> None:
    """Symlinks are filtered by name like regular files in a log-only copy."""
    source = tmp_path / "mysql"
    (source / "mysql").mkdir(parents=True)
    (source / "mysql" / "ibdata1").write_bytes(b"i")
    (source / "mysql_error.log").write_text("error\n")
    (source / "orders.ibd").symlink_to("/var/lib/elsewhere/tablespace.ibd")
    (source / "slow.log").symlink_to(source / "mysql_error.log")
    destination = tmp_path / "logs"

    outcome = MigrationEngine().migrate(
        DataMigration(MigrationType.LOGS, source, destination, log_only=True)
    )

    assert outcome.state is MigrationState.DONE
    assert sorted(path.name for path in destination.iterdir()) == ["mysql_error.log", "slow.log"]
    assert (destination / "slow.log").is_symlink()
    assert outcome.symlinks_created == 1


def test_log_only_migration_without_logs_is_skipped(tmp_path: Path) -> None:
    """A log-only copy that finds nothing reports skipped."""
    source = tmp_path / "mysql"
    _populate_datadir(source)

    outcome = MigrationEngine().migrate(
        DataMigration(MigrationType.LOGS, source, tmp_path / "logs", log_only=True)
    )

    assert outcome.state is MigrationState.SKIPPED
    assert "no log files" in outcome.message


@pytest.mark.skipif(not hasattr(os, "mkfifo"), reason="requires os.mkfifo")
def test_special_files_are_skipped_with_warning(tmp_path: Path) -> None:
    """FIFOs and other special files are not copied."""
    source = tmp_path / "src"
    _populate_datadir(source)
    os.mkfifo(source / "mysql.fifo")
    destination = tmp_path / "dst"

    outcome = MigrationEngine().migrate(_data(source, destination))

    assert outcome.state is MigrationState.DONE
    assert not (destination / "mysql.fifo").exists()
    assert any("skipped special file" in warning for warning in outcome.warnings)


def test_verification_failure_marks_critical_migration_failed(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Missing markers after the copy fail a critical data migration."""
    import mariactl.migration.engine as engine_module

    source = tmp_path / "src"
    _populate_datadir(source)
    monkeypatch.setattr(engine_module, "verify_markers", lambda src, dst: ["ibdata1"])

    engine = MigrationEngine()
    outcome = engine.migrate(_data(source, tmp_path / "dst"))

    assert outcome.state is MigrationState.FAILED
    assert outcome.message == "verification failed; missing at destination: ibdata1"

    with pytest.raises(MigrationError) as excinfo:
        MigrationEngine().run([_data(source, tmp_path / "dst2")])
    assert excinfo.value.outcome is not None
    assert excinfo.value.outcome.failed


def test_verify_markers_reports_missing(tmp_path: Path) -> None:
    """Only markers present in the source are required at the destination."""
    source = tmp_path / "src"
    _populate_datadir(source)
    destination = tmp_path / "dst"
    destination.mkdir()
    (destination / "ibdata1").write_bytes(b"")

    assert verify_markers(source, destination) == ["ib_logfile0", "mysql"]


def test_run_continues_after_non_critical_failure(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Advisory migrations may fail without aborting the plan."""
    logs = tmp_path / "logs"
    logs.mkdir()
    (logs / "error.log").write_text("boom")
    binlogs = tmp_path / "binlogs"
    binlogs.mkdir()
    (binlogs / "mysql-bin.000001").write_bytes(b"b")

    engine = MigrationEngine()
    original = MigrationEngine.copy_file

    def flaky_copy(self: MigrationEngine, source: Path, destination: Path, info: os.stat_result):  # type: ignore[no-untyped-def]
        if source.name == "error.log":
            raise PermissionError("denied")
        return original(self, source, destination, info)

    monkeypatch.setattr(MigrationEngine, "copy_file", flaky_copy)

    outcomes = engine.run(
        [
            DataMigration(MigrationType.LOGS, logs, tmp_path / "new-logs"),
            DataMigration(MigrationType.BINLOGS, binlogs, tmp_path / "new-binlogs"),
        ]
    )

    assert [outcome.state for outcome in outcomes] == [MigrationState.FAILED, MigrationState.DONE]
    assert "denied" in outcomes[0].message
    assert (tmp_path / "new-binlogs" / "mysql-bin.000001").read_bytes() == b"b"


def test_cancellation_stops_copy_and_keeps_source(tmp_path: Path) -> None:
    """Cancelling mid-copy raises and leaves the source untouched."""
    source = tmp_path / "src"
    _populate_datadir(source)
    token = CancellationToken()
    engine = MigrationEngine(token=token, chunk_size=256)
    original = MigrationEngine.copy_file

    class CancellingEngine(MigrationEngine):
        def copy_file(self, source: Path, destination: Path, info: os.stat_result):  # type: ignore[no-untyped-def, override]
            token.cancel("interrupted by SIGINT")
            return original(self, source, destination, info)

    cancelling = CancellingEngine(token=token, chunk_size=256)

    with pytest.raises(OperationCancelled, match="interrupted by SIGINT"):
        cancelling.migrate(_data(source, tmp_path / "dst"))

    assert (source / "appdb" / "orders.ibd").read_bytes() == b"x" * 4096
    with pytest.raises(OperationCancelled):
        engine.run([_data(source, tmp_path / "dst3")])


def test_copy_symlink_replaces_existing_entry(tmp_path: Path) -> None:
    """The link target string is preserved and stale entries are replaced."""
    link = tmp_path / "link"
    os.symlink("../elsewhere", link)
    destination = tmp_path / "out" / "link"
    destination.parent.mkdir()
    destination.write_text("stale")

    result = copy_symlink(link, destination)

    assert os.readlink(destination) == "../elsewhere"
    assert result.metadata_warnings == []
