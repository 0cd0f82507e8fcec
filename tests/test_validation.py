"""Tests for the pre-flight validation gate."""
from __future__ import annotations

import os
import shutil
from collections import namedtuple
from pathlib import Path

import pytest

from mariactl.config import DesiredConfiguration
from mariactl.ports import PortOwner, StaticPortInspector
from mariactl.service_accounts import ServiceAccount
from mariactl.validation import (
    WRITE_TEST_NAME,
    ValidationError,
    ValidationResult,
    check_directories,
    check_directory_permissions,
    check_disk_space,
    check_encryption_key,
    check_port,
    is_engine_process,
    validate_configuration,
)

DiskUsage = namedtuple("DiskUsage", "total used free")


def _desired(tmp_path: Path, **overrides: object) -> DesiredConfiguration:
    values: dict[str, object] = {
        "server_id": 1,
        "port": 3307,
        "data_dir": tmp_path / "data",
        "log_dir": tmp_path / "logs",
        "binlog_dir": tmp_path / "binlogs",
        "config_dir": tmp_path / "etc",
        "encryption_enabled": False,
        "encryption_key_file": tmp_path / "keys" / "keyfile",
    }
    values.update(overrides)
    return DesiredConfiguration(**values)  # type: ignore[arg-type]


def _account() -> ServiceAccount:
    return ServiceAccount(name="mysql", uid=os.getuid(), gid=os.getgid())


def test_check_directories_creates_and_write_tests(tmp_path: Path) -> None:
    """Missing directories are created and the write-test sentinel is removed."""
    data = tmp_path / "a" / "data"

    result = check_directories([("data-dir", data)])

    assert result.ok
    assert data.is_dir()
    assert not (data / WRITE_TEST_NAME).exists()


def test_check_directories_rejects_relative_and_duplicates(tmp_path: Path) -> None:
    """Relative paths and equal directories are errors."""
    shared = tmp_path / "shared"

    result = check_directories(
        [
            ("data-dir", Path("relative/data")),
            ("log-dir", shared),
            ("binlog-dir", Path(str(shared) + "/")),
        ]
    )

    assert not result.ok
    assert "data-dir must be an absolute path: relative/data" in result.errors
    assert any("log-dir and binlog-dir cannot be the same directory" in e for e in result.errors)


@pytest.mark.parametrize("port", [80, 1023, 65536])
def test_check_port_out_of_range(port: int) -> None:
    """Ports outside the allowed range are rejected."""
    result = check_port(port, StaticPortInspector())

    assert result.errors == [f"port must be between 1024-65535, got: {port}"]


def test_check_port_conflicts() -> None:
    """Foreign owners and unidentified listeners are errors; the engine is not."""
    inspector = StaticPortInspector(
        {
            3306: PortOwner(812, "mariadbd"),
            3307: PortOwner(10, "nginx"),
            3308: PortOwner(None, None),
        }
    )

    assert check_port(3306, inspector).ok
    assert check_port(3307, inspector).errors == [
        "port 3307 is already in use by process nginx (pid=10)"
    ]
    assert check_port(3308, inspector).errors == [
        "port 3308 is already in use by an unidentified process"
    ]
    assert check_port(3309, inspector).ok


def test_is_engine_process() -> None:
    """Server process names are recognised case-insensitively."""
    assert is_engine_process("mysqld")
    assert is_engine_process("MariaDBd")
    assert not is_engine_process("postgres")
    assert not is_engine_process(None)


def test_check_disk_space_uses_nearest_existing_parent(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Free space is measured on the closest existing ancestor."""
    queried: list[Path] = []

    def fake_usage(path: Path) -> DiskUsage:
        queried.append(Path(path))
        return DiskUsage(total=10 * 1024**3, used=0, free=512 * 1024**2)

    monkeypatch.setattr(shutil, "disk_usage", fake_usage)

    result = check_disk_space([tmp_path / "not" / "yet"], minimum=1024**3)

    assert queried == [tmp_path]
    assert len(result.errors) == 1
    assert "512.0 MiB available, 1.0 GiB required" in result.errors[0]


def test_check_disk_space_failure_is_warning(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """An unreadable filesystem only warns."""

    def fail_usage(path: Path) -> DiskUsage:
        raise OSError("stale handle")

    monkeypatch.setattr(shutil, "disk_usage", fail_usage)

    result = check_disk_space([tmp_path])

    assert result.ok
    assert result.warnings and "stale handle" in result.warnings[0]


def test_check_encryption_key_new_and_existing_file(tmp_path: Path) -> None:
    """A creatable location passes without leaving a key behind."""
    key = tmp_path / "encryption" / "keyfile"

    assert check_encryption_key(key).ok
    assert key.parent.is_dir()
    assert not key.exists()
    assert not key.with_name("keyfile.test").exists()

    key.write_text("1;0123456789abcdef\n")
    assert check_encryption_key(key).ok

    assert check_encryption_key(Path("keys/keyfile")).errors == [
        "encryption key file must be an absolute path: keys/keyfile"
    ]


def test_permission_repair_failure_is_warning(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Failing to hand a root-owned directory to the service account warns."""
    import mariactl.validation as validation

    monkeypatch.setattr(validation, "needs_permission_repair", lambda path: True)

    def fail_chown(path: object, uid: int, gid: int) -> None:
        raise PermissionError("operation not permitted")

    monkeypatch.setattr(os, "chown", fail_chown)

    result = check_directory_permissions([tmp_path], ServiceAccount("mysql", 992, 991, False))

    assert result.ok
    assert len(result.warnings) == 1
    assert "Failed to hand" in result.warnings[0]


def test_validate_configuration_collects_all_findings(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Every check contributes to a single result."""
    monkeypatch.setattr(
        shutil, "disk_usage", lambda path: DiskUsage(total=100 * 1024**3, used=0, free=50 * 1024**3)
    )
    desired = _desired(
        tmp_path,
        port=3306,
        binlog_dir=tmp_path / "data",
        encryption_enabled=True,
    )
    inspector = StaticPortInspector({3306: PortOwner(55, "redis-server")})

    result = validate_configuration(desired, inspector=inspector, account=_account())

    assert "port 3306 is already in use by process redis-server (pid=55)" in result.errors
    assert any("cannot be the same directory" in error for error in result.errors)
    assert (tmp_path / "keys").is_dir()
    with pytest.raises(ValidationError) as excinfo:
        result.raise_for_errors()
    assert excinfo.value.errors == result.errors


def test_validate_configuration_passes(tmp_path: Path) -> None:
    """A valid configuration yields no errors and creates the directories."""
    desired = _desired(tmp_path)

    result = validate_configuration(
        desired, inspector=StaticPortInspector(), account=_account(), min_free_bytes=1
    )

    assert result.ok, result.errors
    assert all(path.is_dir() for path in desired.managed_dirs())


def test_validate_configuration_without_repair_changes_nothing(tmp_path: Path) -> None:
    """Missing directories are reported as warnings and left uncreated."""
    desired = _desired(tmp_path, encryption_enabled=True)

    result = validate_configuration(
        desired,
        inspector=StaticPortInspector(),
        account=_account(),
        min_free_bytes=1,
        repair=False,
    )

    assert result.ok, result.errors
    assert not any(path.exists() for path in desired.managed_dirs())
    assert not (tmp_path / "keys").exists()
    assert f"data-dir {tmp_path / 'data'} does not exist and would be created" in result.warnings
    assert any("encryption key directory" in warning for warning in result.warnings)


def test_check_directories_without_repair_reports_unwritable_parent(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """A directory that could not be created is still an error."""
    monkeypatch.setattr(os, "access", lambda path, mode: False)
    data = tmp_path / "missing" / "data"

    result = check_directories([("data-dir", data)], repair=False)

    assert result.errors == [f"Cannot create data-dir {data}: {tmp_path} is not writable"]
    assert not data.parent.exists()


def test_permission_repair_is_only_reported_without_repair(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Root-owned directories are not chmod-ed or chown-ed when repair is off."""
    import mariactl.validation as validation

    monkeypatch.setattr(validation, "needs_permission_repair", lambda path: True)

    def refuse(*args: object) -> None:
        raise AssertionError("ownership must not change")

    monkeypatch.setattr(os, "chmod", refuse)
    monkeypatch.setattr(os, "chown", refuse)

    result = check_directory_permissions(
        [tmp_path], ServiceAccount("mysql", 992, 991, False), repair=False
    )

    assert result.ok
    assert result.warnings == [f"{tmp_path} would be handed to mysql (992:991) with mode 750"]


def test_validation_result_merge() -> None:
    """Merging appends errors and warnings."""
    first = ValidationResult(errors=["a"], warnings=["w1"])
    second = ValidationResult(errors=["b"], warnings=["w2"])

    assert first.merge(second) is first
    assert first.errors == ["a", "b"]
    assert first.warnings == ["w1", "w2"]
    assert not first.ok
