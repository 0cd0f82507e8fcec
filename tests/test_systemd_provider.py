"""Tests for the systemd provider."""
from __future__ import annotations

import subprocess
from typing import Any

import pytest

from mariactl.providers.systemd import SystemdError, SystemdProvider


class DummyResult:
    """Simple stand-in for ``subprocess.CompletedProcess``."""

    def __init__(self, returncode: int = 0, stdout: str = "", stderr: str = "") -> None:
        """Initialise the dummy result."""
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr


@pytest.fixture
def sleeps() -> list[float]:
    """Collect requested back-off delays instead of sleeping."""
    return []


@pytest.fixture
def provider(sleeps: list[float]) -> SystemdProvider:
    """Return a provider whose sleeps are recorded."""
    return SystemdProvider(systemctl_bin="systemctl", attempts=3, backoff=2.0, sleep=sleeps.append)


def test_lifecycle_commands_invoke_systemctl(
    monkeypatch: pytest.MonkeyPatch,
    provider: SystemdProvider,
) -> None:
    """Stop/start/restart/enable delegate to systemctl with the unit name."""
    calls: list[tuple[str, str | None, bool, bool]] = []

    def fake_systemctl(
        self: SystemdProvider,
        command: str,
        unit: str | None = None,
        *extra: str,
        check: bool = True,
        dry_run: bool = False,
    ) -> DummyResult:
        calls.append((command, unit, check, dry_run))
        return DummyResult()

    monkeypatch.setattr(SystemdProvider, "_systemctl", fake_systemctl)

    provider.stop("mariadb")
    provider.start("mariadb")
    provider.restart("mariadb", dry_run=True)
    provider.enable("mariadb")

    assert calls == [
        ("stop", "mariadb", True, False),
        ("start", "mariadb", True, False),
        ("restart", "mariadb", True, True),
        ("enable", "mariadb", True, False),
    ]


def test_queries_interpret_systemctl_output(
    monkeypatch: pytest.MonkeyPatch,
    provider: SystemdProvider,
) -> None:
    """is-active, is-enabled and LoadState queries map to booleans."""
    responses = {
        ("is-active", "mariadb"): DummyResult(0, "active\n"),
        ("is-active", "mysqld"): DummyResult(3, "inactive\n"),
        ("is-enabled", "mariadb"): DummyResult(0, "enabled\n"),
        ("is-enabled", "mysqld"): DummyResult(1, "disabled\n"),
        ("show", "mariadb"): DummyResult(0, "loaded\n"),
        ("show", "mysql"): DummyResult(0, "not-found\n"),
    }
    seen_extra: list[tuple[str, ...]] = []

    def fake_systemctl(
        self: SystemdProvider,
        command: str,
        unit: str | None = None,
        *extra: str,
        check: bool = True,
        dry_run: bool = False,
    ) -> DummyResult:
        assert check is False
        seen_extra.append(extra)
        return responses[(command, unit or "")]

    monkeypatch.setattr(SystemdProvider, "_systemctl", fake_systemctl)

    assert provider.is_active("mariadb") is True
    assert provider.is_active("mysqld") is False
    assert provider.is_enabled("mariadb") is True
    assert provider.is_enabled("mysqld") is False
    assert provider.exists("mariadb") is True
    assert provider.exists("mysql") is False
    assert ("--property=LoadState", "--value") in seen_extra


def test_start_with_retry_falls_back_to_next_candidate(
    monkeypatch: pytest.MonkeyPatch,
    provider: SystemdProvider,
    sleeps: list[float],
) -> None:
    """Each candidate gets three attempts with linear back-off."""
    attempts: list[str] = []

    def fake_restart(self: SystemdProvider, name: str, *, dry_run: bool = False) -> Any:
        attempts.append(name)
        if name == "mariadb":
            raise SystemdError("Job for mariadb.service failed")
        return DummyResult()

    monkeypatch.setattr(SystemdProvider, "restart", fake_restart)

    started = provider.start_with_retry(["mariadb", "mysql"])

    assert started == "mysql"
    assert attempts == ["mariadb", "mariadb", "mariadb", "mysql"]
    assert sleeps == [2.0, 4.0]


def test_start_with_retry_raises_when_all_candidates_fail(
    monkeypatch: pytest.MonkeyPatch,
    provider: SystemdProvider,
) -> None:
    """A SystemdError listing every attempt is raised when nothing starts."""

    def fake_start(self: SystemdProvider, name: str, *, dry_run: bool = False) -> Any:
        raise SystemdError(f"{name} missing")

    monkeypatch.setattr(SystemdProvider, "start", fake_start)

    with pytest.raises(SystemdError, match="Unable to start any of mariadb") as excinfo:
        provider.start_with_retry(["mariadb"], restart=False)
    assert "attempt 3" in str(excinfo.value)


def test_wait_until_active_polls_with_backoff(
    monkeypatch: pytest.MonkeyPatch,
    provider: SystemdProvider,
    sleeps: list[float],
) -> None:
    """The unit is polled until it reports active."""
    states = iter([False, True])
    monkeypatch.setattr(SystemdProvider, "is_active", lambda self, name: next(states))

    assert provider.wait_until_active("mariadb") is True
    assert sleeps == [2.0]


def test_run_command_raises_on_failure(
    monkeypatch: pytest.MonkeyPatch,
    provider: SystemdProvider,
) -> None:
    """Non-zero exit codes surface stderr in the SystemdError."""

    def fake_run(*args: object, **kwargs: object) -> DummyResult:
        return DummyResult(returncode=5, stderr="Unit mariadb.service not found.")

    monkeypatch.setattr(subprocess, "run", fake_run)

    with pytest.raises(SystemdError, match="systemctl stop failed \\(exit 5\\): Unit mariadb"):
        provider.stop("mariadb")


def test_run_command_missing_binary(
    monkeypatch: pytest.MonkeyPatch,
    provider: SystemdProvider,
) -> None:
    """A missing systemctl binary is reported as SystemdError."""

    def fake_run(*args: object, **kwargs: object) -> DummyResult:
        raise FileNotFoundError("systemctl")

    monkeypatch.setattr(subprocess, "run", fake_run)

    with pytest.raises(SystemdError, match="systemctl not found"):
        provider.is_active("mariadb")


def test_dry_run_skips_subprocess(
    monkeypatch: pytest.MonkeyPatch,
    provider: SystemdProvider,
) -> None:
    """Dry-run commands never reach subprocess.run."""

    def fail_run(*args: object, **kwargs: object) -> DummyResult:
        raise AssertionError("subprocess.run should not be called")

    monkeypatch.setattr(subprocess, "run", fail_run)

    result = provider.restart("mariadb", dry_run=True)

    assert result.returncode == 0
    assert result.args == ["systemctl", "restart", "mariadb"]
