"""Systemd provider for controlling the MariaDB service unit."""
from __future__ import annotations

import logging
import subprocess
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field

LOGGER = logging.getLogger(__name__)


class SystemdError(RuntimeError):
    """Raised when systemd operations fail."""


@dataclass(slots=True)
class SystemdProvider:
    """Start, stop and query database service units by name."""

    systemctl_bin: str = "systemctl"
    attempts: int = 3
    backoff: float = 2.0
    sleep: Callable[[float], None] = field(default=time.sleep, repr=False)

    def enable(self, name: str, *, dry_run: bool = False) -> subprocess.CompletedProcess[str]:
        """Enable the unit."""
        return self._systemctl("enable", name, dry_run=dry_run)

    def start(self, name: str, *, dry_run: bool = False) -> subprocess.CompletedProcess[str]:
        """Start the unit."""
        return self._systemctl("start", name, dry_run=dry_run)

    def stop(self, name: str, *, dry_run: bool = False) -> subprocess.CompletedProcess[str]:
        """Stop the unit."""
        return self._systemctl("stop", name, dry_run=dry_run)

    def restart(self, name: str, *, dry_run: bool = False) -> subprocess.CompletedProcess[str]:
        """Restart the unit."""
        return self._systemctl("restart", name, dry_run=dry_run)

    def is_active(self, name: str) -> bool:
        """Return ``True`` when ``systemctl is-active`` reports ``active``."""
        result = self._systemctl("is-active", name, check=False)
        return result.returncode == 0 and (result.stdout or "").strip() == "active"

    def is_enabled(self, name: str) -> bool:
        """Return ``True`` when the unit is enabled at boot."""
        result = self._systemctl("is-enabled", name, check=False)
        return result.returncode == 0 and (result.stdout or "").strip() in {
            "enabled",
            "enabled-runtime",
            "alias",
        }

    def exists(self, name: str) -> bool:
        """Return ``True`` when systemd knows a unit called *name*."""
        result = self._systemctl("show", name, "--property=LoadState", "--value", check=False)
        return result.returncode == 0 and (result.stdout or "").strip() == "loaded"

    def start_with_retry(self, names: Sequence[str], *, restart: bool = True) -> str:
        """Restart (or start) the first unit in *names* that comes up.

        Each candidate gets ``attempts`` tries with a linear ``backoff * attempt``
        delay between them. Returns the unit that succeeded.
        """
        errors: list[str] = []
        for name in names:
            for attempt in range(1, self.attempts + 1):
                try:
                    if restart:
                        self.restart(name)
                    else:
                        self.start(name)
                except SystemdError as exc:
                    errors.append(f"{name} attempt {attempt}: {exc}")
                    LOGGER.warning("Starting %s failed (attempt %s): %s", name, attempt, exc)
                    if attempt < self.attempts:
                        self.sleep(self.backoff * attempt)
                    continue
                return name
        joined = "; ".join(errors) or "no service candidates"
        raise SystemdError(f"Unable to start any of {', '.join(names)}: {joined}")

    def wait_until_active(self, name: str) -> bool:
        """Poll ``is-active`` up to ``attempts`` times with linear backoff."""
        for attempt in range(1, self.attempts + 1):
            if self.is_active(name):
                return True
            if attempt < self.attempts:
                self.sleep(self.backoff * attempt)
        return False

    # ------------------------------------------------------------------
    def _systemctl(
        self,
        command: str,
        unit: str | None = None,
        *extra: str,
        check: bool = True,
        dry_run: bool = False,
    ) -> subprocess.CompletedProcess[str]:
        args: list[str] = [self.systemctl_bin, command]
        if unit is not None:
            args.append(unit)
        args.extend(extra)
        return self._run_command(
            args,
            check=check,
            error_prefix=f"{self.systemctl_bin} {command}",
            dry_run=dry_run,
        )

    def _run_command(
        self,
        args: Sequence[str],
        *,
        check: bool,
        error_prefix: str,
        dry_run: bool,
    ) -> subprocess.CompletedProcess[str]:
        if dry_run:
            return subprocess.CompletedProcess(list(args), returncode=0, stdout="", stderr="")
        try:
            result = subprocess.run(  # noqa: S603, S607
                list(args),
                capture_output=True,
                text=True,
                check=False,
            )
        except FileNotFoundError as exc:
            raise SystemdError(f"{args[0]} not found: {exc}") from exc
        if check and result.returncode != 0:
            stdout = getattr(result, "stdout", "") or ""
            stderr = getattr(result, "stderr", "") or ""
            message = stderr.strip() or stdout.strip() or "no output"
            raise SystemdError(f"{error_prefix} failed (exit {result.returncode}): {message}")
        return result


__all__ = ["SystemdError", "SystemdProvider"]
