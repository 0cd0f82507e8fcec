"""Listening port inspection used by the validation gate."""
from __future__ import annotations

import logging
import re
import socket
import subprocess
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Protocol

LOGGER = logging.getLogger(__name__)

_SS_USERS = re.compile(r'\("(?P<name>[^"]+)",pid=(?P<pid>\d+)')


@dataclass(frozen=True, slots=True)
class PortOwner:
    """Process holding a listening socket."""

    pid: int | None
    process: str | None

    def describe(self) -> str:
        """Return ``name (pid=N)`` for messages."""
        name = self.process or "unknown"
        pid = self.pid if self.pid is not None else "?"
        return f"{name} (pid={pid})"


class PortInspector(Protocol):
    """Answers whether a TCP port is free and who holds it otherwise."""

    def is_available(self, port: int) -> bool:
        """Return ``True`` when nothing listens on *port*."""

    def owner(self, port: int) -> PortOwner | None:
        """Return the listening process for *port* if it can be determined."""


@dataclass(slots=True)
class SystemPortInspector:
    """Inspect the local host by binding the port and asking ``ss`` for the owner."""

    ss_bin: str = "ss"
    host: str = ""

    def is_available(self, port: int) -> bool:
        """Return ``True`` when a TCP listener could bind *port* on all interfaces."""
        # Sockets left in TIME_WAIT are not listeners.
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as listener:
            listener.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            try:
                listener.bind((self.host, port))
            except OSError as exc:
                LOGGER.debug("port %s unavailable: %s", port, exc)
                return False
        return True

    def owner(self, port: int) -> PortOwner | None:
        """Return the owning process reported by ``ss -Hltnp``."""
        try:
            result = subprocess.run(  # noqa: S603, S607
                [self.ss_bin, "-Hltnp", f"sport = :{port}"],
                capture_output=True,
                text=True,
                check=False,
            )
        except FileNotFoundError:
            LOGGER.debug("%s not available; cannot resolve owner of port %s", self.ss_bin, port)
            return None
        if result.returncode != 0:
            return None
        return parse_ss_owner(result.stdout)


@dataclass(slots=True)
class StaticPortInspector:
    """Inspector backed by a fixed ``port -> owner`` process map."""

    listeners: Mapping[int, PortOwner] = field(default_factory=dict)

    def is_available(self, port: int) -> bool:
        """Return ``True`` when *port* is absent from the map."""
        return port not in self.listeners

    def owner(self, port: int) -> PortOwner | None:
        """Return the mapped owner of *port*."""
        return self.listeners.get(port)


def parse_ss_owner(output: str) -> PortOwner | None:
    """Extract the first ``users:(("name",pid=N,...))`` entry from ``ss`` output."""
    for line in output.splitlines():
        match = _SS_USERS.search(line)
        if match:
            return PortOwner(pid=int(match.group("pid")), process=match.group("name"))
    if output.strip():
        return PortOwner(pid=None, process=None)
    return None


__all__ = [
    "PortInspector",
    "PortOwner",
    "StaticPortInspector",
    "SystemPortInspector",
    "parse_ss_owner",
]
