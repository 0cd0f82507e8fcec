"""Run-scoped context shared by the pipeline and its components."""
from __future__ import annotations

import signal
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from types import FrameType

from .config import AppConfig
from .logging import StructuredLogger


class OperationCancelled(RuntimeError):
    """Raised when the operator interrupts a long-running step."""


class CancellationToken:
    """Thread-safe flag checked at stage boundaries and inside copy loops."""

    def __init__(self) -> None:
        self._event = threading.Event()
        self._reason: str | None = None

    @property
    def cancelled(self) -> bool:
        """Return ``True`` once :meth:`cancel` has been called."""
        return self._event.is_set()

    @property
    def reason(self) -> str | None:
        """Return the reason recorded with the cancellation, if any."""
        return self._reason

    def cancel(self, reason: str = "cancelled by operator") -> None:
        """Request cancellation."""
        self._reason = reason
        self._event.set()

    def raise_if_cancelled(self, where: str | None = None) -> None:
        """Raise :class:`OperationCancelled` when cancellation was requested."""
        if not self._event.is_set():
            return
        message = self._reason or "cancelled"
        if where:
            message = f"{message} during {where}"
        raise OperationCancelled(message)


@dataclass(slots=True)
class RunContext:
    """Logger, resolved configuration and cancellation signal for one run."""

    config: AppConfig
    logger: StructuredLogger
    token: CancellationToken = field(default_factory=CancellationToken)


@contextmanager
def cancel_on_sigint(token: CancellationToken) -> Iterator[CancellationToken]:
    """Translate SIGINT into a cancellation request while the block runs."""
    if threading.current_thread() is not threading.main_thread():
        yield token
        return

    def _handler(signum: int, frame: FrameType | None) -> None:
        token.cancel("interrupted by SIGINT")

    previous = signal.signal(signal.SIGINT, _handler)
    try:
        yield token
    finally:
        signal.signal(signal.SIGINT, previous)


__all__ = ["CancellationToken", "OperationCancelled", "RunContext", "cancel_on_sigint"]
