"""Structured operation logging for mariactl.

Every CLI command runs inside :meth:`StructuredLogger.operation`, which yields an
:class:`OperationScope`. The scope collects steps and the final result and,
when the ``with`` block exits, appends a single JSON record to
``operations.jsonl`` inside the configured logs directory.

Module level diagnostics use the standard :mod:`logging` hierarchy rooted at
``mariactl``; the structured logger mirrors those records into ``mariactl.log``
next to the JSON file. A logs directory that cannot be created or written
disables the logger instead of failing the command.
"""
from __future__ import annotations

import json
import logging
import os
import time
import uuid
from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path

ROOT_LOGGER_NAME = "mariactl"
OPERATIONS_LOG_NAME = "operations.jsonl"
TEXT_LOG_NAME = "mariactl.log"
_TEXT_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


class _TextLogHandler(logging.FileHandler):
    """File handler marker so repeated loggers replace rather than stack handlers."""


def _utc_now() -> str:
    return datetime.now(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _sanitize(value: object) -> object:
    """Return a JSON-safe representation of *value*."""
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, Mapping):
        return {str(key): _sanitize(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_sanitize(item) for item in value]
    return str(value)


@dataclass(slots=True)
class OperationScope:
    """Mutable record for a single logged operation."""

    operation_id: str
    command: str
    args: dict[str, object]
    target: dict[str, object] | None
    started_at: str
    steps: list[dict[str, object]] = field(default_factory=list)
    result: dict[str, object] | None = None

    def add_step(self, name: str, *, status: str = "success", detail: object = None) -> None:
        """Record an intermediate step."""
        step: dict[str, object] = {"name": name, "status": status, "at": _utc_now()}
        if detail is not None:
            step["detail"] = _sanitize(detail)
        self.steps.append(step)

    def success(
        self,
        message: str,
        *,
        changed: int | None = None,
        backups: Sequence[str] | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Mark the operation as successful."""
        self._set_result(
            "success",
            message,
            changed=changed,
            backups=backups,
            context=context,
        )

    def warning(
        self,
        message: str,
        *,
        warnings: Sequence[str] | None = None,
        errors: Sequence[str] | None = None,
        changed: int | None = None,
        backups: Sequence[str] | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Mark the operation as completed with warnings."""
        self._set_result(
            "warning",
            message,
            warnings=warnings,
            errors=errors,
            changed=changed,
            backups=backups,
            context=context,
        )

    def error(
        self,
        message: str,
        *,
        errors: Sequence[str] | None = None,
        rc: int | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Mark the operation as failed."""
        self._set_result(
            "error",
            message,
            errors=list(errors) if errors else [message],
            rc=rc,
            context=context,
        )

    def _set_result(
        self,
        status: str,
        message: str,
        *,
        warnings: Sequence[str] | None = None,
        errors: Sequence[str] | None = None,
        changed: int | None = None,
        backups: Sequence[str] | None = None,
        rc: int | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        result: dict[str, object] = {"status": status, "message": message}
        if warnings:
            result["warnings"] = [str(item) for item in warnings]
        if errors:
            result["errors"] = [str(item) for item in errors]
        if changed is not None:
            result["changed"] = changed
        if backups:
            result["backups"] = [str(item) for item in backups]
        if rc is not None:
            result["rc"] = rc
        if context:
            result["context"] = _sanitize(dict(context))
        self.result = result


class StructuredLogger:
    """Append operation records to ``operations.jsonl`` under *logs_dir*."""

    def __init__(self, logs_dir: Path | str, *, level: int = logging.INFO) -> None:
        self.logs_dir = Path(logs_dir)
        self._operations_log_path = self.logs_dir / OPERATIONS_LOG_NAME
        self._text_log_path = self.logs_dir / TEXT_LOG_NAME
        self._enabled = True
        try:
            self.logs_dir.mkdir(parents=True, exist_ok=True)
        except OSError:
            self._enabled = False
            return
        self._attach_text_handler(level)

    @property
    def enabled(self) -> bool:
        """Return ``True`` while records are being persisted."""
        return self._enabled

    @contextmanager
    def operation(
        self,
        command: str,
        *,
        args: Mapping[str, object] | None = None,
        target: Mapping[str, object] | None = None,
    ) -> Iterator[OperationScope]:
        """Yield an :class:`OperationScope` and persist it when the block exits."""
        scope = OperationScope(
            operation_id=uuid.uuid4().hex,
            command=command,
            args={str(key): _sanitize(value) for key, value in (args or {}).items()},
            target=dict(target) if target else None,
            started_at=_utc_now(),
        )
        started = time.monotonic()
        logging.getLogger(ROOT_LOGGER_NAME).info("operation %s started", command)
        try:
            yield scope
        except BaseException as exc:
            if scope.result is None:
                scope.error(f"Unhandled {type(exc).__name__}: {exc}")
            raise
        finally:
            if scope.result is None:
                scope.success("Completed.")
            duration_ms = int((time.monotonic() - started) * 1000)
            self._write(scope, duration_ms)

    def _write(self, scope: OperationScope, duration_ms: int) -> None:
        result = scope.result or {}
        logging.getLogger(ROOT_LOGGER_NAME).info(
            "operation %s finished with status %s",
            scope.command,
            result.get("status"),
        )
        if not self._enabled:
            return
        record: dict[str, object] = {
            "id": scope.operation_id,
            "ts": scope.started_at,
            "command": scope.command,
            "args": scope.args,
            "target": scope.target,
            "steps": scope.steps,
            "result": result,
            "duration_ms": duration_ms,
            "pid": os.getpid(),
        }
        try:
            with self._operations_log_path.open("a", encoding="utf-8") as handle:
                handle.write(json.dumps(record, sort_keys=True))
                handle.write("\n")
        except OSError:
            self._enabled = False

    def _attach_text_handler(self, level: int) -> None:
        root = logging.getLogger(ROOT_LOGGER_NAME)
        for handler in list(root.handlers):
            if isinstance(handler, _TextLogHandler):
                root.removeHandler(handler)
                handler.close()
        try:
            handler = _TextLogHandler(self._text_log_path, encoding="utf-8", delay=True)
        except OSError:
            return
        handler.setFormatter(logging.Formatter(_TEXT_FORMAT))
        root.addHandler(handler)
        root.setLevel(level)


__all__ = ["OperationScope", "StructuredLogger"]
