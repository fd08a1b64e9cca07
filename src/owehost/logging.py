"""Structured operation logging for CLI commands.

Every command runs inside :meth:`StructuredLogger.operation`. The scope
collects steps and a final result, then appends one JSON record to
``operations.jsonl`` and a one-line summary to ``owehost.log``. When the log
directory cannot be created or written, the logger disables itself rather
than failing the command.
"""
from __future__ import annotations

import json
import secrets
import threading
import time
from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager
from pathlib import Path

from .models import timestamp

OPERATIONS_LOG = "operations.jsonl"
HUMAN_LOG = "owehost.log"


def _json_safe(value: object) -> object:
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, Mapping):
        return {str(key): _json_safe(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_json_safe(item) for item in value]
    return str(value)


class OperationScope:
    """Mutable record of a single command invocation."""

    def __init__(
        self,
        command: str,
        *,
        args: Mapping[str, object] | None = None,
        target: Mapping[str, object] | None = None,
    ) -> None:
        """Start a scope for *command*."""
        self.command = command
        self.op_id = f"op_{secrets.token_hex(6)}"
        self.args = dict(args or {})
        self.target = dict(target or {})
        self.steps: list[dict[str, object]] = []
        self.result: dict[str, object] | None = None
        self.lock_wait_ms: int | None = None
        self.started_at = timestamp()
        self._started = time.monotonic()

    def add_step(self, name: str, *, status: str = "success", detail: str | None = None) -> None:
        """Record a named step of the operation."""
        step: dict[str, object] = {"name": name, "status": status}
        if detail is not None:
            step["detail"] = detail
        self.steps.append(step)

    def set_lock_wait_ms(self, wait_ms: int) -> None:
        """Record how long the command waited for its locks."""
        self.lock_wait_ms = wait_ms

    def success(
        self,
        message: str,
        *,
        changed: int = 0,
        warnings: Sequence[str] | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Mark the operation successful."""
        self._set("success", message, changed=changed, warnings=warnings, context=context)

    def warning(
        self,
        message: str,
        *,
        warnings: Sequence[str] | None = None,
        errors: Sequence[str] | None = None,
        changed: int = 0,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Mark the operation complete with warnings."""
        self._set(
            "warning",
            message,
            changed=changed,
            warnings=warnings,
            errors=errors,
            context=context,
        )

    def error(
        self,
        message: str,
        *,
        errors: Sequence[str] | None = None,
        warnings: Sequence[str] | None = None,
        rc: int = 1,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Mark the operation failed; *errors* defaults to ``[message]``."""
        self._set(
            "error",
            message,
            warnings=warnings,
            errors=errors or [message],
            rc=rc,
            context=context,
        )

    def _set(
        self,
        status: str,
        message: str,
        *,
        changed: int = 0,
        warnings: Sequence[str] | None = None,
        errors: Sequence[str] | None = None,
        rc: int | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        result: dict[str, object] = {
            "status": status,
            "message": message,
            "changed": changed,
            "warnings": list(warnings or []),
            "errors": list(errors or []),
            "context": _json_safe(dict(context or {})),
        }
        if rc is not None:
            result["rc"] = rc
        self.result = result

    def to_record(self) -> dict[str, object]:
        """Return the JSON record for this scope."""
        return {
            "timestamp": self.started_at,
            "op_id": self.op_id,
            "command": self.command,
            "args": _json_safe(self.args),
            "target": _json_safe(self.target),
            "steps": list(self.steps),
            "lock_wait_ms": self.lock_wait_ms,
            "duration_ms": int((time.monotonic() - self._started) * 1000),
            "result": self.result,
        }


class StructuredLogger:
    """Append operation records under a log directory."""

    def __init__(self, log_dir: Path) -> None:
        """Prepare *log_dir*, disabling logging when it is not usable."""
        self._log_dir = log_dir
        self._operations_log_path = log_dir / OPERATIONS_LOG
        self._human_log_path = log_dir / HUMAN_LOG
        self._lock = threading.Lock()
        self._enabled = True
        try:
            log_dir.mkdir(parents=True, exist_ok=True)
        except OSError:
            self._enabled = False

    @property
    def enabled(self) -> bool:
        """Return True while records are being written."""
        return self._enabled

    @contextmanager
    def operation(
        self,
        command: str,
        *,
        args: Mapping[str, object] | None = None,
        target: Mapping[str, object] | None = None,
    ) -> Iterator[OperationScope]:
        """Run a block as a logged operation."""
        scope = OperationScope(command, args=args, target=target)
        try:
            yield scope
        except BaseException as exc:
            if scope.result is None:
                scope.error(str(exc) or type(exc).__name__)
            raise
        finally:
            if scope.result is None:
                scope.success("Completed.")
            self._write(scope)

    def _write(self, scope: OperationScope) -> None:
        if not self._enabled:
            return
        record = scope.to_record()
        result = record["result"] if isinstance(record["result"], Mapping) else {}
        line = (
            f"{record['timestamp']} {scope.op_id} {scope.command} "
            f"{result.get('status', 'unknown')}: {result.get('message', '')}\n"
        )
        with self._lock:
            try:
                with self._operations_log_path.open("a", encoding="utf-8") as handle:
                    handle.write(json.dumps(record, sort_keys=True) + "\n")
                with self._human_log_path.open("a", encoding="utf-8") as handle:
                    handle.write(line)
            except OSError:
                self._enabled = False


__all__ = ["OperationScope", "StructuredLogger"]
