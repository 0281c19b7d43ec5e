"""Audit trail for the webhook: rejected deliveries, uploads, preset changes.

Records are JSON Lines. Each record carries ``prev_hash``, the SHA-256 of
the record before it in the same file, so edits or deletions inside a file
are detectable. Size-based rotation moves the current file to ``<name>.1``
(shifting older backups up) and the next record starts a new chain with
``prev_hash`` set to null. Every file therefore validates on its own.
"""

from __future__ import annotations

import hashlib
import json
import os
import threading
from dataclasses import dataclass
from pathlib import Path

from src.models import AuditEvent


@dataclass
class ChainValidationResult:
    valid: bool
    broken_at_line: int | None = None


def _line_hash(line: str) -> str:
    return hashlib.sha256(line.encode()).hexdigest()


def validate_audit_chain(log_path: Path) -> ChainValidationResult:
    """Check that every record of one file references the record before it."""
    text = log_path.read_text().strip()
    if not text:
        return ChainValidationResult(valid=True)

    previous: str | None = None
    for lineno, line in enumerate(text.split("\n"), start=1):
        try:
            entry = json.loads(line)
        except json.JSONDecodeError:
            return ChainValidationResult(valid=False, broken_at_line=lineno)
        expected = _line_hash(previous) if previous is not None else None
        if not isinstance(entry, dict) or entry.get("prev_hash") != expected:
            return ChainValidationResult(valid=False, broken_at_line=lineno)
        previous = line

    return ChainValidationResult(valid=True)


def audit_log_files(log_path: Path) -> list[Path]:
    """The live log followed by its numbered backups, newest first."""
    files = [log_path] if log_path.exists() else []
    index = 1
    while True:
        backup = log_path.with_name(f"{log_path.name}.{index}")
        if not backup.exists():
            return files
        files.append(backup)
        index += 1


def validate_audit_trail(log_path: Path) -> dict[Path, ChainValidationResult]:
    """Validate the live log and every rotated backup next to it."""
    return {path: validate_audit_chain(path) for path in audit_log_files(log_path)}


class AuditLogger:
    """Append-only audit log shared by the endpoint and the dispatcher.

    Writers run on the event loop and in worker threads of one process, so a
    thread lock serializes appends and rotation.
    """

    def __init__(
        self,
        log_path: str,
        max_bytes: int = 10_485_760,
        backup_count: int = 5,
    ) -> None:
        if backup_count < 1:
            raise ValueError("backup_count must be at least 1")
        self.log_path = Path(log_path)
        self._max_bytes = max_bytes
        self._backup_count = backup_count
        self._lock = threading.Lock()
        self._last_line: str | None = None
        # A restarted process continues the chain of the live file
        if self.log_path.exists():
            existing = self.log_path.read_text().strip()
            if existing:
                self._last_line = existing.rsplit("\n", 1)[-1]

    @classmethod
    def from_env(cls, log_path: str) -> AuditLogger:
        """Build a logger whose rotation limits come from the environment."""
        return cls(
            log_path=log_path,
            max_bytes=int(os.environ.get("AUDIT_LOG_MAX_BYTES", "10485760")),
            backup_count=int(os.environ.get("AUDIT_LOG_BACKUP_COUNT", "5")),
        )

    def _backup(self, index: int) -> Path:
        return self.log_path.with_name(f"{self.log_path.name}.{index}")

    def _rotate_if_full(self) -> bool:
        if not self.log_path.exists() or self.log_path.stat().st_size < self._max_bytes:
            return False

        self._backup(self._backup_count).unlink(missing_ok=True)
        for index in range(self._backup_count - 1, 0, -1):
            if self._backup(index).exists():
                self._backup(index).rename(self._backup(index + 1))
        self.log_path.rename(self._backup(1))
        return True

    def log(self, event: AuditEvent) -> None:
        """Append one record. Raises ``OSError`` when the file cannot be written."""
        record = json.loads(event.model_dump_json())

        with self._lock:
            self.log_path.parent.mkdir(parents=True, exist_ok=True)
            if self._rotate_if_full():
                self._last_line = None
            record["prev_hash"] = (
                _line_hash(self._last_line) if self._last_line is not None else None
            )
            line = json.dumps(record, separators=(",", ":"))
            with open(self.log_path, "a") as f:
                f.write(line + "\n")
            self._last_line = line
