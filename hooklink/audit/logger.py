"""Audit logger: append-only JSON Lines with rotation and a SHA-256 hash chain.

Each line carries ``prev_hash``, the SHA-256 of the previous line in the same
file. The first line of a file has ``prev_hash: null``; rotation starts a new
chain so every file validates on its own.
"""

from __future__ import annotations

import fcntl
import hashlib
import json
from collections.abc import Iterator
from dataclasses import dataclass
from pathlib import Path

from hooklink.models import AuditEvent, AuditEventType


@dataclass
class ChainValidationResult:
    valid: bool
    broken_at_line: int | None = None
    entries: int = 0


def _line_hash(line: str) -> str:
    return hashlib.sha256(line.encode()).hexdigest()


def validate_audit_chain(log_path: Path) -> ChainValidationResult:
    """Validate the hash chain integrity of an audit log file."""
    if not log_path.exists():
        return ChainValidationResult(valid=True)

    lines = [line for line in log_path.read_text().split("\n") if line]
    for i, line in enumerate(lines):
        try:
            entry = json.loads(line)
        except json.JSONDecodeError:
            return ChainValidationResult(valid=False, broken_at_line=i + 1, entries=i)
        expected = None if i == 0 else _line_hash(lines[i - 1])
        if entry.get("prev_hash") != expected:
            return ChainValidationResult(valid=False, broken_at_line=i + 1, entries=i)

    return ChainValidationResult(valid=True, entries=len(lines))


class AuditLogger:
    """Append-only structured audit logger with rotation and hash chain."""

    def __init__(
        self,
        log_path: str,
        max_bytes: int = 10_485_760,
        backup_count: int = 5,
    ) -> None:
        self.log_path = Path(log_path)
        self._max_bytes = max_bytes
        self._backup_count = backup_count
        self._last_line: str | None = self._read_last_line()

    def _read_last_line(self) -> str | None:
        if not self.log_path.exists() or self.log_path.stat().st_size == 0:
            return None
        text = self.log_path.read_text().strip()
        if not text:
            return None
        return text.split("\n")[-1]

    def _maybe_rotate(self) -> bool:
        """Rotate the log file if it exceeds max_bytes. Returns True if rotated."""
        if not self.log_path.exists():
            return False
        if self.log_path.stat().st_size < self._max_bytes:
            return False

        oldest = self.log_path.parent / f"{self.log_path.name}.{self._backup_count}"
        if oldest.exists():
            oldest.unlink()

        for i in range(self._backup_count - 1, 0, -1):
            src = self.log_path.parent / f"{self.log_path.name}.{i}"
            dst = self.log_path.parent / f"{self.log_path.name}.{i + 1}"
            if src.exists():
                src.rename(dst)

        self.log_path.rename(self.log_path.parent / f"{self.log_path.name}.1")
        return True

    def log(self, event: AuditEvent) -> None:
        self.log_path.parent.mkdir(parents=True, exist_ok=True)

        lock_file = self.log_path.parent / f".{self.log_path.name}.lock"
        with open(lock_file, "w") as lf:
            fcntl.flock(lf, fcntl.LOCK_EX)
            try:
                # Another process may have appended since our last write.
                if self._maybe_rotate():
                    self._last_line = None
                else:
                    self._last_line = self._read_last_line()

                data = json.loads(event.model_dump_json(exclude_none=True))
                data["prev_hash"] = (
                    _line_hash(self._last_line) if self._last_line is not None else None
                )
                line = json.dumps(data, separators=(",", ":"))

                with open(self.log_path, "a") as f:
                    f.write(line + "\n")
            finally:
                fcntl.flock(lf, fcntl.LOCK_UN)

        self._last_line = line

    def read_events(
        self,
        event_type: AuditEventType | None = None,
        webhook_id: str | None = None,
    ) -> Iterator[dict[str, object]]:
        """Yield entries of the current log file, optionally filtered."""
        if not self.log_path.exists():
            return
        with open(self.log_path) as f:
            for raw in f:
                raw = raw.strip()
                if not raw:
                    continue
                entry = json.loads(raw)
                if event_type is not None and entry.get("event_type") != event_type.value:
                    continue
                if webhook_id is not None and entry.get("webhook_id") != webhook_id:
                    continue
                yield entry
