"""Structured session events, one JSON object per line."""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


@dataclass
class LogEntry:
    """One session event.

    ``fields`` holds event-specific values. They are written next to the
    core keys, which they can never overwrite.
    """

    timestamp: str
    event: str
    user_id: str | None = None
    thread_id: str | None = None
    duration_ms: float | None = None
    error: str | None = None
    fields: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        record: dict[str, Any] = {"timestamp": self.timestamp, "event": self.event}
        for key in ("user_id", "thread_id", "error"):
            value = getattr(self, key)
            if value is not None:
                record[key] = value
        if self.duration_ms is not None:
            record["duration_ms"] = round(self.duration_ms, 1)
        for key, value in self.fields.items():
            record.setdefault(key, value)
        return record


class JSONLLogger:
    """Append-only JSONL event log with numbered size-based rotation.

    When the live file reaches ``max_size_mb`` it becomes ``<name>.1``, the
    previous ``<name>.1`` becomes ``<name>.2`` and so on, keeping at most
    ``backups`` old files. A failed write is reported through stdlib
    logging and never reaches the caller.
    """

    def __init__(
        self,
        log_dir: str | Path | None = None,
        filename: str = "events.jsonl",
        max_size_mb: float = 10.0,
        backups: int = 3,
    ) -> None:
        if log_dir is None:
            log_dir = Path.home() / ".companion" / "logs"
        self.log_dir = Path(log_dir)
        self.log_dir.mkdir(parents=True, exist_ok=True)
        self.filename = filename
        self.max_size_bytes = int(max_size_mb * 1024 * 1024)
        self.backups = backups
        self._user_id: str | None = None

    @property
    def log_path(self) -> Path:
        return self.log_dir / self.filename

    def rotated_path(self, n: int) -> Path:
        return self.log_dir / f"{self.filename}.{n}"

    def set_user_id(self, user_id: str | None) -> None:
        """Attach ``user_id`` to every following event that names none."""
        self._user_id = user_id

    def _rotate(self) -> None:
        if not self.log_path.exists() or self.log_path.stat().st_size < self.max_size_bytes:
            return

        oldest = self.rotated_path(self.backups)
        if oldest.exists():
            oldest.unlink()
        for n in range(self.backups - 1, 0, -1):
            if self.rotated_path(n).exists():
                self.rotated_path(n).rename(self.rotated_path(n + 1))
        if self.backups > 0:
            self.log_path.rename(self.rotated_path(1))
        else:
            self.log_path.unlink()

    def log(
        self,
        event: str,
        *,
        user_id: str | None = None,
        thread_id: str | None = None,
        duration_ms: float | None = None,
        error: str | None = None,
        **fields: Any,
    ) -> None:
        entry = LogEntry(
            timestamp=datetime.now(timezone.utc).isoformat(),
            event=event,
            user_id=user_id or self._user_id,
            thread_id=thread_id,
            duration_ms=duration_ms,
            error=error,
            fields=fields,
        )
        line = json.dumps(entry.to_dict(), ensure_ascii=False, default=str)
        try:
            self._rotate()
            with open(self.log_path, "a", encoding="utf-8") as f:
                f.write(line + "\n")
        except OSError as e:
            logger.warning(f"Could not write '{event}' to {self.log_path}: {e}")

    def log_exchange_sealed(
        self,
        thread_id: str,
        *,
        fragments: int,
        chars: int,
        duration_ms: float,
        fallback: bool = False,
    ) -> None:
        """Record how a streamed reply ended."""
        self.log(
            "exchange_sealed",
            thread_id=thread_id,
            duration_ms=duration_ms,
            fragments=fragments,
            chars=chars,
            fallback=fallback,
        )

    def log_sync_push(self, *, threads: int, failed: int, duration_ms: float) -> None:
        self.log("sync_push", duration_ms=duration_ms, threads=threads, failed=failed)
