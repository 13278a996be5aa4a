"""Durable local-only backup of the cache, one JSON record per collection."""

import json
import logging
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

COLLECTIONS = ("user", "threads", "facts", "score", "mood")


class LocalBackup:
    """Mirrors cache collections to disk so a restart recovers them offline.

    Each collection is loaded wholesale at boot and overwritten wholesale
    on every relevant mutation.
    """

    def __init__(self, backup_dir: Path) -> None:
        self.backup_dir = Path(backup_dir)
        self.backup_dir.mkdir(parents=True, exist_ok=True)

    def _record_file(self, name: str) -> Path:
        """Get the file path for a collection."""
        if name not in COLLECTIONS:
            raise ValueError(f"Unknown collection '{name}'")
        return self.backup_dir / f"{name}.json"

    def load(self, name: str) -> Any | None:
        """Load one collection, or None if missing or unreadable."""
        path = self._record_file(name)
        if not path.exists():
            return None

        try:
            with open(path, "r", encoding="utf-8") as f:
                return json.load(f)
        except (json.JSONDecodeError, OSError) as e:
            logger.warning(f"Ignoring unreadable backup record {path.name}: {e}")
            return None

    def load_all(self) -> dict[str, Any]:
        """Load every collection that has a readable record."""
        records = {}
        for name in COLLECTIONS:
            value = self.load(name)
            if value is not None:
                records[name] = value
        return records

    def save(self, name: str, value: Any) -> None:
        """Overwrite one collection."""
        path = self._record_file(name)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(value, f, ensure_ascii=False, indent=2)

    def delete(self, name: str) -> None:
        path = self._record_file(name)
        if path.exists():
            path.unlink()

    def clear(self) -> None:
        """Delete every collection record."""
        for name in COLLECTIONS:
            self.delete(name)
