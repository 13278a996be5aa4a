"""Configuration for the companion session."""

import os
from dataclasses import dataclass
from pathlib import Path

DEFAULT_MODEL = "llama-3.1-70b-versatile"
DEFAULT_FALLBACK_REPLY = "I'm sorry, I'm having a little trouble right now."
DEFAULT_STARTER_FACT = "We just started talking"


@dataclass
class CompanionConfig:
    """Configuration for a companion session."""

    model: str = DEFAULT_MODEL
    companion_name: str = "Jeba"
    data_dir: Path | None = None
    log_dir: Path | None = None
    store_url: str | None = None
    store_path: Path | None = None
    debounce_seconds: float = 2.0
    title_length: int = 30
    recent_turns: int = 4
    starter_fact: str = DEFAULT_STARTER_FACT
    fallback_reply: str = DEFAULT_FALLBACK_REPLY
    shutdown_grace_seconds: float = 5.0
    http_timeout: float = 10.0

    def __post_init__(self) -> None:
        if self.data_dir is None:
            self.data_dir = Path.home() / ".companion"
        self.data_dir = Path(self.data_dir)
        if self.log_dir is None:
            self.log_dir = self.data_dir / "logs"
        if self.store_path is None:
            self.store_path = self.data_dir / "store.db"

    @property
    def backup_dir(self) -> Path:
        assert self.data_dir is not None
        return self.data_dir / "backup"

    @classmethod
    def from_env(cls) -> "CompanionConfig":
        """Load configuration from environment variables."""
        data_dir = os.getenv("COMPANION_DATA_DIR")
        return cls(
            model=os.getenv("GROQ_MODEL", DEFAULT_MODEL),
            companion_name=os.getenv("COMPANION_NAME", "Jeba"),
            data_dir=Path(data_dir).expanduser() if data_dir else None,
            store_url=os.getenv("COMPANION_STORE_URL") or None,
            debounce_seconds=float(os.getenv("COMPANION_SYNC_DEBOUNCE", "2.0")),
            starter_fact=os.getenv("COMPANION_STARTER_FACT", DEFAULT_STARTER_FACT),
        )
