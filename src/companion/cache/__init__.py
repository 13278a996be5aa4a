"""Local state: the authoritative in-memory cache and its durable backup."""

from .backup import COLLECTIONS, LocalBackup
from .local import CacheEvent, LocalCache

__all__ = ["COLLECTIONS", "CacheEvent", "LocalBackup", "LocalCache"]
