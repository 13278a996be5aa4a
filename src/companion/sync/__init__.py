"""Reconciliation between the local cache and the remote store."""

from .engine import PushReport, SyncEngine
from .remote import HttpStore
from .store import SqliteStore, Store

__all__ = ["HttpStore", "PushReport", "SqliteStore", "Store", "SyncEngine"]
