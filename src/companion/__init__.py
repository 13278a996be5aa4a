"""Companion: streamed chat threads with background memory and debounced sync."""

from .config import CompanionConfig
from .session import Session

__all__ = ["CompanionConfig", "Session"]
