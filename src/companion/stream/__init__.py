"""Streaming ingestion of provider replies into threads."""

from .ingestion import (
    GIFT_MESSAGES,
    ExchangeContext,
    ExchangeHandle,
    StreamIngestionEngine,
)

__all__ = ["GIFT_MESSAGES", "ExchangeContext", "ExchangeHandle", "StreamIngestionEngine"]
