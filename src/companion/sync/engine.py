"""Debounced push and one-shot pull between the local cache and the store."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Coroutine
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from ..models import DEFAULT_MOOD, Fact, Snapshot, Thread
from ..results import NotFound, Ok, PullResult, Unavailable
from .store import Store

if TYPE_CHECKING:
    from ..logging import JSONLLogger

logger = logging.getLogger(__name__)

Spawner = Callable[[Coroutine[Any, Any, Any]], "asyncio.Task[Any]"]


@dataclass
class PushReport:
    """Outcome of one push. Failures are reported, never raised."""

    threads: int = 0
    failed_threads: list[str] = field(default_factory=list)
    user_ok: bool = True

    @property
    def ok(self) -> bool:
        return self.user_ok and not self.failed_threads


class SyncEngine:
    """Mirrors the local cache to a Store.

    ``notify_mutation`` (re)arms a single debounce timer; when it fires,
    the current snapshot is pushed as one upsert per thread plus one for
    the user row. Failed upserts are logged and left for the next cycle.
    """

    def __init__(
        self,
        store: Store,
        snapshot: Callable[[], Snapshot],
        *,
        debounce_seconds: float = 2.0,
        spawn: Spawner | None = None,
        events: JSONLLogger | None = None,
    ) -> None:
        self.store = store
        self._snapshot = snapshot
        self.debounce_seconds = debounce_seconds
        self._spawn = spawn or asyncio.create_task
        self.events = events
        self.user_id: str | None = None
        self._timer: asyncio.TimerHandle | None = None

    def attach(self, user_id: str) -> None:
        """Start syncing on behalf of ``user_id``."""
        self.user_id = user_id

    def detach(self) -> None:
        self.cancel()
        self.user_id = None

    @property
    def pending(self) -> bool:
        """True while a debounced push is scheduled."""
        return self._timer is not None

    def notify_mutation(self) -> None:
        """Schedule a push ``debounce_seconds`` after the latest mutation."""
        if self.user_id is None:
            return

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop, mutation not scheduled for sync")
            return

        if self._timer is not None:
            self._timer.cancel()
        self._timer = loop.call_later(self.debounce_seconds, self._fire)

    def cancel(self) -> None:
        """Drop a scheduled push, if any."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _fire(self) -> None:
        self._timer = None
        if self.user_id is None:
            return
        self._spawn(self.push(self._snapshot()))

    async def flush(self) -> PushReport | None:
        """Push immediately if a push is scheduled."""
        if self._timer is None:
            return None
        self.cancel()
        return await self.push(self._snapshot())

    async def push(self, snapshot: Snapshot) -> PushReport:
        """Write a snapshot to the store, one upsert per row.

        Each failed upsert is logged and counted; the rest still run.
        """
        user_id = snapshot.user_id or self.user_id
        report = PushReport()
        if user_id is None:
            return report

        start_time = time.time()
        for thread in snapshot.threads:
            report.threads += 1
            try:
                await self.store.upsert_thread(
                    thread.id,
                    user_id,
                    thread.title,
                    [turn.to_message() for turn in thread.turns],
                    thread.timestamp,
                )
            except Exception as e:
                logger.warning(f"Thread {thread.id} push failed: {e}")
                report.failed_threads.append(thread.id)
                if self.events:
                    self.events.log("sync_error", user_id=user_id, thread_id=thread.id, error=str(e))

        try:
            await self.store.upsert_user(
                user_id,
                [fact.to_dict() for fact in snapshot.facts],
                snapshot.score,
                snapshot.mood,
            )
        except Exception as e:
            logger.warning(f"User push failed: {e}")
            report.user_ok = False
            if self.events:
                self.events.log("sync_error", user_id=user_id, error=str(e))

        if self.events:
            self.events.log_sync_push(
                threads=report.threads,
                failed=len(report.failed_threads) + (0 if report.user_ok else 1),
                duration_ms=(time.time() - start_time) * 1000,
            )
        return report

    async def pull(self, user_id: str) -> PullResult:
        """Read the remote snapshot for ``user_id``.

        Returns:
            Ok(Snapshot), NotFound if the user row is missing, or
            Unavailable if the store could not be read.
        """
        try:
            user_row = await self.store.get_user(user_id)
            if user_row is None:
                result: PullResult = NotFound(user_id)
            else:
                rows = await self.store.list_threads(user_id)
                result = Ok(
                    Snapshot(
                        user_id=user_id,
                        threads=[Thread.from_dict(row) for row in rows],
                        facts=[Fact.from_dict(f) for f in user_row.get("memories") or []],
                        score=int(user_row.get("score") or 0),
                        mood=user_row.get("currentMood") or DEFAULT_MOOD,
                    )
                )
        except Exception as e:
            logger.warning(f"Pull for {user_id} failed: {e}")
            result = Unavailable(str(e))

        if self.events:
            self.events.log("sync_pull", user_id=user_id, result=type(result).__name__)
        return result
