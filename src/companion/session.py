"""Session context: owns the cache, engines and background tasks."""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Awaitable, Callable, Coroutine
from typing import Any

import httpx
from groq import AsyncGroq

from .auth import AuthService, HttpAuthService, SqliteAuthService
from .cache import LocalBackup, LocalCache
from .config import CompanionConfig
from .errors import AuthError
from .llm import CompletionProvider, GroqCompletionProvider
from .logging import JSONLLogger
from .memory import GroqMemoryExtractor, MemoryExtractor
from .models import MOODS, Snapshot, User
from .results import AuthFailure, AuthResult, Ok, PullResult
from .stream import ExchangeHandle, StreamIngestionEngine
from .sync import HttpStore, SqliteStore, Store, SyncEngine

logger = logging.getLogger(__name__)


class Session:
    """Everything one running client needs, passed around by reference.

    The session wires the local cache to the sync engine and the stream
    ingestion engine, tracks every background task it spawns and joins
    them on ``close()``.
    """

    def __init__(
        self,
        config: CompanionConfig,
        provider: CompletionProvider,
        store: Store,
        *,
        auth: AuthService | None = None,
        extractor: MemoryExtractor | None = None,
        backup: LocalBackup | None = None,
        events: JSONLLogger | None = None,
    ) -> None:
        self.config = config
        self.events = events
        self.auth = auth
        self._tasks: set[asyncio.Task[Any]] = set()
        self._closers: list[Callable[[], Awaitable[None] | None]] = []
        self._closed = False

        self.cache = LocalCache(backup if backup is not None else LocalBackup(config.backup_dir))
        self.sync = SyncEngine(
            store,
            self.cache.snapshot,
            debounce_seconds=config.debounce_seconds,
            spawn=self.spawn,
            events=events,
        )
        self.cache.on_mutation = self.sync.notify_mutation
        self.stream = StreamIngestionEngine(
            self.cache,
            provider,
            extractor,
            spawn=self.spawn,
            events=events,
            fallback_reply=config.fallback_reply,
            title_length=config.title_length,
            recent_turns=config.recent_turns,
        )

    @classmethod
    def from_config(
        cls,
        config: CompanionConfig,
        groq_client: AsyncGroq | None = None,
    ) -> "Session":
        """Build a session with the Groq provider and the configured store."""
        client = groq_client or AsyncGroq(api_key=os.getenv("GROQ_API_KEY"))
        provider = GroqCompletionProvider(
            client, model=config.model, companion_name=config.companion_name
        )
        extractor = GroqMemoryExtractor(provider)
        events = JSONLLogger(log_dir=config.log_dir)

        closers: list[Callable[[], Awaitable[None] | None]] = []
        store: Store
        auth: AuthService
        if config.store_url:
            http_client = httpx.AsyncClient(base_url=config.store_url, timeout=config.http_timeout)
            store = HttpStore(client=http_client)
            auth = HttpAuthService(http_client)
            closers.append(http_client.aclose)
        else:
            assert config.store_path is not None
            sqlite_store = SqliteStore(config.store_path)
            sqlite_store.init_db()
            store = sqlite_store
            auth = SqliteAuthService(sqlite_store)
            closers.append(sqlite_store.close)

        session = cls(config, provider, store, auth=auth, extractor=extractor, events=events)
        session._closers.extend(closers)
        return session

    # Background tasks

    def spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task[Any]:
        """Run ``coro`` in the background, tracked until it finishes."""
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Background task failed", exc_info=exc)

    @property
    def pending_tasks(self) -> int:
        return sum(1 for task in self._tasks if not task.done())

    # Lifecycle

    @property
    def user(self) -> User | None:
        return self.cache.user

    async def start(self) -> PullResult | None:
        """Bootstrap the cache.

        With a remembered user the local backup is loaded first and then
        reconciled with the remote store. Without one the cache is seeded
        with the starter fact and a zero score.

        Returns:
            The pull result, or None when there was no identity to pull for.
        """
        has_user = self.cache.load_backup()
        if self.events:
            self.events.log("session_start", restored_user=has_user)

        if not has_user:
            self.cache.seed(self.config.starter_fact)
            return None

        assert self.cache.user is not None
        return await self._reconcile(self.cache.user)

    async def _reconcile(self, user: User) -> PullResult:
        if self.events:
            self.events.set_user_id(user.id)

        result = await self.sync.pull(user.id)
        if isinstance(result, Ok):
            self.apply_pull(result.value)

        self.sync.attach(user.id)
        self.sync.notify_mutation()
        return result

    def apply_pull(self, snapshot: Snapshot) -> None:
        """Adopt a remote snapshot.

        Threads are replaced wholesale, even if local edits are newer.
        Facts are replaced only if the remote has some. The remote score
        is ignored; only local increments count.
        """
        self.cache.replace_threads(snapshot.threads)
        if snapshot.facts:
            self.cache.replace_facts(snapshot.facts)
        if snapshot.mood in MOODS and snapshot.mood != self.cache.mood:
            self.cache.set_mood(snapshot.mood)

    async def close(self) -> None:
        """Join background work, flush a pending push and release resources."""
        if self._closed:
            return
        self._closed = True

        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.config.shutdown_grace_seconds
        while True:
            pending = {task for task in self._tasks if not task.done()}
            remaining = deadline - loop.time()
            if not pending or remaining <= 0:
                break
            await asyncio.wait(pending, timeout=remaining)

        leftover = [task for task in self._tasks if not task.done()]
        for task in leftover:
            task.cancel()
        if leftover:
            await asyncio.gather(*leftover, return_exceptions=True)

        if self.sync.pending:
            await self.sync.flush()

        for closer in self._closers:
            result = closer()
            if asyncio.iscoroutine(result):
                await result

        if self.events:
            self.events.log("session_end", cancelled_tasks=len(leftover))

    async def __aenter__(self) -> "Session":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    # Identity

    async def signup(self, username: str, secret: str) -> AuthResult:
        return await self._authenticate("signup", username, secret)

    async def login(self, username: str, secret: str) -> AuthResult:
        return await self._authenticate("login", username, secret)

    async def _authenticate(self, action: str, username: str, secret: str) -> AuthResult:
        if self.auth is None:
            return AuthFailure("Accounts are not available")

        try:
            if action == "signup":
                user = await self.auth.signup(username, secret)
            else:
                user = await self.auth.login(username, secret)
        except AuthError as e:
            if self.events:
                self.events.log("auth", action=action, ok=False, error=str(e))
            return AuthFailure(str(e))

        if self.events:
            self.events.log("auth", user_id=user.id, action=action, ok=True)

        self.sync.detach()
        self.cache.set_user(user)
        await self._reconcile(user)
        return Ok(user)

    def logout(self) -> None:
        """Forget the user and all local state.

        Exchanges still in flight are cancelled first, so nothing they
        finish later lands in the state of whoever logs in next.
        """
        leftover = [task for task in self._tasks if not task.done()]
        for task in leftover:
            task.cancel()
        self.sync.detach()
        self.cache.reset()
        if self.events:
            self.events.log("logout", cancelled_tasks=len(leftover))
            self.events.set_user_id(None)

    # Conversation

    def send(self, text: str) -> ExchangeHandle:
        """Send a message to the active thread, or a new one if none is active."""
        return self.stream.begin_exchange(self.cache.active_thread_id, text)

    def send_gift(self, kind: str) -> ExchangeHandle:
        return self.stream.send_gift(kind, self.cache.active_thread_id)
