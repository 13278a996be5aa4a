"""Shared fakes for the companion tests."""

import asyncio
import copy
from typing import Any
from unittest.mock import AsyncMock, Mock

import pytest

from companion.errors import SyncError


class ScriptedProvider:
    """CompletionProvider that replays fragments.

    ``script`` maps a message to its fragments; other messages get
    ``fragments``. ``error`` is raised after the fragments are sent.
    """

    def __init__(self) -> None:
        self.fragments: list[str] = ["Hi", " there", "!"]
        self.script: dict[str, list[str]] = {}
        self.error: Exception | None = None
        self.reply = ""
        self.calls: list[dict[str, Any]] = []

    async def complete_streaming(self, message, history, facts, mood):
        self.calls.append({"message": message, "history": history, "facts": facts, "mood": mood})
        for fragment in self.script.get(message, self.fragments):
            await asyncio.sleep(0)
            yield fragment
        if self.error is not None:
            raise self.error

    async def complete(self, message, history=None, facts="", mood="happy", system=None):
        return self.reply


class InMemoryStore:
    """Store keeping rows in dicts, with switchable failures."""

    def __init__(self) -> None:
        self.users: dict[str, dict[str, Any]] = {}
        self.threads: dict[str, dict[str, Any]] = {}
        self.fail_threads: set[str] = set()
        self.fail_user = False
        self.unavailable = False
        self.user_writes: list[float] = []

    async def get_user(self, user_id):
        if self.unavailable:
            raise SyncError("store offline")
        row = self.users.get(user_id)
        return copy.deepcopy(row) if row is not None else None

    async def upsert_user(self, user_id, facts, score, mood):
        if self.unavailable or self.fail_user:
            raise SyncError("user write rejected")
        row = self.users.setdefault(user_id, {"id": user_id})
        row.update({"memories": copy.deepcopy(facts), "score": score, "currentMood": mood})
        self.user_writes.append(asyncio.get_running_loop().time())

    async def upsert_thread(self, thread_id, owner_id, title, turns, timestamp):
        if self.unavailable or thread_id in self.fail_threads:
            raise SyncError(f"thread {thread_id} rejected")
        self.threads[thread_id] = {
            "id": thread_id,
            "userId": owner_id,
            "title": title,
            "messages": copy.deepcopy(turns),
            "timestamp": timestamp,
        }

    async def list_threads(self, owner_id):
        if self.unavailable:
            raise SyncError("store offline")
        rows = [copy.deepcopy(t) for t in self.threads.values() if t["userId"] == owner_id]
        return sorted(rows, key=lambda t: t["timestamp"], reverse=True)


class TaskRecorder:
    """Spawner that remembers its tasks so tests can wait for them."""

    def __init__(self) -> None:
        self.tasks: list[asyncio.Task[Any]] = []

    def __call__(self, coro):
        task = asyncio.create_task(coro)
        self.tasks.append(task)
        return task

    async def drain(self) -> None:
        while True:
            pending = [t for t in self.tasks if not t.done()]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)


@pytest.fixture
def provider() -> ScriptedProvider:
    return ScriptedProvider()


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def spawner() -> TaskRecorder:
    return TaskRecorder()


@pytest.fixture
def extractor() -> Mock:
    """Extractor that finds nothing new."""
    mock = Mock()
    mock.extract = AsyncMock(return_value="")
    return mock
