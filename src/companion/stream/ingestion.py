"""Streaming ingestion: one exchange from user message to sealed reply."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Coroutine
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from ..cache import LocalCache
from ..config import DEFAULT_FALLBACK_REPLY
from ..errors import ExtractionError
from ..llm import CompletionProvider
from ..memory import MemoryExtractor
from ..models import Fact, Turn, derive_title

if TYPE_CHECKING:
    from ..logging import JSONLLogger

logger = logging.getLogger(__name__)

Spawner = Callable[[Coroutine[Any, Any, Any]], "asyncio.Task[Any]"]

GIFT_MESSAGES = {
    "flower": "Sends a virtual rose 🌹",
    "coffee": "Sends a warm coffee ☕",
    "heart": "Sends a big heart ❤️",
}
GIFT_SCORE = 5
EXCHANGE_SCORE = 1


@dataclass
class ExchangeContext:
    """Per-exchange overrides for what the provider is told."""

    mood: str | None = None
    facts: str | None = None


@dataclass
class ExchangeHandle:
    """An exchange in flight. Await ``wait()`` for the sealed reply."""

    thread_id: str
    user_turn: Turn
    turn: Turn
    task: asyncio.Task[str]

    @property
    def done(self) -> bool:
        return self.turn.sealed

    async def wait(self) -> str:
        return await self.task


class StreamIngestionEngine:
    """Drives exchanges against the local cache.

    Each exchange owns exactly one placeholder turn. Fragments are written
    to that turn object, never to "the last turn of the thread", so several
    exchanges can run at once without touching each other's replies.
    """

    def __init__(
        self,
        cache: LocalCache,
        provider: CompletionProvider,
        extractor: MemoryExtractor | None = None,
        *,
        spawn: Spawner | None = None,
        events: JSONLLogger | None = None,
        fallback_reply: str = DEFAULT_FALLBACK_REPLY,
        title_length: int = 30,
        recent_turns: int = 4,
    ) -> None:
        self.cache = cache
        self.provider = provider
        self.extractor = extractor
        self._spawn = spawn or asyncio.create_task
        self.events = events
        self.fallback_reply = fallback_reply
        self.title_length = title_length
        self.recent_turns = recent_turns

    def begin_exchange(
        self,
        thread_id: str | None,
        user_text: str,
        context: ExchangeContext | None = None,
    ) -> ExchangeHandle:
        """Open an exchange and start streaming the reply in the background.

        The user turn and the empty placeholder are in the cache before
        this returns; the provider is only contacted by the spawned task.

        Args:
            thread_id: Target thread, or None to start a new one.
            user_text: The user's message.
            context: Optional mood/facts overrides.

        Returns:
            Handle on the in-flight exchange.

        Raises:
            ValueError: If ``user_text`` is blank.
            KeyError: If ``thread_id`` is not a known thread.
        """
        text = user_text.strip()
        if not text:
            raise ValueError("Message cannot be empty")

        title = derive_title(text, self.title_length)
        if thread_id is None:
            thread = self.cache.create_thread(title)
        else:
            thread = self.cache.get_thread(thread_id)
            if not thread.turns:
                self.cache.rename_thread(thread.id, title)

        context = context or ExchangeContext()
        facts = context.facts if context.facts is not None else self.cache.facts_joined()
        mood = context.mood or self.cache.mood
        history = thread.history()

        user_turn = Turn.user(text)
        self.cache.append_turn(thread.id, user_turn)
        turn = Turn.placeholder()
        self.cache.append_turn(thread.id, turn)

        if self.events:
            self.events.log("exchange_start", thread_id=thread.id, history=len(history))

        task = self._spawn(self._stream(thread.id, turn, text, history, facts, mood))
        return ExchangeHandle(thread_id=thread.id, user_turn=user_turn, turn=turn, task=task)

    def send_gift(self, kind: str, thread_id: str | None = None) -> ExchangeHandle:
        """Send a gift message as an exchange; gifts add to the score."""
        message = GIFT_MESSAGES.get(kind)
        if message is None:
            raise ValueError(f"Unknown gift '{kind}', expected one of: {', '.join(GIFT_MESSAGES)}")

        handle = self.begin_exchange(thread_id, message)
        self.cache.increment_score(GIFT_SCORE)
        return handle

    async def _stream(
        self,
        thread_id: str,
        turn: Turn,
        message: str,
        history: list[dict[str, str]],
        facts: str,
        mood: str,
    ) -> str:
        start_time = time.time()
        accumulator = ""
        fragments = 0
        fallback = False

        try:
            async for fragment in self.provider.complete_streaming(message, history, facts, mood):
                accumulator += fragment
                fragments += 1
                self.cache.apply_fragment(thread_id, turn, accumulator)
        except asyncio.CancelledError:
            self.cache.seal_turn(thread_id, turn, accumulator)
            raise
        except Exception as e:
            logger.warning(f"Reply stream for thread {thread_id} failed: {e}")
            if self.events:
                self.events.log("provider_error", thread_id=thread_id, error=str(e), fragments=fragments)
            accumulator = self.fallback_reply
            fallback = True

        self.cache.seal_turn(thread_id, turn, accumulator)

        if self.events:
            self.events.log_exchange_sealed(
                thread_id,
                fragments=fragments,
                chars=len(accumulator),
                duration_ms=(time.time() - start_time) * 1000,
                fallback=fallback,
            )

        # TODO: stop rewarding fallback replies once score semantics are settled.
        self.cache.increment_score(EXCHANGE_SCORE)

        if self.extractor is not None:
            self._spawn(self.enrich(thread_id, turn))

        return accumulator

    async def enrich(self, thread_id: str, turn: Turn) -> list[Fact]:
        """Extract new facts from the turns leading up to ``turn``.

        Failures leave the fact corpus untouched.

        Returns:
            The facts that were added.
        """
        if self.extractor is None or not self.cache.has_thread(thread_id):
            return []

        thread = self.cache.get_thread(thread_id)
        index = thread.find_turn(turn)
        if index < 0:
            return []

        start = max(0, index - self.recent_turns + 1)
        recent = [t.to_message() for t in thread.turns[start : index + 1]]
        corpus = self.cache.facts_joined()

        try:
            raw = await self.extractor.extract(recent, corpus)
        except ExtractionError as e:
            if self.events:
                self.events.log("extraction_error", thread_id=thread_id, error=str(e))
            return []
        except Exception as e:
            logger.warning(f"Memory extraction for thread {thread_id} failed: {e}")
            if self.events:
                self.events.log("extraction_error", thread_id=thread_id, error=str(e))
            return []

        if not raw or raw == corpus:
            return []

        added = self.cache.merge_facts(raw)
        if added and self.events:
            self.events.log("facts_extracted", thread_id=thread_id, added=len(added))
        return added
