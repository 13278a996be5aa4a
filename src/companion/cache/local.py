"""Process-local authoritative state for one session."""

import copy
import logging
from collections.abc import Callable
from dataclasses import dataclass

from ..memory import join_facts, new_fact_texts
from ..models import (
    DEFAULT_MOOD,
    MOODS,
    NEW_THREAD_TITLE,
    Fact,
    Role,
    Snapshot,
    Thread,
    Turn,
    User,
    new_id,
    now_ms,
    validate_mood,
)
from .backup import LocalBackup

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CacheEvent:
    """Published to observers after every change."""

    kind: str
    thread_id: str | None = None
    turn: Turn | None = None


Observer = Callable[[CacheEvent], None]


class LocalCache:
    """Holds the user, threads, facts, score and mood.

    Every mutation applies the change, notifies observers, mirrors the
    touched collections to the local backup and finally calls
    ``on_mutation`` (the sync engine's debounce trigger).
    """

    def __init__(
        self,
        backup: LocalBackup | None = None,
        on_mutation: Callable[[], None] | None = None,
    ) -> None:
        self.backup = backup
        self.on_mutation = on_mutation
        self.user: User | None = None
        self.threads: list[Thread] = []
        self.facts: list[Fact] = []
        self.score: int = 0
        self.mood: str = DEFAULT_MOOD
        self.active_thread_id: str | None = None
        self._observers: list[Observer] = []

    # Observers

    def subscribe(self, observer: Observer) -> Callable[[], None]:
        """Register an observer. Returns a function that unregisters it."""
        self._observers.append(observer)

        def unsubscribe() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return unsubscribe

    def _notify(self, event: CacheEvent) -> None:
        for observer in list(self._observers):
            try:
                observer(event)
            except Exception:
                logger.exception(f"Cache observer failed on {event.kind}")

    def _persist(self, *collections: str) -> None:
        if self.backup is None:
            return
        for name in collections:
            if name == "threads":
                # An empty thread list is not written so a fresh start never
                # clobbers a useful backup.
                if self.threads:
                    self.backup.save("threads", [t.to_dict() for t in self.threads])
            elif name == "facts":
                self.backup.save("facts", [f.to_dict() for f in self.facts])
            elif name == "score":
                self.backup.save("score", self.score)
            elif name == "mood":
                self.backup.save("mood", self.mood)
            elif name == "user":
                if self.user is None:
                    self.backup.delete("user")
                else:
                    self.backup.save("user", self.user.to_dict())

    def _commit(self, event: CacheEvent, *collections: str) -> None:
        self._notify(event)
        self._persist(*collections)
        if self.on_mutation is not None:
            self.on_mutation()

    # Reads

    def get_thread(self, thread_id: str) -> Thread:
        for thread in self.threads:
            if thread.id == thread_id:
                return thread
        raise KeyError(f"Unknown thread '{thread_id}'")

    def has_thread(self, thread_id: str) -> bool:
        return any(t.id == thread_id for t in self.threads)

    @property
    def active_thread(self) -> Thread | None:
        if self.active_thread_id is None:
            return None
        try:
            return self.get_thread(self.active_thread_id)
        except KeyError:
            return None

    def facts_joined(self) -> str:
        return join_facts(self.facts)

    def facts_by_recency(self) -> list[Fact]:
        """Facts newest first, for presentation."""
        return sorted(self.facts, key=lambda f: f.created_at, reverse=True)

    def snapshot(self) -> Snapshot:
        """Detached copy of the current state."""
        return Snapshot(
            user_id=self.user.id if self.user else None,
            threads=copy.deepcopy(self.threads),
            facts=copy.deepcopy(self.facts),
            score=self.score,
            mood=self.mood,
        )

    # Bootstrapping

    def restore(
        self,
        *,
        user: User | None = None,
        threads: list[Thread] | None = None,
        facts: list[Fact] | None = None,
        score: int | None = None,
        mood: str | None = None,
    ) -> None:
        """Load state without triggering a sync."""
        if user is not None:
            self.user = user
        if threads is not None:
            self.threads = list(threads)
        if facts is not None:
            self.facts = list(facts)
        if score is not None:
            self.score = score
        if mood is not None:
            self.mood = mood
        self._notify(CacheEvent("restored"))

    def load_backup(self) -> bool:
        """Restore from the local backup. Returns True if a user was found."""
        if self.backup is None:
            return False

        records = self.backup.load_all()
        user = None
        if "user" in records:
            try:
                user = User.from_dict(records["user"])
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Ignoring corrupt user backup: {e}")

        threads = None
        if "threads" in records:
            try:
                threads = [Thread.from_dict(t) for t in records["threads"]]
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Ignoring corrupt thread backup: {e}")

        facts = None
        if "facts" in records:
            try:
                facts = [Fact.from_dict(f) for f in records["facts"]]
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Ignoring corrupt fact backup: {e}")

        score = records.get("score")
        mood = records.get("mood")
        self.restore(
            user=user,
            threads=threads,
            facts=facts,
            score=int(score) if isinstance(score, int) else None,
            mood=mood if isinstance(mood, str) else None,
        )
        return user is not None

    def seed(self, starter_fact: str) -> None:
        """Seed a first-run cache with one fact and a zero score."""
        if not self.facts and starter_fact.strip():
            self.facts = [Fact(text=starter_fact.strip(), id="core-1")]
            self._persist("facts")
        self._notify(CacheEvent("facts_changed"))

    # Identity

    def set_user(self, user: User | None) -> None:
        self.user = user
        if user is not None:
            self.mood = user.mood if user.mood in MOODS else DEFAULT_MOOD
        self._commit(CacheEvent("user_changed"), "user", "mood")

    def reset(self) -> None:
        """Forget everything, including the local backup."""
        self.user = None
        self.threads = []
        self.facts = []
        self.score = 0
        self.mood = DEFAULT_MOOD
        self.active_thread_id = None
        if self.backup is not None:
            self.backup.clear()
        self._notify(CacheEvent("reset"))

    # Threads

    def set_active(self, thread_id: str | None) -> None:
        if thread_id is not None and not self.has_thread(thread_id):
            raise KeyError(f"Unknown thread '{thread_id}'")
        self.active_thread_id = thread_id
        self._notify(CacheEvent("active_changed", thread_id=thread_id))

    def create_thread(self, title: str = NEW_THREAD_TITLE, thread_id: str | None = None) -> Thread:
        """Insert a new thread at the front of the list and make it active."""
        thread_id = thread_id or new_id()
        if self.has_thread(thread_id):
            raise ValueError(f"Thread '{thread_id}' already exists")

        thread = Thread(id=thread_id, title=title)
        self.threads.insert(0, thread)
        self.active_thread_id = thread.id
        self._commit(CacheEvent("thread_created", thread_id=thread.id), "threads")
        return thread

    def new_thread(self) -> Thread:
        return self.create_thread(NEW_THREAD_TITLE)

    def rename_thread(self, thread_id: str, title: str) -> None:
        thread = self.get_thread(thread_id)
        thread.title = title
        self._commit(CacheEvent("thread_renamed", thread_id=thread_id), "threads")

    def delete_thread(self, thread_id: str) -> None:
        thread = self.get_thread(thread_id)
        self.threads.remove(thread)
        if self.active_thread_id == thread_id:
            self.active_thread_id = None
        if self.backup is not None and not self.threads:
            self.backup.save("threads", [])
        self._commit(CacheEvent("thread_deleted", thread_id=thread_id), "threads")

    def replace_threads(self, threads: list[Thread]) -> None:
        """Swap in a whole thread list, e.g. after a remote pull."""
        self.threads = list(threads)
        if self.active_thread_id is not None and not self.has_thread(self.active_thread_id):
            self.active_thread_id = None
        if self.backup is not None and not self.threads:
            self.backup.save("threads", [])
        self._commit(CacheEvent("threads_replaced"), "threads")

    # Turns

    def append_turn(self, thread_id: str, turn: Turn) -> None:
        """Append a turn to a thread.

        Raises:
            ValueError: If both the last turn and ``turn`` are unsealed.
        """
        thread = self.get_thread(thread_id)
        if not turn.sealed and thread.turns and not thread.turns[-1].sealed:
            raise ValueError("A thread cannot hold two consecutive unsealed turns")

        thread.turns.append(turn)
        if turn.role == Role.USER:
            thread.timestamp = now_ms()
        self._commit(CacheEvent("turn_appended", thread_id=thread_id, turn=turn), "threads")

    def apply_fragment(self, thread_id: str, turn: Turn, content: str) -> bool:
        """Republish the content of an in-flight turn.

        Returns False, without any effect, if the turn is sealed or no
        longer belongs to the thread.
        """
        if turn.sealed or not self.has_thread(thread_id):
            return False
        if self.get_thread(thread_id).find_turn(turn) < 0:
            return False

        turn.apply(content)
        self._commit(CacheEvent("turn_updated", thread_id=thread_id, turn=turn), "threads")
        return True

    def seal_turn(self, thread_id: str, turn: Turn, content: str | None = None) -> bool:
        """Seal a turn. Sealing twice is a no-op that returns False."""
        if not turn.seal(content):
            return False
        if self.has_thread(thread_id):
            self._commit(CacheEvent("turn_sealed", thread_id=thread_id, turn=turn), "threads")
        return True

    # Facts

    def add_fact(self, text: str) -> Fact | None:
        """Add a fact unless one with the exact same text exists.

        Returns:
            The new fact, or None if it was a duplicate.
        """
        text = text.strip()
        if not text:
            raise ValueError("Fact text cannot be empty")
        if any(f.text == text for f in self.facts):
            return None

        fact = Fact(text=text)
        self.facts.append(fact)
        self._commit(CacheEvent("facts_changed"), "facts")
        return fact

    def merge_facts(self, raw: str) -> list[Fact]:
        """Add every fact in a comma-separated list that is not yet known."""
        added = [Fact(text=text) for text in new_fact_texts(raw, self.facts_joined())]
        if added:
            self.facts.extend(added)
            self._commit(CacheEvent("facts_changed"), "facts")
        return added

    def edit_fact(self, fact_id: str, text: str) -> Fact:
        text = text.strip()
        if not text:
            raise ValueError("Fact text cannot be empty")
        for fact in self.facts:
            if fact.id == fact_id:
                fact.text = text
                self._commit(CacheEvent("facts_changed"), "facts")
                return fact
        raise KeyError(f"Unknown fact '{fact_id}'")

    def delete_fact(self, fact_id: str) -> bool:
        remaining = [f for f in self.facts if f.id != fact_id]
        if len(remaining) == len(self.facts):
            return False
        self.facts = remaining
        self._commit(CacheEvent("facts_changed"), "facts")
        return True

    def replace_facts(self, facts: list[Fact]) -> None:
        self.facts = list(facts)
        self._commit(CacheEvent("facts_changed"), "facts")

    # Score and mood

    def increment_score(self, amount: int = 1) -> int:
        """Raise the relationship score. It never decreases."""
        if amount <= 0:
            raise ValueError("Score increments must be positive")
        self.score += amount
        self._commit(CacheEvent("score_changed"), "score")
        return self.score

    def set_mood(self, mood: str) -> None:
        self.mood = validate_mood(mood)
        if self.user is not None:
            self.user.mood = self.mood
        self._commit(CacheEvent("mood_changed"), "mood", "user")
