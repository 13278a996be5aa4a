"""Data models for threads, turns, facts and snapshots."""

import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

MOODS = ("happy", "sad", "stressed", "loved", "tired")
DEFAULT_MOOD = "happy"
NEW_THREAD_TITLE = "New Conversation"


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


def new_id() -> str:
    return uuid.uuid4().hex[:12]


def derive_title(text: str, length: int = 30) -> str:
    """Build a thread title from the first user message.

    Args:
        text: The user message.
        length: Maximum number of characters kept before the ellipsis.

    Returns:
        The first ``length`` characters, suffixed with ``...`` if truncated.
    """
    text = text.strip()
    if len(text) > length:
        return text[:length] + "..."
    return text


def validate_mood(mood: str) -> str:
    if mood not in MOODS:
        raise ValueError(f"Unknown mood '{mood}', expected one of: {', '.join(MOODS)}")
    return mood


class Role(str, Enum):
    """Author of a turn."""

    USER = "user"
    ASSISTANT = "assistant"


@dataclass(eq=False)
class Turn:
    """A single message in a thread.

    Assistant turns start as an unsealed, empty placeholder and receive
    content until ``seal()`` is called. Sealed turns never change again.
    Equality is identity: two turns with the same text are still different
    turns.
    """

    role: Role
    content: str = ""
    sealed: bool = False
    id: str = field(default_factory=new_id)

    @classmethod
    def user(cls, content: str) -> "Turn":
        return cls(role=Role.USER, content=content, sealed=True)

    @classmethod
    def placeholder(cls) -> "Turn":
        return cls(role=Role.ASSISTANT)

    def apply(self, content: str) -> bool:
        """Replace the content of an unsealed turn. Returns False if sealed."""
        if self.sealed:
            return False
        self.content = content
        return True

    def seal(self, content: str | None = None) -> bool:
        """Freeze the turn, optionally setting its final content.

        Returns:
            True if this call sealed the turn, False if it was already sealed.
        """
        if self.sealed:
            return False
        if content is not None:
            self.content = content
        self.sealed = True
        return True

    def to_message(self) -> dict[str, str]:
        """Role/text pair for the provider and the wire format."""
        return {"role": self.role.value, "content": self.content}

    @classmethod
    def from_message(cls, data: dict[str, Any]) -> "Turn":
        role = data.get("role", "assistant")
        # Older records used "model" for the assistant role
        if role == "model":
            role = "assistant"
        return cls(role=Role(role), content=str(data.get("content", "")), sealed=True)


@dataclass
class Thread:
    """A conversation thread. Turn order is chronological."""

    id: str
    title: str = NEW_THREAD_TITLE
    turns: list[Turn] = field(default_factory=list)
    timestamp: int = field(default_factory=now_ms)

    def find_turn(self, turn: Turn) -> int:
        """Index of ``turn`` in this thread by identity, or -1."""
        for index, candidate in enumerate(self.turns):
            if candidate is turn:
                return index
        return -1

    def history(self) -> list[dict[str, str]]:
        """Sealed turns as role/text pairs."""
        return [t.to_message() for t in self.turns if t.sealed]

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "messages": [t.to_message() for t in self.turns],
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Thread":
        return cls(
            id=str(data["id"]),
            title=data.get("title") or NEW_THREAD_TITLE,
            turns=[Turn.from_message(m) for m in data.get("messages") or []],
            timestamp=int(data.get("timestamp") or now_ms()),
        )


@dataclass
class Fact:
    """A remembered fact about the user."""

    text: str
    id: str = field(default_factory=new_id)
    created_at: int = field(default_factory=now_ms)

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "text": self.text, "timestamp": self.created_at}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Fact":
        return cls(
            text=str(data["text"]),
            id=str(data.get("id") or new_id()),
            created_at=int(data.get("timestamp") or now_ms()),
        )


@dataclass
class User:
    """An authenticated user. Credentials never live here."""

    id: str
    username: str
    joined_at: int = field(default_factory=now_ms)
    mood: str = DEFAULT_MOOD

    def days_together(self, now: int | None = None) -> int:
        """Whole days since the user joined."""
        now = now_ms() if now is None else now
        return max(0, (now - self.joined_at) // (1000 * 60 * 60 * 24))

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "username": self.username,
            "joinedDate": self.joined_at,
            "currentMood": self.mood,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "User":
        return cls(
            id=str(data["id"]),
            username=str(data.get("username", "")),
            joined_at=int(data.get("joinedDate") or now_ms()),
            mood=data.get("currentMood") or DEFAULT_MOOD,
        )


@dataclass
class Snapshot:
    """Full serializable state of one user's session."""

    user_id: str | None
    threads: list[Thread] = field(default_factory=list)
    facts: list[Fact] = field(default_factory=list)
    score: int = 0
    mood: str = DEFAULT_MOOD

    def to_dict(self) -> dict[str, Any]:
        return {
            "userId": self.user_id,
            "chats": [t.to_dict() for t in self.threads],
            "memories": [f.to_dict() for f in self.facts],
            "score": self.score,
            "currentMood": self.mood,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Snapshot":
        return cls(
            user_id=data.get("userId"),
            threads=[Thread.from_dict(t) for t in data.get("chats") or []],
            facts=[Fact.from_dict(f) for f in data.get("memories") or []],
            score=int(data.get("score") or 0),
            mood=data.get("currentMood") or DEFAULT_MOOD,
        )
