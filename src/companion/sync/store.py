"""Store protocol and the SQLite implementation."""

import json
import sqlite3
from pathlib import Path
from typing import Any, Protocol

from ..errors import SyncError


class Store(Protocol):
    """Durable per-user storage with row-level, idempotent upserts."""

    async def get_user(self, user_id: str) -> dict[str, Any] | None:
        """Return the user row, or None if it does not exist."""
        ...

    async def upsert_user(
        self, user_id: str, facts: list[dict[str, Any]], score: int, mood: str
    ) -> None:
        ...

    async def upsert_thread(
        self,
        thread_id: str,
        owner_id: str,
        title: str,
        turns: list[dict[str, str]],
        timestamp: int,
    ) -> None:
        ...

    async def list_threads(self, owner_id: str) -> list[dict[str, Any]]:
        """Return the owner's threads, most recent first."""
        ...


class SqliteStore:
    """Store backed by a SQLite database.

    Users and chats live in two tables; facts and turns are stored as JSON
    text columns. Every write is an ``INSERT ... ON CONFLICT(id) DO UPDATE``
    so repeating a write leaves the row unchanged.
    """

    def __init__(self, db_path: Path) -> None:
        """Initialize the store with a database path.

        Args:
            db_path: Path to the SQLite database file.
        """
        self.db_path = Path(db_path)
        self._conn: sqlite3.Connection | None = None

    def _get_connection(self) -> sqlite3.Connection:
        """Get or create the database connection."""
        if self._conn is None:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(self.db_path)
            self._conn.row_factory = sqlite3.Row
        return self._conn

    def init_db(self) -> None:
        """Create the users and chats tables if they don't exist."""
        conn = self._get_connection()
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS users (
                id            TEXT PRIMARY KEY,
                username      TEXT UNIQUE,
                password_hash TEXT,
                memories      TEXT NOT NULL DEFAULT '[]',
                score         INTEGER NOT NULL DEFAULT 0,
                joined_at     INTEGER,
                mood          TEXT NOT NULL DEFAULT 'happy'
            );
            CREATE TABLE IF NOT EXISTS chats (
                id         TEXT PRIMARY KEY,
                user_id    TEXT NOT NULL,
                title      TEXT NOT NULL,
                messages   TEXT NOT NULL DEFAULT '[]',
                timestamp  INTEGER NOT NULL,
                FOREIGN KEY(user_id) REFERENCES users(id)
            );
            CREATE INDEX IF NOT EXISTS idx_chats_user ON chats(user_id, timestamp);
        """)
        conn.commit()

    def _execute(self, sql: str, params: tuple[Any, ...] = ()) -> sqlite3.Cursor:
        try:
            conn = self._get_connection()
            cursor = conn.execute(sql, params)
            conn.commit()
            return cursor
        except sqlite3.Error as e:
            raise SyncError(f"SQLite store error: {e}") from e

    # Store protocol

    async def get_user(self, user_id: str) -> dict[str, Any] | None:
        row = self._execute(
            "SELECT id, username, memories, score, joined_at, mood FROM users WHERE id = ?",
            (user_id,),
        ).fetchone()
        if row is None:
            return None
        return self._row_to_user(row)

    async def upsert_user(
        self, user_id: str, facts: list[dict[str, Any]], score: int, mood: str
    ) -> None:
        self._execute(
            """
            INSERT INTO users (id, memories, score, mood)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                memories = excluded.memories,
                score = excluded.score,
                mood = excluded.mood
            """,
            (user_id, json.dumps(facts, ensure_ascii=False), score, mood),
        )

    async def upsert_thread(
        self,
        thread_id: str,
        owner_id: str,
        title: str,
        turns: list[dict[str, str]],
        timestamp: int,
    ) -> None:
        self._execute(
            """
            INSERT INTO chats (id, user_id, title, messages, timestamp)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                title = excluded.title,
                messages = excluded.messages,
                timestamp = excluded.timestamp
            """,
            (thread_id, owner_id, title, json.dumps(turns, ensure_ascii=False), timestamp),
        )

    async def list_threads(self, owner_id: str) -> list[dict[str, Any]]:
        rows = self._execute(
            "SELECT id, title, messages, timestamp FROM chats WHERE user_id = ? "
            "ORDER BY timestamp DESC",
            (owner_id,),
        ).fetchall()
        return [
            {
                "id": row["id"],
                "title": row["title"],
                "messages": json.loads(row["messages"]),
                "timestamp": row["timestamp"],
            }
            for row in rows
        ]

    # Account rows, used by SqliteAuthService

    def create_account(
        self, user_id: str, username: str, password_hash: str, joined_at: int
    ) -> bool:
        """Insert a new account. Returns False if the username is taken."""
        conn = self._get_connection()
        try:
            conn.execute(
                "INSERT INTO users (id, username, password_hash, joined_at) VALUES (?, ?, ?, ?)",
                (user_id, username, password_hash, joined_at),
            )
            conn.commit()
        except sqlite3.IntegrityError:
            return False
        return True

    def find_account(self, username: str, password_hash: str) -> dict[str, Any] | None:
        row = self._execute(
            "SELECT id, username, memories, score, joined_at, mood FROM users "
            "WHERE username = ? AND password_hash = ?",
            (username, password_hash),
        ).fetchone()
        if row is None:
            return None
        return self._row_to_user(row)

    def close(self) -> None:
        """Close the database connection."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def _row_to_user(self, row: sqlite3.Row) -> dict[str, Any]:
        """Convert a database row to the user wire format."""
        return {
            "id": row["id"],
            "username": row["username"],
            "memories": json.loads(row["memories"] or "[]"),
            "score": row["score"],
            "joinedDate": row["joined_at"],
            "currentMood": row["mood"],
        }
