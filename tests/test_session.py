"""Tests for Session wiring, bootstrap, identity and teardown."""

import asyncio
import json
import logging
from pathlib import Path
from unittest.mock import AsyncMock, Mock

import pytest

from companion.auth import SqliteAuthService
from companion.cache import LocalBackup
from companion.config import DEFAULT_STARTER_FACT, CompanionConfig
from companion.errors import InvalidCredentialsError
from companion.logging import JSONLLogger
from companion.models import User
from companion.results import AuthFailure, Ok, Unavailable
from companion.session import Session
from companion.sync import HttpStore, SqliteStore


def make_user() -> User:
    return User(id="u1", username="ana", joined_at=1000, mood="happy")


class HangingProvider:
    async def complete_streaming(self, message, history, facts, mood):
        yield "par"
        await asyncio.Event().wait()


@pytest.fixture
def config(tmp_path: Path) -> CompanionConfig:
    return CompanionConfig(data_dir=tmp_path, debounce_seconds=0.01, shutdown_grace_seconds=1.0)


@pytest.fixture
def auth() -> Mock:
    auth = Mock()
    auth.signup = AsyncMock(return_value=make_user())
    auth.login = AsyncMock(return_value=make_user())
    return auth


@pytest.fixture
def session(config, provider, store, auth, extractor) -> Session:
    return Session(
        config,
        provider,
        store,
        auth=auth,
        extractor=extractor,
        events=JSONLLogger(log_dir=config.log_dir),
    )


def read_events(session: Session) -> list[dict]:
    with open(session.events.log_path) as f:
        return [json.loads(line) for line in f]


def remember_user(config: CompanionConfig) -> LocalBackup:
    backup = LocalBackup(config.backup_dir)
    backup.save("user", make_user().to_dict())
    backup.save("threads", [{"id": "local", "title": "Local", "messages": [], "timestamp": 1}])
    return backup


class TestStart:
    @pytest.mark.asyncio
    async def test_first_run_seeds_starter_fact(self, session: Session):
        assert await session.start() is None

        assert [f.text for f in session.cache.facts] == [DEFAULT_STARTER_FACT]
        assert session.cache.score == 0
        assert session.user is None
        await session.close()

    @pytest.mark.asyncio
    async def test_remembered_user_offline_keeps_local_state(self, session, config, store):
        remember_user(config)
        store.unavailable = True

        result = await session.start()

        assert isinstance(result, Unavailable)
        assert session.user.username == "ana"
        assert [t.id for t in session.cache.threads] == ["local"]
        assert session.sync.user_id == "u1"
        await session.close()

    @pytest.mark.asyncio
    async def test_remembered_user_adopts_remote_threads(self, session, config, store):
        remember_user(config)
        store.users["u1"] = {"id": "u1", "memories": [], "score": 40, "currentMood": "loved"}
        store.threads["remote"] = {
            "id": "remote",
            "userId": "u1",
            "title": "Remote",
            "messages": [{"role": "user", "content": "hi"}],
            "timestamp": 5,
        }

        result = await session.start()

        assert isinstance(result, Ok)
        assert [t.id for t in session.cache.threads] == ["remote"]
        assert session.cache.mood == "loved"
        assert session.cache.score == 0
        await session.close()


class TestIdentity:
    @pytest.mark.asyncio
    async def test_signup(self, session: Session, auth):
        await session.start()

        result = await session.signup("ana", "pw")

        user = auth.signup.return_value
        assert result == Ok(user)
        assert session.user is user
        assert session.sync.user_id == "u1"
        auth.signup.assert_awaited_once_with("ana", "pw")
        await session.close()

    @pytest.mark.asyncio
    async def test_login_replaces_facts_when_remote_has_some(self, session, store):
        store.users["u1"] = {
            "id": "u1",
            "memories": [{"id": "f1", "text": "likes tea", "timestamp": 1}],
            "score": 9,
            "currentMood": "sad",
        }
        await session.start()

        await session.login("ana", "pw")

        assert [f.text for f in session.cache.facts] == ["likes tea"]
        assert session.cache.mood == "sad"
        assert session.user.mood == "sad"
        await session.close()

    @pytest.mark.asyncio
    async def test_login_keeps_local_facts_when_remote_has_none(self, session, store):
        store.users["u1"] = {"id": "u1", "memories": [], "score": 0, "currentMood": "happy"}
        await session.start()

        await session.login("ana", "pw")

        assert [f.text for f in session.cache.facts] == [DEFAULT_STARTER_FACT]
        await session.close()

    @pytest.mark.asyncio
    async def test_rejected_login(self, session: Session, auth):
        auth.login.side_effect = InvalidCredentialsError()
        await session.start()

        result = await session.login("ana", "bad")

        assert result == AuthFailure("Invalid credentials")
        assert session.user is None
        assert session.sync.user_id is None
        await session.close()

        auth_events = [e for e in read_events(session) if e["event"] == "auth"]
        assert auth_events[0]["ok"] is False

    @pytest.mark.asyncio
    async def test_no_auth_service(self, config, provider, store):
        session = Session(config, provider, store)

        assert isinstance(await session.login("ana", "pw"), AuthFailure)
        await session.close()

    @pytest.mark.asyncio
    async def test_logout_forgets_everything(self, session: Session, config):
        await session.start()
        await session.signup("ana", "pw")
        await session.send("Hello").wait()

        session.logout()

        assert session.user is None
        assert session.cache.threads == []
        assert session.sync.user_id is None
        assert not session.sync.pending
        assert LocalBackup(config.backup_dir).load_all() == {}
        await session.close()

    @pytest.mark.asyncio
    async def test_logout_cancels_exchange_in_flight(self, session: Session, config):
        await session.start()
        await session.signup("ana", "pw")

        handle = session.send("Hello")
        await asyncio.sleep(0)
        session.logout()
        await asyncio.gather(handle.task, return_exceptions=True)

        assert handle.task.cancelled()
        assert handle.turn.sealed
        assert session.cache.score == 0
        assert session.cache.threads == []
        assert "score" not in LocalBackup(config.backup_dir).load_all()
        await session.close()

        logout = [e for e in read_events(session) if e["event"] == "logout"]
        assert logout[0]["cancelled_tasks"] == 1


class TestExchanges:
    @pytest.mark.asyncio
    async def test_send_then_close_pushes_to_store(self, session: Session, store):
        await session.start()
        await session.signup("ana", "pw")

        handle = session.send("Hello")
        await session.close()

        assert handle.done
        row = store.threads[handle.thread_id]
        assert row["title"] == "Hello"
        assert row["messages"] == [
            {"role": "user", "content": "Hello"},
            {"role": "assistant", "content": "Hi there!"},
        ]
        assert store.users["u1"]["score"] == 1
        assert session.pending_tasks == 0

    @pytest.mark.asyncio
    async def test_send_reuses_active_thread(self, session: Session):
        await session.start()

        first = session.send("Hello")
        await first.wait()
        second = session.send("Again")
        await second.wait()

        assert first.thread_id == second.thread_id
        assert len(session.cache.threads) == 1
        await session.close()

    @pytest.mark.asyncio
    async def test_gift(self, session: Session):
        await session.start()

        await session.send_gift("heart").wait()

        assert session.cache.score == 6
        await session.close()

    @pytest.mark.asyncio
    async def test_close_cancels_stuck_exchange(self, config, store, extractor):
        config.shutdown_grace_seconds = 0.05
        session = Session(
            config,
            HangingProvider(),
            store,
            extractor=extractor,
            events=JSONLLogger(log_dir=config.log_dir),
        )
        await session.start()

        handle = session.send("Hello")
        await asyncio.sleep(0.01)
        await session.close()

        assert handle.turn.sealed
        assert handle.turn.content == "par"
        session_end = [e for e in read_events(session) if e["event"] == "session_end"]
        assert session_end[0]["cancelled_tasks"] == 1

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self, session: Session):
        await session.start()
        await session.close()
        await session.close()

        assert [e["event"] for e in read_events(session)].count("session_end") == 1


@pytest.mark.asyncio
async def test_failed_background_task_is_logged(session: Session, caplog):
    async def boom():
        raise RuntimeError("kaboom")

    with caplog.at_level(logging.ERROR, logger="companion.session"):
        task = session.spawn(boom())
        await asyncio.gather(task, return_exceptions=True)
        await asyncio.sleep(0)

    assert "Background task failed" in caplog.text
    await session.close()


@pytest.mark.asyncio
async def test_context_manager(config, provider, store):
    async with Session(config, provider, store) as session:
        assert session.cache.facts

    assert session.pending_tasks == 0


class TestFromConfig:
    @pytest.mark.asyncio
    async def test_local_store(self, config):
        session = Session.from_config(config, groq_client=Mock())

        assert isinstance(session.sync.store, SqliteStore)
        assert isinstance(session.auth, SqliteAuthService)
        assert config.store_path.exists()
        await session.close()

    @pytest.mark.asyncio
    async def test_remote_store(self, tmp_path: Path):
        config = CompanionConfig(data_dir=tmp_path, store_url="http://store.test")
        session = Session.from_config(config, groq_client=Mock())

        assert isinstance(session.sync.store, HttpStore)
        await session.close()


def test_config_from_env(monkeypatch, tmp_path: Path):
    monkeypatch.setenv("COMPANION_DATA_DIR", str(tmp_path))
    monkeypatch.setenv("COMPANION_SYNC_DEBOUNCE", "0.5")
    monkeypatch.setenv("COMPANION_NAME", "Mika")
    monkeypatch.delenv("COMPANION_STORE_URL", raising=False)

    config = CompanionConfig.from_env()

    assert config.data_dir == tmp_path
    assert config.debounce_seconds == 0.5
    assert config.companion_name == "Mika"
    assert config.store_url is None
    assert config.backup_dir == tmp_path / "backup"
