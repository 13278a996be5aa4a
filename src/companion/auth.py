"""Authentication services."""

import hashlib
from typing import Protocol

import httpx

from .errors import AuthError, DuplicateUsernameError, InvalidCredentialsError
from .models import User, new_id, now_ms
from .sync.store import SqliteStore


class AuthService(Protocol):
    """Issues user identities."""

    async def signup(self, username: str, secret: str) -> User:
        """Create an account. Raises DuplicateUsernameError."""
        ...

    async def login(self, username: str, secret: str) -> User:
        """Verify credentials. Raises InvalidCredentialsError."""
        ...


def hash_secret(secret: str) -> str:
    return hashlib.sha256(secret.encode("utf-8")).hexdigest()


class SqliteAuthService:
    """Accounts stored in the same SQLite database as the synced data."""

    def __init__(self, store: SqliteStore) -> None:
        self.store = store

    async def signup(self, username: str, secret: str) -> User:
        username = username.strip()
        if not username or not secret:
            raise AuthError("Username and password are required")

        user = User(id=new_id(), username=username, joined_at=now_ms())
        if not self.store.create_account(user.id, username, hash_secret(secret), user.joined_at):
            raise DuplicateUsernameError(username)
        return user

    async def login(self, username: str, secret: str) -> User:
        row = self.store.find_account(username.strip(), hash_secret(secret))
        if row is None:
            raise InvalidCredentialsError()
        return User.from_dict(row)


class HttpAuthService:
    """Accounts managed by the remote REST service.

    Endpoints:
        POST /api/auth/signup  {"username", "password"} -> user, 400 if taken
        POST /api/auth/login   {"username", "password"} -> user, 401 if invalid
    """

    def __init__(self, client: httpx.AsyncClient) -> None:
        self._client = client

    async def _post(self, url: str, username: str, secret: str) -> httpx.Response:
        try:
            return await self._client.post(
                url, json={"username": username.strip(), "password": secret}
            )
        except httpx.HTTPError as e:
            raise AuthError("Connection failed") from e

    async def signup(self, username: str, secret: str) -> User:
        response = await self._post("/api/auth/signup", username, secret)
        if response.status_code == 400:
            raise DuplicateUsernameError(username)
        if response.is_error:
            raise AuthError(f"Signup failed ({response.status_code})")
        return User.from_dict(response.json())

    async def login(self, username: str, secret: str) -> User:
        response = await self._post("/api/auth/login", username, secret)
        if response.status_code == 401:
            raise InvalidCredentialsError()
        if response.is_error:
            raise AuthError(f"Login failed ({response.status_code})")
        return User.from_dict(response.json())
