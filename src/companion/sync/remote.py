"""Store implementation that talks to a remote REST service."""

from typing import Any

import httpx

from ..errors import SyncError


class HttpStore:
    """Store backed by a REST API.

    Writes go one row per request, so a rejected chat fails alone instead
    of rolling back a whole bulk ``POST /api/sync``. The service therefore
    has to expose these per-row routes next to the ``/api/auth/*`` ones
    used by ``HttpAuthService``:

    Endpoints:
        GET  /api/users/{id}         -> user row, 404 if missing
        PUT  /api/users/{id}         <- {"memories", "score", "currentMood"}
        GET  /api/users/{id}/chats   -> chats, most recent first
        PUT  /api/chats/{id}         <- {"userId", "title", "messages", "timestamp"}
    """

    def __init__(
        self,
        base_url: str | None = None,
        client: httpx.AsyncClient | None = None,
        timeout: float = 10.0,
    ) -> None:
        if client is None:
            if base_url is None:
                raise ValueError("Either base_url or client is required")
            client = httpx.AsyncClient(base_url=base_url, timeout=timeout)
        self._client = client

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            response = await self._client.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            raise SyncError(f"{method} {url} failed: {e}") from e
        return response

    def _check(self, response: httpx.Response) -> None:
        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise SyncError(
                f"{response.request.method} {response.request.url.path} "
                f"returned {response.status_code}"
            ) from e

    async def get_user(self, user_id: str) -> dict[str, Any] | None:
        response = await self._request("GET", f"/api/users/{user_id}")
        if response.status_code == 404:
            return None
        self._check(response)
        return response.json()

    async def upsert_user(
        self, user_id: str, facts: list[dict[str, Any]], score: int, mood: str
    ) -> None:
        response = await self._request(
            "PUT",
            f"/api/users/{user_id}",
            json={"memories": facts, "score": score, "currentMood": mood},
        )
        self._check(response)

    async def upsert_thread(
        self,
        thread_id: str,
        owner_id: str,
        title: str,
        turns: list[dict[str, str]],
        timestamp: int,
    ) -> None:
        response = await self._request(
            "PUT",
            f"/api/chats/{thread_id}",
            json={
                "userId": owner_id,
                "title": title,
                "messages": turns,
                "timestamp": timestamp,
            },
        )
        self._check(response)

    async def list_threads(self, owner_id: str) -> list[dict[str, Any]]:
        response = await self._request("GET", f"/api/users/{owner_id}/chats")
        self._check(response)
        return response.json()

    async def aclose(self) -> None:
        await self._client.aclose()
