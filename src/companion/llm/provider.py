"""Completion providers.

The rest of the package talks to the model only through the
``CompletionProvider`` protocol, so tests and alternative backends can
replace the Groq implementation.
"""

import logging
from collections.abc import AsyncIterator
from typing import Any, Protocol

import groq
from groq import AsyncGroq

from ..errors import ProviderError
from .prompt import build_messages, build_system_prompt

logger = logging.getLogger(__name__)


class CompletionProvider(Protocol):
    """Produces companion replies."""

    def complete_streaming(
        self,
        message: str,
        history: list[dict[str, str]],
        facts: str,
        mood: str,
    ) -> AsyncIterator[str]:
        """Stream the reply as text fragments. Raises ProviderError."""
        ...

    async def complete(
        self,
        message: str,
        history: list[dict[str, str]] | None = None,
        facts: str = "",
        mood: str = "happy",
        system: str | None = None,
    ) -> str:
        """Return the whole reply at once. Raises ProviderError."""
        ...


class GroqCompletionProvider:
    """CompletionProvider backed by AsyncGroq chat completions.

    Example:
        from groq import AsyncGroq

        provider = GroqCompletionProvider(AsyncGroq(api_key="..."), companion_name="Jeba")
        async for fragment in provider.complete_streaming("Hi", [], "", "happy"):
            print(fragment, end="")
    """

    def __init__(
        self,
        client: AsyncGroq,
        model: str = "llama-3.1-70b-versatile",
        companion_name: str = "Jeba",
    ) -> None:
        """Initialize the provider.

        Args:
            client: The AsyncGroq client instance to wrap.
            model: The model to use for completions.
            companion_name: Name used in the system prompt.
        """
        self._client = client
        self._model = model
        self.companion_name = companion_name

    @property
    def model(self) -> str:
        """Return the model being used."""
        return self._model

    def _messages(
        self,
        message: str,
        history: list[dict[str, str]] | None,
        facts: str,
        mood: str,
        system: str | None = None,
    ) -> list[dict[str, Any]]:
        if system is None:
            system = build_system_prompt(self.companion_name, facts, mood)
        return build_messages(system, message, history)

    async def complete_streaming(
        self,
        message: str,
        history: list[dict[str, str]],
        facts: str,
        mood: str,
    ) -> AsyncIterator[str]:
        try:
            stream = await self._client.chat.completions.create(
                model=self._model,
                messages=self._messages(message, history, facts, mood),
                stream=True,
            )
            async for chunk in stream:
                if not chunk.choices:
                    continue
                fragment = chunk.choices[0].delta.content
                if fragment:
                    yield fragment
        except groq.APIError as e:
            logger.warning(f"Streaming completion failed: {e}")
            raise ProviderError(str(e)) from e

    async def complete(
        self,
        message: str,
        history: list[dict[str, str]] | None = None,
        facts: str = "",
        mood: str = "happy",
        system: str | None = None,
    ) -> str:
        try:
            response = await self._client.chat.completions.create(
                model=self._model,
                messages=self._messages(message, history, facts, mood, system),
            )
        except groq.APIError as e:
            logger.warning(f"Completion failed: {e}")
            raise ProviderError(str(e)) from e

        if not response.choices:
            raise ProviderError("Empty response from provider")
        return response.choices[0].message.content or ""
