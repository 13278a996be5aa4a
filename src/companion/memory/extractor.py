"""Fact extraction from conversations using the LLM."""

import logging
from collections.abc import Iterable
from typing import Protocol

from ..errors import ExtractionError, ProviderError
from ..llm import CompletionProvider
from ..models import Fact

logger = logging.getLogger(__name__)

EXTRACTION_PROMPT = """Based on the following conversation and existing memories, extract any NEW important personal details about the user (likes, dislikes, names of people, important events, preferences).
Return a concise, comma-separated list of ALL important facts known so far.
Return ONLY the list, no preamble.

Existing memories: {facts}

Recent conversation:
{conversation}

Updated memory list (concise):"""

EXTRACTION_SYSTEM = "You maintain a short list of facts about the user. You never invent facts."


class MemoryExtractor(Protocol):
    """Derives an updated fact list from recent turns."""

    async def extract(self, recent_turns: list[dict[str, str]], facts_joined: str) -> str:
        """Return the updated comma-separated fact list.

        Returns ``facts_joined`` unchanged when there is nothing new and
        raises ExtractionError when the extraction itself failed.
        """
        ...


def join_facts(facts: Iterable[Fact]) -> str:
    """Serialize the fact corpus the way the prompts expect it."""
    return ", ".join(fact.text for fact in facts)


def split_facts(raw: str) -> list[str]:
    """Split a comma-separated fact list into stripped, non-empty texts."""
    return [part.strip() for part in raw.split(",") if part.strip()]


def new_fact_texts(raw: str, corpus: str) -> list[str]:
    """Facts from ``raw`` that do not already appear in ``corpus``.

    A fact counts as known when its text is a substring of the joined corpus.
    Duplicates within ``raw`` collapse to their first occurrence.
    """
    added: list[str] = []
    for text in split_facts(raw):
        if text in corpus:
            continue
        added.append(text)
        corpus = f"{corpus}, {text}" if corpus else text
    return added


class GroqMemoryExtractor:
    """Extracts facts with a non-streaming completion."""

    def __init__(self, provider: CompletionProvider) -> None:
        """Initialize the extractor.

        Args:
            provider: Completion provider used for the extraction call.
        """
        self.provider = provider

    async def extract(self, recent_turns: list[dict[str, str]], facts_joined: str) -> str:
        """Ask the model for the updated fact list.

        Args:
            recent_turns: Role/content pairs to analyze.
            facts_joined: The current comma-joined fact corpus.

        Returns:
            The updated list, or ``facts_joined`` on empty output.

        Raises:
            ExtractionError: If the completion call failed.
        """
        if not recent_turns:
            return facts_joined

        prompt = EXTRACTION_PROMPT.format(
            facts=facts_joined or "none yet",
            conversation=self._format_conversation(recent_turns),
        )

        try:
            content = await self.provider.complete(prompt, system=EXTRACTION_SYSTEM)
        except ProviderError as e:
            logger.warning(f"Memory extraction failed: {e}")
            raise ExtractionError(str(e)) from e

        return content.strip() or facts_joined

    def _format_conversation(self, turns: list[dict[str, str]]) -> str:
        """Format turns into a readable conversation string."""
        return "\n".join(f"{t.get('role', 'unknown')}: {t.get('content', '')}" for t in turns)
