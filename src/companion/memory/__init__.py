"""Background memory extraction."""

from .extractor import GroqMemoryExtractor, MemoryExtractor, join_facts, new_fact_texts, split_facts

__all__ = [
    "GroqMemoryExtractor",
    "MemoryExtractor",
    "join_facts",
    "new_fact_texts",
    "split_facts",
]
