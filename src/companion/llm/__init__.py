"""Language-model access."""

from .prompt import build_messages, build_system_prompt
from .provider import CompletionProvider, GroqCompletionProvider

__all__ = [
    "CompletionProvider",
    "GroqCompletionProvider",
    "build_messages",
    "build_system_prompt",
]
